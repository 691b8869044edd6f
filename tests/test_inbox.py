"""Tests for the operator inbox controller."""

import asyncio

import pytest

from chat.errors import Unauthorized
from chat.inbox import AdminInboxController, InboxState, summarize_conversations
from chat.models import OutgoingMessage, RoleFlags, SenderRole
from chat.notifications import NotificationHook
from chat.session import SessionIdentity, SessionService
from chat.synchronizer import ConversationSynchronizer, group_conversations
from conftest import OPERATOR_EMAIL, operator_record, visitor_record

OPERATOR = SessionIdentity(uid="op-1", email=OPERATOR_EMAIL, is_anonymous=False)


def _inbox(database, notifications=None):
    session = SessionService()
    inbox = AdminInboxController(
        session,
        database.connect("operator"),
        operator_email=OPERATOR_EMAIL,
        notifications=notifications,
        typing_timeout=0.05,
    )
    inbox.start()
    return session, inbox


# ── Authorization state machine ──────────────────────────────────

class TestAuthorization:

    def test_initializing_until_identity_known(self, database):
        _, inbox = _inbox(database)
        assert inbox.state == InboxState.INITIALIZING
        with pytest.raises(Unauthorized):
            inbox.conversation_list()

    def test_operator_is_authorized(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        assert inbox.state == InboxState.AUTHORIZED

    def test_operator_email_match_ignores_case(self, database):
        session, inbox = _inbox(database)
        session.restore(SessionIdentity(uid="op-1", email=OPERATOR_EMAIL.upper(), is_anonymous=False))
        assert inbox.state == InboxState.AUTHORIZED

    def test_other_identity_is_withheld_everything(self, database):
        database.load("messages/U1", {"m1": visitor_record("Hi", 1)})
        session, inbox = _inbox(database)
        session.restore(SessionIdentity(uid="V1"))
        assert inbox.state == InboxState.UNAUTHORIZED
        with pytest.raises(Unauthorized):
            inbox.conversation_list()
        with pytest.raises(Unauthorized):
            asyncio.run(inbox.select("U1"))

    def test_unauthorized_until_sign_out(self, database):
        session, inbox = _inbox(database)
        session.restore(SessionIdentity(uid="V1"))
        session.restore(OPERATOR)
        assert inbox.state == InboxState.UNAUTHORIZED

        asyncio.run(session.sign_out())
        assert inbox.state == InboxState.SIGNED_OUT
        session.restore(OPERATOR)
        assert inbox.state == InboxState.AUTHORIZED

    def test_sign_in_with_credentials(self, database):
        async def verifier(email, password):
            return "op-1" if password == "pw" else None

        session = SessionService(verifier=verifier)
        inbox = AdminInboxController(session, database.connect(), OPERATOR_EMAIL)
        inbox.start()
        asyncio.run(session.sign_in_with_credentials(OPERATOR_EMAIL, "pw"))
        assert inbox.state == InboxState.AUTHORIZED


# ── Conversation list ────────────────────────────────────────────

class TestConversationList:

    def test_search_and_recency_order(self, database):
        database.load("messages", {
            "U1": {"m1": visitor_record("Hi", 100, name="Ann")},
            "U2": {"m1": visitor_record("Yo", 300, name="Bob", email="bob@x.io", cid="U2")},
            "U3": {"m1": visitor_record("Hey", 200, name="Joanna", email="jo@x.io", cid="U3")},
        })
        session, inbox = _inbox(database)
        session.restore(OPERATOR)

        assert [c.conversation_id for c in inbox.conversation_list()] == ["U2", "U3", "U1"]
        assert [c.name for c in inbox.conversation_list("AN")] == ["Joanna", "Ann"]
        assert inbox.conversation_list("zzz") == []

    def test_summary_flags(self):
        views = group_conversations({"U1": {"m1": visitor_record("Hi", 1)}})
        [summary] = summarize_conversations(
            views,
            typing={"U1": RoleFlags(visitor=True)},
            online={"U1": RoleFlags(visitor=True, operator=True)},
        )
        assert summary.has_unread
        assert summary.unread_count == 1
        assert summary.visitor_typing and summary.online
        assert summary.last_message.body == "Hi"

    def test_presence_side_channel(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        visitor = database.connect("visitor")
        asyncio.run(visitor.set("presence/U1/visitor", True))
        asyncio.run(visitor.set("typing/U1/visitor", True))
        assert inbox.visitor_online("U1")
        assert inbox.visitor_typing("U1")


# ── Scenarios ────────────────────────────────────────────────────

class TestScenarios:

    def test_new_conversation_is_unread_until_opened(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        visitor = ConversationSynchronizer(database.connect("visitor"))

        async def scenario():
            await visitor.append("U1", OutgoingMessage("Ann", "ann@x.io", "Hi", SenderRole.VISITOR, created_at=100))
            assert inbox.has_unread("U1")
            assert inbox.unread_count("U1") == 1

            await inbox.select("U1")
            await inbox.drain()

        asyncio.run(scenario())
        assert not inbox.has_unread("U1")
        assert inbox.jump_to_first_unread() is None

    def test_reply_orders_after_visitor_message(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {"m1": visitor_record("Hi", 100)})

        async def scenario():
            await inbox.select("U1")
            return await inbox.send_reply("Hello Ann")

        reply_id = asyncio.run(scenario())
        messages = inbox.messages("U1")
        assert [m.body for m in messages] == ["Hi", "Hello Ann"]
        reply = messages[-1]
        assert reply.message_id == reply_id
        assert reply.sender == SenderRole.OPERATOR
        assert reply.name == "Admin"
        assert reply.read is True
        assert inbox.status == ""

    def test_messages_arriving_in_open_conversation_are_read(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {"m1": visitor_record("Hi", 100)})
        visitor = ConversationSynchronizer(database.connect("visitor"))

        async def scenario():
            await inbox.select("U1")
            await visitor.append("U1", OutgoingMessage("Ann", "ann@x.io", "Still there?", SenderRole.VISITOR))
            await inbox.drain()

        asyncio.run(scenario())
        assert inbox.unread_count("U1") == 0

    def test_jump_to_first_unread(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {
            "m1": visitor_record("old", 100, read=True),
            "m2": visitor_record("new", 200),
        })
        inbox.selected = "U1"
        assert inbox.jump_to_first_unread().message_id == "m2"

    def test_delete_recomputes_view(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {
            "m1": visitor_record("Hi", 100),
            "m2": operator_record("Hello", 200),
        })

        assert asyncio.run(inbox.delete_message("m2", "U1"))
        assert [m.message_id for m in inbox.messages("U1")] == ["m1"]
        assert inbox.conversation_list()[0].last_active_at == 100

        assert asyncio.run(inbox.delete_message("m1", "U1"))
        assert inbox.conversation_list() == []

    def test_select_sets_operator_online_and_switching_clears_it(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages", {
            "U1": {"m1": visitor_record("a", 1)},
            "U2": {"m1": visitor_record("b", 2, cid="U2")},
        })

        async def scenario():
            await inbox.select("U1")
            assert database.get("presence/U1/operator") is True
            await inbox.select("U2")

        asyncio.run(scenario())
        assert database.get("presence/U1/operator") is False
        assert database.get("presence/U2/operator") is True

    def test_reselect_keeps_one_typing_timer(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {"m1": visitor_record("a", 1)})

        async def scenario():
            await inbox.select("U1")
            first = inbox._debouncer
            await inbox.reply_input_changed("Hel")
            assert first.armed
            await inbox.select("U1")
            assert inbox._debouncer is first
            assert not first.armed
            assert database.get("typing/U1/operator") is False
            await inbox.sign_out()

        asyncio.run(scenario())

    def test_reply_typing_clears_on_send(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        database.load("messages/U1", {"m1": visitor_record("a", 1)})

        async def scenario():
            await inbox.select("U1")
            await inbox.reply_input_changed("Hel")
            assert database.get("typing/U1/operator") is True
            await inbox.send_reply("Hello")

        asyncio.run(scenario())
        assert database.get("typing/U1/operator") is False

    def test_failed_reply_lands_in_status(self, database):
        session = SessionService()
        conn = database.connect()
        inbox = AdminInboxController(session, conn, OPERATOR_EMAIL)
        inbox.start()
        session.restore(OPERATOR)
        database.load("messages/U1", {"m1": visitor_record("a", 1)})
        inbox.selected = "U1"
        conn.disconnect()

        assert asyncio.run(inbox.send_reply("Hello")) is None
        assert inbox.status == "Failed to send message."

    def test_empty_reply_is_ignored(self, database):
        session, inbox = _inbox(database)
        session.restore(OPERATOR)
        inbox.selected = "U1"
        assert asyncio.run(inbox.send_reply("   ")) is None
        assert database.get("messages") is None


# ── Notifications ────────────────────────────────────────────────

def test_notifies_for_new_visitor_messages_outside_selected(database):
    hook = NotificationHook()
    events = []
    hook.register(events.append)
    database.load("messages/U1", {"m1": visitor_record("old", 1)})
    session, inbox = _inbox(database, notifications=hook)
    session.restore(OPERATOR)
    visitor = database.connect("visitor")

    async def scenario():
        await inbox.select("U1")
        await visitor.set("messages/U1/m2", visitor_record("in open thread", 2))
        await visitor.set("messages/U2/m1", visitor_record("elsewhere", 3, name="Bob", email="b@x.io", cid="U2"))
        await inbox.drain()

    asyncio.run(scenario())
    assert [(e.conversation_id, e.message.body) for e in events] == [("U2", "elsewhere")]
    assert events[0].audience == SenderRole.OPERATOR


def test_sign_out_detaches_and_clears_presence(database):
    session, inbox = _inbox(database)
    session.restore(OPERATOR)
    database.load("messages/U1", {"m1": visitor_record("a", 1)})

    async def scenario():
        await inbox.select("U1")
        await inbox.sign_out()
        await inbox.close()

    asyncio.run(scenario())
    assert inbox.state == InboxState.SIGNED_OUT
    assert inbox.selected is None
    assert database.get("presence/U1/operator") is False
