"""Tests for the visitor widget controller."""

import asyncio

from chat.local_cache import CONVERSATION_ID_KEY, EMAIL_KEY, LAST_READ_KEY, NAME_KEY, SUBMITTED_KEY, MemoryLocalCache
from chat.notifications import NotificationHook
from chat.models import SenderRole
from chat.session import SessionService
from chat.widget import VisitorWidgetController, WidgetState
from conftest import operator_record, visitor_record


def _widget(database, cache=None, notifications=None):
    return VisitorWidgetController(
        SessionService(),
        database.connect(),
        cache if cache is not None else MemoryLocalCache(),
        notifications=notifications,
        typing_timeout=0.05,
    )


class TestIntakeForm:

    def test_starts_without_identity(self, database):
        widget = _widget(database)
        asyncio.run(widget.start())
        assert widget.state == WidgetState.NO_IDENTITY
        assert widget.conversation_id is None

    def test_submit_moves_to_chatting(self, database):
        widget = _widget(database)

        async def scenario():
            await widget.start()
            return await widget.submit_form("Ann", "ann@x.io", "Hi")

        assert asyncio.run(scenario()) is True
        assert widget.state == WidgetState.CHATTING
        assert [m.body for m in widget.messages] == ["Hi"]
        assert database.get(f"presence/{widget.conversation_id}/visitor") is True

    def test_invalid_submission_sets_status(self, database):
        widget = _widget(database)

        async def scenario():
            await widget.start()
            return await widget.submit_form("Ann", "not-an-email", "Hi")

        assert asyncio.run(scenario()) is False
        assert widget.state == WidgetState.NO_IDENTITY
        assert widget.status == "Please enter a valid email address."

    def test_submit_before_session_is_not_ready(self, database):
        widget = _widget(database)
        assert asyncio.run(widget.submit_form("Ann", "ann@x.io", "Hi")) is False
        assert "please wait" in widget.status

    def test_wait_message_clears_once_session_resolves(self, database):
        widget = _widget(database)

        async def scenario():
            assert await widget.submit_form("Ann", "ann@x.io", "Hi") is False
            assert "please wait" in widget.status
            await widget.start()
            assert widget.status == ""
            return await widget.submit_form("Ann", "ann@x.io", "Hi")

        assert asyncio.run(scenario()) is True
        assert widget.state == WidgetState.CHATTING

    def test_validation_status_survives_session_changes(self, database):
        session = SessionService()
        widget = VisitorWidgetController(session, database.connect(), MemoryLocalCache())

        async def scenario():
            await widget.start()
            await widget.submit_form("Ann", "nope", "Hi")
            await session.sign_in_anonymously()

        asyncio.run(scenario())
        assert widget.status == "Please enter a valid email address."

    def test_returning_email_resumes_old_conversation(self, database):
        database.load("messages/U1", {"m1": visitor_record("First visit", 100)})
        widget = _widget(database)

        async def scenario():
            await widget.start()
            await widget.submit_form("Ann", "ann@x.io", "I'm back")

        asyncio.run(scenario())
        assert widget.conversation_id == "U1"
        assert [m.body for m in widget.messages] == ["First visit", "I'm back"]

    def test_cached_identity_resumes_on_start(self, database):
        database.load("messages/U1", {"m1": visitor_record("Hi", 100)})
        cache = MemoryLocalCache({
            CONVERSATION_ID_KEY: "U1",
            NAME_KEY: "Ann",
            EMAIL_KEY: "ann@x.io",
            SUBMITTED_KEY: "true",
        })
        widget = _widget(database, cache=cache)
        asyncio.run(widget.start())
        assert widget.state == WidgetState.CHATTING
        assert widget.conversation_id == "U1"
        assert len(widget.messages) == 1


class TestChatting:

    def _chatting(self, database, **kwargs):
        widget = _widget(database, **kwargs)

        async def scenario():
            await widget.start()
            await widget.submit_form("Ann", "ann@x.io", "Hi")

        asyncio.run(scenario())
        return widget

    def test_badge_counts_operator_messages_while_closed(self, database):
        hook = NotificationHook()
        events = []
        hook.register(events.append)
        widget = self._chatting(database, notifications=hook)
        cid = widget.conversation_id
        operator = database.connect()

        asyncio.run(operator.set(f"messages/{cid}/r1", operator_record("Hello", 10**13, cid=cid)))
        assert widget.unread_badge == 1
        assert events[0].audience == SenderRole.VISITOR

        widget.open_panel()
        assert widget.unread_badge == 0
        asyncio.run(operator.set(f"messages/{cid}/r2", operator_record("Anything else?", 10**13 + 1, cid=cid)))
        assert widget.unread_badge == 0
        assert len(events) == 1

    def test_own_messages_never_badge(self, database):
        widget = self._chatting(database)
        asyncio.run(widget.send("Another question"))
        assert widget.unread_badge == 0
        assert [m.body for m in widget.messages] == ["Hi", "Another question"]

    def test_replies_since_last_read_badge_on_resume(self, database):
        cache = MemoryLocalCache({
            CONVERSATION_ID_KEY: "U1",
            NAME_KEY: "Ann",
            EMAIL_KEY: "ann@x.io",
            SUBMITTED_KEY: "true",
            LAST_READ_KEY: "150",
        })
        database.load("messages/U1", {
            "m1": visitor_record("Hi", 100),
            "r1": operator_record("Seen reply", 120),
            "r2": operator_record("Missed reply", 200),
        })
        widget = _widget(database, cache=cache)
        asyncio.run(widget.start())
        assert widget.unread_badge == 1

    def test_operator_activity_flags(self, database):
        widget = self._chatting(database)
        cid = widget.conversation_id
        operator = database.connect()
        asyncio.run(operator.set(f"typing/{cid}/operator", True))
        asyncio.run(operator.set(f"presence/{cid}/operator", True))
        assert widget.operator_typing
        assert widget.operator_online

    def test_typing_clears_on_send(self, database):
        widget = self._chatting(database)
        cid = widget.conversation_id

        async def scenario():
            await widget.input_changed("Wait")
            assert database.get(f"typing/{cid}/visitor") is True
            await widget.send("Wait, one more thing")

        asyncio.run(scenario())
        assert database.get(f"typing/{cid}/visitor") is False

    def test_blank_send_is_ignored(self, database):
        widget = self._chatting(database)
        assert asyncio.run(widget.send("  ")) is None
        assert len(widget.messages) == 1

    def test_close_goes_offline(self, database):
        widget = self._chatting(database)
        cid = widget.conversation_id
        asyncio.run(widget.close())
        assert database.get(f"presence/{cid}/visitor") is False

    def test_dropped_tab_goes_offline(self, database):
        conn = database.connect()
        widget = VisitorWidgetController(SessionService(), conn, MemoryLocalCache())

        async def scenario():
            await widget.start()
            await widget.submit_form("Ann", "ann@x.io", "Hi")
            await widget.input_changed("typing...")

        asyncio.run(scenario())
        cid = widget.conversation_id
        conn.disconnect()
        assert database.get(f"presence/{cid}/visitor") is False
        assert database.get(f"typing/{cid}/visitor") is False
