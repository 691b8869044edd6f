"""Tests for conversation views built from message-log snapshots."""

import asyncio

import pytest

from chat.errors import StoreWriteError
from chat.models import Message, OutgoingMessage, SenderRole
from chat.synchronizer import (
    ConversationSynchronizer,
    Subscription,
    build_view,
    group_conversations,
    order_messages,
)
from conftest import operator_record, visitor_record


# ── Pure view building ───────────────────────────────────────────

class TestOrdering:

    def test_sorted_regardless_of_arrival_order(self):
        records = {
            "c": visitor_record("third", 300),
            "a": visitor_record("first", 100),
            "b": operator_record("second", 200),
        }
        assert [m.body for m in order_messages("U1", records)] == ["first", "second", "third"]

    def test_equal_timestamps_fall_back_to_id(self):
        records = {
            "-N2": visitor_record("later", 100),
            "-N1": visitor_record("earlier", 100),
        }
        assert [m.message_id for m in order_messages("U1", records)] == ["-N1", "-N2"]

    def test_non_record_children_are_ignored(self):
        records = {"m1": visitor_record("hi", 1), "junk": "not a record"}
        assert len(order_messages("U1", records)) == 1


class TestBuildView:

    def test_identity_from_first_visitor_record(self):
        records = {
            "m0": operator_record("Welcome", 50),
            "m1": visitor_record("Hello", 100, name="Ann", email="ann@x.io"),
        }
        view = build_view("U1", records)
        assert view.name == "Ann"
        assert view.email == "ann@x.io"
        assert view.last_message.body == "Hello"
        assert view.last_active_at == 100

    def test_operator_only_conversation_uses_first_record(self):
        view = build_view("U1", {"m0": operator_record("Welcome", 50)})
        assert view.name == "Admin"

    def test_empty_defaults(self):
        view = build_view("U1", {})
        assert view.name == "Anonymous"
        assert view.email == "guest"
        assert view.last_message is None
        assert view.last_active_at == 0

    def test_legacy_sender_values(self):
        record = dict(visitor_record("hi", 1), sender="admin")
        message = Message.from_record("U1", "m1", record)
        assert message.sender == SenderRole.OPERATOR
        assert SenderRole.parse("user") == SenderRole.VISITOR
        assert SenderRole.parse("robot") == SenderRole.VISITOR

    def test_group_conversations(self):
        tree = {
            "U1": {"m1": visitor_record("a", 1)},
            "U2": {"m1": visitor_record("b", 2, name="Bob", email="bob@x.io", cid="U2")},
        }
        views = group_conversations(tree)
        assert set(views) == {"U1", "U2"}
        assert views["U2"].name == "Bob"


def test_message_record_round_trip_keeps_wire_keys():
    message = Message.from_record("U1", "m1", visitor_record("hi", 5, read=True))
    assert message.to_record() == visitor_record("hi", 5, read=True)


# ── Live synchronizer ────────────────────────────────────────────

class TestSynchronizer:

    def test_subscribe_conversation_replaces_view(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        views = []
        sync.subscribe_conversation("U1", views.append)

        async def scenario():
            await conn.set("messages/U1/m2", visitor_record("second", 200))
            await conn.set("messages/U1/m1", visitor_record("first", 100))

        asyncio.run(scenario())
        assert [m.body for m in views[-1].messages] == ["first", "second"]
        assert sync.latest("U1") is views[-1]

    def test_replayed_snapshot_gives_same_view(self, database):
        conn = database.connect()
        database.load("messages/U1", {"m1": visitor_record("hi", 1)})
        first, second = [], []
        ConversationSynchronizer(conn).subscribe_conversation("U1", first.append)
        ConversationSynchronizer(conn).subscribe_conversation("U1", second.append)
        assert first[-1] == second[-1]

    def test_subscribe_all_drops_deleted_conversations(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        seen = []
        database.load("messages", {
            "U1": {"m1": visitor_record("a", 1)},
            "U2": {"m1": visitor_record("b", 2, cid="U2")},
        })
        sync.subscribe_all(seen.append)
        assert set(seen[-1]) == {"U1", "U2"}

        asyncio.run(conn.remove("messages/U2/m1"))
        assert set(seen[-1]) == {"U1"}
        assert set(sync.conversations()) == {"U1"}

    def test_append_assigns_id_and_orders_by_time(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        views = []
        sync.subscribe_conversation("U1", views.append)

        async def scenario():
            await sync.append("U1", OutgoingMessage("Ann", "ann@x.io", "Hi", SenderRole.VISITOR, created_at=10))
            return await sync.append("U1", OutgoingMessage("Admin", "a@x.io", "Hello", SenderRole.OPERATOR,
                                                           created_at=20, read=True))

        reply_id = asyncio.run(scenario())
        assert [m.sender for m in views[-1].messages] == [SenderRole.VISITOR, SenderRole.OPERATOR]
        assert views[-1].messages[-1].message_id == reply_id
        assert views[-1].messages[-1].read is True

    def test_delete_message(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        database.load("messages/U1", {"m1": visitor_record("a", 1), "m2": visitor_record("b", 2)})
        sync.subscribe_conversation("U1", lambda view: None)
        asyncio.run(sync.delete_message("U1", "m1"))
        assert [m.message_id for m in sync.latest("U1").messages] == ["m2"]

    def test_read_all_is_one_shot(self, database):
        conn = database.connect()
        database.load("messages/U1", {"m1": visitor_record("a", 1)})
        views = asyncio.run(ConversationSynchronizer(conn).read_all())
        assert views["U1"].email == "ann@x.io"

    def test_write_on_dropped_connection_raises_store_write_error(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        conn.disconnect()
        with pytest.raises(StoreWriteError, match="Failed to send message."):
            asyncio.run(sync.append("U1", OutgoingMessage("Ann", "ann@x.io", "hi", SenderRole.VISITOR)))
        with pytest.raises(StoreWriteError):
            asyncio.run(sync.delete_message("U1", "m1"))

    def test_close_detaches_every_subscription(self, database):
        conn = database.connect()
        sync = ConversationSynchronizer(conn)
        seen = []
        sync.subscribe_all(seen.append)
        sync.subscribe_conversation("U1", seen.append)
        sync.close()
        asyncio.run(conn.set("messages/U1/m1", visitor_record("a", 1)))
        assert len(seen) == 2


def test_subscription_close_is_idempotent():
    calls = []
    subscription = Subscription(lambda: calls.append(1), "test")
    subscription.close()
    subscription.close()
    assert calls == [1]
    assert not subscription.active
