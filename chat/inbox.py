"""
Admin Inbox Controller.

Operator view over every conversation: authorization gate, searchable
conversation list with unread highlighting, read reconciliation on
selection, typing/presence side-channels, replies and deletion.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from realtime.base import RealtimeStore

from .errors import StoreWriteError, Unauthorized
from .models import ConversationView, Message, OutgoingMessage, RoleFlags, SenderRole
from .notifications import NewMessageEvent, NotificationHook
from .presence import PresenceSignaler, TypingDebouncer
from .read_state import ReadStateTracker, count_unread
from .session import SessionIdentity, SessionService
from .synchronizer import ConversationSynchronizer, Subscription

logger = logging.getLogger(__name__)

OPERATOR_DISPLAY_NAME = "Admin"


class InboxState(str, Enum):
    INITIALIZING = "initializing"
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"
    SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class ConversationSummary:
    conversation_id: str
    name: str
    email: str
    unread_count: int
    online: bool
    visitor_typing: bool
    last_message: Optional[Message]
    last_active_at: int

    @property
    def has_unread(self) -> bool:
        return self.unread_count > 0


def summarize_conversations(
    views: Dict[str, ConversationView],
    typing: Dict[str, RoleFlags],
    online: Dict[str, RoleFlags],
    search: str = "",
) -> List[ConversationSummary]:
    """Conversations whose display name contains ``search``, most recent first."""
    needle = search.strip().lower()
    summaries = []
    for cid, view in views.items():
        if needle and needle not in view.name.lower():
            continue
        summaries.append(ConversationSummary(
            conversation_id=cid,
            name=view.name,
            email=view.email,
            unread_count=count_unread(view.messages),
            online=online.get(cid, RoleFlags()).visitor,
            visitor_typing=typing.get(cid, RoleFlags()).visitor,
            last_message=view.last_message,
            last_active_at=view.last_active_at,
        ))
    summaries.sort(key=lambda s: s.last_active_at, reverse=True)
    return summaries


class AdminInboxController:
    """Composes synchronizer, read tracker and presence into the operator inbox."""

    def __init__(
        self,
        session: SessionService,
        store: RealtimeStore,
        operator_email: str,
        notifications: Optional[NotificationHook] = None,
        typing_timeout: float = 2.0,
    ):
        self._session = session
        self._sync = ConversationSynchronizer(store)
        self._reads = ReadStateTracker(self._sync)
        self._presence = PresenceSignaler(store)
        self._operator_email = operator_email.strip().lower()
        self._notifications = notifications or NotificationHook()
        self._typing_timeout = typing_timeout

        self.state = InboxState.INITIALIZING
        self.status = ""
        self.selected: Optional[str] = None
        self._typing: Dict[str, RoleFlags] = {}
        self._online: Dict[str, RoleFlags] = {}
        self._subscriptions: List[Subscription] = []
        self._debouncer: Optional[TypingDebouncer] = None
        self._seen: Optional[Set[Tuple[str, str]]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._reconciling: Optional[str] = None
        self._unsubscribe_session = None

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> None:
        if self._unsubscribe_session is None:
            self._unsubscribe_session = self._session.on_identity_change(self._on_identity)

    def _on_identity(self, identity: Optional[SessionIdentity]) -> None:
        if identity is None:
            self._detach()
            self.state = InboxState.SIGNED_OUT
            return
        if self.state == InboxState.UNAUTHORIZED:
            # Only a sign-out leaves the unauthorized state.
            return
        if (identity.email or "").lower() != self._operator_email:
            logger.warning(f"Inbox access denied for {identity.email or identity.uid}")
            self._detach()
            self.state = InboxState.UNAUTHORIZED
            return
        if self.state == InboxState.AUTHORIZED:
            return

        self.state = InboxState.INITIALIZING
        self._attach()
        self.state = InboxState.AUTHORIZED
        logger.info(f"Inbox opened for {identity.email}")

    def _attach(self) -> None:
        self._seen = None
        self._subscriptions = [
            self._sync.subscribe_all(self._on_conversations),
            self._presence.subscribe_all_typing(self._on_typing),
            self._presence.subscribe_all_presence(self._on_presence),
        ]

    def _detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        if self._debouncer is not None:
            self._debouncer.close()
            self._debouncer = None
        self.selected = None
        self._typing = {}
        self._online = {}
        self._seen = None

    async def close(self) -> None:
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        self._detach()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    async def drain(self) -> None:
        """Wait for background read reconciliation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def sign_out(self) -> None:
        if self.selected and self.state == InboxState.AUTHORIZED:
            await self._leave_selected()
        await self._session.sign_out()

    # ── Store callbacks ───────────────────────────────────────────

    def _on_conversations(self, views: Dict[str, ConversationView]) -> None:
        current = {(cid, m.message_id) for cid, view in views.items() for m in view.messages}
        if self._seen is not None:
            for cid, view in views.items():
                if cid == self.selected:
                    continue
                for message in view.messages:
                    if message.is_unread_visitor_message and (cid, message.message_id) not in self._seen:
                        self._notifications.emit(NewMessageEvent(cid, message, SenderRole.OPERATOR))
        self._seen = current

        # Whatever arrives in the open conversation is read on arrival.
        if self.selected and self._reconciling is None and self._reads.has_unread(self.selected):
            self._reconciling = self.selected
            self._spawn(self._reconcile(self.selected))

    async def _reconcile(self, conversation_id: str) -> None:
        try:
            while self.selected == conversation_id and self._reads.has_unread(conversation_id):
                if not await self._reads.mark_read(conversation_id):
                    break
        finally:
            self._reconciling = None

    def _on_typing(self, flags: Dict[str, RoleFlags]) -> None:
        self._typing = flags

    def _on_presence(self, flags: Dict[str, RoleFlags]) -> None:
        self._online = flags

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Queries ───────────────────────────────────────────────────

    def _require_authorized(self) -> None:
        if self.state != InboxState.AUTHORIZED:
            raise Unauthorized()

    def conversation_list(self, search: str = "") -> List[ConversationSummary]:
        """Conversations whose display name contains ``search``, most recent first."""
        self._require_authorized()
        return summarize_conversations(self._sync.conversations(), self._typing, self._online, search)

    def messages(self, conversation_id: Optional[str] = None) -> List[Message]:
        self._require_authorized()
        view = self._sync.latest(conversation_id or self.selected or "")
        return list(view.messages) if view else []

    def unread_count(self, conversation_id: str) -> int:
        self._require_authorized()
        return self._reads.unread_count(conversation_id)

    def has_unread(self, conversation_id: str) -> bool:
        self._require_authorized()
        return self._reads.has_unread(conversation_id)

    def visitor_typing(self, conversation_id: Optional[str] = None) -> bool:
        return self._typing.get(conversation_id or self.selected or "", RoleFlags()).visitor

    def visitor_online(self, conversation_id: str) -> bool:
        return self._online.get(conversation_id, RoleFlags()).visitor

    def jump_to_first_unread(self) -> Optional[Message]:
        self._require_authorized()
        if not self.selected:
            return None
        return self._reads.first_unread(self.selected)

    # ── Actions ───────────────────────────────────────────────────

    async def select(self, conversation_id: str) -> None:
        """Make a conversation the active one and reconcile its read state."""
        self._require_authorized()
        if self.selected and self.selected != conversation_id:
            await self._leave_selected()
        self.selected = conversation_id
        if self._debouncer is None or self._debouncer.conversation_id != conversation_id:
            if self._debouncer is not None:
                self._debouncer.close()
            self._debouncer = TypingDebouncer(
                self._presence, conversation_id, SenderRole.OPERATOR, self._typing_timeout
            )
        try:
            await self._debouncer.clear()
            await self._presence.set_online(conversation_id, SenderRole.OPERATOR, True)
            await self._reads.mark_read(conversation_id)
        except StoreWriteError as e:
            self.status = str(e)

    async def _leave_selected(self) -> None:
        previous, self.selected = self.selected, None
        debouncer, self._debouncer = self._debouncer, None
        try:
            if debouncer is not None:
                await debouncer.clear()
                debouncer.close()
            await self._presence.set_online(previous, SenderRole.OPERATOR, False)
        except StoreWriteError as e:
            logger.warning(f"Leaving conversation {previous} left flags behind: {e}")

    async def reply_input_changed(self, text: str) -> None:
        if self._debouncer is None:
            return
        try:
            await self._debouncer.input_changed(text)
        except StoreWriteError as e:
            self.status = str(e)

    async def send_reply(self, text: str) -> Optional[str]:
        """Append an operator reply to the selected conversation."""
        self._require_authorized()
        text = (text or "").strip()
        if not text or not self.selected:
            return None
        reply = OutgoingMessage(
            name=OPERATOR_DISPLAY_NAME,
            email=self._operator_email,
            body=text,
            sender=SenderRole.OPERATOR,
            read=True,
        )
        try:
            message_id = await self._sync.append(self.selected, reply)
        except StoreWriteError as e:
            self.status = str(e)
            return None
        self.status = ""
        if self._debouncer is not None:
            try:
                await self._debouncer.clear()
            except StoreWriteError as e:
                logger.warning(f"Typing flag not cleared after reply: {e}")
        return message_id

    async def delete_message(self, message_id: str, conversation_id: Optional[str] = None) -> bool:
        self._require_authorized()
        conversation_id = conversation_id or self.selected
        if not conversation_id:
            return False
        try:
            await self._sync.delete_message(conversation_id, message_id)
        except StoreWriteError as e:
            self.status = str(e)
            return False
        return True
