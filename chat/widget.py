"""
Visitor Widget Controller.

Single-conversation chat bound to one resolved visitor identity:
intake form, live thread, unread badge on the floating toggle, typing
and online flags.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Set

from realtime.base import RealtimeStore

from .errors import ChatError, IdentityNotReady, StoreWriteError
from .identity import IdentityResolver
from .local_cache import LAST_READ_KEY, LocalCache
from .models import ConversationView, Message, OutgoingMessage, RoleFlags, SenderRole, VisitorIdentity, now_ms
from .notifications import NewMessageEvent, NotificationHook
from .presence import PresenceSignaler, TypingDebouncer
from .session import SessionIdentity, SessionService
from .synchronizer import ConversationSynchronizer, Subscription

logger = logging.getLogger(__name__)


class WidgetState(str, Enum):
    NO_IDENTITY = "no_identity"
    SUBMITTED_FORM = "submitted_form"
    CHATTING = "chatting"


class VisitorWidgetController:
    """Composes the sync primitives into the visitor-facing chat widget."""

    def __init__(
        self,
        session: SessionService,
        store: RealtimeStore,
        cache: LocalCache,
        notifications: Optional[NotificationHook] = None,
        typing_timeout: float = 2.0,
    ):
        self._session = session
        self._cache = cache
        self._sync = ConversationSynchronizer(store)
        self._presence = PresenceSignaler(store)
        self._resolver = IdentityResolver(session, self._sync, cache)
        self._notifications = notifications or NotificationHook()
        self._typing_timeout = typing_timeout

        self.state = WidgetState.NO_IDENTITY
        self.identity: Optional[VisitorIdentity] = None
        self.status = ""
        self.panel_open = False
        self.unread_badge = 0
        self.messages: List[Message] = []
        self.operator_typing = False
        self.operator_online = False

        self._subscriptions: List[Subscription] = []
        self._debouncer: Optional[TypingDebouncer] = None
        self._known_ids: Optional[Set[str]] = None
        self._identity_unsubscribe: Optional[Callable[[], None]] = None
        self._awaiting_identity = False

    @property
    def conversation_id(self) -> Optional[str]:
        return self.identity.conversation_id if self.identity else None

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Ensure an anonymous session and resume a cached conversation."""
        if self._identity_unsubscribe is None:
            self._identity_unsubscribe = self._session.on_identity_change(self._on_identity)
        if self._session.current is None:
            await self._session.sign_in_anonymously()
        restored = self._resolver.restore()
        if restored is not None and restored.submitted:
            self.identity = restored
            logger.info(f"Resuming chat {restored.conversation_id}")
            await self._enter_chatting()

    async def close(self) -> None:
        if self._identity_unsubscribe is not None:
            self._identity_unsubscribe()
            self._identity_unsubscribe = None
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        if self._debouncer is not None:
            self._debouncer.close()
            self._debouncer = None
        if self.state == WidgetState.CHATTING and self.conversation_id:
            try:
                await self._presence.set_online(self.conversation_id, SenderRole.VISITOR, False)
            except StoreWriteError as e:
                logger.warning(f"Could not clear presence for {self.conversation_id}: {e}")

    async def _enter_chatting(self) -> None:
        cid = self.identity.conversation_id
        self._known_ids = None
        self._subscriptions = [
            self._sync.subscribe_conversation(cid, self._on_view),
            self._presence.subscribe_typing(cid, self._on_typing),
            self._presence.subscribe_online(cid, self._on_online),
        ]
        self._debouncer = TypingDebouncer(self._presence, cid, SenderRole.VISITOR, self._typing_timeout)
        self.state = WidgetState.CHATTING
        try:
            await self._presence.set_online(cid, SenderRole.VISITOR, True)
        except StoreWriteError as e:
            self.status = str(e)

    # ── Intake form ───────────────────────────────────────────────

    async def submit_form(self, name: str, email: str, message: str) -> bool:
        """Validate, resolve the identity and move to chatting; failures land in ``status``."""
        if self.state != WidgetState.NO_IDENTITY:
            return False
        try:
            await self._resolver.resolve_identity(email, name, message)
        except ChatError as e:
            self.status = str(e)
            self._awaiting_identity = isinstance(e, IdentityNotReady)
            logger.info(f"Form submission rejected: {e}")
            return False

        self.identity = self._resolver.restore()
        self.state = WidgetState.SUBMITTED_FORM
        self.status = ""
        await self._enter_chatting()
        return True

    # ── Store callbacks ───────────────────────────────────────────

    def _on_identity(self, identity: Optional[SessionIdentity]) -> None:
        # The wait message goes away once the session resolves.
        if identity is not None and self._awaiting_identity:
            self._awaiting_identity = False
            self.status = ""

    def _on_view(self, view: ConversationView) -> None:
        incoming = [m for m in view.messages if m.sender == SenderRole.OPERATOR]
        if self._known_ids is None:
            fresh = self._unseen_since_last_read(incoming)
        else:
            fresh = [m for m in incoming if m.message_id not in self._known_ids]

        if fresh and not self.panel_open:
            self.unread_badge += len(fresh)
            for message in fresh:
                self._notifications.emit(NewMessageEvent(view.conversation_id, message, SenderRole.VISITOR))

        self._known_ids = {m.message_id for m in view.messages}
        self.messages = view.messages

    def _unseen_since_last_read(self, incoming: List[Message]) -> List[Message]:
        last_read = self._cache.get(LAST_READ_KEY)
        if not last_read:
            return []
        try:
            cutoff = int(last_read)
        except ValueError:
            return []
        return [m for m in incoming if m.created_at > cutoff]

    def _on_typing(self, flags: RoleFlags) -> None:
        self.operator_typing = flags.operator

    def _on_online(self, flags: RoleFlags) -> None:
        self.operator_online = flags.operator

    # ── Panel ─────────────────────────────────────────────────────

    def open_panel(self) -> None:
        self.panel_open = True
        self.unread_badge = 0
        self._cache.set(LAST_READ_KEY, str(now_ms()))

    def close_panel(self) -> None:
        self.panel_open = False
        self._cache.set(LAST_READ_KEY, str(now_ms()))

    # ── Composing ─────────────────────────────────────────────────

    async def input_changed(self, text: str) -> None:
        if self._debouncer is None:
            return
        try:
            await self._debouncer.input_changed(text)
        except StoreWriteError as e:
            self.status = str(e)

    async def send(self, text: str) -> Optional[str]:
        text = (text or "").strip()
        if self.state != WidgetState.CHATTING or not text:
            return None
        message = OutgoingMessage(
            name=self.identity.name,
            email=self.identity.email,
            body=text,
            sender=SenderRole.VISITOR,
        )
        try:
            message_id = await self._sync.append(self.identity.conversation_id, message)
        except StoreWriteError as e:
            self.status = str(e)
            return None
        self.status = ""
        try:
            await self._debouncer.clear()
        except StoreWriteError as e:
            logger.warning(f"Typing flag not cleared after send: {e}")
        return message_id
