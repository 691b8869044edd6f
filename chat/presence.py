"""
Presence & Typing Signaler.

Ephemeral per-role flags at ``typing/{conversation_id}/{role}`` and
``presence/{conversation_id}/{role}``. Before a flag is written ``True``
an on-disconnect ``False`` is registered on the same path, so a client
that vanishes never leaves a stale ``True`` behind.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from realtime.base import RealtimeStore

from .errors import StoreWriteError
from .models import PRESENCE_ROOT, TYPING_ROOT, RoleFlags, SenderRole, flag_path
from .synchronizer import Subscription

logger = logging.getLogger(__name__)

FlagsCallback = Callable[[RoleFlags], None]
AllFlagsCallback = Callable[[Dict[str, RoleFlags]], None]


class PresenceSignaler:
    """Publishes and watches typing/online flags."""

    def __init__(self, store: RealtimeStore):
        self._store = store

    async def _set_flag(self, root: str, conversation_id: str, role: SenderRole, value: bool) -> None:
        path = flag_path(root, conversation_id, role)
        try:
            if value:
                await self._store.on_disconnect_set(path, False)
            await self._store.set(path, value)
        except ConnectionError as e:
            raise StoreWriteError(f"Failed to update {path}.") from e

    async def set_typing(self, conversation_id: str, role: SenderRole, is_typing: bool) -> None:
        await self._set_flag(TYPING_ROOT, conversation_id, role, is_typing)

    async def set_online(self, conversation_id: str, role: SenderRole, is_online: bool) -> None:
        await self._set_flag(PRESENCE_ROOT, conversation_id, role, is_online)

    def _watch(self, root: str, conversation_id: str, callback: FlagsCallback) -> Subscription:
        path = f"{root}/{conversation_id}"
        unsubscribe = self._store.subscribe(path, lambda snap: callback(RoleFlags.from_value(snap.value)))
        return Subscription(unsubscribe, path)

    def _watch_all(self, root: str, callback: AllFlagsCallback) -> Subscription:
        def on_snapshot(snapshot) -> None:
            callback({cid: RoleFlags.from_value(value) for cid, value in snapshot.children().items()})

        return Subscription(self._store.subscribe(root, on_snapshot), f"{root}/*")

    def subscribe_typing(self, conversation_id: str, callback: FlagsCallback) -> Subscription:
        return self._watch(TYPING_ROOT, conversation_id, callback)

    def subscribe_online(self, conversation_id: str, callback: FlagsCallback) -> Subscription:
        return self._watch(PRESENCE_ROOT, conversation_id, callback)

    def subscribe_all_typing(self, callback: AllFlagsCallback) -> Subscription:
        return self._watch_all(TYPING_ROOT, callback)

    def subscribe_all_presence(self, callback: AllFlagsCallback) -> Subscription:
        return self._watch_all(PRESENCE_ROOT, callback)


class TypingDebouncer:
    """
    Drives one role's typing flag from draft changes.

    A non-empty draft sets the flag and (re)arms a timer; when no input
    arrives for ``timeout`` seconds the flag clears on its own.
    """

    def __init__(
        self,
        signaler: PresenceSignaler,
        conversation_id: str,
        role: SenderRole,
        timeout: float = 2.0,
    ):
        self._signaler = signaler
        self.conversation_id = conversation_id
        self.role = role
        self.timeout = timeout
        self._timer: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def input_changed(self, draft: str) -> None:
        if not draft.strip():
            await self.clear()
            return
        self._cancel_timer()
        await self._signaler.set_typing(self.conversation_id, self.role, True)
        self._timer = asyncio.create_task(self._expire())

    async def clear(self) -> None:
        self._cancel_timer()
        await self._signaler.set_typing(self.conversation_id, self.role, False)

    def close(self) -> None:
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout)
        try:
            await self._signaler.set_typing(self.conversation_id, self.role, False)
        except StoreWriteError as e:
            logger.warning(f"Typing auto-clear for {self.conversation_id} failed: {e}")
