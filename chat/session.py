"""
Identity/session service used by the chat engine.

Visitors get a stable anonymous id; the operator signs in with email and
password checked by an injected verifier.
"""

import itertools
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from .errors import InvalidCredentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionIdentity:
    uid: str
    email: Optional[str] = None
    is_anonymous: bool = True


IdentityCallback = Callable[[Optional[SessionIdentity]], None]
# Resolves (email, password) to a user id, or None when rejected.
CredentialVerifier = Callable[[str, str], Awaitable[Optional[str]]]


class SessionService:
    """Holds the current identity and tells listeners when it changes."""

    def __init__(self, verifier: Optional[CredentialVerifier] = None):
        self._verifier = verifier
        self._current: Optional[SessionIdentity] = None
        self._resolved = False
        self._listeners: Dict[int, IdentityCallback] = {}
        self._listener_ids = itertools.count(1)

    @property
    def current(self) -> Optional[SessionIdentity]:
        return self._current

    @property
    def resolved(self) -> bool:
        """False until the first identity decision (signed in or signed out) is known."""
        return self._resolved

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        if self._resolved:
            callback(self._current)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def restore(self, identity: Optional[SessionIdentity]) -> None:
        """Resolve the session from persisted state (or lack of it)."""
        self._publish(identity)

    async def sign_in_anonymously(self) -> SessionIdentity:
        if self._current is not None and self._current.is_anonymous:
            return self._current
        identity = SessionIdentity(uid=uuid.uuid4().hex)
        logger.info(f"Anonymous session started: {identity.uid}")
        self._publish(identity)
        return identity

    async def sign_in_with_credentials(self, email: str, password: str) -> SessionIdentity:
        email = email.strip().lower()
        uid = await self._verifier(email, password) if self._verifier else None
        if not uid:
            logger.warning(f"Rejected sign-in for {email}")
            raise InvalidCredentials()
        identity = SessionIdentity(uid=uid, email=email, is_anonymous=False)
        logger.info(f"Signed in: {email}")
        self._publish(identity)
        return identity

    async def sign_out(self) -> None:
        if self._current is not None:
            logger.info(f"Signed out: {self._current.email or self._current.uid}")
        self._publish(None)

    def _publish(self, identity: Optional[SessionIdentity]) -> None:
        self._current = identity
        self._resolved = True
        for listener_id, callback in list(self._listeners.items()):
            try:
                callback(identity)
            except Exception:
                logger.exception(f"Identity listener {listener_id} failed")
