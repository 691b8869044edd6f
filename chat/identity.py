"""
Identity Resolver.

Maps a visitor's intake-form submission to a stable conversation id,
reusing the conversation of anyone who already wrote in with the same
email.

Known limitation: two first-time submissions with the same new email
racing from two tabs can each mint a conversation. Nothing merges them
afterwards; lookups keep returning the oldest one.
"""

import logging
import re
import uuid
from typing import Dict, Optional, Tuple

from .errors import ChatValidationError, IdentityNotReady
from .local_cache import (
    CONVERSATION_ID_KEY,
    EMAIL_KEY,
    LAST_READ_KEY,
    NAME_KEY,
    SUBMITTED_KEY,
    LocalCache,
)
from .models import ConversationView, OutgoingMessage, SenderRole, VisitorIdentity
from .session import SessionService
from .synchronizer import ConversationSynchronizer

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_submission(name: str, email: str, message: str) -> Tuple[str, str, str]:
    """Trim and check intake-form fields; returns the cleaned triple."""
    name, email, message = (name or "").strip(), (email or "").strip(), (message or "").strip()
    if not name or not email or not message:
        missing = next(f for f, v in (("name", name), ("email", email), ("message", message)) if not v)
        raise ChatValidationError("Please fill all fields.", field=missing)
    if not EMAIL_PATTERN.match(email):
        raise ChatValidationError("Please enter a valid email address.", field="email")
    return name, email, message


def _first_seen(view: ConversationView) -> int:
    return view.messages[0].created_at if view.messages else 0


def find_conversation_for_email(conversations: Dict[str, ConversationView], email: str) -> Optional[str]:
    """Oldest conversation that has any message from ``email``."""
    wanted = normalize_email(email)
    matches = [
        view for view in conversations.values()
        if any(normalize_email(m.email) == wanted for m in view.messages if m.sender == SenderRole.VISITOR)
    ]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(f"{len(matches)} conversations share one visitor email; using the oldest")
    return min(matches, key=lambda v: (_first_seen(v), v.conversation_id)).conversation_id


class IdentityResolver:
    """Resolves and remembers the visitor's conversation identity."""

    def __init__(
        self,
        session: SessionService,
        synchronizer: ConversationSynchronizer,
        cache: LocalCache,
    ):
        self._session = session
        self._sync = synchronizer
        self._cache = cache

    async def resolve_identity(self, email: str, name: str, draft_message: str) -> str:
        """
        Resolve the conversation for a form submission and append the draft.

        Raises:
            ChatValidationError: a field is empty or the email is malformed.
            IdentityNotReady: the anonymous session has not been issued yet.
            StoreWriteError: the lookup or the append failed.
        """
        name, email, draft_message = validate_submission(name, email, draft_message)

        session = self._session.current
        if session is None:
            raise IdentityNotReady()

        conversations = await self._sync.read_all()
        conversation_id = find_conversation_for_email(conversations, email)
        if conversation_id is None:
            conversation_id = session.uid
            taken = conversations.get(conversation_id)
            if taken is not None and normalize_email(taken.email) != normalize_email(email):
                # The session id already belongs to another visitor's thread.
                conversation_id = uuid.uuid4().hex
            logger.info(f"New conversation {conversation_id} for {email}")
        else:
            logger.info(f"Resuming conversation {conversation_id} for {email}")

        await self._sync.append(
            conversation_id,
            OutgoingMessage(name=name, email=email, body=draft_message, sender=SenderRole.VISITOR),
        )
        self.remember(VisitorIdentity(conversation_id, name, email, submitted=True))
        return conversation_id

    def remember(self, identity: VisitorIdentity) -> None:
        self._cache.set(CONVERSATION_ID_KEY, identity.conversation_id)
        self._cache.set(NAME_KEY, identity.name)
        self._cache.set(EMAIL_KEY, identity.email)
        self._cache.set(SUBMITTED_KEY, "true" if identity.submitted else "false")

    def restore(self) -> Optional[VisitorIdentity]:
        conversation_id = self._cache.get(CONVERSATION_ID_KEY)
        if not conversation_id:
            return None
        return VisitorIdentity(
            conversation_id=conversation_id,
            name=self._cache.get(NAME_KEY) or "",
            email=self._cache.get(EMAIL_KEY) or "",
            submitted=self._cache.get(SUBMITTED_KEY) == "true",
        )

    def forget(self) -> None:
        for key in (CONVERSATION_ID_KEY, NAME_KEY, EMAIL_KEY, SUBMITTED_KEY, LAST_READ_KEY):
            self._cache.clear(key)
