"""
Service initialization and dependency injection for the chat API.

Creates and manages the realtime tree, the server-side conversation view
and the optional SQL archive.
"""

import logging
import secrets
from typing import Dict, Optional

from api.middleware.auth import hash_password, verify_password
from config.settings import get_settings, Settings
from chat.models import RoleFlags
from chat.presence import PresenceSignaler
from chat.read_state import ReadStateTracker
from chat.synchronizer import ConversationSynchronizer
from database import session as db_session
from database.repositories import OperatorRepository
from realtime.archive import MessageArchive
from realtime.memory import RealtimeDatabase, StoreConnection

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.database: Optional[RealtimeDatabase] = None
        self.connection: Optional[StoreConnection] = None
        self.synchronizer: Optional[ConversationSynchronizer] = None
        self.read_state: Optional[ReadStateTracker] = None
        self.presence: Optional[PresenceSignaler] = None
        self.archive: Optional[MessageArchive] = None
        self.typing: Dict[str, RoleFlags] = {}
        self.online: Dict[str, RoleFlags] = {}
        self._subscriptions = []
        self._initialized = False

    async def initialize(self):
        """Initialize all services."""
        if self._initialized:
            return

        self.settings = get_settings()
        self.database = RealtimeDatabase()
        self.typing = {}
        self.online = {}

        if db_session.is_initialized():
            await self._init_archive()

        self.connection = self.database.connect("api")
        self.synchronizer = ConversationSynchronizer(self.connection)
        self.read_state = ReadStateTracker(self.synchronizer)
        self.presence = PresenceSignaler(self.connection)
        self._subscriptions = [
            self.synchronizer.subscribe_all(lambda views: None),
            self.presence.subscribe_all_typing(self._on_typing),
            self.presence.subscribe_all_presence(self._on_presence),
        ]
        self._initialized = True
        logger.info("Chat services ready")

    async def _init_archive(self):
        """Restore archived messages and start mirroring new ones."""
        try:
            self.archive = MessageArchive(self.database.connect("archive"))
            await self.archive.restore(self.database)
            self.archive.start()
        except Exception as e:
            logger.error(f"Message archive unavailable, running memory-only: {e}")
            self.archive = None

    def _on_typing(self, flags: Dict[str, RoleFlags]):
        self.typing = flags

    def _on_presence(self, flags: Dict[str, RoleFlags]):
        self.online = flags

    async def shutdown(self):
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        if self.archive is not None:
            try:
                await self.archive.stop()
            except Exception as e:
                logger.error(f"Final archive sync failed, newest messages not archived: {e}")
            self.archive = None
        if self.connection is not None:
            self.connection.disconnect()
        self._initialized = False
        logger.info("Chat services stopped")

    async def verify_operator(self, email: str, password: str) -> Optional[str]:
        """Credential check for operator sign-in; returns the operator id."""
        settings = self.settings or get_settings()
        if email != settings.operator_email_normalized:
            return None

        if db_session.is_initialized():
            async with db_session.session_scope() as session:
                account = await OperatorRepository(session).get_by_email(email)
            if account and account.is_active and verify_password(password, account.hashed_password):
                return account.id
            return None

        # No database: fall back to the password from the environment.
        if settings.operator_password and secrets.compare_digest(password, settings.operator_password):
            return f"operator:{email}"
        return None

    async def seed_operator(self):
        """Create the operator account from settings if it does not exist yet."""
        settings = self.settings or get_settings()
        if not settings.operator_password or not db_session.is_initialized():
            return
        async with db_session.session_scope() as session:
            repo = OperatorRepository(session)
            if await repo.get_by_email(settings.operator_email_normalized):
                return
            await repo.create(
                email=settings.operator_email_normalized,
                hashed_password=hash_password(settings.operator_password),
            )
        logger.info(f"Seeded operator account {settings.operator_email_normalized}")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.synchronizer is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "realtime_connections": self.database.connection_count if self.database else 0,
            "conversations": len(self.synchronizer.conversations()) if self.synchronizer else 0,
            "archive": self.archive is not None,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


async def initialize_services():
    """Initialize all services (called at startup)."""
    await _services.initialize()
