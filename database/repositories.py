"""
Repository classes for the chat service data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ArchivedMessage, OperatorAccount

logger = logging.getLogger(__name__)


class MessageArchiveRepository:
    """Data access for archived message records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_tree(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Every archived record as ``{conversation_id: {message_id: record}}``."""
        result = await self.session.execute(
            select(ArchivedMessage).order_by(ArchivedMessage.created_at.asc())
        )
        tree: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for row in result.scalars().all():
            tree.setdefault(row.conversation_id, {})[row.message_id] = row.to_record()
        return tree

    async def keys(self) -> Set[Tuple[str, str]]:
        result = await self.session.execute(
            select(ArchivedMessage.conversation_id, ArchivedMessage.message_id)
        )
        return {(row.conversation_id, row.message_id) for row in result}

    async def upsert(self, conversation_id: str, message_id: str, record: Dict[str, Any]) -> ArchivedMessage:
        row = await self.session.get(ArchivedMessage, (conversation_id, message_id))
        if row is None:
            row = ArchivedMessage(conversation_id=conversation_id, message_id=message_id)
            self.session.add(row)
        row.name = record.get("name") or ""
        row.email = record.get("email") or ""
        row.body = record.get("message") or ""
        row.created_at = int(record.get("createdAt") or 0)
        row.sender = record.get("sender") or "visitor"
        row.read = record.get("read") is True
        await self.session.flush()
        return row

    async def delete_many(self, keys: Set[Tuple[str, str]]) -> int:
        if not keys:
            return 0
        by_conversation: Dict[str, List[str]] = {}
        for conversation_id, message_id in keys:
            by_conversation.setdefault(conversation_id, []).append(message_id)
        removed = 0
        for conversation_id, message_ids in by_conversation.items():
            result = await self.session.execute(
                delete(ArchivedMessage).where(
                    ArchivedMessage.conversation_id == conversation_id,
                    ArchivedMessage.message_id.in_(message_ids),
                )
            )
            removed += result.rowcount or 0
        await self.session.flush()
        return removed

    async def count(self) -> int:
        return len(await self.keys())

    async def get_conversation(self, conversation_id: str) -> List[ArchivedMessage]:
        result = await self.session.execute(
            select(ArchivedMessage)
            .where(ArchivedMessage.conversation_id == conversation_id)
            .order_by(ArchivedMessage.created_at.asc(), ArchivedMessage.message_id.asc())
        )
        return list(result.scalars().all())


class OperatorRepository:
    """Data access for operator accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> OperatorAccount:
        account = OperatorAccount(**kwargs)
        self.session.add(account)
        await self.session.flush()
        return account

    async def get_by_email(self, email: str) -> Optional[OperatorAccount]:
        result = await self.session.execute(
            select(OperatorAccount).where(OperatorAccount.email == email.strip().lower())
        )
        return result.scalar_one_or_none()
