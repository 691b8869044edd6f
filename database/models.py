"""
SQLAlchemy ORM models for the chat service.

Durable copies of the realtime message log and operator accounts.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, BigInteger, Column, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ArchivedMessage(Base):
    """Mirror of one record at ``messages/{conversation_id}/{message_id}``."""
    __tablename__ = "archived_messages"

    conversation_id = Column(String(64), primary_key=True)
    message_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    created_at = Column(BigInteger, nullable=False, default=0)  # epoch ms, as sent
    sender = Column(String(10), nullable=False)  # visitor, operator
    read = Column(Boolean, default=False)
    archived_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_archived_email", "email"),
        Index("ix_archived_conv_created", "conversation_id", "created_at"),
    )

    def to_record(self) -> dict:
        return {
            "userId": self.conversation_id,
            "name": self.name,
            "email": self.email,
            "message": self.body,
            "createdAt": self.created_at,
            "sender": self.sender,
            "read": bool(self.read),
        }


class OperatorAccount(Base):
    __tablename__ = "operator_accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
