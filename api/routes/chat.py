"""
Visitor chat routes.

Intake-form identification, conversation history and visitor messages.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.middleware.auth import create_visitor_token
from api.middleware.metrics import record_message_appended
from api.services import get_services
from chat.errors import ChatValidationError
from chat.identity import IdentityResolver
from chat.inbox import OPERATOR_DISPLAY_NAME
from chat.local_cache import MemoryLocalCache
from chat.models import Message, OutgoingMessage, RoleFlags, SenderRole
from chat.session import SessionIdentity, SessionService
from config.settings import get_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    name: str
    email: str
    message: str
    created_at: int
    sender: str
    read: bool

    @classmethod
    def from_message(cls, message: Message) -> "MessageOut":
        return cls(
            id=message.message_id,
            conversation_id=message.conversation_id,
            name=message.name,
            email=message.email,
            message=message.body,
            created_at=message.created_at,
            sender=message.sender.value,
            read=message.read,
        )


class IdentifyRequest(BaseModel):
    session_id: Optional[str] = None
    name: str = ""
    email: str = ""
    message: str = ""


class IdentifyResponse(BaseModel):
    conversation_id: str
    name: str
    email: str
    submitted: bool = True
    token: str


class ConversationResponse(BaseModel):
    conversation_id: str
    messages: List[MessageOut]
    operator_typing: bool = False
    operator_online: bool = False


class SendMessageRequest(BaseModel):
    message: str


class SendMessageResponse(BaseModel):
    id: str
    conversation_id: str


@router.get("/config")
async def get_chat_config():
    """Client-side widget settings."""
    settings = get_settings()
    return {
        "typing_timeout_seconds": settings.typing_timeout_seconds,
        "operator_display_name": OPERATOR_DISPLAY_NAME,
    }


@router.post("/identify", response_model=IdentifyResponse)
async def identify(request: IdentifyRequest):
    """
    Resolve the visitor's conversation from the intake form and append
    the drafted first message.

    A visitor who already wrote in with the same email gets their earlier
    conversation back.
    """
    services = get_services()
    session = SessionService()
    session.restore(SessionIdentity(uid=request.session_id) if request.session_id else None)

    cache = MemoryLocalCache()
    resolver = IdentityResolver(session, services.synchronizer, cache)
    conversation_id = await resolver.resolve_identity(request.email, request.name, request.message)
    record_message_appended(SenderRole.VISITOR.value)

    identity = resolver.restore()
    token, _ = create_visitor_token(conversation_id)
    return IdentifyResponse(
        conversation_id=conversation_id,
        name=identity.name,
        email=identity.email,
        submitted=identity.submitted,
        token=token,
    )


@router.get("/{conversation_id}/messages", response_model=ConversationResponse)
async def get_conversation(conversation_id: str):
    """Get the ordered messages of a conversation plus operator activity."""
    services = get_services()
    view = services.synchronizer.latest(conversation_id)
    typing = services.typing.get(conversation_id, RoleFlags())
    online = services.online.get(conversation_id, RoleFlags())
    return ConversationResponse(
        conversation_id=conversation_id,
        messages=[MessageOut.from_message(m) for m in view.messages] if view else [],
        operator_typing=typing.operator,
        operator_online=online.operator,
    )


@router.post("/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_message(conversation_id: str, request: SendMessageRequest):
    """Append a visitor message to an identified conversation."""
    services = get_services()
    view = services.synchronizer.latest(conversation_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    text = request.message.strip()
    if not text:
        raise ChatValidationError("Please enter a message.", field="message")

    message_id = await services.synchronizer.append(
        conversation_id,
        OutgoingMessage(name=view.name, email=view.email, body=text, sender=SenderRole.VISITOR),
    )
    record_message_appended(SenderRole.VISITOR.value)
    return SendMessageResponse(id=message_id, conversation_id=conversation_id)
