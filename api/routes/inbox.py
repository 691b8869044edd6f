"""
Operator inbox routes.

Every route requires the operator's bearer token; anyone else is refused
before any conversation data is read.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.middleware.auth import get_current_operator
from api.middleware.metrics import record_message_appended, record_read_updates
from api.routes.chat import MessageOut
from api.services import get_services
from chat.errors import ChatValidationError
from chat.inbox import OPERATOR_DISPLAY_NAME, summarize_conversations
from chat.models import ConversationView, OutgoingMessage, RoleFlags, SenderRole
from chat.read_state import find_first_unread

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/inbox",
    tags=["inbox"],
    dependencies=[Depends(get_current_operator)],
)


class ConversationSummaryOut(BaseModel):
    conversation_id: str
    name: str
    email: str
    unread_count: int
    has_unread: bool
    online: bool
    visitor_typing: bool
    last_message: Optional[MessageOut] = None
    last_active_at: int


class InboxConversationResponse(BaseModel):
    conversation_id: str
    name: str
    email: str
    messages: List[MessageOut]
    first_unread_id: Optional[str] = None
    visitor_typing: bool = False
    visitor_online: bool = False


class ReadResponse(BaseModel):
    conversation_id: str
    acknowledged: int
    unread_count: int


class ReplyRequest(BaseModel):
    message: str


class ReplyResponse(BaseModel):
    id: str
    conversation_id: str


def _require_view(conversation_id: str) -> ConversationView:
    view = get_services().synchronizer.latest(conversation_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return view


@router.get("/conversations", response_model=List[ConversationSummaryOut])
async def list_conversations(search: str = Query("", max_length=200)):
    """List conversations, most recently active first, filtered by display name."""
    services = get_services()
    summaries = summarize_conversations(
        services.synchronizer.conversations(), services.typing, services.online, search
    )
    return [
        ConversationSummaryOut(
            conversation_id=s.conversation_id,
            name=s.name,
            email=s.email,
            unread_count=s.unread_count,
            has_unread=s.has_unread,
            online=s.online,
            visitor_typing=s.visitor_typing,
            last_message=MessageOut.from_message(s.last_message) if s.last_message else None,
            last_active_at=s.last_active_at,
        )
        for s in summaries
    ]


@router.get("/{conversation_id}/messages", response_model=InboxConversationResponse)
async def get_conversation(conversation_id: str):
    """Full conversation with the jump-to-first-unread target."""
    services = get_services()
    view = _require_view(conversation_id)
    first_unread = find_first_unread(view.messages)
    return InboxConversationResponse(
        conversation_id=conversation_id,
        name=view.name,
        email=view.email,
        messages=[MessageOut.from_message(m) for m in view.messages],
        first_unread_id=first_unread.message_id if first_unread else None,
        visitor_typing=services.typing.get(conversation_id, RoleFlags()).visitor,
        visitor_online=services.online.get(conversation_id, RoleFlags()).visitor,
    )


@router.post("/{conversation_id}/read", response_model=ReadResponse)
async def mark_read(conversation_id: str):
    """Flag every unread visitor message of the conversation as read."""
    services = get_services()
    _require_view(conversation_id)
    acknowledged = await services.read_state.mark_read(conversation_id)
    record_read_updates(acknowledged)
    return ReadResponse(
        conversation_id=conversation_id,
        acknowledged=acknowledged,
        unread_count=services.read_state.unread_count(conversation_id),
    )


@router.post("/{conversation_id}/reply", response_model=ReplyResponse)
async def reply(conversation_id: str, request: ReplyRequest, operator=Depends(get_current_operator)):
    """Append an operator reply; operator replies are stored as already read."""
    services = get_services()
    _require_view(conversation_id)

    text = request.message.strip()
    if not text:
        raise ChatValidationError("Please enter a message.", field="message")

    message_id = await services.synchronizer.append(
        conversation_id,
        OutgoingMessage(
            name=OPERATOR_DISPLAY_NAME,
            email=operator.get("email") or services.settings.operator_email_normalized,
            body=text,
            sender=SenderRole.OPERATOR,
            read=True,
        ),
    )
    record_message_appended(SenderRole.OPERATOR.value)
    return ReplyResponse(id=message_id, conversation_id=conversation_id)


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(conversation_id: str, message_id: str):
    """Remove a single message; the conversation view is recomputed from the log."""
    services = get_services()
    view = _require_view(conversation_id)
    if view.find(message_id) is None:
        raise HTTPException(status_code=404, detail="Message not found")
    await services.synchronizer.delete_message(conversation_id, message_id)
    return {"deleted": True, "conversation_id": conversation_id, "message_id": message_id}
