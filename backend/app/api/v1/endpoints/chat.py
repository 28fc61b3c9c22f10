"""
Chat endpoints.

WHAT: Request/response surface of the chat core
WHY: Start conversations, list them, read history, and non-realtime fallbacks
     for sending and marking as read
HOW: FastAPI router over the conversation store; no socket fan-out here
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from ....core.config import settings
from ....core.security import get_current_user_id
from ....models.api_schemas import (
    ConversationOut,
    ConversationWithMessages,
    MarkAsReadResponse,
    MessageOut,
    PaginatedMessages,
    SendMessageRequest,
    UnreadCountResponse,
)
from ....services.chat_service import chat_service
from ....utils.exceptions import ForbiddenException
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/chat")


@router.post("/start/{listing_id}", response_model=ConversationWithMessages)
async def start_conversation(listing_id: str, user_id: str = Depends(get_current_user_id)):
    """
    Start (or resume) a conversation about a listing.

    Idempotent per (buyer, seller, listing): a second call returns the same
    conversation without a new welcome message.
    """
    logger.info(f"User {user_id} starting conversation for listing {listing_id}")
    return await run_in_threadpool(chat_service.start_conversation, user_id, listing_id)


@router.get("", response_model=List[ConversationOut])
async def get_user_conversations(user_id: str = Depends(get_current_user_id)):
    """Current user's conversations, most recent message first."""
    return await run_in_threadpool(chat_service.get_user_conversations, user_id)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(user_id: str = Depends(get_current_user_id)):
    """Unread messages addressed to the current user."""
    count = await run_in_threadpool(chat_service.get_unread_count, user_id)
    return UnreadCountResponse(unread_count=count)


@router.get("/{conversation_id}", response_model=ConversationWithMessages)
async def get_conversation(conversation_id: str, user_id: str = Depends(get_current_user_id)):
    """Conversation with its full history; only its parties may read it."""
    result = await run_in_threadpool(chat_service.get_conversation_with_messages, conversation_id)
    if user_id not in (result.conversation.buyer_id, result.conversation.seller_id):
        raise ForbiddenException(
            "Not authorized to access this conversation",
            details={"conversation_id": conversation_id}
        )
    return result


@router.get("/{conversation_id}/messages", response_model=PaginatedMessages)
async def get_messages(
    conversation_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.MESSAGES_PAGE_SIZE, ge=1, le=settings.MAX_MESSAGES_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
):
    """One page of history; page 1 holds the newest messages."""
    conversation = await run_in_threadpool(chat_service.get_conversation_by_id, conversation_id)
    if user_id not in (conversation.buyer_id, conversation.seller_id):
        raise ForbiddenException(
            "Not authorized to access this conversation",
            details={"conversation_id": conversation_id}
        )
    return await run_in_threadpool(chat_service.get_messages, conversation_id, page, limit)


@router.post("/{conversation_id}/messages", response_model=MessageOut)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Send a message without realtime fan-out."""
    return await run_in_threadpool(
        chat_service.send_message, user_id, conversation_id, request.content, request.type
    )


@router.post("/{conversation_id}/read", response_model=MarkAsReadResponse)
async def mark_as_read(conversation_id: str, user_id: str = Depends(get_current_user_id)):
    """Mark the other party's messages as read."""
    updated = await run_in_threadpool(chat_service.mark_messages_as_read, conversation_id, user_id)
    logger.debug(f"User {user_id} read {updated} messages in {conversation_id}")
    return MarkAsReadResponse()
