"""
Pydantic API schemas for chat endpoints and socket payloads.

WHAT: Request, response and realtime payload models
WHY: Type-safe validation and serialization matching the marketplace client
HOW: Pydantic v2 models with camelCase aliases, read straight from ORM rows
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime

from ..core.config import settings
from ..core.models import MessageType


class CamelModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys, for socket payloads."""
        return self.model_dump(mode="json", by_alias=True)


# ========== Summaries ==========

class UserSummary(CamelModel):
    """Party as rendered in chat views."""
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None


class ListingSummary(CamelModel):
    """Listing as rendered in conversation lists."""
    id: str
    title: str
    price: float
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


# ========== Messages ==========

class MessageOut(CamelModel):
    """A stored message with its sender resolved."""
    id: str = Field(validation_alias="message_id")
    conversation_id: str
    content: str
    type: MessageType
    is_read: bool
    created_at: datetime
    sender: UserSummary


class ConversationOut(CamelModel):
    """Conversation with denormalized party and listing summaries."""
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    is_buyer_typing: bool
    is_seller_typing: bool
    created_at: datetime
    updated_at: datetime
    buyer: UserSummary
    seller: UserSummary
    listing: ListingSummary


class ConversationWithMessages(CamelModel):
    """Conversation plus its full history, oldest first."""
    conversation: ConversationOut
    messages: List[MessageOut]


class SentMessage(CamelModel):
    """A stored message with the conversation snapshot it produced."""
    message: MessageOut
    conversation: ConversationOut


class Pagination(CamelModel):
    """Pagination metadata for message pages."""
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class PaginatedMessages(CamelModel):
    """One page of a conversation's messages, oldest first within the page."""
    messages: List[MessageOut]
    pagination: Pagination


class UnreadCountResponse(CamelModel):
    unread_count: int


class MarkAsReadResponse(CamelModel):
    message: str = "Messages marked as read"


# ========== Requests ==========

class SendMessageRequest(CamelModel):
    """REST fallback for sending a message."""
    content: str = Field(..., min_length=1, max_length=settings.MAX_MESSAGE_LENGTH)
    type: MessageType = MessageType.TEXT

    @field_validator("type")
    @classmethod
    def reject_system_type(cls, v):
        """System messages are only created by the server."""
        if v == MessageType.SYSTEM:
            raise ValueError("system messages cannot be sent by clients")
        return v


# ========== Realtime payloads ==========

class SendMessagePayload(CamelModel):
    """Inbound `sendMessage` event."""
    conversation_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=settings.MAX_MESSAGE_LENGTH)


class TypingPayload(CamelModel):
    """Inbound `typing` event."""
    conversation_id: str = Field(..., min_length=1)
    is_typing: bool


class MarkAsReadPayload(CamelModel):
    """Inbound `markAsRead` event."""
    conversation_id: str = Field(..., min_length=1)
