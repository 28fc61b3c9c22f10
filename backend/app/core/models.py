"""
ORM models for chat persistence.

WHAT: SQLAlchemy models for users, listings, conversations and messages
WHY: Conversations and messages must survive restarts; users and listings
     are owned by the wider marketplace and only modelled as far as chat needs
HOW: Declarative models with uniqueness constraints, relationships, and indexes
"""

from datetime import datetime
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text,
    ForeignKey, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from .database import Base


class MessageType(str, enum.Enum):
    """Closed set of message kinds."""
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


class User(Base):
    """
    User table - marketplace account, minimal projection.

    Profiles, roles and credentials live in the user service; chat only
    needs identity and display name.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class Listing(Base):
    """
    Listing table - car listing, minimal projection.

    WHAT: The listing a conversation is about
    WHY: Resolve the seller for a new conversation and render list views
    HOW: Foreign key to the seller's user row
    """
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    seller = relationship("User")

    def __repr__(self):
        return f"<Listing(id={self.id}, title={self.title})>"


class Conversation(Base):
    """
    Conversation table - one per (buyer, seller, listing) triple.

    WHAT: Chat thread between a prospective buyer and a listing's seller
    WHY: Anchor messages and the denormalized last-message snapshot
    HOW: UNIQUE constraint on the triple; two independent typing flags
    """
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime, nullable=True)
    is_buyer_typing = Column(Boolean, nullable=False, default=False)
    is_seller_typing = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    buyer = relationship("User", foreign_keys=[buyer_id])
    seller = relationship("User", foreign_keys=[seller_id])
    listing = relationship("Listing")
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("buyer_id", "seller_id", "listing_id", name="unique_buyer_seller_listing"),
        Index("idx_conversation_buyer", "buyer_id"),
        Index("idx_conversation_seller", "seller_id"),
    )

    def has_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def other_party(self, user_id: str) -> str:
        """Return the id of the party that is not user_id."""
        return self.seller_id if user_id == self.buyer_id else self.buyer_id

    def __repr__(self):
        return f"<Conversation(id={self.id}, buyer={self.buyer_id}, seller={self.seller_id})>"


class Message(Base):
    """
    Message table - chat history.

    WHAT: Individual messages within a conversation
    WHY: Durable history with read receipts
    HOW: Integer id keeps insertion order, message_id is the public id
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid4()))
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(SQLEnum(MessageType), nullable=False, default=MessageType.TEXT)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")

    # Indexes
    __table_args__ = (
        Index("idx_message_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message(id={self.message_id}, sender={self.sender_id}, type={self.type})>"
