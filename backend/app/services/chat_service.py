"""
Conversation store for buyer-seller chat.

WHAT: Durable conversation and message operations
WHY: Single place where chat state is read, authorized and written
HOW: One get_db() unit of work per call, results returned as pydantic schemas
"""

import math
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession, joinedload

from ..core.database import get_db
from ..core.models import Conversation, Listing, Message, MessageType
from ..core.config import settings
from ..models.api_schemas import (
    ConversationOut,
    ConversationWithMessages,
    MessageOut,
    PaginatedMessages,
    Pagination,
    SentMessage,
)
from ..utils.exceptions import (
    ConversationNotFoundException,
    ForbiddenException,
    ListingNotFoundException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

WELCOME_MESSAGE_TEMPLATE = "Hello! I'm interested in your listing: {title}"


def apply_typing_status(conversation: Conversation, user_id: str, is_typing: bool) -> str:
    """
    Set the typing flag belonging to user_id.

    Buyer and seller flags are independent; only the caller's flag changes.

    Returns:
        "buyer" or "seller"

    Raises:
        ForbiddenException: user_id is not a party
    """
    if user_id == conversation.buyer_id:
        conversation.is_buyer_typing = is_typing
        return "buyer"
    if user_id == conversation.seller_id:
        conversation.is_seller_typing = is_typing
        return "seller"
    raise ForbiddenException(
        "Not authorized to access this conversation",
        details={"conversation_id": conversation.id}
    )


class ChatService:
    """
    Conversation store.

    WHAT: Start conversations, send/read messages, track typing flags
    WHY: Both the REST endpoints and the realtime router go through here
    HOW: Synchronous SQLAlchemy; callers on the event loop use a threadpool
    """

    def __init__(self, db_factory: Callable = get_db):
        self._db = db_factory

    # ---------- helpers ----------

    @staticmethod
    def _conversation_query(db: DBSession):
        return db.query(Conversation).options(
            joinedload(Conversation.buyer),
            joinedload(Conversation.seller),
            joinedload(Conversation.listing),
        )

    @staticmethod
    def _load_conversation(db: DBSession, conversation_id: str) -> Conversation:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFoundException(conversation_id)
        return conversation

    @staticmethod
    def _require_party(conversation: Conversation, user_id: str, message: str):
        if not conversation.has_party(user_id):
            raise ForbiddenException(message, details={"conversation_id": conversation.id})

    def _serialize_with_messages(self, db: DBSession, conversation_id: str) -> ConversationWithMessages:
        conversation = self._conversation_query(db).filter(Conversation.id == conversation_id).first()
        if conversation is None:
            raise ConversationNotFoundException(conversation_id)

        messages = (
            db.query(Message)
            .options(joinedload(Message.sender))
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )
        return ConversationWithMessages(
            conversation=ConversationOut.model_validate(conversation),
            messages=[MessageOut.model_validate(m) for m in messages],
        )

    def _insert_message(
        self,
        db: DBSession,
        conversation: Conversation,
        sender_id: str,
        content: str,
        message_type: MessageType,
    ) -> Message:
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=content,
            type=message_type,
        )
        db.add(message)

        # Snapshot is refreshed for every message, system messages included
        conversation.last_message = content
        conversation.last_message_at = datetime.utcnow()
        db.flush()
        return message

    # ---------- operations ----------

    def start_conversation(self, initiator_id: str, listing_id: str) -> ConversationWithMessages:
        """
        Find or create the conversation between initiator and the listing's seller.

        Args:
            initiator_id: Prospective buyer
            listing_id: Listing being asked about

        Returns:
            Conversation with full history (oldest first)

        Raises:
            ListingNotFoundException: Listing does not exist
            ForbiddenException: Initiator is the listing's seller
        """
        with self._db() as db:
            listing = db.get(Listing, listing_id)
            if listing is None:
                raise ListingNotFoundException(listing_id)

            seller_id = listing.seller_id
            title = listing.title
            if seller_id == initiator_id:
                raise ForbiddenException("Cannot start a conversation with yourself")

            triple = {"buyer_id": initiator_id, "seller_id": seller_id, "listing_id": listing_id}
            conversation = db.query(Conversation).filter_by(**triple).first()

            if conversation is None:
                conversation = Conversation(**triple)
                db.add(conversation)
                try:
                    db.flush()
                except IntegrityError:
                    # Another request created the same triple first
                    db.rollback()
                    logger.info(f"Conversation for listing {listing_id} created concurrently, reusing it")
                    conversation = db.query(Conversation).filter_by(**triple).one()
                else:
                    self._insert_message(
                        db,
                        conversation,
                        sender_id=seller_id,
                        content=WELCOME_MESSAGE_TEMPLATE.format(title=title),
                        message_type=MessageType.SYSTEM,
                    )
                    logger.info(f"Created conversation {conversation.id} for listing {listing_id}")

            return self._serialize_with_messages(db, conversation.id)

    def send_message(
        self,
        sender_id: str,
        conversation_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageOut:
        """
        Persist a message and refresh the conversation's last-message snapshot.

        Raises:
            ConversationNotFoundException: Conversation does not exist
            ForbiddenException: Sender is neither buyer nor seller
        """
        with self._db() as db:
            return self._send(db, sender_id, conversation_id, content, message_type)

    def send_message_with_conversation(
        self,
        sender_id: str,
        conversation_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> SentMessage:
        """
        Same as send_message, also returning the refreshed conversation.

        Both are read in the unit of work that stored the message, so a caller
        that has them can broadcast without another round trip.
        """
        with self._db() as db:
            message = self._send(db, sender_id, conversation_id, content, message_type)
            return SentMessage(message=message, conversation=self._get_conversation(db, conversation_id))

    def _send(
        self,
        db: DBSession,
        sender_id: str,
        conversation_id: str,
        content: str,
        message_type: MessageType,
    ) -> MessageOut:
        conversation = self._load_conversation(db, conversation_id)
        self._require_party(conversation, sender_id, "Not authorized to send messages in this conversation")

        message = self._insert_message(db, conversation, sender_id, content, message_type)
        saved = (
            db.query(Message)
            .options(joinedload(Message.sender))
            .filter(Message.id == message.id)
            .one()
        )
        return MessageOut.model_validate(saved)

    def update_typing_status(self, conversation_id: str, user_id: str, is_typing: bool) -> ConversationOut:
        """
        Persist the caller's typing flag.

        Raises:
            ConversationNotFoundException: Conversation does not exist
            ForbiddenException: Caller is not a party
        """
        with self._db() as db:
            conversation = self._load_conversation(db, conversation_id)
            party = apply_typing_status(conversation, user_id, is_typing)
            db.flush()
            logger.debug(f"{party} typing={is_typing} in conversation {conversation_id}")
            return self._get_conversation(db, conversation_id)

    def mark_messages_as_read(self, conversation_id: str, user_id: str) -> int:
        """
        Mark the other party's unread messages as read.

        Returns:
            Number of messages whose read flag changed

        Raises:
            ConversationNotFoundException: Conversation does not exist
            ForbiddenException: Caller is not a party
        """
        with self._db() as db:
            conversation = self._load_conversation(db, conversation_id)
            self._require_party(conversation, user_id, "Not authorized to access this conversation")

            updated = (
                db.query(Message)
                .filter(
                    Message.conversation_id == conversation_id,
                    Message.sender_id == conversation.other_party(user_id),
                    Message.is_read.is_(False),
                )
                .update({Message.is_read: True}, synchronize_session=False)
            )
            return updated

    def get_user_conversations(self, user_id: str) -> List[ConversationOut]:
        """Conversations where user is buyer or seller, most recent message first."""
        with self._db() as db:
            conversations = (
                self._conversation_query(db)
                .filter(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))
                .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
                .all()
            )
            return [ConversationOut.model_validate(c) for c in conversations]

    def get_conversation_with_messages(self, conversation_id: str) -> ConversationWithMessages:
        """
        One conversation plus its messages, oldest first.

        Raises:
            ConversationNotFoundException: Conversation does not exist
        """
        with self._db() as db:
            return self._serialize_with_messages(db, conversation_id)

    def _get_conversation(self, db: DBSession, conversation_id: str) -> ConversationOut:
        conversation = self._conversation_query(db).filter(Conversation.id == conversation_id).first()
        if conversation is None:
            raise ConversationNotFoundException(conversation_id)
        return ConversationOut.model_validate(conversation)

    def get_conversation_by_id(self, conversation_id: str) -> ConversationOut:
        """Conversation summary without messages."""
        with self._db() as db:
            return self._get_conversation(db, conversation_id)

    def get_unread_count(self, user_id: str) -> int:
        """Unread messages addressed to user across all their conversations."""
        with self._db() as db:
            conversation_ids = select(Conversation.id).where(
                or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id)
            )
            return (
                db.query(func.count(Message.id))
                .filter(
                    Message.conversation_id.in_(conversation_ids),
                    Message.sender_id != user_id,
                    Message.is_read.is_(False),
                )
                .scalar()
            ) or 0

    def get_messages(
        self,
        conversation_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PaginatedMessages:
        """
        Page through a conversation's history.

        Page 1 holds the newest messages; each page is returned oldest first.

        Raises:
            ConversationNotFoundException: Conversation does not exist
        """
        limit = limit or settings.MESSAGES_PAGE_SIZE
        with self._db() as db:
            self._load_conversation(db, conversation_id)

            base = db.query(Message).filter(Message.conversation_id == conversation_id)
            total = base.count()
            rows = (
                base.options(joinedload(Message.sender))
                .order_by(Message.created_at.desc(), Message.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            rows.reverse()

            total_pages = math.ceil(total / limit) if total else 0
            return PaginatedMessages(
                messages=[MessageOut.model_validate(m) for m in rows],
                pagination=Pagination(
                    page=page,
                    limit=limit,
                    total=total,
                    total_pages=total_pages,
                    has_more=page < total_pages,
                ),
            )


# Process-wide store bound to the application database
chat_service = ChatService()
