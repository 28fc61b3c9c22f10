"""
Unit tests for the conversation store.

WHAT: Test conversation lifecycle, messaging, read receipts and typing flags
WHY: Every chat path (REST and realtime) goes through ChatService
HOW: Real SQLite schema per test, seeded seller/listing/buyers
"""

from unittest.mock import patch

import pytest
from sqlalchemy.orm import Query

from app.core.database import get_db
from app.core.models import Conversation, Message, MessageType
from app.services.chat_service import WELCOME_MESSAGE_TEMPLATE, apply_typing_status
from app.utils.exceptions import (
    ConversationNotFoundException,
    ForbiddenException,
    ListingNotFoundException,
)


def _message_count(conversation_id):
    with get_db() as db:
        return db.query(Message).filter_by(conversation_id=conversation_id).count()


@pytest.mark.unit
class TestStartConversation:
    """Test conversation creation and idempotence."""

    def test_creates_conversation_with_welcome_message(self, store, marketplace):
        """First contact creates the conversation and one system message."""
        result = store.start_conversation(marketplace["buyer"], marketplace["listing"])

        conversation = result.conversation
        assert conversation.buyer_id == marketplace["buyer"]
        assert conversation.seller_id == marketplace["seller"]
        assert conversation.listing_id == marketplace["listing"]
        assert conversation.listing.title == "2015 Toyota Corolla"

        assert len(result.messages) == 1
        welcome = result.messages[0]
        assert welcome.type == MessageType.SYSTEM
        assert welcome.sender.id == marketplace["seller"]
        assert "2015 Toyota Corolla" in welcome.content
        assert welcome.content == WELCOME_MESSAGE_TEMPLATE.format(title="2015 Toyota Corolla")
        assert conversation.last_message == welcome.content

    def test_second_call_returns_same_conversation(self, store, marketplace):
        """Starting twice for the same triple is idempotent."""
        first = store.start_conversation(marketplace["buyer"], marketplace["listing"])
        second = store.start_conversation(marketplace["buyer"], marketplace["listing"])

        assert first.conversation.id == second.conversation.id
        assert len(second.messages) == 1
        with get_db() as db:
            assert db.query(Conversation).count() == 1

    def test_different_buyers_get_different_conversations(self, store, marketplace):
        first = store.start_conversation(marketplace["buyer"], marketplace["listing"])
        second = store.start_conversation(marketplace["other_buyer"], marketplace["listing"])

        assert first.conversation.id != second.conversation.id

    def test_concurrent_start_reuses_winner(self, store, marketplace):
        """A lookup that misses a row created meanwhile falls back to the unique constraint."""
        winner = store.start_conversation(marketplace["buyer"], marketplace["listing"])

        real_first = Query.first
        missed = []

        def first_misses_once(query):
            if not missed:
                missed.append(True)
                return None
            return real_first(query)

        with patch.object(Query, "first", first_misses_once):
            loser = store.start_conversation(marketplace["buyer"], marketplace["listing"])

        assert missed == [True]
        assert loser.conversation.id == winner.conversation.id
        assert [m.type for m in loser.messages] == [MessageType.SYSTEM]
        with get_db() as db:
            assert db.query(Conversation).count() == 1
            assert db.query(Message).count() == 1

    def test_seller_cannot_start_with_self(self, store, marketplace):
        """The listing's own seller is forbidden."""
        with pytest.raises(ForbiddenException, match="yourself"):
            store.start_conversation(marketplace["seller"], marketplace["listing"])

        with get_db() as db:
            assert db.query(Conversation).count() == 0

    def test_unknown_listing(self, store, marketplace):
        with pytest.raises(ListingNotFoundException):
            store.start_conversation(marketplace["buyer"], "missing-listing")


@pytest.mark.unit
class TestSendMessage:
    """Test message persistence and authorization."""

    def test_buyer_message_updates_snapshot_and_order(self, store, marketplace):
        """Scenario: welcome message then buyer's question, oldest first."""
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        message = store.send_message(marketplace["buyer"], conversation_id, "Is this still available?")

        assert message.content == "Is this still available?"
        assert message.type == MessageType.TEXT
        assert message.is_read is False
        assert message.sender.id == marketplace["buyer"]
        assert message.sender.first_name == "Bea"

        result = store.get_conversation_with_messages(conversation_id)
        assert result.conversation.last_message == "Is this still available?"
        assert result.conversation.last_message_at is not None
        assert [m.type for m in result.messages] == [MessageType.SYSTEM, MessageType.TEXT]
        assert result.messages[1].id == message.id

    def test_seller_can_reply(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        reply = store.send_message(marketplace["seller"], conversation_id, "Yes it is")

        assert reply.sender.id == marketplace["seller"]

    def test_outsider_is_forbidden_and_nothing_persisted(self, store, marketplace):
        """A non-party sender produces no message."""
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        before = _message_count(conversation_id)

        with pytest.raises(ForbiddenException):
            store.send_message(marketplace["other_buyer"], conversation_id, "Let me in")

        assert _message_count(conversation_id) == before
        snapshot = store.get_conversation_by_id(conversation_id)
        assert snapshot.last_message != "Let me in"

    def test_unknown_conversation(self, store, marketplace):
        with pytest.raises(ConversationNotFoundException):
            store.send_message(marketplace["buyer"], "nope", "hello")

    def test_send_with_conversation_returns_refreshed_snapshot(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        sent = store.send_message_with_conversation(marketplace["seller"], conversation_id, "Yes, still for sale")

        assert sent.message.sender.id == marketplace["seller"]
        assert sent.conversation.id == conversation_id
        assert sent.conversation.last_message == "Yes, still for sale"
        assert sent.conversation.buyer.id == marketplace["buyer"]
        assert _message_count(conversation_id) == 2

    def test_send_with_conversation_outsider_persists_nothing(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        with pytest.raises(ForbiddenException):
            store.send_message_with_conversation(marketplace["other_buyer"], conversation_id, "Let me in")

        assert _message_count(conversation_id) == 1

    def test_messages_keep_insertion_order(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        for i in range(5):
            sender = marketplace["buyer"] if i % 2 == 0 else marketplace["seller"]
            store.send_message(sender, conversation_id, f"msg {i}")

        contents = [m.content for m in store.get_conversation_with_messages(conversation_id).messages]
        assert contents[1:] == [f"msg {i}" for i in range(5)]


@pytest.mark.unit
class TestMarkAsRead:
    """Test read receipts."""

    def test_scenario_seller_then_buyer_reads(self, store, marketplace):
        """Seller reading flips only the buyer's messages; buyer reading flips the seller's."""
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        store.send_message(marketplace["buyer"], conversation_id, "Is this still available?")

        updated = store.mark_messages_as_read(conversation_id, marketplace["seller"])
        assert updated == 1

        welcome, question = store.get_conversation_with_messages(conversation_id).messages
        assert question.is_read is True
        assert welcome.is_read is False

        assert store.mark_messages_as_read(conversation_id, marketplace["buyer"]) == 1
        welcome, question = store.get_conversation_with_messages(conversation_id).messages
        assert welcome.is_read is True

    def test_repeat_is_noop(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        store.send_message(marketplace["buyer"], conversation_id, "one")
        store.send_message(marketplace["buyer"], conversation_id, "two")

        assert store.mark_messages_as_read(conversation_id, marketplace["seller"]) == 2
        assert store.mark_messages_as_read(conversation_id, marketplace["seller"]) == 0

    def test_own_messages_stay_unread(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        store.send_message(marketplace["buyer"], conversation_id, "mine")

        assert store.mark_messages_as_read(conversation_id, marketplace["buyer"]) == 1  # the welcome
        messages = store.get_conversation_with_messages(conversation_id).messages
        assert messages[-1].is_read is False

    def test_outsider_forbidden(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        with pytest.raises(ForbiddenException):
            store.mark_messages_as_read(conversation_id, marketplace["other_buyer"])


@pytest.mark.unit
class TestTypingStatus:
    """Test the two independent typing flags."""

    def test_buyer_flag_does_not_touch_seller_flag(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        after = store.update_typing_status(conversation_id, marketplace["buyer"], True)

        assert after.is_buyer_typing is True
        assert after.is_seller_typing is False

    def test_seller_flag_does_not_touch_buyer_flag(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        store.update_typing_status(conversation_id, marketplace["buyer"], True)

        after = store.update_typing_status(conversation_id, marketplace["seller"], True)
        assert after.is_buyer_typing is True
        assert after.is_seller_typing is True

        after = store.update_typing_status(conversation_id, marketplace["seller"], False)
        assert after.is_buyer_typing is True
        assert after.is_seller_typing is False

    def test_outsider_forbidden(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id

        with pytest.raises(ForbiddenException):
            store.update_typing_status(conversation_id, marketplace["other_buyer"], True)

        snapshot = store.get_conversation_by_id(conversation_id)
        assert snapshot.is_buyer_typing is False
        assert snapshot.is_seller_typing is False

    def test_apply_typing_status_returns_party(self):
        conversation = Conversation(id="c1", buyer_id="b", seller_id="s", listing_id="l")
        conversation.is_buyer_typing = False
        conversation.is_seller_typing = False

        assert apply_typing_status(conversation, "s", True) == "seller"
        assert conversation.is_seller_typing is True
        assert conversation.is_buyer_typing is False

    @pytest.mark.skip(reason="Typing flags have no expiry; they clear only on an explicit isTyping=false")
    def test_typing_flag_expiry(self):
        """Placeholder documenting that no auto-expiry policy is defined."""


@pytest.mark.unit
class TestQueries:
    """Test list, unread and pagination queries."""

    def test_user_conversations_most_recent_first(self, store, marketplace):
        first = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        second = store.start_conversation(marketplace["other_buyer"], marketplace["listing"]).conversation.id
        store.send_message(marketplace["buyer"], first, "bump")

        seller_view = store.get_user_conversations(marketplace["seller"])
        assert [c.id for c in seller_view] == [first, second]
        assert seller_view[0].buyer.first_name == "Bea"
        assert seller_view[0].listing.title == "2015 Toyota Corolla"

        buyer_view = store.get_user_conversations(marketplace["buyer"])
        assert [c.id for c in buyer_view] == [first]

    def test_user_without_conversations(self, store, marketplace):
        assert store.get_user_conversations("nobody") == []

    def test_unread_count(self, store, marketplace):
        first = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        store.start_conversation(marketplace["other_buyer"], marketplace["listing"])
        store.send_message(marketplace["buyer"], first, "hi")
        store.send_message(marketplace["buyer"], first, "hello?")

        assert store.get_unread_count(marketplace["seller"]) == 2
        assert store.get_unread_count(marketplace["buyer"]) == 1  # welcome message
        assert store.get_unread_count("nobody") == 0

        store.mark_messages_as_read(first, marketplace["seller"])
        assert store.get_unread_count(marketplace["seller"]) == 0

    def test_pagination(self, store, marketplace):
        conversation_id = store.start_conversation(marketplace["buyer"], marketplace["listing"]).conversation.id
        for i in range(4):
            store.send_message(marketplace["buyer"], conversation_id, f"m{i}")

        page1 = store.get_messages(conversation_id, page=1, limit=2)
        assert [m.content for m in page1.messages] == ["m2", "m3"]
        assert page1.pagination.total == 5
        assert page1.pagination.total_pages == 3
        assert page1.pagination.has_more is True

        page3 = store.get_messages(conversation_id, page=3, limit=2)
        assert len(page3.messages) == 1
        assert page3.messages[0].type == MessageType.SYSTEM
        assert page3.pagination.has_more is False

    def test_pagination_unknown_conversation(self, store, marketplace):
        with pytest.raises(ConversationNotFoundException):
            store.get_messages("missing")
