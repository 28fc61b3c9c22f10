"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and fixtures
WHY: Isolated database, seeded marketplace data, fake socket transport
HOW: Environment set before the app is imported; tables created/dropped per test
"""

import os
import tempfile
from pathlib import Path

_TEST_DIR = Path(tempfile.mkdtemp(prefix="chat-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test_chat.db'}"
os.environ["LOG_FILE"] = str(_TEST_DIR / "logs" / "app.log")
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-length-123"

import pytest

from app.core.database import Base, engine, get_db
from app.core.models import User, Listing
from app.core.security import create_access_token
from app.services.chat_service import ChatService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "realtime: Socket event tests driven through a fake transport"
    )


class FakeTransport:
    """
    Records what a socket.io server would have done.

    Mirrors the AsyncServer methods the chat core uses, and resolves room
    membership so tests can assert which sockets received an event.
    """

    def __init__(self):
        self.rooms: dict[str, set[str]] = {}
        self.emitted: list[dict] = []

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(room, set()).discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None, callback=None):
        target = room or to
        recipients = set(self.rooms.get(target, set()))
        if skip_sid is not None:
            recipients.discard(skip_sid)
        self.emitted.append({
            "event": event,
            "data": data,
            "room": target,
            "skip_sid": skip_sid,
            "recipients": recipients,
        })

    def events(self, name):
        return [e for e in self.emitted if e["event"] == name]

    def rooms_of(self, sid):
        return {room for room, members in self.rooms.items() if sid in members}


@pytest.fixture
def db_tables():
    """
    Create a fresh schema for each test.

    WHAT: Setup and teardown test database
    WHY: Ensure test isolation
    HOW: Create all tables before and drop them after each test
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_tables):
    return ChatService()


@pytest.fixture
def marketplace(db_tables):
    """
    Seed a seller with one listing and two prospective buyers.

    Returns:
        Dict of ids: seller, buyer, other_buyer, listing
    """
    with get_db() as db:
        seller = User(id="seller-1", first_name="Sam", last_name="Seller", email="sam@example.com")
        buyer = User(id="buyer-1", first_name="Bea", last_name="Buyer", email="bea@example.com")
        other = User(id="buyer-2", first_name="Otto", last_name="Other", email="otto@example.com")
        db.add_all([seller, buyer, other])
        db.flush()
        listing = Listing(
            id="listing-1",
            seller_id=seller.id,
            title="2015 Toyota Corolla",
            price=9500.0,
            make="Toyota",
            model="Corolla",
            year=2015,
        )
        db.add(listing)

    return {
        "seller": "seller-1",
        "buyer": "buyer-1",
        "other_buyer": "buyer-2",
        "listing": "listing-1",
    }


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def auth_header():
    """Build an Authorization header for a user id."""
    def _make(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _make
