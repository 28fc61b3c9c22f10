"""Realtime chat transport layer."""

from .connection_manager import (
    ConnectionManager,
    extract_token,
    room_for_conversation,
    room_for_user,
)

__all__ = [
    "ConnectionManager",
    "extract_token",
    "room_for_conversation",
    "room_for_user",
]
