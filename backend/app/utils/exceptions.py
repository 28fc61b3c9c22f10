"""
Custom business exceptions for chat endpoints and socket events.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Consistent error handling across REST endpoints and realtime acks
HOW: Custom exception classes with error codes and messages
"""

from typing import Optional, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class NotFoundException(BusinessException):
    """Base class for missing resources."""


class ListingNotFoundException(NotFoundException):
    """Raised when a listing does not exist."""

    def __init__(self, listing_id: str):
        super().__init__(
            message="Listing not found",
            code="LISTING_NOT_FOUND",
            details={"listing_id": listing_id}
        )


class ConversationNotFoundException(NotFoundException):
    """Raised when a conversation does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(
            message="Conversation not found",
            code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id}
        )


class ForbiddenException(BusinessException):
    """Raised when the actor may not perform the action."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message=message, code="FORBIDDEN", details=details)


class AuthenticationException(BusinessException):
    """Raised when a bearer credential is missing, malformed or expired."""

    def __init__(self, message: str = "Invalid or missing credentials"):
        super().__init__(message=message, code="UNAUTHORIZED")
