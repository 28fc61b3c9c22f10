"""
Message routing for realtime chat events.

WHAT: Validate, persist and fan out every inbound chat action
WHY: Keep the socket surface auditable and testable without a live server
HOW: Dispatch table of event name -> handler; each handler authorizes and
     writes through the conversation store, then broadcasts to rooms
"""

from typing import Any, Awaitable, Callable, Dict

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..models.api_schemas import MarkAsReadPayload, SendMessagePayload, TypingPayload
from ..realtime.connection_manager import ConnectionManager, room_for_conversation, room_for_user
from .chat_service import ChatService
from ..utils.exceptions import BusinessException
from ..utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[str, str, Any], Awaitable[Dict[str, Any]]]


def _failure(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error}


class MessageRouter:
    """
    Route inbound chat events for authenticated sockets.

    Persistence always completes before any broadcast. Failures are returned
    to the emitting socket as `{"success": False, "error": ...}` and are
    never broadcast.
    """

    def __init__(self, transport, connections: ConnectionManager, store: ChatService, namespace: str):
        self.transport = transport
        self.connections = connections
        self.store = store
        self.namespace = namespace
        self.handlers: Dict[str, Handler] = {
            "sendMessage": self.handle_send_message,
            "typing": self.handle_typing,
            "markAsRead": self.handle_mark_as_read,
            "joinConversation": self.handle_join_conversation,
        }

    async def dispatch(self, event: str, sid: str, data: Any = None) -> Dict[str, Any]:
        """
        Run the handler for event and return the acknowledgement.

        Args:
            event: Socket event name
            sid: Emitting socket
            data: Raw event payload

        Returns:
            Ack dict for the emitting socket only
        """
        handler = self.handlers.get(event)
        if handler is None:
            return _failure(f"Unknown event: {event}")

        user_id = self.connections.user_for(sid)
        if user_id is None:
            logger.warning(f"Event {event} from unauthenticated socket {sid}")
            return _failure("Not authenticated")

        try:
            return await handler(sid, user_id, data)
        except ValidationError as exc:
            logger.info(f"Invalid {event} payload from user {user_id}: {exc.error_count()} errors")
            return _failure("Invalid payload")
        except BusinessException as exc:
            logger.info(f"{event} rejected for user {user_id}: {exc.code} - {exc.message}")
            return _failure(exc.message)
        except SQLAlchemyError as exc:
            logger.error(f"{event} failed to persist for user {user_id}: {exc}", exc_info=True)
            return _failure("Failed to save chat action")

    async def _emit(self, event: str, payload: Dict[str, Any], room: str, skip_sid: str | None = None):
        await self.transport.emit(event, payload, room=room, skip_sid=skip_sid, namespace=self.namespace)

    async def handle_send_message(self, sid: str, user_id: str, data: Any) -> Dict[str, Any]:
        """
        Persist a text message, then notify the room and both parties.

        Clients cannot choose the message type here; it is always text.
        """
        payload = SendMessagePayload.model_validate(data)

        sent = await run_in_threadpool(
            self.store.send_message_with_conversation, user_id, payload.conversation_id, payload.content
        )
        message_wire = sent.message.to_wire()
        conversation = sent.conversation
        await self._emit(
            "newMessage",
            {"conversationId": payload.conversation_id, "message": message_wire},
            room=room_for_conversation(payload.conversation_id),
        )

        update = {"conversation": conversation.to_wire()}
        for party_id in (conversation.buyer_id, conversation.seller_id):
            await self._emit("conversationUpdated", update, room=room_for_user(party_id))

        return {"success": True, "message": message_wire}

    async def handle_typing(self, sid: str, user_id: str, data: Any) -> Dict[str, Any]:
        """Persist the caller's typing flag and tell everyone else in the room."""
        payload = TypingPayload.model_validate(data)

        await run_in_threadpool(
            self.store.update_typing_status, payload.conversation_id, user_id, payload.is_typing
        )
        await self._emit(
            "userTyping",
            {
                "conversationId": payload.conversation_id,
                "userId": user_id,
                "isTyping": payload.is_typing,
            },
            room=room_for_conversation(payload.conversation_id),
            skip_sid=sid,
        )
        return {"success": True}

    async def handle_mark_as_read(self, sid: str, user_id: str, data: Any) -> Dict[str, Any]:
        """Mark the other party's messages read and notify only that party."""
        payload = MarkAsReadPayload.model_validate(data)

        await run_in_threadpool(self.store.mark_messages_as_read, payload.conversation_id, user_id)
        conversation = await run_in_threadpool(self.store.get_conversation_by_id, payload.conversation_id)

        other_id = conversation.seller_id if user_id == conversation.buyer_id else conversation.buyer_id
        await self._emit(
            "messagesRead",
            {"conversationId": payload.conversation_id, "readBy": user_id},
            room=room_for_user(other_id),
        )
        return {"success": True}

    async def handle_join_conversation(self, sid: str, user_id: str, data: Any) -> Dict[str, Any]:
        """
        Subscribe the socket to a conversation room.

        Not an authorization grant: membership is checked by every mutating
        action, not here.
        """
        if not isinstance(data, str) or not data:
            return _failure("Invalid payload")

        await self.transport.enter_room(sid, room_for_conversation(data), namespace=self.namespace)
        logger.debug(f"Socket {sid} of user {user_id} joined conversation {data}")
        return {"success": True}
