"""
Socket.IO gateway for the chat namespace.

WHAT: Wire socket.io connect/disconnect and chat events to the chat core
WHY: One place owns the transport registration and the connection registry
HOW: python-socketio AsyncServer in ASGI mode; handlers registered from the
     router's dispatch table

Client convention:
- URL base: ws://<host>:8000, path `/socket.io`, namespace `/chat`
- Auth: `query.token`, `auth.token` or `Authorization: Bearer` header
"""

from typing import Any

import socketio

from ..core.config import settings
from ..services.chat_service import ChatService, chat_service
from ..services.message_router import MessageRouter
from .connection_manager import ConnectionManager
from ..utils.logger import get_logger

logger = get_logger(__name__)


def create_socket_server() -> socketio.AsyncServer:
    """Build the process-wide socket.io server."""
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=settings.get_cors_origins_list(),
        logger=False,
        engineio_logger=False,
    )


class ChatGateway:
    """
    Chat namespace on a socket.io server.

    Constructed once per process; `shutdown()` releases the registry.
    """

    def __init__(self, sio: socketio.AsyncServer, store: ChatService = chat_service, namespace: str | None = None):
        self.sio = sio
        self.namespace = namespace or settings.CHAT_NAMESPACE
        self.connections = ConnectionManager(sio, store, self.namespace)
        self.router = MessageRouter(sio, self.connections, store, self.namespace)
        self._register()

    def _register(self):
        self.sio.on("connect", self.connections.connect, namespace=self.namespace)
        self.sio.on("disconnect", self.connections.disconnect, namespace=self.namespace)
        for event in self.router.handlers:
            self.sio.on(event, self._make_handler(event), namespace=self.namespace)
        logger.info(f"Chat gateway registered on namespace {self.namespace}: {sorted(self.router.handlers)}")

    def _make_handler(self, event: str):
        async def handler(sid: str, data: Any = None):
            return await self.router.dispatch(event, sid, data)

        handler.__name__ = f"on_{event}"
        return handler

    def stats(self) -> dict:
        return {
            "online_users": self.connections.online_user_count(),
            "connections": self.connections.connection_count(),
        }

    def shutdown(self):
        """Forget all connections; clients reconnect to a fresh process."""
        logger.info(f"Chat gateway shutting down ({self.connections.connection_count()} connections)")
        self.connections.clear()
