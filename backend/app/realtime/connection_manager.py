"""
Connection manager for the chat namespace.

WHAT: Authenticate sockets and track which sockets belong to which user
WHY: Fan-out targets rooms; rooms must be joined per authenticated user
HOW: Verify the bearer token at connect, keep user_id -> {sid} in memory,
     join the personal room and one room per existing conversation
"""

from collections import defaultdict
from typing import Any, Callable, Dict, Optional, Set
from urllib.parse import parse_qs

import socketio
from fastapi.concurrency import run_in_threadpool

from ..core.security import decode_access_token, extract_bearer
from ..services.chat_service import ChatService
from ..utils.exceptions import AuthenticationException
from ..utils.logger import get_logger

logger = get_logger(__name__)


def room_for_user(user_id: str) -> str:
    return f"user:{user_id}"


def room_for_conversation(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def extract_token(environ: Dict[str, Any], auth: Any | None) -> Optional[str]:
    """
    Extract the bearer token from a socket.io handshake.

    Order: `?token=` query parameter, `auth: {token}`, then the
    `Authorization: Bearer` header. Handles ASGI scopes and WSGI environs.
    """
    scope: Any = environ
    if isinstance(environ, dict) and "asgi.scope" in environ:
        inner = environ.get("asgi.scope")
        if isinstance(inner, dict):
            scope = inner

    query_string: str | bytes = ""
    if isinstance(scope, dict) and "query_string" in scope:
        query_string = scope.get("query_string", b"")
    elif isinstance(scope, dict) and "QUERY_STRING" in scope:
        query_string = scope.get("QUERY_STRING", "")

    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    if isinstance(token, str) and token:
        return token

    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return extract_bearer(auth_token) or auth_token

    if isinstance(environ, dict):
        header = environ.get("HTTP_AUTHORIZATION")
        if header is None and isinstance(scope, dict):
            for name, value in scope.get("headers", []) or []:
                if name in (b"authorization", "authorization"):
                    header = value.decode(errors="ignore") if isinstance(value, bytes) else value
                    break
        return extract_bearer(header)

    return None


class ConnectionManager:
    """
    Registry of authenticated chat connections.

    Owned by the chat gateway and constructed once per process; nothing else
    mutates it. A user may hold several sockets at once (tabs, devices).
    """

    def __init__(
        self,
        transport,
        store: ChatService,
        namespace: str,
        verify_token: Callable[[str], str] = decode_access_token,
    ):
        self.transport = transport
        self.store = store
        self.namespace = namespace
        self._verify_token = verify_token
        self._sockets_by_user: Dict[str, Set[str]] = defaultdict(set)
        self._user_by_sid: Dict[str, str] = {}

    async def connect(self, sid: str, environ: Dict[str, Any], auth: Any | None = None) -> None:
        """
        Authenticate a new socket and subscribe it to its rooms.

        Raises:
            socketio.exceptions.ConnectionRefusedError: Missing/invalid
                credential or failed setup. The reason is not disclosed to the client.
        """
        token = extract_token(environ, auth)
        if not token:
            logger.info(f"Refusing socket {sid}: no credential")
            raise socketio.exceptions.ConnectionRefusedError("unauthorized")

        try:
            user_id = self._verify_token(token)
        except AuthenticationException as exc:
            logger.info(f"Refusing socket {sid}: {exc.message}")
            raise socketio.exceptions.ConnectionRefusedError("unauthorized") from exc

        self._sockets_by_user[user_id].add(sid)
        self._user_by_sid[sid] = user_id

        try:
            await self.transport.enter_room(sid, room_for_user(user_id), namespace=self.namespace)

            # Snapshot: conversations created later need an explicit join
            conversations = await run_in_threadpool(self.store.get_user_conversations, user_id)
            for conversation in conversations:
                await self.transport.enter_room(
                    sid, room_for_conversation(conversation.id), namespace=self.namespace
                )
        except Exception as exc:
            logger.error(f"Socket {sid} setup failed for user {user_id}: {exc}", exc_info=True)
            self._forget(sid)
            raise socketio.exceptions.ConnectionRefusedError("unauthorized") from exc

        logger.info(
            f"User {user_id} connected with socket {sid} "
            f"({len(conversations)} conversations, {len(self._sockets_by_user[user_id])} sockets)"
        )

    async def disconnect(self, sid: str, reason: Any = None) -> None:
        """Drop the socket; drop the user once their last socket is gone."""
        user_id = self._forget(sid)
        if user_id is not None:
            logger.info(f"User {user_id} disconnected socket {sid} ({reason or 'closed'})")

    def _forget(self, sid: str) -> Optional[str]:
        user_id = self._user_by_sid.pop(sid, None)
        if user_id is None:
            return None
        sockets = self._sockets_by_user.get(user_id)
        if sockets is not None:
            sockets.discard(sid)
            if not sockets:
                del self._sockets_by_user[user_id]
        return user_id

    def user_for(self, sid: str) -> Optional[str]:
        return self._user_by_sid.get(sid)

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self._sockets_by_user.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sockets_by_user

    def online_user_count(self) -> int:
        return len(self._sockets_by_user)

    def connection_count(self) -> int:
        return len(self._user_by_sid)

    def clear(self) -> None:
        """Forget every connection (process shutdown)."""
        self._sockets_by_user.clear()
        self._user_by_sid.clear()
