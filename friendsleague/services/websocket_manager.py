"""
WebSocket connection manager for real-time chat, presence and notifications.

Tracks active WebSocket connections per user and chat-room membership per
connection, and provides methods to push events to users or chat rooms.
Every frame is a JSON object: {"event": <name>, "data": {...}}.
"""

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional, Set
from datetime import datetime, timedelta
from fastapi import WebSocket

from friendsleague.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Timeout for WebSocket connections (60 seconds of inactivity)
WEBSOCKET_TIMEOUT_SECONDS = 60


def build_event(event: str, data: Optional[dict] = None) -> dict:
    """Build an outgoing frame."""
    return {"event": event, "data": data or {}}


class WebSocketManager:
    """Manages WebSocket connections, chat rooms and event delivery."""

    def __init__(self):
        """Initialize the WebSocket manager."""
        # user_id -> set of active WebSocket connections
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        # WebSocket -> last activity timestamp
        self.connection_timestamps: Dict[WebSocket, datetime] = {}
        # WebSocket -> owning user_id
        self.connection_users: Dict[WebSocket, int] = {}
        # chat_id -> set of WebSocket connections that joined the chat room
        self.chat_rooms: Dict[int, Set[WebSocket]] = {}
        # Lock for safe access to the dicts above
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket: WebSocket) -> bool:
        """
        Register a WebSocket connection for a user.

        Args:
            user_id: ID of the user
            websocket: WebSocket connection object

        Returns:
            True if this is the user's first active connection
        """
        async with self._lock:
            first = user_id not in self.active_connections
            if first:
                self.active_connections[user_id] = set()
            self.active_connections[user_id].add(websocket)
            self.connection_users[websocket] = user_id
            self.connection_timestamps[websocket] = utcnow()
            logger.info(f"WebSocket connected for user {user_id} (total connections: {len(self.active_connections[user_id])})")
            return first

    async def disconnect(self, user_id: int, websocket: WebSocket) -> bool:
        """
        Remove a WebSocket connection for a user and drop it from all chat rooms.

        Args:
            user_id: ID of the user
            websocket: WebSocket connection object

        Returns:
            True if the user has no remaining connections
        """
        async with self._lock:
            was_known = websocket in self.connection_users
            if user_id in self.active_connections:
                self.active_connections[user_id].discard(websocket)
                if not self.active_connections[user_id]:
                    del self.active_connections[user_id]
            self.connection_timestamps.pop(websocket, None)
            self.connection_users.pop(websocket, None)
            for chat_id in list(self.chat_rooms):
                self.chat_rooms[chat_id].discard(websocket)
                if not self.chat_rooms[chat_id]:
                    del self.chat_rooms[chat_id]
            logger.info(f"WebSocket disconnected for user {user_id}")
            return was_known and user_id not in self.active_connections

    async def join_chat(self, chat_id: int, websocket: WebSocket):
        async with self._lock:
            self.chat_rooms.setdefault(chat_id, set()).add(websocket)

    async def leave_chat(self, chat_id: int, websocket: WebSocket):
        async with self._lock:
            if chat_id in self.chat_rooms:
                self.chat_rooms[chat_id].discard(websocket)
                if not self.chat_rooms[chat_id]:
                    del self.chat_rooms[chat_id]

    async def _send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(message, default=str))
            return True
        except Exception as e:
            user_id = self.connection_users.get(websocket)
            logger.warning(f"Error sending WebSocket message to user {user_id}: {e}")
            return False

    async def _drop_dead(self, websockets: List[WebSocket]):
        for websocket in websockets:
            user_id = self.connection_users.get(websocket)
            if user_id is not None:
                await self.disconnect(user_id, websocket)

    async def send_to_user(self, user_id: int, message: dict) -> bool:
        """
        Send a message to all active WebSocket connections for a user.

        Args:
            user_id: ID of the user
            message: Message dict to send (will be serialized to JSON)

        Returns:
            True if message was sent to at least one connection, False otherwise
        """
        async with self._lock:
            if user_id not in self.active_connections:
                return False
            connections = self.active_connections[user_id].copy()

        # Send outside the lock
        sent = False
        dead = []
        for websocket in connections:
            if await self._send(websocket, message):
                sent = True
            else:
                dead.append(websocket)

        await self._drop_dead(dead)
        return sent

    async def send_to_users(self, user_ids: Iterable[int], message: dict) -> int:
        """Send a message to several users. Returns how many users received it."""
        delivered = 0
        for user_id in set(user_ids):
            if await self.send_to_user(user_id, message):
                delivered += 1
        return delivered

    async def send_to_chat(
        self, chat_id: int, message: dict, exclude: Optional[WebSocket] = None
    ) -> int:
        """
        Send a message to every connection that joined a chat room.

        Args:
            chat_id: Chat room
            message: Message dict to send
            exclude: Connection to skip (usually the sender's)

        Returns:
            Number of connections the message was delivered to
        """
        async with self._lock:
            connections = self.chat_rooms.get(chat_id, set()).copy()

        delivered = 0
        dead = []
        for websocket in connections:
            if websocket is exclude:
                continue
            if await self._send(websocket, message):
                delivered += 1
            else:
                dead.append(websocket)

        await self._drop_dead(dead)
        return delivered

    async def send_to_chat_members(
        self, chat_id: int, user_ids: Iterable[int], message: dict
    ) -> int:
        """
        Send a message to a chat room and to the personal connections of the
        given users, delivering at most once per connection.

        Returns:
            Number of connections the message was delivered to
        """
        async with self._lock:
            connections = set(self.chat_rooms.get(chat_id, set()))
            for user_id in set(user_ids):
                connections |= self.active_connections.get(user_id, set())

        delivered = 0
        dead = []
        for websocket in connections:
            if await self._send(websocket, message):
                delivered += 1
            else:
                dead.append(websocket)

        await self._drop_dead(dead)
        return delivered

    async def is_user_connected(self, user_id: int) -> bool:
        async with self._lock:
            return user_id in self.active_connections

    async def get_connection_count(self, user_id: int) -> int:
        """
        Get the number of active connections for a user.

        Args:
            user_id: ID of the user

        Returns:
            Number of active connections
        """
        async with self._lock:
            if user_id not in self.active_connections:
                return 0
            return len(self.active_connections[user_id])

    async def update_activity(self, websocket: WebSocket):
        """
        Update the last activity timestamp for a WebSocket connection.
        Called when receiving any frame from the client.
        """
        async with self._lock:
            if websocket in self.connection_timestamps:
                self.connection_timestamps[websocket] = utcnow()

    async def cleanup_stale_connections(self) -> List[int]:
        """
        Close and remove connections idle longer than WEBSOCKET_TIMEOUT_SECONDS.

        Returns:
            IDs of users left with no connections after the cleanup
        """
        timeout_threshold = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)

        async with self._lock:
            stale = [
                (websocket, self.connection_users.get(websocket))
                for websocket, last_activity in self.connection_timestamps.items()
                if last_activity < timeout_threshold
            ]

        went_offline = []
        for websocket, user_id in stale:
            try:
                await websocket.close(code=1000, reason="Connection timeout")
            except Exception as e:
                logger.debug(f"Error closing stale WebSocket: {e}")
            if user_id is None:
                continue
            if await self.disconnect(user_id, websocket):
                went_offline.append(user_id)
            logger.info(f"Cleaned up stale WebSocket connection for user {user_id}")
        return went_offline


# Global WebSocket manager instance
_websocket_manager: Optional[WebSocketManager] = None


def get_websocket_manager() -> WebSocketManager:
    """
    Get the global WebSocket manager instance.

    Returns:
        WebSocketManager instance
    """
    global _websocket_manager
    if _websocket_manager is None:
        _websocket_manager = WebSocketManager()
    return _websocket_manager


async def notify_users(user_ids: Iterable[int], event: str, data: dict) -> int:
    """
    Push an event to users' personal channels. Delivery is best effort: failures
    are logged and never propagate to the caller.
    """
    try:
        return await get_websocket_manager().send_to_users(user_ids, build_event(event, data))
    except Exception as e:
        logger.warning(f"Failed to deliver '{event}' event: {e}")
        return 0


async def notify_chat_members(chat_id: int, user_ids: Iterable[int], event: str, data: dict) -> int:
    """Push an event to a chat room and its participants' personal channels. Best effort."""
    try:
        return await get_websocket_manager().send_to_chat_members(
            chat_id, user_ids, build_event(event, data)
        )
    except Exception as e:
        logger.warning(f"Failed to deliver '{event}' event to chat {chat_id}: {e}")
        return 0
