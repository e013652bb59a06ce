"""
Presence service: online/offline transitions driven by WebSocket connections.

When a user's first connection opens they are marked online and friends who
may see their status receive `user:online`; when the last one closes (or is
reaped for inactivity) they are marked offline and `user:offline` is sent.
"""

import asyncio
import logging
from typing import Optional

from friendsleague.database import db
from friendsleague.services import user_service
from friendsleague.services.websocket_manager import get_websocket_manager, notify_users

logger = logging.getLogger(__name__)

# How often the worker reaps idle WebSocket connections (seconds)
POLL_INTERVAL_SECONDS = 30


async def _set_presence(user_id: int, is_online: bool) -> None:
    async with db.AsyncSessionLocal() as session:
        try:
            user = await user_service.set_online_status(session, user_id, is_online)
            audience = await user_service.get_presence_audience(session, user_id)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    event = "user:online" if is_online else "user:offline"
    await notify_users(
        audience,
        event,
        {"user_id": user_id, "is_online": is_online, "last_seen": user["last_seen"]},
    )


async def user_connected(user_id: int) -> None:
    """Mark the user online and tell the friends allowed to see it."""
    try:
        await _set_presence(user_id, True)
    except Exception as e:
        logger.warning(f"Could not mark user {user_id} online: {e}")


async def user_disconnected(user_id: int) -> None:
    """Mark the user offline and tell the friends allowed to see it."""
    try:
        await _set_presence(user_id, False)
    except Exception as e:
        logger.warning(f"Could not mark user {user_id} offline: {e}")


class ConnectionCleanupService:
    """Background worker that closes idle WebSocket connections."""

    def __init__(self):
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background cleanup worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("WebSocket cleanup worker started")

    def stop(self) -> None:
        """Stop the background cleanup worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("WebSocket cleanup worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: reap stale connections, then wait. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in WebSocket cleanup worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=POLL_INTERVAL_SECONDS)
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> None:
        """Reap idle connections and mark users with none left as offline."""
        went_offline = await get_websocket_manager().cleanup_stale_connections()
        for user_id in went_offline:
            await user_disconnected(user_id)


# Global cleanup service instance
_cleanup_service: Optional[ConnectionCleanupService] = None


def get_connection_cleanup_service() -> ConnectionCleanupService:
    global _cleanup_service
    if _cleanup_service is None:
        _cleanup_service = ConnectionCleanupService()
    return _cleanup_service
