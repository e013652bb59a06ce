"""WebSocket route: presence, chat rooms, typing indicators and live messaging."""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from friendsleague.database import db
from friendsleague.services import auth_service, chat_service, presence_service
from friendsleague.services.websocket_manager import build_event, get_websocket_manager
from friendsleague.models.schemas import SendMessageRequest
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


async def _send_error(websocket: WebSocket, message: str, event: str = None):
    await websocket.send_text(json.dumps(build_event("error", {"message": message, "event": event})))


def _chat_id(data: dict) -> int:
    try:
        return int(data["chat_id"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("chat_id is required")


async def _join_chat(websocket: WebSocket, user_id: int, data: dict):
    chat_id = _chat_id(data)
    async with db.AsyncSessionLocal() as session:
        allowed = await chat_service.is_participant(session, chat_id, user_id)
    if not allowed:
        await _send_error(websocket, "You are not a participant in this chat", "joinChat")
        return
    await get_websocket_manager().join_chat(chat_id, websocket)
    await websocket.send_text(json.dumps(build_event("joinedChat", {"chat_id": chat_id})))


async def _send_message(websocket: WebSocket, user_id: int, data: dict):
    chat_id = _chat_id(data)
    payload = SendMessageRequest(**{k: v for k, v in data.items() if k != "chat_id"})
    async with db.AsyncSessionLocal() as session:
        try:
            await chat_service.send_message(session, chat_id, user_id, payload.model_dump())
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def handle_client_event(websocket: WebSocket, user_id: int, frame: dict):
    """
    Dispatch one client frame.

    Errors the client can fix (bad payload, no access) are answered with an
    `error` event; anything else propagates.
    """
    event = frame.get("event")
    data = frame.get("data") or {}
    manager = get_websocket_manager()

    try:
        if event == "ping":
            await websocket.send_text(json.dumps(build_event("pong")))
        elif event == "joinChat":
            await _join_chat(websocket, user_id, data)
        elif event == "leaveChat":
            await manager.leave_chat(_chat_id(data), websocket)
        elif event == "typing":
            chat_id = _chat_id(data)
            await manager.send_to_chat(
                chat_id,
                build_event(
                    "user:typing",
                    {"chat_id": chat_id, "user_id": user_id, "is_typing": bool(data.get("is_typing", True))},
                ),
                exclude=websocket,
            )
        elif event == "sendMessage":
            await _send_message(websocket, user_id, data)
        else:
            await _send_error(websocket, f"Unknown event: {event}", event)
    except ServiceError as e:
        await _send_error(websocket, str(e), event)
    except (ValidationError, ValueError) as e:
        await _send_error(websocket, str(e), event)


@router.websocket("/api/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time chat and presence.

    Requires JWT token in query parameter: ?token=<jwt_token>
    """
    await websocket.accept()

    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    payload = auth_service.verify_token(token)
    if payload is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    user_id = payload.get("user_id")
    if user_id is None:
        await websocket.close(code=1008, reason="Invalid token payload")
        return

    manager = get_websocket_manager()
    if await manager.connect(user_id, websocket):
        await presence_service.user_connected(user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            await manager.update_activity(websocket)
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "Frames must be JSON objects")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Frames must be JSON objects")
                continue
            await handle_client_event(websocket, user_id, frame)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.error(f"WebSocket error for user {user_id}: {e}")
    finally:
        if await manager.disconnect(user_id, websocket):
            await presence_service.user_disconnected(user_id)
