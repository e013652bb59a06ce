"""
Tests for presence transitions and WebSocket client frames.

These paths open their own sessions through db.AsyncSessionLocal, so fixture
data is committed before they run.
"""

import json
import pytest
from unittest.mock import AsyncMock
from friendsleague.api.routes.ws import handle_client_event
from friendsleague.database import db
from friendsleague.services import chat_service, friend_service, presence_service, user_service
from friendsleague.services.websocket_manager import get_websocket_manager


def _frames(ws):
    return [json.loads(call.args[0]) for call in ws.send_text.call_args_list]


def _last(ws):
    return json.loads(ws.send_text.call_args.args[0])


# ──────────────────────────────────────────────────────────────
# Presence
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_user_connected_notifies_visible_friends(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await friend_service.create_friendship(db_session, alice.id, bob.id)
    await friend_service.create_friendship(db_session, alice.id, carol.id)
    await user_service.set_friend_privacy(db_session, alice.id, carol.id, True)
    await db_session.commit()

    bob_ws, carol_ws = AsyncMock(), AsyncMock()
    await get_websocket_manager().connect(bob.id, bob_ws)
    await get_websocket_manager().connect(carol.id, carol_ws)

    await presence_service.user_connected(alice.id)

    frame = _last(bob_ws)
    assert frame["event"] == "user:online"
    assert frame["data"]["user_id"] == alice.id
    carol_ws.send_text.assert_not_called()

    async with db.AsyncSessionLocal() as session:
        stored = await user_service.get_user_by_id(session, alice.id)
    assert stored["is_online"] is True


@pytest.mark.asyncio
async def test_user_disconnected_notifies_friends(db_session, users):
    alice, bob = users["alice"], users["bob"]
    await friend_service.create_friendship(db_session, alice.id, bob.id)
    await db_session.commit()
    bob_ws = AsyncMock()
    await get_websocket_manager().connect(bob.id, bob_ws)

    await presence_service.user_disconnected(alice.id)

    assert _last(bob_ws)["event"] == "user:offline"
    assert _last(bob_ws)["data"]["is_online"] is False


@pytest.mark.asyncio
async def test_presence_for_unknown_user_is_swallowed(test_engine):
    await presence_service.user_connected(9999)


@pytest.mark.asyncio
async def test_cleanup_worker_marks_reaped_users_offline(monkeypatch):
    manager = get_websocket_manager()
    monkeypatch.setattr(manager, "cleanup_stale_connections", AsyncMock(return_value=[7]))
    disconnected = AsyncMock()
    monkeypatch.setattr(presence_service, "user_disconnected", disconnected)

    await presence_service.ConnectionCleanupService().run_once()

    disconnected.assert_awaited_once_with(7)


# ──────────────────────────────────────────────────────────────
# Client frames
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ping_pong():
    ws = AsyncMock()

    await handle_client_event(ws, 1, {"event": "ping"})

    assert _last(ws) == {"event": "pong", "data": {}}


@pytest.mark.asyncio
async def test_unknown_event():
    ws = AsyncMock()

    await handle_client_event(ws, 1, {"event": "dance"})

    frame = _last(ws)
    assert frame["event"] == "error"
    assert frame["data"]["event"] == "dance"


@pytest.mark.asyncio
async def test_join_chat_requires_chat_id():
    ws = AsyncMock()

    await handle_client_event(ws, 1, {"event": "joinChat", "data": {}})

    assert _last(ws)["data"]["message"] == "chat_id is required"


@pytest.mark.asyncio
async def test_join_chat_and_typing(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    await db_session.commit()

    manager = get_websocket_manager()
    alice_ws, bob_ws, carol_ws = AsyncMock(), AsyncMock(), AsyncMock()
    await manager.connect(alice.id, alice_ws)
    await manager.connect(bob.id, bob_ws)
    await manager.connect(carol.id, carol_ws)

    await handle_client_event(alice_ws, alice.id, {"event": "joinChat", "data": {"chat_id": chat["id"]}})
    await handle_client_event(bob_ws, bob.id, {"event": "joinChat", "data": {"chat_id": chat["id"]}})
    await handle_client_event(carol_ws, carol.id, {"event": "joinChat", "data": {"chat_id": chat["id"]}})

    assert _last(alice_ws)["event"] == "joinedChat"
    assert _last(carol_ws)["event"] == "error"
    assert carol_ws not in manager.chat_rooms[chat["id"]]

    alice_calls = alice_ws.send_text.call_count
    await handle_client_event(alice_ws, alice.id, {"event": "typing", "data": {"chat_id": chat["id"]}})

    assert _last(bob_ws) == {
        "event": "user:typing",
        "data": {"chat_id": chat["id"], "user_id": alice.id, "is_typing": True},
    }
    assert alice_ws.send_text.call_count == alice_calls

    await handle_client_event(bob_ws, bob.id, {"event": "leaveChat", "data": {"chat_id": chat["id"]}})
    assert bob_ws not in manager.chat_rooms[chat["id"]]


@pytest.mark.asyncio
async def test_send_message_over_websocket(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    await db_session.commit()
    alice_ws, bob_ws = AsyncMock(), AsyncMock()
    await get_websocket_manager().connect(alice.id, alice_ws)
    await get_websocket_manager().connect(bob.id, bob_ws)

    await handle_client_event(
        alice_ws, alice.id, {"event": "sendMessage", "data": {"chat_id": chat["id"], "content": "on my way"}}
    )

    frame = _last(bob_ws)
    assert frame["event"] == "newMessage"
    assert frame["data"]["content"] == "on my way"
    async with db.AsyncSessionLocal() as session:
        page = await chat_service.get_messages(session, chat["id"], bob.id)
    assert [m["content"] for m in page["messages"]] == ["on my way"]


@pytest.mark.asyncio
async def test_send_invalid_message_over_websocket(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    await db_session.commit()
    alice_ws = AsyncMock()

    await handle_client_event(alice_ws, alice.id, {"event": "sendMessage", "data": {"chat_id": chat["id"]}})
    await handle_client_event(
        alice_ws, users["carol"].id, {"event": "sendMessage", "data": {"chat_id": chat["id"], "content": "hi"}}
    )

    frames = _frames(alice_ws)
    assert [f["event"] for f in frames] == ["error", "error"]
    assert "not a participant" in frames[1]["data"]["message"]
