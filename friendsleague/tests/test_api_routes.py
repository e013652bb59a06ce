import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from unittest.mock import AsyncMock

from friendsleague.api.main import app
from friendsleague.services import (
    auth_service,
    chat_service,
    league_service,
    presence_service,
    s3_service,
    user_service,
)
from friendsleague.utils.exceptions import ConflictError, NotFoundError, PermissionDeniedError


def make_client_with_auth(monkeypatch, user_id=1, username="alice"):
    def fake_verify_token(token):
        return {"user_id": user_id, "username": username}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "username": username,
            "email": "alice@example.com",
            "phone_number": None,
            "bio": None,
            "avatar": None,
            "is_online": True,
            "last_seen": "2026-01-01T00:00:00+00:00",
            "show_online_status": True,
            "invite_code": "ABCD2345",
            "created_at": "2026-01-01T00:00:00+00:00",
        }

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)
    return TestClient(app), {"Authorization": "Bearer dummy"}


def test_health():
    client = TestClient(app)
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_protected_route_requires_token():
    client = TestClient(app)
    r = client.get("/api/users/me")
    assert r.status_code in (401, 403)


def test_invalid_token_rejected():
    client = TestClient(app)
    r = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid authentication token"


def test_get_me(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    r = client.get("/api/users/me", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["username"] == "alice"
    assert body["invite_code"] == "ABCD2345"


def test_signup_validation(monkeypatch):
    register = AsyncMock()
    monkeypatch.setattr(auth_service, "register_user", register)
    client = TestClient(app)

    r = client.post("/api/auth/signup", json={"username": "a", "password": "Password1"})
    assert r.status_code == 422

    r = client.post("/api/auth/signup", json={"username": "alice", "password": "short"})
    assert r.status_code == 422
    register.assert_not_called()


def test_update_profile_rejects_null_username(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    update = AsyncMock()
    monkeypatch.setattr(user_service, "update_profile", update)

    r = client.put("/api/users/profile", json={"username": None, "bio": "hi"}, headers=headers)
    assert r.status_code == 422
    update.assert_not_called()


def test_signup_conflict(monkeypatch):
    async def fake_register_user(session, username, password, email=None, phone_number=None):
        raise ConflictError("Username already exists")

    monkeypatch.setattr(auth_service, "register_user", fake_register_user)
    client = TestClient(app)

    r = client.post("/api/auth/signup", json={"username": "alice", "password": "Password1"})
    assert r.status_code == 409
    assert r.json()["detail"] == "Username already exists"


def test_create_league(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    captured = {}

    async def fake_create_league(session, user_id, name, description=None, is_private=False):
        captured.update(user_id=user_id, name=name, is_private=is_private)
        return {"id": 7, "name": name, "admin_id": user_id, "is_private": is_private, "members": []}

    monkeypatch.setattr(league_service, "create_league", fake_create_league)

    r = client.post("/api/leagues", json={"name": "Sunday League", "is_private": True}, headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["id"] == 7
    assert captured == {"user_id": 1, "name": "Sunday League", "is_private": True}


@pytest.mark.parametrize(
    "error, status",
    [
        (NotFoundError("League not found"), 404),
        (PermissionDeniedError("This league is private"), 403),
    ],
)
def test_league_service_errors_map_to_http(monkeypatch, error, status):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_league(session, league_id, user_id):
        raise error

    monkeypatch.setattr(league_service, "get_league", fake_get_league)

    r = client.get("/api/leagues/3", headers=headers)
    assert r.status_code == status
    assert r.json()["detail"] == str(error)


def test_join_league_without_body(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    join = AsyncMock(side_effect=ConflictError("You are already a member of this league"))
    monkeypatch.setattr(league_service, "join_league", join)

    r = client.post("/api/leagues/3/join", headers=headers)
    assert r.status_code == 409
    join.assert_awaited_once()
    assert join.await_args.args[1:] == (3, 1, None)


def test_unexpected_error_is_500(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    monkeypatch.setattr(league_service, "list_leagues", AsyncMock(side_effect=RuntimeError("db down")))

    r = client.get("/api/leagues", headers=headers)
    assert r.status_code == 500
    assert r.json()["detail"] == "Error listing leagues"


def test_assign_points_rejects_unknown_category(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    assign = AsyncMock()
    monkeypatch.setattr(league_service, "assign_points", assign)

    r = client.post(
        "/api/leagues/3/points",
        json={"user_id": 2, "points": 5, "category": "STYLE"},
        headers=headers,
    )
    assert r.status_code == 422
    assign.assert_not_called()


def test_get_messages_passes_paging(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    get_messages = AsyncMock(return_value={"messages": [], "page": 2, "limit": 10, "has_more": False})
    monkeypatch.setattr(chat_service, "get_messages", get_messages)

    r = client.get("/api/chats/5/messages?page=2&limit=10", headers=headers)
    assert r.status_code == 200
    assert get_messages.await_args.args[1:] == (5, 1, 2, 10)

    r = client.get("/api/chats/5/messages?limit=0", headers=headers)
    assert r.status_code == 422


def test_send_text_message_requires_content(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    send = AsyncMock()
    monkeypatch.setattr(chat_service, "send_message", send)

    r = client.post("/api/chats/5/messages", json={"type": "TEXT"}, headers=headers)
    assert r.status_code == 422
    send.assert_not_called()


def test_presigned_url_unconfigured(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    monkeypatch.setattr(s3_service, "_s3_client", None)

    r = client.post(
        "/api/upload/presigned-url",
        json={"file_name": "photo.png", "file_type": "image/png", "file_size": 1024},
        headers=headers,
    )
    assert r.status_code == 503


def test_presigned_url_unsupported_type(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    r = client.post(
        "/api/upload/presigned-url",
        json={"file_name": "setup.exe", "file_type": "application/x-msdownload", "file_size": 1024},
        headers=headers,
    )
    assert r.status_code == 400


def test_websocket_requires_token():
    client = TestClient(app)
    with client.websocket_connect("/api/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_websocket_ping(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: {"user_id": 1})
    connected = AsyncMock()
    disconnected = AsyncMock()
    monkeypatch.setattr(presence_service, "user_connected", connected)
    monkeypatch.setattr(presence_service, "user_disconnected", disconnected)
    client = TestClient(app)

    with client.websocket_connect("/api/ws?token=dummy") as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json() == {"event": "pong", "data": {}}
        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

    connected.assert_awaited_once_with(1)
