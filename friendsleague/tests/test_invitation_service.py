"""
Unit tests for friend invitations and invite codes.
"""

import json
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock
from friendsleague.database.models import Invitation
from friendsleague.services import friend_service, invitation_service
from friendsleague.services.websocket_manager import get_websocket_manager
from friendsleague.utils.datetime_utils import utcnow
from friendsleague.utils.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)


def _connect_mock_socket():
    ws = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


def _sent_events(ws):
    return [json.loads(call.args[0])["event"] for call in ws.send_text.call_args_list]


@pytest.mark.asyncio
async def test_create_invitation(db_session, users):
    alice, bob = users["alice"], users["bob"]

    invitation = await invitation_service.create_invitation(db_session, alice.id, bob.id)

    assert invitation["status"] == "PENDING"
    assert invitation["inviter"]["username"] == "alice"
    assert invitation["invitee"]["username"] == "bob"
    assert len(invitation["code"]) == 8


@pytest.mark.asyncio
async def test_create_invitation_notifies_invitee(db_session, users):
    ws = _connect_mock_socket()
    await get_websocket_manager().connect(users["bob"].id, ws)

    await invitation_service.create_invitation(db_session, users["alice"].id, users["bob"].id)

    assert _sent_events(ws) == ["invitation:new"]


@pytest.mark.asyncio
async def test_cannot_invite_yourself(db_session, users):
    with pytest.raises(BadRequestError):
        await invitation_service.create_invitation(db_session, users["alice"].id, users["alice"].id)


@pytest.mark.asyncio
async def test_invite_unknown_user(db_session, users):
    with pytest.raises(NotFoundError):
        await invitation_service.create_invitation(db_session, users["alice"].id, 9999)


@pytest.mark.asyncio
async def test_duplicate_pending_invitation_either_direction(db_session, users):
    alice, bob = users["alice"], users["bob"]
    await invitation_service.create_invitation(db_session, alice.id, bob.id)

    with pytest.raises(ConflictError):
        await invitation_service.create_invitation(db_session, alice.id, bob.id)
    with pytest.raises(ConflictError):
        await invitation_service.create_invitation(db_session, bob.id, alice.id)


@pytest.mark.asyncio
async def test_cannot_invite_existing_friend(db_session, users):
    await friend_service.create_friendship(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(ConflictError, match="already friends"):
        await invitation_service.create_invitation(db_session, users["alice"].id, users["bob"].id)


@pytest.mark.asyncio
async def test_accept_invitation_creates_friendship(db_session, users):
    alice, bob = users["alice"], users["bob"]
    ws = _connect_mock_socket()
    await get_websocket_manager().connect(alice.id, ws)
    invitation = await invitation_service.create_invitation(db_session, alice.id, bob.id)

    accepted = await invitation_service.accept_invitation(db_session, invitation["id"], bob.id)

    assert accepted["status"] == "ACCEPTED"
    assert await friend_service.are_friends(db_session, alice.id, bob.id)
    assert "invitation:accepted" in _sent_events(ws)


@pytest.mark.asyncio
async def test_only_invitee_can_accept(db_session, users):
    invitation = await invitation_service.create_invitation(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(PermissionDeniedError):
        await invitation_service.accept_invitation(db_session, invitation["id"], users["carol"].id)


@pytest.mark.asyncio
async def test_accept_expired_invitation(db_session, users):
    invitation = await invitation_service.create_invitation(db_session, users["alice"].id, users["bob"].id)
    row = await db_session.get(Invitation, invitation["id"])
    row.expires_at = utcnow() - timedelta(seconds=1)
    await db_session.flush()

    with pytest.raises(BadRequestError, match="expired"):
        await invitation_service.accept_invitation(db_session, invitation["id"], users["bob"].id)


@pytest.mark.asyncio
async def test_reject_and_cancel(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    to_bob = await invitation_service.create_invitation(db_session, alice.id, bob.id)
    to_carol = await invitation_service.create_invitation(db_session, alice.id, carol.id)

    rejected = await invitation_service.reject_invitation(db_session, to_bob["id"], bob.id)
    with pytest.raises(PermissionDeniedError):
        await invitation_service.cancel_invitation(db_session, to_carol["id"], carol.id)
    cancelled = await invitation_service.cancel_invitation(db_session, to_carol["id"], alice.id)

    assert rejected["status"] == "REJECTED"
    assert cancelled["status"] == "CANCELLED"
    with pytest.raises(BadRequestError, match="no longer pending"):
        await invitation_service.accept_invitation(db_session, to_bob["id"], bob.id)


@pytest.mark.asyncio
async def test_list_invitations(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await invitation_service.create_invitation(db_session, alice.id, bob.id)
    to_carol = await invitation_service.create_invitation(db_session, carol.id, bob.id)
    await invitation_service.reject_invitation(db_session, to_carol["id"], bob.id)

    everything = await invitation_service.list_invitations(db_session, bob.id)
    pending = await invitation_service.list_pending_invitations(db_session, bob.id)

    assert len(everything) == 2
    assert [p["inviter"]["username"] for p in pending] == ["alice"]
    assert await invitation_service.list_pending_invitations(db_session, alice.id) == []


@pytest.mark.asyncio
async def test_use_personal_invite_code(db_session, users):
    alice, bob = users["alice"], users["bob"]
    code = (await invitation_service.get_my_invite_code(db_session, alice.id))["code"]

    result = await invitation_service.use_invite_code(db_session, bob.id, code.lower())

    assert result["success"] is True
    assert result["friend"]["username"] == "alice"
    assert await friend_service.are_friends(db_session, alice.id, bob.id)

    with pytest.raises(ConflictError):
        await invitation_service.use_invite_code(db_session, bob.id, code)


@pytest.mark.asyncio
async def test_use_own_invite_code(db_session, users):
    alice = users["alice"]
    with pytest.raises(BadRequestError):
        await invitation_service.use_invite_code(db_session, alice.id, alice.invite_code)


@pytest.mark.asyncio
async def test_use_invitation_code_binds_invitee(db_session, users):
    """Anyone holding an invitation code may redeem it."""
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    invitation = await invitation_service.create_invitation(db_session, alice.id, bob.id)

    result = await invitation_service.use_invite_code(db_session, carol.id, invitation["code"])

    assert result["friend"]["username"] == "alice"
    row = await db_session.get(Invitation, invitation["id"])
    assert row.invitee_id == carol.id
    assert row.status == "ACCEPTED"


@pytest.mark.asyncio
async def test_use_unknown_code(db_session, users):
    with pytest.raises(NotFoundError):
        await invitation_service.use_invite_code(db_session, users["alice"].id, "ZZZZZZZZ")
