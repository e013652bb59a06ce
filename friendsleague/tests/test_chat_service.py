"""
Unit tests for chat service.

Covers direct and group chats, message validation, pagination, read state,
reactions and one-time ephemeral media.
"""

import json
import pytest
from unittest.mock import AsyncMock
from friendsleague.services import chat_service
from friendsleague.services.websocket_manager import get_websocket_manager
from friendsleague.utils.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)

IMAGE_URL = "https://cdn.example.com/media/images/1-abc.jpg"


async def _send_text(db_session, chat_id, user, content="hello"):
    return await chat_service.send_message(db_session, chat_id, user.id, {"type": "TEXT", "content": content})


# ──────────────────────────────────────────────────────────────
# Chats and participants
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_direct_chat_is_reused(db_session, users):
    alice, bob = users["alice"], users["bob"]

    first = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    again = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    reverse = await chat_service.create_direct_chat(db_session, bob.id, alice.id)

    assert first["type"] == "DIRECT"
    assert first["id"] == again["id"] == reverse["id"]
    assert sorted(p["username"] for p in first["participants"]) == ["alice", "bob"]


@pytest.mark.asyncio
async def test_direct_chat_with_yourself(db_session, users):
    with pytest.raises(BadRequestError):
        await chat_service.create_direct_chat(db_session, users["alice"].id, users["alice"].id)


@pytest.mark.asyncio
async def test_direct_chat_with_unknown_user(db_session, users):
    with pytest.raises(NotFoundError):
        await chat_service.create_direct_chat(db_session, users["alice"].id, 9999)


@pytest.mark.asyncio
async def test_create_group_chat(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]

    chat = await chat_service.create_group_chat(db_session, alice.id, "Team", [bob.id, carol.id, bob.id])

    assert chat["type"] == "GROUP"
    assert chat["name"] == "Team"
    assert chat["created_by"] == alice.id
    participants = await chat_service.get_participants(db_session, chat["id"], bob.id)
    assert [(p["username"], p["is_admin"]) for p in participants] == [
        ("alice", True),
        ("bob", False),
        ("carol", False),
    ]


@pytest.mark.asyncio
async def test_non_participant_cannot_read_chat(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(PermissionDeniedError):
        await chat_service.get_chat(db_session, chat["id"], users["carol"].id)
    with pytest.raises(PermissionDeniedError):
        await _send_text(db_session, chat["id"], users["carol"])
    with pytest.raises(NotFoundError):
        await chat_service.get_chat(db_session, 9999, users["alice"].id)


@pytest.mark.asyncio
async def test_group_admin_actions(db_session, users):
    alice, bob, carol, dave = users["alice"], users["bob"], users["carol"], users["dave"]
    chat = await chat_service.create_group_chat(db_session, alice.id, "Team", [bob.id])

    with pytest.raises(PermissionDeniedError):
        await chat_service.add_participants(db_session, chat["id"], bob.id, [carol.id])
    with pytest.raises(PermissionDeniedError):
        await chat_service.update_chat(db_session, chat["id"], bob.id, {"name": "Bob's"})

    participants = await chat_service.add_participants(db_session, chat["id"], alice.id, [carol.id, dave.id, bob.id])
    updated = await chat_service.update_chat(db_session, chat["id"], alice.id, {"name": "Squad"})

    assert [p["username"] for p in participants] == ["alice", "bob", "carol", "dave"]
    assert updated["name"] == "Squad"

    with pytest.raises(PermissionDeniedError):
        await chat_service.remove_participant(db_session, chat["id"], bob.id, carol.id)
    await chat_service.remove_participant(db_session, chat["id"], bob.id, bob.id)
    await chat_service.remove_participant(db_session, chat["id"], alice.id, dave.id)
    assert await chat_service.get_participant_ids(db_session, chat["id"]) == [alice.id, carol.id]


@pytest.mark.asyncio
async def test_group_admin_leaving_hands_over(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    chat = await chat_service.create_group_chat(db_session, alice.id, "Team", [bob.id, carol.id])

    await chat_service.remove_participant(db_session, chat["id"], alice.id, alice.id)

    detail = await chat_service.get_chat(db_session, chat["id"], bob.id)
    assert detail["created_by"] == bob.id


@pytest.mark.asyncio
async def test_direct_chats_have_no_admin_actions(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(BadRequestError):
        await chat_service.add_participants(db_session, chat["id"], users["alice"].id, [users["carol"].id])
    with pytest.raises(BadRequestError):
        await chat_service.remove_participant(db_session, chat["id"], users["alice"].id, users["bob"].id)


# ──────────────────────────────────────────────────────────────
# Messages
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_message_broadcasts(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    bob_ws = AsyncMock()
    await get_websocket_manager().connect(bob.id, bob_ws)

    message = await _send_text(db_session, chat["id"], alice, "see you at 8")

    assert message["sender"]["username"] == "alice"
    assert message["content"] == "see you at 8"
    frame = json.loads(bob_ws.send_text.call_args.args[0])
    assert frame["event"] == "newMessage"
    assert frame["data"]["id"] == message["id"]


@pytest.mark.asyncio
async def test_text_message_requires_content(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(BadRequestError):
        await _send_text(db_session, chat["id"], users["alice"], "   ")


@pytest.mark.asyncio
async def test_media_message_requires_url(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(BadRequestError):
        await chat_service.send_message(db_session, chat["id"], users["alice"].id, {"type": "IMAGE"})


@pytest.mark.asyncio
async def test_voice_message_keeps_waveform(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    message = await chat_service.send_message(
        db_session,
        chat["id"],
        users["alice"].id,
        {
            "type": "VOICE",
            "media_url": "https://cdn.example.com/media/audio/1-abc.m4a",
            "duration": 12,
            "waveform_data": [0.1, 0.5, 0.3],
        },
    )

    assert message["type"] == "VOICE"
    assert message["duration"] == 12
    assert message["waveform_data"] == [0.1, 0.5, 0.3]


@pytest.mark.asyncio
async def test_reply_must_be_in_same_chat(db_session, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    other = await chat_service.create_direct_chat(db_session, alice.id, carol.id)
    original = await _send_text(db_session, other["id"], alice)

    with pytest.raises(BadRequestError):
        await chat_service.send_message(
            db_session, chat["id"], alice.id, {"type": "TEXT", "content": "re", "reply_to_id": original["id"]}
        )

    in_chat = await _send_text(db_session, chat["id"], bob, "first")
    reply = await chat_service.send_message(
        db_session, chat["id"], alice.id, {"type": "TEXT", "content": "re", "reply_to_id": in_chat["id"]}
    )
    assert reply["reply_to"]["id"] == in_chat["id"]
    assert reply["reply_to"]["sender"]["username"] == "bob"


@pytest.mark.asyncio
async def test_message_pagination(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    for text in ("one", "two", "three"):
        await _send_text(db_session, chat["id"], alice, text)

    first = await chat_service.get_messages(db_session, chat["id"], bob.id, page=1, limit=2)
    second = await chat_service.get_messages(db_session, chat["id"], bob.id, page=2, limit=2)

    assert [m["content"] for m in first["messages"]] == ["three", "two"]
    assert first["has_more"] is True
    assert [m["content"] for m in second["messages"]] == ["one"]
    assert second["has_more"] is False


@pytest.mark.asyncio
async def test_list_chats_with_unread_count(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    await _send_text(db_session, chat["id"], bob, "hi")
    await _send_text(db_session, chat["id"], bob, "you there?")
    await _send_text(db_session, chat["id"], alice, "yes")

    chats = await chat_service.list_chats(db_session, alice.id)
    assert chats[0]["unread_count"] == 2
    assert chats[0]["last_message"]["content"] == "yes"

    await chat_service.mark_chat_read(db_session, chat["id"], alice.id)
    chats = await chat_service.list_chats(db_session, alice.id)
    assert chats[0]["unread_count"] == 0


@pytest.mark.asyncio
async def test_mark_messages_read(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    from_bob = await _send_text(db_session, chat["id"], bob)
    from_alice = await _send_text(db_session, chat["id"], alice)
    bob_ws = AsyncMock()
    await get_websocket_manager().connect(bob.id, bob_ws)

    result = await chat_service.mark_messages_read(db_session, chat["id"], alice.id, [from_bob["id"], from_alice["id"]])
    again = await chat_service.mark_messages_read(db_session, chat["id"], alice.id, [from_bob["id"]])

    assert result["message_ids"] == [from_bob["id"]]
    assert again["message_ids"] == []
    assert json.loads(bob_ws.send_text.call_args.args[0])["event"] == "messagesRead"

    receipts = await chat_service.get_read_receipts(db_session, from_bob["id"], bob.id)
    assert [r["user"]["username"] for r in receipts] == ["alice"]


# ──────────────────────────────────────────────────────────────
# Reactions
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reactions(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    message = await _send_text(db_session, chat["id"], alice)

    await chat_service.add_reaction(db_session, message["id"], alice.id, "🔥")
    await chat_service.add_reaction(db_session, message["id"], bob.id, "🔥")
    await chat_service.add_reaction(db_session, message["id"], bob.id, "👍")
    with pytest.raises(ConflictError):
        await chat_service.add_reaction(db_session, message["id"], bob.id, "🔥")

    summary = await chat_service.get_reactions(db_session, message["id"], alice.id)
    assert summary == [
        {"emoji": "🔥", "count": 2, "users": [alice.id, bob.id]},
        {"emoji": "👍", "count": 1, "users": [bob.id]},
    ]

    await chat_service.remove_reaction(db_session, message["id"], bob.id, "👍")
    with pytest.raises(NotFoundError):
        await chat_service.remove_reaction(db_session, message["id"], bob.id, "👍")


@pytest.mark.asyncio
async def test_reaction_requires_participant(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)
    message = await _send_text(db_session, chat["id"], users["alice"])

    with pytest.raises(PermissionDeniedError):
        await chat_service.add_reaction(db_session, message["id"], users["carol"].id, "🔥")


# ──────────────────────────────────────────────────────────────
# Ephemeral media
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_images_and_videos_can_be_ephemeral(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)

    with pytest.raises(BadRequestError):
        await chat_service.send_message(
            db_session, chat["id"], users["alice"].id, {"type": "TEXT", "content": "boo", "is_ephemeral": True}
        )


@pytest.mark.asyncio
async def test_ephemeral_media_viewed_once(db_session, users):
    alice, bob = users["alice"], users["bob"]
    chat = await chat_service.create_direct_chat(db_session, alice.id, bob.id)
    message = await chat_service.send_message(
        db_session,
        chat["id"],
        alice.id,
        {"type": "IMAGE", "media_url": IMAGE_URL, "is_ephemeral": True, "view_duration": 5},
    )

    with pytest.raises(BadRequestError):
        await chat_service.view_ephemeral_message(db_session, message["id"], alice.id)

    viewed = await chat_service.view_ephemeral_message(db_session, message["id"], bob.id)
    assert viewed["media_url"] == IMAGE_URL
    assert viewed["view_duration"] == 5

    with pytest.raises(ConflictError):
        await chat_service.view_ephemeral_message(db_session, message["id"], bob.id)

    bob_page = await chat_service.get_messages(db_session, chat["id"], bob.id)
    alice_page = await chat_service.get_messages(db_session, chat["id"], alice.id)
    assert bob_page["messages"][0]["media_url"] is None
    assert bob_page["messages"][0]["viewed"] is True
    assert alice_page["messages"][0]["media_url"] == IMAGE_URL
    assert alice_page["messages"][0]["viewed_by"] == [bob.id]


@pytest.mark.asyncio
async def test_view_non_ephemeral_message(db_session, users):
    chat = await chat_service.create_direct_chat(db_session, users["alice"].id, users["bob"].id)
    message = await _send_text(db_session, chat["id"], users["alice"])

    with pytest.raises(BadRequestError):
        await chat_service.view_ephemeral_message(db_session, message["id"], users["bob"].id)
