"""Chat, message, reaction and ephemeral media route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import chat_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import (
    DirectChatCreate,
    GroupChatCreate,
    ChatUpdate,
    AddParticipantsRequest,
    SendMessageRequest,
    MarkMessagesReadRequest,
    ReactionCreate,
    MessageResponse,
)
from friendsleague.utils.constants import MESSAGE_PAGE_SIZE, MESSAGE_PAGE_SIZE_MAX
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Message-level endpoints (declared before /api/chats/{chat_id} routes)
# ---------------------------------------------------------------------------


@router.get("/api/chats/messages/{message_id}/read-receipts")
async def get_read_receipts(
    message_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await chat_service.get_read_receipts(session, message_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting read receipts for message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting read receipts")


@router.post("/api/chats/messages/{message_id}/reactions", status_code=201)
async def add_reaction(
    message_id: int,
    payload: ReactionCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await chat_service.add_reaction(session, message_id, user["id"], payload.emoji)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error adding reaction to message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Error adding reaction")


@router.get("/api/chats/messages/{message_id}/reactions")
async def get_reactions(
    message_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await chat_service.get_reactions(session, message_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting reactions for message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting reactions")


@router.delete("/api/chats/messages/{message_id}/reactions/{emoji}", response_model=MessageResponse)
async def remove_reaction(
    message_id: int,
    emoji: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await chat_service.remove_reaction(session, message_id, user["id"], emoji)
        return {"message": "Reaction removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error removing reaction from message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Error removing reaction")


@router.post("/api/chats/messages/{message_id}/view")
async def view_ephemeral_message(
    message_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Open a view-once message. A second view by the same user is rejected."""
    try:
        return await chat_service.view_ephemeral_message(session, message_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error viewing ephemeral message {message_id}: {e}")
        raise HTTPException(status_code=500, detail="Error viewing message")


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


@router.post("/api/chats/direct", status_code=201)
async def create_direct_chat(
    payload: DirectChatCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Open (or return the existing) one-to-one chat."""
    try:
        return await chat_service.create_direct_chat(session, user["id"], payload.friend_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating direct chat: {e}")
        raise HTTPException(status_code=500, detail="Error creating chat")


@router.post("/api/chats/group", status_code=201)
async def create_group_chat(
    payload: GroupChatCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await chat_service.create_group_chat(
            session, user["id"], payload.name, payload.participant_ids, payload.description
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating group chat: {e}")
        raise HTTPException(status_code=500, detail="Error creating chat")


@router.get("/api/chats")
async def list_chats(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """The current user's chats with last message and unread count."""
    try:
        return await chat_service.list_chats(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing chats: {e}")
        raise HTTPException(status_code=500, detail="Error listing chats")


@router.get("/api/chats/{chat_id}")
async def get_chat(
    chat_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await chat_service.get_chat(session, chat_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting chat")


@router.put("/api/chats/{chat_id}")
async def update_chat(
    chat_id: int,
    payload: ChatUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Rename or re-describe a group chat (group admin only)."""
    try:
        return await chat_service.update_chat(
            session, chat_id, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating chat")


@router.get("/api/chats/{chat_id}/participants")
async def get_participants(
    chat_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await chat_service.get_participants(session, chat_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting participants for chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting participants")


@router.post("/api/chats/{chat_id}/participants", status_code=201)
async def add_participants(
    chat_id: int,
    payload: AddParticipantsRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await chat_service.add_participants(session, chat_id, user["id"], payload.participant_ids)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error adding participants to chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error adding participants")


@router.delete("/api/chats/{chat_id}/participants/{participant_user_id}", response_model=MessageResponse)
async def remove_participant(
    chat_id: int,
    participant_user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Remove a participant, or leave the chat when removing yourself."""
    try:
        await chat_service.remove_participant(session, chat_id, user["id"], participant_user_id)
        return {"message": "Participant removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error removing participant from chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error removing participant")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/api/chats/{chat_id}/messages")
async def get_messages(
    chat_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=MESSAGE_PAGE_SIZE_MAX),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """A page of messages, newest first."""
    try:
        return await chat_service.get_messages(session, chat_id, user["id"], page, limit)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting messages for chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting messages")


@router.post("/api/chats/{chat_id}/messages", status_code=201)
async def send_message(
    chat_id: int,
    payload: SendMessageRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await chat_service.send_message(session, chat_id, user["id"], payload.model_dump())
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error sending message to chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error sending message")


@router.post("/api/chats/{chat_id}/read")
async def mark_chat_read(
    chat_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Reset the unread count for the chat."""
    try:
        return await chat_service.mark_chat_read(session, chat_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error marking chat {chat_id} read: {e}")
        raise HTTPException(status_code=500, detail="Error marking chat read")


@router.post("/api/chats/{chat_id}/messages/read")
async def mark_messages_read(
    chat_id: int,
    payload: MarkMessagesReadRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await chat_service.mark_messages_read(session, chat_id, user["id"], payload.message_ids)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error marking messages read in chat {chat_id}: {e}")
        raise HTTPException(status_code=500, detail="Error marking messages read")
