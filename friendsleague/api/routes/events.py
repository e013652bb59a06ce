"""Event route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import event_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import (
    EventCreate,
    EventUpdate,
    JoinRequest,
    AddMemberRequest,
    EventRuleCreate,
    AssignPointsRequest,
    EventInvitationCreate,
    UseInviteCodeRequest,
    MessageResponse,
)
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/events", status_code=201)
async def create_event(
    payload: EventCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create an event, optionally linked to a league."""
    try:
        return await event_service.create_event(session, user["id"], payload.model_dump())
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating event: {e}")
        raise HTTPException(status_code=500, detail="Error creating event")


@router.get("/api/events")
async def list_events(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await event_service.list_events(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing events: {e}")
        raise HTTPException(status_code=500, detail="Error listing events")


@router.get("/api/events/league/{league_id}")
async def list_league_events(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """Events linked to one league."""
    try:
        return await event_service.list_league_events(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error listing events for league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing league events")


@router.get("/api/events/{event_id}")
async def get_event(
    event_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.get_event(session, event_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting event")


@router.put("/api/events/{event_id}")
async def update_event(
    event_id: int,
    payload: EventUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update event settings (event admin only)."""
    try:
        return await event_service.update_event(
            session, event_id, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating event")


@router.post("/api/events/{event_id}/join")
async def join_event(
    event_id: int,
    payload: JoinRequest = JoinRequest(),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.join_event(session, event_id, user["id"], payload.invite_code)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error joining event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error joining event")


@router.post("/api/events/{event_id}/leave")
async def leave_event(
    event_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.leave_event(session, event_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error leaving event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error leaving event")


@router.get("/api/events/{event_id}/participants")
async def get_participants(
    event_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.get_participants(session, event_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting participants for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting participants")


@router.post("/api/events/{event_id}/participants", status_code=201)
async def add_participant(
    event_id: int,
    payload: AddMemberRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Add a participant (event admin only)."""
    try:
        return await event_service.add_participant(session, event_id, user["id"], payload.user_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error adding participant to event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error adding participant")


@router.delete("/api/events/{event_id}/participants/{participant_user_id}", response_model=MessageResponse)
async def remove_participant(
    event_id: int,
    participant_user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await event_service.remove_participant(session, event_id, user["id"], participant_user_id)
        return {"message": "Participant removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error removing participant from event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error removing participant")


@router.post("/api/events/{event_id}/rules", status_code=201)
async def create_rule(
    event_id: int,
    payload: EventRuleCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.create_rule(session, event_id, user["id"], payload.model_dump())
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating rule in event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error creating event rule")


@router.get("/api/events/{event_id}/rules")
async def list_rules(
    event_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.list_rules(session, event_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error listing rules for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing event rules")


@router.post("/api/events/{event_id}/points")
async def assign_points(
    event_id: int,
    payload: AssignPointsRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Award points to a participant; also credits the linked league."""
    try:
        return await event_service.assign_points(
            session,
            event_id,
            user["id"],
            payload.user_id,
            payload.points,
            payload.category,
            payload.reason,
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error assigning points in event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error assigning points")


@router.get("/api/events/{event_id}/leaderboard")
async def get_leaderboard(
    event_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.get_leaderboard(session, event_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting leaderboard for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting leaderboard")


@router.post("/api/events/{event_id}/invitations", status_code=201)
async def create_invitation(
    event_id: int,
    payload: EventInvitationCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Issue a single-use invitation code for the event."""
    try:
        return await event_service.create_invitation(session, event_id, user["id"], payload.model_dump())
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating invitation for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error creating event invitation")


@router.post("/api/events/{event_id}/invitations/use")
async def use_invitation(
    event_id: int,
    payload: UseInviteCodeRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.use_invitation(session, event_id, user["id"], payload.code)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error using invitation for event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Error using event invitation")
