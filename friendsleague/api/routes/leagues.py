"""League route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import league_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import (
    LeagueCreate,
    LeagueUpdate,
    JoinRequest,
    AddMemberRequest,
    RuleCreate,
    RuleUpdate,
    AssignPointsRequest,
    MessageResponse,
)
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/leagues", status_code=201)
async def create_league(
    payload: LeagueCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a league; the creator becomes its admin and first member."""
    try:
        return await league_service.create_league(
            session, user["id"], payload.name, payload.description, payload.is_private
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating league: {e}")
        raise HTTPException(status_code=500, detail="Error creating league")


@router.get("/api/leagues")
async def list_leagues(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Public leagues plus the current user's own leagues."""
    try:
        return await league_service.list_leagues(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing leagues: {e}")
        raise HTTPException(status_code=500, detail="Error listing leagues")


@router.get("/api/leagues/{league_id}")
async def get_league(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.get_league(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting league")


@router.put("/api/leagues/{league_id}")
async def update_league(
    league_id: int,
    payload: LeagueUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update league settings (admin only)."""
    try:
        return await league_service.update_league(
            session, league_id, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating league")


@router.post("/api/leagues/{league_id}/join")
async def join_league(
    league_id: int,
    payload: JoinRequest = JoinRequest(),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.join_league(session, league_id, user["id"], payload.invite_code)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error joining league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error joining league")


@router.post("/api/leagues/{league_id}/leave")
async def leave_league(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.leave_league(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error leaving league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error leaving league")


@router.get("/api/leagues/{league_id}/members")
async def get_members(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.get_members(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting members for league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting league members")


@router.post("/api/leagues/{league_id}/members", status_code=201)
async def add_member(
    league_id: int,
    payload: AddMemberRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Add a user to the league (admin only)."""
    try:
        return await league_service.add_member(session, league_id, user["id"], payload.user_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error adding member to league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error adding league member")


@router.delete("/api/leagues/{league_id}/members/{member_user_id}", response_model=MessageResponse)
async def remove_member(
    league_id: int,
    member_user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Remove a member from the league (admin only)."""
    try:
        await league_service.remove_member(session, league_id, user["id"], member_user_id)
        return {"message": "Member removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error removing member from league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error removing league member")


@router.post("/api/leagues/{league_id}/admins/{admin_user_id}", status_code=201)
async def grant_admin(
    league_id: int,
    admin_user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Make a member a league admin."""
    try:
        return await league_service.grant_admin(session, league_id, user["id"], admin_user_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error granting admin in league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error granting league admin")


@router.delete("/api/leagues/{league_id}/admins/{admin_user_id}", response_model=MessageResponse)
async def revoke_admin(
    league_id: int,
    admin_user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await league_service.revoke_admin(session, league_id, user["id"], admin_user_id)
        return {"message": "Admin removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error revoking admin in league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error revoking league admin")


@router.post("/api/leagues/{league_id}/rules", status_code=201)
async def create_rule(
    league_id: int,
    payload: RuleCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.create_rule(session, league_id, user["id"], payload.model_dump())
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating rule in league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error creating league rule")


@router.get("/api/leagues/{league_id}/rules")
async def list_rules(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.list_rules(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error listing rules for league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error listing league rules")


@router.put("/api/leagues/{league_id}/rules/{rule_id}")
async def update_rule(
    league_id: int,
    rule_id: int,
    payload: RuleUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.update_rule(
            session, league_id, rule_id, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating league rule")


@router.delete("/api/leagues/{league_id}/rules/{rule_id}", response_model=MessageResponse)
async def delete_rule(
    league_id: int,
    rule_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await league_service.delete_rule(session, league_id, rule_id, user["id"])
        return {"message": "Rule deleted"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error deleting rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting league rule")


@router.post("/api/leagues/{league_id}/points")
async def assign_points(
    league_id: int,
    payload: AssignPointsRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Award or deduct points for a member (admin only)."""
    try:
        return await league_service.assign_points(
            session,
            league_id,
            user["id"],
            payload.user_id,
            payload.points,
            payload.category,
            payload.reason,
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error assigning points in league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error assigning points")


@router.get("/api/leagues/{league_id}/leaderboard")
async def get_leaderboard(
    league_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await league_service.get_leaderboard(session, league_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting leaderboard for league {league_id}: {e}")
        raise HTTPException(status_code=500, detail="Error getting leaderboard")
