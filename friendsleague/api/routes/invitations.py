"""Friend invitation route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import invitation_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import InvitationCreate, UseInviteCodeRequest
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/invitations", status_code=201)
async def create_invitation(
    payload: InvitationCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Invite another user to be friends."""
    try:
        return await invitation_service.create_invitation(session, user["id"], payload.invitee_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error creating invitation: {e}")
        raise HTTPException(status_code=500, detail="Error creating invitation")


@router.get("/api/invitations")
async def list_invitations(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """All invitations sent or received by the current user."""
    try:
        return await invitation_service.list_invitations(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing invitations: {e}")
        raise HTTPException(status_code=500, detail="Error listing invitations")


@router.get("/api/invitations/pending")
async def list_pending_invitations(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    try:
        return await invitation_service.list_pending_invitations(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing pending invitations: {e}")
        raise HTTPException(status_code=500, detail="Error listing pending invitations")


@router.get("/api/invitations/my-code")
async def get_my_invite_code(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The current user's personal invite code (for QR / sharing)."""
    try:
        return await invitation_service.get_my_invite_code(session, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting invite code: {e}")
        raise HTTPException(status_code=500, detail="Error getting invite code")


@router.post("/api/invitations/use-code")
async def use_invite_code(
    payload: UseInviteCodeRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Redeem a personal or invitation code."""
    try:
        return await invitation_service.use_invite_code(session, user["id"], payload.code)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error using invite code: {e}")
        raise HTTPException(status_code=500, detail="Error using invite code")


@router.put("/api/invitations/{invitation_id}/accept")
async def accept_invitation(
    invitation_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await invitation_service.accept_invitation(session, invitation_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error accepting invitation: {e}")
        raise HTTPException(status_code=500, detail="Error accepting invitation")


@router.put("/api/invitations/{invitation_id}/reject")
async def reject_invitation(
    invitation_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await invitation_service.reject_invitation(session, invitation_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error rejecting invitation: {e}")
        raise HTTPException(status_code=500, detail="Error rejecting invitation")


@router.delete("/api/invitations/{invitation_id}")
async def cancel_invitation(
    invitation_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel an invitation you sent."""
    try:
        return await invitation_service.cancel_invitation(session, invitation_id, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error cancelling invitation: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling invitation")
