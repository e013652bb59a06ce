"""User profile, friends, presence and privacy route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import friend_service, user_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import (
    UserResponse,
    UpdateProfileRequest,
    OnlineStatusRequest,
    GlobalPrivacyRequest,
    FriendPrivacyRequest,
    PrivacySettingsResponse,
    MessageResponse,
)
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/users/me", response_model=UserResponse)
async def get_me(user: dict = Depends(require_user)):
    """Get the current user's own profile."""
    return user


@router.put("/api/users/profile", response_model=UserResponse)
async def update_profile(
    payload: UpdateProfileRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update the current user's profile."""
    try:
        return await user_service.update_profile(
            session, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating profile: {e}")
        raise HTTPException(status_code=500, detail="Error updating profile")


@router.get("/api/users/search")
async def search_users(
    username: str = Query("", max_length=50),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """Search users by username."""
    try:
        return await user_service.search_users(session, user["id"], username)
    except Exception as e:
        logger.error(f"Error searching users: {e}")
        raise HTTPException(status_code=500, detail="Error searching users")


@router.get("/api/users/friends")
async def get_friends(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> List[dict]:
    """Get the current user's friends."""
    try:
        return await friend_service.get_friends(session, user["id"])
    except Exception as e:
        logger.error(f"Error getting friends: {e}")
        raise HTTPException(status_code=500, detail="Error getting friends")


@router.delete("/api/users/friends/{friend_id}", response_model=MessageResponse)
async def remove_friend(
    friend_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Remove a friend (unfriend)."""
    try:
        await friend_service.remove_friend(session, user["id"], friend_id)
        return {"message": "Friend removed"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error removing friend: {e}")
        raise HTTPException(status_code=500, detail="Error removing friend")


@router.put("/api/users/online-status", response_model=UserResponse)
async def update_online_status(
    payload: OnlineStatusRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await user_service.set_online_status(session, user["id"], payload.is_online)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating online status: {e}")
        raise HTTPException(status_code=500, detail="Error updating online status")


@router.get("/api/users/privacy-settings", response_model=PrivacySettingsResponse)
async def get_privacy_settings(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await user_service.get_privacy_settings(session, user["id"])
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting privacy settings: {e}")
        raise HTTPException(status_code=500, detail="Error getting privacy settings")


@router.put("/api/users/privacy-settings/global", response_model=PrivacySettingsResponse)
async def update_global_privacy(
    payload: GlobalPrivacyRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Show or hide online status from everyone."""
    try:
        return await user_service.update_global_privacy(session, user["id"], payload.show_online_status)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating privacy settings: {e}")
        raise HTTPException(status_code=500, detail="Error updating privacy settings")


@router.put("/api/users/privacy-settings/friend/{friend_id}")
async def update_friend_privacy(
    friend_id: int,
    payload: FriendPrivacyRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Hide or reveal online status for one friend."""
    try:
        return await user_service.set_friend_privacy(
            session, user["id"], friend_id, payload.hide_online_status
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error updating friend privacy: {e}")
        raise HTTPException(status_code=500, detail="Error updating friend privacy")


@router.get("/api/users/privacy-settings/friend/{friend_id}")
async def get_friend_privacy(
    friend_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await user_service.get_friend_privacy(session, user["id"], friend_id)
    except Exception as e:
        logger.error(f"Error getting friend privacy: {e}")
        raise HTTPException(status_code=500, detail="Error getting friend privacy")


@router.get("/api/users/{user_id}")
async def get_user_profile(
    user_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get another user's public profile."""
    try:
        return await user_service.get_public_profile(session, user["id"], user_id)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error getting user profile: {e}")
        raise HTTPException(status_code=500, detail="Error getting user profile")
