"""Authentication route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.api.routes import limiter, SIGNIN_RATE_LIMIT, service_error_response
from friendsleague.database.db import get_db_session
from friendsleague.services import auth_service
from friendsleague.api.auth_dependencies import get_current_user
from friendsleague.models.schemas import (
    SignupRequest,
    SigninRequest,
    AuthResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    MessageResponse,
)
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/auth/signup", response_model=AuthResponse, status_code=201)
async def signup(payload: SignupRequest, session: AsyncSession = Depends(get_db_session)):
    """Create an account and return access and refresh tokens."""
    try:
        return await auth_service.register_user(
            session,
            username=payload.username,
            password=payload.password,
            email=payload.email,
            phone_number=payload.phone_number,
        )
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error during signup: {e}")
        raise HTTPException(status_code=500, detail="Error creating account")


@router.post("/api/auth/signin", response_model=AuthResponse)
@limiter.limit(SIGNIN_RATE_LIMIT)
async def signin(
    request: Request, payload: SigninRequest, session: AsyncSession = Depends(get_db_session)
):
    """Sign in with username and password."""
    try:
        return await auth_service.authenticate_user(session, payload.username, payload.password)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error during signin: {e}")
        raise HTTPException(status_code=500, detail="Error signing in")


@router.post("/api/auth/refresh", response_model=RefreshTokenResponse)
async def refresh_token(payload: RefreshTokenRequest, session: AsyncSession = Depends(get_db_session)):
    """Exchange a refresh token for a new access token."""
    try:
        return await auth_service.refresh_access_token(session, payload.refresh_token)
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error refreshing token: {e}")
        raise HTTPException(status_code=500, detail="Error refreshing token")


@router.post("/api/auth/logout", response_model=MessageResponse)
async def logout(
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Log out: revoke refresh tokens and mark the user offline."""
    try:
        await auth_service.logout_user(session, current_user["id"])
        return {"message": "Logged out successfully"}
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error during logout: {e}")
        raise HTTPException(status_code=500, detail="Error logging out")
