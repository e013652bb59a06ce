"""
Authentication service: password hashing, JWT access tokens, refresh tokens,
and the signup/signin/refresh/logout flows built on them.
"""

import os
import secrets
import logging
from datetime import timedelta
from typing import Dict, Optional

import bcrypt
import jwt
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession

from friendsleague.database.models import User
from friendsleague.services import user_service
from friendsleague.utils.datetime_utils import utcnow, ensure_utc
from friendsleague.utils.exceptions import AuthenticationError

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = 12

if JWT_SECRET_KEY == "dev-secret-change-me" and os.getenv("ENV", "").lower() == "production":
    logger.warning("JWT_SECRET_KEY is not set; using the development default")


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Claims to include (user_id, username)
        expires_delta: Lifetime override (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        Encoded JWT string
    """
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict]:
    """
    Decode and validate a JWT access token.

    Returns:
        Token payload, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid access token: {e}")
        return None


def generate_refresh_token() -> str:
    """Generate an opaque random refresh token."""
    return secrets.token_urlsafe(48)


async def _issue_tokens(session: AsyncSession, user: User) -> Dict:
    access_token = create_access_token({"user_id": user.id, "username": user.username})
    refresh_token = generate_refresh_token()
    expires_at = utcnow() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
    await user_service.create_refresh_token(session, user.id, refresh_token, expires_at)
    return {
        "user": user_service._user_to_dict(user),
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


async def register_user(
    session: AsyncSession,
    username: str,
    password: str,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> Dict:
    """
    Create an account and sign it in.

    Raises:
        ConflictError: If username, email or phone number is already registered
    """
    user = await user_service.create_user(
        session,
        username=username,
        password_hash=hash_password(password),
        email=email,
        phone_number=phone_number,
    )
    return await _issue_tokens(session, user)


async def authenticate_user(session: AsyncSession, username: str, password: str) -> Dict:
    """
    Verify credentials, mark the user online and issue tokens.

    Raises:
        AuthenticationError: If the username is unknown or the password is wrong
    """
    user = await user_service.get_user_by_username(session, username)
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    user.is_online = True
    user.last_seen = utcnow()
    await session.flush()
    logger.info(f"User {user.id} signed in")
    return await _issue_tokens(session, user)


async def refresh_access_token(session: AsyncSession, refresh_token: str) -> Dict:
    """
    Exchange a stored refresh token for a new access token.

    Raises:
        AuthenticationError: If the token is unknown or expired (expired tokens are deleted)
    """
    stored = await user_service.get_refresh_token(session, refresh_token)
    if stored is None:
        raise AuthenticationError("Invalid refresh token")

    if ensure_utc(stored.expires_at) < utcnow():
        await user_service.delete_refresh_token(session, refresh_token)
        # Commit now; the request session rolls back once the error propagates
        await session.commit()
        raise AuthenticationError("Refresh token expired")

    user = await session.get(User, stored.user_id)
    if user is None:
        raise AuthenticationError("Invalid refresh token")

    return {
        "access_token": create_access_token({"user_id": user.id, "username": user.username}),
        "token_type": "bearer",
    }


async def logout_user(session: AsyncSession, user_id: int) -> None:
    """Mark the user offline and revoke all their refresh tokens."""
    await user_service.set_online_status(session, user_id, False)
    deleted = await user_service.delete_user_refresh_tokens(session, user_id)
    logger.info(f"User {user_id} logged out ({deleted} refresh token(s) revoked)")
