"""
User service layer for accounts, profiles, presence, privacy and refresh tokens.
"""

from typing import Optional, Dict, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from friendsleague.database.models import User, RefreshToken, FriendPrivacySetting
from friendsleague.services import friend_service
from friendsleague.utils import constants
from friendsleague.utils.datetime_utils import utcnow, isoformat
from friendsleague.utils.exceptions import BadRequestError, ConflictError, NotFoundError
from friendsleague.utils.invite_codes import generate_unique_code
import logging

logger = logging.getLogger(__name__)


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to the dictionary returned to its owner.

    Args:
        user: User ORM instance

    Returns:
        User dictionary (never includes the password hash)
    """
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "phone_number": user.phone_number,
        "bio": user.bio,
        "avatar": user.avatar,
        "is_online": bool(user.is_online),
        "last_seen": isoformat(user.last_seen),
        "show_online_status": bool(user.show_online_status),
        "invite_code": user.invite_code,
        "created_at": isoformat(user.created_at),
    }


def _public_user_dict(user: User, presence_visible: bool, is_friend: bool = False) -> Dict:
    """User dictionary as seen by another user."""
    return {
        "id": user.id,
        "username": user.username,
        "bio": user.bio,
        "avatar": user.avatar,
        "is_friend": is_friend,
        **friend_service.presence_fields(user, presence_visible),
    }


async def get_user_model(session: AsyncSession, user_id: int) -> User:
    """
    Load a User row or raise.

    Raises:
        NotFoundError: If the user does not exist
    """
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_invite_code(session: AsyncSession, code: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.invite_code == code))
    return result.scalar_one_or_none()


async def _ensure_unique(
    session: AsyncSession,
    username: Optional[str] = None,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    exclude_user_id: Optional[int] = None,
):
    """Raise ConflictError if any of the given identifiers belongs to another user."""
    checks = [
        ("Username", User.username, username),
        ("Email", User.email, email),
        ("Phone number", User.phone_number, phone_number),
    ]
    for label, column, value in checks:
        if value is None:
            continue
        query = select(User.id).where(column == value)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        result = await session.execute(query)
        if result.first() is not None:
            raise ConflictError(f"{label} already exists")


async def create_user(
    session: AsyncSession,
    username: str,
    password_hash: str,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
) -> User:
    """
    Create a new user account with a personal invite code.

    Args:
        session: Database session
        username: Unique username
        password_hash: Hashed password
        email: Optional unique email
        phone_number: Optional unique phone number

    Returns:
        The created User

    Raises:
        ConflictError: If the username, email or phone number is taken
    """
    await _ensure_unique(session, username=username, email=email, phone_number=phone_number)

    user = User(
        username=username,
        email=email,
        phone_number=phone_number,
        password_hash=password_hash,
        invite_code=await generate_unique_code(session, User.invite_code),
        is_online=False,
        show_online_status=True,
    )
    session.add(user)
    await session.flush()
    await session.refresh(user)
    logger.info(f"Created user {user.id} ({username})")
    return user


async def update_profile(session: AsyncSession, user_id: int, updates: Dict) -> Dict:
    """
    Apply a partial profile update.

    Args:
        session: Database session
        user_id: User being updated
        updates: Fields to set (username, bio, avatar, email, phone_number)

    Returns:
        Updated user dictionary

    Raises:
        BadRequestError: If username is set to null
        NotFoundError: If the user does not exist
        ConflictError: If a new username, email or phone number is taken
    """
    if "username" in updates and updates["username"] is None:
        raise BadRequestError("Username cannot be empty")
    user = await get_user_model(session, user_id)
    await _ensure_unique(
        session,
        username=updates.get("username"),
        email=updates.get("email"),
        phone_number=updates.get("phone_number"),
        exclude_user_id=user_id,
    )

    for field in ("username", "bio", "avatar", "email", "phone_number"):
        if field in updates:
            setattr(user, field, updates[field])
    user.updated_at = utcnow()
    await session.flush()
    return _user_to_dict(user)


async def search_users(session: AsyncSession, user_id: int, query: str) -> List[Dict]:
    """
    Case-insensitive substring search on username, excluding the requester.

    Args:
        session: Database session
        user_id: Requesting user (excluded from results)
        query: Search text

    Returns:
        Up to USER_SEARCH_LIMIT public user dicts
    """
    query = (query or "").strip()
    if len(query) < constants.USER_SEARCH_MIN_QUERY:
        return []

    result = await session.execute(
        select(User)
        .where(func.lower(User.username).contains(query.lower(), autoescape=True), User.id != user_id)
        .order_by(User.username)
        .limit(constants.USER_SEARCH_LIMIT)
    )
    users = result.scalars().all()
    friend_ids = await friend_service.get_friend_ids(session, user_id)
    hiding = await friend_service.get_users_hiding_from(session, user_id)
    return [
        _public_user_dict(
            u,
            friend_service.is_presence_visible(u, user_id, u.id in friend_ids, u.id in hiding),
            is_friend=u.id in friend_ids,
        )
        for u in users
    ]


async def get_public_profile(session: AsyncSession, viewer_id: int, user_id: int) -> Dict:
    """
    Get another user's profile with presence masked for the viewer.

    Raises:
        NotFoundError: If the user does not exist
    """
    user = await get_user_model(session, user_id)
    if viewer_id == user_id:
        visible = friend_service.is_presence_visible(user, viewer_id, False, False)
        return {**_user_to_dict(user), **friend_service.presence_fields(user, visible)}

    is_friend = await friend_service.are_friends(session, viewer_id, user_id)
    hiding = await friend_service.get_users_hiding_from(session, viewer_id)
    visible = friend_service.is_presence_visible(user, viewer_id, is_friend, user_id in hiding)
    return _public_user_dict(user, visible, is_friend=is_friend)


async def set_online_status(session: AsyncSession, user_id: int, is_online: bool) -> Dict:
    """
    Set a user's online flag and stamp last_seen.

    Args:
        session: Database session
        user_id: User ID
        is_online: New online state

    Returns:
        Updated user dictionary
    """
    user = await get_user_model(session, user_id)
    user.is_online = is_online
    user.last_seen = utcnow()
    await session.flush()
    return _user_to_dict(user)


async def get_presence_audience(session: AsyncSession, user_id: int) -> List[int]:
    """
    Users allowed to receive presence updates for user_id: friends, unless the
    user hides their status globally or from that particular friend.
    """
    user = await session.get(User, user_id)
    if user is None or not user.show_online_status:
        return []
    friend_ids = await friend_service.get_friend_ids(session, user_id)
    hidden = await friend_service.get_hidden_viewer_ids(session, user_id)
    return sorted(friend_ids - hidden)


# ---------------------------------------------------------------------------
# Privacy settings
# ---------------------------------------------------------------------------


async def get_privacy_settings(session: AsyncSession, user_id: int) -> Dict:
    user = await get_user_model(session, user_id)
    hidden = await friend_service.get_hidden_viewer_ids(session, user_id)
    return {
        "show_online_status": bool(user.show_online_status),
        "hidden_from": sorted(hidden),
    }


async def update_global_privacy(session: AsyncSession, user_id: int, show_online_status: bool) -> Dict:
    """Toggle whether the user's online status is shared with anyone."""
    user = await get_user_model(session, user_id)
    user.show_online_status = show_online_status
    await session.flush()
    return await get_privacy_settings(session, user_id)


async def set_friend_privacy(
    session: AsyncSession, user_id: int, friend_id: int, hide_online_status: bool
) -> Dict:
    """
    Hide or reveal the user's online status for a single friend.

    Raises:
        NotFoundError: If friend_id is not a friend of user_id
    """
    if not await friend_service.are_friends(session, user_id, friend_id):
        raise NotFoundError("Friend not found")

    result = await session.execute(
        select(FriendPrivacySetting).where(
            FriendPrivacySetting.user_id == user_id,
            FriendPrivacySetting.friend_id == friend_id,
        )
    )
    setting = result.scalar_one_or_none()
    if setting is None:
        setting = FriendPrivacySetting(user_id=user_id, friend_id=friend_id)
        session.add(setting)
    setting.hide_online_status = hide_online_status
    await session.flush()
    return {"friend_id": friend_id, "hide_online_status": hide_online_status}


async def get_friend_privacy(session: AsyncSession, user_id: int, friend_id: int) -> Dict:
    result = await session.execute(
        select(FriendPrivacySetting.hide_online_status).where(
            FriendPrivacySetting.user_id == user_id,
            FriendPrivacySetting.friend_id == friend_id,
        )
    )
    hide = result.scalar_one_or_none()
    return {"friend_id": friend_id, "hide_online_status": bool(hide)}


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


async def create_refresh_token(
    session: AsyncSession, user_id: int, token: str, expires_at: datetime
) -> None:
    """
    Store a refresh token, replacing any the user already had.

    Args:
        session: Database session
        user_id: User ID
        token: Refresh token string
        expires_at: Expiration datetime
    """
    await session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    session.add(RefreshToken(user_id=user_id, token=token, expires_at=expires_at))
    await session.flush()


async def get_refresh_token(session: AsyncSession, token: str) -> Optional[RefreshToken]:
    result = await session.execute(select(RefreshToken).where(RefreshToken.token == token))
    return result.scalar_one_or_none()


async def delete_refresh_token(session: AsyncSession, token: str) -> bool:
    """
    Delete a refresh token (expired or rotated).

    Returns:
        True if token was deleted, False otherwise
    """
    result = await session.execute(delete(RefreshToken).where(RefreshToken.token == token))
    return result.rowcount > 0


async def delete_user_refresh_tokens(session: AsyncSession, user_id: int) -> int:
    """
    Delete all refresh tokens for a user.

    Returns:
        Number of tokens deleted
    """
    result = await session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    return result.rowcount


async def get_users_by_ids(session: AsyncSession, user_ids) -> Dict[int, User]:
    """Load several users at once, keyed by id."""
    ids = set(user_ids)
    if not ids:
        return {}
    result = await session.execute(select(User).where(User.id.in_(ids)))
    return {u.id: u for u in result.scalars().all()}
