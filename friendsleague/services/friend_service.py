"""
Friend service for managing friendships and friend-level privacy.

Friendships are stored once per pair, normalized so that user1_id < user2_id.
"""

from typing import List, Dict, Set, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, and_, or_, case
from friendsleague.database.models import Friendship, FriendPrivacySetting, User
from friendsleague.utils.datetime_utils import isoformat
from friendsleague.utils.exceptions import BadRequestError, ConflictError, NotFoundError
import logging

logger = logging.getLogger(__name__)


def normalize_pair(user_id: int, other_user_id: int) -> Tuple[int, int]:
    """Return the pair ordered as stored (smaller id first)."""
    return (user_id, other_user_id) if user_id < other_user_id else (other_user_id, user_id)


async def get_friend_ids(session: AsyncSession, user_id: int) -> Set[int]:
    """
    Get the set of all friend user_ids for a given user.

    Args:
        session: Database session
        user_id: User to look up friends for

    Returns:
        Set of friend user IDs
    """
    result = await session.execute(
        select(
            case(
                (Friendship.user1_id == user_id, Friendship.user2_id),
                else_=Friendship.user1_id,
            )
        ).where(or_(Friendship.user1_id == user_id, Friendship.user2_id == user_id))
    )
    return set(result.scalars().all())


async def are_friends(session: AsyncSession, user_id: int, other_user_id: int) -> bool:
    """
    Check if two users are friends.

    Args:
        session: Database session
        user_id: First user ID
        other_user_id: Second user ID

    Returns:
        True if the users are friends
    """
    if user_id == other_user_id:
        return False
    u1, u2 = normalize_pair(user_id, other_user_id)
    result = await session.execute(
        select(Friendship.id).where(
            and_(Friendship.user1_id == u1, Friendship.user2_id == u2)
        )
    )
    return result.scalar_one_or_none() is not None


async def create_friendship(session: AsyncSession, user_id: int, other_user_id: int) -> Friendship:
    """
    Create a friendship between two users.

    Raises:
        BadRequestError: If both ids are the same user
        ConflictError: If the users are already friends
    """
    if user_id == other_user_id:
        raise BadRequestError("You cannot befriend yourself")
    if await are_friends(session, user_id, other_user_id):
        raise ConflictError("You are already friends")

    u1, u2 = normalize_pair(user_id, other_user_id)
    friendship = Friendship(user1_id=u1, user2_id=u2)
    session.add(friendship)
    await session.flush()
    logger.info(f"Friendship created between users {u1} and {u2}")
    return friendship


async def remove_friend(session: AsyncSession, user_id: int, friend_id: int) -> None:
    """
    Remove a friendship along with any privacy overrides between the pair.

    Raises:
        NotFoundError: If the users are not friends
    """
    u1, u2 = normalize_pair(user_id, friend_id)
    result = await session.execute(
        delete(Friendship).where(
            and_(Friendship.user1_id == u1, Friendship.user2_id == u2)
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("Friendship not found")

    await session.execute(
        delete(FriendPrivacySetting).where(
            or_(
                and_(FriendPrivacySetting.user_id == user_id, FriendPrivacySetting.friend_id == friend_id),
                and_(FriendPrivacySetting.user_id == friend_id, FriendPrivacySetting.friend_id == user_id),
            )
        )
    )
    logger.info(f"User {user_id} removed friend {friend_id}")


async def get_hidden_viewer_ids(session: AsyncSession, user_id: int) -> Set[int]:
    """Friends that user_id hides their online status from."""
    result = await session.execute(
        select(FriendPrivacySetting.friend_id).where(
            FriendPrivacySetting.user_id == user_id,
            FriendPrivacySetting.hide_online_status == True,  # noqa: E712
        )
    )
    return set(result.scalars().all())


async def get_users_hiding_from(session: AsyncSession, viewer_id: int) -> Set[int]:
    """Users that hide their online status from viewer_id."""
    result = await session.execute(
        select(FriendPrivacySetting.user_id).where(
            FriendPrivacySetting.friend_id == viewer_id,
            FriendPrivacySetting.hide_online_status == True,  # noqa: E712
        )
    )
    return set(result.scalars().all())


def presence_fields(user: User, visible: bool) -> Dict:
    """Online status fields for a user as seen by someone else."""
    if not visible:
        return {"is_online": False, "last_seen": None}
    return {"is_online": bool(user.is_online), "last_seen": isoformat(user.last_seen)}


def is_presence_visible(user: User, viewer_id: int, is_friend: bool, hidden_from_viewer: bool) -> bool:
    """
    Whether viewer_id may see user's online status.

    The user must share status globally and must not have hidden it from the
    viewer, who has to be the user or one of their friends.
    """
    if not user.show_online_status:
        return False
    if user.id == viewer_id:
        return True
    return is_friend and not hidden_from_viewer


def format_friend(user: User, visible: bool) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "avatar": user.avatar,
        "bio": user.bio,
        **presence_fields(user, visible),
    }


async def get_friends(session: AsyncSession, user_id: int) -> List[Dict]:
    """
    Get a user's friends ordered by username, with presence masked per friend.

    Args:
        session: Database session
        user_id: User whose friends to list

    Returns:
        List of friend dicts
    """
    friend_ids = await get_friend_ids(session, user_id)
    if not friend_ids:
        return []

    result = await session.execute(
        select(User).where(User.id.in_(friend_ids)).order_by(User.username)
    )
    hiding = await get_users_hiding_from(session, user_id)
    return [
        format_friend(friend, is_presence_visible(friend, user_id, True, friend.id in hiding))
        for friend in result.scalars().all()
    ]
