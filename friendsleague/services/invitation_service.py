"""
Friend invitation service.

Invitations are sent to a specific user or redeemed by code. Users also have a
personal invite code (shared as QR/text) that makes anyone who redeems it a
friend immediately.
"""

from datetime import timedelta
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_
from friendsleague.database.models import Invitation, FriendInvitationStatus, User
from friendsleague.services import friend_service, user_service
from friendsleague.services.websocket_manager import notify_users
from friendsleague.utils.constants import FRIEND_INVITATION_EXPIRY_DAYS
from friendsleague.utils.datetime_utils import utcnow, ensure_utc, isoformat
from friendsleague.utils.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from friendsleague.utils.invite_codes import generate_unique_code
import logging

logger = logging.getLogger(__name__)


def _user_summary(user: User) -> Dict:
    if user is None:
        return None
    return {"id": user.id, "username": user.username, "avatar": user.avatar}


def _format_invitation(invitation: Invitation, users: Dict[int, User]) -> Dict:
    return {
        "id": invitation.id,
        "code": invitation.code,
        "status": invitation.status,
        "inviter": _user_summary(users.get(invitation.inviter_id)),
        "invitee": _user_summary(users.get(invitation.invitee_id)) if invitation.invitee_id else None,
        "expires_at": isoformat(invitation.expires_at),
        "created_at": isoformat(invitation.created_at),
    }


async def _format_many(session: AsyncSession, invitations: List[Invitation]) -> List[Dict]:
    ids = set()
    for inv in invitations:
        ids.add(inv.inviter_id)
        if inv.invitee_id:
            ids.add(inv.invitee_id)
    users = await user_service.get_users_by_ids(session, ids)
    return [_format_invitation(inv, users) for inv in invitations]


def _is_expired(invitation: Invitation) -> bool:
    return ensure_utc(invitation.expires_at) < utcnow()


async def _get_invitation(session: AsyncSession, invitation_id: int) -> Invitation:
    invitation = await session.get(Invitation, invitation_id)
    if invitation is None:
        raise NotFoundError("Invitation not found")
    return invitation


async def create_invitation(session: AsyncSession, inviter_id: int, invitee_id: int) -> Dict:
    """
    Invite another user to become a friend.

    Raises:
        BadRequestError: If inviting yourself
        NotFoundError: If the invitee does not exist
        ConflictError: If already friends or a pending invitation exists either way
    """
    if inviter_id == invitee_id:
        raise BadRequestError("You cannot invite yourself")
    await user_service.get_user_model(session, invitee_id)

    if await friend_service.are_friends(session, inviter_id, invitee_id):
        raise ConflictError("You are already friends")

    result = await session.execute(
        select(Invitation.id).where(
            and_(
                Invitation.status == FriendInvitationStatus.PENDING.value,
                Invitation.expires_at > utcnow(),
                or_(
                    and_(Invitation.inviter_id == inviter_id, Invitation.invitee_id == invitee_id),
                    and_(Invitation.inviter_id == invitee_id, Invitation.invitee_id == inviter_id),
                ),
            )
        )
    )
    if result.first() is not None:
        raise ConflictError("A pending invitation already exists between these users")

    invitation = Invitation(
        inviter_id=inviter_id,
        invitee_id=invitee_id,
        code=await generate_unique_code(session, Invitation.code),
        status=FriendInvitationStatus.PENDING.value,
        expires_at=utcnow() + timedelta(days=FRIEND_INVITATION_EXPIRY_DAYS),
    )
    session.add(invitation)
    await session.flush()

    formatted = (await _format_many(session, [invitation]))[0]
    await notify_users([invitee_id], "invitation:new", formatted)
    logger.info(f"User {inviter_id} invited user {invitee_id} (invitation {invitation.id})")
    return formatted


async def list_invitations(session: AsyncSession, user_id: int) -> List[Dict]:
    """All invitations sent or received by the user, newest first."""
    result = await session.execute(
        select(Invitation)
        .where(or_(Invitation.inviter_id == user_id, Invitation.invitee_id == user_id))
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    )
    return await _format_many(session, list(result.scalars().all()))


async def list_pending_invitations(session: AsyncSession, user_id: int) -> List[Dict]:
    """Incoming invitations that can still be accepted."""
    result = await session.execute(
        select(Invitation)
        .where(
            Invitation.invitee_id == user_id,
            Invitation.status == FriendInvitationStatus.PENDING.value,
            Invitation.expires_at > utcnow(),
        )
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    )
    return await _format_many(session, list(result.scalars().all()))


async def accept_invitation(session: AsyncSession, invitation_id: int, user_id: int) -> Dict:
    """
    Accept an invitation addressed to user_id and create the friendship.

    Raises:
        NotFoundError: If the invitation does not exist
        PermissionDeniedError: If the user is not the invitee
        BadRequestError: If the invitation is no longer pending or has expired
    """
    invitation = await _get_invitation(session, invitation_id)
    if invitation.invitee_id != user_id:
        raise PermissionDeniedError("Only the invitee can accept this invitation")
    if invitation.status != FriendInvitationStatus.PENDING.value:
        raise BadRequestError("Invitation is no longer pending")
    if _is_expired(invitation):
        raise BadRequestError("Invitation has expired")

    await friend_service.create_friendship(session, invitation.inviter_id, user_id)
    invitation.status = FriendInvitationStatus.ACCEPTED.value
    invitation.updated_at = utcnow()
    await session.flush()

    formatted = (await _format_many(session, [invitation]))[0]
    await notify_users([invitation.inviter_id], "invitation:accepted", formatted)
    return formatted


async def reject_invitation(session: AsyncSession, invitation_id: int, user_id: int) -> Dict:
    """Reject an invitation addressed to user_id."""
    invitation = await _get_invitation(session, invitation_id)
    if invitation.invitee_id != user_id:
        raise PermissionDeniedError("Only the invitee can reject this invitation")
    if invitation.status != FriendInvitationStatus.PENDING.value:
        raise BadRequestError("Invitation is no longer pending")

    invitation.status = FriendInvitationStatus.REJECTED.value
    invitation.updated_at = utcnow()
    await session.flush()
    return (await _format_many(session, [invitation]))[0]


async def cancel_invitation(session: AsyncSession, invitation_id: int, user_id: int) -> Dict:
    """Cancel an invitation sent by user_id."""
    invitation = await _get_invitation(session, invitation_id)
    if invitation.inviter_id != user_id:
        raise PermissionDeniedError("Only the inviter can cancel this invitation")
    if invitation.status != FriendInvitationStatus.PENDING.value:
        raise BadRequestError("Invitation is no longer pending")

    invitation.status = FriendInvitationStatus.CANCELLED.value
    invitation.updated_at = utcnow()
    await session.flush()
    return (await _format_many(session, [invitation]))[0]


async def use_invite_code(session: AsyncSession, user_id: int, code: str) -> Dict:
    """
    Redeem a personal invite code or an invitation code.

    Args:
        session: Database session
        user_id: User redeeming the code
        code: Personal invite code of another user, or an invitation code

    Returns:
        Dict with success flag, message and the new friend

    Raises:
        NotFoundError: If the code matches nothing
        BadRequestError: If redeeming your own code or a stale invitation
        ConflictError: If already friends
    """
    code = code.strip().upper()

    owner = await user_service.get_user_by_invite_code(session, code)
    if owner is not None:
        if owner.id == user_id:
            raise BadRequestError("You cannot use your own invite code")
        await friend_service.create_friendship(session, owner.id, user_id)
        logger.info(f"User {user_id} became friends with {owner.id} via personal code")
        return {
            "success": True,
            "message": f"You are now friends with {owner.username}",
            "friend": _user_summary(owner),
        }

    result = await session.execute(select(Invitation).where(Invitation.code == code))
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invalid invite code")
    if invitation.inviter_id == user_id:
        raise BadRequestError("You cannot use your own invite code")
    if invitation.status != FriendInvitationStatus.PENDING.value:
        raise BadRequestError("Invitation is no longer pending")
    if _is_expired(invitation):
        raise BadRequestError("Invitation has expired")

    await friend_service.create_friendship(session, invitation.inviter_id, user_id)
    invitation.invitee_id = user_id
    invitation.status = FriendInvitationStatus.ACCEPTED.value
    invitation.updated_at = utcnow()
    await session.flush()

    inviter = await session.get(User, invitation.inviter_id)
    await notify_users(
        [invitation.inviter_id],
        "invitation:accepted",
        (await _format_many(session, [invitation]))[0],
    )
    return {
        "success": True,
        "message": f"You are now friends with {inviter.username}",
        "friend": _user_summary(inviter),
    }


async def get_my_invite_code(session: AsyncSession, user_id: int) -> Dict:
    user = await user_service.get_user_model(session, user_id)
    return {"code": user.invite_code, "username": user.username}
