"""
Event service: events, participants, scoring rules, points and invitations.

Events may belong to a league; points awarded in such an event are also
credited to the participant's league membership.
"""

from datetime import timedelta
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from friendsleague.database.models import (
    Event,
    EventParticipant,
    EventRule,
    EventInvitation,
    InvitationStatus,
    PointCategory,
    User,
)
from friendsleague.services import league_service, ranking_service, user_service
from friendsleague.utils.constants import EVENT_INVITATION_DEFAULT_DAYS
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


async def get_event_model(session: AsyncSession, event_id: int) -> Event:
    event = await session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return event


async def get_participant(session: AsyncSession, event_id: int, user_id: int) -> Optional[EventParticipant]:
    result = await session.execute(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id, EventParticipant.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_participant(session: AsyncSession, event_id: int, user_id: int) -> bool:
    return await get_participant(session, event_id, user_id) is not None


async def require_admin(session: AsyncSession, event_id: int, user_id: int) -> Event:
    event = await get_event_model(session, event_id)
    if event.admin_id != user_id:
        raise PermissionDeniedError("Only the event admin can perform this action")
    return event


async def ensure_can_view(session: AsyncSession, event: Event, user_id: int) -> None:
    if not event.is_private or event.admin_id == user_id:
        return
    if await is_participant(session, event.id, user_id):
        return
    raise PermissionDeniedError("This event is private")


async def _participant_count(session: AsyncSession, event_id: int) -> int:
    result = await session.execute(
        select(func.count(EventParticipant.id)).where(EventParticipant.event_id == event_id)
    )
    return result.scalar() or 0


def _validate_dates(start_date, end_date):
    if end_date is not None and ensure_utc(end_date) < ensure_utc(start_date):
        raise BadRequestError("End date must be on or after the start date")


def _format_event(event: Event, include_invite_code: bool = False, **extra) -> Dict:
    data = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "league_id": event.league_id,
        "admin_id": event.admin_id,
        "start_date": isoformat(event.start_date),
        "end_date": isoformat(event.end_date),
        "max_participants": event.max_participants,
        "is_private": event.is_private,
        "has_scoring": event.has_scoring,
        "invite_code": event.invite_code if include_invite_code else None,
        "created_at": isoformat(event.created_at),
        "updated_at": isoformat(event.updated_at),
    }
    data.update(extra)
    return data


def _format_participant(participant: EventParticipant, user: User) -> Dict:
    return {
        "user_id": participant.user_id,
        "username": user.username if user else None,
        "avatar": user.avatar if user else None,
        "points": participant.points,
        "rank": participant.rank,
        "joined_at": isoformat(participant.joined_at),
    }


def _format_rule(rule: EventRule) -> Dict:
    return {
        "id": rule.id,
        "event_id": rule.event_id,
        "title": rule.title,
        "description": rule.description,
        "points": rule.points,
        "category": rule.category,
        "created_at": isoformat(rule.created_at),
    }


def _format_invitation(invitation: EventInvitation) -> Dict:
    return {
        "id": invitation.id,
        "event_id": invitation.event_id,
        "inviter_id": invitation.inviter_id,
        "code": invitation.code,
        "email": invitation.email,
        "phone_number": invitation.phone_number,
        "status": invitation.status,
        "expires_at": isoformat(invitation.expires_at),
        "created_at": isoformat(invitation.created_at),
    }


async def _ranked_participants(session: AsyncSession, event_id: int) -> List[Dict]:
    result = await session.execute(
        select(EventParticipant, User)
        .join(User, User.id == EventParticipant.user_id)
        .where(EventParticipant.event_id == event_id)
        .order_by(EventParticipant.rank.asc(), EventParticipant.id.asc())
    )
    return [_format_participant(p, u) for p, u in result.all()]


async def _event_for_viewer(session: AsyncSession, event: Event, user_id: int, **extra) -> Dict:
    insider = event.admin_id == user_id or await is_participant(session, event.id, user_id)
    return _format_event(event, include_invite_code=insider, **extra)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


async def create_event(session: AsyncSession, user_id: int, data: Dict) -> Dict:
    """
    Create an event. The creator is its admin and always a participant.

    Args:
        session: Database session
        user_id: Creator
        data: title, description, league_id, start_date, end_date,
              max_participants, is_private, has_scoring, participant_ids

    Raises:
        BadRequestError: Bad date order or more participants than allowed
        NotFoundError: Unknown league or participant
        PermissionDeniedError: Creator is not in the linked league
    """
    start_date = ensure_utc(data["start_date"])
    end_date = ensure_utc(data.get("end_date"))
    _validate_dates(start_date, end_date)

    league_id = data.get("league_id")
    if league_id is not None:
        league = await league_service.get_league_model(session, league_id)
        in_league = await league_service.is_member(session, league_id, user_id) or (
            user_id in await league_service.get_admin_ids(session, league)
        )
        if not in_league:
            raise PermissionDeniedError("You must be a member of the league to create events in it")

    participant_ids = [pid for pid in dict.fromkeys(data.get("participant_ids") or []) if pid != user_id]
    users = await user_service.get_users_by_ids(session, participant_ids)
    missing = [pid for pid in participant_ids if pid not in users]
    if missing:
        raise NotFoundError(f"User(s) not found: {', '.join(str(m) for m in missing)}")

    max_participants = data.get("max_participants")
    if max_participants is not None and len(participant_ids) + 1 > max_participants:
        raise BadRequestError("Too many participants for this event")

    is_private = bool(data.get("is_private", False))
    event = Event(
        title=data["title"],
        description=data.get("description"),
        league_id=league_id,
        admin_id=user_id,
        start_date=start_date,
        end_date=end_date,
        max_participants=max_participants,
        is_private=is_private,
        has_scoring=data.get("has_scoring", True),
        invite_code=await generate_unique_code(session, Event.invite_code) if is_private else None,
    )
    session.add(event)
    await session.flush()

    for pid in [user_id, *participant_ids]:
        session.add(EventParticipant(event_id=event.id, user_id=pid, points=0))
    await session.flush()
    await ranking_service.recalculate_event_ranks(session, event.id)

    logger.info(f"User {user_id} created event {event.id} ({event.title})")
    return _format_event(
        event,
        include_invite_code=True,
        participants=await _ranked_participants(session, event.id),
    )


async def list_events(session: AsyncSession, user_id: int) -> List[Dict]:
    """Public events plus events the user participates in or administers."""
    participating = select(EventParticipant.event_id).where(EventParticipant.user_id == user_id)
    result = await session.execute(
        select(Event)
        .where(
            or_(
                Event.is_private == False,  # noqa: E712
                Event.admin_id == user_id,
                Event.id.in_(participating),
            )
        )
        .order_by(Event.start_date.desc(), Event.id.desc())
    )
    events = result.scalars().all()
    mine = set((await session.execute(participating)).scalars().all())
    counts = dict(
        (
            await session.execute(
                select(EventParticipant.event_id, func.count(EventParticipant.id))
                .where(EventParticipant.event_id.in_([e.id for e in events]))
                .group_by(EventParticipant.event_id)
            )
        ).all()
    ) if events else {}
    return [
        _format_event(
            e,
            include_invite_code=e.admin_id == user_id or e.id in mine,
            participant_count=counts.get(e.id, 0),
            is_participant=e.id in mine,
        )
        for e in events
    ]


async def list_league_events(session: AsyncSession, league_id: int, user_id: int) -> List[Dict]:
    league = await league_service.get_league_model(session, league_id)
    await league_service.ensure_can_view(session, league, user_id)
    result = await session.execute(
        select(Event).where(Event.league_id == league_id).order_by(Event.start_date.desc(), Event.id.desc())
    )
    return [await _event_for_viewer(session, e, user_id) for e in result.scalars().all()]


async def get_event(session: AsyncSession, event_id: int, user_id: int) -> Dict:
    """Event detail with ranked participants, rules and pending invitations."""
    event = await get_event_model(session, event_id)
    await ensure_can_view(session, event, user_id)

    rules = await session.execute(
        select(EventRule).where(EventRule.event_id == event_id).order_by(EventRule.created_at.desc(), EventRule.id.desc())
    )
    invitations = []
    if event.admin_id == user_id:
        result = await session.execute(
            select(EventInvitation).where(
                EventInvitation.event_id == event_id,
                EventInvitation.status == InvitationStatus.PENDING.value,
            )
        )
        invitations = [_format_invitation(i) for i in result.scalars().all()]

    return await _event_for_viewer(
        session,
        event,
        user_id,
        participants=await _ranked_participants(session, event_id),
        rules=[_format_rule(r) for r in rules.scalars().all()],
        invitations=invitations,
    )


async def update_event(session: AsyncSession, event_id: int, user_id: int, updates: Dict) -> Dict:
    event = await require_admin(session, event_id, user_id)

    start_date = ensure_utc(updates["start_date"]) if updates.get("start_date") else ensure_utc(event.start_date)
    if "end_date" in updates:
        end_date = ensure_utc(updates["end_date"])
    else:
        end_date = ensure_utc(event.end_date)
    _validate_dates(start_date, end_date)

    if "max_participants" in updates:
        limit = updates["max_participants"]
        if limit is not None and limit < await _participant_count(session, event_id):
            raise BadRequestError("Event already has more participants than the new limit")
        event.max_participants = limit

    for field in ("title", "description", "has_scoring"):
        if updates.get(field) is not None:
            setattr(event, field, updates[field])
    event.start_date = start_date
    event.end_date = end_date

    if updates.get("is_private") is not None:
        event.is_private = updates["is_private"]
        event.invite_code = (
            await generate_unique_code(session, Event.invite_code) if event.is_private else None
        )
    event.updated_at = utcnow()
    await session.flush()
    return _format_event(event, include_invite_code=True)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


async def _add_participant(session: AsyncSession, event: Event, user_id: int) -> EventParticipant:
    if await is_participant(session, event.id, user_id):
        raise ConflictError("User is already participating in this event")
    if event.max_participants is not None:
        if await _participant_count(session, event.id) >= event.max_participants:
            raise ConflictError("Event is full")

    participant = EventParticipant(event_id=event.id, user_id=user_id, points=0)
    session.add(participant)
    await session.flush()
    await ranking_service.recalculate_event_ranks(session, event.id)
    return participant


async def join_event(
    session: AsyncSession, event_id: int, user_id: int, invite_code: Optional[str] = None
) -> Dict:
    """
    Join an event; private events require the invite code.

    Raises:
        ConflictError: Already participating or event is full
        PermissionDeniedError: Missing or wrong invite code
    """
    event = await get_event_model(session, event_id)
    if event.is_private and event.admin_id != user_id:
        if not invite_code or invite_code.strip().upper() != event.invite_code:
            raise PermissionDeniedError("Invalid invite code")
    await _add_participant(session, event, user_id)
    logger.info(f"User {user_id} joined event {event_id}")
    return await _event_for_viewer(session, event, user_id)


async def leave_event(session: AsyncSession, event_id: int, user_id: int) -> Dict:
    event = await get_event_model(session, event_id)
    if event.admin_id == user_id:
        raise PermissionDeniedError("The event admin cannot leave the event")
    participant = await get_participant(session, event_id, user_id)
    if participant is None:
        raise NotFoundError("You are not participating in this event")

    await session.delete(participant)
    await session.flush()
    await ranking_service.recalculate_event_ranks(session, event_id)
    return {"message": "Left event", "event_id": event_id}


async def add_participant(session: AsyncSession, event_id: int, admin_user_id: int, user_id: int) -> Dict:
    event = await require_admin(session, event_id, admin_user_id)
    user = await user_service.get_user_model(session, user_id)
    participant = await _add_participant(session, event, user_id)
    return _format_participant(participant, user)


async def remove_participant(session: AsyncSession, event_id: int, admin_user_id: int, user_id: int) -> None:
    event = await require_admin(session, event_id, admin_user_id)
    if user_id == event.admin_id:
        raise PermissionDeniedError("The event admin cannot be removed")
    participant = await get_participant(session, event_id, user_id)
    if participant is None:
        raise NotFoundError("User is not participating in this event")

    await session.delete(participant)
    await session.flush()
    await ranking_service.recalculate_event_ranks(session, event_id)


async def get_participants(session: AsyncSession, event_id: int, user_id: int) -> List[Dict]:
    event = await get_event_model(session, event_id)
    await ensure_can_view(session, event, user_id)
    return await _ranked_participants(session, event_id)


# ---------------------------------------------------------------------------
# Rules and points
# ---------------------------------------------------------------------------


async def create_rule(session: AsyncSession, event_id: int, user_id: int, data: Dict) -> Dict:
    await require_admin(session, event_id, user_id)
    rule = EventRule(
        event_id=event_id,
        title=data["title"],
        description=data.get("description"),
        points=data["points"],
        category=PointCategory(data["category"]).value,
    )
    session.add(rule)
    await session.flush()
    return _format_rule(rule)


async def list_rules(session: AsyncSession, event_id: int, user_id: int) -> List[Dict]:
    event = await get_event_model(session, event_id)
    await ensure_can_view(session, event, user_id)
    result = await session.execute(
        select(EventRule).where(EventRule.event_id == event_id).order_by(EventRule.created_at.desc(), EventRule.id.desc())
    )
    return [_format_rule(r) for r in result.scalars().all()]


async def assign_points(
    session: AsyncSession,
    event_id: int,
    admin_user_id: int,
    user_id: int,
    points: int,
    category: str,
    reason: Optional[str] = None,
) -> Dict:
    """
    Award points to a participant; league events credit the league standing too.

    Raises:
        BadRequestError: If scoring is disabled for the event
        NotFoundError: If the user is not a participant
    """
    category = PointCategory(category).value
    event = await require_admin(session, event_id, admin_user_id)
    if not event.has_scoring:
        raise BadRequestError("Scoring is disabled for this event")
    participant = await get_participant(session, event_id, user_id)
    if participant is None:
        raise NotFoundError("User is not participating in this event")

    participant.points = (participant.points or 0) + points
    await session.flush()
    await ranking_service.recalculate_event_ranks(session, event_id)

    league_updated = False
    if event.league_id is not None:
        league_updated = await league_service.add_points_to_member(
            session, event.league_id, user_id, points
        )

    user = await session.get(User, user_id)
    logger.info(f"Event {event_id}: {points} point(s) to user {user_id} ({category})")
    return {
        "participant": _format_participant(participant, user),
        "points_added": points,
        "category": category,
        "reason": reason,
        "league_updated": league_updated,
    }


async def get_leaderboard(session: AsyncSession, event_id: int, user_id: int) -> List[Dict]:
    event = await get_event_model(session, event_id)
    await ensure_can_view(session, event, user_id)
    return await _ranked_participants(session, event_id)


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


async def create_invitation(session: AsyncSession, event_id: int, user_id: int, data: Dict) -> Dict:
    await require_admin(session, event_id, user_id)
    invitation = EventInvitation(
        event_id=event_id,
        inviter_id=user_id,
        code=await generate_unique_code(session, EventInvitation.code),
        email=data.get("email"),
        phone_number=data.get("phone_number"),
        status=InvitationStatus.PENDING.value,
        expires_at=utcnow() + timedelta(
            days=data.get("expires_in_days") or EVENT_INVITATION_DEFAULT_DAYS
        ),
    )
    session.add(invitation)
    await session.flush()
    return _format_invitation(invitation)


async def use_invitation(session: AsyncSession, event_id: int, user_id: int, code: str) -> Dict:
    """
    Join an event through an invitation code. Bypasses the private-event code
    check but not the capacity limit.

    Raises:
        NotFoundError: Unknown code
        ConflictError: Code for another event, already used, expired, or event full
    """
    result = await session.execute(
        select(EventInvitation).where(EventInvitation.code == code.strip().upper())
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation not found")
    if invitation.event_id != event_id:
        raise ConflictError("Invitation is for a different event")
    if invitation.status != InvitationStatus.PENDING.value:
        raise ConflictError("Invitation has already been used")
    if ensure_utc(invitation.expires_at) < utcnow():
        raise ConflictError("Invitation has expired")

    event = await get_event_model(session, event_id)
    await _add_participant(session, event, user_id)
    invitation.status = InvitationStatus.ACCEPTED.value
    await session.flush()
    logger.info(f"User {user_id} joined event {event_id} via invitation {invitation.id}")
    return await _event_for_viewer(session, event, user_id)
