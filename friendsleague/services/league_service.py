"""
League service: leagues, membership, admins, scoring rules and points.

A league has one main admin (League.admin_id) and any number of delegated
admins (LeagueAdmin rows). Member ranks are recalculated after every change to
membership or points.
"""

from typing import Dict, List, Optional, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_
from friendsleague.database.models import (
    League,
    LeagueMember,
    LeagueAdmin,
    LeagueRule,
    Event,
    PointCategory,
    User,
)
from friendsleague.services import ranking_service, user_service
from friendsleague.services.websocket_manager import notify_users
from friendsleague.utils.datetime_utils import utcnow, isoformat
from friendsleague.utils.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from friendsleague.utils.invite_codes import generate_unique_code
import logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups and access checks
# ---------------------------------------------------------------------------


async def get_league_model(session: AsyncSession, league_id: int) -> League:
    league = await session.get(League, league_id)
    if league is None:
        raise NotFoundError("League not found")
    return league


async def get_admin_ids(session: AsyncSession, league: League) -> Set[int]:
    """Main admin plus delegated admins."""
    result = await session.execute(
        select(LeagueAdmin.user_id).where(LeagueAdmin.league_id == league.id)
    )
    return {league.admin_id, *result.scalars().all()}


async def get_member(session: AsyncSession, league_id: int, user_id: int) -> Optional[LeagueMember]:
    result = await session.execute(
        select(LeagueMember).where(
            LeagueMember.league_id == league_id, LeagueMember.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_member(session: AsyncSession, league_id: int, user_id: int) -> bool:
    return await get_member(session, league_id, user_id) is not None


async def require_admin(session: AsyncSession, league_id: int, user_id: int) -> League:
    """
    Load a league and check the user administers it.

    Raises:
        NotFoundError: If the league does not exist
        PermissionDeniedError: If the user is not an admin
    """
    league = await get_league_model(session, league_id)
    if user_id not in await get_admin_ids(session, league):
        raise PermissionDeniedError("Only league admins can perform this action")
    return league


async def ensure_can_view(session: AsyncSession, league: League, user_id: int) -> None:
    """Private leagues are visible to members and admins only."""
    if not league.is_private:
        return
    if await is_member(session, league.id, user_id):
        return
    if user_id in await get_admin_ids(session, league):
        return
    raise PermissionDeniedError("This league is private")


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _format_league(league: League, include_invite_code: bool = False, **extra) -> Dict:
    data = {
        "id": league.id,
        "name": league.name,
        "description": league.description,
        "is_private": league.is_private,
        "admin_id": league.admin_id,
        "invite_code": league.invite_code if include_invite_code else None,
        "created_at": isoformat(league.created_at),
        "updated_at": isoformat(league.updated_at),
    }
    data.update(extra)
    return data


def _format_member(member: LeagueMember, user: User, admin_ids: Set[int]) -> Dict:
    return {
        "user_id": member.user_id,
        "username": user.username if user else None,
        "avatar": user.avatar if user else None,
        "is_admin": member.user_id in admin_ids,
        "joined_at": isoformat(member.joined_at),
        "total_points": member.points,
        "rank": member.rank,
    }


def _format_rule(rule: LeagueRule) -> Dict:
    return {
        "id": rule.id,
        "league_id": rule.league_id,
        "title": rule.title,
        "description": rule.description,
        "points": rule.points,
        "category": rule.category,
        "created_at": isoformat(rule.created_at),
        "updated_at": isoformat(rule.updated_at),
    }


async def _ranked_members(session: AsyncSession, league: League) -> List[Dict]:
    result = await session.execute(
        select(LeagueMember, User)
        .join(User, User.id == LeagueMember.user_id)
        .where(LeagueMember.league_id == league.id)
        .order_by(LeagueMember.rank.asc(), LeagueMember.id.asc())
    )
    admin_ids = await get_admin_ids(session, league)
    return [_format_member(member, user, admin_ids) for member, user in result.all()]


async def _league_with_viewer(session: AsyncSession, league: League, user_id: int, **extra) -> Dict:
    can_see_code = await is_member(session, league.id, user_id) or (
        user_id in await get_admin_ids(session, league)
    )
    return _format_league(league, include_invite_code=can_see_code, **extra)


# ---------------------------------------------------------------------------
# Leagues
# ---------------------------------------------------------------------------


async def create_league(
    session: AsyncSession,
    user_id: int,
    name: str,
    description: Optional[str] = None,
    is_private: bool = False,
) -> Dict:
    """
    Create a league. The creator becomes its main admin and first member.

    Args:
        session: Database session
        user_id: Creator
        name: League name
        description: Optional description
        is_private: Private leagues get an invite code

    Returns:
        League dict including members
    """
    league = League(
        name=name,
        description=description,
        is_private=is_private,
        admin_id=user_id,
        invite_code=await generate_unique_code(session, League.invite_code) if is_private else None,
    )
    session.add(league)
    await session.flush()

    session.add(LeagueMember(league_id=league.id, user_id=user_id, points=0, rank=1))
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league.id)

    logger.info(f"User {user_id} created league {league.id} ({name})")
    return _format_league(
        league,
        include_invite_code=True,
        members=await _ranked_members(session, league),
    )


async def list_leagues(session: AsyncSession, user_id: int) -> List[Dict]:
    """
    Public leagues plus every league the user belongs to or administers.

    Returns:
        League dicts with member_count and event_count, most recently updated first
    """
    member_of = select(LeagueMember.league_id).where(LeagueMember.user_id == user_id)
    admin_of = select(LeagueAdmin.league_id).where(LeagueAdmin.user_id == user_id)
    result = await session.execute(
        select(League)
        .where(
            or_(
                League.is_private == False,  # noqa: E712
                League.admin_id == user_id,
                League.id.in_(member_of),
                League.id.in_(admin_of),
            )
        )
        .order_by(League.updated_at.desc(), League.id.desc())
    )
    leagues = result.scalars().all()
    if not leagues:
        return []

    league_ids = [lg.id for lg in leagues]
    member_counts = dict(
        (
            await session.execute(
                select(LeagueMember.league_id, func.count(LeagueMember.id))
                .where(LeagueMember.league_id.in_(league_ids))
                .group_by(LeagueMember.league_id)
            )
        ).all()
    )
    event_counts = dict(
        (
            await session.execute(
                select(Event.league_id, func.count(Event.id))
                .where(Event.league_id.in_(league_ids))
                .group_by(Event.league_id)
            )
        ).all()
    )
    my_leagues = set((await session.execute(member_of)).scalars().all())
    my_admin = set((await session.execute(admin_of)).scalars().all())

    return [
        _format_league(
            league,
            include_invite_code=league.id in my_leagues or league.id in my_admin or league.admin_id == user_id,
            member_count=member_counts.get(league.id, 0),
            event_count=event_counts.get(league.id, 0),
            is_member=league.id in my_leagues,
        )
        for league in leagues
    ]


async def get_league(session: AsyncSession, league_id: int, user_id: int) -> Dict:
    """
    League detail with ranked members, rules, events and admins.

    Raises:
        NotFoundError: If the league does not exist
        PermissionDeniedError: If the league is private and the user is not in it
    """
    league = await get_league_model(session, league_id)
    await ensure_can_view(session, league, user_id)

    rules = await session.execute(
        select(LeagueRule)
        .where(LeagueRule.league_id == league_id)
        .order_by(LeagueRule.created_at.desc(), LeagueRule.id.desc())
    )
    events = await session.execute(
        select(Event).where(Event.league_id == league_id).order_by(Event.start_date.desc())
    )
    admin_rows = await session.execute(
        select(LeagueAdmin).where(LeagueAdmin.league_id == league_id).order_by(LeagueAdmin.granted_at)
    )
    return await _league_with_viewer(
        session,
        league,
        user_id,
        members=await _ranked_members(session, league),
        rules=[_format_rule(r) for r in rules.scalars().all()],
        events=[
            {
                "id": e.id,
                "title": e.title,
                "start_date": isoformat(e.start_date),
                "end_date": isoformat(e.end_date),
                "is_private": e.is_private,
            }
            for e in events.scalars().all()
        ],
        admins=[
            {"user_id": a.user_id, "granted_by": a.granted_by, "granted_at": isoformat(a.granted_at)}
            for a in admin_rows.scalars().all()
        ],
    )


async def update_league(session: AsyncSession, league_id: int, user_id: int, updates: Dict) -> Dict:
    """
    Update name, description or privacy. Going private issues a fresh invite
    code; going public clears it.
    """
    league = await require_admin(session, league_id, user_id)

    if "name" in updates and updates["name"] is not None:
        league.name = updates["name"]
    if "description" in updates:
        league.description = updates["description"]
    if updates.get("is_private") is not None:
        league.is_private = updates["is_private"]
        league.invite_code = (
            await generate_unique_code(session, League.invite_code) if league.is_private else None
        )
    league.updated_at = utcnow()
    await session.flush()
    return _format_league(league, include_invite_code=True)


async def join_league(
    session: AsyncSession, league_id: int, user_id: int, invite_code: Optional[str] = None
) -> Dict:
    """
    Join a league; private leagues require the current invite code.

    Raises:
        NotFoundError: If the league does not exist
        ConflictError: If already a member
        PermissionDeniedError: If the invite code is missing or wrong
    """
    league = await get_league_model(session, league_id)
    if await is_member(session, league_id, user_id):
        raise ConflictError("You are already a member of this league")
    if league.is_private:
        if not invite_code or invite_code.strip().upper() != league.invite_code:
            raise PermissionDeniedError("Invalid invite code")

    session.add(LeagueMember(league_id=league_id, user_id=user_id, points=0))
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league_id)
    league.updated_at = utcnow()
    logger.info(f"User {user_id} joined league {league_id}")
    return await _league_with_viewer(session, league, user_id)


async def leave_league(session: AsyncSession, league_id: int, user_id: int) -> Dict:
    """
    Leave a league. The main admin may leave only when a delegated admin exists;
    the longest-standing delegated admin then becomes main admin.

    Raises:
        NotFoundError: If the league does not exist or the user is not a member
        PermissionDeniedError: If the main admin is the only admin
    """
    league = await get_league_model(session, league_id)
    member = await get_member(session, league_id, user_id)
    if member is None:
        raise NotFoundError("You are not a member of this league")

    if league.admin_id == user_id:
        result = await session.execute(
            select(LeagueAdmin)
            .where(LeagueAdmin.league_id == league_id, LeagueAdmin.user_id != user_id)
            .order_by(LeagueAdmin.granted_at.asc(), LeagueAdmin.id.asc())
            .limit(1)
        )
        successor = result.scalar_one_or_none()
        if successor is None:
            raise PermissionDeniedError(
                "The league admin cannot leave without appointing another admin first"
            )
        league.admin_id = successor.user_id
        await session.delete(successor)
        logger.info(f"League {league_id} ownership passed from {user_id} to {successor.user_id}")

    await session.execute(
        delete(LeagueAdmin).where(LeagueAdmin.league_id == league_id, LeagueAdmin.user_id == user_id)
    )
    await session.delete(member)
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league_id)
    league.updated_at = utcnow()
    await session.flush()
    return {"message": "Left league", "league_id": league_id, "admin_id": league.admin_id}


# ---------------------------------------------------------------------------
# Members and admins
# ---------------------------------------------------------------------------


async def add_member(session: AsyncSession, league_id: int, admin_user_id: int, user_id: int) -> Dict:
    await require_admin(session, league_id, admin_user_id)
    user = await user_service.get_user_model(session, user_id)
    if await is_member(session, league_id, user_id):
        raise ConflictError("User is already a member of this league")

    member = LeagueMember(league_id=league_id, user_id=user_id, points=0)
    session.add(member)
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league_id)

    league = await get_league_model(session, league_id)
    return _format_member(member, user, await get_admin_ids(session, league))


async def remove_member(session: AsyncSession, league_id: int, admin_user_id: int, user_id: int) -> None:
    """
    Remove a member (and any delegated admin rights they hold).

    Raises:
        PermissionDeniedError: If the caller is not an admin or targets the main admin
        NotFoundError: If the user is not a member
    """
    league = await require_admin(session, league_id, admin_user_id)
    if user_id == league.admin_id:
        raise PermissionDeniedError("The main league admin cannot be removed")
    member = await get_member(session, league_id, user_id)
    if member is None:
        raise NotFoundError("User is not a member of this league")

    await session.execute(
        delete(LeagueAdmin).where(LeagueAdmin.league_id == league_id, LeagueAdmin.user_id == user_id)
    )
    await session.delete(member)
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league_id)


async def get_members(session: AsyncSession, league_id: int, user_id: int) -> List[Dict]:
    league = await get_league_model(session, league_id)
    await ensure_can_view(session, league, user_id)
    return await _ranked_members(session, league)


async def grant_admin(session: AsyncSession, league_id: int, admin_user_id: int, user_id: int) -> Dict:
    """
    Make a member a delegated admin.

    Raises:
        NotFoundError: If the target is not a member
        ConflictError: If the target is already an admin
    """
    league = await require_admin(session, league_id, admin_user_id)
    if not await is_member(session, league_id, user_id):
        raise NotFoundError("User is not a member of this league")
    if user_id in await get_admin_ids(session, league):
        raise ConflictError("User is already an admin of this league")

    admin = LeagueAdmin(league_id=league_id, user_id=user_id, granted_by=admin_user_id)
    session.add(admin)
    await session.flush()
    return {"league_id": league_id, "user_id": user_id, "granted_by": admin_user_id}


async def revoke_admin(session: AsyncSession, league_id: int, admin_user_id: int, user_id: int) -> None:
    league = await require_admin(session, league_id, admin_user_id)
    if user_id == league.admin_id:
        raise PermissionDeniedError("The main league admin cannot be demoted")
    result = await session.execute(
        delete(LeagueAdmin).where(LeagueAdmin.league_id == league_id, LeagueAdmin.user_id == user_id)
    )
    if result.rowcount == 0:
        raise NotFoundError("User is not an admin of this league")


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


async def create_rule(session: AsyncSession, league_id: int, user_id: int, data: Dict) -> Dict:
    await require_admin(session, league_id, user_id)
    rule = LeagueRule(
        league_id=league_id,
        title=data["title"],
        description=data.get("description"),
        points=data["points"],
        category=PointCategory(data["category"]).value,
    )
    session.add(rule)
    await session.flush()
    return _format_rule(rule)


async def list_rules(session: AsyncSession, league_id: int, user_id: int) -> List[Dict]:
    league = await get_league_model(session, league_id)
    await ensure_can_view(session, league, user_id)
    result = await session.execute(
        select(LeagueRule)
        .where(LeagueRule.league_id == league_id)
        .order_by(LeagueRule.created_at.desc(), LeagueRule.id.desc())
    )
    return [_format_rule(r) for r in result.scalars().all()]


async def _get_rule(session: AsyncSession, league_id: int, rule_id: int) -> LeagueRule:
    rule = await session.get(LeagueRule, rule_id)
    if rule is None or rule.league_id != league_id:
        raise NotFoundError("Rule not found")
    return rule


async def update_rule(
    session: AsyncSession, league_id: int, rule_id: int, user_id: int, updates: Dict
) -> Dict:
    await require_admin(session, league_id, user_id)
    rule = await _get_rule(session, league_id, rule_id)
    for field in ("title", "description", "points"):
        if updates.get(field) is not None:
            setattr(rule, field, updates[field])
    if updates.get("category") is not None:
        rule.category = PointCategory(updates["category"]).value
    rule.updated_at = utcnow()
    await session.flush()
    return _format_rule(rule)


async def delete_rule(session: AsyncSession, league_id: int, rule_id: int, user_id: int) -> None:
    await require_admin(session, league_id, user_id)
    rule = await _get_rule(session, league_id, rule_id)
    await session.delete(rule)
    await session.flush()


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------


async def add_points_to_member(session: AsyncSession, league_id: int, user_id: int, points: int) -> bool:
    """
    Add points to a league member and re-rank. Returns False if the user is not a member.
    """
    member = await get_member(session, league_id, user_id)
    if member is None:
        return False
    member.points = (member.points or 0) + points
    await session.flush()
    await ranking_service.recalculate_league_ranks(session, league_id)
    return True


async def assign_points(
    session: AsyncSession,
    league_id: int,
    admin_user_id: int,
    user_id: int,
    points: int,
    category: str,
    reason: Optional[str] = None,
) -> Dict:
    """
    Award (or deduct) points for a member and broadcast the new standings.

    Raises:
        PermissionDeniedError: If the caller is not an admin
        NotFoundError: If the user is not a member
    """
    category = PointCategory(category).value
    league = await require_admin(session, league_id, admin_user_id)
    if not await add_points_to_member(session, league_id, user_id, points):
        raise NotFoundError("User is not a member of this league")

    member = await get_member(session, league_id, user_id)
    user = await session.get(User, user_id)
    formatted = _format_member(member, user, await get_admin_ids(session, league))
    league.updated_at = utcnow()
    await session.flush()

    member_ids = (
        await session.execute(select(LeagueMember.user_id).where(LeagueMember.league_id == league_id))
    ).scalars().all()
    await notify_users(
        member_ids,
        "league:points:update",
        {
            "league_id": league_id,
            "user_id": user_id,
            "points_added": points,
            "total_points": member.points,
            "rank": member.rank,
            "category": category,
            "reason": reason,
        },
    )
    logger.info(f"League {league_id}: {points} point(s) to user {user_id} ({category})")
    return {"member": formatted, "points_added": points, "category": category, "reason": reason}


async def get_leaderboard(session: AsyncSession, league_id: int, user_id: int) -> List[Dict]:
    league = await get_league_model(session, league_id)
    await ensure_can_view(session, league, user_id)
    return [
        {
            "user_id": m["user_id"],
            "username": m["username"],
            "avatar": m["avatar"],
            "total_points": m["total_points"],
            "rank": m["rank"],
        }
        for m in await _ranked_members(session, league)
    ]
