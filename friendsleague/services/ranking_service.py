"""
Ranking of league members and event participants.

Ranks are 1-based positions in the ordering: points descending, then
earliest join first, then lowest row id. Ties never share a rank.
"""

from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from friendsleague.database.models import LeagueMember, EventParticipant


def assign_ranks(rows: Sequence) -> None:
    """Set .rank on rows already sorted into ranking order."""
    for position, row in enumerate(rows, start=1):
        if row.rank != position:
            row.rank = position


async def recalculate_league_ranks(session: AsyncSession, league_id: int) -> None:
    result = await session.execute(
        select(LeagueMember)
        .where(LeagueMember.league_id == league_id)
        .order_by(LeagueMember.points.desc(), LeagueMember.joined_at.asc(), LeagueMember.id.asc())
    )
    assign_ranks(result.scalars().all())
    await session.flush()


async def recalculate_event_ranks(session: AsyncSession, event_id: int) -> None:
    result = await session.execute(
        select(EventParticipant)
        .where(EventParticipant.event_id == event_id)
        .order_by(
            EventParticipant.points.desc(),
            EventParticipant.joined_at.asc(),
            EventParticipant.id.asc(),
        )
    )
    assign_ranks(result.scalars().all())
    await session.flush()
