"""
Unit tests for event service: participants, capacity, scoring and invitations.
"""

import pytest
from datetime import timedelta
from friendsleague.database.models import EventInvitation
from friendsleague.services import event_service, league_service
from friendsleague.utils.datetime_utils import utcnow
from friendsleague.utils.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)


def _event_data(**overrides):
    data = {
        "title": "Bowling Night",
        "description": "Lanes 3 and 4",
        "start_date": utcnow() + timedelta(days=1),
        "end_date": utcnow() + timedelta(days=1, hours=3),
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_create_event_with_participants(db_session, users):
    alice, bob = users["alice"], users["bob"]

    event = await event_service.create_event(
        db_session, alice.id, _event_data(participant_ids=[bob.id, bob.id, alice.id])
    )

    assert event["admin_id"] == alice.id
    assert event["has_scoring"] is True
    assert sorted(p["username"] for p in event["participants"]) == ["alice", "bob"]
    assert [p["rank"] for p in event["participants"]] == [1, 2]


@pytest.mark.asyncio
async def test_create_event_end_before_start(db_session, users):
    start = utcnow() + timedelta(days=2)
    with pytest.raises(BadRequestError):
        await event_service.create_event(
            db_session, users["alice"].id, _event_data(start_date=start, end_date=start - timedelta(hours=1))
        )


@pytest.mark.asyncio
async def test_create_event_over_capacity(db_session, users):
    with pytest.raises(BadRequestError):
        await event_service.create_event(
            db_session,
            users["alice"].id,
            _event_data(max_participants=2, participant_ids=[users["bob"].id, users["carol"].id]),
        )


@pytest.mark.asyncio
async def test_create_event_unknown_participant(db_session, users):
    with pytest.raises(NotFoundError):
        await event_service.create_event(db_session, users["alice"].id, _event_data(participant_ids=[9999]))


@pytest.mark.asyncio
async def test_league_event_requires_membership(db_session, users):
    league = await league_service.create_league(db_session, users["alice"].id, "Sunday League")

    with pytest.raises(PermissionDeniedError):
        await event_service.create_event(db_session, users["bob"].id, _event_data(league_id=league["id"]))

    event = await event_service.create_event(db_session, users["alice"].id, _event_data(league_id=league["id"]))
    listed = await event_service.list_league_events(db_session, league["id"], users["alice"].id)
    assert [e["id"] for e in listed] == [event["id"]]


@pytest.mark.asyncio
async def test_join_private_event(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data(is_private=True))

    with pytest.raises(PermissionDeniedError):
        await event_service.get_event(db_session, event["id"], users["bob"].id)
    with pytest.raises(PermissionDeniedError):
        await event_service.join_event(db_session, event["id"], users["bob"].id, "WRONG123")

    joined = await event_service.join_event(db_session, event["id"], users["bob"].id, event["invite_code"])
    assert joined["invite_code"] == event["invite_code"]
    with pytest.raises(ConflictError):
        await event_service.join_event(db_session, event["id"], users["bob"].id, event["invite_code"])


@pytest.mark.asyncio
async def test_join_full_event(db_session, users):
    event = await event_service.create_event(
        db_session, users["alice"].id, _event_data(max_participants=2, participant_ids=[users["bob"].id])
    )

    with pytest.raises(ConflictError, match="full"):
        await event_service.join_event(db_session, event["id"], users["carol"].id)


@pytest.mark.asyncio
async def test_private_event_missing_from_outsider_list(db_session, users):
    await event_service.create_event(db_session, users["alice"].id, _event_data(is_private=True))
    public = await event_service.create_event(db_session, users["alice"].id, _event_data(title="Open Mic"))

    listed = await event_service.list_events(db_session, users["bob"].id)

    assert [e["id"] for e in listed] == [public["id"]]
    assert listed[0]["participant_count"] == 1
    assert listed[0]["is_participant"] is False


@pytest.mark.asyncio
async def test_update_event_capacity_below_participants(db_session, users):
    event = await event_service.create_event(
        db_session, users["alice"].id, _event_data(participant_ids=[users["bob"].id, users["carol"].id])
    )

    with pytest.raises(BadRequestError):
        await event_service.update_event(db_session, event["id"], users["alice"].id, {"max_participants": 2})

    updated = await event_service.update_event(
        db_session, event["id"], users["alice"].id, {"title": "Bowling Finals", "max_participants": 3}
    )
    assert updated["title"] == "Bowling Finals"
    assert updated["max_participants"] == 3


@pytest.mark.asyncio
async def test_update_event_clears_optional_fields(db_session, users):
    alice = users["alice"]
    event = await event_service.create_event(db_session, alice.id, _event_data(max_participants=4))

    updated = await event_service.update_event(
        db_session, event["id"], alice.id, {"end_date": None, "max_participants": None}
    )

    assert updated["end_date"] is None
    assert updated["max_participants"] is None
    assert updated["title"] == "Bowling Night"

    kept = await event_service.update_event(db_session, event["id"], alice.id, {"description": "Lane 5"})
    assert kept["start_date"] == updated["start_date"]


@pytest.mark.asyncio
async def test_admin_cannot_leave_event(db_session, users):
    event = await event_service.create_event(
        db_session, users["alice"].id, _event_data(participant_ids=[users["bob"].id])
    )

    with pytest.raises(PermissionDeniedError):
        await event_service.leave_event(db_session, event["id"], users["alice"].id)

    await event_service.leave_event(db_session, event["id"], users["bob"].id)
    participants = await event_service.get_participants(db_session, event["id"], users["alice"].id)
    assert [p["username"] for p in participants] == ["alice"]


@pytest.mark.asyncio
async def test_add_and_remove_participant(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data())

    added = await event_service.add_participant(db_session, event["id"], users["alice"].id, users["bob"].id)
    assert added["username"] == "bob"

    with pytest.raises(PermissionDeniedError):
        await event_service.remove_participant(db_session, event["id"], users["bob"].id, users["alice"].id)
    with pytest.raises(PermissionDeniedError):
        await event_service.remove_participant(db_session, event["id"], users["alice"].id, users["alice"].id)

    await event_service.remove_participant(db_session, event["id"], users["alice"].id, users["bob"].id)
    assert not await event_service.is_participant(db_session, event["id"], users["bob"].id)


# ──────────────────────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_event_rules(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data())

    rule = await event_service.create_rule(
        db_session, event["id"], users["alice"].id, {"title": "Strike", "points": 2, "category": "BONUS"}
    )

    assert rule["category"] == "BONUS"
    assert [r["title"] for r in await event_service.list_rules(db_session, event["id"], users["bob"].id)] == ["Strike"]
    with pytest.raises(PermissionDeniedError):
        await event_service.create_rule(
            db_session, event["id"], users["bob"].id, {"title": "Gutter", "points": -1, "category": "PENALTY"}
        )


@pytest.mark.asyncio
async def test_event_points_credit_league_standing(db_session, users):
    alice, bob = users["alice"], users["bob"]
    league = await league_service.create_league(db_session, alice.id, "Sunday League")
    await league_service.add_member(db_session, league["id"], alice.id, bob.id)
    event = await event_service.create_event(
        db_session, alice.id, _event_data(league_id=league["id"], participant_ids=[bob.id])
    )

    result = await event_service.assign_points(db_session, event["id"], alice.id, bob.id, 7, "WINS")

    assert result["participant"]["points"] == 7
    assert result["participant"]["rank"] == 1
    assert result["league_updated"] is True
    leaderboard = await league_service.get_leaderboard(db_session, league["id"], alice.id)
    assert leaderboard[0]["username"] == "bob"
    assert leaderboard[0]["total_points"] == 7


@pytest.mark.asyncio
async def test_event_points_for_non_league_member(db_session, users):
    """Participants outside the linked league still score in the event."""
    alice, carol = users["alice"], users["carol"]
    league = await league_service.create_league(db_session, alice.id, "Sunday League")
    event = await event_service.create_event(
        db_session, alice.id, _event_data(league_id=league["id"], participant_ids=[carol.id])
    )

    result = await event_service.assign_points(db_session, event["id"], alice.id, carol.id, 3, "PARTICIPATION")

    assert result["participant"]["points"] == 3
    assert result["league_updated"] is False


@pytest.mark.asyncio
async def test_assign_points_without_scoring(db_session, users):
    event = await event_service.create_event(
        db_session, users["alice"].id, _event_data(has_scoring=False, participant_ids=[users["bob"].id])
    )

    with pytest.raises(BadRequestError, match="Scoring is disabled"):
        await event_service.assign_points(db_session, event["id"], users["alice"].id, users["bob"].id, 1, "WINS")


@pytest.mark.asyncio
async def test_assign_points_to_non_participant(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data())

    with pytest.raises(NotFoundError):
        await event_service.assign_points(db_session, event["id"], users["alice"].id, users["bob"].id, 1, "WINS")


# ──────────────────────────────────────────────────────────────
# Invitations
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_use_event_invitation_on_private_event(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data(is_private=True))
    invitation = await event_service.create_invitation(
        db_session, event["id"], users["alice"].id, {"email": "bob@example.com"}
    )

    joined = await event_service.use_invitation(db_session, event["id"], users["bob"].id, invitation["code"].lower())

    assert joined["id"] == event["id"]
    assert await event_service.is_participant(db_session, event["id"], users["bob"].id)
    with pytest.raises(ConflictError, match="already been used"):
        await event_service.use_invitation(db_session, event["id"], users["carol"].id, invitation["code"])


@pytest.mark.asyncio
async def test_event_invitation_for_other_event(db_session, users):
    first = await event_service.create_event(db_session, users["alice"].id, _event_data())
    second = await event_service.create_event(db_session, users["alice"].id, _event_data(title="Darts"))
    invitation = await event_service.create_invitation(db_session, first["id"], users["alice"].id, {})

    with pytest.raises(ConflictError, match="different event"):
        await event_service.use_invitation(db_session, second["id"], users["bob"].id, invitation["code"])


@pytest.mark.asyncio
async def test_expired_event_invitation(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data())
    invitation = await event_service.create_invitation(db_session, event["id"], users["alice"].id, {})
    row = await db_session.get(EventInvitation, invitation["id"])
    row.expires_at = utcnow() - timedelta(minutes=1)
    await db_session.flush()

    with pytest.raises(ConflictError, match="expired"):
        await event_service.use_invitation(db_session, event["id"], users["bob"].id, invitation["code"])


@pytest.mark.asyncio
async def test_event_invitation_respects_capacity(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data(max_participants=1))
    invitation = await event_service.create_invitation(db_session, event["id"], users["alice"].id, {})

    with pytest.raises(ConflictError, match="full"):
        await event_service.use_invitation(db_session, event["id"], users["bob"].id, invitation["code"])


@pytest.mark.asyncio
async def test_only_admin_sees_pending_invitations(db_session, users):
    event = await event_service.create_event(db_session, users["alice"].id, _event_data())
    await event_service.create_invitation(db_session, event["id"], users["alice"].id, {"expires_in_days": 3})

    admin_view = await event_service.get_event(db_session, event["id"], users["alice"].id)
    outsider_view = await event_service.get_event(db_session, event["id"], users["bob"].id)

    assert len(admin_view["invitations"]) == 1
    assert outsider_view["invitations"] == []
