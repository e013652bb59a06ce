"""
SQLAlchemy ORM models for the FriendsLeague system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from friendsleague.database.db import Base
from friendsleague.utils.datetime_utils import utcnow


class FriendInvitationStatus(str, enum.Enum):
    """Friend invitation lifecycle."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class InvitationStatus(str, enum.Enum):
    """Event invitation lifecycle."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class PointCategory(str, enum.Enum):
    """Category of a scoring rule or point assignment."""

    WINS = "WINS"
    PARTICIPATION = "PARTICIPATION"
    BONUS = "BONUS"
    PENALTY = "PENALTY"


class ChatType(str, enum.Enum):
    """Chat type enum."""

    DIRECT = "DIRECT"
    GROUP = "GROUP"


class MessageType(str, enum.Enum):
    """Message content type."""

    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    FILE = "FILE"
    VOICE = "VOICE"


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Users and authentication
# ---------------------------------------------------------------------------


class User(Base):
    """Application user account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(20), nullable=False, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    phone_number = Column(String(20), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=False)
    bio = Column(String(150), nullable=True)
    avatar = Column(String(500), nullable=True)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True), nullable=True)
    show_online_status = Column(Boolean, default=True, nullable=False)
    invite_code = Column(String(8), nullable=False, unique=True)  # Personal friend code (QR/text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_users_username", "username"),
    )


class RefreshToken(Base):
    """Refresh tokens for JWT authentication."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(255), nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_refresh_tokens_user_id", "user_id"),
    )


# ---------------------------------------------------------------------------
# Friends
# ---------------------------------------------------------------------------


class Friendship(Base):
    """Join table (User <-> User), stored once per pair with user1_id < user2_id."""

    __tablename__ = "friendships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user1_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user2_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id"),
        CheckConstraint("user1_id < user2_id"),
        Index("idx_friendships_user1", "user1_id"),
        Index("idx_friendships_user2", "user2_id"),
    )


class FriendPrivacySetting(Base):
    """Per-friend override hiding a user's online status from one friend."""

    __tablename__ = "friend_privacy_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    friend_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    hide_online_status = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_friend_privacy_user_friend"),
    )


class Invitation(Base):
    """Friend invitation sent from one user to another (or shared by code)."""

    __tablename__ = "invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inviter_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    invitee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    code = Column(String(8), nullable=False, unique=True)
    status = Column(String(20), default=FriendInvitationStatus.PENDING.value, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_invitations_inviter", "inviter_id"),
        Index("idx_invitations_invitee", "invitee_id"),
        Index("idx_invitations_status", "status"),
    )


# ---------------------------------------------------------------------------
# Leagues
# ---------------------------------------------------------------------------


class League(Base):
    """League model. admin_id is the main admin; others are delegated via LeagueAdmin."""

    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    is_private = Column(Boolean, default=False, nullable=False)
    invite_code = Column(String(8), nullable=True, unique=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_leagues_admin", "admin_id"),
    )


class LeagueMember(Base):
    """League membership with accumulated points and current rank."""

    __tablename__ = "league_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, default=0, nullable=False)
    rank = Column(Integer, nullable=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("league_id", "user_id", name="uq_league_members_league_user"),
        Index("idx_league_members_league", "league_id"),
        Index("idx_league_members_user", "user_id"),
    )


class LeagueAdmin(Base):
    """Delegated league admin."""

    __tablename__ = "league_admins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    granted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    granted_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("league_id", "user_id", name="uq_league_admins_league_user"),
    )


class LeagueRule(Base):
    """Scoring rule defined for a league."""

    __tablename__ = "league_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    points = Column(Integer, nullable=False)
    category = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_league_rules_league", "league_id"),
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class Event(Base):
    """Event, optionally attached to a league."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    league_id = Column(Integer, ForeignKey("leagues.id", ondelete="SET NULL"), nullable=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    max_participants = Column(Integer, nullable=True)
    is_private = Column(Boolean, default=False, nullable=False)
    invite_code = Column(String(8), nullable=True, unique=True)
    has_scoring = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_events_league", "league_id"),
        Index("idx_events_start_date", "start_date"),
    )


class EventParticipant(Base):
    """Event participation with points and rank within the event."""

    __tablename__ = "event_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, default=0, nullable=False)
    rank = Column(Integer, nullable=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participants_event_user"),
        Index("idx_event_participants_event", "event_id"),
    )


class EventRule(Base):
    """Scoring rule defined for an event."""

    __tablename__ = "event_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    points = Column(Integer, nullable=False)
    category = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class EventInvitation(Base):
    """Code-based invitation to an event."""

    __tablename__ = "event_invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    inviter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    code = Column(String(8), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    status = Column(String(20), default=InvitationStatus.PENDING.value, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_event_invitations_event", "event_id"),
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class Chat(Base):
    """Direct (two users) or group conversation."""

    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(10), nullable=False)
    name = Column(String(50), nullable=True)
    description = Column(String(200), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # Group admin
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChatParticipant(Base):
    """Chat membership; last_read_at drives unread counts."""

    __tablename__ = "chat_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_read_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_participants_chat_user"),
        Index("idx_chat_participants_user", "user_id"),
    )


class Message(Base):
    """Chat message (text, media, file or voice note)."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(10), default=MessageType.TEXT.value, nullable=False)
    content = Column(Text, nullable=True)
    media_url = Column(String(1000), nullable=True)
    duration = Column(Integer, nullable=True)  # Voice note length in seconds
    waveform_data = Column(JSONType, nullable=True)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    is_ephemeral = Column(Boolean, default=False, nullable=False)
    view_duration = Column(Integer, nullable=True)  # Seconds the viewer may display ephemeral media
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_messages_chat_created", "chat_id", "created_at"),
    )


class MessageReaction(Base):
    """Emoji reaction to a message."""

    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reactions_message_user_emoji"),
    )


class MessageReadReceipt(Base):
    """Records that a user has read a message."""

    __tablename__ = "message_read_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read_receipts_message_user"),
    )


class EphemeralView(Base):
    """Records that a viewer has opened an ephemeral message (one view allowed)."""

    __tablename__ = "ephemeral_views"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    viewer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    viewed_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("message_id", "viewer_id", name="uq_ephemeral_views_message_viewer"),
    )
