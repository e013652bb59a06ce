"""
Pydantic models for API request/response validation.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from friendsleague.database.models import MessageType, PointCategory
from friendsleague.utils import constants


def _check_password_strength(value: str) -> str:
    if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value) or not re.search(r"\d", value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return value


def _normalize_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().lower()
    if not value:
        return None
    if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", value):
        raise ValueError("Invalid email address")
    return value


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request to create an account."""

    username: str = Field(
        ...,
        min_length=constants.USERNAME_MIN_LENGTH,
        max_length=constants.USERNAME_MAX_LENGTH,
        pattern=constants.USERNAME_PATTERN,
    )
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, pattern=constants.PHONE_PATTERN)
    password: str = Field(
        ..., min_length=constants.PASSWORD_MIN_LENGTH, max_length=constants.PASSWORD_MAX_LENGTH
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        return _check_password_strength(v)


class SigninRequest(BaseModel):
    """Request to sign in with username and password."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class UserResponse(BaseModel):
    """User profile as returned to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    is_online: bool = False
    last_seen: Optional[str] = None
    show_online_status: bool = True
    invite_code: Optional[str] = None
    created_at: Optional[str] = None


class AuthResponse(BaseModel):
    """Response after signup or signin."""

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ---------------------------------------------------------------------------
# Users and privacy
# ---------------------------------------------------------------------------


class UpdateProfileRequest(BaseModel):
    """Partial profile update."""

    username: Optional[str] = Field(
        None,
        min_length=constants.USERNAME_MIN_LENGTH,
        max_length=constants.USERNAME_MAX_LENGTH,
        pattern=constants.USERNAME_PATTERN,
    )
    bio: Optional[str] = Field(None, max_length=constants.BIO_MAX_LENGTH)
    avatar: Optional[str] = Field(None, max_length=500)
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, pattern=constants.PHONE_PATTERN)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if v is None:
            raise ValueError("Username cannot be empty")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v)


class OnlineStatusRequest(BaseModel):
    is_online: bool


class GlobalPrivacyRequest(BaseModel):
    show_online_status: bool


class FriendPrivacyRequest(BaseModel):
    hide_online_status: bool


class PrivacySettingsResponse(BaseModel):
    show_online_status: bool
    hidden_from: List[int] = []


# ---------------------------------------------------------------------------
# Friend invitations
# ---------------------------------------------------------------------------


class InvitationCreate(BaseModel):
    invitee_id: int


class UseInviteCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper()


# ---------------------------------------------------------------------------
# Leagues
# ---------------------------------------------------------------------------


class LeagueCreate(BaseModel):
    """Request to create a league."""

    name: str = Field(..., min_length=constants.NAME_MIN_LENGTH, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    is_private: bool = False


class LeagueUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=constants.NAME_MIN_LENGTH, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    is_private: Optional[bool] = None


class JoinRequest(BaseModel):
    """Join a league or event; private ones require the invite code."""

    invite_code: Optional[str] = None


class AddMemberRequest(BaseModel):
    user_id: int


class RuleCreate(BaseModel):
    """Scoring rule for a league."""

    title: str = Field(..., min_length=1, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    points: int = Field(..., ge=constants.RULE_POINTS_MIN, le=constants.RULE_POINTS_MAX)
    category: PointCategory


class RuleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    points: Optional[int] = Field(None, ge=constants.RULE_POINTS_MIN, le=constants.RULE_POINTS_MAX)
    category: Optional[PointCategory] = None


class EventRuleCreate(RuleCreate):
    title: str = Field(..., min_length=constants.NAME_MIN_LENGTH, max_length=constants.NAME_MAX_LENGTH)


class AssignPointsRequest(BaseModel):
    """Award (or deduct) points for a member or participant."""

    user_id: int
    points: int = Field(..., ge=constants.RULE_POINTS_MIN, le=constants.RULE_POINTS_MAX)
    category: PointCategory
    reason: Optional[str] = Field(None, max_length=constants.POINTS_REASON_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventCreate(BaseModel):
    """Request to create an event."""

    title: str = Field(..., min_length=constants.NAME_MIN_LENGTH, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    league_id: Optional[int] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    max_participants: Optional[int] = Field(
        None, ge=constants.EVENT_MIN_PARTICIPANTS, le=constants.EVENT_MAX_PARTICIPANTS
    )
    is_private: bool = False
    has_scoring: bool = True
    participant_ids: List[int] = []


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=constants.NAME_MIN_LENGTH, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_participants: Optional[int] = Field(
        None, ge=constants.EVENT_MIN_PARTICIPANTS, le=constants.EVENT_MAX_PARTICIPANTS
    )
    is_private: Optional[bool] = None
    has_scoring: Optional[bool] = None


class EventInvitationCreate(BaseModel):
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, pattern=constants.PHONE_PATTERN)
    expires_in_days: int = Field(
        constants.EVENT_INVITATION_DEFAULT_DAYS, ge=1, le=constants.EVENT_INVITATION_MAX_DAYS
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _normalize_email(v)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class DirectChatCreate(BaseModel):
    friend_id: int


class GroupChatCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)
    participant_ids: List[int] = Field(..., min_length=1)


class ChatUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=constants.NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=constants.DESCRIPTION_MAX_LENGTH)


class AddParticipantsRequest(BaseModel):
    participant_ids: List[int] = Field(..., min_length=1)


class SendMessageRequest(BaseModel):
    """New chat message. Media types need media_url; ephemeral only for images and videos."""

    content: Optional[str] = Field(None, max_length=5000)
    type: MessageType = MessageType.TEXT
    media_url: Optional[str] = Field(None, max_length=1000)
    duration: Optional[int] = Field(None, ge=0)
    waveform_data: Optional[List[float]] = None
    reply_to_id: Optional[int] = None
    is_ephemeral: bool = False
    view_duration: Optional[int] = Field(None, ge=1, le=constants.EPHEMERAL_MAX_VIEW_SECONDS)

    @model_validator(mode="after")
    def check_content(self):
        if self.type == MessageType.TEXT:
            if not self.content or not self.content.strip():
                raise ValueError("Text messages require content")
        elif not self.media_url:
            raise ValueError(f"{self.type.value} messages require media_url")
        if self.is_ephemeral and self.type not in (MessageType.IMAGE, MessageType.VIDEO):
            raise ValueError("Only image and video messages can be ephemeral")
        return self


class MarkMessagesReadRequest(BaseModel):
    message_ids: List[int] = Field(..., min_length=1)


class ReactionCreate(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=constants.REACTION_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


class PresignedUrlRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(..., min_length=1)
    file_size: int = Field(..., gt=0)


class PresignedUrlResponse(BaseModel):
    upload_url: str
    media_url: str
    key: str


class MessageResponse(BaseModel):
    """Generic acknowledgement."""

    message: str
    data: Optional[Any] = None
