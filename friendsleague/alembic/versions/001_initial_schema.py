"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

Creates every table from the current models:
- Accounts: users, refresh_tokens
- Social: friendships, friend_privacy_settings, invitations
- Leagues: leagues, league_members, league_admins, league_rules
- Events: events, event_participants, event_rules, event_invitations
- Chat: chats, chat_participants, messages, message_reactions,
  message_read_receipts, ephemeral_views
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    from friendsleague.database.db import Base
    from friendsleague.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from friendsleague.database.db import Base
    from friendsleague.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
