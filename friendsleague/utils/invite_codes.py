"""
Invite code generation for users, leagues, events and friend invitations.
"""

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

INVITE_CODE_LENGTH = 8
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Attempts before giving up on finding an unused code
MAX_CODE_ATTEMPTS = 10


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Return a random code made of uppercase letters and digits."""
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


async def generate_unique_code(session: AsyncSession, column) -> str:
    """
    Generate an invite code that is not yet used in the given column.

    Args:
        session: Database session
        column: Mapped column holding codes (e.g. League.invite_code)

    Returns:
        An unused invite code
    """
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_invite_code()
        result = await session.execute(select(column).where(column == code))
        if result.scalar_one_or_none() is None:
            return code
    raise RuntimeError(f"Could not generate a unique invite code for {column}")
