"""User lookups shared by the reward services."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.db.models import User
from pabuk.rewards.exceptions import UserNotFoundError


async def get_user(db: AsyncSession, user_id: int, *, for_update: bool = False) -> User:
    """Load a user with fresh column values, optionally locking the row."""
    stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    user = (await db.execute(stmt)).scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def ensure_user(db: AsyncSession, user_id: int) -> None:
    """Raise ``UserNotFoundError`` unless the user exists."""
    found = await db.execute(select(User.id).where(User.id == user_id))
    if found.scalar_one_or_none() is None:
        raise UserNotFoundError(user_id)
