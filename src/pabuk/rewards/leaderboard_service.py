"""Leaderboard queries over the denormalized user reward columns."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.config import Settings, get_settings
from pabuk.db.models import User
from pabuk.rewards.exceptions import RewardValidationError
from pabuk.rewards.users import get_user
from pabuk.rewards.schemas import Leaderboard, LeaderboardEntry


class LeaderboardCategory(str, Enum):
    TOTAL_POINTS = "TOTAL_POINTS"
    CONTRIBUTION_COUNT = "CONTRIBUTION_COUNT"
    GEOGRAPHIC_COVERAGE = "GEOGRAPHIC_COVERAGE"


_RANKED_COLUMN = {
    LeaderboardCategory.TOTAL_POINTS: User.points,
    LeaderboardCategory.CONTRIBUTION_COUNT: User.approved_contributions,
    LeaderboardCategory.GEOGRAPHIC_COVERAGE: User.provinces_covered,
}


async def get_leaderboard(
    db: AsyncSession,
    category: LeaderboardCategory | str = LeaderboardCategory.TOTAL_POINTS,
    limit: int = 50,
    offset: int = 0,
    *,
    settings: Settings | None = None,
) -> Leaderboard:
    """Rank users with a positive balance by the chosen statistic."""
    settings = settings or get_settings()
    try:
        category = LeaderboardCategory(category)
    except ValueError:
        raise RewardValidationError(f"Unknown leaderboard category: {category!r}") from None
    if not 1 <= limit <= settings.history_max_page_size:
        raise RewardValidationError(f"limit must be between 1 and {settings.history_max_page_size}")
    if offset < 0:
        raise RewardValidationError("offset must be non-negative")

    column = _RANKED_COLUMN[category]
    total = await db.scalar(select(func.count()).select_from(User).where(User.points > 0))
    rows = await db.execute(
        select(User)
        .where(User.points > 0)
        .order_by(column.desc(), User.id.asc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )

    entries = [
        LeaderboardEntry(
            rank=offset + position,
            user_id=user.id,
            display_name=user.display_name,
            level=user.level,
            points=user.points,
            value=getattr(user, column.key),
        )
        for position, user in enumerate(rows.scalars().all(), start=1)
    ]
    return Leaderboard(
        category=category.value,
        entries=entries,
        total=total or 0,
        limit=limit,
        offset=offset,
    )


async def get_user_rank(db: AsyncSession, user_id: int) -> int:
    """1 + the number of users with strictly more points."""
    user = await get_user(db, user_id)
    ahead = await db.scalar(select(func.count()).select_from(User).where(User.points > user.points))
    return (ahead or 0) + 1
