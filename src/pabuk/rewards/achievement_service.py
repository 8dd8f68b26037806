"""Achievement evaluation and award with duplicate prevention."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.db.models import Achievement, Contribution
from pabuk.rewards.badges import DIVERSITY_BADGES, GEOGRAPHIC_BADGES, MILESTONE_BADGES
from pabuk.rewards.constants import (
    APPROVED_STATUSES,
    BADGE_ICONS,
    DIVERSITY_TYPE_THRESHOLD,
)
from pabuk.rewards.ledger import create_transaction
from pabuk.rewards.schemas import (
    AchievementProgress,
    AwardedAchievement,
    EarnedAchievement,
    UserAchievements,
)
from pabuk.rewards.streak_service import as_utc
from pabuk.rewards.users import get_user

logger = structlog.get_logger()


async def has_achievement(db: AsyncSession, user_id: int, badge_name: str) -> bool:
    """Check if user already holds a badge."""
    result = await db.execute(
        select(Achievement.id).where(
            Achievement.user_id == user_id,
            Achievement.badge_name == badge_name,
        )
    )
    return result.scalar_one_or_none() is not None


async def award_if_not_exists(db: AsyncSession, user_id: int, badge: dict) -> bool:
    """Award a badge and its bonus. Returns True if newly awarded.

    The bonus transaction and the achievement row are written in one
    SAVEPOINT, transaction first. UNIQUE(user_id, badge_name) is the final
    guard: a concurrent award rolls back both writes and counts as already
    earned. Any other integrity failure is re-raised.
    """
    name = badge["name"]
    category = badge["category"].value

    if await has_achievement(db, user_id, name):
        return False

    try:
        async with db.begin_nested():
            transaction_id = None
            if badge["bonus"] > 0:
                entry = await create_transaction(
                    db,
                    user_id=user_id,
                    kind=badge["kind"],
                    amount=badge["bonus"],
                    reason=f"Achievement unlocked: {name}",
                    metadata={"achievement": name, "type": category},
                )
                transaction_id = entry.id

            db.add(
                Achievement(
                    user_id=user_id,
                    badge_name=name,
                    badge_category=category,
                    badge_icon=BADGE_ICONS[badge["category"]],
                    description=badge["description"],
                    transaction_id=transaction_id,
                    earned_at=datetime.now(timezone.utc),
                )
            )
            await db.flush()
    except IntegrityError:
        # Race condition: badge already awarded by a concurrent evaluation
        if not await has_achievement(db, user_id, name):
            raise
        logger.info("achievement_race_lost", user_id=user_id, badge=name)
        return False

    logger.info("achievement_awarded", user_id=user_id, badge=name, bonus=badge["bonus"])
    return True


async def _approved_type_counts(db: AsyncSession, user_id: int) -> dict[str, int]:
    rows = await db.execute(
        select(Contribution.type, func.count())
        .where(
            Contribution.user_id == user_id,
            Contribution.status.in_([s.value for s in APPROVED_STATUSES]),
        )
        .group_by(Contribution.type)
    )
    return {data_type: count for data_type, count in rows.all()}


def _is_met(badge: dict, stats: dict) -> bool:
    trigger = badge["trigger_type"]
    threshold = badge["threshold"]

    if trigger == "approved_count":
        return stats["approved_count"] >= threshold
    if trigger == "provinces_covered":
        return stats["provinces_covered"] >= threshold
    if trigger == "types_with_ten":
        qualifying = sum(1 for count in stats["type_counts"].values() if count >= DIVERSITY_TYPE_THRESHOLD)
        return qualifying >= threshold
    if trigger == "type_count":
        return stats["type_counts"].get(badge["data_type"].value, 0) >= threshold

    logger.warning("unknown_badge_trigger", badge=badge["name"], trigger=trigger)
    return False


async def _check(db: AsyncSession, user_id: int, badges: list[dict], stats: dict) -> list[AwardedAchievement]:
    awarded: list[AwardedAchievement] = []
    for badge in badges:
        if _is_met(badge, stats) and await award_if_not_exists(db, user_id, badge):
            awarded.append(
                AwardedAchievement(
                    badge_name=badge["name"],
                    badge_category=badge["category"].value,
                    bonus=badge["bonus"],
                    description=badge["description"],
                )
            )
    return awarded


async def check_and_award(db: AsyncSession, user_id: int) -> list[AwardedAchievement]:
    """Evaluate milestone, diversity and geographic badges for a user.

    Every threshold is evaluated on every call, so a user who jumps past
    several tiers at once earns all of them. Returns only newly awarded badges.
    """
    user = await get_user(db, user_id)
    stats = {
        "approved_count": user.approved_contributions,
        "provinces_covered": user.provinces_covered,
        "type_counts": await _approved_type_counts(db, user_id),
    }

    awarded: list[AwardedAchievement] = []
    awarded += await _check(db, user_id, MILESTONE_BADGES, stats)
    awarded += await _check(db, user_id, DIVERSITY_BADGES, stats)
    awarded += await _check(db, user_id, GEOGRAPHIC_BADGES, stats)
    return awarded


def _next_unearned(badges: list[dict], earned: set[str], progress: int) -> AchievementProgress | None:
    for badge in badges:
        if badge["name"] not in earned:
            return AchievementProgress(
                badge_name=badge["name"],
                badge_category=badge["category"].value,
                description=badge["description"],
                progress=progress,
                target=badge["threshold"],
            )
    return None


async def get_user_achievements(db: AsyncSession, user_id: int) -> UserAchievements:
    """Earned badges plus the next milestone and geographic tier in progress."""
    user = await get_user(db, user_id)
    rows = await db.execute(
        select(Achievement)
        .where(Achievement.user_id == user_id)
        .order_by(Achievement.earned_at.desc(), Achievement.id.desc())
    )
    earned = [
        EarnedAchievement(
            badge_name=row.badge_name,
            badge_category=row.badge_category,
            badge_icon=row.badge_icon,
            description=row.description,
            earned_at=as_utc(row.earned_at),
        )
        for row in rows.scalars().all()
    ]

    earned_names = {a.badge_name for a in earned}
    available = [
        progress
        for progress in (
            _next_unearned(MILESTONE_BADGES, earned_names, user.approved_contributions),
            _next_unearned(GEOGRAPHIC_BADGES, earned_names, user.provinces_covered),
        )
        if progress is not None
    ]
    return UserAchievements(earned=earned, available=available)
