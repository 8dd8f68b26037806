"""Streak tracking: consecutive approved contributions within a 48h grace window."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.db.models import StreakHistory, User
from pabuk.rewards.constants import (
    SIGNIFICANT_STREAK_DAYS,
    STREAK_BONUSES,
    STREAK_GRACE_PERIOD_HOURS,
    STREAK_MILESTONES,
    StreakType,
    TransactionKind,
)
from pabuk.rewards.exceptions import RewardValidationError
from pabuk.rewards.ledger import create_transaction
from pabuk.rewards.schemas import (
    NextStreakMilestone,
    StreakHistoryEntry,
    StreakStatus,
    StreakUpdate,
)
from pabuk.rewards.users import get_user

logger = structlog.get_logger()

GRACE_PERIOD = timedelta(hours=STREAK_GRACE_PERIOD_HOURS)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def get_streak_type(days: int) -> StreakType:
    if days >= 365:
        return StreakType.YEARLY
    if days >= 30:
        return StreakType.MONTHLY
    if days >= 7:
        return StreakType.WEEKLY
    return StreakType.DAILY


def is_within_grace(last_activity: datetime | None, now: datetime) -> bool:
    """True when ``now`` is no more than 48 hours after ``last_activity``."""
    if last_activity is None:
        return False
    return now - last_activity <= GRACE_PERIOD


async def update_streak(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> StreakUpdate:
    """Register a qualifying activity (an approval) for a user.

    1. Lock the user row
    2. Continue the streak inside the grace window, else reset to 1
       (recording the ended streak when it was significant)
    3. Award the daily bonus
    4. Award a milestone bonus when the new length equals 7/30/90/365
    5. Persist streak, longest streak, last activity and approved count
    """
    if now is None:
        now = datetime.now(timezone.utc)

    user = await get_user(db, user_id, for_update=True)
    last_activity = as_utc(user.last_contribution_at)
    old_streak = user.streak
    streak_reset = False

    if is_within_grace(last_activity, now):
        new_streak = old_streak + 1
    else:
        new_streak = 1
        if last_activity is not None and old_streak > 0:
            streak_reset = True
            logger.info(
                "streak_reset",
                user_id=user_id,
                previous_streak=old_streak,
                last_activity=last_activity.isoformat(),
            )
            if old_streak >= SIGNIFICANT_STREAK_DAYS:
                _record_streak_end(db, user_id, old_streak, last_activity, now)

    daily = STREAK_BONUSES["DAILY"]
    await create_transaction(
        db,
        user_id=user_id,
        kind=TransactionKind.STREAK_DAILY,
        amount=daily,
        reason=f"Daily streak bonus (Day {new_streak})",
        metadata={"streak": new_streak},
    )
    bonus_awarded = daily

    milestone_reached = None
    for days, name, kind, bonus in STREAK_MILESTONES:
        if new_streak == days:
            await create_transaction(
                db,
                user_id=user_id,
                kind=kind,
                amount=bonus,
                reason=f"{name} - {days} day streak!",
                metadata={"milestone": name, "days": days},
            )
            db.add(
                StreakHistory(
                    user_id=user_id,
                    streak_type=get_streak_type(days).value,
                    start_date=now - timedelta(days=days),
                    end_date=now,
                    length=days,
                    bonus_awarded=bonus,
                    created_at=now,
                )
            )
            bonus_awarded += bonus
            milestone_reached = name
            logger.info("streak_milestone_reached", user_id=user_id, milestone=name, days=days, bonus=bonus)
            break

    user.streak = new_streak
    user.longest_streak = max(user.longest_streak, new_streak)
    user.last_contribution_at = now
    user.approved_contributions = user.approved_contributions + 1
    await db.flush()

    return StreakUpdate(
        new_streak=new_streak,
        bonus_awarded=bonus_awarded,
        milestone_reached=milestone_reached,
        streak_reset=streak_reset,
    )


def _record_streak_end(
    db: AsyncSession,
    user_id: int,
    length: int,
    ended_at: datetime,
    now: datetime,
) -> None:
    """History row for a broken streak. Its bonuses were already paid day by day."""
    db.add(
        StreakHistory(
            user_id=user_id,
            streak_type=get_streak_type(length).value,
            start_date=ended_at - timedelta(days=length),
            end_date=ended_at,
            length=length,
            bonus_awarded=0,
            created_at=now,
        )
    )


async def get_streak_status(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> StreakStatus:
    """Current streak as a user sees it.

    A lapsed streak reads as 0 even though the stored length is only reset
    on the next qualifying activity.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    user = await get_user(db, user_id)
    last_activity = as_utc(user.last_contribution_at)

    is_active = is_within_grace(last_activity, now)
    start_of_day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    bonus_earned_today = last_activity is not None and last_activity >= start_of_day
    current = user.streak if is_active else 0

    next_milestone = None
    for days, _name, _kind, bonus in STREAK_MILESTONES:
        if current < days:
            next_milestone = NextStreakMilestone(days=days - current, bonus=bonus)
            break

    return StreakStatus(
        current_streak=current,
        longest_streak=user.longest_streak,
        streak_type=get_streak_type(current).value,
        last_contribution_at=last_activity,
        is_active=is_active,
        next_milestone=next_milestone,
        bonus_earned_today=bonus_earned_today,
    )


async def get_streak_history(db: AsyncSession, user_id: int, limit: int = 10) -> list[StreakHistoryEntry]:
    """Most recent streak history rows for a user."""
    if limit < 1:
        raise RewardValidationError("limit must be positive")
    await get_user(db, user_id)

    rows = await db.execute(
        select(StreakHistory)
        .where(StreakHistory.user_id == user_id)
        .order_by(StreakHistory.created_at.desc(), StreakHistory.id.desc())
        .limit(limit)
    )
    return [
        StreakHistoryEntry(
            streak_type=row.streak_type,
            start_date=as_utc(row.start_date),
            end_date=as_utc(row.end_date),
            length=row.length,
            bonus_awarded=row.bonus_awarded,
        )
        for row in rows.scalars().all()
    ]
