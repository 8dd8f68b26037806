"""Entry points for the contribution workflow.

Each handler is one unit of work on the caller's session: it commits when
every ledger, streak and achievement write succeeded and rolls back
otherwise, so a failed event leaves no partial points behind.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.config import Settings, get_settings
from pabuk.db.models import Contribution, User
from pabuk.rewards.achievement_service import check_and_award
from pabuk.rewards.calculator import breakdown_lines, calculate, parse_status, validate_rating
from pabuk.rewards.constants import ALLOWED_TRANSITIONS, APPROVED_STATUSES, ContributionStatus
from pabuk.rewards.exceptions import ContributionNotFoundError, RewardValidationError
from pabuk.rewards.ledger import award_contribution_points, update_quality_change, update_status_change
from pabuk.rewards.schemas import CalculationOptions, ModerationResult, RerateResult, SubmissionResult
from pabuk.rewards.streak_service import update_streak

logger = structlog.get_logger()

_APPROVED_VALUES = [s.value for s in APPROVED_STATUSES]


async def _lock_contribution(db: AsyncSession, contribution_id: int) -> Contribution:
    result = await db.execute(
        select(Contribution)
        .where(Contribution.id == contribution_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    contribution = result.scalar_one_or_none()
    if contribution is None:
        raise ContributionNotFoundError(contribution_id)
    return contribution


def _options(contribution: Contribution) -> CalculationOptions:
    return CalculationOptions(
        is_first_in_province=contribution.is_first_in_province,
        is_underrepresented_province=contribution.is_underrepresented_province,
    )


async def _province_flags(
    db: AsyncSession,
    contribution: Contribution,
    settings: Settings,
) -> tuple[bool, bool]:
    """(first in province, underrepresented province) at submission time."""
    if contribution.province_id is None:
        return False, False
    approved_here = await db.scalar(
        select(func.count())
        .select_from(Contribution)
        .where(
            Contribution.province_id == contribution.province_id,
            Contribution.status.in_(_APPROVED_VALUES),
            Contribution.id != contribution.id,
        )
    )
    approved_here = approved_here or 0
    return approved_here == 0, approved_here < settings.underrepresented_province_threshold


async def _refresh_provinces_covered(db: AsyncSession, user_id: int) -> int:
    covered = await db.scalar(
        select(func.count(func.distinct(Contribution.province_id))).where(
            Contribution.user_id == user_id,
            Contribution.status.in_(_APPROVED_VALUES),
            Contribution.province_id.is_not(None),
        )
    )
    covered = covered or 0
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(provinces_covered=covered)
        .execution_options(synchronize_session="fetch")
    )
    return covered


async def on_contribution_created(
    db: AsyncSession,
    contribution_id: int,
    *,
    settings: Settings | None = None,
) -> SubmissionResult:
    """Record the provisional points of a freshly submitted contribution."""
    settings = settings or get_settings()
    try:
        contribution = await _lock_contribution(db, contribution_id)
        if contribution.calculated_at is not None:
            raise RewardValidationError(f"Contribution {contribution_id} already has points recorded")
        if parse_status(contribution.status) is not ContributionStatus.PENDING:
            raise RewardValidationError(f"Contribution {contribution_id} is not pending")

        first, underrepresented = await _province_flags(db, contribution, settings)
        contribution.is_first_in_province = first
        contribution.is_underrepresented_province = underrepresented

        calculation = calculate(contribution, _options(contribution))
        entry = await award_contribution_points(db, contribution, _options(contribution))

        result = SubmissionResult(
            contribution_id=contribution_id,
            points_awarded=calculation.total_points,
            transaction_id=entry.id,
            is_first_in_province=first,
            is_underrepresented_province=underrepresented,
            breakdown=breakdown_lines(calculation),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result


async def on_moderation_decision(
    db: AsyncSession,
    contribution_id: int,
    old_status: str,
    new_status: str,
    quality_rating: int | None = None,
    *,
    now: datetime | None = None,
) -> ModerationResult:
    """Apply a moderation decision.

    The status delta is taken at the old rating, then the quality delta at
    the new status, so the cached value always equals the value of the
    latest (status, rating). Approvals also advance the streak, refresh the
    user's province coverage and evaluate achievements.
    """
    old = parse_status(old_status)
    new = parse_status(new_status)
    if (old, new) not in ALLOWED_TRANSITIONS:
        raise RewardValidationError(f"Transition {old.value} → {new.value} is not allowed")
    validate_rating(quality_rating)

    try:
        contribution = await _lock_contribution(db, contribution_id)
        if contribution.status != old.value:
            raise RewardValidationError(
                f"Contribution {contribution_id} is {contribution.status}, not {old.value}"
            )

        user_id = contribution.user_id
        options = _options(contribution)
        delta = 0

        entry = await update_status_change(db, contribution, old, new, options)
        if entry is not None:
            delta += entry.amount
        contribution.status = new.value

        old_rating = contribution.quality_rating
        if quality_rating is not None and quality_rating != old_rating:
            entry = await update_quality_change(db, contribution, old_rating, quality_rating, options)
            if entry is not None:
                delta += entry.amount
            contribution.quality_rating = quality_rating

        await db.flush()
        points_awarded = contribution.points_awarded

        streak = None
        achievements = []
        if new in APPROVED_STATUSES and old not in APPROVED_STATUSES:
            streak = await update_streak(db, user_id, now=now)
            await _refresh_provinces_covered(db, user_id)
            achievements = await check_and_award(db, user_id)

        result = ModerationResult(
            contribution_id=contribution_id,
            old_status=old.value,
            new_status=new.value,
            points_delta=delta,
            points_awarded=points_awarded,
            streak=streak,
            achievements=achievements,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "contribution_moderated",
        contribution_id=contribution_id,
        user_id=user_id,
        old_status=old.value,
        new_status=new.value,
        points_delta=delta,
        achievements=[a.badge_name for a in achievements],
    )
    return result


async def on_quality_rerated(
    db: AsyncSession,
    contribution_id: int,
    old_rating: int | None,
    new_rating: int,
) -> RerateResult:
    """Apply the point delta of a quality re-rating."""
    validate_rating(old_rating)
    if validate_rating(new_rating) is None:
        raise RewardValidationError("New quality rating is required")

    try:
        contribution = await _lock_contribution(db, contribution_id)
        if contribution.quality_rating != old_rating:
            raise RewardValidationError(
                f"Contribution {contribution_id} is rated {contribution.quality_rating}, not {old_rating}"
            )

        entry = await update_quality_change(db, contribution, old_rating, new_rating, _options(contribution))
        contribution.quality_rating = new_rating
        await db.flush()

        result = RerateResult(
            contribution_id=contribution_id,
            old_rating=old_rating,
            new_rating=new_rating,
            points_delta=entry.amount if entry is not None else 0,
            points_awarded=contribution.points_awarded,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result
