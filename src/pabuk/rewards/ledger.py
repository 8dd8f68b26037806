"""Point ledger: append-only transactions plus the user's running balance.

Every point-affecting event goes through ``create_transaction``. Each attempt
runs in a SAVEPOINT that inserts the ledger row and applies a single atomic
``UPDATE users SET points = points + :amount, level = CASE ... END``, so the
balance and the ledger move together or not at all.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from pabuk.config import Settings, get_settings
from pabuk.db.models import Contribution, PointTransaction, User
from pabuk.rewards.calculator import (
    calculate,
    calculate_quality_change,
    calculate_status_change,
    parse_data_type,
    parse_status,
)
from pabuk.rewards.constants import (
    PENALTIES,
    TransactionKind,
    breakdown_group,
    contribution_kind,
)
from pabuk.rewards.exceptions import (
    LedgerConflictError,
    RewardValidationError,
    UserNotFoundError,
)
from pabuk.rewards.leaderboard_service import get_user_rank
from pabuk.rewards.level_thresholds import compute_level, level_case
from pabuk.rewards.schemas import (
    CalculationOptions,
    PointsBreakdown,
    TransactionEntry,
    TransactionHistory,
    UserPointsSummary,
)
from pabuk.rewards.users import ensure_user, get_user

logger = structlog.get_logger()

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in RETRYABLE_SQLSTATES


def parse_kind(kind: TransactionKind | str) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError:
        raise RewardValidationError(f"Unknown transaction kind: {kind!r}") from None


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise RewardValidationError(f"Amount must be an integer, got {amount!r}")
    return amount


def _validate_reason(reason: str) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise RewardValidationError("Reason must be a non-empty string")
    return reason


async def _write_transaction(
    db: AsyncSession,
    user_id: int,
    kind: TransactionKind,
    amount: int,
    reason: str,
    contribution_id: int | None,
    metadata: dict[str, Any] | None,
) -> tuple[PointTransaction, int, str]:
    now = datetime.now(timezone.utc)
    new_points = User.points + amount
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=new_points, level=level_case(new_points), updated_at=now)
        .returning(User.points, User.level)
        .execution_options(synchronize_session="fetch")
    )
    row = result.one_or_none()
    if row is None:
        raise UserNotFoundError(user_id)

    entry = PointTransaction(
        user_id=user_id,
        kind=kind.value,
        amount=amount,
        reason=reason,
        contribution_id=contribution_id,
        transaction_metadata=metadata,
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    return entry, row.points, row.level


async def create_transaction(
    db: AsyncSession,
    user_id: int,
    kind: TransactionKind | str,
    amount: int,
    reason: str,
    contribution_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    settings: Settings | None = None,
) -> PointTransaction:
    """Record a ledger entry and apply it to the user's balance and level.

    Serialization failures and deadlocks are retried with a fresh SAVEPOINT
    up to ``ledger_max_attempts`` times, then surface as
    ``LedgerConflictError``. The caller owns the outer transaction.

    The retry stays inside that outer transaction, so it only helps at READ
    COMMITTED, where each statement takes a new snapshot and a deadlock
    victim can simply run again. Under REPEATABLE READ or SERIALIZABLE the
    snapshot is pinned for the whole transaction and a retried write fails
    the same way; callers at those levels must catch ``LedgerConflictError``
    and rerun their unit of work in a new transaction.
    """
    kind = parse_kind(kind)
    amount = _validate_amount(amount)
    reason = _validate_reason(reason)
    settings = settings or get_settings()
    max_attempts = max(1, settings.ledger_max_attempts)

    attempt = 0
    while True:
        attempt += 1
        try:
            async with db.begin_nested():
                entry, points, level = await _write_transaction(
                    db, user_id, kind, amount, reason, contribution_id, metadata
                )
        except DBAPIError as exc:
            if not _is_retryable(exc):
                raise
            if attempt == max_attempts:
                logger.error("ledger_retries_exhausted", user_id=user_id, kind=kind.value, attempts=attempt)
                raise LedgerConflictError(user_id, attempt) from exc
            logger.warning("ledger_write_conflict", user_id=user_id, kind=kind.value, attempt=attempt)
            await asyncio.sleep(settings.ledger_retry_backoff_seconds * attempt)
            continue

        logger.info(
            "points_transaction_recorded",
            user_id=user_id,
            kind=kind.value,
            amount=amount,
            points=points,
            level=level,
            transaction_id=entry.id,
        )
        return entry


# ---------------------------------------------------------------------------
# Contribution awards
# ---------------------------------------------------------------------------


async def _bump_contribution_points(db: AsyncSession, contribution: Contribution, delta: int) -> None:
    await db.execute(
        update(Contribution)
        .where(Contribution.id == contribution.id)
        .values(
            points_awarded=Contribution.points_awarded + delta,
            calculated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="fetch")
    )
    await db.refresh(contribution, attribute_names=["points_awarded", "calculated_at"])


async def award_contribution_points(
    db: AsyncSession,
    contribution: Contribution,
    options: CalculationOptions | None = None,
) -> PointTransaction:
    """Record the initial point value of a contribution and cache it on the row."""
    result = calculate(contribution, options)
    entry = await create_transaction(
        db,
        user_id=contribution.user_id,
        kind=contribution_kind(parse_data_type(contribution.type)),
        amount=result.total_points,
        reason=f"Contribution: {contribution.title or contribution.type}",
        contribution_id=contribution.id,
        metadata={
            "breakdown": result.breakdown.model_dump(),
            "category": contribution.category,
            "status": contribution.status,
        },
    )
    contribution.points_awarded = result.total_points
    contribution.calculated_at = datetime.now(timezone.utc)
    await db.flush()
    return entry


async def update_status_change(
    db: AsyncSession,
    contribution: Contribution,
    old_status: str,
    new_status: str,
    options: CalculationOptions | None = None,
) -> PointTransaction | None:
    """Apply the point delta of a status change. Zero deltas write nothing."""
    diff = calculate_status_change(contribution, old_status, new_status, options)
    if diff == 0:
        return None

    old_value = parse_status(old_status).value
    new_value = parse_status(new_status).value

    kind = TransactionKind.QUALITY_MULTIPLIER if diff > 0 else TransactionKind.PENALTY_LOW_QUALITY
    entry = await create_transaction(
        db,
        user_id=contribution.user_id,
        kind=kind,
        amount=diff,
        reason=f"Status change: {old_value} → {new_value}",
        contribution_id=contribution.id,
        metadata={"old_status": old_value, "new_status": new_value},
    )
    await _bump_contribution_points(db, contribution, diff)
    return entry


async def update_quality_change(
    db: AsyncSession,
    contribution: Contribution,
    old_rating: int | None,
    new_rating: int,
    options: CalculationOptions | None = None,
) -> PointTransaction | None:
    """Apply the point delta of a quality re-rating at the current status."""
    diff = calculate_quality_change(contribution, old_rating, new_rating, options)
    if diff == 0:
        return None

    kind = TransactionKind.QUALITY_MULTIPLIER if diff > 0 else TransactionKind.PENALTY_LOW_QUALITY
    entry = await create_transaction(
        db,
        user_id=contribution.user_id,
        kind=kind,
        amount=diff,
        reason=f"Quality rating change: {old_rating or '-'} → {new_rating}",
        contribution_id=contribution.id,
        metadata={"old_rating": old_rating, "new_rating": new_rating},
    )
    await _bump_contribution_points(db, contribution, diff)
    return entry


# ---------------------------------------------------------------------------
# Administrative entries
# ---------------------------------------------------------------------------


async def apply_penalty(
    db: AsyncSession,
    user_id: int,
    kind: TransactionKind | str,
    amount: int | None,
    reason: str,
    contribution_id: int | None = None,
) -> PointTransaction:
    """Deduct points. Positive magnitudes are coerced negative.

    ``amount=None`` uses the standard magnitude for the penalty kind.
    """
    kind = parse_kind(kind)
    if kind not in PENALTIES:
        raise RewardValidationError(f"{kind.value} is not a penalty kind")
    if amount is None:
        amount = PENALTIES[kind]
    amount = _validate_amount(amount)
    return await create_transaction(
        db,
        user_id=user_id,
        kind=kind,
        amount=-abs(amount),
        reason=reason,
        contribution_id=contribution_id,
    )


async def admin_adjust(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    admin_id: str | int,
) -> PointTransaction:
    """Arbitrary signed adjustment, attributed to the acting admin."""
    reason = _validate_reason(reason)
    return await create_transaction(
        db,
        user_id=user_id,
        kind=TransactionKind.ADMIN_ADJUSTMENT,
        amount=amount,
        reason=f"[Admin: {admin_id}] {reason}",
        metadata={
            "admin_id": str(admin_id),
            "adjusted_at": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def _entry(row: PointTransaction) -> TransactionEntry:
    return TransactionEntry(
        id=row.id,
        kind=row.kind,
        amount=row.amount,
        reason=row.reason,
        contribution_id=row.contribution_id,
        metadata=row.transaction_metadata,
        created_at=row.created_at,
    )


async def get_breakdown(db: AsyncSession, user_id: int) -> PointsBreakdown:
    """Cumulative amounts grouped into contributions, bonuses, milestones and penalties."""
    rows = await db.execute(
        select(PointTransaction.kind, func.sum(PointTransaction.amount))
        .where(PointTransaction.user_id == user_id)
        .group_by(PointTransaction.kind)
    )
    totals = {"contributions": 0, "bonuses": 0, "milestones": 0, "penalties": 0}
    for kind, amount in rows.all():
        totals[breakdown_group(kind)] += int(amount or 0)
    return PointsBreakdown(**totals)


async def get_user_summary(
    db: AsyncSession,
    user_id: int,
    *,
    settings: Settings | None = None,
) -> UserPointsSummary:
    """Balance, level, rank, recent transactions and breakdown for a user."""
    settings = settings or get_settings()
    user = await get_user(db, user_id)

    recent = await db.execute(
        select(PointTransaction)
        .where(PointTransaction.user_id == user_id)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .limit(settings.summary_recent_transactions)
    )

    return UserPointsSummary(
        user_id=user.id,
        points=user.points,
        level=user.level,
        rank=await get_user_rank(db, user_id),
        progress=compute_level(user.points),
        recent_transactions=[_entry(row) for row in recent.scalars().all()],
        breakdown=await get_breakdown(db, user_id),
    )


async def get_history(
    db: AsyncSession,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
    kind: TransactionKind | str | None = None,
    *,
    settings: Settings | None = None,
) -> TransactionHistory:
    """Paginated transaction history, newest first, optionally filtered by kind."""
    settings = settings or get_settings()
    if not 1 <= limit <= settings.history_max_page_size:
        raise RewardValidationError(f"limit must be between 1 and {settings.history_max_page_size}")
    if offset < 0:
        raise RewardValidationError("offset must be non-negative")

    await ensure_user(db, user_id)

    conditions = [PointTransaction.user_id == user_id]
    if kind is not None:
        conditions.append(PointTransaction.kind == parse_kind(kind).value)

    total = await db.scalar(select(func.count()).select_from(PointTransaction).where(*conditions))
    rows = await db.execute(
        select(PointTransaction)
        .where(*conditions)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return TransactionHistory(
        entries=[_entry(row) for row in rows.scalars().all()],
        total=total or 0,
        limit=limit,
        offset=offset,
    )
