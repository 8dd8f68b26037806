"""Standalone ledger audit.

Compares every user's stored balance against the sum of their ledger
entries and exits non-zero when any of them drifted.

Usage: python -m pabuk.workers.ledger_audit
"""

from __future__ import annotations

import asyncio
import sys

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pabuk.config import get_settings
from pabuk.database import close_db, get_engine, init_db
from pabuk.db.models import PointTransaction, User
from pabuk.logging_config import setup_logging
from pabuk.rewards.exceptions import RewardInvariantError
from pabuk.rewards.schemas import BalanceDrift

logger = structlog.get_logger()


async def find_balance_drift(db: AsyncSession) -> list[BalanceDrift]:
    """Users whose ``points`` differ from Σ amount of their transactions."""
    ledger = (
        select(
            PointTransaction.user_id.label("user_id"),
            func.sum(PointTransaction.amount).label("total"),
        )
        .group_by(PointTransaction.user_id)
        .subquery()
    )
    ledger_total = func.coalesce(ledger.c.total, 0)

    rows = await db.execute(
        select(User.id, User.points, ledger_total)
        .outerjoin(ledger, ledger.c.user_id == User.id)
        .where(User.points != ledger_total)
        .order_by(User.id)
    )

    drifts = []
    for user_id, stored, total in rows.all():
        drift = BalanceDrift(
            user_id=user_id,
            stored_points=stored,
            ledger_points=int(total),
            drift=stored - int(total),
        )
        logger.warning("balance_drift_detected", **drift.model_dump())
        drifts.append(drift)
    return drifts


async def assert_balances_consistent(db: AsyncSession) -> None:
    """Raise ``RewardInvariantError`` if any balance drifted from the ledger."""
    drifts = await find_balance_drift(db)
    if drifts:
        users = ", ".join(str(d.user_id) for d in drifts)
        raise RewardInvariantError(f"Balance differs from ledger for users: {users}")


async def main() -> int:
    """Run the audit once. Returns the process exit code."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as db:
            await assert_balances_consistent(db)
    except RewardInvariantError as exc:
        logger.error("ledger_audit_failed", error=str(exc))
        return 1
    finally:
        await close_db()

    logger.info("ledger_audit_passed")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
