"""Tests for the standalone ledger audit."""

from __future__ import annotations

import pytest
from sqlalchemy import update

from pabuk.db.models import User
from pabuk.rewards.exceptions import RewardInvariantError
from pabuk.rewards.ledger import admin_adjust, create_transaction
from pabuk.workers.ledger_audit import assert_balances_consistent, find_balance_drift


class TestFindBalanceDrift:
    """Stored balances versus ledger sums."""

    @pytest.mark.asyncio
    async def test_consistent_ledger(self, db_session, make_user):
        user = await make_user()
        await make_user(display_name="no-activity")
        await create_transaction(db_session, user.id, "CONTRIBUTION_TEXT", 60, "Contribution: tale")
        await admin_adjust(db_session, user.id, -10, "Correction", admin_id="ops")
        await db_session.commit()

        assert await find_balance_drift(db_session) == []
        await assert_balances_consistent(db_session)

    @pytest.mark.asyncio
    async def test_reports_drift(self, db_session, make_user):
        healthy = await make_user(display_name="healthy")
        broken = await make_user(display_name="broken")
        await create_transaction(db_session, healthy.id, "STREAK_DAILY", 10, "Daily")
        await create_transaction(db_session, broken.id, "STREAK_DAILY", 10, "Daily")
        # balance written outside the ledger
        await db_session.execute(update(User).where(User.id == broken.id).values(points=500))
        await db_session.commit()

        drifts = await find_balance_drift(db_session)

        assert len(drifts) == 1
        assert drifts[0].user_id == broken.id
        assert drifts[0].stored_points == 500
        assert drifts[0].ledger_points == 10
        assert drifts[0].drift == 490

    @pytest.mark.asyncio
    async def test_balance_without_any_entries(self, db_session, make_user):
        user = await make_user(points=75)

        drifts = await find_balance_drift(db_session)

        assert [(d.user_id, d.ledger_points, d.drift) for d in drifts] == [(user.id, 0, 75)]

    @pytest.mark.asyncio
    async def test_assert_raises_on_drift(self, db_session, make_user):
        user = await make_user(points=75)

        with pytest.raises(RewardInvariantError, match=str(user.id)):
            await assert_balances_consistent(db_session)
