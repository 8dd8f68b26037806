"""Integration tests for the point ledger: balance and level updates, retries, reads."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError

from pabuk.config import Settings
from pabuk.db.models import PointTransaction
from pabuk.rewards import ledger
from pabuk.rewards.constants import TransactionKind
from pabuk.rewards.exceptions import LedgerConflictError, RewardValidationError, UserNotFoundError
from pabuk.rewards.ledger import (
    admin_adjust,
    apply_penalty,
    award_contribution_points,
    create_transaction,
    get_history,
    get_user_summary,
    update_quality_change,
    update_status_change,
)
from pabuk.rewards.users import get_user


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _dbapi_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE users SET points = points + ?", None, _PgError(sqlstate))


@pytest_asyncio.fixture
async def ledger_db(db_session, make_user):
    """Session plus a fresh user with no points."""
    user = await make_user(display_name="ledger-user")
    return db_session, user


async def _count_transactions(db, user_id: int) -> int:
    return await db.scalar(
        select(func.count()).select_from(PointTransaction).where(PointTransaction.user_id == user_id)
    )


class TestCreateTransaction:
    """Every entry moves the balance and level with it."""

    @pytest.mark.asyncio
    async def test_credit_updates_balance_and_level(self, ledger_db, ledger_total):
        db, user = ledger_db
        entry = await create_transaction(db, user.id, TransactionKind.ADMIN_ADJUSTMENT, 1200, "Welcome grant")
        await db.commit()

        fresh = await get_user(db, user.id)
        assert fresh.points == 1200
        assert fresh.level == "Silver"
        assert fresh.updated_at is not None
        assert entry.id is not None
        assert entry.kind == "ADMIN_ADJUSTMENT"
        assert await ledger_total(user.id) == 1200

    @pytest.mark.asyncio
    async def test_balance_equals_sum_of_entries(self, ledger_db, ledger_total):
        db, user = ledger_db
        await create_transaction(db, user.id, "CONTRIBUTION_TEXT", 60, "Contribution: folktale")
        await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily streak bonus (Day 1)")
        await apply_penalty(db, user.id, "PENALTY_SPAM", 50, "Spam")
        await admin_adjust(db, user.id, -5, "Correction", admin_id="mod-1")
        await db.commit()

        fresh = await get_user(db, user.id)
        assert fresh.points == 15
        assert await ledger_total(user.id) == fresh.points

    @pytest.mark.asyncio
    async def test_balance_may_go_negative(self, ledger_db):
        db, user = ledger_db
        await apply_penalty(db, user.id, TransactionKind.PENALTY_LOW_QUALITY, None, "Low quality")
        await db.commit()

        fresh = await get_user(db, user.id)
        assert fresh.points == -100
        assert fresh.level == "Bronze"

    @pytest.mark.asyncio
    async def test_level_drops_with_balance(self, ledger_db):
        db, user = ledger_db
        await create_transaction(db, user.id, "ADMIN_ADJUSTMENT", 5000, "Grant")
        assert (await get_user(db, user.id)).level == "Gold"

        await create_transaction(db, user.id, "ADMIN_ADJUSTMENT", -4001, "Clawback")
        fresh = await get_user(db, user.id)
        assert fresh.points == 999
        assert fresh.level == "Bronze"

    @pytest.mark.asyncio
    async def test_metadata_is_stored(self, ledger_db):
        db, user = ledger_db
        entry = await create_transaction(
            db, user.id, "STREAK_WEEKLY", 100, "Week Warrior - 7 day streak!", metadata={"days": 7}
        )
        await db.commit()
        await db.refresh(entry)
        assert entry.transaction_metadata == {"days": 7}

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError, match="kind"):
            await create_transaction(db, user.id, "LOTTERY_WIN", 10, "Lucky")
        assert await _count_transactions(db, user.id) == 0

    @pytest.mark.asyncio
    async def test_fractional_amount_rejected(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError):
            await create_transaction(db, user.id, "STREAK_DAILY", 1.5, "Daily")

    @pytest.mark.asyncio
    async def test_blank_reason_rejected(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError):
            await create_transaction(db, user.id, "STREAK_DAILY", 10, "   ")

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await create_transaction(db_session, 424242, "STREAK_DAILY", 10, "Daily")
        assert await _count_transactions(db_session, 424242) == 0

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_balance(self, ledger_db):
        """A failure after the balance update leaves neither write behind."""
        db, user = ledger_db
        user_id = user.id
        with pytest.raises(IntegrityError):
            await create_transaction(db, user_id, "CONTRIBUTION_TEXT", 60, "Dangling", contribution_id=999999)

        fresh = await get_user(db, user_id)
        assert fresh.points == 0
        assert await _count_transactions(db, user_id) == 0


class TestRetries:
    """Serialization failures are retried in a fresh savepoint."""

    @pytest.mark.asyncio
    async def test_retries_after_serialization_failure(self, ledger_db, settings, monkeypatch):
        db, user = ledger_db
        real_write = ledger._write_transaction
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise _dbapi_error("40001")
            return await real_write(*args, **kwargs)

        monkeypatch.setattr(ledger, "_write_transaction", flaky)

        await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily", settings=settings)
        await db.commit()

        assert calls["n"] == 2
        assert (await get_user(db, user.id)).points == 10
        assert await _count_transactions(db, user.id) == 1

    @pytest.mark.asyncio
    async def test_deadlock_is_retryable(self, ledger_db, settings, monkeypatch):
        db, user = ledger_db
        real_write = ledger._write_transaction
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] < 3:
                raise _dbapi_error("40P01")
            return await real_write(*args, **kwargs)

        monkeypatch.setattr(ledger, "_write_transaction", flaky)

        await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily", settings=settings)
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, ledger_db, settings, monkeypatch):
        db, user = ledger_db
        calls = {"n": 0}

        async def always_conflicts(*args, **kwargs):
            calls["n"] += 1
            raise _dbapi_error("40001")

        monkeypatch.setattr(ledger, "_write_transaction", always_conflicts)

        with pytest.raises(LedgerConflictError) as exc_info:
            await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily", settings=settings)

        assert calls["n"] == settings.ledger_max_attempts
        assert exc_info.value.attempts == settings.ledger_max_attempts
        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, DBAPIError)
        assert (await get_user(db, user.id)).points == 0

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(self, ledger_db, settings, monkeypatch):
        db, user = ledger_db
        calls = {"n": 0}

        async def unique_violation(*args, **kwargs):
            calls["n"] += 1
            raise _dbapi_error("23505")

        monkeypatch.setattr(ledger, "_write_transaction", unique_violation)

        with pytest.raises(DBAPIError):
            await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily", settings=settings)
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_single_attempt_setting(self, ledger_db, monkeypatch):
        db, user = ledger_db

        async def always_conflicts(*args, **kwargs):
            raise _dbapi_error("40001")

        monkeypatch.setattr(ledger, "_write_transaction", always_conflicts)

        with pytest.raises(LedgerConflictError) as exc_info:
            await create_transaction(
                db, user.id, "STREAK_DAILY", 10, "Daily",
                settings=Settings(ledger_max_attempts=1, ledger_retry_backoff_seconds=0),
            )
        assert exc_info.value.attempts == 1


class TestPenaltiesAndAdjustments:
    """Penalty coercion and admin attribution."""

    @pytest.mark.asyncio
    async def test_positive_penalty_is_coerced_negative(self, ledger_db):
        db, user = ledger_db
        entry = await apply_penalty(db, user.id, "PENALTY_DUPLICATE", 30, "Duplicate upload")
        assert entry.amount == -30

    @pytest.mark.asyncio
    async def test_negative_penalty_kept_negative(self, ledger_db):
        db, user = ledger_db
        entry = await apply_penalty(db, user.id, "PENALTY_DUPLICATE", -30, "Duplicate upload")
        assert entry.amount == -30

    @pytest.mark.asyncio
    async def test_default_penalty_magnitude(self, ledger_db):
        db, user = ledger_db
        entry = await apply_penalty(db, user.id, "PENALTY_DUPLICATE", None, "Duplicate upload")
        assert entry.amount == -25

    @pytest.mark.asyncio
    async def test_non_penalty_kind_rejected(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError, match="not a penalty"):
            await apply_penalty(db, user.id, "STREAK_DAILY", 10, "Nope")

    @pytest.mark.asyncio
    async def test_admin_adjust_attribution(self, ledger_db):
        db, user = ledger_db
        entry = await admin_adjust(db, user.id, 250, "Event prize", admin_id=7)
        assert entry.kind == "ADMIN_ADJUSTMENT"
        assert entry.amount == 250
        assert entry.reason == "[Admin: 7] Event prize"
        assert entry.transaction_metadata["admin_id"] == "7"
        assert "adjusted_at" in entry.transaction_metadata

    @pytest.mark.asyncio
    async def test_admin_adjust_requires_reason(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError):
            await admin_adjust(db, user.id, 250, "", admin_id=7)


class TestContributionAwards:
    """Initial awards and delta updates keep points_awarded current."""

    @pytest.mark.asyncio
    async def test_award_contribution_points(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user, title="The Golden Conch")

        entry = await award_contribution_points(db, contribution)
        await db.commit()

        assert entry.kind == "CONTRIBUTION_TEXT"
        assert entry.amount == 35
        assert entry.reason == "Contribution: The Golden Conch"
        assert entry.contribution_id == contribution.id
        assert entry.transaction_metadata["status"] == "PENDING"
        assert contribution.points_awarded == 35
        assert contribution.calculated_at is not None
        assert (await get_user(db, user.id)).points == 35

    @pytest.mark.asyncio
    async def test_untitled_contribution_reason(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user, type="AUDIO", category="FOLK_SONG")
        entry = await award_contribution_points(db, contribution)
        assert entry.reason == "Contribution: AUDIO"
        assert entry.kind == "CONTRIBUTION_AUDIO"

    @pytest.mark.asyncio
    async def test_status_change_positive(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user)
        await award_contribution_points(db, contribution)

        entry = await update_status_change(db, contribution, "PENDING", "APPROVED")
        await db.commit()

        assert entry.kind == "QUALITY_MULTIPLIER"
        assert entry.amount == 25
        assert entry.reason == "Status change: PENDING → APPROVED"
        assert contribution.points_awarded == 60
        assert (await get_user(db, user.id)).points == 60

    @pytest.mark.asyncio
    async def test_status_change_negative(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user)
        await award_contribution_points(db, contribution)

        entry = await update_status_change(db, contribution, "PENDING", "REJECTED")

        assert entry.kind == "PENALTY_LOW_QUALITY"
        assert entry.amount == -35
        assert contribution.points_awarded == 0
        assert (await get_user(db, user.id)).points == 0

    @pytest.mark.asyncio
    async def test_zero_delta_writes_nothing(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user, type="SYNTHETIC", category="OTHER", quality_rating=1)
        await award_contribution_points(db, contribution)

        entry = await update_status_change(db, contribution, "PENDING", "REJECTED")

        assert entry is None
        assert await _count_transactions(db, user.id) == 1

    @pytest.mark.asyncio
    async def test_quality_change(self, ledger_db, make_contribution):
        db, user = ledger_db
        contribution = await make_contribution(user, status="APPROVED", quality_rating=3)
        await award_contribution_points(db, contribution)
        assert contribution.points_awarded == 60

        entry = await update_quality_change(db, contribution, 3, 5)

        assert entry.amount == 65
        assert entry.reason == "Quality rating change: 3 → 5"
        assert contribution.points_awarded == 125
        assert (await get_user(db, user.id)).points == 125


class TestReads:
    """Summary and history."""

    @pytest.mark.asyncio
    async def test_summary(self, ledger_db):
        db, user = ledger_db
        await create_transaction(db, user.id, "CONTRIBUTION_TEXT", 1100, "Contribution: epic")
        await create_transaction(db, user.id, "MILESTONE_BRONZE", 100, "Achievement unlocked: Bronze Contributor")
        await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily streak bonus (Day 1)")
        await apply_penalty(db, user.id, "PENALTY_SPAM", None, "Spam")
        await db.commit()

        summary = await get_user_summary(db, user.id, settings=Settings(summary_recent_transactions=2))

        assert summary.points == 1160
        assert summary.level == "Silver"
        assert summary.rank == 1
        assert summary.progress.points_into_level == 160
        assert summary.breakdown.contributions == 1100
        assert summary.breakdown.milestones == 100
        assert summary.breakdown.bonuses == 10
        assert summary.breakdown.penalties == -50
        assert len(summary.recent_transactions) == 2
        assert summary.recent_transactions[0].kind == "PENALTY_SPAM"

    @pytest.mark.asyncio
    async def test_summary_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await get_user_summary(db_session, 31337)

    @pytest.mark.asyncio
    async def test_history_pagination(self, ledger_db):
        db, user = ledger_db
        for day in range(1, 6):
            await create_transaction(db, user.id, "STREAK_DAILY", 10, f"Daily streak bonus (Day {day})")
        await db.commit()

        page = await get_history(db, user.id, limit=2, offset=1)

        assert page.total == 5
        assert page.limit == 2
        assert page.offset == 1
        assert [e.reason for e in page.entries] == [
            "Daily streak bonus (Day 4)",
            "Daily streak bonus (Day 3)",
        ]

    @pytest.mark.asyncio
    async def test_history_filter_by_kind(self, ledger_db):
        db, user = ledger_db
        await create_transaction(db, user.id, "STREAK_DAILY", 10, "Daily")
        await create_transaction(db, user.id, "CONTRIBUTION_TEXT", 35, "Contribution: tale")
        await db.commit()

        page = await get_history(db, user.id, kind=TransactionKind.CONTRIBUTION_TEXT)

        assert page.total == 1
        assert page.entries[0].amount == 35

    @pytest.mark.asyncio
    async def test_history_bounds(self, ledger_db):
        db, user = ledger_db
        with pytest.raises(RewardValidationError):
            await get_history(db, user.id, limit=0)
        with pytest.raises(RewardValidationError):
            await get_history(db, user.id, limit=1000)
        with pytest.raises(RewardValidationError):
            await get_history(db, user.id, offset=-1)

    @pytest.mark.asyncio
    async def test_history_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await get_history(db_session, 31337)
