"""Reward engine tables.

Creates users and contributions (reward columns only, when the platform has
not created them already), point_transactions, achievements and
streak_history.

Revision ID: 001_reward_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reward_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        ALTER TABLE users
            ADD COLUMN IF NOT EXISTS points BIGINT NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS level VARCHAR(16) NOT NULL DEFAULT 'Bronze',
            ADD COLUMN IF NOT EXISTS streak INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS longest_streak INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS last_contribution_at TIMESTAMPTZ,
            ADD COLUMN IF NOT EXISTS approved_contributions INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS provinces_covered INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS updated_at TIMESTAMPTZ
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_users_points ON users(points DESC)")

    # --- Contributions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS contributions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            category VARCHAR(32) NOT NULL,
            province_id VARCHAR(64),
            title VARCHAR(256),
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            quality_rating INTEGER CHECK (quality_rating BETWEEN 1 AND 5),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        ALTER TABLE contributions
            ADD COLUMN IF NOT EXISTS points_awarded INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS calculated_at TIMESTAMPTZ,
            ADD COLUMN IF NOT EXISTS is_first_in_province BOOLEAN NOT NULL DEFAULT false,
            ADD COLUMN IF NOT EXISTS is_underrepresented_province BOOLEAN NOT NULL DEFAULT false
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_contributions_user_status ON contributions(user_id, status)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_contributions_province_status ON contributions(province_id, status)")

    # --- Point Transactions (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS point_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind VARCHAR(32) NOT NULL,
            amount INTEGER NOT NULL,
            reason TEXT NOT NULL,
            contribution_id BIGINT REFERENCES contributions(id) ON DELETE SET NULL,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_point_transactions_user_created "
        "ON point_transactions(user_id, created_at DESC)"
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_point_transactions_user_kind ON point_transactions(user_id, kind)")

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_name VARCHAR(128) NOT NULL,
            badge_category VARCHAR(16) NOT NULL,
            badge_icon VARCHAR(16),
            description TEXT NOT NULL,
            transaction_id BIGINT REFERENCES point_transactions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT achievements_user_id_badge_name_key UNIQUE (user_id, badge_name)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_achievements_user ON achievements(user_id, earned_at DESC)")

    # --- Streak History ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streak_history (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            streak_type VARCHAR(16) NOT NULL,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            length INTEGER NOT NULL,
            bonus_awarded INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_streak_history_user ON streak_history(user_id, created_at DESC)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS streak_history CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS point_transactions CASCADE")
    op.execute("DROP INDEX IF EXISTS idx_contributions_province_status")
    op.execute("DROP INDEX IF EXISTS idx_contributions_user_status")
    op.execute("DROP INDEX IF EXISTS idx_users_points")
    op.execute("""
        ALTER TABLE contributions
            DROP COLUMN IF EXISTS points_awarded,
            DROP COLUMN IF EXISTS calculated_at,
            DROP COLUMN IF EXISTS is_first_in_province,
            DROP COLUMN IF EXISTS is_underrepresented_province
    """)
    op.execute("""
        ALTER TABLE users
            DROP COLUMN IF EXISTS points,
            DROP COLUMN IF EXISTS level,
            DROP COLUMN IF EXISTS streak,
            DROP COLUMN IF EXISTS longest_streak,
            DROP COLUMN IF EXISTS last_contribution_at,
            DROP COLUMN IF EXISTS approved_contributions,
            DROP COLUMN IF EXISTS provinces_covered,
            DROP COLUMN IF EXISTS updated_at
    """)
