"""ORM models for the reward engine tables.

``users`` and ``contributions`` are owned by the surrounding platform; only the
columns the reward engine reads or writes are mapped here. The remaining tables
(``point_transactions``, ``achievements``, ``streak_history``) belong to the
engine and are append-only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pabuk.db.base import Base, BigIntPK

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Reward state of a platform user.

    ``points`` and ``level`` are written only by the ledger; the streak fields
    and ``approved_contributions`` only by the streak tracker.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="Bronze", server_default="Bronze")
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_contribution_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_contributions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    provinces_covered: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Contributions
# ---------------------------------------------------------------------------


class Contribution(Base):
    """A submitted piece of cultural data, subject to moderation."""

    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    province_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING", server_default="PENDING")
    quality_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_first_in_province: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_underrepresented_province: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped[User] = relationship("User")


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class PointTransaction(Base):
    """Immutable point ledger entry. Σ amount per user equals users.points."""

    __tablename__ = "point_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    contribution_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("contributions.id", ondelete="SET NULL"), nullable=True
    )
    transaction_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Badges earned by users. UNIQUE(user_id, badge_name) prevents duplicates."""

    __tablename__ = "achievements"
    __table_args__ = (UniqueConstraint("user_id", "badge_name", name="achievements_user_id_badge_name_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_name: Mapped[str] = mapped_column(String(128), nullable=False)
    badge_category: Mapped[str] = mapped_column(String(16), nullable=False)
    badge_icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("point_transactions.id"), nullable=True
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class StreakHistory(Base):
    """Audit row written when a streak breaks or crosses a milestone."""

    __tablename__ = "streak_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    streak_type: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    length: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
