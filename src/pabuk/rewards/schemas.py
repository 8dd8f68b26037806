"""Pydantic models returned by the reward services."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Calculator ---


class ContributionFacts(BaseModel):
    """The attributes the calculator reads from a contribution."""

    type: str
    category: str
    status: str
    quality_rating: int | None = None


class CalculationOptions(BaseModel):
    is_first_in_province: bool = False
    is_underrepresented_province: bool = False
    quality_rating_override: int | None = None


class PointBreakdown(BaseModel):
    base: int
    status: int
    quality: int
    geographic: int


class PointCalculation(BaseModel):
    base_points: int
    category_modifier: float
    status_multiplier: float
    quality_rating: int
    quality_multiplier: float
    quality_bonus: int
    geographic_bonus: int
    total_points: int
    breakdown: PointBreakdown


class ExamplePoints(BaseModel):
    pending: int
    approved: int
    featured: int
    max_possible: int


# --- Ledger ---


class LevelProgress(BaseModel):
    level: str
    points_into_level: int
    points_for_level: int
    next_level: str


class TransactionEntry(BaseModel):
    id: int
    kind: str
    amount: int
    reason: str
    contribution_id: int | None = None
    metadata: dict | None = None
    created_at: datetime | None = None


class PointsBreakdown(BaseModel):
    contributions: int = 0
    bonuses: int = 0
    milestones: int = 0
    penalties: int = 0


class UserPointsSummary(BaseModel):
    user_id: int
    points: int
    level: str
    rank: int
    progress: LevelProgress
    recent_transactions: list[TransactionEntry]
    breakdown: PointsBreakdown


class TransactionHistory(BaseModel):
    entries: list[TransactionEntry]
    total: int
    limit: int
    offset: int


# --- Streak ---


class NextStreakMilestone(BaseModel):
    days: int
    bonus: int


class StreakStatus(BaseModel):
    current_streak: int
    longest_streak: int
    streak_type: str
    last_contribution_at: datetime | None = None
    is_active: bool
    next_milestone: NextStreakMilestone | None = None
    bonus_earned_today: bool


class StreakUpdate(BaseModel):
    new_streak: int
    bonus_awarded: int
    milestone_reached: str | None = None
    streak_reset: bool = False


class StreakHistoryEntry(BaseModel):
    streak_type: str
    start_date: datetime
    end_date: datetime
    length: int
    bonus_awarded: int


# --- Achievements ---


class AwardedAchievement(BaseModel):
    badge_name: str
    badge_category: str
    bonus: int
    description: str


class EarnedAchievement(BaseModel):
    badge_name: str
    badge_category: str
    badge_icon: str | None = None
    description: str
    earned_at: datetime


class AchievementProgress(BaseModel):
    badge_name: str
    badge_category: str
    description: str
    progress: int
    target: int


class UserAchievements(BaseModel):
    earned: list[EarnedAchievement]
    available: list[AchievementProgress]


class BadgeEntry(BaseModel):
    name: str
    category: str
    description: str
    threshold: int
    bonus: int
    icon: str


class BadgeCatalog(BaseModel):
    milestones: list[BadgeEntry]
    diversity: list[BadgeEntry]
    geographic: list[BadgeEntry]
    streaks: list[BadgeEntry]


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str | None = None
    level: str
    points: int
    value: int


class Leaderboard(BaseModel):
    category: str
    entries: list[LeaderboardEntry]
    total: int
    limit: int
    offset: int


# --- Contribution workflow ---


class SubmissionResult(BaseModel):
    contribution_id: int
    points_awarded: int
    transaction_id: int | None = None
    is_first_in_province: bool
    is_underrepresented_province: bool
    breakdown: list[str]


class ModerationResult(BaseModel):
    contribution_id: int
    old_status: str
    new_status: str
    points_delta: int
    points_awarded: int
    streak: StreakUpdate | None = None
    achievements: list[AwardedAchievement] = []


class RerateResult(BaseModel):
    contribution_id: int
    old_rating: int | None = None
    new_rating: int
    points_delta: int
    points_awarded: int


# --- Audit ---


class BalanceDrift(BaseModel):
    user_id: int
    stored_points: int
    ledger_points: int
    drift: int
