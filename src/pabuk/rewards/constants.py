"""Point system policy table.

Base points, multipliers, thresholds and bonuses. These values MUST match the
client-side estimator exactly; they are not runtime settings.
"""

from __future__ import annotations

from enum import Enum


class DataType(str, Enum):
    TEXT = "TEXT"
    AUDIO = "AUDIO"
    IMAGE = "IMAGE"
    SYNTHETIC = "SYNTHETIC"


class Category(str, Enum):
    FOLKTALE = "FOLKTALE"
    PROVERB = "PROVERB"
    HISTORY = "HISTORY"
    DIALECT = "DIALECT"
    FOLK_SONG = "FOLK_SONG"
    FESTIVAL_SOUND = "FESTIVAL_SOUND"
    LANDMARK = "LANDMARK"
    LANDSCAPE = "LANDSCAPE"
    CULTURAL_OBJECT = "CULTURAL_OBJECT"
    FOOD = "FOOD"
    OTHER = "OTHER"


class ContributionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FEATURED = "FEATURED"


class TransactionKind(str, Enum):
    CONTRIBUTION_TEXT = "CONTRIBUTION_TEXT"
    CONTRIBUTION_AUDIO = "CONTRIBUTION_AUDIO"
    CONTRIBUTION_IMAGE = "CONTRIBUTION_IMAGE"
    CONTRIBUTION_SYNTHETIC = "CONTRIBUTION_SYNTHETIC"
    STREAK_DAILY = "STREAK_DAILY"
    STREAK_WEEKLY = "STREAK_WEEKLY"
    STREAK_MONTHLY = "STREAK_MONTHLY"
    STREAK_YEARLY = "STREAK_YEARLY"
    MILESTONE_BRONZE = "MILESTONE_BRONZE"
    MILESTONE_SILVER = "MILESTONE_SILVER"
    MILESTONE_GOLD = "MILESTONE_GOLD"
    MILESTONE_PLATINUM = "MILESTONE_PLATINUM"
    MILESTONE_DIAMOND = "MILESTONE_DIAMOND"
    MILESTONE_LEGEND = "MILESTONE_LEGEND"
    PENALTY_SPAM = "PENALTY_SPAM"
    PENALTY_DUPLICATE = "PENALTY_DUPLICATE"
    PENALTY_LOW_QUALITY = "PENALTY_LOW_QUALITY"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    QUALITY_MULTIPLIER = "QUALITY_MULTIPLIER"


class BadgeCategory(str, Enum):
    MILESTONE = "MILESTONE"
    STREAK = "STREAK"
    GEOGRAPHIC = "GEOGRAPHIC"
    QUALITY = "QUALITY"
    SPECIAL = "SPECIAL"


class StreakType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


# ---------------------------------------------------------------------------
# Calculator inputs
# ---------------------------------------------------------------------------

BASE_POINTS: dict[DataType, int] = {
    DataType.TEXT: 50,
    DataType.AUDIO: 80,
    DataType.IMAGE: 40,
    DataType.SYNTHETIC: 20,
}

CATEGORY_MODIFIERS: dict[Category, float] = {
    Category.FOLKTALE: 1.0,         # TEXT: 50
    Category.PROVERB: 0.6,          # TEXT: 30
    Category.HISTORY: 1.2,          # TEXT: 60
    Category.DIALECT: 1.0,          # AUDIO: 80
    Category.FOLK_SONG: 0.875,      # AUDIO: 70
    Category.FESTIVAL_SOUND: 0.75,  # AUDIO: 60
    Category.LANDMARK: 1.0,         # IMAGE: 40
    Category.LANDSCAPE: 0.875,      # IMAGE: 35
    Category.CULTURAL_OBJECT: 1.25, # IMAGE: 50
    Category.FOOD: 1.125,           # IMAGE: 45
    Category.OTHER: 0.5,
}
DEFAULT_CATEGORY_MODIFIER = 0.5

STATUS_MULTIPLIERS: dict[ContributionStatus, float] = {
    ContributionStatus.PENDING: 0.5,
    ContributionStatus.APPROVED: 1.0,
    ContributionStatus.REJECTED: 0.0,
    ContributionStatus.FEATURED: 2.0,
}

DEFAULT_QUALITY_RATING = 3
MIN_QUALITY_RATING = 1
MAX_QUALITY_RATING = 5

QUALITY_MULTIPLIERS: dict[int, float] = {1: 0.8, 2: 0.9, 3: 1.0, 4: 1.2, 5: 1.5}

# Rating 1 carries a built-in penalty; rating 2 is break-even.
QUALITY_BONUSES: dict[int, int] = {1: -10, 2: 0, 3: 10, 4: 25, 5: 50}

FIRST_IN_PROVINCE_BONUS = 20
UNDERREPRESENTED_PROVINCE_BONUS = 50

# A rejected contribution still collects its geographic bonuses.
REJECTED_KEEPS_GEOGRAPHIC_BONUS = True

# ---------------------------------------------------------------------------
# Milestones (approved contribution count)
# ---------------------------------------------------------------------------

# (tier, threshold, bonus, transaction kind)
MILESTONES: list[tuple[str, int, int, TransactionKind]] = [
    ("Bronze", 10, 100, TransactionKind.MILESTONE_BRONZE),
    ("Silver", 50, 500, TransactionKind.MILESTONE_SILVER),
    ("Gold", 100, 1000, TransactionKind.MILESTONE_GOLD),
    ("Platinum", 500, 5000, TransactionKind.MILESTONE_PLATINUM),
    ("Diamond", 1000, 10000, TransactionKind.MILESTONE_DIAMOND),
    ("Legend", 5000, 50000, TransactionKind.MILESTONE_LEGEND),
    ("Master", 10000, 100000, TransactionKind.MILESTONE_LEGEND),
]

# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------

STREAK_GRACE_PERIOD_HOURS = 48
SIGNIFICANT_STREAK_DAYS = 7

STREAK_BONUSES: dict[str, int] = {
    "DAILY": 10,
    "WEEKLY": 100,
    "MONTHLY": 500,
    "QUARTERLY": 2000,
    "YEARLY": 10000,
}

# (days, name, transaction kind, bonus); matched by exact equality.
STREAK_MILESTONES: list[tuple[int, str, TransactionKind, int]] = [
    (7, "Week Warrior", TransactionKind.STREAK_WEEKLY, STREAK_BONUSES["WEEKLY"]),
    (30, "Monthly Master", TransactionKind.STREAK_MONTHLY, STREAK_BONUSES["MONTHLY"]),
    (90, "Quarterly Champion", TransactionKind.STREAK_MONTHLY, STREAK_BONUSES["QUARTERLY"]),
    (365, "Yearly Legend", TransactionKind.STREAK_YEARLY, STREAK_BONUSES["YEARLY"]),
]

# ---------------------------------------------------------------------------
# Diversity and geography
# ---------------------------------------------------------------------------

DIVERSITY_TYPE_THRESHOLD = 10

DIVERSITY_BONUSES: dict[str, int] = {
    "MULTI_TALENTED": 200,
    "POLYMATH": 500,
    "STORYTELLER": 300,
    "SOUND_ARCHIVIST": 400,
    "VISUAL_ARTIST": 350,
}

GEOGRAPHIC_BONUSES: dict[int, int] = {
    10: 500,
    25: 1500,
    50: 3000,
    77: 10000,
}

TOTAL_PROVINCES = 77

# ---------------------------------------------------------------------------
# Penalties
# ---------------------------------------------------------------------------

PENALTIES: dict[TransactionKind, int] = {
    TransactionKind.PENALTY_SPAM: 50,
    TransactionKind.PENALTY_DUPLICATE: 25,
    TransactionKind.PENALTY_LOW_QUALITY: 100,
}

BADGE_ICONS: dict[BadgeCategory, str] = {
    BadgeCategory.MILESTONE: "🏆",
    BadgeCategory.STREAK: "🔥",
    BadgeCategory.GEOGRAPHIC: "🗺️",
    BadgeCategory.QUALITY: "⭐",
    BadgeCategory.SPECIAL: "💎",
}

CONTRIBUTION_KINDS: dict[DataType, TransactionKind] = {
    DataType.TEXT: TransactionKind.CONTRIBUTION_TEXT,
    DataType.AUDIO: TransactionKind.CONTRIBUTION_AUDIO,
    DataType.IMAGE: TransactionKind.CONTRIBUTION_IMAGE,
    DataType.SYNTHETIC: TransactionKind.CONTRIBUTION_SYNTHETIC,
}

APPROVED_STATUSES: frozenset[ContributionStatus] = frozenset(
    {ContributionStatus.APPROVED, ContributionStatus.FEATURED}
)

ALLOWED_TRANSITIONS: frozenset[tuple[ContributionStatus, ContributionStatus]] = frozenset(
    {
        (ContributionStatus.PENDING, ContributionStatus.APPROVED),
        (ContributionStatus.PENDING, ContributionStatus.REJECTED),
        (ContributionStatus.APPROVED, ContributionStatus.FEATURED),
    }
)


def contribution_kind(data_type: DataType) -> TransactionKind:
    """Ledger kind for a contribution of the given data type."""
    return CONTRIBUTION_KINDS[data_type]


def breakdown_group(kind: TransactionKind | str) -> str:
    """Summary bucket a transaction kind rolls up into."""
    value = kind.value if isinstance(kind, TransactionKind) else kind
    if value.startswith("CONTRIBUTION_"):
        return "contributions"
    if value.startswith("MILESTONE_"):
        return "milestones"
    if value.startswith("PENALTY_"):
        return "penalties"
    return "bonuses"
