"""Badge catalog: every badge the achievement evaluator can award.

Each definition names the statistic it is triggered by:

- ``approved_count``: user's approved contribution count >= threshold
- ``types_with_ten``: number of data types with >= 10 approvals >= threshold
- ``type_count``: approvals of ``data_type`` >= threshold
- ``provinces_covered``: distinct provinces with approvals >= threshold
"""

from __future__ import annotations

from pabuk.rewards.constants import (
    BADGE_ICONS,
    DIVERSITY_BONUSES,
    DIVERSITY_TYPE_THRESHOLD,
    GEOGRAPHIC_BONUSES,
    MILESTONES,
    STREAK_MILESTONES,
    BadgeCategory,
    DataType,
    TransactionKind,
)
from pabuk.rewards.schemas import BadgeCatalog, BadgeEntry

MILESTONE_BADGES: list[dict] = [
    {
        "name": f"{tier} Contributor",
        "category": BadgeCategory.MILESTONE,
        "description": f"Reached {threshold} approved contributions",
        "trigger_type": "approved_count",
        "threshold": threshold,
        "bonus": bonus,
        "kind": kind,
    }
    for tier, threshold, bonus, kind in MILESTONES
]

DIVERSITY_BADGES: list[dict] = [
    {
        "name": "Multi-Talented",
        "category": BadgeCategory.QUALITY,
        "description": f"{DIVERSITY_TYPE_THRESHOLD}+ contributions in 2 different data types",
        "trigger_type": "types_with_ten",
        "threshold": 2,
        "bonus": DIVERSITY_BONUSES["MULTI_TALENTED"],
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    },
    {
        "name": "Polymath",
        "category": BadgeCategory.QUALITY,
        "description": f"{DIVERSITY_TYPE_THRESHOLD}+ contributions in all 4 data types",
        "trigger_type": "types_with_ten",
        "threshold": len(DataType),
        "bonus": DIVERSITY_BONUSES["POLYMATH"],
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    },
    {
        "name": "Storyteller",
        "category": BadgeCategory.QUALITY,
        "description": "100 approved text contributions",
        "trigger_type": "type_count",
        "data_type": DataType.TEXT,
        "threshold": 100,
        "bonus": DIVERSITY_BONUSES["STORYTELLER"],
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    },
    {
        "name": "Sound Archivist",
        "category": BadgeCategory.QUALITY,
        "description": "50 approved audio contributions",
        "trigger_type": "type_count",
        "data_type": DataType.AUDIO,
        "threshold": 50,
        "bonus": DIVERSITY_BONUSES["SOUND_ARCHIVIST"],
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    },
    {
        "name": "Visual Artist",
        "category": BadgeCategory.QUALITY,
        "description": "50 approved image contributions",
        "trigger_type": "type_count",
        "data_type": DataType.IMAGE,
        "threshold": 50,
        "bonus": DIVERSITY_BONUSES["VISUAL_ARTIST"],
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    },
]

_GEOGRAPHIC_NAMES: dict[int, str] = {
    10: "Explorer (10 Provinces)",
    25: "Adventurer (25 Provinces)",
    50: "Voyager (50 Provinces)",
    77: "Ultimate Explorer (All 77 Provinces)",
}

GEOGRAPHIC_BADGES: list[dict] = [
    {
        "name": _GEOGRAPHIC_NAMES[threshold],
        "category": BadgeCategory.GEOGRAPHIC,
        "description": f"Contributed to {threshold} provinces",
        "trigger_type": "provinces_covered",
        "threshold": threshold,
        "bonus": bonus,
        "kind": TransactionKind.QUALITY_MULTIPLIER,
    }
    for threshold, bonus in GEOGRAPHIC_BONUSES.items()
]

ALL_BADGES: list[dict] = MILESTONE_BADGES + DIVERSITY_BADGES + GEOGRAPHIC_BADGES


def _entry(badge: dict) -> BadgeEntry:
    return BadgeEntry(
        name=badge["name"],
        category=badge["category"].value,
        description=badge["description"],
        threshold=badge["threshold"],
        bonus=badge["bonus"],
        icon=BADGE_ICONS[badge["category"]],
    )


def get_all_badges() -> BadgeCatalog:
    """Static catalog for the "how to earn" reference page."""
    streaks = [
        BadgeEntry(
            name=name,
            category=BadgeCategory.STREAK.value,
            description=f"{days}-day contribution streak",
            threshold=days,
            bonus=bonus,
            icon=BADGE_ICONS[BadgeCategory.STREAK],
        )
        for days, name, _kind, bonus in STREAK_MILESTONES
    ]
    return BadgeCatalog(
        milestones=[_entry(b) for b in MILESTONE_BADGES],
        diversity=[_entry(b) for b in DIVERSITY_BADGES],
        geographic=[_entry(b) for b in GEOGRAPHIC_BADGES],
        streaks=streaks,
    )
