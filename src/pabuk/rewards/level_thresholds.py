"""Level thresholds and computation.

These values MUST match the client's level badge exactly. The ledger builds
its SQL level expression from the same table, so ``users.level`` and
``compute_level(users.points)`` never disagree.
"""

from __future__ import annotations

from sqlalchemy import case
from sqlalchemy.sql.elements import ColumnElement

from pabuk.rewards.schemas import LevelProgress

LEVEL_THRESHOLDS: list[dict] = [
    {"level": "Bronze", "min_points": 0},
    {"level": "Silver", "min_points": 1000},
    {"level": "Gold", "min_points": 5000},
    {"level": "Platinum", "min_points": 20000},
    {"level": "Diamond", "min_points": 100000},
]


def level_for_points(points: int) -> str:
    """Level name for a balance. Negative balances stay Bronze."""
    current = LEVEL_THRESHOLDS[0]
    for threshold in LEVEL_THRESHOLDS:
        if points >= threshold["min_points"]:
            current = threshold
    return current["level"]


def compute_level(points: int) -> LevelProgress:
    """Level plus progress toward the next one."""
    index = 0
    for i, threshold in enumerate(LEVEL_THRESHOLDS):
        if points >= threshold["min_points"]:
            index = i

    current = LEVEL_THRESHOLDS[index]
    next_level = LEVEL_THRESHOLDS[min(index + 1, len(LEVEL_THRESHOLDS) - 1)]

    points_into_level = max(0, points - current["min_points"])
    points_for_level = next_level["min_points"] - current["min_points"]

    # At max level, avoid division by zero
    if points_for_level == 0:
        points_for_level = 1

    return LevelProgress(
        level=current["level"],
        points_into_level=points_into_level,
        points_for_level=points_for_level,
        next_level=next_level["level"],
    )


def level_case(points: ColumnElement[int]) -> ColumnElement[str]:
    """SQL CASE mapping a points expression to its level name."""
    whens = [
        (points >= threshold["min_points"], threshold["level"])
        for threshold in reversed(LEVEL_THRESHOLDS[1:])
    ]
    return case(*whens, else_=LEVEL_THRESHOLDS[0]["level"])
