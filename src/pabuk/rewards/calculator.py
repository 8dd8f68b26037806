"""Point calculator: pure computation of a contribution's point value.

Formula::

    core  = round_half_up(base × category × status × quality)
    total = max(0, core + quality_bonus + geographic_bonus)

Only the product is rounded; bonuses are exact integers added afterwards.
Values MUST match the client-side estimator exactly.
"""

from __future__ import annotations

import math
from typing import Protocol

from pabuk.rewards.constants import (
    BASE_POINTS,
    CATEGORY_MODIFIERS,
    DEFAULT_CATEGORY_MODIFIER,
    DEFAULT_QUALITY_RATING,
    FIRST_IN_PROVINCE_BONUS,
    MAX_QUALITY_RATING,
    MIN_QUALITY_RATING,
    QUALITY_BONUSES,
    QUALITY_MULTIPLIERS,
    REJECTED_KEEPS_GEOGRAPHIC_BONUS,
    STATUS_MULTIPLIERS,
    UNDERREPRESENTED_PROVINCE_BONUS,
    Category,
    ContributionStatus,
    DataType,
)
from pabuk.rewards.exceptions import RewardValidationError
from pabuk.rewards.schemas import (
    CalculationOptions,
    ContributionFacts,
    ExamplePoints,
    PointBreakdown,
    PointCalculation,
)


class ContributionLike(Protocol):
    type: str
    category: str
    status: str
    quality_rating: int | None


def round_half_up(value: float) -> int:
    """Round .5 upwards, matching the client's Math.round."""
    return math.floor(value + 0.5)


def parse_data_type(value: str) -> DataType:
    try:
        return DataType(value)
    except ValueError:
        raise RewardValidationError(f"Unknown data type: {value!r}") from None


def parse_category(value: str) -> Category:
    try:
        return Category(value)
    except ValueError:
        raise RewardValidationError(f"Unknown category: {value!r}") from None


def parse_status(value: str) -> ContributionStatus:
    try:
        return ContributionStatus(value)
    except ValueError:
        raise RewardValidationError(f"Unknown contribution status: {value!r}") from None


def validate_rating(rating: int | None) -> int | None:
    """Reject ratings outside 1-5. ``None`` means unrated."""
    if rating is None:
        return None
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise RewardValidationError(f"Quality rating must be an integer, got {rating!r}")
    if not MIN_QUALITY_RATING <= rating <= MAX_QUALITY_RATING:
        raise RewardValidationError(
            f"Quality rating must be between {MIN_QUALITY_RATING} and {MAX_QUALITY_RATING}, got {rating}"
        )
    return rating


def _facts(contribution: ContributionLike) -> ContributionFacts:
    return ContributionFacts(
        type=contribution.type,
        category=contribution.category,
        status=contribution.status,
        quality_rating=contribution.quality_rating,
    )


def calculate(
    contribution: ContributionLike,
    options: CalculationOptions | None = None,
) -> PointCalculation:
    """Compute the point value of a contribution in its current state."""
    options = options or CalculationOptions()

    data_type = parse_data_type(contribution.type)
    category = parse_category(contribution.category)
    status = parse_status(contribution.status)

    override = validate_rating(options.quality_rating_override)
    stored = validate_rating(contribution.quality_rating)
    if override is not None:
        rating = override
    elif stored is not None:
        rating = stored
    else:
        rating = DEFAULT_QUALITY_RATING

    base_points = BASE_POINTS[data_type]
    category_modifier = CATEGORY_MODIFIERS.get(category, DEFAULT_CATEGORY_MODIFIER)
    status_multiplier = STATUS_MULTIPLIERS[status]
    quality_multiplier = QUALITY_MULTIPLIERS[rating]
    # A zero status multiplier (REJECTED) voids the quality bonus as well.
    quality_bonus = QUALITY_BONUSES[rating] if status_multiplier else 0

    geographic_bonus = 0
    if status is not ContributionStatus.REJECTED or REJECTED_KEEPS_GEOGRAPHIC_BONUS:
        if options.is_first_in_province:
            geographic_bonus += FIRST_IN_PROVINCE_BONUS
        if options.is_underrepresented_province:
            geographic_bonus += UNDERREPRESENTED_PROVINCE_BONUS

    core = round_half_up(base_points * category_modifier * status_multiplier * quality_multiplier)
    total = max(0, core + quality_bonus + geographic_bonus)

    weighted = base_points * category_modifier
    breakdown = PointBreakdown(
        base=round_half_up(weighted),
        status=round_half_up(weighted * (status_multiplier - 1)),
        quality=quality_bonus + round_half_up(weighted * status_multiplier * (quality_multiplier - 1)),
        geographic=geographic_bonus,
    )

    return PointCalculation(
        base_points=base_points,
        category_modifier=category_modifier,
        status_multiplier=status_multiplier,
        quality_rating=rating,
        quality_multiplier=quality_multiplier,
        quality_bonus=quality_bonus,
        geographic_bonus=geographic_bonus,
        total_points=total,
        breakdown=breakdown,
    )


def calculate_pending(data_type: str, category: str) -> int:
    """Provisional value shown to the submitter before moderation."""
    facts = ContributionFacts(type=data_type, category=category, status=ContributionStatus.PENDING.value)
    return calculate(facts).total_points


def calculate_status_change(
    contribution: ContributionLike,
    old_status: str,
    new_status: str,
    options: CalculationOptions | None = None,
) -> int:
    """Signed delta between the contribution's value at ``old_status`` and ``new_status``."""
    facts = _facts(contribution)
    old = calculate(facts.model_copy(update={"status": old_status}), options)
    new = calculate(facts.model_copy(update={"status": new_status}), options)
    return new.total_points - old.total_points


def calculate_quality_change(
    contribution: ContributionLike,
    old_rating: int | None,
    new_rating: int,
    options: CalculationOptions | None = None,
) -> int:
    """Signed delta for re-rating a contribution at its current status."""
    options = options or CalculationOptions()
    if new_rating is None:
        raise RewardValidationError("New quality rating is required")
    validate_rating(old_rating)
    validate_rating(new_rating)

    facts = _facts(contribution)
    old = calculate(
        facts.model_copy(update={"quality_rating": old_rating}),
        options.model_copy(update={"quality_rating_override": old_rating or DEFAULT_QUALITY_RATING}),
    )
    new = calculate(
        facts.model_copy(update={"quality_rating": new_rating}),
        options.model_copy(update={"quality_rating_override": new_rating}),
    )
    return new.total_points - old.total_points


def example_points(data_type: str, category: str) -> ExamplePoints:
    """Reference values for a type/category pair, for the "how to earn" page."""
    pending = calculate(ContributionFacts(type=data_type, category=category, status="PENDING"))
    approved = calculate(ContributionFacts(type=data_type, category=category, status="APPROVED", quality_rating=3))
    featured = calculate(
        ContributionFacts(type=data_type, category=category, status="FEATURED", quality_rating=5),
        CalculationOptions(is_first_in_province=True, is_underrepresented_province=True),
    )
    return ExamplePoints(
        pending=pending.total_points,
        approved=approved.total_points,
        featured=featured.total_points,
        max_possible=featured.total_points,
    )


def breakdown_lines(result: PointCalculation) -> list[str]:
    """Human-readable lines describing how a total was reached."""
    lines = [f"Base: {result.breakdown.base} pts ({result.base_points} × {result.category_modifier:g})"]
    if result.status_multiplier != 1:
        lines.append(f"Status: {result.status_multiplier:g}x multiplier")
    if result.quality_bonus != 0:
        lines.append(f"Quality: {result.quality_bonus:+d} pts")
    if result.geographic_bonus > 0:
        lines.append(f"Geographic: +{result.geographic_bonus} pts")
    lines.append(f"Total: {result.total_points} pts")
    return lines
