"""
services/review/targets.py
The thing a review is about. Exactly one of guide, porter, adventure or gear
provider; stored on the Review row as (review_type, target_id).
"""

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Union

from shared.exceptions import ValidationError
from shared.models.models import ReviewType

ONE_DECIMAL = Decimal("0.1")


@dataclass(frozen=True)
class GuideTarget:
    target_id: uuid.UUID
    review_type = ReviewType.GUIDE


@dataclass(frozen=True)
class PorterTarget:
    target_id: uuid.UUID
    review_type = ReviewType.PORTER


@dataclass(frozen=True)
class AdventureTarget:
    target_id: uuid.UUID
    review_type = ReviewType.ADVENTURE


@dataclass(frozen=True)
class GearProviderTarget:
    target_id: uuid.UUID
    review_type = ReviewType.GEAR_PROVIDER


ReviewTarget = Union[GuideTarget, PorterTarget, AdventureTarget, GearProviderTarget]

_TARGET_TYPES = {
    ReviewType.GUIDE: GuideTarget,
    ReviewType.PORTER: PorterTarget,
    ReviewType.ADVENTURE: AdventureTarget,
    ReviewType.GEAR_PROVIDER: GearProviderTarget,
}

# Sub-ratings each target type accepts
BREAKDOWN_CRITERIA: Dict[ReviewType, frozenset] = {
    ReviewType.GUIDE: frozenset({"professionalism", "communication", "safety", "knowledge", "punctuality"}),
    ReviewType.PORTER: frozenset({"reliability", "strength", "attitude", "punctuality", "safety"}),
    ReviewType.ADVENTURE: frozenset({"organization", "value_for_money", "accommodation", "meals", "difficulty"}),
    ReviewType.GEAR_PROVIDER: frozenset(),
}


def make_target(review_type: Union[ReviewType, str], target_id: uuid.UUID) -> ReviewTarget:
    return _TARGET_TYPES[ReviewType(review_type)](target_id)


def round_rating(value: Decimal) -> Decimal:
    return value.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def validate_breakdown(review_type: ReviewType, breakdown: Mapping[str, int]) -> None:
    allowed = BREAKDOWN_CRITERIA[review_type]
    unknown = set(breakdown) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown rating criteria for {review_type.value}: {sorted(unknown)}",
            allowed=sorted(allowed),
        )


def overall_rating(breakdown: Mapping[str, int]) -> Decimal:
    """Mean of the sub-ratings, rounded half-up to one decimal."""
    if not breakdown:
        raise ValidationError("Breakdown must rate at least one criterion")
    total = sum(Decimal(score) for score in breakdown.values())
    return round_rating(total / len(breakdown))
