"""
services/review/aggregator.py
Rating aggregation for reviewed entities.

The aggregate is always recomputed from every visible review of the target,
never adjusted incrementally, so running it twice on the same review set gives
the same result. The target row is locked with SELECT ... FOR UPDATE first, so
concurrent review writes for one entity serialize on that row.
Gear providers have no local row: their aggregate is computed and returned only.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from shared.events import DomainEvent
from shared.exceptions import ConcurrencyConflictError, NotFoundError
from shared.models.models import Adventure, Guide, Porter, Review, ReviewType
from services.review.targets import ReviewTarget, round_rating

logger = logging.getLogger(__name__)

PORTER_CRITERIA = ("reliability", "strength", "attitude", "punctuality", "safety")

AGGREGATE_MODELS = {
    ReviewType.GUIDE: Guide,
    ReviewType.PORTER: Porter,
    ReviewType.ADVENTURE: Adventure,
}

ZERO_RATING = Decimal("0.0")


@dataclass(frozen=True)
class RatingAggregate:
    average: Decimal
    count: int
    breakdown: Dict[str, Decimal] = field(default_factory=dict)


def compute_rating_aggregate(ratings: Iterable) -> RatingAggregate:
    values = [Decimal(str(r)) for r in ratings]
    if not values:
        return RatingAggregate(ZERO_RATING, 0)
    return RatingAggregate(round_rating(sum(values) / len(values)), len(values))


def compute_porter_breakdown(breakdowns: Iterable[Optional[Mapping]]) -> Dict[str, Decimal]:
    """Mean per porter criterion over the reviews that rated it; 0.0 when none did."""
    scores: Dict[str, list] = {criterion: [] for criterion in PORTER_CRITERIA}
    for breakdown in breakdowns:
        for criterion in PORTER_CRITERIA:
            if breakdown and breakdown.get(criterion) is not None:
                scores[criterion].append(Decimal(str(breakdown[criterion])))
    return {
        criterion: round_rating(sum(values) / len(values)) if values else ZERO_RATING
        for criterion, values in scores.items()
    }


def _visible_reviews(target: ReviewTarget):
    return select(Review.rating, Review.breakdown).where(
        Review.review_type == target.review_type,
        Review.target_id == target.target_id,
        Review.is_visible.is_(True),
    )


def _lock_target(target: ReviewTarget):
    model = AGGREGATE_MODELS[target.review_type]
    return (
        select(model)
        .where(model.id == target.target_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _aggregate(target: ReviewTarget, rows: Sequence) -> RatingAggregate:
    aggregate = compute_rating_aggregate(row.rating for row in rows)
    if target.review_type == ReviewType.PORTER:
        return RatingAggregate(
            aggregate.average, aggregate.count, compute_porter_breakdown(row.breakdown for row in rows)
        )
    return aggregate


def _store(entity, aggregate: RatingAggregate) -> None:
    entity.rating_avg = aggregate.average
    entity.rating_count = aggregate.count
    for criterion, value in aggregate.breakdown.items():
        setattr(entity, f"rating_{criterion}", value)


def _missing(target: ReviewTarget) -> NotFoundError:
    return NotFoundError(
        f"{target.review_type.value.replace('_', ' ').title()} not found",
        review_type=target.review_type.value,
        target_id=target.target_id,
    )


def _conflict(target: ReviewTarget, exc: OperationalError) -> ConcurrencyConflictError:
    logger.warning(f"Rating lock contention on {target.review_type.value}:{target.target_id}: {exc}")
    return ConcurrencyConflictError(
        "Rating aggregate is being updated concurrently, retry the request",
        review_type=target.review_type.value,
        target_id=target.target_id,
    )


# ── Async (request path) ──────────────────────────────────────

async def recompute_rating(db: AsyncSession, target: ReviewTarget) -> RatingAggregate:
    entity = None
    if target.review_type in AGGREGATE_MODELS:
        try:
            entity = (await db.execute(_lock_target(target))).scalar_one_or_none()
        except OperationalError as exc:
            raise _conflict(target, exc) from exc
        if entity is None:
            raise _missing(target)

    rows = (await db.execute(_visible_reviews(target))).all()
    aggregate = _aggregate(target, rows)
    if entity is not None:
        _store(entity, aggregate)
    logger.info(
        f"Rating recomputed for {target.review_type.value}:{target.target_id} "
        f"→ {aggregate.average} ({aggregate.count} reviews)"
    )
    return aggregate


async def read_rating(db: AsyncSession, target: ReviewTarget) -> RatingAggregate:
    """Current aggregate without locking. Persisted values where a row exists."""
    model = AGGREGATE_MODELS.get(target.review_type)
    if model is None:
        rows = (await db.execute(_visible_reviews(target))).all()
        return _aggregate(target, rows)

    entity = await db.get(model, target.target_id)
    if entity is None:
        raise _missing(target)
    breakdown = {}
    if target.review_type == ReviewType.PORTER:
        breakdown = {c: getattr(entity, f"rating_{c}") or ZERO_RATING for c in PORTER_CRITERIA}
    return RatingAggregate(Decimal(str(entity.rating_avg)), entity.rating_count, breakdown)


async def on_review_changed(event: DomainEvent, db: AsyncSession) -> None:
    """Subscriber for ReviewCreated / ReviewUpdated / ReviewDeleted."""
    await recompute_rating(db, event.target)


# ── Sync (Celery worker) ──────────────────────────────────────

def recompute_rating_sync(session: Session, target: ReviewTarget) -> RatingAggregate:
    entity = None
    if target.review_type in AGGREGATE_MODELS:
        try:
            entity = session.execute(_lock_target(target)).scalar_one_or_none()
        except OperationalError as exc:
            raise _conflict(target, exc) from exc
        if entity is None:
            raise _missing(target)

    rows = session.execute(_visible_reviews(target)).all()
    aggregate = _aggregate(target, rows)
    if entity is not None:
        _store(entity, aggregate)
    return aggregate
