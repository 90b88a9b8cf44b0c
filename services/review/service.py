"""
services/review/service.py
Review operations. Every change to the review set of a target publishes an event;
the rating aggregator is subscribed and recomputes the target's aggregate inside
the same transaction.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import (
    AuthorizationError,
    BookingNotCompletedError,
    DuplicateReviewError,
    NotFoundError,
    ValidationError,
)
from shared.models.models import Booking, BookingStatus, Review, ReviewType, User, UserRole
from shared.schemas.schemas import ReviewCreateRequest, ReviewUpdateRequest
from services.review.aggregator import RatingAggregate, on_review_changed, read_rating
from services.review.events import ReviewCreated, ReviewDeleted, ReviewUpdated, review_events
from services.review.targets import (
    ReviewTarget,
    make_target,
    overall_rating,
    round_rating,
    validate_breakdown,
)

logger = logging.getLogger(__name__)

for _event_type in (ReviewCreated, ReviewUpdated, ReviewDeleted):
    review_events.subscribe(_event_type, on_review_changed)


# ── Helpers ───────────────────────────────────────────────────

def helpfulness_percentage(helpful: int, not_helpful: int) -> int:
    """Share of helpful votes, 0..100, rounded half-up. 0 when nobody voted."""
    total = helpful + not_helpful
    if total == 0:
        return 0
    return int((Decimal(helpful) * 100 / total).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def target_of(review: Review) -> ReviewTarget:
    return make_target(review.review_type, review.target_id)


async def get_review_or_404(db: AsyncSession, review_id: UUID) -> Review:
    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found", review_id=review_id)
    return review


async def get_visible_review(db: AsyncSession, review_id: UUID) -> Review:
    """Hidden reviews read as missing outside moderation."""
    review = await get_review_or_404(db, review_id)
    if not review.is_visible:
        raise NotFoundError("Review not found", review_id=review_id)
    return review


def _booking_party(booking: Booking, review_type: ReviewType) -> Optional[UUID]:
    return {
        ReviewType.GUIDE: booking.guide_id,
        ReviewType.PORTER: booking.porter_id,
        ReviewType.ADVENTURE: booking.adventure_id,
    }.get(review_type)


def _resolve_rating(
    review_type: ReviewType, rating: Optional[Decimal], breakdown: Optional[dict]
) -> Decimal:
    """A breakdown, when given, determines the overall rating."""
    if breakdown:
        validate_breakdown(review_type, breakdown)
        return overall_rating(breakdown)
    if rating is None:
        raise ValidationError("Either rating or breakdown is required")
    return round_rating(Decimal(str(rating)))


def _require_owner_or_admin(review: Review, actor: User, action: str) -> None:
    if actor.role != UserRole.ADMIN and review.reviewer_id != actor.id:
        raise AuthorizationError(f"Not authorized to {action} this review", review_id=review.id)


# ── Submit ────────────────────────────────────────────────────

async def submit_review(
    db: AsyncSession, reviewer: User, data: ReviewCreateRequest
) -> Tuple[Review, RatingAggregate]:
    review_type = ReviewType(data.review_type)
    target = make_target(review_type, data.target_id)

    booking = await db.get(Booking, data.booking_id)
    if not booking:
        raise NotFoundError("Booking not found", booking_id=data.booking_id)
    if booking.customer_id != reviewer.id:
        raise AuthorizationError("Not authorized to review this booking", booking_id=booking.id)
    if booking.status != BookingStatus.COMPLETED:
        raise BookingNotCompletedError(
            "Can only review completed bookings", booking_id=booking.id, status=booking.status.value
        )
    if review_type != ReviewType.GEAR_PROVIDER and _booking_party(booking, review_type) != data.target_id:
        raise ValidationError(
            f"{review_type.value} {data.target_id} is not part of this booking",
            booking_id=booking.id,
        )

    rating = _resolve_rating(review_type, data.rating, data.breakdown)

    existing = await db.scalar(
        select(Review.id).where(
            Review.reviewer_id == reviewer.id,
            Review.booking_id == booking.id,
            Review.review_type == review_type,
            Review.target_id == data.target_id,
        )
    )
    if existing:
        raise DuplicateReviewError(
            "You have already reviewed this item for this booking", review_id=existing
        )

    review = Review(
        review_type=review_type,
        target_id=data.target_id,
        reviewer_id=reviewer.id,
        booking_id=booking.id,
        rating=rating,
        breakdown=data.breakdown,
        title=data.title,
        comment=data.comment,
        would_recommend=data.would_recommend,
        helpful_votes=0,
        not_helpful_votes=0,
        is_visible=True,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateReviewError(
            "You have already reviewed this item for this booking",
            booking_id=booking.id,
            target_id=data.target_id,
        ) from exc

    await review_events.publish(ReviewCreated(review_id=review.id, target=target), db)
    logger.info(f"Review {review.id} submitted for {review_type.value}:{data.target_id}")
    return review, await read_rating(db, target)


# ── Update / delete / moderation ──────────────────────────────

async def update_review(
    db: AsyncSession, review_id: UUID, actor: User, data: ReviewUpdateRequest
) -> Tuple[Review, RatingAggregate]:
    review = await get_review_or_404(db, review_id)
    _require_owner_or_admin(review, actor, "update")

    changes = data.model_dump(exclude_unset=True)
    if "rating" in changes or "breakdown" in changes:
        # A rating-only update drops the old breakdown it would contradict
        breakdown = changes.get("breakdown")
        rating = changes.get("rating") or review.rating
        review.rating = _resolve_rating(review.review_type, rating, breakdown)
        review.breakdown = breakdown
    for name in ("title", "comment", "would_recommend"):
        if changes.get(name) is not None:
            setattr(review, name, changes[name])

    await db.flush()
    target = target_of(review)
    await review_events.publish(ReviewUpdated(review_id=review.id, target=target), db)
    return review, await read_rating(db, target)


async def set_review_visibility(
    db: AsyncSession, review_id: UUID, visible: bool
) -> Tuple[Review, RatingAggregate]:
    """Moderation. Hidden reviews drop out of the target's aggregate."""
    review = await get_review_or_404(db, review_id)
    review.is_visible = visible
    await db.flush()
    target = target_of(review)
    await review_events.publish(ReviewUpdated(review_id=review.id, target=target), db)
    logger.info(f"Review {review.id} visibility set to {visible}")
    return review, await read_rating(db, target)


async def delete_review(db: AsyncSession, review_id: UUID, actor: User) -> RatingAggregate:
    review = await get_review_or_404(db, review_id)
    _require_owner_or_admin(review, actor, "delete")
    target = target_of(review)

    await db.delete(review)
    await db.flush()
    await review_events.publish(ReviewDeleted(review_id=review_id, target=target), db)
    logger.info(f"Review {review_id} deleted by {actor.id}")
    return await read_rating(db, target)


async def vote_helpful(db: AsyncSession, review_id: UUID, helpful: bool) -> Review:
    review = await get_review_or_404(db, review_id)
    if helpful:
        review.helpful_votes += 1
    else:
        review.not_helpful_votes += 1
    return review


# ── Reads ─────────────────────────────────────────────────────

async def list_target_reviews(
    db: AsyncSession, target: ReviewTarget, page: int = 1, page_size: int = 10
) -> List[Review]:
    result = await db.execute(
        select(Review)
        .where(
            Review.review_type == target.review_type,
            Review.target_id == target.target_id,
            Review.is_visible.is_(True),
        )
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all())
