"""
services/review/router.py
Review submission and the rating aggregates they drive.
Target ratings are served from a Redis read cache, dropped on every review change.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis, rating_cache_key
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import Review, ReviewType, User
from shared.schemas.schemas import (
    DOMAIN_ERROR_RESPONSES,
    HelpfulVoteRequest,
    RatingAggregateResponse,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
    ReviewVisibilityRequest,
    ReviewWithRatingResponse,
)
from services.review import service
from services.review.aggregator import RatingAggregate, read_rating
from services.review.targets import ReviewTarget, make_target

router = APIRouter(prefix="/reviews", tags=["Reviews"], responses=DOMAIN_ERROR_RESPONSES)


# ── Helpers ───────────────────────────────────────────────────

def _review_response(review: Review) -> ReviewResponse:
    return ReviewResponse(
        id=review.id,
        review_type=review.review_type.value,
        target_id=review.target_id,
        reviewer_id=review.reviewer_id,
        booking_id=review.booking_id,
        rating=float(review.rating),
        breakdown=review.breakdown,
        title=review.title,
        comment=review.comment,
        would_recommend=review.would_recommend,
        helpful_votes=review.helpful_votes,
        not_helpful_votes=review.not_helpful_votes,
        helpfulness_percentage=service.helpfulness_percentage(
            review.helpful_votes, review.not_helpful_votes
        ),
        is_visible=review.is_visible,
        created_at=review.created_at,
    )


def _rating_response(target: ReviewTarget, aggregate: RatingAggregate) -> RatingAggregateResponse:
    return RatingAggregateResponse(
        review_type=target.review_type.value,
        target_id=target.target_id,
        rating_avg=float(aggregate.average),
        rating_count=aggregate.count,
        breakdown={k: float(v) for k, v in aggregate.breakdown.items()} or None,
    )


async def _invalidate_rating(redis, target: ReviewTarget) -> None:
    await RedisCache(redis).delete(rating_cache_key(target.review_type.value, str(target.target_id)))


# ── Write Endpoints ───────────────────────────────────────────

@router.post("", response_model=ReviewWithRatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_review(
    data: ReviewCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Submit a review for a completed booking.
    - One review per (reviewer, booking, target), enforced by a unique constraint
    - Booking must be COMPLETED and belong to the reviewer
    - The target's rating aggregate is recomputed in the same transaction
    """
    review, aggregate = await service.submit_review(db, current_user, data)
    await db.commit()
    target = service.target_of(review)
    await _invalidate_rating(redis, target)
    return ReviewWithRatingResponse(
        review=_review_response(review), target_rating=_rating_response(target, aggregate)
    )


@router.put("/{review_id}", response_model=ReviewWithRatingResponse)
async def update_review(
    review_id: UUID,
    data: ReviewUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    review, aggregate = await service.update_review(db, review_id, current_user, data)
    await db.commit()
    target = service.target_of(review)
    await _invalidate_rating(redis, target)
    return ReviewWithRatingResponse(
        review=_review_response(review), target_rating=_rating_response(target, aggregate)
    )


@router.delete("/{review_id}", response_model=RatingAggregateResponse)
async def delete_review(
    review_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Reviewer or admin deletes a review. Returns the target's recomputed rating."""
    review = await service.get_review_or_404(db, review_id)
    target = service.target_of(review)
    aggregate = await service.delete_review(db, review_id, current_user)
    await db.commit()
    await _invalidate_rating(redis, target)
    return _rating_response(target, aggregate)


@router.put("/{review_id}/visibility", response_model=ReviewWithRatingResponse)
async def set_review_visibility(
    review_id: UUID,
    data: ReviewVisibilityRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Admin: hide or restore a review without removing it from the DB."""
    review, aggregate = await service.set_review_visibility(db, review_id, data.visible)
    await db.commit()
    target = service.target_of(review)
    await _invalidate_rating(redis, target)
    return ReviewWithRatingResponse(
        review=_review_response(review), target_rating=_rating_response(target, aggregate)
    )


@router.put("/{review_id}/helpful", response_model=ReviewResponse)
async def vote_helpful(
    review_id: UUID,
    data: HelpfulVoteRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    review = await service.vote_helpful(db, review_id, data.helpful)
    await db.commit()
    return _review_response(review)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/{review_id}", response_model=ReviewResponse)
async def get_review(review_id: UUID, db: AsyncSession = Depends(get_db)):
    """Public: a single visible review."""
    review = await service.get_visible_review(db, review_id)
    return _review_response(review)


@router.get("/{review_type}/{target_id}", response_model=list[ReviewResponse])
async def list_target_reviews(
    review_type: ReviewType,
    target_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: visible reviews for one guide, porter, adventure or gear provider."""
    reviews = await service.list_target_reviews(db, make_target(review_type, target_id), page, page_size)
    return [_review_response(r) for r in reviews]


@router.get("/{review_type}/{target_id}/rating", response_model=RatingAggregateResponse)
async def get_target_rating(
    review_type: ReviewType,
    target_id: UUID,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Public: the target's rating aggregate (cached)."""
    cache = RedisCache(redis)
    key = rating_cache_key(review_type.value, str(target_id))
    cached = await cache.get(key)
    if cached:
        return RatingAggregateResponse(**cached)

    target = make_target(review_type, target_id)
    response = _rating_response(target, await read_rating(db, target))
    await cache.set(key, response.model_dump(mode="json"))
    return response
