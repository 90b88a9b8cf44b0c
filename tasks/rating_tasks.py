"""
tasks/rating_tasks.py
Celery tasks that keep denormalized rating aggregates in line with the reviews.

The request path already recomputes inside the review transaction; these tasks
repair drift (manual DB edits, partial restores) on a schedule.
Each recompute holds a per-entity Redis lock and retries when another worker has it.
Both tasks are idempotent.
"""

import logging
import uuid
from functools import lru_cache

import redis as redis_lib
from redis.exceptions import LockError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from config.redis_client import rating_cache_key
from config.settings import settings
from shared.exceptions import ConcurrencyConflictError, NotFoundError
from shared.models.models import Review
from services.review.aggregator import AGGREGATE_MODELS, recompute_rating_sync
from services.review.targets import make_target
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

def sync_database_url(url: str) -> str:
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


@lru_cache()
def _get_sessionmaker():
    engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
    return sessionmaker(bind=engine)


def _get_sync_session():
    """Create a synchronous SQLAlchemy session (Celery runs sync by default)."""
    return _get_sessionmaker()()


def _get_redis():
    return redis_lib.from_url(settings.REDIS_URL, decode_responses=True)


def rating_lock_key(review_type: str, target_id: str) -> str:
    return f"lock:rating:{review_type}:{target_id}"


def _release(lock, review_type: str, target_id: str) -> None:
    # The lock may have expired (and been taken by another worker) mid-recompute
    try:
        lock.release()
    except LockError as e:
        logger.warning(f"Rating lock for {review_type}:{target_id} lost before release: {e}")


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=5, default_retry_delay=5)
def recompute_target_rating(self, review_type: str, target_id: str):
    """Recompute one target's aggregate. Returns {"average", "count"} or None if the target is gone."""
    target = make_target(review_type, uuid.UUID(target_id))
    r = _get_redis()
    lock = r.lock(rating_lock_key(review_type, target_id), timeout=settings.REDIS_RATING_LOCK_TTL)
    if not lock.acquire(blocking=False):
        logger.info(f"Rating lock held for {review_type}:{target_id}, retrying")
        raise self.retry(countdown=2 ** self.request.retries)

    db = None
    try:
        db = _get_sync_session()
        aggregate = recompute_rating_sync(db, target)
        db.commit()
        r.delete(rating_cache_key(review_type, target_id))
        logger.info(f"Reconciled {review_type}:{target_id} → {aggregate.average} ({aggregate.count})")
        return {"average": str(aggregate.average), "count": aggregate.count}
    except NotFoundError:
        db.rollback()
        logger.warning(f"recompute_target_rating: {review_type}:{target_id} no longer exists")
        return None
    except ConcurrencyConflictError as e:
        db.rollback()
        raise self.retry(exc=e, countdown=2 ** self.request.retries)
    finally:
        if db is not None:
            db.close()
        _release(lock, review_type, target_id)


@celery_app.task
def reconcile_all_ratings():
    """
    Enqueue a recompute for every entity that has reviews or a stored aggregate.
    Gear providers are skipped: their aggregate is never persisted here.
    """
    db = _get_sync_session()
    try:
        targets = set(
            (review_type.value, str(target_id))
            for review_type, target_id in db.execute(
                select(Review.review_type, Review.target_id).distinct()
            ).all()
            if review_type in AGGREGATE_MODELS
        )
        for review_type, model in AGGREGATE_MODELS.items():
            ids = db.execute(select(model.id).where(model.rating_count > 0)).scalars().all()
            targets.update((review_type.value, str(i)) for i in ids)
    finally:
        db.close()

    logger.info(f"reconcile_all_ratings: enqueueing {len(targets)} targets")
    for review_type, target_id in sorted(targets):
        recompute_target_rating.apply_async(args=[review_type, target_id])
    return len(targets)
