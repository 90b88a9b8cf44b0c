"""
services/booking/numbering.py
Human-readable booking numbers: {prefix}{YYYY}{MM}{sequence:06d}, e.g. NA202403000042.

The sequence is a single counter row bumped with UPDATE ... RETURNING, so two
concurrent bookings can never read the same value. The row is created on first
use with INSERT ... ON CONFLICT DO NOTHING.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import BookingSequence

logger = logging.getLogger(__name__)

SEQUENCE_NAME = "booking_number"


def format_booking_number(sequence: int, now: datetime, prefix: Optional[str] = None) -> str:
    prefix = settings.BOOKING_NUMBER_PREFIX if prefix is None else prefix
    return f"{prefix}{now.year:04d}{now.month:02d}{sequence:06d}"


def _insert_if_missing(dialect_name: str):
    values = {"name": SEQUENCE_NAME, "value": 0}
    if dialect_name == "postgresql":
        return postgresql.insert(BookingSequence).values(**values).on_conflict_do_nothing(
            index_elements=["name"]
        )
    if dialect_name == "sqlite":
        return sqlite.insert(BookingSequence).values(**values).on_conflict_do_nothing(
            index_elements=["name"]
        )
    raise RuntimeError(f"Booking sequence not supported on dialect '{dialect_name}'")


async def _increment(db: AsyncSession) -> Optional[int]:
    result = await db.execute(
        update(BookingSequence)
        .where(BookingSequence.name == SEQUENCE_NAME)
        .values(value=BookingSequence.value + 1)
        .returning(BookingSequence.value)
    )
    return result.scalar_one_or_none()


async def next_sequence_value(db: AsyncSession) -> int:
    value = await _increment(db)
    if value is None:
        await db.execute(_insert_if_missing(db.get_bind().dialect.name))
        value = await _increment(db)
    return value


async def next_booking_number(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """Issue the next booking number inside the caller's transaction."""
    now = now or datetime.now(timezone.utc)
    sequence = await next_sequence_value(db)
    number = format_booking_number(sequence, now)
    logger.debug(f"Issued booking number {number}")
    return number
