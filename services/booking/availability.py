"""
services/booking/availability.py
Decides whether a date range can be booked for an adventure.

A range is bookable when no blackout date falls inside it and no availability
window that fully contains it is marked unavailable. Ranges no window covers
are bookable: providers who want a hard allow-list must define covering windows.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Protocol

from shared.exceptions import ValidationError


class WindowLike(Protocol):
    start_date: date
    end_date: date
    available: bool
    reason: Optional[str]


@dataclass(frozen=True)
class AvailabilityResult:
    bookable: bool
    reason: Optional[str] = None


def check_availability(
    blackout_dates: Iterable[date],
    windows: Iterable[WindowLike],
    start: date,
    end: date,
    is_active: bool = True,
) -> AvailabilityResult:
    if start > end:
        raise ValidationError("Start date must not be after end date", start=start, end=end)

    if not is_active:
        return AvailabilityResult(False, "Adventure is not accepting bookings")

    blocked = sorted(d for d in blackout_dates if start <= d <= end)
    if blocked:
        return AvailabilityResult(False, f"Blackout date {blocked[0].isoformat()} falls within the requested range")

    for window in windows:
        covers = window.start_date <= start and end <= window.end_date
        if covers and not window.available:
            detail = f": {window.reason}" if window.reason else ""
            return AvailabilityResult(
                False,
                f"Adventure unavailable {window.start_date.isoformat()} to {window.end_date.isoformat()}{detail}",
            )

    return AvailabilityResult(True)
