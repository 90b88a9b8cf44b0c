"""
tests/test_availability.py
Blackout dates, availability windows and the default-open policy.
"""

from datetime import date

import pytest

from shared.exceptions import ValidationError
from shared.models.models import AvailabilityWindow
from services.booking.availability import check_availability

START = date(2025, 10, 10)
END = date(2025, 10, 20)


def _window(start, end, available, reason=None):
    return AvailabilityWindow(start_date=start, end_date=end, available=available, reason=reason)


def test_range_without_windows_or_blackouts_is_bookable():
    result = check_availability([], [], START, END)
    assert result.bookable
    assert result.reason is None


@pytest.mark.parametrize("blocked", [START, date(2025, 10, 15), END])
def test_blackout_inside_range_blocks_inclusive(blocked):
    result = check_availability([blocked], [], START, END)
    assert not result.bookable
    assert blocked.isoformat() in result.reason


def test_blackout_outside_range_is_ignored():
    assert check_availability([date(2025, 10, 9), date(2025, 10, 21)], [], START, END).bookable


def test_unavailable_window_covering_range_blocks():
    windows = [_window(date(2025, 10, 1), date(2025, 10, 31), False, "Monsoon closure")]
    result = check_availability([], windows, START, END)
    assert not result.bookable
    assert "Monsoon closure" in result.reason


def test_unavailable_window_partially_overlapping_does_not_block():
    windows = [_window(date(2025, 10, 15), date(2025, 10, 31), False)]
    assert check_availability([], windows, START, END).bookable


def test_available_window_covering_range_is_bookable():
    windows = [_window(date(2025, 10, 1), date(2025, 10, 31), True)]
    assert check_availability([], windows, START, END).bookable


def test_inactive_adventure_is_not_bookable():
    result = check_availability([], [], START, END, is_active=False)
    assert not result.bookable


def test_start_after_end_is_invalid():
    with pytest.raises(ValidationError):
        check_availability([], [], END, START)
