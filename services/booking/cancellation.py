"""
services/booking/cancellation.py
Cancellation policy: who may cancel, when a booking is still cancellable,
and the hook that prices the financial consequence.

A booking is cancellable while its trip has not started (at least part of a day
remains before the start date) and it is PENDING or CONFIRMED.
Refund amount and cancellation fee come from a RefundPolicy. With no policy
configured they are left unset rather than guessed.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional, Protocol, Sequence, Tuple

from shared.exceptions import AuthorizationError, NotCancellableError
from shared.models.models import Booking, BookingStatus, CancelledBy, User, UserRole
from services.booking.pricing import ZERO, to_money
from services.booking.state_machine import assert_transition

CANCELLABLE_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def days_until_trip(start: date, now: datetime) -> int:
    """ceil((start - now) / 1 day), with the trip starting at 00:00 UTC on its start date."""
    start_at = datetime.combine(start, time.min, tzinfo=timezone.utc)
    delta = start_at - as_utc(now)
    return math.ceil(delta.total_seconds() / 86400)


def can_cancel(status: BookingStatus, start: date, now: datetime) -> bool:
    return days_until_trip(start, now) > 0 and status in CANCELLABLE_STATUSES


# ── Refund policy hook ────────────────────────────────────────

@dataclass(frozen=True)
class RefundQuote:
    refund_eligible: bool
    refund_amount: Decimal
    cancellation_fee: Decimal


class RefundPolicy(Protocol):
    def quote(self, paid_amount: Decimal, days_before_trip: int) -> Optional[RefundQuote]:
        ...


class NoRefundPolicy:
    """No schedule configured: refund fields stay unset for manual handling."""

    def quote(self, paid_amount: Decimal, days_before_trip: int) -> Optional[RefundQuote]:
        return None


class TieredRefundPolicy:
    """
    Lookup table of (minimum days before trip, refund percent of the amount paid).
    The first tier whose threshold is met applies; below every threshold nothing is refunded.
    """

    def __init__(self, tiers: Sequence[Tuple[int, float]]):
        self.tiers = sorted(tiers, reverse=True)

    def quote(self, paid_amount: Decimal, days_before_trip: int) -> Optional[RefundQuote]:
        percent = Decimal("0")
        for min_days, tier_percent in self.tiers:
            if days_before_trip >= min_days:
                percent = Decimal(str(tier_percent))
                break
        refund = to_money(paid_amount * percent / 100)
        return RefundQuote(
            refund_eligible=refund > ZERO,
            refund_amount=refund,
            cancellation_fee=to_money(paid_amount - refund),
        )


def refund_policy_from_tiers(tiers: Sequence[Tuple[int, float]]) -> RefundPolicy:
    return TieredRefundPolicy(tiers) if tiers else NoRefundPolicy()


# ── Evaluation ────────────────────────────────────────────────

@dataclass(frozen=True)
class CancellationDecision:
    cancelled_by: CancelledBy
    cancelled_at: datetime
    reason: str
    days_until_trip: int
    quote: Optional[RefundQuote]


def resolve_canceller(
    actor: User,
    booking: Booking,
    guide_user_id: Optional[object],
    porter_user_id: Optional[object],
    force_majeure: bool = False,
) -> CancelledBy:
    if actor.role == UserRole.ADMIN:
        return CancelledBy.FORCE_MAJEURE if force_majeure else CancelledBy.ADMIN
    if force_majeure:
        raise AuthorizationError(
            "Only an admin can declare force majeure",
            booking_id=booking.id,
            actor_id=actor.id,
        )
    if actor.id == booking.customer_id:
        return CancelledBy.CUSTOMER
    if actor.id in {guide_user_id, porter_user_id}:
        return CancelledBy.PROVIDER
    raise AuthorizationError(
        "Not authorized to cancel this booking",
        booking_id=booking.id,
        actor_id=actor.id,
    )


def evaluate_cancellation(
    booking: Booking,
    cancelled_by: CancelledBy,
    reason: Optional[str],
    now: datetime,
    policy: RefundPolicy,
) -> CancellationDecision:
    days = days_until_trip(booking.start_date, now)
    if not can_cancel(booking.status, booking.start_date, now):
        raise NotCancellableError(
            "Booking cannot be cancelled at this time",
            status=booking.status.value,
            days_until_trip=days,
        )
    return CancellationDecision(
        cancelled_by=cancelled_by,
        cancelled_at=as_utc(now),
        reason=reason or f"Cancelled by {cancelled_by.value.lower()}",
        days_until_trip=days,
        quote=policy.quote(to_money(booking.paid_amount), days),
    )


def apply_cancellation(booking: Booking, decision: CancellationDecision) -> BookingStatus:
    """Write the cancellation record and move the booking to CANCELLED. Returns the previous status."""
    previous = booking.status
    assert_transition(previous, BookingStatus.CANCELLED)
    booking.status = BookingStatus.CANCELLED
    booking.cancelled = True
    booking.cancelled_by = decision.cancelled_by
    booking.cancelled_at = decision.cancelled_at
    booking.cancellation_reason = decision.reason
    if decision.quote is not None:
        booking.refund_eligible = decision.quote.refund_eligible
        booking.cancellation_refund_amount = decision.quote.refund_amount
        booking.cancellation_fee = decision.quote.cancellation_fee
    return previous
