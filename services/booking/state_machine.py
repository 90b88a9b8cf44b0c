"""
services/booking/state_machine.py
Booking lifecycle transitions and the actor guards that protect them.

    PENDING ──► CONFIRMED ──► IN_PROGRESS ──► COMPLETED ──► REFUNDED
       │            │                                          ▲
       └────────────┴──────────► CANCELLED ────────────────────┘
"""

from datetime import datetime, timezone
from typing import Optional

from shared.exceptions import AuthorizationError, InvalidTransitionError
from shared.models.models import Booking, BookingStatus, User, UserRole

TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: {BookingStatus.REFUNDED},
    BookingStatus.CANCELLED: {BookingStatus.REFUNDED},
    BookingStatus.REFUNDED: set(),
}

PROGRESS_STATES = {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def assert_transition(current: BookingStatus, target: BookingStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Invalid booking transition: {current.value} → {target.value}",
            current=current.value,
            target=target.value,
        )


def is_assigned_provider(
    actor: User, guide_user_id: Optional[object], porter_user_id: Optional[object]
) -> bool:
    return actor.id is not None and actor.id in {guide_user_id, porter_user_id}


def require_provider_or_admin(
    actor: User,
    booking: Booking,
    guide_user_id: Optional[object],
    porter_user_id: Optional[object],
    action: str,
) -> None:
    """Only the booking's assigned guide, assigned porter, or an admin may drive the trip."""
    if actor.role == UserRole.ADMIN:
        return
    if is_assigned_provider(actor, guide_user_id, porter_user_id):
        return
    raise AuthorizationError(
        f"Not authorized to {action} this booking",
        booking_id=booking.id,
        actor_id=actor.id,
    )


def apply_transition(
    booking: Booking,
    target: BookingStatus,
    now: Optional[datetime] = None,
) -> BookingStatus:
    """
    Move booking to target and stamp the matching timestamp.
    Returns the previous status. Cancellation is not accepted here; it goes
    through services.booking.cancellation so the policy is always consulted.
    """
    if target == BookingStatus.CANCELLED:
        raise InvalidTransitionError(
            "Cancellation must go through the cancellation policy",
            current=booking.status.value,
            target=target.value,
        )
    now = now or datetime.now(timezone.utc)
    previous = booking.status
    assert_transition(previous, target)
    booking.status = target
    if target == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
    elif target == BookingStatus.IN_PROGRESS:
        booking.started_at = now
    elif target == BookingStatus.COMPLETED:
        booking.completed_at = now
    return previous
