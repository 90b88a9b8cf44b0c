"""
services/booking/service.py
Booking operations. Each function validates everything it needs before touching
state, mutates the Booking inside the caller's session, and appends an audit row
for every status change. Committing is the caller's job.
"""

import dataclasses
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.exceptions import (
    AuthorizationError,
    AvailabilityError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from shared.models.models import (
    Adventure,
    Booking,
    BookingAuditLog,
    BookingStatus,
    Guide,
    PaymentStatus,
    Porter,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingUpdateRequest,
    PaymentRecordRequest,
    ProgressUpdateRequest,
    RefundRecordRequest,
)
from services.booking.availability import AvailabilityResult, check_availability
from services.booking.cancellation import (
    RefundPolicy,
    apply_cancellation,
    as_utc,
    evaluate_cancellation,
    refund_policy_from_tiers,
    resolve_canceller,
)
from services.booking.numbering import next_booking_number
from services.booking.pricing import (
    PricingInput,
    ZERO,
    compose_pricing,
    early_bird_discount,
    equipment_line_total,
    equipment_total,
    group_discount,
    permit_costs,
    tax_amount,
    to_money,
    trip_duration_days,
)
from services.booking.state_machine import (
    PROGRESS_STATES,
    apply_transition,
    require_provider_or_admin,
)

logger = logging.getLogger(__name__)

EDIT_LOCKED_STATES = {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REFUNDED}


# ── Helpers ───────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def booking_age_days(created_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole days since the booking was created."""
    return (as_utc(now or _utcnow()) - as_utc(created_at)).days


async def get_booking_or_404(db: AsyncSession, booking_id: UUID) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found", booking_id=booking_id)
    return booking


async def _assigned_user_ids(
    db: AsyncSession, booking: Booking
) -> Tuple[Optional[UUID], Optional[UUID]]:
    """User ids behind the booking's guide and porter profiles."""
    guide_user_id = porter_user_id = None
    if booking.guide_id:
        guide_user_id = await db.scalar(select(Guide.user_id).where(Guide.id == booking.guide_id))
    if booking.porter_id:
        porter_user_id = await db.scalar(select(Porter.user_id).where(Porter.id == booking.porter_id))
    return guide_user_id, porter_user_id


async def _log_status_change(
    db: AsyncSession,
    booking: Booking,
    from_status: Optional[BookingStatus],
    to_status: BookingStatus,
    changed_by: User,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Append an immutable audit log entry for every status change."""
    db.add(BookingAuditLog(
        booking_id=booking.id,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value,
        changed_by_id=changed_by.id,
        reason=reason,
        audit_metadata=metadata,
    ))


def is_booking_number_collision(exc: IntegrityError) -> bool:
    """True when the violated constraint is the unique booking number."""
    return "booking_number" in str(exc.orig)


def _sync_balance(booking: Booking) -> None:
    booking.remaining_amount = to_money(to_money(booking.total_amount) - to_money(booking.paid_amount))


def _require_admin(actor: User, action: str) -> None:
    if actor.role != UserRole.ADMIN:
        raise AuthorizationError(f"Only an admin can {action}", actor_id=actor.id)


async def _load_provider(db: AsyncSession, model, provider_id: Optional[UUID], label: str):
    if provider_id is None:
        return None
    provider = await db.get(model, provider_id)
    if not provider:
        raise NotFoundError(f"{label} not found", **{f"{label.lower()}_id": provider_id})
    if not provider.is_available:
        raise AvailabilityError(f"{label} is not accepting bookings", **{f"{label.lower()}_id": provider_id})
    return provider


# ── Availability ──────────────────────────────────────────────

async def check_adventure_availability(
    db: AsyncSession, adventure_id: UUID, start: date, end: date
) -> AvailabilityResult:
    adventure = await db.get(Adventure, adventure_id)
    if not adventure:
        raise NotFoundError("Adventure not found", adventure_id=adventure_id)
    return check_availability(
        [b.blackout_date for b in adventure.blackout_dates],
        adventure.availability_windows,
        start,
        end,
        is_active=adventure.is_active,
    )


# ── Creation ──────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession,
    customer: User,
    data: BookingCreateRequest,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Create a PENDING booking:
    1. Validate trip dates and referenced adventure / guide / porter
    2. Consult the availability checker
    3. Compose the pricing breakdown
    4. Issue a booking number from the atomic sequence and persist
    """
    now = as_utc(now or _utcnow())
    trip = data.trip_details

    if customer.role != UserRole.TOURIST:
        raise AuthorizationError("Only tourists can create bookings", actor_id=customer.id)
    if trip.start_date < now.date():
        raise ValidationError("Trip cannot start in the past", start_date=trip.start_date)

    adventure = await db.get(Adventure, data.adventure_id)
    if not adventure:
        raise NotFoundError("Adventure not found", adventure_id=data.adventure_id)

    availability = check_availability(
        [b.blackout_date for b in adventure.blackout_dates],
        adventure.availability_windows,
        trip.start_date,
        trip.end_date,
        is_active=adventure.is_active,
    )
    if not availability.bookable:
        raise AvailabilityError(
            availability.reason,
            adventure_id=adventure.id,
            start_date=trip.start_date,
            end_date=trip.end_date,
        )

    guide = await _load_provider(db, Guide, data.guide_id, "Guide")
    porter = await _load_provider(db, Porter, data.porter_id, "Porter")
    for provider in (guide, porter):
        if provider is not None and provider.currency != adventure.currency:
            raise ValidationError(
                "Provider rate currency does not match the adventure currency",
                provider_currency=provider.currency,
                adventure_currency=adventure.currency,
            )

    duration = trip_duration_days(trip.start_date, trip.end_date)
    equipment_lines = [
        {
            "item": line.item,
            "quantity": line.quantity,
            "daily_rate": str(to_money(line.daily_rate)),
            "total_cost": str(equipment_line_total(line.quantity, line.daily_rate, duration)),
        }
        for line in data.equipment
    ]

    base_amount = to_money(adventure.base_price) * trip.group_size
    pricing_input = PricingInput(
        base_price=adventure.base_price,
        group_size=trip.group_size,
        duration_days=duration,
        guide_daily_rate=guide.daily_rate if guide else None,
        porter_daily_rate=porter.daily_rate if porter else None,
        permit_costs=permit_costs(adventure.permits or [], trip.group_size),
        equipment_rental=equipment_total(equipment_lines),
        discounts={
            "early_bird": early_bird_discount(
                base_amount, adventure.early_bird_discount, trip.start_date, now.date()
            ),
            "group": group_discount(base_amount, adventure.group_discounts or [], trip.group_size),
        },
        currency=adventure.currency,
    )
    untaxed = compose_pricing(pricing_input)
    pricing = compose_pricing(dataclasses.replace(
        pricing_input,
        taxes=tax_amount(untaxed.total_amount, settings.BOOKING_TAX_PERCENT),
    ))

    booking = Booking(
        booking_number=await next_booking_number(db, now),
        customer_id=customer.id,
        adventure_id=adventure.id,
        guide_id=guide.id if guide else None,
        porter_id=porter.id if porter else None,
        start_date=trip.start_date,
        end_date=trip.end_date,
        duration_days=duration,
        group_size=trip.group_size,
        participants=[p.model_dump(mode="json", exclude_none=True) for p in trip.participants],
        special_requirements=(
            data.special_requirements.model_dump(mode="json", exclude_none=True)
            if data.special_requirements else None
        ),
        equipment_items=equipment_lines,
        status=BookingStatus.PENDING,
        base_price=pricing.base_price,
        guide_price=pricing.guide_price,
        porter_price=pricing.porter_price,
        permit_costs=pricing.permit_costs,
        equipment_rental=pricing.equipment_rental,
        taxes=pricing.taxes,
        discount_early_bird=pricing.discounts.early_bird,
        discount_group=pricing.discounts.group,
        discount_loyalty=pricing.discounts.loyalty,
        discount_promotional=pricing.discounts.promotional,
        total_amount=pricing.total_amount,
        currency=pricing.currency,
        payment_status=PaymentStatus.PENDING,
        payment_transactions=[],
        paid_amount=ZERO,
        remaining_amount=pricing.total_amount,
        refund_amount=ZERO,
        progress={"milestones": [], "daily_reports": []},
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError as exc:
        if not is_booking_number_collision(exc):
            raise
        raise ConcurrencyConflictError(
            "Booking number collision, retry the request",
            booking_number=booking.booking_number,
        ) from exc

    await _log_status_change(db, booking, None, BookingStatus.PENDING, customer)
    logger.info(
        f"Booking {booking.booking_number} created for adventure {adventure.id} "
        f"by {customer.id}, total {pricing.total_amount} {pricing.currency}"
    )
    return booking


# ── Customer edits ────────────────────────────────────────────

async def update_booking(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    data: BookingUpdateRequest,
) -> Booking:
    """
    Edit participants and special requirements. Customer or admin.
    Dates, group size, providers and pricing are fixed once the booking exists.
    """
    booking = await get_booking_or_404(db, booking_id)
    if actor.role != UserRole.ADMIN and actor.id != booking.customer_id:
        raise AuthorizationError("Not authorized to update this booking", booking_id=booking_id)
    if booking.status in EDIT_LOCKED_STATES:
        raise InvalidTransitionError(
            f"Cannot update a {booking.status.value} booking", current=booking.status.value
        )

    if data.participants is not None:
        if len(data.participants) > booking.group_size:
            raise ValidationError(
                "More participants than the group size",
                participants=len(data.participants),
                group_size=booking.group_size,
            )
        booking.participants = [p.model_dump(mode="json", exclude_none=True) for p in data.participants]
    if data.special_requirements is not None:
        booking.special_requirements = data.special_requirements.model_dump(mode="json", exclude_none=True)

    logger.info(f"Booking {booking.booking_number} updated by {actor.id}")
    return booking


# ── Lifecycle transitions ─────────────────────────────────────

async def _provider_transition(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    target: BookingStatus,
    action: str,
    now: Optional[datetime] = None,
) -> Booking:
    booking = await get_booking_or_404(db, booking_id)
    guide_user_id, porter_user_id = await _assigned_user_ids(db, booking)
    require_provider_or_admin(actor, booking, guide_user_id, porter_user_id, action)
    previous = apply_transition(booking, target, now)
    await _log_status_change(db, booking, previous, target, actor)
    logger.info(f"Booking {booking.booking_number}: {previous.value} → {target.value} by {actor.id}")
    return booking


async def confirm_booking(
    db: AsyncSession, booking_id: UUID, actor: User, now: Optional[datetime] = None
) -> Booking:
    """PENDING → CONFIRMED. Assigned guide, assigned porter, or admin."""
    return await _provider_transition(db, booking_id, actor, BookingStatus.CONFIRMED, "confirm", now)


async def start_trip(
    db: AsyncSession, booking_id: UUID, actor: User, now: Optional[datetime] = None
) -> Booking:
    return await _provider_transition(db, booking_id, actor, BookingStatus.IN_PROGRESS, "start", now)


async def complete_booking(
    db: AsyncSession, booking_id: UUID, actor: User, now: Optional[datetime] = None
) -> Booking:
    return await _provider_transition(db, booking_id, actor, BookingStatus.COMPLETED, "complete", now)


async def record_progress(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    data: ProgressUpdateRequest,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Append a progress update. The first update on a CONFIRMED booking starts the trip.
    Milestones and daily reports are append-only.
    """
    now = as_utc(now or _utcnow())
    booking = await get_booking_or_404(db, booking_id)
    guide_user_id, porter_user_id = await _assigned_user_ids(db, booking)
    require_provider_or_admin(actor, booking, guide_user_id, porter_user_id, "update progress on")

    if booking.status not in PROGRESS_STATES:
        raise InvalidTransitionError(
            "Progress can only be recorded on a confirmed or in-progress booking",
            current=booking.status.value,
        )

    if booking.status == BookingStatus.CONFIRMED:
        previous = apply_transition(booking, BookingStatus.IN_PROGRESS, now)
        await _log_status_change(
            db, booking, previous, BookingStatus.IN_PROGRESS, actor, "Trip started by progress update"
        )

    progress = dict(booking.progress or {})
    milestones = list(progress.get("milestones", []))
    daily_reports = list(progress.get("daily_reports", []))
    if data.milestone:
        milestones.append({**data.milestone.model_dump(mode="json"), "timestamp": now.isoformat()})
    if data.daily_report:
        daily_reports.append({**data.daily_report.model_dump(mode="json"), "date": now.isoformat()})

    progress.update(
        current_status=data.current_status or progress.get("current_status"),
        current_location=data.current_location or progress.get("current_location"),
        last_update=now.isoformat(),
        milestones=milestones,
        daily_reports=daily_reports,
    )
    # New dict so the JSON column is flagged dirty
    booking.progress = progress
    logger.info(f"Progress recorded on booking {booking.booking_number} by {actor.id}")
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    reason: Optional[str] = None,
    force_majeure: bool = False,
    now: Optional[datetime] = None,
    policy: Optional[RefundPolicy] = None,
) -> Booking:
    """Cancel through the cancellation policy. Customer, assigned provider, or admin."""
    now = as_utc(now or _utcnow())
    booking = await get_booking_or_404(db, booking_id)
    guide_user_id, porter_user_id = await _assigned_user_ids(db, booking)

    cancelled_by = resolve_canceller(actor, booking, guide_user_id, porter_user_id, force_majeure)
    policy = policy or refund_policy_from_tiers(settings.refund_tiers)
    decision = evaluate_cancellation(booking, cancelled_by, reason, now, policy)
    previous = apply_cancellation(booking, decision)

    await _log_status_change(
        db,
        booking,
        previous,
        BookingStatus.CANCELLED,
        actor,
        decision.reason,
        {"cancelled_by": cancelled_by.value, "days_until_trip": decision.days_until_trip},
    )
    logger.info(
        f"Booking {booking.booking_number} cancelled by {cancelled_by.value} "
        f"({decision.days_until_trip} days before trip)"
    )
    return booking


# ── Payment state (recorded, never processed) ─────────────────

async def record_payment(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    data: PaymentRecordRequest,
    now: Optional[datetime] = None,
) -> Booking:
    _require_admin(actor, "record payments")
    now = as_utc(now or _utcnow())
    booking = await get_booking_or_404(db, booking_id)

    if booking.status in (BookingStatus.CANCELLED, BookingStatus.REFUNDED):
        raise InvalidTransitionError(
            f"Cannot record a payment on a {booking.status.value} booking",
            current=booking.status.value,
        )
    amount = to_money(data.amount)
    remaining = to_money(booking.remaining_amount)
    if amount > remaining:
        raise ValidationError(
            "Payment exceeds the remaining balance", amount=amount, remaining_amount=remaining
        )
    transactions = list(booking.payment_transactions or [])
    if any(t.get("transaction_id") == data.transaction_id for t in transactions):
        raise ValidationError("Transaction already recorded", transaction_id=data.transaction_id)

    transactions.append({
        "transaction_id": data.transaction_id,
        "amount": str(amount),
        "method": data.method,
        "status": "completed",
        "recorded_at": now.isoformat(),
    })
    booking.payment_transactions = transactions
    booking.paid_amount = to_money(booking.paid_amount) + amount
    _sync_balance(booking)
    booking.payment_status = (
        PaymentStatus.COMPLETED if booking.remaining_amount == ZERO else PaymentStatus.PARTIAL
    )
    logger.info(
        f"Payment {data.transaction_id} of {amount} recorded on booking {booking.booking_number}"
    )
    return booking


async def record_refund(
    db: AsyncSession,
    booking_id: UUID,
    actor: User,
    data: RefundRecordRequest,
    now: Optional[datetime] = None,
) -> Booking:
    """COMPLETED | CANCELLED → REFUNDED. Admin only; amount cannot exceed what was paid."""
    _require_admin(actor, "record refunds")
    booking = await get_booking_or_404(db, booking_id)

    amount = to_money(data.amount)
    paid = to_money(booking.paid_amount)
    if amount > paid:
        raise ValidationError("Refund exceeds the amount paid", amount=amount, paid_amount=paid)

    previous = apply_transition(booking, BookingStatus.REFUNDED, now)
    booking.refund_amount = amount
    booking.payment_status = PaymentStatus.REFUNDED
    await _log_status_change(
        db, booking, previous, BookingStatus.REFUNDED, actor, data.reason, {"refund_amount": str(amount)}
    )
    logger.info(f"Refund of {amount} recorded on booking {booking.booking_number}")
    return booking


# ── Reads ─────────────────────────────────────────────────────

async def get_booking(db: AsyncSession, booking_id: UUID, actor: User) -> Booking:
    """Customer, assigned guide/porter, or admin."""
    booking = await get_booking_or_404(db, booking_id)
    if actor.role == UserRole.ADMIN or actor.id == booking.customer_id:
        return booking
    guide_user_id, porter_user_id = await _assigned_user_ids(db, booking)
    if actor.id in {guide_user_id, porter_user_id}:
        return booking
    raise AuthorizationError("Not authorized to view this booking", booking_id=booking_id)


async def list_bookings(
    db: AsyncSession,
    actor: User,
    status_filter: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: int = 10,
) -> List[Booking]:
    """Tourists see their own bookings, guides and porters the ones assigned to them, admins all."""
    query = select(Booking)
    if actor.role == UserRole.TOURIST:
        query = query.where(Booking.customer_id == actor.id)
    elif actor.role == UserRole.GUIDE:
        query = query.where(Booking.guide_id.in_(select(Guide.id).where(Guide.user_id == actor.id)))
    elif actor.role == UserRole.PORTER:
        query = query.where(Booking.porter_id.in_(select(Porter.id).where(Porter.user_id == actor.id)))

    if status_filter:
        query = query.where(Booking.status == status_filter)

    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all())
