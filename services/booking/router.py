"""
services/booking/router.py
Booking lifecycle endpoints.
States: PENDING → CONFIRMED → IN_PROGRESS → COMPLETED → REFUNDED
        PENDING | CONFIRMED → CANCELLED → REFUNDED
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_admin, require_provider, require_tourist
from shared.models.models import Booking, BookingStatus, User
from shared.schemas.schemas import (
    DOMAIN_ERROR_RESPONSES,
    AvailabilityResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingResponse,
    BookingUpdateRequest,
    CancellationResponse,
    DiscountsResponse,
    PaymentRecordRequest,
    PaymentStateResponse,
    PricingResponse,
    ProgressUpdateRequest,
    RefundRecordRequest,
)
from services.booking import service

router = APIRouter(prefix="/bookings", tags=["Bookings"], responses=DOMAIN_ERROR_RESPONSES)


# ── Helpers ───────────────────────────────────────────────────

def _enrich_booking(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        booking_number=booking.booking_number,
        customer_id=booking.customer_id,
        adventure_id=booking.adventure_id,
        guide_id=booking.guide_id,
        porter_id=booking.porter_id,
        start_date=booking.start_date,
        end_date=booking.end_date,
        duration_days=booking.duration_days,
        group_size=booking.group_size,
        participants=booking.participants or [],
        special_requirements=booking.special_requirements,
        equipment_items=booking.equipment_items or [],
        status=booking.status.value,
        pricing=PricingResponse(
            base_price=booking.base_price,
            guide_price=booking.guide_price,
            porter_price=booking.porter_price,
            permit_costs=booking.permit_costs,
            equipment_rental=booking.equipment_rental,
            taxes=booking.taxes,
            discounts=DiscountsResponse(
                early_bird=booking.discount_early_bird,
                group=booking.discount_group,
                loyalty=booking.discount_loyalty,
                promotional=booking.discount_promotional,
            ),
            total_amount=booking.total_amount,
            currency=booking.currency,
        ),
        payment=PaymentStateResponse(
            status=booking.payment_status.value,
            transactions=booking.payment_transactions or [],
            paid_amount=booking.paid_amount,
            remaining_amount=booking.remaining_amount,
            refund_amount=booking.refund_amount,
        ),
        cancellation=CancellationResponse(
            cancelled=booking.cancelled,
            cancelled_by=booking.cancelled_by.value if booking.cancelled_by else None,
            cancelled_at=booking.cancelled_at,
            reason=booking.cancellation_reason,
            refund_eligible=booking.refund_eligible,
            refund_amount=booking.cancellation_refund_amount,
            cancellation_fee=booking.cancellation_fee,
        ),
        progress=booking.progress or {},
        booking_age_days=service.booking_age_days(booking.created_at),
        confirmed_at=booking.confirmed_at,
        started_at=booking.started_at,
        completed_at=booking.completed_at,
        created_at=booking.created_at,
    )


# ── Availability ──────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    adventure_id: UUID,
    start_date: date,
    end_date: date,
    db: AsyncSession = Depends(get_db),
):
    """Public: can this adventure be booked for [start_date, end_date]?"""
    result = await service.check_adventure_availability(db, adventure_id, start_date, end_date)
    return AvailabilityResponse(
        adventure_id=adventure_id,
        start_date=start_date,
        end_date=end_date,
        bookable=result.bookable,
        reason=result.reason,
    )


# ── Creation ──────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_tourist),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.create_booking(db, current_user, data)
    await db.commit()
    return _enrich_booking(booking)


@router.put("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    data: BookingUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer or admin edits participants / special requirements on an open booking."""
    booking = await service.update_booking(db, booking_id, current_user, data)
    await db.commit()
    return _enrich_booking(booking)


# ── Lifecycle ─────────────────────────────────────────────────

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Assigned guide/porter or admin confirms. PENDING → CONFIRMED."""
    booking = await service.confirm_booking(db, booking_id, current_user)
    await db.commit()
    return _enrich_booking(booking)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_trip(
    booking_id: UUID,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.start_trip(db, booking_id, current_user)
    await db.commit()
    return _enrich_booking(booking)


@router.post("/{booking_id}/progress", response_model=BookingResponse)
async def record_progress(
    booking_id: UUID,
    data: ProgressUpdateRequest,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Append a milestone and/or daily report. Starts a CONFIRMED trip."""
    booking = await service.record_progress(db, booking_id, current_user, data)
    await db.commit()
    return _enrich_booking(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.complete_booking(db, booking_id, current_user)
    await db.commit()
    return _enrich_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Customer, assigned guide/porter, or admin cancels.
    Allowed while the booking is PENDING or CONFIRMED and the trip has not started.
    """
    booking = await service.cancel_booking(
        db, booking_id, current_user, data.reason, force_majeure=data.force_majeure
    )
    await db.commit()
    return _enrich_booking(booking)


# ── Payment state (admin / gateway callback) ──────────────────

@router.post("/{booking_id}/payments", response_model=BookingResponse)
async def record_payment(
    booking_id: UUID,
    data: PaymentRecordRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.record_payment(db, booking_id, current_user, data)
    await db.commit()
    return _enrich_booking(booking)


@router.post("/{booking_id}/refund", response_model=BookingResponse)
async def record_refund(
    booking_id: UUID,
    data: RefundRecordRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.record_refund(db, booking_id, current_user, data)
    await db.commit()
    return _enrich_booking(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer sees own, guide/porter see assigned, admin sees all."""
    booking = await service.get_booking(db, booking_id, current_user)
    return _enrich_booking(booking)


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    bookings = await service.list_bookings(db, current_user, status_filter, page, page_size)
    return [_enrich_booking(b) for b in bookings]
