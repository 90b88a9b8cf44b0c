"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the booking core.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.models import ReviewType


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Booking ───────────────────────────────────────────────────

class EmergencyContactSchema(BaseSchema):
    name: str = Field(..., max_length=255)
    relationship: Optional[str] = Field(None, max_length=100)
    phone: str = Field(..., max_length=30)


class ParticipantSchema(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=0, le=120)
    nationality: Optional[str] = Field(None, max_length=100)
    passport_number: Optional[str] = Field(None, max_length=50)
    emergency_contact: Optional[EmergencyContactSchema] = None
    dietary_requirements: List[str] = []
    experience_level: Optional[str] = None


class SpecialRequirementsSchema(BaseSchema):
    dietary: List[str] = []
    medical: List[str] = []
    accommodation: List[str] = []
    transportation: List[str] = []
    equipment: List[str] = []
    other: Optional[str] = Field(None, max_length=1000)


class EquipmentItemRequest(BaseSchema):
    item: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., ge=1)
    daily_rate: Decimal = Field(..., ge=0)


class TripDetailsSchema(BaseSchema):
    start_date: date
    end_date: date
    group_size: int = Field(..., ge=1, le=100)
    participants: List[ParticipantSchema] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_trip(self) -> "TripDetailsSchema":
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        if len(self.participants) > self.group_size:
            raise ValueError("More participants than the group size")
        return self


class BookingCreateRequest(BaseSchema):
    adventure_id: uuid.UUID
    guide_id: Optional[uuid.UUID] = None
    porter_id: Optional[uuid.UUID] = None
    trip_details: TripDetailsSchema
    special_requirements: Optional[SpecialRequirementsSchema] = None
    equipment: List[EquipmentItemRequest] = []


class MilestoneSchema(BaseSchema):
    description: str = Field(..., min_length=1, max_length=500)
    location: Optional[str] = Field(None, max_length=255)
    photos: List[str] = []


class DailyReportSchema(BaseSchema):
    weather: Optional[str] = Field(None, max_length=100)
    route: Optional[str] = Field(None, max_length=255)
    distance: Optional[float] = Field(None, ge=0)
    altitude: Optional[float] = None
    notes: Optional[str] = Field(None, max_length=2000)
    photos: List[str] = []
    group_morale: Optional[int] = Field(None, ge=1, le=5)


class ProgressUpdateRequest(BaseSchema):
    current_status: Optional[str] = Field(None, max_length=100)
    current_location: Optional[str] = Field(None, max_length=255)
    milestone: Optional[MilestoneSchema] = None
    daily_report: Optional[DailyReportSchema] = None


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)
    force_majeure: bool = False


class BookingUpdateRequest(BaseSchema):
    """Customer-editable booking fields. Anything else in the body is ignored."""
    participants: Optional[List[ParticipantSchema]] = Field(None, min_length=1)
    special_requirements: Optional[SpecialRequirementsSchema] = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> "BookingUpdateRequest":
        if self.participants is None and self.special_requirements is None:
            raise ValueError("Nothing to update")
        return self


class PaymentRecordRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., max_length=50)
    transaction_id: str = Field(..., min_length=1, max_length=100)


class RefundRecordRequest(BaseSchema):
    amount: Decimal = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=500)


class DiscountsResponse(BaseSchema):
    early_bird: Decimal
    group: Decimal
    loyalty: Decimal
    promotional: Decimal


class PricingResponse(BaseSchema):
    base_price: Decimal
    guide_price: Decimal
    porter_price: Decimal
    permit_costs: Decimal
    equipment_rental: Decimal
    taxes: Decimal
    discounts: DiscountsResponse
    total_amount: Decimal
    currency: str


class PaymentStateResponse(BaseSchema):
    status: str
    transactions: List[Dict[str, Any]]
    paid_amount: Decimal
    remaining_amount: Decimal
    refund_amount: Decimal


class CancellationResponse(BaseSchema):
    cancelled: bool
    cancelled_by: Optional[str]
    cancelled_at: Optional[datetime]
    reason: Optional[str]
    refund_eligible: Optional[bool]
    refund_amount: Optional[Decimal]
    cancellation_fee: Optional[Decimal]


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    customer_id: uuid.UUID
    adventure_id: uuid.UUID
    guide_id: Optional[uuid.UUID]
    porter_id: Optional[uuid.UUID]
    start_date: date
    end_date: date
    duration_days: int
    group_size: int
    participants: List[Dict[str, Any]]
    special_requirements: Optional[Dict[str, Any]]
    equipment_items: List[Dict[str, Any]]
    status: str
    pricing: PricingResponse
    payment: PaymentStateResponse
    cancellation: CancellationResponse
    progress: Dict[str, Any]
    booking_age_days: int
    confirmed_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime


class AvailabilityResponse(BaseSchema):
    adventure_id: uuid.UUID
    start_date: date
    end_date: date
    bookable: bool
    reason: Optional[str] = None


# ── Review ────────────────────────────────────────────────────

def _check_breakdown(v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
    if v is None:
        return v
    if not v:
        raise ValueError("Breakdown must rate at least one criterion")
    for criterion, score in v.items():
        if not 1 <= score <= 5:
            raise ValueError(f"Rating for '{criterion}' must be between 1 and 5")
    return v


class ReviewCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    review_type: ReviewType
    target_id: uuid.UUID
    rating: Optional[Decimal] = Field(None, ge=1, le=5)
    breakdown: Optional[Dict[str, int]] = None
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=10, max_length=2000)
    would_recommend: bool = True

    @field_validator("breakdown")
    @classmethod
    def validate_breakdown(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        return _check_breakdown(v)

    @model_validator(mode="after")
    def validate_rating_source(self) -> "ReviewCreateRequest":
        if self.rating is None and self.breakdown is None:
            raise ValueError("Either rating or breakdown is required")
        return self


class ReviewUpdateRequest(BaseSchema):
    rating: Optional[Decimal] = Field(None, ge=1, le=5)
    breakdown: Optional[Dict[str, int]] = None
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=2000)
    would_recommend: Optional[bool] = None

    @field_validator("breakdown")
    @classmethod
    def validate_breakdown(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        return _check_breakdown(v)


class HelpfulVoteRequest(BaseSchema):
    helpful: bool = True


class ReviewVisibilityRequest(BaseSchema):
    visible: bool


class RatingAggregateResponse(BaseSchema):
    review_type: str
    target_id: uuid.UUID
    rating_avg: float
    rating_count: int
    breakdown: Optional[Dict[str, float]] = None


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    review_type: str
    target_id: uuid.UUID
    reviewer_id: uuid.UUID
    booking_id: uuid.UUID
    rating: float
    breakdown: Optional[Dict[str, int]]
    title: str
    comment: str
    would_recommend: bool
    helpful_votes: int
    not_helpful_votes: int
    helpfulness_percentage: int
    is_visible: bool
    created_at: datetime


class ReviewWithRatingResponse(BaseSchema):
    review: ReviewResponse
    target_rating: RatingAggregateResponse


# ── Generic ───────────────────────────────────────────────────

class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    context: Dict[str, str] = {}
    retryable: bool = False
    request_id: Optional[str] = None


# `responses=` for the routers: the DomainError envelope rendered by main.py.
# 422 keeps FastAPI's own request-validation schema.
DOMAIN_ERROR_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    status_code: {"model": ErrorResponse} for status_code in (400, 403, 404, 409)
}
