"""
shared/models/models.py
All SQLAlchemy ORM models for the adventure booking core.
UUID primary keys throughout; JSON columns become JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    TOURIST = "TOURIST"
    GUIDE = "GUIDE"
    PORTER = "PORTER"
    ADMIN = "ADMIN"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class CancelledBy(str, PyEnum):
    CUSTOMER = "CUSTOMER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"
    FORCE_MAJEURE = "FORCE_MAJEURE"


class ReviewType(str, PyEnum):
    GUIDE = "GUIDE"
    PORTER = "PORTER"
    ADVENTURE = "ADVENTURE"
    GEAR_PROVIDER = "GEAR_PROVIDER"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


class RatingMixin:
    """Denormalized rating aggregate. Written only by the rating aggregator."""
    rating_avg: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"), nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account known to the booking core. Credentials live in the identity service."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.TOURIST
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Adventure(TimestampMixin, RatingMixin, Base):
    """Bookable trip offered by a provider."""
    __tablename__ = "adventures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    permits: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # e.g. [{"name": "TIMS", "cost": 20, "required": true, "included_in_price": false}]
    group_discounts: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # e.g. [{"min_size": 4, "percent": 5}, {"min_size": 8, "percent": 10}]
    early_bird_discount: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    # e.g. {"days_in_advance": 60, "percent": 10}

    availability_windows: Mapped[List["AvailabilityWindow"]] = relationship(
        back_populates="adventure", lazy="selectin", cascade="all, delete-orphan"
    )
    blackout_dates: Mapped[List["BlackoutDate"]] = relationship(
        back_populates="adventure", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_adventures_provider_id", "provider_id"),)


class AvailabilityWindow(Base):
    """Date range explicitly marked available or unavailable for an adventure."""
    __tablename__ = "adventure_availability_windows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    adventure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("adventures.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    adventure: Mapped["Adventure"] = relationship(back_populates="availability_windows")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_window_range"),
        Index("ix_windows_adventure_dates", "adventure_id", "start_date"),
    )


class BlackoutDate(Base):
    """Single date on which an adventure cannot run."""
    __tablename__ = "adventure_blackout_dates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    adventure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("adventures.id", ondelete="CASCADE"), nullable=False
    )
    blackout_date: Mapped[date] = mapped_column(Date, nullable=False)

    adventure: Mapped["Adventure"] = relationship(back_populates="blackout_dates")

    __table_args__ = (
        UniqueConstraint("adventure_id", "blackout_date", name="uq_blackout_adventure_date"),
    )


class Guide(TimestampMixin, RatingMixin, Base):
    __tablename__ = "guides"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Porter(TimestampMixin, RatingMixin, Base):
    """Porter profile. Keeps per-criterion rating means next to the overall aggregate."""
    __tablename__ = "porters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    rating_reliability: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))
    rating_strength: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))
    rating_attitude: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))
    rating_punctuality: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))
    rating_safety: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))


class BookingSequence(Base):
    """Named counter row. Incremented atomically to issue booking numbers."""
    __tablename__ = "booking_sequences"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Booking(TimestampMixin, Base):
    """
    Core booking entity.
    Status transitions: PENDING → CONFIRMED → IN_PROGRESS → COMPLETED;
    PENDING | CONFIRMED → CANCELLED; COMPLETED | CANCELLED → REFUNDED.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    adventure_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("adventures.id"), nullable=False
    )
    guide_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("guides.id"), nullable=True
    )
    porter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("porters.id"), nullable=True
    )

    # Trip details
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    group_size: Mapped[int] = mapped_column(Integer, nullable=False)
    participants: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    special_requirements: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    equipment_items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )

    # Pricing breakdown
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    guide_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    porter_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    permit_costs: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    equipment_rental: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    taxes: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    discount_early_bird: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    discount_group: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    discount_loyalty: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    discount_promotional: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Payment state (recorded only; transactions are processed elsewhere)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    payment_transactions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)

    # Cancellation record
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_by: Mapped[Optional[CancelledBy]] = mapped_column(Enum(CancelledBy), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_eligible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    cancellation_refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    cancellation_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Progress log (append-only lists)
    progress: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    # {"current_status", "current_location", "last_update", "milestones": [], "daily_reports": []}

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    audit_logs: Mapped[List["BookingAuditLog"]] = relationship(back_populates="booking")

    __table_args__ = (
        CheckConstraint("group_size >= 1", name="ck_booking_group_size"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        Index("ix_bookings_customer_id", "customer_id"),
        Index("ix_bookings_guide_start", "guide_id", "start_date"),
        Index("ix_bookings_porter_start", "porter_id", "start_date"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_start_date", "start_date"),
    )


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    booking: Mapped["Booking"] = relationship(back_populates="audit_logs")

    __table_args__ = (Index("ix_booking_audit_booking_id", "booking_id"),)


class Review(TimestampMixin, Base):
    """
    Post-trip review of exactly one target (review_type + target_id).
    One review per (reviewer, booking, review_type, target), enforced by a unique constraint.
    """
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    review_type: Mapped[ReviewType] = mapped_column(Enum(ReviewType), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False
    )
    rating: Mapped[Decimal] = mapped_column(Numeric(2, 1), nullable=False)
    breakdown: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    would_recommend: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    helpful_votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    not_helpful_votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "reviewer_id", "booking_id", "review_type", "target_id", name="uq_review_per_target"
        ),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        Index("ix_reviews_target", "review_type", "target_id"),
        Index("ix_reviews_reviewer_id", "reviewer_id"),
    )
