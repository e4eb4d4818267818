"""Database models for the DisasterShield claim matching system"""

import enum
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from disastershield.db.database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TimestampMixin:
    """Mixin for adding timestamp columns to models"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class Peril(str, enum.Enum):
    """Damage category of a claim"""
    WATER = "water"
    FLOOD = "flood"
    WIND = "wind"
    FIRE = "fire"
    MOLD = "mold"
    OTHER = "other"


class Trade(str, enum.Enum):
    """Contractor capability tags"""
    WATER_MITIGATION = "water_mitigation"
    MOLD = "mold"
    REBUILD = "rebuild"
    ROOFING = "roofing"
    SMOKE_RESTORATION = "smoke_restoration"
    GENERAL = "general"


class PreferredWindow(str, enum.Enum):
    """Fixed inspection time windows offered to homeowners"""
    MORNING = "8-11"
    MIDDAY = "11-2"
    AFTERNOON = "2-5"
    EVENING = "5-8"


class ClaimStatus(str, enum.Enum):
    """Claim lifecycle; advances forward except for an explicit re-match"""
    SUBMITTED = "submitted"
    MATCHED = "matched"
    SCHEDULED = "scheduled"
    ONSITE = "onsite"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class CapacityStatus(str, enum.Enum):
    """Contractor self-reported availability"""
    ACTIVE = "active"
    PAUSED = "paused"


class MatchRequestStatus(str, enum.Enum):
    """Match request lifecycle: sent -> accepted | declined | expired"""
    SENT = "sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class EstimateStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class NotificationType(str, enum.Enum):
    """In-app notification kinds"""
    JOB_POSTED = "job_posted"
    CONTRACTOR_MATCHED = "contractor_matched"
    JOB_ACCEPTED = "job_accepted"
    JOB_DECLINED = "job_declined"
    ESTIMATE_RECEIVED = "estimate_received"
    ESTIMATE_ACCEPTED = "estimate_accepted"


class Contractor(Base, TimestampMixin):
    """Repair contractors that can be invited to claims"""
    __tablename__ = "contractors"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Profile
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendly_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Matching inputs; empty lists mean "no restriction"
    service_areas: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    trades: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    capacity: Mapped[CapacityStatus] = mapped_column(
        SQLEnum(CapacityStatus, values_callable=_enum_values),
        default=CapacityStatus.ACTIVE,
        nullable=False
    )

    # Relationships
    match_requests = relationship("MatchRequest", back_populates="contractor")
    estimates = relationship("ContractorEstimate", back_populates="contractor")

    __table_args__ = (
        Index("idx_contractor_capacity", "capacity"),
        Index("idx_contractor_user", "user_id"),
    )


class Claim(Base, TimestampMixin):
    """A homeowner's disaster-damage claim seeking a repair contractor"""
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Location
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)

    # Damage
    peril: Mapped[Peril] = mapped_column(
        SQLEnum(Peril, values_callable=_enum_values),
        nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    incident_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Scheduling preference
    preferred_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    preferred_window: Mapped[PreferredWindow | None] = mapped_column(
        SQLEnum(PreferredWindow, values_callable=_enum_values),
        nullable=True
    )

    # Homeowner contact
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[ClaimStatus] = mapped_column(
        SQLEnum(ClaimStatus, values_callable=_enum_values),
        default=ClaimStatus.SUBMITTED,
        nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, values_callable=_enum_values),
        default=PaymentStatus.UNPAID,
        nullable=False
    )
    assigned_contractor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("contractors.id", ondelete="SET NULL"),
        nullable=True
    )

    # Relationships
    match_requests = relationship(
        "MatchRequest", back_populates="claim", cascade="all, delete-orphan", passive_deletes=True
    )
    estimates = relationship(
        "ContractorEstimate", back_populates="claim", cascade="all, delete-orphan", passive_deletes=True
    )
    payment_orders = relationship(
        "PaymentOrder", back_populates="claim", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_project_status", "status"),
        Index("idx_project_assigned", "assigned_contractor_id"),
        Index("idx_project_user", "user_id"),
    )


class MatchRequest(Base, TimestampMixin):
    """Invitation linking one claim to one candidate contractor"""
    __tablename__ = "match_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contractors.id", ondelete="CASCADE"),
        nullable=False
    )
    status: Mapped[MatchRequestStatus] = mapped_column(
        SQLEnum(MatchRequestStatus, values_callable=_enum_values),
        default=MatchRequestStatus.SENT,
        nullable=False
    )
    score: Mapped[float | None] = mapped_column(nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    claim = relationship("Claim", back_populates="match_requests")
    contractor = relationship("Contractor", back_populates="match_requests")

    __table_args__ = (
        UniqueConstraint("project_id", "contractor_id", name="uq_match_request_pair"),
        Index("idx_match_request_project", "project_id"),
        Index("idx_match_request_status", "status"),
    )


class ContractorEstimate(Base, TimestampMixin):
    """Repair estimate a contractor submits after accepting an invitation"""
    __tablename__ = "contractor_estimates"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contractors.id", ondelete="CASCADE"),
        nullable=False
    )
    estimate_amount: Mapped[int] = mapped_column(Integer, nullable=False)  # cents
    estimate_breakdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[EstimateStatus] = mapped_column(
        SQLEnum(EstimateStatus, values_callable=_enum_values),
        default=EstimateStatus.PENDING,
        nullable=False
    )

    # Relationships
    claim = relationship("Claim", back_populates="estimates")
    contractor = relationship("Contractor", back_populates="estimates")

    __table_args__ = (
        UniqueConstraint("project_id", "contractor_id", name="uq_estimate_pair"),
        Index("idx_estimate_project", "project_id"),
    )


class Notification(Base, TimestampMixin):
    """In-app notification shown in a user's notification bell"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, values_callable=_enum_values),
        nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_notification_user", "user_id"),
    )


class PaymentOrder(Base, TimestampMixin):
    """Completed Stripe checkout for one named payment line item of a claim"""
    __tablename__ = "payment_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    checkout_session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_subtotal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)

    claim = relationship("Claim", back_populates="payment_orders")

    __table_args__ = (
        Index("idx_payment_order_project", "project_id"),
    )
