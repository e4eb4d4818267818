"""Pydantic schemas for claims and contractors"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from disastershield.db.models import (
    CapacityStatus,
    ClaimStatus,
    Peril,
    PaymentStatus,
    PreferredWindow,
    Trade,
)


class ClaimBase(BaseModel):
    """Fields a homeowner supplies when filing a claim"""
    address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=2)
    zip: str = Field(..., pattern=r"^\d{5}(-\d{4})?$")
    peril: Peril
    description: str = Field(default="", max_length=5000)
    incident_at: datetime
    preferred_date: date | None = None
    preferred_window: PreferredWindow | None = None
    contact_name: str | None = Field(default=None, max_length=255)
    contact_phone: str | None = Field(default=None, max_length=20)
    contact_email: EmailStr | None = None

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("State must be a two-letter code")
        return v.upper()

    @field_validator("city", "address")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value must not be blank")
        return v


class ClaimCreate(ClaimBase):
    """Schema for submitting a new claim"""
    user_id: UUID | None = None


class ClaimDetails(ClaimBase):
    """Snapshot of a persisted claim used by the matching workflow"""
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID | None = None
    status: ClaimStatus = ClaimStatus.SUBMITTED
    assigned_contractor_id: UUID | None = None

    # Stored rows may predate stricter input validation
    zip: str = Field(..., min_length=1, max_length=10)
    contact_email: str | None = None

    @property
    def location_label(self) -> str:
        return f"{self.city}, {self.state}"


class ContractorProfile(BaseModel):
    """Contractor data needed for scoring and invitations"""
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID | None = None
    company_name: str
    contact_name: str | None = None
    phone: str | None = None
    email: str | None = None
    calendly_url: str | None = None
    service_areas: list[str] = Field(default_factory=list)
    trades: set[Trade] = Field(default_factory=set)
    capacity: CapacityStatus = CapacityStatus.ACTIVE
    created_at: datetime | None = None

    @field_validator("service_areas", mode="before")
    @classmethod
    def clean_service_areas(cls, v):
        if v is None:
            return []
        return [area.strip() for area in v if isinstance(area, str) and area.strip()]

    @field_validator("trades", mode="before")
    @classmethod
    def parse_trades(cls, v):
        if v is None:
            return set()
        known = {trade.value for trade in Trade}
        unknown = [tag for tag in v if getattr(tag, "value", tag) not in known]
        if unknown:
            raise ValueError(f"Unknown trade tags: {unknown}")
        return v


class ContractorCreate(BaseModel):
    """Schema for onboarding a contractor"""
    user_id: UUID | None = None
    company_name: str = Field(..., min_length=1, max_length=255)
    contact_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=20)
    email: EmailStr | None = None
    calendly_url: str | None = Field(default=None, max_length=500)
    service_areas: list[str] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)
    capacity: CapacityStatus = CapacityStatus.ACTIVE


class ClaimResponse(ClaimDetails):
    """Claim as returned by the API"""
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime
