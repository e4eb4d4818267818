"""Schemas for contractor estimates"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from disastershield.db.models import EstimateStatus


class EstimateCreate(BaseModel):
    """Schema for a contractor submitting an estimate"""
    contractor_id: UUID
    amount_cents: int = Field(..., gt=0)
    breakdown: str | None = Field(default=None, max_length=10000)
    notes: str | None = Field(default=None, max_length=5000)


class EstimateResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    project_id: UUID
    contractor_id: UUID
    estimate_amount: int
    estimate_breakdown: str | None = None
    notes: str | None = None
    status: EstimateStatus
    created_at: datetime
    updated_at: datetime
