"""Schemas for claim payment status"""

from uuid import UUID

from pydantic import BaseModel, Field


class ProductPaymentStatus(BaseModel):
    product_key: str
    completed: bool


class PaymentGroupStatus(BaseModel):
    group: str
    name: str
    required: bool
    completed: bool
    paid: int
    total: int
    products: list[ProductPaymentStatus] = Field(default_factory=list)


class ClaimPaymentStatus(BaseModel):
    """Completion status of a claim's named payment line items"""
    claim_id: UUID
    groups: list[PaymentGroupStatus]
    all_required_completed: bool
