"""Schemas for contractor matching, invitations and responses"""

import enum
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from disastershield.db.models import MatchRequestStatus
from disastershield.schemas.claims import ClaimResponse, ContractorProfile


class FitLevel(str, enum.Enum):
    """How well one dimension of a contractor fits a claim"""
    MATCH = "match"
    NEUTRAL = "neutral"  # contractor has no restriction on file
    MISMATCH = "mismatch"


class ContractorMatchScores(BaseModel):
    """Detailed scoring breakdown for a contractor"""
    availability: float = Field(ge=0.0)
    geographic: float = Field(ge=0.0)
    trade: float = Field(ge=0.0)
    workload: float = Field(ge=0.0)
    scheduling: float = Field(default=0.0, ge=0.0)
    urgency: float = Field(default=0.0, ge=0.0)
    preferred_date: float = Field(default=0.0, ge=0.0)
    final_score: float = Field(ge=0.0)


class ScoredContractor(BaseModel):
    """Contractor annotated with its suitability score for a claim"""
    contractor: ContractorProfile
    scores: ContractorMatchScores
    geographic_fit: FitLevel
    trade_fit: FitLevel
    open_projects: int = Field(default=0, ge=0)
    reasons: list[str] = Field(default_factory=list)

    @property
    def score(self) -> float:
        return self.scores.final_score

    @property
    def is_plausible(self) -> bool:
        """At least one fit signal is a real match or a no-restriction default"""
        return (
            self.geographic_fit != FitLevel.MISMATCH
            or self.trade_fit != FitLevel.MISMATCH
        )


class MatchRequestResponse(BaseModel):
    """Match request as returned by the API"""
    model_config = {"from_attributes": True}

    id: UUID
    project_id: UUID
    contractor_id: UUID
    status: MatchRequestStatus
    score: float | None = None
    created_at: datetime
    responded_at: datetime | None = None


class WorkflowResult(BaseModel):
    """Summary of one invitation workflow run; never raised, always returned"""
    success: bool
    claim_id: UUID | None = None
    matched_contractors: int = 0
    emails_sent: int = 0
    sms_sent: int = 0
    notifications_sent: int = 0
    match_requests: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class InvitationAction(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


class InvitationTokenPayload(BaseModel):
    """Claims carried by a signed accept/decline link"""
    claim_id: UUID
    contractor_id: UUID
    action: InvitationAction
    iat: int
    exp: int


class ResponseOutcome(str, enum.Enum):
    """Closed set of outcomes for contractor response entry points"""
    SUCCESS = "success"
    DECLINED = "declined"
    EXPIRED = "expired"
    ALREADY_FILLED = "already_filled"
    ERROR = "error"


class ResponseResult(BaseModel):
    """Result of processing an accept/decline/estimate action"""
    outcome: ResponseOutcome
    message: str
    claim_id: UUID | None = None
    contractor_id: UUID | None = None
    next_step: str | None = None
    redirect_url: str | None = None


class DeliveryResult(BaseModel):
    """Outcome of one notification dispatch"""
    channel: str
    sent: bool
    skipped: bool = False
    error: str | None = None
    reference: str | None = None


class JobDeclineRequest(BaseModel):
    """Explicit decline from a logged-in contractor"""
    contractor_id: UUID


class ClaimSubmissionResult(BaseModel):
    """Stored claim together with the outcome of its first matching run"""
    claim: ClaimResponse
    workflow: WorkflowResult
