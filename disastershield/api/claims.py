"""API endpoints for claims and contractor matching"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.db.database import get_db
from disastershield.schemas.claims import ClaimCreate, ClaimDetails, ClaimResponse
from disastershield.schemas.estimates import EstimateCreate, EstimateResponse
from disastershield.schemas.matching import (
    ClaimSubmissionResult,
    MatchRequestResponse,
    WorkflowResult,
)
from disastershield.schemas.payments import ClaimPaymentStatus
from disastershield.services.payments import PaymentService
from disastershield.services.repository import ClaimRepository
from disastershield.services.responses import ResponseService
from disastershield.services.workflow import REMATCH_REFUSED_ERROR, MatchingWorkflowOrchestrator
from disastershield.utils.errors import ClaimNotFoundError, EstimateError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_claim_or_404(repository: ClaimRepository, claim_id: UUID):
    claim = await repository.get_claim(claim_id)
    if not claim:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Claim not found"
        )
    return claim


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_claim(
    claim_data: ClaimCreate,
    db: AsyncSession = Depends(get_db)
) -> ClaimSubmissionResult:
    """
    Submit a new claim and invite the best-matched contractors
    """
    repository = ClaimRepository(db)
    claim = await repository.create_claim(claim_data)

    orchestrator = MatchingWorkflowOrchestrator(db)
    workflow = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

    claim = await repository.get_claim(claim.id)
    return ClaimSubmissionResult(
        claim=ClaimResponse.model_validate(claim),
        workflow=workflow,
    )


@router.get("/{claim_id}")
async def get_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> ClaimResponse:
    claim = await _get_claim_or_404(ClaimRepository(db), claim_id)
    return ClaimResponse.model_validate(claim)


@router.delete("/{claim_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> None:
    if not await ClaimRepository(db).delete_claim(claim_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Claim not found"
        )


@router.post("/{claim_id}/match")
async def match_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> WorkflowResult:
    """
    Run the matching workflow again; existing invitations are kept
    """
    claim = await _get_claim_or_404(ClaimRepository(db), claim_id)
    orchestrator = MatchingWorkflowOrchestrator(db)
    return await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))


@router.post("/{claim_id}/rematch")
async def rematch_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> WorkflowResult:
    """
    Discard all invitations and match the claim from scratch
    """
    await _get_claim_or_404(ClaimRepository(db), claim_id)

    orchestrator = MatchingWorkflowOrchestrator(db)
    result = await orchestrator.rematch(claim_id)
    if REMATCH_REFUSED_ERROR in result.errors:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Claim already has an assigned contractor"
        )
    return result


@router.get("/{claim_id}/match-requests")
async def list_match_requests(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> list[MatchRequestResponse]:
    repository = ClaimRepository(db)
    await _get_claim_or_404(repository, claim_id)
    match_requests = await repository.get_match_requests(claim_id)
    return [MatchRequestResponse.model_validate(mr) for mr in match_requests]


@router.get("/{claim_id}/payments")
async def get_payment_status(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> ClaimPaymentStatus:
    try:
        return await PaymentService(db).get_payment_status(claim_id)
    except ClaimNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{claim_id}/estimates")
async def list_estimates(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> list[EstimateResponse]:
    repository = ClaimRepository(db)
    await _get_claim_or_404(repository, claim_id)
    estimates = await repository.get_estimates(claim_id)
    return [EstimateResponse.model_validate(estimate) for estimate in estimates]


@router.post("/{claim_id}/estimates", status_code=status.HTTP_201_CREATED)
async def submit_estimate(
    claim_id: UUID,
    estimate_data: EstimateCreate,
    db: AsyncSession = Depends(get_db)
) -> EstimateResponse:
    """
    Contractor submits (or revises) an estimate for an invited claim
    """
    service = ResponseService(db)
    try:
        estimate = await service.submit_estimate(
            claim_id,
            estimate_data.contractor_id,
            estimate_data.amount_cents,
            breakdown=estimate_data.breakdown,
            notes=estimate_data.notes,
        )
    except ClaimNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EstimateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return EstimateResponse.model_validate(estimate)
