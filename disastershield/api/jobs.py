"""Contractor-facing endpoints behind invitation links"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.db.database import get_db
from disastershield.schemas.matching import JobDeclineRequest, ResponseOutcome, ResponseResult
from disastershield.services.responses import ResponseService

logger = logging.getLogger(__name__)

router = APIRouter()

OUTCOME_STATUS_CODES = {
    ResponseOutcome.SUCCESS: 200,
    ResponseOutcome.DECLINED: 200,
    ResponseOutcome.EXPIRED: 410,
    ResponseOutcome.ALREADY_FILLED: 409,
    ResponseOutcome.ERROR: 400,
}


def outcome_response(result: ResponseResult) -> JSONResponse:
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES[result.outcome],
        content=result.model_dump(mode="json"),
    )


@router.get("/accept/{token}", response_model=ResponseResult)
async def accept_job(
    token: str,
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """Accept link from an invitation email or SMS"""
    result = await ResponseService(db).handle_accept(token)
    logger.info(f"Accept link processed: outcome={result.outcome.value} claim={result.claim_id}")
    return outcome_response(result)


@router.get("/decline/{token}", response_model=ResponseResult)
async def decline_job(
    token: str,
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """Decline link from an invitation email or SMS"""
    result = await ResponseService(db).handle_decline(token)
    logger.info(f"Decline link processed: outcome={result.outcome.value} claim={result.claim_id}")
    return outcome_response(result)


@router.post("/{claim_id}/decline", response_model=ResponseResult)
async def decline_job_explicitly(
    claim_id: UUID,
    request: JobDeclineRequest,
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    result = await ResponseService(db).decline_match_request(claim_id, request.contractor_id)
    return outcome_response(result)
