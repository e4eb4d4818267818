"""Homeowner review of contractor estimates"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.api.jobs import outcome_response
from disastershield.db.database import get_db
from disastershield.schemas.matching import ResponseResult
from disastershield.services.responses import ResponseService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{estimate_id}/accept", response_model=ResponseResult)
async def accept_estimate(
    estimate_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """
    Accept an estimate and assign its contractor to the claim.

    Returns 409 when another contractor was assigned first.
    """
    result = await ResponseService(db).accept_estimate(estimate_id)
    return outcome_response(result)


@router.post("/{estimate_id}/reject", response_model=ResponseResult)
async def reject_estimate(
    estimate_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    result = await ResponseService(db).reject_estimate(estimate_id)
    return outcome_response(result)
