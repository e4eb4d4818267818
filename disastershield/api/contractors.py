"""API endpoints for contractor onboarding"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.db.database import get_db
from disastershield.schemas.claims import ContractorCreate, ContractorProfile
from disastershield.services.repository import ClaimRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contractor(
    contractor_data: ContractorCreate,
    db: AsyncSession = Depends(get_db)
) -> ContractorProfile:
    contractor = await ClaimRepository(db).create_contractor(contractor_data)
    logger.info(f"Onboarded contractor {contractor.id} ({contractor.company_name})")
    return ContractorProfile.model_validate(contractor)


@router.get("")
async def list_active_contractors(db: AsyncSession = Depends(get_db)) -> list[ContractorProfile]:
    contractors = await ClaimRepository(db).get_active_contractors()
    return [ContractorProfile.model_validate(contractor) for contractor in contractors]


@router.get("/{contractor_id}")
async def get_contractor(
    contractor_id: UUID,
    db: AsyncSession = Depends(get_db)
) -> ContractorProfile:
    contractor = await ClaimRepository(db).get_contractor(contractor_id)
    if not contractor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Contractor not found"
        )
    return ContractorProfile.model_validate(contractor)
