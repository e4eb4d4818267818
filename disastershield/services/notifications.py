"""In-app notifications for homeowners and contractors"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.db.models import Notification, NotificationType
from disastershield.schemas.claims import ClaimDetails, ContractorProfile
from disastershield.schemas.matching import DeliveryResult

logger = logging.getLogger(__name__)


def _portal_url(claim: ClaimDetails) -> str:
    return f"/portal/{claim.id}"


class NotificationService:
    """Writes rows to the notifications table; failures are reported, not raised"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: UUID | None,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        if user_id is None:
            return DeliveryResult(channel="in_app", sent=False, skipped=True, error="No linked user")

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
        )
        self.db.add(notification)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create {notification_type.value} notification for {user_id}: {e}")
            return DeliveryResult(channel="in_app", sent=False, error=str(e))

        return DeliveryResult(channel="in_app", sent=True, reference=str(notification.id))

    async def notify_job_posted(self, contractor: ContractorProfile, claim: ClaimDetails) -> DeliveryResult:
        description = claim.description[:100]
        return await self.create(
            contractor.user_id,
            NotificationType.JOB_POSTED,
            f"New {claim.peril.value.capitalize()} Job Available",
            f"Urgent job in {claim.location_label}. {description}",
            {
                "project_id": str(claim.id),
                "location": claim.location_label,
                "peril": claim.peril.value,
                "url": "/contractor/browse-jobs",
            },
        )

    async def notify_contractor_matched(
        self,
        claim: ClaimDetails,
        contractors: list[ContractorProfile],
    ) -> DeliveryResult:
        names = ", ".join(contractor.company_name for contractor in contractors)
        return await self.create(
            claim.user_id,
            NotificationType.CONTRACTOR_MATCHED,
            "Contractors Matched!",
            f"We've invited {names} to your {claim.peril.value} damage claim.",
            {
                "project_id": str(claim.id),
                "contractor_ids": [str(contractor.id) for contractor in contractors],
                "url": _portal_url(claim),
            },
        )

    async def notify_job_accepted(self, claim: ClaimDetails, contractor: ContractorProfile) -> DeliveryResult:
        return await self.create(
            claim.user_id,
            NotificationType.JOB_ACCEPTED,
            "Contractor Assigned!",
            f"{contractor.company_name} has been assigned to your job and will contact you soon to schedule inspection.",
            {
                "project_id": str(claim.id),
                "contractor_id": str(contractor.id),
                "contractor_name": contractor.company_name,
                "url": _portal_url(claim),
            },
        )

    async def notify_job_declined(self, claim: ClaimDetails, contractor: ContractorProfile) -> DeliveryResult:
        return await self.create(
            claim.user_id,
            NotificationType.JOB_DECLINED,
            "Contractor Response",
            f"{contractor.company_name} is unable to take your job.",
            {
                "project_id": str(claim.id),
                "contractor_id": str(contractor.id),
                "url": _portal_url(claim),
            },
        )

    async def notify_estimate_received(
        self,
        claim: ClaimDetails,
        contractor: ContractorProfile,
        amount_cents: int,
    ) -> DeliveryResult:
        return await self.create(
            claim.user_id,
            NotificationType.ESTIMATE_RECEIVED,
            "New Estimate Received",
            f"{contractor.company_name} submitted an estimate of ${amount_cents / 100:,.2f}.",
            {
                "project_id": str(claim.id),
                "contractor_id": str(contractor.id),
                "amount_cents": amount_cents,
                "url": f"/client/estimates/{claim.id}",
            },
        )

    async def notify_estimate_accepted(
        self,
        contractor: ContractorProfile,
        claim: ClaimDetails,
        amount_cents: int,
    ) -> DeliveryResult:
        return await self.create(
            contractor.user_id,
            NotificationType.ESTIMATE_ACCEPTED,
            "Estimate Accepted!",
            f"Your ${amount_cents / 100:,.2f} estimate for the job in {claim.location_label} was accepted.",
            {
                "project_id": str(claim.id),
                "amount_cents": amount_cents,
                "url": "/contractor/dashboard",
            },
        )
