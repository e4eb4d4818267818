"""Invitation workflow - selects contractors for a claim and sends them match requests"""

import asyncio
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.config import settings
from disastershield.db.models import ClaimStatus
from disastershield.schemas.claims import ClaimDetails, ContractorProfile
from disastershield.schemas.matching import (
    DeliveryResult,
    InvitationAction,
    ScoredContractor,
    WorkflowResult,
)
from disastershield.services.email_notifications import EmailKind, EmailNotificationService
from disastershield.services.matching import rank_contractors
from disastershield.services.notifications import NotificationService
from disastershield.services.repository import ClaimRepository
from disastershield.services.sms import TwilioService
from disastershield.services.tokens import InvitationTokenService
from disastershield.utils.clock import Clock, utc_now
from disastershield.utils.errors import DuplicateMatchRequestError

logger = logging.getLogger(__name__)

NO_CONTRACTORS_ERROR = "no contractors found"
REMATCH_REFUSED_ERROR = "Claim already has an assigned contractor; re-match refused"


def build_action_url(action: InvitationAction, token: str, base_url: str | None = None) -> str:
    base = (base_url or settings.app_base_url).rstrip("/")
    return f"{base}/api/v1/jobs/{InvitationAction(action).value}/{token}"


class MatchingWorkflowOrchestrator:
    """
    Runs the complete matching workflow for a claim.

    Loads the active contractor pool, ranks it, creates one match request per
    selected contractor and invites each one by email, in-app notification and
    (when configured) SMS. Every step reports into a WorkflowResult; delivery
    failures for one contractor never stop the others and nothing is raised.
    """

    def __init__(
        self,
        db: AsyncSession,
        email_service: EmailNotificationService | None = None,
        notification_service: NotificationService | None = None,
        token_service: InvitationTokenService | None = None,
        sms_service: TwilioService | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.repository = ClaimRepository(db)
        self.email_service = email_service or EmailNotificationService()
        self.notification_service = notification_service or NotificationService(db)
        self.token_service = token_service or InvitationTokenService(clock=clock)
        self.sms_service = sms_service or TwilioService()
        self.clock = clock

    async def execute_complete_workflow(
        self,
        claim_payload: ClaimDetails | dict[str, Any],
        base_url: str | None = None,
    ) -> WorkflowResult:
        """Match, persist and invite; always returns a summary"""
        try:
            claim = ClaimDetails.model_validate(claim_payload)
        except ValidationError as e:
            logger.warning(f"Rejected invalid claim payload: {e.error_count()} errors")
            return WorkflowResult(success=False, errors=[f"Invalid claim payload: {e}"])

        result = WorkflowResult(success=False, claim_id=claim.id)

        try:
            await self._run(claim, result, base_url)
        except SQLAlchemyError as e:
            logger.error(f"Workflow for claim {claim.id} hit a database error: {e}", exc_info=True)
            result.errors.append(f"Database error: {e}")
        except Exception as e:
            logger.error(f"Workflow for claim {claim.id} failed: {e}", exc_info=True)
            result.errors.append(f"Workflow failed: {e}")

        logger.info(
            f"Workflow complete for claim {claim.id}: success={result.success} "
            f"matched={result.matched_contractors} emails={result.emails_sent} "
            f"errors={len(result.errors)}"
        )
        return result

    async def rematch(self, claim_id: UUID, base_url: str | None = None) -> WorkflowResult:
        """Drop every match request for an unassigned claim and run the workflow again"""
        claim = await self.repository.get_claim(claim_id)
        if not claim:
            return WorkflowResult(success=False, claim_id=claim_id, errors=[f"Claim {claim_id} not found"])

        refused = WorkflowResult(success=False, claim_id=claim_id, errors=[REMATCH_REFUSED_ERROR])
        if claim.assigned_contractor_id is not None:
            return refused

        try:
            deleted = await self.repository.reset_claim_for_rematch(claim_id)
            if deleted is None:
                await self.db.rollback()
                logger.info(f"Claim {claim_id} was assigned before re-match could reset it")
                return refused
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Could not reset claim {claim_id} for re-match: {e}")
            return WorkflowResult(success=False, claim_id=claim_id, errors=[f"Re-match reset failed: {e}"])

        logger.info(f"Re-match for claim {claim_id}: removed {deleted} match requests")

        claim = await self.repository.get_claim(claim_id)
        return await self.execute_complete_workflow(ClaimDetails.model_validate(claim), base_url)

    async def _run(self, claim: ClaimDetails, result: WorkflowResult, base_url: str | None) -> None:
        stored = await self.repository.get_claim(claim.id)
        if not stored:
            result.errors.append(f"Claim {claim.id} not found")
            return
        if stored.assigned_contractor_id is not None:
            result.errors.append("Claim already has an assigned contractor")
            return

        # Contact details and ownership come from the stored row
        claim = ClaimDetails.model_validate(stored)

        contractors = await self.repository.get_active_contractors()
        if not contractors:
            result.errors.append(NO_CONTRACTORS_ERROR)
            return

        profiles = []
        for contractor in contractors:
            try:
                profiles.append(ContractorProfile.model_validate(contractor))
            except ValidationError as e:
                logger.warning(f"Skipping contractor {contractor.id} with invalid profile: {e.error_count()} errors")

        workloads = await self.repository.get_open_workloads()
        selected = rank_contractors(claim, profiles, workloads=workloads, now=self.clock())

        if not selected:
            result.errors.append(
                f"No contractors matched the claim criteria. Available contractors: {len(profiles)}, "
                f"but none serve {claim.location_label} or handle {claim.peril.value} damage."
            )
            return

        invited: list[ContractorProfile] = []
        email_results: list[DeliveryResult] = []

        for candidate in selected:
            contractor = candidate.contractor
            created = await self._ensure_match_request(claim, candidate, result)
            if created is None:
                continue

            result.matched_contractors += 1
            if not created:
                continue

            invited.append(contractor)

            if email_results and settings.email_send_delay_seconds > 0:
                await asyncio.sleep(settings.email_send_delay_seconds)
            email_results.append(await self._invite(claim, candidate, result, base_url))

        if invited:
            await self.repository.update_claim_status(claim.id, ClaimStatus.MATCHED)
            delivery = await self.notification_service.notify_contractor_matched(claim, invited)
            if delivery.sent:
                result.notifications_sent += 1

        failed = [email for email in email_results if not email.sent and not email.skipped]
        if failed and len(failed) == len(email_results):
            result.errors.append("All invitation emails failed to send")

        result.success = result.matched_contractors > 0

    async def _ensure_match_request(
        self,
        claim: ClaimDetails,
        candidate: ScoredContractor,
        result: WorkflowResult,
    ) -> bool | None:
        """True if a new match request was created, False if one already existed, None on failure"""
        contractor = candidate.contractor
        try:
            existing = await self.repository.get_match_request(claim.id, contractor.id)
            if existing:
                logger.info(f"Match request already exists for claim {claim.id} and contractor {contractor.id}")
                result.match_requests.append(self._summary(existing.id, claim, candidate, existing.status.value, False))
                return False

            match_request = await self.repository.create_match_request(
                claim.id, contractor.id, score=candidate.score
            )
        except DuplicateMatchRequestError:
            # Inserted concurrently by another workflow run
            result.match_requests.append(self._summary(None, claim, candidate, "sent", False))
            return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create match request for contractor {contractor.id}: {e}")
            result.errors.append(f"Failed to create match request for {contractor.company_name}: {e}")
            return None

        result.match_requests.append(
            self._summary(match_request.id, claim, candidate, match_request.status.value, True)
        )
        return True

    async def _invite(
        self,
        claim: ClaimDetails,
        candidate: ScoredContractor,
        result: WorkflowResult,
        base_url: str | None,
    ) -> DeliveryResult:
        """Send every invitation channel to one contractor; returns the email delivery"""
        contractor = candidate.contractor
        accept_token, decline_token = self.token_service.issue_pair(claim.id, contractor.id)
        accept_url = build_action_url(InvitationAction.ACCEPT, accept_token, base_url)
        decline_url = build_action_url(InvitationAction.DECLINE, decline_token, base_url)

        email = await self.email_service.send(
            EmailKind.INVITATION,
            contractor.email,
            {
                "claim": claim,
                "contractor_name": contractor.contact_name or contractor.company_name,
                "accept_url": accept_url,
                "decline_url": decline_url,
                "reasons": candidate.reasons,
            },
        )
        if email.sent:
            result.emails_sent += 1
        elif not email.skipped:
            result.errors.append(f"Failed to send email to {contractor.company_name}: {email.error}")
        else:
            logger.info(f"Email to {contractor.company_name} skipped: {email.error}")

        notification = await self.notification_service.notify_job_posted(contractor, claim)
        if notification.sent:
            result.notifications_sent += 1
        elif not notification.skipped:
            result.errors.append(f"Failed to notify {contractor.company_name} in-app: {notification.error}")

        if contractor.phone:
            sms = await self.sms_service.send_job_alert(contractor.phone, claim, accept_url, decline_url)
            if sms.sent:
                result.sms_sent += 1
            elif not sms.skipped:
                result.errors.append(f"Failed to send SMS to {contractor.company_name}: {sms.error}")

        return email

    @staticmethod
    def _summary(
        match_request_id: UUID | None,
        claim: ClaimDetails,
        candidate: ScoredContractor,
        status: str,
        created: bool,
    ) -> dict[str, Any]:
        return {
            "id": str(match_request_id) if match_request_id else None,
            "project_id": str(claim.id),
            "contractor_id": str(candidate.contractor.id),
            "company_name": candidate.contractor.company_name,
            "status": status,
            "score": candidate.score,
            "created": created,
        }
