"""Contractor responses to invitations and homeowner review of estimates"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.config import settings
from disastershield.db.models import (
    ContractorEstimate,
    EstimateStatus,
    MatchRequest,
    MatchRequestStatus,
)
from disastershield.schemas.claims import ClaimDetails, ContractorProfile
from disastershield.schemas.matching import (
    InvitationAction,
    InvitationTokenPayload,
    ResponseOutcome,
    ResponseResult,
)
from disastershield.services.email_notifications import EmailKind, EmailNotificationService
from disastershield.services.notifications import NotificationService
from disastershield.services.repository import ClaimRepository
from disastershield.services.sms import TwilioService
from disastershield.services.tokens import InvitationTokenService
from disastershield.utils.clock import Clock, utc_now
from disastershield.utils.errors import AssignmentError, ClaimNotFoundError, EstimateError

logger = logging.getLogger(__name__)

EXPIRED_LINK_MESSAGE = "This link is invalid or has expired"
ALREADY_FILLED_MESSAGE = "This job has already been filled by another contractor"


class ResponseService:
    """
    Drives the match request state machine: sent -> accepted | declined | expired.

    Token and race conditions are reported through ResponseResult outcomes,
    never raised. The claim's assigned contractor is only ever set through
    ClaimRepository.finalize_assignment.
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

    # Invitation links

    async def respond(self, token: str) -> ResponseResult:
        """Dispatch a token to the accept or decline path according to its action"""
        payload = self.token_service.verify(token)
        if payload is None:
            return ResponseResult(outcome=ResponseOutcome.EXPIRED, message=EXPIRED_LINK_MESSAGE)

        if payload.action == InvitationAction.ACCEPT:
            return await self._accept(payload)
        return await self._decline(payload.claim_id, payload.contractor_id)

    async def handle_accept(self, token: str) -> ResponseResult:
        payload = self._verify(token, InvitationAction.ACCEPT)
        if isinstance(payload, ResponseResult):
            return payload
        return await self._accept(payload)

    async def handle_decline(self, token: str) -> ResponseResult:
        payload = self._verify(token, InvitationAction.DECLINE)
        if isinstance(payload, ResponseResult):
            return payload
        return await self._decline(payload.claim_id, payload.contractor_id)

    async def decline_match_request(self, claim_id: UUID, contractor_id: UUID) -> ResponseResult:
        """Explicit decline from the contractor dashboard"""
        return await self._decline(claim_id, contractor_id)

    def _verify(
        self,
        token: str,
        action: InvitationAction,
    ) -> InvitationTokenPayload | ResponseResult:
        payload = self.token_service.verify(token)
        if payload is None:
            return ResponseResult(outcome=ResponseOutcome.EXPIRED, message=EXPIRED_LINK_MESSAGE)
        if payload.action != action:
            logger.warning(
                f"Token for {payload.action.value} used on {action.value} link "
                f"(claim {payload.claim_id}, contractor {payload.contractor_id})"
            )
            return ResponseResult(
                outcome=ResponseOutcome.ERROR,
                message="This link is not valid for this action",
                claim_id=payload.claim_id,
                contractor_id=payload.contractor_id,
            )
        return payload

    def _settled(
        self,
        match_request: MatchRequest | None,
        assigned_contractor_id: UUID | None,
        claim_id: UUID,
        contractor_id: UUID,
    ) -> ResponseResult | None:
        """Outcome for a match request that can no longer change, else None"""
        ids = {"claim_id": claim_id, "contractor_id": contractor_id}

        if match_request is None:
            # Removed by a re-match; the invitation was superseded
            return ResponseResult(
                outcome=ResponseOutcome.EXPIRED,
                message="This invitation is no longer active",
                **ids,
            )
        if match_request.status == MatchRequestStatus.DECLINED:
            if assigned_contractor_id is not None and assigned_contractor_id != contractor_id:
                # Closed when a sibling won the assignment
                return ResponseResult(
                    outcome=ResponseOutcome.ALREADY_FILLED,
                    message=ALREADY_FILLED_MESSAGE,
                    **ids,
                )
            return ResponseResult(
                outcome=ResponseOutcome.DECLINED,
                message="You have already declined this job",
                **ids,
            )
        if match_request.status == MatchRequestStatus.EXPIRED:
            return ResponseResult(
                outcome=ResponseOutcome.EXPIRED,
                message="This invitation has expired",
                **ids,
            )
        if match_request.status == MatchRequestStatus.ACCEPTED:
            if assigned_contractor_id == contractor_id:
                return ResponseResult(
                    outcome=ResponseOutcome.SUCCESS,
                    message="You have already been assigned this job",
                    **ids,
                )
            return ResponseResult(
                outcome=ResponseOutcome.ALREADY_FILLED,
                message=ALREADY_FILLED_MESSAGE,
                **ids,
            )
        return None

    async def _accept(self, payload: InvitationTokenPayload) -> ResponseResult:
        claim_id, contractor_id = payload.claim_id, payload.contractor_id
        ids = {"claim_id": claim_id, "contractor_id": contractor_id}

        claim = await self.repository.get_claim(claim_id)
        if not claim:
            return ResponseResult(outcome=ResponseOutcome.ERROR, message="Claim not found", **ids)

        match_request = await self.repository.get_match_request(claim_id, contractor_id)
        settled = self._settled(match_request, claim.assigned_contractor_id, claim_id, contractor_id)
        if settled:
            return settled

        if claim.assigned_contractor_id is not None:
            if claim.assigned_contractor_id == contractor_id:
                return ResponseResult(
                    outcome=ResponseOutcome.SUCCESS,
                    message="You have already been assigned this job",
                    **ids,
                )
            # Left as sent; the invitation lapses on its own
            return ResponseResult(
                outcome=ResponseOutcome.ALREADY_FILLED,
                message=ALREADY_FILLED_MESSAGE,
                **ids,
            )

        if settings.require_estimate_for_assignment:
            logger.info(f"Contractor {contractor_id} accepted claim {claim_id}; awaiting estimate")
            return ResponseResult(
                outcome=ResponseOutcome.SUCCESS,
                message="Job accepted. Submit your estimate so the homeowner can confirm.",
                next_step="submit_estimate",
                redirect_url=f"{settings.app_base_url.rstrip('/')}/contractor/submit-estimate/{claim_id}",
                **ids,
            )

        return await self._assign(claim_id, contractor_id)

    async def _decline(self, claim_id: UUID, contractor_id: UUID) -> ResponseResult:
        ids = {"claim_id": claim_id, "contractor_id": contractor_id}

        claim = await self.repository.get_claim(claim_id)
        if not claim:
            return ResponseResult(outcome=ResponseOutcome.ERROR, message="Claim not found", **ids)

        match_request = await self.repository.get_match_request(claim_id, contractor_id)
        if match_request is not None and match_request.status == MatchRequestStatus.ACCEPTED:
            return ResponseResult(
                outcome=ResponseOutcome.ERROR,
                message="This job was already accepted and cannot be declined here",
                **ids,
            )
        settled = self._settled(match_request, claim.assigned_contractor_id, claim_id, contractor_id)
        if settled:
            return settled

        updated = await self.repository.update_match_request_status(
            match_request.id,
            MatchRequestStatus.DECLINED,
            responded_at=self.clock(),
            expected_status=MatchRequestStatus.SENT,
        )
        if not updated:
            # Changed underneath us; report whatever it became
            claim = await self.repository.get_claim(claim_id)
            if not claim:
                return ResponseResult(outcome=ResponseOutcome.ERROR, message="Claim not found", **ids)
            match_request = await self.repository.get_match_request(claim_id, contractor_id)
            settled = self._settled(match_request, claim.assigned_contractor_id, claim_id, contractor_id)
            return settled or ResponseResult(
                outcome=ResponseOutcome.ERROR,
                message="Could not record your response",
                **ids,
            )

        logger.info(f"Contractor {contractor_id} declined claim {claim_id}")
        await self._notify_declined(ClaimDetails.model_validate(claim), contractor_id)

        return ResponseResult(
            outcome=ResponseOutcome.DECLINED,
            message="You have declined this job. Thanks for letting us know.",
            **ids,
        )

    async def _notify_declined(self, claim: ClaimDetails, contractor_id: UUID) -> None:
        contractor = await self.repository.get_contractor(contractor_id)
        if not contractor:
            return
        profile = ContractorProfile.model_validate(contractor)

        notification = await self.notification_service.notify_job_declined(claim, profile)
        email = await self.email_service.send(
            EmailKind.CONTRACTOR_DECLINED,
            claim.contact_email,
            {"claim": claim, "company_name": profile.company_name},
        )
        for delivery in (notification, email):
            if not delivery.sent and not delivery.skipped:
                logger.warning(f"Decline notice for claim {claim.id} not delivered via {delivery.channel}: {delivery.error}")

    # Assignment

    async def _assign(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        estimate: ContractorEstimate | None = None,
    ) -> ResponseResult:
        ids = {"claim_id": claim_id, "contractor_id": contractor_id}
        estimate_id = estimate.id if estimate else None
        amount_cents = estimate.estimate_amount if estimate else None

        try:
            won = await self.repository.finalize_assignment(
                claim_id,
                contractor_id,
                estimate_id=estimate_id,
                responded_at=self.clock(),
            )
        except AssignmentError as e:
            logger.error(f"Assignment of contractor {contractor_id} to claim {claim_id} rolled back: {e}")
            return ResponseResult(outcome=ResponseOutcome.ERROR, message=str(e), **ids)

        if not won:
            return ResponseResult(
                outcome=ResponseOutcome.ALREADY_FILLED,
                message=ALREADY_FILLED_MESSAGE,
                **ids,
            )

        await self._notify_assigned(claim_id, contractor_id, amount_cents)

        return ResponseResult(
            outcome=ResponseOutcome.SUCCESS,
            message="Contractor assigned to the job",
            next_step="schedule_inspection",
            **ids,
        )

    async def _notify_assigned(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        amount_cents: int | None,
    ) -> None:
        """Winner confirmation, homeowner update and job-filled notices to the rest"""
        claim = ClaimDetails.model_validate(await self.repository.get_claim(claim_id))
        match_requests = await self.repository.get_match_requests(claim_id)
        contractors = {
            contractor.id: ContractorProfile.model_validate(contractor)
            for contractor in await self.repository.get_contractors(
                [mr.contractor_id for mr in match_requests] + [contractor_id]
            )
        }

        winner = contractors.get(contractor_id)
        deliveries = []
        if winner:
            deliveries.append(await self.notification_service.notify_job_accepted(claim, winner))
            if amount_cents is not None:
                deliveries.append(
                    await self.notification_service.notify_estimate_accepted(winner, claim, amount_cents)
                )
            deliveries.append(
                await self.email_service.send(
                    EmailKind.JOB_ACCEPTED,
                    winner.email,
                    {
                        "claim": claim,
                        "contractor_name": winner.contact_name or winner.company_name,
                        "amount_cents": amount_cents,
                    },
                )
            )
            if winner.phone:
                deliveries.append(await self.sms_service.send_job_confirmed(winner.phone, claim))

        for mr in match_requests:
            other = contractors.get(mr.contractor_id)
            if mr.contractor_id == contractor_id or other is None:
                continue
            deliveries.append(
                await self.email_service.send(
                    EmailKind.JOB_FILLED,
                    other.email,
                    {"claim": claim, "contractor_name": other.contact_name or other.company_name},
                )
            )
            if other.phone:
                deliveries.append(await self.sms_service.send_job_filled(other.phone, claim))

        failed = [delivery for delivery in deliveries if not delivery.sent and not delivery.skipped]
        if failed:
            logger.warning(f"{len(failed)} assignment notices for claim {claim_id} were not delivered")

    # Estimates

    async def submit_estimate(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        amount_cents: int,
        breakdown: str | None = None,
        notes: str | None = None,
    ) -> ContractorEstimate:
        """Create or revise a contractor's pending estimate for a claim"""
        claim = await self.repository.get_claim(claim_id)
        if not claim:
            raise ClaimNotFoundError(claim_id)

        if claim.assigned_contractor_id is not None:
            raise EstimateError("This job has already been assigned")

        match_request = await self.repository.get_match_request(claim_id, contractor_id)
        if match_request is None or match_request.status in (
            MatchRequestStatus.DECLINED,
            MatchRequestStatus.EXPIRED,
        ):
            raise EstimateError("Contractor has no open invitation for this claim")

        if amount_cents < settings.minimum_estimate_cents:
            raise EstimateError(
                f"Estimate must be at least ${settings.minimum_estimate_cents / 100:,.2f}"
            )

        estimate = await self.repository.get_estimate_for_pair(claim_id, contractor_id)
        if estimate is not None and estimate.status != EstimateStatus.PENDING:
            raise EstimateError(f"Estimate already {estimate.status.value}")

        if estimate is None:
            estimate = ContractorEstimate(
                project_id=claim_id,
                contractor_id=contractor_id,
                status=EstimateStatus.PENDING,
            )
        estimate.estimate_amount = amount_cents
        estimate.estimate_breakdown = breakdown
        estimate.notes = notes
        estimate = await self.repository.save_estimate(estimate)

        logger.info(f"Estimate {estimate.id} of {amount_cents} cents submitted for claim {claim_id}")

        contractor = await self.repository.get_contractor(contractor_id)
        if contractor:
            await self.notification_service.notify_estimate_received(
                ClaimDetails.model_validate(claim),
                ContractorProfile.model_validate(contractor),
                amount_cents,
            )

        return estimate

    async def accept_estimate(self, estimate_id: UUID) -> ResponseResult:
        """Homeowner picks an estimate; assigns its contractor atomically"""
        estimate = await self.repository.get_estimate(estimate_id)
        if not estimate:
            return ResponseResult(outcome=ResponseOutcome.ERROR, message="Estimate not found")

        ids = {"claim_id": estimate.project_id, "contractor_id": estimate.contractor_id}

        if estimate.status == EstimateStatus.ACCEPTED:
            return ResponseResult(
                outcome=ResponseOutcome.SUCCESS,
                message="Estimate already accepted",
                **ids,
            )
        if estimate.status == EstimateStatus.REJECTED:
            claim = await self.repository.get_claim(estimate.project_id)
            if claim and claim.assigned_contractor_id is not None:
                return ResponseResult(
                    outcome=ResponseOutcome.ALREADY_FILLED,
                    message=ALREADY_FILLED_MESSAGE,
                    **ids,
                )
            return ResponseResult(outcome=ResponseOutcome.ERROR, message="Estimate was rejected", **ids)

        return await self._assign(estimate.project_id, estimate.contractor_id, estimate)

    async def reject_estimate(self, estimate_id: UUID) -> ResponseResult:
        estimate = await self.repository.get_estimate(estimate_id)
        if not estimate:
            return ResponseResult(outcome=ResponseOutcome.ERROR, message="Estimate not found")

        ids = {"claim_id": estimate.project_id, "contractor_id": estimate.contractor_id}
        if not await self.repository.set_estimate_status(estimate_id, EstimateStatus.REJECTED):
            return ResponseResult(
                outcome=ResponseOutcome.ERROR,
                message=f"Estimate is already {estimate.status.value}",
                **ids,
            )

        logger.info(f"Estimate {estimate_id} rejected")
        return ResponseResult(outcome=ResponseOutcome.SUCCESS, message="Estimate rejected", **ids)
