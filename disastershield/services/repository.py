"""Persistence operations for claims, contractors and match requests"""

import logging
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.db.models import (
    CapacityStatus,
    Claim,
    ClaimStatus,
    Contractor,
    ContractorEstimate,
    EstimateStatus,
    MatchRequest,
    MatchRequestStatus,
    Notification,
    PaymentOrder,
    PaymentStatus,
)
from disastershield.schemas.claims import ClaimCreate, ContractorCreate
from disastershield.utils.clock import utc_now
from disastershield.utils.errors import AssignmentError, DuplicateMatchRequestError

logger = logging.getLogger(__name__)

OPEN_CLAIM_STATUSES = (
    ClaimStatus.SUBMITTED,
    ClaimStatus.MATCHED,
    ClaimStatus.SCHEDULED,
    ClaimStatus.ONSITE,
)


class ClaimRepository:
    """Database access for the matching workflow.

    Conditional updates (``assign_contractor_if_unassigned`` and the status
    transitions guarded by ``expected_status``) are single UPDATE statements
    so concurrent responders cannot both succeed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # Claims

    async def create_claim(self, claim_data: ClaimCreate) -> Claim:
        claim = Claim(
            id=uuid4(),
            status=ClaimStatus.SUBMITTED,
            payment_status=PaymentStatus.UNPAID,
            **claim_data.model_dump(),
        )
        self.db.add(claim)
        await self.db.commit()
        await self.db.refresh(claim)
        logger.info(f"Created claim {claim.id} ({claim.peril.value} in {claim.city}, {claim.state})")
        return claim

    async def get_claim(self, claim_id: UUID) -> Claim | None:
        result = await self.db.execute(
            select(Claim)
            .where(Claim.id == claim_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_claim_status(self, claim_id: UUID, status: ClaimStatus) -> bool:
        result = await self.db.execute(
            update(Claim)
            .where(Claim.id == claim_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def reset_claim_for_rematch(self, claim_id: UUID) -> int | None:
        """
        Put an unassigned claim back to ``submitted`` and drop its match requests.

        The conditional claim update runs first and holds the claim row until
        the caller commits, so an assignment committed beforehand makes it miss
        and nothing is deleted. Returns the number of match requests removed,
        or None if the claim is assigned or gone. Does not commit.
        """
        result = await self.db.execute(
            update(Claim)
            .where(and_(Claim.id == claim_id, Claim.assigned_contractor_id.is_(None)))
            .values(status=ClaimStatus.SUBMITTED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        return await self.delete_match_requests(claim_id)

    async def delete_claim(self, claim_id: UUID) -> bool:
        """Whole-claim deletion, including its match requests, estimates and orders"""
        claim = await self.get_claim(claim_id)
        if not claim:
            return False

        for model in (MatchRequest, ContractorEstimate, PaymentOrder):
            await self.db.execute(delete(model).where(model.project_id == claim_id))
        await self.db.execute(delete(Claim).where(Claim.id == claim_id))
        await self.db.commit()
        logger.info(f"Deleted claim {claim_id}")
        return True

    # Contractors

    async def create_contractor(self, contractor_data: ContractorCreate) -> Contractor:
        data = contractor_data.model_dump()
        data["trades"] = [trade.value for trade in contractor_data.trades]
        contractor = Contractor(id=uuid4(), **data)
        self.db.add(contractor)
        await self.db.commit()
        await self.db.refresh(contractor)
        return contractor

    async def get_contractor(self, contractor_id: UUID) -> Contractor | None:
        result = await self.db.execute(select(Contractor).where(Contractor.id == contractor_id))
        return result.scalar_one_or_none()

    async def get_contractors(self, contractor_ids: list[UUID]) -> list[Contractor]:
        if not contractor_ids:
            return []
        result = await self.db.execute(
            select(Contractor).where(Contractor.id.in_(contractor_ids))
        )
        return list(result.scalars().all())

    async def get_active_contractors(self) -> list[Contractor]:
        result = await self.db.execute(
            select(Contractor)
            .where(Contractor.capacity == CapacityStatus.ACTIVE)
            .order_by(Contractor.created_at, Contractor.id)
        )
        return list(result.scalars().all())

    async def get_open_workloads(self) -> dict[UUID, int]:
        """Number of open assigned claims per contractor"""
        result = await self.db.execute(
            select(Claim.assigned_contractor_id, func.count())
            .where(
                and_(
                    Claim.assigned_contractor_id.is_not(None),
                    Claim.status.in_(OPEN_CLAIM_STATUSES),
                )
            )
            .group_by(Claim.assigned_contractor_id)
        )
        return {contractor_id: count for contractor_id, count in result.all()}

    # Match requests

    async def create_match_request(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        score: float | None = None,
    ) -> MatchRequest:
        """Insert a ``sent`` match request; raises DuplicateMatchRequestError for an existing pair"""
        match_request = MatchRequest(
            id=uuid4(),
            project_id=claim_id,
            contractor_id=contractor_id,
            status=MatchRequestStatus.SENT,
            score=score,
        )
        self.db.add(match_request)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateMatchRequestError(claim_id, contractor_id) from e

        await self.db.refresh(match_request)
        return match_request

    async def get_match_request(
        self,
        claim_id: UUID,
        contractor_id: UUID,
    ) -> MatchRequest | None:
        result = await self.db.execute(
            select(MatchRequest)
            .where(
                and_(
                    MatchRequest.project_id == claim_id,
                    MatchRequest.contractor_id == contractor_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_match_requests(self, claim_id: UUID) -> list[MatchRequest]:
        result = await self.db.execute(
            select(MatchRequest)
            .where(MatchRequest.project_id == claim_id)
            .order_by(MatchRequest.created_at, MatchRequest.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def update_match_request_status(
        self,
        match_request_id: UUID,
        status: MatchRequestStatus,
        responded_at: datetime | None = None,
        expected_status: MatchRequestStatus | None = None,
    ) -> bool:
        """Set a match request's status; with ``expected_status`` only if it still holds"""
        conditions = [MatchRequest.id == match_request_id]
        if expected_status is not None:
            conditions.append(MatchRequest.status == expected_status)

        result = await self.db.execute(
            update(MatchRequest)
            .where(and_(*conditions))
            .values(status=status, responded_at=responded_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def delete_match_requests(self, claim_id: UUID) -> int:
        """Remove a claim's match requests while it is still unassigned"""
        unassigned = (
            select(Claim.id)
            .where(and_(Claim.id == claim_id, Claim.assigned_contractor_id.is_(None)))
            .exists()
        )
        result = await self.db.execute(
            delete(MatchRequest)
            .where(and_(MatchRequest.project_id == claim_id, unassigned))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # Assignment

    async def assign_contractor_if_unassigned(self, claim_id: UUID, contractor_id: UUID) -> bool:
        """Conditional claim update; True only for the caller that won the race.

        Runs inside the caller's transaction and does not commit.
        """
        result = await self.db.execute(
            update(Claim)
            .where(and_(Claim.id == claim_id, Claim.assigned_contractor_id.is_(None)))
            .values(assigned_contractor_id=contractor_id, status=ClaimStatus.MATCHED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finalize_assignment(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        estimate_id: UUID | None = None,
        responded_at: datetime | None = None,
    ) -> bool:
        """
        Assign a contractor to a claim in one transaction.

        Sets the claim's assigned contractor (only if still unassigned), accepts
        the chosen estimate and rejects the others, accepts the winner's match
        request and declines its open siblings. Returns False without changing
        anything if another contractor was already assigned. Any other failure
        rolls everything back and raises AssignmentError.
        """
        responded_at = responded_at or utc_now()

        try:
            if not await self.assign_contractor_if_unassigned(claim_id, contractor_id):
                await self.db.rollback()
                logger.info(f"Claim {claim_id} already assigned; contractor {contractor_id} lost the race")
                return False

            if estimate_id is not None:
                accepted = await self.db.execute(
                    update(ContractorEstimate)
                    .where(
                        and_(
                            ContractorEstimate.id == estimate_id,
                            ContractorEstimate.project_id == claim_id,
                            ContractorEstimate.contractor_id == contractor_id,
                            ContractorEstimate.status == EstimateStatus.PENDING,
                        )
                    )
                    .values(status=EstimateStatus.ACCEPTED)
                    .execution_options(synchronize_session=False)
                )
                if accepted.rowcount != 1:
                    raise AssignmentError(f"Estimate {estimate_id} is not pending for this claim")

            await self.db.execute(
                update(ContractorEstimate)
                .where(
                    and_(
                        ContractorEstimate.project_id == claim_id,
                        ContractorEstimate.contractor_id != contractor_id,
                        ContractorEstimate.status == EstimateStatus.PENDING,
                    )
                )
                .values(status=EstimateStatus.REJECTED)
                .execution_options(synchronize_session=False)
            )

            winner = await self.db.execute(
                update(MatchRequest)
                .where(
                    and_(
                        MatchRequest.project_id == claim_id,
                        MatchRequest.contractor_id == contractor_id,
                        MatchRequest.status == MatchRequestStatus.SENT,
                    )
                )
                .values(status=MatchRequestStatus.ACCEPTED, responded_at=responded_at)
                .execution_options(synchronize_session=False)
            )
            if winner.rowcount != 1:
                raise AssignmentError(
                    f"No open match request for contractor {contractor_id} on claim {claim_id}"
                )

            await self.db.execute(
                update(MatchRequest)
                .where(
                    and_(
                        MatchRequest.project_id == claim_id,
                        MatchRequest.contractor_id != contractor_id,
                        MatchRequest.status == MatchRequestStatus.SENT,
                    )
                )
                .values(status=MatchRequestStatus.DECLINED, responded_at=responded_at)
                .execution_options(synchronize_session=False)
            )

            await self.db.commit()

        except AssignmentError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Assignment transaction failed for claim {claim_id}: {e}", exc_info=True)
            raise AssignmentError(f"Assignment failed for claim {claim_id}") from e

        logger.info(f"Claim {claim_id} assigned to contractor {contractor_id}")
        return True

    # Estimates

    async def get_estimate(self, estimate_id: UUID) -> ContractorEstimate | None:
        result = await self.db.execute(
            select(ContractorEstimate)
            .where(ContractorEstimate.id == estimate_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_estimate_for_pair(
        self,
        claim_id: UUID,
        contractor_id: UUID,
    ) -> ContractorEstimate | None:
        result = await self.db.execute(
            select(ContractorEstimate).where(
                and_(
                    ContractorEstimate.project_id == claim_id,
                    ContractorEstimate.contractor_id == contractor_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_estimates(
        self,
        claim_id: UUID,
        status: EstimateStatus | None = None,
    ) -> list[ContractorEstimate]:
        stmt = select(ContractorEstimate).where(ContractorEstimate.project_id == claim_id)
        if status is not None:
            stmt = stmt.where(ContractorEstimate.status == status)
        result = await self.db.execute(
            stmt.order_by(ContractorEstimate.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def save_estimate(self, estimate: ContractorEstimate) -> ContractorEstimate:
        self.db.add(estimate)
        await self.db.commit()
        await self.db.refresh(estimate)
        return estimate

    async def set_estimate_status(
        self,
        estimate_id: UUID,
        status: EstimateStatus,
        expected_status: EstimateStatus = EstimateStatus.PENDING,
    ) -> bool:
        result = await self.db.execute(
            update(ContractorEstimate)
            .where(
                and_(
                    ContractorEstimate.id == estimate_id,
                    ContractorEstimate.status == expected_status,
                )
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    # Notifications

    async def add_notification(self, notification: Notification) -> Notification:
        self.db.add(notification)
        await self.db.commit()
        return notification

    async def get_notifications(self, user_id: UUID) -> list[Notification]:
        result = await self.db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())

    # Payments

    async def get_payment_order_by_session(self, checkout_session_id: str) -> PaymentOrder | None:
        result = await self.db.execute(
            select(PaymentOrder).where(PaymentOrder.checkout_session_id == checkout_session_id)
        )
        return result.scalar_one_or_none()

    async def add_payment_order(self, order: PaymentOrder) -> PaymentOrder:
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)
        return order

    async def get_completed_products(self, claim_id: UUID) -> set[str]:
        result = await self.db.execute(
            select(PaymentOrder.product_id).where(
                and_(
                    PaymentOrder.project_id == claim_id,
                    PaymentOrder.status == "completed",
                )
            )
        )
        return {product_id for (product_id,) in result.all()}

    async def mark_claim_paid(self, claim_id: UUID) -> bool:
        result = await self.db.execute(
            update(Claim)
            .where(and_(Claim.id == claim_id, Claim.payment_status == PaymentStatus.UNPAID))
            .values(payment_status=PaymentStatus.PAID)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0
