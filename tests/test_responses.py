"""Tests for contractor responses, estimates and single assignment"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from disastershield.config import settings
from disastershield.db.models import (
    ClaimStatus,
    EstimateStatus,
    MatchRequest,
    MatchRequestStatus,
    NotificationType,
)
from disastershield.schemas.claims import ClaimDetails
from disastershield.schemas.matching import InvitationAction, ResponseOutcome
from disastershield.services.email_notifications import EmailKind
from disastershield.services.repository import ClaimRepository
from disastershield.services.responses import ResponseService
from disastershield.services.workflow import MatchingWorkflowOrchestrator
from disastershield.utils.errors import ClaimNotFoundError, EstimateError


@pytest.fixture
def direct_assignment(monkeypatch):
    """Accept links assign immediately instead of waiting for an estimate"""
    monkeypatch.setattr(settings, "require_estimate_for_assignment", False)


@pytest.fixture
def invited(test_db, make_claim, make_contractor, email_service, token_service):
    """Claim with match requests sent to ``count`` contractors"""

    async def _invited(count: int = 3):
        claim = await make_claim()
        contractors = [await make_contractor() for _ in range(count)]
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        assert result.matched_contractors == count
        email_service.sent.clear()
        return claim, contractors

    return _invited


@pytest.fixture
def responses(test_db, email_service, token_service, clock) -> ResponseService:
    return ResponseService(test_db, email_service=email_service, token_service=token_service, clock=clock)


def accept_token(token_service, claim, contractor) -> str:
    return token_service.issue(claim.id, contractor.id, InvitationAction.ACCEPT)


def decline_token(token_service, claim, contractor) -> str:
    return token_service.issue(claim.id, contractor.id, InvitationAction.DECLINE)


async def match_request_statuses(db, claim_id) -> dict:
    requests = await ClaimRepository(db).get_match_requests(claim_id)
    return {mr.contractor_id: mr.status for mr in requests}


class TestAcceptLinks:
    """Test the accept link state machine"""

    @pytest.mark.asyncio
    async def test_accept_hands_off_to_estimate(self, test_db, invited, responses, token_service):
        claim, contractors = await invited(2)

        result = await responses.handle_accept(accept_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.SUCCESS
        assert result.next_step == "submit_estimate"
        assert result.redirect_url.endswith(f"/contractor/submit-estimate/{claim.id}")

        stored = await ClaimRepository(test_db).get_claim(claim.id)
        assert stored.assigned_contractor_id is None
        statuses = await match_request_statuses(test_db, claim.id)
        assert set(statuses.values()) == {MatchRequestStatus.SENT}

    @pytest.mark.asyncio
    async def test_direct_accept_assigns_contractor(
        self, test_db, invited, responses, token_service, email_service, direct_assignment
    ):
        claim, contractors = await invited(3)
        winner = contractors[0]

        result = await responses.handle_accept(accept_token(token_service, claim, winner))

        assert result.outcome == ResponseOutcome.SUCCESS
        assert result.next_step == "schedule_inspection"

        repository = ClaimRepository(test_db)
        stored = await repository.get_claim(claim.id)
        assert stored.assigned_contractor_id == winner.id
        assert stored.status == ClaimStatus.MATCHED

        statuses = await match_request_statuses(test_db, claim.id)
        assert statuses[winner.id] == MatchRequestStatus.ACCEPTED
        assert [s for cid, s in statuses.items() if cid != winner.id] == [MatchRequestStatus.DECLINED] * 2

        assert email_service.recipients(EmailKind.JOB_ACCEPTED) == [winner.email]
        assert sorted(email_service.recipients(EmailKind.JOB_FILLED)) == sorted(c.email for c in contractors[1:])
        homeowner = await repository.get_notifications(claim.user_id)
        assert NotificationType.JOB_ACCEPTED in [n.type for n in homeowner]

    @pytest.mark.asyncio
    async def test_accept_is_idempotent_for_winner(
        self, invited, responses, token_service, direct_assignment
    ):
        claim, contractors = await invited(2)
        token = accept_token(token_service, claim, contractors[0])

        first = await responses.handle_accept(token)
        second = await responses.handle_accept(token)

        assert first.outcome == ResponseOutcome.SUCCESS
        assert second.outcome == ResponseOutcome.SUCCESS
        assert second.message == "You have already been assigned this job"

    @pytest.mark.asyncio
    async def test_late_accept_observes_already_filled(
        self, test_db, invited, responses, token_service, direct_assignment
    ):
        claim, contractors = await invited(2)
        await responses.handle_accept(accept_token(token_service, claim, contractors[0]))

        result = await responses.handle_accept(accept_token(token_service, claim, contractors[1]))

        assert result.outcome == ResponseOutcome.ALREADY_FILLED
        stored = await ClaimRepository(test_db).get_claim(claim.id)
        assert stored.assigned_contractor_id == contractors[0].id

    @pytest.mark.asyncio
    async def test_assigned_claim_leaves_open_request_untouched(
        self, test_db, invited, responses, token_service
    ):
        claim, contractors = await invited(2)
        repository = ClaimRepository(test_db)
        await repository.finalize_assignment(claim.id, contractors[0].id)
        loser = await repository.get_match_request(claim.id, contractors[1].id)
        await repository.update_match_request_status(loser.id, MatchRequestStatus.SENT)

        result = await responses.handle_accept(accept_token(token_service, claim, contractors[1]))

        assert result.outcome == ResponseOutcome.ALREADY_FILLED
        loser = await repository.get_match_request(claim.id, contractors[1].id)
        assert loser.status == MatchRequestStatus.SENT

    @pytest.mark.asyncio
    async def test_expired_link_does_not_mutate(self, test_db, invited, responses, token_service, clock):
        """Accept link visited 49 hours after it was sent"""
        claim, contractors = await invited(1)
        token = accept_token(token_service, claim, contractors[0])
        clock.now = clock.now + timedelta(hours=49)

        result = await responses.handle_accept(token)

        assert result.outcome == ResponseOutcome.EXPIRED
        match_request = await ClaimRepository(test_db).get_match_request(claim.id, contractors[0].id)
        assert match_request.status == MatchRequestStatus.SENT
        assert match_request.responded_at is None

    @pytest.mark.asyncio
    async def test_garbage_token_is_expired(self, responses):
        result = await responses.handle_accept("not-a-real-token")

        assert result.outcome == ResponseOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_decline_token_on_accept_link_is_error(self, invited, responses, token_service):
        claim, contractors = await invited(1)

        result = await responses.handle_accept(decline_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.ERROR

    @pytest.mark.asyncio
    async def test_unknown_claim_is_error(self, responses, token_service):
        token = token_service.issue(uuid4(), uuid4(), InvitationAction.ACCEPT)

        result = await responses.handle_accept(token)

        assert result.outcome == ResponseOutcome.ERROR

    @pytest.mark.asyncio
    async def test_superseded_invitation_is_expired(self, test_db, invited, responses, token_service, email_service):
        claim, contractors = await invited(1)
        token = accept_token(token_service, claim, contractors[0])
        repository = ClaimRepository(test_db)
        await repository.delete_match_requests(claim.id)
        await test_db.commit()

        result = await responses.handle_accept(token)

        assert result.outcome == ResponseOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_expired_match_request_is_expired(self, test_db, invited, responses, token_service):
        claim, contractors = await invited(1)
        repository = ClaimRepository(test_db)
        match_request = await repository.get_match_request(claim.id, contractors[0].id)
        await repository.update_match_request_status(match_request.id, MatchRequestStatus.EXPIRED)

        result = await responses.handle_accept(accept_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_respond_dispatches_on_token_action(self, test_db, invited, responses, token_service):
        claim, contractors = await invited(1)

        result = await responses.respond(decline_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.DECLINED


class TestDecline:
    """Test declining invitations"""

    @pytest.mark.asyncio
    async def test_decline_records_response(self, test_db, invited, responses, token_service, email_service, clock):
        claim, contractors = await invited(2)

        result = await responses.handle_decline(decline_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.DECLINED
        repository = ClaimRepository(test_db)
        match_request = await repository.get_match_request(claim.id, contractors[0].id)
        assert match_request.status == MatchRequestStatus.DECLINED
        assert match_request.responded_at is not None

        other = await repository.get_match_request(claim.id, contractors[1].id)
        assert other.status == MatchRequestStatus.SENT

        homeowner = await repository.get_notifications(claim.user_id)
        assert NotificationType.JOB_DECLINED in [n.type for n in homeowner]
        assert email_service.recipients(EmailKind.CONTRACTOR_DECLINED) == ["pat@example.com"]

    @pytest.mark.asyncio
    async def test_decline_is_idempotent(self, invited, responses, token_service, email_service):
        claim, contractors = await invited(1)
        token = decline_token(token_service, claim, contractors[0])

        first = await responses.handle_decline(token)
        second = await responses.handle_decline(token)

        assert first.outcome == ResponseOutcome.DECLINED
        assert second.outcome == ResponseOutcome.DECLINED
        assert len(email_service.recipients(EmailKind.CONTRACTOR_DECLINED)) == 1

    @pytest.mark.asyncio
    async def test_accept_after_decline_reports_declined(self, test_db, invited, responses, token_service):
        claim, contractors = await invited(1)
        await responses.handle_decline(decline_token(token_service, claim, contractors[0]))

        result = await responses.handle_accept(accept_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.DECLINED
        stored = await ClaimRepository(test_db).get_claim(claim.id)
        assert stored.assigned_contractor_id is None

    @pytest.mark.asyncio
    async def test_cannot_decline_accepted_job(self, invited, responses, token_service, direct_assignment):
        claim, contractors = await invited(1)
        await responses.handle_accept(accept_token(token_service, claim, contractors[0]))

        result = await responses.handle_decline(decline_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.ERROR

    @pytest.mark.asyncio
    async def test_claim_deleted_during_decline_is_error(self, test_db, invited, responses, token_service, monkeypatch):
        claim, contractors = await invited(1)
        token = decline_token(token_service, claim, contractors[0])
        claim_id = claim.id

        async def delete_claim_instead(*args, **kwargs):
            await ClaimRepository(test_db).delete_claim(claim_id)
            return False

        monkeypatch.setattr(responses.repository, "update_match_request_status", delete_claim_instead)

        result = await responses.handle_decline(token)

        assert result.outcome == ResponseOutcome.ERROR
        assert result.message == "Claim not found"

    @pytest.mark.asyncio
    async def test_explicit_decline(self, test_db, invited, responses):
        claim, contractors = await invited(1)

        result = await responses.decline_match_request(claim.id, contractors[0].id)

        assert result.outcome == ResponseOutcome.DECLINED

    @pytest.mark.asyncio
    async def test_accept_token_on_decline_link_is_error(self, invited, responses, token_service):
        claim, contractors = await invited(1)

        result = await responses.handle_decline(accept_token(token_service, claim, contractors[0]))

        assert result.outcome == ResponseOutcome.ERROR


class TestConcurrentAcceptance:
    """Exactly one of many simultaneous acceptances wins"""

    @pytest.mark.asyncio
    async def test_concurrent_accepts_assign_once(
        self, session_factory, invited, email_service, token_service, clock, direct_assignment
    ):
        claim, contractors = await invited(3)
        tokens = [accept_token(token_service, claim, contractor) for contractor in contractors]

        async def attempt(token):
            async with session_factory() as session:
                service = ResponseService(
                    session, email_service=email_service, token_service=token_service, clock=clock
                )
                return await service.handle_accept(token)

        results = await asyncio.gather(*(attempt(token) for token in tokens))

        outcomes = [result.outcome for result in results]
        assert outcomes.count(ResponseOutcome.SUCCESS) == 1
        assert outcomes.count(ResponseOutcome.ALREADY_FILLED) == 2
        winner_id = results[outcomes.index(ResponseOutcome.SUCCESS)].contractor_id

        async with session_factory() as session:
            stored = await ClaimRepository(session).get_claim(claim.id)
            assert stored.assigned_contractor_id == winner_id

            accepted = await session.execute(
                select(func.count())
                .select_from(MatchRequest)
                .where(
                    MatchRequest.project_id == claim.id,
                    MatchRequest.status == MatchRequestStatus.ACCEPTED,
                )
            )
            assert accepted.scalar_one() == 1

            statuses = await match_request_statuses(session, claim.id)
            assert statuses[winner_id] == MatchRequestStatus.ACCEPTED
            assert sum(1 for s in statuses.values() if s == MatchRequestStatus.DECLINED) == 2

    @pytest.mark.asyncio
    async def test_concurrent_estimate_acceptance_assigns_once(
        self, test_db, session_factory, invited, responses, email_service, token_service, clock
    ):
        claim, contractors = await invited(2)
        estimates = [
            await responses.submit_estimate(claim.id, contractor.id, 250_000 + i * 1000)
            for i, contractor in enumerate(contractors)
        ]

        async def attempt(estimate_id):
            async with session_factory() as session:
                service = ResponseService(
                    session, email_service=email_service, token_service=token_service, clock=clock
                )
                return await service.accept_estimate(estimate_id)

        results = await asyncio.gather(*(attempt(estimate.id) for estimate in estimates))

        outcomes = sorted(result.outcome.value for result in results)
        assert outcomes == ["already_filled", "success"]

        async with session_factory() as session:
            repository = ClaimRepository(session)
            stored = await repository.get_claim(claim.id)
            assert stored.assigned_contractor_id in {c.id for c in contractors}
            accepted = await repository.get_estimates(claim.id, EstimateStatus.ACCEPTED)
            assert [e.contractor_id for e in accepted] == [stored.assigned_contractor_id]


class TestEstimates:
    """Test estimate submission and homeowner review"""

    @pytest.mark.asyncio
    async def test_submit_estimate(self, test_db, invited, responses):
        claim, contractors = await invited(1)

        estimate = await responses.submit_estimate(claim.id, contractors[0].id, 450_000, breakdown="Drying, 3 days")

        assert estimate.status == EstimateStatus.PENDING
        assert estimate.estimate_amount == 450_000
        homeowner = await ClaimRepository(test_db).get_notifications(claim.user_id)
        assert NotificationType.ESTIMATE_RECEIVED in [n.type for n in homeowner]

    @pytest.mark.asyncio
    async def test_resubmission_revises_pending_estimate(self, test_db, invited, responses):
        claim, contractors = await invited(1)

        first = await responses.submit_estimate(claim.id, contractors[0].id, 450_000)
        second = await responses.submit_estimate(claim.id, contractors[0].id, 400_000, notes="Revised")

        assert second.id == first.id
        estimates = await ClaimRepository(test_db).get_estimates(claim.id)
        assert [e.estimate_amount for e in estimates] == [400_000]

    @pytest.mark.asyncio
    async def test_estimate_below_minimum_is_rejected(self, invited, responses):
        claim, contractors = await invited(1)

        with pytest.raises(EstimateError):
            await responses.submit_estimate(claim.id, contractors[0].id, 5_000)

    @pytest.mark.asyncio
    async def test_estimate_requires_open_invitation(self, invited, responses, make_contractor):
        claim, _ = await invited(1)
        outsider = await make_contractor()

        with pytest.raises(EstimateError):
            await responses.submit_estimate(claim.id, outsider.id, 450_000)

    @pytest.mark.asyncio
    async def test_estimate_for_unknown_claim(self, responses):
        with pytest.raises(ClaimNotFoundError):
            await responses.submit_estimate(uuid4(), uuid4(), 450_000)

    @pytest.mark.asyncio
    async def test_accept_estimate_assigns_and_rejects_others(self, test_db, invited, responses, email_service):
        claim, contractors = await invited(3)
        chosen = await responses.submit_estimate(claim.id, contractors[0].id, 300_000)
        other = await responses.submit_estimate(claim.id, contractors[1].id, 350_000)

        result = await responses.accept_estimate(chosen.id)

        assert result.outcome == ResponseOutcome.SUCCESS
        repository = ClaimRepository(test_db)
        stored = await repository.get_claim(claim.id)
        assert stored.assigned_contractor_id == contractors[0].id
        assert (await repository.get_estimate(chosen.id)).status == EstimateStatus.ACCEPTED
        assert (await repository.get_estimate(other.id)).status == EstimateStatus.REJECTED

        statuses = await match_request_statuses(test_db, claim.id)
        assert statuses[contractors[0].id] == MatchRequestStatus.ACCEPTED
        assert statuses[contractors[1].id] == MatchRequestStatus.DECLINED
        assert statuses[contractors[2].id] == MatchRequestStatus.DECLINED

        winner_notes = await repository.get_notifications(contractors[0].user_id)
        assert NotificationType.ESTIMATE_ACCEPTED in [n.type for n in winner_notes]
        _, _, payload = next(s for s in email_service.sent if s[0] == EmailKind.JOB_ACCEPTED)
        assert payload["amount_cents"] == 300_000

    @pytest.mark.asyncio
    async def test_rejected_estimate_reports_already_filled(self, invited, responses):
        claim, contractors = await invited(2)
        chosen = await responses.submit_estimate(claim.id, contractors[0].id, 300_000)
        other = await responses.submit_estimate(claim.id, contractors[1].id, 350_000)
        await responses.accept_estimate(chosen.id)

        result = await responses.accept_estimate(other.id)

        assert result.outcome == ResponseOutcome.ALREADY_FILLED

    @pytest.mark.asyncio
    async def test_accepting_twice_is_success(self, invited, responses):
        claim, contractors = await invited(1)
        estimate = await responses.submit_estimate(claim.id, contractors[0].id, 300_000)

        await responses.accept_estimate(estimate.id)
        result = await responses.accept_estimate(estimate.id)

        assert result.outcome == ResponseOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_failed_assignment_rolls_back_everything(self, test_db, invited, responses):
        """Winner's invitation closed after submitting; nothing from the assignment sticks"""
        claim, contractors = await invited(2)
        # The rollback expires loaded instances, so keep plain ids
        claim_id, winner_id, sibling_id = claim.id, contractors[0].id, contractors[1].id
        chosen_id = (await responses.submit_estimate(claim_id, winner_id, 300_000)).id
        other_id = (await responses.submit_estimate(claim_id, sibling_id, 350_000)).id
        repository = ClaimRepository(test_db)
        match_request = await repository.get_match_request(claim_id, winner_id)
        await repository.update_match_request_status(match_request.id, MatchRequestStatus.DECLINED)

        result = await responses.accept_estimate(chosen_id)

        assert result.outcome == ResponseOutcome.ERROR
        stored = await repository.get_claim(claim_id)
        assert stored.assigned_contractor_id is None
        assert (await repository.get_estimate(chosen_id)).status == EstimateStatus.PENDING
        assert (await repository.get_estimate(other_id)).status == EstimateStatus.PENDING
        sibling = await repository.get_match_request(claim_id, sibling_id)
        assert sibling.status == MatchRequestStatus.SENT

    @pytest.mark.asyncio
    async def test_reject_estimate(self, test_db, invited, responses):
        claim, contractors = await invited(1)
        estimate = await responses.submit_estimate(claim.id, contractors[0].id, 300_000)

        result = await responses.reject_estimate(estimate.id)
        again = await responses.reject_estimate(estimate.id)

        assert result.outcome == ResponseOutcome.SUCCESS
        assert again.outcome == ResponseOutcome.ERROR
        assert (await ClaimRepository(test_db).get_estimate(estimate.id)).status == EstimateStatus.REJECTED

    @pytest.mark.asyncio
    async def test_unknown_estimate(self, responses):
        result = await responses.accept_estimate(uuid4())

        assert result.outcome == ResponseOutcome.ERROR
