"""Tests for the invitation workflow orchestrator"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from disastershield.db.models import (
    CapacityStatus,
    ClaimStatus,
    MatchRequest,
    MatchRequestStatus,
    Notification,
    NotificationType,
    Trade,
)
from disastershield.schemas.claims import ClaimDetails
from disastershield.schemas.matching import InvitationAction
from disastershield.services.email_notifications import EmailKind
from disastershield.services.repository import ClaimRepository
from disastershield.services.workflow import (
    NO_CONTRACTORS_ERROR,
    REMATCH_REFUSED_ERROR,
    MatchingWorkflowOrchestrator,
    build_action_url,
)


async def count_match_requests(db, claim_id) -> int:
    result = await db.execute(
        select(func.count()).select_from(MatchRequest).where(MatchRequest.project_id == claim_id)
    )
    return result.scalar_one()


class TestBuildActionUrl:

    def test_accept_and_decline_paths(self):
        assert build_action_url(InvitationAction.ACCEPT, "abc", "https://app.example.com/") == (
            "https://app.example.com/api/v1/jobs/accept/abc"
        )
        assert build_action_url(InvitationAction.DECLINE, "xyz", "https://app.example.com") == (
            "https://app.example.com/api/v1/jobs/decline/xyz"
        )


class TestMatchingWorkflow:
    """Test the end-to-end invitation workflow"""

    @pytest.mark.asyncio
    async def test_no_contractors_found(self, test_db, make_claim, email_service, token_service):
        """Empty contractor pool reports the exact error and leaves the claim untouched"""
        claim = await make_claim()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is False
        assert result.errors == [NO_CONTRACTORS_ERROR]
        assert result.matched_contractors == 0
        assert email_service.sent == []
        assert await count_match_requests(test_db, claim.id) == 0

        stored = await ClaimRepository(test_db).get_claim(claim.id)
        assert stored.status == ClaimStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_invites_top_contractors(self, test_db, make_claim, make_contractor, email_service, token_service):
        claim = await make_claim()
        contractors = [await make_contractor() for _ in range(3)]
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is True
        assert result.errors == []
        assert result.matched_contractors == 3
        assert result.emails_sent == 3
        assert len(result.match_requests) == 3
        assert all(mr["created"] for mr in result.match_requests)
        assert sorted(email_service.recipients(EmailKind.INVITATION)) == sorted(c.email for c in contractors)

        repository = ClaimRepository(test_db)
        match_requests = await repository.get_match_requests(claim.id)
        assert {mr.contractor_id for mr in match_requests} == {c.id for c in contractors}
        assert all(mr.status == MatchRequestStatus.SENT for mr in match_requests)
        assert all(mr.score is not None and mr.score > 0 for mr in match_requests)

        stored = await repository.get_claim(claim.id)
        assert stored.status == ClaimStatus.MATCHED
        assert stored.assigned_contractor_id is None

    @pytest.mark.asyncio
    async def test_invitation_links_carry_valid_tokens(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        contractor = await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim), "https://app.example.com")

        _, recipient, payload = email_service.sent[0]
        assert recipient == contractor.email
        assert payload["accept_url"].startswith("https://app.example.com/api/v1/jobs/accept/")
        assert payload["decline_url"].startswith("https://app.example.com/api/v1/jobs/decline/")

        token = payload["accept_url"].rsplit("/", 1)[1]
        verified = token_service.verify(token)
        assert verified.claim_id == claim.id
        assert verified.contractor_id == contractor.id
        assert verified.action == InvitationAction.ACCEPT

    @pytest.mark.asyncio
    async def test_selects_at_most_limit(self, test_db, make_claim, make_contractor, email_service, token_service):
        claim = await make_claim()
        for _ in range(5):
            await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.matched_contractors == 3
        assert await count_match_requests(test_db, claim.id) == 3

    @pytest.mark.asyncio
    async def test_running_twice_does_not_duplicate(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        """A second run finds the existing match requests and sends nothing"""
        claim = await make_claim()
        for _ in range(2):
            await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        first = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        second = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert first.emails_sent == 2
        assert second.success is True
        assert second.emails_sent == 0
        assert second.matched_contractors == 2
        assert not any(mr["created"] for mr in second.match_requests)
        assert len(email_service.recipients(EmailKind.INVITATION)) == 2
        assert await count_match_requests(test_db, claim.id) == 2

    @pytest.mark.asyncio
    async def test_one_failed_email_does_not_stop_others(
        self, test_db, make_claim, make_contractor, failing_email_service, token_service
    ):
        claim = await make_claim()
        contractors = [await make_contractor() for _ in range(3)]
        email_service = failing_email_service(contractors[1].email)
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is True
        assert result.matched_contractors == 3
        assert result.emails_sent == 2
        assert len(result.errors) == 1
        assert contractors[1].company_name in result.errors[0]
        assert await count_match_requests(test_db, claim.id) == 3

    @pytest.mark.asyncio
    async def test_all_emails_failing_is_reported(
        self, test_db, make_claim, make_contractor, failing_email_service, token_service
    ):
        claim = await make_claim()
        contractor = await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=failing_email_service(contractor.email), token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is True
        assert result.emails_sent == 0
        assert "All invitation emails failed to send" in result.errors

    @pytest.mark.asyncio
    async def test_contractor_without_email_is_skipped_quietly(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        await make_contractor(email=None)
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is True
        assert result.emails_sent == 0
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_no_plausible_contractors(self, test_db, make_claim, make_contractor, email_service, token_service):
        claim = await make_claim()
        await make_contractor(service_areas=["TX"], trades=[Trade.ROOFING])
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is False
        assert result.matched_contractors == 0
        assert "No contractors matched" in result.errors[0]
        assert await count_match_requests(test_db, claim.id) == 0

    @pytest.mark.asyncio
    async def test_paused_contractors_are_not_invited(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        await make_contractor(capacity=CapacityStatus.PAUSED)
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.errors == [NO_CONTRACTORS_ERROR]

    @pytest.mark.asyncio
    async def test_invalid_payload_returns_error(self, test_db, email_service, token_service):
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow({"id": str(uuid4()), "city": "Tampa"})

        assert result.success is False
        assert result.errors[0].startswith("Invalid claim payload")

    @pytest.mark.asyncio
    async def test_unknown_claim_returns_error(self, test_db, claim_data, email_service, token_service):
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow({**claim_data, "id": uuid4()})

        assert result.success is False
        assert "not found" in result.errors[0]

    @pytest.mark.asyncio
    async def test_in_app_notifications_created(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        contractors = [await make_contractor() for _ in range(2)]
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.notifications_sent == 3

        repository = ClaimRepository(test_db)
        homeowner = await repository.get_notifications(claim.user_id)
        assert [n.type for n in homeowner] == [NotificationType.CONTRACTOR_MATCHED]
        for contractor in contractors:
            posted = await repository.get_notifications(contractor.user_id)
            assert [n.type for n in posted] == [NotificationType.JOB_POSTED]
            assert posted[0].data["project_id"] == str(claim.id)

    @pytest.mark.asyncio
    async def test_contractor_without_user_gets_no_in_app_notification(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        await make_contractor(user_id=None)
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is True
        assert result.notifications_sent == 1
        count = await test_db.execute(select(func.count()).select_from(Notification))
        assert count.scalar_one() == 1


class TestRematch:
    """Test re-running matching for a claim"""

    @pytest.mark.asyncio
    async def test_rematch_replaces_match_requests(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        for _ in range(2):
            await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        repository = ClaimRepository(test_db)
        first_ids = {mr.id for mr in await repository.get_match_requests(claim.id)}

        result = await orchestrator.rematch(claim.id)

        assert result.success is True
        assert result.emails_sent == 2
        second = await repository.get_match_requests(claim.id)
        assert len(second) == 2
        assert first_ids.isdisjoint({mr.id for mr in second})
        assert all(mr.status == MatchRequestStatus.SENT for mr in second)
        assert len(email_service.recipients(EmailKind.INVITATION)) == 4

    @pytest.mark.asyncio
    async def test_rematch_refused_for_assigned_claim(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        contractor = await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        repository = ClaimRepository(test_db)
        assert await repository.finalize_assignment(claim.id, contractor.id) is True

        result = await orchestrator.rematch(claim.id)

        assert result.success is False
        assert "re-match refused" in result.errors[0]
        match_requests = await repository.get_match_requests(claim.id)
        assert [mr.status for mr in match_requests] == [MatchRequestStatus.ACCEPTED]

    @pytest.mark.asyncio
    async def test_workflow_refuses_assigned_claim(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        contractor = await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        await ClaimRepository(test_db).finalize_assignment(claim.id, contractor.id)
        email_service.sent.clear()

        result = await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))

        assert result.success is False
        assert result.errors == ["Claim already has an assigned contractor"]
        assert email_service.sent == []

    @pytest.mark.asyncio
    async def test_rematch_unknown_claim(self, test_db, email_service, token_service):
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )

        result = await orchestrator.rematch(uuid4())

        assert result.success is False
        assert "not found" in result.errors[0]

    @pytest.mark.asyncio
    async def test_assignment_committed_during_rematch_survives(
        self, test_db, session_factory, make_claim, make_contractor, email_service, token_service, monkeypatch
    ):
        """An assignment that lands after the pre-check but before the reset wins"""
        claim = await make_claim()
        winner = await make_contractor()
        await make_contractor()
        claim_id, winner_id = claim.id, winner.id
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        await test_db.commit()

        get_claim = orchestrator.repository.get_claim
        assigned = []

        async def get_claim_then_assign(requested_id):
            snapshot = await get_claim(requested_id)
            if not assigned:
                async with session_factory() as homeowner_session:
                    assigned.append(
                        await ClaimRepository(homeowner_session).finalize_assignment(claim_id, winner_id)
                    )
            return snapshot

        monkeypatch.setattr(orchestrator.repository, "get_claim", get_claim_then_assign)

        result = await orchestrator.rematch(claim_id)

        assert assigned == [True]
        assert result.success is False
        assert result.errors == [REMATCH_REFUSED_ERROR]

        async with session_factory() as fresh:
            repository = ClaimRepository(fresh)
            stored = await repository.get_claim(claim_id)
            statuses = {mr.contractor_id: mr.status for mr in await repository.get_match_requests(claim_id)}

        assert stored.assigned_contractor_id == winner_id
        assert len(statuses) == 2
        assert statuses[winner_id] == MatchRequestStatus.ACCEPTED
        assert sorted(s.value for s in statuses.values()) == ["accepted", "declined"]

    @pytest.mark.asyncio
    async def test_match_requests_of_assigned_claim_are_not_deleted(
        self, test_db, make_claim, make_contractor, email_service, token_service
    ):
        claim = await make_claim()
        contractor = await make_contractor()
        orchestrator = MatchingWorkflowOrchestrator(
            test_db, email_service=email_service, token_service=token_service
        )
        await orchestrator.execute_complete_workflow(ClaimDetails.model_validate(claim))
        repository = ClaimRepository(test_db)
        await repository.finalize_assignment(claim.id, contractor.id)

        assert await repository.reset_claim_for_rematch(claim.id) is None
        assert await repository.delete_match_requests(claim.id) == 0
        await test_db.commit()

        assert await count_match_requests(test_db, claim.id) == 1
