"""Domain exceptions for the claim matching system"""

from uuid import UUID


class DisasterShieldError(Exception):
    """Base class for DisasterShield domain errors"""


class ClaimNotFoundError(DisasterShieldError):
    def __init__(self, claim_id: UUID):
        super().__init__(f"Claim {claim_id} not found")
        self.claim_id = claim_id


class DuplicateMatchRequestError(DisasterShieldError):
    """A match request already exists for this claim/contractor pair"""

    def __init__(self, claim_id: UUID, contractor_id: UUID):
        super().__init__(
            f"Match request already exists for claim {claim_id} and contractor {contractor_id}"
        )
        self.claim_id = claim_id
        self.contractor_id = contractor_id


class AssignmentError(DisasterShieldError):
    """The assignment transaction failed and was rolled back"""


class EstimateError(DisasterShieldError):
    """Invalid estimate submission or review action"""


class PaymentWebhookError(DisasterShieldError):
    """Stripe webhook payload could not be verified"""
