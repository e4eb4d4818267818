"""Signed, expiring tokens embedded in contractor accept/decline links"""

import logging
from datetime import timedelta
from uuid import UUID

from jose import JWTError, jwt
from pydantic import ValidationError

from disastershield.config import settings
from disastershield.schemas.matching import InvitationAction, InvitationTokenPayload
from disastershield.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class InvitationTokenService:
    """
    Issues and verifies invitation tokens.

    Tokens are HS256 JWTs. Expiry is checked against the injected clock rather
    than the library's wall clock so verification is deterministic.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        clock: Clock = utc_now,
    ):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.clock = clock

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(hours=settings.invitation_token_ttl_hours)

    def issue(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        action: InvitationAction,
        ttl: timedelta | None = None,
    ) -> str:
        """Sign a token for one claim/contractor/action triple"""
        if ttl is None:
            ttl = self.default_ttl
        issued_at = int(self.clock().timestamp())
        claims = {
            "claim_id": str(claim_id),
            "contractor_id": str(contractor_id),
            "action": InvitationAction(action).value,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def issue_pair(
        self,
        claim_id: UUID,
        contractor_id: UUID,
        ttl: timedelta | None = None,
    ) -> tuple[str, str]:
        """Return (accept_token, decline_token)"""
        return (
            self.issue(claim_id, contractor_id, InvitationAction.ACCEPT, ttl),
            self.issue(claim_id, contractor_id, InvitationAction.DECLINE, ttl),
        )

    def verify(self, token: str) -> InvitationTokenPayload | None:
        """Return the payload, or None when the token is malformed, forged or expired"""
        if not token:
            return None

        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
            payload = InvitationTokenPayload.model_validate(claims)
        except JWTError as e:
            logger.warning(f"Invitation token rejected: {e}")
            return None
        except ValidationError as e:
            logger.warning(f"Invitation token has invalid claims: {e.error_count()} errors")
            return None

        # Whole-second resolution, matching the truncated iat
        if int(self.clock().timestamp()) > payload.exp:
            logger.info(
                f"Invitation token expired for claim {payload.claim_id} "
                f"contractor {payload.contractor_id}"
            )
            return None

        return payload
