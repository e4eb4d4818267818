"""SMS job alerts for contractors via Twilio"""

import asyncio
import logging

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from disastershield.config import settings
from disastershield.schemas.claims import ClaimDetails
from disastershield.schemas.matching import DeliveryResult

logger = logging.getLogger(__name__)


class SMSTemplate:
    """SMS message templates for contractor alerts"""

    JOB_ALERT = """DisasterShield: New {peril} damage job in {location}.
{summary}
Accept: {accept_url}
Decline: {decline_url}
Links expire in {expires_hours}h."""

    JOB_FILLED = """DisasterShield: The {peril} job in {location} has been filled by another contractor. Thanks for responding!"""

    JOB_CONFIRMED = """DisasterShield: You've been selected for the {peril} job at {address}, {location}. Contact {contact} to schedule."""


class TwilioService:
    """Twilio client wrapper; messages are simulated when SMS is not configured"""

    def __init__(self, client: Client | None = None):
        self.client = client

        if self.client is None and settings.twilio_account_sid and settings.twilio_auth_token:
            self.client = Client(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )

    def _is_configured(self) -> bool:
        """Check if Twilio is properly configured"""
        return (
            self.client is not None
            and settings.twilio_phone_number is not None
            and settings.enable_sms
        )

    async def _send(self, to: str | None, body: str, message_type: str) -> DeliveryResult:
        if not to:
            return DeliveryResult(channel="sms", sent=False, skipped=True, error="No phone number")

        if not self._is_configured():
            logger.info(f"SMS not configured; {message_type} to {to} simulated")
            return DeliveryResult(channel="sms", sent=False, skipped=True, error="SMS not configured")

        try:
            message = await asyncio.to_thread(
                self.client.messages.create,
                body=body,
                from_=settings.twilio_phone_number,
                to=to
            )
        except TwilioException as e:
            logger.error(f"Failed to send {message_type} SMS to {to}: {e}")
            return DeliveryResult(channel="sms", sent=False, error=str(e))

        logger.info(f"{message_type} SMS sent to {to}, SID: {message.sid}")
        return DeliveryResult(channel="sms", sent=True, reference=message.sid)

    async def send_job_alert(
        self,
        phone: str | None,
        claim: ClaimDetails,
        accept_url: str,
        decline_url: str,
    ) -> DeliveryResult:
        """Short job alert with accept/decline links"""
        summary = claim.description
        if len(summary) > 120:
            summary = summary[:120] + "..."

        body = SMSTemplate.JOB_ALERT.format(
            peril=claim.peril.value,
            location=claim.location_label,
            summary=summary,
            accept_url=accept_url,
            decline_url=decline_url,
            expires_hours=settings.invitation_token_ttl_hours,
        )
        return await self._send(phone, body, "job_alert")

    async def send_job_filled(self, phone: str | None, claim: ClaimDetails) -> DeliveryResult:
        body = SMSTemplate.JOB_FILLED.format(
            peril=claim.peril.value,
            location=claim.location_label,
        )
        return await self._send(phone, body, "job_filled")

    async def send_job_confirmed(self, phone: str | None, claim: ClaimDetails) -> DeliveryResult:
        body = SMSTemplate.JOB_CONFIRMED.format(
            peril=claim.peril.value,
            address=claim.address,
            location=claim.location_label,
            contact=claim.contact_phone or claim.contact_name or "the homeowner",
        )
        return await self._send(phone, body, "job_confirmed")
