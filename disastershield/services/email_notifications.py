"""Email notification service for contractor and homeowner communications"""

import asyncio
import enum
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any

from disastershield.config import settings
from disastershield.schemas.claims import ClaimDetails
from disastershield.schemas.matching import DeliveryResult

logger = logging.getLogger(__name__)


class EmailKind(str, enum.Enum):
    INVITATION = "contractor_invitation"
    JOB_FILLED = "job_filled"
    JOB_ACCEPTED = "job_accepted"
    CONTRACTOR_DECLINED = "contractor_declined"


_STYLE = """
            body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.6; color: #333; }
            .container { max-width: 600px; margin: 0 auto; padding: 20px; }
            .header { background: linear-gradient(135deg, #1e40af 0%, #3b82f6 100%); color: white; padding: 30px; text-align: center; border-radius: 8px 8px 0 0; }
            .content { background: #fff; padding: 30px; border: 1px solid #e0e0e0; border-radius: 0 0 8px 8px; }
            .details { background: #f8f9fa; border-left: 4px solid #1e40af; padding: 20px; margin: 20px 0; }
            .accept { display: inline-block; background: #16a34a; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; margin: 10px; }
            .decline { display: inline-block; background: #6b7280; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; margin: 10px; }
            .footer { text-align: center; margin-top: 30px; color: #666; font-size: 12px; }
"""


def _html_page(title: str, heading: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <title>{escape(title)}</title>
        <style>{_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{heading}</h1>
            </div>
            <div class="content">
                {body}
                <div class="footer">
                    <p>DisasterShield Contractor Network</p>
                </div>
            </div>
        </div>
    </body>
    </html>
    """


def _schedule_line(claim: ClaimDetails) -> str:
    if not claim.preferred_date:
        return "Flexible"
    window = f" ({claim.preferred_window.value})" if claim.preferred_window else ""
    return f"{claim.preferred_date.isoformat()}{window}"


class EmailTemplate:
    """Email templates for claim matching notifications"""

    @staticmethod
    def invitation_subject(claim: ClaimDetails) -> str:
        return f"New {claim.peril.value.capitalize()} Job Opportunity - {claim.location_label}"

    @staticmethod
    def invitation(
        claim: ClaimDetails,
        contractor_name: str,
        accept_url: str,
        decline_url: str,
        reasons: list[str] | None = None,
        expires_hours: int | None = None,
    ) -> tuple[str, str, str]:
        """Invitation carrying the claim summary and both action links"""
        subject = EmailTemplate.invitation_subject(claim)
        reasons = reasons or []
        expires_hours = expires_hours or settings.invitation_token_ttl_hours
        peril = claim.peril.value.capitalize()

        reason_items = "".join(f"<li>{escape(reason)}</li>" for reason in reasons)
        html = _html_page(
            subject,
            "Urgent Job Opportunity",
            f"""
                <p>Hello {escape(contractor_name)},</p>
                <p>A new claim has been filed in your service area and you've been selected based on your expertise and location.</p>
                <div class="details">
                    <h3>{peril} damage in {escape(claim.location_label)}</h3>
                    <ul>
                        <li><strong>Address:</strong> {escape(claim.address)}, {escape(claim.location_label)} {claim.zip}</li>
                        <li><strong>Preferred inspection:</strong> {_schedule_line(claim)}</li>
                        <li><strong>Contact:</strong> {escape(claim.contact_name or "Homeowner")}</li>
                    </ul>
                    <p>{escape(claim.description)}</p>
                </div>
                <h4>Why you were selected</h4>
                <ul>{reason_items}</ul>
                <div style="text-align: center;">
                    <a href="{escape(accept_url)}" class="accept">Accept Job</a>
                    <a href="{escape(decline_url)}" class="decline">Decline</a>
                </div>
                <p><small>These links expire in {expires_hours} hours.</small></p>
            """,
        )

        reason_lines = "\n".join(f"- {reason}" for reason in reasons)
        text = f"""
        Hello {contractor_name},

        {subject}

        A new claim has been filed in your service area.

        CLAIM DETAILS:
        - Peril: {peril}
        - Address: {claim.address}, {claim.location_label} {claim.zip}
        - Preferred inspection: {_schedule_line(claim)}
        - Contact: {claim.contact_name or 'Homeowner'}

        {claim.description}

        WHY YOU WERE SELECTED:
        {reason_lines}

        ACCEPT: {accept_url}
        DECLINE: {decline_url}

        These links expire in {expires_hours} hours.

        --
        DisasterShield Contractor Network
        """
        return subject, html, text

    @staticmethod
    def job_filled(claim: ClaimDetails, contractor_name: str) -> tuple[str, str, str]:
        """Sent to invited contractors that were not chosen"""
        subject = f"Job Filled - {claim.location_label}"
        message = (
            f"The {claim.peril.value} damage job in {claim.location_label} has been "
            f"assigned to another contractor. Thank you for your quick response."
        )
        html = _html_page(
            subject, "Job Filled", f"<p>Hello {escape(contractor_name)},</p><p>{escape(message)}</p>"
        )
        text = f"Hello {contractor_name},\n\n{message}\n\n--\nDisasterShield Contractor Network"
        return subject, html, text

    @staticmethod
    def job_accepted(
        claim: ClaimDetails,
        contractor_name: str,
        amount_cents: int | None = None,
    ) -> tuple[str, str, str]:
        """Confirmation to the contractor that won the job"""
        subject = f"You've Been Selected - {claim.location_label}"
        amount_line = f" for ${amount_cents / 100:,.2f}" if amount_cents else ""
        message = (
            f"The homeowner accepted your estimate{amount_line} for the "
            f"{claim.peril.value} damage job at {claim.address}, {claim.location_label}."
        )
        contact = claim.contact_name or "the homeowner"
        if claim.contact_phone:
            contact = f"{contact} ({claim.contact_phone})"
        html = _html_page(
            subject,
            "Job Confirmed",
            f"<p>Hello {escape(contractor_name)},</p><p>{escape(message)}</p>"
            f"<p>Please contact {escape(contact)} to schedule the work.</p>",
        )
        text = (
            f"Hello {contractor_name},\n\n{message}\n\n"
            f"Please contact {contact} to schedule the work.\n\n--\nDisasterShield Contractor Network"
        )
        return subject, html, text

    @staticmethod
    def contractor_declined(claim: ClaimDetails, company_name: str) -> tuple[str, str, str]:
        """Tells the homeowner that an invited contractor passed"""
        subject = f"Contractor Update - {claim.location_label}"
        message = (
            f"{company_name} is unable to take your {claim.peril.value} damage claim. "
            f"Other invited contractors can still respond."
        )
        html = _html_page(subject, "Contractor Update", f"<p>{escape(message)}</p>")
        text = f"{message}\n\n--\nDisasterShield"
        return subject, html, text


_RENDERERS = {
    EmailKind.INVITATION: EmailTemplate.invitation,
    EmailKind.JOB_FILLED: EmailTemplate.job_filled,
    EmailKind.JOB_ACCEPTED: EmailTemplate.job_accepted,
    EmailKind.CONTRACTOR_DECLINED: EmailTemplate.contractor_declined,
}


class EmailNotificationService:
    """Service for sending email notifications over SMTP"""

    def __init__(self):
        self.smtp_server = settings.smtp_server
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.from_email or "noreply@disastershield.app"
        self.from_name = "DisasterShield"

    def _is_configured(self) -> bool:
        """Check if email service is properly configured"""
        return all([
            self.smtp_server,
            self.smtp_username,
            self.smtp_password,
            settings.enable_email_notifications
        ])

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str
    ) -> None:
        """Send email via SMTP; raises on delivery failure"""
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to_email

        msg.attach(MIMEText(text_content, 'plain'))
        msg.attach(MIMEText(html_content, 'html'))

        with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(self.smtp_username, self.smtp_password)
            server.send_message(msg)

    async def send(
        self,
        kind: EmailKind,
        recipient: str | None,
        payload: dict[str, Any],
    ) -> DeliveryResult:
        """
        Render and deliver one email.

        Never raises: missing recipients, configuration gaps and SMTP failures
        come back as a DeliveryResult so callers can count and continue.
        """
        kind = EmailKind(kind)

        if not recipient:
            return DeliveryResult(channel="email", sent=False, skipped=True, error="No email address")

        if not self._is_configured():
            logger.warning(f"Email service not configured, skipping {kind.value} email to {recipient}")
            return DeliveryResult(
                channel="email", sent=False, skipped=True, error="Email service not configured"
            )

        try:
            subject, html_content, text_content = _RENDERERS[kind](**payload)
        except (KeyError, TypeError) as e:
            logger.error(f"Could not render {kind.value} email: {e}")
            return DeliveryResult(channel="email", sent=False, error=f"Template error: {e}")

        try:
            await asyncio.to_thread(
                self._send_email, recipient, subject, html_content, text_content
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send {kind.value} email to {recipient}: {e}")
            return DeliveryResult(channel="email", sent=False, error=str(e))

        logger.info(f"Email sent successfully to {recipient} ({kind.value})")
        return DeliveryResult(channel="email", sent=True, reference=subject)

