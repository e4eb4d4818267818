"""Stripe checkout webhooks and claim payment status"""

import asyncio
import logging
from typing import Any
from uuid import UUID

import stripe
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.config import settings
from disastershield.db.models import PaymentOrder
from disastershield.schemas.payments import (
    ClaimPaymentStatus,
    PaymentGroupStatus,
    ProductPaymentStatus,
)
from disastershield.services.repository import ClaimRepository
from disastershield.utils.errors import ClaimNotFoundError, PaymentWebhookError

logger = logging.getLogger(__name__)


class PaymentGroup(BaseModel):
    name: str
    description: str
    products: tuple[str, ...]
    required: bool


PAYMENT_GROUPS: dict[str, PaymentGroup] = {
    "CORE_PROJECT": PaymentGroup(
        name="Core Project Payments",
        description="Required payments to complete the project",
        products=("SECURITY_DEPOSIT", "DISASTERSHIELD_SERVICE_FEE", "REPAIR_COST_ESTIMATE"),
        required=True,
    ),
    "FNOL_GENERATION": PaymentGroup(
        name="FNOL Generation",
        description="Payment for generating First Notice of Loss documents",
        products=("FNOL_GENERATION_FEE",),
        required=False,
    ),
}


def required_products() -> set[str]:
    return {
        product
        for group in PAYMENT_GROUPS.values()
        if group.required
        for product in group.products
    }


def group_status(group_key: str, completed_products: set[str]) -> PaymentGroupStatus:
    group = PAYMENT_GROUPS[group_key]
    products = [
        ProductPaymentStatus(product_key=product, completed=product in completed_products)
        for product in group.products
    ]
    paid = sum(1 for product in products if product.completed)
    return PaymentGroupStatus(
        group=group_key,
        name=group.name,
        required=group.required,
        completed=paid == len(products),
        paid=paid,
        total=len(products),
        products=products,
    )


class PaymentService:
    """Records completed one-time checkouts against claims"""

    def __init__(self, db: AsyncSession, stripe_client: Any = None):
        self.db = db
        self.repository = ClaimRepository(db)

        # Configure Stripe
        stripe.api_key = settings.stripe_secret_key
        self.stripe_client = stripe_client or stripe

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the Stripe signature header and parse the event"""
        if not signature:
            raise PaymentWebhookError("Missing Stripe signature")

        try:
            return self.stripe_client.Webhook.construct_event(
                payload, signature, settings.stripe_webhook_secret
            )
        except ValueError as e:
            logger.error(f"Invalid Stripe webhook payload: {e}")
            raise PaymentWebhookError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid Stripe webhook signature: {e}")
            raise PaymentWebhookError("Invalid signature") from e

    async def handle_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        event = self.construct_event(payload, signature)
        logger.info(f"Received Stripe webhook: {event['type']}")
        return await self.process_event(event)

    async def process_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Handle a verified Stripe event.

        Only paid one-time ``checkout.session.completed`` sessions are recorded.
        The claim and product come from the PaymentIntent metadata; once every
        required product has a completed order the claim is marked paid.
        """
        event_type = event["type"]
        if event_type != "checkout.session.completed":
            logger.info(f"Unhandled Stripe webhook event type: {event_type}")
            return {"status": "ignored", "event_type": event_type}

        session = event["data"]["object"]
        if session.get("mode") != "payment" or session.get("payment_status") != "paid":
            logger.info(f"Skipping checkout session {session.get('id')} (mode={session.get('mode')})")
            return {"status": "ignored", "event_type": event_type}

        checkout_session_id = session["id"]
        if await self.repository.get_payment_order_by_session(checkout_session_id):
            logger.info(f"Checkout session {checkout_session_id} already recorded")
            return {"status": "duplicate", "event_type": event_type}

        payment_intent_id = session.get("payment_intent")
        try:
            payment_intent = await asyncio.to_thread(
                self.stripe_client.PaymentIntent.retrieve, payment_intent_id
            )
        except stripe.StripeError as e:
            logger.error(f"Could not retrieve payment intent {payment_intent_id}: {e}")
            raise

        metadata = payment_intent.get("metadata") or {}
        project_id = metadata.get("project_id")
        product_id = metadata.get("product_id")
        if not project_id or not product_id:
            logger.error(f"Payment intent {payment_intent_id} is missing project_id or product_id metadata")
            return {"status": "skipped", "event_type": event_type, "reason": "missing metadata"}

        try:
            claim_id = UUID(project_id)
        except ValueError:
            logger.error(f"Payment intent {payment_intent_id} has malformed project_id {project_id!r}")
            return {"status": "skipped", "event_type": event_type, "reason": "invalid project_id"}

        if not await self.repository.get_claim(claim_id):
            logger.error(f"Payment for unknown claim {claim_id}")
            return {"status": "skipped", "event_type": event_type, "reason": "claim not found"}

        await self.repository.add_payment_order(
            PaymentOrder(
                project_id=claim_id,
                product_id=product_id,
                checkout_session_id=checkout_session_id,
                payment_intent_id=payment_intent_id,
                customer_id=session.get("customer"),
                amount_subtotal=session.get("amount_subtotal"),
                amount_total=session.get("amount_total"),
                currency=session.get("currency") or "usd",
                status="completed",
            )
        )
        logger.info(f"Recorded {product_id} payment for claim {claim_id}")

        completed = await self.repository.get_completed_products(claim_id)
        marked_paid = False
        if required_products() <= completed:
            marked_paid = await self.repository.mark_claim_paid(claim_id)
            if marked_paid:
                logger.info(f"All required payments complete; claim {claim_id} marked paid")

        return {
            "status": "recorded",
            "event_type": event_type,
            "claim_id": str(claim_id),
            "product_id": product_id,
            "claim_paid": marked_paid,
        }

    async def get_payment_status(self, claim_id: UUID) -> ClaimPaymentStatus:
        if not await self.repository.get_claim(claim_id):
            raise ClaimNotFoundError(claim_id)

        completed = await self.repository.get_completed_products(claim_id)
        return ClaimPaymentStatus(
            claim_id=claim_id,
            groups=[group_status(key, completed) for key in PAYMENT_GROUPS],
            all_required_completed=required_products() <= completed,
        )
