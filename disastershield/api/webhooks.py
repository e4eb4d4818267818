"""Webhook endpoints for external services"""

import logging
from typing import Any

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from disastershield.config import settings
from disastershield.db.database import get_db
from disastershield.services.payments import PaymentService
from disastershield.utils.errors import PaymentWebhookError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Handle Stripe webhook events"""

    if not settings.enable_payments:
        raise HTTPException(status_code=503, detail="Payment functionality is disabled")

    payload = await request.body()
    sig_header = request.headers.get('stripe-signature')

    try:
        result = await PaymentService(db).handle_webhook(payload, sig_header)
    except PaymentWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe API error while processing webhook: {e}")
        raise HTTPException(status_code=502, detail="Failed to process webhook")

    return {
        "message": "Webhook processed successfully",
        **result,
    }
