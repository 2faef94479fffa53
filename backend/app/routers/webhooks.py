"""Stripe webhook router."""
import json
import logging
import stripe
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.config import settings
from app.errors import SignatureInvalid
from app.services.settlement import process_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle Stripe webhook events.

    - Verifies the webhook signature against the raw body
    - Claims the event id so redeliveries are acknowledged without effect
    - Returns 500 if processing fails, so Stripe retries
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise SignatureInvalid("Missing stripe-signature header")

    try:
        stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError:
        raise SignatureInvalid("Invalid payload")
    except stripe.error.SignatureVerificationError:
        logger.warning("Rejected webhook with invalid signature")
        raise SignatureInvalid()

    event = json.loads(payload)
    status = await process_event(db, event)
    return {"status": status}
