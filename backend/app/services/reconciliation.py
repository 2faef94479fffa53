"""Expire payments that were started but never completed."""
import logging
from datetime import datetime, timedelta
from typing import Optional

import stripe
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.ticket import Ticket
from app.models.tip import Tip
from app.schemas.payouts import ExpiryReport

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


def _cancel_intent(payment_intent_id: str) -> bool:
    """Cancel at Stripe. False when Stripe refuses, e.g. the intent already succeeded."""
    try:
        stripe.PaymentIntent.cancel(payment_intent_id, cancellation_reason="abandoned")
    except stripe.error.StripeError as e:
        logger.warning(f"Could not cancel intent {payment_intent_id}: {e}")
        return False
    return True


async def _expire(db: AsyncSession, model, cutoff: datetime) -> tuple[int, int]:
    result = await db.execute(
        select(model.uuid, model.payment_intent_id).where(
            model.status == "pending",
            model.created_at < cutoff,
        )
    )
    expired = kept = 0
    for record_id, intent_id in result.all():
        if intent_id and not _cancel_intent(intent_id):
            # The settlement webhook decides this one
            kept += 1
            continue
        moved = await db.execute(
            update(model)
            .where(model.uuid == record_id, model.status == "pending")
            .values(status="failed")
            .execution_options(synchronize_session=False)
        )
        expired += moved.rowcount
    await db.commit()
    return expired, kept


async def expire_abandoned_payments(db: AsyncSession, now: Optional[datetime] = None) -> ExpiryReport:
    """
    Fail tickets and tips left pending longer than PENDING_PAYMENT_TTL_HOURS.

    Frees the (event, user) ticket slot held by an abandoned checkout.
    """
    cutoff = (now or datetime.utcnow()) - timedelta(hours=settings.PENDING_PAYMENT_TTL_HOURS)
    tickets_expired, tickets_kept = await _expire(db, Ticket, cutoff)
    tips_expired, tips_kept = await _expire(db, Tip, cutoff)
    logger.info(
        f"Expired {tickets_expired} ticket(s) and {tips_expired} tip(s) pending since before {cutoff}; "
        f"{tickets_kept + tips_kept} left for settlement"
    )
    return ExpiryReport(
        tickets_expired=tickets_expired,
        tips_expired=tips_expired,
        still_pending=tickets_kept + tips_kept,
    )
