"""Settlement of Stripe webhook events.

Each event id is claimed in ``webhook_events`` before anything else runs,
so a redelivered event has no effect.  Every status change is a guarded
UPDATE (``... WHERE status = <expected>``); a zero rowcount means the
transition already happened or is not allowed, and the handler moves on.
"""
import logging
from datetime import datetime, timedelta

import stripe
from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ExternalServiceError
from app.models.affiliate import Affiliate, AffiliateCommission
from app.models.event import Event
from app.models.ticket import Ticket
from app.models.tip import Tip
from app.models.transaction import Transaction
from app.models.user import User
from app.models.webhook_event import WebhookEvent
from app.schemas.webhooks import (
    AccountUpdated,
    ChargeRefunded,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    SettlementEvent,
    UnhandledEvent,
    parse_event,
)
from app.services.affiliates import referral_chain
from app.services.commission import ticket_split, tip_split

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

NO_SYNC = {"synchronize_session": False}


# ── Idempotency ledger ───────────────────────────────────────────────────────

async def claim_event(db: AsyncSession, event_id: str, event_type: str, payload: dict) -> bool:
    """
    Record ``event_id`` as owned by this delivery. False means already claimed.

    A claim left in "processing" for longer than WEBHOOK_CLAIM_LEASE_SECONDS
    was abandoned by a worker that died mid-event; the next delivery takes it over.
    """
    result = await db.execute(
        select(WebhookEvent.uuid, WebhookEvent.status, WebhookEvent.created_at)
        .where(WebhookEvent.stripe_event_id == event_id)
    )
    existing = result.first()
    if existing is not None:
        claim_id, status, claimed_at = existing
        lease_expired = datetime.utcnow() - timedelta(seconds=settings.WEBHOOK_CLAIM_LEASE_SECONDS)
        if status != "processing" or claimed_at is None or claimed_at >= lease_expired:
            return False
        taken = await db.execute(
            update(WebhookEvent)
            .where(
                WebhookEvent.uuid == claim_id,
                WebhookEvent.status == "processing",
                WebhookEvent.created_at == claimed_at,
            )
            .values(created_at=datetime.utcnow(), payload=payload)
            .execution_options(**NO_SYNC)
        )
        await db.commit()
        if taken.rowcount == 0:
            # Another delivery took it over first
            return False
        logger.warning(f"[{event_type} {event_id}] taking over claim abandoned since {claimed_at}")
        return True

    db.add(WebhookEvent(stripe_event_id=event_id, event_type=event_type, payload=payload))
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same id first
        await db.rollback()
        return False
    return True


async def mark_processed(db: AsyncSession, event_id: str) -> None:
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.stripe_event_id == event_id)
        .values(status="processed", processed_at=datetime.utcnow())
    )
    await db.commit()


async def release_claim(db: AsyncSession, event_id: str) -> None:
    """Forget a claim whose processing failed so the processor's retry runs it again."""
    await db.execute(delete(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id))
    await db.commit()


async def process_event(db: AsyncSession, event: dict) -> str:
    """
    Apply one verified Stripe event.

    Returns "duplicate" when the event id was already claimed, "ignored" for
    events with nothing to settle and "processed" otherwise.  Raises
    ExternalServiceError (HTTP 500) after releasing the claim if processing fails.
    """
    parsed = parse_event(event)
    if not await claim_event(db, parsed.id, parsed.type, event):
        logger.info(f"[{parsed.type} {parsed.id}] duplicate delivery, skipping")
        return "duplicate"

    try:
        handled = await _dispatch(db, parsed)
    except Exception as e:
        logger.exception(f"[{parsed.type} {parsed.id}] processing failed: {e}")
        await db.rollback()
        await release_claim(db, parsed.id)
        raise ExternalServiceError("Webhook processing failed") from e

    await mark_processed(db, parsed.id)
    return "processed" if handled else "ignored"


async def _dispatch(db: AsyncSession, event: SettlementEvent) -> bool:
    if isinstance(event, PaymentIntentSucceeded):
        return await handle_payment_succeeded(db, event)
    if isinstance(event, PaymentIntentFailed):
        return await handle_payment_failed(db, event)
    if isinstance(event, ChargeRefunded):
        return await handle_charge_refunded(db, event)
    if isinstance(event, AccountUpdated):
        return await handle_account_updated(db, event)
    if isinstance(event, UnhandledEvent):
        logger.info(f"[{event.type} {event.id}] unhandled event type")
    return False


# ── payment_intent.succeeded ─────────────────────────────────────────────────

async def handle_payment_succeeded(db: AsyncSession, event: PaymentIntentSucceeded) -> bool:
    kind = event.intent.metadata.type
    if kind == "ticket_purchase":
        return await settle_ticket(db, event)
    if kind == "tip":
        return await settle_tip(db, event)
    logger.info(f"[{event.type} {event.id}] intent {event.intent.id} has no settlement type")
    return False


async def settle_ticket(db: AsyncSession, event: PaymentIntentSucceeded) -> bool:
    """
    Confirm a pending ticket and take its seat.

    Confirmation and the seat increment commit together.  If the event
    filled up while this payment was in flight the ticket fails instead
    and the charge is refunded, as it is when a ticket that already
    failed gets paid on a retried intent.  Commission and transaction rows are
    written afterwards; a failure there is logged and leaves the
    confirmation in place.
    """
    intent = event.intent
    result = await db.execute(
        select(Ticket).where(Ticket.payment_intent_id == intent.id).execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        logger.warning(f"[{event.type} {event.id}] no ticket for intent {intent.id}")
        return False

    ticket_id = ticket.uuid
    event_id = ticket.event_id
    previous_status = ticket.status
    confirmed = await db.execute(
        update(Ticket)
        .where(Ticket.uuid == ticket_id, Ticket.status == "pending")
        .values(status="confirmed", purchased_at=datetime.utcnow())
        .execution_options(**NO_SYNC)
    )
    if confirmed.rowcount == 0:
        await db.rollback()
        if previous_status == "failed":
            # The customer retried on the same intent after payment_failed; the
            # seat may be gone and a newer ticket may hold the slot, so refund
            logger.warning(f"[{event.type} {event.id}] ticket {ticket_id} already failed, refunding late payment")
            _refund_ticket(intent.id, ticket_id, "late_success")
            return True
        logger.info(f"[{event.type} {event.id}] ticket {ticket_id} is no longer pending, skipping")
        return False

    seat = await db.execute(
        update(Event)
        .where(
            Event.uuid == event_id,
            or_(Event.capacity.is_(None), Event.tickets_sold < Event.capacity),
        )
        .values(tickets_sold=Event.tickets_sold + 1)
        .execution_options(**NO_SYNC)
    )
    if seat.rowcount == 0:
        await db.execute(
            update(Ticket)
            .where(Ticket.uuid == ticket_id)
            .values(status="failed")
            .execution_options(**NO_SYNC)
        )
        await db.commit()
        logger.warning(f"[{event.type} {event.id}] event {event_id} sold out, refunding ticket {ticket_id}")
        _refund_ticket(intent.id, ticket_id, "oversold")
        return True

    await db.commit()
    logger.info(f"[{event.type} {event.id}] ticket {ticket_id} confirmed for event {event_id}")

    await _record_ticket_accounting(db, event, ticket)
    return True


def _refund_ticket(payment_intent_id: str, ticket_id: str, reason: str) -> None:
    """Refund the charge behind a failed ticket. ``reason`` is "oversold" or "late_success"."""
    try:
        stripe.Refund.create(
            payment_intent=payment_intent_id,
            reason="requested_by_customer",
            metadata={"ticket_id": ticket_id, "reason": reason},
            idempotency_key=f"{reason}_{ticket_id}",
        )
    except stripe.error.StripeError as e:
        # Ticket is already failed; the charge needs a manual refund
        logger.error(f"Refund ({reason}) for ticket {ticket_id} (intent {payment_intent_id}) failed: {e}")


async def _record_ticket_accounting(db: AsyncSession, event: PaymentIntentSucceeded, ticket: Ticket) -> None:
    ticket_id = ticket.uuid
    try:
        chain = await referral_chain(db, ticket.affiliate_id)
        split = ticket_split(ticket.purchase_price, chain)

        for share in split.commissions:
            db.add(AffiliateCommission(
                affiliate_id=share.affiliate_id,
                ticket_id=ticket_id,
                commission_level=share.level,
                commission_rate=share.rate,
                commission_amount=share.amount,
                currency=ticket.currency,
                status="pending",
            ))
            await db.execute(
                update(Affiliate)
                .where(Affiliate.uuid == share.affiliate_id)
                .values(total_earnings=Affiliate.total_earnings + share.amount)
                .execution_options(**NO_SYNC)
            )

        result = await db.execute(select(Event.artist_id).where(Event.uuid == ticket.event_id))
        db.add(Transaction(
            transaction_type="ticket_purchase",
            amount=split.gross_amount,
            currency=ticket.currency,
            platform_fee=split.platform_share,
            artist_amount=split.artist_share,
            stripe_payment_id=event.intent.id,
            status="completed",
            user_id=ticket.user_id,
            artist_id=result.scalar_one_or_none(),
            event_id=ticket.event_id,
            details={
                "ticket_id": ticket_id,
                "affiliate_id": ticket.affiliate_id,
                "commission_total": split.commission_total,
            },
        ))
        await db.commit()
        logger.info(
            f"[{event.type} {event.id}] recorded {len(split.commissions)} commission(s) "
            f"totalling {split.commission_total} for ticket {ticket_id}"
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"[{event.type} {event.id}] ticket {ticket_id} confirmed but accounting rows "
            f"could not be written: {e}"
        )


async def settle_tip(db: AsyncSession, event: PaymentIntentSucceeded) -> bool:
    """
    Complete a tip.  A tip already failed by payment_failed completes too:
    the destination charge has paid the artist once the intent succeeds.
    """
    intent = event.intent
    result = await db.execute(
        select(Tip).where(Tip.payment_intent_id == intent.id).execution_options(populate_existing=True)
    )
    tip = result.scalar_one_or_none()
    if tip is None:
        logger.warning(f"[{event.type} {event.id}] no tip for intent {intent.id}")
        return False

    tip_id = tip.uuid
    completed = await db.execute(
        update(Tip)
        .where(Tip.uuid == tip_id, Tip.status.in_(("pending", "failed")))
        .values(status="completed")
        .execution_options(**NO_SYNC)
    )
    if completed.rowcount == 0:
        await db.rollback()
        logger.info(f"[{event.type} {event.id}] tip {tip_id} is already settled, skipping")
        return False

    split = tip_split(tip.amount)
    db.add(Transaction(
        transaction_type="tip",
        amount=split.gross_amount,
        currency=tip.currency,
        platform_fee=split.platform_share,
        artist_amount=split.artist_share,
        stripe_payment_id=intent.id,
        status="completed",
        user_id=tip.from_user_id,
        artist_id=tip.to_artist_id,
        event_id=tip.event_id,
        details={"tip_id": tip_id},
    ))
    await db.commit()
    logger.info(f"[{event.type} {event.id}] tip {tip_id} completed")
    return True


# ── payment_intent.payment_failed / payment_intent.canceled ─────────────────

async def handle_payment_failed(db: AsyncSession, event: PaymentIntentFailed) -> bool:
    intent_id = event.intent.id
    kind = event.intent.metadata.type
    if kind == "ticket_purchase":
        model = Ticket
    elif kind == "tip":
        model = Tip
    else:
        return False

    result = await db.execute(
        update(model)
        .where(model.payment_intent_id == intent_id, model.status == "pending")
        .values(status="failed")
        .execution_options(**NO_SYNC)
    )
    await db.commit()
    logger.info(f"[{event.type} {event.id}] {model.__tablename__} for intent {intent_id} failed ({result.rowcount} updated)")
    return result.rowcount > 0


# ── charge.refunded ──────────────────────────────────────────────────────────

async def handle_charge_refunded(db: AsyncSession, event: ChargeRefunded) -> bool:
    """
    Mark the ticket or tip paid by this charge as refunded.

    Only settled records move (confirmed/used tickets, completed tips); a
    refunded ticket gives its seat back.  Affiliate commissions stay as they are.
    """
    intent_id = event.charge.payment_intent
    if not intent_id:
        return False

    refunded = False
    result = await db.execute(select(Ticket).where(Ticket.payment_intent_id == intent_id))
    ticket = result.scalar_one_or_none()
    if ticket is not None:
        moved = await db.execute(
            update(Ticket)
            .where(Ticket.uuid == ticket.uuid, Ticket.status.in_(("confirmed", "used")))
            .values(status="refunded")
            .execution_options(**NO_SYNC)
        )
        if moved.rowcount:
            await db.execute(
                update(Event)
                .where(Event.uuid == ticket.event_id, Event.tickets_sold > 0)
                .values(tickets_sold=Event.tickets_sold - 1)
                .execution_options(**NO_SYNC)
            )
            refunded = True
    else:
        moved = await db.execute(
            update(Tip)
            .where(Tip.payment_intent_id == intent_id, Tip.status == "completed")
            .values(status="refunded")
            .execution_options(**NO_SYNC)
        )
        refunded = moved.rowcount > 0

    if refunded:
        await db.execute(
            update(Transaction)
            .where(Transaction.stripe_payment_id == intent_id, Transaction.status == "completed")
            .values(status="refunded")
            .execution_options(**NO_SYNC)
        )
    await db.commit()
    logger.info(
        f"[{event.type} {event.id}] refund of {event.charge.amount_refunded} for intent {intent_id} "
        f"{'applied' if refunded else 'had nothing to refund'}"
    )
    return refunded


# ── account.updated ──────────────────────────────────────────────────────────

async def handle_account_updated(db: AsyncSession, event: AccountUpdated) -> bool:
    account = event.account
    completed = account.details_submitted and account.charges_enabled
    result = await db.execute(
        update(User)
        .where(User.stripe_connect_account_id == account.id)
        .values(stripe_connect_completed=completed)
        .execution_options(**NO_SYNC)
    )
    await db.commit()
    logger.info(f"[{event.type} {event.id}] account {account.id} onboarding complete={completed}")
    return result.rowcount > 0
