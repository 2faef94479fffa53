"""Scheduled transfers: artist payouts per ended event and affiliate commission payouts."""
import hashlib
import logging
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Optional

import stripe
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.affiliate import Affiliate, AffiliateCommission
from app.models.event import Event
from app.models.payout import Payout
from app.models.transaction import Transaction
from app.models.user import User
from app.schemas.payouts import (
    AffiliatePayoutReport,
    AffiliatePayoutResult,
    PayoutResult,
    PayoutRunReport,
)
from app.services.commission import round_half_up
from app.services.payments import transfer_group_for

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


def payout_window(now: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the UTC calendar day exactly PAYOUT_DELAY_DAYS before ``now``."""
    day = (now - timedelta(days=settings.PAYOUT_DELAY_DAYS)).date()
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


async def event_revenue(db: AsyncSession, event: Event) -> tuple[int, int, int]:
    """Return (gross, artist_amount, platform_fee) for an event's ticket sales.

    "flat" prices every sold seat at the list price and splits it
    ARTIST_PAYOUT_RATE / remainder.  "ledger" sums the splits recorded on
    the event's completed ticket transactions, so affiliate commissions are
    already taken out of the artist's amount.
    """
    if settings.PAYOUT_REVENUE_MODEL == "ledger":
        result = await db.execute(
            select(
                func.coalesce(func.sum(Transaction.amount), 0),
                func.coalesce(func.sum(Transaction.artist_amount), 0),
                func.coalesce(func.sum(Transaction.platform_fee), 0),
            ).where(
                Transaction.event_id == event.uuid,
                Transaction.transaction_type == "ticket_purchase",
                Transaction.status == "completed",
            )
        )
        gross, artist_amount, platform_fee = result.one()
        return int(gross), int(artist_amount), int(platform_fee)

    gross = event.tickets_sold * event.ticket_price
    artist_amount = round_half_up(Decimal(gross) * settings.ARTIST_PAYOUT_RATE)
    return gross, artist_amount, gross - artist_amount


async def _payout_exists(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(select(Payout.uuid).where(Payout.event_id == event_id))
    return result.first() is not None


async def pay_out_event(db: AsyncSession, event: Event) -> PayoutResult:
    """Transfer one event's artist share, at most once per event."""
    event_id = event.uuid
    if await _payout_exists(db, event_id):
        return PayoutResult(event_id=event_id, status="skipped", reason="already_paid")

    gross, artist_amount, platform_fee = await event_revenue(db, event)
    if artist_amount < settings.MINIMUM_PAYOUT:
        logger.info(f"Event {event_id}: artist share {artist_amount} below minimum, skipping")
        return PayoutResult(
            event_id=event_id, status="skipped", amount=artist_amount, reason="below_minimum"
        )

    result = await db.execute(select(User).where(User.uuid == event.artist_id))
    artist = result.scalar_one_or_none()
    if artist is None or not artist.stripe_connect_account_id:
        logger.error(f"Event {event_id}: artist {event.artist_id} has no payout account")
        return PayoutResult(
            event_id=event_id, status="error", amount=artist_amount, reason="payout_account_missing"
        )

    try:
        transfer = stripe.Transfer.create(
            amount=artist_amount,
            currency=event.currency,
            destination=artist.stripe_connect_account_id,
            transfer_group=transfer_group_for(event_id),
            description=f"Payout for {event.title}",
            metadata={"event_id": event_id, "artist_id": artist.uuid, "gross": str(gross)},
            idempotency_key=f"payout_{event_id}",
        )
    except stripe.error.StripeError as e:
        logger.error(f"Event {event_id}: transfer failed: {e}")
        return PayoutResult(event_id=event_id, status="error", amount=artist_amount, reason=str(e))

    db.add(Payout(
        artist_id=artist.uuid,
        event_id=event_id,
        gross_revenue=gross,
        amount=artist_amount,
        platform_fee=platform_fee,
        currency=event.currency,
        stripe_transfer_id=transfer.id,
        status="completed",
        payout_date=datetime.utcnow(),
    ))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        # The money has moved; the idempotency key stops a second transfer if this recurs
        await db.rollback()
        logger.error(f"Event {event_id}: transfer {transfer.id} succeeded but payout row not saved: {e}")
        return PayoutResult(
            event_id=event_id,
            status="error",
            amount=artist_amount,
            transfer_id=transfer.id,
            reason="payout_record_failed",
        )

    logger.info(f"Event {event_id}: paid {artist_amount} to artist (transfer={transfer.id})")
    return PayoutResult(event_id=event_id, status="paid", amount=artist_amount, transfer_id=transfer.id)


async def run_artist_payouts(db: AsyncSession, now: Optional[datetime] = None) -> PayoutRunReport:
    """
    Pay out every event that ended on the day PAYOUT_DELAY_DAYS ago.

    Events already paid are skipped, so the run can be repeated safely.
    """
    start, end = payout_window(now or datetime.utcnow())
    result = await db.execute(
        select(Event.uuid).where(
            Event.status == "ended",
            Event.ended_at >= start,
            Event.ended_at < end,
        )
    )
    event_ids = list(result.scalars().all())
    logger.info(f"Payout run: {len(event_ids)} event(s) ended between {start} and {end}")

    results = []
    for event_id in event_ids:
        # Re-read per event; a failed payout rolls the session back
        event = await db.get(Event, event_id, populate_existing=True)
        results.append(await pay_out_event(db, event))
    return PayoutRunReport(processed=len(event_ids), results=results)


def _batch_key(affiliate_id: str, commission_ids: list[str]) -> str:
    digest = hashlib.sha256(",".join(sorted(commission_ids)).encode()).hexdigest()[:32]
    return f"affiliate_{affiliate_id}_{digest}"


async def pay_affiliate_commissions(db: AsyncSession) -> AffiliatePayoutReport:
    """
    Transfer each affiliate's pending commissions in one batch per currency.

    Balances under MINIMUM_AFFILIATE_PAYOUT stay pending and roll into the
    next run.
    """
    result = await db.execute(
        select(
            AffiliateCommission.affiliate_id,
            AffiliateCommission.currency,
            AffiliateCommission.uuid,
            AffiliateCommission.commission_amount,
        )
        .where(AffiliateCommission.status == "pending")
        .order_by(AffiliateCommission.affiliate_id, AffiliateCommission.created_at)
    )
    batches: dict[tuple[str, str], list[tuple[str, int]]] = {}
    for affiliate_id, currency, commission_id, amount in result.all():
        batches.setdefault((affiliate_id, currency), []).append((commission_id, amount))

    results = []
    for (affiliate_id, currency), rows in batches.items():
        commission_ids = [commission_id for commission_id, _ in rows]
        total = sum(amount for _, amount in rows)

        if total < settings.MINIMUM_AFFILIATE_PAYOUT:
            results.append(AffiliatePayoutResult(
                affiliate_id=affiliate_id, status="skipped", amount=total,
                commission_count=len(rows), reason="below_minimum",
            ))
            continue

        account = await db.execute(
            select(User.stripe_connect_account_id)
            .join(Affiliate, Affiliate.uuid == User.uuid)
            .where(Affiliate.uuid == affiliate_id)
        )
        destination = account.scalar_one_or_none()
        if not destination:
            logger.error(f"Affiliate {affiliate_id} has {total} pending but no payout account")
            results.append(AffiliatePayoutResult(
                affiliate_id=affiliate_id, status="error", amount=total,
                commission_count=len(rows), reason="payout_account_missing",
            ))
            continue

        try:
            transfer = stripe.Transfer.create(
                amount=total,
                currency=currency,
                destination=destination,
                description="Affiliate commissions",
                metadata={"affiliate_id": affiliate_id, "commission_count": str(len(rows))},
                idempotency_key=_batch_key(affiliate_id, commission_ids),
            )
        except stripe.error.StripeError as e:
            logger.error(f"Affiliate {affiliate_id}: transfer of {total} failed: {e}")
            results.append(AffiliatePayoutResult(
                affiliate_id=affiliate_id, status="error", amount=total,
                commission_count=len(rows), reason=str(e),
            ))
            continue

        try:
            await db.execute(
                update(AffiliateCommission)
                .where(
                    AffiliateCommission.uuid.in_(commission_ids),
                    AffiliateCommission.status == "pending",
                )
                .values(status="paid", paid_at=datetime.utcnow(), stripe_transfer_id=transfer.id)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Affiliate {affiliate_id}: transfer {transfer.id} succeeded but commissions not marked paid: {e}")
            results.append(AffiliatePayoutResult(
                affiliate_id=affiliate_id, status="error", amount=total,
                commission_count=len(rows), transfer_id=transfer.id, reason="commission_update_failed",
            ))
            continue

        logger.info(f"Affiliate {affiliate_id}: paid {total} {currency} for {len(rows)} commission(s)")
        results.append(AffiliatePayoutResult(
            affiliate_id=affiliate_id, status="paid", amount=total,
            commission_count=len(rows), transfer_id=transfer.id,
        ))

    return AffiliatePayoutReport(processed=len(batches), results=results)
