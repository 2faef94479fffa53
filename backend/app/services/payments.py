"""PaymentIntent creation for ticket purchases and tips.

Nothing here moves a ticket or tip past ``pending``; confirmation only ever
comes from the settlement webhook.
"""
import logging
from typing import Optional

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    AlreadyPurchased,
    EventNotPurchasable,
    ExternalServiceError,
    NotFound,
    PayoutAccountMissing,
    SoldOut,
    ValidationError,
)
from app.models.event import Event
from app.models.ticket import Ticket, ACTIVE_TICKET_STATUSES
from app.models.tip import Tip
from app.models.user import User
from app.schemas.tickets import TicketPurchaseResponse
from app.schemas.tips import TipResponse
from app.services.affiliates import resolve_referral_code
from app.services.commission import tip_split

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


def transfer_group_for(event_id: str) -> str:
    return f"event_{event_id}"


async def ensure_customer(db: AsyncSession, user: User) -> str:
    """Return the user's Stripe customer id, creating the customer on first use."""
    if user.stripe_customer_id:
        return user.stripe_customer_id
    try:
        customer = stripe.Customer.create(
            email=user.email,
            name=user.name,
            metadata={"user_id": user.uuid},
        )
    except stripe.error.StripeError as e:
        logger.error(f"Failed to create Stripe customer for user {user.uuid}: {e}")
        raise ExternalServiceError()
    user.stripe_customer_id = customer.id
    await db.flush()
    return customer.id


async def _get_artist(db: AsyncSession, artist_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.uuid == artist_id))
    return result.scalar_one_or_none()


async def purchase_ticket(
    db: AsyncSession,
    user: User,
    event_id: str,
    referral_code: Optional[str] = None,
) -> TicketPurchaseResponse:
    """
    Create a pending ticket and the PaymentIntent that pays for it.

    - Event must be scheduled or live and not sold out
    - At most one active ticket per (event, user)
    - The artist must have a connected payout account
    - A valid referral code records its affiliate on the ticket; anything
      else (unknown, inactive, the buyer's own code) is ignored
    """
    # Fresh read: tickets_sold only changes through UPDATE statements
    result = await db.execute(
        select(Event).where(Event.uuid == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")
    if not event.is_purchasable:
        raise EventNotPurchasable()
    if event.is_sold_out:
        raise SoldOut()

    result = await db.execute(
        select(Ticket.uuid).where(
            Ticket.event_id == event.uuid,
            Ticket.user_id == user.uuid,
            Ticket.status.in_(ACTIVE_TICKET_STATUSES),
        )
    )
    if result.first() is not None:
        raise AlreadyPurchased()

    artist = await _get_artist(db, event.artist_id)
    if artist is None or not artist.stripe_connect_account_id:
        raise PayoutAccountMissing()

    affiliate_id = None
    affiliate = await resolve_referral_code(db, referral_code)
    if affiliate is not None and affiliate.uuid != user.uuid:
        affiliate_id = affiliate.uuid

    user_id = user.uuid
    ticket = Ticket(
        event_id=event.uuid,
        user_id=user_id,
        affiliate_id=affiliate_id,
        purchase_price=event.ticket_price,
        currency=event.currency,
        status="pending",
    )
    db.add(ticket)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race against a concurrent purchase by the same user
        await db.rollback()
        raise AlreadyPurchased()

    customer_id = await ensure_customer(db, user)

    try:
        payment_intent = stripe.PaymentIntent.create(
            amount=event.ticket_price,
            currency=event.currency,
            customer=customer_id,
            transfer_group=transfer_group_for(event.uuid),
            metadata={
                "type": "ticket_purchase",
                "ticket_id": ticket.uuid,
                "event_id": event.uuid,
                "user_id": user_id,
                "artist_id": artist.uuid,
                "destination_account": artist.stripe_connect_account_id,
            },
            idempotency_key=f"ticket_{ticket.uuid}",
        )
    except stripe.error.StripeError as e:
        await db.rollback()
        logger.error(f"Failed to create PaymentIntent for event {event_id} user {user_id}: {e}")
        raise ExternalServiceError()

    ticket.payment_intent_id = payment_intent.id
    await db.commit()
    logger.info(
        f"Ticket {ticket.uuid} pending for event {event.uuid} "
        f"(intent={payment_intent.id}, affiliate={affiliate_id})"
    )

    return TicketPurchaseResponse(
        ticket_id=ticket.uuid,
        client_secret=payment_intent.client_secret,
        amount=ticket.purchase_price,
        currency=ticket.currency,
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
    )


async def send_tip(
    db: AsyncSession,
    user: User,
    artist_id: str,
    amount: int,
    message: Optional[str] = None,
    event_id: Optional[str] = None,
) -> TipResponse:
    """
    Create a pending tip and a destination-charge PaymentIntent for it.

    The platform keeps its fee as the application fee; tips never pay
    affiliate commission.
    """
    artist = await _get_artist(db, artist_id)
    if artist is None or not artist.is_artist:
        raise NotFound("Artist not found")
    if amount < settings.MINIMUM_TIP:
        raise ValidationError(f"Minimum tip is {settings.MINIMUM_TIP} minor units")

    currency = settings.CURRENCY
    if event_id is not None:
        result = await db.execute(select(Event).where(Event.uuid == event_id))
        event = result.scalar_one_or_none()
        if event is None:
            raise NotFound("Event not found")
        currency = event.currency

    if not artist.stripe_connect_account_id:
        raise PayoutAccountMissing()

    split = tip_split(amount)

    user_id = user.uuid
    tip = Tip(
        from_user_id=user_id,
        to_artist_id=artist.uuid,
        event_id=event_id,
        amount=amount,
        currency=currency,
        message=message,
        status="pending",
    )
    db.add(tip)
    await db.flush()

    customer_id = await ensure_customer(db, user)

    try:
        payment_intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=currency,
            customer=customer_id,
            application_fee_amount=split.platform_share,
            transfer_data={"destination": artist.stripe_connect_account_id},
            metadata={
                "type": "tip",
                "tip_id": tip.uuid,
                "artist_id": artist.uuid,
                "user_id": user_id,
                "event_id": event_id or "",
            },
            idempotency_key=f"tip_{tip.uuid}",
        )
    except stripe.error.StripeError as e:
        await db.rollback()
        logger.error(f"Failed to create tip PaymentIntent for artist {artist_id} user {user_id}: {e}")
        raise ExternalServiceError()

    tip.payment_intent_id = payment_intent.id
    await db.commit()
    logger.info(f"Tip {tip.uuid} pending for artist {artist_id} (intent={payment_intent.id})")

    return TipResponse(
        tip_id=tip.uuid,
        client_secret=payment_intent.client_secret,
        amount=amount,
        currency=currency,
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
    )
