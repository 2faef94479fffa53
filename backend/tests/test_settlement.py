"""Tests for webhook settlement: idempotency, guarded transitions and commissions."""
import json
from datetime import datetime, timedelta

import pytest
from unittest.mock import patch
import stripe
from sqlalchemy import select, func

from app.errors import ExternalServiceError
from app.models.affiliate import AffiliateCommission
from app.models.tip import Tip
from app.models.transaction import Transaction
from app.models.webhook_event import WebhookEvent
from app.services.settlement import process_event
from conftest import make_user, make_event, make_ticket, make_affiliate


def intent_event(event_id, event_type, intent_id, metadata, amount=2000):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "amount": amount, "currency": "eur", "metadata": metadata}},
    }


def ticket_succeeded(event_id, ticket, amount=2000):
    return intent_event(
        event_id,
        "payment_intent.succeeded",
        ticket.payment_intent_id,
        {"type": "ticket_purchase", "ticket_id": ticket.uuid, "event_id": ticket.event_id},
        amount=amount,
    )


def charge_refunded(event_id, intent_id, amount=2000):
    return {
        "id": event_id,
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_test", "payment_intent": intent_id, "amount_refunded": amount}},
    }


async def make_tip(db, fan, artist, intent_id, status="pending"):
    tip = Tip(
        from_user_id=fan.uuid,
        to_artist_id=artist.uuid,
        amount=500,
        currency="eur",
        payment_intent_id=intent_id,
        status=status,
    )
    db.add(tip)
    await db.commit()
    return tip


async def count(db, model, *where):
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_ticket_happy_path(test_db, artist, fan):
    event = await make_event(test_db, artist, ticket_price=2000)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_1")

    status = await process_event(test_db, ticket_succeeded("evt_1", ticket))

    assert status == "processed"
    await test_db.refresh(ticket)
    await test_db.refresh(event)
    assert ticket.status == "confirmed"
    assert ticket.purchased_at is not None
    assert event.tickets_sold == 1

    result = await test_db.execute(select(Transaction).where(Transaction.stripe_payment_id == "pi_1"))
    txn = result.scalar_one()
    assert txn.transaction_type == "ticket_purchase"
    assert txn.status == "completed"
    assert (txn.amount, txn.platform_fee, txn.artist_amount) == (2000, 100, 1900)
    assert txn.artist_id == artist.uuid
    assert txn.details["ticket_id"] == ticket.uuid

    result = await test_db.execute(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_1"))
    ledger = result.scalar_one()
    assert ledger.status == "processed"
    assert ledger.processed_at is not None


@pytest.mark.asyncio
async def test_full_three_level_commission(test_db, artist, fan):
    a_user = await make_user(test_db, "a@example.com")
    b_user = await make_user(test_db, "b@example.com")
    c_user = await make_user(test_db, "c@example.com")
    aff_a = await make_affiliate(test_db, a_user, "AAAAAAAA")
    aff_b = await make_affiliate(test_db, b_user, "BBBBBBBB", parent=aff_a)
    aff_c = await make_affiliate(test_db, c_user, "CCCCCCCC", parent=aff_b)

    event = await make_event(test_db, artist, ticket_price=1000)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_ref", affiliate_id=aff_c.uuid)

    await process_event(test_db, ticket_succeeded("evt_ref", ticket, amount=1000))

    result = await test_db.execute(
        select(AffiliateCommission)
        .where(AffiliateCommission.ticket_id == ticket.uuid)
        .order_by(AffiliateCommission.commission_level)
    )
    commissions = result.scalars().all()
    assert [(c.affiliate_id, c.commission_level, c.commission_amount, c.status) for c in commissions] == [
        (aff_c.uuid, 1, 25, "pending"),
        (aff_b.uuid, 2, 15, "pending"),
        (aff_a.uuid, 3, 10, "pending"),
    ]

    for affiliate, expected in ((aff_c, 25), (aff_b, 15), (aff_a, 10)):
        await test_db.refresh(affiliate)
        assert affiliate.total_earnings == expected

    result = await test_db.execute(select(Transaction).where(Transaction.stripe_payment_id == "pi_ref"))
    txn = result.scalar_one()
    assert (txn.platform_fee, txn.artist_amount) == (50, 900)
    assert txn.details["commission_total"] == 50


@pytest.mark.asyncio
async def test_duplicate_delivery_has_no_effect(test_db, artist, fan):
    referrer = await make_user(test_db, "referrer@example.com")
    affiliate = await make_affiliate(test_db, referrer, "REFER001")
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_dup", affiliate_id=affiliate.uuid)
    payload = ticket_succeeded("evt_dup", ticket)

    assert await process_event(test_db, payload) == "processed"
    assert await process_event(test_db, payload) == "duplicate"

    await test_db.refresh(event)
    await test_db.refresh(affiliate)
    assert event.tickets_sold == 1
    assert affiliate.total_earnings == 50
    assert await count(test_db, AffiliateCommission, AffiliateCommission.ticket_id == ticket.uuid) == 1
    assert await count(test_db, Transaction, Transaction.stripe_payment_id == "pi_dup") == 1
    assert await count(test_db, WebhookEvent, WebhookEvent.stripe_event_id == "evt_dup") == 1


@pytest.mark.asyncio
async def test_second_success_event_for_same_intent_is_ignored(test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_twice")

    assert await process_event(test_db, ticket_succeeded("evt_a", ticket)) == "processed"
    assert await process_event(test_db, ticket_succeeded("evt_b", ticket)) == "ignored"

    await test_db.refresh(event)
    assert event.tickets_sold == 1
    assert await count(test_db, Transaction, Transaction.stripe_payment_id == "pi_twice") == 1


@pytest.mark.asyncio
async def test_sold_out_at_confirmation_fails_and_refunds(test_db, artist, fan):
    """Two payments in flight for the last seat: the second one is refunded."""
    other_fan = await make_user(test_db, "other@example.com")
    event = await make_event(test_db, artist, capacity=1)
    first = await make_ticket(test_db, event, fan, payment_intent_id="pi_first")
    second = await make_ticket(test_db, event, other_fan, payment_intent_id="pi_second")

    with patch("stripe.Refund.create") as mock_refund:
        await process_event(test_db, ticket_succeeded("evt_first", first))
        await process_event(test_db, ticket_succeeded("evt_second", second))

    await test_db.refresh(first)
    await test_db.refresh(second)
    await test_db.refresh(event)
    assert first.status == "confirmed"
    assert second.status == "failed"
    assert event.tickets_sold == 1
    mock_refund.assert_called_once()
    assert mock_refund.call_args.kwargs["payment_intent"] == "pi_second"
    assert await count(test_db, Transaction, Transaction.stripe_payment_id == "pi_second") == 0


@pytest.mark.asyncio
async def test_oversold_refund_failure_is_logged_not_raised(test_db, artist, fan):
    event = await make_event(test_db, artist, capacity=1, tickets_sold=1)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_late")

    with patch("stripe.Refund.create", side_effect=stripe.error.APIConnectionError("down")):
        status = await process_event(test_db, ticket_succeeded("evt_late", ticket))

    assert status == "processed"
    await test_db.refresh(ticket)
    assert ticket.status == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type", ["payment_intent.payment_failed", "payment_intent.canceled"])
async def test_payment_failed_marks_pending_ticket_failed(test_db, artist, fan, event_type):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_fail")

    status = await process_event(
        test_db, intent_event("evt_fail", event_type, "pi_fail", {"type": "ticket_purchase"})
    )

    assert status == "processed"
    await test_db.refresh(ticket)
    await test_db.refresh(event)
    assert ticket.status == "failed"
    assert event.tickets_sold == 0


@pytest.mark.asyncio
async def test_payment_failed_does_not_touch_confirmed_ticket(test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, status="confirmed", payment_intent_id="pi_ok")

    status = await process_event(
        test_db,
        intent_event("evt_late_fail", "payment_intent.payment_failed", "pi_ok", {"type": "ticket_purchase"}),
    )

    assert status == "ignored"
    await test_db.refresh(ticket)
    assert ticket.status == "confirmed"


@pytest.mark.asyncio
async def test_refund_of_confirmed_ticket(test_db, artist, fan):
    referrer = await make_user(test_db, "referrer@example.com")
    affiliate = await make_affiliate(test_db, referrer, "REFER001")
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_refund", affiliate_id=affiliate.uuid)
    await process_event(test_db, ticket_succeeded("evt_paid", ticket))

    status = await process_event(test_db, charge_refunded("evt_refund", "pi_refund"))

    assert status == "processed"
    await test_db.refresh(ticket)
    await test_db.refresh(event)
    assert ticket.status == "refunded"
    assert event.tickets_sold == 0

    result = await test_db.execute(select(Transaction).where(Transaction.stripe_payment_id == "pi_refund"))
    assert result.scalar_one().status == "refunded"

    # No clawback
    result = await test_db.execute(
        select(AffiliateCommission).where(AffiliateCommission.ticket_id == ticket.uuid)
    )
    assert result.scalar_one().status == "pending"


@pytest.mark.asyncio
async def test_refund_never_moves_pending_ticket(test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_pending")

    status = await process_event(test_db, charge_refunded("evt_early_refund", "pi_pending"))

    assert status == "ignored"
    await test_db.refresh(ticket)
    assert ticket.status == "pending"


@pytest.mark.asyncio
async def test_tip_settlement_has_no_commissions(test_db, artist, fan):
    """A tipper deep in the referral tree still pays no commission."""
    a_user = await make_user(test_db, "a@example.com")
    b_user = await make_user(test_db, "b@example.com")
    c_user = await make_user(test_db, "c@example.com")
    aff_a = await make_affiliate(test_db, a_user, "AAAAAAAA")
    aff_b = await make_affiliate(test_db, b_user, "BBBBBBBB", parent=aff_a)
    aff_c = await make_affiliate(test_db, c_user, "CCCCCCCC", parent=aff_b)
    await make_affiliate(test_db, fan, "FANCODE1", parent=aff_c)

    tip = await make_tip(test_db, fan, artist, "pi_tip")

    status = await process_event(
        test_db,
        intent_event("evt_tip", "payment_intent.succeeded", "pi_tip", {"type": "tip", "tip_id": tip.uuid}, 500),
    )

    assert status == "processed"
    await test_db.refresh(tip)
    assert tip.status == "completed"

    result = await test_db.execute(select(Transaction).where(Transaction.stripe_payment_id == "pi_tip"))
    txn = result.scalar_one()
    assert (txn.transaction_type, txn.platform_fee, txn.artist_amount) == ("tip", 50, 450)
    assert await count(test_db, AffiliateCommission) == 0
    for affiliate in (aff_a, aff_b, aff_c):
        await test_db.refresh(affiliate)
        assert affiliate.total_earnings == 0

    status = await process_event(test_db, charge_refunded("evt_tip_refund", "pi_tip", 500))
    assert status == "processed"
    await test_db.refresh(tip)
    assert tip.status == "refunded"


@pytest.mark.asyncio
async def test_success_after_failed_attempt_refunds_ticket(test_db, artist, fan):
    """A card declined, then a second card on the same intent went through."""
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_retry_card")
    ticket_id = ticket.uuid

    await process_event(
        test_db,
        intent_event("evt_f", "payment_intent.payment_failed", "pi_retry_card", {"type": "ticket_purchase"}),
    )
    with patch("stripe.Refund.create") as mock_refund:
        status = await process_event(test_db, ticket_succeeded("evt_s", ticket))

    assert status == "processed"
    mock_refund.assert_called_once()
    assert mock_refund.call_args.kwargs["payment_intent"] == "pi_retry_card"
    assert mock_refund.call_args.kwargs["idempotency_key"] == f"late_success_{ticket_id}"

    await test_db.refresh(ticket)
    await test_db.refresh(event)
    assert ticket.status == "failed"
    assert event.tickets_sold == 0
    assert await count(test_db, Transaction, Transaction.stripe_payment_id == "pi_retry_card") == 0


@pytest.mark.asyncio
async def test_success_after_failed_attempt_completes_tip(test_db, artist, fan):
    tip = await make_tip(test_db, fan, artist, "pi_tip_retry")
    metadata = {"type": "tip", "tip_id": tip.uuid}

    await process_event(
        test_db, intent_event("evt_tip_f", "payment_intent.payment_failed", "pi_tip_retry", metadata, 500)
    )
    await test_db.refresh(tip)
    assert tip.status == "failed"

    status = await process_event(
        test_db, intent_event("evt_tip_s", "payment_intent.succeeded", "pi_tip_retry", metadata, 500)
    )

    assert status == "processed"
    await test_db.refresh(tip)
    assert tip.status == "completed"
    assert await count(test_db, Transaction, Transaction.stripe_payment_id == "pi_tip_retry") == 1


@pytest.mark.asyncio
async def test_abandoned_claim_is_taken_over(test_db, artist, fan):
    """A worker died after claiming the event; Stripe's retry still settles it."""
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_crash")
    payload = ticket_succeeded("evt_crash", ticket)
    test_db.add(WebhookEvent(
        stripe_event_id="evt_crash",
        event_type="payment_intent.succeeded",
        payload=payload,
        status="processing",
        created_at=datetime.utcnow() - timedelta(minutes=30),
    ))
    await test_db.commit()

    assert await process_event(test_db, payload) == "processed"

    await test_db.refresh(ticket)
    assert ticket.status == "confirmed"
    assert await count(test_db, WebhookEvent, WebhookEvent.stripe_event_id == "evt_crash") == 1
    result = await test_db.execute(
        select(WebhookEvent.status).where(WebhookEvent.stripe_event_id == "evt_crash")
    )
    assert result.scalar_one() == "processed"


@pytest.mark.asyncio
async def test_recent_claim_is_left_to_its_owner(test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_busy")
    payload = ticket_succeeded("evt_busy", ticket)
    test_db.add(WebhookEvent(
        stripe_event_id="evt_busy",
        event_type="payment_intent.succeeded",
        payload=payload,
        status="processing",
    ))
    await test_db.commit()

    assert await process_event(test_db, payload) == "duplicate"

    await test_db.refresh(ticket)
    assert ticket.status == "pending"


@pytest.mark.asyncio
async def test_account_updated_sets_onboarding_flag(test_db, artist):
    payload = {
        "id": "evt_acct",
        "type": "account.updated",
        "data": {"object": {"id": "acct_artist123", "details_submitted": True, "charges_enabled": True}},
    }

    assert await process_event(test_db, payload) == "processed"
    await test_db.refresh(artist)
    assert artist.stripe_connect_completed is True


@pytest.mark.asyncio
async def test_unhandled_event_is_acknowledged(test_db):
    payload = {"id": "evt_other", "type": "customer.created", "data": {"object": {"id": "cus_1"}}}

    assert await process_event(test_db, payload) == "ignored"
    assert await process_event(test_db, payload) == "duplicate"


@pytest.mark.asyncio
async def test_processing_failure_releases_claim(test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_retry")
    payload = ticket_succeeded("evt_retry", ticket)

    with patch("app.services.settlement.settle_ticket", side_effect=RuntimeError("db unavailable")):
        with pytest.raises(ExternalServiceError):
            await process_event(test_db, payload)

    assert await count(test_db, WebhookEvent, WebhookEvent.stripe_event_id == "evt_retry") == 0

    # Stripe's retry goes through
    assert await process_event(test_db, payload) == "processed"
    await test_db.refresh(ticket)
    assert ticket.status == "confirmed"


@pytest.mark.asyncio
async def test_webhook_endpoint_processes_signed_event(client, test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_http")
    body = json.dumps(ticket_succeeded("evt_http", ticket))

    with patch("stripe.Webhook.construct_event") as mock_construct:
        response = await client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
        )
        duplicate = await client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
        )

    assert response.status_code == 200
    assert response.json() == {"status": "processed"}
    assert duplicate.json() == {"status": "duplicate"}
    assert mock_construct.call_args.args[0] == body.encode()


@pytest.mark.asyncio
async def test_webhook_endpoint_rejects_bad_signature(client):
    with patch(
        "stripe.Webhook.construct_event",
        side_effect=stripe.error.SignatureVerificationError("bad signature", "t=1,v1=bad"),
    ):
        response = await client.post(
            "/api/webhooks/stripe",
            content=b'{"id": "evt_x", "type": "payment_intent.succeeded"}',
            headers={"stripe-signature": "t=1,v1=bad"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "signature_invalid"


@pytest.mark.asyncio
async def test_webhook_endpoint_requires_signature_header(client):
    response = await client.post("/api/webhooks/stripe", content=b"{}")

    assert response.status_code == 400
    assert response.json()["error"] == "signature_invalid"


@pytest.mark.asyncio
async def test_webhook_endpoint_returns_500_on_processing_failure(client, test_db, artist, fan):
    event = await make_event(test_db, artist)
    ticket = await make_ticket(test_db, event, fan, payment_intent_id="pi_boom")
    body = json.dumps(ticket_succeeded("evt_boom", ticket))

    with patch("stripe.Webhook.construct_event"), \
         patch("app.services.settlement.settle_ticket", side_effect=RuntimeError("boom")):
        response = await client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"stripe-signature": "t=1,v1=abc"},
        )

    assert response.status_code == 500
    assert response.json()["error"] == "external_service_error"
