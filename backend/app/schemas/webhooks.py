"""Typed view of the Stripe webhook events the settlement service handles.

Only the fields settlement reads are modelled; everything else in the
payload is ignored.
"""
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field


class IntentMetadata(BaseModel):
    type: Optional[str] = None
    ticket_id: Optional[str] = None
    tip_id: Optional[str] = None
    event_id: Optional[str] = None
    user_id: Optional[str] = None
    artist_id: Optional[str] = None


class PaymentIntentObject(BaseModel):
    id: str
    amount: int = 0
    currency: str = ""
    metadata: IntentMetadata = Field(default_factory=IntentMetadata)


class ChargeObject(BaseModel):
    id: str
    payment_intent: Optional[str] = None
    amount_refunded: int = 0
    metadata: IntentMetadata = Field(default_factory=IntentMetadata)


class AccountObject(BaseModel):
    id: str
    details_submitted: bool = False
    charges_enabled: bool = False


class StripeEventBase(BaseModel):
    id: str
    type: str


class PaymentIntentSucceeded(StripeEventBase):
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    intent: PaymentIntentObject


class PaymentIntentFailed(StripeEventBase):
    """``payment_intent.payment_failed`` and ``payment_intent.canceled``."""

    kind: Literal["payment_failed"] = "payment_failed"
    intent: PaymentIntentObject


class ChargeRefunded(StripeEventBase):
    kind: Literal["charge_refunded"] = "charge_refunded"
    charge: ChargeObject


class AccountUpdated(StripeEventBase):
    kind: Literal["account_updated"] = "account_updated"
    account: AccountObject


class UnhandledEvent(StripeEventBase):
    kind: Literal["unhandled"] = "unhandled"


SettlementEvent = Union[
    PaymentIntentSucceeded, PaymentIntentFailed, ChargeRefunded, AccountUpdated, UnhandledEvent
]

_INTENT_EVENTS = {
    "payment_intent.succeeded": PaymentIntentSucceeded,
    "payment_intent.payment_failed": PaymentIntentFailed,
    "payment_intent.canceled": PaymentIntentFailed,
}


def parse_event(event: dict) -> SettlementEvent:
    """Map a raw Stripe event dict onto its typed variant."""
    event_id = event["id"]
    event_type = event["type"]
    obj = event.get("data", {}).get("object", {})

    if event_type in _INTENT_EVENTS:
        return _INTENT_EVENTS[event_type](
            id=event_id, type=event_type, intent=PaymentIntentObject.model_validate(obj)
        )
    if event_type == "charge.refunded":
        return ChargeRefunded(id=event_id, type=event_type, charge=ChargeObject.model_validate(obj))
    if event_type == "account.updated":
        return AccountUpdated(id=event_id, type=event_type, account=AccountObject.model_validate(obj))
    return UnhandledEvent(id=event_id, type=event_type)
