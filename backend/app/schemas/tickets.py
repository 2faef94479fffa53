"""Schemas for ticket purchase endpoints."""
from typing import Optional
from pydantic import BaseModel, Field
from app.models.affiliate import REFERRAL_CODE_LENGTH


class TicketPurchaseRequest(BaseModel):
    """Request to start a ticket purchase."""

    event_id: str = Field(..., description="UUID of the event")
    referral_code: Optional[str] = Field(
        None,
        min_length=REFERRAL_CODE_LENGTH,
        max_length=REFERRAL_CODE_LENGTH,
        description="Affiliate referral code",
    )


class TicketPurchaseResponse(BaseModel):
    """PaymentIntent details for the frontend to confirm the payment."""

    ticket_id: str
    client_secret: str = Field(..., description="Stripe PaymentIntent client secret")
    amount: int = Field(..., description="Amount in minor units")
    currency: str
    publishable_key: str = Field(..., description="Stripe publishable key")
