"""Schemas for artist payout-account onboarding."""
from typing import Literal, Optional
from pydantic import BaseModel, Field

OnboardingStatus = Literal["not_started", "pending", "complete"]


class ConnectOnboardResponse(BaseModel):
    """Hosted Stripe page where the artist sets up (or updates) their payout account."""

    url: str


class ConnectStatusResponse(BaseModel):
    """
    Whether the artist can be paid.

    Ticket sales and tips are refused until ``status`` is past
    ``not_started``; the T+21 event payouts and affiliate transfers land in
    ``account_id`` once it is ``complete``.
    """

    status: OnboardingStatus
    account_id: Optional[str] = Field(None, description="Connected account receiving payouts")
    requirements_due: list[str] = Field(
        default_factory=list,
        description="Verification items Stripe still needs before payouts can be sent",
    )
    disabled_reason: Optional[str] = None
