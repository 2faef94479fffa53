"""Schemas for the scheduled-job reports returned by the cron endpoints."""
from typing import Optional
from pydantic import BaseModel, Field


class PayoutResult(BaseModel):
    """Outcome for a single event in a payout run."""

    event_id: str
    status: str = Field(..., description="paid | skipped | error")
    amount: Optional[int] = None
    transfer_id: Optional[str] = None
    reason: Optional[str] = None


class PayoutRunReport(BaseModel):
    processed: int
    results: list[PayoutResult]


class AffiliatePayoutResult(BaseModel):
    affiliate_id: str
    status: str = Field(..., description="paid | skipped | error")
    amount: int
    commission_count: int
    transfer_id: Optional[str] = None
    reason: Optional[str] = None


class AffiliatePayoutReport(BaseModel):
    processed: int
    results: list[AffiliatePayoutResult]


class ExpiryReport(BaseModel):
    tickets_expired: int
    tips_expired: int
    still_pending: int = Field(..., description="Intents the processor refused to cancel")
