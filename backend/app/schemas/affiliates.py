"""Schemas for affiliate endpoints."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from app.models.affiliate import REFERRAL_CODE_LENGTH


class AffiliateRegisterRequest(BaseModel):
    """Request to join the affiliate program, optionally under a referrer."""

    parent_referral_code: Optional[str] = Field(
        None,
        min_length=REFERRAL_CODE_LENGTH,
        max_length=REFERRAL_CODE_LENGTH,
    )


class AffiliateResponse(BaseModel):
    """Affiliate record."""

    id: str
    referral_code: str
    parent_affiliate_id: Optional[str] = None
    grandparent_affiliate_id: Optional[str] = None
    total_referrals: int
    total_earnings: int
    is_active: bool
    created_at: datetime


class CommissionResponse(BaseModel):
    id: str
    ticket_id: str
    commission_level: int
    commission_amount: int
    currency: str
    status: str
    created_at: datetime


class LevelEarnings(BaseModel):
    level: int
    amount: int
    count: int


class AffiliateStatsResponse(BaseModel):
    """Aggregated earnings for one affiliate."""

    affiliate: AffiliateResponse
    total_commissions: int = Field(..., description="Sum of all commission amounts")
    pending_amount: int
    paid_amount: int
    cancelled_amount: int
    commission_count: int
    referred_tickets: int = Field(..., description="Tickets bought with this affiliate's code")
    by_level: list[LevelEarnings]
    recent_commissions: list[CommissionResponse]
