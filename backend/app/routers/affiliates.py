"""Affiliate program router."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.affiliate import Affiliate, AffiliateCommission
from app.models.user import User
from app.auth.dependencies import get_current_active_user
from app.schemas.affiliates import (
    AffiliateRegisterRequest, AffiliateResponse, AffiliateStatsResponse,
    CommissionResponse, LevelEarnings,
)
from app.services.affiliates import register_affiliate, get_affiliate_stats

router = APIRouter()


def _affiliate_response(affiliate: Affiliate) -> AffiliateResponse:
    return AffiliateResponse(
        id=affiliate.uuid,
        referral_code=affiliate.referral_code,
        parent_affiliate_id=affiliate.parent_affiliate_id,
        grandparent_affiliate_id=affiliate.grandparent_affiliate_id,
        total_referrals=affiliate.total_referrals,
        total_earnings=affiliate.total_earnings,
        is_active=affiliate.is_active,
        created_at=affiliate.created_at,
    )


def _commission_response(commission: AffiliateCommission) -> CommissionResponse:
    return CommissionResponse(
        id=commission.uuid,
        ticket_id=commission.ticket_id,
        commission_level=commission.commission_level,
        commission_amount=commission.commission_amount,
        currency=commission.currency,
        status=commission.status,
        created_at=commission.created_at,
    )


@router.post("/api/affiliates/register", response_model=AffiliateResponse)
async def register(
    request_data: AffiliateRegisterRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Join the affiliate program.

    - Generates a unique 8-character referral code
    - A valid parent code places the new affiliate under that referrer
    """
    affiliate = await register_affiliate(db, current_user, request_data.parent_referral_code)
    return _affiliate_response(affiliate)


@router.get("/api/affiliates/stats", response_model=AffiliateStatsResponse)
async def stats(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Earnings summary for the caller's affiliate account."""
    data = await get_affiliate_stats(db, current_user.uuid)
    return AffiliateStatsResponse(
        affiliate=_affiliate_response(data["affiliate"]),
        total_commissions=data["total_commissions"],
        pending_amount=data["pending_amount"],
        paid_amount=data["paid_amount"],
        cancelled_amount=data["cancelled_amount"],
        commission_count=data["commission_count"],
        referred_tickets=data["referred_tickets"],
        by_level=[LevelEarnings(**level) for level in data["by_level"]],
        recent_commissions=[_commission_response(c) for c in data["recent_commissions"]],
    )
