"""Trigger endpoints for the scheduled jobs, called by an external cron."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.auth.dependencies import cron_secret_required
from app.schemas.payouts import AffiliatePayoutReport, ExpiryReport, PayoutRunReport
from app.services.payouts import run_artist_payouts, pay_affiliate_commissions
from app.services.reconciliation import expire_abandoned_payments

router = APIRouter(dependencies=[Depends(cron_secret_required)])


@router.post("/api/cron/payouts", response_model=PayoutRunReport)
async def artist_payouts(db: AsyncSession = Depends(get_db)):
    """Pay artists for events that ended PAYOUT_DELAY_DAYS ago."""
    return await run_artist_payouts(db)


@router.post("/api/cron/affiliate-commissions", response_model=AffiliatePayoutReport)
async def affiliate_commissions(db: AsyncSession = Depends(get_db)):
    return await pay_affiliate_commissions(db)


@router.post("/api/cron/expire-pending", response_model=ExpiryReport)
async def expire_pending(db: AsyncSession = Depends(get_db)):
    return await expire_abandoned_payments(db)
