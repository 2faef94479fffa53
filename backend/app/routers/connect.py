"""Stripe Connect onboarding router for artist payouts."""
import logging
import stripe
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.config import settings
from app.errors import ExternalServiceError
from app.models.user import User
from app.auth.dependencies import artist_required
from app.schemas.connect import ConnectOnboardResponse, ConnectStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


@router.post("/api/connect/onboard", response_model=ConnectOnboardResponse)
async def create_onboard_link(
    current_user: User = Depends(artist_required),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a Stripe Express account and an Account Link for onboarding.

    - Creates the Express account on first call and stores its id as the payout account
    - Returns the hosted onboarding (or account update) URL
    """
    try:
        if not current_user.stripe_connect_account_id:
            account = stripe.Account.create(
                type="express",
                email=current_user.email,
                capabilities={"transfers": {"requested": True}},
                metadata={"user_id": current_user.uuid},
            )
            current_user.stripe_connect_account_id = account.id
            await db.commit()
            link_type = "account_onboarding"
        else:
            existing = stripe.Account.retrieve(current_user.stripe_connect_account_id)
            link_type = "account_update" if (existing.charges_enabled and existing.details_submitted) else "account_onboarding"

        account_link = stripe.AccountLink.create(
            account=current_user.stripe_connect_account_id,
            type=link_type,
            return_url=f"{settings.FRONTEND_URL}/dashboard/payouts/return",
            refresh_url=f"{settings.FRONTEND_URL}/dashboard/payouts"
        )
    except stripe.error.StripeError as e:
        logger.error(f"Connect onboarding failed for user {current_user.uuid}: {e}")
        raise ExternalServiceError()

    return ConnectOnboardResponse(url=account_link.url)


@router.get("/api/connect/status", response_model=ConnectStatusResponse)
async def get_connect_status(
    current_user: User = Depends(artist_required),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the artist's Stripe Connect onboarding status.

    - "not_started" if no account exists
    - "pending" until charges are enabled and details submitted
    - "complete" otherwise; the local onboarding flag is refreshed to match
    """
    if not current_user.stripe_connect_account_id:
        return ConnectStatusResponse(status="not_started", account_id=None)

    try:
        account = stripe.Account.retrieve(current_user.stripe_connect_account_id)
    except stripe.error.StripeError as e:
        logger.error(f"Connect status lookup failed for user {current_user.uuid}: {e}")
        raise ExternalServiceError()

    reqs = account.get("requirements") or {}
    requirements_due = sorted(set(
        (reqs.get("currently_due") or []) + (reqs.get("past_due") or [])
    ))
    disabled_reason = reqs.get("disabled_reason") or None

    complete = bool(account.charges_enabled and account.details_submitted)
    if current_user.stripe_connect_completed != complete:
        current_user.stripe_connect_completed = complete
        await db.commit()

    return ConnectStatusResponse(
        status="complete" if complete else "pending",
        account_id=current_user.stripe_connect_account_id,
        requirements_due=requirements_due,
        disabled_reason=disabled_reason,
    )
