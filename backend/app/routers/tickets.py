"""Ticket purchase router."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.limiter import limiter
from app.models.user import User
from app.auth.dependencies import get_current_active_user
from app.schemas.tickets import TicketPurchaseRequest, TicketPurchaseResponse
from app.services.payments import purchase_ticket

router = APIRouter()


@router.post("/api/tickets/purchase", response_model=TicketPurchaseResponse)
@limiter.limit(settings.PURCHASE_RATE_LIMIT)
async def create_ticket_purchase(
    request: Request,
    request_data: TicketPurchaseRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a ticket purchase.

    - Creates a pending ticket and its PaymentIntent
    - The ticket is confirmed only when the payment webhook arrives
    """
    return await purchase_ticket(
        db,
        current_user,
        request_data.event_id,
        referral_code=request_data.referral_code,
    )
