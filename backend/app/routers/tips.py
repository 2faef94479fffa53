"""Tip router."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.limiter import limiter
from app.models.user import User
from app.auth.dependencies import get_current_active_user
from app.schemas.tips import TipRequest, TipResponse
from app.services.payments import send_tip

router = APIRouter()


@router.post("/api/tips", response_model=TipResponse)
@limiter.limit(settings.TIP_RATE_LIMIT)
async def create_tip(
    request: Request,
    request_data: TipRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a pending tip and the PaymentIntent that pays the artist."""
    return await send_tip(
        db,
        current_user,
        request_data.artist_id,
        request_data.amount,
        message=request_data.message,
        event_id=request_data.event_id,
    )
