"""FastAPI dependencies for authentication and authorization."""
import hmac
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.config import settings
from app.database import get_db
from app.errors import Unauthorized, Forbidden
from app.models.user import User
from app.auth.security import decode_token

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    FastAPI dependency to extract and validate the current user from JWT Bearer token.
    Raises Unauthorized if the token is missing or invalid or the user is unknown.
    """
    if credentials is None:
        raise Unauthorized()

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise Unauthorized("Invalid or expired token")

    user_id = payload.get("sub")
    if user_id is None:
        raise Unauthorized("Invalid token")

    result = await db.execute(select(User).where(User.uuid == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")

    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Reject suspended accounts."""
    if current_user.status != "active":
        raise Forbidden("User account is not active")
    return current_user


async def artist_required(current_user: User = Depends(get_current_active_user)) -> User:
    if current_user.user_role not in ("artist", "admin"):
        raise Forbidden("Artist account required")
    return current_user


async def cron_secret_required(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> None:
    """
    Guard for the scheduled-job trigger endpoints.
    Expects ``Authorization: Bearer <CRON_SECRET>``; an unset secret locks the endpoints.
    """
    if not settings.CRON_SECRET:
        raise Unauthorized("Cron endpoints are disabled")
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), settings.CRON_SECRET.encode()
    ):
        raise Unauthorized("Invalid cron secret")
