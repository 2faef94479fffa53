"""Schemas for tip endpoints."""
from typing import Optional
from pydantic import BaseModel, Field


class TipRequest(BaseModel):
    """Request to tip an artist."""

    artist_id: str = Field(..., description="UUID of the artist")
    amount: int = Field(..., description="Amount in minor units")
    message: Optional[str] = Field(None, max_length=500)
    event_id: Optional[str] = Field(None, description="Event the tip was sent during")


class TipResponse(BaseModel):
    tip_id: str
    client_secret: str
    amount: int
    currency: str
    publishable_key: str
