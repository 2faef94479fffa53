"""Database models for the LiveStage payments API."""
from app.models.user import User
from app.models.event import Event
from app.models.ticket import Ticket
from app.models.tip import Tip
from app.models.transaction import Transaction
from app.models.affiliate import Affiliate, AffiliateCommission
from app.models.payout import Payout
from app.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Event",
    "Ticket",
    "Tip",
    "Transaction",
    "Affiliate",
    "AffiliateCommission",
    "Payout",
    "WebhookEvent",
]
