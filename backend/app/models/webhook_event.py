"""Webhook event ledger used for at-most-once processing."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class WebhookEvent(Base):
    """A Stripe event id claimed by the settlement handler.

    The row is inserted (and committed) before the event's effects run; a
    unique violation on ``stripe_event_id`` means another delivery already
    owns it.
    """

    __tablename__ = "webhook_events"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    stripe_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # "processing", "processed"
    status: Mapped[str] = mapped_column(String(20), default="processing", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEvent(stripe_event_id={self.stripe_event_id}, type={self.event_type}, status={self.status})>"
