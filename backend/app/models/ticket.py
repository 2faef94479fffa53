"""Ticket model: a fan's claim to attend/stream one event."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base

# Statuses that hold the (event, user) slot; failed/refunded tickets free it
ACTIVE_TICKET_STATUSES = ("pending", "confirmed", "used")
_ACTIVE_TICKET_CLAUSE = text("status IN ('pending', 'confirmed', 'used')")


class Ticket(Base):
    """Ticket purchase.

    Created ``pending`` together with its PaymentIntent and moved to
    ``confirmed``/``failed``/``refunded`` only by the settlement service.
    """

    __tablename__ = "tickets"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.uuid"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    # Level-1 referrer, resolved from the referral code at purchase time
    affiliate_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("affiliates.uuid"), nullable=True)

    purchase_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    # "pending", "confirmed", "used", "refunded", "failed"
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    purchased_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    event = relationship("Event", foreign_keys=[event_id])
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index(
            "uq_ticket_event_user_active",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_TICKET_CLAUSE,
            sqlite_where=_ACTIVE_TICKET_CLAUSE,
        ),
        Index("idx_ticket_affiliate_id", "affiliate_id"),
        Index("idx_ticket_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(uuid={self.uuid}, event_id={self.event_id}, status={self.status})>"
