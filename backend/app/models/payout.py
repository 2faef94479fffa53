"""Payout model: one artist transfer per ended event."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Payout(Base):
    """Record of the artist's share transferred for an event.

    ``event_id`` is unique: an event is paid out at most once, and the
    payout job uses this row's existence as its idempotency check.
    """

    __tablename__ = "payouts"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    artist_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.uuid"), unique=True, nullable=False)

    # Ticket revenue the payout was computed from; amount + platform_fee can be
    # less than this once affiliate commissions are taken out
    gross_revenue: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # "processing", "completed", "failed"
    status: Mapped[str] = mapped_column(String(20), default="processing", nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_payout_artist_id", "artist_id"),
    )

    def __repr__(self) -> str:
        return f"<Payout(uuid={self.uuid}, event_id={self.event_id}, amount={self.amount}, status={self.status})>"
