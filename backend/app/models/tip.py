"""Tip model: a discretionary payment from a fan to an artist."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Tip(Base):
    """Tip, settled the same way as a ticket but never commissioned."""

    __tablename__ = "tips"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    from_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    to_artist_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)
    event_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("events.uuid"), nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    # "pending", "completed", "failed", "refunded"
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_tip_to_artist_id", "to_artist_id"),
        Index("idx_tip_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Tip(uuid={self.uuid}, to_artist_id={self.to_artist_id}, status={self.status})>"
