"""Event model: a live concert that fans buy tickets for."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base

PURCHASABLE_STATUSES = ("scheduled", "live")


class Event(Base):
    """Concert with a fixed ticket price and an optional capacity.

    ``tickets_sold`` only moves through atomic UPDATE statements issued by
    the settlement service; never assign it from application code.
    """

    __tablename__ = "events"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    artist_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    # "draft", "scheduled", "live", "ended", "cancelled"
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)

    ticket_price: Mapped[int] = mapped_column(Integer, nullable=False)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default="eur", nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    tickets_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    artist = relationship("User", foreign_keys=[artist_id])

    __table_args__ = (
        Index("idx_event_artist_id", "artist_id"),
        Index("idx_event_status_ended_at", "status", "ended_at"),
        CheckConstraint("tickets_sold >= 0", name="tickets_sold_non_negative"),
    )

    @property
    def is_purchasable(self) -> bool:
        return self.status in PURCHASABLE_STATUSES

    @property
    def is_sold_out(self) -> bool:
        return self.capacity is not None and self.tickets_sold >= self.capacity

    def __repr__(self) -> str:
        return f"<Event(uuid={self.uuid}, title={self.title}, status={self.status})>"
