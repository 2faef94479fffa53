"""Transaction model: append-only accounting row written at settlement."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Transaction(Base):
    """One row per settled ticket or tip.

    Only ``status`` changes after insert (``completed`` -> ``refunded``).
    ``platform_fee``/``artist_amount`` hold the split computed at settlement
    so payouts can aggregate them in SQL.
    """

    __tablename__ = "transactions"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)  # "ticket_purchase", "tip"

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    artist_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    stripe_payment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # "completed", "refunded"

    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    artist_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_transaction_stripe_payment_id", "stripe_payment_id"),
        Index("idx_transaction_event_type_status", "event_id", "transaction_type", "status"),
    )

    def __repr__(self) -> str:
        return f"<Transaction(uuid={self.uuid}, type={self.transaction_type}, amount={self.amount})>"
