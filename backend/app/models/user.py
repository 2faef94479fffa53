"""User model for LiveStage.

Identity and sessions are owned by the auth provider; this table mirrors the
account and carries the Stripe handles needed for payments and payouts.
"""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class User(Base):
    """Fan, artist or admin account."""

    __tablename__ = "users"

    # Primary key (same id as the auth provider's user)
    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # User info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Account info
    status: Mapped[str] = mapped_column(String(50), default="active")
    user_role: Mapped[str] = mapped_column(String(50), default="fan")  # "fan", "artist", "admin"

    # Stripe integration
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_connect_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_connect_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_user_status", "status"),
        Index("idx_user_connect_account", "stripe_connect_account_id"),
    )

    @property
    def is_artist(self) -> bool:
        return self.user_role == "artist"

    def __repr__(self) -> str:
        return f"<User(uuid={self.uuid}, email={self.email}, role={self.user_role})>"
