"""Affiliate referral tree and commission ledger models."""
from datetime import datetime
from decimal import Decimal
from uuid import uuid4
from sqlalchemy import String, Integer, Boolean, DateTime, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base

REFERRAL_CODE_LENGTH = 8


class Affiliate(Base):
    """Node in the referral tree.

    ``uuid`` is the user's id.  Parent and grandparent are set once at
    registration and never rewritten, which bounds every chain to three
    levels without walking the tree.
    """

    __tablename__ = "affiliates"

    uuid: Mapped[str] = mapped_column(String(36), ForeignKey("users.uuid"), primary_key=True)
    referral_code: Mapped[str] = mapped_column(String(REFERRAL_CODE_LENGTH), unique=True, nullable=False)

    parent_affiliate_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("affiliates.uuid"), nullable=True)
    grandparent_affiliate_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("affiliates.uuid"), nullable=True)

    # Counters, updated with atomic UPDATE ... SET x = x + n only
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earnings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_affiliate_parent_id", "parent_affiliate_id"),
    )

    @property
    def ancestors(self) -> tuple[str | None, str | None]:
        """(level-2, level-3) beneficiaries for tickets this affiliate refers."""
        return (self.parent_affiliate_id, self.grandparent_affiliate_id)

    @property
    def referral_chain(self) -> tuple[str, ...]:
        """Nearest-first chain of up to three affiliate ids starting at this one."""
        chain = [self.uuid]
        for ancestor in self.ancestors:
            if ancestor is None:
                break
            chain.append(ancestor)
        return tuple(chain)

    def __repr__(self) -> str:
        return f"<Affiliate(uuid={self.uuid}, referral_code={self.referral_code})>"


class AffiliateCommission(Base):
    """One row per (ticket, affiliate, level), written when the ticket settles."""

    __tablename__ = "affiliate_commissions"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    affiliate_id: Mapped[str] = mapped_column(String(36), ForeignKey("affiliates.uuid"), nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickets.uuid"), nullable=False)

    commission_level: Mapped[int] = mapped_column(Integer, nullable=False)  # 1, 2 or 3
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # "pending", "paid", "cancelled"
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("ticket_id", "affiliate_id", "commission_level", name="uq_commission_ticket_affiliate_level"),
        Index("idx_commission_affiliate_status", "affiliate_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<AffiliateCommission(uuid={self.uuid}, affiliate_id={self.affiliate_id}, "
            f"level={self.commission_level}, amount={self.commission_amount})>"
        )
