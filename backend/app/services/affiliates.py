"""Affiliate registration, referral tree lookups and earnings stats."""
import logging
import secrets
import string
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AlreadyRegistered, NotFound, ExternalServiceError
from app.models.affiliate import Affiliate, AffiliateCommission, REFERRAL_CODE_LENGTH
from app.models.ticket import Ticket
from app.models.user import User

logger = logging.getLogger(__name__)

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10
RECENT_COMMISSIONS_LIMIT = 10


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


async def _code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(Affiliate.uuid).where(Affiliate.referral_code == code))
    return result.scalar_one_or_none() is not None


async def resolve_referral_code(db: AsyncSession, code: Optional[str]) -> Optional[Affiliate]:
    """Return the active affiliate owning ``code``, or None."""
    if not code:
        return None
    result = await db.execute(
        select(Affiliate).where(
            Affiliate.referral_code == code.upper(),
            Affiliate.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_affiliate(db: AsyncSession, affiliate_id: str) -> Optional[Affiliate]:
    result = await db.execute(
        select(Affiliate)
        .where(Affiliate.uuid == affiliate_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def referral_chain(db: AsyncSession, affiliate_id: Optional[str]) -> tuple[str, ...]:
    """Nearest-first chain (affiliate, parent, grandparent) for a level-1 affiliate.

    Read from the one affiliate row; the tree is never walked.
    """
    if affiliate_id is None:
        return ()
    affiliate = await get_affiliate(db, affiliate_id)
    if affiliate is None:
        return ()
    return affiliate.referral_chain


async def register_affiliate(
    db: AsyncSession,
    user: User,
    parent_referral_code: Optional[str] = None,
) -> Affiliate:
    """
    Enroll ``user`` as an affiliate.

    - Raises AlreadyRegistered if the user already has an affiliate record
    - Unknown or inactive parent codes register the user without a parent
    - Parent and grandparent are fixed here and never change afterwards
    """
    user_id = user.uuid
    if await get_affiliate(db, user_id) is not None:
        raise AlreadyRegistered()

    parent = await resolve_referral_code(db, parent_referral_code)
    if parent is not None and parent.uuid == user_id:
        parent = None
    if parent_referral_code and parent is None:
        logger.info(f"Ignoring unknown parent referral code for user {user_id}")

    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        if not await _code_taken(db, code):
            break
    else:
        logger.error(f"Could not generate a unique referral code for user {user_id}")
        raise ExternalServiceError("Could not generate a referral code, please retry")

    affiliate = Affiliate(
        uuid=user_id,
        referral_code=code,
        parent_affiliate_id=parent.uuid if parent else None,
        grandparent_affiliate_id=parent.parent_affiliate_id if parent else None,
    )
    db.add(affiliate)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent registration of the same user (or a code collision between the check and insert)
        await db.rollback()
        if await get_affiliate(db, user_id) is not None:
            raise AlreadyRegistered()
        raise ExternalServiceError("Could not register affiliate, please retry")

    if parent is not None:
        await db.execute(
            update(Affiliate)
            .where(Affiliate.uuid == parent.uuid)
            .values(total_referrals=Affiliate.total_referrals + 1)
        )

    await db.commit()
    await db.refresh(affiliate)
    logger.info(
        f"Registered affiliate {affiliate.uuid} code={affiliate.referral_code} "
        f"parent={affiliate.parent_affiliate_id}"
    )
    return affiliate


async def get_affiliate_stats(db: AsyncSession, affiliate_id: str) -> dict:
    """Earnings summary for one affiliate. Read-only."""
    affiliate = await get_affiliate(db, affiliate_id)
    if affiliate is None:
        raise NotFound("Affiliate not found")

    status_rows = await db.execute(
        select(
            AffiliateCommission.status,
            func.coalesce(func.sum(AffiliateCommission.commission_amount), 0),
            func.count(AffiliateCommission.uuid),
        )
        .where(AffiliateCommission.affiliate_id == affiliate_id)
        .group_by(AffiliateCommission.status)
    )
    by_status = {row[0]: (int(row[1]), row[2]) for row in status_rows.all()}

    level_rows = await db.execute(
        select(
            AffiliateCommission.commission_level,
            func.coalesce(func.sum(AffiliateCommission.commission_amount), 0),
            func.count(AffiliateCommission.uuid),
        )
        .where(AffiliateCommission.affiliate_id == affiliate_id)
        .group_by(AffiliateCommission.commission_level)
        .order_by(AffiliateCommission.commission_level)
    )
    by_level = [
        {"level": level, "amount": int(amount), "count": count}
        for level, amount, count in level_rows.all()
    ]

    referred = await db.execute(
        select(func.count(Ticket.uuid)).where(
            Ticket.affiliate_id == affiliate_id,
            Ticket.status.in_(("confirmed", "used")),
        )
    )

    recent = await db.execute(
        select(AffiliateCommission)
        .where(AffiliateCommission.affiliate_id == affiliate_id)
        .order_by(AffiliateCommission.created_at.desc())
        .limit(RECENT_COMMISSIONS_LIMIT)
    )

    def amount_for(status: str) -> int:
        return by_status.get(status, (0, 0))[0]

    return {
        "affiliate": affiliate,
        "total_commissions": sum(amount for amount, _ in by_status.values()),
        "pending_amount": amount_for("pending"),
        "paid_amount": amount_for("paid"),
        "cancelled_amount": amount_for("cancelled"),
        "commission_count": sum(count for _, count in by_status.values()),
        "referred_tickets": referred.scalar_one(),
        "by_level": by_level,
        "recent_commissions": list(recent.scalars().all()),
    }
