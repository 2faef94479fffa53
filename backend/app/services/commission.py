"""Revenue split for ticket and tip payments.

Pure functions: no database access, no Stripe calls.  The artist share is
whatever is left after the platform fee and commissions are rounded, so the
parts always add back up to the gross amount.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from app.config import settings
from app.errors import InvalidAmount

MAX_COMMISSION_LEVELS = 3


@dataclass(frozen=True)
class CommissionShare:
    affiliate_id: str
    level: int
    rate: Decimal
    amount: int


@dataclass(frozen=True)
class PaymentSplit:
    gross_amount: int
    platform_share: int
    artist_share: int
    commissions: list[CommissionShare] = field(default_factory=list)

    @property
    def commission_total(self) -> int:
        return sum(c.amount for c in self.commissions)


def round_half_up(value: Decimal) -> int:
    """Round to the nearest minor unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_payment(
    gross_amount: int,
    platform_fee_rate: Decimal,
    referral_chain: Sequence[str] = (),
    level_rates: Sequence[Decimal] = (),
) -> PaymentSplit:
    """Split ``gross_amount`` between platform, affiliates and artist.

    ``referral_chain`` is nearest-first (level 1 = the affiliate whose code was
    used); entries past the third, or past the configured level rates, earn
    nothing.
    """
    # bool is an int subclass but never a valid amount
    if not isinstance(gross_amount, int) or isinstance(gross_amount, bool) or gross_amount <= 0:
        raise InvalidAmount(f"Invalid gross amount: {gross_amount!r}")

    gross = Decimal(gross_amount)
    platform_share = round_half_up(gross * Decimal(platform_fee_rate))

    commissions = []
    levels = min(len(referral_chain), len(level_rates), MAX_COMMISSION_LEVELS)
    for index in range(levels):
        rate = Decimal(level_rates[index])
        commissions.append(
            CommissionShare(
                affiliate_id=referral_chain[index],
                level=index + 1,
                rate=rate,
                amount=round_half_up(gross * rate),
            )
        )

    artist_share = gross_amount - platform_share - sum(c.amount for c in commissions)
    return PaymentSplit(
        gross_amount=gross_amount,
        platform_share=platform_share,
        artist_share=artist_share,
        commissions=commissions,
    )


def ticket_split(gross_amount: int, referral_chain: Sequence[str] = ()) -> PaymentSplit:
    return split_payment(
        gross_amount,
        settings.TICKET_PLATFORM_FEE_RATE,
        referral_chain,
        settings.affiliate_level_rates,
    )


def tip_split(gross_amount: int) -> PaymentSplit:
    """Tips never pay commission."""
    return split_payment(gross_amount, settings.TIP_PLATFORM_FEE_RATE)
