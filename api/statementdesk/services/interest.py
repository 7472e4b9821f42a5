# api/statementdesk/services/interest.py
"""
Interest accrued on overdue aging buckets.

The formula is business policy, so everything that shapes it lives on
InterestPolicy and defaults come from settings (INTEREST_METHOD,
INTEREST_RATE, INTEREST_BASIS). `rate` is charged per 30-day period.

basis = per_bucket
    each overdue bucket accrues for the number of whole periods its lower
    edge is past due: 31-60 -> 1, 61-90 -> 2, 91-120 -> 3, over 120 -> 4.
basis = total
    the whole overdue balance accrues for a single period.

method = simple    amount * rate * periods
method = compound  amount * ((1 + rate) ** periods - 1)
method = none      always zero
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .. import settings
from .aging import AgingBuckets, BUCKET_31_60, BUCKET_61_90, BUCKET_91_120, BUCKET_OVER_120

CENT = Decimal("0.01")

METHODS = ("none", "simple", "compound")
BASES = ("per_bucket", "total")

BUCKET_PERIODS = {
    BUCKET_31_60: 1,
    BUCKET_61_90: 2,
    BUCKET_91_120: 3,
    BUCKET_OVER_120: 4,
}


@dataclass(frozen=True)
class InterestPolicy:
    method: str = "simple"
    rate: Decimal = Decimal("0")
    basis: str = "per_bucket"

    def __post_init__(self):
        if self.method not in METHODS:
            raise ValueError(f"unknown interest method {self.method!r}")
        if self.basis not in BASES:
            raise ValueError(f"unknown interest basis {self.basis!r}")
        if Decimal(self.rate) < 0:
            raise ValueError("interest rate must be non-negative")


def policy_from_settings() -> InterestPolicy:
    return InterestPolicy(
        method=settings.INTEREST_METHOD,
        rate=settings.INTEREST_RATE,
        basis=settings.INTEREST_BASIS,
    )


def _charge(amount: Decimal, rate: Decimal, periods: int, method: str) -> Decimal:
    if method == "compound":
        return amount * ((Decimal(1) + rate) ** periods - Decimal(1))
    return amount * rate * periods


def accrue(buckets: AgingBuckets, policy: InterestPolicy) -> Decimal:
    rate = Decimal(policy.rate)
    if policy.method == "none" or rate == 0:
        return Decimal("0.00")

    if policy.basis == "total":
        interest = _charge(buckets.overdue_total(), rate, 1, policy.method)
    else:
        interest = sum(
            (_charge(getattr(buckets, name), rate, periods, policy.method)
             for name, periods in BUCKET_PERIODS.items()),
            Decimal("0"),
        )
    return interest.quantize(CENT, rounding=ROUND_HALF_UP)
