# api/statementdesk/services/aging.py
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable

from .ledger import LedgerRecord

CENT = Decimal("0.01")

BUCKET_CURRENT = "current"
BUCKET_31_60   = "days31to60"
BUCKET_61_90   = "days61to90"
BUCKET_91_120  = "days91to120"
BUCKET_OVER_120 = "over120"

BUCKET_NAMES = (BUCKET_CURRENT, BUCKET_31_60, BUCKET_61_90, BUCKET_91_120, BUCKET_OVER_120)
OVERDUE_BUCKETS = BUCKET_NAMES[1:]


@dataclass(frozen=True)
class AgingBuckets:
    current: Decimal = Decimal("0.00")
    days31to60: Decimal = Decimal("0.00")
    days61to90: Decimal = Decimal("0.00")
    days91to120: Decimal = Decimal("0.00")
    over120: Decimal = Decimal("0.00")

    def total(self) -> Decimal:
        return sum((getattr(self, n) for n in BUCKET_NAMES), Decimal("0.00"))

    def overdue_total(self) -> Decimal:
        return sum((getattr(self, n) for n in OVERDUE_BUCKETS), Decimal("0.00"))

    def as_dict(self) -> Dict[str, Decimal]:
        return {n: getattr(self, n) for n in BUCKET_NAMES}


def age_days(record: LedgerRecord, as_of: date) -> int:
    """Days past due at as_of; negative while not yet due."""
    return (as_of - record.due_date).days


def classify(days: int) -> str:
    if days <= 30:
        return BUCKET_CURRENT
    if days <= 60:
        return BUCKET_31_60
    if days <= 90:
        return BUCKET_61_90
    if days <= 120:
        return BUCKET_91_120
    return BUCKET_OVER_120


def is_outstanding(record: LedgerRecord, as_of: date) -> bool:
    return record.unpaid_as_of(as_of)


def bucket(records: Iterable[LedgerRecord], as_of: date) -> AgingBuckets:
    totals = {n: Decimal("0.00") for n in BUCKET_NAMES}
    for rec in records:
        if not is_outstanding(rec, as_of):
            continue
        totals[classify(age_days(rec, as_of))] += rec.amount
    return AgingBuckets(**{n: v.quantize(CENT) for n, v in totals.items()})
