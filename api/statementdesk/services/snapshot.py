# api/statementdesk/services/snapshot.py
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from ..errors import GenerationError
from ..models import Customer
from . import aging
from .aging import AgingBuckets
from .interest import InterestPolicy, accrue
from .ledger import LedgerReader, LedgerRecord

log = logging.getLogger("snapshot")

TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class LineItem:
    reference: str
    amount: Decimal
    issued_at: date
    due_date: date
    age_days: int
    age_bucket: str

    def as_json(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "amount": str(self.amount),
            "issued_at": self.issued_at.isoformat(),
            "due_date": self.due_date.isoformat(),
            "age_days": self.age_days,
            "age_bucket": self.age_bucket,
        }


@dataclass(frozen=True)
class Snapshot:
    as_of: date
    line_items: Tuple[LineItem, ...]
    buckets: AgingBuckets
    total_interest: Decimal
    total_amount_due: Decimal
    payments_received: Decimal = Decimal("0.00")

    def line_items_json(self) -> List[Dict[str, Any]]:
        return [li.as_json() for li in self.line_items]


def _line_items(records: List[LedgerRecord], as_of: date) -> List[LineItem]:
    items = []
    for rec in records:
        if not aging.is_outstanding(rec, as_of):
            continue
        days = aging.age_days(rec, as_of)
        items.append(LineItem(
            reference=rec.reference,
            amount=rec.amount,
            issued_at=rec.issued_at,
            due_date=rec.due_date,
            age_days=days,
            age_bucket=aging.classify(days),
        ))
    items.sort(key=lambda li: (li.issued_at, li.reference))
    return items


def assemble(
    records: List[LedgerRecord],
    period_start: date,
    period_end: date,
    as_of: date,
    policy: InterestPolicy,
) -> Snapshot:
    """Pure part of the build: ledger records in, validated snapshot out."""
    items = _line_items(records, as_of)
    buckets = aging.bucket(records, as_of)
    interest = accrue(buckets, policy)

    settled = [
        r for r in records
        if r.paid_date is not None and period_start <= r.paid_date <= period_end
    ]
    payments_received = sum((r.amount for r in settled), Decimal("0.00"))

    items_total = sum((li.amount for li in items), Decimal("0.00"))
    if abs(buckets.total() - items_total) > TOLERANCE:
        raise GenerationError(
            f"aging buckets ({buckets.total()}) do not reconcile with line items ({items_total})"
        )

    total_due = buckets.total() + interest
    return Snapshot(
        as_of=as_of,
        line_items=tuple(items),
        buckets=buckets,
        total_interest=interest,
        total_amount_due=total_due,
        payments_received=payments_received.quantize(aging.CENT),
    )


def build(
    reader: LedgerReader,
    customer: Customer,
    period_start: date,
    period_end: date,
    as_of: date,
    policy: InterestPolicy,
) -> Snapshot:
    """
    Read the ledger and compose the snapshot. LedgerUnavailable from the reader
    propagates untouched so the orchestrator can retry it; anything else that
    goes wrong while composing is a GenerationError. Nothing is written.
    """
    if period_start > period_end:
        raise GenerationError("period_start is after period_end")

    records = reader.read(customer, period_start, period_end, as_of)
    try:
        snap = assemble(records, period_start, period_end, as_of, policy)
    except GenerationError:
        raise
    except (ArithmeticError, TypeError, ValueError) as e:
        raise GenerationError(f"could not compose snapshot: {e}") from e

    log.info(
        "snapshot built customer=%s items=%d buckets_total=%s interest=%s",
        customer.id, len(snap.line_items), snap.buckets.total(), snap.total_interest,
    )
    return snap
