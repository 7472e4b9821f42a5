# api/statementdesk/services/ledger.py
"""
Read side of the external billing ledger.

The engine never writes invoices; it only needs, for one customer and one
period, every record that belongs on a statement:

- records issued inside the period,
- records already due on/before the as-of date and still unpaid at that date
  (so arrears from earlier periods keep surfacing),
- records settled inside the period (reported as payments received).
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional, Protocol

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import LedgerUnavailable
from ..models import Customer, Invoice

log = logging.getLogger("ledger")


@dataclass(frozen=True)
class LedgerRecord:
    reference: str
    amount: Decimal
    due_date: date
    paid_date: Optional[date]
    customer_identifier: int
    issued_at: date

    def unpaid_as_of(self, as_of: date) -> bool:
        return self.paid_date is None or self.paid_date > as_of


class LedgerReader(Protocol):
    def read(
        self,
        customer: Customer,
        period_start: date,
        period_end: date,
        as_of: date,
    ) -> List[LedgerRecord]:
        ...


def _as_date(v) -> Optional[date]:
    if v is None:
        return None
    if isinstance(v, datetime):
        return v.date()
    return v


def record_from_invoice(inv: Invoice) -> LedgerRecord:
    issued = _as_date(inv.issue_date)
    return LedgerRecord(
        reference=inv.invoice_number,
        amount=Decimal(inv.amount_due or 0).quantize(Decimal("0.01")),
        due_date=_as_date(inv.due_date) or issued,
        paid_date=_as_date(inv.paid_at),
        customer_identifier=inv.customer_id,
        issued_at=issued,
    )


class SqlLedgerReader:
    """LedgerReader over the invoices table, using a session it does not own."""

    def __init__(self, db: Session):
        self.db = db

    def read(
        self,
        customer: Customer,
        period_start: date,
        period_end: date,
        as_of: date,
    ) -> List[LedgerRecord]:
        start_dt = datetime.combine(period_start, time.min)
        end_excl = datetime.combine(period_end + timedelta(days=1), time.min)
        as_of_excl = datetime.combine(as_of + timedelta(days=1), time.min)

        issued_in_period = and_(Invoice.issue_date >= start_dt, Invoice.issue_date < end_excl)
        # a missing due date falls back to the issue date
        overdue_unpaid = and_(
            or_(
                Invoice.due_date < as_of_excl,
                and_(Invoice.due_date.is_(None), Invoice.issue_date < as_of_excl),
            ),
            or_(Invoice.paid_at.is_(None), Invoice.paid_at >= as_of_excl),
        )
        paid_in_period = and_(Invoice.paid_at >= start_dt, Invoice.paid_at < end_excl)

        try:
            rows = (
                self.db.query(Invoice)
                .filter(
                    Invoice.customer_id == customer.id,
                    Invoice.kind == "invoice",
                    Invoice.status != "written_off",
                    or_(issued_in_period, overdue_unpaid, paid_in_period),
                )
                .order_by(Invoice.issue_date.asc(), Invoice.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            log.warning("ledger read failed for customer=%s: %s", customer.id, e)
            raise LedgerUnavailable(f"Ledger read failed: {e.__class__.__name__}") from e

        records = [record_from_invoice(inv) for inv in rows]
        log.info(
            "ledger read customer=%s period=%s..%s as_of=%s -> %d record(s)",
            customer.id, period_start, period_end, as_of, len(records),
        )
        return records

    def paid_references(self, customer_id: int, references: List[str]) -> set:
        """Which of the given invoice numbers are settled right now."""
        if not references:
            return set()
        try:
            rows = (
                self.db.query(Invoice.invoice_number)
                .filter(
                    Invoice.customer_id == customer_id,
                    Invoice.invoice_number.in_(references),
                    Invoice.paid_at.isnot(None),
                )
                .all()
            )
        except SQLAlchemyError as e:
            raise LedgerUnavailable(f"Ledger read failed: {e.__class__.__name__}") from e
        return {r.invoice_number for r in rows}
