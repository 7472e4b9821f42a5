"""The SQL ledger reader: which invoices belong on a statement."""

from datetime import date, datetime
from decimal import Decimal

from conftest import AS_OF, PERIOD_END, PERIOD_START, make_invoice
from statementdesk.models import Invoice
from statementdesk.services.ledger import SqlLedgerReader, record_from_invoice


class TestSqlLedgerReader:
    def _seed(self, db, seed):
        acme = seed.acme
        make_invoice(db, acme, "NEW-JUNE", "100.00", due=date(2024, 7, 10), issued=date(2024, 6, 10))
        make_invoice(db, acme, "OLD-OPEN", "250.00", due=date(2024, 4, 1), issued=date(2024, 3, 1))
        make_invoice(db, acme, "OLD-PAID", "80.00", due=date(2024, 2, 1), issued=date(2024, 1, 2), paid=date(2024, 5, 15))
        make_invoice(db, acme, "PAID-JUNE", "60.00", due=date(2024, 5, 1), issued=date(2024, 4, 1), paid=date(2024, 6, 20))
        make_invoice(db, acme, "FUTURE", "40.00", due=date(2024, 8, 5), issued=date(2024, 7, 5))
        make_invoice(db, seed.globex, "OTHER-CUST", "999.00", due=date(2024, 4, 1), issued=date(2024, 3, 1))
        credit = make_invoice(db, acme, "CN-1", "15.00", due=date(2024, 6, 5), issued=date(2024, 6, 5))
        credit.kind = "credit_note"
        db.commit()

    def test_reads_period_arrears_and_settlements(self, db, seed):
        self._seed(db, seed)
        records = SqlLedgerReader(db).read(seed.acme, PERIOD_START, PERIOD_END, AS_OF)
        refs = [r.reference for r in records]
        assert sorted(refs) == ["NEW-JUNE", "OLD-OPEN", "PAID-JUNE"]

    def test_records_are_normalised(self, db, seed):
        self._seed(db, seed)
        records = {r.reference: r for r in SqlLedgerReader(db).read(seed.acme, PERIOD_START, PERIOD_END, AS_OF)}
        paid = records["PAID-JUNE"]
        assert paid.paid_date == date(2024, 6, 20)
        assert paid.amount == Decimal("60.00")
        assert records["OLD-OPEN"].due_date == date(2024, 4, 1)
        assert records["OLD-OPEN"].customer_identifier == seed.acme.id

    def test_missing_due_date_falls_back_to_issue_date(self, db, seed):
        inv = Invoice(
            user_id=seed.manager.id,
            customer_id=seed.acme.id,
            invoice_number="NO-DUE",
            amount_due=Decimal("10.00"),
            issue_date=datetime(2024, 3, 3),
            due_date=None,
        )
        db.add(inv)
        db.commit()
        assert record_from_invoice(inv).due_date == date(2024, 3, 3)
        refs = [r.reference for r in SqlLedgerReader(db).read(seed.acme, PERIOD_START, PERIOD_END, AS_OF)]
        assert refs == ["NO-DUE"]

    def test_paid_references(self, db, seed):
        self._seed(db, seed)
        paid = SqlLedgerReader(db).paid_references(seed.acme.id, ["OLD-OPEN", "PAID-JUNE", "OLD-PAID", "NOPE"])
        assert paid == {"PAID-JUNE", "OLD-PAID"}
        assert SqlLedgerReader(db).paid_references(seed.acme.id, []) == set()
