"""Document number allocation."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime

from statementdesk.database import SessionLocal
from statementdesk.models import DocumentSequence, Statement
from statementdesk.services import sequence


def _fields(seed):
    return dict(
        issuer_id=seed.manager.id,
        customer_id=seed.acme.id,
        recipient_email="buyer@acme.example.com",
        recipient_name="Acme Ltd",
        period_start=date(2024, 6, 1),
        period_end=date(2024, 6, 30),
        generated_at=datetime.utcnow(),
        line_items=[],
    )


class TestFormat:
    def test_prefix_and_padding(self):
        assert sequence.format_document_number(1) == "ST-000001"
        assert sequence.format_document_number(1234567) == "ST-1234567"


class TestAllocate:
    def test_numbers_increase_in_request_order(self, db, seed):
        fields = _fields(seed)
        first = sequence.allocate_statement(db, **fields)
        second = sequence.allocate_statement(db, **fields)
        assert first.document_number == "ST-000001"
        assert second.document_number == "ST-000002"
        assert db.get(DocumentSequence, sequence.STATEMENT_SEQUENCE).value == 2

    def test_sequence_seeds_from_existing_numbers(self, db, seed):
        db.add(Statement(document_number="ST-000041", **_fields(seed)))
        db.commit()
        stmt = sequence.allocate_statement(db, **_fields(seed))
        assert stmt.document_number == "ST-000042"

    def test_concurrent_allocations_are_unique(self, db, seed):
        fields = _fields(seed)
        sequence.ensure_sequence(db)

        def allocate(_):
            session = SessionLocal()
            try:
                return sequence.allocate_statement(session, **fields).document_number
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=16) as pool:
            numbers = list(pool.map(allocate, range(50)))

        assert len(set(numbers)) == 50
        assert sorted(numbers) == [sequence.format_document_number(i) for i in range(1, 51)]
        assert db.query(Statement).count() == 50
