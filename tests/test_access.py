"""Who sees which statements, from the issued and the received side."""

import pytest

from conftest import pending_statement
from statementdesk.errors import AccessDenied
from statementdesk.services.access import ensure_can_view, is_issuer_of
from statementdesk.services.statements_logic import list_statements


@pytest.fixture
def book(db, seed):
    """One statement per interesting state, spread over two managers."""
    return {
        "acme_pending": pending_statement(db, seed),
        "acme_sent": pending_statement(db, seed, status="sent"),
        "acme_failed": pending_statement(db, seed, status="failed", generation_status="failed"),
        "globex_paid": pending_statement(
            db, seed, customer_id=seed.globex.id, recipient_email="ap@globex.example.com", status="paid",
        ),
        "initech_viewed": pending_statement(
            db, seed, issuer_id=seed.other_manager.id, customer_id=seed.initech.id,
            recipient_email="billing@initech.example.com", status="viewed",
        ),
    }


def ids(statements):
    return sorted(s.id for s in statements)


class TestIssuedScope:
    def test_manager_sees_own_customers_in_every_state(self, db, seed, book):
        got = list_statements(db, seed.principal(seed.manager), scope="issued")
        assert ids(got) == ids([book["acme_pending"], book["acme_sent"], book["acme_failed"], book["globex_paid"]])

    def test_other_manager_sees_only_theirs(self, db, seed, book):
        got = list_statements(db, seed.principal(seed.other_manager), scope="issued")
        assert ids(got) == [book["initech_viewed"].id]

    def test_admin_sees_everything(self, db, seed, book):
        assert ids(list_statements(db, seed.principal(seed.admin), scope="issued")) == ids(book.values())

    def test_status_and_email_filters(self, db, seed, book):
        principal = seed.principal(seed.manager)
        assert ids(list_statements(db, principal, scope="issued", status="paid")) == [book["globex_paid"].id]
        got = list_statements(db, principal, scope="issued", customer_email="AP@globex.example.com")
        assert ids(got) == [book["globex_paid"].id]

    def test_customers_have_no_issued_side(self, db, seed, book):
        with pytest.raises(AccessDenied):
            list_statements(db, seed.principal(seed.buyer), scope="issued")

    def test_unknown_scope(self, db, seed):
        with pytest.raises(AccessDenied):
            list_statements(db, seed.principal(seed.admin), scope="everything")


class TestReceivedScope:
    def test_recipient_sees_only_finalized(self, db, seed, book):
        got = list_statements(db, seed.principal(seed.buyer), scope="received")
        assert ids(got) == [book["acme_sent"].id]

    def test_admin_can_look_at_any_party_but_only_finalized(self, db, seed, book):
        got = list_statements(db, seed.principal(seed.admin), scope="received")
        assert ids(got) == ids([book["acme_sent"], book["globex_paid"], book["initech_viewed"]])
        narrowed = list_statements(
            db, seed.principal(seed.admin), scope="received", customer_email="billing@initech.example.com",
        )
        assert ids(narrowed) == [book["initech_viewed"].id]

    def test_manager_receives_nothing_addressed_elsewhere(self, db, seed, book):
        assert list_statements(db, seed.principal(seed.manager), scope="received") == []


class TestPerRecord:
    def test_recipient_cannot_view_unfinished(self, db, seed, book):
        buyer = seed.principal(seed.buyer)
        ensure_can_view(db, buyer, book["acme_sent"])
        with pytest.raises(AccessDenied):
            ensure_can_view(db, buyer, book["acme_pending"])
        with pytest.raises(AccessDenied):
            ensure_can_view(db, buyer, book["acme_failed"])

    def test_strangers_cannot_view(self, db, seed, book):
        with pytest.raises(AccessDenied):
            ensure_can_view(db, seed.principal(seed.other_manager), book["acme_sent"])

    def test_issuer_relationship(self, db, seed, book):
        assert is_issuer_of(db, seed.principal(seed.manager), book["globex_paid"])
        assert is_issuer_of(db, seed.principal(seed.admin), book["initech_viewed"])
        assert not is_issuer_of(db, seed.principal(seed.buyer), book["acme_sent"])
