"""
Test configuration: a throwaway SQLite database, seeded ledger data and fake
delivery collaborators.

The environment is set before any statementdesk module is imported because
settings and the engine are read at import time.
"""

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="statementdesk-tests-")
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'statements.db')}"
os.environ["APP_SECRETS_KEY"] = "00112233445566778899aabbccddeeff"
os.environ["ATTACHMENTS_DIR"] = os.path.join(_TMP_DIR, "attachments")
os.environ["POSTMARK_SERVER_TOKEN_DEFAULT"] = ""
os.environ["IC_OWNER_EMAIL"] = "owner@example.com"
os.environ["INTEREST_METHOD"] = "simple"
os.environ["INTEREST_RATE"] = "0.02"
os.environ["INTEREST_BASIS"] = "per_bucket"
os.environ["LEDGER_BACKOFF_SECONDS"] = "0"

from statementdesk.database import Base, SessionLocal, engine  # noqa: E402
from statementdesk.errors import LedgerUnavailable  # noqa: E402
from statementdesk.mailer import MailResult  # noqa: E402
from statementdesk.models import Customer, Invoice, Statement, User  # noqa: E402
from statementdesk.security import hash_password  # noqa: E402
from statementdesk.services.access import Principal  # noqa: E402
from statementdesk.services.background_tasks import TaskManager  # noqa: E402
from statementdesk.services.delivery import Delivery  # noqa: E402
from statementdesk.services.interest import InterestPolicy  # noqa: E402
from statementdesk.services.ledger import SqlLedgerReader  # noqa: E402
from statementdesk.services.orchestrator import GenerationOrchestrator  # noqa: E402
from statementdesk.services.sequence import allocate_statement  # noqa: E402

AS_OF = date(2024, 6, 30)
PERIOD_START = date(2024, 6, 1)
PERIOD_END = date(2024, 6, 30)
PASSWORD = "correct horse"

# bcrypt is slow on purpose; hash once for every seeded user
_PASSWORD_HASH = hash_password(PASSWORD)


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


def make_user(db, email: str, role: str) -> User:
    user = User(email=email, password_hash=_PASSWORD_HASH, role=role, is_active=True)
    db.add(user)
    db.commit()
    return user


def make_customer(db, owner: User, name: str, email: Optional[str]) -> Customer:
    cust = Customer(
        user_id=owner.id,
        name=name,
        email=email,
        phone="+44 20 7946 0000",
        billing_line1="1 High Street",
        billing_city="London",
        billing_postcode="EC1A 1AA",
    )
    db.add(cust)
    db.commit()
    return cust


def make_invoice(
    db,
    customer: Customer,
    number: str,
    amount: str,
    due: date,
    issued: Optional[date] = None,
    paid: Optional[date] = None,
) -> Invoice:
    inv = Invoice(
        user_id=customer.user_id,
        customer_id=customer.id,
        invoice_number=number,
        amount_due=Decimal(amount),
        issue_date=datetime.combine(issued or (due - timedelta(days=30)), datetime.min.time()),
        due_date=datetime.combine(due, datetime.min.time()),
        status="paid" if paid else "open",
        paid_at=datetime.combine(paid, datetime.min.time()) if paid else None,
    )
    db.add(inv)
    db.commit()
    return inv


def reload(db, statement_id) -> Statement:
    """Fresh copy of a statement written by another session."""
    db.expire_all()
    return db.get(Statement, statement_id)


def pending_statement(db, seed, **overrides) -> Statement:
    """A numbered statement whose build never ran (generation still 'running')."""
    fields = dict(
        issuer_id=seed.manager.id,
        customer_id=seed.acme.id,
        recipient_email="buyer@acme.example.com",
        recipient_name="Acme Ltd",
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        generated_at=datetime.utcnow(),
        heartbeat_at=datetime.utcnow(),
        line_items=[],
    )
    fields.update(overrides)
    return allocate_statement(db, **fields)


@dataclass
class Seed:
    admin: User
    manager: User
    other_manager: User
    buyer: User
    acme: Customer
    globex: Customer
    initech: Customer

    def principal(self, user: User) -> Principal:
        return Principal.from_user(user)


@pytest.fixture
def seed(db) -> Seed:
    """
    manager manages acme (billed to the buyer user) and globex;
    other_manager manages initech.
    """
    admin = make_user(db, "admin@example.com", "ADMIN")
    manager = make_user(db, "manager@example.com", "MANAGER")
    other_manager = make_user(db, "other@example.com", "MANAGER")
    buyer = make_user(db, "buyer@acme.example.com", "CUSTOMER")
    acme = make_customer(db, manager, "Acme Ltd", "Buyer@Acme.example.com")
    globex = make_customer(db, manager, "Globex plc", "ap@globex.example.com")
    initech = make_customer(db, other_manager, "Initech", "billing@initech.example.com")
    return Seed(admin, manager, other_manager, buyer, acme, globex, initech)


# =============================================================================
# Collaborators
# =============================================================================


class FlakyReader:
    """Fails the first `failures` reads, then reads the real ledger."""

    def __init__(self, db, failures: int):
        self.inner = SqlLedgerReader(db)
        self.failures = failures
        self.calls = 0

    def read(self, customer, period_start, period_end, as_of):
        self.calls += 1
        if self.calls <= self.failures:
            raise LedgerUnavailable("ledger timed out")
        return self.inner.read(customer, period_start, period_end, as_of)


class FailingForCustomerReader:
    """Ledger that is permanently down for one customer id."""

    def __init__(self, db, customer_id: int):
        self.inner = SqlLedgerReader(db)
        self.customer_id = customer_id

    def read(self, customer, period_start, period_end, as_of):
        if customer.id == self.customer_id:
            raise LedgerUnavailable("ledger shard offline")
        return self.inner.read(customer, period_start, period_end, as_of)


@dataclass
class DeliveryRecorder:
    pdf: Optional[bytes] = b"%PDF-1.4 fake"
    notify_ok: bool = True
    rendered: List[str] = field(default_factory=list)
    stored: List[str] = field(default_factory=list)
    notified: List[Dict[str, Any]] = field(default_factory=list)

    def render(self, stmt):
        self.rendered.append(stmt.document_number)
        return self.pdf

    def store_attachment(self, data: bytes, filename: str) -> str:
        self.stored.append(filename)
        return f"/static/statements/{filename}"

    def notify(self, recipient: str, document_bytes: Optional[bytes], metadata: Dict[str, Any]) -> MailResult:
        self.notified.append({"recipient": recipient, "attached": document_bytes is not None, **metadata})
        if self.notify_ok:
            return MailResult(True, message_id="fake-1")
        return MailResult(False, error="422: Inactive recipient", permanent=True)

    def delivery(self) -> Delivery:
        return Delivery(render=self.render, store_attachment=self.store_attachment, notify=self.notify)


@pytest.fixture
def recorder() -> DeliveryRecorder:
    return DeliveryRecorder()


@pytest.fixture
def task_manager():
    manager = TaskManager(max_workers=4)
    yield manager
    manager.shutdown(wait=True)


@pytest.fixture
def policy() -> InterestPolicy:
    return InterestPolicy(method="simple", rate=Decimal("0.02"), basis="per_bucket")


@pytest.fixture
def make_orchestrator(task_manager, recorder, policy):
    def _make(reader_factory=SqlLedgerReader, **kwargs):
        params = dict(
            session_factory=SessionLocal,
            tasks=task_manager,
            reader_factory=reader_factory,
            delivery_factory=recorder.delivery,
            policy=policy,
            clock=lambda: AS_OF,
            sleep=lambda seconds: None,
        )
        params.update(kwargs)
        return GenerationOrchestrator(**params)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def app(orchestrator, recorder):
    from statementdesk.main import app as fastapi_app
    from statementdesk.routers.statements import get_delivery
    from statementdesk.services.orchestrator import get_orchestrator

    fastapi_app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    fastapi_app.dependency_overrides[get_delivery] = recorder.delivery
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


def login(client, email: str, password: str = PASSWORD):
    resp = client.post("/auth/login", data={"email": email, "password": password})
    assert resp.status_code == 204, resp.text
    return resp
