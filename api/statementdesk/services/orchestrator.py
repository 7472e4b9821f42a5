# api/statementdesk/services/orchestrator.py
"""
Background statement generation.

request -> (sync) number allocated + pending Statement stored -> caller gets "accepted"
        -> (detached) ledger read, aging, interest, snapshot written once
        -> succeeded (optionally sent straight away) | failed with error_detail

Bulk requests allocate numbers one customer at a time, in order, then hand
every build to the bounded task pool; each build is its own failure domain.
"""
import logging
import threading
import time
import traceback
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .. import settings
from ..database import SessionLocal
from ..errors import AccessDenied, GenerationError, LedgerUnavailable, StatementError, TransitionRejected, ValidationError
from ..models import (
    Customer, Statement,
    STATUS_PENDING, GEN_RUNNING, GEN_SUCCEEDED, GEN_FAILED,
)
from . import lifecycle, snapshot
from .access import Principal, ensure_can_issue, is_issuer_of, ROLE_ADMIN
from .background_tasks import TaskManager, get_task_manager
from .delivery import Delivery, default_delivery
from .interest import InterestPolicy, policy_from_settings
from .ledger import LedgerReader, SqlLedgerReader
from .sequence import allocate_statement

log = logging.getLogger("orchestrator")


def _next_backoff_seconds(attempts: int) -> float:
    return min(settings.LEDGER_BACKOFF_CAP_SECONDS, settings.LEDGER_BACKOFF_SECONDS * 2 ** max(0, attempts - 1))


def _billing_email(customer: Customer) -> str:
    return (customer.email or "").strip().lower()


class GenerationOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        tasks: Optional[TaskManager] = None,
        reader_factory: Callable[[Session], LedgerReader] = SqlLedgerReader,
        delivery_factory: Callable[[], Delivery] = default_delivery,
        policy: Optional[InterestPolicy] = None,
        clock: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.tasks = tasks or get_task_manager()
        self.reader_factory = reader_factory
        self.delivery_factory = delivery_factory
        self.policy = policy or policy_from_settings()
        self.clock = clock
        self.sleep = sleep
        self.max_attempts = max_attempts or settings.LEDGER_MAX_ATTEMPTS

    # ----------------------------
    # Synchronous side (request thread)
    # ----------------------------

    def _validate_period(self, period_start: date, period_end: date) -> None:
        if period_start is None or period_end is None:
            raise ValidationError("period_start and period_end are required")
        if period_start > period_end:
            raise ValidationError("period_start must be on or before period_end")

    def _create_pending(
        self,
        db: Session,
        principal: Principal,
        customer: Customer,
        period_start: date,
        period_end: date,
        notes: Optional[str],
        deliver_immediately: bool,
        regenerated_from_id: Optional[int] = None,
        overrides: Optional[dict] = None,
    ) -> Statement:
        email = _billing_email(customer)
        if not email:
            raise ValidationError(f"Customer {customer.id} has no email address to bill")
        # recipient details given with the request win over the customer record
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        return allocate_statement(
            db,
            issuer_id=principal.id,
            customer_id=customer.id,
            recipient_email=email,
            recipient_name=overrides.get("recipient_name", customer.name or ""),
            recipient_phone=overrides.get("recipient_phone", customer.phone),
            recipient_address=overrides.get("recipient_address", customer.billing_address()),
            period_start=period_start,
            period_end=period_end,
            generated_at=datetime.utcnow(),
            status=STATUS_PENDING,
            generation_status=GEN_RUNNING,
            heartbeat_at=datetime.utcnow(),
            line_items=[],
            notes=notes or None,
            deliver_immediately=bool(deliver_immediately),
            regenerated_from_id=regenerated_from_id,
        )

    def _load_customer(self, db: Session, principal: Principal, customer_id: int) -> Customer:
        if not principal.can_issue:
            raise AccessDenied("Only admins and managers can generate statements")
        customer = db.get(Customer, customer_id)
        if customer is None:
            raise ValidationError(f"Unknown customer {customer_id}")
        ensure_can_issue(principal, customer)
        return customer

    def request_generation(
        self,
        db: Session,
        principal: Principal,
        customer_id: int,
        period_start: date,
        period_end: date,
        notes: Optional[str] = None,
        deliver_immediately: bool = False,
        recipient_name: Optional[str] = None,
        recipient_phone: Optional[str] = None,
        recipient_address: Optional[str] = None,
    ) -> Statement:
        self._validate_period(period_start, period_end)
        customer = self._load_customer(db, principal, customer_id)
        stmt = self._create_pending(
            db, principal, customer, period_start, period_end, notes, deliver_immediately,
            overrides={
                "recipient_name": recipient_name,
                "recipient_phone": recipient_phone,
                "recipient_address": recipient_address,
            },
        )
        self.dispatch(stmt.id)
        return stmt

    def request_bulk_generation(
        self,
        db: Session,
        principal: Principal,
        period_start: date,
        period_end: date,
        notes: Optional[str] = None,
    ) -> List[Statement]:
        self._validate_period(period_start, period_end)
        if not principal.can_issue:
            raise AccessDenied("Only admins and managers can generate statements")

        q = db.query(Customer).filter(Customer.email.isnot(None))
        if principal.role != ROLE_ADMIN:
            q = q.filter(Customer.user_id == principal.id)
        targets = [c for c in q.order_by(Customer.id.asc()).all() if _billing_email(c)]

        # numbers are handed out one by one, in customer order; each build
        # starts as soon as its statement exists
        created: List[Statement] = []
        for cust in targets:
            try:
                stmt = self._create_pending(db, principal, cust, period_start, period_end, notes, False)
            except StatementError as e:
                db.rollback()
                log.warning("bulk generation: customer %s skipped: %s", cust.id, e)
                continue
            self.dispatch(stmt.id)
            created.append(stmt)
        log.info("bulk generation by user=%s: %d statement(s) accepted", principal.id, len(created))
        return created

    def regenerate(self, db: Session, principal: Principal, statement_id: int) -> Statement:
        """New statement for the same customer and period; the original stays untouched."""
        old = lifecycle.get_statement(db, statement_id)
        if not is_issuer_of(db, principal, old):
            raise AccessDenied("Only the issuer can regenerate this statement")
        customer = self._load_customer(db, principal, old.customer_id)
        stmt = self._create_pending(
            db, principal, customer, old.period_start, old.period_end, old.notes,
            False, regenerated_from_id=old.id,
        )
        self.dispatch(stmt.id)
        return stmt

    def dispatch(self, statement_id: int) -> str:
        return self.tasks.submit(self.run_generation, statement_id, name=f"generate-statement-{statement_id}")

    # ----------------------------
    # Detached side (worker thread)
    # ----------------------------

    def _heartbeat(self, db: Session, statement_id: int, bump_attempts: bool = False) -> None:
        values = {"heartbeat_at": datetime.utcnow()}
        if bump_attempts:
            values["generation_attempts"] = Statement.generation_attempts + 1
        db.execute(
            update(Statement)
            .where(Statement.id == statement_id, Statement.generation_status == GEN_RUNNING)
            .values(**values)
        )
        db.commit()

    def _build_with_retry(self, db: Session, stmt: Statement, customer: Customer) -> snapshot.Snapshot:
        as_of = self.clock()
        attempt = 0
        while True:
            attempt += 1
            self._heartbeat(db, stmt.id, bump_attempts=True)
            try:
                return snapshot.build(
                    self.reader_factory(db), customer,
                    stmt.period_start, stmt.period_end, as_of, self.policy,
                )
            except LedgerUnavailable as e:
                db.rollback()
                if attempt >= self.max_attempts:
                    raise LedgerUnavailable(f"{e.message} (gave up after {attempt} attempts)") from e
                delay = _next_backoff_seconds(attempt)
                log.warning(
                    "ledger unavailable for statement id=%s (attempt %d/%d), retrying in %.2fs",
                    stmt.id, attempt, self.max_attempts, delay,
                )
                self.sleep(delay)

    def _write_snapshot(self, db: Session, statement_id: int, snap: snapshot.Snapshot) -> bool:
        b = snap.buckets
        now = datetime.utcnow()
        res = db.execute(
            update(Statement)
            .where(
                Statement.id == statement_id,
                Statement.status == STATUS_PENDING,
                Statement.generation_status == GEN_RUNNING,
                Statement.snapshot_at.is_(None),
            )
            .values(
                line_items=snap.line_items_json(),
                aging_current=b.current,
                aging_31_60=b.days31to60,
                aging_61_90=b.days61to90,
                aging_91_120=b.days91to120,
                aging_over_120=b.over120,
                total_interest=snap.total_interest,
                total_amount_due=snap.total_amount_due,
                payments_received=snap.payments_received,
                as_of_date=snap.as_of,
                snapshot_at=now,
                heartbeat_at=now,
                generation_status=GEN_SUCCEEDED,
            )
        )
        if res.rowcount != 1:
            db.rollback()
            log.warning("snapshot for statement id=%s discarded: record is no longer awaiting one", statement_id)
            return False
        db.commit()
        return True

    def _fail(self, db: Session, statement_id: int, detail: str) -> None:
        db.rollback()
        try:
            lifecycle.mark_failed(db, statement_id, detail)
        except TransitionRejected as e:
            log.warning("could not mark statement id=%s failed: %s", statement_id, e)
        log.error("statement id=%s generation failed: %s", statement_id, detail)

    def run_generation(self, statement_id: int) -> Optional[str]:
        """Build and store one snapshot. Returns the final generation outcome."""
        db = self.session_factory()
        try:
            stmt = db.get(Statement, statement_id)
            if stmt is None:
                log.error("statement id=%s vanished before generation", statement_id)
                return None
            if stmt.status != STATUS_PENDING or stmt.generation_status != GEN_RUNNING:
                log.info("statement id=%s already %s/%s, nothing to do", statement_id, stmt.status, stmt.generation_status)
                return stmt.generation_status

            try:
                customer = db.get(Customer, stmt.customer_id)
                if customer is None:
                    raise GenerationError(f"customer {stmt.customer_id} no longer exists")
                snap = self._build_with_retry(db, stmt, customer)
                written = self._write_snapshot(db, statement_id, snap)
            except GenerationError as e:
                self._fail(db, statement_id, e.message)
                return GEN_FAILED
            except Exception as e:
                log.error("unexpected error generating statement id=%s:\n%s", statement_id, traceback.format_exc())
                self._fail(db, statement_id, f"Unexpected error: {e.__class__.__name__}: {e}")
                return GEN_FAILED

            log.info("statement id=%s snapshot stored (written=%s)", statement_id, written)
            if written and stmt.deliver_immediately:
                try:
                    lifecycle.send(db, statement_id, self.delivery_factory())
                except StatementError as e:
                    # snapshot stays valid; the issuer can send manually
                    log.warning("immediate delivery of statement id=%s failed: %s", statement_id, e)
            return GEN_SUCCEEDED
        finally:
            db.close()

    # ----------------------------
    # Restart recovery
    # ----------------------------

    def recover_stale_generations(self, db: Session, stale_after_seconds: Optional[int] = None) -> List[int]:
        """
        Fail every build still marked running whose heartbeat went quiet, e.g.
        because the process died mid-generation. Those statements can then be
        regenerated.
        """
        stale_after = stale_after_seconds if stale_after_seconds is not None else settings.GENERATION_STALE_SECONDS
        cutoff = datetime.utcnow() - timedelta(seconds=stale_after)
        stale = (
            db.query(Statement.id, Statement.heartbeat_at)
            .filter(
                Statement.generation_status == GEN_RUNNING,
                (Statement.heartbeat_at.is_(None)) | (Statement.heartbeat_at < cutoff),
            )
            .all()
        )
        recovered = []
        for row in stale:
            try:
                lifecycle.mark_failed(
                    db, row.id,
                    f"Generation interrupted: no heartbeat since {row.heartbeat_at.isoformat() if row.heartbeat_at else 'start'}",
                )
                recovered.append(row.id)
            except TransitionRejected as e:
                log.warning("stale statement id=%s not recovered: %s", row.id, e)
        if recovered:
            log.warning("Marked %d interrupted generation(s) as failed", len(recovered))
        return recovered


_orchestrator: Optional[GenerationOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> GenerationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = GenerationOrchestrator()
    return _orchestrator
