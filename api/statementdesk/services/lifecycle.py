# api/statementdesk/services/lifecycle.py
"""
Statement lifecycle: pending -> sent -> viewed -> paid, or pending -> failed.

Every transition is one conditional UPDATE on the current status, so a
transition racing with the background snapshot write (or another
transition) either wins cleanly or is rejected; it never overwrites.
Snapshot columns are never part of a transition.

Sending claims the statement before anything leaves the building, so two
racing sends deliver at most once.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..errors import LedgerUnavailable, StatementNotFound, TransitionRejected
from ..models import (
    Statement,
    STATUS_PENDING, STATUS_SENT, STATUS_VIEWED, STATUS_PAID, STATUS_FAILED,
    GEN_SUCCEEDED, GEN_FAILED,
)
from .access import Principal, is_issuer_of, is_recipient_of
from .delivery import Delivery, deliver
from .ledger import SqlLedgerReader

log = logging.getLogger("lifecycle")

EDITABLE_FIELDS = ("notes", "recipient_name", "recipient_phone", "recipient_address")

# a claim older than this belongs to a send that died mid delivery
SEND_CLAIM_TTL = timedelta(minutes=10)


def get_statement(db: Session, statement_id: int) -> Statement:
    stmt = db.get(Statement, statement_id)
    if not stmt:
        raise StatementNotFound("Statement not found")
    return stmt


def _transition(
    db: Session,
    statement_id: int,
    from_statuses: Iterable[str],
    values: dict,
    rule: str,
    require_snapshot: bool = False,
    extra_conds: Iterable = (),
) -> Statement:
    conds = [Statement.id == statement_id, Statement.status.in_(tuple(from_statuses))]
    conds.extend(extra_conds)
    if require_snapshot:
        conds.append(Statement.generation_status == GEN_SUCCEEDED)
        conds.append(Statement.snapshot_at.isnot(None))
    res = db.execute(update(Statement).where(*conds).values(**values))
    if res.rowcount != 1:
        db.rollback()
        current = db.get(Statement, statement_id)
        if current is None:
            raise StatementNotFound("Statement not found")
        db.refresh(current)
        raise TransitionRejected(rule, current.status)
    db.commit()
    stmt = db.get(Statement, statement_id)
    db.refresh(stmt)
    log.info("statement %s -> %s", stmt.document_number, stmt.status)
    return stmt


# ---------- issuer actions ----------

def send(
    db: Session,
    statement_id: int,
    delivery: Delivery,
    principal: Optional[Principal] = None,
) -> Statement:
    """
    pending -> sent. Only the issuer (or the system, when principal is None,
    for immediate delivery) may send, and only once the snapshot exists.
    """
    stmt = get_statement(db, statement_id)
    if principal is not None and not is_issuer_of(db, principal, stmt):
        raise TransitionRejected("only the issuer may send a statement", stmt.status, forbidden=True)
    if stmt.status != STATUS_PENDING:
        raise TransitionRejected("only pending statements can be sent", stmt.status)
    if not stmt.has_snapshot:
        raise TransitionRejected("a statement can only be sent once its snapshot is built", stmt.status)

    claimed_at = datetime.utcnow()
    stmt = _claim_send(db, statement_id, claimed_at)
    try:
        pdf_url = deliver(stmt, delivery)
    except Exception:
        _release_send(db, statement_id, claimed_at)
        raise

    values = {"status": STATUS_SENT, "sent_at": datetime.utcnow(), "send_claimed_at": None}
    if pdf_url:
        values["pdf_url"] = pdf_url
    return _transition(
        db, statement_id, (STATUS_PENDING,), values,
        "only pending statements can be sent", require_snapshot=True,
        extra_conds=[Statement.send_claimed_at == claimed_at],
    )


def _claim_send(db: Session, statement_id: int, claimed_at: datetime) -> Statement:
    try:
        return _transition(
            db, statement_id, (STATUS_PENDING,), {"send_claimed_at": claimed_at},
            "only pending statements can be sent", require_snapshot=True,
            extra_conds=[or_(
                Statement.send_claimed_at.is_(None),
                Statement.send_claimed_at < claimed_at - SEND_CLAIM_TTL,
            )],
        )
    except TransitionRejected as e:
        if e.current_status == STATUS_PENDING:
            raise TransitionRejected("statement is already being sent", STATUS_PENDING) from None
        raise


def _release_send(db: Session, statement_id: int, claimed_at: datetime) -> None:
    db.rollback()
    db.execute(
        update(Statement)
        .where(Statement.id == statement_id, Statement.send_claimed_at == claimed_at)
        .values(send_claimed_at=None)
    )
    db.commit()


def update_details(db: Session, principal: Principal, statement_id: int, changes: dict) -> Statement:
    """Edit notes / recipient contact fields while the statement is still pending."""
    stmt = get_statement(db, statement_id)
    if not is_issuer_of(db, principal, stmt):
        raise TransitionRejected("only the issuer may edit a statement", stmt.status, forbidden=True)
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if values.get("recipient_name") is None:
        values.pop("recipient_name", None)
    if not values:
        return stmt
    return _transition(
        db, statement_id, (STATUS_PENDING,), values,
        "statement details can only be edited while pending",
        extra_conds=[Statement.send_claimed_at.is_(None)],
    )


# ---------- recipient actions ----------

def mark_viewed(db: Session, principal: Principal, statement_id: int) -> Statement:
    """sent -> viewed. Opening an already viewed or paid statement changes nothing."""
    stmt = get_statement(db, statement_id)
    if not (principal.is_admin or is_recipient_of(principal, stmt)):
        raise TransitionRejected("only the recipient may mark a statement viewed", stmt.status, forbidden=True)
    if stmt.status in (STATUS_VIEWED, STATUS_PAID):
        return stmt
    return _transition(
        db, statement_id, (STATUS_SENT,),
        {"status": STATUS_VIEWED, "viewed_at": datetime.utcnow()},
        "only sent statements can be marked viewed",
    )


# ---------- system / admin actions ----------

def mark_paid(db: Session, statement_id: int, principal: Optional[Principal] = None) -> Statement:
    """sent|viewed -> paid. Admins or payment reconciliation (principal None)."""
    if principal is not None and not principal.is_admin:
        stmt = get_statement(db, statement_id)
        raise TransitionRejected("only an admin or payment reconciliation may mark a statement paid", stmt.status, forbidden=True)
    return _transition(
        db, statement_id, (STATUS_SENT, STATUS_VIEWED),
        {"status": STATUS_PAID, "paid_at": datetime.utcnow()},
        "only sent or viewed statements can be marked paid",
    )


def mark_failed(db: Session, statement_id: int, detail: str) -> Statement:
    """pending -> failed; only ever called by the generation orchestrator."""
    return _transition(
        db, statement_id, (STATUS_PENDING,),
        {
            "status": STATUS_FAILED,
            "generation_status": GEN_FAILED,
            "error_detail": detail[:4000],
            "heartbeat_at": datetime.utcnow(),
        },
        "only pending statements can fail generation",
    )


def reconcile_payments(db: Session, reader: Optional[SqlLedgerReader] = None) -> List[int]:
    """
    Mark sent/viewed statements paid once every ledger record on them has
    been settled. Returns the ids that moved to paid.
    """
    reader = reader or SqlLedgerReader(db)
    candidates = (
        db.query(Statement)
        .filter(Statement.status.in_((STATUS_SENT, STATUS_VIEWED)))
        .order_by(Statement.id.asc())
        .all()
    )
    settled: List[int] = []
    for stmt in candidates:
        refs = [li.get("reference") for li in (stmt.line_items or []) if li.get("reference")]
        if not refs:
            continue
        try:
            paid = reader.paid_references(stmt.customer_id, refs)
        except LedgerUnavailable as e:
            log.warning("reconcile: ledger unavailable for %s: %s", stmt.document_number, e)
            continue
        if set(refs) <= paid:
            try:
                mark_paid(db, stmt.id)
                settled.append(stmt.id)
            except TransitionRejected as e:
                # moved on concurrently
                log.info("reconcile: %s skipped: %s", stmt.document_number, e)
    log.info("reconcile: %d statement(s) marked paid", len(settled))
    return settled
