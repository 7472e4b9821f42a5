# api/statementdesk/services/statements_logic.py
from typing import List, Optional

from sqlalchemy.orm import Session

from ..errors import SnapshotNotReady, ValidationError
from ..models import Statement, STATEMENT_STATUS_ENUM, GEN_FAILED
from .access import Principal, SCOPE_ISSUED, ensure_can_view, scope_filter
from .lifecycle import get_statement

VALID_STATUSES = tuple(STATEMENT_STATUS_ENUM.enums)


def list_statements(
    db: Session,
    principal: Principal,
    scope: str = SCOPE_ISSUED,
    status: Optional[str] = None,
    customer_email: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[Statement]:
    """Statements visible to the principal from one side, newest first."""
    q = db.query(Statement).filter(scope_filter(principal, scope, customer_email))
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Unknown status {status!r}")
        q = q.filter(Statement.status == status)
    return (
        q.order_by(Statement.generated_at.desc(), Statement.id.desc())
         .offset(max(0, offset))
         .limit(max(1, min(limit, 1000)))
         .all()
    )


def get_visible_statement(db: Session, principal: Principal, statement_id: int) -> Statement:
    stmt = get_statement(db, statement_id)
    ensure_can_view(db, principal, stmt)
    return stmt


def get_snapshot(db: Session, principal: Principal, statement_id: int) -> Statement:
    stmt = get_visible_statement(db, principal, statement_id)
    if not stmt.has_snapshot:
        if stmt.generation_status == GEN_FAILED:
            raise SnapshotNotReady(f"Generation failed: {stmt.error_detail or 'unknown error'}")
        raise SnapshotNotReady("Snapshot is still being generated")
    return stmt
