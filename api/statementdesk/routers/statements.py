# api/statementdesk/routers/statements.py
from typing import List, Optional

from fastapi import status

from ..shared import APIRouter, Depends, Query, Session
from ..database import get_db
from ..models import Statement
from ..schemas.statements import (
    GenerateIn, BulkGenerateIn, GenerationAccepted, BulkGenerationAccepted,
    StatementDetailsIn, StatementSummaryOut, SnapshotOut, LineItemOut, ReconcileOut,
)
from ..services import lifecycle
from ..services.access import Principal, SCOPE_ISSUED
from ..services.delivery import Delivery, default_delivery
from ..services.orchestrator import GenerationOrchestrator, get_orchestrator
from ..services.statement_pdf import statement_buckets
from ..services.statements_logic import get_snapshot, get_visible_statement, list_statements
from .auth import require_principal, require_admin

router = APIRouter(prefix="/api/statements", tags=["statements"])


def get_delivery() -> Delivery:
    return default_delivery()


def _accepted(stmt: Statement) -> GenerationAccepted:
    return GenerationAccepted(
        statement_id=stmt.id,
        document_number=stmt.document_number,
        status=stmt.status,
        generation_status=stmt.generation_status,
    )


def _snapshot_out(stmt: Statement) -> SnapshotOut:
    return SnapshotOut(
        statement_id=stmt.id,
        document_number=stmt.document_number,
        recipient_email=stmt.recipient_email,
        recipient_name=stmt.recipient_name,
        recipient_phone=stmt.recipient_phone,
        recipient_address=stmt.recipient_address,
        period_start=stmt.period_start,
        period_end=stmt.period_end,
        as_of_date=stmt.as_of_date,
        snapshot_at=stmt.snapshot_at,
        status=stmt.status,
        line_items=[LineItemOut(**li) for li in (stmt.line_items or [])],
        aging_buckets=statement_buckets(stmt),
        total_interest=stmt.total_interest,
        total_amount_due=stmt.total_amount_due,
        payments_received=stmt.payments_received,
        notes=stmt.notes,
    )


# ----------------------------
# Generation
# ----------------------------

@router.post("/generate", response_model=GenerationAccepted, status_code=status.HTTP_202_ACCEPTED)
def generate_statement(
    body: GenerateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    stmt = orchestrator.request_generation(
        db, principal,
        customer_id=body.customer_id,
        period_start=body.period_start,
        period_end=body.period_end,
        notes=body.notes,
        deliver_immediately=body.deliver_immediately,
        recipient_name=body.recipient_name,
        recipient_phone=body.recipient_phone,
        recipient_address=body.recipient_address,
    )
    return _accepted(stmt)


@router.post("/generate/bulk", response_model=BulkGenerationAccepted, status_code=status.HTTP_202_ACCEPTED)
def generate_managed_statements(
    body: BulkGenerateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    created = orchestrator.request_bulk_generation(
        db, principal, body.period_start, body.period_end, notes=body.notes,
    )
    return BulkGenerationAccepted(
        created_count=len(created),
        statement_ids=[s.id for s in created],
        document_numbers=[s.document_number for s in created],
    )


@router.post("/reconcile", response_model=ReconcileOut)
def reconcile(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    ids = lifecycle.reconcile_payments(db)
    return ReconcileOut(paid_count=len(ids), statement_ids=ids)


# ----------------------------
# Read side
# ----------------------------

@router.get("", response_model=List[StatementSummaryOut])
@router.get("/", response_model=List[StatementSummaryOut], include_in_schema=False)
def get_statements(
    scope: str = Query(SCOPE_ISSUED),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_email: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return list_statements(
        db, principal, scope=scope, status=status_filter,
        customer_email=customer_email, limit=limit, offset=offset,
    )


@router.get("/{statement_id}", response_model=StatementSummaryOut)
def get_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return get_visible_statement(db, principal, statement_id)


@router.get("/{statement_id}/snapshot", response_model=SnapshotOut)
def get_statement_snapshot(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return _snapshot_out(get_snapshot(db, principal, statement_id))


# ----------------------------
# Lifecycle
# ----------------------------

@router.post("/{statement_id}/send", response_model=StatementSummaryOut)
def send_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
    delivery: Delivery = Depends(get_delivery),
):
    return lifecycle.send(db, statement_id, delivery, principal=principal)


@router.post("/{statement_id}/viewed", response_model=StatementSummaryOut)
def mark_statement_viewed(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.mark_viewed(db, principal, statement_id)


@router.post("/{statement_id}/paid", response_model=StatementSummaryOut)
def mark_statement_paid(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.mark_paid(db, statement_id, principal=principal)


@router.patch("/{statement_id}", response_model=StatementSummaryOut)
def update_statement_details(
    statement_id: int,
    body: StatementDetailsIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    return lifecycle.update_details(db, principal, statement_id, body.model_dump(exclude_unset=True))


@router.post("/{statement_id}/regenerate", response_model=GenerationAccepted, status_code=status.HTTP_202_ACCEPTED)
def regenerate_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    return _accepted(orchestrator.regenerate(db, principal, statement_id))
