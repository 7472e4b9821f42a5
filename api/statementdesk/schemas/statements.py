# api/statementdesk/schemas/statements.py
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .. import settings


class _Period(BaseModel):
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _period_order(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must be on or before period_end")
        return self


class GenerateIn(_Period):
    customer_id: int
    notes: Optional[str] = Field(None, max_length=4000)
    deliver_immediately: bool = False
    # recipient details for this statement only; the customer record is left as is
    recipient_name: Optional[str] = Field(None, max_length=200)
    recipient_phone: Optional[str] = Field(None, max_length=50)
    recipient_address: Optional[str] = Field(None, max_length=2000)


class BulkGenerateIn(_Period):
    notes: Optional[str] = Field(None, max_length=4000)


class PollHint(BaseModel):
    poll_interval_ms: int = Field(default_factory=lambda: settings.POLL_INTERVAL_MS)
    poll_window_seconds: int = Field(default_factory=lambda: settings.POLL_WINDOW_SECONDS)


class GenerationAccepted(PollHint):
    statement_id: int
    document_number: str
    status: str
    generation_status: str


class BulkGenerationAccepted(PollHint):
    created_count: int
    statement_ids: List[int]
    document_numbers: List[str]


class StatementDetailsIn(BaseModel):
    """Only these fields can change, and only while the statement is pending."""
    notes: Optional[str] = Field(None, max_length=4000)
    recipient_name: Optional[str] = Field(None, max_length=200)
    recipient_phone: Optional[str] = Field(None, max_length=50)
    recipient_address: Optional[str] = Field(None, max_length=2000)


class StatementSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    document_number: str
    customer_id: int
    recipient_email: str
    recipient_name: str
    period_start: date
    period_end: date
    status: str
    generation_status: str
    generation_attempts: int
    error_detail: Optional[str] = None
    total_amount_due: Decimal
    generated_at: datetime
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    pdf_url: Optional[str] = None
    regenerated_from_id: Optional[int] = None


class LineItemOut(BaseModel):
    reference: str
    amount: Decimal
    issued_at: date
    due_date: date
    age_days: int
    age_bucket: str


class SnapshotOut(BaseModel):
    statement_id: int
    document_number: str
    recipient_email: str
    recipient_name: str
    recipient_phone: Optional[str] = None
    recipient_address: Optional[str] = None
    period_start: date
    period_end: date
    as_of_date: date
    snapshot_at: datetime
    status: str
    line_items: List[LineItemOut]
    aging_buckets: Dict[str, Decimal]
    total_interest: Decimal
    total_amount_due: Decimal
    payments_received: Decimal
    notes: Optional[str] = None


class ReconcileOut(BaseModel):
    paid_count: int
    statement_ids: List[int]
