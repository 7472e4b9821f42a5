from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, Enum, JSON, ForeignKey, Text, Boolean, UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base


# Reusable enums
ROLE_ENUM = Enum("ADMIN", "MANAGER", "CUSTOMER", name="user_role")
INVOICE_KIND_ENUM = Enum("invoice", "credit_note", name="invoice_kind")
INVOICE_STATUS_ENUM = Enum("open", "chasing", "paid", "partial", "disputed", "written_off", name="invoice_status")
STATEMENT_STATUS_ENUM = Enum("pending", "sent", "viewed", "paid", "failed", name="statement_status")
GENERATION_STATUS_ENUM = Enum("running", "succeeded", "failed", name="generation_status")

# Business lifecycle values
STATUS_PENDING = "pending"
STATUS_SENT    = "sent"
STATUS_VIEWED  = "viewed"
STATUS_PAID    = "paid"
STATUS_FAILED  = "failed"
FINALIZED_STATUSES = (STATUS_SENT, STATUS_VIEWED, STATUS_PAID)

# Generation outcome values
GEN_RUNNING   = "running"
GEN_SUCCEEDED = "succeeded"
GEN_FAILED    = "failed"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(ROLE_ENUM, nullable=False, default="CUSTOMER")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # customers this user bills (managers and admins)
    customers = relationship("Customer", back_populates="user")


class Customer(Base):
    __tablename__ = "customers"

    __table_args__ = (
        Index("ix_customers_user", "user_id"),
        Index("ix_customers_email", "email"),
    )

    id               = Column(Integer, primary_key=True, autoincrement=True)
    user_id          = Column(Integer, ForeignKey("users.id"), nullable=False)   # managing user
    name             = Column(String(200), nullable=False)
    email            = Column(String(200), nullable=True)
    phone            = Column(String(50),  nullable=True)
    billing_line1    = Column(String(255), nullable=True)
    billing_line2    = Column(String(255), nullable=True)
    billing_city     = Column(String(120), nullable=True)
    billing_region   = Column(String(120), nullable=True)   # County/State/Province
    billing_postcode = Column(String(32),  nullable=True)
    billing_country  = Column(String(2),   nullable=False, default="GB")
    created_at       = Column(DateTime, nullable=False, default=datetime.utcnow)

    user      = relationship("User", back_populates="customers")
    invoices  = relationship("Invoice", back_populates="customer")

    def billing_address(self) -> str | None:
        parts = [
            self.billing_line1, self.billing_line2, self.billing_city,
            self.billing_region, self.billing_postcode,
        ]
        joined = ", ".join(p.strip() for p in parts if p and p.strip())
        return joined or None


class Invoice(Base):
    """External billing ledger. The statement engine only ever reads this table."""
    __tablename__ = "invoices"

    __table_args__ = (
        # Enforce one invoice_number per customer
        UniqueConstraint("customer_id", "invoice_number", name="uq_invoices_customer_invoice_number"),
        Index("ix_invoices_customer_due", "customer_id", "due_date"),
        Index("ix_invoices_user", "user_id"),
    )

    id               = Column(Integer, primary_key=True, autoincrement=True)
    user_id          = Column(Integer, ForeignKey("users.id"), nullable=False)
    kind             = Column(INVOICE_KIND_ENUM, nullable=False, default="invoice")
    customer_id      = Column(Integer, ForeignKey("customers.id"), nullable=False)
    invoice_number   = Column(String(64), nullable=False)
    amount_due       = Column(Numeric(12,2), nullable=False)
    currency         = Column(String(10), nullable=False, default="GBP")
    issue_date       = Column(DateTime, nullable=False, default=datetime.utcnow)
    due_date         = Column(DateTime, nullable=True)
    status           = Column(INVOICE_STATUS_ENUM, nullable=False, default="open")
    paid_at          = Column(DateTime, nullable=True)
    created_at       = Column(DateTime, nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="invoices")


class DocumentSequence(Base):
    """Last issued number per document series; bumped atomically in the insert transaction."""
    __tablename__ = "document_sequences"

    name  = Column(String(32), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class Statement(Base):
    __tablename__ = "statements"

    __table_args__ = (
        UniqueConstraint("document_number", name="uq_statements_document_number"),
        CheckConstraint("period_start <= period_end", name="ck_statements_period"),
        Index("ix_statements_recipient_status", "recipient_email", "status"),
        Index("ix_statements_customer", "customer_id"),
        Index("ix_statements_generation", "generation_status", "heartbeat_at"),
    )

    id                = Column(Integer, primary_key=True, autoincrement=True)
    document_number   = Column(String(32), nullable=False)
    issuer_id         = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    customer_id       = Column(Integer, ForeignKey("customers.id"), nullable=False)

    # denormalised copy of the billed party at generation time
    recipient_email   = Column(String(200), nullable=False)
    recipient_name    = Column(String(200), nullable=False, default="")
    recipient_phone   = Column(String(50),  nullable=True)
    recipient_address = Column(Text,        nullable=True)

    period_start      = Column(Date, nullable=False)
    period_end        = Column(Date, nullable=False)
    as_of_date        = Column(Date, nullable=True)

    generated_at      = Column(DateTime, nullable=False, default=datetime.utcnow)
    sent_at           = Column(DateTime, nullable=True)
    viewed_at         = Column(DateTime, nullable=True)
    paid_at           = Column(DateTime, nullable=True)
    # set while a send is delivering; only one send can hold it
    send_claimed_at   = Column(DateTime, nullable=True)

    # business lifecycle
    status            = Column(STATEMENT_STATUS_ENUM, nullable=False, default=STATUS_PENDING)

    # generation outcome, kept apart from the lifecycle
    generation_status   = Column(GENERATION_STATUS_ENUM, nullable=False, default=GEN_RUNNING)
    generation_attempts = Column(Integer, nullable=False, default=0)
    heartbeat_at        = Column(DateTime, nullable=True)
    error_detail        = Column(Text, nullable=True)

    # snapshot (write-once)
    snapshot_at       = Column(DateTime, nullable=True)
    line_items        = Column(JSON, nullable=False, default=list)
    aging_current     = Column(Numeric(14,2), nullable=False, default=0)
    aging_31_60       = Column(Numeric(14,2), nullable=False, default=0)
    aging_61_90       = Column(Numeric(14,2), nullable=False, default=0)
    aging_91_120      = Column(Numeric(14,2), nullable=False, default=0)
    aging_over_120    = Column(Numeric(14,2), nullable=False, default=0)
    total_interest    = Column(Numeric(14,2), nullable=False, default=0)
    total_amount_due  = Column(Numeric(14,2), nullable=False, default=0)
    payments_received = Column(Numeric(14,2), nullable=False, default=0)

    notes               = Column(Text, nullable=True)
    deliver_immediately = Column(Boolean, nullable=False, default=False)
    pdf_url             = Column(String(512), nullable=True)
    regenerated_from_id = Column(Integer, ForeignKey("statements.id"), nullable=True)

    issuer   = relationship("User")
    customer = relationship("Customer")

    @property
    def has_snapshot(self) -> bool:
        return self.snapshot_at is not None and self.generation_status == GEN_SUCCEEDED
