# api/statementdesk/services/access.py
"""
Who may see which statements.

Two perspectives exist on every statement:

issued    the billing side. Admins see every statement; managers see the
          statements of customers they manage (Customer.user_id).
received  the billed side: statements addressed to the principal's own
          email. Only finalized statements (sent, viewed, paid) are ever
          visible from this side, so pending builds and failed generations
          never leak to recipients. Admins may look at any party's received
          statements, still finalized only.

Customers have no issued side at all.
"""
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import and_, select, true
from sqlalchemy.orm import Session

from ..errors import AccessDenied
from ..models import Customer, Statement, User, FINALIZED_STATUSES

ROLE_ADMIN = "ADMIN"
ROLE_MANAGER = "MANAGER"
ROLE_CUSTOMER = "CUSTOMER"

SCOPE_ISSUED = "issued"
SCOPE_RECEIVED = "received"


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, email=(user.email or "").strip().lower(), role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_issue(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_MANAGER)


@dataclass(frozen=True)
class AccessScope:
    issued: Optional[Any]     # SQL filter on Statement, None when not available
    received: Optional[Any]


def _managed_customer_ids(principal: Principal):
    return select(Customer.id).where(Customer.user_id == principal.id)


def received_filter(principal: Principal, customer_email: Optional[str] = None):
    finalized = Statement.status.in_(FINALIZED_STATUSES)
    if principal.is_admin:
        if customer_email:
            return and_(finalized, Statement.recipient_email == customer_email.strip().lower())
        return finalized
    return and_(finalized, Statement.recipient_email == principal.email)


def issued_filter(principal: Principal):
    if principal.is_admin:
        return true()
    if principal.role == ROLE_MANAGER:
        return Statement.customer_id.in_(_managed_customer_ids(principal))
    return None


def resolve(principal: Principal, customer_email: Optional[str] = None) -> AccessScope:
    return AccessScope(
        issued=issued_filter(principal),
        received=received_filter(principal, customer_email),
    )


def scope_filter(principal: Principal, scope: str, customer_email: Optional[str] = None):
    resolved = resolve(principal, customer_email)
    if scope == SCOPE_RECEIVED:
        return resolved.received
    if scope == SCOPE_ISSUED:
        if resolved.issued is None:
            raise AccessDenied("Customers can only view statements they received")
        if customer_email:
            return and_(resolved.issued, Statement.recipient_email == customer_email.strip().lower())
        return resolved.issued
    raise AccessDenied(f"Unknown statement scope {scope!r}")


def manages_customer(principal: Principal, customer: Customer) -> bool:
    if principal.is_admin:
        return True
    return principal.role == ROLE_MANAGER and customer.user_id == principal.id


def ensure_can_issue(principal: Principal, customer: Customer) -> None:
    if not manages_customer(principal, customer):
        raise AccessDenied("You can only issue statements for customers you manage")


def is_issuer_of(db: Session, principal: Principal, stmt: Statement) -> bool:
    if principal.is_admin:
        return True
    if principal.role != ROLE_MANAGER:
        return False
    cust = db.get(Customer, stmt.customer_id)
    return bool(cust and cust.user_id == principal.id)


def is_recipient_of(principal: Principal, stmt: Statement) -> bool:
    return (stmt.recipient_email or "").strip().lower() == principal.email


def ensure_can_view(db: Session, principal: Principal, stmt: Statement) -> None:
    if is_issuer_of(db, principal, stmt):
        return
    if is_recipient_of(principal, stmt) and stmt.status in FINALIZED_STATUSES:
        return
    raise AccessDenied("You are not allowed to view this statement")
