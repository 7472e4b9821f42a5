# api/statementdesk/services/sequence.py
import logging
import random
import time

from sqlalchemy import update, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .. import settings
from ..errors import NumberAllocationConflict
from ..models import DocumentSequence, Statement

log = logging.getLogger("sequence")

STATEMENT_SEQUENCE = "statement"


def format_document_number(value: int) -> str:
    return f"{settings.DOCUMENT_NUMBER_PREFIX}{value:0{settings.DOCUMENT_NUMBER_WIDTH}d}"


def ensure_sequence(db: Session, name: str = STATEMENT_SEQUENCE) -> None:
    """
    Create the sequence row if it is missing, seeded from the highest number
    already stored so an existing statements table keeps counting upwards.
    """
    if db.get(DocumentSequence, name) is not None:
        return
    start = 0
    prefix = settings.DOCUMENT_NUMBER_PREFIX
    for (num,) in db.execute(select(Statement.document_number)).all():
        tail = (num or "")[len(prefix):] if (num or "").startswith(prefix) else ""
        if tail.isdigit():
            start = max(start, int(tail))
    db.add(DocumentSequence(name=name, value=start))
    try:
        db.commit()
    except (IntegrityError, OperationalError):
        # another process seeded it first
        db.rollback()


def _next_value(db: Session, name: str) -> int:
    # The UPDATE takes the row (or database) write lock, so concurrent
    # allocators queue here until the holder commits.
    res = db.execute(
        update(DocumentSequence)
        .where(DocumentSequence.name == name)
        .values(value=DocumentSequence.value + 1)
    )
    if not res.rowcount:
        raise NumberAllocationConflict(f"document sequence {name!r} is not initialised")
    return db.execute(
        select(DocumentSequence.value).where(DocumentSequence.name == name)
    ).scalar_one()


def _backoff_seconds(attempt: int) -> float:
    return min(1.0, 0.02 * (2 ** max(0, attempt - 1))) * (0.5 + random.random())


def allocate_statement(db: Session, **fields) -> Statement:
    """
    Allocate the next document number and insert the Statement carrying it,
    both in one transaction. Unique-key collisions and lock contention are
    retried here and never reach the caller unless every attempt fails.
    """
    ensure_sequence(db)
    # start from a clean transaction so the sequence UPDATE is its first write
    db.commit()

    last_error: Exception | None = None
    for attempt in range(1, settings.ALLOCATION_MAX_RETRIES + 1):
        try:
            value = _next_value(db, STATEMENT_SEQUENCE)
            stmt = Statement(document_number=format_document_number(value), **fields)
            db.add(stmt)
            db.flush()
            db.commit()
            log.info("allocated %s -> statement id=%s", stmt.document_number, stmt.id)
            return stmt
        except (IntegrityError, OperationalError) as e:
            db.rollback()
            last_error = e
            log.warning("document number allocation conflict (attempt %d): %s", attempt, e.__class__.__name__)
            time.sleep(_backoff_seconds(attempt))

    log.error("document number allocation gave up after %d attempts: %s", settings.ALLOCATION_MAX_RETRIES, last_error)
    raise NumberAllocationConflict("Could not allocate a document number, please retry")
