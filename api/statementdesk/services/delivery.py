# api/statementdesk/services/delivery.py
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .. import mailer
from ..errors import DeliveryFailed
from ..models import Statement
from .attachments import LocalAttachmentStore
from .statement_pdf import render_statement

log = logging.getLogger("delivery")


@dataclass
class Delivery:
    """The outbound collaborators used when a statement is sent."""
    render: Callable[[Statement], Optional[bytes]]
    store_attachment: Callable[[bytes, str], str]
    notify: Callable[[str, Optional[bytes], Dict[str, Any]], "mailer.MailResult"]


def default_delivery() -> Delivery:
    return Delivery(
        render=render_statement,
        store_attachment=LocalAttachmentStore().store,
        notify=mailer.notify,
    )


def _pdf_filename(stmt: Statement) -> str:
    return f"{stmt.document_number}.pdf"


def deliver(stmt: Statement, delivery: Delivery) -> Optional[str]:
    """
    Render the snapshot, store the document and notify the recipient.
    Returns the attachment URL (None when no PDF could be rendered).
    Raises DeliveryFailed when the recipient could not be notified.
    """
    pdf = delivery.render(stmt)
    pdf_url = None
    if pdf:
        pdf_url = delivery.store_attachment(pdf, _pdf_filename(stmt))
    else:
        log.warning("No PDF rendered for %s; sending without attachment", stmt.document_number)

    res = delivery.notify(
        stmt.recipient_email,
        pdf,
        {
            "customer_name": stmt.recipient_name or stmt.recipient_email,
            "document_number": stmt.document_number,
            "period_label": f"{stmt.period_start.isoformat()} - {stmt.period_end.isoformat()}",
            "total_amount_due": str(stmt.total_amount_due),
            "statement_url": pdf_url,
            "pdf_filename": _pdf_filename(stmt),
        },
    )
    if not res.ok:
        log.error("Delivery of %s to %s failed: %s", stmt.document_number, stmt.recipient_email, res.error)
        raise DeliveryFailed(f"Could not deliver statement: {res.error}")
    return pdf_url
