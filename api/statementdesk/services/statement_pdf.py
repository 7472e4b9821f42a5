# api/statementdesk/services/statement_pdf.py
from typing import Optional
import logging

from .. import settings
from ..models import Statement
from ..shared import templates
from .aging import BUCKET_NAMES

log = logging.getLogger("statement_pdf")

BUCKET_LABELS = {
    "current": "Current",
    "days31to60": "31-60 days",
    "days61to90": "61-90 days",
    "days91to120": "91-120 days",
    "over120": "Over 120 days",
}


def statement_buckets(stmt: Statement) -> dict:
    return {
        "current": stmt.aging_current,
        "days31to60": stmt.aging_31_60,
        "days61to90": stmt.aging_61_90,
        "days91to120": stmt.aging_91_120,
        "over120": stmt.aging_over_120,
    }


def render_statement_html(stmt: Statement) -> str:
    """
    Build a minimal, self-contained HTML document for the statement snapshot,
    suitable for PDF rendering. Only frozen snapshot fields are used.
    """
    buckets = statement_buckets(stmt)
    tpl = templates.env.get_template("pdf/statement_pdf.html")
    return tpl.render(
        statement=stmt,
        line_items=stmt.line_items or [],
        buckets=[(BUCKET_LABELS[n], buckets[n]) for n in BUCKET_NAMES],
    )


def render_pdf_from_html(html: str) -> Optional[bytes]:
    """
    HTML -> PDF using wkhtmltopdf (via pdfkit). Returns PDF bytes or None on failure.
    Configure binary via env WKHTMLTOPDF_PATH or ensure it's on PATH.
    """
    try:
        import pdfkit
        exe = settings.WKHTMLTOPDF_PATH
        cfg = pdfkit.configuration(wkhtmltopdf=exe) if exe else None
        options = {"quiet": "", "encoding": "UTF-8"}
        pdf_bytes = pdfkit.from_string(html, False, configuration=cfg, options=options)
        if isinstance(pdf_bytes, (bytes, bytearray)) and pdf_bytes:
            return bytes(pdf_bytes)
    except (ImportError, OSError) as e:
        log.warning("wkhtmltopdf PDF render failed: %s", e)
    return None


def render_statement(stmt: Statement) -> Optional[bytes]:
    html = render_statement_html(stmt)
    pdf = render_pdf_from_html(html)
    if pdf:
        log.info("Rendered PDF for %s via wkhtmltopdf", stmt.document_number)
    return pdf
