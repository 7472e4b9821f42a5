# api/statementdesk/mailer.py
import requests
from typing import Optional, Tuple, Dict, Any, List
from html import escape
from base64 import b64encode
import logging

from . import settings

log = logging.getLogger("mailer")

POSTMARK_SEND_URL = "https://api.postmarkapp.com/email"

class MailResult:
    def __init__(self, ok: bool, message_id: Optional[str] = None,
                 error: Optional[str] = None, code: Optional[int] = None,
                 permanent: bool = False):
        self.ok = ok
        self.message_id = message_id
        self.error = error
        self.code = code
        self.permanent = permanent
    def __repr__(self) -> str:
        return f"MailResult(ok={self.ok}, id={self.message_id!r}, code={self.code!r}, permanent={self.permanent}, error={self.error!r})"

def send_via_postmark(
    server_token: str,
    From: str,
    To: str,
    Subject: str,
    HtmlBody: str,
    TextBody: str = "",
    attachments: Optional[List[Dict[str, str]]] = None,
) -> MailResult:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "X-Postmark-Server-Token": server_token,
    }
    payload = {
        "From": From,
        "To": To,
        "Subject": Subject,
        "HtmlBody": HtmlBody,
        "TextBody": TextBody or " ",
        "MessageStream": "outbound",
    }
    if attachments:
        payload["Attachments"] = attachments
    try:
        r = requests.post(POSTMARK_SEND_URL, headers=headers, json=payload, timeout=10)
    except requests.RequestException as e:
        return MailResult(False, error=str(e), code=None, permanent=False)

    if r.status_code == 200:
        data = r.json()
        return MailResult(True, message_id=str(data.get("MessageID")))
    code = None
    permanent = 400 <= r.status_code < 500 and r.status_code != 429
    msg_text = r.text
    try:
        jd = r.json()
        code = int(jd.get("ErrorCode")) if "ErrorCode" in jd else None
        msg_text = jd.get("Message") or msg_text
        if code in (412, 300, 405, 406):
            permanent = True
    except ValueError:
        pass
    return MailResult(False, error=f"{r.status_code}: {msg_text}", code=code, permanent=permanent)

# ---------------------------
# Statement email composition
# ---------------------------

def compose_statement_html_text(
    customer_name: Optional[str],
    document_number: str,
    period_label: str,
    total_amount_due: str,
    statement_url: Optional[str],
) -> Tuple[str, str]:
    link_html = ""
    if statement_url:
        link_html = f'<p><a href="{escape(statement_url)}" target="_blank">View your statement</a></p>'
    html_parts = [
        '<div style="font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;',
        'font-size:14px;color:#111;">',
        f"<p>Dear {escape(customer_name or 'Customer')},</p>",
        f"<p>Please find attached statement <strong>{escape(document_number)}</strong>.</p>",
        f"<p><strong>Period:</strong> {escape(period_label)}</p>",
        f"<p><strong>Total amount due:</strong> {escape(total_amount_due)}</p>",
        link_html,
        "</div>",
    ]
    html = "".join(html_parts)
    text_lines = [
        f"Dear {customer_name or 'Customer'},",
        "",
        f"Please find attached statement {document_number}.",
        f"Period: {period_label}",
        f"Total amount due: {total_amount_due}",
    ]
    if statement_url:
        text_lines.append("")
        text_lines.append(f"View your statement: {statement_url}")
    return html, "\n".join(text_lines)

def notify(recipient: str, document_bytes: Optional[bytes], metadata: Dict[str, Any]) -> MailResult:
    """
    Email a statement to its recipient through the platform Postmark server.
    `metadata` carries the display fields (customer_name, document_number,
    period_label, total_amount_due, statement_url, pdf_filename).
    """
    token = settings.POSTMARK_SERVER_TOKEN
    if not token:
        return MailResult(False, error="Server misconfiguration: POSTMARK_SERVER_TOKEN_DEFAULT is not set", permanent=True)

    html, text = compose_statement_html_text(
        customer_name=metadata.get("customer_name"),
        document_number=metadata.get("document_number", ""),
        period_label=metadata.get("period_label", ""),
        total_amount_due=str(metadata.get("total_amount_due", "")),
        statement_url=metadata.get("statement_url"),
    )

    attachments = None
    if document_bytes:
        attachments = [{
            "Name": metadata.get("pdf_filename") or f"{metadata.get('document_number', 'Statement')}.pdf",
            "Content": b64encode(document_bytes).decode("ascii"),
            "ContentType": "application/pdf",
        }]

    res = send_via_postmark(
        server_token=token,
        From=f"{settings.PLATFORM_FROM_NAME} <{settings.PLATFORM_FROM_EMAIL}>",
        To=recipient,
        Subject=f"Statement {metadata.get('document_number', '')}".strip(),
        HtmlBody=html,
        TextBody=text,
        attachments=attachments,
    )
    log.info("statement mail to=%s -> %r", recipient, res)
    return res
