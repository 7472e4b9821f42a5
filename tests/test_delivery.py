"""Rendering, attachment storage and the Postmark notifier."""

from datetime import timedelta

import pytest
import requests

from conftest import AS_OF, PERIOD_END, PERIOD_START, make_invoice, reload
from statementdesk import mailer
from statementdesk.services.attachments import LocalAttachmentStore
from statementdesk.services.statement_pdf import render_statement_html


@pytest.fixture
def ready(db, seed, orchestrator, task_manager):
    make_invoice(db, seed.acme, "INV-77", "640.00", due=AS_OF - timedelta(days=100))
    stmt = orchestrator.request_generation(
        db, seed.principal(seed.manager), seed.acme.id, PERIOD_START, PERIOD_END, notes="Pay within 7 days",
    )
    task_manager.wait_all(timeout=30)
    return reload(db, stmt.id)


class TestRender:
    def test_html_shows_frozen_snapshot(self, ready):
        html = render_statement_html(ready)
        assert "Statement ST-000001" in html
        assert "INV-77" in html
        assert "91-120 days" in html
        assert "38.40" in html
        assert "Pay within 7 days" in html


class TestAttachments:
    def test_store_writes_file_and_returns_url(self, tmp_path):
        store = LocalAttachmentStore(base_dir=tmp_path, base_url="/files/")
        url = store.store(b"%PDF", "ST 000001.pdf")
        assert url.startswith("/files/")
        assert url.endswith("-ST-000001.pdf")
        stored = list(tmp_path.iterdir())
        assert len(stored) == 1
        assert stored[0].read_bytes() == b"%PDF"


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        return self._payload


class TestMailer:
    def test_missing_token_is_permanent_failure(self, monkeypatch):
        monkeypatch.setattr(mailer.settings, "POSTMARK_SERVER_TOKEN", "")
        res = mailer.notify("a@example.com", None, {"document_number": "ST-000001"})
        assert not res.ok
        assert res.permanent

    def test_sends_with_attachment(self, monkeypatch):
        calls = []

        def fake_post(url, headers, json, timeout):
            calls.append(json)
            return FakeResponse(200, {"MessageID": "abc-123"})

        monkeypatch.setattr(mailer.settings, "POSTMARK_SERVER_TOKEN", "token")
        monkeypatch.setattr(mailer.requests, "post", fake_post)
        res = mailer.notify(
            "a@example.com", b"%PDF",
            {"document_number": "ST-000009", "customer_name": "Acme", "period_label": "June",
             "total_amount_due": "10.00", "pdf_filename": "ST-000009.pdf"},
        )
        assert res.ok
        assert res.message_id == "abc-123"
        payload = calls[0]
        assert payload["To"] == "a@example.com"
        assert payload["Subject"] == "Statement ST-000009"
        assert payload["Attachments"][0]["Name"] == "ST-000009.pdf"
        assert "Total amount due: 10.00" in payload["TextBody"]

    def test_inactive_recipient_is_permanent(self, monkeypatch):
        monkeypatch.setattr(
            mailer.requests, "post",
            lambda *a, **kw: FakeResponse(422, {"ErrorCode": 406, "Message": "Inactive recipient"}),
        )
        res = mailer.send_via_postmark("t", "from@example.com", "to@example.com", "s", "<p>x</p>")
        assert not res.ok
        assert res.permanent
        assert res.code == 406

    def test_network_error_is_transient(self, monkeypatch):
        def boom(*a, **kw):
            raise requests.ConnectionError("no route")

        monkeypatch.setattr(mailer.requests, "post", boom)
        res = mailer.send_via_postmark("t", "from@example.com", "to@example.com", "s", "<p>x</p>")
        assert not res.ok
        assert not res.permanent
