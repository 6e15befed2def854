"""
Settlement report export tests.

The downloader is injected, so most tests never touch object storage.
"""

import io
from datetime import datetime, timezone

import pypdfium2 as pdfium
import pytest

from reimburse.models.settlement import Settlement
from reimburse.services import report_export, request_lifecycle, settlement_service
from reimburse.services.storage_service import get_storage
from tests.conftest import PNG_1PX, SIGNATURE, auth_headers, make_ctx, request_payload


def _blank_pdf() -> bytes:
    pdf = pdfium.PdfDocument.new()
    pdf.new_page(200, 300)
    buf = io.BytesIO()
    pdf.save(buf)
    pdf.close()
    return buf.getvalue()


def _receipt(name):
    path = f"receipts/proj-a/operations/1710400000000_{name}"
    return {"fileName": name, "storagePath": path, "url": f"/api/v1/files/raw/{path}"}


def _settlement(**overrides):
    fields = dict(
        id="settle-1",
        created_at=datetime(2026, 3, 20, tzinfo=timezone.utc),
        created_by={"uid": "bob", "name": "Bob", "email": "bob@example.org"},
        payee="Kim <Minji>",
        phone="010-1234-5678",
        bank_name="Shinhan",
        bank_account="110-123-456789",
        session="Spring retreat",
        committee="operations",
        project_id="proj-a",
        items=[
            {"description": "Bus rental", "budgetCode": 1, "amount": 120000},
            {"description": "Snacks", "budgetCode": 2, "amount": 30000},
        ],
        total_amount=150000,
        request_ids=["r1", "r2"],
        receipts=[_receipt("bus.png"), _receipt("missing.png"), _receipt("invoice.pdf")],
        requested_by_signature=SIGNATURE,
        approval_signature=SIGNATURE,
        approved_by={"uid": "bob", "name": "Bob Approver", "email": "bob@example.org"},
        director_approval_required=False,
    )
    fields.update(overrides)
    return Settlement(**fields)


class _FakeStore:
    def __init__(self, files):
        self.files = files
        self.calls = []

    def __call__(self, path):
        self.calls.append(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]


@pytest.fixture()
def store():
    return _FakeStore({
        _receipt("bus.png")["storagePath"]: (PNG_1PX, "image/png"),
        _receipt("invoice.pdf")["storagePath"]: (_blank_pdf(), "application/pdf"),
    })


class TestRenderReport:
    def test_failed_receipt_does_not_break_report(self, store):
        html = report_export.render_settlement_report(_settlement(), downloader=store)

        assert html.count('class="receipt-card"') == 3
        assert html.count("Failed to load") == 1
        assert "missing.png" in html
        assert "data:image/png;base64," in html
        assert len(store.calls) == 3

    def test_header_items_and_total(self, store):
        html = report_export.render_settlement_report(
            _settlement(), document_no="DOC-2026-01", project_name="Project A", downloader=store,
        )
        assert "Settlement Report" in html
        assert "Project A" in html
        assert "Bus rental" in html
        assert "₩120,000" in html
        assert "₩150,000" in html
        assert "Requests: 2 | Receipts: 3" in html
        assert "DOC-2026-01" in html
        assert "Area Office Finance Verification" in html
        assert "Requested by" in html
        assert "Bob Approver" in html

    def test_values_are_escaped(self, store):
        html = report_export.render_settlement_report(_settlement(), downloader=store)
        assert "Kim &lt;Minji&gt;" in html
        assert "Kim <Minji>" not in html

    def test_director_note(self, store):
        html = report_export.render_settlement_report(_settlement(director_approval_required=True), downloader=store)
        assert "Director approval required" in html

    def test_legacy_receipt_is_failed_card(self):
        settlement = _settlement(receipts=[{"fileName": "old.jpg", "driveFileId": "d1", "driveUrl": "https://drive/d1"}])
        html = report_export.render_settlement_report(settlement, downloader=lambda path: pytest.fail("fetched"))
        assert "Failed to load" in html
        assert "old.jpg" in html


class TestPreload:
    def test_pdf_rasterized_to_png(self, store):
        images = report_export.preload_receipts([_receipt("invoice.pdf")], store)
        assert images[0]["dataUrl"].startswith("data:image/png;base64,")

    def test_corrupt_pdf_becomes_none(self):
        images = report_export.preload_receipts(
            [_receipt("broken.pdf")], lambda path: (b"%PDF-1.4 not really", "application/pdf"),
        )
        assert images == [{"fileName": "broken.pdf", "dataUrl": None}]

    def test_pdf_handles_closed_in_order(self, monkeypatch):
        data = _blank_pdf()
        closed = []

        def tracking(cls):
            original = cls.close

            def close(self, *args, **kwargs):
                closed.append(cls.__name__)
                return original(self, *args, **kwargs)
            monkeypatch.setattr(cls, "close", close)

        for cls in (pdfium.PdfDocument, pdfium.PdfPage, pdfium.PdfBitmap):
            tracking(cls)

        report_export.pdf_first_page_to_data_url(data)
        first_close = [closed.index(name) for name in ("PdfBitmap", "PdfPage", "PdfDocument")]
        assert first_close == sorted(first_close)


class TestExportReport:
    def test_no_print_context(self, store):
        assert report_export.export_settlement_report(
            _settlement(), open_print_context=lambda: None, downloader=store,
        ) is False
        assert store.calls == []

    def test_writes_and_closes(self, store):
        class Ctx:
            html = None
            closed = False

            def write(self, html):
                self.html = html

            def close(self):
                self.closed = True

        ctx = Ctx()
        assert report_export.export_settlement_report(
            _settlement(), "DOC-1", "Project A", open_print_context=lambda: ctx, downloader=store,
        ) is True
        assert ctx.closed is True
        assert "DOC-1" in ctx.html


class TestReportEndpoint:
    def test_report_served_as_html(self, client, storage_root, requester, approver):
        get_storage().put(_receipt("bus.png")["storagePath"], PNG_1PX, "image/png")
        req = request_lifecycle.create_request(make_ctx(requester), request_payload())
        request_lifecycle.approve_request(make_ctx(approver), req.id)
        settlement = settlement_service.settle_requests(make_ctx(approver), [req.id])

        res = client.get(f"/api/v1/settlements/{settlement.id}/report", headers=auth_headers("bob"))
        assert res.status_code == 200
        assert res.content_type.startswith("text/html")
        html = res.get_data(as_text=True)
        assert "DOC-2026-01" in html
        assert "Project A" in html
        assert "Failed to load" not in html
        assert "data:image/png;base64," in html
