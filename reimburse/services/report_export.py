"""
Settlement report export.

Builds a self-contained printable HTML document for one Settlement:
header fields, itemized table with total row, request/receipt counts,
signature blocks, finance-verification block and a receipts appendix.

Receipts are fetched through a ``downloader(storage_path) -> (bytes,
content_type)`` callable.  PDF receipts are rasterized to a PNG of their
first page; images are embedded as data URLs.  A receipt that cannot be
fetched or rasterized becomes a "Failed to load" card and the rest of the
report is still produced.

PDF conversion is left to the print context (browser print-to-PDF).
"""

import base64
import io
import logging
from datetime import datetime, timezone
from html import escape

import pypdfium2 as pdfium

logger = logging.getLogger(__name__)

CURRENCY_SYMBOL = "₩"
PDF_RENDER_SCALE = 2
COMMITTEE_LABELS = {"operations": "Operations", "preparation": "Preparation"}

_STYLES = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: -apple-system, 'Segoe UI', 'Malgun Gothic', Arial, sans-serif; font-size: 12px; color: #333; padding: 20mm; }
    h1 { font-size: 18px; text-align: center; margin-bottom: 4px; }
    .subtitle { text-align: center; color: #666; font-size: 11px; margin-bottom: 20px; }
    .info-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 6px 20px; margin-bottom: 20px; }
    .info-grid .label { color: #666; }
    table { width: 100%; border-collapse: collapse; margin-bottom: 20px; font-size: 11px; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; text-align: left; }
    th { background: #f5f5f5; font-weight: 600; }
    .text-right { text-align: right; }
    .total-row { font-weight: 700; background: #f9f9f9; }
    .signatures { margin-top: 30px; display: flex; justify-content: space-between; align-items: flex-end; }
    .signatures img { max-height: 50px; }
    .sign-line { border-top: 1px solid #ccc; width: 200px; margin-top: 4px; padding-top: 2px; font-size: 10px; }
    .verification { margin-top: 30px; border: 1px solid #ddd; padding: 12px; font-size: 11px; }
    .receipt-page { page-break-before: always; }
    .receipt-page h2 { font-size: 14px; margin-bottom: 12px; }
    .receipt-grid { display: grid; grid-template-columns: 1fr 1fr; gap: 12px; }
    .receipt-card { border: 1px solid #ddd; border-radius: 4px; overflow: hidden; break-inside: avoid; }
    .receipt-card img { width: 100%; max-height: 400px; object-fit: contain; background: #f9f9f9; display: block; }
    .receipt-name { font-size: 9px; color: #666; padding: 4px 6px; background: #f5f5f5; border-top: 1px solid #eee; }
    .receipt-fail { padding: 30px 10px; text-align: center; background: #f9f9f9; color: #999; font-size: 11px; }
    @media print { body { padding: 10mm; } }
"""


def _money(amount) -> str:
    return f"{CURRENCY_SYMBOL}{int(amount or 0):,}"


def _text(value) -> str:
    return escape(str(value or ""), quote=True)


def _signature_img(data_url, alt: str) -> str:
    if not isinstance(data_url, str) or not data_url.startswith("data:image/"):
        return ""
    return f'<img src="{escape(data_url, quote=True)}" alt="{alt}" />'


def pdf_first_page_to_data_url(data: bytes) -> str:
    """Rasterize page 1 of a PDF to a ``data:image/png`` URL."""
    buf = io.BytesIO()
    pdf = pdfium.PdfDocument(data)
    try:
        if len(pdf) == 0:
            raise ValueError("PDF has no pages")
        page = pdf[0]
        try:
            bitmap = page.render(scale=PDF_RENDER_SCALE)
            try:
                # to_pil() shares the bitmap buffer; encode before closing it
                bitmap.to_pil().save(buf, format="PNG")
            finally:
                bitmap.close()
        finally:
            page.close()
    finally:
        pdf.close()
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def preload_receipts(receipts: list[dict], downloader) -> list[dict]:
    """Resolve each receipt to ``{"fileName", "dataUrl"}``; dataUrl None on failure."""
    loaded = []
    for ref in receipts or []:
        file_name = (ref or {}).get("fileName") or ""
        path = (ref or {}).get("storagePath")
        if not path:
            # Legacy drive references cannot be fetched server-side
            loaded.append({"fileName": file_name, "dataUrl": None})
            continue
        try:
            data, content_type = downloader(path)
            is_pdf = file_name.lower().endswith(".pdf") or content_type == "application/pdf"
            if is_pdf:
                data_url = pdf_first_page_to_data_url(data)
            else:
                data_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
        except Exception as exc:
            logger.warning("Receipt %s failed to load: %s", path, exc, extra={"storage_path": path})
            data_url = None
        loaded.append({"fileName": file_name, "dataUrl": data_url})
    return loaded


def _receipt_card(image: dict) -> str:
    name = _text(image["fileName"])
    if not image["dataUrl"]:
        return (f'<div class="receipt-card"><div class="receipt-fail">Failed to load</div>'
                f'<p class="receipt-name">{name}</p></div>')
    return (f'<div class="receipt-card"><img src="{escape(image["dataUrl"], quote=True)}" />'
            f'<p class="receipt-name">{name}</p></div>')


def render_settlement_report(settlement, document_no: str = "", project_name: str = "", downloader=None) -> str:
    """
    Generate the settlement report as a print-ready HTML string.

    ``downloader`` defaults to the configured object storage.
    """
    if downloader is None:
        from reimburse.services.storage_service import fetch_file
        downloader = fetch_file

    images = preload_receipts(settlement.receipts or [], downloader)
    created = settlement.created_at or datetime.now(timezone.utc)
    date_str = created.strftime("%Y-%m-%d")
    approved_by = settlement.approved_by or {}

    item_rows = ""
    for i, item in enumerate(settlement.items or [], 1):
        item_rows += f"""
        <tr>
            <td>{i}</td>
            <td>{_text(item.get("description"))}</td>
            <td>{_text(item.get("budgetCode"))}</td>
            <td class="text-right">{_money(item.get("amount"))}</td>
        </tr>"""

    receipts_html = ""
    if images:
        cards = "".join(_receipt_card(image) for image in images)
        receipts_html = f"""
  <div class="receipt-page">
    <h2>Receipts</h2>
    <div class="receipt-grid">{cards}</div>
  </div>"""

    project_html = f'<p class="subtitle" style="font-weight:600">{_text(project_name)}</p>' if project_name else ""

    html = f"""<!DOCTYPE html>
<html><head>
<meta charset="utf-8">
<title>Settlement Report - {_text(settlement.payee)}</title>
<style>{_STYLES}</style>
</head><body>
  <h1>Settlement Report</h1>
  {project_html}
  <p class="subtitle">Expense settlement statement</p>

  <div class="info-grid">
    <div><span class="label">Payee:</span> {_text(settlement.payee)}</div>
    <div><span class="label">Settlement date:</span> {date_str}</div>
    <div><span class="label">Phone:</span> {_text(settlement.phone)}</div>
    <div><span class="label">Session:</span> {_text(settlement.session)}</div>
    <div><span class="label">Bank / Account:</span> {_text(settlement.bank_name)} {_text(settlement.bank_account)}</div>
    <div><span class="label">Committee:</span> {_text(COMMITTEE_LABELS.get(settlement.committee, settlement.committee))}</div>
  </div>

  <table>
    <thead><tr><th>#</th><th>Description</th><th>Budget Code</th><th class="text-right">Amount</th></tr></thead>
    <tbody>{item_rows}
      <tr class="total-row">
        <td colspan="3" class="text-right">Total</td>
        <td class="text-right">{_money(settlement.total_amount)}</td>
      </tr>
    </tbody>
  </table>

  <p style="font-size:11px;color:#666">Requests: {len(settlement.request_ids or [])} | Receipts: {len(settlement.receipts or [])}</p>
  {'<p style="font-size:11px;color:#c0392b;font-weight:600">Director approval required</p>' if settlement.director_approval_required else ""}

  <div class="signatures">
    <div style="flex:1">
      <p style="font-size:10px;color:#666;margin-bottom:4px">Requested by</p>
      {_signature_img(settlement.requested_by_signature, "requester signature")}
      <div class="sign-line">{_text(settlement.payee)}</div>
    </div>
    <div style="flex:1;text-align:center">
      <p style="font-size:10px;color:#666;margin-bottom:4px">Approved by (signature of budget approver)</p>
      {_signature_img(settlement.approval_signature, "approver signature")}
      <div class="sign-line" style="margin:4px auto 0">{_text(approved_by.get("name")) or "&nbsp;"}</div>
    </div>
  </div>

  <div class="verification">
    <p style="font-weight:600;margin-bottom:8px">Area Office Finance Verification</p>
    <div style="display:grid;grid-template-columns:1fr 1fr;gap:8px">
      <div><p style="color:#666;font-size:10px">Document No.</p><p style="font-weight:600">{_text(document_no) or "-"}</p></div>
      <div><p style="color:#666;font-size:10px">Signature</p><div style="border-bottom:1px solid #ccc;height:30px"></div></div>
      <div><p style="color:#666;font-size:10px">Date approved</p><div style="border-bottom:1px solid #ccc;height:20px"></div></div>
    </div>
    <div style="margin-top:8px"><p style="color:#666;font-size:10px">Additional Information / Comments</p><div style="border-bottom:1px solid #ccc;height:30px"></div></div>
  </div>
{receipts_html}
</body></html>"""

    return html


def export_settlement_report(
    settlement,
    document_no: str = "",
    project_name: str = "",
    *,
    open_print_context,
    downloader=None,
) -> bool:
    """
    Render the report and hand it to a print context.

    ``open_print_context()`` returns an object with ``write(html)`` and
    ``close()``, or None when no context can be opened.  Returns False in
    that case and does nothing further.
    """
    context = open_print_context()
    if context is None:
        logger.info("Print context unavailable for settlement %s", settlement.id,
                    extra={"settlement_id": settlement.id})
        return False
    context.write(render_settlement_report(settlement, document_no, project_name, downloader))
    context.close()
    return True
