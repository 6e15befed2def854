"""
Settlement Aggregator: the only writer of the ``settlements`` table.

``settle_requests`` turns a selection of approved requests into one
Settlement and moves every selected request to ``settled`` in a single
transaction.  Each request update is a conditional write (see
request_lifecycle.conditional_transition), so two approvers settling
overlapping selections cannot both succeed: the loser gets ConflictError
and nothing it wrote survives.
"""

import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import select

from reimburse.core.context import RequestContext
from reimburse.core.exceptions import ConflictError, NotFoundError, ValidationError
from reimburse.models import CURRENT_SCHEMA_VERSION, db
from reimburse.models.audit import write_audit
from reimburse.models.project import DEFAULT_DIRECTOR_APPROVAL_THRESHOLD, Project
from reimburse.models.request import PaymentRequest
from reimburse.models.settlement import Settlement
from reimburse.models.user import AppUser
from reimburse.services.budget_policy import requires_director_approval
from reimburse.services.receipts import receipt_key
from reimburse.services.request_lifecycle import conditional_transition

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
TOTAL_FONT = Font(bold=True)
FLAG_FILL = PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
AMOUNT_FORMAT = "#,##0"


# ── Aggregation ──────────────────────────────────────────────────────────────

def _load_selection(request_ids: list[str]) -> list[PaymentRequest]:
    selected = []
    for rid in request_ids:
        req = db.session.get(PaymentRequest, rid)
        if req is None:
            raise NotFoundError(resource="PaymentRequest", resource_id=rid)
        selected.append(req)
    return selected


# A settlement pays one account on behalf of one submitter.
SETTLEMENT_GROUPING = (
    ("payee", "payee"),
    ("committee", "committee"),
    ("project", "project_id"),
    ("bank name", "bank_name"),
    ("bank account", "bank_account"),
    ("submitter", "requested_by_uid"),
)


def _check_selection(selected: list[PaymentRequest]) -> None:
    errors = []
    for req in selected:
        if (req.schema_version or 0) > CURRENT_SCHEMA_VERSION:
            errors.append(f"Request {req.id} has unsupported schema version {req.schema_version}")
        if req.status != "approved":
            errors.append(f"Request {req.id} is {req.status}, not approved")

    for label, attr in SETTLEMENT_GROUPING:
        values = {getattr(req, attr) for req in selected}
        if len(values) > 1:
            errors.append(f"Selected requests have different {label} values; settle them separately")

    if errors:
        raise ValidationError("Selection cannot be settled", errors=errors)


def _flatten(selected: list[PaymentRequest]) -> tuple[list[dict], list[dict]]:
    items = []
    receipts = []
    seen = set()
    for req in selected:
        items.extend(dict(item) for item in (req.items or []))
        for ref in req.receipts or []:
            key = receipt_key(ref)
            if key not in seen:
                seen.add(key)
                receipts.append(dict(ref))
    return items, receipts


def _mark_request_settled(req: PaymentRequest, settlement_id: str, actor_uid: str) -> None:
    conditional_transition(req, "settle", actor_uid=actor_uid, values={"settlement_id": settlement_id})


def settle_requests(
    ctx: RequestContext,
    request_ids: list[str],
    approval_signature: str | None = None,
) -> Settlement:
    """
    Create one Settlement from approved requests and mark them settled.

    Either every write lands or none does.

    Raises:
        AuthorizationError: caller is not an approver/admin
        ValidationError: empty/duplicate selection, non-approved requests,
                         or requests from different payee/committee/project
        NotFoundError: an id does not exist
        ConflictError: a request changed state while settling
    """
    ctx.require_approver()

    if not isinstance(request_ids, list) or not request_ids:
        raise ValidationError("No requests selected", errors=["Select at least one approved request"])
    if not all(isinstance(rid, str) and rid for rid in request_ids):
        raise ValidationError("Invalid selection", errors=["Request ids must be non-empty strings"])
    if len(set(request_ids)) != len(request_ids):
        raise ValidationError("Invalid selection", errors=["The same request was selected twice"])

    selected = _load_selection(request_ids)
    _check_selection(selected)

    first = selected[0]
    items, receipts = _flatten(selected)
    total = sum(int(item.get("amount") or 0) for item in items)

    project = db.session.get(Project, first.project_id) if first.project_id else None
    threshold = project.director_approval_threshold if project else DEFAULT_DIRECTOR_APPROVAL_THRESHOLD
    submitter = db.session.get(AppUser, first.requested_by_uid)

    settlement = Settlement(
        created_at=datetime.now(timezone.utc),
        created_by=ctx.user.snapshot(),
        payee=first.payee,
        phone=first.phone,
        bank_name=first.bank_name,
        bank_account=first.bank_account,
        session=first.session or "",
        committee=first.committee,
        project_id=first.project_id,
        items=items,
        total_amount=total,
        request_ids=list(request_ids),
        receipts=receipts,
        requested_by_signature=submitter.signature if submitter else None,
        approval_signature=approval_signature or ctx.user.signature,
        approved_by=first.approved_by or ctx.user.snapshot(),
        director_approval_required=requires_director_approval(total, threshold),
        schema_version=CURRENT_SCHEMA_VERSION,
    )

    try:
        db.session.add(settlement)
        db.session.flush()
        for req in selected:
            _mark_request_settled(req, settlement.id, ctx.uid)
        write_audit(
            entity_type="settlement",
            entity_id=settlement.id,
            action="settlement.create",
            actor_uid=ctx.uid,
            project_id=settlement.project_id,
            diff={"request_ids": list(request_ids), "total_amount": total},
        )
        db.session.commit()
    except ConflictError:
        db.session.rollback()
        logger.warning("Settlement aborted: concurrent change in %s", request_ids,
                       extra={"actor_uid": ctx.uid})
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Settlement aborted for %s", request_ids, extra={"actor_uid": ctx.uid})
        raise

    logger.info(
        "Settlement %s created: %d requests total=%d", settlement.id, len(request_ids), total,
        extra={"settlement_id": settlement.id, "actor_uid": ctx.uid, "project_id": settlement.project_id},
    )
    return settlement


# ── Reads and signature attachment ───────────────────────────────────────────

def get_settlement(ctx: RequestContext, settlement_id: str) -> Settlement:
    """Approvers see every settlement; submitters see those covering their requests."""
    settlement = db.session.get(Settlement, settlement_id)
    if settlement is None:
        raise NotFoundError(resource="Settlement", resource_id=settlement_id)
    if (settlement.schema_version or 0) > CURRENT_SCHEMA_VERSION:
        raise ValidationError("Unsupported record version",
                              errors=[f"Settlement {settlement_id} has schema version {settlement.schema_version}"])
    if ctx.is_approver:
        return settlement

    owned = db.session.scalar(
        select(PaymentRequest.id)
        .where(PaymentRequest.id.in_(settlement.request_ids or []))
        .where(PaymentRequest.requested_by_uid == ctx.uid)
        .limit(1)
    )
    if owned is None:
        raise NotFoundError(resource="Settlement", resource_id=settlement_id)
    return settlement


def list_settlements(ctx: RequestContext, project_id: str | None = None) -> list[Settlement]:
    ctx.require_approver()
    stmt = select(Settlement).order_by(Settlement.created_at.desc())
    project_id = project_id or ctx.project_id
    if project_id:
        stmt = stmt.where(Settlement.project_id == project_id)
    return list(db.session.scalars(stmt))


def attach_signatures(
    ctx: RequestContext,
    settlement_id: str,
    *,
    requested_by_signature: str | None = None,
    approval_signature: str | None = None,
) -> Settlement:
    """The only mutation allowed on a Settlement after creation."""
    ctx.require_approver()
    if requested_by_signature is None and approval_signature is None:
        raise ValidationError("No signature supplied",
                              errors=["Provide requestedBySignature and/or approvalSignature"])
    settlement = get_settlement(ctx, settlement_id)

    changed = []
    if requested_by_signature is not None:
        settlement.requested_by_signature = requested_by_signature
        changed.append("requested_by_signature")
    if approval_signature is not None:
        settlement.approval_signature = approval_signature
        changed.append("approval_signature")

    write_audit(entity_type="settlement", entity_id=settlement.id, action="settlement.sign",
                actor_uid=ctx.uid, project_id=settlement.project_id, diff={"fields": changed})
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return settlement


# ── Excel ledger ─────────────────────────────────────────────────────────────

def _header(ws, headers: list[str], row: int = 1) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER


def export_settlements_xlsx(settlements: list[Settlement], project_name: str = "") -> io.BytesIO:
    """
    Styled Excel ledger of settlements.
    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()

    # ── Sheet 1: Settlements ──────────────────────────────────────────
    ws = wb.active
    ws.title = "Settlements"
    ws.merge_cells("A1:I1")
    ws["A1"] = f"Settlement Ledger - {project_name}" if project_name else "Settlement Ledger"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    headers = ["Created", "Settlement ID", "Payee", "Committee", "Bank", "Account",
               "Requests", "Total", "Director Approval"]
    _header(ws, headers, row=4)

    row = 4
    grand_total = 0
    for s in settlements:
        row += 1
        values = [
            s.created_at.strftime("%Y-%m-%d") if s.created_at else "",
            s.id,
            s.payee,
            s.committee,
            s.bank_name,
            s.bank_account,
            len(s.request_ids or []),
            s.total_amount,
            "YES" if s.director_approval_required else "",
        ]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.border = THIN_BORDER
        ws.cell(row=row, column=8).number_format = AMOUNT_FORMAT
        if s.director_approval_required:
            ws.cell(row=row, column=9).fill = FLAG_FILL
            ws.cell(row=row, column=9).alignment = Alignment(horizontal="center")
        grand_total += s.total_amount or 0

    row += 1
    ws.cell(row=row, column=7, value="Total").font = TOTAL_FONT
    total_cell = ws.cell(row=row, column=8, value=grand_total)
    total_cell.font = TOTAL_FONT
    total_cell.number_format = AMOUNT_FORMAT
    total_cell.border = THIN_BORDER

    for col, width in enumerate([12, 38, 20, 14, 16, 20, 10, 14, 18], 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    # ── Sheet 2: Items ────────────────────────────────────────────────
    ws2 = wb.create_sheet("Items")
    _header(ws2, ["Settlement ID", "Payee", "Description", "Budget Code", "Amount"])
    item_row = 1
    for s in settlements:
        for item in s.items or []:
            item_row += 1
            ws2.cell(row=item_row, column=1, value=s.id).border = THIN_BORDER
            ws2.cell(row=item_row, column=2, value=s.payee).border = THIN_BORDER
            ws2.cell(row=item_row, column=3, value=item.get("description", "")).border = THIN_BORDER
            ws2.cell(row=item_row, column=4, value=item.get("budgetCode")).border = THIN_BORDER
            amount = ws2.cell(row=item_row, column=5, value=item.get("amount", 0))
            amount.border = THIN_BORDER
            amount.number_format = AMOUNT_FORMAT

    for col, width in enumerate([38, 20, 40, 12, 14], 1):
        ws2.column_dimensions[get_column_letter(col)].width = width

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf
