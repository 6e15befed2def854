"""
Payment Request Lifecycle Service

Manages request creation and status transitions with:
  - Transition validation (REQUEST_TRANSITIONS)
  - Server-side role and ownership checks against the RequestContext
  - Conditional writes keyed on (status, version) so a lost race changes
    nothing and surfaces as ConflictError
  - Audit trail via write_audit, in the same transaction as the change

Transitions:
  create (→pending), approve, reject, cancel, resubmit (rejected → new
  pending row).  ``settle`` is only reachable through settlement_service.

Usage:
    from reimburse.services.request_lifecycle import approve_request

    req = approve_request(ctx, request_id, approval_signature=sig)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from reimburse.core.context import RequestContext
from reimburse.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from reimburse.models import COMMITTEES, CURRENT_SCHEMA_VERSION, db
from reimburse.models.audit import write_audit
from reimburse.models.project import DEFAULT_DIRECTOR_APPROVAL_THRESHOLD, Project
from reimburse.models.request import (
    MAX_ITEMS_PER_REQUEST,
    REQUEST_TRANSITIONS,
    PaymentRequest,
)
from reimburse.services.budget_policy import requires_director_approval
from reimburse.services.project_service import get_default_project_id
from reimburse.services.receipts import clean_receipts, receipt_key
from reimburse.services.storage_service import uploaded_by
from reimburse.services.user_service import copy_back_submission_fields
from reimburse.utils.helpers import commit_or_raise, parse_date

logger = logging.getLogger(__name__)

# Fields compared to decide whether a resubmission changed anything
TRACKED_FIELDS = ("payee", "phone", "bank_name", "bank_account", "date", "committee", "comments", "items")


# ── Transition primitives ────────────────────────────────────────────────────

def validate_transition(req: PaymentRequest, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = REQUEST_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": req.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if req.status not in rule["from"]:
        return {"valid": False, "from": req.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{req.status}'"}

    return {"valid": True, "from": req.status, "to": rule["to"], "reason": None}


def _audit_value(key: str, value):
    if value is None:
        return None
    if key.endswith("_signature"):
        return "<signature>"
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def conditional_transition(
    req: PaymentRequest,
    action: str,
    *,
    actor_uid: str,
    values: dict | None = None,
) -> PaymentRequest:
    """
    Move ``req`` along ``action`` with a compare-and-swap write.

    The UPDATE matches only while the row still has the status and version
    that were read into ``req``.  Zero matched rows means another writer got
    there first: ConflictError is raised and nothing is written.

    Adds to the caller's transaction; does not commit.
    """
    check = validate_transition(req, action)
    if not check["valid"]:
        raise ConflictError("PaymentRequest", "status", req.status, message=check["reason"])

    values = dict(values or {})
    expected_status = req.status
    expected_version = req.version

    stmt = (
        update(PaymentRequest)
        .where(PaymentRequest.id == req.id)
        .where(PaymentRequest.status == expected_status)
        .where(PaymentRequest.version == expected_version)
        .values(status=check["to"], version=expected_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConflictError(
            "PaymentRequest", "version", str(expected_version),
            message=f"Request {req.id} was modified concurrently; reload and retry",
        )

    diff = {"status": {"old": expected_status, "new": check["to"]}}
    for key, value in values.items():
        diff[key] = {"old": _audit_value(key, getattr(req, key)), "new": _audit_value(key, value)}
    write_audit(
        entity_type="request",
        entity_id=req.id,
        action=f"request.{action}",
        actor_uid=actor_uid,
        project_id=req.project_id,
        diff=diff,
    )
    db.session.expire(req)
    return req


def _run_transition(ctx: RequestContext, req: PaymentRequest, action: str, values: dict | None = None):
    try:
        conditional_transition(req, action, actor_uid=ctx.uid, values=values)
    except ConflictError:
        db.session.rollback()
        raise
    commit_or_raise("PaymentRequest")
    logger.info(
        "Request %s: %s", req.id, action,
        extra={"payment_request_id": req.id, "actor_uid": ctx.uid, "project_id": req.project_id},
    )
    return req


# ── Reads ────────────────────────────────────────────────────────────────────

def _check_schema(req: PaymentRequest) -> PaymentRequest:
    if (req.schema_version or 0) > CURRENT_SCHEMA_VERSION:
        raise ValidationError(
            "Unsupported record version",
            errors=[f"Request {req.id} has schema version {req.schema_version}; "
                    f"this server understands up to {CURRENT_SCHEMA_VERSION}"],
        )
    return req


def _load(request_id: str) -> PaymentRequest:
    req = db.session.get(PaymentRequest, request_id)
    if req is None:
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)
    return _check_schema(req)


def get_request(ctx: RequestContext, request_id: str) -> PaymentRequest:
    """Approvers see every request; other users only their own."""
    req = _load(request_id)
    if not ctx.is_approver and req.requested_by_uid != ctx.uid:
        raise NotFoundError(resource="PaymentRequest", resource_id=request_id)
    return req


def list_requests(
    ctx: RequestContext,
    *,
    status: str | None = None,
    committee: str | None = None,
    mine: bool = False,
) -> list[PaymentRequest]:
    stmt = select(PaymentRequest).order_by(PaymentRequest.created_at.desc())
    if ctx.project is not None:
        stmt = stmt.where(PaymentRequest.project_id == ctx.project_id)
    if mine or not ctx.is_approver:
        stmt = stmt.where(PaymentRequest.requested_by_uid == ctx.uid)
    if status:
        stmt = stmt.where(PaymentRequest.status == status)
    if committee:
        stmt = stmt.where(PaymentRequest.committee == committee)
    return [_check_schema(r) for r in db.session.scalars(stmt)]


# ── Submission validation ────────────────────────────────────────────────────

def _text(data: dict, key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def _is_amount(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_items(raw_items) -> list[dict]:
    """Items with a description and a positive amount; the rest are dropped."""
    kept = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        description = item.get("description")
        amount = item.get("amount")
        if not isinstance(description, str) or not description.strip():
            continue
        if not _is_amount(amount) or amount <= 0:
            continue
        budget_code = item.get("budgetCode")
        kept.append({
            "description": description.strip(),
            "budgetCode": budget_code if _is_amount(budget_code) else 0,
            "amount": amount,
        })
    return kept


def _validate_submission(ctx: RequestContext, data: dict, *, carried_over=(), default_receipts=None):
    """Collect every unmet condition.  Returns (fields, errors)."""
    errors = []

    payee = _text(data, "payee")
    phone = _text(data, "phone")
    bank_name = _text(data, "bankName")
    bank_account = _text(data, "bankAccount")
    if not payee:
        errors.append("Payee is required")
    if not phone:
        errors.append("Phone number is required")
    if not bank_name:
        errors.append("Bank name is required")
    if not bank_account:
        errors.append("Bank account is required")

    parsed_date = parse_date(data.get("date"))
    if parsed_date is None:
        errors.append("A valid date (YYYY-MM-DD) is required")

    committee = data.get("committee") or ctx.user.default_committee
    if committee not in COMMITTEES:
        errors.append(f"Unknown committee: {committee}")

    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        errors.append("Items must be a list")
        raw_items = []
    if len(raw_items) > MAX_ITEMS_PER_REQUEST:
        errors.append(f"At most {MAX_ITEMS_PER_REQUEST} items are allowed")
    items = _valid_items(raw_items)
    if not items:
        errors.append("At least one item with a description and amount is required")
    if any(item["budgetCode"] <= 0 for item in items):
        errors.append("Select a budget code for every item")

    raw_receipts = data.get("receipts")
    receipts = clean_receipts(
        raw_receipts, errors, carried_over=carried_over,
        is_owned=lambda path: uploaded_by(ctx.uid, path),
    )
    if not raw_receipts and default_receipts:
        receipts = list(default_receipts)
    if not receipts and not raw_receipts:
        errors.append("At least one receipt file is required")

    fields = {
        "payee": payee,
        "phone": phone,
        "bank_name": bank_name,
        "bank_account": bank_account,
        "date": parsed_date.isoformat() if parsed_date else None,
        "session": _text(data, "session"),
        "committee": committee,
        "comments": _text(data, "comments"),
        "items": items,
        "receipts": receipts,
    }
    return fields, errors


def _director_threshold(project_id: str | None) -> int:
    project = db.session.get(Project, project_id) if project_id else None
    if project is None:
        return DEFAULT_DIRECTOR_APPROVAL_THRESHOLD
    return project.director_approval_threshold


def _new_request(ctx: RequestContext, fields: dict, project_id: str | None, **extra) -> PaymentRequest:
    total = sum(item["amount"] for item in fields["items"])
    req = PaymentRequest(
        status="pending",
        project_id=project_id,
        total_amount=total,
        requested_by=ctx.user.snapshot(),
        requested_by_uid=ctx.uid,
        director_approval_required=requires_director_approval(total, _director_threshold(project_id)),
        version=1,
        schema_version=CURRENT_SCHEMA_VERSION,
        **fields,
        **extra,
    )
    db.session.add(req)
    db.session.flush()

    profile_changes = copy_back_submission_fields(
        ctx.user,
        phone=fields["phone"],
        bank_name=fields["bank_name"],
        bank_account=fields["bank_account"],
    )
    if profile_changes:
        write_audit(entity_type="user", entity_id=ctx.uid, action="user.copy_back",
                    actor_uid=ctx.uid, diff=profile_changes)
    return req


# ── Operations ───────────────────────────────────────────────────────────────

def create_request(ctx: RequestContext, data: dict) -> PaymentRequest:
    fields, errors = _validate_submission(ctx, data)
    if errors:
        raise ValidationError("Request is invalid", errors=errors)

    project_id = ctx.project_id or get_default_project_id()
    req = _new_request(ctx, fields, project_id)
    write_audit(
        entity_type="request", entity_id=req.id, action="request.create",
        actor_uid=ctx.uid, project_id=project_id,
        diff={"status": {"old": None, "new": "pending"}, "total_amount": req.total_amount},
    )
    commit_or_raise("PaymentRequest")
    logger.info(
        "Request %s created total=%d items=%d", req.id, req.total_amount, len(req.items),
        extra={"payment_request_id": req.id, "actor_uid": ctx.uid, "project_id": project_id},
    )
    return req


def approve_request(ctx: RequestContext, request_id: str, approval_signature: str | None = None) -> PaymentRequest:
    ctx.require_approver()
    req = _load(request_id)
    values = {
        "approved_by": ctx.user.snapshot(),
        "approved_at": datetime.now(timezone.utc),
        "approval_signature": approval_signature or ctx.user.signature,
    }
    return _run_transition(ctx, req, "approve", values)


def reject_request(ctx: RequestContext, request_id: str, reason: str | None) -> PaymentRequest:
    ctx.require_approver()
    reason = reason.strip() if isinstance(reason, str) else ""
    if not reason:
        raise ValidationError("Rejection reason is required", errors=["Rejection reason is required"])
    req = _load(request_id)
    return _run_transition(ctx, req, "reject", {"rejection_reason": reason})


def cancel_request(ctx: RequestContext, request_id: str) -> PaymentRequest:
    req = get_request(ctx, request_id)
    if req.requested_by_uid != ctx.uid and not ctx.is_approver:
        raise AuthorizationError("Only the submitter or an approver can cancel a request")
    return _run_transition(ctx, req, "cancel")


def _tracked_snapshot(source) -> dict:
    if isinstance(source, PaymentRequest):
        return {name: (getattr(source, name) or ([] if name == "items" else "")) for name in TRACKED_FIELDS}
    return {name: source.get(name) or ([] if name == "items" else "") for name in TRACKED_FIELDS}


def resubmit_request(ctx: RequestContext, original_id: str, data: dict) -> PaymentRequest:
    """Create a new pending request from a rejected one.

    The rejected request is left untouched.  Receipts default to the
    original's when none are supplied.
    """
    original = get_request(ctx, original_id)
    if original.requested_by_uid != ctx.uid and not ctx.is_admin:
        raise AuthorizationError("Only the original submitter can resubmit a request")
    if original.status != "rejected":
        raise ConflictError("PaymentRequest", "status", original.status,
                            message=f"Only rejected requests can be resubmitted (status={original.status})")

    original_receipts = list(original.receipts or [])
    fields, errors = _validate_submission(
        ctx, data, carried_over=original_receipts, default_receipts=original_receipts,
    )

    original_keys = {receipt_key(r) for r in original_receipts}
    has_new_receipt = any(receipt_key(r) not in original_keys for r in fields["receipts"])
    if not has_new_receipt and _tracked_snapshot(fields) == _tracked_snapshot(original):
        errors.append("Nothing changed from the original request; edit it before resubmitting")

    if errors:
        raise ValidationError("Resubmission is invalid", errors=errors)

    req = _new_request(ctx, fields, original.project_id, original_request_id=original.id)
    write_audit(
        entity_type="request", entity_id=req.id, action="request.resubmit",
        actor_uid=ctx.uid, project_id=original.project_id,
        diff={"original_request_id": original.id, "status": {"old": None, "new": "pending"}},
    )
    commit_or_raise("PaymentRequest")
    logger.info(
        "Request %s resubmitted as %s", original.id, req.id,
        extra={"payment_request_id": req.id, "actor_uid": ctx.uid, "project_id": original.project_id},
    )
    return req
