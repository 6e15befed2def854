"""
Settlement endpoints.

    GET    /api/v1/settlements                    ?projectId
    POST   /api/v1/settlements                    {"requestIds": [...], "approvalSignature"?}
    GET    /api/v1/settlements/<id>
    POST   /api/v1/settlements/<id>/signatures    {"requestedBySignature"?, "approvalSignature"?}
    GET    /api/v1/settlements/<id>/report        printable HTML
    GET    /api/v1/projects/<pid>/settlements/export   Excel ledger

The report endpoint serves the HTML inline; the browser's print dialog
turns it into a PDF.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, jsonify, request, send_file

from reimburse.auth import build_context, require_auth
from reimburse.models import db
from reimburse.models.project import Project
from reimburse.services import report_export, settlement_service
from reimburse.utils.helpers import json_body

logger = logging.getLogger(__name__)

settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/v1")


class _ResponsePrintContext:
    """Print context that captures the document for an HTTP response."""

    def __init__(self):
        self.html = None

    def write(self, html: str) -> None:
        self.html = html

    def close(self) -> None:
        pass


@settlements_bp.route("/settlements", methods=["GET"])
@require_auth
def list_settlements():
    ctx = build_context(request.args.get("projectId"))
    items = settlement_service.list_settlements(ctx)
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})


@settlements_bp.route("/settlements", methods=["POST"])
@require_auth
def create_settlement():
    """Settle approved requests atomically.  409 when any of them changed meanwhile."""
    data = json_body()
    ctx = build_context()
    settlement = settlement_service.settle_requests(
        ctx,
        data.get("requestIds"),
        approval_signature=data.get("approvalSignature"),
    )
    return jsonify(settlement.to_dict()), 201


@settlements_bp.route("/settlements/<settlement_id>", methods=["GET"])
@require_auth
def get_settlement(settlement_id: str):
    ctx = build_context()
    return jsonify(settlement_service.get_settlement(ctx, settlement_id).to_dict())


@settlements_bp.route("/settlements/<settlement_id>/signatures", methods=["POST"])
@require_auth
def attach_signatures(settlement_id: str):
    data = json_body()
    ctx = build_context()
    settlement = settlement_service.attach_signatures(
        ctx,
        settlement_id,
        requested_by_signature=data.get("requestedBySignature"),
        approval_signature=data.get("approvalSignature"),
    )
    return jsonify(settlement.to_dict())


@settlements_bp.route("/settlements/<settlement_id>/report", methods=["GET"])
@require_auth
def settlement_report(settlement_id: str):
    ctx = build_context()
    settlement = settlement_service.get_settlement(ctx, settlement_id)
    project = db.session.get(Project, settlement.project_id) if settlement.project_id else None

    print_context = _ResponsePrintContext()
    report_export.export_settlement_report(
        settlement,
        document_no=project.document_no if project else "",
        project_name=project.name if project else "",
        open_print_context=lambda: print_context,
    )
    return Response(print_context.html, mimetype="text/html")


@settlements_bp.route("/projects/<project_id>/settlements/export", methods=["GET"])
@require_auth
def export_settlements(project_id: str):
    """Excel ledger of the project's settlements (approvers only)."""
    ctx = build_context(project_id)
    items = settlement_service.list_settlements(ctx, project_id)
    buf = settlement_service.export_settlements_xlsx(items, project_name=ctx.project.name)
    date_str = datetime.now(timezone.utc).strftime("%Y%m%d")
    return send_file(
        buf,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"settlements_{project_id}_{date_str}.xlsx",
    )
