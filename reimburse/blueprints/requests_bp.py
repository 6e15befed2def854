"""
Payment request endpoints.

    GET    /api/v1/requests                      ?projectId&status&committee&mine=1
    POST   /api/v1/requests                      create (→ pending)
    GET    /api/v1/requests/<id>
    POST   /api/v1/requests/<id>/approve         {"approvalSignature"?}
    POST   /api/v1/requests/<id>/reject          {"reason"}
    POST   /api/v1/requests/<id>/cancel
    POST   /api/v1/requests/<id>/resubmit        full request body → new pending request

Layer contract:
    - Blueprint: parse input, build the RequestContext, call the service.
    - NO db.session calls and NO role checks here; request_lifecycle owns both.
"""

import logging

from flask import Blueprint, jsonify, request

from reimburse.auth import build_context, require_auth
from reimburse.services import request_lifecycle
from reimburse.utils.helpers import json_body

logger = logging.getLogger(__name__)

requests_bp = Blueprint("requests", __name__, url_prefix="/api/v1")


@requests_bp.route("/requests", methods=["GET"])
@require_auth
def list_requests():
    ctx = build_context(request.args.get("projectId"))
    items = request_lifecycle.list_requests(
        ctx,
        status=request.args.get("status") or None,
        committee=request.args.get("committee") or None,
        mine=request.args.get("mine", "0") in ("1", "true"),
    )
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@requests_bp.route("/requests", methods=["POST"])
@require_auth
def create_request():
    """Create a pending request.  422 lists every unmet condition."""
    data = json_body()
    ctx = build_context(data.get("projectId"))
    req = request_lifecycle.create_request(ctx, data)
    return jsonify(req.to_dict()), 201


@requests_bp.route("/requests/<request_id>", methods=["GET"])
@require_auth
def get_request(request_id: str):
    ctx = build_context()
    return jsonify(request_lifecycle.get_request(ctx, request_id).to_dict())


@requests_bp.route("/requests/<request_id>/approve", methods=["POST"])
@require_auth
def approve_request(request_id: str):
    data = json_body()
    ctx = build_context()
    req = request_lifecycle.approve_request(ctx, request_id, approval_signature=data.get("approvalSignature"))
    return jsonify(req.to_dict())


@requests_bp.route("/requests/<request_id>/reject", methods=["POST"])
@require_auth
def reject_request(request_id: str):
    data = json_body()
    ctx = build_context()
    req = request_lifecycle.reject_request(ctx, request_id, data.get("reason"))
    return jsonify(req.to_dict())


@requests_bp.route("/requests/<request_id>/cancel", methods=["POST"])
@require_auth
def cancel_request(request_id: str):
    ctx = build_context()
    return jsonify(request_lifecycle.cancel_request(ctx, request_id).to_dict())


@requests_bp.route("/requests/<request_id>/resubmit", methods=["POST"])
@require_auth
def resubmit_request(request_id: str):
    """Returns 201 with the NEW request; the rejected one is unchanged."""
    data = json_body()
    ctx = build_context()
    req = request_lifecycle.resubmit_request(ctx, request_id, data)
    return jsonify(req.to_dict()), 201
