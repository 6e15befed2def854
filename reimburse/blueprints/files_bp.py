"""
File endpoints (receipts, bank books).

    POST /api/v1/files/receipts      {"files": [{"name", "data"}], "committee", "projectId"?}
                                     → 200 {"uploaded": [...], "failed": [...]}
    POST /api/v1/files/bankbook      {"file": {"name", "data"}}
    POST /api/v1/files/download      {"storagePath"} → {"data", "contentType", "fileName"}
    GET  /api/v1/files/raw/<path>    raw bytes for local-storage URLs (same access rules)

Uploads are per-file: one bad file lands in ``failed`` and the others are
still stored.
"""

import base64

from flask import Blueprint, Response, jsonify

from reimburse.auth import current_user, require_auth
from reimburse.services import storage_service
from reimburse.utils.helpers import json_body

files_bp = Blueprint("files", __name__, url_prefix="/api/v1/files")


@files_bp.route("/receipts", methods=["POST"])
@require_auth
def upload_receipts():
    data = json_body()
    result = storage_service.upload_receipts(
        current_user(),
        data.get("files"),
        data.get("committee"),
        project_id=data.get("projectId") or None,
    )
    return jsonify(result)


@files_bp.route("/bankbook", methods=["POST"])
@require_auth
def upload_bank_book():
    data = json_body()
    ref = storage_service.upload_bank_book(current_user(), data.get("file") or {})
    return jsonify(ref), 201


@files_bp.route("/download", methods=["POST"])
@require_auth
def download_file():
    data = json_body()
    return jsonify(storage_service.download_file(current_user(), data.get("storagePath")))


@files_bp.route("/raw/<path:storage_path>", methods=["GET"])
@require_auth
def raw_file(storage_path: str):
    result = storage_service.download_file(current_user(), storage_path)
    return Response(base64.b64decode(result["data"]), mimetype=result["contentType"])
