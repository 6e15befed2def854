"""
User and health endpoints.

    GET    /api/v1/health
    GET    /api/v1/me
    PATCH  /api/v1/me                 own profile fields
    GET    /api/v1/users              admin
    PUT    /api/v1/users/<uid>/role   admin {"role"}
"""

from flask import Blueprint, jsonify

from reimburse.auth import current_user, require_auth, require_role
from reimburse.services import user_service
from reimburse.utils.helpers import json_body

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")
health_bp = Blueprint("health", __name__, url_prefix="/api/v1")


@health_bp.route("/health", methods=["GET"])
def health():
    return {"status": "ok", "app": "reimburse"}


@users_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return jsonify(current_user().to_dict())


@users_bp.route("/me", methods=["PATCH"])
@require_auth
def update_me():
    user = user_service.update_profile(current_user(), json_body())
    return jsonify(user.to_dict())


@users_bp.route("/users", methods=["GET"])
@require_role("admin")
def list_users():
    users = user_service.list_users(current_user())
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)})


@users_bp.route("/users/<uid>/role", methods=["PUT"])
@require_role("admin")
def set_role(uid: str):
    data = json_body()
    user = user_service.set_role(current_user(), uid, data.get("role"))
    return jsonify(user.to_dict())
