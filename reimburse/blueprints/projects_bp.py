"""
Project administration endpoints.

    GET    /api/v1/projects                       visible to the caller
    POST   /api/v1/projects                       admin
    GET    /api/v1/projects/<id>
    PATCH  /api/v1/projects/<id>                  admin
    DELETE /api/v1/projects/<id>                  admin, deactivates (never deletes)
    POST   /api/v1/projects/<id>/default          admin
    POST   /api/v1/projects/<id>/members          admin {"add": [...], "remove": [...]}
    GET    /api/v1/projects/<id>/budget           usage totals and per-code breakdown
"""

from flask import Blueprint, jsonify

from reimburse.auth import current_user, require_auth
from reimburse.services import budget_policy, project_service
from reimburse.utils.helpers import json_body

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


@projects_bp.route("/projects", methods=["GET"])
@require_auth
def list_projects():
    user = current_user()
    projects = project_service.list_projects_for(user)
    return jsonify({
        "items": [p.to_dict() for p in projects],
        "defaultProjectId": project_service.get_default_project_id(),
    })


@projects_bp.route("/projects", methods=["POST"])
@require_auth
def create_project():
    project = project_service.create_project(current_user(), json_body())
    return jsonify(project.to_dict()), 201


@projects_bp.route("/projects/<project_id>", methods=["GET"])
@require_auth
def get_project(project_id: str):
    project = project_service.get_accessible_project(current_user(), project_id)
    return jsonify(project.to_dict())


@projects_bp.route("/projects/<project_id>", methods=["PATCH"])
@require_auth
def update_project(project_id: str):
    project = project_service.update_project(current_user(), project_id, json_body())
    return jsonify(project.to_dict())


@projects_bp.route("/projects/<project_id>", methods=["DELETE"])
@require_auth
def deactivate_project(project_id: str):
    project = project_service.deactivate_project(current_user(), project_id)
    return jsonify(project.to_dict())


@projects_bp.route("/projects/<project_id>/default", methods=["POST"])
@require_auth
def set_default_project(project_id: str):
    project = project_service.set_default_project(current_user(), project_id)
    return jsonify({"defaultProjectId": project.id})


@projects_bp.route("/projects/<project_id>/members", methods=["POST"])
@require_auth
def update_members(project_id: str):
    data = json_body()
    project = project_service.update_members(
        current_user(), project_id,
        add_uids=data.get("add") or [],
        remove_uids=data.get("remove") or [],
    )
    return jsonify(project.to_dict())


@projects_bp.route("/projects/<project_id>/budget", methods=["GET"])
@require_auth
def project_budget(project_id: str):
    project = project_service.get_accessible_project(current_user(), project_id)
    usage = budget_policy.project_budget_usage(project)
    return jsonify({
        "projectId": project.id,
        "usage": usage.to_dict() if usage else None,
        "spent": budget_policy.project_spent(project.id),
        "byCode": budget_policy.budget_usage_by_code(project),
        "directorApprovalThreshold": project.director_approval_threshold,
    })
