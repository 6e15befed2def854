"""
Project service: budget scopes, membership and the global default project.

Visibility rules:
    - admins see every active project
    - other users see the active projects in their ``project_ids``; a user
      with none falls back to ``settings/global.defaultProjectId``

Membership is stored on both sides (``Project.member_uids`` and
``AppUser.project_ids``); ``update_members`` changes both in one commit.
"""

import logging
import re

from sqlalchemy import select

from reimburse.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from reimburse.models import db
from reimburse.models.audit import write_audit
from reimburse.models.project import (
    DEFAULT_BUDGET_WARNING_THRESHOLD,
    DEFAULT_DIRECTOR_APPROVAL_THRESHOLD,
    GLOBAL_SETTINGS_KEY,
    Project,
    Setting,
)
from reimburse.models.user import AppUser
from reimburse.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_PROJECT_ID_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")


def clamp_warning_threshold(value) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        return DEFAULT_BUDGET_WARNING_THRESHOLD
    return max(0, min(100, value))


# ── Settings ─────────────────────────────────────────────────────────────────

def get_default_project_id() -> str | None:
    setting = db.session.get(Setting, GLOBAL_SETTINGS_KEY)
    if setting is None:
        return None
    return (setting.value or {}).get("defaultProjectId") or None


def set_default_project(actor: AppUser, project_id: str) -> Project:
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")
    project = get_project(project_id)
    if not project.is_active:
        raise ValidationError("Inactive project", errors=["An inactive project cannot be the default"])

    setting = db.session.get(Setting, GLOBAL_SETTINGS_KEY)
    old = None
    if setting is None:
        setting = Setting(key=GLOBAL_SETTINGS_KEY, value={"defaultProjectId": project_id})
        db.session.add(setting)
    else:
        value = dict(setting.value or {})
        old = value.get("defaultProjectId")
        value["defaultProjectId"] = project_id
        setting.value = value
    write_audit(entity_type="project", entity_id=project_id, action="project.set_default",
                actor_uid=actor.uid, project_id=project_id,
                diff={"defaultProjectId": {"old": old, "new": project_id}})
    commit_or_raise("Setting")
    return project


# ── Reads ────────────────────────────────────────────────────────────────────

def get_project(project_id: str) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def can_access(user: AppUser, project: Project) -> bool:
    if user.role == "admin":
        return True
    if user.uid in (project.member_uids or []):
        return True
    if project.id in (user.project_ids or []):
        return True
    return not user.project_ids and project.id == get_default_project_id()


def get_accessible_project(user: AppUser, project_id: str) -> Project:
    """Project by id, or NotFoundError when missing or not visible to ``user``."""
    project = db.session.get(Project, project_id)
    if project is None or not can_access(user, project):
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def list_projects_for(user: AppUser) -> list[Project]:
    if user.role == "admin":
        stmt = select(Project).where(Project.is_active.is_(True)).order_by(Project.created_at)
        return list(db.session.scalars(stmt))

    project_ids = list(user.project_ids or [])
    if not project_ids:
        default_id = get_default_project_id()
        if default_id:
            project_ids = [default_id]
    if not project_ids:
        return []

    stmt = (
        select(Project)
        .where(Project.id.in_(project_ids), Project.is_active.is_(True))
        .order_by(Project.created_at)
    )
    return list(db.session.scalars(stmt))


# ── Writes ───────────────────────────────────────────────────────────────────

def _budget_config(data: dict, errors: list) -> dict:
    raw = data.get("budgetConfig") or {}
    if not isinstance(raw, dict):
        errors.append("budgetConfig must be an object")
        return {"totalBudget": 0, "byCode": {}}
    total = raw.get("totalBudget", 0)
    if not isinstance(total, int) or isinstance(total, bool) or total < 0:
        errors.append("totalBudget must be a non-negative integer")
        total = 0
    by_code = {}
    for code, amount in (raw.get("byCode") or {}).items():
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            errors.append(f"Budget for code {code} must be a non-negative integer")
            continue
        by_code[str(code)] = amount
    return {"totalBudget": total, "byCode": by_code}


def _threshold(data: dict, errors: list) -> int:
    value = data.get("directorApprovalThreshold", DEFAULT_DIRECTOR_APPROVAL_THRESHOLD)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        errors.append("directorApprovalThreshold must be a non-negative integer")
        return DEFAULT_DIRECTOR_APPROVAL_THRESHOLD
    return value


def create_project(actor: AppUser, data: dict) -> Project:
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")

    errors = []
    project_id = (data.get("id") or "").strip()
    name = (data.get("name") or "").strip()
    if not _PROJECT_ID_RE.match(project_id):
        errors.append("Project id must be a lowercase slug (a-z, 0-9, '-', '_')")
    if not name:
        errors.append("Project name is required")
    budget_config = _budget_config(data, errors)
    threshold = _threshold(data, errors)
    if errors:
        raise ValidationError("Project is invalid", errors=errors)

    if db.session.get(Project, project_id) is not None:
        raise ConflictError("Project", "id", project_id, message=f"Project {project_id!r} already exists")

    project = Project(
        id=project_id,
        name=name,
        description=(data.get("description") or "").strip(),
        document_no=(data.get("documentNo") or "").strip(),
        budget_config=budget_config,
        director_approval_threshold=threshold,
        budget_warning_threshold=clamp_warning_threshold(
            data.get("budgetWarningThreshold", DEFAULT_BUDGET_WARNING_THRESHOLD)
        ),
        member_uids=[],
        is_active=True,
        created_by=actor.snapshot(),
    )
    db.session.add(project)
    write_audit(entity_type="project", entity_id=project_id, action="project.create",
                actor_uid=actor.uid, project_id=project_id, diff={"name": name})
    commit_or_raise("Project")
    logger.info("Project %s created", project_id, extra={"project_id": project_id, "actor_uid": actor.uid})
    return project


def update_project(actor: AppUser, project_id: str, data: dict) -> Project:
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")
    project = get_project(project_id)

    errors = []
    changes = {}

    def _set(column, value):
        old = getattr(project, column)
        if old != value:
            changes[column] = {"old": old, "new": value}
            setattr(project, column, value)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            errors.append("Project name is required")
        else:
            _set("name", name)
    if "description" in data:
        _set("description", (data.get("description") or "").strip())
    if "documentNo" in data:
        _set("document_no", (data.get("documentNo") or "").strip())
    if "budgetConfig" in data:
        _set("budget_config", _budget_config(data, errors))
    if "directorApprovalThreshold" in data:
        _set("director_approval_threshold", _threshold(data, errors))
    if "budgetWarningThreshold" in data:
        _set("budget_warning_threshold", clamp_warning_threshold(data["budgetWarningThreshold"]))
    if "isActive" in data:
        if data["isActive"] is False and project.id == get_default_project_id():
            errors.append("The default project cannot be deactivated")
        else:
            _set("is_active", bool(data["isActive"]))

    if errors:
        db.session.rollback()
        raise ValidationError("Project update is invalid", errors=errors)

    if changes:
        write_audit(entity_type="project", entity_id=project_id, action="project.update",
                    actor_uid=actor.uid, project_id=project_id, diff=changes)
    commit_or_raise("Project")
    return project


def deactivate_project(actor: AppUser, project_id: str) -> Project:
    return update_project(actor, project_id, {"isActive": False})


def update_members(actor: AppUser, project_id: str, add_uids=(), remove_uids=()) -> Project:
    """Add/remove members on both the project and the users, in one commit."""
    if actor.role != "admin":
        raise AuthorizationError("Admin role required")
    project = get_project(project_id)

    add_uids = [uid for uid in dict.fromkeys(add_uids or []) if uid not in (remove_uids or [])]
    remove_uids = list(dict.fromkeys(remove_uids or []))

    missing = [uid for uid in add_uids if db.session.get(AppUser, uid) is None]
    if missing:
        raise ValidationError("Unknown users", errors=[f"User {uid} does not exist" for uid in missing])

    members = [uid for uid in (project.member_uids or []) if uid not in remove_uids]
    for uid in add_uids:
        if uid not in members:
            members.append(uid)
    project.member_uids = members

    for uid in add_uids:
        user = db.session.get(AppUser, uid)
        project_ids = list(user.project_ids or [])
        if project_id not in project_ids:
            user.project_ids = project_ids + [project_id]
    for uid in remove_uids:
        user = db.session.get(AppUser, uid)
        if user is not None:
            user.project_ids = [pid for pid in (user.project_ids or []) if pid != project_id]

    write_audit(entity_type="project", entity_id=project_id, action="project.update_members",
                actor_uid=actor.uid, project_id=project_id,
                diff={"added": add_uids, "removed": remove_uids})
    commit_or_raise("Project")
    logger.info("Project %s members +%d -%d", project_id, len(add_uids), len(remove_uids),
                extra={"project_id": project_id, "actor_uid": actor.uid})
    return project
