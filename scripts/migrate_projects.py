#!/usr/bin/env python3
"""Introduce the project layer on pre-project data (idempotent).

- creates the ``default`` project from settings/budget-config and
  settings/document-no
- stamps project_id on requests and settlements that have none
- gives users without project_ids the default project
- adds every user to the default project's member_uids
- sets settings/global.defaultProjectId
"""

import argparse
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from reimburse import create_app
from reimburse.models import db
from reimburse.models.project import (
    GLOBAL_SETTINGS_KEY,
    LEGACY_BUDGET_CONFIG_KEY,
    LEGACY_DOCUMENT_NO_KEY,
    Project,
    Setting,
)
from reimburse.models.request import PaymentRequest
from reimburse.models.settlement import Settlement
from reimburse.models.user import AppUser

DEFAULT_PROJECT_ID = "default"
SYSTEM_ACTOR = {"uid": "system", "name": "Migration", "email": ""}


def _legacy_budget_config() -> dict:
    setting = db.session.get(Setting, LEGACY_BUDGET_CONFIG_KEY)
    value = (setting.value if setting else None) or {}
    return {
        "totalBudget": int(value.get("totalBudget") or 0),
        "byCode": dict(value.get("byCode") or {}),
    }


def _legacy_document_no() -> str:
    setting = db.session.get(Setting, LEGACY_DOCUMENT_NO_KEY)
    return str(((setting.value if setting else None) or {}).get("value") or "")


def migrate_projects(*, apply: bool = False) -> dict:
    """Add the project layer, safe for reruns.  Nothing is written unless ``apply``."""
    summary = {
        "mode": "apply" if apply else "dry-run",
        "project_created": False,
        "requests_updated": 0,
        "settlements_updated": 0,
        "users_updated": 0,
        "members_added": 0,
        "default_setting_updated": False,
    }
    print(f"[INFO] mode={summary['mode']}")

    project = db.session.get(Project, DEFAULT_PROJECT_ID)
    if project is None:
        summary["project_created"] = True
        print(f"[{'CREATE' if apply else 'PLAN'}] project id={DEFAULT_PROJECT_ID}")
        if apply:
            project = Project(
                id=DEFAULT_PROJECT_ID,
                name="Default Project",
                description="Migrated from existing data",
                created_by=SYSTEM_ACTOR,
                budget_config=_legacy_budget_config(),
                document_no=_legacy_document_no(),
                member_uids=[],
                is_active=True,
            )
            db.session.add(project)
            db.session.flush()
    else:
        print(f"[SKIP] project id={DEFAULT_PROJECT_ID} reason=already_exists")

    for model, key in ((PaymentRequest, "requests_updated"), (Settlement, "settlements_updated")):
        rows = db.session.scalars(select(model).where(model.project_id.is_(None))).all()
        summary[key] = len(rows)
        if apply:
            for row in rows:
                row.project_id = DEFAULT_PROJECT_ID
        print(f"[INFO] {model.__tablename__} without project: {len(rows)}")

    users = db.session.scalars(select(AppUser).order_by(AppUser.uid)).all()
    for user in users:
        if user.project_ids is None:
            summary["users_updated"] += 1
            if apply:
                user.project_ids = [DEFAULT_PROJECT_ID]

    members = list((project.member_uids if project else None) or [])
    new_members = [u.uid for u in users if u.uid not in members]
    summary["members_added"] = len(new_members)
    if apply and project is not None and new_members:
        project.member_uids = members + new_members

    setting = db.session.get(Setting, GLOBAL_SETTINGS_KEY)
    current = (setting.value or {}).get("defaultProjectId") if setting else None
    if current != DEFAULT_PROJECT_ID:
        summary["default_setting_updated"] = True
        if apply:
            if setting is None:
                db.session.add(Setting(key=GLOBAL_SETTINGS_KEY, value={"defaultProjectId": DEFAULT_PROJECT_ID}))
            else:
                setting.value = {**(setting.value or {}), "defaultProjectId": DEFAULT_PROJECT_ID}

    if apply:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    else:
        db.session.rollback()

    print(
        "[SUMMARY] "
        f"mode={summary['mode']} "
        f"project_created={summary['project_created']} "
        f"requests={summary['requests_updated']} "
        f"settlements={summary['settlements_updated']} "
        f"users={summary['users_updated']} "
        f"members_added={summary['members_added']} "
        f"default_setting={summary['default_setting_updated']}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Introduce the project layer (idempotent).")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Preview only; do not write data")
    mode.add_argument("--apply", action="store_true", help="Persist migration changes")
    args = parser.parse_args()

    if not args.dry_run and not args.apply:
        print("[INFO] No mode specified; defaulting to --dry-run")

    app = create_app()
    with app.app_context():
        migrate_projects(apply=bool(args.apply))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
