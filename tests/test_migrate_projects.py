import importlib

from reimburse.models import db as _db
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


def _seed_legacy_data():
    _db.session.add_all([
        Setting(key=LEGACY_BUDGET_CONFIG_KEY, value={"totalBudget": 3_000_000, "byCode": {"1": 1_000_000}}),
        Setting(key=LEGACY_DOCUMENT_NO_KEY, value={"value": "DOC-LEGACY"}),
        AppUser(uid="u1", email="u1@example.org", name="U1", role="user", project_ids=None),
        AppUser(uid="u2", email="u2@example.org", name="U2", role="approver", project_ids=None),
    ])
    _db.session.add(PaymentRequest(
        status="settled", payee="P", phone="1", bank_name="B", bank_account="A", date="2025-10-01",
        committee="operations", items=[{"description": "x", "budgetCode": 1, "amount": 10}],
        total_amount=10, receipts=[], requested_by={"uid": "u1"}, requested_by_uid="u1", version=3,
    ))
    _db.session.add(Settlement(
        created_by={"uid": "u2"}, payee="P", phone="1", bank_name="B", bank_account="A",
        committee="operations", items=[], total_amount=10, request_ids=[], receipts=[],
    ))
    _db.session.commit()


def test_migrate_dry_run_does_not_persist(app):
    _seed_legacy_data()

    mod = importlib.import_module("scripts.migrate_projects")
    result = mod.migrate_projects(apply=False)

    assert result["mode"] == "dry-run"
    assert result["project_created"] is True
    assert result["requests_updated"] == 1
    assert result["settlements_updated"] == 1
    assert result["users_updated"] == 2

    assert _db.session.get(Project, "default") is None
    assert _db.session.query(PaymentRequest).filter(PaymentRequest.project_id.is_(None)).count() == 1


def test_migrate_apply_is_idempotent(app):
    _seed_legacy_data()

    mod = importlib.import_module("scripts.migrate_projects")

    first = mod.migrate_projects(apply=True)
    assert first["project_created"] is True
    assert first["members_added"] == 2
    assert first["default_setting_updated"] is True

    project = _db.session.get(Project, "default")
    assert project.total_budget == 3_000_000
    assert project.document_no == "DOC-LEGACY"
    assert project.member_uids == ["u1", "u2"]
    assert _db.session.get(AppUser, "u1").project_ids == ["default"]
    assert _db.session.query(PaymentRequest).filter_by(project_id="default").count() == 1
    assert _db.session.query(Settlement).filter_by(project_id="default").count() == 1
    assert _db.session.get(Setting, GLOBAL_SETTINGS_KEY).value["defaultProjectId"] == "default"

    second = mod.migrate_projects(apply=True)
    assert second["project_created"] is False
    assert second["requests_updated"] == 0
    assert second["settlements_updated"] == 0
    assert second["users_updated"] == 0
    assert second["members_added"] == 0
    assert second["default_setting_updated"] is False
