"""
Shared pytest fixtures for the reimbursement service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - storage_root: local object storage under tmp_path
    - project / requester / approver / admin: seeded records
    - make_user, record_upload, auth_headers, make_ctx, request_payload: helpers
"""

import base64

import pytest

from reimburse import create_app
from reimburse.core.context import RequestContext
from reimburse.models import db as _db
from reimburse.models.audit import write_audit
from reimburse.models.project import GLOBAL_SETTINGS_KEY, Project, Setting
from reimburse.models.user import AppUser
from reimburse.services.jwt_service import issue_identity_token

PNG_1PX = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="
)
SIGNATURE = "data:image/png;base64," + base64.b64encode(PNG_1PX).decode("ascii")
BUS_RECEIPT_PATH = "receipts/proj-a/operations/1710400000000_bus.png"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def storage_root(app, tmp_path):
    """Point local storage at a per-test directory."""
    app.config["STORAGE_LOCAL_ROOT"] = str(tmp_path / "storage")
    app.extensions.pop("reimburse_storage", None)
    yield tmp_path / "storage"
    app.extensions.pop("reimburse_storage", None)


# ── Helpers ──────────────────────────────────────────────────────────────


def make_user(uid, role="user", **fields):
    user = AppUser(
        uid=uid,
        email=fields.pop("email", f"{uid}@example.org"),
        name=fields.pop("name", uid.title()),
        role=role,
        project_ids=fields.pop("project_ids", ["proj-a"]),
        **fields,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def record_upload(uid, *paths):
    """Mark receipt paths as uploaded by ``uid`` without storing bytes."""
    for path in paths:
        write_audit(entity_type="file", entity_id=path, action="file.upload", actor_uid=uid)
    _db.session.commit()


def auth_headers(uid, email="", name=""):
    token = issue_identity_token(uid, email=email or f"{uid}@example.org", name=name)
    return {"Authorization": f"Bearer {token}"}


def make_ctx(user, project=None):
    return RequestContext(user=user, project=project)


def request_payload(**overrides):
    """A valid create-request body; the receipt is the one alice uploaded."""
    payload = {
        "payee": "Kim Minji",
        "phone": "010-1234-5678",
        "bankName": "Shinhan",
        "bankAccount": "110-123-456789",
        "date": "2026-03-14",
        "session": "Spring retreat",
        "committee": "operations",
        "items": [
            {"description": "Bus rental", "budgetCode": 1, "amount": 120000},
            {"description": "Snacks", "budgetCode": 2, "amount": 30000},
        ],
        "receipts": [
            {
                "fileName": "bus.png",
                "storagePath": BUS_RECEIPT_PATH,
                "url": f"/api/v1/files/raw/{BUS_RECEIPT_PATH}",
            }
        ],
        "comments": "",
    }
    payload.update(overrides)
    return payload


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    proj = Project(
        id="proj-a",
        name="Project A",
        document_no="DOC-2026-01",
        budget_config={"totalBudget": 1_000_000, "byCode": {"1": 500_000, "2": 200_000}},
        director_approval_threshold=600_000,
        budget_warning_threshold=85,
        member_uids=["alice", "bob", "root"],
        is_active=True,
    )
    _db.session.add(proj)
    _db.session.add(Setting(key=GLOBAL_SETTINGS_KEY, value={"defaultProjectId": "proj-a"}))
    _db.session.commit()
    return proj


@pytest.fixture()
def requester(project):
    user = make_user("alice", signature=SIGNATURE)
    record_upload("alice", BUS_RECEIPT_PATH)
    return user


@pytest.fixture()
def approver(project):
    return make_user("bob", role="approver", signature=SIGNATURE)


@pytest.fixture()
def admin(project):
    return make_user("root", role="admin")
