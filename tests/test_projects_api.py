"""
Project administration API tests.

Test blocks:
  1. Visibility (admin, member, default fallback)
  2. Create / update / deactivate (admin only)
  3. Default project setting
  4. Membership updates on both sides
"""

import pytest

from reimburse.core.exceptions import AuthorizationError, ValidationError
from reimburse.models import db as _db
from reimburse.models.project import Project
from reimburse.models.user import AppUser
from reimburse.services import project_service
from tests.conftest import auth_headers, make_user


@pytest.fixture()
def other_project(project):
    proj = Project(id="proj-b", name="Project B", budget_config={"totalBudget": 0}, member_uids=[], is_active=True)
    _db.session.add(proj)
    _db.session.commit()
    return proj


# ── 1. Visibility ────────────────────────────────────────────────────────────

class TestVisibility:
    def test_member_sees_own_projects(self, client, requester, other_project):
        res = client.get("/api/v1/projects", headers=auth_headers("alice"))
        assert res.status_code == 200
        body = res.get_json()
        assert [p["id"] for p in body["items"]] == ["proj-a"]
        assert body["defaultProjectId"] == "proj-a"

    def test_admin_sees_all_active(self, client, admin, other_project):
        res = client.get("/api/v1/projects", headers=auth_headers("root"))
        assert {p["id"] for p in res.get_json()["items"]} == {"proj-a", "proj-b"}

    def test_user_without_projects_falls_back_to_default(self, project):
        newcomer = make_user("dave", project_ids=[])
        assert [p.id for p in project_service.list_projects_for(newcomer)] == ["proj-a"]
        assert project_service.can_access(newcomer, project) is True

    def test_hidden_project_is_404(self, client, requester, other_project):
        res = client.get("/api/v1/projects/proj-b", headers=auth_headers("alice"))
        assert res.status_code == 404

    def test_request_in_hidden_project_is_404(self, client, requester, other_project):
        res = client.get("/api/v1/requests?projectId=proj-b", headers=auth_headers("alice"))
        assert res.status_code == 404


# ── 2. Create / update / deactivate ──────────────────────────────────────────

class TestProjectWrites:
    def test_admin_creates_project(self, client, admin):
        res = client.post("/api/v1/projects", json={
            "id": "summer-camp",
            "name": "Summer Camp",
            "budgetConfig": {"totalBudget": 2_000_000, "byCode": {"1": 1_000_000}},
            "budgetWarningThreshold": 150,
        }, headers=auth_headers("root"))
        assert res.status_code == 201
        body = res.get_json()
        assert body["budgetConfig"]["totalBudget"] == 2_000_000
        assert body["budgetWarningThreshold"] == 100
        assert body["directorApprovalThreshold"] == 600_000
        assert body["createdBy"]["uid"] == "root"

    def test_duplicate_id_is_409(self, client, admin):
        res = client.post("/api/v1/projects", json={"id": "proj-a", "name": "Again"}, headers=auth_headers("root"))
        assert res.status_code == 409

    def test_invalid_payload_lists_errors(self, client, admin):
        res = client.post("/api/v1/projects", json={
            "id": "Bad Id!",
            "name": "",
            "budgetConfig": {"totalBudget": -5},
        }, headers=auth_headers("root"))
        assert res.status_code == 422
        errors = res.get_json()["details"]["errors"]
        assert len(errors) == 3

    def test_non_admin_cannot_create(self, client, approver):
        res = client.post("/api/v1/projects", json={"id": "x", "name": "X"}, headers=auth_headers("bob"))
        assert res.status_code == 403

    def test_update_thresholds(self, client, admin):
        res = client.patch("/api/v1/projects/proj-a", json={
            "directorApprovalThreshold": 500_000,
            "budgetWarningThreshold": -3,
            "documentNo": "DOC-2026-02",
        }, headers=auth_headers("root"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["directorApprovalThreshold"] == 500_000
        assert body["budgetWarningThreshold"] == 0
        assert body["documentNo"] == "DOC-2026-02"

    def test_default_project_cannot_be_deactivated(self, client, admin):
        res = client.delete("/api/v1/projects/proj-a", headers=auth_headers("root"))
        assert res.status_code == 422
        assert _db.session.get(Project, "proj-a").is_active is True

    def test_deactivate_other_project(self, client, admin, other_project):
        res = client.delete("/api/v1/projects/proj-b", headers=auth_headers("root"))
        assert res.status_code == 200
        assert res.get_json()["isActive"] is False
        assert _db.session.get(Project, "proj-b") is not None


# ── 3. Default project ───────────────────────────────────────────────────────

class TestDefaultProject:
    def test_set_default(self, client, admin, other_project):
        res = client.post("/api/v1/projects/proj-b/default", headers=auth_headers("root"))
        assert res.status_code == 200
        assert project_service.get_default_project_id() == "proj-b"

    def test_inactive_cannot_be_default(self, admin, other_project):
        other_project.is_active = False
        _db.session.commit()
        with pytest.raises(ValidationError):
            project_service.set_default_project(admin, "proj-b")

    def test_requires_admin(self, approver, other_project):
        with pytest.raises(AuthorizationError):
            project_service.set_default_project(approver, "proj-b")


# ── 4. Membership ────────────────────────────────────────────────────────────

class TestMembers:
    def test_add_and_remove(self, client, admin, requester, other_project):
        make_user("carol", project_ids=[])
        res = client.post("/api/v1/projects/proj-b/members", json={"add": ["alice", "carol"]},
                          headers=auth_headers("root"))
        assert res.status_code == 200
        assert res.get_json()["memberUids"] == ["alice", "carol"]
        assert _db.session.get(AppUser, "carol").project_ids == ["proj-b"]
        assert _db.session.get(AppUser, "alice").project_ids == ["proj-a", "proj-b"]

        res = client.post("/api/v1/projects/proj-b/members", json={"remove": ["alice"]},
                          headers=auth_headers("root"))
        assert res.get_json()["memberUids"] == ["carol"]
        assert _db.session.get(AppUser, "alice").project_ids == ["proj-a"]

    def test_unknown_user_rejected(self, client, admin, other_project):
        res = client.post("/api/v1/projects/proj-b/members", json={"add": ["ghost"]}, headers=auth_headers("root"))
        assert res.status_code == 422
        assert _db.session.get(Project, "proj-b").member_uids == []
