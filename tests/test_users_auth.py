"""
Authentication, profile and role administration tests.
"""

import jwt
import pytest

from reimburse.models import db as _db
from reimburse.models.audit import AuditLog
from reimburse.models.user import AppUser
from reimburse.services.jwt_service import decode_identity_token, issue_identity_token
from tests.conftest import auth_headers, make_user


class TestHealth:
    def test_health_needs_no_token(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health")
        assert res.headers.get("X-Request-ID")


class TestIdentityTokens:
    def test_round_trip(self):
        payload = decode_identity_token(issue_identity_token("alice", email="a@example.org"))
        assert payload["sub"] == "alice"
        assert payload["email"] == "a@example.org"

    def test_expired_token_rejected(self):
        token = issue_identity_token("alice", expires_in=-10)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_identity_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "alice", "exp": 9999999999}, "another-secret", algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            decode_identity_token(token)

    def test_missing_token_is_401(self, client):
        res = client.get("/api/v1/me")
        assert res.status_code == 401
        assert res.get_json()["code"] == "UNAUTHENTICATED"

    def test_invalid_token_is_401(self, client):
        res = client.get("/api/v1/me", headers={"Authorization": "Bearer not-a-token"})
        assert res.status_code == 401


class TestProvisioning:
    def test_first_call_provisions_user(self, client, project):
        res = client.get("/api/v1/me", headers=auth_headers("erin", name="Erin Park"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["uid"] == "erin"
        assert body["role"] == "user"
        assert body["displayName"] == "Erin Park"

        assert _db.session.get(AppUser, "erin") is not None
        audit = _db.session.query(AuditLog).filter_by(entity_id="erin", action="user.provision").count()
        assert audit == 1

    def test_second_call_reuses_user(self, client, requester):
        client.get("/api/v1/me", headers=auth_headers("alice"))
        res = client.get("/api/v1/me", headers=auth_headers("alice"))
        assert res.get_json()["uid"] == "alice"
        assert _db.session.query(AppUser).count() == 1


class TestProfile:
    def test_update_profile(self, client, requester):
        res = client.patch("/api/v1/me", json={
            "displayName": "  Alice K  ",
            "bankName": "Woori",
            "defaultCommittee": "preparation",
        }, headers=auth_headers("alice"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["displayName"] == "Alice K"
        assert body["bankName"] == "Woori"
        assert body["defaultCommittee"] == "preparation"

    def test_role_is_not_self_editable(self, client, requester):
        res = client.patch("/api/v1/me", json={"role": "admin"}, headers=auth_headers("alice"))
        assert res.status_code == 200
        assert _db.session.get(AppUser, "alice").role == "user"

    def test_unknown_committee_rejected(self, client, requester):
        res = client.patch("/api/v1/me", json={"defaultCommittee": "finance"}, headers=auth_headers("alice"))
        assert res.status_code == 422


class TestRoles:
    def test_admin_lists_users(self, client, admin, requester):
        res = client.get("/api/v1/users", headers=auth_headers("root"))
        assert res.status_code == 200
        assert {u["uid"] for u in res.get_json()["items"]} == {"root", "alice"}

    def test_non_admin_cannot_list(self, client, approver):
        assert client.get("/api/v1/users", headers=auth_headers("bob")).status_code == 403

    def test_promote_user(self, client, admin, requester):
        res = client.put("/api/v1/users/alice/role", json={"role": "approver"}, headers=auth_headers("root"))
        assert res.status_code == 200
        assert res.get_json()["role"] == "approver"
        entry = _db.session.query(AuditLog).filter_by(entity_id="alice", action="user.set_role").one()
        assert entry.diff["role"] == {"old": "user", "new": "approver"}

    def test_unknown_role(self, client, admin, requester):
        res = client.put("/api/v1/users/alice/role", json={"role": "director"}, headers=auth_headers("root"))
        assert res.status_code == 422

    def test_admin_cannot_demote_self(self, client, admin):
        res = client.put("/api/v1/users/root/role", json={"role": "user"}, headers=auth_headers("root"))
        assert res.status_code == 422
        assert _db.session.get(AppUser, "root").role == "admin"

    def test_unknown_user(self, client, admin):
        make_user("frank")
        res = client.put("/api/v1/users/ghost/role", json={"role": "approver"}, headers=auth_headers("root"))
        assert res.status_code == 404
