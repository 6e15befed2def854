"""
File storage tests: receipt and bank-book uploads, downloads and access rules.
"""

import base64

import pytest

from reimburse.core.exceptions import InvalidArgumentError, NotFoundError, ValidationError
from reimburse.models import db as _db
from reimburse.models.audit import AuditLog
from reimburse.models.user import AppUser
from reimburse.services import request_lifecycle, storage_service
from tests.conftest import PNG_1PX, auth_headers, make_ctx, make_user, request_payload


def _data_uri(raw=PNG_1PX, mime="image/png"):
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


class TestHelpers:
    def test_parse_data_uri(self):
        mime, raw = storage_service.parse_data_uri(_data_uri())
        assert mime == "image/png"
        assert raw == PNG_1PX

    @pytest.mark.parametrize("value", [None, "", "no-comma", "data:image/png;base64,@@@"])
    def test_parse_data_uri_invalid(self, value):
        with pytest.raises(storage_service.InvalidFileError):
            storage_service.parse_data_uri(value)

    @pytest.mark.parametrize("name,expected", [
        ("receipt.png", "receipt.png"),
        ("../../etc/passwd", "passwd"),
        ("my receipt (1).jpg", "my_receipt_1_.jpg"),
        ("", "file"),
    ])
    def test_safe_file_name(self, name, expected):
        assert storage_service.safe_file_name(name) == expected

    def test_local_storage_blocks_traversal(self, tmp_path):
        storage = storage_service.LocalFileStorage(str(tmp_path), "/files")
        with pytest.raises(InvalidArgumentError):
            storage.put("../outside.png", b"x", "image/png")

    def test_local_storage_missing_file(self, tmp_path):
        storage = storage_service.LocalFileStorage(str(tmp_path), "/files")
        with pytest.raises(NotFoundError):
            storage.get("receipts/none.png")


class TestReceiptUpload:
    def test_upload_partial_failure(self, client, storage_root, requester):
        res = client.post("/api/v1/files/receipts", json={
            "committee": "operations",
            "projectId": "proj-a",
            "files": [
                {"name": "bus.png", "data": _data_uri()},
                {"name": "notes.txt", "data": _data_uri(b"hello", "text/plain")},
            ],
        }, headers=auth_headers("alice"))
        assert res.status_code == 200
        body = res.get_json()

        assert len(body["uploaded"]) == 1
        uploaded = body["uploaded"][0]
        assert uploaded["fileName"] == "bus.png"
        assert uploaded["storagePath"].startswith("receipts/proj-a/operations/")
        assert uploaded["storagePath"].endswith("_bus.png")
        assert uploaded["url"] == "/api/v1/files/raw/" + uploaded["storagePath"]
        assert (storage_root / uploaded["storagePath"]).read_bytes() == PNG_1PX

        assert body["failed"] == [{"fileName": "notes.txt", "error": "Unsupported file type: text/plain"}]

    def test_oversized_file_fails(self, requester, storage_root):
        big = b"\x89PNG" + b"0" * (storage_service.MAX_FILE_BYTES + 1)
        result = storage_service.upload_receipts(requester, [{"name": "big.png", "data": _data_uri(big)}], "operations")
        assert result["uploaded"] == []
        assert "2 MB" in result["failed"][0]["error"]

    def test_default_project_segment(self, requester, storage_root):
        result = storage_service.upload_receipts(requester, [{"name": "a.png", "data": _data_uri()}], "preparation")
        assert result["uploaded"][0]["storagePath"].startswith("receipts/default/preparation/")

    @pytest.mark.parametrize("files,committee", [
        ([], "operations"),
        (None, "operations"),
        ([{"name": "a.png", "data": "x"}] * 11, "operations"),
        ([{"name": "a.png", "data": "x"}], "finance"),
    ])
    def test_bad_batch_is_400(self, client, requester, files, committee):
        res = client.post("/api/v1/files/receipts", json={"files": files, "committee": committee},
                          headers=auth_headers("alice"))
        assert res.status_code == 400
        assert res.get_json()["code"] == "INVALID_ARGUMENT"

    def test_upload_requires_auth(self, client):
        res = client.post("/api/v1/files/receipts", json={"files": [], "committee": "operations"})
        assert res.status_code == 401


class TestBankBook:
    def test_upload_records_on_profile(self, client, storage_root, requester):
        res = client.post("/api/v1/files/bankbook", json={"file": {"name": "book.jpg", "data": _data_uri(mime="image/jpeg")}},
                          headers=auth_headers("alice"))
        assert res.status_code == 201
        ref = res.get_json()
        assert ref["storagePath"].startswith("bankbook/alice/")

        user = _db.session.get(AppUser, "alice")
        assert user.bank_book_storage_path == ref["storagePath"]
        assert user.bank_book_url == ref["url"]

    def test_invalid_file_is_400(self, client, storage_root, requester):
        res = client.post("/api/v1/files/bankbook", json={"file": {"name": "x.gif", "data": _data_uri(mime="image/gif")}},
                          headers=auth_headers("alice"))
        assert res.status_code == 400


class TestDownload:
    def _stored_receipt(self, requester):
        result = storage_service.upload_receipts(requester, [{"name": "bus.png", "data": _data_uri()}], "operations",
                                                 project_id="proj-a")
        ref = result["uploaded"][0]
        request_lifecycle.create_request(make_ctx(requester), request_payload(receipts=[ref]))
        return ref["storagePath"]

    def test_owner_can_download(self, client, storage_root, requester):
        path = self._stored_receipt(requester)
        res = client.post("/api/v1/files/download", json={"storagePath": path}, headers=auth_headers("alice"))
        assert res.status_code == 200
        body = res.get_json()
        assert base64.b64decode(body["data"]) == PNG_1PX
        assert body["contentType"] == "image/png"
        assert body["fileName"].endswith("_bus.png")

    def test_approver_can_download(self, client, storage_root, requester, approver):
        path = self._stored_receipt(requester)
        res = client.get(f"/api/v1/files/raw/{path}", headers=auth_headers("bob"))
        assert res.status_code == 200
        assert res.data == PNG_1PX

    def test_other_user_forbidden(self, client, storage_root, requester):
        path = self._stored_receipt(requester)
        make_user("carol")
        res = client.post("/api/v1/files/download", json={"storagePath": path}, headers=auth_headers("carol"))
        assert res.status_code == 403

    def test_reusing_another_users_receipt_does_not_grant_access(self, client, storage_root, requester):
        path = self._stored_receipt(requester)
        carol = make_user("carol")
        ref = {"fileName": "bus.png", "storagePath": path, "url": ""}
        with pytest.raises(ValidationError) as exc_info:
            request_lifecycle.create_request(make_ctx(carol), request_payload(receipts=[ref]))
        assert "Receipt 1 was not uploaded by you; upload it again" in exc_info.value.errors

        res = client.post("/api/v1/files/download", json={"storagePath": path}, headers=auth_headers("carol"))
        assert res.status_code == 403

    def test_uploader_can_download_before_submitting(self, client, storage_root, requester):
        result = storage_service.upload_receipts(requester, [{"name": "taxi.png", "data": _data_uri()}], "operations",
                                                 project_id="proj-a")
        path = result["uploaded"][0]["storagePath"]
        entry = _db.session.query(AuditLog).filter_by(entity_id=path, action="file.upload").one()
        assert entry.actor_uid == "alice"
        res = client.post("/api/v1/files/download", json={"storagePath": path}, headers=auth_headers("alice"))
        assert res.status_code == 200

    def test_traversal_refused(self, approver, storage_root):
        with pytest.raises(InvalidArgumentError):
            storage_service.fetch_file("receipts/../../secret")

    def test_missing_file_is_404(self, client, storage_root, approver):
        res = client.post("/api/v1/files/download", json={"storagePath": "receipts/nope.png"},
                          headers=auth_headers("bob"))
        assert res.status_code == 404
