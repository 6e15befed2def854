"""
Object storage for receipts and bank-book images.

Backends:
    local : files under STORAGE_LOCAL_ROOT (development, tests)
    azure : Azure Blob Storage container (AZURE_STORAGE_CONNECTION_STRING)

Uploads arrive as base64 data URIs (``data:<mime>;base64,<payload>``).
Object paths:
    receipts/<projectId|default>/<committee>/<epoch_ms>_<name>
    bankbook/<uid>/<epoch_ms>_<name>

A receipt batch is not atomic: each file succeeds or fails on its own and
the caller receives both lists.  Every stored receipt gets a ``file.upload``
audit row naming the uploader; a request may only reference receipts its
submitter uploaded.
"""

import base64
import binascii
import logging
import mimetypes
import os
import re
import time

from flask import current_app
from sqlalchemy import select

from reimburse.core.exceptions import (
    AuthorizationError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
)
from reimburse.models import APPROVER_ROLES, COMMITTEES, db
from reimburse.models.audit import AuditLog, write_audit
from reimburse.models.request import PaymentRequest
from reimburse.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/png", "image/jpeg", "application/pdf"}
MAX_FILE_BYTES = 2 * 1024 * 1024
MAX_FILES_PER_UPLOAD = 10

_UNSAFE_NAME = re.compile(r"[^\w.\-]+")


class InvalidFileError(ValueError):
    """A single uploaded file is unusable; the rest of the batch continues."""


# ── Backends ─────────────────────────────────────────────────────────────────

class LocalFileStorage:
    name = "local"

    def __init__(self, root: str, public_base_url: str):
        self.root = os.path.abspath(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise InvalidArgumentError(f"Invalid storage path: {path}")
        return full

    def put(self, path: str, data: bytes, content_type: str) -> str:
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise StorageError(f"Could not write {path}: {exc}", path=path) from exc
        return f"{self.public_base_url}/{path}"

    def get(self, path: str) -> tuple[bytes, str]:
        full = self._full_path(path)
        if not os.path.isfile(full):
            raise NotFoundError(resource="File", resource_id=path)
        try:
            with open(full, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            raise StorageError(f"Could not read {path}: {exc}", path=path) from exc
        content_type = mimetypes.guess_type(full)[0] or "application/octet-stream"
        return data, content_type


class AzureBlobStorage:
    name = "azure"

    def __init__(self, connection_string: str, container: str):
        from azure.storage.blob import BlobServiceClient

        self.container = container
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = self._service.get_container_client(container)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        from azure.core.exceptions import AzureError
        from azure.storage.blob import ContentSettings

        blob = self._container.get_blob_client(path)
        try:
            blob.upload_blob(data, overwrite=True, content_settings=ContentSettings(content_type=content_type))
        except AzureError as exc:
            raise StorageError(f"Azure upload failed for {path}: {exc}", path=path) from exc
        return blob.url

    def get(self, path: str) -> tuple[bytes, str]:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        blob = self._container.get_blob_client(path)
        try:
            downloader = blob.download_blob()
            data = downloader.readall()
        except ResourceNotFoundError as exc:
            raise NotFoundError(resource="File", resource_id=path) from exc
        except AzureError as exc:
            raise StorageError(f"Azure download failed for {path}: {exc}", path=path) from exc
        content_type = downloader.properties.content_settings.content_type or "application/octet-stream"
        return data, content_type


def get_storage():
    """Storage backend for the current app, built once per app."""
    storage = current_app.extensions.get("reimburse_storage")
    if storage is not None:
        return storage

    backend = current_app.config.get("STORAGE_BACKEND", "local")
    if backend == "azure":
        conn = current_app.config.get("AZURE_STORAGE_CONNECTION_STRING")
        if not conn:
            raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING is required for STORAGE_BACKEND=azure")
        storage = AzureBlobStorage(conn, current_app.config["AZURE_STORAGE_CONTAINER"])
    elif backend == "local":
        storage = LocalFileStorage(
            current_app.config["STORAGE_LOCAL_ROOT"],
            current_app.config["STORAGE_PUBLIC_BASE_URL"],
        )
    else:
        raise RuntimeError(f"Unknown STORAGE_BACKEND: {backend}")

    current_app.extensions["reimburse_storage"] = storage
    logger.info("Storage backend: %s", storage.name)
    return storage


# ── Helpers ──────────────────────────────────────────────────────────────────

def parse_data_uri(data) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into (mime, bytes)."""
    if not isinstance(data, str) or "," not in data:
        raise InvalidFileError("Invalid file data")
    header, payload = data.split(",", 1)
    match = re.match(r"^data:([\w.+-]+/[\w.+-]+)", header)
    content_type = match.group(1).lower() if match else "application/octet-stream"
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidFileError("File data is not valid base64") from exc
    return content_type, raw


def safe_file_name(name) -> str:
    base = os.path.basename(str(name or "").replace("\\", "/")).strip()
    cleaned = _UNSAFE_NAME.sub("_", base).strip("._")
    return cleaned[:120] or "file"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _decode_upload(file: dict) -> tuple[str, str, bytes]:
    if not isinstance(file, dict):
        raise InvalidFileError("Invalid file entry")
    name = safe_file_name(file.get("name"))
    content_type, raw = parse_data_uri(file.get("data"))
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidFileError(f"Unsupported file type: {content_type}")
    if not raw:
        raise InvalidFileError("File is empty")
    if len(raw) > MAX_FILE_BYTES:
        raise InvalidFileError("File exceeds the 2 MB limit")
    return name, content_type, raw


# ── Remote callables ─────────────────────────────────────────────────────────

def upload_receipts(user, files, committee, project_id: str | None = None) -> dict:
    """
    Store receipt files.

    Returns:
        {"uploaded": [{fileName, storagePath, url}], "failed": [{fileName, error}]}

    Raises:
        InvalidArgumentError: empty/oversized file list or unknown committee
    """
    if not isinstance(files, list) or not files:
        raise InvalidArgumentError("At least one file is required")
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise InvalidArgumentError(f"At most {MAX_FILES_PER_UPLOAD} files per upload")
    if committee not in COMMITTEES:
        raise InvalidArgumentError(f"Unknown committee: {committee}")

    if project_id:
        from reimburse.services.project_service import get_accessible_project
        get_accessible_project(user, project_id)

    storage = get_storage()
    uploaded, failed = [], []
    for file in files:
        display_name = file.get("name") if isinstance(file, dict) else None
        try:
            name, content_type, raw = _decode_upload(file)
            path = f"receipts/{project_id or 'default'}/{committee}/{_epoch_ms()}_{name}"
            url = storage.put(path, raw, content_type)
        except (InvalidFileError, StorageError) as exc:
            logger.warning("Receipt upload failed: %s", exc, extra={"actor_uid": user.uid})
            failed.append({"fileName": str(display_name or ""), "error": str(exc)})
            continue
        write_audit(
            entity_type="file",
            entity_id=path,
            action="file.upload",
            actor_uid=user.uid,
            project_id=project_id,
            diff={"contentType": content_type, "size": len(raw)},
        )
        uploaded.append({"fileName": str(display_name or name), "storagePath": path, "url": url})

    if uploaded:
        commit_or_raise("receipt upload")

    logger.info("Receipts uploaded: %d ok, %d failed", len(uploaded), len(failed),
                extra={"actor_uid": user.uid, "project_id": project_id})
    return {"uploaded": uploaded, "failed": failed}


def upload_bank_book(user, file) -> dict:
    """Store a bank-book image and record it on the caller's profile."""
    try:
        name, content_type, raw = _decode_upload(file)
    except InvalidFileError as exc:
        raise InvalidArgumentError(str(exc)) from exc

    path = f"bankbook/{user.uid}/{_epoch_ms()}_{name}"
    url = get_storage().put(path, raw, content_type)
    ref = {"fileName": str(file.get("name") or name), "storagePath": path, "url": url}

    from reimburse.services.user_service import record_bank_book
    record_bank_book(user, ref)
    logger.info("Bank book uploaded", extra={"actor_uid": user.uid, "storage_path": path})
    return ref


def uploaded_by(uid: str, storage_path: str) -> bool:
    """True when ``uid`` stored the receipt at ``storage_path``."""
    stmt = select(AuditLog.id).where(
        AuditLog.entity_type == "file",
        AuditLog.entity_id == storage_path,
        AuditLog.action == "file.upload",
        AuditLog.actor_uid == uid,
    ).limit(1)
    return db.session.scalar(stmt) is not None


def _owns_receipt(uid: str, storage_path: str) -> bool:
    stmt = select(PaymentRequest.receipts).where(PaymentRequest.requested_by_uid == uid)
    for receipts in db.session.scalars(stmt):
        if any((r or {}).get("storagePath") == storage_path for r in receipts or []):
            return True
    return False


def can_download(user, storage_path: str) -> bool:
    if user.role in APPROVER_ROLES:
        return True
    if storage_path.startswith(f"bankbook/{user.uid}/"):
        return True
    if not storage_path.startswith("receipts/"):
        return False
    return uploaded_by(user.uid, storage_path) or _owns_receipt(user.uid, storage_path)


def fetch_file(storage_path: str) -> tuple[bytes, str]:
    """Raw bytes and content type, without access checks (server-side use)."""
    if not isinstance(storage_path, str) or not storage_path or ".." in storage_path.split("/"):
        raise InvalidArgumentError("Invalid storage path")
    return get_storage().get(storage_path)


def download_file(user, storage_path) -> dict:
    """
    Returns:
        {"data": <base64>, "contentType": str, "fileName": str}
    """
    if not isinstance(storage_path, str) or not storage_path:
        raise InvalidArgumentError("storagePath is required")
    if not can_download(user, storage_path):
        raise AuthorizationError("You cannot download this file")
    data, content_type = fetch_file(storage_path)
    return {
        "data": base64.b64encode(data).decode("ascii"),
        "contentType": content_type,
        "fileName": storage_path.rsplit("/", 1)[-1],
    }
