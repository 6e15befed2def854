"""
AppUser model: one row per identity-provider account.

The uid is issued by the identity provider and used verbatim as primary key.
Role gates approver/admin operations; the check is performed server-side in
the service layer (see reimburse.core.context.RequestContext).
"""

from datetime import datetime, timezone

from reimburse.models import CURRENT_SCHEMA_VERSION, db


class AppUser(db.Model):
    __tablename__ = "users"

    uid = db.Column(db.String(128), primary_key=True)
    email = db.Column(db.String(200), nullable=False, default="")
    name = db.Column(db.String(200), nullable=False, default="")
    display_name = db.Column(db.String(200), nullable=False, default="")
    phone = db.Column(db.String(40), nullable=False, default="")
    bank_name = db.Column(db.String(100), nullable=False, default="")
    bank_account = db.Column(db.String(100), nullable=False, default="")
    default_committee = db.Column(db.String(30), nullable=False, default="operations")
    signature = db.Column(db.Text, nullable=True, comment="Signature image as data URL")
    role = db.Column(db.String(20), nullable=False, default="user")
    project_ids = db.Column(db.JSON, nullable=True)

    bank_book_url = db.Column(db.String(500), nullable=True)
    bank_book_storage_path = db.Column(db.String(500), nullable=True)
    # Legacy fields, read-only for new code
    bank_book_drive_url = db.Column(db.String(500), nullable=True)
    bank_book_image = db.Column(db.Text, nullable=True, comment="Legacy embedded base64 copy")

    schema_version = db.Column(db.Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def label(self) -> str:
        return self.display_name or self.name or self.email or self.uid

    def snapshot(self) -> dict:
        """Identity snapshot stored on requests/settlements (never a live reference)."""
        return {"uid": self.uid, "name": self.label, "email": self.email}

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "name": self.name,
            "displayName": self.display_name,
            "phone": self.phone,
            "bankName": self.bank_name,
            "bankAccount": self.bank_account,
            "defaultCommittee": self.default_committee,
            "signature": self.signature,
            "role": self.role,
            "projectIds": list(self.project_ids or []),
            "bankBookUrl": self.bank_book_url or self.bank_book_drive_url,
            "bankBookStoragePath": self.bank_book_storage_path,
            "schemaVersion": self.schema_version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<AppUser {self.uid} role={self.role}>"
