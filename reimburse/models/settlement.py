"""
Settlement model: one row per batch-settle action.

A Settlement is a materialised view over the approved requests it settles:
payee, banking fields, items, receipts and totals are copied at aggregation
time so reports stay stable if the source requests are later read
differently.  Only reimburse.services.settlement_service writes this table,
and after creation only the signature columns may change.
"""

import uuid
from datetime import datetime, timezone

from reimburse.models import CURRENT_SCHEMA_VERSION, db


class Settlement(db.Model):
    __tablename__ = "settlements"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.JSON, nullable=False)

    payee = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(40), nullable=False)
    bank_name = db.Column(db.String(100), nullable=False)
    bank_account = db.Column(db.String(100), nullable=False)
    session = db.Column(db.String(100), nullable=False, default="")
    committee = db.Column(db.String(30), nullable=False)
    project_id = db.Column(db.String(64), db.ForeignKey("projects.id"), nullable=True, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    request_ids = db.Column(db.JSON, nullable=False, default=list)
    receipts = db.Column(db.JSON, nullable=False, default=list)

    requested_by_signature = db.Column(db.Text, nullable=True)
    approval_signature = db.Column(db.Text, nullable=True)
    approved_by = db.Column(db.JSON, nullable=True)
    director_approval_required = db.Column(db.Boolean, nullable=False, default=False)

    schema_version = db.Column(db.Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "createdBy": self.created_by,
            "payee": self.payee,
            "phone": self.phone,
            "bankName": self.bank_name,
            "bankAccount": self.bank_account,
            "session": self.session,
            "committee": self.committee,
            "projectId": self.project_id,
            "items": list(self.items or []),
            "totalAmount": self.total_amount,
            "requestIds": list(self.request_ids or []),
            "receipts": list(self.receipts or []),
            "requestedBySignature": self.requested_by_signature,
            "approvalSignature": self.approval_signature,
            "approvedBy": self.approved_by,
            "directorApprovalRequired": self.director_approval_required,
            "schemaVersion": self.schema_version,
        }

    def __repr__(self) -> str:
        return f"<Settlement {self.id} requests={len(self.request_ids or [])} total={self.total_amount}>"
