"""
PaymentRequest model: one row per reimbursement submission.

Lifecycle: pending → approved → settled, pending → rejected, and any
non-terminal status → cancelled.  A rejected request is resubmitted by
creating a NEW row that points back through ``original_request_id``; the
rejected row itself is never edited again.

``version`` increases on every status transition and is used together with
``status`` as the precondition of conditional writes (see
reimburse.services.request_lifecycle).
"""

import uuid
from datetime import datetime, timezone

from reimburse.models import CURRENT_SCHEMA_VERSION, db

REQUEST_STATUSES = ("pending", "approved", "rejected", "settled", "cancelled")
TERMINAL_STATUSES = frozenset({"settled", "cancelled"})

REQUEST_TRANSITIONS = {
    "approve": {"from": ["pending"], "to": "approved"},
    "reject": {"from": ["pending"], "to": "rejected"},
    "settle": {"from": ["approved"], "to": "settled"},
    "cancel": {"from": ["pending", "approved", "rejected"], "to": "cancelled"},
}

MAX_ITEMS_PER_REQUEST = 10


class PaymentRequest(db.Model):
    __tablename__ = "requests"
    __table_args__ = (
        db.Index("ix_requests_project_status", "project_id", "status"),
        db.Index("ix_requests_requester", "requested_by_uid"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    status = db.Column(db.String(20), nullable=False, default="pending")

    # Payee / banking: free text, not validated against a bank registry
    payee = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(40), nullable=False)
    bank_name = db.Column(db.String(100), nullable=False)
    bank_account = db.Column(db.String(100), nullable=False)
    date = db.Column(db.String(10), nullable=False, comment="YYYY-MM-DD")
    session = db.Column(db.String(100), nullable=False, default="")
    committee = db.Column(db.String(30), nullable=False)
    project_id = db.Column(db.String(64), db.ForeignKey("projects.id"), nullable=True, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    receipts = db.Column(db.JSON, nullable=False, default=list)
    comments = db.Column(db.Text, nullable=False, default="")

    requested_by = db.Column(db.JSON, nullable=False, comment="{uid, name, email} at creation time")
    requested_by_uid = db.Column(db.String(128), nullable=False)

    approved_by = db.Column(db.JSON, nullable=True)
    approval_signature = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    settlement_id = db.Column(db.String(36), nullable=True, index=True)
    original_request_id = db.Column(db.String(36), nullable=True)

    director_approval_required = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Advisory: total_amount >= project director threshold at submission",
    )

    version = db.Column(db.Integer, nullable=False, default=1)
    schema_version = db.Column(db.Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
            "payee": self.payee,
            "phone": self.phone,
            "bankName": self.bank_name,
            "bankAccount": self.bank_account,
            "date": self.date,
            "session": self.session,
            "committee": self.committee,
            "projectId": self.project_id,
            "items": list(self.items or []),
            "totalAmount": self.total_amount,
            "receipts": list(self.receipts or []),
            "comments": self.comments,
            "requestedBy": self.requested_by,
            "approvedBy": self.approved_by,
            "approvalSignature": self.approval_signature,
            "approvedAt": self.approved_at.isoformat() if self.approved_at else None,
            "rejectionReason": self.rejection_reason,
            "settlementId": self.settlement_id,
            "originalRequestId": self.original_request_id,
            "directorApprovalRequired": self.director_approval_required,
            "version": self.version,
            "schemaVersion": self.schema_version,
        }

    def __repr__(self) -> str:
        return f"<PaymentRequest {self.id} {self.status} total={self.total_amount}>"
