"""
Audit trail for request, settlement, project, user and file events.

Rows are append-only and are written in the same transaction as the change
they describe: ``write_audit`` adds and flushes but never commits, so a
rolled-back transition leaves no audit row behind.

Usage:
    from reimburse.models.audit import write_audit

    write_audit(
        entity_type="request",
        entity_id=req.id,
        action="request.approve",
        actor_uid=ctx.uid,
        project_id=req.project_id,
        diff={"status": {"old": "pending", "new": "approved"}},
    )
"""

from datetime import datetime, timezone

from reimburse.models import db

ENTITY_TYPES = {"request", "settlement", "project", "user", "file"}


class AuditLog(db.Model):
    """One row per lifecycle action.  ``diff`` carries old→new per field."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="request | settlement | project | user | file",
    )
    entity_id = db.Column(db.String(255), nullable=False)
    action = db.Column(
        db.String(60), nullable=False,
        comment="request.approve | settlement.create | project.deactivate | …",
    )
    actor_uid = db.Column(db.String(128), nullable=False, default="system")
    project_id = db.Column(db.String(64), nullable=True)
    diff = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_uid": self.actor_uid,
            "project_id": self.project_id,
            "diff": self.diff or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_uid: str = "system",
    project_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """Add an audit row to the current session.  Caller owns the commit."""
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_uid=actor_uid,
        project_id=project_id,
        diff=diff or {},
    )
    db.session.add(log)
    db.session.flush()
    return log
