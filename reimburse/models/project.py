"""Project (budget scope) and key/value Settings models."""

from datetime import datetime, timezone

from reimburse.models import CURRENT_SCHEMA_VERSION, db

DEFAULT_DIRECTOR_APPROVAL_THRESHOLD = 600_000
DEFAULT_BUDGET_WARNING_THRESHOLD = 85

GLOBAL_SETTINGS_KEY = "global"
LEGACY_BUDGET_CONFIG_KEY = "budget-config"
LEGACY_DOCUMENT_NO_KEY = "document-no"


class Project(db.Model):
    """Tenant/budget scope for requests and settlements."""

    __tablename__ = "projects"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    document_no = db.Column(db.String(100), nullable=False, default="")
    budget_config = db.Column(
        db.JSON,
        nullable=True,
        comment='{"totalBudget": int, "byCode": {code: int}}',
    )
    director_approval_threshold = db.Column(
        db.Integer, nullable=False, default=DEFAULT_DIRECTOR_APPROVAL_THRESHOLD,
    )
    budget_warning_threshold = db.Column(
        db.Integer, nullable=False, default=DEFAULT_BUDGET_WARNING_THRESHOLD,
        comment="Percent of total budget at which the warning banner shows",
    )
    member_uids = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.JSON, nullable=True)

    schema_version = db.Column(db.Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def total_budget(self) -> int:
        return int((self.budget_config or {}).get("totalBudget") or 0)

    def to_dict(self) -> dict:
        budget = self.budget_config or {}
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "documentNo": self.document_no,
            "budgetConfig": {
                "totalBudget": int(budget.get("totalBudget") or 0),
                "byCode": dict(budget.get("byCode") or {}),
            },
            "directorApprovalThreshold": self.director_approval_threshold,
            "budgetWarningThreshold": self.budget_warning_threshold,
            "memberUids": list(self.member_uids or []),
            "isActive": self.is_active,
            "createdBy": self.created_by,
            "schemaVersion": self.schema_version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id} active={self.is_active}>"


class Setting(db.Model):
    """Singleton settings documents keyed by name (``global``, ``budget-config``)."""

    __tablename__ = "settings"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.JSON, nullable=False, default=dict)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Setting {self.key}>"
