"""
Budget / threshold policy.

``compute_budget_usage`` and ``requires_director_approval`` are pure.  The
project-level helpers read request totals from the database but never
write.

Spend counts requests in ``approved`` and ``settled`` status: money that has
been committed, whether or not it has been paid out yet.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select

from reimburse.models import db
from reimburse.models.request import PaymentRequest

SPENT_STATUSES = ("approved", "settled")


@dataclass(frozen=True)
class BudgetUsage:
    spent: int
    total_budget: int
    percent: int
    warning: bool
    exceeded: bool

    def to_dict(self) -> dict:
        return {
            "spent": self.spent,
            "totalBudget": self.total_budget,
            "percent": self.percent,
            "warning": self.warning,
            "exceeded": self.exceeded,
        }


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_budget_usage(spent: int, total_budget: int, warning_threshold: int) -> BudgetUsage | None:
    """Usage flags for ``spent`` against ``total_budget``.

    Returns None when no budget is configured (``total_budget <= 0``).

    >>> compute_budget_usage(85, 100, 85).warning
    True
    """
    if not total_budget or total_budget <= 0:
        return None
    percent = _round_half_up(Decimal(100) * Decimal(spent) / Decimal(total_budget))
    return BudgetUsage(
        spent=spent,
        total_budget=total_budget,
        percent=percent,
        warning=percent >= warning_threshold,
        exceeded=percent >= 100,
    )


def requires_director_approval(amount: int, threshold: int) -> bool:
    """Advisory flag only; never blocks a write."""
    return amount >= threshold


def project_spent(project_id: str) -> int:
    stmt = (
        select(func.coalesce(func.sum(PaymentRequest.total_amount), 0))
        .where(PaymentRequest.project_id == project_id)
        .where(PaymentRequest.status.in_(SPENT_STATUSES))
    )
    return int(db.session.scalar(stmt) or 0)


def project_budget_usage(project) -> BudgetUsage | None:
    return compute_budget_usage(
        project_spent(project.id),
        project.total_budget,
        project.budget_warning_threshold,
    )


def budget_usage_by_code(project) -> list[dict]:
    """Spend per budget code, joined with ``budget_config.byCode`` limits.

    Items live in a JSON column, so the sum is done in Python.
    """
    stmt = (
        select(PaymentRequest.items)
        .where(PaymentRequest.project_id == project.id)
        .where(PaymentRequest.status.in_(SPENT_STATUSES))
    )
    spent_by_code: dict[str, int] = {}
    for items in db.session.scalars(stmt):
        for item in items or []:
            code = str(item.get("budgetCode"))
            spent_by_code[code] = spent_by_code.get(code, 0) + int(item.get("amount") or 0)

    by_code = (project.budget_config or {}).get("byCode") or {}
    rows = []
    for code in sorted(set(spent_by_code) | set(by_code), key=lambda c: (len(c), c)):
        budget = int(by_code.get(code) or 0)
        usage = compute_budget_usage(spent_by_code.get(code, 0), budget, project.budget_warning_threshold)
        rows.append({
            "budgetCode": code,
            "spent": spent_by_code.get(code, 0),
            "budget": budget,
            "usage": usage.to_dict() if usage else None,
        })
    return rows
