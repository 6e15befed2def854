"""Budget usage and director-approval threshold tests."""

import pytest

from reimburse.services import request_lifecycle, settlement_service
from reimburse.services.budget_policy import (
    budget_usage_by_code,
    compute_budget_usage,
    project_budget_usage,
    project_spent,
    requires_director_approval,
)
from tests.conftest import auth_headers, make_ctx, request_payload


class TestComputeBudgetUsage:
    def test_at_warning_threshold(self):
        usage = compute_budget_usage(85, 100, 85)
        assert usage.percent == 85
        assert usage.warning is True
        assert usage.exceeded is False

    def test_fully_spent_is_exceeded(self):
        usage = compute_budget_usage(100, 100, 85)
        assert usage.percent == 100
        assert usage.warning is True
        assert usage.exceeded is True

    def test_below_threshold(self):
        usage = compute_budget_usage(500_000, 1_000_000, 85)
        assert (usage.percent, usage.warning, usage.exceeded) == (50, False, False)

    @pytest.mark.parametrize("spent,total,expected", [
        (845, 1000, 85),     # 84.5 rounds half up
        (8449, 10000, 84),
        (1, 3, 33),
        (2, 3, 67),
        (1500, 1000, 150),
    ])
    def test_rounding(self, spent, total, expected):
        assert compute_budget_usage(spent, total, 85).percent == expected

    @pytest.mark.parametrize("total", [0, -10, None])
    def test_no_budget_configured(self, total):
        assert compute_budget_usage(100, total, 85) is None

    def test_to_dict(self):
        assert compute_budget_usage(85, 100, 85).to_dict() == {
            "spent": 85, "totalBudget": 100, "percent": 85, "warning": True, "exceeded": False,
        }


class TestDirectorApproval:
    @pytest.mark.parametrize("amount,expected", [
        (599_999, False),
        (600_000, True),
        (1_200_000, True),
    ])
    def test_threshold_is_inclusive(self, amount, expected):
        assert requires_director_approval(amount, 600_000) is expected


class TestProjectUsage:
    def _approved(self, requester, approver, amount):
        req = request_lifecycle.create_request(
            make_ctx(requester),
            request_payload(items=[{"description": "Venue", "budgetCode": 1, "amount": amount}]),
        )
        request_lifecycle.approve_request(make_ctx(approver), req.id)
        return req.id

    def test_counts_approved_and_settled_only(self, requester, approver):
        settled = self._approved(requester, approver, 300_000)
        self._approved(requester, approver, 200_000)
        request_lifecycle.create_request(make_ctx(requester), request_payload())  # pending
        settlement_service.settle_requests(make_ctx(approver), [settled])

        assert project_spent("proj-a") == 500_000

    def test_project_usage_uses_project_threshold(self, project, requester, approver):
        self._approved(requester, approver, 850_000)
        usage = project_budget_usage(project)
        assert usage.percent == 85
        assert usage.warning is True
        assert usage.exceeded is False

    def test_usage_by_code(self, project, requester, approver):
        self._approved(requester, approver, 450_000)
        rows = {row["budgetCode"]: row for row in budget_usage_by_code(project)}
        assert rows["1"]["spent"] == 450_000
        assert rows["1"]["usage"]["percent"] == 90
        assert rows["2"]["spent"] == 0

    def test_budget_endpoint(self, client, requester, approver):
        self._approved(requester, approver, 1_000_000)
        res = client.get("/api/v1/projects/proj-a/budget", headers=auth_headers("alice"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["usage"]["exceeded"] is True
        assert body["spent"] == 1_000_000
        assert body["directorApprovalThreshold"] == 600_000
