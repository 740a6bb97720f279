"""API-level tests for the analytics router."""
from __future__ import annotations

import asyncio
import os
import sys
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


TMP = Path(__file__).resolve().parent / ".tmp_hr"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["AUTH_ENABLED"] = "false"
os.environ["HR_DB_PATH"] = str(TMP / "hr_analytics.db")
os.environ["TENANT_DATA_DIR"] = str(TMP / "tenants")
os.environ["BACKUP_DIR"] = str(TMP / "backups")
os.environ["BACKUP_SCHEDULE_ENABLED"] = "false"

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.main import app  # noqa: E402
from app.core.errors import OperationCancelled, StoreError  # noqa: E402
from app.routers.analytics import run_cancellable  # noqa: E402
from app.services.analytics_engine import AnalyticsEngine, get_analytics_engine  # noqa: E402


client = TestClient(app)


def _tenant() -> dict:
    return {"X-Tenant-ID": f"t-{uuid.uuid4().hex[:10]}"}


def _add_employee(headers: dict, employee_id: str, team: str, department: str = "Eng") -> None:
    response = client.post(
        "/employees",
        json={"employee_id": employee_id, "name": f"Person {employee_id}", "team": team, "department": department},
        headers=headers,
    )
    assert response.status_code == 201


def _add_contribution(headers: dict, employee_id: str, score: float, when: str) -> None:
    response = client.post(
        "/contributions",
        json={
            "employee_id": employee_id,
            "problem_solving_score": score,
            "collaboration_score": score,
            "initiative_score": score,
            "overall_score": score,
            "calculated_at": when,
        },
        headers=headers,
    )
    assert response.status_code == 201


def test_root_and_health():
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["endpoints"]["analytics"] == "/analytics"


def test_team_average_over_latest_scores():
    headers = _tenant()
    _add_employee(headers, "emp1", "A")
    _add_employee(headers, "emp2", "A")
    _add_contribution(headers, "emp1", 80, "2024-01-01T00:00:00Z")
    _add_contribution(headers, "emp2", 60, "2024-01-01T00:00:00Z")

    response = client.get("/analytics/team/A", headers=headers)

    assert response.status_code == 200
    payload = response.json()
    assert payload["member_count"] == 2
    assert payload["average_scores"]["overall_score"] == 70.0


def test_unknown_team_is_404():
    response = client.get("/analytics/team/Nope", headers=_tenant())
    assert response.status_code == 404
    assert response.json()["detail"] == "Team not found or has no employees: Nope"


def test_team_data_is_isolated_between_tenants():
    first, second = _tenant(), _tenant()
    _add_employee(first, "emp1", "A")
    _add_contribution(first, "emp1", 90, "2024-01-01T00:00:00Z")

    assert client.get("/analytics/team/A", headers=first).status_code == 200
    assert client.get("/analytics/team/A", headers=second).status_code == 404


def test_employee_metrics_and_history():
    headers = _tenant()
    _add_employee(headers, "emp1", "A")
    _add_contribution(headers, "emp1", 50, "2024-02-01T00:00:00Z")
    _add_contribution(headers, "emp1", 75, "2024-03-01T00:00:00Z")
    _add_contribution(headers, "emp1", 25, "2024-01-01T00:00:00Z")

    metrics = client.get("/analytics/employee/emp1", headers=headers).json()
    assert metrics["current_scores"]["overall_score"] == 75.0

    history = client.get("/analytics/employee/emp1/history", headers=headers).json()
    assert [point["overall_score"] for point in history] == [25.0, 50.0, 75.0]


def test_unknown_employee_is_404():
    assert client.get("/analytics/employee/ghost", headers=_tenant()).status_code == 404


def test_department_stats_and_top_contributors():
    headers = _tenant()
    _add_employee(headers, "e1", "A", "Eng")
    _add_employee(headers, "e2", "B", "Eng")
    _add_employee(headers, "e3", "C", "Sales")
    _add_contribution(headers, "e1", 90, "2024-01-01T00:00:00Z")
    _add_contribution(headers, "e2", 30, "2024-01-01T00:00:00Z")

    department = client.get("/analytics/department/Eng", headers=headers).json()
    assert department["team_count"] == 2
    assert department["employee_count"] == 2
    assert department["average_scores"]["overall_score"] == 60.0

    stats = client.get("/analytics/stats", headers=headers).json()
    assert stats["total_employees"] == 3
    assert stats["average_scores"]["overall_score"] == 60.0

    top = client.get("/analytics/top-contributors", headers=headers).json()
    assert [row["employee_id"] for row in top] == ["e1", "e2", "e3"]


def test_invalid_tenant_header_is_rejected():
    response = client.get("/analytics/stats", headers={"X-Tenant-ID": "../etc"})
    assert response.status_code == 400


class _BrokenStore:
    def query(self, *args, **kwargs):
        raise StoreError("database is locked")

    def insert(self, *args, **kwargs):
        raise StoreError("database is locked")


def test_store_failure_maps_to_500_with_operation_label():
    app.dependency_overrides[get_analytics_engine] = lambda: AnalyticsEngine(_BrokenStore())
    try:
        response = client.get("/analytics/stats", headers=_tenant())
    finally:
        app.dependency_overrides.pop(get_analytics_engine, None)

    assert response.status_code == 500
    assert response.json()["detail"].startswith("Failed to get overall stats")


def test_latest_scores_follow_time_across_utc_offsets():
    headers = _tenant()
    _add_employee(headers, "emp1", "A")
    _add_contribution(headers, "emp1", 50, "2024-06-01T12:00:00+00:00")
    # 10:00 at -05:00 is 15:00 UTC, the later of the two
    _add_contribution(headers, "emp1", 90, "2024-06-01T10:00:00-05:00")

    metrics = client.get("/analytics/employee/emp1", headers=headers).json()
    history = client.get("/analytics/employee/emp1/history", headers=headers).json()

    assert metrics["current_scores"]["overall_score"] == 90.0
    assert history[-1]["overall_score"] == 90.0
    assert history[-1]["date"] == "2024-06-01T15:00:00.000000+00:00"


def test_unparseable_contribution_timestamp_is_400():
    headers = _tenant()
    _add_employee(headers, "emp1", "A")

    response = client.post(
        "/contributions",
        json={"employee_id": "emp1", "overall_score": 50, "calculated_at": "last tuesday"},
        headers=headers,
    )

    assert response.status_code == 400


class _DisconnectedRequest:
    class url:
        path = "/analytics/stats"

    async def is_disconnected(self) -> bool:
        return True


def test_client_disconnect_cancels_running_analytics():
    seen = {}

    def slow_operation(tenant_id, cancel):
        seen["cancelled"] = cancel.wait(timeout=5)
        raise OperationCancelled("Operation cancelled by caller")

    with pytest.raises(OperationCancelled):
        asyncio.run(run_cancellable(_DisconnectedRequest(), slow_operation, "acme"))
    assert seen["cancelled"] is True
