"""Unit tests for the analytics aggregation engine."""
from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any, Dict, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.core.errors import AnalyticsError, NotFoundError, OperationCancelled, StoreError  # noqa: E402
from app.models.records import EntityKind  # noqa: E402
from app.services.analytics_engine import (  # noqa: E402
    AnalyticsEngine,
    AnalyticsLimits,
    round_score,
)
from app.services.hr_store import QueryResult, SQLiteTenantStore  # noqa: E402


class FakeStore:
    """In-memory TenantStore that records every query it serves."""

    def __init__(self) -> None:
        self.rows: Dict[str, Dict[EntityKind, List[Dict[str, Any]]]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.fail_on: EntityKind | None = None

    def add(self, tenant_id: str, kind: EntityKind, **row: Any) -> None:
        self.rows.setdefault(tenant_id, {}).setdefault(kind, []).append(dict(row, tenant_id=tenant_id))

    def query(self, tenant_id, kind, filters=None, order_by=None, descending=False, offset=0, limit=100):
        self.calls.append({"tenant_id": tenant_id, "kind": kind, "offset": offset, "limit": limit})
        if self.fail_on == kind:
            raise StoreError("connection reset")
        rows = [
            row
            for row in self.rows.get(tenant_id, {}).get(kind, [])
            if all(row.get(key) == value for key, value in (filters or {}).items())
        ]
        if order_by:
            rows = sorted(rows, key=lambda row: row.get(order_by) or "", reverse=descending)
        return QueryResult(records=rows[offset : offset + limit], total_count=len(rows))

    def insert(self, tenant_id, kind, record):
        self.add(tenant_id, kind, **record)
        return dict(record)

    def queries_for(self, kind: EntityKind) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == kind]


def _employee(store: FakeStore, tenant: str, employee_id: str, team: str, department: str = "Eng") -> None:
    store.add(
        tenant,
        EntityKind.EMPLOYEES,
        employee_id=employee_id,
        name=f"Employee {employee_id}",
        email=f"{employee_id}@example.com",
        team=team,
        department=department,
    )


def _contribution(store: FakeStore, tenant: str, employee_id: str, overall: Any, when: str, **scores: Any) -> None:
    store.add(
        tenant,
        EntityKind.CONTRIBUTIONS,
        employee_id=employee_id,
        problem_solving_score=scores.get("problem_solving_score", overall),
        collaboration_score=scores.get("collaboration_score", overall),
        initiative_score=scores.get("initiative_score", overall),
        overall_score=overall,
        calculated_at=when,
    )


@pytest.fixture()
def acme() -> FakeStore:
    store = FakeStore()
    _employee(store, "acme", "emp1", "A")
    _employee(store, "acme", "emp2", "A")
    _contribution(store, "acme", "emp1", "80", "2024-01-01T00:00:00Z")
    _contribution(store, "acme", "emp2", "60", "2024-01-01T00:00:00Z")
    return store


def test_round_score_rounds_half_away_from_zero():
    assert round_score(80.125) == 80.13
    assert round_score(70.0) == 70.0
    assert round_score(2 / 3) == 0.67
    assert round_score(-1.005) == -1.01


def test_team_metrics_averages_latest_contribution_per_member(acme):
    metrics = AnalyticsEngine(acme).team_metrics("acme", "A")

    assert metrics.team_id == "A"
    assert metrics.team_name == "A"
    assert metrics.member_count == 2
    assert metrics.average_scores.overall_score == 70.0
    assert metrics.average_scores.problem_solving_score == 70.0


def test_team_metrics_uses_only_latest_contribution(acme):
    _contribution(acme, "acme", "emp1", "100", "2024-03-01T00:00:00Z")
    _contribution(acme, "acme", "emp1", "10", "2023-12-01T00:00:00Z")

    metrics = AnalyticsEngine(acme).team_metrics("acme", "A")

    assert metrics.average_scores.overall_score == 80.0


def test_team_without_contributions_reports_zero_scores():
    store = FakeStore()
    _employee(store, "acme", "emp1", "B")
    _employee(store, "acme", "emp2", "B")

    metrics = AnalyticsEngine(store).team_metrics("acme", "B")

    assert metrics.member_count == 2
    assert metrics.average_scores.model_dump() == {
        "problem_solving_score": 0.0,
        "collaboration_score": 0.0,
        "initiative_score": 0.0,
        "overall_score": 0.0,
    }


def test_unknown_team_raises_not_found(acme):
    with pytest.raises(NotFoundError) as excinfo:
        AnalyticsEngine(acme).team_metrics("acme", "Z")
    assert str(excinfo.value) == "Team not found or has no employees: Z"


def test_department_metrics_counts_distinct_teams():
    store = FakeStore()
    _employee(store, "acme", "e1", "A", "Eng")
    _employee(store, "acme", "e2", "A", "Eng")
    _employee(store, "acme", "e3", "B", "Eng")
    _employee(store, "acme", "e4", "C", "Sales")
    _contribution(store, "acme", "e1", "90", "2024-01-01T00:00:00Z")
    _contribution(store, "acme", "e3", "45", "2024-01-02T00:00:00Z")

    metrics = AnalyticsEngine(store).department_metrics("acme", "Eng")

    assert metrics.employee_count == 3
    assert metrics.team_count == 2
    assert metrics.average_scores.overall_score == 67.5

    with pytest.raises(NotFoundError):
        AnalyticsEngine(store).department_metrics("acme", "Legal")


def test_employee_metrics_defaults_to_zero_without_contributions():
    store = FakeStore()
    _employee(store, "acme", "emp9", "A")

    metrics = AnalyticsEngine(store).employee_metrics("acme", "emp9")

    assert metrics.name == "Employee emp9"
    assert metrics.team == "A"
    assert metrics.current_scores.overall_score == 0.0


def test_employee_metrics_unknown_employee(acme):
    with pytest.raises(NotFoundError):
        AnalyticsEngine(acme).employee_metrics("acme", "ghost")


def test_history_pages_through_all_contributions_in_ascending_order():
    store = FakeStore()
    _employee(store, "acme", "emp1", "A")
    for day in range(250):
        stamp = f"2023-{1 + day // 28:02d}-{1 + day % 28:02d}T00:00:00Z"
        _contribution(store, "acme", "emp1", str(day % 100), stamp)

    history = AnalyticsEngine(store).employee_history("acme", "emp1")

    assert len(history) == 250
    dates = [point.date for point in history]
    assert dates == sorted(dates)
    contribution_queries = store.queries_for(EntityKind.CONTRIBUTIONS)
    assert [call["offset"] for call in contribution_queries] == [0, 100, 200]


def test_history_for_employee_without_contributions_is_empty(acme):
    assert AnalyticsEngine(acme).employee_history("acme", "nobody") == []


def test_overall_stats_counts_and_averages(acme):
    acme.add("acme", EntityKind.INTERACTIONS, interaction_id="i1", content="hello")
    acme.add("acme", EntityKind.KUDOS, kudos_id="k1", message="thanks")
    acme.add("acme", EntityKind.KUDOS, kudos_id="k2", message="great job")

    stats = AnalyticsEngine(acme).overall_stats("acme")

    assert stats.total_employees == 2
    assert stats.total_interactions == 1
    assert stats.total_kudos == 2
    assert stats.average_scores.overall_score == 70.0
    assert stats.contributions_sampled == 2
    assert stats.contributions_truncated is False


def test_overall_stats_reports_truncation_at_record_cap():
    store = FakeStore()
    for index in range(8):
        _employee(store, "acme", f"e{index}", "A")
        _contribution(store, "acme", f"e{index}", "50", f"2024-01-0{index + 1}T00:00:00Z")

    stats = AnalyticsEngine(store, AnalyticsLimits(max_records=5)).overall_stats("acme")

    assert stats.total_employees == 5
    assert stats.contributions_sampled == 5
    assert stats.contributions_truncated is True


def test_overall_stats_for_empty_tenant_is_zero():
    stats = AnalyticsEngine(FakeStore()).overall_stats("empty")
    assert stats.total_employees == 0
    assert stats.average_scores.overall_score == 0.0


def test_top_contributors_returns_ten_in_non_increasing_order():
    store = FakeStore()
    for index in range(12):
        _employee(store, "acme", f"e{index:02d}", "A")
        _contribution(store, "acme", f"e{index:02d}", str((index * 37) % 100), "2024-01-01T00:00:00Z")

    top = AnalyticsEngine(store).top_contributors("acme")

    assert len(top) == 10
    scores = [row.overall_score for row in top]
    assert all(left >= right for left, right in zip(scores, scores[1:]))


def test_top_contributors_includes_employees_without_scores_at_zero():
    store = FakeStore()
    _employee(store, "acme", "first", "A")
    _employee(store, "acme", "second", "A")
    _contribution(store, "acme", "second", "40", "2024-01-01T00:00:00Z")

    top = AnalyticsEngine(store).top_contributors("acme")

    assert [row.employee_id for row in top] == ["second", "first"]
    assert top[1].overall_score == 0.0


def test_malformed_stored_score_fails_the_aggregation(acme):
    _contribution(acme, "acme", "emp2", "not-a-number", "2024-05-01T00:00:00Z")

    with pytest.raises(AnalyticsError) as excinfo:
        AnalyticsEngine(acme).team_metrics("acme", "A")
    assert str(excinfo.value).startswith("Failed to get team metrics")


def test_store_failure_is_wrapped_with_operation_label(acme):
    acme.fail_on = EntityKind.KUDOS

    with pytest.raises(AnalyticsError) as excinfo:
        AnalyticsEngine(acme).overall_stats("acme")
    assert "Failed to get overall stats" in str(excinfo.value)
    assert isinstance(excinfo.value.cause, StoreError)


def test_cancelled_operation_raises_without_result(acme):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        AnalyticsEngine(acme).top_contributors("acme", cancel=cancel)


def test_every_query_is_scoped_to_the_requested_tenant(acme):
    _employee(acme, "other", "emp1", "A")
    _contribution(acme, "other", "emp1", "5", "2025-01-01T00:00:00Z")

    AnalyticsEngine(acme).team_metrics("acme", "A")

    assert acme.calls
    assert {call["tenant_id"] for call in acme.calls} == {"acme"}


def test_engine_against_sqlite_store_isolates_tenants(tmp_path):
    store = SQLiteTenantStore(tmp_path / "hr.db")
    try:
        for tenant, score in (("acme", 80), ("globex", 20)):
            store.insert(tenant, EntityKind.EMPLOYEES, {"employee_id": "emp1", "name": "Ada", "team": "A"})
            store.insert(
                tenant,
                EntityKind.CONTRIBUTIONS,
                {
                    "employee_id": "emp1",
                    "problem_solving_score": score,
                    "collaboration_score": score,
                    "initiative_score": score,
                    "overall_score": score,
                    "calculated_at": "2024-01-01T00:00:00+00:00",
                },
            )

        engine = AnalyticsEngine(store)
        assert engine.team_metrics("acme", "A").average_scores.overall_score == 80.0
        assert engine.team_metrics("globex", "A").average_scores.overall_score == 20.0
        assert engine.overall_stats("acme").total_employees == 1
    finally:
        store.close()


def test_current_scores_match_history_across_utc_offsets():
    store = FakeStore()
    _employee(store, "acme", "emp1", "A")
    _contribution(store, "acme", "emp1", "50", "2024-06-01T12:00:00+00:00")
    # 15:00 UTC, later despite sorting first as text
    _contribution(store, "acme", "emp1", "90", "2024-06-01T10:00:00-05:00")
    engine = AnalyticsEngine(store)

    metrics = engine.employee_metrics("acme", "emp1")
    history = engine.employee_history("acme", "emp1")

    assert metrics.current_scores.overall_score == 90.0
    assert history[-1].overall_score == metrics.current_scores.overall_score
    assert engine.team_metrics("acme", "A").average_scores.overall_score == 90.0
    assert engine.top_contributors("acme")[0].overall_score == 90.0


def test_history_keeps_insertion_order_for_tied_timestamps():
    store = FakeStore()
    _employee(store, "acme", "emp1", "A")
    _contribution(store, "acme", "emp1", "10", "2024-02-01T00:00:00Z")
    _contribution(store, "acme", "emp1", "20", "2024-02-01T00:00:00Z")
    _contribution(store, "acme", "emp1", "5", "2024-01-01T00:00:00Z")
    _contribution(store, "acme", "emp1", "30", "2024-02-01T00:00:00Z")
    engine = AnalyticsEngine(store)

    history = engine.employee_history("acme", "emp1")

    assert [point.overall_score for point in history] == [5.0, 10.0, 20.0, 30.0]
    assert engine.employee_metrics("acme", "emp1").current_scores.overall_score == 30.0


def test_overall_stats_pages_through_all_250_contributions():
    store = FakeStore()
    _employee(store, "acme", "emp1", "A")
    for index in range(250):
        _contribution(store, "acme", "emp1", str(index % 100), f"2024-01-01T00:00:{index % 60:02d}Z")

    stats = AnalyticsEngine(store).overall_stats("acme")

    assert stats.contributions_sampled == 250
    assert stats.contributions_truncated is False
    # (2 * sum(0..99) + sum(0..49)) / 250
    assert stats.average_scores.overall_score == 44.5
    contribution_queries = store.queries_for(EntityKind.CONTRIBUTIONS)
    assert [call["offset"] for call in contribution_queries] == [0, 100, 200]


def test_sqlite_store_normalizes_offsets_before_ordering(tmp_path):
    store = SQLiteTenantStore(tmp_path / "hr.db")
    try:
        store.insert("acme", EntityKind.EMPLOYEES, {"employee_id": "emp1", "name": "Ada", "team": "A"})
        for score, when in ((50, "2024-06-01T12:00:00+00:00"), (90, "2024-06-01T10:00:00-05:00")):
            store.insert("acme", EntityKind.CONTRIBUTIONS, {
                "employee_id": "emp1",
                "problem_solving_score": score,
                "collaboration_score": score,
                "initiative_score": score,
                "overall_score": score,
                "calculated_at": when,
            })

        newest = store.query("acme", EntityKind.CONTRIBUTIONS, order_by="calculated_at", descending=True, limit=1)
        assert newest.records[0]["overall_score"] == "90"
        assert AnalyticsEngine(store).employee_metrics("acme", "emp1").current_scores.overall_score == 90.0
    finally:
        store.close()
