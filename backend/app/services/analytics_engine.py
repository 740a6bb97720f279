"""Tenant-scoped analytics: employee, team, department and organisation metrics.

Every operation issues its store queries in a fixed order and reduces the
results only once all fetches have completed, so a failure never yields a
partial result. Store failures and malformed stored scores surface as
`AnalyticsError` labelled with the operation; `NotFoundError` passes
through untouched so callers can map it to a 404.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import wraps
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from app.core.config import Settings, get_settings
from app.core.errors import AnalyticsError, NotFoundError, OperationCancelled
from app.core.logging import logger
from app.models.analytics import (
    DepartmentMetrics,
    EmployeeMetrics,
    HistoryPoint,
    OverallStats,
    TeamMetrics,
    TopContributor,
)
from app.models.records import (
    SCORE_FIELDS,
    ContributionRecord,
    EmployeeRecord,
    EntityKind,
    ScoreSet,
)
from app.services.hr_store import (
    BoundedFetch,
    TenantStore,
    count_records,
    get_tenant_store,
    raise_if_cancelled,
)

T = TypeVar("T")

_CENTS = Decimal("0.01")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def round_score(value: float) -> float:
    """Round to 2 decimals, halves away from zero (80.125 -> 80.13)."""
    return float(Decimal(repr(value)).quantize(_CENTS, rounding=ROUND_HALF_UP))


def _timestamp_key(value: str) -> datetime:
    text = (value or "").strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def average_scores(contributions: Sequence[ContributionRecord]) -> ScoreSet:
    """Field-wise rounded mean; an empty input gives all zeros."""
    if not contributions:
        return ScoreSet.zero()
    count = len(contributions)
    totals = {
        score_field: sum(getattr(c.scores, score_field) for c in contributions)
        for score_field in SCORE_FIELDS
    }
    return ScoreSet(**{name: round_score(total / count) for name, total in totals.items()})


def _labelled(operation: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Wrap unexpected failures in AnalyticsError; pass NotFound and cancellation through."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(self: "AnalyticsEngine", tenant_id: str, *args, **kwargs) -> T:
            try:
                return func(self, tenant_id, *args, **kwargs)
            except (NotFoundError, OperationCancelled):
                raise
            except Exception as exc:
                logger.error(
                    f"Failed to {operation}",
                    tenant_id=tenant_id,
                    operation=func.__name__,
                    error=str(exc),
                )
                raise AnalyticsError(operation, exc) from exc

        return wrapper

    return decorator


@dataclass(frozen=True)
class AnalyticsLimits:
    employee_page_size: int = 1000
    contribution_page_size: int = 100
    max_records: int = 10000
    top_contributors: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalyticsLimits":
        return cls(
            employee_page_size=settings.analytics_employee_page_size,
            contribution_page_size=settings.analytics_contribution_page_size,
            max_records=settings.analytics_max_records,
            top_contributors=settings.analytics_top_contributors,
        )


class AnalyticsEngine:
    """Reduces a tenant's raw records into metric views."""

    def __init__(self, store: TenantStore, limits: Optional[AnalyticsLimits] = None) -> None:
        self._store = store
        self._limits = limits or AnalyticsLimits()

    # -- fetch helpers -------------------------------------------------

    def _employee(self, tenant_id: str, employee_id: str) -> EmployeeRecord:
        result = self._store.query(
            tenant_id,
            EntityKind.EMPLOYEES,
            filters={"employee_id": employee_id},
            limit=1,
        )
        if not result.records:
            logger.warning("Employee not found for metrics", employee_id=employee_id, tenant_id=tenant_id)
            raise NotFoundError("employee", employee_id, tenant_id)
        return EmployeeRecord.from_store(result.records[0])

    def _employees(self, tenant_id: str, cancel: Optional[threading.Event]) -> List[EmployeeRecord]:
        fetch = BoundedFetch(
            self._store,
            tenant_id,
            EntityKind.EMPLOYEES,
            page_size=self._limits.employee_page_size,
            max_records=self._limits.max_records,
            cancel=cancel,
        )
        employees = [EmployeeRecord.from_store(row) for row in fetch]
        if fetch.truncated:
            logger.warning("Employee fetch hit record cap", tenant_id=tenant_id, cap=self._limits.max_records)
        return employees

    def _contributions(
        self, tenant_id: str, employee_id: str, cancel: Optional[threading.Event]
    ) -> List[ContributionRecord]:
        """The employee's contributions, ascending by parsed time; ties keep insertion order."""
        fetch = BoundedFetch(
            self._store,
            tenant_id,
            EntityKind.CONTRIBUTIONS,
            page_size=self._limits.contribution_page_size,
            max_records=self._limits.max_records,
            filters={"employee_id": employee_id},
            cancel=cancel,
        )
        contributions = [ContributionRecord.from_store(row) for row in fetch]
        contributions.sort(key=lambda c: _timestamp_key(c.calculated_at))
        return contributions

    def _latest_contribution(
        self, tenant_id: str, employee_id: str, cancel: Optional[threading.Event] = None
    ) -> Optional[ContributionRecord]:
        contributions = self._contributions(tenant_id, employee_id, cancel)
        return contributions[-1] if contributions else None

    def _latest_for(
        self,
        tenant_id: str,
        employees: Sequence[EmployeeRecord],
        cancel: Optional[threading.Event],
    ) -> Dict[str, Optional[ContributionRecord]]:
        latest: Dict[str, Optional[ContributionRecord]] = {}
        for employee in employees:
            raise_if_cancelled(cancel)
            latest[employee.employee_id] = self._latest_contribution(tenant_id, employee.employee_id, cancel)
        return latest

    # -- operations ----------------------------------------------------

    @_labelled("get employee metrics")
    def employee_metrics(
        self, tenant_id: str, employee_id: str, cancel: Optional[threading.Event] = None
    ) -> EmployeeMetrics:
        logger.debug("Fetching employee metrics", employee_id=employee_id, tenant_id=tenant_id)
        employee = self._employee(tenant_id, employee_id)
        raise_if_cancelled(cancel)
        latest = self._latest_contribution(tenant_id, employee_id, cancel)

        return EmployeeMetrics(
            employee_id=employee.employee_id,
            name=employee.name,
            current_scores=latest.scores if latest else ScoreSet.zero(),
            team=employee.team,
            department=employee.department,
        )

    @_labelled("get employee history")
    def employee_history(
        self, tenant_id: str, employee_id: str, cancel: Optional[threading.Event] = None
    ) -> List[HistoryPoint]:
        history = [
            HistoryPoint(date=c.calculated_at, **c.scores.model_dump())
            for c in self._contributions(tenant_id, employee_id, cancel)
        ]

        logger.info("Fetched employee history", employee_id=employee_id, count=len(history), tenant_id=tenant_id)
        return history

    def _group_members(
        self,
        tenant_id: str,
        kind: str,
        label: str,
        attribute: str,
        cancel: Optional[threading.Event],
    ) -> List[EmployeeRecord]:
        members = [e for e in self._employees(tenant_id, cancel) if getattr(e, attribute) == label]
        if not members:
            logger.warning(f"{kind.capitalize()} not found or has no employees", label=label, tenant_id=tenant_id)
            raise NotFoundError(kind, label, tenant_id)
        return members

    @_labelled("get team metrics")
    def team_metrics(
        self, tenant_id: str, team_id: str, cancel: Optional[threading.Event] = None
    ) -> TeamMetrics:
        members = self._group_members(tenant_id, "team", team_id, "team", cancel)
        latest = self._latest_for(tenant_id, members, cancel)
        contributions = [c for c in latest.values() if c is not None]
        if not contributions:
            logger.info("Team has no contributions yet", team_id=team_id, tenant_id=tenant_id)

        return TeamMetrics(
            team_id=team_id,
            team_name=team_id,
            average_scores=average_scores(contributions),
            member_count=len(members),
        )

    @_labelled("get department metrics")
    def department_metrics(
        self, tenant_id: str, dept_id: str, cancel: Optional[threading.Event] = None
    ) -> DepartmentMetrics:
        members = self._group_members(tenant_id, "department", dept_id, "department", cancel)
        teams = {member.team for member in members}
        latest = self._latest_for(tenant_id, members, cancel)
        contributions = [c for c in latest.values() if c is not None]
        if not contributions:
            logger.info("Department has no contributions yet", dept_id=dept_id, tenant_id=tenant_id)

        return DepartmentMetrics(
            department_id=dept_id,
            department_name=dept_id,
            average_scores=average_scores(contributions),
            team_count=len(teams),
            employee_count=len(members),
        )

    @_labelled("get overall stats")
    def overall_stats(self, tenant_id: str, cancel: Optional[threading.Event] = None) -> OverallStats:
        cap = self._limits.max_records
        total_employees = count_records(self._store, tenant_id, EntityKind.EMPLOYEES, cap)
        raise_if_cancelled(cancel)
        total_interactions = count_records(self._store, tenant_id, EntityKind.INTERACTIONS, cap)
        raise_if_cancelled(cancel)
        total_kudos = count_records(self._store, tenant_id, EntityKind.KUDOS, cap)

        fetch = BoundedFetch(
            self._store,
            tenant_id,
            EntityKind.CONTRIBUTIONS,
            page_size=self._limits.contribution_page_size,
            max_records=cap,
            order_by="calculated_at",
            descending=True,
            cancel=cancel,
        )
        contributions = [ContributionRecord.from_store(row) for row in fetch]

        stats = OverallStats(
            total_employees=total_employees,
            total_interactions=total_interactions,
            total_kudos=total_kudos,
            average_scores=average_scores(contributions),
            contributions_sampled=len(contributions),
            contributions_truncated=fetch.truncated,
        )
        logger.info(
            "Fetched overall statistics",
            tenant_id=tenant_id,
            total_employees=total_employees,
            total_interactions=total_interactions,
            total_kudos=total_kudos,
            contributions=len(contributions),
        )
        return stats

    @_labelled("get top contributors")
    def top_contributors(
        self, tenant_id: str, cancel: Optional[threading.Event] = None
    ) -> List[TopContributor]:
        employees = self._employees(tenant_id, cancel)
        latest = self._latest_for(tenant_id, employees, cancel)

        ranked = [
            TopContributor(
                employee_id=employee.employee_id,
                name=employee.name,
                overall_score=latest[employee.employee_id].scores.overall_score
                if latest[employee.employee_id]
                else 0.0,
                department=employee.department,
                team=employee.team,
            )
            for employee in employees
        ]
        ranked.sort(key=lambda row: row.overall_score, reverse=True)
        return ranked[: self._limits.top_contributors]


def get_analytics_engine() -> AnalyticsEngine:
    return AnalyticsEngine(get_tenant_store(), AnalyticsLimits.from_settings(get_settings()))
