"""Tenant record models: employees, contributions, interactions, kudos."""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from app.core.errors import ScoreDecodeError


SCORE_FIELDS = (
    "problem_solving_score",
    "collaboration_score",
    "initiative_score",
    "overall_score",
)


class EntityKind(str, Enum):
    """Record kinds held per tenant by the store."""

    EMPLOYEES = "employees"
    INTERACTIONS = "interactions"
    KUDOS = "kudos"
    CONTRIBUTIONS = "contributions"


def decode_score(field: str, value: Any) -> float:
    """Parse a stored score into a finite float; blanks and garbage are errors."""
    if isinstance(value, bool):
        raise ScoreDecodeError(field, value)
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value if value is not None else "").strip()
        if not text:
            raise ScoreDecodeError(field, value)
        try:
            number = float(text)
        except ValueError as exc:
            raise ScoreDecodeError(field, value) from exc
    if math.isnan(number) or math.isinf(number):
        raise ScoreDecodeError(field, value)
    return number


class ScoreSet(BaseModel):
    """The four contribution scores."""

    problem_solving_score: float = 0.0
    collaboration_score: float = 0.0
    initiative_score: float = 0.0
    overall_score: float = 0.0

    @classmethod
    def zero(cls) -> "ScoreSet":
        return cls()


class EmployeeRecord(BaseModel):
    employee_id: str
    name: str
    email: str = ""
    team: Optional[str] = None
    department: Optional[str] = None
    role: Optional[str] = None
    hire_date: Optional[str] = None

    @classmethod
    def from_store(cls, row: Mapping[str, Any]) -> "EmployeeRecord":
        return cls(
            employee_id=str(row["employee_id"]),
            name=str(row.get("name") or ""),
            email=str(row.get("email") or ""),
            team=row.get("team"),
            department=row.get("department"),
            role=row.get("role"),
            hire_date=row.get("hire_date"),
        )


class ContributionRecord(BaseModel):
    """A decoded contribution row. Construct via `from_store` for stored data."""

    contribution_id: Optional[str] = None
    employee_id: str
    scores: ScoreSet
    calculated_at: str

    @classmethod
    def from_store(cls, row: Mapping[str, Any]) -> "ContributionRecord":
        scores = {field: decode_score(field, row.get(field)) for field in SCORE_FIELDS}
        return cls(
            contribution_id=row.get("contribution_id"),
            employee_id=str(row["employee_id"]),
            scores=ScoreSet(**scores),
            calculated_at=str(row.get("calculated_at") or ""),
        )


class EmployeeCreateRequest(BaseModel):
    employee_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str = ""
    team: Optional[str] = None
    department: Optional[str] = None
    role: Optional[str] = None
    hire_date: Optional[str] = None


class InteractionCreateRequest(BaseModel):
    from_employee_id: str = Field(min_length=1)
    to_employee_id: str = Field(min_length=1)
    interaction_type: str = "message"
    content: str = ""
    timestamp: Optional[str] = None


class KudosCreateRequest(BaseModel):
    from_employee_id: str = Field(min_length=1)
    to_employee_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    timestamp: Optional[str] = None


class ContributionCreateRequest(BaseModel):
    """Scores left unset are computed from the employee's interactions and kudos."""

    employee_id: str = Field(min_length=1)
    problem_solving_score: Optional[float] = Field(default=None, ge=0, le=100)
    collaboration_score: Optional[float] = Field(default=None, ge=0, le=100)
    initiative_score: Optional[float] = Field(default=None, ge=0, le=100)
    overall_score: Optional[float] = Field(default=None, ge=0, le=100)
    calculated_at: Optional[str] = None

    def provided_scores(self) -> Dict[str, float]:
        return {
            field: getattr(self, field)
            for field in SCORE_FIELDS
            if getattr(self, field) is not None
        }


class RecordPage(BaseModel):
    items: List[Dict[str, Any]]
    page: int
    limit: int
    total_count: int
    total_pages: int
