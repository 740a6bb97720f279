"""Response models for tenant analytics."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from app.models.records import ScoreSet


class EmployeeMetrics(BaseModel):
    employee_id: str
    name: str
    current_scores: ScoreSet
    team: Optional[str] = None
    department: Optional[str] = None


class HistoryPoint(BaseModel):
    date: str
    problem_solving_score: float
    collaboration_score: float
    initiative_score: float
    overall_score: float


class TeamMetrics(BaseModel):
    team_id: str
    team_name: str
    average_scores: ScoreSet
    member_count: int


class DepartmentMetrics(BaseModel):
    department_id: str
    department_name: str
    average_scores: ScoreSet
    team_count: int
    employee_count: int


class OverallStats(BaseModel):
    total_employees: int
    total_interactions: int
    total_kudos: int
    average_scores: ScoreSet
    contributions_sampled: int = 0
    contributions_truncated: bool = False


class TopContributor(BaseModel):
    employee_id: str
    name: str
    overall_score: float
    department: Optional[str] = None
    team: Optional[str] = None
