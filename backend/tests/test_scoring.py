"""Unit tests for contribution score heuristics."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.models.records import EmployeeRecord  # noqa: E402
from app.services.scoring import (  # noqa: E402
    collaboration_score,
    initiative_score,
    overall_score,
    problem_solving_score,
    score_employee,
)

EMPLOYEES = [
    EmployeeRecord(employee_id="e1", name="Ada", team="A", department="Eng"),
    EmployeeRecord(employee_id="e2", name="Bo", team="A", department="Eng"),
    EmployeeRecord(employee_id="e3", name="Cy", team="B", department="Eng"),
    EmployeeRecord(employee_id="e4", name="Di", team="C", department="Sales"),
]

KUDOS_FOR_E1 = [
    {"from_employee_id": "e2", "to_employee_id": "e1"},
    {"from_employee_id": "e3", "to_employee_id": "e1"},
    {"from_employee_id": "e3", "to_employee_id": "e1"},
    {"from_employee_id": "e4", "to_employee_id": "e1"},
]


def test_problem_solving_rewards_answers_and_problem_vocabulary():
    assert problem_solving_score("We should fix the bug.") == 80
    assert problem_solving_score("What is this?") == 0
    assert problem_solving_score("") == 0
    assert problem_solving_score(None) == 0


def test_problem_solving_matches_whole_words_only():
    # keywords inside longer words do not count
    assert problem_solving_score("debugger") == 0


def test_initiative_combines_keywords_and_proactive_phrases():
    text = "I will build a proposal. I have created a new idea and launched it."
    assert initiative_score(text) == 40


def test_initiative_is_capped_at_100():
    text = "proposal " * 20 + "i will " * 10
    assert initiative_score(text) == 100


def test_collaboration_counts_unique_and_cross_functional_senders():
    assert collaboration_score(KUDOS_FOR_E1, EMPLOYEES) == 60
    assert collaboration_score([], EMPLOYEES) == 0


def test_overall_is_weighted_and_rounded():
    assert overall_score(80, 60, 40) == 62
    assert overall_score(50, 51, 0) == 35


def test_score_employee_fills_only_missing_scores():
    interactions = [{"content": "We should fix the bug."}, {"content": "What is this?"}]

    computed = score_employee(interactions, KUDOS_FOR_E1, EMPLOYEES)
    assert computed == {
        "problem_solving_score": 40,
        "collaboration_score": 60,
        "initiative_score": 0,
        "overall_score": 34,
    }

    partial = score_employee(interactions, KUDOS_FOR_E1, EMPLOYEES, {"overall_score": 99})
    assert partial["overall_score"] == 99
    assert partial["collaboration_score"] == 60


def test_score_employee_without_activity_is_zero():
    assert score_employee([], [], EMPLOYEES) == {
        "problem_solving_score": 0,
        "collaboration_score": 0,
        "initiative_score": 0,
        "overall_score": 0,
    }
