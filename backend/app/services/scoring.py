"""Keyword heuristics that turn interactions and kudos into contribution scores."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from app.models.records import EmployeeRecord

PROBLEM_KEYWORDS = (
    "problem", "issue", "solution", "resolve", "fix", "debug", "troubleshoot",
    "error", "bug", "challenge", "difficulty", "obstacle",
)
QUESTION_KEYWORDS = ("how", "what", "why", "can you", "could you", "would you")
ANSWER_KEYWORDS = (
    "should", "could", "can", "will", "i suggest", "i recommend",
    "try", "use", "implement", "solution", "answer",
)
INITIATIVE_KEYWORDS = (
    "proposal", "idea", "suggestion", "initiative", "started", "created", "built",
    "developed", "launched", "proposed", "suggested", "implemented", "designed",
)
PROACTIVE_PHRASES = (
    "i will", "i am going to", "i plan to", "let me", "i suggest",
    "i propose", "i recommend", "i have started", "i have created",
)

_WORD_PATTERNS = {
    keyword: re.compile(rf"\b{re.escape(keyword)}\b")
    for keyword in set(PROBLEM_KEYWORDS + QUESTION_KEYWORDS + ANSWER_KEYWORDS + INITIATIVE_KEYWORDS)
}


def _count_words(text: str, keywords: Iterable[str]) -> int:
    return sum(len(_WORD_PATTERNS[keyword].findall(text)) for keyword in keywords)


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def problem_solving_score(content: Optional[str]) -> int:
    """Answer share of Q&A language (70 pts) plus problem vocabulary (30 pts)."""
    if not content:
        return 0
    text = content.lower()
    questions = _count_words(text, QUESTION_KEYWORDS)
    answers = _count_words(text, ANSWER_KEYWORDS)

    score = 0.0
    if questions + answers > 0:
        score = answers / (questions + answers) * 70
    score += min(_count_words(text, PROBLEM_KEYWORDS) * 5, 30)
    return min(_round_half_up(score), 100)


def initiative_score(content: Optional[str]) -> int:
    if not content:
        return 0
    text = content.lower()
    keyword_points = min(_count_words(text, INITIATIVE_KEYWORDS) * 5, 60)
    proactive_points = min(sum(text.count(phrase) for phrase in PROACTIVE_PHRASES) * 10, 40)
    return min(keyword_points + proactive_points, 100)


def collaboration_score(
    received_kudos: Sequence[Mapping[str, Any]],
    employees: Sequence[EmployeeRecord],
) -> int:
    """Unique senders (up to 70 pts) plus kudos from outside the team or department (up to 30)."""
    if not received_kudos:
        return 0
    by_id = {employee.employee_id: employee for employee in employees}
    unique_senders = {kudos.get("from_employee_id") for kudos in received_kudos}

    recipient = by_id.get(received_kudos[0].get("to_employee_id"))
    cross_functional = 0
    if recipient is not None:
        for kudos in received_kudos:
            sender = by_id.get(kudos.get("from_employee_id"))
            if sender and (sender.team != recipient.team or sender.department != recipient.department):
                cross_functional += 1

    return min(min(len(unique_senders) * 10, 70) + min(cross_functional * 20, 30), 100)


def overall_score(problem_solving: float, collaboration: float, initiative: float) -> int:
    return _round_half_up(problem_solving * 0.4 + collaboration * 0.3 + initiative * 0.3)


def score_employee(
    interactions: Sequence[Mapping[str, Any]],
    received_kudos: Sequence[Mapping[str, Any]],
    employees: Sequence[EmployeeRecord],
    provided: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """Fill in whichever of the four scores `provided` leaves out."""
    scores: Dict[str, float] = dict(provided or {})
    contents: List[str] = [str(row.get("content") or "") for row in interactions]

    if "problem_solving_score" not in scores:
        scores["problem_solving_score"] = (
            _round_half_up(sum(problem_solving_score(c) for c in contents) / len(contents)) if contents else 0
        )
    if "collaboration_score" not in scores:
        scores["collaboration_score"] = collaboration_score(received_kudos, employees)
    if "initiative_score" not in scores:
        scores["initiative_score"] = (
            _round_half_up(sum(initiative_score(c) for c in contents) / len(contents)) if contents else 0
        )
    if "overall_score" not in scores:
        scores["overall_score"] = overall_score(
            scores["problem_solving_score"],
            scores["collaboration_score"],
            scores["initiative_score"],
        )
    return scores
