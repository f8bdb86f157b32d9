"""Heuristic strategic scoring: impact, effort, confidence and priority."""

import math
import re
from typing import Dict, List, Optional, Sequence

from taskintel.models import StrategicScore, Task
from taskintel.services.reflections import tokenize

KEYWORD_WEIGHTS = [
    (re.compile(r"(revenue|conversion|payment|checkout|pay\b)", re.IGNORECASE), 3.0),
    (re.compile(r"(launch|test)", re.IGNORECASE), 2.0),
    (re.compile(r"(document|docs\b|refactor)", re.IGNORECASE), -1.0),
]

EFFORT_PATTERN = re.compile(r"\b(\d+(?:\.\d+)?)\s*(h|hour|hours|hr|hrs|day|days|d)\b", re.IGNORECASE)
INTEGRATION_PATTERN = re.compile(r"(integrate|integration|migrate|migration|redesign)", re.IGNORECASE)
DEPENDENCY_PATTERN = re.compile(r"(dependency|depends on|blocked|blocker|external team)", re.IGNORECASE)
INVESTIGATE_PATTERN = re.compile(r"(investigate|explore|spike)", re.IGNORECASE)

BASE_IMPACT = 5.0
BASE_EFFORT = 8.0
DEFAULT_CONFIDENCE = 0.7
BOOST_FACTOR = 0.25


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def estimate_impact(text: str, outcome: Optional[str] = None) -> Dict[str, object]:
    """Keyword-weighted impact on a 0-10 scale."""
    impact = BASE_IMPACT
    keywords: List[str] = []

    for pattern, weight in KEYWORD_WEIGHTS:
        match = pattern.search(text)
        if match:
            impact += weight
            keywords.append(match.group(1).lower())

    if outcome:
        overlap = set(tokenize(outcome)) & set(tokenize(text))
        if overlap:
            impact += 1.0
            keywords.extend(sorted(overlap))

    return {"impact": _clamp(impact, 0.0, 10.0), "keywords": keywords}


def estimate_effort(text: str) -> Dict[str, object]:
    """Effort in hours, extracted from the text when stated, else estimated."""
    match = EFFORT_PATTERN.search(text)
    if match:
        value = float(match.group(1))
        unit = match.group(2).lower()
        hours = value * 8 if unit.startswith("d") else value
        return {"effort": _clamp(hours, 0.5, 160.0), "source": "extracted"}

    effort = BASE_EFFORT
    if len(text) > 100:
        effort += 4
    if INTEGRATION_PATTERN.search(text):
        effort += 8
    if DEPENDENCY_PATTERN.search(text):
        effort += 4
    if INVESTIGATE_PATTERN.search(text):
        effort += 8

    return {"effort": _clamp(effort, 0.5, 160.0), "source": "heuristic"}


def calculate_priority(impact: float, effort: float, confidence: float) -> float:
    """Combine impact, effort and confidence into a 0-100 priority.

    Effort at the 8h baseline is neutral; smaller tasks gain up to 50%,
    larger ones decay logarithmically.
    """
    if effort > BASE_EFFORT:
        effort_factor = 1.0 / (1.0 + math.log2(effort / BASE_EFFORT))
    else:
        effort_factor = 1.0 + (BASE_EFFORT - effort) / (2 * BASE_EFFORT)

    return round(_clamp(impact * 10 * confidence * effort_factor, 0.0, 100.0), 2)


def score_task(
    task: Task,
    outcome: Optional[str] = None,
    confidence: float = DEFAULT_CONFIDENCE,
) -> StrategicScore:
    """Heuristic strategic score for one task.

    Args:
        task: Task to score
        outcome: Outcome text, used for keyword overlap
        confidence: Confidence in the estimate

    Returns:
        StrategicScore
    """
    impact = estimate_impact(task.text, outcome)
    effort = estimate_effort(task.text)
    priority = calculate_priority(impact["impact"], effort["effort"], confidence)

    return StrategicScore(
        impact=impact["impact"],
        effort=effort["effort"],
        confidence=confidence,
        priority=priority,
        effort_source=effort["source"],
        impact_keywords=impact["keywords"],
    )


def score_tasks(
    tasks: Sequence[Task],
    outcome: Optional[str] = None,
    boosts: Optional[Dict[str, float]] = None,
) -> List[Task]:
    """Copies of ``tasks`` carrying strategic scores.

    Existing scores are kept; inclusion boosts (directive weight 0-1)
    multiply priority on the copy only.
    """
    boosts = boosts or {}
    scored = []
    for task in tasks:
        score = task.strategic_score or score_task(task, outcome)
        boost = boosts.get(task.id, 0.0)
        if boost:
            score = apply_boost(score, boost)
        if score is not task.strategic_score:
            task = task.model_copy(update={"strategic_score": score})
        scored.append(task)
    return scored


def apply_boost(score: StrategicScore, weight: float) -> StrategicScore:
    """Score copy with priority raised by an inclusion directive."""
    boosted = min(100.0, round(score.priority * (1 + BOOST_FACTOR * weight), 2))
    return score.model_copy(update={"priority": boosted})
