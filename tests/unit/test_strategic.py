"""Tests for heuristic strategic scoring."""

import pytest

from taskintel.models import StrategicScore, Task
from taskintel.services.strategic import (
    apply_boost,
    calculate_priority,
    estimate_effort,
    estimate_impact,
    score_task,
    score_tasks,
)


def test_impact_keywords():
    assert estimate_impact("Implement Apple Pay checkout")["impact"] == 8.0
    assert estimate_impact("Launch beta")["impact"] == 7.0
    assert estimate_impact("Update API docs")["impact"] == 4.0
    assert estimate_impact("Clean desk")["impact"] == 5.0


def test_impact_outcome_overlap():
    """Test sharing a keyword with the outcome adds one point."""
    result = estimate_impact("Improve conversion funnel", "Increase payment conversion by 20%")

    assert result["impact"] == 9.0
    assert "conversion" in result["keywords"]


@pytest.mark.parametrize(
    "text,effort,source",
    [
        ("Write copy (4h)", 4.0, "extracted"),
        ("Build reporting in 2 days", 16.0, "extracted"),
        ("Quick fix 0.25h", 0.5, "extracted"),
        ("Implement Apple Pay", 8.0, "heuristic"),
        ("Integrate Stripe billing", 16.0, "heuristic"),
        ("Investigate flaky deploys blocked by external team", 20.0, "heuristic"),
    ],
)
def test_effort_estimation(text, effort, source):
    result = estimate_effort(text)

    assert result["effort"] == effort
    assert result["source"] == source


def test_priority_formula():
    """Test the effort factor around the 8h baseline."""
    assert calculate_priority(5, 8, 1.0) == 50.0
    assert calculate_priority(5, 16, 1.0) == 25.0
    assert calculate_priority(5, 4, 1.0) == 62.5
    assert calculate_priority(10, 0.5, 1.0) == 100.0
    assert calculate_priority(8, 8, 0.7) == 56.0


def test_score_task():
    score = score_task(Task(id="t-1", text="Implement Apple Pay"), "Increase payment conversion by 20%")

    assert score.impact == 8.0
    assert score.effort == 8.0
    assert score.confidence == 0.7
    assert score.priority == 56.0
    assert "pay" in score.impact_keywords
    assert score.effort_source == "heuristic"


def test_score_tasks_keeps_existing_scores_and_boosts_copies():
    """Test stored scores are reused and boosts never touch the input."""
    stored = StrategicScore(impact=6, effort=4, confidence=0.8, priority=60)
    tasks = [Task(id="t-1", text="Anything", strategic_score=stored), Task(id="t-2", text="Clean desk")]

    scored = score_tasks(tasks, boosts={"t-1": 1.0})

    assert scored[0].strategic_score.priority == 75.0
    assert tasks[0].strategic_score.priority == 60
    assert scored[1].strategic_score is not None
    assert tasks[1].strategic_score is None


def test_boost_is_capped():
    score = StrategicScore(impact=10, effort=1, confidence=1, priority=95)

    assert apply_boost(score, 1.0).priority == 100.0
    assert apply_boost(score, 0.0).priority == 95
