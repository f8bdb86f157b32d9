"""Sorting strategies producing a deterministic total order of task ids.

Sorting is pure: it only reads scores computed elsewhere and never mutates
or fetches them. Every strategy ends in the task id as a stable tie-break, and
tasks without a strategic score always sort after scored ones.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

from taskintel.errors import InputValidationError
from taskintel.models import StrategicScore, Task

URGENT_KEYWORDS = re.compile(r"\b(urgent|critical|blocking|blocker)\b", re.IGNORECASE)

LOW_EFFORT_THRESHOLD = 8.0
HIGH_IMPACT_THRESHOLD = 5.0

SortKey = Tuple


def is_quick_win(score: StrategicScore) -> bool:
    return score.impact >= HIGH_IMPACT_THRESHOLD and score.effort <= LOW_EFFORT_THRESHOLD


def is_strategic_bet(score: StrategicScore) -> bool:
    return score.impact >= HIGH_IMPACT_THRESHOLD and score.effort > LOW_EFFORT_THRESHOLD


def is_urgent(task: Task) -> bool:
    return bool(URGENT_KEYWORDS.search(task.text))


def _balanced(task: Task, score: StrategicScore) -> SortKey:
    return (-score.priority,)


def _quick_wins(task: Task, score: StrategicScore) -> SortKey:
    return (score.effort, -score.impact)


def _strategic_bets(task: Task, score: StrategicScore) -> SortKey:
    return (0 if is_strategic_bet(score) else 1, -score.impact)


def _urgent(task: Task, score: StrategicScore) -> SortKey:
    multiplier = 2 if is_urgent(task) else 1
    return (-score.priority * multiplier,)


def _focus_mode(task: Task, score: StrategicScore) -> SortKey:
    high_leverage = is_quick_win(score) or is_strategic_bet(score)
    return (0 if high_leverage else 1, -score.priority)


@dataclass(frozen=True)
class Strategy:
    """A named comparator over strategic-score attributes."""

    name: str
    label: str
    description: str
    key: Callable[[Task, StrategicScore], SortKey]


STRATEGIES: Dict[str, Strategy] = {
    s.name: s
    for s in (
        Strategy("balanced", "Balanced", "All tasks by descending priority", _balanced),
        Strategy(
            "quick_wins",
            "Quick Wins",
            "Lowest effort first, then highest impact",
            _quick_wins,
        ),
        Strategy(
            "strategic_bets",
            "Strategic Bets",
            "High-impact work beyond a quick-win window first, by impact",
            _strategic_bets,
        ),
        Strategy(
            "urgent",
            "Urgent",
            "Priority with a 2x boost for urgent or blocking tasks",
            _urgent,
        ),
        Strategy(
            "focus_mode",
            "Focus Mode",
            "Quick wins and strategic bets first, by priority",
            _focus_mode,
        ),
    )
}

DEFAULT_STRATEGY = "balanced"


def normalize_strategy_name(name: str) -> str:
    """Accept "quick-wins" as well as "quick_wins"."""
    return name.strip().lower().replace("-", "_")


def get_strategy(name: str) -> Strategy:
    """Look up a strategy by name.

    Raises:
        InputValidationError: If the strategy is unknown
    """
    strategy = STRATEGIES.get(normalize_strategy_name(name))
    if strategy is None:
        raise InputValidationError(
            f"Unknown sorting strategy '{name}'. Available: {', '.join(sorted(STRATEGIES))}"
        )
    return strategy


def sort_tasks(tasks: Sequence[Task], strategy: str = DEFAULT_STRATEGY) -> List[str]:
    """Order task ids under a strategy.

    Args:
        tasks: Tasks with (optionally) computed strategic scores
        strategy: Strategy name

    Returns:
        Ordered task ids
    """
    chosen = get_strategy(strategy)

    def key(task: Task) -> SortKey:
        if task.strategic_score is None:
            return (1, (), task.id)
        return (0, chosen.key(task, task.strategic_score), task.id)

    return [task.id for task in sorted(tasks, key=key)]
