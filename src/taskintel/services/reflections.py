"""Reflection weighting and interpretation into include/exclude directives."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from taskintel.llm.prompts import PromptTemplates
from taskintel.llm.retry import RetryController
from taskintel.llm.schemas import ReflectionIntentResponse
from taskintel.models import DirectiveKind, Exclusion, Reflection, ReflectionDirective, Task
from taskintel.similarity import fingerprint

logger = structlog.get_logger(__name__)

_EXCLUDE_PATTERN = re.compile(
    r"\b(?:ignore|skip|exclude|avoid|drop|deprioriti[sz]e|stop|"
    r"no more|don'?t (?:work on|do|bother with))\s+(?P<topic>.+)",
    re.IGNORECASE,
)
_INCLUDE_PATTERN = re.compile(
    r"\b(?:focus on|prioriti[sz]e|emphasi[sz]e|concentrate on|double down on|"
    r"priority is)\s+(?P<topic>.+)",
    re.IGNORECASE,
)
_TOKEN = re.compile(r"[a-z0-9]+")

STOPWORDS: Set[str] = {
    "a", "about", "all", "an", "and", "any", "anything", "are", "as", "at",
    "for", "from", "in", "is", "it", "item", "now", "of", "on", "or", "our",
    "related", "stuff", "task", "that", "the", "these", "this", "those", "to",
    "today", "we", "week", "with", "work", "more", "please", "right",
}

MIN_PREFIX = 3


def recency_weight(created_at: datetime, now: Optional[datetime] = None) -> float:
    """Step-function weight by reflection age.

    0-7 days old -> 1.0, 8-14 days -> 0.5, 15+ days -> 0.25.
    """
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    age_days = (now - created_at).days

    if age_days <= 7:
        return 1.0
    if age_days <= 14:
        return 0.5
    return 0.25


def weigh_reflections(
    reflections: Sequence[Reflection], now: Optional[datetime] = None
) -> List[Reflection]:
    """Active reflections, most recent first, with weights recomputed.

    Archived reflections are dropped. Inputs are not modified.
    """
    active = [r for r in reflections if not r.archived]
    ordered = sorted(active, key=lambda r: (r.created_at, r.id), reverse=True)
    return [
        r.model_copy(update={"recency_weight": recency_weight(r.created_at, now)})
        for r in ordered
    ]


def archive_reflection(reflection: Reflection, replacement_text: str, new_id: str) -> Tuple[Reflection, Reflection]:
    """Supersede a reflection.

    Returns:
        Tuple of (archived copy of the original, new reflection)
    """
    archived = reflection.model_copy(update={"archived": True})
    return archived, Reflection(id=new_id, text=replacement_text)


def _singular(token: str) -> str:
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def tokenize(text: str) -> List[str]:
    """Lowercase, singularised content tokens of ``text``."""
    tokens = []
    for raw in _TOKEN.findall(text.lower()):
        if raw in STOPWORDS:
            continue
        token = _singular(raw)
        if token not in STOPWORDS:
            tokens.append(token)
    return tokens


def topic_keywords(phrase: str) -> List[str]:
    """Content keywords of a topic phrase, order preserved, deduplicated."""
    seen: List[str] = []
    for token in tokenize(phrase):
        if len(token) >= MIN_PREFIX and token not in seen:
            seen.append(token)
    return seen


def _tokens_match(a: str, b: str) -> bool:
    if min(len(a), len(b)) < MIN_PREFIX:
        return a == b
    return a.startswith(b) or b.startswith(a)


def matches_topic(text: str, keywords: Sequence[str]) -> bool:
    """Whether any keyword matches a token of ``text``.

    Tokens match when one is a prefix of the other, so "documentation"
    matches "docs".
    """
    if not keywords:
        return False
    tokens = tokenize(text)
    return any(_tokens_match(_singular(k.lower()), t) for k in keywords for t in tokens)


def parse_directive(reflection: Reflection) -> ReflectionDirective:
    """Pattern-based interpretation used when inference is unavailable."""
    for kind, pattern in (
        (DirectiveKind.EXCLUDE, _EXCLUDE_PATTERN),
        (DirectiveKind.INCLUDE, _INCLUDE_PATTERN),
    ):
        match = pattern.search(reflection.text)
        if match:
            keywords = topic_keywords(match.group("topic"))
            if keywords:
                return ReflectionDirective(
                    reflection_id=reflection.id,
                    kind=kind,
                    topic_keywords=keywords,
                    weight=reflection.recency_weight,
                    source_text=reflection.text,
                    degraded=True,
                )

    return ReflectionDirective(
        reflection_id=reflection.id,
        kind=DirectiveKind.CONTEXT,
        weight=reflection.recency_weight,
        source_text=reflection.text,
        degraded=True,
    )


@dataclass
class DirectiveOutcome:
    """Effect of directives on a task set."""

    active: List[Task] = field(default_factory=list)
    exclusions: List[Exclusion] = field(default_factory=list)
    boosts: Dict[str, float] = field(default_factory=dict)


def exclusion_reason(directive: ReflectionDirective) -> str:
    """Human readable exclusion reason citing the reflection."""
    snippet = " ".join(directive.source_text.split())
    if len(snippet) > 96:
        snippet = snippet[:95] + "…"
    return f"Excluded by reflection '{snippet}'"


def apply_directives(
    tasks: Sequence[Task], directives: Sequence[ReflectionDirective]
) -> DirectiveOutcome:
    """Split tasks into active and excluded sets and compute include boosts.

    Directives are expected most-recent-first; the first directive matching a
    task decides its fate.
    """
    outcome = DirectiveOutcome()
    actionable = [d for d in directives if d.kind != DirectiveKind.CONTEXT and d.topic_keywords]

    for task in tasks:
        decided = False
        for directive in actionable:
            if not matches_topic(task.text, directive.topic_keywords):
                continue
            if directive.kind == DirectiveKind.EXCLUDE:
                outcome.exclusions.append(
                    Exclusion(
                        task_id=task.id,
                        reason=exclusion_reason(directive),
                        reflection_id=directive.reflection_id,
                    )
                )
            else:
                outcome.active.append(task)
                outcome.boosts[task.id] = directive.weight
            decided = True
            break
        if not decided:
            outcome.active.append(task)

    return outcome


def topics_of(directives: Sequence[ReflectionDirective], kind: DirectiveKind) -> List[str]:
    """All topic keywords of directives of one kind, deduplicated."""
    topics: List[str] = []
    for directive in directives:
        if directive.kind != kind:
            continue
        for keyword in directive.topic_keywords:
            if keyword not in topics:
                topics.append(keyword)
    return topics


class ReflectionInterpreter:
    """Classifies reflections into directives via inference with a pattern fallback."""

    def __init__(self, provider, retry: Optional[RetryController] = None) -> None:
        self.provider = provider
        self.retry = retry or RetryController()
        self.prompts = PromptTemplates()
        self._cache: Dict[str, ReflectionDirective] = {}

    async def interpret(self, reflection: Reflection) -> ReflectionDirective:
        """Interpret one reflection.

        Interpretations are cached by text fingerprint; the cached directive is
        re-weighted with the reflection's current recency weight.
        """
        key = fingerprint(reflection.text)
        cached = self._cache.get(key)
        if cached is None:
            cached = await self._interpret_uncached(reflection)
            self._cache[key] = cached

        return cached.model_copy(
            update={
                "reflection_id": reflection.id,
                "weight": reflection.recency_weight,
                "source_text": reflection.text,
            }
        )

    async def interpret_all(self, reflections: Sequence[Reflection]) -> List[ReflectionDirective]:
        """Interpret reflections, preserving input order."""
        return [await self.interpret(r) for r in reflections]

    async def _interpret_uncached(self, reflection: Reflection) -> ReflectionDirective:
        fallback = parse_directive(reflection)
        result = await self.retry.call(
            lambda: self.provider.complete(
                self.prompts.reflection_interpretation(reflection.text),
                ReflectionIntentResponse,
            ),
            lambda: None,
            name="interpret_reflection",
        )
        response = result.value
        if response is None:
            return fallback

        keywords = topic_keywords(" ".join(response.keywords))
        kind = DirectiveKind(response.directive)
        if kind != DirectiveKind.CONTEXT and not keywords:
            # Classified as actionable but without a usable topic.
            logger.info("reflection_keywords_missing", reflection_id=reflection.id)
            return fallback

        directive = ReflectionDirective(
            reflection_id=reflection.id,
            kind=kind,
            topic_keywords=keywords,
            weight=reflection.recency_weight,
            source_text=reflection.text,
        )
        logger.debug(
            "reflection_interpreted",
            reflection_id=reflection.id,
            directive=kind.value,
            keywords=keywords,
        )
        return directive
