"""Prompt templates for task-intelligence analysis."""

from typing import List, Sequence


def _numbered(lines: Sequence[str], limit: int) -> str:
    listed = "\n".join(f"{i + 1}. {line}" for i, line in enumerate(lines[:limit]))
    if len(lines) > limit:
        listed += f"\n... and {len(lines) - limit} more tasks"
    return listed or "(no tasks yet)"


class PromptTemplates:
    """Collection of prompt templates for outcome/task analysis."""

    @staticmethod
    def coverage_analysis(outcome: str, task_texts: List[str]) -> str:
        """Generate prompt for estimating outcome coverage.

        Args:
            outcome: The outcome text
            task_texts: Texts of the tasks considered

        Returns:
            Formatted prompt
        """
        return f"""Estimate how much of the desired outcome is addressed by the existing tasks.

Desired outcome:
{outcome}

Existing tasks:
{_numbered(task_texts, 50)}

Return "coverage_percentage" as an integer from 0 to 100, and "missing_areas"
as 0-5 short conceptual areas that are missing from the tasks but would help
achieve the outcome."""

    @staticmethod
    def draft_generation(
        outcome: str,
        missing_area: str,
        existing_texts: List[str],
        reflections: List[str],
        avoid_topics: List[str],
        focus_topics: List[str],
        max_drafts: int = 3,
    ) -> str:
        """Generate prompt for proposing tasks that close one gap.

        Args:
            outcome: The outcome text
            missing_area: The missing concept to address
            existing_texts: Compact summary of existing tasks
            reflections: Reflection texts, most recent first
            avoid_topics: Topics the user asked to ignore
            focus_topics: Topics the user asked to focus on
            max_drafts: Maximum drafts to propose

        Returns:
            Formatted prompt
        """
        sections = [
            "You are helping to fill a semantic gap in a user's task plan.",
            f"USER OUTCOME:\n{outcome}",
            f"MISSING CONCEPT:\n{missing_area}",
            f"EXISTING TASKS IN PLAN (do not repeat these):\n{_numbered(existing_texts, 10)}",
        ]
        if reflections:
            sections.append(
                "RECENT REFLECTIONS (most recent first):\n"
                + "\n".join(f"- {text}" for text in reflections)
            )
        if avoid_topics:
            sections.append("DO NOT propose tasks about: " + ", ".join(avoid_topics))
        if focus_topics:
            sections.append("Prefer tasks about: " + ", ".join(focus_topics))
        sections.append(
            f"""Generate up to {max_drafts} draft tasks that address the missing concept.

Requirements:
- Each task should be specific, actionable, and measurable
- "task_text" between 10 and 200 characters
- "estimated_hours" between 0.25 and 8.0
- "reasoning" explains why the task fills the gap (at most 300 characters)
- "confidence_score" reflects how well the task addresses the gap (0.0-1.0)

Return {{"draft_tasks": [...]}}."""
        )
        return "\n\n".join(sections)

    @staticmethod
    def quality_evaluation(task_text: str, outcome: str) -> str:
        """Generate prompt for scoring task quality.

        Args:
            task_text: The task to evaluate
            outcome: Outcome the task contributes to

        Returns:
            Formatted prompt
        """
        return f"""Analyze the quality of this task: "{task_text}"

It contributes to the outcome: "{outcome}"

Evaluate:
1. Verb strength: is the action verb strong and specific (e.g. "Build", "Test",
   "Deploy") or weak (e.g. "Improve", "Optimize")?
2. Specificity: does the task include metrics or acceptance criteria?
3. Granularity: is the task appropriately sized?

Return "clarity_score" (0.0-1.0), "verb_strength" ("strong" or "weak") and
"improvement_suggestions" (list of short strings)."""

    @staticmethod
    def reflection_interpretation(reflection_text: str) -> str:
        """Generate prompt for classifying a reflection.

        Args:
            reflection_text: The reflection to classify

        Returns:
            Formatted prompt
        """
        return f"""Classify this reflection about a task plan.

Reflection: "{reflection_text}"

Directives:
- exclude: the user wants a topic ignored or avoided (e.g. "ignore documentation tasks")
- include: the user wants a topic prioritised (e.g. "focus on analytics")
- context: information only, no change to the plan

Return "directive", "keywords" (the topic words, grounded in the reflection
text, at most 10) and a short "summary". If unsure, choose "context"."""
