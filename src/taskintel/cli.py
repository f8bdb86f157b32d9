"""Command-line interface for taskintel."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import typer
from pydantic import BaseModel, Field, ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from taskintel.errors import TaskIntelError
from taskintel.models import Reflection, Settings, Task
from taskintel.services.quality import badge_for
from taskintel.services.sorting import STRATEGIES, sort_tasks
from taskintel.services.strategic import score_tasks
from taskintel.similarity import fingerprint as text_fingerprint
from taskintel.similarity import normalize_text

app = typer.Typer(
    name="taskintel",
    help="Task intelligence - coverage, drafts, quality and prioritization for an outcome",
    add_completion=False,
)
console = Console()


class SessionFile(BaseModel):
    """Session document read by the CLI."""

    outcome: str = Field(..., description="Outcome the tasks are measured against")
    tasks: List[Task] = Field(default_factory=list)
    reflections: List[Reflection] = Field(default_factory=list)
    strategy: str = Field("balanced", description="Initial sorting strategy")

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "outcome": "Increase payment conversion by 20%",
                "tasks": [
                    {"id": "t-1", "text": "Update API docs"},
                    {"id": "t-2", "text": "Implement Apple Pay"},
                ],
                "reflections": [{"id": "r-1", "text": "ignore documentation tasks"}],
            }
        }


def configure_logging(level: str) -> None:
    """Route structlog output to stderr, filtered at ``level``."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def load_session(path: Path) -> SessionFile:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return SessionFile.model_validate(data)


def _task_table(tasks: List[Task], ordered_ids: List[str], title: str) -> Table:
    by_id: Dict[str, Task] = {t.id: t for t in tasks}
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("ID", style="cyan")
    table.add_column("Task", style="white", overflow="fold")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Impact", justify="right")
    table.add_column("Effort (h)", justify="right")
    table.add_column("Quality", justify="center")

    for position, task_id in enumerate(ordered_ids, start=1):
        task = by_id[task_id]
        score = task.strategic_score
        quality = "-"
        if task.quality_tier is not None:
            badge = badge_for(task.quality_tier)
            quality = f"[{badge['color']}]{badge['label']}[/{badge['color']}] {task.quality_score:.0f}"
        table.add_row(
            str(position),
            task.id,
            task.text,
            f"{score.priority:.1f}" if score else "-",
            f"{score.impact:.0f}" if score else "-",
            f"{score.effort:g}" if score else "-",
            quality,
        )
    return table


@app.command()
def analyze(
    session_file: Path = typer.Argument(..., help="Session JSON with outcome, tasks and reflections"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Sorting strategy"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the plan and drafts as JSON"),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="OPENAI_API_KEY", help="OpenAI API key"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="LLM model for completions"),
    store_dir: Optional[Path] = typer.Option(None, "--store", help="Directory for persisted records"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Disable the embedding cache"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run one recalculation: coverage, quality, drafts and the priority plan."""
    settings = Settings()
    configure_logging("DEBUG" if verbose else settings.log_level)

    try:
        from taskintel.llm.cache import EmbeddingCache
        from taskintel.llm.openai_provider import OpenAIProvider
        from taskintel.pipeline import TaskIntelligenceSession
        from taskintel.storage import JsonFileStore

        session_input = load_session(session_file)

        api_key = api_key or settings.openai_api_key
        if not api_key:
            console.print(
                "[bold red]Error:[/bold red] OpenAI API key required. "
                "Set OPENAI_API_KEY environment variable or use --api-key"
            )
            raise typer.Exit(1)

        provider = OpenAIProvider(
            api_key=api_key,
            model=model or settings.llm_model,
            embedding_model=settings.embedding_model,
        )
        cache = None
        if settings.enable_caching and not no_cache:
            cache = EmbeddingCache(cache_dir=Path(settings.cache_dir))

        session = TaskIntelligenceSession(
            outcome=session_input.outcome,
            provider=provider,
            tasks=session_input.tasks,
            reflections=session_input.reflections,
            store=JsonFileStore(store_dir or Path(settings.store_dir)),
            strategy=strategy or session_input.strategy,
            cache=cache,
        )

        console.print(f"[bold green]Outcome:[/bold green] {session.outcome}")
        console.print(f"[bold blue]Tasks:[/bold blue] {len(session.tasks)}")
        console.print(f"[bold blue]Reflections:[/bold blue] {len(session.reflections)}")
        console.print(f"[bold blue]Strategy:[/bold blue] {session.strategy}\n")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress_task = progress.add_task("Analyzing tasks...", total=None)
            status = asyncio.run(session.recalculate(trigger="cli"))
            progress.update(progress_task, completed=True)

        if status.status == "failed":
            console.print(f"[bold red]Error:[/bold red] {status.message}")
            raise typer.Exit(1)

        plan = session.plan
        coverage = plan.coverage
        flags = [
            name
            for name, on in (
                ("low confidence", coverage.low_confidence),
                ("partial", coverage.partial),
                ("heuristic", coverage.degraded),
            )
            if on
        ]
        console.print(
            f"[bold]Coverage:[/bold] {coverage.percentage}% "
            f"of {coverage.task_count_considered} tasks"
            + (f" [dim]({', '.join(flags)})[/dim]" if flags else "")
        )
        if coverage.missing_areas:
            console.print("[bold]Missing areas:[/bold]")
            for area in coverage.missing_areas:
                console.print(f"  • {area}")

        console.print()
        console.print(_task_table(session.scored_tasks, plan.ordered_task_ids, f"Plan v{plan.version}"))

        if plan.excluded:
            console.print("\n[bold]Excluded:[/bold]")
            for exclusion in plan.excluded:
                console.print(f"  [dim]{exclusion.task_id}[/dim] {exclusion.reason}")

        if session.pending_drafts:
            drafts = Table(title="Draft tasks", show_header=True, header_style="bold cyan")
            drafts.add_column("Draft", overflow="fold")
            drafts.add_column("Gap", style="cyan")
            drafts.add_column("Hours", justify="right")
            drafts.add_column("Nearest", justify="right")
            for draft in session.pending_drafts:
                nearest = "-"
                if draft.nearest_similarity is not None:
                    nearest = f"{draft.nearest_similarity:.2f}"
                    if draft.borderline:
                        nearest = f"[yellow]{nearest}[/yellow]"
                drafts.add_row(
                    draft.text,
                    draft.gap_area,
                    f"{draft.estimated_hours:g}" if draft.estimated_hours else "-",
                    nearest,
                )
            console.print()
            console.print(drafts)

        if verbose and session.suppressed_drafts:
            console.print("\n[bold]Suppressed duplicates:[/bold]")
            for draft in session.suppressed_drafts:
                console.print(
                    f"  [dim]{draft.text}[/dim] ~ {draft.nearest_task_id} "
                    f"({draft.nearest_similarity:.2f})"
                )

        if status.degraded:
            console.print("\n[yellow]Some results were computed with heuristic fallbacks.[/yellow]")

        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, "w") as f:
                json.dump(
                    {
                        "plan": plan.model_dump(mode="json"),
                        "tasks": [t.model_dump(mode="json") for t in session.scored_tasks],
                        "drafts": [d.model_dump(mode="json") for d in session.pending_drafts],
                        "suppressed": [d.model_dump(mode="json") for d in session.suppressed_drafts],
                    },
                    f,
                    indent=2,
                    default=str,
                )
            console.print(f"\n[bold green]✓[/bold green] Saved to {output}")

        if verbose:
            stats = provider.get_usage_stats()
            console.print(f"[dim]Estimated cost: ${stats['total_cost']:.4f}[/dim]")

    except typer.Exit:
        raise
    except (TaskIntelError, ValidationError, OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def sort(
    session_file: Path = typer.Argument(..., help="Session JSON with scored or unscored tasks"),
    strategy: str = typer.Option("balanced", "--strategy", "-s", help="Sorting strategy"),
) -> None:
    """Re-sort tasks under a strategy without calling any model.

    Stored strategic scores are used as-is; unscored tasks get the heuristic
    score.
    """
    try:
        session_input = load_session(session_file)
        tasks = score_tasks(session_input.tasks, session_input.outcome)
        ordered = sort_tasks(tasks, strategy)
    except (TaskIntelError, ValidationError, OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        console.print(f"Available strategies: {', '.join(sorted(STRATEGIES))}")
        raise typer.Exit(1)

    console.print(_task_table(tasks, ordered, f"Strategy: {strategy}"))


@app.command()
def fingerprint(
    text: str = typer.Argument(..., help="Task text"),
) -> None:
    """Show the normalized form and deduplication fingerprint of a text."""
    console.print(f"[cyan]Normalized:[/cyan] {normalize_text(text)}")
    console.print(f"[cyan]Fingerprint:[/cyan] {text_fingerprint(text)}")


@app.command()
def audit(
    store_dir: Path = typer.Argument(..., help="Store directory"),
    limit: int = typer.Option(20, "--limit", "-n", help="Show the most recent N entries"),
) -> None:
    """Show audit records of coverage, quality and draft passes."""
    from taskintel.storage import JsonFileStore

    try:
        records = JsonFileStore(store_dir).read_audit()
    except (TaskIntelError, ValidationError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not records:
        console.print("[yellow]No audit records found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Timestamp", style="blue")
    table.add_column("Operation", style="cyan")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Tasks", justify="right")
    table.add_column("Degraded", justify="center")

    for record in records[-limit:]:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.operation,
            str(record.duration_ms),
            str(record.task_count),
            "[yellow]yes[/yellow]" if record.degraded else "no",
        )
    console.print(table)
    console.print(f"\n[dim]{len(records)} record(s) total[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from taskintel import __version__

    console.print(f"[bold]taskintel[/bold] version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
