"""Tutor Core CLI application."""

import asyncio
from datetime import UTC, datetime, timedelta

import typer
from rich.console import Console
from rich.table import Table

from packages.common.exceptions import TutorCoreError

app = typer.Typer(
    name="tutor-core",
    help="Spaced-repetition scheduling and token quotas for the tutoring backend",
    no_args_is_help=True,
)

console = Console()

STATE_CHOICES = ("new", "learning", "review", "relearning")


@app.command()
def version() -> None:
    """Show version information."""
    console.print("tutor-core 0.1.0")


@app.command()
def migrate() -> None:
    """Run database migrations."""
    asyncio.run(_migrate_async())


async def _migrate_async() -> None:
    """Async migrate implementation."""
    from packages.common.database import run_migrations

    console.print("Running database migrations...")
    try:
        result = await run_migrations()
    except TutorCoreError as e:
        console.print(f"[red]Migration error:[/red] {e}")
        raise typer.Exit(1) from None

    if result.applied:
        console.print(f"[green]Applied migrations:[/green] {', '.join(result.applied)}")
    else:
        console.print("[yellow]No migrations to apply[/yellow]")


@app.command()
def levels() -> None:
    """List education levels and their scheduling parameters."""
    from packages.learning.levels import LEARNING_LEVELS

    table = Table(title="Education Levels")
    table.add_column("Level", style="cyan")
    table.add_column("Cycle")
    table.add_column("Age", justify="right")
    table.add_column("Cards/session", justify="right", style="green")
    table.add_column("Retention", justify="right")
    table.add_column("Max interval", justify="right")
    table.add_column("Session", justify="right")

    for key, config in LEARNING_LEVELS.items():
        table.add_row(
            key,
            config.cycle,
            config.age_range,
            str(config.cards_per_session),
            f"{config.target_retention:.0%}",
            f"{config.maximum_interval_days}d",
            f"{config.session_minutes}min",
        )

    console.print(table)


@app.command()
def preview(
    level: str = typer.Option("troisieme", "--level", "-l", help="Education level"),
    state: str = typer.Option("new", "--state", "-s", help="Current card state"),
    stability: float = typer.Option(0.0, "--stability", help="Current stability (days)"),
    difficulty: float = typer.Option(0.0, "--difficulty", help="Current difficulty (1-10)"),
    days_since_review: float = typer.Option(
        0.0,
        "--days-since-review",
        "-d",
        help="Days elapsed since the last review",
    ),
    seed: int | None = typer.Option(None, "--seed", help="Seed for interval fuzz"),
) -> None:
    """Show the next review for each rating of a hypothetical card."""
    from packages.learning.fsrs import FSRS, SchedulerParameters
    from packages.learning.levels import get_level_config
    from packages.learning.models import CardState, MemoryState

    if state.lower() not in STATE_CHOICES:
        console.print(f"[red]Invalid state:[/red] {state} (choose from {', '.join(STATE_CHOICES)})")
        raise typer.Exit(1)

    try:
        config = get_level_config(level)
    except TutorCoreError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    now = datetime.now(UTC)
    card_state = CardState[state.upper()]
    if card_state is CardState.NEW:
        memory = MemoryState.new(now)
    else:
        memory = MemoryState(
            due=now,
            stability=stability,
            difficulty=difficulty,
            reps=1,
            state=card_state,
            last_review=now - timedelta(days=days_since_review),
        )

    scheduler = FSRS(SchedulerParameters.from_level(config), seed=seed)
    outcomes = scheduler.repeat(memory, now)

    table = Table(title=f"Next review ({level}, {card_state.name.lower()})")
    table.add_column("Rating", style="cyan")
    table.add_column("New state")
    table.add_column("Interval", justify="right", style="green")
    table.add_column("Due (UTC)")
    table.add_column("Stability", justify="right")
    table.add_column("Difficulty", justify="right")

    for rating, outcome in outcomes.items():
        if outcome.interval_days:
            interval = f"{outcome.interval_days}d"
        else:
            interval = f"{int((outcome.due - now).total_seconds() // 60)}min"
        table.add_row(
            rating.name.lower(),
            outcome.memory.state.name.lower(),
            interval,
            outcome.due.strftime("%Y-%m-%d %H:%M"),
            f"{outcome.memory.stability:.2f}",
            f"{outcome.memory.difficulty:.2f}",
        )

    console.print(table)
    if memory.last_review is not None:
        console.print(
            f"[dim]Retrievability now: {scheduler.retrievability(memory, now):.1%}[/dim]"
        )


@app.command("reset-quotas")
def reset_quotas(
    enqueue: bool = typer.Option(
        False,
        "--enqueue",
        help="Queue the sweep on the worker instead of running it here",
    ),
) -> None:
    """Reset daily quotas of every user past the daily anchor."""
    asyncio.run(_reset_quotas_async(enqueue))


async def _reset_quotas_async(enqueue: bool) -> None:
    """Async reset-quotas implementation."""
    from packages.common.database import close_pool

    try:
        if enqueue:
            from packages.jobs.service import close_job_manager, get_job_manager

            manager = await get_job_manager()
            try:
                job_id = await manager.enqueue_quota_sweep()
            finally:
                await close_job_manager()
            console.print(f"[green]Queued quota sweep:[/green] {job_id}")
            return

        from packages.quota.service import get_quota_manager

        reset_count = await get_quota_manager().reset_all_daily_quotas()
        console.print(f"[green]Daily quotas reset:[/green] {reset_count} user(s)")
    except TutorCoreError as e:
        console.print(f"[red]Quota reset error:[/red] {e}")
        raise typer.Exit(1) from None
    finally:
        await close_pool()


if __name__ == "__main__":
    app()
