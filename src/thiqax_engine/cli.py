"""Command-line interface for the ThiQaX application engine."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from thiqax_engine.config import settings
from thiqax_engine.core.engine import ApplicationEngine
from thiqax_engine.core.errors import EngineError
from thiqax_engine.notifications.dispatcher import InMemoryNotificationDispatcher
from thiqax_engine.stores.memory import create_in_memory_stores, load_fixtures
from thiqax_engine.utils.logging import configure_logging

app = typer.Typer(
    name="thiqax",
    help="ThiQaX application engine - eligibility, application lifecycle and document expiry",
    add_completion=False,
)
console = Console()


def _engine_from_fixtures(fixtures_path: Path) -> ApplicationEngine:
    stores = create_in_memory_stores(load_fixtures(fixtures_path))
    return ApplicationEngine(
        stores.jobs,
        stores.profiles,
        stores.documents,
        stores.applications,
        InMemoryNotificationDispatcher(),
        config=settings,
    )


@app.callback()
def setup() -> None:
    configure_logging()


@app.command()
def config() -> None:
    """Show current configuration."""
    table = Table(title="ThiQaX Engine Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Debug Mode", str(settings.debug))
    table.add_row("Log Level", settings.log_level)
    table.add_row("Completeness Threshold", f"{settings.completeness_threshold}%")
    table.add_row("Tracked Profile Fields", ", ".join(settings.tracked_profile_fields))
    table.add_row("Expiry Horizon (days)", str(settings.expiry_horizon_days))
    table.add_row("Store Timeout (s)", str(settings.store_timeout_seconds))
    table.add_row("Max Retries", str(settings.max_retries))

    console.print(table)


@app.command()
def eligibility(
    fixtures: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON fixtures file"),
    job_seeker: str = typer.Option(..., "--job-seeker", help="Job seeker id"),
    job: str = typer.Option(..., "--job", help="Job posting id"),
    as_json: bool = typer.Option(False, "--json", help="Print the verdict as JSON"),
) -> None:
    """Check whether a job seeker may apply to a job."""
    engine = _engine_from_fixtures(fixtures)
    try:
        verdict = asyncio.run(engine.check_eligibility(job_seeker, job))
    except EngineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(verdict.model_dump_json())
        return

    table = Table(title=f"Eligibility of {job_seeker} for {job}")
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="green")
    table.add_row("Eligible", "yes" if verdict.eligible else "no")
    table.add_row("Reasons", "\n".join(verdict.reasons) or "-")
    table.add_row("Missing Fields", ", ".join(verdict.missing_fields) or "-")
    table.add_row("Missing Documents", ", ".join(verdict.missing_documents) or "-")
    table.add_row("Warnings", "\n".join(verdict.warnings) or "-")
    console.print(table)


@app.command()
def sweep(
    fixtures: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON fixtures file"),
    horizon_days: int = typer.Option(settings.expiry_horizon_days, "--horizon-days", min=0, help="Days ahead to scan"),
) -> None:
    """Run one document expiration sweep over the fixtures."""
    engine = _engine_from_fixtures(fixtures)
    try:
        intents = asyncio.run(engine.sweep_document_expirations(horizon_days))
    except EngineError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Documents expiring within {horizon_days} days")
    table.add_column("Recipient", style="cyan")
    table.add_column("Document", style="green")
    table.add_column("Days Left", justify="right")
    for intent in intents:
        table.add_row(
            intent.recipient,
            str(intent.payload["document_id"]),
            str(intent.payload["days_until_expiry"]),
        )
    console.print(table)
    console.print(f"{len(intents)} expiry notification(s) emitted")


@app.command()
def version() -> None:
    """Show version information."""
    from thiqax_engine import __version__
    console.print(f"ThiQaX Engine v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
