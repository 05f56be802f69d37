"""Guide Tracker CLI using Typer."""

import asyncio
import logging
import os
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional

import typer
from dotenv import load_dotenv
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from guide_tracker.core.enums import JobStatus
from guide_tracker.db.engine import StoreError, get_database_url, run_migrations
from guide_tracker.db.repositories import FactStore
from guide_tracker.ingestion.dataset import DatasetProcessor, render_markdown_report, write_report
from guide_tracker.ingestion.jobs import (
    JobResult,
    install_signal_handlers,
    run_backfill,
    run_scrape,
    run_scrape_from_csv,
)
from guide_tracker.ingestion.registry import ConfigError, CrawlConfig, get_default_config
from guide_tracker.ingestion.session import CrawlSession

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(
    name="guide-tracker",
    help="Guide Tracker - crawl the restaurant guide and reconcile its yearly awards",
    add_completion=False,
)

LogLevel = typer.Option("info", "--log-level", "-l", help="Log level: debug, info, warning, error")


def _configure_logging(level: str) -> None:
    """Route all logging through a Rich handler at the requested level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        rprint(f"[red]Error:[/red] Unknown log level '{level}'")
        raise typer.Exit(1)
    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))


def _load_config() -> CrawlConfig:
    try:
        return get_default_config()
    except (ConfigError, FileNotFoundError) as e:
        rprint(f"[red]Error:[/red] Invalid configuration: {e}")
        raise typer.Exit(1)


def _db_path(config: CrawlConfig, db: Optional[Path]) -> Optional[Path]:
    """--db wins, then DATABASE_URL, then the configured path."""
    if db is not None:
        return db
    if os.environ.get("DATABASE_URL"):
        return None
    return Path(config.database_path)


def _open_store(config: CrawlConfig, db: Optional[Path]) -> FactStore:
    try:
        return FactStore.open(_db_path(config, db))
    except StoreError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _run_job(session: CrawlSession, job: Coroutine[Any, Any, JobResult]) -> JobResult:
    async def runner() -> JobResult:
        install_signal_handlers(session)
        return await job

    return asyncio.run(runner())


def _display_job_result(result: dict) -> None:
    """Display job result in a formatted table."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "cancelled": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Job: {result.get('job_type', 'N/A')}")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    counters = result.get("counters", {})
    table = Table(title="Statistics")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in counters.items():
        if isinstance(value, int):
            table.add_row(name.replace("_", " "), str(value))
    console.print(table)

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:  # Show first 10
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")


@app.command()
def scrape(
    limit: int = typer.Option(0, "--limit", "-n", help="Maximum restaurants to scrape (0 = no limit)"),
    conservative: bool = typer.Option(False, "--conservative", help="Use the slower conservative delay profile"),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Scrape only the guide URLs listed in this CSV"),
    db: Optional[Path] = typer.Option(None, "--db", help="Database file (default from config)"),
    log_level: str = LogLevel,
) -> None:
    """
    Crawl the live guide and merge every restaurant and its current award.

    Examples:
        guide-tracker scrape --limit 20
        guide-tracker scrape --conservative --csv seeds.csv
    """
    _configure_logging(log_level)
    config = _load_config()
    store = _open_store(config, db)
    profile = "conservative" if conservative else "default"
    session = CrawlSession(max_items=limit)

    rprint(f"\n[bold]Starting scrape[/bold] (profile: {profile})")
    if limit:
        rprint(f"  Limit: {limit} restaurants")

    if csv_path is not None:
        if not csv_path.exists():
            rprint(f"[red]Error:[/red] CSV file not found: {csv_path}")
            raise typer.Exit(1)
        try:
            result = _run_job(
                session,
                run_scrape_from_csv(config, store, csv_path, max_restaurants=limit, profile_name=profile, session=session),
            )
        except ValueError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
    else:
        result = _run_job(
            session, run_scrape(config, store, max_restaurants=limit, profile_name=profile, session=session)
        )

    _display_job_result(result.to_dict())
    if result.status == JobStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def backfill(
    url: Optional[str] = typer.Argument(None, help="Backfill only this restaurant URL"),
    db: Optional[Path] = typer.Option(None, "--db", help="Database file (default from config)"),
    log_level: str = LogLevel,
) -> None:
    """
    Merge archived snapshots of known restaurants into their award history.

    Examples:
        guide-tracker backfill
        guide-tracker backfill https://guide.michelin.com/en/ile-de-france/paris/restaurant/some-place
    """
    _configure_logging(log_level)
    config = _load_config()
    if url and not config.is_url_allowed(url):
        rprint(f"[red]Error:[/red] Not a guide URL: {url}")
        raise typer.Exit(1)
    store = _open_store(config, db)
    session = CrawlSession()

    rprint(f"\n[bold]Starting backfill[/bold] ({url or 'all known restaurants'})")
    result = _run_job(session, run_backfill(config, store, url=url, session=session))
    _display_job_result(result.to_dict())
    if result.status == JobStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def dataset(
    directory: Path = typer.Argument(Path("data/HistoricalData"), help="Directory of dated CSV files"),
    limit: int = typer.Option(0, "--limit", "-n", help="Maximum rows per file (0 = all)"),
    report: bool = typer.Option(True, "--report/--no-report", help="Write a markdown report to data/"),
    db: Optional[Path] = typer.Option(None, "--db", help="Database file (default from config)"),
    log_level: str = LogLevel,
) -> None:
    """
    Import dated dataset CSV files, oldest first.

    Examples:
        guide-tracker dataset data/HistoricalData
        guide-tracker dataset data/HistoricalData --limit 10 --no-report
    """
    _configure_logging(log_level)
    if not directory.is_dir():
        rprint(f"[red]Error:[/red] Dataset directory not found: {directory}")
        raise typer.Exit(1)
    config = _load_config()
    store = _open_store(config, db)

    processor = DatasetProcessor(store, policy=config.distinction_policy)
    stats = processor.process(directory, limit=limit)

    table = Table(title="Dataset Processing")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in stats.to_dict().items():
        table.add_row(name.replace("_", " "), str(value))
    console.print(table)

    if report:
        path = write_report(stats, Path(config.database_path).parent)
        rprint(f"\nReport: {path}")
    else:
        logger.debug(render_markdown_report(stats))


@app.command()
def init_db(
    db: Optional[Path] = typer.Option(None, "--db", help="Database file (default from config)"),
    migrate: bool = typer.Option(
        False, "--migrate", help="Apply Alembic migrations instead of creating tables directly"
    ),
) -> None:
    """Initialize the database (create tables)."""
    config = _load_config()
    typer.echo("Initializing database...")
    if migrate:
        try:
            run_migrations(_db_path(config, db))
        except StoreError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
    else:
        _open_store(config, db)
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Guide Tracker version."""
    typer.echo("Guide Tracker v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("Guide Tracker Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    config = _load_config()
    typer.echo(f"  Config file: {os.environ.get('GUIDE_TRACKER_CONFIG', 'config/crawler.yaml')}")
    typer.echo(f"  Database: {get_database_url(_db_path(config, None))}")
    typer.echo(f"  Allowed domains: {', '.join(config.allowed_domains)}")
    for name, profile in config.profiles.items():
        typer.echo(
            f"  Profile {name}: {profile.delay}s + up to {profile.random_delay}s, "
            f"concurrency {profile.concurrency}, {profile.max_retries} retries, budget {profile.max_urls} URLs"
        )
    typer.echo(f"  Archive concurrency: {config.archive.profile.concurrency}")
    typer.echo(f"  Categories: {len(config.category_urls)}")
    fallback = config.distinction_policy.fallback
    typer.echo(f"  Distinction fallback: {fallback.value if fallback else 'none'}")


if __name__ == "__main__":
    app()
