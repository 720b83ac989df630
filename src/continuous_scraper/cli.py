"""Command-line interface for the continuous scraper."""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from continuous_scraper.config import Settings
from continuous_scraper.errors import ConfigError, DatabaseUnavailable, ReviewError, ScraperError
from continuous_scraper.models.persons import Resolution
from continuous_scraper.models.queue import FetchMode, QueueStatus

app = typer.Typer(
    name="scraper",
    help="Continuous extraction of enslaved persons and slaveholders from archival sources",
    add_completion=False,
)
review_app = typer.Typer(help="Human review of ambiguous identity matches", add_completion=False)
app.add_typer(review_app, name="review")
console = Console()

EXIT_FATAL = 1
EXIT_DB_UNAVAILABLE = 2


def get_settings() -> Settings:
    """Load settings from the environment (and ``.env``) and configure logging."""
    from dotenv import load_dotenv

    from continuous_scraper.logging import configure_logging

    load_dotenv()
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(EXIT_FATAL) from exc
    configure_logging(settings.log_level, settings.log_format)  # type: ignore[arg-type]
    return settings


@contextmanager
def open_database(settings: Settings):
    from continuous_scraper.store.database import Database

    db = Database(settings.db_url)
    try:
        db.ping()
        db.ensure_schema()
    except DatabaseUnavailable as exc:
        console.print(f"[red]Database unreachable: {exc}[/red]")
        raise typer.Exit(EXIT_DB_UNAVAILABLE) from exc
    try:
        yield db
    finally:
        db.close()


@contextmanager
def open_services(settings: Settings):
    from continuous_scraper.services import Services

    try:
        services = Services.build(settings)
    except ScraperError as exc:
        console.print(f"[red]Startup failed: {exc}[/red]")
        raise typer.Exit(EXIT_FATAL) from exc
    try:
        services.open()
    except DatabaseUnavailable as exc:
        console.print(f"[red]Database unreachable: {exc}[/red]")
        services.close()
        raise typer.Exit(EXIT_DB_UNAVAILABLE) from exc
    try:
        yield services
    finally:
        services.close()


def _pool(services, *, install_signals: bool):
    from continuous_scraper.worker import WorkerPool

    s = services.settings
    shutdown = threading.Event()
    pool = WorkerPool(
        queue=services.queue,
        pipeline=services.pipeline(shutdown),
        fetcher=services.fetcher,
        max_concurrent=s.max_concurrent,
        poll_interval=s.poll_interval,
        claim_timeout_s=s.claim_timeout_s,
        soft_cap_s=s.url_soft_cap_s,
        shutdown=shutdown,
    )
    if install_signals:
        pool.install_signal_handlers()
    return pool


# =============================================================================
# Queue and workers
# =============================================================================


@app.command()
def run():
    """Start the worker loop; SIGINT/SIGTERM stop it after the current entries."""
    settings = get_settings()
    with open_services(settings) as services:
        console.print(
            Panel(
                f"workers={settings.max_concurrent} poll={settings.poll_interval:g}s "
                f"delay/host={settings.delay_per_host_ms}ms",
                title="Continuous scraper",
            )
        )
        report = _pool(services, install_signals=True).run()
    console.print(f"[dim]Stopped after {report.processed} entries[/dim]")


@app.command()
def drain():
    """Process every ready pending entry, then exit (1 if any did not complete)."""
    settings = get_settings()
    with open_services(settings) as services:
        report = _pool(services, install_signals=True).drain()
    console.print(
        f"Processed {report.processed}: [green]{report.completed} completed[/green], "
        f"[yellow]{report.retried} retried[/yellow], [red]{report.failed} failed[/red]"
    )
    if report.any_failed:
        raise typer.Exit(1)


@app.command("queue")
def queue_urls(
    urls: list[str] = typer.Argument(..., help="URLs to enqueue"),
    category: str = typer.Option("generic", "--category", "-c", help="Source category"),
    priority: int = typer.Option(0, "--priority", "-p", help="Higher runs first"),
    mode: FetchMode | None = typer.Option(None, "--mode", help="http or headless (default headless)"),
):
    """Enqueue URLs for extraction."""
    from continuous_scraper.store.queue import WorkQueue

    settings = get_settings()
    with open_database(settings) as db:
        entries = WorkQueue(db).submit_many(urls, category, priority, mode)
    for entry in entries:
        console.print(f"[green]#{entry.id}[/green] {entry.url} [dim]({entry.status.value})[/dim]")


@app.command()
def requeue(entry_id: int = typer.Argument(..., help="Queue entry id")):
    """Send a completed or failed entry back to pending."""
    from continuous_scraper.store.queue import WorkQueue

    settings = get_settings()
    with open_database(settings) as db:
        try:
            entry = WorkQueue(db).requeue(entry_id)
        except KeyError:
            console.print(f"[red]No queue entry {entry_id}[/red]")
            raise typer.Exit(1)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)
    console.print(f"[green]#{entry.id} is pending again[/green]")


@app.command()
def status(
    state: QueueStatus | None = typer.Option(None, "--status", "-s", help="Only entries in this state"),
    limit: int = typer.Option(20, "--limit", "-n", help="Entries to list"),
):
    """Queue counts and the most recent entries."""
    from continuous_scraper.store.queue import WorkQueue

    settings = get_settings()
    with open_database(settings) as db:
        queue = WorkQueue(db)
        stats = queue.stats()
        entries = queue.list_entries(state, limit)

    counts = Table(title="Queue")
    counts.add_column("Status")
    counts.add_column("Count", justify="right")
    for name, n in stats.counts.items():
        counts.add_row(name, str(n))
    console.print(counts)
    if stats.oldest_pending:
        console.print(f"[dim]Oldest pending: {stats.oldest_pending.isoformat()}[/dim]")

    table = Table(title="Entries")
    for col in ("ID", "Status", "Retries", "Category", "URL", "Last error / summary"):
        table.add_column(col)
    for e in entries:
        detail = e.error_message or (e.result_summary.to_json() if e.result_summary else "")
        table.add_row(str(e.id), e.status.value, f"{e.retry_count}/{e.max_retries}", e.category, e.url, detail)
    console.print(table)


@app.command()
def watchdog(
    check_all: bool = typer.Option(False, "--check-all", help="Ignore the 24 h freshness filter"),
    limit: int = typer.Option(100, "--limit", "-n", help="URLs to check this run"),
):
    """Refetch archived URLs and alert on changes or failures."""
    from continuous_scraper.watchdog import Watchdog

    settings = get_settings()
    with open_services(settings) as services:
        report = Watchdog(services.db, services.archive, services.fetcher).run(check_all=check_all, limit=limit)

    console.print(f"Checked {report.checked} URLs: {json.dumps(report.outcomes)}")
    if report.alerts:
        table = Table(title="Alerts")
        for col in ("ID", "Type", "URL", "Details"):
            table.add_column(col)
        for alert in report.alerts:
            table.add_row(str(alert.id), alert.alert_type.value, alert.url, json.dumps(alert.details))
        console.print(table)


# =============================================================================
# Identities
# =============================================================================


@review_app.command("list")
def review_list(limit: int = typer.Option(50, "--limit", "-n", help="Items to list")):
    """Pending review items, highest priority first."""
    from continuous_scraper.store.persons import PersonStore

    settings = get_settings()
    with open_database(settings) as db:
        items = PersonStore(db).list_match_items(limit=limit)

    if not items:
        console.print("[yellow]No pending review items[/yellow]")
        return
    table = Table(title="Review queue")
    for col in ("ID", "Priority", "Name", "Candidates", "Locations"):
        table.add_column(col)
    for item in items:
        candidates = ", ".join(f"{cid} ({score:.2f})" for cid, score in item.candidates())
        table.add_row(str(item.id), str(item.priority), item.unconfirmed_name, candidates, ", ".join(item.location_context))
    console.print(table)


@review_app.command("get")
def review_get(item_id: int = typer.Argument(..., help="Review item id")):
    """One review item with its candidate canonicals."""
    from continuous_scraper.store.persons import PersonStore

    settings = get_settings()
    with open_database(settings) as db:
        store = PersonStore(db)
        item = store.get_match_item(item_id)
        if item is None:
            console.print(f"[red]No review item {item_id}[/red]")
            raise typer.Exit(1)
        candidates = [(store.get_canonical(cid), score) for cid, score in item.candidates()]

    console.print(
        Panel(
            f"[bold]{item.unconfirmed_name}[/bold]\nstatus: {item.status.value}  priority: {item.priority}\n"
            f"source: {item.source_url or '-'}\nlocations: {', '.join(item.location_context) or '-'}",
            title=f"Review item {item.id}",
        )
    )
    table = Table(title="Candidates")
    for col in ("ID", "Score", "Name", "Type", "State", "County", "Born"):
        table.add_column(col)
    for person, score in candidates:
        if person is None:
            continue
        table.add_row(
            str(person.id),
            f"{score:.2f}",
            person.canonical_name,
            person.person_type.value,
            person.primary_state or "",
            person.primary_county or "",
            str(person.birth_year_estimate or ""),
        )
    console.print(table)


@review_app.command("resolve")
def review_resolve(
    item_id: int = typer.Argument(..., help="Review item id"),
    resolution: Resolution = typer.Option(..., "--as", help="Operator decision"),
    canonical_id: int | None = typer.Option(None, "--canonical-id", help="Target canonical (default: top candidate)"),
    resolved_by: str = typer.Option("operator", "--by", help="Reviewer name"),
    notes: str | None = typer.Option(None, "--notes", help="Free-text note"),
):
    """Apply a decision to a review item."""
    from continuous_scraper.resolve.resolver import IdentityResolver

    settings = get_settings()
    with open_database(settings) as db:
        try:
            item = IdentityResolver(db).resolve_review(
                item_id, resolution, canonical_id=canonical_id, resolved_by=resolved_by, notes=notes
            )
        except ReviewError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)
    console.print(f"[green]Review item {item.id} resolved as {resolution.value}[/green]")


@app.command()
def search(
    name: str = typer.Argument(..., help="Name to look up"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results"),
):
    """Find canonical persons by name, spelling variant or sound."""
    from continuous_scraper.store.persons import PersonStore

    settings = get_settings()
    with open_database(settings) as db:
        store = PersonStore(db)
        people = store.search(name, limit)
        stats = store.stats()

    if not people:
        console.print(f"[yellow]No persons found matching '{name}'[/yellow]")
    else:
        table = Table(title=f"Search results for '{name}'")
        for col in ("ID", "Name", "Type", "State", "County", "Born", "Verification"):
            table.add_column(col)
        for p in people:
            table.add_row(
                str(p.id),
                p.canonical_name,
                p.person_type.value,
                p.primary_state or "",
                p.primary_county or "",
                str(p.birth_year_estimate or ""),
                p.verification_status.value,
            )
        console.print(table)
    console.print(
        f"[dim]{stats.canonical_persons} canonical persons, {stats.name_variants} variants, "
        f"{stats.pending_reviews} pending reviews[/dim]"
    )


@app.command()
def climb(
    fs_id: str | None = typer.Argument(None, help="Family-tree id to start from"),
    max_generations: int = typer.Option(15, "--max-generations", "-g", help="Generations to climb"),
    cutoff_year: int = typer.Option(1700, "--cutoff-year", help="Stop climbing past ancestors born before this year"),
    resume: str | None = typer.Option(None, "--resume", help="Resume a saved climb session"),
):
    """Walk up a family tree looking for known slaveholders."""
    from continuous_scraper.climb import AncestorClimber
    from continuous_scraper.parsers.pedigree import FetcherPedigreeClient

    if not fs_id and not resume:
        console.print("[red]Give a starting id or --resume SESSION[/red]")
        raise typer.Exit(1)

    settings = get_settings()
    with open_services(settings) as services:
        climber = AncestorClimber(
            FetcherPedigreeClient(services.fetcher),
            services.climbs,
            services.resolver,
            max_generations=max_generations,
            cutoff_year=cutoff_year,
        )
        try:
            session = climber.resume(resume) if resume else climber.start(fs_id)
        except KeyError as exc:
            console.print(f"[red]{exc.args[0]}[/red]")
            raise typer.Exit(1)
        finally:
            services.fetcher.release_thread_resources()

    console.print(f"Session [bold]{session.id}[/bold]: {session.status.value}, {session.visits} ancestors visited")
    if session.matches:
        table = Table(title="Slaveholder matches")
        for col in ("Generation", "Tree id", "Name", "Canonical", "Score", "Path"):
            table.add_column(col)
        for m in session.matches:
            table.add_row(str(m.depth), m.fs_id, m.name, f"{m.canonical_id} {m.canonical_name}", f"{m.score:.2f}", " > ".join(m.path))
        console.print(table)


# =============================================================================
# Sessions
# =============================================================================


@app.command()
def login(category: str = typer.Argument(..., help="Source category, e.g. familysearch")):
    """Open a visible browser for a manual login and save its cookies."""
    from continuous_scraper.fetch.login import DEFAULT_TARGETS

    target = DEFAULT_TARGETS.get(category)
    if target is None:
        console.print(f"[red]No login page known for '{category}'. Known: {', '.join(DEFAULT_TARGETS)}[/red]")
        raise typer.Exit(1)
    settings = get_settings()
    with open_services(settings) as services:
        try:
            saved = services.login().run(target)
        except ScraperError as exc:
            console.print(f"[red]Login failed: {exc}[/red]")
            raise typer.Exit(1)
    console.print(f"[green]Saved {saved} cookies for {category}[/green]")


@app.command()
def logout(category: str = typer.Argument(..., help="Source category")):
    """Forget the saved cookies of a category."""
    from continuous_scraper.fetch.cookies import FileCookieStore
    from continuous_scraper.fetch.login import InteractiveLogin

    settings = get_settings()
    login = InteractiveLogin(FileCookieStore(settings.cookie_dir), enabled=settings.interactive_login)
    if login.logout(category):
        console.print(f"[green]Cleared cookies for {category}[/green]")
    else:
        console.print(f"[yellow]No saved cookies for {category}[/yellow]")


if __name__ == "__main__":
    app()
