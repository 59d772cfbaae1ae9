"""Main CLI application"""

import asyncio
import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from movie_aggregator.utils.config import get_settings, setup_logging

app = typer.Typer(
    name="movie-aggregator",
    help="Multi-source movie catalog crawler",
    add_completion=False,
)

console = Console(force_terminal=True)


def _build(source: str):
    """Store, cache and the orchestrator for one source"""
    from movie_aggregator.db.cache import get_cache
    from movie_aggregator.db.supabase import get_database
    from movie_aggregator.services.worker import build_orchestrators

    orchestrators = build_orchestrators(get_database(), get_cache())
    if source not in orchestrators:
        console.print(f"[red]Unknown source '{source}'. Available: {', '.join(orchestrators)}[/red]")
        raise typer.Exit(code=1)
    return orchestrators[source]


async def _close(orchestrator) -> None:
    await orchestrator.adapter.close()
    tmdb = orchestrator.merge_engine.resolver.tmdb
    if tmdb is not None:
        await tmdb.close()
    await orchestrator.cache.close()


@app.command("crawl")
def crawl(
    source: str = typer.Argument(..., help="Source name: ophim, kkphim, nguonc"),
    slug: str = typer.Option(None, "--slug", "-s", help="Crawl a single movie by slug"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output status as JSON"),
):
    """Run one crawl pass (or a single movie) in the foreground"""
    setup_logging()
    orchestrator = _build(source)

    target = f"movie {slug}" if slug else "full catalog"
    console.print(f"[blue]Crawling {target} from {source}...[/blue]")

    async def run_crawl():
        try:
            return await orchestrator.trigger(slug)
        finally:
            await _close(orchestrator)

    status = asyncio.run(run_crawl())

    if json_output:
        print(json.dumps(status.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return

    color = {"completed": "green", "suspended": "yellow", "stopped": "yellow"}.get(status.phase.value, "red")
    console.print(Panel(
        f"Phase: [{color}]{status.phase.value}[/{color}]\n"
        f"Pages: {status.current_page}/{status.total_pages}\n"
        f"Processed: {status.processed_items}  Skipped: {status.skipped_items}  "
        f"Failed: {status.failed_items}\n"
        f"Continuous skips: {status.continuous_skips}"
        + (f"\n[red]Last error: {status.last_error}[/red]" if status.last_error else ""),
        title=f"Crawl {source}",
    ))


@app.command("status")
def status():
    """Show crawler configuration, enable gate and auto-stop state"""
    from movie_aggregator.db.cache import get_cache
    from movie_aggregator.db.supabase import get_database
    from movie_aggregator.services.worker import build_orchestrators

    async def collect():
        cache = get_cache()
        orchestrators = build_orchestrators(get_database(), cache)
        rows = []
        try:
            for name, orchestrator in orchestrators.items():
                await orchestrator.refresh_config()
                enabled, reason = orchestrator.is_enabled()
                remaining = await orchestrator.auto_stop.remaining_cooldown()
                failures = await orchestrator.movie_ledger.load()
                pages = await orchestrator.page_ledger.load()
                rows.append((orchestrator.config, enabled, reason, remaining, len(failures), len(pages)))
        finally:
            await cache.close()
        return rows

    table = Table(title="Crawlers")
    table.add_column("Source", style="cyan")
    table.add_column("Host")
    table.add_column("Cron", style="green")
    table.add_column("Enabled")
    table.add_column("Auto-stop", style="yellow")
    table.add_column("Failed movies", justify="right")
    table.add_column("Failed pages", justify="right")

    for config, enabled, reason, remaining, failed_movies, failed_pages in asyncio.run(collect()):
        table.add_row(
            config.name,
            config.host,
            config.cron_schedule,
            "[green]yes[/green]" if enabled else f"[red]no[/red] ({reason})",
            f"{remaining.total_seconds() / 3600:.1f}h left" if remaining else "-",
            str(failed_movies),
            str(failed_pages),
        )
    console.print(table)


@app.command("failures")
def failures(
    source: str = typer.Argument(..., help="Source name"),
    pages: bool = typer.Option(False, "--pages", "-p", help="Show failed listing pages instead of movies"),
):
    """List the failure ledger for a source"""
    orchestrator = _build(source)
    ledger = orchestrator.page_ledger if pages else orchestrator.movie_ledger

    async def load():
        try:
            return await ledger.load()
        finally:
            await _close(orchestrator)

    records = asyncio.run(load())
    if not records:
        console.print(f"[green]No failures recorded for {source}[/green]")
        return

    table = Table(title=f"{ledger.key} ({len(records)})")
    table.add_column("Page" if pages else "Slug", style="cyan")
    table.add_column("Retries", justify="right", style="yellow")
    table.add_column("Last attempt")
    table.add_column("Error")
    for item, record in records.items():
        table.add_row(item, str(record.retry_count), record.last_attempt.isoformat(), record.error[:80])
    console.print(table)


@app.command("clear-autostop")
def clear_autostop(
    source: str = typer.Argument(..., help="Source name"),
):
    """Remove the auto-stop marker so the next trigger runs"""
    orchestrator = _build(source)

    async def clear():
        try:
            await orchestrator.auto_stop.clear()
        finally:
            await _close(orchestrator)

    asyncio.run(clear())
    console.print(f"[green][OK] Auto-stop cleared for {source}[/green]")


@app.command("init-db")
def init_db():
    """Create (SQLite) or verify (Supabase) the documents schema"""
    from movie_aggregator.db.supabase import get_database

    settings = get_settings()
    store = get_database()
    store.init_db()
    console.print(f"[green][OK] Document store ready ({settings.db_mode})[/green]")


@app.command("worker")
def worker():
    """Run the cron scheduler in the foreground"""
    from movie_aggregator.services.worker import get_worker

    setup_logging()
    crawler_worker = get_worker()

    async def run_worker():
        await crawler_worker.start()
        status = crawler_worker.get_status()
        for job in status.jobs:
            console.print(f"  [cyan]{job.source}[/cyan] next run: {job.next_run}")
        try:
            await asyncio.Event().wait()
        finally:
            crawler_worker.stop()
            await crawler_worker.close()

    console.print("[blue]Starting crawler worker (Ctrl+C to stop)...[/blue]")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        console.print("[yellow]Worker stopped[/yellow]")


@app.command("serve")
def serve(
    host: str = typer.Option(None, "--host", help="Bind host"),
    port: int = typer.Option(None, "--port", "-p", help="Bind port"),
):
    """Run the control API (and scheduler) with uvicorn"""
    import uvicorn

    from movie_aggregator.api.app import create_app

    setup_logging()
    settings = get_settings()
    uvicorn.run(create_app(), host=host or settings.api_host, port=port or settings.api_port)


if __name__ == "__main__":
    app()
