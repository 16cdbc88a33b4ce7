"""CLI entry point for workroute."""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path

import anthropic
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from workroute.activity import log_run, read_run_log
from workroute.config import Config
from workroute.errors import StoreError, UnknownTableError, WorkrouteError
from workroute.models import TableFailure
from workroute.organizer import TodoOrganizer
from workroute.pipeline.merge import SimilarityMerger
from workroute.pipeline.status import PipelineScheduler, StatusPipeline
from workroute.routing.cache import LookupCache
from workroute.routing.catalog import PatternCatalog
from workroute.routing.router import Router
from workroute.storage.db import get_connection
from workroute.storage.store import TableStore
from workroute.tables import BUGS, PROJECT_PATHS, PROJECTS, TODOS, get_table

app = typer.Typer(help="Classify, route, dedupe and promote captured work items.")

_state: dict = {}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    db_path: str = typer.Option(None, "--db", help="Database file path (overrides WORKROUTE_DB_PATH)"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )
    config = Config.load()
    if db_path:
        config.db_path = Path(db_path)
    issues = config.validate()
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)
    _state["config"] = config


def _config() -> Config:
    return _state.get("config") or Config.load()


def _catalog(config: Config) -> PatternCatalog:
    catalog = PatternCatalog.default()
    if config.patterns_file:
        added = catalog.load_rules_file(config.patterns_file)
        logging.getLogger(__name__).info(f"Loaded {added} extra rule(s) from {config.patterns_file}")
    return catalog


@contextmanager
def _open_store():
    config = _config()
    if not config.db_path.exists():
        rprint(f"[red]Database not found at {config.db_path}. Run 'workroute init-db' first.[/red]")
        raise typer.Exit(1)
    conn: sqlite3.Connection = get_connection(config.db_path)
    try:
        yield TableStore(conn)
    except StoreError as e:
        rprint(f"[red]Store error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        conn.close()


def _router(store: TableStore) -> Router:
    config = _config()
    return Router(store, _catalog(config), LookupCache(store, ttl=config.cache_ttl))


@contextmanager
def _recorded(operation: str, arguments: dict):
    """Time an operation and append it to the run log."""
    start = time.monotonic()
    outcome: dict = {"result": None}
    error = None
    try:
        yield outcome
    except WorkrouteError as e:
        error = str(e)
        raise
    finally:
        log_run(
            operation,
            arguments,
            outcome["result"],
            error,
            int((time.monotonic() - start) * 1000),
            log_path=_config().run_log_path(),
        )


@app.command("init-db")
def init_db() -> None:
    """Create the database and schema if they do not exist."""
    config = _config()
    conn = get_connection(config.db_path)
    conn.close()
    rprint(f"[green]Database ready at {config.db_path}[/green]")


@app.command()
def detect(
    title: str = typer.Argument(help="Item title"),
    body: str = typer.Option("", "--body", "-b", help="Item body text"),
) -> None:
    """Show which project some content would be routed to, without routing anything."""
    with _open_store() as store:
        match = _router(store).classify_one(title, body)
    if match is None:
        rprint("[yellow]No project detected.[/yellow]")
        return
    rprint(
        f"[bold]{match.project_name}[/bold] ({match.project_id}) "
        f"matched {match.matched_pattern!r}, score {match.score}"
    )


@app.command()
def route(
    table: str = typer.Option(None, "--table", "-t", help="Single table to route (default: all)"),
    limit: int = typer.Option(100, help="Max items per table"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify and count without writing"),
) -> None:
    """Re-route items to the project their content is about."""
    if table:
        try:
            get_table(table)
        except UnknownTableError as e:
            rprint(f"[red]{e}[/red]")
            raise typer.Exit(2)

    args = {"table": table, "limit": limit, "dry_run": dry_run}
    with _open_store() as store:
        router = _router(store)
        if table:
            with _recorded("route", args) as outcome:
                single = router.route_table(table, limit=limit, dry_run=dry_run)
                outcome["result"] = single
            rprint(f"{table}: checked {single.checked}, rerouted [bold]{single.rerouted}[/bold]")
            return

        with _recorded("route", args) as outcome:
            result = router.route_all_tables(limit=limit, dry_run=dry_run)
            outcome["result"] = result

    summary = Table("Table", "Checked", "Rerouted", "Status")
    for name, table_result in result.tables.items():
        if isinstance(table_result, TableFailure):
            summary.add_row(name, "-", "-", f"[red]{table_result.error}[/red]")
        else:
            summary.add_row(name, str(table_result.checked), str(table_result.rerouted), "ok")
    rprint(summary)
    prefix = "Would reroute" if dry_run else "Rerouted"
    rprint(f"{prefix} [bold]{result.total_rerouted}[/bold] item(s)")


@app.command("route-path")
def route_path(
    path: str = typer.Argument(help="Substring of the items' recorded origin path"),
    limit: int = typer.Option(500, help="Max items per table"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify and count without writing"),
) -> None:
    """Re-route items captured under a given path."""
    with _open_store() as store, _recorded("route-path", {"path": path, "limit": limit, "dry_run": dry_run}) as outcome:
        result = _router(store).route_by_path(path, limit=limit, dry_run=dry_run)
        outcome["result"] = result
    rprint(f"{path}: checked {result.checked}, rerouted [bold]{result.rerouted}[/bold]")
    for error in result.errors:
        rprint(f"  [red]{error}[/red]")


@app.command()
def phases(
    limit: int = typer.Option(100, help="Max unassigned items per table"),
) -> None:
    """Assign todos and bugs without a phase to their project's roadmap phase."""
    with _open_store() as store, _recorded("phases", {"limit": limit}) as outcome:
        result = _router(store).route_all_to_phases(limit=limit)
        outcome["result"] = result
    rprint(f"Todos: {result['todos'].assigned}/{result['todos'].total} assigned")
    if result["bugs"].skipped:
        rprint("[yellow]Bugs: skipped (phase_id column unavailable)[/yellow]")
    else:
        rprint(f"Bugs: {result['bugs'].assigned}/{result['bugs'].total} assigned")


@app.command()
def merge(
    table: str = typer.Option("all", "--table", "-t", help="todos, bugs or all"),
    threshold: float = typer.Option(None, help="Similarity threshold (default per table)"),
    limit: int = typer.Option(None, help="Max active items to compare (capped at 500)"),
) -> None:
    """Merge near-duplicate todos and bugs within each project."""
    targets = {"todos": [TODOS], "bugs": [BUGS], "all": [TODOS, BUGS]}.get(table)
    if targets is None:
        rprint(f"[red]Unknown merge target: {table}[/red]")
        raise typer.Exit(2)

    args = {"table": table, "threshold": threshold, "limit": limit}
    with _open_store() as store, _recorded("merge", args) as outcome:
        merger = SimilarityMerger(store)
        results = {name: merger.merge_table(name, threshold=threshold, limit=limit) for name in targets}
        outcome["result"] = results
    for name, result in results.items():
        rprint(f"{name}: checked {result.checked}, merged [bold]{result.merged}[/bold]")


@app.command()
def pipeline(
    watch: bool = typer.Option(False, "--watch", help="Keep running on the configured interval"),
) -> None:
    """Promote intake items to their terminal status."""
    config = _config()
    with _open_store() as store:
        status_pipeline = StatusPipeline(store)
        if watch:
            scheduler = PipelineScheduler(status_pipeline, interval=config.pipeline_interval)
            try:
                scheduler.run_forever()
            except KeyboardInterrupt:
                scheduler.stop()
            return

        with _recorded("pipeline", {}) as outcome:
            result = status_pipeline.run_cycle()
            outcome["result"] = result
    rprint(f"Processed [bold]{result.processed}[/bold] item(s), {result.errors} error(s)")


@app.command()
def patterns() -> None:
    """List the routing rules currently in effect."""
    catalog = _catalog(_config())
    rprint("[bold]Project rules:[/bold]")
    for rule in catalog.project_rules:
        rprint(f"  {rule.label}: {', '.join(rule.patterns)}")
    rprint("\n[bold]Phase rules:[/bold]")
    for rule in catalog.phase_rules:
        rprint(f"  {rule.label}: {len(rule.patterns)} pattern(s)")


@app.command()
def history(
    limit: int = typer.Option(20, help="Number of runs to show"),
    operation: str = typer.Option(None, help="Only show this operation"),
) -> None:
    """Show recent runs from the run log."""
    entries = read_run_log(limit=limit, operation=operation, log_path=_config().run_log_path())
    if not entries:
        rprint("[yellow]No runs recorded yet.[/yellow]")
        return
    for entry in entries:
        status = f"[red]{entry['error']}[/red]" if entry.get("error") else "[green]ok[/green]"
        rprint(f"{entry['timestamp']}  {entry['operation']:<10} {entry['duration_ms']:>6}ms  {status}")


@app.command()
def organize(
    project_path: str = typer.Argument(None, help="Project path whose todos should be organized"),
    all_paths: bool = typer.Option(False, "--all", help="Organize every project path that has todos"),
) -> None:
    """Categorize and consolidate a project's todos using Claude."""
    if not project_path and not all_paths:
        rprint("[red]Give a project path or --all.[/red]")
        raise typer.Exit(2)
    config = _config()
    issues = config.validate_organizer()
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)

    args = {"project_path": project_path, "all": all_paths}
    with _open_store() as store, _recorded("organize", args) as outcome:
        organizer = TodoOrganizer(store, anthropic.Anthropic(api_key=config.anthropic_api_key))
        if all_paths:
            results = organizer.organize_all_projects()
            outcome["result"] = [asdict(r) for r in results]
        else:
            results = [organizer.organize_project(project_path)]
            outcome["result"] = asdict(results[0])

    for result in results:
        if result.error:
            rprint(f"[red]{escape(result.project_path)}: {escape(result.error)}[/red]")
        elif result.is_parent:
            rprint(
                f"{escape(result.project_path)}: organized {result.children_organized} child path(s), "
                f"added {result.consolidated} consolidated todo(s)"
            )
        else:
            rprint(
                f"{escape(result.project_path)}: categorized {result.organized}, moved {result.rejected} "
                f"to knowledge, merged {result.merged}, completed {result.completed}"
            )
    if all_paths:
        failed = sum(1 for r in results if r.error)
        rprint(f"Organized [bold]{len(results) - failed}[/bold] path(s), {failed} failed")
    elif results[0].error:
        raise typer.Exit(1)


@app.command("link-path")
def link_path(
    project_id: str = typer.Argument(help="Project that owns the path"),
    path: str = typer.Argument(help="Working directory path"),
) -> None:
    """Register a working directory as belonging to a project."""
    with _open_store() as store:
        if store.get(PROJECTS, project_id, ["id"]) is None:
            rprint(f"[red]Unknown project: {escape(project_id)}[/red]")
            raise typer.Exit(1)
        store.insert(PROJECT_PATHS, {"project_id": project_id, "path": path})
    rprint(f"[green]Linked {escape(path)} to {escape(project_id)}[/green]")


@app.command()
def todos(
    project_path: str = typer.Argument(help="Project path"),
) -> None:
    """Show a project's todos grouped by category."""
    with _open_store() as store:
        formatted = TodoOrganizer(store, client=None).get_formatted_todos(project_path)
    for category, items in formatted["categories"].items():
        rprint(f"[bold]{escape(category)}[/bold]")
        for item in items:
            mark = "x" if item["completed"] else " "
            rprint(escape(f"  [{mark}] {item['title']}"))
    stats = formatted["stats"]
    rprint(f"\n{stats['total']} total, {stats['completed']} completed, {stats['pending']} pending")


if __name__ == "__main__":
    app()
