"""CLI interface for the Campaign Manager sheet sync."""

import warnings

# Suppress DeprecationWarnings from the Smartsheet SDK only (not all libraries)
warnings.filterwarnings("ignore", category=DeprecationWarning, module=r"smartsheet\b")

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .cache import SQLiteCache, parse_ttl
from .config import AppConfig, load_config
from .errors import SyncError
from .hierarchy import HierarchyResult
from .id_store import is_temporary_id
from .loaders import LOAD_ORDER, PUSH_ORDER
from .sync import LoadResult, PushResult, SyncEngine

app = typer.Typer(
    name="cm-sheet-sync",
    help="Sync Campaign Manager entities with Smartsheet tables",
    no_args_is_help=True,
)
console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Show debug logging"),
]


def get_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from file and environment."""
    try:
        return load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1) from None


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def parse_list(value: str | None) -> list[str]:
    """Split a comma-separated option into its non-empty parts."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class ProgressReporter:
    """Live progress display for load and push operations using Rich."""

    def __init__(self, live: Live, verb: str):
        self.live = live
        self.verb = verb
        self._label = ""
        self._done = 0
        self._total: int | None = None
        self._completed: list[tuple[str, int]] = []

    def callback(self, phase: str, current: int, total: int | None, detail: str = "") -> None:
        """Engine calls this to report progress."""
        if phase == "start":
            self._label = detail
            self._done = 0
            self._total = None
        elif phase == "row":
            self._done = current
            self._total = total
        elif phase == "done":
            self._completed.append((detail, current))
            self._label = ""
        self._render()

    def _render(self) -> None:
        lines: list[Text] = []
        for label, count in self._completed:
            line = Text("  ✓ ", style="green")
            line.append(Text(label, style="cyan"))
            line.append(f"  {count:,} rows")
            lines.append(line)

        if self._label:
            line = Text("  ⠋ ", style="bold blue")
            line.append(Text(self._label, style="cyan"))
            if self._total:
                line.append(f"  {self.verb} {self._done}/{self._total}")
            else:
                line.append(f"  {self.verb}…", style="dim")
            lines.append(line)

        if lines:
            combined = lines[0]
            for extra_line in lines[1:]:
                combined = Text.assemble(combined, "\n", extra_line)
            self.live.update(combined)
        else:
            self.live.update(Text(f"  {self.verb.capitalize()}…", style="dim"))


def _check_entities(entities: list[str], known: tuple[str, ...]) -> None:
    unknown = [e for e in entities if e not in known]
    if unknown:
        console.print(f"[red]Unknown entity: {', '.join(unknown)}[/red]")
        console.print(f"[dim]Expected one of: {', '.join(known)}[/dim]")
        raise typer.Exit(1)


@app.command()
def load(
    entity: Annotated[
        str | None,
        typer.Option(
            "--entity",
            "-e",
            help="Entity kinds to load, comma-separated (default: all)",
        ),
    ] = None,
    campaign: Annotated[
        str | None,
        typer.Option(
            "--campaign",
            help="Campaign IDs to load instead of those in the Campaign table, comma-separated",
        ),
    ] = None,
    active_only: Annotated[
        bool | None,
        typer.Option("--active-only/--all-ads", help="Only load active ads"),
    ] = None,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Load entities from Campaign Manager into their tables.

    Kinds are loaded top-down; the campaigns loaded scope everything below
    them.

    Examples:

        # Reload everything referenced by the Campaign table
        cm-sheet-sync load

        # Load two campaigns and their children
        cm-sheet-sync load --campaign 123,456
    """
    setup_logging(verbose)
    entities = parse_list(entity) or None
    if entities:
        _check_entities(entities, LOAD_ORDER)

    config = get_config(config_path)
    engine = SyncEngine(config)
    try:
        with Live(Text("  Loading…", style="dim"), console=console, transient=True) as live:
            reporter = ProgressReporter(live, "loading")
            results = engine.load(
                entities,
                campaign_ids=parse_list(campaign),
                active_only=active_only,
                progress=reporter.callback,
            )
    except SyncError as e:
        console.print(f"[red]Load failed: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        engine.close()

    _display_load_results(results)
    if not all(r.success for r in results):
        raise typer.Exit(1)


def _display_load_results(results: list[LoadResult]) -> None:
    table = Table(title="Load Summary")
    table.add_column("Entity", style="cyan")
    table.add_column("Fetched", justify="right")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Filters", style="dim")
    table.add_column("Time", justify="right", style="dim")

    for result in results:
        table.add_row(
            result.entity,
            str(result.items),
            str(result.rows),
            result.filters_applied,
            f"{result.duration_seconds:.1f}s",
        )
    console.print(table)

    for result in results:
        for warning in result.warnings:
            console.print(f"[yellow]{result.entity}: {warning}[/yellow]")
        for error in result.errors:
            console.print(f"[red]{result.entity}: {error}[/red]")


@app.command()
def push(
    entity: Annotated[
        str | None,
        typer.Option(
            "--entity",
            "-e",
            help="Entity kinds to push, comma-separated (default: all)",
        ),
    ] = None,
    stop_on_error: Annotated[
        bool,
        typer.Option("--stop-on-error", help="Stop at the first row that fails"),
    ] = False,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Push table rows to Campaign Manager.

    Rows whose ID starts with 'ext' are created; the new ID is written back
    to the table and remembered so other rows can reference the 'ext' ID.
    """
    setup_logging(verbose)
    entities = parse_list(entity) or None
    if entities:
        _check_entities(entities, PUSH_ORDER)

    config = get_config(config_path)
    engine = SyncEngine(config)
    try:
        with Live(Text("  Pushing…", style="dim"), console=console, transient=True) as live:
            reporter = ProgressReporter(live, "pushing")
            results = engine.push(
                entities,
                continue_on_error=False if stop_on_error else None,
                progress=reporter.callback,
            )
    except SyncError as e:
        console.print(f"[red]Push aborted: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        engine.close()

    _display_push_results(results)
    if not all(r.success for r in results):
        raise typer.Exit(1)


def _display_push_results(results: list[PushResult]) -> None:
    table = Table(title="Push Summary")
    table.add_column("Entity", style="cyan")
    table.add_column("Pushed", justify="right", style="green")
    table.add_column("Created", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")

    for result in results:
        table.add_row(
            result.entity,
            str(result.pushed),
            str(result.created),
            f"[yellow]{result.skipped}[/yellow]" if result.skipped else "0",
            f"[red]{result.failed}[/red]" if result.failed else "0",
        )
    console.print(table)

    failures = [o for r in results for o in r.outcomes if not o.success]
    if failures:
        console.print("\n[red]Failed rows:[/red]")
        for outcome in failures:
            console.print(f"  [cyan]{outcome.entity} {outcome.row_id}[/cyan]: {outcome.error}")

    for result in results:
        for warning in result.warnings:
            console.print(f"[yellow]{result.entity}: {warning}[/yellow]")
        if result.stopped:
            console.print(f"[yellow]{result.entity}: push stopped after a failed row[/yellow]")


@app.command()
def hierarchy(
    campaign: Annotated[
        str | None,
        typer.Option(
            "--campaign",
            help="Campaign IDs, comma-separated (default: those in the Campaign table)",
        ),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the hierarchy as JSON to this file"),
    ] = None,
    config_path: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show campaigns with their groups, placements, ads and creatives."""
    setup_logging(verbose)
    config = get_config(config_path)
    engine = SyncEngine(config)
    try:
        result = engine.build_hierarchy(parse_list(campaign) or None)
    except SyncError as e:
        console.print(f"[red]Hierarchy build failed: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        engine.close()

    if output:
        with open(output, "w") as f:
            json.dump(
                {"hierarchy": result.hierarchy, "orphans": result.orphans}, f, indent=2, default=str
            )
        console.print(f"[green]✓ Hierarchy written to {output}[/green]")
    else:
        console.print(_hierarchy_tree(result))

    if result.has_orphans:
        console.print(f"\n[yellow]{len(result.orphans)} entities without a parent:[/yellow]")
        for orphan in result.orphans:
            console.print(
                f"  {orphan['entity']} {orphan['id']} "
                f"[dim](missing {orphan['parent']} {orphan['parent_id']})[/dim]"
            )


def _name(kind: str, item: dict[str, Any]) -> str:
    return f"[cyan]{kind}[/cyan] {item.get('name', '')} [dim]({item.get('id')})[/dim]"


def _hierarchy_tree(result: HierarchyResult) -> Tree:
    root = Tree("[bold]Campaign Manager[/bold]")

    def add_placement(parent: Tree, placement: dict[str, Any]) -> None:
        node = parent.add(_name("Placement", placement))
        for ad in placement.get("ads") or []:
            ad_node = node.add(_name("Ad", ad))
            for assignment in ad.get("creatives") or []:
                creative = assignment.get("creative") or {"id": assignment.get("creativeId")}
                ad_node.add(_name("Creative", creative))

    for campaign in result.hierarchy:
        campaign_node = root.add(_name("Campaign", campaign))
        for group in campaign.get("placementGroups") or []:
            group_node = campaign_node.add(_name("Placement Group", group))
            for placement in group.get("placements") or []:
                add_placement(group_node, placement)
        for placement in campaign.get("placements") or []:
            add_placement(campaign_node, placement)
    return root


@app.command()
def ids(
    action: Annotated[
        str,
        typer.Argument(help="Action: 'show' (list temporary ID mappings), 'clear' (forget them)"),
    ] = "show",
    config_path: ConfigOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Show or clear the temporary-to-Campaign Manager ID map."""
    config = get_config(config_path)
    engine = SyncEngine(config)

    try:
        _ids_action(engine, action, yes)
    except SyncError as e:
        console.print(f"[red]ID map error: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        engine.close()


def _ids_action(engine: SyncEngine, action: str, yes: bool) -> None:
    if action == "show":
        id_map = engine.load_id_map()
        table = Table(title="ID Map")
        table.add_column("Table", style="cyan")
        table.add_column("Temporary ID")
        table.add_column("Campaign Manager ID", style="green")
        for table_name, mapping in sorted(id_map.items()):
            for key, value in sorted(mapping.items()):
                if is_temporary_id(key):
                    table.add_row(table_name, key, value)
        console.print(table)
    elif action == "clear":
        if not yes and not typer.confirm("Forget every temporary ID mapping?"):
            raise typer.Exit(0)
        engine.clear_id_map()
        console.print("[green]✓ ID map cleared[/green]")
    else:
        console.print(f"[red]Unknown action: {action}. Use 'show' or 'clear'.[/red]")
        raise typer.Exit(1)


@app.command()
def status(
    config_path: ConfigOption = None,
) -> None:
    """Show tables, row counts and the last load and push of each entity."""
    config = get_config(config_path)
    engine = SyncEngine(config)

    try:
        info = engine.get_status()
    except SyncError as e:
        console.print(f"[red]Error reading status: {e}[/red]")
        raise typer.Exit(1) from None
    finally:
        engine.close()

    console.print(f"[bold]State File:[/bold] {engine.state_path}")
    console.print(f"[bold]Session Generation:[/bold] {info['generation']}\n")

    table = Table(title="Entity Status")
    table.add_column("Entity", style="cyan")
    table.add_column("Table", style="dim")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Mapped IDs", justify="right")
    table.add_column("Last Load", style="blue")
    table.add_column("Last Push", style="blue")

    for entity, tinfo in info["tables"].items():
        state = info["entities"].get(entity, {})
        table.add_row(
            entity,
            tinfo["table"] or "[red]missing[/red]",
            str(tinfo["rows"]) if tinfo["rows"] is not None else "-",
            str(info["id_map"].get(tinfo["table"], 0)) if tinfo["table"] else "-",
            state.get("last_load") or "Never",
            state.get("last_push") or "Never",
        )

    console.print(table)


@app.command(name="cache")
def cache_cmd(
    action: Annotated[
        str,
        typer.Argument(
            help="Action: 'stats' (show cache info), 'clear' (delete all cached data), "
            "'cleanup' (delete expired entries)"
        ),
    ] = "stats",
    config_path: ConfigOption = None,
) -> None:
    """Manage the shared SQLite entity cache used while pushing.

    Examples:

        # Show cache stats
        cm-sheet-sync cache stats

        # Clear all cached data
        cm-sheet-sync cache clear
    """
    config = get_config(config_path)
    cache = SQLiteCache(
        cache_dir=config.sync.cache_dir,
        default_ttl=parse_ttl(config.sync.cache_ttl),
    )

    if action == "clear":
        cache.clear()
        console.print("[green]✓ Cache cleared[/green]")
        console.print(f"[dim]Database: {cache.db_path}[/dim]")
    elif action == "cleanup":
        removed = cache.cleanup_expired()
        console.print(f"[green]✓ Removed {removed} expired entries[/green]")
    elif action == "stats":
        stats = cache.get_stats()
        table = Table(title="Entity Cache")
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        table.add_row("Database", stats.db_path)
        table.add_row("Entries", str(stats.total_entries))
        table.add_row("Expired", str(stats.expired_entries))
        size_mb = round(stats.db_size_bytes / (1024 * 1024), 2)
        table.add_row("Size", f"{size_mb} MB ({stats.db_size_bytes:,} bytes)")
        console.print(table)
    else:
        console.print(f"[red]Unknown action: {action}. Use 'stats', 'clear' or 'cleanup'.[/red]")
        raise typer.Exit(1)


@app.command()
def config_show(
    config_path: ConfigOption = None,
) -> None:
    """Show current configuration (with secrets masked)."""
    config = get_config(config_path)

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    cm = config.campaign_manager
    table.add_row("CM Profile ID", cm.profile_id or "[red]Not set[/red]")
    cm_token = cm.access_token
    table.add_row("CM Token", f"{cm_token[:8]}..." if cm_token else "[red]Not set[/red]")
    table.add_row("CM API Version", cm.api_version)
    ss_token = config.smartsheet.access_token
    table.add_row("Smartsheet Token", f"{ss_token[:8]}..." if ss_token else "[red]Not set[/red]")
    workspace = config.smartsheet.workspace_id or config.smartsheet.workspace_name
    table.add_row("Smartsheet Workspace", str(workspace) if workspace else "[dim]Not set[/dim]")
    table.add_row("Cache Mode", config.sync.cache_mode)
    table.add_row("Cache TTL", config.sync.cache_ttl)
    table.add_row("Max Retries", str(config.sync.max_retries))
    table.add_row("Active Ads Only", str(config.sync.active_only))
    table.add_row("QA Table", config.sync.qa_table)
    table.add_row("State File", str(config.sync.state_file))

    console.print(table)


if __name__ == "__main__":
    app()
