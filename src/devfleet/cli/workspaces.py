"""
Workspace commands: list, watch, create, archive, archived, branches, cleanup, diff.
"""

import asyncio
import time
from typing import Annotated, List, Optional

import typer
from rich.table import Table
from rich.text import Text

from ._shared import app, build_engine, console, find_workspace, get_settings
from ..models import MergedRecord
from ..status_constants import format_review_cell, get_ai_symbol
from ..status_derivation import derive_record, get_display


# =============================================================================
# Rendering
# =============================================================================

def _changes_cell(record: MergedRecord) -> str:
    git = record.git
    parts = []
    if git.has_changes:
        parts.append(f"{git.modified_files}M")
    if git.ahead:
        parts.append(f"↑{git.ahead}")
    if git.behind:
        parts.append(f"↓{git.behind}")
    if not parts and git.is_pushed:
        parts.append("✓")
    return " ".join(parts) or "-"


def _diff_cell(record: MergedRecord) -> str:
    git = record.git
    if not git.has_base_diff:
        return "-"
    return f"+{git.base_added_lines}/-{git.base_deleted_lines}"


def _ai_cell(record: MergedRecord) -> str:
    session = record.session
    text = get_ai_symbol(session.status)
    if session.attached and session.tool != "none":
        text += f" {session.tool}"
    if record.shell_attached:
        text += " sh"
    if record.run_attached:
        text += " run"
    return text


def format_ago(timestamp: int, now: Optional[float] = None) -> str:
    """Format a unix timestamp as time ago ("45s ago", "5m ago", "3h ago", "2d ago")."""
    if not timestamp:
        return "-"
    if now is None:
        now = time.time()
    delta = max(now - timestamp, 0)
    if delta < 60:
        return f"{int(delta)}s ago"
    elif delta < 3600:
        return f"{int(delta // 60)}m ago"
    elif delta < 86400:
        return f"{int(delta // 3600)}h ago"
    return f"{int(delta // 86400)}d ago"


def record_cells(record: MergedRecord, number: int) -> List[Text]:
    """Table cells for one record, with its status label highlighted."""
    ws = record.workspace
    cells = [
        Text(str(number)),
        Text(f"{ws.project}/{ws.feature}"),
        Text(_ai_cell(record)),
        Text(_diff_cell(record)),
        Text(_changes_cell(record)),
        Text(format_review_cell(record.review)),
    ]
    label = derive_record(record)
    display = get_display(label)
    if label.value and display.highlight:
        style = display.fg if display.bg is None else f"{display.fg} on {display.bg}"
        cells[int(display.column)].stylize(style)
    return cells


def build_table(records: List[MergedRecord], start: int = 0) -> Table:
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Project/Feature")
    table.add_column("AI")
    table.add_column("Diff", justify="right")
    table.add_column("Changes")
    table.add_column("PR")
    table.add_column("Status", style="dim")
    for offset, record in enumerate(records):
        cells = record_cells(record, start + offset + 1)
        table.add_row(*cells, derive_record(record).value)
    return table


# =============================================================================
# Commands
# =============================================================================

@app.command("list")
def list_workspaces(
    ctx: typer.Context,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number (1-based)")] = 1,
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Show every workspace")] = False,
    reviews: Annotated[bool, typer.Option("--reviews/--no-reviews", help="Fetch PR status")] = True,
):
    """Probe every workspace once and print its status."""
    from ..review_cache import REFRESH_ALL, REFRESH_NONE

    settings = get_settings(ctx)
    engine = build_engine(settings)

    async def _collect():
        await engine.scheduler.full_pass()
        await engine.scheduler.refresh_reviews(REFRESH_ALL if reviews else REFRESH_NONE)
        return engine.scheduler.records

    records = asyncio.run(_collect())
    if not records:
        console.print(f"[dim]No workspaces under {settings.projects_dir}[/dim]")
        return

    if show_all:
        start, shown = 0, records
    else:
        start = max(page - 1, 0) * settings.page_size
        shown = records[start:start + settings.page_size]
    console.print(build_table(shown, start))
    if not show_all and len(records) > settings.page_size:
        pages = (len(records) + settings.page_size - 1) // settings.page_size
        console.print(f"[dim]Page {max(page, 1)}/{pages} ({len(records)} workspaces)[/dim]")


@app.command("watch")
def watch(
    ctx: typer.Context,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number (1-based)")] = 1,
):
    """Keep refreshing the status table until Ctrl+C."""
    from rich.live import Live

    settings = get_settings(ctx)
    engine = build_engine(settings)
    offset = max(page - 1, 0) * settings.page_size

    async def _watch():
        stop = asyncio.Event()
        with Live(build_table([]), console=console, refresh_per_second=4) as live:
            engine.scheduler.subscribe(
                lambda records: live.update(
                    build_table(records[offset:offset + settings.page_size], offset)))
            await engine.scheduler.run(stop, window=lambda: (offset, settings.page_size))

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        pass


@app.command("create")
def create(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
    feature: Annotated[str, typer.Argument(help="Feature name (branch feature/<name>)")],
    tool: Annotated[Optional[str], typer.Option("--tool", "-t", help="Agent CLI to start")] = None,
    from_branch: Annotated[
        Optional[str], typer.Option("--from-branch", "-b", help="Check out an existing branch")
    ] = None,
):
    """Create a feature worktree and its agent session."""
    from ..dependency_check import require_git, require_tmux
    from ..exceptions import ExternalToolNotFoundError, InvalidNameError
    from ..sessions import needs_tool_selection
    from ..workspace_ops import validate_feature_name

    try:
        validate_feature_name(feature)
        require_git()
        require_tmux()
    except (InvalidNameError, ExternalToolNotFoundError) as e:
        console.print(f"[red]Cannot create:[/red] {e}")
        raise typer.Exit(1)

    engine = build_engine(get_settings(ctx))
    available = engine.registry.available_tools()
    if needs_tool_selection(tool, available):
        tool = typer.prompt(f"Agent tool ({', '.join(available)})", default=available[0])

    if from_branch:
        coro = engine.workspaces.create_from_branch(project, from_branch, feature, tool)
    else:
        coro = engine.workspaces.create_feature(project, feature, tool)
    workspace = asyncio.run(coro)
    if workspace is None:
        console.print(f"[red]Failed to create {project}/{feature}[/red] [dim](run with -v for details)[/dim]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Created [bold]{project}/{feature}[/bold] at {workspace.path}")


@app.command("archive")
def archive(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
    feature: Annotated[str, typer.Argument(help="Feature name")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
):
    """Kill a workspace's sessions and move its worktree to the archive."""
    settings = get_settings(ctx)
    workspace = find_workspace(settings, project, feature)
    if not yes and not typer.confirm(f"Archive {project}/{feature}?"):
        raise typer.Exit(1)

    engine = build_engine(settings)
    archived = asyncio.run(engine.workspaces.archive_feature(workspace))
    if archived is None:
        console.print(f"[red]Failed to archive {project}/{feature}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Archived to {archived}")


@app.command("archived")
def archived(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
):
    """List a project's archived workspaces."""
    from ..workspace_ops import list_archived

    entries = list_archived(get_settings(ctx), project)
    if not entries:
        console.print(f"[dim]No archived workspaces for {project}[/dim]")
        return
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Feature")
    table.add_column("Archived")
    table.add_column("Path", style="dim")
    for entry in entries:
        table.add_row(entry.feature, entry.archived_at or "-", entry.path)
    console.print(table)


@app.command("branches")
def branches(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
):
    """List branches that have no workspace yet (for create --from-branch)."""
    settings = get_settings(ctx)
    engine = build_engine(settings)
    candidates = asyncio.run(engine.workspaces.list_branch_candidates(project))
    if not candidates:
        console.print(f"[dim]No branches to open for {project}[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Branch")
    table.add_column("Ahead", justify="right")
    table.add_column("Behind", justify="right")
    table.add_column("Diff", justify="right")
    table.add_column("Last commit", style="dim")
    for branch in candidates:
        table.add_row(
            branch.name,
            f"↑{branch.ahead}",
            f"↓{branch.behind}" if branch.behind else "-",
            f"+{branch.added_lines}/-{branch.deleted_lines}",
            format_ago(branch.timestamp),
        )
    console.print(table)
    console.print(f"[dim]devfleet create {project} <name> --from-branch <branch>[/dim]")


@app.command("cleanup")
def cleanup(ctx: typer.Context):
    """Kill dev- sessions whose workspace no longer exists."""
    from ..inventory import discover_workspaces

    settings = get_settings(ctx)
    engine = build_engine(settings)

    async def _cleanup():
        workspaces = await discover_workspaces(
            engine.runner, settings.projects_dir, settings.refresh.inventory_concurrency)
        return await engine.registry.cleanup_orphaned_sessions(workspaces)

    killed = asyncio.run(_cleanup())
    if not killed:
        console.print("[dim]No orphaned sessions[/dim]")
        return
    for name in killed:
        console.print(f"[yellow]killed[/yellow] {name}")


_DIFF_STYLES = {
    "header": "bold cyan",
    "context": "",
    "added": "green",
    "removed": "red",
    "empty": "dim",
}


@app.command("diff")
def diff(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
    feature: Annotated[str, typer.Argument(help="Feature name")],
    uncommitted: Annotated[
        bool, typer.Option("--uncommitted", "-u", help="Only changes not yet committed")
    ] = False,
):
    """Show a workspace's changes side by side."""
    from ..diff_align import align, load_diff
    from ..runner import CommandRunner

    settings = get_settings(ctx)
    workspace = find_workspace(settings, project, feature)
    lines = asyncio.run(load_diff(CommandRunner(), workspace.path, against_base=not uncommitted))
    rows = align(lines)
    if not rows:
        console.print("[dim]No changes[/dim]")
        return

    table = Table(show_header=False, box=None, pad_edge=False, expand=True)
    table.add_column("before", ratio=1, overflow="fold")
    table.add_column("after", ratio=1, overflow="fold")
    for row in rows:
        table.add_row(
            Text(row.left.text, style=_DIFF_STYLES.get(row.left.type, "")),
            Text(row.right.text, style=_DIFF_STYLES.get(row.right.type, "")),
        )
    console.print(table)
