"""
Shared CLI state: Typer apps, console, options, and engine wiring.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Optional

import typer
from rich.console import Console

from ..settings import Settings

if TYPE_CHECKING:
    from ..implementations import RealTmux
    from ..review_cache import ReviewCache
    from ..runner import CommandRunner
    from ..scheduler import RefreshScheduler
    from ..sessions import SessionRegistry
    from ..workspace_ops import WorkspaceManager

# Main app
app = typer.Typer(
    name="devfleet",
    help="Track feature worktrees, their tmux sessions and pull requests",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode="rich",
)

# Config subcommand group
config_app = typer.Typer(
    name="config",
    help="Manage configuration",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(config_app, name="config")

# Console for rich output
console = Console()

DirOption = Annotated[
    Optional[str],
    typer.Option("--dir", "-d", help="Projects directory (default: $PROJECTS_DIR or cwd)"),
]

VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Debug logging to stderr and ~/.devfleet/devfleet.log"),
]


@dataclass
class Engine:
    """The reconciliation engine wired for one CLI invocation."""

    settings: Settings
    runner: "CommandRunner"
    tmux: "RealTmux"
    registry: "SessionRegistry"
    review_cache: "ReviewCache"
    scheduler: "RefreshScheduler"
    workspaces: "WorkspaceManager"


def build_engine(settings: Settings) -> Engine:
    """Create the runner, tmux backend, registry, review cache and scheduler."""
    from ..idle import IdleEvictionPolicy
    from ..implementations import RealTmux
    from ..review_cache import ReviewCache
    from ..runner import CommandRunner
    from ..scheduler import RefreshScheduler
    from ..sessions import SessionRegistry
    from ..workspace_ops import WorkspaceManager

    runner = CommandRunner()
    tmux = RealTmux()
    registry = SessionRegistry(
        runner, tmux,
        session_list_ttl=settings.refresh.session_list_ttl,
        tmux_argv=tuple(tmux.tmux_argv()),
    )
    review_cache = ReviewCache(runner, settings.projects_dir)
    idle_policy = None
    if settings.idle_timeout_minutes:
        idle_policy = IdleEvictionPolicy(settings.idle_timeout_minutes)
    scheduler = RefreshScheduler(settings, runner, registry, review_cache, idle_policy)
    return Engine(
        settings=settings,
        runner=runner,
        tmux=tmux,
        registry=registry,
        review_cache=review_cache,
        scheduler=scheduler,
        workspaces=WorkspaceManager(settings, runner, registry),
    )


def get_settings(ctx: typer.Context) -> Settings:
    """Settings resolved by the main callback (resolved here if it didn't run)."""
    root = ctx.find_root()
    if not isinstance(root.obj, Settings):
        from ..config import build_settings
        root.obj = build_settings()
    return root.obj


def find_workspace(settings: Settings, project: str, feature: str):
    """The active workspace for project/feature, or exit with an error."""
    from ..models import Workspace

    path = settings.branches_dir(project) / feature
    if not path.is_dir():
        console.print(f"[red]No workspace {project}/{feature}[/red] [dim]({path})[/dim]")
        raise typer.Exit(1)
    return Workspace(project=project, feature=feature, path=str(path),
                     mtime=Path(path).stat().st_mtime)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    projects_dir: DirOption = None,
    verbose: VerboseOption = False,
):
    """Show workspace status when no command is given."""
    from ..config import build_settings
    from ..logging_config import setup_cli_logging

    setup_cli_logging(verbose)
    ctx.obj = build_settings(projects_dir)

    if ctx.invoked_subcommand is None:
        from .workspaces import list_workspaces

        ctx.invoke(list_workspaces, ctx=ctx)
