"""
Session commands: attach.
"""

from typing import Annotated

import typer

from ._shared import app, build_engine, console, find_workspace, get_settings
from ..status_constants import ALL_ROLES, ROLE_MAIN


@app.command("attach")
def attach(
    ctx: typer.Context,
    project: Annotated[str, typer.Argument(help="Project directory name")],
    feature: Annotated[str, typer.Argument(help="Feature name")],
    role: Annotated[
        str, typer.Option("--role", "-r", help="Session to attach: main, shell or run")
    ] = ROLE_MAIN,
):
    """Attach to a workspace session, creating it if needed.

    Returns to the shell when you detach (Ctrl+b d).
    """
    from ..dependency_check import require_tmux
    from ..exceptions import TmuxNotFoundError
    from ..sessions import RUN_NO_CONFIG, RUN_SUCCESS, session_name

    if role not in ALL_ROLES:
        console.print(f"[red]Unknown role '{role}'[/red] (choose from {', '.join(ALL_ROLES)})")
        raise typer.Exit(1)
    try:
        require_tmux()
    except TmuxNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    settings = get_settings(ctx)
    workspace = find_workspace(settings, project, feature)
    engine = build_engine(settings)
    outcome = engine.scheduler.attach(workspace, role)
    if outcome == RUN_NO_CONFIG:
        console.print(f"[yellow]No run config for {project}[/yellow]")
        console.print(f"[dim]Create {settings.run_config_path(project)} to use the run session[/dim]")
        raise typer.Exit(1)
    if outcome != RUN_SUCCESS:
        console.print(f"[red]Could not start {session_name(project, feature, role)}[/red]")
        raise typer.Exit(1)
