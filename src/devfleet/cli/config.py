"""
Config commands: init, show, path.
"""

from typing import Annotated

import typer
from rich import print as rprint

from ._shared import config_app, get_settings


@config_app.callback(invoke_without_command=True)
def config_default(ctx: typer.Context):
    """Show current configuration (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _config_show(ctx)


@config_app.command("init")
def config_init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite existing config file")
    ] = False,
):
    """Create a config file with documented defaults.

    Creates ~/.devfleet/config.yaml with all options commented out.
    Use --force to overwrite an existing config file.
    """
    from .. import config

    config.CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)

    if config.CONFIG_PATH.exists() and not force:
        rprint(f"[yellow]Config file already exists:[/yellow] {config.CONFIG_PATH}")
        rprint("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(1)

    config.CONFIG_PATH.write_text(config.CONFIG_TEMPLATE)
    rprint(f"[green]✓[/green] Created config file: [bold]{config.CONFIG_PATH}[/bold]")
    rprint("[dim]Edit to customize your settings[/dim]")


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show the effective configuration."""
    _config_show(ctx)


def _config_show(ctx: typer.Context):
    """Print the resolved settings and where they came from."""
    from .. import config

    settings = get_settings(ctx)
    if config.CONFIG_PATH.exists():
        rprint(f"[bold]Configuration[/bold] ({config.CONFIG_PATH}):\n")
    else:
        rprint(f"[dim]No config file found at {config.CONFIG_PATH}; showing defaults[/dim]")
        rprint("[dim]Run 'devfleet config init' to create one[/dim]\n")

    refresh = settings.refresh
    rprint(f"  projects_dir: {settings.projects_dir}")
    rprint(f"  page_size: {settings.page_size}")
    rprint("  refresh:")
    rprint(f"    full_interval: {refresh.full_interval}s")
    rprint(f"    visible_interval: {refresh.visible_interval}s")
    rprint(f"    review_interval: {refresh.review_interval}s")
    rprint(f"    full_concurrency: {refresh.full_concurrency}")
    rprint(f"    visible_concurrency: {refresh.visible_concurrency}")
    rprint(f"    session_list_ttl: {refresh.session_list_ttl}s")
    if settings.idle_timeout_minutes:
        rprint(f"  idle_eviction: after {settings.idle_timeout_minutes:g} min")
    else:
        rprint("  idle_eviction: off")
    if not settings.intervals_enabled:
        rprint("  [yellow]refresh intervals disabled (NO_APP_INTERVALS=1)[/yellow]")


@config_app.command("path")
def config_path():
    """Show the config file path."""
    from .. import config
    print(config.CONFIG_PATH)
