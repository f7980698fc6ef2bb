"""
CLI interface for Devfleet using Typer.

Commands are registered on the shared app by importing their modules.
"""

from ._shared import app, main_callback  # noqa: F401

# Import submodules to register their commands with the Typer apps
from . import workspaces  # noqa: F401
from . import sessions  # noqa: F401
from . import config  # noqa: F401


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
