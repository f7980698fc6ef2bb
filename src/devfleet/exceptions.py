"""
Exception types for Devfleet.

The reconciliation core never raises these out of a probe; they are used at
the edges (CLI entry points, dependency checks, name validation).
"""


class DevfleetError(Exception):
    """Base class for all Devfleet errors."""


class ExternalToolNotFoundError(DevfleetError):
    """A required external command-line tool is not on PATH."""

    tool = ""
    install_hint = ""

    def __init__(self, message: str = None):
        if message is None:
            message = f"{self.tool} is not installed or not in PATH."
            if self.install_hint:
                message += f" {self.install_hint}"
        super().__init__(message)


class TmuxNotFoundError(ExternalToolNotFoundError):
    tool = "tmux"
    install_hint = "Install it with your package manager (e.g. 'brew install tmux')."


class GitNotFoundError(ExternalToolNotFoundError):
    tool = "git"


class GhNotFoundError(ExternalToolNotFoundError):
    tool = "gh"
    install_hint = "Pull request status needs the GitHub CLI (https://cli.github.com)."


class InvalidNameError(DevfleetError):
    """A project or feature name cannot be used as a single path segment."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid name '{name}': {reason}")
