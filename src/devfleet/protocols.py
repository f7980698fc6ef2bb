"""
Protocol definitions for external dependencies.

These interfaces allow dependency injection for testing: the probes take a
CommandRunnerInterface (async subprocess calls to git/tmux/gh) and the
session lifecycle takes a TmuxInterface (libtmux), and tests swap both for
the fakes in devfleet.mocks.
"""

from typing import Optional, Protocol, runtime_checkable

from .runner import CommandResult


@runtime_checkable
class CommandRunnerInterface(Protocol):
    """Interface for running external commands on the event loop"""

    async def run(self, *args: str, cwd: Optional[str] = None) -> CommandResult:
        """Run a command and wait for it to finish.

        Args:
            args: executable and arguments
            cwd: working directory for the child process

        Returns:
            CommandResult; never raises for a missing executable
        """
        ...


@runtime_checkable
class TmuxInterface(Protocol):
    """Interface for tmux session lifecycle operations"""

    def has_session(self, session: str) -> bool:
        """Check if a tmux session exists."""
        ...

    def new_session(self, session: str, cwd: str, command: Optional[str] = None) -> bool:
        """Create a detached session.

        Args:
            session: tmux session name
            cwd: start directory
            command: optional command for the first window; the session
                ends when it exits

        Returns:
            True if successful, False otherwise
        """
        ...

    def kill_session(self, session: str) -> bool:
        """Kill a session. Returns False if it did not exist."""
        ...

    def set_option(self, option: str, value: str) -> bool:
        """Set a global (server-wide) option."""
        ...

    def set_session_option(self, session: str, option: str, value: str) -> bool:
        """Set an option on one session."""
        ...

    def send_keys(self, session: str, keys: str, enter: bool = True) -> bool:
        """Type keys into the session's first pane.

        Returns:
            True if successful, False otherwise
        """
        ...

    def attach(self, session: str) -> int:
        """Attach the current terminal to a session.

        Blocks until the user detaches.

        Returns:
            Exit code of the tmux client
        """
        ...
