"""
Session registry: the up-to-three tmux sessions of each workspace.

Roles:
    main  - "dev-{project}-{feature}", runs the agent CLI
    shell - main + "-shell", a plain terminal
    run   - main + "-run", runs the project's run config

Probing (session list, pane capture) goes through the async CommandRunner.
Lifecycle actions (create, kill, attach, options) go through TmuxInterface.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .dependency_check import available_agent_tools
from .models import SessionInfo, Workspace
from .protocols import CommandRunnerInterface, TmuxInterface
from .run_config import load_run_config
from .settings import (
    PANE_CAPTURE_LINES,
    RUN_SUFFIX,
    SESSION_PREFIX,
    SHELL_SUFFIX,
    TMUX_DISPLAY_TIME,
)
from .status_constants import (
    AI_NOT_RUNNING,
    ROLE_MAIN,
    ROLE_RUN,
    ROLE_SHELL,
    TOOL_NONE,
)
from .status_patterns import (
    AGENT_TOOLS,
    CODEX_PANE_MARKERS,
    classify_pane,
    detect_tool_from_process,
    parse_pane_list,
)

logger = logging.getLogger(__name__)

PANE_FORMAT = "#{window_index}.#{pane_index} #{pane_current_command}"

RUN_SUCCESS = "success"
RUN_NO_CONFIG = "no_config"
RUN_FAILED = "failed"


# =============================================================================
# Naming (pure)
# =============================================================================

def session_name(project: str, feature: str, role: str = ROLE_MAIN) -> str:
    """Deterministic tmux session name for a workspace role."""
    main = f"{SESSION_PREFIX}{project}-{feature}"
    if role == ROLE_MAIN:
        return main
    if role == ROLE_SHELL:
        return main + SHELL_SUFFIX
    if role == ROLE_RUN:
        return main + RUN_SUFFIX
    raise ValueError(f"Unknown session role: {role}")


def workspace_session_names(workspace: Workspace) -> Tuple[str, str, str]:
    """(main, shell, run) session names of a workspace."""
    return (
        session_name(workspace.project, workspace.feature, ROLE_MAIN),
        session_name(workspace.project, workspace.feature, ROLE_SHELL),
        session_name(workspace.project, workspace.feature, ROLE_RUN),
    )


def needs_tool_selection(tool: Optional[str], available: List[str]) -> bool:
    """The caller must pick a tool: none chosen and more than one installed."""
    return (not tool or tool == TOOL_NONE) and len(available) > 1


# =============================================================================
# Session list memo
# =============================================================================

@dataclass(frozen=True)
class SessionListSnapshot:
    names: Tuple[str, ...]
    fetched_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class SessionListCache:
    """Short-lived memo of `tmux list-sessions`.

    Concurrent probes in one pass share a single in-flight fetch, so the
    snapshot is written once and read by all of them.
    """

    def __init__(self, runner: CommandRunnerInterface, ttl: float = 1.5,
                 clock: Callable[[], float] = time.monotonic,
                 tmux_argv: Tuple[str, ...] = ("tmux",)):
        self._runner = runner
        self._tmux_argv = tuple(tmux_argv)
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[SessionListSnapshot] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def snapshot(self) -> Optional[SessionListSnapshot]:
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    async def get(self) -> List[str]:
        now = self._clock()
        if self._snapshot is not None and self._snapshot.is_fresh(now):
            return list(self._snapshot.names)
        if self._pending is not None:
            return list(await self._pending)

        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        try:
            names = await self._fetch()
            fetched_at = self._clock()
            self._snapshot = SessionListSnapshot(names, fetched_at, fetched_at + self.ttl)
            self._pending.set_result(names)
            return list(names)
        except asyncio.CancelledError:
            self._pending.cancel()
            raise
        except Exception as e:
            self._pending.set_exception(e)
            # Mark retrieved so an unawaited failure isn't reported
            self._pending.exception()
            raise
        finally:
            self._pending = None

    async def _fetch(self) -> Tuple[str, ...]:
        result = await self._runner.run(*self._tmux_argv, "list-sessions", "-F", "#S")
        if result.output is None:
            # No server running is the common case here
            return ()
        return tuple(line for line in result.output.splitlines() if line.strip())


# =============================================================================
# Registry
# =============================================================================

class SessionRegistry:
    """Names, probes and manages the sessions of every workspace."""

    def __init__(
        self,
        runner: CommandRunnerInterface,
        tmux: TmuxInterface,
        session_list_ttl: float = 1.5,
        available_tools: Callable[[], List[str]] = available_agent_tools,
        clock: Callable[[], float] = time.monotonic,
        tmux_argv: Tuple[str, ...] = ("tmux",),
    ):
        self.runner = runner
        self.tmux = tmux
        self.tmux_argv = tuple(tmux_argv)
        self.session_list = SessionListCache(runner, ttl=session_list_ttl, clock=clock,
                                             tmux_argv=self.tmux_argv)
        self._available_tools = available_tools

    # -------------------------------------------------------------------------
    # Probing
    # -------------------------------------------------------------------------

    async def list_sessions(self) -> List[str]:
        return await self.session_list.get()

    async def capture_pane(self, target: str) -> str:
        result = await self.runner.run(
            *self.tmux_argv, "capture-pane", "-p", "-t", target, "-S", f"-{PANE_CAPTURE_LINES}")
        return result.stdout if result.ok else ""

    async def list_panes(self, session: str) -> List[Tuple[str, str]]:
        result = await self.runner.run(*self.tmux_argv, "list-panes", "-t", f"={session}", "-F", PANE_FORMAT)
        return parse_pane_list(result.output or "")

    async def detect_agent(self, session: str) -> Tuple[str, Optional[str], str]:
        """Find which pane runs an agent CLI.

        Returns:
            (tool, pane target, captured content of that pane); tool is
            "none" when no pane runs a known agent.
        """
        for index, command in await self.list_panes(session):
            target = f"{session}:{index}"
            tool = detect_tool_from_process(command)
            if tool != TOOL_NONE and AGENT_TOOLS[tool].process_patterns != ("node",):
                return tool, target, await self.capture_pane(target)
            if command.lower() == "node" or tool != TOOL_NONE:
                content = await self.capture_pane(target)
                if any(marker in content for marker in CODEX_PANE_MARKERS):
                    return "codex", target, content
        return TOOL_NONE, None, ""

    async def get_ai_status(self, session: str) -> Tuple[str, str]:
        """(tool, activity status) of the agent in a session."""
        tool, _, content = await self.detect_agent(session)
        if tool == TOOL_NONE or not content:
            return TOOL_NONE, AI_NOT_RUNNING
        return tool, classify_pane(content, tool)

    async def probe(self, workspace: Workspace) -> Tuple[SessionInfo, bool, bool]:
        """Session state of one workspace.

        Returns:
            (main SessionInfo, shell session exists, run session exists)
        """
        main, shell, run = workspace_session_names(workspace)
        sessions = set(await self.list_sessions())
        if main in sessions:
            tool, status = await self.get_ai_status(main)
            info = SessionInfo(name=main, role=ROLE_MAIN, attached=True, tool=tool, status=status)
        else:
            info = SessionInfo(name=main, role=ROLE_MAIN)
        return info, shell in sessions, run in sessions

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def set_option(self, option: str, value: str) -> bool:
        return self.tmux.set_option(option, value)

    def set_session_option(self, session: str, option: str, value: str) -> bool:
        return self.tmux.set_session_option(session, option, value)

    def create_session(self, name: str, cwd: str, command: Optional[str] = None,
                       auto_exit: bool = False) -> bool:
        """Create a detached session.

        Args:
            name: session name
            cwd: start directory
            command: optional first-window command
            auto_exit: close the session when its command exits
        """
        created = self.tmux.new_session(name, cwd, command)
        self.session_list.invalidate()
        if not created:
            return False
        self.set_option("display-time", str(TMUX_DISPLAY_TIME))
        if auto_exit:
            self.set_session_option(name, "remain-on-exit", "off")
        logger.info("Created session %s in %s", name, cwd)
        return True

    def available_tools(self) -> List[str]:
        return self._available_tools()

    def create_main_session(self, workspace: Workspace, tool: Optional[str] = None) -> Optional[str]:
        """Create the agent session and start an agent CLI in it.

        Uses the requested tool, else the first installed one. When no agent
        CLI is installed the session is created with a plain shell.

        Returns:
            The tool started ("none" for a plain shell), or None on failure
        """
        name = session_name(workspace.project, workspace.feature, ROLE_MAIN)
        if not self.create_session(name, workspace.path):
            return None
        if not tool or tool == TOOL_NONE:
            available = self.available_tools()
            tool = available[0] if available else TOOL_NONE
        if tool != TOOL_NONE:
            command = AGENT_TOOLS[tool].command if tool in AGENT_TOOLS else tool
            self.tmux.send_keys(name, command, enter=True)
        return tool

    def create_shell_session(self, workspace: Workspace) -> bool:
        name = session_name(workspace.project, workspace.feature, ROLE_SHELL)
        return self.create_session(name, workspace.path, os.environ.get("SHELL", "/bin/bash"))

    def create_run_session(self, workspace: Workspace, config_path: Path) -> str:
        """Create the run session and type the run config into it.

        Returns:
            "no_config" when the project has no run config, "failed" when the
            session could not be created, else "success".
            An invalid config is reported inside the session.
        """
        if not Path(config_path).exists():
            return RUN_NO_CONFIG
        name = session_name(workspace.project, workspace.feature, ROLE_RUN)
        if not self.create_session(name, workspace.path):
            return RUN_FAILED
        try:
            config = load_run_config(config_path)
        except (OSError, ValueError) as e:
            self.tmux.send_keys(name, f'echo "Invalid run config at {config_path}: {e}"')
            return RUN_SUCCESS
        for line in config.keystrokes():
            self.tmux.send_keys(name, line, enter=True)
        return RUN_SUCCESS

    def attach_interactive(self, name: str) -> int:
        """Hand the terminal to a session; returns after the user detaches."""
        self.set_option("display-time", str(TMUX_DISPLAY_TIME))
        code = self.tmux.attach(name)
        self.session_list.invalidate()
        return code

    def attach_or_create(self, workspace: Workspace, role: str = ROLE_MAIN,
                         run_config_path: Optional[Path] = None,
                         tool: Optional[str] = None) -> str:
        """Attach to a role session, creating it first if needed.

        Returns:
            "success", "no_config" for a run session without a config, or
            "failed" when the session could not be created or attached
        """
        name = session_name(workspace.project, workspace.feature, role)
        if not self.tmux.has_session(name):
            if role == ROLE_MAIN:
                if self.create_main_session(workspace, tool) is None:
                    return RUN_FAILED
            elif role == ROLE_SHELL:
                if not self.create_shell_session(workspace):
                    return RUN_FAILED
            else:
                if run_config_path is None:
                    return RUN_NO_CONFIG
                outcome = self.create_run_session(workspace, run_config_path)
                if outcome != RUN_SUCCESS:
                    return outcome
        if self.attach_interactive(name) != 0:
            logger.warning("Attach to %s failed", name)
            return RUN_FAILED
        return RUN_SUCCESS

    def kill(self, name: str) -> bool:
        """Kill a session. Killing an absent session is a no-op."""
        killed = self.tmux.kill_session(name)
        self.session_list.invalidate()
        if killed:
            logger.info("Killed session %s", name)
        return killed

    def kill_workspace_sessions(self, workspace: Workspace) -> List[str]:
        """Kill all three role sessions; returns the names that existed."""
        return [name for name in workspace_session_names(workspace) if self.kill(name)]

    async def cleanup_orphaned_sessions(self, workspaces: Iterable[Workspace]) -> List[str]:
        """Kill dev- sessions that no longer belong to an active workspace.

        Shell sessions are always kept.
        """
        valid = set()
        for workspace in workspaces:
            valid.update(workspace_session_names(workspace))
        killed = []
        for name in await self.list_sessions():
            if not name.startswith(SESSION_PREFIX) or name in valid:
                continue
            if name.endswith(SHELL_SUFFIX):
                continue
            if self.kill(name):
                killed.append(name)
        return killed
