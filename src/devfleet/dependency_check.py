"""
Dependency checking for the external tools Devfleet shells out to.

tmux and git are required; gh is optional (without it review status stays
in the error state). Agent CLIs are detected so session creation can pick one.
"""

import shutil
import subprocess
from typing import List, Optional, Tuple

from .exceptions import GitNotFoundError, TmuxNotFoundError

AGENT_TOOLS = ["claude", "codex", "gemini"]


def find_executable(name: str) -> Optional[str]:
    """Find the path to an executable, or None."""
    return shutil.which(name)


def _check_tool(name: str, version_args: List[str]) -> Tuple[bool, Optional[str], Optional[str]]:
    """Check if a tool is available and get its version.

    Returns:
        Tuple of (is_available, path, version)
    """
    path = find_executable(name)
    if not path:
        return False, None, None

    try:
        result = subprocess.run(
            [name, *version_args],
            capture_output=True,
            text=True,
            timeout=5
        )
        version = result.stdout.strip() if result.returncode == 0 else None
        return True, path, version or None
    except (subprocess.SubprocessError, OSError):
        return True, path, None


def check_tmux() -> Tuple[bool, Optional[str], Optional[str]]:
    return _check_tool("tmux", ["-V"])


def check_git() -> Tuple[bool, Optional[str], Optional[str]]:
    return _check_tool("git", ["--version"])


def check_gh() -> Tuple[bool, Optional[str], Optional[str]]:
    available, path, version = _check_tool("gh", ["--version"])
    if version:
        # First line is "gh version X.Y.Z (date)"
        version = version.splitlines()[0]
    return available, path, version


def require_tmux() -> str:
    """Ensure tmux is available.

    Returns:
        Path to tmux executable

    Raises:
        TmuxNotFoundError: If tmux is not installed
    """
    available, path, _ = check_tmux()
    if not available:
        raise TmuxNotFoundError()
    return path


def require_git() -> str:
    available, path, _ = check_git()
    if not available:
        raise GitNotFoundError()
    return path


def available_agent_tools() -> List[str]:
    """Agent CLIs found on PATH, in preference order."""
    return [tool for tool in AGENT_TOOLS if find_executable(tool)]
