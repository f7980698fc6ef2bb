"""
Paths, naming conventions and runtime settings for Devfleet.

Layout of a projects directory:

    ~/projects/
    ├── myapp/                      # project (git repository)
    ├── myapp-branches/             # worktrees, one per feature
    │   ├── login-form/
    │   └── api-cache/
    └── myapp-archived/             # archived worktrees
        └── archived-20240101-120000_old-feature/

Settings are resolved once (CLI flag > environment > config file > cwd)
and passed explicitly to the components that need them.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


# =============================================================================
# Naming conventions
# =============================================================================

SESSION_PREFIX = "dev-"
SHELL_SUFFIX = "-shell"
RUN_SUFFIX = "-run"

DIR_BRANCHES_SUFFIX = "-branches"
DIR_ARCHIVED_SUFFIX = "-archived"
ARCHIVE_PREFIX = "archived-"
FEATURE_BRANCH_PREFIX = "feature/"

BASE_BRANCH_CANDIDATES = ["main", "master", "develop"]

RUN_CONFIG_FILE = "run-session.config.json"
ENV_FILE = ".env.local"
AGENT_DOC_FILE = "CLAUDE.md"
AGENT_SETTINGS_FILE = os.path.join(".claude", "settings.local.json")

# How long tmux shows messages like "detached"; 0 disables them
TMUX_DISPLAY_TIME = 0

# Lines of scrollback captured for activity detection
PANE_CAPTURE_LINES = 50


# =============================================================================
# Environment variables
# =============================================================================

ENV_PROJECTS_DIR = "PROJECTS_DIR"
ENV_NO_INTERVALS = "NO_APP_INTERVALS"
ENV_CONFIG = "DEVFLEET_CONFIG"
ENV_STATE_DIR = "DEVFLEET_STATE_DIR"


def get_state_dir() -> Path:
    """Directory for the config file and debug log.

    Respects DEVFLEET_STATE_DIR so tests can isolate state.
    """
    env_dir = os.environ.get(ENV_STATE_DIR)
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".devfleet"


def get_log_path() -> Path:
    return get_state_dir() / "devfleet.log"


def intervals_enabled() -> bool:
    """Periodic refresh loops are on unless NO_APP_INTERVALS=1."""
    return os.environ.get(ENV_NO_INTERVALS) != "1"


def resolve_projects_dir(cli_dir: Optional[str] = None,
                         config_dir: Optional[str] = None) -> Path:
    """Resolve the base directory that holds the projects.

    Precedence: --dir flag, PROJECTS_DIR env var, config file, cwd.
    """
    for candidate in (cli_dir, os.environ.get(ENV_PROJECTS_DIR), config_dir):
        if candidate:
            return Path(candidate).expanduser().resolve()
    return Path.cwd()


# =============================================================================
# Settings
# =============================================================================

@dataclass
class RefreshSettings:
    """Cadences (seconds) and concurrency caps for the refresh loops."""

    full_interval: float = 60.0
    visible_interval: float = 2.0
    review_interval: float = 5.0
    full_concurrency: int = 6
    visible_concurrency: int = 3
    inventory_concurrency: int = 4
    session_list_ttl: float = 1.5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Settings:
    """Resolved runtime settings."""

    projects_dir: Path
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    page_size: int = 10
    intervals_enabled: bool = True
    # None disables idle eviction
    idle_timeout_minutes: Optional[float] = None

    def project_path(self, project: str) -> Path:
        return self.projects_dir / project

    def branches_dir(self, project: str) -> Path:
        return self.projects_dir / f"{project}{DIR_BRANCHES_SUFFIX}"

    def archived_dir(self, project: str) -> Path:
        return self.projects_dir / f"{project}{DIR_ARCHIVED_SUFFIX}"

    def run_config_path(self, project: str) -> Path:
        return self.project_path(project) / RUN_CONFIG_FILE
