"""
User configuration file (~/.devfleet/config.yaml).

Everything here is optional; a missing or malformed file means defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .settings import (
    ENV_CONFIG,
    RefreshSettings,
    Settings,
    get_state_dir,
    intervals_enabled,
    resolve_projects_dir,
)

logger = logging.getLogger(__name__)


def _default_config_path() -> Path:
    env_path = os.environ.get(ENV_CONFIG)
    if env_path:
        return Path(env_path)
    return get_state_dir() / "config.yaml"


CONFIG_PATH = _default_config_path()


CONFIG_TEMPLATE = """\
# Devfleet configuration
# Location: ~/.devfleet/config.yaml

# Directory that holds your projects (overridden by --dir and PROJECTS_DIR)
# projects_dir: ~/projects

# Rows per page in list/watch output
# page_size: 10

# Refresh cadences (seconds) and concurrency caps
# refresh:
#   full_interval: 60
#   visible_interval: 2
#   review_interval: 5
#   full_concurrency: 6
#   visible_concurrency: 3
#   inventory_concurrency: 4
#   session_list_ttl: 1.5

# Kill agent sessions that sit idle for too long (off unless enabled)
# idle_eviction:
#   enabled: false
#   timeout_minutes: 30
"""


def load_config() -> Dict[str, Any]:
    """Load the config file.

    Returns:
        Parsed mapping, or {} when the file is missing, invalid or not a mapping
    """
    if not CONFIG_PATH.exists():
        return {}
    try:
        with open(CONFIG_PATH) as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_PATH, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def save_config(data: Dict[str, Any]) -> None:
    """Write the config mapping as YAML, creating parent directories."""
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_PATH, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def get_refresh_config(config: Optional[Dict[str, Any]] = None) -> RefreshSettings:
    if config is None:
        config = load_config()
    section = config.get("refresh")
    if not isinstance(section, dict):
        return RefreshSettings()
    return RefreshSettings.from_dict(section)


def get_idle_timeout(config: Optional[Dict[str, Any]] = None) -> Optional[float]:
    """Idle eviction timeout in minutes, or None when eviction is off.

    There is no built-in timeout: enabling eviction without a positive
    timeout_minutes leaves it off.
    """
    if config is None:
        config = load_config()
    section = config.get("idle_eviction")
    if not isinstance(section, dict) or not section.get("enabled"):
        return None
    timeout = section.get("timeout_minutes")
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        logger.warning("idle_eviction enabled without a positive timeout_minutes; ignoring")
        return None
    return float(timeout)


def build_settings(cli_dir: Optional[str] = None) -> Settings:
    """Resolve all runtime settings from flags, environment and config file."""
    config = load_config()
    page_size = config.get("page_size", 10)
    if not isinstance(page_size, int) or page_size <= 0:
        page_size = 10
    return Settings(
        projects_dir=resolve_projects_dir(cli_dir, config.get("projects_dir")),
        refresh=get_refresh_config(config),
        page_size=page_size,
        intervals_enabled=intervals_enabled(),
        idle_timeout_minutes=get_idle_timeout(config),
    )
