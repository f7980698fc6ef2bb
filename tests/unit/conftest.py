"""
Unit test configuration for Devfleet.

Every test gets its own state directory and config path so nothing reads or
writes ~/.devfleet, and PROJECTS_DIR / NO_APP_INTERVALS from the developer's
shell never leak in.
"""

import pytest

from devfleet import config


@pytest.fixture(autouse=True)
def isolated_state_dir(tmp_path, monkeypatch):
    """Point the state dir and config file at a temp directory."""
    state_dir = tmp_path / "state"
    monkeypatch.setenv("DEVFLEET_STATE_DIR", str(state_dir))
    monkeypatch.delenv("PROJECTS_DIR", raising=False)
    monkeypatch.delenv("NO_APP_INTERVALS", raising=False)
    monkeypatch.delenv("DEVFLEET_CONFIG", raising=False)
    monkeypatch.delenv("DEVFLEET_TMUX_SOCKET", raising=False)
    monkeypatch.setattr(config, "CONFIG_PATH", state_dir / "config.yaml")
    return state_dir
