"""
Pytest configuration for Devfleet tests.

Shared fixtures: in-memory doubles for the external tools and a temporary
projects directory.
"""

import pytest

from devfleet.mocks import FakeCommandRunner, MockTmux
from devfleet.settings import Settings


@pytest.fixture
def runner():
    return FakeCommandRunner()


@pytest.fixture
def tmux():
    return MockTmux()


@pytest.fixture
def projects_dir(tmp_path):
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def settings(projects_dir):
    return Settings(projects_dir=projects_dir)
