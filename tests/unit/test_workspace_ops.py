"""
Tests for workspace creation, archiving, archive listing and branch candidates.
"""

import os
from datetime import datetime
from pathlib import Path

import pytest

from devfleet.exceptions import InvalidNameError
from devfleet.mocks import MockTmux
from devfleet.runner import CommandResult
from devfleet.sessions import SessionRegistry
from devfleet.workspace_ops import (
    WorkspaceManager,
    list_archived,
    parse_archive_name,
    parse_branch_candidates,
    validate_feature_name,
)
from tests.fixtures import make_workspace, worktree_porcelain


def make_manager(settings, runner, tmux=None, now=None):
    registry = SessionRegistry(runner, tmux or MockTmux(), available_tools=lambda: ["claude"])
    return WorkspaceManager(settings, runner, registry,
                            now=now or (lambda: datetime(2024, 5, 1, 12, 30, 0)))


def make_project(projects_dir, name="app"):
    path = projects_dir / name
    (path / ".git").mkdir(parents=True)
    return path


def creates_target(args):
    """Stand-in for `git worktree add`: create the target directory."""
    add = args.index("add")
    target = next(a for a in args[add + 1:] if a.startswith("/"))
    Path(target).mkdir(parents=True)
    return CommandResult(args=args, returncode=0)


class TestValidateFeatureName:

    @pytest.mark.parametrize("name", ["login", "api-cache", "v2.1", "fix_42", "A"])
    def test_valid(self, name):
        validate_feature_name(name)

    @pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b", "-leading", "has space",
                                      "x" * 65])
    def test_invalid(self, name):
        with pytest.raises(InvalidNameError):
            validate_feature_name(name)


class TestCreateFeature:

    @pytest.mark.asyncio
    async def test_creates_worktree_and_session(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        (project / ".env.local").write_text("SECRET=1\n")
        runner.add(("git", "-C", str(project), "rev-parse", "--verify", "--quiet", "origin/main"),
                   stdout="abc\n")
        runner.add_callable(("git", "-C", str(project), "worktree", "add"), creates_target)
        tmux = MockTmux()
        manager = make_manager(settings, runner, tmux)

        workspace = await manager.create_feature("app", "login")

        target = projects_dir / "app-branches" / "login"
        assert workspace.path == str(target)
        assert workspace.branch == "feature/login"
        assert (target / ".env.local").read_text() == "SECRET=1\n"
        add = runner.calls_matching("git", "-C", str(project), "worktree", "add")[0]
        assert add[-3:] == ("-b", "feature/login", "origin/main")
        assert "dev-app-login" in tmux.sessions
        assert tmux.keys_for("dev-app-login") == ["claude"]

    @pytest.mark.asyncio
    async def test_fetch_failure_is_not_fatal(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        runner.add(("git", "-C", str(project), "fetch"), returncode=1, stderr="offline")
        runner.add_callable(("git", "-C", str(project), "worktree", "add"), creates_target)

        workspace = await make_manager(settings, runner).create_feature("app", "login")

        assert workspace is not None
        add = runner.calls_matching("git", "-C", str(project), "worktree", "add")[0]
        assert add[-2:] == ("-b", "feature/login")

    @pytest.mark.asyncio
    async def test_worktree_add_failure(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        runner.add(("git", "-C", str(project), "worktree", "add"), returncode=128,
                   stderr="fatal: a branch named 'feature/login' already exists")
        tmux = MockTmux()

        assert await make_manager(settings, runner, tmux).create_feature("app", "login") is None
        assert tmux.sessions == {}

    @pytest.mark.asyncio
    async def test_existing_target(self, settings, runner, projects_dir):
        make_project(projects_dir)
        (projects_dir / "app-branches" / "login").mkdir(parents=True)

        assert await make_manager(settings, runner).create_feature("app", "login") is None
        assert runner.invocations == []

    @pytest.mark.asyncio
    async def test_not_a_git_project(self, settings, runner, projects_dir):
        (projects_dir / "notes").mkdir()
        assert await make_manager(settings, runner).create_feature("notes", "x") is None

    @pytest.mark.asyncio
    async def test_invalid_name(self, settings, runner, projects_dir):
        make_project(projects_dir)
        assert await make_manager(settings, runner).create_feature("app", "../evil") is None
        assert runner.invocations == []


class TestCreateFromBranch:

    @pytest.mark.asyncio
    async def test_remote_branch_is_tracked(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        runner.add_callable(("git", "-C", str(project), "worktree", "add"), creates_target)

        workspace = await make_manager(settings, runner).create_from_branch(
            "app", "origin/fix-bug", "fix-bug")

        target = str(projects_dir / "app-branches" / "fix-bug")
        assert workspace.branch == "fix-bug"
        add = runner.calls_matching("git", "-C", str(project), "worktree", "add")[0]
        assert add[4:] == ("add", "--track", "-b", "fix-bug", target, "origin/fix-bug")

    @pytest.mark.asyncio
    async def test_existing_local_branch_is_checked_out(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        runner.add(("git", "-C", str(project), "rev-parse", "--verify", "--quiet",
                    "refs/heads/fix-bug"), stdout="abc\n")
        runner.add_callable(("git", "-C", str(project), "worktree", "add"), creates_target)

        await make_manager(settings, runner).create_from_branch("app", "fix-bug", "bugfix")

        target = str(projects_dir / "app-branches" / "bugfix")
        add = runner.calls_matching("git", "-C", str(project), "worktree", "add")[0]
        assert add[4:] == ("add", target, "fix-bug")


class TestArchive:

    @pytest.mark.asyncio
    async def test_moves_worktree_and_kills_sessions(self, settings, runner, projects_dir):
        make_project(projects_dir)
        path = projects_dir / "app-branches" / "login"
        path.mkdir(parents=True)
        (path / "work.txt").write_text("wip")
        tmux = MockTmux()
        for name in ("dev-app-login", "dev-app-login-shell", "dev-app-login-run"):
            tmux.new_session(name, str(path))
        manager = make_manager(settings, runner, tmux)

        archived = await manager.archive_feature(make_workspace(path=str(path)))

        expected = projects_dir / "app-archived" / "archived-20240501-123000_login"
        assert archived == str(expected)
        assert (expected / "work.txt").read_text() == "wip"
        assert not path.exists()
        assert tmux.sessions == {}
        assert runner.calls_matching("git", "-C", str(projects_dir / "app"), "worktree", "prune")

    @pytest.mark.asyncio
    async def test_missing_worktree(self, settings, runner, projects_dir):
        make_project(projects_dir)
        manager = make_manager(settings, runner)

        archived = await manager.archive_feature(
            make_workspace(path=str(projects_dir / "app-branches" / "gone")))

        assert archived is None
        assert runner.calls_matching("git") == []

    @pytest.mark.asyncio
    async def test_archive_without_sessions(self, settings, runner, projects_dir):
        make_project(projects_dir)
        path = projects_dir / "app-branches" / "login"
        path.mkdir(parents=True)

        archived = await make_manager(settings, runner).archive_feature(
            make_workspace(path=str(path)))

        assert archived is not None


class TestArchivedListing:

    @pytest.mark.parametrize("name,expected", [
        ("archived-20240501-123000_login", ("login", "20240501-123000")),
        ("archived-login-form-20240501-123000", ("login-form", "20240501-123000")),
        ("archived-x", ("x", None)),
        ("random", ("random", None)),
    ])
    def test_parse_archive_name(self, name, expected):
        assert parse_archive_name(name) == expected

    def test_list_archived_newest_first(self, settings, projects_dir):
        root = projects_dir / "app-archived"
        for mtime, name in [(100, "archived-20240101-000000_old"),
                            (300, "archived-20240301-000000_new")]:
            (root / name).mkdir(parents=True)
            os.utime(root / name, (mtime, mtime))
        (root / "stray.txt").write_text("")

        entries = list_archived(settings, "app")

        assert [e.feature for e in entries] == ["new", "old"]
        assert entries[0].archived_at == "20240301-000000"

    def test_no_archive_dir(self, settings):
        assert list_archived(settings, "app") == []


BRANCH_LISTING = """\
main
feature/login
spike
origin
origin/HEAD
origin/main
origin/feature/login
origin/search
origin/spike
remotes/origin/old-layout
"""


class TestParseBranchCandidates:

    def test_skips_base_head_and_checked_out_branches(self):
        pairs = parse_branch_candidates(BRANCH_LISTING, ["main", "feature/login"])
        assert pairs == [
            ("spike", "spike"),
            ("origin/search", "search"),
            ("origin/old-layout", "old-layout"),
        ]

    def test_checked_out_as_feature_branch(self):
        """A worktree on feature/search hides the plain search branch."""
        pairs = parse_branch_candidates("origin/search\n", ["feature/search"])
        assert pairs == []

    def test_empty_listing(self):
        assert parse_branch_candidates("", []) == []


class TestListBranchCandidates:

    def script_project(self, runner, project):
        git = ("git", "-C", str(project))
        runner.add(git + ("branch", "-a"), stdout="main\norigin/main\norigin/search\norigin/spike\norigin/stale\n")
        runner.add(git + ("rev-parse", "--verify", "--quiet", "origin/main"), stdout="abc\n")
        runner.add(git + ("worktree", "list", "--porcelain"),
                   stdout=worktree_porcelain(str(project), []))
        runner.add(git + ("rev-list", "--left-right", "--count", "origin/main...origin/search"),
                   stdout="4\t2\n")
        runner.add(git + ("diff", "--shortstat", "origin/main...origin/search"),
                   stdout=" 3 files changed, 40 insertions(+), 5 deletions(-)\n")
        runner.add(git + ("log", "-1", "--format=%at", "origin/search"), stdout="1700000000\n")
        runner.add(git + ("rev-list", "--left-right", "--count", "origin/main...origin/spike"),
                   stdout="0\t1\n")
        runner.add(git + ("diff", "--shortstat", "origin/main...origin/spike"),
                   stdout=" 1 file changed, 2 insertions(+)\n")
        runner.add(git + ("log", "-1", "--format=%at", "origin/spike"), stdout="1800000000\n")
        runner.add(git + ("rev-list", "--left-right", "--count", "origin/main...origin/stale"),
                   stdout="9\t0\n")
        return git

    @pytest.mark.asyncio
    async def test_lists_diverged_branches_newest_first(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        self.script_project(runner, project)
        manager = make_manager(settings, runner)

        branches = await manager.list_branch_candidates("app")

        assert [b.name for b in branches] == ["origin/spike", "origin/search"]
        search = branches[1]
        assert search.local_name == "search"
        assert search.is_remote
        assert (search.ahead, search.behind) == (2, 4)
        assert (search.added_lines, search.deleted_lines) == (40, 5)
        assert search.timestamp == 1700000000

    @pytest.mark.asyncio
    async def test_branch_without_new_commits_is_skipped(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        git = self.script_project(runner, project)
        manager = make_manager(settings, runner)

        branches = await manager.list_branch_candidates("app")

        assert "origin/stale" not in [b.name for b in branches]
        assert runner.calls_matching(*git, "diff", "--shortstat", "origin/main...origin/stale") == []

    @pytest.mark.asyncio
    async def test_branches_with_worktrees_are_hidden(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        git = self.script_project(runner, project)
        runner.add(git + ("worktree", "list", "--porcelain"), stdout=worktree_porcelain(
            str(project), [(str(projects_dir / "app-branches" / "search"), "feature/search")]))
        manager = make_manager(settings, runner)

        branches = await manager.list_branch_candidates("app")

        assert [b.local_name for b in branches] == ["spike"]

    @pytest.mark.asyncio
    async def test_no_base_branch(self, settings, runner, projects_dir):
        project = make_project(projects_dir)
        runner.add(("git", "-C", str(project), "branch", "-a"), stdout="origin/search\n")
        manager = make_manager(settings, runner)

        assert await manager.list_branch_candidates("app") == []

    @pytest.mark.asyncio
    async def test_git_failure(self, settings, runner, projects_dir):
        make_project(projects_dir)
        manager = make_manager(settings, runner)

        assert await manager.list_branch_candidates("app") == []
