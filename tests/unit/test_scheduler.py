"""
Tests for the refresh scheduler.

Workspaces live in a real temporary projects directory (so inventory finds
them); every git, tmux and gh call is answered by FakeCommandRunner.
"""

import asyncio
import json
import os

import pytest

from devfleet.idle import IdleEvictionPolicy
from devfleet.mocks import FakeCommandRunner, MockTmux
from devfleet.review_cache import REFRESH_ALL, REFRESH_NONE, ReviewCache
from devfleet.scheduler import RefreshScheduler
from devfleet.sessions import RUN_NO_CONFIG, SessionRegistry
from devfleet.settings import RefreshSettings, Settings
from devfleet.status_constants import AI_IDLE, REVIEW_NOT_CHECKED, ROLE_RUN
from tests.fixtures import make_workspace, script_clean_git, worktree_porcelain


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def open_pr(branch="feature/login"):
    return {"number": 12, "headRefName": branch, "state": "OPEN", "mergeable": "MERGEABLE",
            "statusCheckRollup": [], "title": "t"}


class Fleet:
    """A projects directory with one project and scripted probes."""

    def __init__(self, projects_dir, features=("login",), runner=None, tmux=None,
                 idle_policy=None, **refresh):
        self.projects_dir = projects_dir
        self.runner = runner or FakeCommandRunner()
        self.tmux = tmux or MockTmux()
        main = projects_dir / "app"
        (main / ".git").mkdir(parents=True)
        self.paths = {}
        for age, feature in enumerate(features):
            path = projects_dir / "app-branches" / feature
            path.mkdir(parents=True)
            # First feature is the most recently modified
            mtime = 1_000_000 - age * 100
            os.utime(path, (mtime, mtime))
            self.paths[feature] = str(path)
            script_clean_git(self.runner, str(path))
        self.runner.add(
            ("git", "-C", str(main), "worktree", "list", "--porcelain"),
            stdout=worktree_porcelain(str(main), [
                (path, f"feature/{feature}") for feature, path in self.paths.items()]),
        )
        self.settings = Settings(projects_dir=projects_dir, refresh=RefreshSettings(**refresh))
        self.registry = SessionRegistry(
            self.runner, self.tmux,
            session_list_ttl=self.settings.refresh.session_list_ttl,
            available_tools=lambda: ["claude"],
        )
        self.review_cache = ReviewCache(self.runner, projects_dir)
        self.scheduler = RefreshScheduler(self.settings, self.runner, self.registry,
                                          self.review_cache, idle_policy)

    def status_calls(self, feature):
        return len(self.runner.calls_matching("git", "-C", self.paths[feature], "status"))


class TestFullPass:

    @pytest.mark.asyncio
    async def test_publishes_a_record_per_workspace(self, projects_dir):
        fleet = Fleet(projects_dir, features=("login", "signup"))

        assert await fleet.scheduler.full_pass() is True

        records = fleet.scheduler.records
        assert [r.workspace.feature for r in records] == ["login", "signup"]
        assert records[0].git.ahead == 0
        assert records[0].git.base_added_lines == 5
        assert records[0].session.attached is False
        assert records[0].review.loading_state == REVIEW_NOT_CHECKED

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self, projects_dir):
        features = tuple(f"f{i}" for i in range(8))
        fleet = Fleet(projects_dir, features=features,
                      runner=FakeCommandRunner(delay=0.005), full_concurrency=2)

        await fleet.scheduler.full_pass()

        assert len(fleet.scheduler.records) == 8
        assert fleet.runner.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_dropped(self, projects_dir):
        fleet = Fleet(projects_dir, runner=FakeCommandRunner(delay=0.005))

        results = await asyncio.gather(fleet.scheduler.full_pass(), fleet.scheduler.full_pass())

        assert sorted(results) == [False, True]
        assert fleet.scheduler.full_token.dropped == 1
        assert fleet.status_calls("login") == 1

    @pytest.mark.asyncio
    async def test_failed_probe_is_isolated(self, projects_dir):
        fleet = Fleet(projects_dir, features=("login", "broken"))

        def boom(args):
            raise RuntimeError("git crashed")
        fleet.runner.add_callable(
            ("git", "-C", fleet.paths["broken"], "status", "--porcelain"), boom)

        assert await fleet.scheduler.full_pass() is True

        assert len(fleet.scheduler.workspaces) == 2
        assert [r.workspace.feature for r in fleet.scheduler.records] == ["login"]

    @pytest.mark.asyncio
    async def test_listeners_receive_records(self, projects_dir):
        fleet = Fleet(projects_dir)
        received = []

        def broken(records):
            raise ValueError("bad listener")
        fleet.scheduler.subscribe(broken)
        fleet.scheduler.subscribe(received.append)

        await fleet.scheduler.full_pass()

        assert len(received) == 1
        assert received[0][0].workspace.feature == "login"


class TestPause:

    @pytest.mark.asyncio
    async def test_paused_passes_are_skipped(self, projects_dir):
        fleet = Fleet(projects_dir)
        fleet.scheduler.pause()

        assert await fleet.scheduler.full_pass() is False
        assert await fleet.scheduler.visible_pass() is False
        assert fleet.runner.invocations == []

        fleet.scheduler.resume()
        assert await fleet.scheduler.full_pass() is True

    @pytest.mark.asyncio
    async def test_review_refresh_runs_while_paused(self, projects_dir):
        fleet = Fleet(projects_dir)
        fleet.scheduler.pause()

        assert await fleet.scheduler.refresh_reviews(REFRESH_ALL) is True

    def test_attach_pauses_and_restores(self, projects_dir):
        fleet = Fleet(projects_dir)
        seen = []
        fleet.tmux.attach = lambda name: seen.append(fleet.scheduler.paused) or 0
        workspace_dir = projects_dir / "app-branches" / "login"
        workspace = make_workspace(path=str(workspace_dir))

        fleet.scheduler.attach(workspace)

        assert seen == [True]
        assert fleet.scheduler.paused is False

    def test_attach_run_without_config(self, projects_dir):
        fleet = Fleet(projects_dir)
        fleet.scheduler.pause()

        outcome = fleet.scheduler.attach(make_workspace(), ROLE_RUN)

        assert outcome == RUN_NO_CONFIG
        assert fleet.scheduler.paused is True


class TestVisiblePass:

    @pytest.mark.asyncio
    async def test_only_the_page_is_probed(self, projects_dir):
        fleet = Fleet(projects_dir, features=("login", "signup", "search"))
        await fleet.scheduler.full_pass()
        fleet.runner.add(("git", "-C", fleet.paths["login"], "status", "--porcelain"),
                         stdout=" M app.py\n")

        assert await fleet.scheduler.visible_pass(0, 1) is True

        assert fleet.status_calls("login") == 2
        assert fleet.status_calls("signup") == 1
        assert fleet.status_calls("search") == 1
        login, signup, _ = fleet.scheduler.records
        assert login.git.has_changes is True
        assert signup.git.has_changes is False

    @pytest.mark.asyncio
    async def test_page_beyond_inventory(self, projects_dir):
        fleet = Fleet(projects_dir)
        await fleet.scheduler.full_pass()

        assert await fleet.scheduler.visible_pass(50, 10) is True
        assert fleet.status_calls("login") == 1

    @pytest.mark.asyncio
    async def test_session_list_shared_within_pass(self, projects_dir):
        fleet = Fleet(projects_dir, features=("login", "signup", "search"))
        await fleet.scheduler.full_pass()
        assert len(fleet.runner.calls_matching("tmux", "list-sessions")) == 1


class TestReviews:

    @pytest.mark.asyncio
    async def test_refresh_reviews_updates_records(self, projects_dir):
        fleet = Fleet(projects_dir)
        fleet.runner.add(("gh", "pr", "list"), stdout=json.dumps([open_pr()]))
        await fleet.scheduler.full_pass()

        await fleet.scheduler.refresh_reviews(REFRESH_ALL)

        assert fleet.scheduler.records[0].review.is_open
        assert fleet.scheduler.records[0].review.number == 12

    @pytest.mark.asyncio
    async def test_none_mode_keeps_records(self, projects_dir):
        fleet = Fleet(projects_dir)
        await fleet.scheduler.full_pass()
        before = fleet.scheduler.records

        await fleet.scheduler.refresh_reviews(REFRESH_NONE)

        assert fleet.scheduler.records == before
        assert fleet.runner.calls_matching("gh") == []

    @pytest.mark.asyncio
    async def test_push_refetches_open_review_once(self, projects_dir):
        fleet = Fleet(projects_dir)
        path = fleet.paths["login"]
        script_clean_git(fleet.runner, path, upstream_counts="2\t0")
        fleet.runner.add(("gh", "pr", "list"), stdout=json.dumps([open_pr()]))

        await fleet.scheduler.full_pass()
        await fleet.scheduler.refresh_reviews(REFRESH_ALL)
        assert fleet.scheduler.records[0].git.is_pushed is False

        fleet.runner.add(("git", "-C", path, "rev-list", "--left-right", "--count", "HEAD...@{u}"),
                         stdout="0\t0")
        await fleet.scheduler.full_pass()
        await fleet.scheduler.full_pass()

        assert fleet.scheduler.records[0].git.is_pushed is True
        assert len(fleet.runner.calls_matching("gh", "pr", "list")) == 2

    @pytest.mark.asyncio
    async def test_push_without_review_does_not_refetch(self, projects_dir):
        fleet = Fleet(projects_dir)
        path = fleet.paths["login"]
        script_clean_git(fleet.runner, path, upstream_counts="1\t0")
        fleet.runner.add(("gh", "pr", "list"), stdout="[]")

        await fleet.scheduler.full_pass()
        await fleet.scheduler.refresh_reviews(REFRESH_ALL)
        fleet.runner.add(("git", "-C", path, "rev-list", "--left-right", "--count", "HEAD...@{u}"),
                         stdout="0\t0")
        await fleet.scheduler.full_pass()

        assert len(fleet.runner.calls_matching("gh", "pr", "list")) == 1


IDLE_PANE = "╭────────────╮\n│ >          │"


class TestIdleEviction:

    @pytest.mark.asyncio
    async def test_idle_session_is_killed_after_timeout(self, projects_dir):
        clock = FakeClock()
        fleet = Fleet(projects_dir, idle_policy=IdleEvictionPolicy(1, clock=clock),
                      session_list_ttl=0)
        fleet.tmux.new_session("dev-app-login", fleet.paths["login"])
        fleet.runner.add(("tmux", "list-sessions"), stdout="dev-app-login\n")
        fleet.runner.add(("tmux", "list-panes"), stdout="0.0 claude\n")
        fleet.runner.add(("tmux", "capture-pane"), stdout=IDLE_PANE)

        await fleet.scheduler.full_pass()
        assert fleet.scheduler.records[0].session.status == AI_IDLE

        clock.now += 61
        await fleet.scheduler.full_pass()

        assert fleet.tmux.killed == ["dev-app-login"]
        assert fleet.scheduler.records[0].session.attached is False
        assert fleet.scheduler.idle_policy.was_killed_idle("dev-app-login")

    def test_attach_clears_killed_flag(self, projects_dir):
        clock = FakeClock()
        policy = IdleEvictionPolicy(1, clock=clock)
        fleet = Fleet(projects_dir, idle_policy=policy)
        policy.update("dev-app-login", AI_IDLE, lambda name: True)
        clock.now += 61
        policy.update("dev-app-login", AI_IDLE, lambda name: True)
        assert policy.was_killed_idle("dev-app-login")

        fleet.scheduler.attach(make_workspace(path=fleet.paths["login"]))

        assert not policy.was_killed_idle("dev-app-login")
        assert "dev-app-login" in fleet.tmux.sessions


class TestRun:

    @pytest.mark.asyncio
    async def test_intervals_disabled_runs_once(self, projects_dir):
        fleet = Fleet(projects_dir)
        fleet.settings.intervals_enabled = False

        await asyncio.wait_for(fleet.scheduler.run(asyncio.Event()), timeout=1)

        assert fleet.status_calls("login") == 1
        assert len(fleet.runner.calls_matching("gh", "pr", "list")) == 1

    @pytest.mark.asyncio
    async def test_loops_tick_until_stopped(self, projects_dir):
        fleet = Fleet(projects_dir, full_interval=60, visible_interval=0.01, review_interval=60)
        stop = asyncio.Event()

        task = asyncio.ensure_future(fleet.scheduler.run(stop))
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert fleet.status_calls("login") > 1
