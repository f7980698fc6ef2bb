"""
Refresh scheduler: the orchestrator of the reconciliation engine.

Two probe loops run on one event loop:

    full pass     - inventory, then git + session probes for every workspace
    visible pass  - git + session probes for the displayed page only

Each loop has its own concurrency cap and in-flight token; a trigger that
arrives while its loop is running is dropped. Both loops are skipped while
paused (a modal has input focus). Review status is refreshed separately
through the ReviewCache.

Published records are always whole MergedRecords; a reader sees either the
previous record of a workspace or the new one, never a mix.
"""

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .concurrency import InFlightToken, map_limit
from .git_probe import probe_git_status
from .idle import IdleEvictionPolicy
from .inventory import discover_workspaces
from .models import MergedRecord, SessionInfo, Workspace
from .protocols import CommandRunnerInterface
from .review_cache import REFRESH_ALL, REFRESH_VISIBLE, ReviewCache
from .sessions import SessionRegistry, session_name
from .settings import Settings
from .status_constants import ROLE_MAIN

logger = logging.getLogger(__name__)

RecordKey = Tuple[str, str]
Listener = Callable[[List[MergedRecord]], None]


class RefreshScheduler:
    """Probes workspaces on two cadences and publishes merged records."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunnerInterface,
        registry: SessionRegistry,
        review_cache: ReviewCache,
        idle_policy: Optional[IdleEvictionPolicy] = None,
    ):
        self.settings = settings
        self.runner = runner
        self.registry = registry
        self.review_cache = review_cache
        self.idle_policy = idle_policy

        self.full_token = InFlightToken("full")
        self.visible_token = InFlightToken("visible")
        self.review_token = InFlightToken("review")

        self._workspaces: List[Workspace] = []
        self._records: Dict[RecordKey, MergedRecord] = {}
        self._listeners: List[Listener] = []
        self._paused = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def workspaces(self) -> List[Workspace]:
        return list(self._workspaces)

    @property
    def records(self) -> List[MergedRecord]:
        """Published records in inventory order."""
        records = self._records
        return [records[ws.key] for ws in self._workspaces if ws.key in records]

    def record(self, key: RecordKey) -> Optional[MergedRecord]:
        return self._records.get(key)

    def page(self, offset: int, size: int) -> List[Workspace]:
        return self._workspaces[max(offset, 0):max(offset, 0) + size]

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _publish(self) -> None:
        records = self.records
        for listener in self._listeners:
            try:
                listener(records)
            except Exception:
                logger.warning("Record listener failed", exc_info=True)

    # -------------------------------------------------------------------------
    # Modal pause
    # -------------------------------------------------------------------------

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Skip probe passes until resume() (a dialog has input focus)."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def attach(self, workspace: Workspace, role: str = ROLE_MAIN, tool: Optional[str] = None) -> str:
        """Hand the terminal to a workspace session with the loops paused.

        Clears the idle-eviction flag of the session being attached.

        Returns:
            The outcome of SessionRegistry.attach_or_create
        """
        name = session_name(workspace.project, workspace.feature, role)
        if self.idle_policy is not None:
            self.idle_policy.clear_was_killed_idle(name)
        was_paused = self._paused
        self.pause()
        try:
            return self.registry.attach_or_create(
                workspace, role, run_config_path=self.settings.run_config_path(workspace.project),
                tool=tool)
        finally:
            if not was_paused:
                self.resume()

    # -------------------------------------------------------------------------
    # Probing
    # -------------------------------------------------------------------------

    async def _probe_session(self, workspace: Workspace) -> Tuple[SessionInfo, bool, bool]:
        info, shell, run = await self.registry.probe(workspace)
        if self.idle_policy is not None and info.attached:
            if self.idle_policy.update(info.name, info.status, self.registry.kill):
                info = SessionInfo(name=info.name, role=info.role)
        return info, shell, run

    async def probe_workspace(self, workspace: Workspace) -> MergedRecord:
        """Probe one workspace and merge its signals into a record.

        When the workspace has just become fully pushed and has an open PR,
        its review entry is refetched before the record is built.
        """
        git = await probe_git_status(self.runner, workspace.path)
        session, shell, run = await self._probe_session(workspace)

        review = self.review_cache.get(workspace.path)
        previous = self._records.get(workspace.key)
        if (previous is not None and not previous.git.is_pushed and git.is_pushed
                and review.is_open):
            logger.debug("%s pushed, refetching PR status", workspace.path)
            review = await self.review_cache.refetch_workspace(workspace)

        return MergedRecord(
            workspace=workspace,
            git=git,
            session=session,
            shell_attached=shell,
            run_attached=run,
            review=review,
        )

    async def _probe_isolated(self, workspace: Workspace) -> Optional[MergedRecord]:
        try:
            return await self.probe_workspace(workspace)
        except Exception:
            logger.warning("Probe failed for %s/%s", workspace.project, workspace.feature,
                           exc_info=True)
            return None

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    async def full_pass(self) -> bool:
        """Rebuild the inventory and probe every workspace.

        Returns:
            False if the pass was skipped (paused or already running)
        """
        if self._paused or not self.full_token.acquire():
            return False
        try:
            refresh = self.settings.refresh
            workspaces = await discover_workspaces(
                self.runner, self.settings.projects_dir, refresh.inventory_concurrency)
            results = await map_limit(workspaces, refresh.full_concurrency, self._probe_isolated)
            self._workspaces = workspaces
            self._records = {record.key: record for record in results if record is not None}
            logger.debug("Full pass: %d workspaces, %d records", len(workspaces), len(self._records))
        finally:
            self.full_token.release()
        self._publish()
        return True

    async def visible_pass(self, offset: int = 0, size: Optional[int] = None) -> bool:
        """Probe only the workspaces of one page.

        Returns:
            False if the pass was skipped (paused or already running)
        """
        if self._paused or not self.visible_token.acquire():
            return False
        try:
            if size is None:
                size = self.settings.page_size
            visible = self.page(offset, size)
            results = await map_limit(
                visible, self.settings.refresh.visible_concurrency, self._probe_isolated)
            updated = dict(self._records)
            for record in results:
                if record is not None:
                    updated[record.key] = record
            self._records = updated
        finally:
            self.visible_token.release()
        self._publish()
        return True

    async def refresh_reviews(self, mode: str = REFRESH_ALL, offset: int = 0,
                              size: Optional[int] = None) -> bool:
        """Refresh PR status and fold it into the published records.

        Args:
            mode: "all" for every workspace, "visible" for stale entries of
                the given page, "none" to skip
        """
        if not self.review_token.acquire():
            return False
        try:
            if mode == REFRESH_VISIBLE:
                targets = self.page(offset, self.settings.page_size if size is None else size)
            else:
                targets = self.workspaces
            await self.review_cache.refresh(targets, mode)
            updated = {}
            for key, record in self._records.items():
                review = self.review_cache.get(record.workspace.path)
                updated[key] = record if review == record.review else dataclasses.replace(record, review=review)
            self._records = updated
        finally:
            self.review_token.release()
        self._publish()
        return True

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    async def _every(self, interval: float, stop: asyncio.Event,
                     tick: Callable[[], Awaitable[None]]) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await tick()
            except Exception:
                logger.warning("Refresh tick failed", exc_info=True)

    async def run(self, stop: asyncio.Event,
                  window: Optional[Callable[[], Tuple[int, int]]] = None) -> None:
        """Run the refresh loops until stop is set.

        Does one full pass and full review refresh up front. With intervals
        disabled (NO_APP_INTERVALS=1) that is all it does.

        Args:
            stop: event that ends the loops
            window: returns the (offset, size) of the displayed page
        """
        if window is None:
            window = lambda: (0, self.settings.page_size)  # noqa: E731

        await self.full_pass()
        await self.refresh_reviews(REFRESH_ALL)
        if not self.settings.intervals_enabled:
            logger.info("Refresh intervals disabled")
            return

        refresh = self.settings.refresh

        async def _full():
            await self.full_pass()
            await self.refresh_reviews(REFRESH_ALL)

        async def _visible():
            await self.visible_pass(*window())

        async def _reviews():
            offset, size = window()
            await self.refresh_reviews(REFRESH_VISIBLE, offset, size)

        await asyncio.gather(
            self._every(refresh.full_interval, stop, _full),
            self._every(refresh.visible_interval, stop, _visible),
            self._every(refresh.review_interval, stop, _reviews),
        )
