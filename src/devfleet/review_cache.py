"""
Pull request status cache.

One `gh pr list` call per project returns every PR (any state) keyed by
head branch; `git worktree list` maps each workspace path to its branch;
the join gives path -> ReviewStatus. Entries carry an explicit expiry that
depends on how likely the PR is to change (a merged PR never does, a PR
with running checks changes within seconds).
"""

import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .models import ReviewStatus, Workspace
from .protocols import CommandRunnerInterface
from .status_constants import (
    CHECKS_FAILING,
    CHECKS_PASSING,
    CHECKS_PENDING,
    CHECKS_UNKNOWN,
    MERGE_UNKNOWN,
    PR_CLOSED,
    PR_MERGED,
    PR_OPEN,
    REVIEW_ERROR,
    REVIEW_EXISTS,
    REVIEW_LOADING,
    REVIEW_NO_PR,
    REVIEW_NOT_CHECKED,
)

logger = logging.getLogger(__name__)

PR_LIST_FIELDS = "number,state,headRefName,mergeable,statusCheckRollup,title"
PR_LIST_LIMIT = 200

REFRESH_ALL = "all"
REFRESH_VISIBLE = "visible"
REFRESH_NONE = "none"
REFRESH_MODES = [REFRESH_ALL, REFRESH_VISIBLE, REFRESH_NONE]


# =============================================================================
# TTLs (seconds)
# =============================================================================

SECOND = 1.0
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR

TTL_MERGED = 365 * DAY
TTL_NO_PR = 30 * SECOND
TTL_ERROR = 60 * SECOND
TTL_CHECKS_FAILING = 2 * MINUTE
TTL_CHECKS_PENDING = 5 * SECOND
TTL_OPEN_PASSING = 30 * SECOND
TTL_OPEN = 5 * MINUTE
TTL_CLOSED = 1 * HOUR
TTL_UNKNOWN_STATE = 10 * MINUTE


def ttl_for(review: ReviewStatus) -> Optional[float]:
    """How long an entry stays fresh; None means it is never cached."""
    if review.loading_state in (REVIEW_NOT_CHECKED, REVIEW_LOADING):
        return None
    if review.loading_state == REVIEW_NO_PR:
        return TTL_NO_PR
    if review.loading_state == REVIEW_ERROR:
        return TTL_ERROR
    if review.state == PR_MERGED:
        return TTL_MERGED
    if review.state == PR_OPEN:
        if review.checks == CHECKS_FAILING:
            return TTL_CHECKS_FAILING
        if review.checks == CHECKS_PENDING:
            return TTL_CHECKS_PENDING
        if review.checks == CHECKS_PASSING:
            return TTL_OPEN_PASSING
        return TTL_OPEN
    if review.state == PR_CLOSED:
        return TTL_CLOSED
    return TTL_UNKNOWN_STATE


# =============================================================================
# Parsing (pure)
# =============================================================================

_SUCCESS_CONCLUSIONS = {"SUCCESS", "PASS", "NEUTRAL", "SKIPPED"}
_FAILURE_CONCLUSIONS = {"FAILURE", "ERROR", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED"}


def reduce_check_rollup(checks: Optional[List[dict]]) -> str:
    """Reduce a statusCheckRollup list to one value.

    Any failure -> failing; else anything unfinished -> pending; else any
    success -> passing; else unknown.
    """
    if not checks:
        return CHECKS_UNKNOWN
    success = failure = pending = 0
    for check in checks:
        outcome = str(check.get("conclusion") or check.get("state") or "").upper()
        if outcome in _SUCCESS_CONCLUSIONS:
            success += 1
        elif outcome in _FAILURE_CONCLUSIONS:
            failure += 1
        else:
            pending += 1
    if failure:
        return CHECKS_FAILING
    if pending:
        return CHECKS_PENDING
    if success:
        return CHECKS_PASSING
    return CHECKS_UNKNOWN


def parse_pr_list(text: str) -> Dict[str, ReviewStatus]:
    """Parse `gh pr list --json ...` output into branch -> ReviewStatus.

    gh lists newest first. When a branch has several PRs the open one wins,
    otherwise the newest.

    Raises:
        ValueError: the output is not a JSON list
    """
    try:
        records = json.loads(text or "[]")
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid gh output: {e}") from e
    if not isinstance(records, list):
        raise ValueError("gh output is not a list")

    by_branch: Dict[str, ReviewStatus] = {}
    for record in records:
        branch = record.get("headRefName")
        if not branch:
            continue
        review = ReviewStatus(
            loading_state=REVIEW_EXISTS,
            number=record.get("number"),
            state=str(record.get("state") or "").upper() or None,
            checks=reduce_check_rollup(record.get("statusCheckRollup")),
            mergeable=str(record.get("mergeable") or MERGE_UNKNOWN).upper(),
            title=record.get("title"),
        )
        existing = by_branch.get(branch)
        if existing is None or (review.state == PR_OPEN and existing.state != PR_OPEN):
            by_branch[branch] = review
    return by_branch


def parse_worktree_branches(output: str) -> Dict[str, str]:
    """Map worktree path -> branch from `git worktree list --porcelain`."""
    mapping = {}
    current: Optional[str] = None
    for line in output.splitlines():
        if line.startswith("worktree "):
            current = line[len("worktree "):].strip()
        elif line.startswith("branch ") and current:
            branch = line[len("branch "):].strip()
            if branch.startswith("refs/heads/"):
                branch = branch[len("refs/heads/"):]
            mapping[current] = branch
            current = None
    return mapping


def join_reviews(path_to_branch: Dict[str, str],
                 branch_to_review: Dict[str, ReviewStatus]) -> Dict[str, ReviewStatus]:
    """path -> ReviewStatus; paths whose branch has no PR get no_pr."""
    no_pr = ReviewStatus(loading_state=REVIEW_NO_PR)
    return {path: branch_to_review.get(branch, no_pr) for path, branch in path_to_branch.items()}


# =============================================================================
# Cache
# =============================================================================

@dataclass(frozen=True)
class CacheEntry:
    review: ReviewStatus
    fetched_at: float
    # None: never fresh (loading/not checked)
    expires_at: Optional[float]

    def is_fresh(self, now: float) -> bool:
        return self.expires_at is not None and now < self.expires_at


class ReviewCache:
    """path -> ReviewStatus, refreshed per project.

    Instances own their state; nothing is shared between caches.
    """

    def __init__(self, runner: CommandRunnerInterface, projects_dir: Path,
                 clock: Callable[[], float] = time.monotonic):
        self.runner = runner
        self.projects_dir = Path(projects_dir)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get(self, path: str) -> ReviewStatus:
        entry = self._entries.get(path)
        if entry is None:
            return ReviewStatus(loading_state=REVIEW_NOT_CHECKED)
        return entry.review

    def entry(self, path: str) -> Optional[CacheEntry]:
        return self._entries.get(path)

    def is_stale(self, path: str) -> bool:
        entry = self._entries.get(path)
        return entry is None or not entry.is_fresh(self._clock())

    def invalidate(self, path: Optional[str] = None) -> None:
        if path is None:
            self._entries.clear()
        else:
            self._entries.pop(path, None)

    def _store(self, path: str, review: ReviewStatus) -> None:
        now = self._clock()
        ttl = ttl_for(review)
        self._entries[path] = CacheEntry(review, now, None if ttl is None else now + ttl)

    def _mark_loading(self, paths: Iterable[str]) -> None:
        for path in paths:
            if path not in self._entries:
                self._store(path, ReviewStatus(loading_state=REVIEW_LOADING))

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def _list_prs(self, project_path: str,
                        branches: Optional[List[str]] = None) -> Dict[str, ReviewStatus]:
        args = ["gh", "pr", "list", "--state", "all", "--json", PR_LIST_FIELDS,
                "--limit", str(PR_LIST_LIMIT)]
        if branches:
            args += ["--search", " ".join(f"head:{b}" for b in branches)]
        result = await self.runner.run(*args, cwd=project_path)
        if not result.ok:
            raise RuntimeError(result.stderr.strip() or f"gh exited with {result.returncode}")
        return parse_pr_list(result.stdout)

    async def _worktree_branches(self, project_path: str) -> Dict[str, str]:
        result = await self.runner.run("git", "-C", project_path, "worktree", "list", "--porcelain")
        return parse_worktree_branches(result.output or "")

    async def fetch_project(self, project: str, workspaces: Optional[List[Workspace]] = None,
                            search: bool = True) -> Dict[str, ReviewStatus]:
        """Fetch and store review status for a project's workspaces.

        Args:
            project: project name
            workspaces: workspaces that must get an answer; None means every
                worktree of the project
            search: restrict the gh query to the workspaces' branches and
                only update those workspaces

        Returns:
            path -> ReviewStatus for the paths that were updated
        """
        project_path = str(self.projects_dir / project)
        workspaces = workspaces or []
        self._mark_loading(ws.path for ws in workspaces)

        path_to_branch = await self._worktree_branches(project_path)
        for ws in workspaces:
            path_to_branch.setdefault(ws.path, ws.branch)
        branches = None
        if search and workspaces:
            wanted = {ws.path for ws in workspaces}
            path_to_branch = {p: b for p, b in path_to_branch.items() if p in wanted}
            branches = sorted(set(path_to_branch.values()))

        try:
            reviews = join_reviews(path_to_branch, await self._list_prs(project_path, branches))
        except (RuntimeError, ValueError) as e:
            logger.warning("PR status for %s unavailable: %s", project, e)
            reviews = {path: ReviewStatus(loading_state=REVIEW_ERROR) for path in path_to_branch}

        for path, review in reviews.items():
            self._store(path, review)
        return reviews

    async def refetch_workspace(self, workspace: Workspace) -> ReviewStatus:
        """Force a fresh lookup for one workspace, bypassing its cached entry."""
        result = await self.fetch_project(workspace.project, [workspace])
        return result.get(workspace.path, self.get(workspace.path))

    async def refresh(self, workspaces: List[Workspace], mode: str = REFRESH_ALL) -> None:
        """Refresh review status.

        Args:
            workspaces: the full list ("all") or the visible page ("visible")
            mode: "all" refetches every project of the given workspaces in
                one call each; "visible" refetches only stale entries among
                them; "none" does nothing
        """
        if mode not in REFRESH_MODES:
            raise ValueError(f"Unknown review refresh mode: {mode}")
        if mode == REFRESH_NONE or not workspaces:
            return

        by_project: Dict[str, List[Workspace]] = defaultdict(list)
        for ws in workspaces:
            if mode == REFRESH_ALL or self.is_stale(ws.path):
                by_project[ws.project].append(ws)

        for project, group in sorted(by_project.items()):
            await self.fetch_project(project, group, search=(mode == REFRESH_VISIBLE))
