"""
Workspace lifecycle: create a feature worktree, create one from an existing
branch, archive, and list archived workspaces.

Operations return the new Workspace / archived path on success and None on
failure, logging the reason, so callers branch without exception handling.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .concurrency import map_limit
from .exceptions import InvalidNameError
from .git_probe import parse_left_right_count, parse_shortstat, resolve_base_branch
from .models import Workspace
from .protocols import CommandRunnerInterface
from .review_cache import parse_worktree_branches
from .sessions import SessionRegistry
from .settings import (
    AGENT_DOC_FILE,
    AGENT_SETTINGS_FILE,
    ARCHIVE_PREFIX,
    BASE_BRANCH_CANDIDATES,
    ENV_FILE,
    FEATURE_BRANCH_PREFIX,
    Settings,
)

logger = logging.getLogger(__name__)

# A feature name becomes a directory, a branch suffix and part of a tmux
# session name, so it is kept to one portable path segment
FEATURE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")

ARCHIVE_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# Files copied from the project root into every new worktree
WORKTREE_SEED_FILES = [ENV_FILE, AGENT_SETTINGS_FILE, AGENT_DOC_FILE]


def validate_feature_name(name: str) -> None:
    """Validate a feature name.

    Raises:
        InvalidNameError: If name is empty or not a single safe path segment
    """
    if not name:
        raise InvalidNameError(name, "name cannot be empty")
    if name in (".", "..") or "/" in name or "\\" in name:
        raise InvalidNameError(name, "name must be a single path segment")
    if not FEATURE_NAME_PATTERN.match(name):
        raise InvalidNameError(
            name, "use letters, digits, '.', '_' or '-' (max 64 chars, no leading symbol)")


@dataclass(frozen=True)
class ArchivedWorkspace:
    project: str
    feature: str
    path: str
    archived_at: Optional[str] = None
    mtime: float = 0.0


def parse_archive_name(name: str) -> Tuple[str, Optional[str]]:
    """Split an archive directory name into (feature, timestamp).

    Accepts "archived-{timestamp}_{feature}" and the older
    "archived-{feature}-{YYYYMMDD}-{HHMMSS}" layout. Unrecognised names are
    returned as the feature with no timestamp.
    """
    if not name.startswith(ARCHIVE_PREFIX):
        return name, None
    rest = name[len(ARCHIVE_PREFIX):]
    stamp, sep, feature = rest.partition("_")
    if sep and stamp and feature:
        return feature, stamp
    parts = rest.split("-")
    if len(parts) >= 3:
        return "-".join(parts[:-2]), "-".join(parts[-2:])
    return rest or name, None


def list_archived(settings: Settings, project: str) -> List[ArchivedWorkspace]:
    """Archived workspaces of a project, most recent first."""
    root = settings.archived_dir(project)
    if not root.is_dir():
        return []
    archived = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        feature, stamp = parse_archive_name(entry.name)
        try:
            mtime = os.stat(entry).st_mtime
        except OSError:
            mtime = 0.0
        archived.append(ArchivedWorkspace(project, feature, str(entry), stamp, mtime))
    archived.sort(key=lambda a: a.mtime, reverse=True)
    return archived


@dataclass(frozen=True)
class BranchCandidate:
    """A branch with no worktree yet that could become a workspace."""

    name: str
    local_name: str
    is_remote: bool
    ahead: int = 0
    behind: int = 0
    added_lines: int = 0
    deleted_lines: int = 0
    timestamp: int = 0


def parse_branch_candidates(output: str, checked_out: Iterable[str]) -> List[Tuple[str, str]]:
    """Pick (ref, local name) pairs from `git branch -a --format=%(refname:short)`.

    Skips HEAD refs, base branches and branches that already have a
    worktree (directly or as feature/<name>). A branch present both locally
    and on origin is listed once, under whichever ref comes first.
    """
    existing = set(checked_out)
    seen = set()
    candidates = []
    for line in output.splitlines():
        name = line.strip()
        if name.startswith("remotes/origin/"):
            name = "origin/" + name[len("remotes/origin/"):]
        if not name or name == "origin" or "HEAD" in name:
            continue
        local = name[len("origin/"):] if name.startswith("origin/") else name
        if local in BASE_BRANCH_CANDIDATES or local in seen:
            continue
        if local in existing or f"{FEATURE_BRANCH_PREFIX}{local}" in existing:
            continue
        seen.add(local)
        candidates.append((name, local))
    return candidates


class WorkspaceManager:
    """Creates and archives workspaces and their sessions."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunnerInterface,
        registry: SessionRegistry,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.runner = runner
        self.registry = registry
        self._now = now

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _prepare_target(self, project: str, feature: str) -> Optional[Path]:
        """Validate inputs and return the worktree path to create, or None."""
        try:
            validate_feature_name(feature)
        except InvalidNameError as e:
            logger.warning("Cannot create workspace: %s", e)
            return None

        project_path = self.settings.project_path(project)
        if not (project_path / ".git").exists():
            logger.warning("Cannot create workspace: %s is not a git project", project_path)
            return None

        branches_dir = self.settings.branches_dir(project)
        branches_dir.mkdir(parents=True, exist_ok=True)
        target = branches_dir / feature
        if target.exists():
            logger.warning("Cannot create workspace: %s already exists", target)
            return None
        return target

    def seed_worktree(self, project: str, worktree: Path) -> List[str]:
        """Copy the project's env file and agent files into a new worktree.

        Returns:
            Relative paths that were copied
        """
        project_path = self.settings.project_path(project)
        copied = []
        for rel in WORKTREE_SEED_FILES:
            src = project_path / rel
            if not src.is_file():
                continue
            dest = Path(worktree) / rel
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dest)
                copied.append(rel)
            except OSError as e:
                logger.warning("Could not copy %s into %s: %s", rel, worktree, e)
        return copied

    def _finish(self, project: str, feature: str, target: Path, branch: str,
                tool: Optional[str]) -> Workspace:
        self.seed_worktree(project, target)
        workspace = Workspace(project=project, feature=feature, path=str(target),
                              branch=branch, mtime=target.stat().st_mtime)
        if self.registry.create_main_session(workspace, tool) is None:
            logger.warning("Workspace %s/%s created but its session was not", project, feature)
        return workspace

    async def create_feature(self, project: str, feature: str,
                             tool: Optional[str] = None) -> Optional[Workspace]:
        """Create a new feature worktree forked from the project's base branch.

        Args:
            project: project directory name
            feature: feature name; the branch is "feature/{feature}"
            tool: agent CLI to start in the main session

        Returns:
            The new Workspace, or None on failure
        """
        target = self._prepare_target(project, feature)
        if target is None:
            return None
        project_path = str(self.settings.project_path(project))

        fetch = await self.runner.run("git", "-C", project_path, "fetch", "origin")
        if not fetch.ok:
            logger.info("git fetch failed for %s, using local refs: %s", project, fetch.stderr.strip())

        base = await resolve_base_branch(self.runner, project_path)
        branch = f"{FEATURE_BRANCH_PREFIX}{feature}"
        args = ["git", "-C", project_path, "worktree", "add", str(target), "-b", branch]
        if base:
            args.append(base)
        result = await self.runner.run(*args)
        if not result.ok or not target.exists():
            logger.warning("git worktree add failed for %s/%s: %s",
                           project, feature, result.stderr.strip())
            return None

        logger.info("Created workspace %s/%s from %s", project, feature, base or "HEAD")
        return self._finish(project, feature, target, branch, tool)

    async def create_from_branch(self, project: str, remote_branch: str, local_name: str,
                                 tool: Optional[str] = None) -> Optional[Workspace]:
        """Create a worktree for an existing branch.

        A local branch of the same name is checked out as is; otherwise a
        new local branch tracking the remote one is created.

        Returns:
            The new Workspace, or None on failure
        """
        target = self._prepare_target(project, local_name)
        if target is None:
            return None
        project_path = str(self.settings.project_path(project))

        branch = remote_branch[len("origin/"):] if remote_branch.startswith("origin/") else remote_branch
        local = await self.runner.run("git", "-C", project_path, "rev-parse", "--verify", "--quiet",
                                      f"refs/heads/{branch}")
        if local.ok:
            args = ["worktree", "add", str(target), branch]
        else:
            upstream = remote_branch if remote_branch.startswith("origin/") else f"origin/{branch}"
            args = ["worktree", "add", "--track", "-b", branch, str(target), upstream]
        result = await self.runner.run("git", "-C", project_path, *args)
        if not result.ok or not target.exists():
            logger.warning("git worktree add failed for %s (%s): %s",
                           project, remote_branch, result.stderr.strip())
            return None

        logger.info("Created workspace %s/%s from branch %s", project, local_name, branch)
        return self._finish(project, local_name, target, branch, tool)

    # -------------------------------------------------------------------------
    # Branch candidates
    # -------------------------------------------------------------------------

    async def list_branch_candidates(self, project: str) -> List[BranchCandidate]:
        """Branches of a project that could be opened as new workspaces.

        Only branches with commits not on the base branch are listed, most
        recently committed first. Feeds create_from_branch().
        """
        project_path = str(self.settings.project_path(project))
        listing = await self.runner.run(
            "git", "-C", project_path, "branch", "-a", "--format=%(refname:short)")
        if listing.output is None:
            logger.debug("No branches listed for %s: %s", project, listing.stderr.strip())
            return []
        base = await resolve_base_branch(self.runner, project_path)
        if base is None:
            logger.info("No base branch for %s, cannot compare branches", project)
            return []

        worktrees = await self.runner.run("git", "-C", project_path, "worktree", "list", "--porcelain")
        checked_out = parse_worktree_branches(worktrees.output or "").values()
        pairs = parse_branch_candidates(listing.output, checked_out)

        async def _info(pair):
            return await self._branch_info(project_path, base, *pair)

        infos = await map_limit(pairs, self.settings.refresh.inventory_concurrency, _info)
        branches = [info for info in infos if info is not None]
        branches.sort(key=lambda b: b.timestamp, reverse=True)
        return branches

    async def _branch_info(self, project_path: str, base: str, name: str,
                           local_name: str) -> Optional[BranchCandidate]:
        git = ("git", "-C", project_path)
        rev_list = await self.runner.run(*git, "rev-list", "--left-right", "--count", f"{base}...{name}")
        counts = parse_left_right_count(rev_list.output)
        if counts is None:
            return None
        behind, ahead = counts
        added, deleted = 0, 0
        if ahead > 0:
            diff = await self.runner.run(*git, "diff", "--shortstat", f"{base}...{name}")
            added, deleted = parse_shortstat(diff.output)
        if ahead == 0 and added == 0 and deleted == 0:
            return None
        stamp = (await self.runner.run(*git, "log", "-1", "--format=%at", name)).output
        return BranchCandidate(
            name=name,
            local_name=local_name,
            is_remote=name.startswith("origin/"),
            ahead=ahead,
            behind=behind,
            added_lines=added,
            deleted_lines=deleted,
            timestamp=int(stamp) if stamp and stamp.isdigit() else 0,
        )

    # -------------------------------------------------------------------------
    # Archive
    # -------------------------------------------------------------------------

    async def archive_feature(self, workspace: Workspace) -> Optional[str]:
        """Kill the workspace's sessions and move its worktree to the archive.

        Returns:
            The archived path, or None if the worktree could not be moved
        """
        self.registry.kill_workspace_sessions(workspace)

        archived_root = self.settings.archived_dir(workspace.project)
        archived_root.mkdir(parents=True, exist_ok=True)
        stamp = self._now().strftime(ARCHIVE_TIMESTAMP_FORMAT)
        dest = archived_root / f"{ARCHIVE_PREFIX}{stamp}_{workspace.feature}"

        try:
            shutil.move(workspace.path, str(dest))
        except (OSError, shutil.Error) as e:
            logger.warning("Could not archive %s: %s", workspace.path, e)
            return None

        project_path = str(self.settings.project_path(workspace.project))
        prune = await self.runner.run("git", "-C", project_path, "worktree", "prune")
        if not prune.ok:
            logger.warning("git worktree prune failed for %s: %s",
                           workspace.project, prune.stderr.strip())
        logger.info("Archived %s/%s to %s", workspace.project, workspace.feature, dest)
        return str(dest)
