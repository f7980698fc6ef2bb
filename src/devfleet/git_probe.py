"""
Git status probe for one workspace.

Pure parsing helpers plus one async entry point, probe_git_status(). Each
step is best-effort: when git gives no usable output the step's fields keep
their defaults and the reason is recorded in GitStatus.errors. The probe
itself never raises.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .models import (
    GitStatus,
    PROBE_IO_ERROR,
    PROBE_NO_OUTPUT,
    PROBE_NONZERO_EXIT,
    PROBE_PARSE_ERROR,
    ProbeError,
    ProbeResult,
)
from .protocols import CommandRunnerInterface
from .runner import CommandResult
from .settings import BASE_BRANCH_CANDIDATES

logger = logging.getLogger(__name__)

_INSERTIONS_RE = re.compile(r"(\d+) insertion")
_DELETIONS_RE = re.compile(r"(\d+) deletion")


# =============================================================================
# Parsing (pure)
# =============================================================================

def parse_shortstat(text: Optional[str]) -> Tuple[int, int]:
    """Parse `git diff --shortstat` output into (added, deleted).

    Example: " 2 files changed, 45 insertions(+), 12 deletions(-)" -> (45, 12)
    """
    if not text:
        return 0, 0
    added = _INSERTIONS_RE.search(text)
    deleted = _DELETIONS_RE.search(text)
    return (int(added.group(1)) if added else 0,
            int(deleted.group(1)) if deleted else 0)


def parse_left_right_count(text: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse `git rev-list --left-right --count A...B` into (ahead, behind)."""
    if not text:
        return None
    parts = text.split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def untracked_paths(porcelain: str) -> List[str]:
    """Paths of untracked files ("?? path") in porcelain status output."""
    paths = []
    for line in porcelain.splitlines():
        if line.startswith("?? "):
            path = line[3:].strip()
            if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
                path = path[1:-1]
            paths.append(path)
    return paths


def count_file_lines(path: Path) -> ProbeResult[int]:
    """Line count of a file; unreadable files count as zero."""
    try:
        content = path.read_text(errors="replace")
    except OSError as e:
        return ProbeResult.failure(0, PROBE_IO_ERROR, detail=f"{path}: {e}")
    return ProbeResult.success(len(content.splitlines()))


# =============================================================================
# Probe
# =============================================================================

class _StepLog:
    """Collects the reasons individual probe steps defaulted."""

    def __init__(self, workspace: str):
        self.workspace = workspace
        self.errors: List[ProbeError] = []

    def output(self, result: CommandResult) -> Optional[str]:
        text = result.output
        if text is None:
            if result.ok:
                error = ProbeError(PROBE_NO_OUTPUT, result.display)
            else:
                error = ProbeError(PROBE_NONZERO_EXIT, result.display, result.stderr.strip())
            self.add(error)
        return text

    def add(self, error: ProbeError) -> None:
        logger.debug("%s: %s", self.workspace, error)
        self.errors.append(error)


async def resolve_base_branch(runner: CommandRunnerInterface, path: str) -> Optional[str]:
    """Find the branch this workspace is compared against.

    Tries origin/<candidate> for every conventional name, then the local
    <candidate> names, then the remote's HEAD symbolic ref.
    """
    remote_refs = [f"origin/{candidate}" for candidate in BASE_BRANCH_CANDIDATES]
    for ref in remote_refs + list(BASE_BRANCH_CANDIDATES):
        result = await runner.run("git", "-C", path, "rev-parse", "--verify", "--quiet", ref)
        if result.ok and result.stdout.strip():
            return ref

    result = await runner.run("git", "-C", path, "symbolic-ref", "refs/remotes/origin/HEAD")
    if result.output:
        return result.output.replace("refs/remotes/", "", 1)
    return None


async def probe_git_status(runner: CommandRunnerInterface, path: str) -> GitStatus:
    """Compute the GitStatus of the workspace at path."""
    steps = _StepLog(path)
    git = ("git", "-C", path)

    # 1. Local modifications
    porcelain = steps.output(await runner.run(*git, "status", "--porcelain")) or ""
    status_lines = [line for line in porcelain.splitlines() if line.strip()]
    has_changes = bool(status_lines)
    modified_files = len(status_lines)

    # 2. Working tree vs HEAD
    added, deleted = 0, 0
    if has_changes:
        shortstat = await runner.run(*git, "diff", "--shortstat", "HEAD")
        if shortstat.ok:
            added, deleted = parse_shortstat(shortstat.stdout)
        else:
            steps.output(shortstat)

    # 3. Untracked files count as added lines
    untracked_lines = 0
    for rel in untracked_paths(porcelain):
        counted = count_file_lines(Path(path) / rel)
        if counted.error:
            steps.add(counted.error)
        untracked_lines += counted.value

    # 4-5. Cumulative divergence from the base branch
    base_branch = await resolve_base_branch(runner, path)
    base_added, base_deleted = 0, 0
    if base_branch:
        # No merge-base means no comparable history: base totals stay 0
        merge_base = steps.output(await runner.run(*git, "merge-base", "HEAD", base_branch))
        if merge_base:
            committed_added, committed_deleted = 0, 0
            committed = await runner.run(*git, "diff", "--shortstat", merge_base, "HEAD")
            if committed.ok:
                committed_added, committed_deleted = parse_shortstat(committed.stdout)
            else:
                steps.output(committed)
            base_added = committed_added + added + untracked_lines
            base_deleted = committed_deleted + deleted
    else:
        steps.add(ProbeError(PROBE_NO_OUTPUT, "resolve base branch", "no candidate branch exists"))

    # 6. Ahead/behind: upstream if tracked, else base branch
    has_remote = False
    ahead, behind = 0, 0
    upstream = await runner.run(*git, "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")
    if upstream.output:
        has_remote = True
        counts = await _left_right(runner, steps, path, "@{u}")
        if counts:
            ahead, behind = counts
    elif base_branch:
        counts = await _left_right(runner, steps, path, base_branch)
        if counts:
            ahead, behind = counts

    return GitStatus(
        has_changes=has_changes,
        modified_files=modified_files,
        added_lines=added,
        deleted_lines=deleted,
        untracked_lines=untracked_lines,
        base_added_lines=base_added,
        base_deleted_lines=base_deleted,
        base_branch=base_branch,
        has_remote=has_remote,
        ahead=ahead,
        behind=behind,
        is_pushed=has_remote and ahead == 0 and not has_changes,
        errors=tuple(steps.errors),
    )


async def _left_right(runner: CommandRunnerInterface, steps: _StepLog,
                      path: str, other: str) -> Optional[Tuple[int, int]]:
    text = steps.output(await runner.run(
        "git", "-C", path, "rev-list", "--left-right", "--count", f"HEAD...{other}"))
    if text is None:
        return None
    counts = parse_left_right_count(text)
    if counts is None:
        steps.add(ProbeError(PROBE_PARSE_ERROR, f"rev-list HEAD...{other}", text))
    return counts
