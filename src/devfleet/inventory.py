"""
Workspace inventory: projects in the base directory and their worktrees.

A project is a git repository directly under the base directory. Its
workspaces are the linked worktrees living in the sibling
"{project}-branches" directory.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from .concurrency import map_limit
from .models import Project, Workspace
from .protocols import CommandRunnerInterface
from .settings import DIR_ARCHIVED_SUFFIX, DIR_BRANCHES_SUFFIX

logger = logging.getLogger(__name__)


def discover_projects(base_dir: Path) -> List[Project]:
    """List git repositories directly under base_dir, sorted by name.

    Branch and archive containers are skipped. A missing base directory
    yields an empty list.
    """
    base_dir = Path(base_dir)
    if not base_dir.is_dir():
        logger.debug("Projects directory does not exist: %s", base_dir)
        return []

    projects = []
    for entry in base_dir.iterdir():
        name = entry.name
        if not entry.is_dir():
            continue
        if DIR_BRANCHES_SUFFIX in name or DIR_ARCHIVED_SUFFIX in name:
            continue
        if not (entry / ".git").exists():
            continue
        projects.append(Project(name=name, path=str(entry)))
    return sorted(projects, key=lambda p: p.name)


def _mtime(path: str) -> float:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return 0.0


def parse_worktree_list(output: str, project: str) -> List[Workspace]:
    """Parse `git worktree list --porcelain` into workspaces of one project.

    Only entries under "{project}-branches" are kept; the main checkout and
    worktrees elsewhere are ignored.
    """
    container = f"{project}{DIR_BRANCHES_SUFFIX}"
    workspaces = []
    current_path: Optional[str] = None
    current_branch: Optional[str] = None

    def _flush():
        if current_path and container in current_path:
            workspaces.append(Workspace(
                project=project,
                feature=os.path.basename(current_path.rstrip("/")),
                path=current_path,
                branch=current_branch or "unknown",
                mtime=_mtime(current_path),
            ))

    for line in output.splitlines():
        if line.startswith("worktree "):
            _flush()
            current_path = line[len("worktree "):].strip()
            current_branch = None
        elif line.startswith("branch "):
            branch = line[len("branch "):].strip()
            if branch.startswith("refs/heads/"):
                branch = branch[len("refs/heads/"):]
            current_branch = branch
    _flush()
    return workspaces


async def list_worktrees(runner: CommandRunnerInterface, project: Project) -> List[Workspace]:
    """Workspaces of one project; a failing git call yields none."""
    result = await runner.run("git", "-C", project.path, "worktree", "list", "--porcelain")
    if result.output is None:
        logger.debug("%s: no worktrees (%s)", project.name, result.stderr.strip() or "no output")
        return []
    return parse_worktree_list(result.output, project.name)


async def discover_workspaces(
    runner: CommandRunnerInterface,
    base_dir: Path,
    concurrency: int = 4,
) -> List[Workspace]:
    """All workspaces of all projects, most recently modified first."""
    projects = discover_projects(base_dir)

    async def _collect(project: Project) -> List[Workspace]:
        try:
            return await list_worktrees(runner, project)
        except Exception:
            logger.warning("Worktree listing failed for %s", project.name, exc_info=True)
            return []

    per_project = await map_limit(projects, concurrency, _collect)
    workspaces = [ws for group in per_project for ws in group]
    workspaces.sort(key=lambda ws: ws.mtime, reverse=True)
    logger.debug("Discovered %d workspaces in %d projects", len(workspaces), len(projects))
    return workspaces
