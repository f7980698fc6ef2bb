"""
Test fixtures and helpers for Devfleet unit tests.

Builders for domain objects and scripted git/tmux responses for
FakeCommandRunner.
"""

from devfleet.mocks import FakeCommandRunner
from devfleet.models import GitStatus, MergedRecord, ReviewStatus, SessionInfo, Workspace
from devfleet.status_constants import AI_NOT_RUNNING, REVIEW_NO_PR


def make_workspace(project="app", feature="login", path=None, branch=None, mtime=0.0):
    """Build a Workspace with the conventional layout path."""
    return Workspace(
        project=project,
        feature=feature,
        path=path or f"/projects/{project}-branches/{feature}",
        branch=branch or f"feature/{feature}",
        mtime=mtime,
    )


def make_record(workspace=None, git=None, status=AI_NOT_RUNNING, attached=False,
                review=None):
    workspace = workspace or make_workspace()
    return MergedRecord(
        workspace=workspace,
        git=git or GitStatus(),
        session=SessionInfo(name=f"dev-{workspace.project}-{workspace.feature}",
                            attached=attached, status=status),
        review=review or ReviewStatus(loading_state=REVIEW_NO_PR),
    )


def worktree_porcelain(main_path, worktrees):
    """`git worktree list --porcelain` text.

    Args:
        main_path: path of the main checkout
        worktrees: list of (path, branch) for linked worktrees
    """
    blocks = [f"worktree {main_path}\nHEAD 0000000\nbranch refs/heads/main\n"]
    for path, branch in worktrees:
        blocks.append(f"worktree {path}\nHEAD 1111111\nbranch refs/heads/{branch}\n")
    return "\n".join(blocks)


def script_clean_git(runner: FakeCommandRunner, path: str, upstream_counts=None,
                     base="main", base_counts="0\t0"):
    """Script a workspace with no local changes.

    Args:
        upstream_counts: "ahead\\tbehind" against @{u}; None means no upstream
        base: local base branch that exists
        base_counts: "ahead\\tbehind" against the base branch
    """
    git = ("git", "-C", path)
    runner.add(git + ("status", "--porcelain"), stdout="")
    runner.add(git + ("rev-parse", "--verify", "--quiet", base), stdout="abc123\n")
    runner.add(git + ("merge-base", "HEAD", base), stdout="mb000\n")
    runner.add(git + ("diff", "--shortstat", "mb000", "HEAD"),
               stdout=" 1 file changed, 5 insertions(+)\n")
    runner.add(git + ("rev-list", "--left-right", "--count", f"HEAD...{base}"), stdout=base_counts)
    if upstream_counts is not None:
        runner.add(git + ("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"),
                   stdout="origin/feature\n")
        runner.add(git + ("rev-list", "--left-right", "--count", "HEAD...@{u}"),
                   stdout=upstream_counts)
