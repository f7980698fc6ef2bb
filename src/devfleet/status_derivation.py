"""
Status derivation engine.

Pure business logic: combines agent activity, git state and PR state into
one Label, and maps every Label to how it is displayed. No I/O, no hidden
state; the same inputs always give the same output.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional

from .models import MergedRecord, ReviewStatus
from .status_constants import AI_NOT_RUNNING, AI_THINKING, AI_WAITING, AI_WORKING, REVIEW_NO_PR


class Label(str, Enum):
    WAITING = "waiting"
    WORKING = "working"
    UNCOMMITTED = "uncommitted"
    UNPUSHED = "un-pushed"
    CONFLICT = "conflict"
    PR_FAILED = "pr-failed"
    PR_PASSED = "pr-passed"
    PR_CHECKING = "pr-checking"
    NO_PR = "no-pr"
    READY = "ready"
    MERGED = "merged"
    EMPTY = ""


class Column(IntEnum):
    """Table columns a label can highlight."""

    NUMBER = 0
    PROJECT_FEATURE = 1
    AI = 2
    DIFF = 3
    CHANGES = 4
    PR = 5


SEVERITY_RED = "red"
SEVERITY_GREEN = "green"
SEVERITY_YELLOW = "yellow"


@dataclass(frozen=True)
class StatusDisplay:
    column: Column
    bg: Optional[str]
    fg: str
    severity: str
    highlight: bool = True


# =============================================================================
# Label to display mapping (must cover every Label)
# =============================================================================

STATUS_DISPLAY: Dict[Label, StatusDisplay] = {
    Label.WAITING: StatusDisplay(Column.AI, "yellow", "white", SEVERITY_YELLOW),
    Label.WORKING: StatusDisplay(Column.AI, None, "white", SEVERITY_YELLOW, highlight=False),
    Label.UNCOMMITTED: StatusDisplay(Column.DIFF, None, "blue", SEVERITY_YELLOW),
    Label.UNPUSHED: StatusDisplay(Column.CHANGES, "cyan", "white", SEVERITY_YELLOW),
    Label.CONFLICT: StatusDisplay(Column.PR, "red", "white", SEVERITY_RED),
    Label.PR_FAILED: StatusDisplay(Column.PR, "red", "white", SEVERITY_RED),
    Label.PR_PASSED: StatusDisplay(Column.PR, "green", "white", SEVERITY_GREEN),
    Label.PR_CHECKING: StatusDisplay(Column.PR, None, "magenta", SEVERITY_YELLOW),
    Label.NO_PR: StatusDisplay(Column.PR, None, "cyan", SEVERITY_YELLOW),
    Label.READY: StatusDisplay(Column.AI, "black", "white", SEVERITY_GREEN),
    Label.MERGED: StatusDisplay(Column.PR, None, "gray", SEVERITY_GREEN),
    Label.EMPTY: StatusDisplay(Column.PR, "black", "white", SEVERITY_YELLOW, highlight=False),
}

_missing = [label for label in Label if label not in STATUS_DISPLAY]
if _missing:
    raise RuntimeError(f"STATUS_DISPLAY has no entry for: {', '.join(repr(m) for m in _missing)}")


def get_display(label: Label) -> StatusDisplay:
    return STATUS_DISPLAY[label]


# =============================================================================
# Derivation
# =============================================================================

def derive(
    ai_status: str,
    attached: bool,
    has_changes: bool,
    ahead: int,
    behind: int,
    review: ReviewStatus,
    has_remote: bool = False,
    has_base_diff: bool = False,
) -> Label:
    """Derive the single status label of a workspace.

    Pure function - no side effects, fully testable.

    First match wins:
        waiting > working > uncommitted > un-pushed > conflict > pr-failed
        > pr-passed > pr-checking > no-pr / ready > merged > empty

    A working or thinking agent suppresses every other signal. The agent status only
    counts while its session exists. `behind` does not affect the label.

    Args:
        ai_status: agent activity of the main session
        attached: whether the main session exists
        has_changes: uncommitted changes in the worktree
        ahead: commits not on the remote (or base branch)
        behind: commits on the remote not in HEAD
        review: cached PR status
        has_remote: the branch tracks a remote branch
        has_base_diff: the branch differs from its base branch

    Returns:
        The Label
    """
    agent = ai_status if attached else AI_NOT_RUNNING
    if agent == AI_WAITING:
        return Label.WAITING
    if agent in (AI_WORKING, AI_THINKING):
        return Label.WORKING
    if has_changes:
        return Label.UNCOMMITTED
    if ahead > 0:
        return Label.UNPUSHED
    if review.has_conflicts:
        return Label.CONFLICT
    if review.checks_failing:
        return Label.PR_FAILED
    if review.ready_to_merge:
        return Label.PR_PASSED
    if review.is_open and review.checks_pending:
        return Label.PR_CHECKING
    if review.loading_state == REVIEW_NO_PR:
        if has_remote and has_base_diff:
            return Label.NO_PR
        return Label.READY
    if review.is_merged:
        return Label.MERGED
    return Label.EMPTY


def derive_record(record: MergedRecord) -> Label:
    """derive() applied to a merged per-workspace record."""
    return derive(
        record.session.status,
        record.session.attached,
        record.git.has_changes,
        record.git.ahead,
        record.git.behind,
        record.review,
        has_remote=record.git.has_remote,
        has_base_diff=record.git.has_base_diff,
    )
