"""
Data model for the reconciliation engine.

Workspace is the aggregate root. GitStatus, SessionInfo and ReviewStatus are
immutable value objects: each probe builds a fresh one and the owner swaps it
in whole, so a reader never observes a half-updated snapshot.
"""

from dataclasses import dataclass, field
from typing import Generic, Optional, Tuple, TypeVar

from .status_constants import (
    AI_NOT_RUNNING,
    CHECKS_FAILING,
    CHECKS_PASSING,
    CHECKS_PENDING,
    MERGE_CONFLICTING,
    MERGE_MERGEABLE,
    PR_CLOSED,
    PR_MERGED,
    PR_OPEN,
    REVIEW_EXISTS,
    REVIEW_NOT_CHECKED,
    ROLE_MAIN,
    TOOL_NONE,
)

T = TypeVar("T")


# =============================================================================
# Probe results
# =============================================================================

# Reasons a probe step can default its field
PROBE_NO_OUTPUT = "no_output"
PROBE_NONZERO_EXIT = "nonzero_exit"
PROBE_NOT_FOUND = "not_found"
PROBE_PARSE_ERROR = "parse_error"
PROBE_IO_ERROR = "io_error"


@dataclass(frozen=True)
class ProbeError:
    """Why a probe step fell back to its default value."""

    kind: str
    command: str = ""
    detail: str = ""

    def __str__(self) -> str:
        text = self.kind
        if self.command:
            text += f" ({self.command})"
        if self.detail:
            text += f": {self.detail}"
        return text


@dataclass(frozen=True)
class ProbeResult(Generic[T]):
    """A value that is always usable, plus the reason it was defaulted, if any."""

    value: T
    error: Optional[ProbeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ProbeResult[T]":
        return cls(value)

    @classmethod
    def failure(cls, default: T, kind: str, command: str = "", detail: str = "") -> "ProbeResult[T]":
        return cls(default, ProbeError(kind, command, detail))


# =============================================================================
# Inventory
# =============================================================================

@dataclass(frozen=True)
class Project:
    name: str
    path: str


@dataclass(frozen=True)
class Workspace:
    """One feature worktree of a project."""

    project: str
    feature: str
    path: str
    branch: str = "unknown"
    mtime: float = 0.0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.project, self.feature)


# =============================================================================
# Per-workspace status objects
# =============================================================================

@dataclass(frozen=True)
class GitStatus:
    """Version-control state of one workspace.

    When has_remote is true, is_pushed == (ahead == 0 and not has_changes).
    Without a remote, ahead/behind are measured against the base branch and
    is_pushed is always false.
    """

    has_changes: bool = False
    modified_files: int = 0
    added_lines: int = 0
    deleted_lines: int = 0
    untracked_lines: int = 0
    base_added_lines: int = 0
    base_deleted_lines: int = 0
    base_branch: Optional[str] = None
    has_remote: bool = False
    ahead: int = 0
    behind: int = 0
    is_pushed: bool = False
    # Reasons for any fields left at their defaults
    errors: Tuple[ProbeError, ...] = field(default=(), compare=False)

    @property
    def has_base_diff(self) -> bool:
        """Whether the workspace has diverged from its base branch at all."""
        return (self.base_added_lines + self.base_deleted_lines) > 0


@dataclass(frozen=True)
class SessionInfo:
    """State of one role session of a workspace.

    attached means the tmux session exists (it may have no client attached).
    """

    name: str
    role: str = ROLE_MAIN
    attached: bool = False
    tool: str = TOOL_NONE
    status: str = AI_NOT_RUNNING


@dataclass(frozen=True)
class ReviewStatus:
    """Pull request state for a workspace's branch.

    The derived flags are properties so they can never disagree with the
    stored fields.
    """

    loading_state: str = REVIEW_NOT_CHECKED
    number: Optional[int] = None
    state: Optional[str] = None
    checks: Optional[str] = None
    mergeable: Optional[str] = None
    title: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.loading_state == REVIEW_EXISTS

    @property
    def is_open(self) -> bool:
        return self.exists and self.state == PR_OPEN

    @property
    def is_merged(self) -> bool:
        return self.exists and self.state == PR_MERGED

    @property
    def is_closed(self) -> bool:
        return self.exists and self.state == PR_CLOSED

    @property
    def has_conflicts(self) -> bool:
        return self.exists and self.mergeable == MERGE_CONFLICTING

    @property
    def checks_failing(self) -> bool:
        return self.exists and self.checks == CHECKS_FAILING

    @property
    def checks_pending(self) -> bool:
        return self.exists and self.checks == CHECKS_PENDING

    @property
    def needs_attention(self) -> bool:
        return self.checks_failing or self.has_conflicts

    @property
    def ready_to_merge(self) -> bool:
        return (
            self.is_open
            and self.checks == CHECKS_PASSING
            and self.mergeable == MERGE_MERGEABLE
        )


@dataclass(frozen=True)
class MergedRecord:
    """Everything known about one workspace after a refresh pass."""

    workspace: Workspace
    git: GitStatus = field(default_factory=GitStatus)
    session: SessionInfo = field(default_factory=lambda: SessionInfo(name=""))
    shell_attached: bool = False
    run_attached: bool = False
    review: ReviewStatus = field(default_factory=ReviewStatus)

    @property
    def key(self) -> Tuple[str, str]:
        return self.workspace.key
