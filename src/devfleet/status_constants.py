"""
Status constants and mappings for Devfleet.

Centralizes the string values shared by the probes, the review cache and
the status derivation engine, plus the symbols used to display them.
"""


# =============================================================================
# Agent Activity Values
# =============================================================================

AI_NOT_RUNNING = "not_running"
AI_WORKING = "working"
AI_WAITING = "waiting"
AI_THINKING = "thinking"
AI_IDLE = "idle"
AI_ACTIVE = "active"  # session alive, nothing recognisable on screen

ALL_AI_STATUSES = [
    AI_NOT_RUNNING,
    AI_WORKING,
    AI_WAITING,
    AI_THINKING,
    AI_IDLE,
    AI_ACTIVE,
]

TOOL_NONE = "none"


# =============================================================================
# Session Roles
# =============================================================================

ROLE_MAIN = "main"
ROLE_SHELL = "shell"
ROLE_RUN = "run"

ALL_ROLES = [ROLE_MAIN, ROLE_SHELL, ROLE_RUN]


# =============================================================================
# Review (Pull Request) Values
# =============================================================================

# Loading state of a cache entry
REVIEW_NOT_CHECKED = "not_checked"
REVIEW_LOADING = "loading"
REVIEW_NO_PR = "no_pr"
REVIEW_EXISTS = "exists"
REVIEW_ERROR = "error"

# PR state as reported by gh
PR_OPEN = "OPEN"
PR_MERGED = "MERGED"
PR_CLOSED = "CLOSED"

# Mergeability as reported by gh
MERGE_MERGEABLE = "MERGEABLE"
MERGE_CONFLICTING = "CONFLICTING"
MERGE_UNKNOWN = "UNKNOWN"

# Reduced check rollup
CHECKS_PASSING = "passing"
CHECKS_FAILING = "failing"
CHECKS_PENDING = "pending"
CHECKS_UNKNOWN = "unknown"


# =============================================================================
# Agent Status to Symbol Mappings
# =============================================================================

AI_SYMBOLS = {
    AI_NOT_RUNNING: "-",
    AI_WORKING: "*",
    AI_WAITING: "?",
    AI_THINKING: "~",
    AI_IDLE: "✓",
    AI_ACTIVE: "·",
}


def get_ai_symbol(status: str) -> str:
    """Get display symbol for an agent activity status."""
    return AI_SYMBOLS.get(status, " ")


# =============================================================================
# Review Display
# =============================================================================

CHECK_SYMBOLS = {
    CHECKS_PASSING: "✓",
    CHECKS_FAILING: "x",
    CHECKS_PENDING: "~",
    CHECKS_UNKNOWN: "",
}


def format_review_cell(review) -> str:
    """Short PR column text, e.g. '#42 ✓', '#42 ⟫' (merged) or '-'."""
    if review.loading_state == REVIEW_EXISTS and review.number is not None:
        if review.state == PR_MERGED:
            return f"#{review.number} ⟫"
        if review.state == PR_CLOSED:
            return f"#{review.number} closed"
        if review.mergeable == MERGE_CONFLICTING:
            return f"#{review.number} !"
        symbol = CHECK_SYMBOLS.get(review.checks or CHECKS_UNKNOWN, "")
        return f"#{review.number} {symbol}".rstrip()
    if review.loading_state == REVIEW_ERROR:
        return "err"
    if review.loading_state in (REVIEW_NOT_CHECKED, REVIEW_LOADING):
        return "..."
    return "-"
