"""
Agent activity detection patterns.

Each supported agent CLI draws a recognisable footer in its tmux pane. The
captured pane text is classified by checking an ordered list of patterns;
the first match wins. Order matters: a busy agent still shows its prompt
and a numbered list can be part of ordinary output, so "working" is
checked before "waiting", and "waiting" before "idle".
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .status_constants import (
    AI_ACTIVE,
    AI_IDLE,
    AI_NOT_RUNNING,
    AI_THINKING,
    AI_WAITING,
    AI_WORKING,
    TOOL_NONE,
)

# Regex to match ANSI escape sequences (colors, cursor movement, etc.)
ANSI_ESCAPE_PATTERN = re.compile(r'\x1b\[[0-9;]*[a-zA-Z]')


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_PATTERN.sub('', text)


# How a tool shows it is waiting for the user
WAIT_NUMBERED = "numbered"    # marker and regex both present (a numbered choice)
WAIT_PHRASE = "phrase"        # marker present, case-insensitive
WAIT_NO_SEND = "no_send"      # idle suffix absent: the input box is not ready


@dataclass(frozen=True)
class ToolPatterns:
    """Patterns for one agent CLI.

    working: substring, case-insensitive
    waiting: (marker, regex), interpreted by waiting_rule
    idle: (marker, suffix) - marker present and trimmed text ends with suffix
    """

    name: str
    command: str
    process_patterns: Tuple[str, ...]
    working: str
    waiting: Tuple[str, str]
    idle: Tuple[str, str]
    waiting_rule: str = WAIT_NUMBERED


AGENT_TOOLS: Dict[str, ToolPatterns] = {
    "claude": ToolPatterns(
        name="Claude",
        command="claude",
        process_patterns=("claude",),
        working="esc to interrupt",
        waiting=("❯", r"\d+\.\s+\w+"),
        idle=("│ >", "│"),
    ),
    "codex": ToolPatterns(
        name="OpenAI Codex",
        command="codex",
        process_patterns=("node",),
        working="Esc to interrupt",
        waiting=("▌", r"[A-Za-z]"),
        idle=("▌", "⏎ send"),
        waiting_rule=WAIT_NO_SEND,
    ),
    "gemini": ToolPatterns(
        name="Gemini",
        command="gemini",
        process_patterns=("node",),
        working="esc to cancel",
        waiting=("Waiting for user", r"\d+\."),
        idle=("│ >", ""),
        waiting_rule=WAIT_PHRASE,
    ),
}

# Footers of other CLIs that only show when the agent is at its prompt
ALT_IDLE_MARKERS: List[re.Pattern] = [
    re.compile(r"Ctrl\+J\s+newline", re.IGNORECASE),
    re.compile(r"Ctrl\+C\s+quit", re.IGNORECASE),
    re.compile(r"tokens\s+used", re.IGNORECASE),
    re.compile(r"context\s+left", re.IGNORECASE),
    re.compile(r"▌"),
]

# Markers codex draws in its pane; it runs as a plain "node" process
CODEX_PANE_MARKERS = ("▌", "⏎ send")


@dataclass
class ThinkingPatterns:
    """Spinner words shown while the model reasons before acting."""

    indicators: List[str] = field(default_factory=lambda: [
        "thinking",
        "✻ thinking",
        "✽",
        "pondering",
        "cogitating",
    ])


DEFAULT_THINKING = ThinkingPatterns()


# =============================================================================
# Classification
# =============================================================================

def is_working(text: str, pattern: str) -> bool:
    return pattern.lower() in text.lower()


def is_waiting(text: str, patterns: Tuple[str, str]) -> bool:
    marker, regex = patterns
    return marker in text and re.search(regex, text, re.MULTILINE) is not None


def is_waiting_for_tool(text: str, patterns: ToolPatterns) -> bool:
    if patterns.waiting_rule == WAIT_NO_SEND:
        return patterns.idle[1] not in text
    if patterns.waiting_rule == WAIT_PHRASE:
        return patterns.waiting[0].lower() in text.lower()
    return is_waiting(text, patterns.waiting)


def is_thinking(text: str, patterns: ThinkingPatterns = DEFAULT_THINKING) -> bool:
    # Only the last few lines: the word "thinking" in old output means nothing
    tail = "\n".join(text.rstrip().splitlines()[-5:]).lower()
    return any(indicator in tail for indicator in patterns.indicators)


def is_idle(text: str, patterns: Tuple[str, str]) -> bool:
    marker, suffix = patterns
    if marker in text and text.strip().endswith(suffix):
        return True
    return any(regex.search(text) for regex in ALT_IDLE_MARKERS)


def classify_pane(text: Optional[str], tool: str) -> str:
    """Classify captured pane text for the given agent tool.

    Returns:
        One of the AI_* status values. No content or no tool means the
        agent is not running; unrecognised content is "active".
    """
    if not text or tool == TOOL_NONE or tool not in AGENT_TOOLS:
        return AI_NOT_RUNNING

    text = strip_ansi(text)
    patterns = AGENT_TOOLS[tool]
    if is_working(text, patterns.working):
        return AI_WORKING
    if is_waiting_for_tool(text, patterns):
        return AI_WAITING
    if is_thinking(text):
        return AI_THINKING
    if is_idle(text, patterns.idle):
        return AI_IDLE
    return AI_ACTIVE


def detect_tool_from_process(command: str) -> str:
    """Map a pane's current command to an agent tool name (or "none").

    Several tools run under node; the first configured match is returned
    and callers disambiguate with the pane content.
    """
    command = command.lower()
    for tool, patterns in AGENT_TOOLS.items():
        if any(p in command for p in patterns.process_patterns):
            return tool
    return TOOL_NONE


def parse_pane_list(output: str) -> List[Tuple[str, str]]:
    """Parse `list-panes -F '#{window_index}.#{pane_index} #{pane_current_command}'`.

    Returns:
        List of (pane index like "0.0", current command)
    """
    panes = []
    for line in output.splitlines():
        if not line.strip():
            continue
        index, _, command = line.partition(" ")
        panes.append((index, command.strip()))
    return panes
