"""
Diff parsing and side-by-side alignment.

parse_unified_diff() turns `git diff` text into typed lines; align() pairs
those lines into (left, right) rows in one left-to-right pass. A run of
removed lines is paired index-for-index with the run of added lines that
follows it; the shorter side is padded with explicit "empty" lines so every
row has both cells.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .git_probe import resolve_base_branch
from .protocols import CommandRunnerInterface

logger = logging.getLogger(__name__)

LINE_HEADER = "header"
LINE_CONTEXT = "context"
LINE_ADDED = "added"
LINE_REMOVED = "removed"
LINE_EMPTY = "empty"

HEADER_FILE = "file"
HEADER_HUNK = "hunk"

# Untracked files are shown up to this many lines
UNTRACKED_PREVIEW_LINES = 200


@dataclass(frozen=True)
class DiffLine:
    type: str
    text: str = ""
    file_name: Optional[str] = None
    header_type: Optional[str] = None


@dataclass(frozen=True)
class AlignedRow:
    left: DiffLine
    right: DiffLine
    line_index: int


def _empty(file_name: Optional[str]) -> DiffLine:
    return DiffLine(LINE_EMPTY, "", file_name)


def align(lines: List[DiffLine]) -> List[AlignedRow]:
    """Pair typed diff lines into side-by-side rows.

    Pure function - O(n), no backtracking, input order preserved.
    """
    rows: List[AlignedRow] = []
    i = 0
    n = len(lines)

    def _emit(left: DiffLine, right: DiffLine) -> None:
        rows.append(AlignedRow(left, right, len(rows)))

    while i < n:
        line = lines[i]
        if line.type in (LINE_HEADER, LINE_CONTEXT):
            _emit(line, line)
            i += 1
        elif line.type == LINE_REMOVED:
            removed = []
            while i < n and lines[i].type == LINE_REMOVED:
                removed.append(lines[i])
                i += 1
            added = []
            while i < n and lines[i].type == LINE_ADDED:
                added.append(lines[i])
                i += 1
            for j in range(max(len(removed), len(added))):
                left = removed[j] if j < len(removed) else _empty(line.file_name)
                right = added[j] if j < len(added) else _empty(line.file_name)
                _emit(left, right)
        elif line.type == LINE_ADDED:
            _emit(_empty(line.file_name), line)
            i += 1
        else:
            i += 1
    return rows


def parse_unified_diff(text: str) -> List[DiffLine]:
    """Parse `git diff --no-color` output into typed lines.

    File headers become "📁 path"; hunk headers with a function context
    become "  ▼ context" (hunks without context are dropped); "+++"/"---"
    and index lines are skipped; blank lines become context " ".
    """
    lines: List[DiffLine] = []
    if not text or not text.strip():
        return lines

    current_file = ""
    for raw in text.rstrip("\n").split("\n"):
        if raw.startswith("diff --git"):
            parts = raw.split(" ")
            path = ""
            if len(parts) > 3:
                path = parts[3][2:]
            elif len(parts) > 2:
                path = parts[2][2:]
            current_file = path
            lines.append(DiffLine(LINE_HEADER, f"📁 {path}", path, HEADER_FILE))
        elif raw.startswith("@@"):
            end = raw.find("@@", 2)
            context = raw[end + 2:].lstrip(" ") if end != -1 else ""
            if context:
                lines.append(DiffLine(LINE_HEADER, f"  ▼ {context}", current_file, HEADER_HUNK))
        elif raw.startswith("+") and not raw.startswith("+++"):
            lines.append(DiffLine(LINE_ADDED, raw[1:], current_file))
        elif raw.startswith("-") and not raw.startswith("---"):
            lines.append(DiffLine(LINE_REMOVED, raw[1:], current_file))
        elif raw.startswith(" "):
            lines.append(DiffLine(LINE_CONTEXT, raw[1:], current_file))
        elif raw == "":
            lines.append(DiffLine(LINE_CONTEXT, " ", current_file))
    return lines


def untracked_file_lines(workspace_path: str, rel_path: str) -> List[DiffLine]:
    """A new-file header plus the file's non-blank lines as added lines."""
    lines = [DiffLine(LINE_HEADER, f"📁 {rel_path} (new file)", rel_path, HEADER_FILE)]
    try:
        with open(Path(workspace_path) / rel_path, errors="replace") as f:
            for count, text in enumerate(f):
                if count >= UNTRACKED_PREVIEW_LINES:
                    break
                text = text.rstrip("\n")
                if text:
                    lines.append(DiffLine(LINE_ADDED, text, rel_path))
    except OSError as e:
        logger.debug("Cannot read untracked file %s: %s", rel_path, e)
    return lines


async def load_diff(runner: CommandRunnerInterface, path: str, against_base: bool = True) -> List[DiffLine]:
    """Typed diff lines for a workspace.

    Args:
        runner: command runner
        path: workspace path
        against_base: diff from the merge-base with the base branch (all
            work on the branch); False diffs the working tree against HEAD

    Returns:
        Typed lines, untracked files appended at the end
    """
    target = "HEAD"
    if against_base:
        target = "HEAD~1"
        base = await resolve_base_branch(runner, path)
        if base:
            merge_base = await runner.run("git", "-C", path, "merge-base", "HEAD", base)
            if merge_base.output:
                target = merge_base.output

    diff = await runner.run("git", "-C", path, "diff", "--no-color", "--no-ext-diff", target)
    lines = parse_unified_diff(diff.stdout if diff.ok else "")

    untracked = await runner.run("git", "-C", path, "ls-files", "--others", "--exclude-standard")
    for rel in (untracked.output or "").splitlines():
        if rel.strip():
            lines.extend(untracked_file_lines(path, rel.strip()))
    return lines
