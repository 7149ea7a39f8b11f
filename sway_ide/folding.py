# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Fold range computation and the folded-buffer row projection.

`compute_fold_ranges` is a pure function of the buffer lines and the
language family. `FoldState` keeps the collapsed starts of one document and
the list of source rows that remain visible, which is what scrolling,
paging and mouse hit-testing work against.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from sway_ide.language import HTML, comment_opener

logger = logging.getLogger(__name__)

_OPEN_BRACKETS = "{(["
_CLOSE_BRACKETS = "})]"


@dataclass(frozen=True, order=True)
class FoldRange:
    """Inclusive, 0-based row span; `start_line` stays visible when folded."""
    start_line: int
    end_line: int

    def contains(self, row: int) -> bool:
        return self.start_line <= row <= self.end_line

    def hides(self, row: int) -> bool:
        return self.start_line < row <= self.end_line


def bracket_fold_ranges(lines: List[str], language: str) -> Tuple[List[FoldRange], List[int]]:
    """
    Brace folding plus the per-line bracket nesting depth.

    Every line is scanned left to right. Characters inside a ``"`` or ``'``
    string are ignored (a backslash skips the next character) and, outside a
    string, the family's comment opener ends the scan of that line. All three
    opening brackets raise the depth, but only ``{`` is remembered, so only
    ``{ ... }`` spans become fold ranges.

    Args:
        lines: Buffer lines.
        language: Language family tag.

    Returns:
        Tuple[List[FoldRange], List[int]]: Ranges in closing order and the
        depth at the start of each line (never negative).
    """
    opener = comment_opener(language)
    ranges: List[FoldRange] = []
    depths: List[int] = []
    open_rows: List[int] = []
    depth = 0

    for row, line in enumerate(lines):
        depths.append(depth)
        quote: Optional[str] = None
        i = 0
        while i < len(line):
            ch = line[i]
            if quote is not None:
                if ch == "\\":
                    i += 2
                    continue
                if ch == quote:
                    quote = None
                i += 1
                continue

            if opener and line.startswith(opener, i):
                break
            if ch in ('"', "'"):
                quote = ch
            elif ch in _OPEN_BRACKETS:
                if ch == "{":
                    open_rows.append(row)
                depth += 1
            elif ch in _CLOSE_BRACKETS:
                depth = max(0, depth - 1)
                if ch == "}" and open_rows:
                    start = open_rows.pop()
                    if row > start:
                        ranges.append(FoldRange(start, row))
            i += 1

    return ranges, depths


def indent_fold_ranges(lines: List[str]) -> List[FoldRange]:
    """
    Indentation folding: a line owns the following lines that are indented deeper.

    Blank lines never open or close a block. Blocks still open at the end of
    the buffer close on the last row.
    """
    ranges: List[FoldRange] = []
    stack: List[Tuple[int, int]] = []  # (indent width, start row)

    for row, line in enumerate(lines):
        if not line.strip():
            continue
        indent = len(line) - len(line.lstrip(" \t"))
        while stack and indent <= stack[-1][0]:
            _, start = stack.pop()
            end = row - 1
            if end > start:
                ranges.append(FoldRange(start, end))
        stack.append((indent, row))

    last_row = len(lines) - 1
    while stack:
        _, start = stack.pop()
        if last_row > start:
            ranges.append(FoldRange(start, last_row))
    return ranges


def _tag_name(text: str) -> str:
    name = []
    for ch in text:
        if not (ch in "-_" or (ch.isascii() and ch.isalnum())):
            break
        name.append(ch)
    return "".join(name)


def tag_fold_ranges(lines: List[str]) -> List[FoldRange]:
    """Paired-tag folding for markup; only tags that start a line are considered."""
    ranges: List[FoldRange] = []
    open_tags: List[Tuple[str, int]] = []

    for row, line in enumerate(lines):
        s = line.strip()
        if s.startswith("<!--"):
            continue
        if s.startswith("</"):
            name = _tag_name(s[2:])
            # Close the most recent tag with this name, leaving newer unclosed ones open.
            for pos in range(len(open_tags) - 1, -1, -1):
                if open_tags[pos][0] == name:
                    _, start = open_tags.pop(pos)
                    if row > start:
                        ranges.append(FoldRange(start, row))
                    break
            continue
        if s.startswith("<") and not s.startswith(("<!", "<?")) and not s.endswith("/>"):
            name = _tag_name(s[1:])
            if name:
                open_tags.append((name, row))
    return ranges


def compute_fold_ranges(lines: List[str], language: str) -> Tuple[List[FoldRange], List[int]]:
    """
    Computes every fold range of a buffer and its bracket-depth vector.

    The bracket, indentation and (for markup) tag passes are concatenated,
    sorted by ``(start_line, end_line)`` and exact duplicates removed. The
    result is deterministic for a given input.

    Example:
        >>> compute_fold_ranges(["fn a() {", "  x", "}"], "rust")[0]
        [FoldRange(start_line=0, end_line=1), FoldRange(start_line=0, end_line=2)]
    """
    ranges, depths = bracket_fold_ranges(lines, language)
    ranges.extend(indent_fold_ranges(lines))
    if language == HTML:
        ranges.extend(tag_fold_ranges(lines))
    return sorted(set(ranges)), depths


class FoldState:
    """
    Fold ranges, collapsed starts and the visible-row map of one document.

    The map is rebuilt after every change to the ranges or the collapsed
    set; it is strictly increasing and never empty.
    """

    def __init__(self):
        self.ranges: List[FoldRange] = []
        self.bracket_depths: List[int] = []
        self.folded_starts: Set[int] = set()
        self.visible_rows: List[int] = [0]
        self._line_count = 1

    # --- recomputation -------------------------------------------------
    def recompute(self, lines: List[str], language: str) -> None:
        """Recomputes ranges from `lines`, prunes stale folds, then rebuilds the map."""
        self.ranges, self.bracket_depths = compute_fold_ranges(lines, language)
        starts = {r.start_line for r in self.ranges}
        stale = self.folded_starts - starts
        if stale:
            logger.debug(f"Pruning folded starts no longer backed by a range: {sorted(stale)}")
        self.folded_starts &= starts
        self.rebuild(len(lines))

    def rebuild(self, line_count: Optional[int] = None) -> None:
        if line_count is not None:
            self._line_count = line_count
        folded = [r for r in self.ranges if r.start_line in self.folded_starts]
        rows = [row for row in range(self._line_count) if not any(r.hides(row) for r in folded)]
        self.visible_rows = rows or [0]

    # --- lookups -------------------------------------------------------
    def range_starting_at(self, row: int) -> Optional[FoldRange]:
        """The range registered at `row`: the first in sorted order starting there."""
        for fold in self.ranges:
            if fold.start_line == row:
                return fold
            if fold.start_line > row:
                break
        return None

    @staticmethod
    def _innermost(candidates: List[FoldRange]) -> Optional[FoldRange]:
        # Latest start wins; among equal starts the shorter span is inner.
        return max(candidates, key=lambda r: (r.start_line, -r.end_line), default=None)

    def innermost_range_containing(self, row: int) -> Optional[FoldRange]:
        return self._innermost([r for r in self.ranges if r.contains(row)])

    def folded_range_at(self, row: int) -> Optional[FoldRange]:
        """The innermost collapsed range starting at or hiding `row`."""
        return self._innermost([r for r in self.ranges if r.start_line in self.folded_starts and r.contains(row)])

    def is_folded(self, row: int) -> bool:
        return row in self.folded_starts

    def is_visible(self, row: int) -> bool:
        return row in self.visible_rows

    def visible_index_of(self, row: int) -> int:
        """
        Maps a source row to its visible index.

        Rows hidden inside a fold map to the next visible row after them; rows
        past the end map to the last visible index.
        """
        for index, source_row in enumerate(self.visible_rows):
            if source_row >= row:
                return index
        return len(self.visible_rows) - 1

    def source_row_at(self, index: int) -> int:
        index = max(0, min(index, len(self.visible_rows) - 1))
        return self.visible_rows[index]

    # --- fold operations -----------------------------------------------
    def toggle_fold_at(self, row: int) -> Optional[FoldRange]:
        """
        Flips the collapsed state of the range starting at `row`.

        Returns:
            Optional[FoldRange]: The toggled range, or None when no range
            starts at `row` (nothing changes in that case).
        """
        fold = self.range_starting_at(row)
        if fold is None:
            return None
        if row in self.folded_starts:
            self.folded_starts.discard(row)
        else:
            self.folded_starts.add(row)
        self.rebuild()
        return fold

    def fold_block_at(self, row: int) -> Optional[FoldRange]:
        """Collapses the range starting at `row`, else the innermost range around it."""
        fold = self.range_starting_at(row) or self.innermost_range_containing(row)
        if fold is None:
            return None
        self.folded_starts.add(fold.start_line)
        self.rebuild()
        return fold

    def unfold_block_at(self, row: int) -> Optional[FoldRange]:
        fold = self.folded_range_at(row)
        if fold is None:
            return None
        self.folded_starts.discard(fold.start_line)
        self.rebuild()
        return fold

    def toggle_block_at(self, row: int) -> Tuple[Optional[FoldRange], bool]:
        """Unfolds the collapsed block around `row`, or folds the block there.

        Returns:
            Tuple[Optional[FoldRange], bool]: The affected range and whether it
            is now folded.
        """
        unfolded = self.unfold_block_at(row)
        if unfolded is not None:
            return unfolded, False
        return self.fold_block_at(row), True

    def fold_all(self) -> int:
        self.folded_starts = {r.start_line for r in self.ranges}
        self.rebuild()
        return len(self.folded_starts)

    def unfold_all(self) -> bool:
        """Expands everything; returns False when nothing was folded."""
        if not self.folded_starts:
            return False
        self.folded_starts.clear()
        self.rebuild()
        return True
