# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
from typing import List, Optional, Tuple

from sway_ide.utils import lines_to_text

logger = logging.getLogger(__name__)

Position = Tuple[int, int]


class TextBuffer:
    """
    Ordered lines plus a cursor and an optional selection anchor.

    This is the minimal text-widget surface the editor core relies on:
    reading lines, moving the cursor, whole-buffer replacement and a few
    single-keystroke edits. Cursor columns are character offsets.
    """

    def __init__(self, lines: Optional[List[str]] = None):
        self.lines: List[str] = list(lines) if lines else [""]
        self.cursor_row = 0
        self.cursor_col = 0
        self.anchor: Optional[Position] = None

    @property
    def cursor(self) -> Position:
        return self.cursor_row, self.cursor_col

    @property
    def text(self) -> str:
        return lines_to_text(self.lines)

    def current_line(self) -> str:
        return self.lines[self.cursor_row]

    def selection(self) -> Optional[Tuple[Position, Position]]:
        """Ordered ``(start, end)`` of the selection, or None when nothing is selected."""
        if self.anchor is None or self.anchor == self.cursor:
            return None
        return min(self.anchor, self.cursor), max(self.anchor, self.cursor)

    def clamp(self, row: int, col: int) -> Position:
        row = max(0, min(row, len(self.lines) - 1))
        col = max(0, min(col, len(self.lines[row])))
        return row, col

    def move_to(self, row: int, col: int, select: bool = False) -> None:
        if select and self.anchor is None:
            self.anchor = self.cursor
        elif not select:
            self.anchor = None
        self.cursor_row, self.cursor_col = self.clamp(row, col)

    def replace(self, lines: List[str], cursor: Optional[Position] = None) -> None:
        """Replaces the whole buffer; the cursor is clamped to the new bounds."""
        self.lines = list(lines) if lines else [""]
        self.anchor = None
        row, col = cursor if cursor is not None else self.cursor
        self.cursor_row, self.cursor_col = self.clamp(row, col)

    # --- edits ---------------------------------------------------------
    def delete_selection(self) -> bool:
        sel = self.selection()
        if sel is None:
            self.anchor = None
            return False
        (sr, sc), (er, ec) = sel
        head = self.lines[sr][:sc]
        tail = self.lines[er][ec:]
        self.lines[sr:er + 1] = [head + tail]
        self.cursor_row, self.cursor_col = sr, sc
        self.anchor = None
        return True

    def insert_text(self, text: str) -> None:
        self.delete_selection()
        line = self.lines[self.cursor_row]
        head, tail = line[:self.cursor_col], line[self.cursor_col:]
        parts = text.split("\n")
        if len(parts) == 1:
            self.lines[self.cursor_row] = head + text + tail
            self.cursor_col += len(text)
            return
        new_lines = [head + parts[0]] + parts[1:-1] + [parts[-1] + tail]
        self.lines[self.cursor_row:self.cursor_row + 1] = new_lines
        self.cursor_row += len(parts) - 1
        self.cursor_col = len(parts[-1])

    def newline(self) -> None:
        """Splits the line at the cursor, carrying the current indentation."""
        line = self.lines[self.cursor_row]
        indent = line[:len(line) - len(line.lstrip(" \t"))]
        indent = indent[:self.cursor_col]
        self.insert_text("\n" + indent)

    def backspace(self) -> bool:
        if self.delete_selection():
            return True
        row, col = self.cursor
        if col > 0:
            line = self.lines[row]
            self.lines[row] = line[:col - 1] + line[col:]
            self.cursor_col -= 1
            return True
        if row > 0:
            prev = self.lines[row - 1]
            self.lines[row - 1] = prev + self.lines[row]
            del self.lines[row]
            self.cursor_row, self.cursor_col = row - 1, len(prev)
            return True
        return False

    def delete_forward(self) -> bool:
        if self.delete_selection():
            return True
        row, col = self.cursor
        line = self.lines[row]
        if col < len(line):
            self.lines[row] = line[:col] + line[col + 1:]
            return True
        if row + 1 < len(self.lines):
            self.lines[row] = line + self.lines[row + 1]
            del self.lines[row + 1]
            return True
        return False

    def delete_range_on_line(self, row: int, start_col: int, end_col: int) -> None:
        line = self.lines[row]
        self.lines[row] = line[:start_col] + line[end_col:]
        if self.cursor_row == row and self.cursor_col > start_col:
            self.cursor_col = max(start_col, self.cursor_col - (end_col - start_col))
