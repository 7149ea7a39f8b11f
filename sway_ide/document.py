# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import enum
import os
from dataclasses import dataclass, field
from typing import List, Optional

from sway_ide.buffer import TextBuffer
from sway_ide.folding import FoldState


class Severity(enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"
    UNKNOWN = "unknown"

    @classmethod
    def from_lsp(cls, value: object) -> "Severity":
        if isinstance(value, bool) or not isinstance(value, int):
            return cls.UNKNOWN
        return {1: cls.ERROR, 2: cls.WARNING, 3: cls.INFO, 4: cls.HINT}.get(value, cls.UNKNOWN)


@dataclass(frozen=True)
class Diagnostic:
    """A server diagnostic; `line` and `column` are 1-based."""
    line: int
    column: int
    severity: Severity
    message: str


@dataclass
class Document:
    """
    One open file: its buffer plus the sync, fold and protocol state.

    Attributes:
        path: Absolute path on disk.
        buffer: Lines, cursor and selection.
        language: Language family tag.
        encoding: Encoding used to read and write the file.
        dirty: Buffer differs from what was last loaded or saved.
        disk_snapshot: Disk text as of the last load, save or resolution.
        folds: Fold ranges, collapsed starts and visible rows.
        scroll_row: First rendered row, as a visible index.
        uri / version: Protocol identity; `uri` is None when the document
            is not synchronized with a language server.
        diagnostics: Latest list published for this document.
        conflict_pending / conflict_text: Disk diverged under local edits.
        recovery_pending / recovery_text: An autosave differs from the file.
    """
    path: str
    buffer: TextBuffer
    language: str
    encoding: str = "utf-8"
    dirty: bool = False
    disk_snapshot: Optional[str] = None
    folds: FoldState = field(default_factory=FoldState)
    scroll_row: int = 0
    uri: Optional[str] = None
    version: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)
    conflict_pending: bool = False
    conflict_text: Optional[str] = None
    recovery_pending: bool = False
    recovery_text: Optional[str] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def text(self) -> str:
        return self.buffer.text

    def recompute_folds(self) -> None:
        self.folds.recompute(self.buffer.lines, self.language)
        self.clamp_scroll()

    def clamp_scroll(self) -> None:
        self.scroll_row = max(0, min(self.scroll_row, len(self.folds.visible_rows) - 1))

    def clear_identity(self) -> None:
        self.uri = None
        self.version = 0
        self.diagnostics = []

    def diagnostics_on_line(self, row: int) -> List[Diagnostic]:
        """Diagnostics for a 0-based buffer row."""
        return [d for d in self.diagnostics if d.line == row + 1]
