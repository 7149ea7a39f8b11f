# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
import os
import queue
import time
from typing import Any, Dict, List, Optional

from sway_ide.buffer import TextBuffer
from sway_ide.config import load_config
from sway_ide.document import Document
from sway_ide.fileio import BinaryFileError, read_text_file, write_text_file
from sway_ide.language import language_for_path
from sway_ide.lsp_bridge import LspBridge
from sway_ide.search import SearchHit, search_project
from sway_ide.sync import ConflictChoice, DocumentSync, RecoveryChoice
from sway_ide.utils import text_to_lines
from sway_ide.watcher import FsWatcher

logger = logging.getLogger(__name__)


class SwayIde:
    """
    The editor core: open documents plus every subsystem that works on them.

    `SwayIde` owns the document table, the active document, the status
    line, the language-server bridge, the sync / recovery state machine
    and the filesystem watcher. Subsystems receive the editor by reference
    and report back through `_set_status_message`, whose queue is drained
    once per main-loop iteration by `_process_all_queues`.

    The class is free of curses so that it can be driven from tests; the
    terminal front end lives in `sway_ide.ui`.

    Attributes:
        root (str): Workspace root (language-server root and search root).
        config (dict): Merged configuration.
        documents (List[Document]): Open documents, in tab order.
        active_index (int): Index of the active document, -1 when none.
        status_message (str): Text of the status line.
        search_results (List[SearchHit]): Hits of the last project search.
        lsp (LspBridge): Language-server integration.
        sync (DocumentSync): Disk reconciliation, autosave and recovery.
        watcher (FsWatcher): Polling watcher over the open files.
    """

    def __init__(self, root: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                 start_watcher: bool = True):
        self.root = os.path.abspath(root or os.getcwd())
        self.config = config if config is not None else load_config()
        self.documents: List[Document] = []
        self.active_index = -1
        self.status_message = ""
        self._msg_q: "queue.Queue[str]" = queue.Queue()
        self._last_status_msg_sent: Optional[str] = None
        self.search_results: List[SearchHit] = []

        self.lsp = LspBridge(self)
        self.sync = DocumentSync(self)
        watch_ms = float(self.config.get("sync", {}).get("watch_interval_ms", 250))
        self.watcher = FsWatcher(interval=watch_ms / 1000.0)
        if start_watcher:
            self.watcher.start()
        logger.info(f"SwayIde initialised for root '{self.root}'.")

    # --- status --------------------------------------------------------
    def _set_status_message(self, message: str) -> None:
        """Queues a status-line message; an identical consecutive message is dropped."""
        if message == self._last_status_msg_sent:
            return
        self._msg_q.put(str(message))
        self._last_status_msg_sent = message
        logger.debug(f"Status message queued: '{message}'")

    def _process_all_queues(self) -> bool:
        """
        Drains the status queue, the watcher queue and the language-server queue.

        Returns:
            bool: True when any drained message changed visible state.
        """
        changed = False
        try:
            while True:
                msg = self._msg_q.get_nowait()
                if self.status_message != msg:
                    self.status_message = msg
                    changed = True
        except queue.Empty:
            pass

        if self.watcher.drain():
            self.sync.note_fs_change()

        if self.lsp.process_queue():
            changed = True
        return changed

    def tick(self, now: Optional[float] = None) -> bool:
        """One main-loop step of background work; True when a redraw is needed."""
        now = time.monotonic() if now is None else now
        changed = self._process_all_queues()
        if self.sync.poll_fs(now):
            changed = True
        self.sync.poll_autosave(now)
        return changed

    # --- documents -----------------------------------------------------
    def active_document(self) -> Optional[Document]:
        if 0 <= self.active_index < len(self.documents):
            return self.documents[self.active_index]
        return None

    def find_document(self, path: str) -> Optional[Document]:
        path = os.path.abspath(path)
        for doc in self.documents:
            if doc.path == path:
                return doc
        return None

    def _update_watch_paths(self) -> None:
        self.watcher.set_paths(doc.path for doc in self.documents)

    def open_file(self, path: str) -> Optional[Document]:
        """
        Opens `path` (or switches to it when already open).

        The file is decoded, its folds computed, the language server told
        about it and the autosave slot checked for recovery data. Failures
        are reported on the status line and return None.
        """
        path = os.path.abspath(path)
        existing = self.find_document(path)
        if existing is not None:
            self.active_index = self.documents.index(existing)
            return existing

        if os.path.isdir(path):
            self._set_status_message(f"Error: '{os.path.basename(path)}' is a directory.")
            return None
        if not os.path.exists(path):
            self._set_status_message(f"Error: File not found '{os.path.basename(path)}'")
            logger.warning(f"Open file failed: file not found at '{path}'")
            return None
        try:
            text, encoding = read_text_file(path)
        except BinaryFileError:
            self._set_status_message(f"Refusing to open binary file '{os.path.basename(path)}'")
            return None
        except OSError as exc:
            self._set_status_message(f"Error reading '{os.path.basename(path)}': {exc}")
            logger.error(f"Open file failed for '{path}': {exc}")
            return None

        doc = Document(
            path=path,
            buffer=TextBuffer(text_to_lines(text)),
            language=language_for_path(path),
            encoding=encoding,
            disk_snapshot=text,
        )
        doc.recompute_folds()
        self.documents.append(doc)
        self.active_index = len(self.documents) - 1
        self._update_watch_paths()
        self._set_status_message(
            f"Opened '{doc.name}' (enc: {encoding}, {len(doc.buffer.lines)} lines)"
        )
        logger.info(f"File opened: '{path}', language {doc.language}, encoding {encoding}")

        self.lsp.document_opened(doc)
        self.sync.check_recovery(doc)
        return doc

    def save_file(self, doc: Optional[Document] = None) -> bool:
        """Writes the buffer (with a trailing newline) and clears dirty, conflict and autosave state."""
        doc = doc or self.active_document()
        if doc is None:
            return False
        text = doc.text
        if not text.endswith("\n"):
            text += "\n"
        try:
            write_text_file(doc.path, text, doc.encoding)
        except OSError as exc:
            self._set_status_message(f"Error saving '{doc.name}': {exc}")
            logger.error(f"Save failed for '{doc.path}': {exc}")
            return False
        doc.dirty = False
        doc.disk_snapshot = text
        doc.conflict_pending = False
        doc.conflict_text = None
        self.sync.clear_autosave(doc)
        self._set_status_message(f"Saved {doc.name}")
        logger.info(f"Saved '{doc.path}' ({len(text)} chars).")
        return True

    def close_document(self, doc: Optional[Document] = None) -> None:
        doc = doc or self.active_document()
        if doc is None or doc not in self.documents:
            return
        self.lsp.document_closed(doc)
        self.sync.clear_autosave(doc)
        index = self.documents.index(doc)
        self.documents.remove(doc)
        if not self.documents:
            self.active_index = -1
        elif self.active_index >= index:
            self.active_index = max(0, self.active_index - 1)
        self._update_watch_paths()
        logger.info(f"Closed '{doc.path}'.")

    def switch_document(self, delta: int) -> None:
        if self.documents:
            self.active_index = (self.active_index + delta) % len(self.documents)

    def on_content_changed(self, doc: Document) -> None:
        """Bookkeeping after an edit: dirty flag, folds, protocol sync, inline ghost."""
        doc.dirty = True
        doc.recompute_folds()
        self.lsp.document_changed(doc)
        self.lsp.completion.close()
        self.lsp.refresh_inline_ghost(doc)

    def replace_document_text(self, doc: Document, text: str) -> None:
        """Replaces the whole buffer from `text`, keeping the cursor where it fits."""
        doc.buffer.replace(text_to_lines(text), doc.buffer.cursor)
        doc.recompute_folds()
        self._snap_cursor_to_visible(doc)
        self.lsp.document_changed(doc)

    # --- cursor and scrolling (in visible-row space) -------------------
    def set_cursor(self, doc: Document, row: int, col: int) -> None:
        """Places the cursor, unfolding any collapsed block that hides the row."""
        doc.buffer.move_to(row, col)
        row = doc.buffer.cursor_row
        while not doc.folds.is_visible(row):
            if doc.folds.unfold_block_at(row) is None:
                break

    def _snap_cursor_to_visible(self, doc: Document) -> None:
        row, col = doc.buffer.cursor
        if doc.folds.is_visible(row):
            return
        fold = doc.folds.folded_range_at(row)
        target = fold.start_line if fold is not None else doc.folds.source_row_at(doc.folds.visible_index_of(row))
        doc.buffer.move_to(target, col)

    def move_cursor_vertical(self, delta: int, select: bool = False) -> None:
        doc = self.active_document()
        if doc is None:
            return
        row, col = doc.buffer.cursor
        index = doc.folds.visible_index_of(row) + delta
        doc.buffer.move_to(doc.folds.source_row_at(index), col, select=select)

    def page(self, direction: int, page_height: int) -> None:
        """Moves the cursor and the viewport by one screen of visible rows."""
        doc = self.active_document()
        if doc is None:
            return
        step = max(1, page_height - 1) * (1 if direction > 0 else -1)
        doc.scroll_row += step
        doc.clamp_scroll()
        self.move_cursor_vertical(step)

    def scroll(self, delta: int) -> None:
        doc = self.active_document()
        if doc is not None:
            doc.scroll_row += delta
            doc.clamp_scroll()

    def ensure_cursor_visible(self, height: int) -> None:
        doc = self.active_document()
        if doc is None or height <= 0:
            return
        index = doc.folds.visible_index_of(doc.buffer.cursor_row)
        if index < doc.scroll_row:
            doc.scroll_row = index
        elif index >= doc.scroll_row + height:
            doc.scroll_row = index - height + 1
        doc.clamp_scroll()

    def row_at_screen_line(self, screen_line: int) -> Optional[int]:
        """Source row rendered on text-area line `screen_line`, if any."""
        doc = self.active_document()
        if doc is None or screen_line < 0:
            return None
        index = doc.scroll_row + screen_line
        if index >= len(doc.folds.visible_rows):
            return None
        return doc.folds.visible_rows[index]

    # --- folding -------------------------------------------------------
    def toggle_fold_at_row(self, row: int) -> bool:
        doc = self.active_document()
        if doc is None:
            return False
        fold = doc.folds.toggle_fold_at(row)
        if fold is None:
            return False
        verb = "Folded" if doc.folds.is_folded(row) else "Unfolded"
        self._set_status_message(f"{verb} lines {fold.start_line + 1}-{fold.end_line + 1}")
        self._snap_cursor_to_visible(doc)
        doc.clamp_scroll()
        return True

    def toggle_fold_at_cursor(self) -> bool:
        doc = self.active_document()
        if doc is None:
            return False
        fold, folded = doc.folds.toggle_block_at(doc.buffer.cursor_row)
        if fold is None:
            self._set_status_message("No foldable block at cursor")
            return False
        verb = "Folded" if folded else "Unfolded"
        self._set_status_message(f"{verb} lines {fold.start_line + 1}-{fold.end_line + 1}")
        self._snap_cursor_to_visible(doc)
        doc.clamp_scroll()
        return True

    def fold_current_block(self) -> bool:
        doc = self.active_document()
        if doc is None:
            return False
        fold = doc.folds.fold_block_at(doc.buffer.cursor_row)
        if fold is None:
            self._set_status_message("No foldable block at cursor")
            return False
        self._set_status_message(f"Folded lines {fold.start_line + 1}-{fold.end_line + 1}")
        self._snap_cursor_to_visible(doc)
        doc.clamp_scroll()
        return True

    def unfold_current_block(self) -> bool:
        doc = self.active_document()
        if doc is None:
            return False
        fold = doc.folds.unfold_block_at(doc.buffer.cursor_row)
        if fold is None:
            self._set_status_message("No folded block at cursor")
            return False
        self._set_status_message(f"Unfolded lines {fold.start_line + 1}-{fold.end_line + 1}")
        return True

    def fold_all(self) -> int:
        doc = self.active_document()
        if doc is None:
            return 0
        count = doc.folds.fold_all()
        self._set_status_message(f"Folded {count} blocks" if count else "No foldable blocks")
        self._snap_cursor_to_visible(doc)
        doc.clamp_scroll()
        return count

    def unfold_all(self) -> bool:
        doc = self.active_document()
        if doc is None:
            return False
        if not doc.folds.unfold_all():
            self._set_status_message("No folded blocks")
            return False
        self._set_status_message("Unfolded all blocks")
        return True

    def toggle_fold_all(self) -> None:
        doc = self.active_document()
        if doc is None:
            return
        if doc.folds.folded_starts:
            self.unfold_all()
        else:
            self.fold_all()

    # --- prompts -------------------------------------------------------
    def pending_prompt(self) -> Optional[str]:
        """``"recovery"`` or ``"conflict"`` when the active document awaits a decision."""
        doc = self.active_document()
        if doc is None:
            return None
        if doc.recovery_pending:
            return "recovery"
        if doc.conflict_pending:
            return "conflict"
        return None

    def resolve_conflict(self, choice: ConflictChoice) -> None:
        doc = self.active_document()
        if doc is not None and doc.conflict_pending:
            self.sync.resolve_conflict(doc, choice)

    def resolve_recovery(self, choice: RecoveryChoice) -> None:
        doc = self.active_document()
        if doc is not None and doc.recovery_pending:
            self.sync.resolve_recovery(doc, choice)

    # --- misc ----------------------------------------------------------
    def update_status_for_cursor(self) -> None:
        """Shows the first diagnostic of the cursor line, if any."""
        doc = self.active_document()
        if doc is None:
            return
        diagnostics = doc.diagnostics_on_line(doc.buffer.cursor_row)
        if diagnostics:
            diag = diagnostics[0]
            self._set_status_message(f"{diag.severity.value}: {diag.message} (line {diag.line})")

    def search_in_project(self, query: str) -> List[SearchHit]:
        search_cfg = self.config.get("search", {})
        hits, error = search_project(self.root, query, tool=search_cfg.get("tool", "rg"),
                                     timeout=search_cfg.get("timeout", 10.0))
        self.search_results = hits
        if error:
            self._set_status_message(error)
        else:
            self._set_status_message(f"{len(hits)} matches for '{query}'")
        return hits

    def open_search_hit(self, hit: SearchHit) -> bool:
        path = hit.path if os.path.isabs(hit.path) else os.path.join(self.root, hit.path)
        doc = self.open_file(path)
        if doc is None:
            return False
        self.set_cursor(doc, hit.line - 1, 0)
        return True

    def shutdown(self) -> None:
        logger.info("SwayIde shutting down.")
        self.lsp.shutdown()
        self.watcher.stop()
