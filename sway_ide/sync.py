# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Reconciliation of open buffers with the filesystem and the autosave slot.

Every open document carries the disk text it was last loaded or saved
with (`disk_snapshot`). When the watcher reports a change, the disk is
compared against the buffer and the snapshot: clean buffers follow the
disk silently, dirty buffers only ever change through an explicit prompt.
"""

import enum
import hashlib
import logging
import os
import time
from typing import TYPE_CHECKING, Optional

from sway_ide.config import autosave_dir
from sway_ide.document import Document
from sway_ide.fileio import read_disk_text, write_text_file
from sway_ide.utils import text_to_lines

if TYPE_CHECKING:
    from sway_ide.editor import SwayIde

logger = logging.getLogger(__name__)


def _matches_buffer(doc: Document, disk_text: str) -> bool:
    return text_to_lines(disk_text) == doc.buffer.lines


class ConflictChoice(enum.Enum):
    RELOAD = "reload"
    KEEP = "keep"
    DEFER = "defer"


class RecoveryChoice(enum.Enum):
    RECOVER = "recover"
    DISCARD = "discard"
    CANCEL = "cancel"


def autosave_name(path: str) -> str:
    """Side-file name for `path`: 16 hex digits of a 64-bit BLAKE2b digest."""
    digest = hashlib.blake2b(os.path.abspath(path).encode("utf-8"), digest_size=8)
    return f"{digest.hexdigest()}.autosave"


class DocumentSync:
    """
    Keeps open documents consistent with disk and the autosave slot.

    Attributes:
        editor (SwayIde): The owning editor.
        autosave_dir (str): Directory holding ``*.autosave`` side files.
        debounce (float): Seconds between two reconciliation passes.
        autosave_interval (float): Seconds between two autosave sweeps.
    """

    def __init__(self, editor: "SwayIde"):
        self.editor = editor
        sync_cfg = editor.config.get("sync", {})
        self.autosave_dir = autosave_dir(editor.config)
        self.debounce = float(sync_cfg.get("fs_debounce_ms", 120)) / 1000.0
        self.autosave_interval = float(sync_cfg.get("autosave_interval_ms", 2000)) / 1000.0
        self._fs_pending = False
        self._last_refresh = 0.0
        self._last_autosave = time.monotonic()

    # --- filesystem signal ---------------------------------------------
    def note_fs_change(self) -> None:
        self._fs_pending = True

    def poll_fs(self, now: Optional[float] = None) -> bool:
        """Runs one reconciliation pass once the debounce window has elapsed."""
        if not self._fs_pending:
            return False
        now = time.monotonic() if now is None else now
        if now - self._last_refresh < self.debounce:
            return False
        self._fs_pending = False
        self._last_refresh = now
        for doc in list(self.editor.documents):
            self.reconcile(doc)
        return True

    def reconcile(self, doc: Document) -> None:
        if not os.path.exists(doc.path):
            self.handle_removed(doc)
            return
        disk_text = read_disk_text(doc.path)
        if disk_text is None:
            return
        if doc.dirty:
            self.maybe_flag_external_conflict(doc, disk_text)
        else:
            self.reload_if_pristine(doc, disk_text)

    def handle_removed(self, doc: Document) -> None:
        if doc.dirty:
            self.editor._set_status_message("Open file was removed externally (unsaved buffer preserved)")
            return
        self.editor.close_document(doc)
        self.editor._set_status_message("Open file was removed externally")

    def reload_if_pristine(self, doc: Document, disk_text: Optional[str] = None) -> bool:
        """Reloads a clean buffer whose file changed on disk. Returns True on reload."""
        if doc.dirty:
            return False
        if disk_text is None:
            disk_text = read_disk_text(doc.path)
        if disk_text is None or disk_text == doc.disk_snapshot:
            return False
        if _matches_buffer(doc, disk_text):
            # Same lines, different bytes (CRLF, trailing newline added on save).
            doc.disk_snapshot = disk_text
            return False
        self.editor.replace_document_text(doc, disk_text)
        doc.dirty = False
        doc.disk_snapshot = disk_text
        self.editor._set_status_message(f"Reloaded {doc.name} from disk")
        logger.info(f"Reloaded '{doc.path}' after external change.")
        return True

    def maybe_flag_external_conflict(self, doc: Document, disk_text: Optional[str] = None) -> bool:
        """
        Raises a conflict prompt when disk, snapshot and buffer all differ.

        Only dirty documents qualify, and not while another prompt for the
        document is open.
        """
        if not doc.dirty or doc.conflict_pending or doc.recovery_pending:
            return False
        if disk_text is None:
            disk_text = read_disk_text(doc.path)
        if disk_text is None:
            return False
        if disk_text == doc.disk_snapshot or _matches_buffer(doc, disk_text):
            return False
        doc.conflict_pending = True
        doc.conflict_text = disk_text
        self.editor._set_status_message(f"{doc.name} changed on disk: [r]eload, [k]eep local, [d]efer")
        logger.warning(f"External conflict detected for '{doc.path}'.")
        return True

    def resolve_conflict(self, doc: Document, choice: ConflictChoice) -> None:
        disk_text = doc.conflict_text
        doc.conflict_pending = False
        doc.conflict_text = None
        if disk_text is None:
            return
        if choice is ConflictChoice.RELOAD:
            self.editor.replace_document_text(doc, disk_text)
            doc.dirty = False
            doc.disk_snapshot = disk_text
            self.clear_autosave(doc)
            self.editor._set_status_message(f"Reloaded {doc.name} from disk")
        elif choice is ConflictChoice.KEEP:
            doc.disk_snapshot = disk_text
            self.editor._set_status_message("Keeping local edits")
        else:
            doc.disk_snapshot = disk_text
            self.editor._set_status_message("Conflict deferred")
        logger.info(f"Conflict on '{doc.path}' resolved with '{choice.value}'.")

    # --- autosave ------------------------------------------------------
    def autosave_path_for(self, path: str) -> str:
        return os.path.join(self.autosave_dir, autosave_name(path))

    def poll_autosave(self, now: Optional[float] = None) -> int:
        """Writes every dirty buffer to its side file once per interval. Returns files written."""
        now = time.monotonic() if now is None else now
        if now - self._last_autosave < self.autosave_interval:
            return 0
        self._last_autosave = now
        written = 0
        for doc in self.editor.documents:
            if doc.dirty and self.write_autosave(doc):
                written += 1
        return written

    def write_autosave(self, doc: Document) -> bool:
        target = self.autosave_path_for(doc.path)
        try:
            os.makedirs(self.autosave_dir, exist_ok=True)
            write_text_file(target, doc.text)
        except OSError as exc:
            logger.error(f"Autosave of '{doc.path}' to '{target}' failed: {exc}")
            self.editor._set_status_message(f"Autosave failed: {exc}")
            return False
        logger.debug(f"Autosaved '{doc.path}' to '{target}'.")
        return True

    def clear_autosave(self, doc: Document) -> None:
        target = self.autosave_path_for(doc.path)
        try:
            os.remove(target)
            logger.debug(f"Removed autosave '{target}'.")
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"Could not remove autosave '{target}': {exc}")

    # --- crash recovery ------------------------------------------------
    def check_recovery(self, doc: Document) -> bool:
        """On open: raises a recovery prompt when a differing autosave exists."""
        if doc.conflict_pending:
            return False
        autosave_text = read_disk_text(self.autosave_path_for(doc.path))
        if autosave_text is None or autosave_text == doc.text:
            return False
        doc.recovery_pending = True
        doc.recovery_text = autosave_text
        self.editor._set_status_message(f"Autosave found for {doc.name}: [r]ecover, [d]iscard, [c]ancel")
        logger.info(f"Recovery data available for '{doc.path}'.")
        return True

    def resolve_recovery(self, doc: Document, choice: RecoveryChoice) -> None:
        recovered = doc.recovery_text
        doc.recovery_pending = False
        if choice is RecoveryChoice.RECOVER and recovered is not None:
            doc.recovery_text = None
            self.editor.replace_document_text(doc, recovered)
            doc.dirty = True
            self.editor._set_status_message("Recovered autosave content")
        elif choice is RecoveryChoice.DISCARD:
            doc.recovery_text = None
            self.clear_autosave(doc)
            self.editor._set_status_message("Discarded autosave")
        else:
            self.editor._set_status_message("Recovery canceled")
