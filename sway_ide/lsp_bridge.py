# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sway_ide.document import Diagnostic, Document, Severity
from sway_ide.language import definition_pattern, is_ident_char, keywords_for, language_id
from sway_ide.lsp_client import (
    LspClient,
    LspError,
    LspTransportError,
    Notification,
    Response,
    path_to_uri,
    uri_to_path,
)

if TYPE_CHECKING:
    from sway_ide.editor import SwayIde

logger = logging.getLogger(__name__)

_TOKEN_SPLIT_RE = re.compile(r"[^A-Za-z0-9_]+")


@dataclass(frozen=True)
class CompletionItem:
    label: str
    insert_text: Optional[str] = None
    detail: Optional[str] = None

    @property
    def text(self) -> str:
        return self.insert_text or self.label


@dataclass
class CompletionState:
    """The completion popup: candidate items, selection and the typed prefix."""
    items: List[CompletionItem] = field(default_factory=list)
    selected: int = 0
    prefix: str = ""
    ghost: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return bool(self.items)

    def close(self) -> None:
        self.items = []
        self.selected = 0
        self.ghost = None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def identifier_prefix(line: str, col: int) -> str:
    """
    The identifier characters directly before column `col`.

    Empty when the character before the cursor is not an identifier
    character, or when the cursor sits inside an identifier (the character
    at the cursor is an identifier character too).
    """
    end = min(col, len(line))
    if end == 0 or not is_ident_char(line[end - 1]):
        return ""
    if end < len(line) and is_ident_char(line[end]):
        return ""
    start = end
    while start > 0 and is_ident_char(line[start - 1]):
        start -= 1
    return line[start:end]


def identifier_at(line: str, col: int) -> str:
    """The whole identifier under (or directly before) the cursor."""
    if not line:
        return ""
    idx = min(col, len(line) - 1)
    if not is_ident_char(line[idx]):
        if 0 < col <= len(line) and is_ident_char(line[col - 1]):
            idx = col - 1
        else:
            return ""
    start = idx
    while start > 0 and is_ident_char(line[start - 1]):
        start -= 1
    end = idx + 1
    while end < len(line) and is_ident_char(line[end]):
        end += 1
    return line[start:end]


def parse_completion_items(result: Any, limit: int = 40) -> List[CompletionItem]:
    """
    Reads completion items from a server result.

    Accepts a bare list, or an object carrying the list under ``items`` or
    ``completions``. Labels may be plain strings or ``{"left": ...}``
    objects; insert text is ``insertText``, else ``textEdit.newText``.
    """
    if isinstance(result, list):
        raw_items = result
    elif isinstance(result, dict):
        raw_items = result.get("items") or result.get("completions") or []
    else:
        raw_items = []

    items: List[CompletionItem] = []
    for raw in raw_items:
        if len(items) >= limit:
            break
        if not isinstance(raw, dict):
            continue
        label = raw.get("label")
        if isinstance(label, dict):
            label = label.get("left")
        if not isinstance(label, str) or not label:
            continue
        insert_text = raw.get("insertText")
        if not isinstance(insert_text, str):
            text_edit = raw.get("textEdit")
            insert_text = text_edit.get("newText") if isinstance(text_edit, dict) else None
        detail = raw.get("detail")
        items.append(CompletionItem(label, insert_text, detail if isinstance(detail, str) else None))
    return items


def ghost_suffix(prefix: str, items: List[CompletionItem]) -> Optional[str]:
    """Remaining text of the shortest item that strictly extends `prefix`."""
    if not prefix:
        return None
    candidates = [item.text for item in items if item.text.startswith(prefix) and len(item.text) > len(prefix)]
    if not candidates:
        return None
    return min(candidates, key=len)[len(prefix):]


def fallback_completions(lines: List[str], language: str, prefix: str, limit: int = 80) -> List[CompletionItem]:
    """
    Local completion candidates: language keywords and buffer identifiers.

    Candidates start with `prefix` and differ from it. Keywords come first,
    then longer tokens before shorter ones, ties broken alphabetically.
    """
    def matches(word: str) -> bool:
        return bool(word) and word != prefix and (not prefix or word.startswith(prefix))

    seen = set()
    items: List[CompletionItem] = []
    for keyword in keywords_for(language):
        if matches(keyword) and keyword not in seen:
            seen.add(keyword)
            items.append(CompletionItem(keyword, keyword, "keyword"))
    for line in lines:
        for token in _TOKEN_SPLIT_RE.split(line):
            if matches(token) and token not in seen:
                seen.add(token)
                items.append(CompletionItem(token, token, "buffer"))

    items.sort(key=lambda item: (item.detail != "keyword", -len(item.label), item.label))
    return items[:limit]


def parse_definition_location(result: Any) -> Optional[Tuple[str, int, int]]:
    """First ``(uri, line, character)`` of a definition result (Location or LocationLink)."""
    entry = result[0] if isinstance(result, list) and result else result
    if not isinstance(entry, dict):
        return None
    uri = entry.get("uri") or entry.get("targetUri")
    range_ = entry.get("range") or entry.get("targetSelectionRange")
    if not isinstance(uri, str) or not isinstance(range_, dict):
        return None
    start = range_.get("start") or {}
    line = start.get("line")
    character = start.get("character", 0)
    if not isinstance(line, int) or not isinstance(character, int):
        return None
    return uri, line, character


def find_local_definition(lines: List[str], language: str, name: str) -> Optional[Tuple[int, int]]:
    """Row and column of the first function definition of `name` in `lines`."""
    pattern = definition_pattern(language, name)
    if pattern is None:
        return None
    for row, line in enumerate(lines):
        match = pattern.search(line)
        if match:
            return row, match.start("name")
    return None


def _is_position_value(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def parse_diagnostics(raw_list: Any) -> List[Diagnostic]:
    """Diagnostics from a publishDiagnostics list; malformed entries are skipped."""
    diagnostics: List[Diagnostic] = []
    if not isinstance(raw_list, list):
        return diagnostics
    for raw in raw_list:
        if not isinstance(raw, dict):
            continue
        rng = raw.get("range", {})
        start = rng.get("start", {}) if isinstance(rng, dict) else None
        if not isinstance(start, dict):
            logger.debug(f"LSP: skipping diagnostic with bad range: {rng!r}")
            continue
        line = start.get("line", 0)
        character = start.get("character", 0)
        if not (_is_position_value(line) and _is_position_value(character)):
            logger.debug(f"LSP: skipping diagnostic with bad position: {start!r}")
            continue
        diagnostics.append(Diagnostic(
            line=line + 1,
            column=character + 1,
            severity=Severity.from_lsp(raw.get("severity")),
            message=str(raw.get("message", "")),
        ))
    return diagnostics


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------
class LspBridge:
    """
    Connects the editor's documents to one language-server session.

    The bridge starts the configured server on the first document of its
    language, keeps each document's protocol identity in sync with buffer
    edits and turns server traffic into editor state: completion popups,
    definition jumps and per-document diagnostics. Every protocol failure
    degrades to a local fallback and a status message.

    At most one completion and one definition request are tracked; a newer
    request replaces the expected id and responses with any other id are
    ignored as stale.

    Attributes:
        editor (SwayIde): The owning editor.
        client (Optional[LspClient]): The live session, if any.
        pending_completion_id / pending_definition_id: Expected response ids.
        completion (CompletionState): Popup state.
        inline_ghost (Optional[str]): Ghost suffix shown after the cursor.
    """

    def __init__(self, editor: "SwayIde"):
        self.editor = editor
        self.config = editor.config
        lsp_cfg = self.config.get("lsp", {})
        completion_cfg = self.config.get("completion", {})

        self.enabled: bool = bool(lsp_cfg.get("enabled", True))
        self.language: str = str(lsp_cfg.get("language", "rust"))
        self.command: List[str] = list(lsp_cfg.get("command") or [])
        self.search_paths: List[str] = list(lsp_cfg.get("search_paths") or [])
        self.init_timeout = float(lsp_cfg.get("init_timeout", 3.0))

        self.ghost_min_prefix = int(completion_cfg.get("inline_ghost_min_prefix", 3))
        self.max_server_items = int(completion_cfg.get("max_server_items", 40))
        self.max_fallback_items = int(completion_cfg.get("max_fallback_items", 80))

        self.client: Optional[LspClient] = None
        self._start_failed = False
        self.pending_completion_id: Optional[int] = None
        self.pending_definition_id: Optional[int] = None
        self._pending_path: Dict[str, Optional[str]] = {"completion": None, "definition": None}
        self.completion = CompletionState()
        self.inline_ghost: Optional[str] = None

    # --- session -------------------------------------------------------
    def resolve_command(self) -> Optional[List[str]]:
        """Locates the server binary on PATH or in the configured search paths."""
        if not self.command:
            return None
        binary = self.command[0]
        found = shutil.which(binary)
        if not found:
            for directory in self.search_paths:
                candidate = os.path.join(os.path.expanduser(directory), binary)
                if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                    found = candidate
                    break
        if not found:
            return None
        return [found] + self.command[1:]

    def _ensure_session(self) -> Optional[LspClient]:
        if self.client is not None and self.client.is_ready:
            return self.client
        if not self.enabled or self._start_failed:
            return None

        command = self.resolve_command()
        if command is None:
            self._start_failed = True
            name = self.command[0] if self.command else "(none)"
            self.editor._set_status_message(f"Language server '{name}' not found; using local completion")
            logger.warning(f"LSP: server binary {name!r} not found.")
            return None

        client = LspClient(command, self.editor.root, init_timeout=self.init_timeout)
        try:
            client.start()
        except LspError as exc:
            self._start_failed = True
            self.editor._set_status_message(f"LSP unavailable: {exc}")
            return None
        self.client = client
        self.editor._set_status_message(f"LSP ready ({os.path.basename(command[0])})")
        return client

    def _drop_session(self, reason: str) -> None:
        logger.error(f"LSP: dropping session: {reason}")
        if self.client is not None:
            self.client.close()
        self.client = None
        self._start_failed = True
        self.pending_completion_id = None
        self.pending_definition_id = None
        for doc in self.editor.documents:
            doc.clear_identity()
        self.editor._set_status_message(f"LSP session lost: {reason}")

    def _send_notification(self, method: str, params: Dict[str, Any]) -> bool:
        if self.client is None:
            return False
        try:
            self.client.send_notification(method, params)
            return True
        except LspTransportError as exc:
            self._drop_session(str(exc))
            return False

    def _send_request(self, method: str, params: Dict[str, Any]) -> Optional[int]:
        if self.client is None:
            return None
        try:
            return self.client.send_request(method, params)
        except LspTransportError as exc:
            self._drop_session(str(exc))
            return None

    # --- document lifecycle --------------------------------------------
    def document_opened(self, doc: Document) -> None:
        """Announces `doc` with version 1, or clears its identity for other languages."""
        if doc.language != self.language or not self.enabled:
            if doc.uri is not None:
                self.document_closed(doc)
            doc.clear_identity()
            return
        if self._ensure_session() is None:
            doc.clear_identity()
            return
        uri = path_to_uri(doc.path)
        if uri is None:
            doc.clear_identity()
            return
        doc.uri = uri
        doc.version = 1
        self._send_notification("textDocument/didOpen", {
            "textDocument": {
                "uri": uri,
                "languageId": language_id(doc.language),
                "version": doc.version,
                "text": doc.text,
            }
        })

    def document_changed(self, doc: Document) -> None:
        """Sends the full text with the next version number."""
        if doc.uri is None or self.client is None:
            return
        doc.version += 1
        self._send_notification("textDocument/didChange", {
            "textDocument": {"uri": doc.uri, "version": doc.version},
            "contentChanges": [{"text": doc.text}],
        })

    def document_closed(self, doc: Document) -> None:
        if doc.uri is not None and self.client is not None:
            self._send_notification("textDocument/didClose", {"textDocument": {"uri": doc.uri}})
        doc.clear_identity()

    def _document_for_uri(self, uri: Any) -> Optional[Document]:
        if not isinstance(uri, str):
            return None
        path = uri_to_path(uri)
        for doc in self.editor.documents:
            if doc.uri is None:
                continue
            if doc.uri == uri or (path is not None and os.path.abspath(path) == doc.path):
                return doc
        return None

    # --- completion ----------------------------------------------------
    def request_completion(self) -> None:
        """Asks the server for completions at the cursor, or shows local ones."""
        doc = self.editor.active_document()
        if doc is None:
            return
        row, col = doc.buffer.cursor
        self.completion.prefix = identifier_prefix(doc.buffer.lines[row], col)
        if doc.uri is None or self.client is None:
            self._show_fallback(doc)
            return
        request_id = self._send_request("textDocument/completion", {
            "textDocument": {"uri": doc.uri},
            "position": {"line": row, "character": col},
            "context": {"triggerKind": 1},
        })
        if request_id is None:
            self._show_fallback(doc)
            return
        self.pending_completion_id = request_id
        self._pending_path["completion"] = doc.path
        logger.debug(f"LSP: completion request {request_id} for prefix {self.completion.prefix!r}")

    def handle_completion_response(self, response: Response) -> None:
        self.pending_completion_id = None
        doc = self.editor.active_document()
        if doc is None or doc.path != self._pending_path["completion"]:
            logger.debug("LSP: completion response for a document that is no longer active")
            return
        if response.is_error:
            self.editor._set_status_message(f"Completion error: {response.error_message}")
            self._show_fallback(doc)
            return
        items = parse_completion_items(response.result, self.max_server_items)
        if not items:
            self._show_fallback(doc)
            return
        self._open_popup(items)

    def _show_fallback(self, doc: Document) -> None:
        items = fallback_completions(doc.buffer.lines, doc.language, self.completion.prefix,
                                     self.max_fallback_items)
        if not items:
            self.completion.close()
            self.editor._set_status_message("No completions")
            return
        self._open_popup(items)

    def _open_popup(self, items: List[CompletionItem]) -> None:
        self.completion.items = items
        self.completion.selected = 0
        self.completion.ghost = ghost_suffix(self.completion.prefix, items)

    def select_completion(self, delta: int) -> None:
        if self.completion.is_open:
            self.completion.selected = (self.completion.selected + delta) % len(self.completion.items)

    def accept_completion(self) -> bool:
        """Replaces the typed prefix with the selected item's text."""
        doc = self.editor.active_document()
        if doc is None or not self.completion.is_open:
            return False
        item = self.completion.items[self.completion.selected]
        self.completion.close()
        self._insert_completion(doc, item.text)
        return True

    def _insert_completion(self, doc: Document, text: str) -> None:
        row, col = doc.buffer.cursor
        prefix = identifier_prefix(doc.buffer.lines[row], col)
        doc.buffer.delete_range_on_line(row, col - len(prefix), col)
        doc.buffer.move_to(row, col - len(prefix))
        doc.buffer.insert_text(text)
        self.editor.on_content_changed(doc)

    def refresh_inline_ghost(self, doc: Optional[Document] = None) -> None:
        """Recomputes the inline ghost from local candidates after an edit."""
        doc = doc or self.editor.active_document()
        self.inline_ghost = None
        if doc is None:
            return
        row, col = doc.buffer.cursor
        prefix = identifier_prefix(doc.buffer.lines[row], col)
        if len(prefix) < self.ghost_min_prefix:
            return
        items = fallback_completions(doc.buffer.lines, doc.language, prefix, self.max_fallback_items)
        self.inline_ghost = ghost_suffix(prefix, items)

    def accept_inline_ghost(self) -> bool:
        doc = self.editor.active_document()
        if doc is None or not self.inline_ghost:
            return False
        suffix, self.inline_ghost = self.inline_ghost, None
        doc.buffer.insert_text(suffix)
        self.editor.on_content_changed(doc)
        return True

    # --- definition ----------------------------------------------------
    def request_definition(self) -> None:
        doc = self.editor.active_document()
        if doc is None:
            return
        row, col = doc.buffer.cursor
        name = identifier_at(doc.buffer.lines[row], col)
        if doc.uri is None or self.client is None:
            self.jump_to_local_definition(doc)
            return
        request_id = self._send_request("textDocument/definition", {
            "textDocument": {"uri": doc.uri},
            "position": {"line": row, "character": col},
        })
        if request_id is None:
            self.jump_to_local_definition(doc)
            return
        self.pending_definition_id = request_id
        self._pending_path["definition"] = doc.path
        self.editor._set_status_message(f"Looking up definition of '{name}'..." if name else "Looking up definition...")

    def handle_definition_response(self, response: Response) -> None:
        self.pending_definition_id = None
        doc = self.editor.active_document()
        if doc is None or doc.path != self._pending_path["definition"]:
            logger.debug("LSP: definition response for a document that is no longer active")
            return
        if response.is_error:
            self.editor._set_status_message(f"Definition error: {response.error_message}")
            self.jump_to_local_definition(doc)
            return
        location = parse_definition_location(response.result)
        path = uri_to_path(location[0]) if location else None
        if location is None or path is None:
            self.jump_to_local_definition(doc)
            return
        self.jump_to(path, location[1], location[2])

    def jump_to(self, path: str, line: int, character: int) -> bool:
        """
        Moves to a definition target, switching documents if needed.

        A jump out of a dirty document is refused, since opening the target
        would leave unsaved edits behind.
        """
        doc = self.editor.active_document()
        target_path = os.path.abspath(path)
        if doc is not None and doc.dirty and target_path != doc.path:
            self.editor._set_status_message("Unsaved changes: save or close before jumping to definition")
            return False
        target = doc if doc is not None and target_path == doc.path else self.editor.open_file(target_path)
        if target is None:
            return False
        self.editor.set_cursor(target, line, character)
        self.editor._set_status_message(f"Definition: {target.name}:{line + 1}")
        return True

    def jump_to_local_definition(self, doc: Document) -> bool:
        row, col = doc.buffer.cursor
        name = identifier_at(doc.buffer.lines[row], col)
        if not name:
            self.editor._set_status_message("No identifier under cursor")
            return False
        found = find_local_definition(doc.buffer.lines, doc.language, name)
        if found is None:
            self.editor._set_status_message(f"Definition unavailable for '{name}'")
            return False
        self.editor.set_cursor(doc, found[0], found[1])
        self.editor._set_status_message(f"Jumped to local definition of '{name}' (line {found[0] + 1})")
        return True

    # --- diagnostics ---------------------------------------------------
    def handle_publish_diagnostics(self, params: Any) -> bool:
        """Replaces the diagnostics of the matching document; unknown URIs are dropped."""
        if not isinstance(params, dict):
            return False
        doc = self._document_for_uri(params.get("uri"))
        if doc is None:
            logger.debug(f"LSP: diagnostics for unknown URI dropped: {params.get('uri')}")
            return False
        doc.diagnostics = parse_diagnostics(params.get("diagnostics"))
        if doc is self.editor.active_document():
            errors = sum(1 for d in doc.diagnostics if d.severity is Severity.ERROR)
            warnings = sum(1 for d in doc.diagnostics if d.severity is Severity.WARNING)
            if doc.diagnostics:
                self.editor._set_status_message(f"{doc.name}: {errors} errors, {warnings} warnings")
            else:
                self.editor._set_status_message(f"✓ No issues found in {doc.name}")
        return True

    # --- main-loop hooks -----------------------------------------------
    def dispatch(self, inbound: Any) -> bool:
        if isinstance(inbound, Notification):
            if inbound.method == "textDocument/publishDiagnostics":
                return self.handle_publish_diagnostics(inbound.params)
            logger.debug(f"LSP: unhandled notification {inbound.method}")
            return False
        if isinstance(inbound, Response):
            if self.pending_completion_id is not None and inbound.id == self.pending_completion_id:
                self.handle_completion_response(inbound)
                return True
            if self.pending_definition_id is not None and inbound.id == self.pending_definition_id:
                self.handle_definition_response(inbound)
                return True
            logger.debug(f"LSP: ignoring stale response id {inbound.id}")
        return False

    def process_queue(self) -> bool:
        """Drains the session queue; returns True when a redraw is needed."""
        if self.client is None:
            return False
        changed = False
        for inbound in self.client.poll():
            if self.dispatch(inbound):
                changed = True
        proc = self.client.process if self.client is not None else None
        if proc is not None and proc.poll() is not None:
            self._drop_session(f"server exited with code {proc.returncode}")
            changed = True
        return changed

    def shutdown(self) -> None:
        if self.client is None:
            return
        for doc in self.editor.documents:
            self.document_closed(doc)
        if self.client is not None:
            self.client.close()
        self.client = None
