#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import curses
import locale
import logging
import os
import signal
import sys
import time
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pygments import lex
from pygments.lexer import Lexer
from pygments.token import Token
from wcwidth import wcwidth, wcswidth

from sway_ide.config import load_config, setup_logging
from sway_ide.document import Document, Severity
from sway_ide.editor import SwayIde
from sway_ide.language import lexer_for_path
from sway_ide.sync import ConflictChoice, RecoveryChoice

logger = logging.getLogger("sway_ide")

KEY_ESC = 27
KEY_ENTER_CODES = (10, 13, curses.KEY_ENTER)
KEY_BACKSPACE_CODES = (8, 127, curses.KEY_BACKSPACE)
COMPLETION_POPUP_ROWS = 8

_SEVERITY_MARKS = {
    Severity.ERROR: "E",
    Severity.WARNING: "W",
    Severity.INFO: "I",
    Severity.HINT: "H",
    Severity.UNKNOWN: "?",
}


def ctrl(letter: str) -> int:
    return ord(letter.upper()) - 64


def clip_to_width(text: str, width: int) -> str:
    """Longest prefix of `text` that fits in `width` terminal cells."""
    out: List[str] = []
    used = 0
    for ch in text:
        w = max(wcwidth(ch), 0)
        if used + w > width:
            break
        out.append(ch)
        used += w
    return "".join(out)


def cut_left(text: str, cells_to_skip: int) -> str:
    """Drops leading characters until `cells_to_skip` cells are gone."""
    skipped = 0
    for index, ch in enumerate(text):
        if skipped >= cells_to_skip:
            return text[index:]
        skipped += max(wcwidth(ch), 0)
    return ""


def display_width(text: str) -> int:
    width = wcswidth(text)
    return width if width >= 0 else len(text)


# Pygments token type -> colour name; subtypes inherit from the nearest parent listed.
_TOKEN_COLORS = {
    Token.Keyword: "keyword",
    Token.Keyword.Type: "type",
    Token.Name.Function: "function",
    Token.Name.Class: "type",
    Token.Name.Builtin: "type",
    Token.Name.Decorator: "function",
    Token.Name.Tag: "keyword",
    Token.Name.Attribute: "function",
    Token.Literal.String: "string",
    Token.Literal.Number: "number",
    Token.Comment: "comment",
    Token.Error: "error",
}


@lru_cache(maxsize=4096)
def tokenize_line(line: str, lexer: Lexer) -> Tuple[Tuple[Any, str], ...]:
    """Pygments tokens of a single line, without the newline the lexer appends."""
    tokens = []
    for token_type, value in lex(line, lexer):
        value = value.replace("\n", "")
        if value:
            tokens.append((token_type, value))
    return tuple(tokens)


## ================= DrawScreen ==============================
class DrawScreen:
    """
    Renders the active document of a `SwayIde` into a curses window.

    Layout: a tab line on top, the text area with a gutter (line number,
    diagnostic mark, fold marker), and the status line at the bottom. Only
    rows listed in the document's visible-row map are drawn, so collapsed
    blocks take no screen space.
    """

    def __init__(self, editor: SwayIde, stdscr: "curses.window"):
        self.editor = editor
        self.stdscr = stdscr
        self.colors: Dict[str, int] = {}
        self.hscroll = 0
        self._lexers: Dict[str, Lexer] = {}
        self._init_colors()

    def _init_colors(self) -> None:
        try:
            curses.start_color()
            curses.use_default_colors()
            pairs = {
                "error": curses.COLOR_RED,
                "warning": curses.COLOR_YELLOW,
                "info": curses.COLOR_CYAN,
                "fold0": curses.COLOR_MAGENTA,
                "fold1": curses.COLOR_BLUE,
                "fold2": curses.COLOR_GREEN,
                "gutter": curses.COLOR_WHITE,
                "keyword": curses.COLOR_MAGENTA,
                "type": curses.COLOR_CYAN,
                "function": curses.COLOR_BLUE,
                "string": curses.COLOR_GREEN,
                "number": curses.COLOR_YELLOW,
                "comment": curses.COLOR_WHITE,
            }
            for index, (name, fg) in enumerate(pairs.items(), start=1):
                curses.init_pair(index, fg, -1)
                self.colors[name] = curses.color_pair(index)
        except curses.error as exc:
            logger.debug(f"Color initialisation skipped: {exc}")

    def color(self, name: str) -> int:
        return self.colors.get(name, curses.A_NORMAL)

    def token_attr(self, token_type: Any) -> int:
        current = token_type
        while current:
            if current in _TOKEN_COLORS:
                return self.color(_TOKEN_COLORS[current])
            current = current.parent
        return curses.A_NORMAL

    def highlight(self, doc: Document, line: str) -> List[Tuple[str, int]]:
        """Splits `line` into (text, attribute) segments using the document's Pygments lexer."""
        lexer = self._lexers.get(doc.path)
        if lexer is None:
            lexer = self._lexers[doc.path] = lexer_for_path(doc.path)
        try:
            tokens = tokenize_line(line, lexer)
        except Exception as exc:
            logger.error(f"Pygments tokenization error for line '{line[:70]}': {exc}")
            return [(line, curses.A_NORMAL)]
        return [(value, self.token_attr(token_type)) for token_type, value in tokens]

    def _draw_segments(self, y: int, x: int, width: int,
                       segments: List[Tuple[str, int]], extra_attr: int) -> None:
        skip = self.hscroll
        for text, attr in segments:
            if skip:
                seg_width = display_width(text)
                if seg_width <= skip:
                    skip -= seg_width
                    continue
                text = cut_left(text, skip)
                skip = 0
            piece = clip_to_width(text, width)
            if piece:
                self._put(y, x, piece, attr | extra_attr)
            used = display_width(piece)
            x += used
            width -= used
            if width <= 0 or piece != text:
                break

    @property
    def text_height(self) -> int:
        height, _ = self.stdscr.getmaxyx()
        return max(1, height - 2)

    def _put(self, y: int, x: int, text: str, attr: int = curses.A_NORMAL) -> None:
        height, width = self.stdscr.getmaxyx()
        if y < 0 or y >= height or x >= width:
            return
        text = clip_to_width(text, width - x - (1 if y == height - 1 else 0))
        try:
            self.stdscr.addstr(y, x, text, attr)
        except curses.error:
            pass

    def gutter_width(self, doc: Document) -> int:
        return len(str(len(doc.buffer.lines))) + 3

    def draw(self) -> None:
        self.stdscr.erase()
        height, width = self.stdscr.getmaxyx()
        if height < 4 or width < 20:
            self._put(0, 0, "Window too small")
            self.stdscr.refresh()
            return

        self._draw_tabs(width)
        doc = self.editor.active_document()
        if doc is None:
            self._put(2, 2, "No file open. Ctrl+O opens a file, Ctrl+Q quits.")
        else:
            self.editor.ensure_cursor_visible(self.text_height)
            self._draw_text(doc, width)
            self._draw_completion(doc, width)
        self._draw_status(doc, height, width)
        self._place_cursor(doc)
        self.stdscr.refresh()

    def _draw_tabs(self, width: int) -> None:
        x = 0
        for index, doc in enumerate(self.editor.documents):
            label = f" {doc.name}{'*' if doc.dirty else ''} "
            attr = curses.A_REVERSE if index == self.editor.active_index else curses.A_NORMAL
            self._put(0, x, label, attr)
            x += display_width(label) + 1
            if x >= width:
                break

    def _draw_text(self, doc: Document, width: int) -> None:
        gutter = self.gutter_width(doc)
        text_width = max(1, width - gutter)
        cursor_row, cursor_col = doc.buffer.cursor
        cursor_x = display_width(doc.buffer.lines[cursor_row][:cursor_col])
        if cursor_x < self.hscroll:
            self.hscroll = cursor_x
        elif cursor_x >= self.hscroll + text_width:
            self.hscroll = cursor_x - text_width + 1

        number_width = gutter - 3
        for screen_line in range(self.text_height):
            row = self.editor.row_at_screen_line(screen_line)
            if row is None:
                break
            y = screen_line + 1
            self._put(y, 0, str(row + 1).rjust(number_width), self.color("gutter"))

            diagnostics = doc.diagnostics_on_line(row)
            if diagnostics:
                worst = min(diagnostics, key=lambda d: list(Severity).index(d.severity))
                attr = self.color("error") if worst.severity is Severity.ERROR else self.color("warning")
                self._put(y, number_width, _SEVERITY_MARKS[worst.severity], attr | curses.A_BOLD)

            if doc.folds.range_starting_at(row) is not None:
                marker = "▸" if doc.folds.is_folded(row) else "▾"
                depth = doc.folds.bracket_depths[row] if row < len(doc.folds.bracket_depths) else 0
                self._put(y, number_width + 1, marker, self.color(f"fold{depth % 3}"))

            attr = curses.A_BOLD if row == cursor_row else curses.A_NORMAL
            self._draw_segments(y, gutter, text_width, self.highlight(doc, doc.buffer.lines[row]), attr)

            if row == cursor_row and self.editor.lsp.inline_ghost and not self.editor.lsp.completion.is_open:
                ghost_x = gutter + cursor_x - self.hscroll
                self._put(y, ghost_x, self.editor.lsp.inline_ghost, curses.A_DIM)

    def _draw_completion(self, doc: Document, width: int) -> None:
        state = self.editor.lsp.completion
        if not state.is_open:
            return
        cursor_y, cursor_x = self._cursor_screen_pos(doc)
        first = max(0, state.selected - COMPLETION_POPUP_ROWS + 1)
        shown = state.items[first:first + COMPLETION_POPUP_ROWS]
        box_width = min(width - 1, max(display_width(item.label) for item in shown) + 12)
        x = max(0, min(cursor_x, width - box_width - 1))
        for offset, item in enumerate(shown):
            detail = f" {item.detail}" if item.detail else ""
            label = clip_to_width(f" {item.label}{detail}", box_width).ljust(box_width)
            attr = curses.A_REVERSE if first + offset == state.selected else curses.A_NORMAL
            self._put(cursor_y + 1 + offset, x, label, attr)

    def _draw_status(self, doc: Optional[Document], height: int, width: int) -> None:
        prompt = self.editor.pending_prompt()
        if prompt == "recovery":
            left = "Autosave differs from file: [r]ecover  [d]iscard  [c]ancel"
        elif prompt == "conflict":
            left = "File changed on disk: [r]eload  [k]eep local  [d]efer"
        else:
            left = self.editor.status_message
        right = ""
        if doc is not None:
            row, col = doc.buffer.cursor
            lsp = "LSP" if doc.uri else "local"
            right = f" {doc.language} | {lsp} | Ln {row + 1}, Col {col + 1} "
        bar = clip_to_width(left, max(0, width - display_width(right) - 1))
        bar = bar + " " * max(0, width - display_width(bar) - display_width(right)) + right
        self._put(height - 1, 0, bar, curses.A_REVERSE)

    def _cursor_screen_pos(self, doc: Document) -> "tuple[int, int]":
        row, col = doc.buffer.cursor
        index = doc.folds.visible_index_of(row)
        y = index - doc.scroll_row + 1
        x = self.gutter_width(doc) + display_width(doc.buffer.lines[row][:col]) - self.hscroll
        return y, x

    def _place_cursor(self, doc: Optional[Document]) -> None:
        if doc is None:
            return
        height, width = self.stdscr.getmaxyx()
        y, x = self._cursor_screen_pos(doc)
        try:
            self.stdscr.move(max(1, min(y, height - 2)), max(0, min(x, width - 1)))
        except curses.error:
            pass


## ==================== KeyBinder Class ====================
class KeyBinder:
    """
    Maps keystrokes to editor actions.

    Control characters delivered by ``get_wch()`` as one-character strings
    are normalised to their integer codes first, so the action map can be
    keyed by ints alone.
    """

    def __init__(self, editor: SwayIde, drawer: DrawScreen, stdscr: "curses.window"):
        self.editor = editor
        self.drawer = drawer
        self.stdscr = stdscr
        self.should_exit = False
        self._search_index = -1
        tab_size = int(editor.config.get("editor", {}).get("tab_size", 4))
        self.indent = " " * max(1, tab_size)
        self.action_map: Dict[int, Callable[[], None]] = self._setup_action_map()

    def _setup_action_map(self) -> Dict[int, Callable[[], None]]:
        ed = self.editor
        return {
            ctrl("Q"): self.quit,
            ctrl("S"): lambda: ed.save_file(),
            ctrl("W"): lambda: ed.close_document(),
            ctrl("O"): self.open_prompt,
            ctrl("F"): self.search_prompt,
            ctrl("N"): ed.lsp.request_completion,
            0: ed.lsp.request_completion,  # Ctrl+Space
            curses.KEY_F3: self.next_search_hit,
            curses.KEY_F5: ed.toggle_fold_at_cursor,
            curses.KEY_F6: ed.toggle_fold_all,
            curses.KEY_F7: ed.fold_current_block,
            curses.KEY_F8: ed.unfold_current_block,
            curses.KEY_F9: lambda: ed.switch_document(-1),
            curses.KEY_F10: lambda: ed.switch_document(1),
            curses.KEY_F12: ed.lsp.request_definition,
            curses.KEY_UP: lambda: self._vertical(-1),
            curses.KEY_DOWN: lambda: self._vertical(1),
            curses.KEY_SR: lambda: self._vertical(-1, select=True),
            curses.KEY_SF: lambda: self._vertical(1, select=True),
            curses.KEY_LEFT: lambda: self._horizontal(-1),
            curses.KEY_RIGHT: lambda: self._horizontal(1),
            curses.KEY_SLEFT: lambda: self._horizontal(-1, select=True),
            curses.KEY_SRIGHT: lambda: self._horizontal(1, select=True),
            curses.KEY_HOME: lambda: self._line_edge(start=True),
            curses.KEY_END: lambda: self._line_edge(start=False),
            curses.KEY_PPAGE: lambda: ed.page(-1, self.drawer.text_height),
            curses.KEY_NPAGE: lambda: ed.page(1, self.drawer.text_height),
            curses.KEY_DC: lambda: self._edit(lambda buf: buf.delete_forward()),
            curses.KEY_MOUSE: self.handle_mouse,
        }

    @staticmethod
    def normalize(key: Union[str, int]) -> Union[str, int]:
        if isinstance(key, str) and len(key) == 1 and (ord(key) < 32 or ord(key) == 127):
            return ord(key)
        return key

    def handle_input(self, key: Union[str, int]) -> bool:
        """Dispatches one key; returns True when a redraw is needed."""
        key = self.normalize(key)
        if self._handle_prompt_key(key):
            return True
        if self._handle_completion_key(key):
            return True

        if isinstance(key, str):
            self._edit(lambda buf: buf.insert_text(key))
            return True
        if key in KEY_ENTER_CODES:
            self._edit(lambda buf: buf.newline())
        elif key in KEY_BACKSPACE_CODES:
            self._edit(lambda buf: buf.backspace())
        elif key == 9:
            if not self.editor.lsp.accept_inline_ghost():
                self._edit(lambda buf: buf.insert_text(self.indent))
        elif key == KEY_ESC:
            self.editor.lsp.inline_ghost = None
        elif key in self.action_map:
            self.action_map[key]()
        elif key == curses.KEY_RESIZE:
            pass
        else:
            logger.debug(f"Unbound key: {key!r}")
            return False
        self.editor.update_status_for_cursor()
        return True

    def _handle_prompt_key(self, key: Union[str, int]) -> bool:
        prompt = self.editor.pending_prompt()
        if prompt is None or not isinstance(key, str):
            return False
        choice = key.lower()
        if prompt == "conflict":
            mapping = {"r": ConflictChoice.RELOAD, "k": ConflictChoice.KEEP, "d": ConflictChoice.DEFER}
            if choice in mapping:
                self.editor.resolve_conflict(mapping[choice])
        else:
            mapping = {"r": RecoveryChoice.RECOVER, "d": RecoveryChoice.DISCARD, "c": RecoveryChoice.CANCEL}
            if choice in mapping:
                self.editor.resolve_recovery(mapping[choice])
        return True

    def _handle_completion_key(self, key: Union[str, int]) -> bool:
        state = self.editor.lsp.completion
        if not state.is_open:
            return False
        if key == curses.KEY_UP:
            self.editor.lsp.select_completion(-1)
        elif key == curses.KEY_DOWN:
            self.editor.lsp.select_completion(1)
        elif key in KEY_ENTER_CODES or key == 9:
            self.editor.lsp.accept_completion()
        elif key == KEY_ESC:
            state.close()
        else:
            state.close()
            return False
        return True

    def _edit(self, action: Callable) -> None:
        doc = self.editor.active_document()
        if doc is None:
            return
        before = (list(doc.buffer.lines), doc.buffer.cursor)
        action(doc.buffer)
        if doc.buffer.lines != before[0]:
            self.editor.on_content_changed(doc)
        else:
            self.editor.lsp.refresh_inline_ghost(doc)

    def _vertical(self, delta: int, select: bool = False) -> None:
        self.editor.move_cursor_vertical(delta, select=select)
        self.editor.lsp.inline_ghost = None

    def _horizontal(self, delta: int, select: bool = False) -> None:
        doc = self.editor.active_document()
        if doc is None:
            return
        row, col = doc.buffer.cursor
        col += delta
        if col < 0 and row > 0:
            row = doc.folds.source_row_at(doc.folds.visible_index_of(row) - 1)
            col = len(doc.buffer.lines[row])
        elif col > len(doc.buffer.lines[row]) and row + 1 < len(doc.buffer.lines):
            row = doc.folds.source_row_at(doc.folds.visible_index_of(row) + 1)
            col = 0
        doc.buffer.move_to(row, col, select=select)
        self.editor.lsp.refresh_inline_ghost(doc)

    def _line_edge(self, start: bool) -> None:
        doc = self.editor.active_document()
        if doc is not None:
            row = doc.buffer.cursor_row
            doc.buffer.move_to(row, 0 if start else len(doc.buffer.lines[row]))

    def handle_mouse(self) -> None:
        try:
            _, x, y, _, bstate = curses.getmouse()
        except curses.error:
            return
        wheel_up = getattr(curses, "BUTTON4_PRESSED", 0)
        wheel_down = getattr(curses, "BUTTON5_PRESSED", 0)
        if bstate & wheel_up:
            self.editor.scroll(-3)
            return
        if wheel_down and bstate & wheel_down:
            self.editor.scroll(3)
            return
        if not bstate & (curses.BUTTON1_CLICKED | curses.BUTTON1_PRESSED):
            return
        doc = self.editor.active_document()
        row = self.editor.row_at_screen_line(y - 1)
        if doc is None or row is None:
            return
        gutter = self.drawer.gutter_width(doc)
        if x < gutter:
            self.editor.toggle_fold_at_row(row)
            return
        line = doc.buffer.lines[row]
        target = x - gutter + self.drawer.hscroll
        col = 0
        while col < len(line) and display_width(line[:col + 1]) <= target:
            col += 1
        doc.buffer.move_to(row, col)

    def prompt(self, label: str, default: str = "") -> Optional[str]:
        """Reads a line on the status row; Esc cancels."""
        height, width = self.stdscr.getmaxyx()
        text = default
        self.stdscr.nodelay(False)
        try:
            while True:
                line = clip_to_width(f"{label}{text}", width - 1).ljust(width - 1)
                try:
                    self.stdscr.addstr(height - 1, 0, line, curses.A_REVERSE)
                    self.stdscr.move(height - 1, min(width - 2, display_width(label + text)))
                except curses.error:
                    pass
                self.stdscr.refresh()
                key = self.normalize(self.stdscr.get_wch())
                if key in KEY_ENTER_CODES:
                    return text
                if key == KEY_ESC:
                    return None
                if key in KEY_BACKSPACE_CODES:
                    text = text[:-1]
                elif isinstance(key, str):
                    text += key
        finally:
            self.stdscr.nodelay(True)

    def open_prompt(self) -> None:
        path = self.prompt("Open file: ")
        if path:
            self.editor.open_file(os.path.expanduser(path))

    def search_prompt(self) -> None:
        query = self.prompt("Search project: ")
        if query:
            self.editor.search_in_project(query)
            self._search_index = -1
            self.next_search_hit()

    def next_search_hit(self) -> None:
        hits = self.editor.search_results
        if not hits:
            self.editor._set_status_message("No search results")
            return
        self._search_index = (self._search_index + 1) % len(hits)
        hit = hits[self._search_index]
        if self.editor.open_search_hit(hit):
            self.editor._set_status_message(
                f"[{self._search_index + 1}/{len(hits)}] {hit.path}:{hit.line}: {hit.text.strip()[:80]}"
            )

    def quit(self) -> None:
        dirty = [doc.name for doc in self.editor.documents if doc.dirty]
        if dirty:
            answer = self.prompt(f"Unsaved changes in {', '.join(dirty)}. Quit anyway? (y/n): ")
            if not answer or not answer.lower().startswith("y"):
                return
        self.should_exit = True


# =====================  Main editor loop  ============================
def run_editor(editor: SwayIde, stdscr: "curses.window") -> None:
    """
    Cooperative main loop: background queues, input, throttled redraw.

    All background work (language-server traffic, watcher signals, autosave)
    is pulled in by `SwayIde.tick` on the loop thread, so nothing here
    needs a lock.
    """
    logger.info("Editor main loop started.")
    stdscr.nodelay(True)
    stdscr.keypad(True)
    try:
        curses.mousemask(curses.ALL_MOUSE_EVENTS | curses.REPORT_MOUSE_POSITION)
    except curses.error:
        pass

    drawer = DrawScreen(editor, stdscr)
    keybinder = KeyBinder(editor, drawer, stdscr)

    try:
        target_fps = int(editor.config.get("editor", {}).get("target_fps", 30))
    except (TypeError, ValueError):
        target_fps = 30
    min_frame_time = 1.0 / max(1, target_fps)

    needs_redraw = True
    last_draw_time = 0.0
    while not keybinder.should_exit:
        try:
            if editor.tick():
                needs_redraw = True

            try:
                key = stdscr.get_wch()
            except curses.error:
                key = None
            if key is not None and keybinder.handle_input(key):
                needs_redraw = True

            now = time.monotonic()
            if needs_redraw and now - last_draw_time >= min_frame_time:
                drawer.draw()
                last_draw_time = now
                needs_redraw = False

            time.sleep(0.005)
        except KeyboardInterrupt:
            logger.info("KeyboardInterrupt received in main loop, exiting.")
            break
        except curses.error as e:
            logger.error("A Curses error occurred in the main loop: %s", e, exc_info=True)
            editor._set_status_message(f"UI Error: {e}")
            needs_redraw = True
        except Exception:
            # Keep the editor alive; buffers must not be lost to a UI bug.
            logger.critical("An unhandled exception occurred in the main loop", exc_info=True)
            editor._set_status_message("Critical loop error! Check logs.")
            needs_redraw = True

    editor.shutdown()


def main_curses_function(stdscr: "curses.window", paths: List[str], config: Dict) -> None:
    """Sets up the terminal, creates the editor, opens `paths` and runs the loop."""
    if hasattr(signal, "SIGTSTP"):
        try:
            signal.signal(signal.SIGTSTP, signal.SIG_IGN)
        except (OSError, ValueError) as e_signal:
            logger.warning(f"Couldn't ignore SIGTSTP: {e_signal}")
    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error as e_locale:
        logger.error(f"Failed to set system locale: {e_locale}.")

    root = os.getcwd()
    files = []
    for path in paths:
        if os.path.isdir(path):
            root = os.path.abspath(path)
        else:
            files.append(path)

    editor = SwayIde(root=root, config=config)
    for path in files:
        logger.info(f"Opening file from command line argument: '{path}'")
        editor.open_file(path)
    run_editor(editor, stdscr)


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point: ``sway-ide [DIR] [FILE ...]``."""
    args = list(sys.argv[1:] if argv is None else argv)
    config = load_config()
    setup_logging(config)
    logger.info("Sway-IDE starting up...")
    try:
        curses.wrapper(main_curses_function, args, config)
    except Exception as e_wrapper:
        logger.critical("Unhandled exception at the outermost level (after curses.wrapper).", exc_info=True)
        print(f"\nCRITICAL ERROR: {e_wrapper}", file=sys.stderr)
        print("Please check the log file for the detailed traceback.", file=sys.stderr)
        return 1
    logger.info("Sway-IDE shut down gracefully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
