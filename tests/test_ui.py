import curses
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from sway_ide.ui import DrawScreen, KeyBinder, clip_to_width, ctrl, cut_left, display_width

from support import drain_status, make_editor, write_file


class TestWidthHelpers(unittest.TestCase):

    def test_wide_characters(self):
        self.assertEqual(display_width("日本語"), 6)
        self.assertEqual(clip_to_width("日本語", 5), "日本")
        self.assertEqual(clip_to_width("abc", 10), "abc")
        self.assertEqual(cut_left("日本語", 2), "本語")
        self.assertEqual(cut_left("abc", 5), "")

    def test_ctrl(self):
        self.assertEqual(ctrl("s"), 19)
        self.assertEqual(KeyBinder.normalize("\x13"), 19)
        self.assertEqual(KeyBinder.normalize("a"), "a")
        self.assertEqual(KeyBinder.normalize(curses.KEY_UP), curses.KEY_UP)


class TestKeyBinder(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.root = self.tmpdir.name
        self.editor = make_editor(self.root)
        self.addCleanup(self.editor.shutdown)
        self.stdscr = MagicMock()
        self.stdscr.getmaxyx.return_value = (12, 60)
        self.drawer = DrawScreen(self.editor, self.stdscr)
        self.keys = KeyBinder(self.editor, self.drawer, self.stdscr)

    def open(self, name, text):
        return self.editor.open_file(write_file(os.path.join(self.root, name), text))

    def test_typing_and_editing_keys(self):
        doc = self.open("notes.txt", "")
        for key in "ab":
            self.assertTrue(self.keys.handle_input(key))
        self.keys.handle_input(10)
        self.keys.handle_input("c")
        self.keys.handle_input(127)
        self.assertEqual(doc.buffer.lines, ["ab", ""])
        self.assertTrue(doc.dirty)
        self.assertFalse(self.keys.handle_input(curses.KEY_F1))

    def test_tab_accepts_ghost_or_indents(self):
        doc = self.open("notes.txt", "foobar\n")
        doc.buffer.move_to(1, 0)
        self.keys.handle_input("\t")
        self.assertEqual(doc.buffer.lines[1], "    ")
        self.keys.handle_input(curses.KEY_HOME)
        for key in "foo":
            self.keys.handle_input(key)
        self.assertEqual(self.editor.lsp.inline_ghost, "bar")
        self.keys.handle_input("\t")
        self.assertEqual(doc.buffer.lines[1], "foobar    ")

    def test_completion_popup_keys(self):
        doc = self.open("notes.txt", "foobar fooqux\nfoo")
        self.editor.set_cursor(doc, 1, 3)
        self.keys.handle_input("\x00")
        self.assertTrue(self.editor.lsp.completion.is_open)
        self.assertEqual([i.label for i in self.editor.lsp.completion.items], ["foobar", "fooqux"])

        self.keys.handle_input(curses.KEY_DOWN)
        self.assertEqual(self.editor.lsp.completion.selected, 1)
        self.keys.handle_input(10)
        self.assertEqual(doc.buffer.lines[1], "fooqux")
        self.assertFalse(self.editor.lsp.completion.is_open)

    def test_prompt_keys_resolve_conflict(self):
        doc = self.open("main.rs", "fn main() {}\n")
        self.keys.handle_input("x")
        self.editor.sync.maybe_flag_external_conflict(doc, "fn remote() {}\n")
        self.assertEqual(self.editor.pending_prompt(), "conflict")

        self.assertTrue(self.keys.handle_input("z"))
        self.assertEqual(self.editor.pending_prompt(), "conflict")
        self.assertTrue(self.keys.handle_input("R"))
        self.assertIsNone(self.editor.pending_prompt())
        self.assertEqual(doc.text, "fn remote() {}\n")

    def test_fold_keys(self):
        doc = self.open("main.rs", "fn main() {\n    a();\n    b();\n}\n")
        self.keys.handle_input(curses.KEY_F5)
        self.assertTrue(doc.folds.is_folded(0))
        self.keys.handle_input(curses.KEY_DOWN)
        self.assertEqual(doc.buffer.cursor_row, 4)
        self.keys.handle_input(curses.KEY_F6)
        self.assertEqual(doc.folds.folded_starts, set())

    @patch("sway_ide.ui.curses.getmouse")
    def test_gutter_click_toggles_fold(self, mock_getmouse):
        doc = self.open("main.rs", "fn main() {\n    a();\n}\n")
        mock_getmouse.return_value = (0, 1, 1, 0, curses.BUTTON1_CLICKED)
        self.keys.handle_input(curses.KEY_MOUSE)
        self.assertTrue(doc.folds.is_folded(0))
        self.assertEqual(drain_status(self.editor), "Folded lines 1-2")

        mock_getmouse.return_value = (0, self.drawer.gutter_width(doc) + 2, 1, 0, curses.BUTTON1_CLICKED)
        self.keys.handle_input(curses.KEY_MOUSE)
        self.assertEqual(doc.buffer.cursor, (0, 2))

    def test_search_hit_cycle_without_results(self):
        self.keys.next_search_hit()
        self.assertEqual(drain_status(self.editor), "No search results")

    def test_quit_confirms_unsaved_changes(self):
        doc = self.open("notes.txt", "x")
        doc.dirty = True
        with patch.object(self.keys, "prompt", return_value="n"):
            self.keys.handle_input(ctrl("q"))
        self.assertFalse(self.keys.should_exit)
        with patch.object(self.keys, "prompt", return_value="yes"):
            self.keys.handle_input(ctrl("q"))
        self.assertTrue(self.keys.should_exit)


class TestDrawScreen(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.editor = make_editor(self.tmpdir.name)
        self.addCleanup(self.editor.shutdown)
        self.stdscr = MagicMock()
        self.stdscr.getmaxyx.return_value = (10, 60)
        self.drawer = DrawScreen(self.editor, self.stdscr)

    def drawn_text(self):
        return [c.args[2] for c in self.stdscr.addstr.call_args_list]

    def drawn_rows(self):
        rows = {}
        for c in self.stdscr.addstr.call_args_list:
            rows[c.args[0]] = rows.get(c.args[0], "") + c.args[2]
        return rows

    def test_folded_rows_are_not_drawn(self):
        path = write_file(os.path.join(self.tmpdir.name, "main.rs"), "fn main() {\n    hidden_call();\n}\nfn next() {}\n")
        self.editor.open_file(path)
        self.editor.toggle_fold_at_row(0)
        self.drawer.draw()
        text = self.drawn_text()
        self.assertIn("▸", text)
        rows = self.drawn_rows().values()
        self.assertFalse(any("hidden_call" in r for r in rows))
        self.assertTrue(any(r.endswith("fn next() {}") for r in rows))

    def test_rows_are_coloured_by_token(self):
        path = write_file(os.path.join(self.tmpdir.name, "main.rs"), "fn main() {}\n// note\n")
        self.editor.open_file(path)
        self.drawer.colors.update({"keyword": 1 << 20, "comment": 1 << 21})
        self.drawer.draw()
        segments = {(c.args[0], c.args[2]): c.args[3] for c in self.stdscr.addstr.call_args_list}
        self.assertEqual(segments[(1, "fn")], (1 << 20) | curses.A_BOLD)
        self.assertEqual(segments[(2, "// note")], 1 << 21)
        self.assertTrue(self.drawn_rows()[1].endswith("fn main() {}"))

    def test_highlight_keeps_line_text(self):
        doc = self.editor.open_file(write_file(os.path.join(self.tmpdir.name, "app.py"), "def run(x):  # go\n"))
        self.drawer.colors["keyword"] = 7
        segments = self.drawer.highlight(doc, doc.buffer.lines[0])
        self.assertEqual("".join(text for text, _ in segments), "def run(x):  # go")
        self.assertIn(("def", 7), segments)

        plain = self.editor.open_file(write_file(os.path.join(self.tmpdir.name, "notes.zzz"), "just text\n"))
        self.assertEqual(self.drawer.highlight(plain, "just text"), [("just text", curses.A_NORMAL)])

    def test_empty_editor_and_small_window(self):
        self.drawer.draw()
        self.assertTrue(any("No file open" in t for t in self.drawn_text()))
        self.stdscr.getmaxyx.return_value = (3, 10)
        self.drawer.draw()
        self.assertEqual(self.drawn_text()[-1], "Window too")


if __name__ == "__main__":
    unittest.main()
