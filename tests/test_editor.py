import os
import tempfile
import unittest

from sway_ide.document import Diagnostic, Severity

from support import drain_status, make_editor, read_file, write_file


SOURCE = """fn main() {
    let a = 1;
    let b = 2;
}

fn helper() {
    work();
}
"""


class EditorTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.root = self.tmpdir.name
        self.editor = make_editor(self.root)
        self.addCleanup(self.editor.shutdown)

    def open(self, name, text):
        return self.editor.open_file(write_file(os.path.join(self.root, name), text))


class TestDocuments(EditorTestCase):

    def test_open_file(self):
        doc = self.open("main.rs", SOURCE)
        self.assertIs(self.editor.active_document(), doc)
        self.assertEqual(doc.language, "rust")
        self.assertEqual(doc.encoding, "utf-8")
        self.assertEqual(len(doc.buffer.lines), 9)
        self.assertEqual(doc.disk_snapshot, SOURCE)
        self.assertFalse(doc.dirty)
        self.assertEqual(drain_status(self.editor), "Opened 'main.rs' (enc: utf-8, 9 lines)")

    def test_open_same_file_twice_switches(self):
        first = self.open("main.rs", SOURCE)
        self.open("other.rs", "fn x() {}\n")
        again = self.editor.open_file(first.path)
        self.assertIs(again, first)
        self.assertEqual(len(self.editor.documents), 2)
        self.assertIs(self.editor.active_document(), first)

    def test_open_errors(self):
        os.makedirs(os.path.join(self.root, "sub"))
        self.assertIsNone(self.editor.open_file(os.path.join(self.root, "sub")))
        self.assertEqual(drain_status(self.editor), "Error: 'sub' is a directory.")

        self.assertIsNone(self.editor.open_file(os.path.join(self.root, "nope.rs")))
        self.assertEqual(drain_status(self.editor), "Error: File not found 'nope.rs'")

        blob = os.path.join(self.root, "blob.bin")
        with open(blob, "wb") as fh:
            fh.write(b"\x00\x01\x02binary")
        self.assertIsNone(self.editor.open_file(blob))
        self.assertEqual(drain_status(self.editor), "Refusing to open binary file 'blob.bin'")
        self.assertEqual(self.editor.documents, [])

    def test_save_adds_trailing_newline(self):
        doc = self.open("notes.txt", "abc")
        doc.buffer.insert_text("x")
        self.editor.on_content_changed(doc)
        self.assertTrue(doc.dirty)

        self.assertTrue(self.editor.save_file())
        self.assertEqual(read_file(doc.path), "xabc\n")
        self.assertFalse(doc.dirty)
        self.assertEqual(doc.disk_snapshot, "xabc\n")
        self.assertEqual(drain_status(self.editor), "Saved notes.txt")

    def test_save_failure_keeps_dirty(self):
        doc = self.open("notes.txt", "abc\n")
        doc.dirty = True
        doc.path = os.path.join(self.root, "missing-dir", "notes.txt")
        self.assertFalse(self.editor.save_file(doc))
        self.assertTrue(doc.dirty)
        self.assertTrue(drain_status(self.editor).startswith("Error saving 'notes.txt'"))

    def test_close_and_switch(self):
        a = self.open("a.rs", "fn a() {}\n")
        b = self.open("b.rs", "fn b() {}\n")
        self.editor.switch_document(1)
        self.assertIs(self.editor.active_document(), a)
        self.editor.switch_document(-1)
        self.assertIs(self.editor.active_document(), b)

        self.editor.close_document()
        self.assertEqual(self.editor.documents, [a])
        self.assertIs(self.editor.active_document(), a)
        self.editor.close_document(a)
        self.assertIsNone(self.editor.active_document())
        self.assertEqual(self.editor.active_index, -1)

    def test_edits_recompute_folds(self):
        doc = self.open("main.rs", "fn main() {}")
        self.assertEqual(doc.folds.ranges, [])
        doc.buffer.move_to(0, 11)
        doc.buffer.insert_text("\n    body();\n")
        self.editor.on_content_changed(doc)
        self.assertIn((0, 2), [(r.start_line, r.end_line) for r in doc.folds.ranges])

    def test_trailing_newline_closes_indent_range_on_last_row(self):
        doc = self.open("main.rs", "fn main() {}\n")
        self.assertEqual([(r.start_line, r.end_line) for r in doc.folds.ranges], [(0, 1)])

    def test_status_messages_deduplicated(self):
        self.editor._set_status_message("same")
        self.editor._set_status_message("same")
        self.assertEqual(self.editor._msg_q.qsize(), 1)
        self.assertTrue(self.editor._process_all_queues())
        self.assertEqual(self.editor.status_message, "same")
        self.assertFalse(self.editor._process_all_queues())

    def test_cursor_line_diagnostic_on_status(self):
        doc = self.open("main.rs", SOURCE)
        doc.diagnostics = [Diagnostic(2, 9, Severity.WARNING, "unused variable")]
        self.editor.set_cursor(doc, 1, 0)
        self.editor.update_status_for_cursor()
        self.assertEqual(drain_status(self.editor), "warning: unused variable (line 2)")


class TestFoldingCommands(EditorTestCase):

    def setUp(self):
        super().setUp()
        self.doc = self.open("main.rs", SOURCE)

    def test_toggle_fold_at_row(self):
        self.assertTrue(self.editor.toggle_fold_at_row(0))
        self.assertEqual(drain_status(self.editor), "Folded lines 1-3")
        self.assertEqual(self.doc.folds.visible_rows, [0, 4, 5, 6, 7, 8])

        self.assertTrue(self.editor.toggle_fold_at_row(0))
        self.assertEqual(drain_status(self.editor), "Unfolded lines 1-3")
        self.assertEqual(self.doc.folds.visible_rows, list(range(9)))

        self.assertFalse(self.editor.toggle_fold_at_row(1))

    def test_navigation_skips_hidden_rows(self):
        self.editor.toggle_fold_at_row(0)
        self.assertEqual(self.editor.row_at_screen_line(1), 4)
        self.assertIsNone(self.editor.row_at_screen_line(6))

        self.editor.move_cursor_vertical(1)
        self.assertEqual(self.doc.buffer.cursor_row, 4)
        self.editor.move_cursor_vertical(-1)
        self.assertEqual(self.doc.buffer.cursor_row, 0)

    def test_paging_in_visible_space(self):
        self.editor.toggle_fold_at_row(0)
        self.editor.page(1, page_height=3)
        self.assertEqual(self.doc.scroll_row, 2)
        self.assertEqual(self.doc.buffer.cursor_row, 5)
        self.editor.page(1, page_height=50)
        self.assertEqual(self.doc.scroll_row, 5)
        self.assertEqual(self.doc.buffer.cursor_row, 8)
        self.editor.page(-1, page_height=50)
        self.assertEqual(self.doc.scroll_row, 0)
        self.assertEqual(self.doc.buffer.cursor_row, 0)

    def test_ensure_cursor_visible(self):
        self.editor.set_cursor(self.doc, 8, 0)
        self.editor.ensure_cursor_visible(height=3)
        self.assertEqual(self.doc.scroll_row, 6)
        self.editor.set_cursor(self.doc, 0, 0)
        self.editor.ensure_cursor_visible(height=3)
        self.assertEqual(self.doc.scroll_row, 0)

    def test_set_cursor_reveals_hidden_row(self):
        self.editor.toggle_fold_at_row(0)
        self.editor.set_cursor(self.doc, 2, 4)
        self.assertEqual(self.doc.buffer.cursor, (2, 4))
        self.assertTrue(self.doc.folds.is_visible(2))
        self.assertEqual(self.doc.folds.folded_starts, set())

    def test_fold_and_unfold_current_block(self):
        self.editor.set_cursor(self.doc, 6, 2)
        self.assertTrue(self.editor.fold_current_block())
        self.assertEqual(drain_status(self.editor), "Folded lines 6-7")
        self.assertEqual(self.doc.buffer.cursor, (5, 2))

        self.assertTrue(self.editor.unfold_current_block())
        self.assertEqual(drain_status(self.editor), "Unfolded lines 6-7")
        self.assertFalse(self.editor.unfold_current_block())
        self.assertEqual(drain_status(self.editor), "No folded block at cursor")

    def test_toggle_fold_at_cursor(self):
        self.assertTrue(self.editor.toggle_fold_at_cursor())
        self.assertEqual(drain_status(self.editor), "Folded lines 1-3")
        self.assertTrue(self.editor.toggle_fold_at_cursor())
        self.assertEqual(drain_status(self.editor), "Unfolded lines 1-3")

    def test_fold_all_and_unfold_all(self):
        self.assertEqual(self.editor.fold_all(), 4)
        self.assertEqual(drain_status(self.editor), "Folded 4 blocks")
        self.assertEqual(self.doc.folds.visible_rows, [0, 5])
        self.assertTrue(self.doc.folds.is_visible(self.doc.buffer.cursor_row))

        self.editor.toggle_fold_all()
        self.assertEqual(drain_status(self.editor), "Unfolded all blocks")
        self.assertFalse(self.editor.unfold_all())
        self.assertEqual(drain_status(self.editor), "No folded blocks")

    def test_no_foldable_block(self):
        self.open("notes.txt", "a\nb")
        self.assertFalse(self.editor.fold_current_block())
        self.assertEqual(drain_status(self.editor), "No foldable block at cursor")
        self.assertEqual(self.editor.fold_all(), 0)
        self.assertEqual(drain_status(self.editor), "No foldable blocks")


if __name__ == "__main__":
    unittest.main()
