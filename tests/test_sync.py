import os
import tempfile
import unittest
from unittest.mock import patch

from sway_ide.sync import ConflictChoice, RecoveryChoice, autosave_name

from support import drain_status, make_editor, read_file, write_file


class TestAutosaveName(unittest.TestCase):

    def test_stable_hex_name(self):
        name = autosave_name("/tmp/project/src/main.rs")
        self.assertRegex(name, r"^[0-9a-f]{16}\.autosave$")
        self.assertEqual(name, autosave_name("/tmp/project/src/main.rs"))
        self.assertNotEqual(name, autosave_name("/tmp/project/src/lib.rs"))


class SyncTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.root = self.tmpdir.name
        self.path = write_file(os.path.join(self.root, "main.rs"), "fn main() {}\n")
        self.editor = make_editor(self.root)
        self.addCleanup(self.editor.shutdown)
        self.sync = self.editor.sync

    def open(self):
        return self.editor.open_file(self.path)

    def edit(self, doc, text):
        doc.buffer.move_to(0, 0)
        doc.buffer.insert_text(text)
        self.editor.on_content_changed(doc)


class TestExternalChanges(SyncTestCase):

    def test_clean_buffer_follows_disk(self):
        doc = self.open()
        write_file(self.path, "fn main() {\n    run();\n}\n")
        self.sync.reconcile(doc)
        self.assertEqual(doc.text, "fn main() {\n    run();\n}\n")
        self.assertFalse(doc.dirty)
        self.assertEqual(doc.disk_snapshot, doc.text)
        self.assertEqual(drain_status(self.editor), "Reloaded main.rs from disk")

    def test_unchanged_disk_is_a_no_op(self):
        doc = self.open()
        self.assertFalse(self.sync.reload_if_pristine(doc))

    def test_untouched_crlf_file_is_not_reloaded(self):
        path = write_file(os.path.join(self.root, "win.rs"), "fn a() {\r\n}\r\n")
        doc = self.editor.open_file(path)
        drain_status(self.editor)
        with patch.object(self.editor.lsp, "document_changed") as document_changed:
            self.assertFalse(self.sync.reload_if_pristine(doc))
            self.sync.reconcile(doc)
            document_changed.assert_not_called()
        self.assertEqual(doc.buffer.lines, ["fn a() {", "}", ""])
        self.assertNotEqual(drain_status(self.editor), "Reloaded win.rs from disk")

    def test_save_without_trailing_newline_does_not_trigger_reload(self):
        path = write_file(os.path.join(self.root, "tail.rs"), "fn a() {}")
        doc = self.editor.open_file(path)
        doc.buffer.insert_text("x")
        self.editor.on_content_changed(doc)
        self.assertTrue(self.editor.save_file(doc))
        self.assertEqual(read_file(path), "xfn a() {}\n")

        self.assertFalse(self.sync.reload_if_pristine(doc))
        self.sync.reconcile(doc)
        self.assertEqual(doc.buffer.lines, ["xfn a() {}"])
        self.assertFalse(doc.dirty)

    def test_same_lines_with_different_line_endings_is_not_a_change(self):
        doc = self.open()
        write_file(self.path, "fn main() {}\r\n")
        self.assertFalse(self.sync.reload_if_pristine(doc))
        self.assertEqual(doc.disk_snapshot, "fn main() {}\r\n")
        self.assertEqual(doc.buffer.lines, ["fn main() {}", ""])

    def test_conflict_only_when_all_three_differ(self):
        doc = self.open()
        self.edit(doc, "// local\n")

        # Disk equals the snapshot: nothing changed externally.
        self.assertFalse(self.sync.maybe_flag_external_conflict(doc, doc.disk_snapshot))
        # Disk equals the buffer: the edits converged.
        self.assertFalse(self.sync.maybe_flag_external_conflict(doc, doc.text))
        self.assertFalse(doc.conflict_pending)

        self.assertTrue(self.sync.maybe_flag_external_conflict(doc, "// remote\n"))
        self.assertTrue(doc.conflict_pending)
        self.assertEqual(self.editor.pending_prompt(), "conflict")
        # A second signal while the prompt is open does not re-raise it.
        self.assertFalse(self.sync.maybe_flag_external_conflict(doc, "// remote 2\n"))
        self.assertEqual(doc.conflict_text, "// remote\n")

    def test_dirty_buffer_is_never_reloaded_silently(self):
        doc = self.open()
        self.edit(doc, "// local\n")
        local = doc.text
        write_file(self.path, "// remote\n")
        self.sync.reconcile(doc)
        self.assertEqual(doc.text, local)
        self.assertTrue(doc.conflict_pending)

    def test_resolve_reload(self):
        doc = self.open()
        self.edit(doc, "// local\n")
        self.sync.write_autosave(doc)
        write_file(self.path, "// remote\n")
        self.sync.reconcile(doc)

        self.editor.resolve_conflict(ConflictChoice.RELOAD)
        self.assertEqual(doc.text, "// remote\n")
        self.assertFalse(doc.dirty)
        self.assertFalse(doc.conflict_pending)
        self.assertEqual(doc.disk_snapshot, "// remote\n")
        self.assertFalse(os.path.exists(self.sync.autosave_path_for(doc.path)))

    def test_resolve_keep_and_defer_update_snapshot(self):
        for choice, message in ((ConflictChoice.KEEP, "Keeping local edits"),
                                (ConflictChoice.DEFER, "Conflict deferred")):
            with self.subTest(choice=choice):
                doc = self.open()
                self.edit(doc, "// local\n")
                local = doc.text
                remote = f"// remote {choice.value}\n"
                write_file(self.path, remote)
                self.sync.reconcile(doc)

                self.editor.resolve_conflict(choice)
                self.assertEqual(doc.text, local)
                self.assertTrue(doc.dirty)
                self.assertEqual(doc.disk_snapshot, remote)
                self.assertIsNone(self.editor.pending_prompt())
                self.assertEqual(drain_status(self.editor), message)
                # The same disk text no longer counts as a new conflict.
                self.sync.reconcile(doc)
                self.assertFalse(doc.conflict_pending)
                self.editor.close_document(doc)

    def test_removed_clean_file_closes_document(self):
        doc = self.open()
        os.remove(self.path)
        self.sync.reconcile(doc)
        self.assertEqual(self.editor.documents, [])
        self.assertEqual(drain_status(self.editor), "Open file was removed externally")

    def test_removed_dirty_file_keeps_buffer(self):
        doc = self.open()
        self.edit(doc, "// keep me\n")
        os.remove(self.path)
        self.sync.reconcile(doc)
        self.assertEqual(self.editor.documents, [doc])
        self.assertTrue(doc.text.startswith("// keep me"))
        self.assertEqual(drain_status(self.editor), "Open file was removed externally (unsaved buffer preserved)")

    def test_debounce_window(self):
        doc = self.open()
        self.sync.debounce = 0.12
        self.sync._last_refresh = 100.0
        write_file(self.path, "fn changed() {}\n")

        self.sync.note_fs_change()
        self.assertFalse(self.sync.poll_fs(now=100.05))
        self.assertEqual(doc.text, "fn main() {}\n")
        self.assertTrue(self.sync.poll_fs(now=100.2))
        self.assertEqual(doc.text, "fn changed() {}\n")
        self.assertFalse(self.sync.poll_fs(now=100.5))

    def test_watcher_signal_reaches_reconcile(self):
        doc = self.open()
        write_file(self.path, "fn from_watcher() {}\n")
        self.editor.watcher.events.put("changed")
        with patch.object(self.sync, "reconcile", wraps=self.sync.reconcile) as reconcile:
            self.assertTrue(self.editor.tick(now=1_000_000.0))
            reconcile.assert_called_once_with(doc)
        self.assertEqual(doc.text, "fn from_watcher() {}\n")


class TestAutosaveAndRecovery(SyncTestCase):

    def test_periodic_autosave_writes_dirty_buffers_only(self):
        doc = self.open()
        self.sync._last_autosave = 0.0
        self.assertEqual(self.sync.poll_autosave(now=10.0), 0)

        self.edit(doc, "// draft\n")
        self.assertEqual(self.sync.poll_autosave(now=11.0), 0)
        self.assertEqual(self.sync.poll_autosave(now=20.0), 1)
        target = self.sync.autosave_path_for(doc.path)
        self.assertEqual(os.path.basename(target), autosave_name(self.path))
        self.assertEqual(read_file(target), doc.text)

    def test_save_clears_autosave(self):
        doc = self.open()
        self.edit(doc, "// draft\n")
        self.sync.write_autosave(doc)
        self.assertTrue(self.editor.save_file(doc))
        self.assertFalse(os.path.exists(self.sync.autosave_path_for(doc.path)))
        self.assertEqual(read_file(self.path), "// draft\nfn main() {}\n")

    def write_autosave_file(self, text):
        os.makedirs(self.sync.autosave_dir, exist_ok=True)
        return write_file(self.sync.autosave_path_for(self.path), text)

    def test_matching_autosave_raises_no_prompt(self):
        self.write_autosave_file("fn main() {}\n")
        doc = self.open()
        self.assertFalse(doc.recovery_pending)

    def test_recover(self):
        self.write_autosave_file("fn recovered() {}\n")
        doc = self.open()
        self.assertEqual(self.editor.pending_prompt(), "recovery")

        self.editor.resolve_recovery(RecoveryChoice.RECOVER)
        self.assertEqual(doc.text, "fn recovered() {}\n")
        self.assertTrue(doc.dirty)
        self.assertEqual(doc.disk_snapshot, "fn main() {}\n")
        self.assertIsNone(self.editor.pending_prompt())
        self.assertEqual(drain_status(self.editor), "Recovered autosave content")

    def test_discard(self):
        autosave = self.write_autosave_file("fn recovered() {}\n")
        doc = self.open()
        self.editor.resolve_recovery(RecoveryChoice.DISCARD)
        self.assertEqual(doc.text, "fn main() {}\n")
        self.assertFalse(doc.dirty)
        self.assertFalse(os.path.exists(autosave))
        self.assertEqual(drain_status(self.editor), "Discarded autosave")

    def test_cancel_keeps_side_file(self):
        autosave = self.write_autosave_file("fn recovered() {}\n")
        doc = self.open()
        self.editor.resolve_recovery(RecoveryChoice.CANCEL)
        self.assertEqual(doc.text, "fn main() {}\n")
        self.assertFalse(doc.recovery_pending)
        self.assertTrue(os.path.exists(autosave))
        self.assertEqual(drain_status(self.editor), "Recovery canceled")

    def test_recovery_prompt_blocks_conflict_prompt(self):
        self.write_autosave_file("fn recovered() {}\n")
        doc = self.open()
        doc.dirty = True
        self.assertFalse(self.sync.maybe_flag_external_conflict(doc, "fn remote() {}\n"))
        self.assertEqual(self.editor.pending_prompt(), "recovery")


if __name__ == "__main__":
    unittest.main()
