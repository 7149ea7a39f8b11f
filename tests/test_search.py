import os
import subprocess
import tempfile
import unittest
from unittest.mock import patch

from sway_ide.search import SearchHit, parse_rg_line, search_project
from sway_ide.utils import safe_run

from support import drain_status, make_editor, write_file


def completed(returncode, stdout="", stderr=""):
    return subprocess.CompletedProcess(["rg"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseRgLine(unittest.TestCase):

    def test_valid_line(self):
        self.assertEqual(parse_rg_line("src/main.rs:12:    let x = a::b;"),
                         SearchHit("src/main.rs", 12, "    let x = a::b;"))

    def test_invalid_lines(self):
        self.assertIsNone(parse_rg_line("no separators"))
        self.assertIsNone(parse_rg_line("file:abc:text"))


class TestSearchProject(unittest.TestCase):

    @patch("sway_ide.search.safe_run")
    def test_hits(self, mock_run):
        mock_run.return_value = completed(0, "a.rs:1:fn main() {}\nb.rs:3:main();\n")
        hits, error = search_project("/proj", "main")
        self.assertIsNone(error)
        self.assertEqual([(h.path, h.line) for h in hits], [("a.rs", 1), ("b.rs", 3)])
        cmd = mock_run.call_args.args[0]
        self.assertEqual(cmd[0], "rg")
        self.assertIn("main", cmd)

    @patch("sway_ide.search.safe_run")
    def test_no_matches_is_not_an_error(self, mock_run):
        mock_run.return_value = completed(1)
        self.assertEqual(search_project("/proj", "zzz"), ([], None))

    @patch("sway_ide.search.safe_run")
    def test_missing_tool(self, mock_run):
        mock_run.return_value = completed(127, stderr="not found")
        self.assertEqual(search_project("/proj", "x"), ([], "rg (ripgrep) not found"))

    @patch("sway_ide.search.safe_run")
    def test_tool_failure(self, mock_run):
        mock_run.return_value = completed(2, stderr="regex parse error\nmore")
        self.assertEqual(search_project("/proj", "("), ([], "Search failed: regex parse error"))

    def test_empty_query(self):
        self.assertEqual(search_project("/proj", ""), ([], "Empty search query"))


class TestSafeRun(unittest.TestCase):

    def test_missing_binary_returns_127(self):
        result = safe_run(["definitely-not-a-real-binary-xyz"])
        self.assertEqual(result.returncode, 127)

    @patch("subprocess.run")
    def test_timeout_returns_minus_nine(self, mock_subprocess):
        mock_subprocess.side_effect = subprocess.TimeoutExpired(cmd=["rg"], timeout=3)
        result = safe_run(["rg", "x"], timeout=3)
        self.assertEqual(result.returncode, -9)
        self.assertEqual(result.stderr, "Process timed out.")


class TestEditorSearch(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.root = self.tmpdir.name
        write_file(os.path.join(self.root, "a.rs"), "fn a() {}\nfn target() {}\n")
        self.editor = make_editor(self.root)
        self.addCleanup(self.editor.shutdown)

    @patch("sway_ide.search.safe_run")
    def test_search_and_open_hit(self, mock_run):
        mock_run.return_value = completed(0, "a.rs:2:fn target() {}\n")
        hits = self.editor.search_in_project("target")
        self.assertEqual(len(hits), 1)
        self.assertEqual(drain_status(self.editor), "1 matches for 'target'")

        self.assertTrue(self.editor.open_search_hit(hits[0]))
        doc = self.editor.active_document()
        self.assertEqual(doc.name, "a.rs")
        self.assertEqual(doc.buffer.cursor, (1, 0))

    @patch("sway_ide.search.safe_run")
    def test_search_error_reaches_status(self, mock_run):
        mock_run.return_value = completed(127)
        self.assertEqual(self.editor.search_in_project("x"), [])
        self.assertEqual(drain_status(self.editor), "rg (ripgrep) not found")


if __name__ == "__main__":
    unittest.main()
