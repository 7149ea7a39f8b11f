# -*- coding: utf-8 -*-
"""Shared helpers for the test modules."""

import os
import sys

from sway_ide.config import deep_merge, load_config
from sway_ide.editor import SwayIde

FAKE_SERVER = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_lsp_server.py")


def make_config(tmpdir, **sections):
    """Defaults with the language server disabled and autosave under `tmpdir`."""
    config = load_config(os.path.join(tmpdir, "no-such-config.toml"))
    overrides = {
        "lsp": {"enabled": False},
        "sync": {"autosave_dir": os.path.join(tmpdir, "autosave"), "fs_debounce_ms": 0},
    }
    return deep_merge(deep_merge(config, overrides), sections)


def fake_server_config(tmpdir):
    """Runs tests/fake_lsp_server.py as the rust server; FAKE_LSP_MODE selects its behaviour."""
    return make_config(tmpdir, lsp={
        "enabled": True,
        "language": "rust",
        "command": [sys.executable, FAKE_SERVER],
        "init_timeout": 5.0,
    })


def make_editor(tmpdir, config=None):
    return SwayIde(root=tmpdir, config=config or make_config(tmpdir), start_watcher=False)


def write_file(path, text):
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)
    return path


def read_file(path):
    with open(path, "r", encoding="utf-8", newline="") as fh:
        return fh.read()


def drain_status(editor):
    """Processes queued messages and returns the status line."""
    editor._process_all_queues()
    return editor.status_message
