# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
import logging.handlers
import os
import sys
import tempfile
from typing import Any, Dict, Optional

import toml

APP_DIR_NAME = "sway-ide"
CONFIG_FILE_NAME = "config.toml"

logger = logging.getLogger(__name__)


# --- Dictionary Deep Merge Utility ---
def deep_merge(base: Dict[Any, Any], override: Dict[Any, Any]) -> Dict[Any, Any]:
    """
    Recursively merges the `override` dictionary into the `base` dictionary.

    If a key exists in both dictionaries and both values are dictionaries,
    the merge is performed recursively. Otherwise, the value from `override`
    replaces the value from `base`. Neither input is modified.

    Args:
        base (Dict[Any, Any]): The base dictionary.
        override (Dict[Any, Any]): The dictionary whose values win.

    Returns:
        Dict[Any, Any]: A new dictionary containing the merged result.

    Example:
        >>> deep_merge({'lsp': {'enabled': True, 'init_timeout': 3.0}},
        ...            {'lsp': {'init_timeout': 5.0}})
        {'lsp': {'enabled': True, 'init_timeout': 5.0}}
    """
    result = dict(base)
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def config_dir() -> str:
    """
    Returns the per-user configuration directory of the editor.

    Resolution order: ``$XDG_CONFIG_HOME``, then ``%APPDATA%``, then
    ``~/.config``; the application directory name is appended to whichever
    base is found first. The directory is not created here.
    """
    base = os.environ.get("XDG_CONFIG_HOME") or os.environ.get("APPDATA")
    if not base:
        base = os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, APP_DIR_NAME)


def autosave_dir(config: Optional[Dict[str, Any]] = None) -> str:
    """Directory holding crash-recovery side files (``[sync] autosave_dir`` wins)."""
    configured = (config or {}).get("sync", {}).get("autosave_dir")
    if configured:
        return os.path.expanduser(str(configured))
    return os.path.join(config_dir(), "autosave")


# --- Logging Setup Function ---
def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configures application-wide logging handlers and log levels.

    Up to three independent handlers are attached to the root logger:

    1. **File handler** – rotating *sway-ide.log* capturing everything from
       the configured `file_level` (default **DEBUG**) upward.
    2. **Console handler** – optional `stderr` output whose threshold is
       `console_level` (default **WARNING**).
    3. **Error-file handler** – optional rotating *error.log* that stores
       only **ERROR** and **CRITICAL** events.

    Existing handlers on the root logger are cleared first, so calling the
    function twice (e.g. in unit tests) does not duplicate records.

    Args:
        config (dict | None): Application configuration. Only the
            ``["logging"]`` section is consulted; recognised keys are
            ``file_level``, ``console_level``, ``log_to_console``,
            ``separate_error_log`` and ``log_file``.

    Notes:
        The function never raises; I/O or permission errors are reported to
        *stderr* and logging continues with a best-effort configuration.
    """
    if config is None:
        config = {}
    logging_config = config.get("logging", {})

    log_filename = os.path.expanduser(str(logging_config.get("log_file") or "sway-ide.log"))
    log_file_level_str = str(logging_config.get("file_level", "DEBUG")).upper()
    log_file_level = getattr(logging, log_file_level_str, logging.DEBUG)

    log_dir = os.path.dirname(log_filename)
    if log_dir and not os.path.exists(log_dir):
        try:
            os.makedirs(log_dir)
        except OSError as e_mkdir:
            print(f"Error creating log directory '{log_dir}': {e_mkdir}", file=sys.stderr)
            log_filename = os.path.join(tempfile.gettempdir(), "sway_ide.log")
            print(f"Logging to temporary file: '{log_filename}'", file=sys.stderr)

    file_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)-8s - %(name)-22s - %(message)s (%(filename)s:%(lineno)d)"
    )
    file_handler = None
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_filename, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(log_file_level)
    except OSError as e_fh:
        print(f"Error setting up file logger for '{log_filename}': {e_fh}. File logging may be impaired.",
              file=sys.stderr)

    # --- Console Handler ---
    console_handler = None
    if logging_config.get("log_to_console", True):
        console_level_str = str(logging_config.get("console_level", "WARNING")).upper()
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter("%(levelname)-8s - %(name)-12s - %(message)s"))
        console_handler.setLevel(getattr(logging, console_level_str, logging.WARNING))

    # --- Optional Separate Error Log File ---
    error_file_handler = None
    if logging_config.get("separate_error_log", False):
        error_log_filename = os.path.join(log_dir, "error.log") if log_dir else "error.log"
        try:
            error_file_handler = logging.handlers.RotatingFileHandler(
                error_log_filename, maxBytes=1 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
            error_file_handler.setFormatter(file_formatter)
            error_file_handler.setLevel(logging.ERROR)
        except OSError as e_efh:
            print(f"Error setting up separate error log '{error_log_filename}': {e_efh}.", file=sys.stderr)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    for handler in (file_handler, console_handler, error_file_handler):
        if handler:
            root_logger.addHandler(handler)
    root_logger.setLevel(log_file_level)

    logging.info("Logging setup complete. Root logger level: %s.", logging.getLevelName(root_logger.level))
    if file_handler:
        logging.info(f"File logging to '{log_filename}' at level: {logging.getLevelName(file_handler.level)}.")
    if console_handler:
        logging.info(f"Console logging to stderr at level: {logging.getLevelName(console_handler.level)}.")


def _default_config() -> Dict[str, Any]:
    return {
        "editor": {
            "tab_size": 4,
            "target_fps": 30,
        },
        "lsp": {
            "enabled": True,
            "language": "rust",
            "command": ["rust-analyzer"],
            "search_paths": ["~/.cargo/bin", "~/.local/bin"],
            "init_timeout": 3.0,
        },
        "sync": {
            "fs_debounce_ms": 120,
            "autosave_interval_ms": 2000,
            "watch_interval_ms": 250,
            "autosave_dir": "",
        },
        "completion": {
            "inline_ghost_min_prefix": 3,
            "max_server_items": 40,
            "max_fallback_items": 80,
        },
        "search": {
            "tool": "rg",
            "timeout": 10.0,
        },
        "logging": {
            "file_level": "DEBUG",
            "console_level": "WARNING",
            "log_to_console": False,
            "separate_error_log": False,
            "log_file": "",
        },
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads and merges the application configuration, applying safe defaults.

    Three tiers:
    1. Hard-coded minimal defaults so the editor starts in any environment.
    2. User settings from *config.toml* (explicit path, else the current
       working directory, else the per-user config directory) merged on top.
    3. A post-merge pass that restores any default section or key the user
       file removed or mistyped.

    All errors (missing file, TOML syntax errors, I/O issues) are logged and
    resolved by falling back to defaults, so the function never raises.

    Args:
        config_path (Optional[str]): Explicit path of the TOML file to read.

    Returns:
        dict: The merged configuration dictionary.

    Example:
        >>> load_config()["sync"]["fs_debounce_ms"]
        120
    """
    minimal_default = _default_config()

    if config_path is None:
        candidates = [CONFIG_FILE_NAME, os.path.join(config_dir(), CONFIG_FILE_NAME)]
        config_path = next((c for c in candidates if os.path.exists(c)), candidates[0])

    user_config: Dict[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                user_config = toml.loads(fh.read())
            logger.debug("Loaded user config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file %s vanished – using defaults.", config_path)
        except toml.TomlDecodeError as exc:
            logger.error("TOML parse error in %s: %s – using defaults.", config_path, exc)
        except OSError as exc:
            logger.error("Unexpected error reading %s: %s – using defaults.", config_path, exc)
    else:
        logger.info("Config file %s not found – using defaults.", config_path)

    final_config: Dict[str, Any] = deep_merge(minimal_default, user_config)

    # Ensure every default section/key exists even if the user file replaced a
    # section with a scalar.
    for section, default_val in minimal_default.items():
        if not isinstance(final_config.get(section), dict):
            final_config[section] = default_val
            continue
        for sub_key, sub_val in default_val.items():
            final_config[section].setdefault(sub_key, sub_val)

    logger.debug("Final configuration loaded successfully.")
    return final_config
