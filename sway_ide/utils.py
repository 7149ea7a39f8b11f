# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
import subprocess
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


# --- Safe Subprocess Execution Utility ---
def safe_run(
        cmd: list[str],
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any
) -> subprocess.CompletedProcess:
    """
    Safely executes an external command and captures its output.

    This function wraps `subprocess.run()` with safe defaults:
    - Ensures text output with UTF-8 decoding and error replacement.
    - Captures both stdout and stderr.
    - Never raises: failures come back as a CompletedProcess with an error
      code (127 when the binary is missing, -9 on timeout, -1 otherwise).

    Args:
        cmd (list[str]): Command to execute, passed as a list of arguments.
        cwd (Optional[str], optional): Working directory for the subprocess.
        timeout (Optional[float], optional): Timeout in seconds.
        **kwargs (Any): Additional keyword arguments forwarded to `subprocess.run`.

    Returns:
        subprocess.CompletedProcess: Result with `returncode`, `stdout` and `stderr`.

    Example:
        >>> safe_run(["echo", "hello"]).stdout
        'hello\\n'
    """
    if "check" in kwargs:
        logger.warning("safe_run: 'check' passed in kwargs – caller is responsible for handling exceptions.")

    effective_kwargs = {
        "capture_output": True,
        "text": True,
        "check": False,
        "encoding": "utf-8",
        "errors": "replace",
        **kwargs,
    }
    if cwd is not None:
        effective_kwargs["cwd"] = cwd
    if timeout is not None:
        effective_kwargs["timeout"] = timeout

    try:
        return subprocess.run(cmd, **effective_kwargs)
    except FileNotFoundError as e:
        logger.error(f"safe_run: Command not found: {cmd[0]!r}")
        return subprocess.CompletedProcess(cmd, returncode=127, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired as e:
        logger.warning(f"safe_run: Command timed out after {timeout}s: {' '.join(cmd)}")
        return subprocess.CompletedProcess(
            cmd,
            returncode=-9,
            stdout=(e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else (e.stdout or "")),
            stderr="Process timed out.",
        )
    except OSError as e:
        logger.error(f"safe_run: OS error while running {cmd}: {e}", exc_info=True)
        return subprocess.CompletedProcess(cmd, returncode=-1, stdout="", stderr=str(e))


def text_to_lines(text: str) -> List[str]:
    """
    Splits document text into buffer lines.

    A trailing newline yields a final empty line, a trailing carriage return
    is dropped from every line, and empty text gives a single empty line.

    Example:
        >>> text_to_lines("a\\r\\nb\\n")
        ['a', 'b', '']
    """
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]


def lines_to_text(lines: List[str]) -> str:
    return "\n".join(lines)
