# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Language-server transport and session.

One reader thread owns the server's stdout, decodes every framed JSON-RPC
message and pushes it onto a single `queue.Queue`, so notifications and
responses reach the main loop in the order the server sent them. Writes to
stdin are serialized under a lock.
"""

import enum
import json
import logging
import os
import queue
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, List, Optional, Union

from pygls.uris import from_fs_path, to_fs_path

from sway_ide import __version__

logger = logging.getLogger(__name__)

_CONTENT_LENGTH_RE = re.compile(rb"^Content-Length:\s*(\d+)\s*$", re.IGNORECASE)


class LspError(Exception):
    """Base class for language-server failures."""


class LspSpawnError(LspError):
    """The server binary could not be started."""


class LspInitializeError(LspError):
    """The initialize handshake failed or timed out."""


class LspTransportError(LspError):
    """Writing to the server failed (broken pipe, closed stream)."""


class LspProtocolError(LspError):
    """A frame could not be decoded."""


class LspState(enum.Enum):
    UNSTARTED = "unstarted"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class Notification:
    method: str
    params: Any = None


@dataclass(frozen=True)
class Response:
    id: int
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        """True for an error object, or a result shaped like one (``code`` + ``message``)."""
        if self.error is not None:
            return True
        return isinstance(self.result, dict) and "code" in self.result and "message" in self.result

    @property
    def error_message(self) -> str:
        source = self.error if self.error is not None else self.result
        if isinstance(source, dict):
            return str(source.get("message", "unknown error"))
        return "unknown error"


Inbound = Union[Notification, Response]


def path_to_uri(path: str) -> Optional[str]:
    """``file://`` URI of an absolute filesystem path."""
    return from_fs_path(os.path.abspath(path))


def uri_to_path(uri: str) -> Optional[str]:
    """Filesystem path of a ``file://`` URI; None for other schemes."""
    if not isinstance(uri, str) or not uri.startswith("file:"):
        return None
    return to_fs_path(uri)


def encode_message(payload: Dict[str, Any]) -> bytes:
    """Frames a JSON-RPC payload with its ``Content-Length`` header."""
    body = json.dumps(payload).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


def read_message(stream: BinaryIO) -> Optional[Dict[str, Any]]:
    """
    Reads one framed message from `stream`.

    Header lines are read up to the blank separator line, then exactly
    ``Content-Length`` bytes of body are read and parsed as JSON.

    Args:
        stream: A binary, blocking stream (the server's stdout).

    Returns:
        Optional[dict]: The decoded message, or None at end of stream
        (including a body truncated by EOF).

    Raises:
        LspProtocolError: The header had no usable ``Content-Length`` or the
            body was not valid JSON. The frame has been consumed, so the
            caller can keep reading.
    """
    # --- Step 1: header block ---
    content_length: Optional[int] = None
    while True:
        line = stream.readline()
        if not line:
            return None
        stripped = line.strip()
        if not stripped:
            break
        match = _CONTENT_LENGTH_RE.match(stripped)
        if match:
            content_length = int(match.group(1))

    if not content_length:
        raise LspProtocolError("missing or zero Content-Length header")

    # --- Step 2: body, read in a loop since read(n) may return short ---
    body = b""
    remaining = content_length
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            logger.error(f"LSP Reader: EOF while reading body, {remaining} bytes missing.")
            return None
        body += chunk
        remaining -= len(chunk)

    # --- Step 3: decode ---
    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LspProtocolError(f"bad JSON body: {exc}") from exc
    if not isinstance(message, dict):
        raise LspProtocolError("JSON body is not an object")
    return message


def classify_message(message: Dict[str, Any]) -> Optional[Inbound]:
    """Turns a decoded message into a Notification or Response; None if it is neither."""
    method = message.get("method")
    if isinstance(method, str):
        return Notification(method, message.get("params"))
    msg_id = message.get("id")
    if isinstance(msg_id, int) and not isinstance(msg_id, bool):
        return Response(msg_id, message.get("result"), message.get("error"))
    return None


def lsp_reader_loop(stream: BinaryIO, inbound_q: "queue.Queue[Inbound]") -> None:
    """
    Pumps framed messages from `stream` into `inbound_q` until end of stream.

    Malformed frames are logged and skipped; EOF or a closed stream ends the
    loop silently.
    """
    while True:
        try:
            message = read_message(stream)
        except LspProtocolError as exc:
            logger.warning(f"LSP Reader: skipping malformed frame: {exc}")
            continue
        except (OSError, ValueError) as exc:
            logger.info(f"LSP Reader: stream closed ({exc}). Exiting.")
            return
        if message is None:
            logger.info("LSP Reader: EOF reached. Exiting.")
            return

        inbound = classify_message(message)
        if inbound is None:
            logger.debug(f"LSP Reader: ignoring message without id or method: {str(message)[:200]}")
            continue
        logger.debug(
            f"LSP RECV <- ID: {message.get('id', 'N/A')}, Method: {message.get('method', 'N/A')}, "
            f"Result/Error: {str(message.get('result', message.get('error', 'N/A')))[:200]}"
        )
        inbound_q.put(inbound)


class LspClient:
    """
    One language-server session over a subprocess's stdin/stdout.

    Lifecycle: ``UNSTARTED -> INITIALIZING -> READY -> CLOSED``, or
    ``FAILED`` when spawning, the handshake or a write goes wrong.

    Attributes:
        command (List[str]): Server command line.
        root (str): Workspace root directory.
        init_timeout (float): Seconds to wait for the initialize response.
        state (LspState): Current lifecycle state.
        inbound_q (queue.Queue): Notifications and responses, in server order.
        server_capabilities (dict): Capabilities returned by ``initialize``.
    """

    def __init__(self, command: List[str], root: str, init_timeout: float = 3.0):
        self.command = list(command)
        self.root = os.path.abspath(root)
        self.init_timeout = init_timeout
        self.state = LspState.UNSTARTED
        self.process: Optional[subprocess.Popen] = None
        self.inbound_q: "queue.Queue[Inbound]" = queue.Queue()
        self.server_capabilities: Dict[str, Any] = {}
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()
        self._next_id = 1

    @property
    def is_ready(self) -> bool:
        return self.state is LspState.READY

    def start(self) -> None:
        """
        Spawns the server, starts the reader thread and performs the handshake.

        Raises:
            LspSpawnError: The command could not be executed.
            LspInitializeError: No valid initialize response arrived in time.
        """
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                cwd=self.root,
            )
        except OSError as exc:
            self.state = LspState.FAILED
            raise LspSpawnError(f"cannot start {self.command[0]!r}: {exc}") from exc
        logger.info(f"LSP server {self.command[0]!r} started with PID {self.process.pid}")

        self.state = LspState.INITIALIZING
        self._reader = threading.Thread(
            target=lsp_reader_loop, args=(self.process.stdout, self.inbound_q),
            name="LSP-stdout", daemon=True,
        )
        self._reader.start()

        root_uri = path_to_uri(self.root)
        params = {
            "processId": os.getpid(),
            "rootUri": root_uri,
            "clientInfo": {"name": "sway-ide", "version": __version__},
            "capabilities": {
                "textDocument": {
                    "publishDiagnostics": {"relatedInformation": False},
                    "completion": {"completionItem": {"snippetSupport": False}},
                    "definition": {"linkSupport": True},
                }
            },
            "workspaceFolders": [{"uri": root_uri, "name": os.path.basename(self.root) or "workspace"}],
        }
        try:
            init_id = self.send_request("initialize", params)
            response = self._wait_for_response(init_id, self.init_timeout)
            if response.is_error:
                raise LspInitializeError(f"initialize failed: {response.error_message}")
            if isinstance(response.result, dict):
                self.server_capabilities = response.result.get("capabilities") or {}
            self.send_notification("initialized", {})
        except LspError as exc:
            logger.error(f"LSP handshake failed: {exc}")
            self._terminate()
            self.state = LspState.FAILED
            if isinstance(exc, LspInitializeError):
                raise
            raise LspInitializeError(str(exc)) from exc

        self.state = LspState.READY
        logger.info("LSP session ready.")

    def _wait_for_response(self, request_id: int, timeout: float) -> Response:
        """Blocks on the inbound queue until `request_id` is answered; other messages are discarded."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LspInitializeError("initialize response missing")
            try:
                inbound = self.inbound_q.get(timeout=remaining)
            except queue.Empty:
                raise LspInitializeError("initialize response missing") from None
            if isinstance(inbound, Response) and inbound.id == request_id:
                return inbound
            logger.debug(f"LSP: discarding message received during handshake: {inbound}")

    def _write(self, payload: Dict[str, Any]) -> None:
        proc = self.process
        if proc is None or proc.stdin is None or self.state in (LspState.CLOSED, LspState.FAILED):
            raise LspTransportError("no running language server")
        data = encode_message(payload)
        logger.debug(
            f"LSP SEND -> ID: {payload.get('id', 'N/A')}, Method: {payload.get('method')}, {len(data)} bytes"
        )
        with self._write_lock:
            try:
                proc.stdin.write(data)
                proc.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                self.state = LspState.FAILED
                raise LspTransportError(f"write to language server failed: {exc}") from exc

    def send_request(self, method: str, params: Any = None) -> int:
        """Sends a request and returns its id."""
        with self._write_lock:
            request_id = self._next_id
            self._next_id += 1
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params
        self._write(payload)
        return request_id

    def send_notification(self, method: str, params: Any = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        self._write(payload)

    def poll(self) -> List[Inbound]:
        """Drains the inbound queue without blocking."""
        messages: List[Inbound] = []
        try:
            while True:
                messages.append(self.inbound_q.get_nowait())
        except queue.Empty:
            pass
        return messages

    def close(self) -> None:
        """Best-effort shutdown; never raises and never waits for replies."""
        if self.state is LspState.READY:
            try:
                self.send_request("shutdown")
                self.send_notification("exit")
            except LspError as exc:
                logger.debug(f"LSP: shutdown notification not delivered: {exc}")
        self._terminate()
        self.state = LspState.CLOSED

    def _terminate(self) -> None:
        proc = self.process
        if proc is not None:
            try:
                if proc.stdin:
                    proc.stdin.close()
            except OSError:
                pass
            if proc.poll() is None:
                try:
                    proc.terminate()
                    proc.wait(timeout=1.0)
                except (subprocess.TimeoutExpired, OSError):
                    if proc.poll() is None:
                        proc.kill()
        if self._reader and self._reader.is_alive():
            self._reader.join(timeout=0.5)
        self.process = None
