# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
from typing import Optional, Tuple

import chardet

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192
CHARDET_MIN_CONFIDENCE = 0.75


class BinaryFileError(ValueError):
    """Raised when a file looks binary and cannot be edited as text."""


def looks_binary(data: bytes) -> bool:
    return b"\x00" in data[:BINARY_SNIFF_BYTES]


def decode_bytes(data: bytes) -> Tuple[str, str]:
    """
    Decodes file content, returning the text and the encoding used.

    UTF-8 is tried first. Otherwise chardet's guess is used when it is
    confident enough, and UTF-8 with replacement characters is the last
    resort so that a document always opens.
    """
    try:
        return data.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        pass

    guess = chardet.detect(data[:1024 * 20])
    encoding_guess: Optional[str] = guess.get("encoding")
    confidence = guess.get("confidence") or 0.0
    logger.debug(f"Chardet detected encoding '{encoding_guess}' with confidence {confidence:.2f}.")
    if encoding_guess and confidence >= CHARDET_MIN_CONFIDENCE:
        try:
            return data.decode(encoding_guess), encoding_guess
        except (UnicodeDecodeError, LookupError) as exc:
            logger.warning(f"Decoding with detected encoding '{encoding_guess}' failed: {exc}")
    return data.decode("utf-8", errors="replace"), "utf-8"


def read_text_file(path: str) -> Tuple[str, str]:
    """
    Reads a text file from disk.

    Returns:
        Tuple[str, str]: The decoded text and its encoding.

    Raises:
        BinaryFileError: The file contains NUL bytes near its start.
        OSError: The file cannot be read.
    """
    with open(path, "rb") as fh:
        data = fh.read()
    if looks_binary(data):
        raise BinaryFileError(f"'{path}' looks like a binary file")
    return decode_bytes(data)


def read_disk_text(path: str) -> Optional[str]:
    """Current disk text of `path`, or None when it is missing, unreadable or binary."""
    try:
        return read_text_file(path)[0]
    except (OSError, BinaryFileError) as exc:
        logger.debug(f"read_disk_text: cannot read '{path}': {exc}")
        return None


def write_text_file(path: str, text: str, encoding: str = "utf-8") -> None:
    """Writes `text` verbatim (no newline translation). Raises OSError on failure."""
    with open(path, "w", encoding=encoding, errors="replace", newline="") as fh:
        fh.write(text)
