# -*- coding: utf-8 -*-
# Sway-IDE is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sway_ide.utils import safe_run

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchHit:
    path: str
    line: int  # 1-based, as printed by ripgrep
    text: str


def parse_rg_line(line: str) -> Optional[SearchHit]:
    """Parses one ``path:line:content`` line; None when it does not have that shape."""
    parts = line.split(":", 2)
    if len(parts) != 3:
        return None
    path, line_no, text = parts
    try:
        number = int(line_no)
    except ValueError:
        return None
    return SearchHit(path, number, text)


def search_project(root: str, query: str, tool: str = "rg",
                   timeout: Optional[float] = 10.0) -> Tuple[List[SearchHit], Optional[str]]:
    """
    Runs ripgrep over `root` and returns the hits.

    Returns:
        Tuple[List[SearchHit], Optional[str]]: The hits and an error message
        (None on success, including "no matches").
    """
    if not query:
        return [], "Empty search query"
    cmd = [tool, "--line-number", "--no-heading", "--color", "never", "--smart-case", query, root]
    result = safe_run(cmd, cwd=root, timeout=timeout)
    if result.returncode == 127:
        return [], f"{tool} (ripgrep) not found"
    # ripgrep exits 1 when nothing matched.
    if result.returncode not in (0, 1):
        stderr = (result.stderr or "").strip().splitlines()
        return [], f"Search failed: {stderr[0] if stderr else f'exit code {result.returncode}'}"
    hits = [hit for hit in map(parse_rg_line, result.stdout.splitlines()) if hit is not None]
    logger.debug(f"Search for {query!r} in '{root}': {len(hits)} hits")
    return hits, None
