"""Section-aware editing of markdown documents held as a list of lines.

Every function here works on ``lines``, a whole document split on its line
ending, so a trailing newline shows up as a final empty string. Nothing
here raises; "not found" is ``-1`` or the header index itself.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .settings import Settings
    from .store import DocumentStore

logger = logging.getLogger(__name__)


def heading_depth(line: str) -> int:
    """Number of leading ``#`` after leading whitespace; 0 for non-headings."""
    trimmed = line.lstrip()
    return len(trimmed) - len(trimmed.lstrip("#"))


def locate_or_create_section(
    lines: list[str],
    header: str,
    settings: Settings,
    start: int = 0,
    end: int | None = None,
) -> int:
    """Index of ``header`` within ``[start, end)``, inserting it at ``end`` if absent."""
    end = len(lines) if end is None else min(end, len(lines))
    for i in range(start, end):
        if lines[i].rstrip() == header:
            return i

    if lines == [""]:
        lines[0] = header
        return 0
    if settings.blank_line_after_header and end > 0 and lines[end - 1] != "":
        lines[end:end] = ["", header]
        return end + 1
    lines.insert(end, header)
    return end


def next_sibling_index(lines: list[str], header_index: int) -> int:
    """Index of the next heading at the same or a higher level, else ``len(lines)``."""
    depth = heading_depth(lines[header_index])
    for i in range(header_index + 1, len(lines)):
        d = heading_depth(lines[i])
        if d and (depth == 0 or d <= depth):
            return i
    return len(lines)


def locate_heading_path(lines: list[str], headings: list[str], settings: Settings) -> int:
    """Locate (creating as needed) a nested chain of headings.

    Each heading is searched for only inside the section of the one before
    it. Returns the index of the last heading in the chain.
    """
    path = list(headings) or [settings.tasks_header]
    start, end = 0, len(lines)
    for heading in path:
        start = locate_or_create_section(lines, heading, settings, start, end)
        end = next_sibling_index(lines, start)
    return start


def last_content_line_of(lines: list[str], header_index: int) -> int:
    """Last non-blank line of the section opened at ``header_index``.

    Deeper headings belong to the section; the scan stops at a sibling or
    higher heading. An empty section yields ``header_index``.
    """
    depth = heading_depth(lines[header_index])
    last = header_index
    for i in range(header_index + 1, len(lines)):
        d = heading_depth(lines[i])
        if d and (depth == 0 or d <= depth):
            break
        if lines[i].strip():
            last = i
    return last


def insert_lines(
    lines: list[str], new_lines: list[str], at_index: int, settings: Settings
) -> None:
    """Splice ``new_lines`` in, keeping blank lines around headings."""
    block = list(new_lines)
    if settings.blank_line_after_header:
        if at_index > 0 and heading_depth(lines[at_index - 1]):
            block.insert(0, "")
        if at_index >= len(lines) or heading_depth(lines[at_index]):
            block.append("")
    lines[at_index:at_index] = block


def remove_lines(lines: list[str], start: int, count: int) -> None:
    del lines[start:start + count]


def index_of_anchor(lines: list[str], anchor: str) -> int:
    """First line carrying the ``^anchor`` token, or -1."""
    if not anchor:
        return -1
    pattern = re.compile(r"\^" + re.escape(anchor) + r"(?![-a-zA-Z0-9])")
    for i, line in enumerate(lines):
        if pattern.search(line):
            return i
    return -1


def edit_document(
    store: DocumentStore,
    name: str,
    fn: Callable[[list[str]], bool],
    use_cache: bool = False,
) -> bool:
    """Read-modify-write a document.

    ``fn`` edits the lines in place and returns True when it changed
    something; only then is the document written back, using the line
    ending it was read with. Reads served from cache are never written.

    Returns:
        True if ``fn`` reported a modification.
    """
    text = store.read_document(name, use_cache=use_cache)
    eol = "\r\n" if "\r\n" in text else "\n"
    lines = text.split(eol)
    modified = bool(fn(lines))
    if modified and not use_cache:
        store.write_document(name, eol.join(lines))
        logger.debug("Wrote %s (%d lines)", name, len(lines))
    return modified


def _indent_width(line: str) -> int:
    return len(line.expandtabs(4)) - len(line.expandtabs(4).lstrip())


def collect_sub_content(lines: list[str], index: int) -> list[str]:
    """Lines nested under ``lines[index]``: deeper indented, no blank line between."""
    indent = _indent_width(lines[index])
    sub: list[str] = []
    for line in lines[index + 1:]:
        if not line.strip() or _indent_width(line) <= indent:
            break
        sub.append(line)
    return sub


def heading_path_for(lines: list[str], index: int, tasks_header: str) -> list[str]:
    """Headings enclosing ``lines[index]``, from ``tasks_header`` down.

    A line outside the tasks section gets ``[tasks_header]``.
    """
    path: list[str] = []
    limit = 0
    for i in range(index - 1, -1, -1):
        depth = heading_depth(lines[i])
        if not depth or (limit and depth >= limit):
            continue
        heading = lines[i].rstrip()
        path.insert(0, heading)
        if heading == tasks_header:
            return path
        limit = depth
    return [tasks_header]
