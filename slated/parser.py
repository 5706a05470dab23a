"""Recognition and tokenizing of task lines.

A task line is a markdown list item with a checkbox::

    - [ ] Water the plants ; every week on Sunday ^task-a1b2
    - [ ] Water the plants ; every week on Sunday [[2021-01-03#^task-a1b2|<< Origin]]
    - [>] Write report >[[2021-01-05]] ^task-c3d4

After the checkbox come the free text, an optional schedule (``;`` or the
calendar glyph followed by a recurrence phrase), the anchor token and the
provenance links. The tokenizer below extracts each of these once and
returns an immutable :class:`ParsedTask` holding the values and the spans
they occupy in the line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property, lru_cache

from .models import GLYPH_STATES, TaskState

SCHEDULE_MARKERS = (";", "\N{CALENDAR}")

# Both recognisers are derived from the glyph table.
TASK_PREFIXES = frozenset(f"- [{glyph}] " for glyph in GLYPH_STATES)
RE_TASK = re.compile(
    r"^(\s*)- \[([" + "".join(re.escape(g) for g in GLYPH_STATES) + r"])\] "
)
RE_CHECKBOX = re.compile(r"^(\s*- \[)[^\]](\])")

RE_WIKILINK = re.compile(r"\[\[[^\]]*\]\]")
RE_ANCHOR = re.compile(r"\^([-a-zA-Z0-9]+)")
RE_ANCHOR_TOKEN = re.compile(r"\^([-a-zA-Z0-9]+)(?![-a-zA-Z0-9])")
RE_MOVED_TO = re.compile(r">\[\[([^\]]+)\]\]")
RE_MOVED_FROM = re.compile(
    r"(?<!<)<\[\[([^\]#|]*)#\^([-a-zA-Z0-9]+)(?:\|[^\]]*)?\]\]"
)
RE_MOVED_FROM_ALIASED = re.compile(
    r"\[\[([^\]#|]*)#\^([-a-zA-Z0-9]+)\|<(?!<)[^\]]*\]\]"
)
RE_REPEATS_FROM = re.compile(r"<<\[\[([^\]#|]*)#\^([-a-zA-Z0-9]+)(?:\|[^\]]*)?\]\]")
RE_REPEATS_FROM_ALIASED = re.compile(
    r"\[\[([^\]#|]*)#\^([-a-zA-Z0-9]+)\|<<[^\]]*\]\]"
)
# Anything that ends a schedule phrase.
RE_DECORATION = re.compile(r"(?:<<|<|>)?\[\[|\^[-a-zA-Z0-9]")
RE_RAW_RULE = re.compile(r"^(?:RRULE:|FREQ=)", re.IGNORECASE)

Span = tuple[int, int]


def is_line_task(line: str) -> bool:
    """Cheap check used while scanning every line of a document."""
    stripped = line.lstrip()
    if stripped[:1] != "-":
        return False
    return stripped[:6] in TASK_PREFIXES


@dataclass(frozen=True)
class ParsedTask:
    """Tokens of one task line. Spans index into ``text``."""

    text: str
    indent: str
    glyph: str
    body_start: int
    schedule: str | None = None
    schedule_span: Span | None = None  # marker through end of phrase
    schedule_phrase_span: Span | None = None
    schedule_conflict: bool = False
    anchor: str = ""
    anchor_span: Span | None = None  # ^token outside links only
    moved_to: str | None = None
    moved_to_span: Span | None = None
    moved_from: str | None = None
    moved_from_anchor: str | None = None
    moved_from_span: Span | None = None
    repeats_from: str | None = None
    repeats_from_anchor: str | None = None
    repeats_from_span: Span | None = None

    @property
    def state(self) -> TaskState:
        return TaskState.from_glyph(self.glyph)

    @property
    def link_carries_anchor(self) -> bool:
        return self.moved_from_span is not None or self.repeats_from_span is not None

    @property
    def provenance_spans(self) -> list[Span]:
        spans = (self.moved_to_span, self.moved_from_span, self.repeats_from_span)
        return [s for s in spans if s is not None]

    @cached_property
    def content(self) -> str:
        """The task text with checkbox, schedule, anchor and links removed."""
        spans = self.provenance_spans
        if self.schedule_span is not None:
            spans.append(self.schedule_span)
        if self.anchor_span is not None:
            spans.append(self.anchor_span)
        stripped = remove_spans(self.text, spans)
        return " ".join(stripped[self.body_start:].split())


def _mask_links(text: str) -> str:
    return RE_WIKILINK.sub(lambda m: " " * len(m.group(0)), text)


def _first_match(text: str, *patterns: re.Pattern[str]) -> re.Match[str] | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m
    return None


@lru_cache(maxsize=2048)
def parse_task_line(text: str) -> ParsedTask | None:
    """Tokenize ``text``; returns None when the line is not a task."""
    m = RE_TASK.match(text)
    if not m:
        return None
    tokens: dict = {
        "text": text,
        "indent": m.group(1),
        "glyph": m.group(2),
        "body_start": m.end(),
    }
    masked = _mask_links(text)

    markers = [
        i for i, ch in enumerate(masked) if i >= m.end() and ch in SCHEDULE_MARKERS
    ]
    if markers:
        marker = markers[0]
        start = marker + 1
        while start < len(text) and text[start].isspace():
            start += 1
        deco = RE_DECORATION.search(text, start)
        end = deco.start() if deco else len(text)
        while end > start and text[end - 1].isspace():
            end -= 1
        phrase = text[start:end]
        extra = markers[1:]
        if RE_RAW_RULE.match(phrase):
            extra = [i for i in extra if i >= end or masked[i] != ";"]
        tokens.update(
            schedule=phrase,
            schedule_span=(marker, end),
            schedule_phrase_span=(start, end),
            schedule_conflict=bool(extra),
        )

    anchor = RE_ANCHOR.search(text)
    if anchor:
        tokens["anchor"] = anchor.group(1)
    token = RE_ANCHOR_TOKEN.search(masked, m.end())
    if token:
        tokens["anchor_span"] = token.span()

    moved_to = RE_MOVED_TO.search(text)
    if moved_to:
        tokens["moved_to"] = moved_to.group(1).split("|")[0].strip()
        tokens["moved_to_span"] = moved_to.span()

    moved_from = _first_match(text, RE_MOVED_FROM, RE_MOVED_FROM_ALIASED)
    if moved_from:
        tokens["moved_from"] = moved_from.group(1).strip()
        tokens["moved_from_anchor"] = moved_from.group(2)
        tokens["moved_from_span"] = moved_from.span()

    repeats_from = _first_match(text, RE_REPEATS_FROM, RE_REPEATS_FROM_ALIASED)
    if repeats_from:
        tokens["repeats_from"] = repeats_from.group(1).strip()
        tokens["repeats_from_anchor"] = repeats_from.group(2)
        tokens["repeats_from_span"] = repeats_from.span()

    return ParsedTask(**tokens)


# ---------------------------------------------------------------------------
# Line rewriting helpers
# ---------------------------------------------------------------------------


def remove_spans(text: str, spans: list[Span]) -> str:
    """Cut the given spans out of ``text``, closing the gap with one space."""
    for start, end in sorted(set(spans), reverse=True):
        head, tail = text[:start].rstrip(), text[end:].lstrip()
        text = f"{head} {tail}" if tail else head
    return text


def with_glyph(text: str, glyph: str) -> str:
    """Replace the checkbox glyph of a task line."""
    return RE_CHECKBOX.sub(lambda m: f"{m.group(1)}{glyph}{m.group(2)}", text, count=1)


def append_token(text: str, token: str) -> str:
    return f"{text.rstrip()} {token}"
