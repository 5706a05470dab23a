"""A task line and the actions that move or repeat it between documents."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import date
from typing import TYPE_CHECKING, Callable, Iterable

from .errors import DocumentChangedError, UnresolvableOriginError
from .models import Provenance, TaskState
from .parser import (
    RE_ANCHOR,
    ParsedTask,
    append_token,
    parse_task_line,
    remove_spans,
    with_glyph,
)
from .recurrence import RecurrenceAdapter
from .sections import (
    collect_sub_content,
    edit_document,
    heading_path_for,
    index_of_anchor,
    insert_lines,
    last_content_line_of,
    locate_heading_path,
    remove_lines,
)

if TYPE_CHECKING:
    from .settings import Settings
    from .store import DocumentStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]

ANCHOR_PREFIX = "task-"
ANCHOR_ALPHABET = string.ascii_lowercase + string.digits
ANCHOR_LENGTH = 4


def log_notice(message: str) -> None:
    """Default notifier: user-facing notices go to the log."""
    logger.warning("%s", message)


def create_anchor(taken: Iterable[str] = ()) -> str:
    """A fresh ``task-xxxx`` anchor not in ``taken``."""
    taken = set(taken)
    while True:
        suffix = "".join(secrets.choice(ANCHOR_ALPHABET) for _ in range(ANCHOR_LENGTH))
        anchor = ANCHOR_PREFIX + suffix
        if anchor not in taken:
            return anchor


def anchors_in(lines: Iterable[str]) -> set[str]:
    return {m.group(1) for line in lines for m in RE_ANCHOR.finditer(line)}


class TaskLine:
    """One task in one document.

    Built from the document's lines on every scan. Rewrites happen on
    ``text`` in memory; :meth:`save` and the move/repeat actions write
    documents through the store. A task is found again in its document by
    line index, then by its original text, then by anchor.
    """

    def __init__(
        self,
        line_index: int,
        document: str,
        lines: list[str],
        store: DocumentStore,
        settings: Settings,
        notify: Notifier | None = None,
    ) -> None:
        parsed = parse_task_line(lines[line_index])
        if parsed is None:
            raise ValueError(f"Line {line_index} of {document} is not a task")
        self.line_index = line_index
        self.document = document
        self.original_text = lines[line_index]
        self.sub_content = collect_sub_content(lines, line_index)
        self.heading_path = heading_path_for(lines, line_index, settings.tasks_header)
        self.modified = False
        self.repetitions_created = 0
        self._store = store
        self._settings = settings
        self._notify = notify or log_notice
        self._text = self.original_text
        self._parsed: ParsedTask = parsed
        self._anchor = parsed.anchor
        self._taken = anchors_in(lines)
        self._document_date = store.date_for_document(document)
        self._recurrence = self._build_recurrence()

        if self.recurrence_valid and not self._anchor:
            self._assign_anchor()
            self._set_text(append_token(self._text, "^" + self._anchor))

    def __repr__(self) -> str:
        return f"TaskLine({self.document}:{self.line_index} {self._text!r})"

    # ------------------------------------------------------------------
    # Parsed values
    # ------------------------------------------------------------------

    @property
    def text(self) -> str:
        return self._text

    @property
    def state(self) -> TaskState:
        return self._parsed.state

    @property
    def anchor(self) -> str:
        return self._anchor

    @property
    def content(self) -> str:
        return self._parsed.content

    @property
    def recurrence(self) -> RecurrenceAdapter | None:
        return self._recurrence

    @property
    def repeats(self) -> bool:
        return self._recurrence is not None

    @property
    def recurrence_valid(self) -> bool:
        return self._recurrence is not None and self._recurrence.is_valid()

    @property
    def moved_to(self) -> str | None:
        return self._parsed.moved_to

    @property
    def moved_from(self) -> str | None:
        return self._parsed.moved_from

    @property
    def repeats_from(self) -> str | None:
        return self._parsed.repeats_from

    @property
    def provenance(self) -> Provenance:
        return Provenance(self.moved_from, self.moved_to, self.repeats_from)

    @property
    def is_original_instance(self) -> bool:
        return self.moved_from is None and self.repeats_from is None

    def original_document_name(self) -> str:
        if self.is_original_instance:
            return self.document
        for name in (self.moved_from, self.repeats_from):
            if name:
                return name
        raise UnresolvableOriginError(
            f"Task '{self.content}' in {self.document} has no origin document"
        )

    def _move_origin(self) -> str:
        # a repetition copy is moved on behalf of its own document, so moving
        # it back never touches the repeating original
        if self.is_original_instance or self.moved_from is not None:
            return self.original_document_name()
        return self.document

    # ------------------------------------------------------------------
    # In-memory rewriting
    # ------------------------------------------------------------------

    def _build_recurrence(self) -> RecurrenceAdapter | None:
        p = self._parsed
        if p.schedule is None:
            return None
        start = self._document_date or date.today()
        if p.schedule_conflict:
            return RecurrenceAdapter.invalid(p.schedule, start)
        return RecurrenceAdapter.from_text(
            p.schedule, start, on_change=self._on_recurrence_changed
        )

    def _set_text(self, text: str) -> None:
        parsed = parse_task_line(text)
        if parsed is None:
            raise ValueError(f"Rewrite produced a non-task line: {text!r}")
        self._text = text
        self._parsed = parsed
        self.modified = True

    def _assign_anchor(self) -> None:
        if not self._anchor:
            self._anchor = create_anchor(self._taken)
            self._taken.add(self._anchor)

    def _on_recurrence_changed(self) -> None:
        start, end = self._parsed.schedule_phrase_span
        self._set_text(self._text[:start] + self._recurrence.to_text() + self._text[end:])
        if self.recurrence_valid and not self._parsed.anchor:
            self._assign_anchor()
            self._set_text(append_token(self._text, "^" + self._anchor))

    def set_schedule(self, phrase: str | None) -> None:
        """Replace, add or (with None) remove the schedule of this task."""
        p = self._parsed
        if phrase is None:
            if p.schedule_span is not None:
                self._set_text(remove_spans(self._text, [p.schedule_span]))
        elif p.schedule_phrase_span is not None:
            start, end = p.schedule_phrase_span
            self._set_text(self._text[:start] + phrase + self._text[end:])
        else:
            spans = p.provenance_spans
            if p.anchor_span is not None:
                spans.append(p.anchor_span)
            at = min((s for s, _ in spans), default=len(self._text))
            head, tail = self._text[:at].rstrip(), self._text[at:]
            self._set_text(f"{head} ; {phrase}" + (f" {tail}" if tail else ""))
        self._recurrence = self._build_recurrence()
        if self.recurrence_valid and not self._parsed.anchor:
            self._assign_anchor()
            self._set_text(append_token(self._text, "^" + self._anchor))

    def set_checkbox(self, state: TaskState) -> None:
        self._set_text(with_glyph(self._text, state.glyph))

    def _stripped_line(self) -> str:
        """Current text without the anchor token and provenance links."""
        p = self._parsed
        spans = p.provenance_spans
        if p.anchor_span is not None:
            spans.append(p.anchor_span)
        return remove_spans(self._text, spans)

    def _pin_schedule(self, line: str) -> str:
        # a copy counts from its own document, so a COUNT becomes an end date
        if not self.recurrence_valid or self._recurrence.options.count is None:
            return line
        span = parse_task_line(line).schedule_phrase_span
        if span is None:
            return line
        start, end = span
        return line[:start] + self._recurrence.pinned_text() + line[end:]

    def _origin_link(self, kind: str, document: str) -> str:
        if self._settings.alias_links:
            return f"[[{document}#^{self._anchor}|{kind} Origin]]"
        return f"{kind}[[{document}#^{self._anchor}]]"

    def line_as_repeated(self) -> str:
        """This task as the next repetition in another document."""
        self._assign_anchor()
        line = with_glyph(self._pin_schedule(self._stripped_line()), TaskState.INCOMPLETE.glyph)
        return append_token(line, self._origin_link("<<", self.original_document_name()))

    def line_as_moved_from(self) -> str:
        """This task as it appears in the document it is moved to."""
        self._assign_anchor()
        line = self._pin_schedule(self._stripped_line())
        if self.state in (TaskState.MOVED_OUT, TaskState.SKIPPED):
            line = with_glyph(line, TaskState.INCOMPLETE.glyph)
        return append_token(line, self._origin_link("<", self._move_origin()))

    def line_as_moved_to(self, target_name: str) -> str:
        """This task as it is left behind in the document it was moved out of."""
        self._assign_anchor()
        p = self._parsed
        spans = [s for s in (p.anchor_span, p.moved_to_span) if s is not None]
        line = with_glyph(remove_spans(self._text, spans), TaskState.MOVED_OUT.glyph)
        line = append_token(line, f">[[{target_name}]]")
        if not p.link_carries_anchor:
            line = append_token(line, "^" + self._anchor)
        return line

    # ------------------------------------------------------------------
    # Document writes
    # ------------------------------------------------------------------

    def _locate(self, lines: list[str]) -> int:
        i = self.line_index
        if i < len(lines) and lines[i] in (self.original_text, self._text):
            return i
        if self.original_text in lines:
            return lines.index(self.original_text)
        found = index_of_anchor(lines, self._parsed.anchor)
        if found != -1:
            return found
        raise DocumentChangedError(
            f"Task '{self.content}' is no longer in {self.document}"
        )

    def _insert_block(self, lines: list[str], block: list[str]) -> bool:
        header = locate_heading_path(lines, self.heading_path, self._settings)
        insert_lines(lines, block, last_content_line_of(lines, header) + 1, self._settings)
        return True

    def mark_saved(self) -> None:
        self.original_text = self._text
        self.modified = False

    def save(self) -> bool:
        """Write the current text over this task's line in its document."""
        text = self._text

        def write(lines: list[str]) -> bool:
            i = self._locate(lines)
            if lines[i] == text:
                return False
            lines[i] = text
            return True

        changed = edit_document(self._store, self.document, write)
        self.mark_saved()
        return changed

    def add_anchor_if_missing(self) -> bool:
        """Persist an anchor for a recurring task that has none yet."""
        if not self.recurrence_valid:
            return False
        persisted = parse_task_line(self.original_text)
        if persisted is not None and persisted.anchor:
            return False
        self._assign_anchor()
        if not self._parsed.anchor:
            self._set_text(append_token(self._text, "^" + self._anchor))
        self.save()
        logger.info("[NORMALIZE] Added ^%s to '%s' in %s", self._anchor, self.content, self.document)
        return True

    def ensure_repetition(self, day: date) -> bool:
        """Make sure the repetition for ``day`` exists; True if it was created."""
        self.add_anchor_if_missing()
        target = self._store.resolve_or_create_document_for_date(day)
        if target == self.document:
            return False
        block = [self.line_as_repeated(), *self.sub_content]
        anchor = self._anchor

        def add(lines: list[str]) -> bool:
            if index_of_anchor(lines, anchor) != -1:
                logger.debug("[REPEAT] ^%s already in %s", anchor, target)
                return False
            return self._insert_block(lines, block)

        created = edit_document(self._store, target, add)
        if created:
            self.repetitions_created += 1
            logger.info("[REPEAT] '%s' repeated into %s", self.content, target)
        return created

    def create_next_repetition(self) -> date | None:
        """Ensure the first occurrence after this task's document date exists.

        Returns:
            The date of that occurrence, or None if the task does not repeat
            or its rule has ended.
        """
        if not self.recurrence_valid:
            self._notify(f"Task '{self.content}' does not have a valid repetition")
            return None
        day = self._recurrence.after(self._document_date or date.today())
        if day is None:
            logger.info("[REPEAT] '%s' has no further occurrences", self.content)
            return None
        self.ensure_repetition(day)
        return day

    def skip_occurrence(self) -> bool:
        """Mark this occurrence skipped after creating the next one."""
        if self._recurrence is None:
            self._notify(f"Task '{self.content}' does not repeat, nothing to skip")
            return False
        if not self.recurrence_valid:
            self._notify(f"Task '{self.content}' has an invalid repetition")
            return False
        if self.state is not TaskState.INCOMPLETE:
            self._notify(f"Only incomplete tasks can be skipped: '{self.content}'")
            return False
        self.create_next_repetition()
        self.set_checkbox(TaskState.SKIPPED)
        self.save()
        return True

    def move(self, target_date: date) -> bool:
        """Move this task (with its sub-content) to the document for ``target_date``.

        The target is written first, then the source. Moving a moved or
        repeated copy back to the document it came from un-defers it.
        """
        if self.state is TaskState.MOVED_OUT:
            self._notify(f"Task '{self.content}' was already moved to {self.moved_to}")
            return False
        target_name = self._store.filename_for_date(target_date)
        if target_name == self.document:
            self._notify(f"Task '{self.content}' is already in {target_name}")
            return False
        if not self.is_original_instance and target_name == self._move_origin():
            self._undefer(target_name)
            return True

        self._assign_anchor()
        target = self._store.resolve_or_create_document_for_date(target_date)
        block = [self.line_as_moved_from(), *self.sub_content]
        logger.info("[MOVE] '%s' from %s to %s", self.content, self.document, target)
        edit_document(self._store, target, lambda lines: self._insert_block(lines, block))

        moved = self.line_as_moved_to(target)
        preserve = self._settings.preserve_moved_tasks

        def leave_behind(lines: list[str]) -> bool:
            i = self._locate(lines)
            count = 1 + len(collect_sub_content(lines, i))
            if preserve:
                lines[i:i + count] = [moved]
            else:
                remove_lines(lines, i, count)
            return True

        edit_document(self._store, self.document, leave_behind)
        self._set_text(moved)
        self.mark_saved()
        self.sub_content = []
        return True

    def _undefer(self, origin: str) -> None:
        anchor = self._anchor
        sub = list(self.sub_content)
        restored = with_glyph(append_token(self._stripped_line(), "^" + anchor), " ")

        def restore(lines: list[str]) -> bool:
            i = _index_of_moved_out(lines, anchor)
            if i == -1:
                logger.warning("[MOVE] ^%s not found in %s, adding it again", anchor, origin)
                return self._insert_block(lines, [restored, *sub])
            p = parse_task_line(lines[i])
            spans = [p.moved_to_span] if p.moved_to_span is not None else []
            lines[i] = with_glyph(remove_spans(lines[i], spans), " ")
            lines[i + 1:i + 1] = sub
            return True

        def drop_copy(lines: list[str]) -> bool:
            i = self._locate(lines)
            remove_lines(lines, i, 1 + len(collect_sub_content(lines, i)))
            return True

        logger.info("[MOVE] '%s' back from %s to %s", self.content, self.document, origin)
        edit_document(self._store, origin, restore)
        edit_document(self._store, self.document, drop_copy)
        self.sub_content = []


def _index_of_moved_out(lines: list[str], anchor: str) -> int:
    for i, line in enumerate(lines):
        p = parse_task_line(line)
        if p is not None and p.anchor == anchor and p.state is TaskState.MOVED_OUT:
            return i
    return -1
