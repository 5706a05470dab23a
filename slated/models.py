"""Data models shared by the task parser, task lines and the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskState(str, Enum):
    """State of a task, derived from its checkbox glyph."""

    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    MOVED_OUT = "moved_out"

    @classmethod
    def from_glyph(cls, glyph: str) -> TaskState:
        return GLYPH_STATES[glyph]

    @property
    def glyph(self) -> str:
        """Canonical checkbox glyph written for this state."""
        return STATE_GLYPHS[self]


# Every checkbox glyph recognised as a task. Both task recognisers in
# parser.py are built from this table.
GLYPH_STATES: dict[str, TaskState] = {
    " ": TaskState.INCOMPLETE,
    "x": TaskState.COMPLETE,
    "X": TaskState.COMPLETE,
    "-": TaskState.SKIPPED,
    ">": TaskState.MOVED_OUT,
}

STATE_GLYPHS: dict[TaskState, str] = {
    TaskState.INCOMPLETE: " ",
    TaskState.COMPLETE: "x",
    TaskState.SKIPPED: "-",
    TaskState.MOVED_OUT: ">",
}


@dataclass(frozen=True)
class Provenance:
    """Links describing where a task instance came from or went to."""

    moved_from: str | None = None
    moved_to: str | None = None
    repeats_from: str | None = None

    @property
    def is_derived(self) -> bool:
        """True for moved or repeated copies of another task."""
        return self.moved_from is not None or self.repeats_from is not None


@dataclass
class PropagationResult:
    """Summary of what processing one document did."""

    document: str
    processed: bool = False
    tasks: int = 0
    normalized: int = 0
    newly_completed: list[str] = field(default_factory=list)  # anchors
    repetitions_created: int = 0
    invalid_recurrences: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
