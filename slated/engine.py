"""Propagation engine: keeps repetitions and moved tasks materialized.

The host calls :meth:`PropagationEngine.process_document` whenever a
document is viewed or saved. The engine compares the document's tasks to
the snapshot it took last time and propagates what changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from .errors import DocumentStoreError
from .models import PropagationResult, TaskState
from .parser import is_line_task
from .sections import edit_document
from .settings import Settings
from .store import DocumentStore
from .task_line import Notifier, TaskLine, log_notice

logger = logging.getLogger(__name__)

Snapshot = dict[str, TaskState]  # anchor -> state


@dataclass
class PropagationPlan:
    """What processing a document will do, without doing it."""

    newly_completed: list[TaskLine] = field(default_factory=list)
    recurring: list[TaskLine] = field(default_factory=list)
    invalid: list[TaskLine] = field(default_factory=list)


def build_propagation_plan(tasks: list[TaskLine], previous: Snapshot) -> PropagationPlan:
    """Compare scanned tasks against the previous snapshot.

    A task is newly completed when it is complete now but was not in the
    snapshot (a missing snapshot counts as empty).
    """
    plan = PropagationPlan()
    for task in tasks:
        if task.repeats and not task.recurrence_valid:
            plan.invalid.append(task)
            continue
        if not task.recurrence_valid:
            continue
        if task.state is TaskState.COMPLETE and previous.get(task.anchor) is not TaskState.COMPLETE:
            plan.newly_completed.append(task)
        if task.state in (TaskState.INCOMPLETE, TaskState.COMPLETE):
            plan.recurring.append(task)
    return plan


def take_snapshot(tasks: list[TaskLine]) -> Snapshot:
    return {task.anchor: task.state for task in tasks if task.anchor}


class PropagationEngine:
    """Scans documents and propagates task changes into other documents."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings | None = None,
        notify: Notifier | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()
        self.notify = notify or log_notice
        self.snapshots: dict[str, Snapshot] = {}
        self._tasks: dict[str, list[TaskLine]] = {}

    def _build_tasks(self, name: str, lines: list[str]) -> list[TaskLine]:
        tasks: list[TaskLine] = []
        for i, line in enumerate(lines):
            if not is_line_task(line):
                continue
            task = TaskLine(i, name, lines, self.store, self.settings, self.notify)
            # later tasks must see anchors synthesized for earlier ones
            lines[i] = task.text
            tasks.append(task)
        self._tasks[name] = tasks
        return tasks

    def scan_document(self, name: str, use_cache: bool = True) -> list[TaskLine]:
        """Tasks of a document, without writing anything."""
        text = self.store.read_document(name, use_cache=use_cache)
        lines = text.split("\r\n" if "\r\n" in text else "\n")
        return self._build_tasks(name, lines)

    def get_cached_tasks(self, name: str) -> list[TaskLine] | None:
        return self._tasks.get(name)

    def _normalize(self, name: str) -> tuple[list[TaskLine], int]:
        """Scan the document, writing back anchors synthesized for recurring tasks."""
        tasks: list[TaskLine] = []

        def normalize(lines: list[str]) -> bool:
            tasks.extend(self._build_tasks(name, lines))
            return any(task.modified for task in tasks)

        if edit_document(self.store, name, normalize):
            changed = [task for task in tasks if task.modified]
            for task in changed:
                task.mark_saved()
            logger.info("[NORMALIZE] Added anchors to %d task(s) in %s", len(changed), name)
            return tasks, len(changed)
        return tasks, 0

    def process_document(self, name: str, dry_run: bool = False) -> PropagationResult:
        """Normalize a document and propagate its recurring tasks.

        Args:
            name: Document name as known to the store
            dry_run: If True, only log what would happen without writing
        """
        result = PropagationResult(document=name)
        doc_date = self.store.date_for_document(name)
        if doc_date is None:
            logger.debug("Skipping %s: not a periodic note", name)
            return result
        result.processed = True

        try:
            if dry_run:
                tasks = self.scan_document(name, use_cache=False)
                normalized = sum(1 for task in tasks if task.modified)
            else:
                tasks, normalized = self._normalize(name)
        except DocumentStoreError as e:
            msg = f"Failed to read {name}: {e}"
            logger.error(msg)
            result.errors.append(msg)
            return result

        result.tasks = len(tasks)
        result.normalized = normalized
        previous = self.snapshots.get(name, {})
        plan = build_propagation_plan(tasks, previous)
        self.snapshots[name] = take_snapshot(tasks)

        logger.debug(
            "Plan for %s: %d newly completed, %d recurring, %d invalid",
            name,
            len(plan.newly_completed),
            len(plan.recurring),
            len(plan.invalid),
        )

        for task in plan.invalid:
            result.invalid_recurrences += 1
            self.notify(
                f"Invalid repetition '{task.recurrence.source}' on task "
                f"'{task.content}' in {name}"
            )

        if dry_run:
            _log_dry_run(plan, self.settings.future_repetitions_count)
            result.newly_completed = [task.anchor for task in plan.newly_completed]
            return result

        for task in plan.newly_completed:
            result.newly_completed.append(task.anchor)
            try:
                task.create_next_repetition()
            except Exception as e:
                msg = f"Failed to repeat '{task.content}' from {name}: {e}"
                logger.error(msg)
                result.errors.append(msg)

        count = self.settings.future_repetitions_count
        for task in plan.recurring:
            try:
                for day in task.recurrence.next(count):
                    task.ensure_repetition(day)
            except Exception as e:
                msg = f"Failed to propagate '{task.content}' from {name}: {e}"
                logger.error(msg)
                result.errors.append(msg)

        result.repetitions_created = sum(task.repetitions_created for task in tasks)
        if result.repetitions_created:
            logger.info(
                "Created %d repetition(s) from %s", result.repetitions_created, name
            )
        return result

    def move_incompleted(self, name: str, target_date: date) -> int:
        """Move every incomplete task of a document to ``target_date``.

        Returns:
            The number of tasks moved.
        """
        moved = 0
        remaining: int | None = None
        while True:
            pending = [
                task
                for task in self.scan_document(name, use_cache=False)
                if task.state is TaskState.INCOMPLETE
            ]
            if not pending:
                break
            if remaining is not None and len(pending) >= remaining:
                logger.warning("[MOVE] No progress moving tasks out of %s, stopping", name)
                break
            remaining = len(pending)
            if not pending[0].move(target_date):
                break
            moved += 1
        logger.info("[MOVE] Moved %d task(s) from %s", moved, name)
        return moved


def _log_dry_run(plan: PropagationPlan, count: int) -> None:
    for task in plan.newly_completed:
        logger.info("[DRY RUN] Would repeat: %s", task.content)
    for task in plan.recurring:
        days = ", ".join(d.isoformat() for d in task.recurrence.next(count))
        logger.info("[DRY RUN] Would ensure '%s' on: %s", task.content, days or "-")
