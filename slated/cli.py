"""CLI entry point for slated."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date
from pathlib import Path

from dateutil import parser as date_parser

from .engine import PropagationEngine
from .errors import SlatedError
from .models import PropagationResult
from .rest_store import DEFAULT_REST_URL, RestDocumentStore
from .settings import Settings, load_settings, settings_with_defaults
from .store import FileSystemStore
from .task_line import TaskLine


def _parse_day(value: str) -> date:
    if value == "today":
        return date.today()
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError) as e:
        raise argparse.ArgumentTypeError(f"not a date: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slated",
        description="Recurring and movable tasks for markdown daily notes.",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--vault",
        type=str,
        default=None,
        help="Directory holding the notes (default: current directory)",
    )
    source.add_argument(
        "--rest-url",
        type=str,
        default=None,
        help=f"Use the note app's local REST API instead, e.g. {DEFAULT_REST_URL}",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="REST API key (or set SLATED_API_KEY env var)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS verification for the REST API's self-signed certificate",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON settings file",
    )
    parser.add_argument(
        "--tasks-header",
        type=str,
        default=None,
        help="Heading of the section tasks are written under (overrides --config)",
    )
    parser.add_argument(
        "--future-repetitions",
        type=int,
        default=None,
        help="Repetitions to create ahead of time (overrides --config)",
    )
    parser.add_argument(
        "--date-format",
        type=str,
        default=None,
        help="strftime format of daily note names (overrides --config)",
    )
    parser.add_argument(
        "--notes-folder",
        type=str,
        default=None,
        help="Folder new daily notes are created in (overrides --config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--output-json",
        type=str,
        default=None,
        help="Write results to a JSON file",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="Normalize documents and propagate repetitions")
    p.add_argument("documents", nargs="*", help="Document names (default: today's note)")
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would happen without making changes",
    )

    p = sub.add_parser("tasks", help="List the tasks of a document")
    p.add_argument("document")

    p = sub.add_parser("move", help="Move one task to another day")
    p.add_argument("document")
    p.add_argument("task", help="Anchor (task-xxxx) or 1-based line number")
    p.add_argument("date", type=_parse_day)

    p = sub.add_parser("skip", help="Skip this occurrence of a recurring task")
    p.add_argument("document")
    p.add_argument("task", help="Anchor (task-xxxx) or 1-based line number")

    p = sub.add_parser("move-incomplete", help="Move every incomplete task to another day")
    p.add_argument("document")
    p.add_argument("date", type=_parse_day)

    return parser


_SETTING_FLAGS = {
    "tasks_header": "tasks_header",
    "future_repetitions": "future_repetitions_count",
    "date_format": "date_format",
    "notes_folder": "notes_folder",
}


def _setting_overrides(args: argparse.Namespace) -> dict:
    return {
        key: getattr(args, flag)
        for flag, key in _SETTING_FLAGS.items()
        if getattr(args, flag) is not None
    }


def _open_store(args: argparse.Namespace, settings: Settings):
    if args.rest_url:
        api_key = args.api_key or os.environ.get("SLATED_API_KEY")
        if not api_key:
            logging.error("No API key provided. Use --api-key or set SLATED_API_KEY")
            return None
        return RestDocumentStore(
            args.rest_url,
            api_key,
            date_format=settings.date_format,
            folder=settings.notes_folder,
            verify=not args.insecure,
        )
    root = Path(args.vault or ".")
    if not root.is_dir():
        logging.error("Vault directory not found: %s", root)
        return None
    return FileSystemStore(root, settings.date_format, settings.notes_folder)


def _find_task(tasks: list[TaskLine], key: str) -> TaskLine | None:
    if key.isdigit():
        index = int(key) - 1
        return next((t for t in tasks if t.line_index == index), None)
    key = key.lstrip("^")
    return next((t for t in tasks if t.anchor == key), None)


def _task_summary(task: TaskLine) -> dict:
    return {
        "line": task.line_index + 1,
        "state": task.state.value,
        "content": task.content,
        "anchor": task.anchor,
        "schedule": task.recurrence.to_text() if task.recurrence else None,
        "schedule_valid": task.recurrence_valid if task.repeats else None,
        "moved_from": task.moved_from,
        "moved_to": task.moved_to,
        "repeats_from": task.repeats_from,
    }


def _result_summary(result: PropagationResult) -> dict:
    return {
        "document": result.document,
        "processed": result.processed,
        "tasks": result.tasks,
        "normalized": result.normalized,
        "newly_completed": result.newly_completed,
        "repetitions_created": result.repetitions_created,
        "invalid_recurrences": result.invalid_recurrences,
        "errors": result.errors,
    }


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        logging.error("Cannot load settings from %s: %s", args.config, e)
        return 1
    overrides = _setting_overrides(args)
    if overrides:
        settings = settings_with_defaults({**settings.to_dict(), **overrides})

    store = _open_store(args, settings)
    if store is None:
        return 1

    notices: list[str] = []

    def notify(message: str) -> None:
        notices.append(message)
        logging.warning("%s", message)

    engine = PropagationEngine(store, settings, notify=notify)
    out: dict = {}
    errors: list[str] = []
    try:
        if args.command == "process":
            names = args.documents or [store.filename_for_date(date.today())]
            results = []
            for name in names:
                result = engine.process_document(name, dry_run=args.dry_run)
                results.append(_result_summary(result))
                if not result.processed:
                    logging.info("%s is not a periodic note, nothing to do", name)
                    continue
                errors.extend(result.errors)
                logging.info(
                    "Processed %s: %d task(s), %d anchor(s) added, %d repetition(s) created",
                    name,
                    result.tasks,
                    result.normalized,
                    result.repetitions_created,
                )
            out["results"] = results

        elif args.command == "tasks":
            tasks = engine.scan_document(args.document)
            for task in tasks:
                print(f"{task.line_index + 1:>4}  [{task.state.glyph}] {task.content}"
                      + (f"  ^{task.anchor}" if task.anchor else ""))
            out["tasks"] = [_task_summary(t) for t in tasks]

        elif args.command in ("move", "skip"):
            task = _find_task(engine.scan_document(args.document, use_cache=False), args.task)
            if task is None:
                logging.error("No task %s in %s", args.task, args.document)
                return 1
            if args.command == "move":
                done = task.move(args.date)
            else:
                done = task.skip_occurrence()
            out["done"] = done
            if done:
                logging.info("%s: '%s'", args.command.capitalize(), task.content)

        elif args.command == "move-incomplete":
            moved = engine.move_incompleted(args.document, args.date)
            out["moved"] = moved

    except SlatedError as e:
        logging.error("%s failed: %s", args.command, e)
        errors.append(str(e))
    finally:
        if isinstance(store, RestDocumentStore):
            store.close()

    if errors:
        logging.warning("Errors encountered:")
        for err in errors:
            logging.warning("  - %s", err)

    # Write JSON output
    if args.output_json:
        out["notices"] = notices
        out["errors"] = errors
        Path(args.output_json).write_text(json.dumps(out, indent=2))
        logging.info("Results written to %s", args.output_json)

    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
