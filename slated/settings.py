"""User configuration, loaded once per session."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Options controlling how tasks are written into documents."""

    tasks_header: str = "## Tasks"
    blank_line_after_header: bool = True
    alias_links: bool = True
    future_repetitions_count: int = 1
    preserve_moved_tasks: bool = True
    date_format: str = "%Y-%m-%d"
    notes_folder: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def settings_with_defaults(values: Mapping[str, Any] | None = None) -> Settings:
    """Build Settings from a partial mapping, filling in defaults.

    Unknown keys are ignored with a warning so that configuration written by
    newer versions still loads.
    """
    known = {f.name for f in fields(Settings)}
    kwargs: dict[str, Any] = {}
    for key, value in (values or {}).items():
        if key not in known:
            logger.warning("Ignoring unknown setting '%s'", key)
            continue
        kwargs[key] = value

    settings = Settings(**kwargs)
    if not settings.tasks_header.startswith("#"):
        logger.warning(
            "Tasks section header must start with '#': %r", settings.tasks_header
        )
    if settings.future_repetitions_count < 0:
        logger.warning(
            "future_repetitions_count must not be negative, using 0 (got %d)",
            settings.future_repetitions_count,
        )
        settings.future_repetitions_count = 0
    return settings


def load_settings(path: str | Path | None) -> Settings:
    """Load settings from a JSON file; a missing file yields the defaults."""
    if path is None:
        return Settings()
    p = Path(path)
    if not p.is_file():
        logger.debug("No settings file at %s, using defaults", p)
        return Settings()
    data = json.loads(p.read_text(encoding="utf-8") or "{}")
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {p} must contain a JSON object")
    return settings_with_defaults(data)
