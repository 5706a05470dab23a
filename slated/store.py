"""Document stores: where the notes a task lives in are read and written.

The engine only talks to the :class:`DocumentStore` protocol. Documents are
addressed by name (a daily note is named after its date, e.g.
``2021-01-05``); the store maps names to storage.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Protocol

from .errors import DocumentStoreError

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def read_document(self, name: str, use_cache: bool = False) -> str: ...

    def write_document(self, name: str, text: str) -> None: ...

    def resolve_or_create_document_for_date(self, day: date) -> str:
        """Name of the periodic document for ``day``, creating it if missing."""
        ...

    def date_for_document(self, name: str) -> date | None:
        """Date a document stands for, or None if it is not a periodic note."""
        ...

    def filename_for_date(self, day: date) -> str: ...


def parse_document_date(name: str, date_format: str) -> date | None:
    """Strictly parse a document name as a date in ``date_format``."""
    stem = name.rsplit("/", 1)[-1]
    try:
        day = datetime.strptime(stem, date_format).date()
    except ValueError:
        return None
    # strptime accepts unpadded fields; only the canonical spelling counts
    if day.strftime(date_format) != stem:
        return None
    return day


class FileSystemStore:
    """Markdown notes in a directory tree.

    Periodic notes live in ``root/folder`` and are named with
    ``date_format``. Other documents are looked up by name anywhere under
    ``root``, the way wiki links resolve.
    """

    def __init__(
        self,
        root: str | Path,
        date_format: str = "%Y-%m-%d",
        folder: str = "",
        extension: str = ".md",
    ) -> None:
        self.root = Path(root)
        self.date_format = date_format
        self.folder = folder
        self.extension = extension
        self._cache: dict[str, str] = {}

    @property
    def periodic_dir(self) -> Path:
        return self.root / self.folder if self.folder else self.root

    def path_for(self, name: str) -> Path:
        """Resolve a document name to a file path (which may not exist yet)."""
        filename = f"{name}{self.extension}"
        if "/" in name:
            return self.root / filename
        candidate = self.periodic_dir / filename
        if candidate.exists() or parse_document_date(name, self.date_format):
            return candidate
        direct = self.root / filename
        if direct.exists():
            return direct
        for found in sorted(self.root.rglob(Path(filename).name)):
            return found
        return direct

    def read_document(self, name: str, use_cache: bool = False) -> str:
        if use_cache and name in self._cache:
            return self._cache[name]
        path = self.path_for(name)
        try:
            # newline="" keeps CRLF files intact
            with path.open(encoding="utf-8", newline="") as f:
                text = f.read()
        except OSError as e:
            raise DocumentStoreError(f"Cannot read {path}: {e}") from e
        self._cache[name] = text
        return text

    def write_document(self, name: str, text: str) -> None:
        path = self.path_for(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", newline="") as f:
                f.write(text)
        except OSError as e:
            raise DocumentStoreError(f"Cannot write {path}: {e}") from e
        self._cache[name] = text

    def resolve_or_create_document_for_date(self, day: date) -> str:
        name = self.filename_for_date(day)
        path = self.path_for(name)
        if not path.exists():
            logger.info("Creating periodic note %s", path)
            self.write_document(name, "")
        return name

    def date_for_document(self, name: str) -> date | None:
        return parse_document_date(name, self.date_format)

    def filename_for_date(self, day: date) -> str:
        return day.strftime(self.date_format)
