"""Tests for the file-system document store."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from slated.errors import DocumentStoreError
from slated.store import FileSystemStore, parse_document_date


@pytest.mark.parametrize(
    "name,fmt,expected",
    [
        ("2021-01-05", "%Y-%m-%d", date(2021, 1, 5)),
        ("daily/2021-01-05", "%Y-%m-%d", date(2021, 1, 5)),
        ("05.01.2021", "%d.%m.%Y", date(2021, 1, 5)),
        ("2021-1-5", "%Y-%m-%d", None),
        ("Project ideas", "%Y-%m-%d", None),
        ("2021-02-30", "%Y-%m-%d", None),
    ],
)
def test_parse_document_date(name, fmt, expected):
    assert parse_document_date(name, fmt) == expected


def test_read_and_write(tmp_path: Path):
    store = FileSystemStore(tmp_path)
    store.write_document("2021-01-05", "## Tasks\n")
    assert (tmp_path / "2021-01-05.md").read_text() == "## Tasks\n"
    assert store.read_document("2021-01-05") == "## Tasks\n"


def test_crlf_is_preserved(tmp_path: Path):
    (tmp_path / "note.md").write_bytes(b"a\r\nb\r\n")
    store = FileSystemStore(tmp_path)
    text = store.read_document("note")
    assert text == "a\r\nb\r\n"
    store.write_document("note", text.replace("a", "z"))
    assert (tmp_path / "note.md").read_bytes() == b"z\r\nb\r\n"


def test_missing_document(tmp_path: Path):
    with pytest.raises(DocumentStoreError):
        FileSystemStore(tmp_path).read_document("nope")


def test_cache_only_when_asked(tmp_path: Path):
    store = FileSystemStore(tmp_path)
    store.write_document("note", "one")
    (tmp_path / "note.md").write_text("two")
    assert store.read_document("note", use_cache=True) == "one"
    assert store.read_document("note") == "two"


def test_periodic_notes_in_folder(tmp_path: Path):
    store = FileSystemStore(tmp_path, folder="daily")
    name = store.resolve_or_create_document_for_date(date(2021, 1, 5))
    assert name == "2021-01-05"
    assert (tmp_path / "daily" / "2021-01-05.md").read_text() == ""
    assert store.date_for_document(name) == date(2021, 1, 5)


def test_resolve_keeps_existing_note(tmp_path: Path):
    (tmp_path / "2021-01-05.md").write_text("# Existing\n")
    store = FileSystemStore(tmp_path)
    store.resolve_or_create_document_for_date(date(2021, 1, 5))
    assert store.read_document("2021-01-05") == "# Existing\n"


def test_custom_date_format(tmp_path: Path):
    store = FileSystemStore(tmp_path, date_format="%d.%m.%Y")
    assert store.filename_for_date(date(2021, 1, 5)) == "05.01.2021"
    assert store.date_for_document("2021-01-05") is None


def test_documents_found_by_name_anywhere(tmp_path: Path):
    (tmp_path / "projects").mkdir()
    (tmp_path / "projects" / "Garden.md").write_text("- [ ] dig\n")
    store = FileSystemStore(tmp_path)
    assert store.read_document("Garden") == "- [ ] dig\n"
    assert store.read_document("projects/Garden") == "- [ ] dig\n"
