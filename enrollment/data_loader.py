"""Utilities to load session descriptors from CSV."""

from __future__ import annotations

import csv
from datetime import date
from pathlib import Path
from typing import Callable, Sequence, TextIO

from .models import Session


class DataLoaderError(RuntimeError):
    """Raised when a CSV file cannot be parsed correctly."""


CsvSource = str | Path | TextIO


def _validate_headers(headers: Sequence[str], expected: Sequence[str], *, file_label: str) -> None:
    missing = [name for name in expected if name not in headers]
    if missing:
        raise DataLoaderError(f"File '{file_label}' is missing required columns: {', '.join(missing)}")


def _prepare_reader(csv_source: CsvSource) -> tuple[csv.DictReader, Callable[[], None], str]:
    if isinstance(csv_source, (str, Path)):
        path = Path(csv_source)
        try:
            fh = path.open(newline="", encoding="utf-8")
        except OSError as exc:
            raise DataLoaderError(f"Cannot open '{path}': {exc}") from exc
        file_label = str(path)

        def closer() -> None:
            fh.close()

    else:
        fh = csv_source
        if hasattr(fh, "seek"):
            fh.seek(0)
        file_label = getattr(fh, "name", "<uploaded file>")

        def closer() -> None:  # pragma: no cover - simple passthrough
            return None

    reader = csv.DictReader(fh)
    return reader, closer, file_label


def load_sessions(csv_source: CsvSource) -> list[Session]:
    reader, closer, label = _prepare_reader(csv_source)
    try:
        _validate_headers(reader.fieldnames or [], ["id", "date", "timeslot"], file_label=label)
        sessions: list[Session] = []
        seen: set[str] = set()
        for row in reader:
            identifier = (row.get("id") or "").strip()
            if not identifier:
                continue
            if identifier in seen:
                raise DataLoaderError(f"Session '{identifier}' appears more than once in '{label}'")
            raw_date = (row.get("date") or "").strip()
            try:
                session_date = date.fromisoformat(raw_date)
            except ValueError as exc:
                raise DataLoaderError(f"Session '{identifier}' has an invalid date: '{raw_date}'") from exc
            seen.add(identifier)
            sessions.append(
                Session(
                    identifier=identifier,
                    date=session_date,
                    timeslot=(row.get("timeslot") or "").strip(),
                    description=(row.get("description") or "").strip() or None,
                )
            )
    finally:
        closer()
    if not sessions:
        raise DataLoaderError(f"File '{label}' defines no sessions")
    return sessions
