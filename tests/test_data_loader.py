import io
from datetime import date

import pytest

from enrollment import data_loader
from enrollment.data_loader import DataLoaderError


def csv_buffer(text: str, name: str = "sessions.csv") -> io.StringIO:
    buffer = io.StringIO(text)
    setattr(buffer, "name", name)
    return buffer


def test_load_sessions_from_stream() -> None:
    sessions = data_loader.load_sessions(
        csv_buffer(
            "id,date,timeslot,description\n"
            "session-1,2026-03-17,11-14,First workshop\n"
            ",2026-03-18,11-14,skipped\n"
            "session-2,2026-04-07, 11-14 ,\n"
        )
    )

    assert [s.identifier for s in sessions] == ["session-1", "session-2"]
    assert sessions[0].date == date(2026, 3, 17)
    assert sessions[0].description == "First workshop"
    assert sessions[1].timeslot == "11-14"
    assert sessions[1].description is None


def test_shipped_sessions_file_loads() -> None:
    from enrollment.config import Settings

    sessions = data_loader.load_sessions(Settings().sessions_csv)

    assert [s.identifier for s in sessions] == ["session-1", "session-2"]


def test_missing_columns_are_reported() -> None:
    with pytest.raises(DataLoaderError, match="date"):
        data_loader.load_sessions(csv_buffer("id,timeslot\nsession-1,11-14\n"))


def test_invalid_date_is_reported() -> None:
    with pytest.raises(DataLoaderError, match="invalid date"):
        data_loader.load_sessions(csv_buffer("id,date,timeslot\nsession-1,17.3.2026,11-14\n"))


def test_duplicate_ids_are_reported() -> None:
    with pytest.raises(DataLoaderError, match="more than once"):
        data_loader.load_sessions(
            csv_buffer("id,date,timeslot\nsession-1,2026-03-17,11-14\nsession-1,2026-04-07,11-14\n")
        )


def test_empty_file_is_reported() -> None:
    with pytest.raises(DataLoaderError, match="no sessions"):
        data_loader.load_sessions(csv_buffer("id,date,timeslot\n"))


def test_missing_file_is_reported(tmp_path) -> None:
    with pytest.raises(DataLoaderError, match="Cannot open"):
        data_loader.load_sessions(tmp_path / "nope.csv")
