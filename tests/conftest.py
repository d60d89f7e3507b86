"""Shared fixtures for the enrollment test-suite.

The repository root is put on ``sys.path`` so ``import enrollment`` works when
tests are run from any directory without installing the package.
"""

import itertools
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from enrollment.models import Participant, SessionState  # noqa: E402

BASE_TIME = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self) -> None:
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeRestBackend:
    """In-memory stand-in for the REST tables, injected as ``http`` into RemoteRepository."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict]] = {
            "enrolled_participants": {},
            "waiting_queue_participants": {},
        }
        # Each entry is consumed by one request: an exception is raised, an int is returned as status.
        self.failures: list = []
        # Same, but only for requests of a given (method, table).
        self.targeted_failures: dict[tuple[str, str], list] = {}
        self.calls: list[dict] = []

    def request(self, method, url, *, params=None, json=None, headers=None, timeout=None):  # noqa: A002
        table = url.rsplit("/", 1)[-1]
        self.calls.append({"method": method, "table": table, "params": params, "headers": headers, "json": json})
        targeted = self.targeted_failures.get((method, table))
        if targeted or self.failures:
            failure = targeted.pop(0) if targeted else self.failures.pop(0)
            if isinstance(failure, BaseException):
                raise failure
            return FakeResponse(failure, text="simulated failure")

        rows = self.tables[table]
        if method == "GET":
            return FakeResponse(200, sorted(rows.values(), key=lambda row: row["enrolled_at"]))
        if method == "POST":
            for row in json:
                rows[row["id"]] = dict(row)
            return FakeResponse(201)
        if method == "DELETE":
            if params and "session_id" in params:
                wanted = params["session_id"].removeprefix("eq.")
                for key in [key for key, row in rows.items() if row.get("session_id") == wanted]:
                    del rows[key]
            elif params and params.get("id", "").startswith("eq."):
                rows.pop(params["id"].removeprefix("eq."), None)
            else:
                rows.clear()
            return FakeResponse(204)
        return FakeResponse(405)

    def count(self, table: str) -> int:
        return len(self.tables[table])


@pytest.fixture
def backend() -> FakeRestBackend:
    return FakeRestBackend()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def clock():
    ticks = itertools.count()
    return lambda: BASE_TIME + timedelta(minutes=next(ticks))


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda prefix: f"{prefix}-{next(counter)}"


def make_participant(
    name: str,
    *,
    needs_quota: bool = False,
    session_id: str = "session-1",
    attendance: str = "local",
    offset: int = 0,
) -> Participant:
    return Participant(
        identifier=f"p-{session_id}-{name.replace(' ', '-').lower()}",
        name=name,
        needs_quota=needs_quota,
        attendance=attendance,
        session_id=session_id,
        enrolled_at=BASE_TIME + timedelta(seconds=offset),
    )


def make_state(*, quota: int = 0, non_quota: int = 0, queued: int = 0, session_id: str = "session-1") -> SessionState:
    state = SessionState()
    for index in range(non_quota):
        state.enrolled.append(make_participant(f"Member {index + 1}", session_id=session_id, offset=index))
    for index in range(quota):
        state.enrolled.append(
            make_participant(f"Quota {index + 1}", needs_quota=True, session_id=session_id, offset=100 + index)
        )
    for index in range(queued):
        state.waiting_queue.append(make_participant(f"Queued {index + 1}", session_id=session_id, offset=200 + index))
    return state
