"""Persistence layers for enrollment state.

``RemoteRepository`` talks to a PostgREST-style HTTP API (two tables, one per
list) and ``LocalSnapshotRepository`` keeps a JSON snapshot on disk.
``LayeredStore`` composes them: reads go remote -> local -> empty default,
writes go local first (best effort) and then remote with retries.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

import requests

from .codec import SnapshotFormatError, decode_snapshot, encode_snapshot, participant_to_record, record_to_participant
from .models import ErrorKind, MultiSessionState, SessionState
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

TABLES: dict[str, str] = {
    "enrolled": "enrolled_participants",
    "waiting_queue": "waiting_queue_participants",
}

# Statuses treated as transient transport failures.
TRANSIENT_STATUS = frozenset({408, 425, 429, 502, 503, 504})


class StoreError(RuntimeError):
    """Base class for persistence failures."""


class StoreUnavailable(StoreError):
    """The layer is not configured or holds no data yet."""


class StoreNetworkError(StoreError):
    """Timeouts, refused connections and other transient transport failures."""


class StoreBackendError(StoreError):
    """The backend answered but rejected the request or returned garbage."""


class Repository(ABC):
    name: str = "repository"

    @abstractmethod
    def load(self, session_ids: Sequence[str]) -> MultiSessionState: ...

    @abstractmethod
    def save(self, state: MultiSessionState) -> None: ...

    @abstractmethod
    def clear(self, session_id: str | None = None) -> None: ...

    @abstractmethod
    def delete(self, participant_id: str) -> None: ...


class LocalSnapshotRepository(Repository):
    name = "local"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> Any:
        if not self.path.exists():
            raise StoreUnavailable(f"No local snapshot at '{self.path}'")
        try:
            return json.loads(self.path.read_text(encoding="utf-8") or "null")
        except (OSError, ValueError) as exc:
            raise StoreBackendError(f"Cannot read local snapshot '{self.path}': {exc}") from exc

    def _write(self, payload: Any) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        except OSError as exc:
            raise StoreBackendError(f"Cannot write local snapshot '{self.path}': {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreBackendError(f"Cannot write local snapshot '{self.path}': {exc}") from exc

    def load(self, session_ids: Sequence[str]) -> MultiSessionState:
        payload = self._read()
        try:
            return decode_snapshot(payload, session_ids)
        except SnapshotFormatError as exc:
            raise StoreBackendError(f"Local snapshot '{self.path}' is malformed: {exc}") from exc

    def save(self, state: MultiSessionState) -> None:
        self._write(encode_snapshot(state))

    def clear(self, session_id: str | None = None) -> None:
        if session_id is None:
            self.path.unlink(missing_ok=True)
            return
        try:
            payload = self._read()
        except StoreUnavailable:
            return
        sessions = payload.get("state", {}).get("sessions") if isinstance(payload, dict) else None
        if isinstance(sessions, dict) and session_id in sessions:
            sessions[session_id] = {"enrolled": [], "waiting_queue": []}
            self._write(payload)

    def delete(self, participant_id: str) -> None:
        try:
            payload = self._read()
        except StoreUnavailable:
            return
        sessions = payload.get("state", {}).get("sessions") if isinstance(payload, dict) else None
        if not isinstance(sessions, dict):
            return
        changed = False
        for body in sessions.values():
            for bucket in ("enrolled", "waiting_queue"):
                records = body.get(bucket) or []
                kept = [record for record in records if record.get("id") != participant_id]
                if len(kept) != len(records):
                    body[bucket] = kept
                    changed = True
        if changed:
            self._write(payload)


class RemoteRepository(Repository):
    name = "remote"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 5.0,
        http: requests.Session | None = None,
    ):
        if not base_url:
            raise StoreUnavailable("Durable store URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            response = self.http.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(headers),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise StoreNetworkError(f"{method} {table}: {exc}") from exc
        except requests.RequestException as exc:
            raise StoreBackendError(f"{method} {table}: {exc}") from exc

        if response.status_code in TRANSIENT_STATUS:
            raise StoreNetworkError(f"{method} {table}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise StoreBackendError(f"{method} {table}: HTTP {response.status_code} {response.text[:200]}")
        return response

    def load(self, session_ids: Sequence[str]) -> MultiSessionState:
        state = MultiSessionState.empty(session_ids)
        for bucket, table in TABLES.items():
            response = self._request("GET", table, params={"select": "*", "order": "enrolled_at.asc"})
            try:
                rows = response.json()
            except ValueError as exc:
                raise StoreBackendError(f"GET {table}: response is not JSON") from exc
            if not isinstance(rows, list):
                raise StoreBackendError(f"GET {table}: expected a list of rows")
            for row in rows:
                if not isinstance(row, dict):
                    raise StoreBackendError(f"GET {table}: expected row objects")
                try:
                    participant = record_to_participant(row, default_session_id=session_ids[0])
                except SnapshotFormatError as exc:
                    raise StoreBackendError(f"GET {table}: {exc}") from exc
                session = state.sessions.setdefault(participant.session_id, SessionState())
                getattr(session, bucket).append(participant)
        return state

    def save(self, state: MultiSessionState) -> None:
        for bucket, table in TABLES.items():
            rows = [
                participant_to_record(participant)
                for session in state.sessions.values()
                for participant in getattr(session, bucket)
            ]
            if not rows:
                continue
            self._request(
                "POST",
                table,
                params={"on_conflict": "id"},
                payload=rows,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )

    def clear(self, session_id: str | None = None) -> None:
        params = {"session_id": f"eq.{session_id}"} if session_id else {"id": "not.is.null"}
        for table in TABLES.values():
            self._request("DELETE", table, params=params)

    def delete(self, participant_id: str) -> None:
        for table in TABLES.values():
            self._request("DELETE", table, params={"id": f"eq.{participant_id}"})

    def ping(self) -> None:
        self._request("GET", TABLES["enrolled"], params={"select": "id", "limit": "1"})


@dataclass(frozen=True)
class LoadResult:
    state: MultiSessionState
    served_by: str


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    served_by: str | None = None
    error: ErrorKind | None = None
    message: str | None = None


class LayeredStore:
    DEFAULT_LAYER = "default"

    def __init__(
        self,
        primary: Repository | None,
        cache: Repository,
        *,
        retry: RetryPolicy | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        self.primary = primary
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self.sleeper = sleeper

    @property
    def layers(self) -> list[Repository]:
        return [layer for layer in (self.primary, self.cache) if layer is not None]

    def load(self, session_ids: Sequence[str]) -> LoadResult:
        if self.primary is None:
            logger.info("Durable store not configured; reading local snapshot only")
        for layer in self.layers:
            try:
                state = layer.load(session_ids)
            except StoreError as exc:
                logger.warning("Load from %s store failed, falling back: %s", layer.name, exc)
                continue
            state.ensure_sessions(session_ids)
            if layer is not self.cache:
                self.write_cache(state)
            logger.info("Loaded enrollment state from %s store", layer.name)
            return LoadResult(state, layer.name)

        logger.warning("No store could serve enrollment state; starting empty")
        return LoadResult(MultiSessionState.empty(session_ids), self.DEFAULT_LAYER)

    def write_cache(self, state: MultiSessionState) -> bool:
        try:
            self.cache.save(state)
        except StoreError as exc:
            logger.error("Local snapshot write failed: %s", exc)
            return False
        return True

    def _run_primary(self, primary: Repository, label: str, operation: Callable[[], None]) -> SaveResult:
        try:
            self.retry.run(operation, retry_on=(StoreNetworkError,), sleeper=self.sleeper, label=label)
        except StoreNetworkError as exc:
            return SaveResult(False, error=ErrorKind.NETWORK, message=str(exc))
        except StoreError as exc:
            logger.error("%s rejected by backend: %s", label, exc)
            return SaveResult(False, error=ErrorKind.BACKEND, message=str(exc))
        return SaveResult(True, served_by=primary.name)

    def save(self, state: MultiSessionState) -> SaveResult:
        cached = self.write_cache(state)
        if self.primary is None:
            if cached:
                return SaveResult(True, served_by=self.cache.name)
            return SaveResult(False, error=ErrorKind.BACKEND, message="Local snapshot write failed")
        primary = self.primary
        return self._run_primary(primary, "Remote save", lambda: primary.save(state))

    def clear(self, state: MultiSessionState, session_id: str | None = None) -> SaveResult:
        """Delete stored records for one session (or all) and rewrite the snapshot from ``state``."""
        try:
            self.cache.clear(session_id)
        except StoreError as exc:
            logger.error("Local snapshot clear failed: %s", exc)
        cached = self.write_cache(state)
        if self.primary is None:
            if cached:
                return SaveResult(True, served_by=self.cache.name)
            return SaveResult(False, error=ErrorKind.BACKEND, message="Local snapshot write failed")
        primary = self.primary
        return self._run_primary(primary, "Remote clear", lambda: primary.clear(session_id))

    def discard(self, participant_id: str) -> SaveResult:
        """Remove one participant from every layer, used to undo a failed save."""
        try:
            self.cache.delete(participant_id)
        except StoreError as exc:
            logger.error("Local snapshot delete of %s failed: %s", participant_id, exc)
        if self.primary is None:
            return SaveResult(True, served_by=self.cache.name)
        primary = self.primary
        result = self._run_primary(primary, "Remote delete", lambda: primary.delete(participant_id))
        if not result.ok:
            logger.error("Could not remove %s from durable store: %s", participant_id, result.message)
        return result
