"""Caller-facing enrollment operations.

An :class:`EnrollmentService` owns the in-memory state for every configured
session. Each mutation is applied optimistically, persisted through the
:class:`LayeredStore`, and rolled back if the durable write fails, so a caller
is never told "enrolled" for a record that was not stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from . import engine
from .config import Settings
from .connectivity import check_connectivity, log_connectivity
from .data_loader import load_sessions
from .eligibility import EligibilityGate, Verdict
from .models import (
    DEFAULT_RULES,
    CapacityRules,
    Candidate,
    EnrollmentStats,
    ErrorKind,
    MultiSessionState,
    Participant,
    Session,
    SessionState,
)
from .store import LayeredStore, LoadResult, LocalSnapshotRepository, RemoteRepository, SaveResult

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

NETWORK_FAILURE_MESSAGE = (
    "Your enrollment could not be saved because of a network problem. "
    "Please check your connection and try again."
)
BACKEND_FAILURE_MESSAGE = "Your enrollment could not be saved because of a server error. Please try again later."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EnrollmentResult:
    success: bool
    message: str
    added_to_queue: bool = False
    participant: Participant | None = None
    error: ErrorKind | None = None


def _failure_message(result: SaveResult) -> str:
    if result.error is ErrorKind.NETWORK:
        return NETWORK_FAILURE_MESSAGE
    return BACKEND_FAILURE_MESSAGE


class EnrollmentService:
    def __init__(
        self,
        store: LayeredStore,
        sessions: Sequence[Session],
        *,
        rules: CapacityRules = DEFAULT_RULES,
        gate: EligibilityGate | None = None,
        clock: Clock = utc_now,
        id_factory: engine.IdFactory = engine.default_id_factory,
    ):
        if not sessions:
            raise ValueError("At least one session must be configured")
        self.store = store
        self.sessions: dict[str, Session] = {session.identifier: session for session in sessions}
        self.rules = rules
        self.gate = gate
        self.clock = clock
        self.id_factory = id_factory
        self.served_by: str | None = None
        self._state = MultiSessionState.empty(self.session_ids)
        self._loading = False

    @property
    def session_ids(self) -> list[str]:
        return list(self.sessions)

    def load(self) -> LoadResult | None:
        if self._loading:
            logger.debug("Load already in progress; ignoring request")
            return None
        self._loading = True
        try:
            result = self.store.load(self.session_ids)
            self._state = result.state
            self.served_by = result.served_by
            return result
        finally:
            self._loading = False

    def refresh(self) -> LoadResult | None:
        return self.load()

    def get_state(self, session_id: str) -> SessionState:
        return self._state.for_session(session_id).copy()

    def get_stats(self, session_id: str) -> EnrollmentStats:
        return EnrollmentStats.from_state(self._state.for_session(session_id), self.rules)

    def _persist(self, state: SessionState, outcome: engine.Outcome) -> EnrollmentResult:
        participant = outcome.participant
        if participant is None:
            raise ValueError("Only an admitted or queued outcome can be persisted")
        result = self.store.save(self._state)
        if result.ok:
            logger.info(
                "%s %s in %s (%s)",
                "Queued" if outcome.added_to_queue else "Enrolled",
                participant.identifier,
                participant.session_id,
                result.served_by,
            )
            return EnrollmentResult(
                True,
                outcome.message,
                added_to_queue=outcome.added_to_queue,
                participant=participant,
            )

        engine.discard(state, participant)
        # A partial remote write can leave rows behind that a refresh would bring back.
        self.store.discard(participant.identifier)
        self.store.write_cache(self._state)
        logger.error(
            "Rolled back %s after %s persistence failure: %s",
            participant.identifier,
            result.error.value if result.error else "unknown",
            result.message,
        )
        return EnrollmentResult(False, _failure_message(result), error=result.error)

    def enroll(self, candidate: Candidate) -> EnrollmentResult:
        state = self._state.for_session(candidate.session_id)
        if not candidate.name.strip():
            return EnrollmentResult(False, engine.NAME_REQUIRED, error=ErrorKind.REJECTED)
        now = self.clock()

        if self.gate is not None:
            decision = self.gate.check(candidate.name, candidate.session_id, self._state, now)
            if decision.verdict is Verdict.ALREADY_QUEUED:
                return EnrollmentResult(True, decision.message or "")
            if decision.verdict is Verdict.QUEUE:
                outcome = engine.enqueue(candidate, state, now=now, id_factory=self.id_factory)
                persisted = self._persist(state, outcome)
                if persisted.success:
                    return EnrollmentResult(
                        True,
                        decision.message or outcome.message,
                        added_to_queue=True,
                        participant=persisted.participant,
                    )
                return persisted

        outcome = engine.enroll(candidate, state, rules=self.rules, now=now, id_factory=self.id_factory)
        if not outcome.success:
            return EnrollmentResult(False, outcome.message, error=ErrorKind.REJECTED)
        return self._persist(state, outcome)

    def clear_data(self, session_id: str | None = None) -> SaveResult:
        if session_id is None:
            self._state = MultiSessionState.empty(self.session_ids)
        else:
            self._state.for_session(session_id)
            self._state.sessions[session_id] = SessionState()
        result = self.store.clear(self._state, session_id)
        if result.ok:
            logger.info("Cleared enrollment data for %s", session_id or "all sessions")
        else:
            logger.error("Clearing %s failed: %s", session_id or "all sessions", result.message)
        return result


def build_store(settings: Settings) -> LayeredStore:
    cache = LocalSnapshotRepository(settings.store.cache_path)
    primary = None
    if settings.store.configured:
        primary = RemoteRepository(
            settings.store.url,
            settings.store.api_key,
            timeout=settings.store.request_timeout,
        )
    return LayeredStore(primary, cache, retry=settings.retry.policy())


def create_service(settings: Settings | None = None, *, load: bool = True) -> EnrollmentService:
    settings = settings or Settings()
    sessions = load_sessions(settings.sessions_csv)
    gate = None
    restricted = settings.gate.restricted_session_id
    if restricted != sessions[0].identifier and restricted in {session.identifier for session in sessions}:
        gate = EligibilityGate(
            restricted_session_id=restricted,
            source_session_id=sessions[0].identifier,
            cutoff=settings.gate.cutoff,
            max_queue_position=settings.gate.max_queue_position,
        )
    service = EnrollmentService(
        build_store(settings),
        sessions,
        rules=settings.capacity.rules(),
        gate=gate,
    )
    if isinstance(service.store.primary, RemoteRepository):
        log_connectivity(check_connectivity(service.store.primary, url=settings.store.connectivity_url))
    if load:
        service.load()
    return service
