from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Literal


AttendanceMode = Literal["local", "remote"]

ATTENDANCE_MODES: tuple[AttendanceMode, ...] = ("local", "remote")


@dataclass(frozen=True)
class CapacityRules:
    max_capacity: int = 20
    quota_spots: int = 3
    non_quota_spots: int = 17


DEFAULT_RULES = CapacityRules()


@dataclass(frozen=True)
class Session:
    identifier: str
    date: date
    timeslot: str
    description: str | None = None


@dataclass(frozen=True)
class Candidate:
    name: str
    needs_quota: bool
    attendance: AttendanceMode
    session_id: str


@dataclass(frozen=True)
class Participant:
    identifier: str
    name: str
    needs_quota: bool
    attendance: AttendanceMode
    session_id: str
    enrolled_at: datetime


@dataclass
class SessionState:
    enrolled: list[Participant] = field(default_factory=list)
    waiting_queue: list[Participant] = field(default_factory=list)

    def quota_count(self) -> int:
        return sum(1 for participant in self.enrolled if participant.needs_quota)

    def non_quota_count(self) -> int:
        return sum(1 for participant in self.enrolled if not participant.needs_quota)

    def copy(self) -> SessionState:
        return SessionState(enrolled=list(self.enrolled), waiting_queue=list(self.waiting_queue))


@dataclass
class MultiSessionState:
    sessions: dict[str, SessionState] = field(default_factory=dict)

    @classmethod
    def empty(cls, session_ids: Iterable[str]) -> MultiSessionState:
        return cls(sessions={session_id: SessionState() for session_id in session_ids})

    def for_session(self, session_id: str) -> SessionState:
        state = self.sessions.get(session_id)
        if state is None:
            raise KeyError(f"Unknown session id '{session_id}'.")
        return state

    def ensure_sessions(self, session_ids: Iterable[str]) -> None:
        for session_id in session_ids:
            self.sessions.setdefault(session_id, SessionState())

    def copy(self) -> MultiSessionState:
        return MultiSessionState(sessions={key: state.copy() for key, state in self.sessions.items()})


@dataclass(frozen=True)
class EnrollmentStats:
    total: int
    quota_count: int
    non_quota_count: int
    local: int
    remote: int
    available_spots: int
    quota_remaining: int
    non_quota_remaining: int
    waiting_queue_length: int

    @classmethod
    def from_state(cls, state: SessionState, rules: CapacityRules = DEFAULT_RULES) -> EnrollmentStats:
        quota_count = state.quota_count()
        non_quota_count = state.non_quota_count()
        return cls(
            total=len(state.enrolled),
            quota_count=quota_count,
            non_quota_count=non_quota_count,
            local=sum(1 for p in state.enrolled if p.attendance == "local"),
            remote=sum(1 for p in state.enrolled if p.attendance == "remote"),
            available_spots=rules.max_capacity - len(state.enrolled),
            quota_remaining=max(0, rules.quota_spots - quota_count),
            non_quota_remaining=max(0, rules.non_quota_spots - non_quota_count),
            waiting_queue_length=len(state.waiting_queue),
        )


class ErrorKind(str, Enum):
    REJECTED = "rejected"
    NETWORK = "network"
    BACKEND = "backend"
