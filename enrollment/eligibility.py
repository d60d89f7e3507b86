"""Early-registration gate for the restricted (second) session."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .models import MultiSessionState


class Verdict(str, Enum):
    OPEN = "open"
    PROCEED = "proceed"
    QUEUE = "queue"
    ALREADY_QUEUED = "already_queued"


@dataclass(frozen=True)
class GateDecision:
    verdict: Verdict
    rank: int = 0
    message: str | None = None


def normalize_name(name: str) -> str:
    return name.strip().lower()


@dataclass(frozen=True)
class EligibilityGate:
    restricted_session_id: str
    source_session_id: str
    cutoff: datetime
    max_queue_position: int = 17

    def is_active(self, now: datetime) -> bool:
        return now < self.cutoff

    def rank(self, name: str, state: MultiSessionState) -> int:
        """1-based position of ``name`` in the source session's waiting queue, 0 if absent."""
        source = state.sessions.get(self.source_session_id)
        if source is None:
            return 0
        wanted = normalize_name(name)
        # First match wins; participants sharing a name are not told apart.
        for position, participant in enumerate(source.waiting_queue, start=1):
            if normalize_name(participant.name) == wanted:
                return position
        return 0

    def _cutoff_label(self) -> str:
        return self.cutoff.strftime("%d %B %Y %H:%M %Z").strip()

    def check(self, name: str, session_id: str, state: MultiSessionState, now: datetime) -> GateDecision:
        if session_id != self.restricted_session_id or not self.is_active(now):
            return GateDecision(Verdict.OPEN)

        rank = self.rank(name, state)
        if rank == 0:
            return GateDecision(
                Verdict.QUEUE,
                rank,
                f"Enrollment to this session is restricted until {self._cutoff_label()}. "
                f"Before then only the first {self.max_queue_position} people in the first session's "
                "waiting queue can enroll. You have been added to this session's waiting queue.",
            )
        if rank > self.max_queue_position:
            return GateDecision(
                Verdict.ALREADY_QUEUED,
                rank,
                f"You are already in the queue system (position {rank} in the first session's "
                f"waiting queue). Enrollment to this session opens for everyone on {self._cutoff_label()}.",
            )
        return GateDecision(Verdict.PROCEED, rank)
