"""Admission rules for workshop sessions.

Everything here is pure: functions take the current :class:`SessionState` of a
single session and either leave it untouched or append exactly one participant.
Persistence and rollback are the caller's job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal

from .models import DEFAULT_RULES, CapacityRules, Candidate, Participant, SessionState

CAPACITY_FULL = "Capacity full"
QUOTA_FILLED = "The quota spots have been filled."
NON_QUOTA_FULL = "Non-quota spots are full. You will be added to the waiting queue."
NAME_REQUIRED = "Name is required"

ENROLLED_MESSAGE = "Successfully enrolled!"
QUEUED_MESSAGE = "Added to waiting queue"

IdFactory = Callable[[str], str]
Placement = Literal["enrolled", "waiting_queue"]


def default_id_factory(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Admission:
    admit: bool
    reason: str | None = None
    to_queue: bool = False


@dataclass(frozen=True)
class Outcome:
    success: bool
    message: str
    participant: Participant | None = None
    placement: Placement | None = None

    @property
    def added_to_queue(self) -> bool:
        return self.placement == "waiting_queue"


def can_enroll(needs_quota: bool, state: SessionState, rules: CapacityRules = DEFAULT_RULES) -> Admission:
    total = len(state.enrolled)
    non_quota_full = state.non_quota_count() >= rules.non_quota_spots

    if total >= rules.max_capacity:
        return Admission(False, CAPACITY_FULL, to_queue=not needs_quota and non_quota_full)

    if needs_quota:
        if state.quota_count() < rules.quota_spots:
            return Admission(True)
        # Overflow: once non-quota spots are gone the rest of the room opens up.
        if non_quota_full:
            return Admission(True)
        return Admission(False, QUOTA_FILLED)

    if not non_quota_full:
        return Admission(True)
    return Admission(False, NON_QUOTA_FULL, to_queue=True)


def _build_participant(
    candidate: Candidate,
    *,
    prefix: str,
    now: datetime | None,
    id_factory: IdFactory,
) -> Participant:
    return Participant(
        identifier=id_factory(prefix),
        name=candidate.name.strip(),
        needs_quota=candidate.needs_quota,
        attendance=candidate.attendance,
        session_id=candidate.session_id,
        enrolled_at=now or datetime.now(timezone.utc),
    )


def enqueue(
    candidate: Candidate,
    state: SessionState,
    *,
    now: datetime | None = None,
    id_factory: IdFactory = default_id_factory,
) -> Outcome:
    participant = _build_participant(candidate, prefix="waiting", now=now, id_factory=id_factory)
    state.waiting_queue.append(participant)
    return Outcome(True, QUEUED_MESSAGE, participant=participant, placement="waiting_queue")


def enroll(
    candidate: Candidate,
    state: SessionState,
    *,
    rules: CapacityRules = DEFAULT_RULES,
    now: datetime | None = None,
    id_factory: IdFactory = default_id_factory,
) -> Outcome:
    if not candidate.name.strip():
        return Outcome(False, NAME_REQUIRED)

    admission = can_enroll(candidate.needs_quota, state, rules)
    if admission.admit:
        participant = _build_participant(candidate, prefix="enrolled", now=now, id_factory=id_factory)
        state.enrolled.append(participant)
        return Outcome(True, ENROLLED_MESSAGE, participant=participant, placement="enrolled")

    if admission.to_queue:
        return enqueue(candidate, state, now=now, id_factory=id_factory)

    return Outcome(False, admission.reason or "Cannot enroll")


def discard(state: SessionState, participant: Participant) -> bool:
    """Remove ``participant`` (matched by id) from whichever list holds it."""
    for bucket in (state.enrolled, state.waiting_queue):
        for index, existing in enumerate(bucket):
            if existing.identifier == participant.identifier:
                del bucket[index]
                return True
    return False
