"""Conversion between participants and their stored representations.

Two shapes of local snapshot exist in the wild:

* version 2 (current): ``{"version": 2, "lastUpdated": ..., "state": {"sessions": {id: {...}}}}``
* version 1 (legacy, single session): ``{"lastUpdated": ..., "state": {"enrolled": [...], "waitingQueue": [...]}}``

The ``sessions`` key is the discriminant. Legacy snapshots are decoded into the
current shape with every record assigned to the first configured session; the
decoded payload itself is never modified.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from .models import ATTENDANCE_MODES, MultiSessionState, Participant, SessionState

SNAPSHOT_VERSION = 2


class SnapshotFormatError(ValueError):
    """Raised when a stored snapshot or record cannot be decoded."""


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def parse_timestamp(raw: str | datetime) -> datetime:
    value = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def participant_to_record(participant: Participant) -> dict[str, Any]:
    return {
        "id": participant.identifier,
        "name": participant.name,
        "needs_quota": participant.needs_quota,
        "attendance": participant.attendance,
        "enrolled_at": participant.enrolled_at.isoformat(),
        "session_id": participant.session_id,
    }


def record_to_participant(record: Mapping[str, Any], *, default_session_id: str) -> Participant:
    identifier = _pick(record, "id")
    name = _pick(record, "name")
    needs_quota = _pick(record, "needs_quota", "needsQuota", "needsDiversityQuota", "needs_diversity_quota")
    attendance = _pick(record, "attendance", "participationType", "participation_type")
    enrolled_at = _pick(record, "enrolled_at", "enrolledAt")
    if identifier is None or name is None or needs_quota is None or enrolled_at is None:
        raise SnapshotFormatError(f"Incomplete participant record: {dict(record)!r}")
    if attendance not in ATTENDANCE_MODES:
        raise SnapshotFormatError(f"Invalid attendance mode '{attendance}' for participant '{identifier}'")
    try:
        timestamp = parse_timestamp(enrolled_at)
    except ValueError as exc:
        raise SnapshotFormatError(f"Invalid timestamp '{enrolled_at}' for participant '{identifier}'") from exc

    return Participant(
        identifier=str(identifier),
        name=str(name),
        needs_quota=bool(needs_quota),
        attendance=attendance,
        session_id=str(_pick(record, "session_id", "sessionId") or default_session_id),
        enrolled_at=timestamp,
    )


def _decode_list(records: Any, *, session_id: str, force_session: bool) -> list[Participant]:
    if not isinstance(records, list):
        raise SnapshotFormatError("Expected a list of participant records")
    participants = []
    for record in records:
        if not isinstance(record, Mapping):
            raise SnapshotFormatError(f"Expected a participant record, got {type(record).__name__}")
        participant = record_to_participant(record, default_session_id=session_id)
        if force_session and participant.session_id != session_id:
            participant = replace(participant, session_id=session_id)
        participants.append(participant)
    return participants


def decode_snapshot(payload: Any, session_ids: Sequence[str]) -> MultiSessionState:
    if not session_ids:
        raise ValueError("At least one session id is required")
    if not isinstance(payload, Mapping) or not isinstance(payload.get("state"), Mapping):
        raise SnapshotFormatError("Snapshot has no 'state' object")

    body = payload["state"]
    result = MultiSessionState.empty(session_ids)

    if "sessions" in body:
        sessions = body["sessions"]
        if not isinstance(sessions, Mapping):
            raise SnapshotFormatError("'sessions' must be an object")
        for session_id, session_body in sessions.items():
            if not isinstance(session_body, Mapping):
                raise SnapshotFormatError(f"Session '{session_id}' must be an object")
            result.sessions[session_id] = SessionState(
                enrolled=_decode_list(session_body.get("enrolled", []), session_id=session_id, force_session=False),
                waiting_queue=_decode_list(
                    _pick(session_body, "waiting_queue", "waitingQueue") or [],
                    session_id=session_id,
                    force_session=False,
                ),
            )
        return result

    if "enrolled" in body or "waitingQueue" in body:
        first = session_ids[0]
        result.sessions[first] = SessionState(
            enrolled=_decode_list(body.get("enrolled", []), session_id=first, force_session=True),
            waiting_queue=_decode_list(body.get("waitingQueue", []), session_id=first, force_session=True),
        )
        return result

    raise SnapshotFormatError("Unrecognised snapshot shape")


def encode_snapshot(state: MultiSessionState, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "lastUpdated": (now or datetime.now(timezone.utc)).isoformat(),
        "state": {
            "sessions": {
                session_id: {
                    "enrolled": [participant_to_record(p) for p in session.enrolled],
                    "waiting_queue": [participant_to_record(p) for p in session.waiting_queue],
                }
                for session_id, session in state.sessions.items()
            }
        },
    }
