# enrollment/config.py

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import CapacityRules
from .retry import RetryPolicy

BASE_DIR = os.path.abspath(os.getenv("ENROLLMENT_BASE_DIR", os.path.join(os.path.dirname(__file__), "..")))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_datetime(name: str, default: str) -> datetime:
    raw = os.getenv(name) or default
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"{name} must be an ISO-8601 timestamp, got {raw!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class StoreConfig:
    """Durable store and local snapshot locations.

    Values can be overridden via environment variables:
    - ENROLLMENT_STORE_URL (empty = local-only deployment)
    - ENROLLMENT_STORE_KEY
    - ENROLLMENT_CACHE_PATH
    - ENROLLMENT_REQUEST_TIMEOUT
    - ENROLLMENT_CONNECTIVITY_URL
    """

    url: str = field(default_factory=lambda: os.getenv("ENROLLMENT_STORE_URL", "").strip())
    api_key: str = field(default_factory=lambda: os.getenv("ENROLLMENT_STORE_KEY", ""))
    cache_path: str = field(
        default_factory=lambda: os.getenv(
            "ENROLLMENT_CACHE_PATH", os.path.join(BASE_DIR, "data", "enrollment-cache.json")
        )
    )
    request_timeout: float = field(default_factory=lambda: _env_float("ENROLLMENT_REQUEST_TIMEOUT", 5.0))
    connectivity_url: str = field(
        default_factory=lambda: os.getenv("ENROLLMENT_CONNECTIVITY_URL", "https://httpbin.org/get")
    )

    @property
    def configured(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = field(default_factory=lambda: _env_int("ENROLLMENT_SAVE_RETRIES", 3))
    base_delay: float = field(default_factory=lambda: _env_float("ENROLLMENT_RETRY_BASE_DELAY", 1.0))
    max_delay: float = field(default_factory=lambda: _env_float("ENROLLMENT_RETRY_MAX_DELAY", 10.0))

    def policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, base_delay=self.base_delay, max_delay=self.max_delay)


@dataclass(frozen=True)
class CapacityConfig:
    max_capacity: int = field(default_factory=lambda: _env_int("ENROLLMENT_MAX_CAPACITY", 20))
    quota_spots: int = field(default_factory=lambda: _env_int("ENROLLMENT_QUOTA_SPOTS", 3))
    non_quota_spots: int = field(default_factory=lambda: _env_int("ENROLLMENT_NON_QUOTA_SPOTS", 17))

    def rules(self) -> CapacityRules:
        return CapacityRules(
            max_capacity=self.max_capacity,
            quota_spots=self.quota_spots,
            non_quota_spots=self.non_quota_spots,
        )


@dataclass(frozen=True)
class GateConfig:
    """Second-session early registration gate (cutoff defaults to 10 Feb 2026, 08:00 Helsinki)."""

    restricted_session_id: str = field(
        default_factory=lambda: os.getenv("ENROLLMENT_RESTRICTED_SESSION", "session-2")
    )
    cutoff: datetime = field(
        default_factory=lambda: _env_datetime("ENROLLMENT_GATE_CUTOFF", "2026-02-10T08:00:00+02:00")
    )
    max_queue_position: int = field(default_factory=lambda: _env_int("ENROLLMENT_GATE_MAX_POSITION", 17))


@dataclass(frozen=True)
class Settings:
    sessions_csv: str = field(
        default_factory=lambda: os.getenv("ENROLLMENT_SESSIONS_CSV", os.path.join(BASE_DIR, "data", "sessions.csv"))
    )
    store: StoreConfig = field(default_factory=StoreConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    capacity: CapacityConfig = field(default_factory=CapacityConfig)
    gate: GateConfig = field(default_factory=GateConfig)
