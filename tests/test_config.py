from datetime import datetime, timedelta, timezone

import pytest

from enrollment.config import Settings
from enrollment.connectivity import ConnectivityReport
from enrollment.models import CapacityRules
from enrollment.service import create_service

ENV_VARS = [
    "ENROLLMENT_STORE_URL",
    "ENROLLMENT_STORE_KEY",
    "ENROLLMENT_REQUEST_TIMEOUT",
    "ENROLLMENT_CONNECTIVITY_URL",
    "ENROLLMENT_CACHE_PATH",
    "ENROLLMENT_SESSIONS_CSV",
    "ENROLLMENT_MAX_CAPACITY",
    "ENROLLMENT_QUOTA_SPOTS",
    "ENROLLMENT_NON_QUOTA_SPOTS",
    "ENROLLMENT_RESTRICTED_SESSION",
    "ENROLLMENT_GATE_CUTOFF",
    "ENROLLMENT_GATE_MAX_POSITION",
    "ENROLLMENT_SAVE_RETRIES",
    "ENROLLMENT_RETRY_BASE_DELAY",
    "ENROLLMENT_RETRY_MAX_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Ensure defaults do not depend on the developer's environment.
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings()

    assert not settings.store.configured
    assert settings.store.request_timeout == 5.0
    assert settings.capacity.rules() == CapacityRules(20, 3, 17)
    assert settings.retry.policy().delays() == [1.0, 2.0, 4.0]
    assert settings.gate.restricted_session_id == "session-2"
    assert settings.gate.cutoff == datetime(2026, 2, 10, 8, 0, tzinfo=timezone(timedelta(hours=2)))
    assert settings.gate.max_queue_position == 17


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENROLLMENT_STORE_URL", "https://db.example.test")
    monkeypatch.setenv("ENROLLMENT_MAX_CAPACITY", "12")
    monkeypatch.setenv("ENROLLMENT_SAVE_RETRIES", "1")
    monkeypatch.setenv("ENROLLMENT_GATE_CUTOFF", "2027-01-01T00:00:00")

    settings = Settings()

    assert settings.store.configured
    assert settings.capacity.max_capacity == 12
    assert settings.retry.policy().delays() == [1.0]
    assert settings.gate.cutoff == datetime(2027, 1, 1, tzinfo=timezone.utc)


def test_invalid_number_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENROLLMENT_QUOTA_SPOTS", "three")

    with pytest.raises(ValueError, match="ENROLLMENT_QUOTA_SPOTS"):
        Settings()


def test_create_service_wires_local_only_deployment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    def unexpected(*args, **kwargs):
        raise AssertionError("connectivity checked without a durable store")

    monkeypatch.setenv("ENROLLMENT_CACHE_PATH", str(tmp_path / "cache.json"))
    monkeypatch.setattr("enrollment.service.check_connectivity", unexpected)

    service = create_service()

    assert service.served_by == "default"
    assert service.store.primary is None
    assert service.gate is not None
    assert service.gate.source_session_id == "session-1"
    assert service.session_ids == ["session-1", "session-2"]


def test_create_service_reports_connectivity_of_durable_store(
    monkeypatch: pytest.MonkeyPatch, tmp_path, caplog
) -> None:
    checked = []

    def fake_check(store, *, url):
        checked.append((store, url))
        return ConnectivityReport(True, False, 12.0, error="Durable store error: HTTP 503")

    monkeypatch.setenv("ENROLLMENT_STORE_URL", "https://db.example.test")
    monkeypatch.setenv("ENROLLMENT_CONNECTIVITY_URL", "https://ping.example.test")
    monkeypatch.setenv("ENROLLMENT_CACHE_PATH", str(tmp_path / "cache.json"))
    monkeypatch.setattr("enrollment.service.check_connectivity", fake_check)

    with caplog.at_level("INFO", logger="enrollment.connectivity"):
        service = create_service(load=False)

    assert checked == [(service.store.primary, "https://ping.example.test")]
    assert service.store.primary.base_url == "https://db.example.test"
    assert "Durable store unreachable" in caplog.text
