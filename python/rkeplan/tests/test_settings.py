"""Unit tests for environment-driven controller settings."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from rkeplan.models.settings import ControllerSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("WORKERS", "KUBECTL_CONTEXT", "LOG_LEVEL"):
        monkeypatch.delenv(f"RKEPLAN_{name}", raising=False)

    settings = ControllerSettings()

    assert settings.workers == 4
    assert settings.resync_interval_seconds == 15.0
    assert settings.retry_base_delay_seconds == 0.005
    assert settings.retry_max_delay_seconds == 300.0
    assert settings.kubectl_context is None
    assert settings.field_manager == "rkeplan"


def test_env_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RKEPLAN_WORKERS", "8")
    monkeypatch.setenv("RKEPLAN_KUBECTL_CONTEXT", "mgmt")
    monkeypatch.setenv("WORKERS", "99")

    settings = ControllerSettings()

    assert settings.workers == 8
    assert settings.kubectl_context == "mgmt"


def test_rejects_zero_workers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RKEPLAN_WORKERS", "0")
    with pytest.raises(ValidationError):
        ControllerSettings()
