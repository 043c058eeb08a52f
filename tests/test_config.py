from __future__ import annotations

from pathlib import Path

import allure
import pytest

from app_center.config import (
    IntegrationDefaults,
    OrchestratorSettings,
    RuntimeSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_uses_defaults_for_single_host(monkeypatch) -> None:
    for name in ("APP_CENTER_DB_PATH", "APP_CENTER_WORKERS", "APP_CENTER_NETWORK_INTERNAL", "TZ"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".app_center.db")
    assert settings.orchestrator == OrchestratorSettings()
    assert settings.runtime == RuntimeSettings()
    assert settings.integrations.jellyfin_host_port == 8096
    assert settings.integrations.timezone == "UTC"
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("APP_CENTER_WORKERS", "4")
    monkeypatch.setenv("APP_CENTER_STOP_GRACE_SECONDS", "3")
    monkeypatch.setenv("APP_CENTER_NETWORK_INTERNAL", "yes")
    monkeypatch.setenv("APP_CENTER_PUBLIC_HOST", "nas.local")
    monkeypatch.setenv("APP_CENTER_QB_WEB_PORT", "8181")
    monkeypatch.setenv("APP_CENTER_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("TZ", "Europe/Berlin")

    settings = Settings.from_env(db_path=tmp_path / "explicit.db")

    assert settings.db_path == tmp_path / "explicit.db"
    assert settings.orchestrator.workers == 4
    assert settings.orchestrator.stop_grace_seconds == 3
    assert settings.runtime.network_internal is True
    assert settings.runtime.public_host == "nas.local"
    assert settings.integrations.qb_web_port == 8181
    assert settings.integrations.data_root == str(tmp_path / "data")
    assert settings.integrations.timezone == "Europe/Berlin"


def test_from_env_rejects_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("APP_CENTER_NETWORK_INTERNAL", "maybe")

    with pytest.raises(ValueError, match="APP_CENTER_NETWORK_INTERNAL"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(orchestrator=OrchestratorSettings(workers=0)), "APP_CENTER_WORKERS"),
        (
            Settings(orchestrator=OrchestratorSettings(task_log_max_chars=10)),
            "APP_CENTER_TASK_LOG_MAX_CHARS",
        ),
        (
            Settings(orchestrator=OrchestratorSettings(task_list_limit=0)),
            "APP_CENTER_TASK_LIST_LIMIT",
        ),
        (
            Settings(integrations=IntegrationDefaults(qb_web_port=70000)),
            "APP_CENTER_QB_WEB_PORT",
        ),
        (
            Settings(integrations=IntegrationDefaults(jellyfin_host_port=0)),
            "APP_CENTER_JELLYFIN_HOST_PORT",
        ),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
