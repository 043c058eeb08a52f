"""Runtime configuration for the app center."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

MIN_TASK_LOG_CHARS = 1_000


@dataclass(slots=True)
class OrchestratorSettings:
    """Task queue and worker pool settings."""

    workers: int = 2
    task_log_max_chars: int = 60_000
    stop_grace_seconds: int = 10
    task_list_limit: int = 60


@dataclass(slots=True)
class RuntimeSettings:
    """Container runtime settings."""

    network_name: str = "appcenter-net"
    network_internal: bool = False
    public_host: str = "127.0.0.1"
    docker_socket: str = "/var/run/docker.sock"


@dataclass(slots=True)
class IntegrationDefaults:
    """Fallback values used when the settings table has no stored value."""

    media_path: str = "/srv/media"
    downloads_path: str = "/srv/downloads"
    data_root: str = "/srv/appcenter"
    jellyfin_host_port: int = 8096
    qb_web_port: int = 8080
    qb_peer_port: int = 6881
    portainer_host_port: int = 9000
    jellyfin_base_url: str = ""
    qb_base_url: str = ""
    timezone: str = "UTC"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".app_center.db")
    sqlite_busy_timeout_ms: int = 5_000
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    integrations: IntegrationDefaults = field(default_factory=IntegrationDefaults)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for a single host."""

        return cls(
            db_path=db_path or Path(os.getenv("APP_CENTER_DB_PATH", ".app_center.db")),
            sqlite_busy_timeout_ms=int(os.getenv("APP_CENTER_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            orchestrator=OrchestratorSettings(
                workers=int(os.getenv("APP_CENTER_WORKERS", "2")),
                task_log_max_chars=int(os.getenv("APP_CENTER_TASK_LOG_MAX_CHARS", "60000")),
                stop_grace_seconds=int(os.getenv("APP_CENTER_STOP_GRACE_SECONDS", "10")),
                task_list_limit=int(os.getenv("APP_CENTER_TASK_LIST_LIMIT", "60")),
            ),
            runtime=RuntimeSettings(
                network_name=os.getenv("APP_CENTER_NETWORK_NAME", "appcenter-net"),
                network_internal=_env_bool("APP_CENTER_NETWORK_INTERNAL", default=False),
                public_host=os.getenv("APP_CENTER_PUBLIC_HOST", "127.0.0.1"),
                docker_socket=os.getenv("APP_CENTER_DOCKER_SOCKET", "/var/run/docker.sock"),
            ),
            integrations=IntegrationDefaults(
                media_path=os.getenv("APP_CENTER_MEDIA_PATH", "/srv/media"),
                downloads_path=os.getenv("APP_CENTER_DOWNLOADS_PATH", "/srv/downloads"),
                data_root=os.getenv("APP_CENTER_DATA_ROOT", "/srv/appcenter"),
                jellyfin_host_port=int(os.getenv("APP_CENTER_JELLYFIN_HOST_PORT", "8096")),
                qb_web_port=int(os.getenv("APP_CENTER_QB_WEB_PORT", "8080")),
                qb_peer_port=int(os.getenv("APP_CENTER_QB_PEER_PORT", "6881")),
                portainer_host_port=int(os.getenv("APP_CENTER_PORTAINER_HOST_PORT", "9000")),
                jellyfin_base_url=os.getenv("APP_CENTER_JELLYFIN_BASE_URL", ""),
                qb_base_url=os.getenv("APP_CENTER_QB_BASE_URL", ""),
                timezone=os.getenv("TZ", "UTC"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot work with."""

        if self.orchestrator.workers <= 0:
            raise ValueError("APP_CENTER_WORKERS must be a positive integer.")
        if self.orchestrator.task_log_max_chars < MIN_TASK_LOG_CHARS:
            raise ValueError(
                f"APP_CENTER_TASK_LOG_MAX_CHARS must be >= {MIN_TASK_LOG_CHARS}.",
            )
        if self.orchestrator.stop_grace_seconds < 0:
            raise ValueError("APP_CENTER_STOP_GRACE_SECONDS must be >= 0.")
        if self.orchestrator.task_list_limit <= 0:
            raise ValueError("APP_CENTER_TASK_LIST_LIMIT must be a positive integer.")
        for name in (
            "jellyfin_host_port",
            "qb_web_port",
            "qb_peer_port",
            "portainer_host_port",
        ):
            _validate_port(name, getattr(self.integrations, name))


def _validate_port(name: str, value: int) -> None:
    if not 0 < value < 65536:
        raise ValueError(
            f"Invalid port for APP_CENTER_{name.upper()}: {value!r} (must be 1..65535)",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
