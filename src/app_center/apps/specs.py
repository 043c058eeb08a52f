"""Container specifications and the per-app rules that build them."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from app_center.config import RuntimeSettings
from app_center.settings.models import IntegrationSnapshot

if TYPE_CHECKING:
    from app_center.apps.catalog import AppDefinition

MANAGED_LABEL = "appcenter.managed"
APP_LABEL = "appcenter.app"
RESTART_UNLESS_STOPPED = "unless-stopped"


@dataclass(slots=True, frozen=True)
class PortBinding:
    container_port: str
    host_port: int


@dataclass(slots=True, frozen=True)
class BindMount:
    host_path: str
    container_path: str
    mode: str = "rw"


@dataclass(slots=True, frozen=True)
class ContainerSpec:
    """Runtime-neutral description of one managed container."""

    name: str
    image: str
    ports: tuple[PortBinding, ...] = ()
    mounts: tuple[BindMount, ...] = ()
    environment: tuple[str, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    restart_policy: str = RESTART_UNLESS_STOPPED
    network: str | None = None

    def to_create_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``DockerClient.containers.create``."""

        kwargs: dict[str, Any] = {
            "image": self.image,
            "name": self.name,
            "detach": True,
            "ports": {port.container_port: port.host_port for port in self.ports},
            "volumes": {
                mount.host_path: {"bind": mount.container_path, "mode": mount.mode}
                for mount in self.mounts
            },
            "environment": list(self.environment),
            "restart_policy": {"Name": self.restart_policy},
            "labels": dict(self.labels),
        }
        if self.network is not None:
            kwargs["network"] = self.network
        return kwargs


def normalize_host_path(value: str) -> Path:
    return Path(str(value or "").strip()).expanduser().resolve()


def default_data_dir(app: AppDefinition, snapshot: IntegrationSnapshot) -> Path:
    """Per-app subdirectory under the configured data root."""

    return normalize_host_path(snapshot.data_root) / app.app_id


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def build_jellyfin_spec(
    app: AppDefinition,
    snapshot: IntegrationSnapshot,
    runtime: RuntimeSettings,
) -> ContainerSpec:
    media_dir = ensure_dir(normalize_host_path(snapshot.media_path))
    data_dir = app.data_dir(snapshot)
    config_dir = ensure_dir(data_dir / "config")
    cache_dir = ensure_dir(data_dir / "cache")

    return ContainerSpec(
        name=app.container_name,
        image=app.image,
        ports=(PortBinding("8096/tcp", snapshot.jellyfin_host_port),),
        mounts=(
            BindMount(str(config_dir), "/config"),
            BindMount(str(cache_dir), "/cache"),
            BindMount(str(media_dir), "/media"),
        ),
        environment=(f"TZ={snapshot.timezone}",),
        labels=_managed_labels(app),
        network=runtime.network_name,
    )


def build_qbittorrent_spec(
    app: AppDefinition,
    snapshot: IntegrationSnapshot,
    runtime: RuntimeSettings,
) -> ContainerSpec:
    downloads_dir = ensure_dir(normalize_host_path(snapshot.downloads_path))
    config_dir = ensure_dir(app.data_dir(snapshot) / "config")
    web_port = snapshot.qb_web_port
    peer_port = snapshot.qb_peer_port

    # WEBUI_PORT moves the listener inside the container, so publish it 1:1
    return ContainerSpec(
        name=app.container_name,
        image=app.image,
        ports=(
            PortBinding(f"{web_port}/tcp", web_port),
            PortBinding(f"{peer_port}/tcp", peer_port),
            PortBinding(f"{peer_port}/udp", peer_port),
        ),
        mounts=(
            BindMount(str(config_dir), "/config"),
            BindMount(str(downloads_dir), "/downloads"),
        ),
        environment=(
            f"TZ={snapshot.timezone}",
            "PUID=0",
            "PGID=0",
            f"WEBUI_PORT={web_port}",
            f"TORRENTING_PORT={peer_port}",
        ),
        labels=_managed_labels(app),
        network=runtime.network_name,
    )


def build_portainer_spec(
    app: AppDefinition,
    snapshot: IntegrationSnapshot,
    runtime: RuntimeSettings,
) -> ContainerSpec:
    data_dir = ensure_dir(app.data_dir(snapshot) / "data")

    return ContainerSpec(
        name=app.container_name,
        image=app.image,
        ports=(PortBinding("9000/tcp", snapshot.portainer_host_port),),
        mounts=(
            BindMount(runtime.docker_socket, "/var/run/docker.sock"),
            BindMount(str(data_dir), "/data"),
        ),
        labels=_managed_labels(app),
        network=runtime.network_name,
    )


def build_watchtower_spec(
    app: AppDefinition,
    snapshot: IntegrationSnapshot,
    runtime: RuntimeSettings,
) -> ContainerSpec:
    return ContainerSpec(
        name=app.container_name,
        image=app.image,
        mounts=(BindMount(runtime.docker_socket, "/var/run/docker.sock"),),
        environment=(
            f"TZ={snapshot.timezone}",
            "WATCHTOWER_CLEANUP=true",
            "WATCHTOWER_LABEL_ENABLE=false",
        ),
        labels=_managed_labels(app),
        network=runtime.network_name,
    )


def _managed_labels(app: AppDefinition) -> dict[str, str]:
    return {MANAGED_LABEL: "true", APP_LABEL: app.app_id}
