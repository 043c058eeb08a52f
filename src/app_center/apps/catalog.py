"""Static registry of managed apps and bundles, merged with live runtime status."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from app_center.apps.specs import (
    ContainerSpec,
    build_jellyfin_spec,
    build_portainer_spec,
    build_qbittorrent_spec,
    build_watchtower_spec,
    default_data_dir,
)
from app_center.config import RuntimeSettings
from app_center.errors import NotFoundError
from app_center.settings.models import IntegrationSnapshot

if TYPE_CHECKING:
    from app_center.apps.provisioner import ContainerProvisioner, ContainerState
    from app_center.ports import SettingsStore

SpecBuilder = Callable[["AppDefinition", IntegrationSnapshot, RuntimeSettings], ContainerSpec]
DataDirResolver = Callable[["AppDefinition", IntegrationSnapshot], Path]


@dataclass(slots=True, frozen=True)
class AppDefinition:
    """One catalog entry; carries its own container spec rule."""

    app_id: str
    name: str
    container_name: str
    image: str
    category: str
    description: str
    spec_builder: SpecBuilder
    port_setting: str | None = None
    base_url_setting: str | None = None
    open_path: str | None = None
    data_dir_resolver: DataDirResolver = default_data_dir

    def data_dir(self, snapshot: IntegrationSnapshot) -> Path:
        return self.data_dir_resolver(self, snapshot)

    def build_spec(self, snapshot: IntegrationSnapshot, runtime: RuntimeSettings) -> ContainerSpec:
        return self.spec_builder(self, snapshot, runtime)


@dataclass(slots=True, frozen=True)
class BundleDefinition:
    """Ordered group of apps installed together; order is install order."""

    bundle_id: str
    name: str
    app_ids: tuple[str, ...]
    description: str = ""


@dataclass(slots=True)
class AppStatusView:
    """Catalog entry merged with live container state."""

    app: AppDefinition
    installed: bool
    running: bool
    status: str
    container_id: str | None
    container_status_text: str | None
    open_url: str | None


APP_DEFINITIONS: dict[str, AppDefinition] = {
    app.app_id: app
    for app in (
        AppDefinition(
            app_id="jellyfin",
            name="Jellyfin",
            container_name="appcenter-jellyfin",
            image="jellyfin/jellyfin:latest",
            category="media",
            description="Media server for movies, shows and music.",
            spec_builder=build_jellyfin_spec,
            port_setting="jellyfin_host_port",
            base_url_setting="jellyfin_base_url",
            open_path="/web/",
        ),
        AppDefinition(
            app_id="qbittorrent",
            name="qBittorrent",
            container_name="appcenter-qbittorrent",
            image="lscr.io/linuxserver/qbittorrent:latest",
            category="download",
            description="BitTorrent client with a web UI.",
            spec_builder=build_qbittorrent_spec,
            port_setting="qb_web_port",
            base_url_setting="qb_base_url",
            open_path="/",
        ),
        AppDefinition(
            app_id="portainer",
            name="Portainer",
            container_name="appcenter-portainer",
            image="portainer/portainer-ce:latest",
            category="management",
            description="Web dashboard for the local container runtime.",
            spec_builder=build_portainer_spec,
            port_setting="portainer_host_port",
            open_path="/",
        ),
        AppDefinition(
            app_id="watchtower",
            name="Watchtower",
            container_name="appcenter-watchtower",
            image="containrrr/watchtower:latest",
            category="maintenance",
            description="Watches running containers and updates them when images change.",
            spec_builder=build_watchtower_spec,
        ),
    )
}

BUNDLE_DEFINITIONS: dict[str, BundleDefinition] = {
    bundle.bundle_id: bundle
    for bundle in (
        BundleDefinition(
            bundle_id="media-stack",
            name="Media stack",
            app_ids=("jellyfin", "qbittorrent"),
            description="Media server plus download client.",
        ),
        BundleDefinition(
            bundle_id="home-server",
            name="Home server",
            app_ids=("jellyfin", "qbittorrent", "portainer", "watchtower"),
            description="Every managed app, media first.",
        ),
    )
}


class AppCatalog:
    """Read side of the catalog; recomputes live status on every call."""

    def __init__(
        self,
        *,
        provisioner: ContainerProvisioner,
        settings_store: SettingsStore,
        public_host: str = "127.0.0.1",
        apps: dict[str, AppDefinition] | None = None,
        bundles: dict[str, BundleDefinition] | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.settings_store = settings_store
        self.public_host = public_host
        self.apps = apps if apps is not None else APP_DEFINITIONS
        self.bundles = bundles if bundles is not None else BUNDLE_DEFINITIONS

    def get_app(self, app_id: str) -> AppDefinition:
        app = self.apps.get(app_id)
        if app is None:
            raise NotFoundError(f"Unknown app: {app_id}")
        return app

    def get_bundle(self, bundle_id: str) -> BundleDefinition:
        bundle = self.bundles.get(bundle_id)
        if bundle is None:
            raise NotFoundError(f"Unknown bundle: {bundle_id}")
        return bundle

    def list_bundles(self) -> list[BundleDefinition]:
        return list(self.bundles.values())

    async def list_apps(self) -> list[AppStatusView]:
        """All apps with installed/running state and an open URL."""

        snapshot = self.settings_store.snapshot()
        apps = list(self.apps.values())
        states = await asyncio.gather(
            *(self.provisioner.state(app.container_name) for app in apps),
        )
        return [
            _build_status(app, state, self._open_url(app, snapshot))
            for app, state in zip(apps, states, strict=True)
        ]

    def _open_url(self, app: AppDefinition, snapshot: IntegrationSnapshot) -> str | None:
        if app.port_setting is None:
            return None
        port = snapshot.value(app.port_setting)
        return f"http://{self.public_host}:{port}{app.open_path or '/'}"


def _build_status(
    app: AppDefinition,
    state: ContainerState | None,
    open_url: str | None,
) -> AppStatusView:
    if state is None:
        return AppStatusView(
            app=app,
            installed=False,
            running=False,
            status="not_installed",
            container_id=None,
            container_status_text=None,
            open_url=open_url,
        )
    return AppStatusView(
        app=app,
        installed=True,
        running=state.running,
        status="running" if state.running else "stopped",
        container_id=state.container_id,
        container_status_text=state.status_text,
        open_url=open_url,
    )
