"""Typed view over the integration settings consumed by app installs."""

from __future__ import annotations

from dataclasses import dataclass

INTEGRATION_KEYS: tuple[str, ...] = (
    "media_path",
    "downloads_path",
    "data_root",
    "jellyfin_host_port",
    "qb_web_port",
    "qb_peer_port",
    "portainer_host_port",
    "jellyfin_base_url",
    "qb_base_url",
    "timezone",
)

PORT_KEYS: frozenset[str] = frozenset(
    {"jellyfin_host_port", "qb_web_port", "qb_peer_port", "portainer_host_port"},
)


@dataclass(slots=True, frozen=True)
class IntegrationSnapshot:
    """Settings values resolved at one point in time."""

    media_path: str
    downloads_path: str
    data_root: str
    jellyfin_host_port: int
    qb_web_port: int
    qb_peer_port: int
    portainer_host_port: int
    jellyfin_base_url: str
    qb_base_url: str
    timezone: str

    def value(self, key: str) -> str | int:
        """Read a value by its settings key."""

        if key not in INTEGRATION_KEYS:
            raise KeyError(key)
        return getattr(self, key)

    def as_dict(self) -> dict[str, str | int]:
        return {key: getattr(self, key) for key in INTEGRATION_KEYS}
