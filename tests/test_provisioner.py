from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest
from docker.errors import APIError
from fakes import FakeDockerClient

from app_center.apps.catalog import APP_DEFINITIONS
from app_center.apps.provisioner import ContainerProvisioner, _format_pull_chunk
from app_center.apps.specs import ContainerSpec
from app_center.config import RuntimeSettings
from app_center.errors import ContainerRuntimeError, NotFoundError, PullError, ValidationError

pytestmark = [
    allure.epic("Container Runtime"),
    allure.feature("Provisioner"),
]


@pytest.mark.asyncio
async def test_find_by_name_requires_exact_match(provisioner, docker_client) -> None:
    docker_client.containers.add("appcenter-jellyfin-old")
    docker_client.containers.add("appcenter-jellyfin", running=False)

    found = await provisioner.find_by_name("appcenter-jellyfin")
    state = await provisioner.state("appcenter-jellyfin")

    assert found.name == "appcenter-jellyfin"
    assert state is not None
    assert state.running is False
    assert state.status_text == "exited"
    assert await provisioner.state("appcenter-portainer") is None
    assert await provisioner.is_running("appcenter-jellyfin") is False


@pytest.mark.asyncio
async def test_pull_image_streams_deduplicated_progress(provisioner, docker_client) -> None:
    lines: list[str] = []

    await provisioner.pull_image("lscr.io/linuxserver/qbittorrent:latest", lines.append)

    assert docker_client.operations("pull") == ["lscr.io/linuxserver/qbittorrent:latest"]
    assert lines == [
        "latest: Pulling from lscr.io/linuxserver/qbittorrent",
        "layer1: Downloading",
        "layer1: Pull complete",
        "Status: Downloaded newer image for lscr.io/linuxserver/qbittorrent:latest",
    ]


@pytest.mark.asyncio
async def test_pull_image_surfaces_stream_error(provisioner, docker_client) -> None:
    docker_client.api.pull_errors["busybox:latest"] = "pull access denied"
    lines: list[str] = []

    with pytest.raises(PullError, match="pull access denied"):
        await provisioner.pull_image("busybox", lines.append)

    assert "layer1: Downloading" in lines


@pytest.mark.asyncio
async def test_create_and_start_ensures_network_once(provisioner, docker_client) -> None:
    first = ContainerSpec(name="one", image="busybox:latest", network="appcenter-net")
    second = ContainerSpec(name="two", image="busybox:latest", network="appcenter-net")

    first_id = await provisioner.create_and_start(first)
    await provisioner.create_and_start(second)

    assert docker_client.operations("network_create") == ["appcenter-net"]
    assert docker_client.networks.created["appcenter-net"]["internal"] is False
    assert docker_client.containers.get(first_id).status == "running"


@pytest.mark.asyncio
async def test_runtime_errors_are_wrapped(provisioner, docker_client) -> None:
    docker_client.fail("create", "broken", APIError("no space left on device"))

    with pytest.raises(ContainerRuntimeError, match="create container broken"):
        await provisioner.create(ContainerSpec(name="broken", image="busybox:latest"))


@pytest.mark.asyncio
async def test_control_validates_action_and_target(provisioner, docker_client) -> None:
    docker_client.containers.add("appcenter-watchtower", running=True)

    with pytest.raises(ValidationError):
        await provisioner.control("appcenter-watchtower", "pause")
    with pytest.raises(NotFoundError):
        await provisioner.control("appcenter-portainer", "start")

    await provisioner.control("appcenter-watchtower", "restart")
    assert docker_client.operations("restart") == ["appcenter-watchtower"]


@pytest.mark.asyncio
async def test_remove_stops_running_container_with_grace(provisioner, docker_client) -> None:
    docker_client.containers.add("appcenter-portainer", running=True)

    await provisioner.remove("appcenter-portainer", grace_seconds=3)

    assert docker_client.stop_timeouts == [3]
    assert await provisioner.find_by_name("appcenter-portainer") is None
    with pytest.raises(NotFoundError):
        await provisioner.remove("appcenter-portainer")


@pytest.mark.asyncio
async def test_remove_data_dir_stays_inside_data_root(
    provisioner,
    settings_repository,
    tmp_path: Path,
) -> None:
    snapshot = settings_repository.snapshot()
    app = APP_DEFINITIONS["portainer"]
    (tmp_path / "appdata" / "portainer" / "data").mkdir(parents=True)

    removed = await provisioner.remove_data_dir(app, snapshot)

    assert removed == (tmp_path / "appdata" / "portainer").resolve()
    assert not removed.exists()
    assert (tmp_path / "appdata").is_dir()


@pytest.mark.asyncio
async def test_remove_data_dir_refuses_paths_outside_data_root(
    provisioner,
    settings_repository,
    tmp_path: Path,
) -> None:
    snapshot = settings_repository.snapshot()
    app = APP_DEFINITIONS["jellyfin"]
    escaping = replace(app, data_dir_resolver=lambda _app, _snapshot: tmp_path / "elsewhere")
    (tmp_path / "elsewhere").mkdir()

    with pytest.raises(ValidationError, match="Refusing to delete"):
        await provisioner.remove_data_dir(escaping, snapshot)

    assert (tmp_path / "elsewhere").is_dir()


def test_internal_network_flag_is_passed_through(tmp_path: Path) -> None:
    client = FakeDockerClient()
    provisioner = ContainerProvisioner(client, runtime=RuntimeSettings(network_internal=True))

    provisioner._create(ContainerSpec(name="svc", image="busybox:latest", network="appcenter-net"))

    assert client.networks.created["appcenter-net"]["internal"] is True
    assert client.networks.created["appcenter-net"]["labels"] == {"appcenter.managed": "true"}


def test_format_pull_chunk_skips_empty_and_repeated_status() -> None:
    seen: dict[str, str] = {}

    assert _format_pull_chunk({}, seen) is None
    assert _format_pull_chunk({"status": "Waiting", "id": "abc"}, seen) == "abc: Waiting"
    assert _format_pull_chunk({"status": "Waiting", "id": "abc"}, seen) is None
    assert _format_pull_chunk({"status": "Digest: sha256:1"}, seen) == "Digest: sha256:1"
