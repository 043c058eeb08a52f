"""Docker-backed provisioning of managed app containers.

Every Docker SDK call is blocking, so each one is pushed to a worker thread
with ``asyncio.to_thread``; the event loop stays free while a pull or a stop
with a grace period is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import DockerException
from docker.errors import NotFound as DockerNotFound
from docker.utils import parse_repository_tag

from app_center.apps.specs import MANAGED_LABEL, ContainerSpec, normalize_host_path
from app_center.config import RuntimeSettings
from app_center.errors import ContainerRuntimeError, NotFoundError, PullError, ValidationError
from app_center.settings.models import IntegrationSnapshot

if TYPE_CHECKING:
    from app_center.apps.catalog import AppDefinition

logger = logging.getLogger(__name__)

CONTROL_ACTIONS = frozenset({"start", "stop", "restart"})

ProgressCallback = Callable[[str], None]


@dataclass(slots=True, frozen=True)
class ContainerState:
    """Live state of one container as reported by the runtime."""

    container_id: str
    name: str
    running: bool
    status_text: str


class ContainerProvisioner:
    """Creates and controls managed containers through the Docker SDK."""

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        *,
        runtime: RuntimeSettings | None = None,
    ) -> None:
        self._client = client
        self.runtime = runtime or RuntimeSettings()

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            with _runtime_errors("connect to container runtime"):
                self._client = docker.from_env()
        return self._client

    async def find_by_name(self, container_name: str) -> Any | None:
        """Container with exactly this name, stopped ones included."""

        return await asyncio.to_thread(self._find_by_name, container_name)

    async def state(self, container_name: str) -> ContainerState | None:
        container = await self.find_by_name(container_name)
        if container is None:
            return None
        return ContainerState(
            container_id=container.id,
            name=container.name,
            running=container.status == "running",
            status_text=container.status,
        )

    async def is_running(self, container_name: str) -> bool:
        current = await self.state(container_name)
        return current is not None and current.running

    async def pull_image(self, image: str, on_progress: ProgressCallback) -> None:
        """Pull ``image`` and report readable progress lines as they arrive."""

        loop = asyncio.get_running_loop()
        lines: asyncio.Queue[str | None] = asyncio.Queue()

        def _emit(line: str | None) -> None:
            loop.call_soon_threadsafe(lines.put_nowait, line)

        stream = asyncio.ensure_future(asyncio.to_thread(self._stream_pull, image, _emit))
        try:
            while (line := await lines.get()) is not None:
                on_progress(line)
        except BaseException:
            await asyncio.gather(stream, return_exceptions=True)
            raise

        try:
            await stream
        except PullError:
            raise
        except (DockerException, OSError) as error:
            raise PullError(f"Failed to pull image {image}: {error}") from error
        logger.info("Pulled image %s", image)

    def build_spec(self, app: AppDefinition, snapshot: IntegrationSnapshot) -> ContainerSpec:
        """Deterministic spec for ``app``; creates its host directories."""

        return app.build_spec(snapshot, self.runtime)

    async def create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) the container; returns its id."""

        return await asyncio.to_thread(self._create, spec)

    async def start(self, container_id: str) -> None:
        await asyncio.to_thread(self._start, container_id)

    async def create_and_start(self, spec: ContainerSpec) -> str:
        """Create the container from ``spec``, start it and return its id."""

        container_id = await self.create(spec)
        await self.start(container_id)
        return container_id

    async def control(self, container_name: str, action: str) -> None:
        if action not in CONTROL_ACTIONS:
            raise ValidationError(f"Unsupported container action: {action}")
        container = await self.find_by_name(container_name)
        if container is None:
            raise NotFoundError(f"Container not found: {container_name}")
        await asyncio.to_thread(self._control, container, action)

    async def remove(
        self,
        container_name: str,
        *,
        force: bool = True,
        grace_seconds: int = 10,
    ) -> None:
        """Stop with a bounded grace period if running, then remove."""

        container = await self.find_by_name(container_name)
        if container is None:
            raise NotFoundError(f"Container not found: {container_name}")
        await asyncio.to_thread(self._remove, container, force, grace_seconds)

    async def remove_data_dir(self, app: AppDefinition, snapshot: IntegrationSnapshot) -> Path:
        """Delete the app data directory. Irreversible."""

        root = normalize_host_path(snapshot.data_root)
        target = app.data_dir(snapshot).resolve()
        if target == root or root not in target.parents:
            raise ValidationError(
                f"Refusing to delete {target}: not inside data root {root}",
            )
        if not target.exists():
            logger.info("Data directory of %s already absent: %s", app.app_id, target)
            return target
        logger.warning("Deleting data directory of %s: %s", app.app_id, target)
        try:
            await asyncio.to_thread(shutil.rmtree, target)
        except OSError as error:
            raise ContainerRuntimeError(f"Failed to delete {target}: {error}") from error
        return target

    def _find_by_name(self, container_name: str) -> Any | None:
        with _runtime_errors(f"list containers named {container_name}"):
            candidates = self.client.containers.list(all=True, filters={"name": container_name})
        # the name filter is a substring match
        for container in candidates:
            if container.name == container_name:
                return container
        return None

    def _stream_pull(self, image: str, emit: Callable[[str | None], None]) -> None:
        repository, tag = parse_repository_tag(image)
        last_status: dict[str, str] = {}
        try:
            for chunk in self.client.api.pull(
                repository,
                tag=tag or "latest",
                stream=True,
                decode=True,
            ):
                if "error" in chunk:
                    raise PullError(f"Failed to pull image {image}: {chunk['error']}")
                line = _format_pull_chunk(chunk, last_status)
                if line:
                    emit(line)
        finally:
            emit(None)

    def _ensure_network(self) -> None:
        name = self.runtime.network_name
        try:
            self.client.networks.get(name)
        except DockerNotFound:
            self.client.networks.create(
                name,
                driver="bridge",
                internal=self.runtime.network_internal,
                labels={MANAGED_LABEL: "true"},
            )
            logger.info("Created network %s", name)

    def _create(self, spec: ContainerSpec) -> str:
        with _runtime_errors(f"create container {spec.name}"):
            if spec.network is not None:
                self._ensure_network()
            container = self.client.containers.create(**spec.to_create_kwargs())
        logger.info("Created container %s (%s)", spec.name, container.id)
        return container.id

    def _start(self, container_id: str) -> None:
        with _runtime_errors(f"start container {container_id}"):
            self.client.containers.get(container_id).start()
        logger.info("Started container %s", container_id)

    def _control(self, container: Any, action: str) -> None:
        with _runtime_errors(f"{action} container {container.name}"):
            if action == "start":
                container.start()
            elif action == "stop":
                container.stop()
            else:
                container.restart()
        logger.info("Container %s: %s", container.name, action)

    def _remove(self, container: Any, force: bool, grace_seconds: int) -> None:
        with _runtime_errors(f"remove container {container.name}"):
            container.reload()
            if container.status == "running":
                container.stop(timeout=grace_seconds)
            container.remove(force=force)
        logger.info("Removed container %s", container.name)


def _format_pull_chunk(chunk: dict[str, Any], last_status: dict[str, str]) -> str | None:
    status = str(chunk.get("status") or "").strip()
    if not status:
        return None
    layer = chunk.get("id")
    if not layer:
        return status
    if last_status.get(layer) == status:
        return None
    last_status[layer] = status
    return f"{layer}: {status}"


@contextmanager
def _runtime_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except DockerException as error:
        raise ContainerRuntimeError(f"Failed to {operation}: {error}") from error
