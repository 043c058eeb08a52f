"""In-memory stand-ins for the Docker SDK client used by provisioner tests."""

from __future__ import annotations

from collections.abc import Iterator
from itertools import count
from typing import Any

from docker.errors import APIError, NotFound


class FakeContainer:
    """Mimics the subset of ``docker.models.containers.Container`` we touch."""

    def __init__(self, client: FakeDockerClient, container_id: str, kwargs: dict[str, Any]):
        self.client = client
        self.id = container_id
        self.name = kwargs["name"]
        self.status = "created"
        self.attrs: dict[str, Any] = {"Config": {"Image": kwargs["image"]}}
        self.create_kwargs = kwargs

    def start(self) -> None:
        self.client.calls.append(("start", self.name))
        self.client.raise_if_failing("start", self.name)
        self.status = "running"

    def stop(self, timeout: int | None = None) -> None:
        self.client.calls.append(("stop", self.name))
        self.client.stop_timeouts.append(timeout)
        self.status = "exited"

    def restart(self) -> None:
        self.client.calls.append(("restart", self.name))
        self.status = "running"

    def remove(self, force: bool = False) -> None:
        self.client.calls.append(("remove", self.name))
        self.client.containers.items.pop(self.id, None)

    def reload(self) -> None:
        return None


class FakeContainers:
    def __init__(self, client: FakeDockerClient) -> None:
        self.client = client
        self.items: dict[str, FakeContainer] = {}
        self._ids = count(1)

    def list(self, all: bool = False, filters: dict[str, str] | None = None) -> list[FakeContainer]:  # noqa: A002
        name = (filters or {}).get("name", "")
        return [
            container
            for container in self.items.values()
            if name in container.name and (all or container.status == "running")
        ]

    def get(self, container_id: str) -> FakeContainer:
        for container in self.items.values():
            if container_id in (container.id, container.name):
                return container
        raise NotFound(f"No such container: {container_id}")

    def create(self, **kwargs: Any) -> FakeContainer:
        self.client.calls.append(("create", kwargs["name"]))
        self.client.raise_if_failing("create", kwargs["name"])
        if any(item.name == kwargs["name"] for item in self.items.values()):
            raise APIError(f"Conflict. The container name {kwargs['name']} is already in use")
        container = FakeContainer(self.client, f"c{next(self._ids):04d}", kwargs)
        self.items[container.id] = container
        return container

    def add(self, name: str, *, image: str = "example/image:latest", running: bool = True):
        """Seed an existing container, as if created outside this test."""

        container = FakeContainer(
            self.client,
            f"seed-{name}",
            {"name": name, "image": image},
        )
        container.status = "running" if running else "exited"
        self.items[container.id] = container
        return container


class FakeApi:
    def __init__(self, client: FakeDockerClient) -> None:
        self.client = client
        self.pull_errors: dict[str, str] = {}

    def pull(
        self,
        repository: str,
        tag: str | None = None,
        stream: bool = False,
        decode: bool = False,
    ) -> Iterator[dict[str, Any]]:
        image = f"{repository}:{tag}"
        self.client.calls.append(("pull", image))
        yield {"status": f"Pulling from {repository}", "id": tag}
        yield {"status": "Downloading", "id": "layer1", "progress": "[=>   ]"}
        yield {"status": "Downloading", "id": "layer1", "progress": "[==>  ]"}
        if image in self.pull_errors:
            yield {"error": self.pull_errors[image]}
            return
        yield {"status": "Pull complete", "id": "layer1"}
        yield {"status": f"Status: Downloaded newer image for {image}"}


class FakeNetworks:
    def __init__(self, client: FakeDockerClient) -> None:
        self.client = client
        self.created: dict[str, dict[str, Any]] = {}

    def get(self, name: str) -> dict[str, Any]:
        if name not in self.created:
            raise NotFound(f"network {name} not found")
        return self.created[name]

    def create(self, name: str, **kwargs: Any) -> dict[str, Any]:
        self.client.calls.append(("network_create", name))
        self.created[name] = kwargs
        return kwargs


class FakeDockerClient:
    """Records every runtime call in ``calls`` as ``(operation, name)``."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.stop_timeouts: list[int | None] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.containers = FakeContainers(self)
        self.api = FakeApi(self)
        self.networks = FakeNetworks(self)

    def fail(self, operation: str, name: str, error: Exception | None = None) -> None:
        self.failures[(operation, name)] = error or APIError(f"{operation} {name} failed")

    def raise_if_failing(self, operation: str, name: str) -> None:
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    def operations(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]
