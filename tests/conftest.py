"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeDockerClient

from app_center.apps.catalog import AppCatalog
from app_center.apps.provisioner import ContainerProvisioner
from app_center.audit.repository import AuditRepository
from app_center.config import IntegrationDefaults, RuntimeSettings
from app_center.settings.repository import SettingsRepository
from app_center.tasks.orchestrator import TaskOrchestrator
from app_center.tasks.repository import TaskRepository


@pytest.fixture()
def integration_defaults(tmp_path: Path) -> IntegrationDefaults:
    """Defaults pointing every host path into the test's temp directory."""

    return IntegrationDefaults(
        media_path=str(tmp_path / "media"),
        downloads_path=str(tmp_path / "downloads"),
        data_root=str(tmp_path / "appdata"),
    )


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "app-center.db"


@pytest.fixture()
def task_repository(db_path: Path):
    repository = TaskRepository(db_path, log_max_chars=60_000)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def settings_repository(db_path: Path, task_repository, integration_defaults):
    repository = SettingsRepository(db_path, defaults=integration_defaults)
    yield repository
    repository.close()


@pytest.fixture()
def audit_repository(db_path: Path, task_repository):
    repository = AuditRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture()
def provisioner(docker_client: FakeDockerClient) -> ContainerProvisioner:
    return ContainerProvisioner(docker_client, runtime=RuntimeSettings())


@pytest.fixture()
def catalog(provisioner, settings_repository) -> AppCatalog:
    return AppCatalog(provisioner=provisioner, settings_store=settings_repository)


@pytest.fixture()
def orchestrator(
    catalog,
    provisioner,
    task_repository,
    settings_repository,
    audit_repository,
) -> TaskOrchestrator:
    return TaskOrchestrator(
        catalog=catalog,
        provisioner=provisioner,
        tasks=task_repository,
        settings_store=settings_repository,
        audit=audit_repository,
        workers=2,
        stop_grace_seconds=7,
    )
