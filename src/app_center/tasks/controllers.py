"""Controllers for app center CLI commands."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from app_center.apps.catalog import AppCatalog
from app_center.apps.provisioner import ContainerProvisioner
from app_center.audit.repository import AuditRepository
from app_center.config import Settings
from app_center.errors import ValidationError
from app_center.settings.repository import SettingsRepository
from app_center.tasks.models import AppTaskStatus, AppTaskView, options_to_payload
from app_center.tasks.orchestrator import TaskOrchestrator
from app_center.tasks.repository import TaskRepository

DockerClientFactory = Callable[[], Any]


def default_actor() -> str:
    return os.getenv("USER") or "admin"


@dataclass(slots=True)
class AppListCommand:
    """CLI inputs for app listing."""

    db_path: Path | None


@dataclass(slots=True)
class AppTaskCommand:
    """CLI inputs for single-app actions."""

    db_path: Path | None
    app_id: str
    action: str
    actor: str
    options: Mapping[str, Any] | None = None
    wait: bool = True


@dataclass(slots=True)
class BundleInstallCommand:
    """CLI inputs for bundle install."""

    db_path: Path | None
    bundle_id: str
    actor: str
    wait: bool = True


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    limit: int | None


@dataclass(slots=True)
class TaskInspectCommand:
    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskRetryCommand:
    db_path: Path | None
    task_id: int
    actor: str
    wait: bool = True


@dataclass(slots=True)
class SettingsSetCommand:
    """CLI inputs for integration settings update."""

    db_path: Path | None
    assignments: tuple[str, ...]


@dataclass(slots=True)
class AuditListCommand:
    db_path: Path | None
    target: str | None
    limit: int


@dataclass(slots=True)
class TaskCommandResult:
    """Rendered lines plus whether the task ended up failed."""

    lines: list[str]
    failed: bool


@dataclass(slots=True)
class AppCenterServices:
    """Wired collaborators for one CLI invocation."""

    settings: Settings
    tasks: TaskRepository
    settings_store: SettingsRepository
    audit: AuditRepository
    provisioner: ContainerProvisioner
    catalog: AppCatalog

    def orchestrator(self) -> TaskOrchestrator:
        return TaskOrchestrator(
            catalog=self.catalog,
            provisioner=self.provisioner,
            tasks=self.tasks,
            settings_store=self.settings_store,
            audit=self.audit,
            workers=self.settings.orchestrator.workers,
            stop_grace_seconds=self.settings.orchestrator.stop_grace_seconds,
            task_list_limit=self.settings.orchestrator.task_list_limit,
        )


class AppCenterCliController:
    """Coordinates app center command execution."""

    def __init__(self, *, docker_client_factory: DockerClientFactory | None = None) -> None:
        self.docker_client_factory = docker_client_factory

    def list_apps(self, command: AppListCommand) -> list[str]:
        with self._services(command.db_path) as services:
            apps = asyncio.run(services.orchestrator().list_apps())

        lines = [f"Apps: {len(apps)}"]
        for status in apps:
            lines.append(
                f"  {status.app.app_id} name={status.app.name} category={status.app.category} "
                f"status={status.status} container={status.app.container_name} "
                f"url={status.open_url or '-'}",
            )
        return lines

    def list_bundles(self, command: AppListCommand) -> list[str]:
        with self._services(command.db_path) as services:
            bundles = services.orchestrator().list_bundles()

        lines = [f"Bundles: {len(bundles)}"]
        for bundle in bundles:
            lines.append(
                f"  {bundle.bundle_id} name={bundle.name} apps={','.join(bundle.app_ids)}",
            )
        return lines

    def run_app_task(self, command: AppTaskCommand) -> TaskCommandResult:
        with self._services(command.db_path) as services:
            task = asyncio.run(
                _create_and_run(
                    services.orchestrator(),
                    lambda orchestrator: orchestrator.create_app_task(
                        command.app_id,
                        command.action,
                        actor=command.actor,
                        options=command.options,
                    ),
                    wait=command.wait,
                ),
            )
        return _task_result(task)

    def install_bundle(self, command: BundleInstallCommand) -> TaskCommandResult:
        with self._services(command.db_path) as services:
            task = asyncio.run(
                _create_and_run(
                    services.orchestrator(),
                    lambda orchestrator: orchestrator.create_bundle_task(
                        command.bundle_id,
                        actor=command.actor,
                    ),
                    wait=command.wait,
                ),
            )
        return _task_result(task)

    def retry_task(self, command: TaskRetryCommand) -> TaskCommandResult:
        with self._services(command.db_path) as services:
            task = asyncio.run(
                _create_and_run(
                    services.orchestrator(),
                    lambda orchestrator: orchestrator.retry_task(
                        command.task_id,
                        actor=command.actor,
                    ),
                    wait=command.wait,
                ),
            )
        return _task_result(task)

    def run_task(self, command: TaskInspectCommand) -> TaskCommandResult:
        with self._services(command.db_path) as services:
            task = asyncio.run(
                _create_and_run(
                    services.orchestrator(),
                    lambda orchestrator: orchestrator.resume_task(command.task_id),
                    wait=True,
                ),
            )
        return _task_result(task)

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        with self._services(command.db_path) as services:
            tasks = services.orchestrator().list_tasks(command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  #{task.task_id} {task.action.value} {task.target} "
                f"status={task.status.value} progress={task.progress}% "
                f"actor={task.actor} created_at={task.created_at.isoformat()}",
            )
        return lines

    def show_task(self, command: TaskInspectCommand) -> list[str]:
        with self._services(command.db_path) as services:
            task = services.orchestrator().get_task(command.task_id)

        return [
            f"Task: #{task.task_id}",
            f"Action: {task.action.value}",
            f"Target: {task.target}",
            f"Status: {task.status.value}",
            f"Progress: {task.progress}%",
            f"Message: {task.message}",
            f"Error: {task.error_detail or '-'}",
            f"Actor: {task.actor}",
            f"Options: {_format_options(task)}",
            f"Retried from: {task.retried_from if task.retried_from is not None else '-'}",
            f"Created: {task.created_at.isoformat()}",
            f"Updated: {task.updated_at.isoformat()}",
            f"Finished: {task.finished_at.isoformat() if task.finished_at else '-'}",
        ]

    def task_logs(self, command: TaskInspectCommand) -> list[str]:
        with self._services(command.db_path) as services:
            logs = services.orchestrator().get_task_logs(command.task_id)
        return logs.splitlines()

    def show_settings(self, command: AppListCommand) -> list[str]:
        with self._services(command.db_path) as services:
            snapshot = services.settings_store.snapshot()
        return [f"{key}={value}" for key, value in snapshot.as_dict().items()]

    def set_settings(self, command: SettingsSetCommand) -> list[str]:
        values = _parse_assignments(command.assignments)
        with self._services(command.db_path) as services:
            services.settings_store.save(values)
        return [f"Saved {key}={value}" for key, value in values.items()]

    def list_audit(self, command: AuditListCommand) -> list[str]:
        with self._services(command.db_path) as services:
            entries = services.audit.list_entries(target=command.target, limit=command.limit)

        lines = [f"Audit entries: {len(entries)}"]
        for entry in entries:
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.action} {entry.target} "
                f"status={entry.status} actor={entry.actor} detail={entry.detail or '-'}",
            )
        return lines

    @contextmanager
    def _services(self, db_path: Path | None) -> Iterator[AppCenterServices]:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
        busy_timeout_ms = settings.sqlite_busy_timeout_ms
        tasks = TaskRepository(
            settings.db_path,
            log_max_chars=settings.orchestrator.task_log_max_chars,
            sqlite_busy_timeout_ms=busy_timeout_ms,
        )
        settings_store = SettingsRepository(
            settings.db_path,
            defaults=settings.integrations,
            sqlite_busy_timeout_ms=busy_timeout_ms,
        )
        audit = AuditRepository(settings.db_path, sqlite_busy_timeout_ms=busy_timeout_ms)
        try:
            tasks.init_schema()
            client = self.docker_client_factory() if self.docker_client_factory else None
            provisioner = ContainerProvisioner(client, runtime=settings.runtime)
            yield AppCenterServices(
                settings=settings,
                tasks=tasks,
                settings_store=settings_store,
                audit=audit,
                provisioner=provisioner,
                catalog=AppCatalog(
                    provisioner=provisioner,
                    settings_store=settings_store,
                    public_host=settings.runtime.public_host,
                ),
            )
        finally:
            audit.close()
            settings_store.close()
            tasks.close()


async def _create_and_run(
    orchestrator: TaskOrchestrator,
    create: Callable[[TaskOrchestrator], AppTaskView],
    *,
    wait: bool,
) -> AppTaskView:
    task = create(orchestrator)
    if not wait:
        return task
    async with orchestrator:
        await orchestrator.join()
    return orchestrator.get_task(task.task_id)


def _task_result(task: AppTaskView) -> TaskCommandResult:
    lines = [
        f"Task #{task.task_id} {task.action.value} {task.target}: "
        f"status={task.status.value} progress={task.progress}%",
        f"  {task.message}",
    ]
    if task.error_detail:
        lines.append(f"  error: {task.error_detail}")
    if task.status is AppTaskStatus.QUEUED:
        lines.append(f"  not started (--no-wait); run it with: tasks run {task.task_id}")
    return TaskCommandResult(lines=lines, failed=task.status is AppTaskStatus.FAILED)


def _format_options(task: AppTaskView) -> str:
    payload = options_to_payload(task.options)
    if not payload:
        return "-"
    return " ".join(f"{key}={_format_value(value)}" for key, value in sorted(payload.items()))


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _parse_assignments(assignments: tuple[str, ...]) -> dict[str, str]:
    values: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Expected KEY=VALUE, got {item!r}")
        values[key.strip()] = value.strip()
    return values
