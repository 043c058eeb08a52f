"""Task orchestration for managed app operations.

Callers get a queued task back immediately; the work itself is picked up by
a small pool of worker coroutines reading task ids from an ``asyncio.Queue``.
The store's atomic queued -> running claim guarantees that an id dispatched
twice is executed once. Tasks aimed at the same app are serialized through a
per-app lock; everything else may interleave.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app_center.apps.catalog import AppCatalog, AppDefinition, AppStatusView, BundleDefinition
from app_center.apps.provisioner import ContainerProvisioner
from app_center.audit.repository import AuditRecord
from app_center.errors import ConflictError, NotFoundError, StoreError, ValidationError
from app_center.ports import AuditSink, SettingsStore
from app_center.settings.models import IntegrationSnapshot
from app_center.storage.common import utc_now
from app_center.tasks.models import (
    AppTaskAction,
    AppTaskCreate,
    AppTaskStatus,
    AppTaskView,
    BundleInstallOptions,
    InstallOptions,
    TaskOptions,
    TaskPatch,
    UninstallOptions,
    coerce_options,
    parse_action,
)
from app_center.tasks.repository import TaskRepository, clamp_progress

logger = logging.getLogger(__name__)

FAILED_MESSAGE = "Task failed"
LOOPBACK_HOST = "127.0.0.1"


@dataclass(slots=True)
class ActionOutcome:
    """What a finished action reports back for the task and the audit trail."""

    message: str
    detail: str = ""
    skipped: bool = False


class _TaskProgress:
    """Maps local 0..100 checkpoints into a slice of the task's progress range."""

    def __init__(
        self,
        tasks: TaskRepository,
        task_id: int,
        *,
        low: float = 0.0,
        high: float = 100.0,
    ) -> None:
        self.tasks = tasks
        self.task_id = task_id
        self.low = low
        self.high = high

    def report(self, percent: float, message: str) -> None:
        scaled = self.low + (self.high - self.low) * percent / 100.0
        self.tasks.update(
            self.task_id,
            TaskPatch(progress=clamp_progress(round(scaled)), message=message),
            expected_status=AppTaskStatus.RUNNING,
        )
        self.tasks.append_log(self.task_id, message)

    def log(self, line: str) -> None:
        self.tasks.append_log(self.task_id, line)

    def slice(self, low: float, high: float) -> _TaskProgress:
        span = self.high - self.low
        return _TaskProgress(
            self.tasks,
            self.task_id,
            low=self.low + span * low / 100.0,
            high=self.low + span * high / 100.0,
        )


class TaskOrchestrator:
    """Creates, dispatches and drives app tasks to a terminal state."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        catalog: AppCatalog,
        provisioner: ContainerProvisioner,
        tasks: TaskRepository,
        settings_store: SettingsStore,
        audit: AuditSink,
        workers: int = 2,
        stop_grace_seconds: int = 10,
        task_list_limit: int = 60,
    ) -> None:
        self.catalog = catalog
        self.provisioner = provisioner
        self.tasks = tasks
        self.settings_store = settings_store
        self.audit = audit
        self.worker_count = workers
        self.stop_grace_seconds = stop_grace_seconds
        self.task_list_limit = task_list_limit
        self._queue: asyncio.Queue[int] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._app_locks: dict[str, asyncio.Lock] = {}

    # -- worker pool ----------------------------------------------------------

    async def __aenter__(self) -> TaskOrchestrator:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Launch the worker coroutines on the running event loop."""

        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"app-task-worker-{index}")
            for index in range(max(1, self.worker_count))
        ]
        logger.info("Started %d task workers", len(self._workers))

    async def join(self) -> None:
        """Wait until every dispatched task id has been processed."""

        await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain and self._workers:
            await self.join()
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info("Stopped %d task workers", len(workers))

    async def run_until_idle(self) -> None:
        """Start workers if needed and wait for the queue to drain."""

        self.start()
        await self.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            task_id = await self._queue.get()
            try:
                await self.execute(task_id)
            except Exception:
                logger.exception("Worker %d crashed while executing task %s", index, task_id)
            finally:
                self._queue.task_done()

    def dispatch(self, task_id: int) -> None:
        """Schedule ``task_id`` for execution on a later loop iteration."""

        self._queue.put_nowait(task_id)

    # -- creation ---------------------------------------------------------------

    def create_app_task(
        self,
        app_id: str,
        action: str | AppTaskAction,
        *,
        actor: str,
        options: TaskOptions | Mapping[str, Any] | None = None,
    ) -> AppTaskView:
        """Queue an install/start/stop/restart/uninstall task for one app."""

        parsed = parse_action(action)
        if parsed is AppTaskAction.INSTALL_BUNDLE:
            raise ValidationError("Bundle installs are created with create_bundle_task.")
        app = self._resolve_app(app_id)
        task = self.tasks.create(
            AppTaskCreate(
                target=app.app_id,
                action=parsed,
                actor=actor,
                options=coerce_options(parsed, options),
            ),
        )
        self.dispatch(task.task_id)
        return task

    def create_bundle_task(self, bundle_id: str, *, actor: str) -> AppTaskView:
        """Queue a sequential install of every app in the bundle."""

        try:
            bundle = self.catalog.get_bundle(bundle_id)
        except NotFoundError as error:
            raise ValidationError(str(error)) from error
        for app_id in bundle.app_ids:
            self._resolve_app(app_id)
        task = self.tasks.create(
            AppTaskCreate(
                target=bundle.bundle_id,
                action=AppTaskAction.INSTALL_BUNDLE,
                actor=actor,
                options=BundleInstallOptions(bundle_id=bundle.bundle_id),
                message="Bundle install queued",
            ),
        )
        self.dispatch(task.task_id)
        return task

    def retry_task(self, task_id: int, *, actor: str) -> AppTaskView:
        """Clone a failed task into a new queued task; the source row stays as is."""

        source = self.tasks.get(task_id)
        if source is None:
            raise NotFoundError(f"Task not found: {task_id}")
        if source.status is not AppTaskStatus.FAILED:
            raise ValidationError(
                f"Only failed tasks can be retried, task #{task_id} is {source.status.value}.",
            )
        task = self.tasks.create(
            AppTaskCreate(
                target=source.target,
                action=source.action,
                actor=actor,
                options=source.options,
                message=f"Retry of task #{source.task_id}",
                retried_from=source.task_id,
            ),
        )
        logger.info("Task %s retried as task %s", source.task_id, task.task_id)
        self.dispatch(task.task_id)
        return task

    def resume_task(self, task_id: int) -> AppTaskView:
        """Dispatch a task that was created but never run."""

        task = self.get_task(task_id)
        if task.status is not AppTaskStatus.QUEUED:
            raise ValidationError(
                f"Only queued tasks can be run, task #{task_id} is {task.status.value}.",
            )
        self.dispatch(task.task_id)
        return task

    # -- queries ----------------------------------------------------------------

    async def list_apps(self) -> list[AppStatusView]:
        return await self.catalog.list_apps()

    def list_bundles(self) -> list[BundleDefinition]:
        return self.catalog.list_bundles()

    def list_tasks(self, limit: int | None = None) -> list[AppTaskView]:
        return self.tasks.list_tasks(limit=limit or self.task_list_limit)

    def get_task(self, task_id: int) -> AppTaskView:
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def get_task_logs(self, task_id: int) -> str:
        logs = self.tasks.get_logs(task_id)
        if logs is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return logs

    # -- execution --------------------------------------------------------------

    async def execute(self, task_id: int) -> AppTaskView | None:
        """Claim and run one task to a terminal state.

        Returns ``None`` when the task was already claimed by another dispatch.
        """

        task = self.tasks.claim(task_id)
        if task is None:
            logger.info("Task %s is not queued anymore; duplicate dispatch ignored", task_id)
            return None

        progress = _TaskProgress(self.tasks, task.task_id)
        try:
            progress.report(0, f"Running {task.action.value} on {task.target}")
            outcome = await self._run_action(task, progress)
            return self._finish_success(task, outcome)
        except asyncio.CancelledError:
            self._finish_failure(task, "Task interrupted by shutdown")
            raise
        except Exception as error:
            logger.warning(
                "Task %s (%s %s) failed: %s",
                task.task_id,
                task.action.value,
                task.target,
                error,
            )
            return self._finish_failure(task, str(error) or type(error).__name__)

    async def _run_action(self, task: AppTaskView, progress: _TaskProgress) -> ActionOutcome:
        if task.action is AppTaskAction.INSTALL_BUNDLE:
            assert isinstance(task.options, BundleInstallOptions)
            return await self._install_bundle(task.options.bundle_id, progress)

        app = self.catalog.get_app(task.target)
        async with self._app_lock(app.app_id):
            if task.action is AppTaskAction.INSTALL:
                assert isinstance(task.options, InstallOptions)
                return await self._install_app(app, task.options, progress)
            if task.action is AppTaskAction.UNINSTALL:
                assert isinstance(task.options, UninstallOptions)
                return await self._uninstall_app(app, task.options.remove_data, progress)
            return await self._control_app(app, task.action.value, progress)

    async def _install_app(
        self,
        app: AppDefinition,
        options: InstallOptions,
        progress: _TaskProgress,
    ) -> ActionOutcome:
        existing = await self.provisioner.find_by_name(app.container_name)
        if existing is not None:
            if options.skip_if_installed:
                progress.report(100, f"{app.name} is already installed, skipped")
                return ActionOutcome(
                    message=f"{app.name} already installed, skipped",
                    skipped=True,
                )
            raise ConflictError(f"{app.name} is already installed")

        snapshot = self.settings_store.snapshot()
        progress.report(8, f"Pulling image {app.image}")
        await self.provisioner.pull_image(app.image, progress.log)

        spec = self.provisioner.build_spec(app, snapshot)
        progress.log(f"Creating container {spec.name}")
        container_id = await self.provisioner.create(spec)
        progress.report(45, f"Container {spec.name} created")

        await self.provisioner.start(container_id)
        progress.report(72, f"Container {spec.name} started")

        base_url = self._discover_base_url(app, snapshot)
        if base_url is not None and app.base_url_setting is not None:
            try:
                self.settings_store.save({app.base_url_setting: base_url})
            except StoreError:
                logger.exception("Failed to save %s for %s", app.base_url_setting, app.app_id)
                progress.log(f"Could not save {app.base_url_setting}; set it manually")
            else:
                progress.log(f"Saved {app.base_url_setting}={base_url}")
        progress.report(95, f"{app.name} is up")
        return ActionOutcome(
            message=f"{app.name} installed and started",
            detail=f"container_id={container_id}",
        )

    async def _control_app(
        self,
        app: AppDefinition,
        action: str,
        progress: _TaskProgress,
    ) -> ActionOutcome:
        if await self.provisioner.find_by_name(app.container_name) is None:
            raise NotFoundError(f"{app.name} is not installed")
        progress.report(50, f"Sending {action} to {app.container_name}")
        await self.provisioner.control(app.container_name, action)
        past = {"start": "started", "stop": "stopped", "restart": "restarted"}[action]
        return ActionOutcome(message=f"{app.name} {past}")

    async def _uninstall_app(
        self,
        app: AppDefinition,
        remove_data: bool,
        progress: _TaskProgress,
    ) -> ActionOutcome:
        if await self.provisioner.find_by_name(app.container_name) is None:
            raise NotFoundError(f"{app.name} is not installed")

        if await self.provisioner.is_running(app.container_name):
            progress.report(
                30,
                f"Stopping {app.container_name} (grace {self.stop_grace_seconds}s)",
            )
        await self.provisioner.remove(
            app.container_name,
            force=True,
            grace_seconds=self.stop_grace_seconds,
        )
        progress.report(70, f"Container {app.container_name} removed")

        if remove_data:
            snapshot = self.settings_store.snapshot()
            progress.log(f"Deleting data directory {app.data_dir(snapshot)} (irreversible)")
            removed = await self.provisioner.remove_data_dir(app, snapshot)
            progress.report(90, f"Data directory {removed} deleted")

        return ActionOutcome(
            message=f"{app.name} uninstalled",
            detail=f"removeData={str(remove_data).lower()}",
        )

    async def _install_bundle(self, bundle_id: str, progress: _TaskProgress) -> ActionOutcome:
        bundle = self.catalog.get_bundle(bundle_id)
        members = [self.catalog.get_app(app_id) for app_id in bundle.app_ids]
        if not members:
            return ActionOutcome(message=f"Bundle {bundle.name} has no apps")

        span = 100.0 / len(members)
        installed: list[str] = []
        skipped: list[str] = []
        for index, app in enumerate(members):
            member_progress = progress.slice(index * span, (index + 1) * span)
            progress.log(f"[{index + 1}/{len(members)}] Installing {app.name}")
            try:
                async with self._app_lock(app.app_id):
                    outcome = await self._install_app(
                        app,
                        InstallOptions(skip_if_installed=True, bundle_id=bundle.bundle_id),
                        member_progress,
                    )
            except Exception as error:
                remaining = len(members) - index - 1
                progress.log(
                    f"{app.name} failed: {error}; skipping {remaining} remaining app(s)",
                )
                raise
            (skipped if outcome.skipped else installed).append(app.app_id)

        return ActionOutcome(
            message=(
                f"Bundle {bundle.name} installed "
                f"({len(installed)} installed, {len(skipped)} skipped)"
            ),
            detail=f"installed={','.join(installed) or '-'} skipped={','.join(skipped) or '-'}",
        )

    # -- terminal handling ----------------------------------------------------

    def _finish_success(self, task: AppTaskView, outcome: ActionOutcome) -> AppTaskView | None:
        finished = self.tasks.update(
            task.task_id,
            TaskPatch(
                status=AppTaskStatus.SUCCESS,
                progress=100,
                message=outcome.message,
                error_detail="",
                finished_at=utc_now(),
            ),
            expected_status=AppTaskStatus.RUNNING,
        )
        if finished is None:
            return None
        self.tasks.append_log(task.task_id, f"Done: {outcome.message}")
        logger.info("Task %s succeeded: %s", task.task_id, outcome.message)
        self._audit(task, status="ok", detail=outcome.detail or outcome.message)
        return self.tasks.get(task.task_id)

    def _finish_failure(self, task: AppTaskView, error_detail: str) -> AppTaskView | None:
        finished = self.tasks.update(
            task.task_id,
            TaskPatch(
                status=AppTaskStatus.FAILED,
                message=FAILED_MESSAGE,
                error_detail=error_detail,
                finished_at=utc_now(),
            ),
            expected_status=AppTaskStatus.RUNNING,
        )
        if finished is None:
            return None
        self.tasks.append_log(task.task_id, f"Error: {error_detail}")
        self._audit(task, status="failed", detail=error_detail)
        return self.tasks.get(task.task_id)

    def _audit(self, task: AppTaskView, *, status: str, detail: str) -> None:
        try:
            self.audit.record(
                AuditRecord(
                    action=f"app_{task.action.value}",
                    actor=task.actor,
                    target=task.target,
                    status=status,
                    detail=detail,
                ),
            )
        except Exception:
            logger.exception("Failed to write audit record for task %s", task.task_id)

    # -- helpers ----------------------------------------------------------------

    def _resolve_app(self, app_id: str) -> AppDefinition:
        try:
            return self.catalog.get_app(app_id)
        except NotFoundError as error:
            raise ValidationError(str(error)) from error

    def _app_lock(self, app_id: str) -> asyncio.Lock:
        return self._app_locks.setdefault(app_id, asyncio.Lock())

    @staticmethod
    def _discover_base_url(app: AppDefinition, snapshot: IntegrationSnapshot) -> str | None:
        if app.base_url_setting is None or app.port_setting is None:
            return None
        if snapshot.value(app.base_url_setting):
            return None
        return f"http://{LOOPBACK_HOST}:{snapshot.value(app.port_setting)}"
