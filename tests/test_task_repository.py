from __future__ import annotations

from pathlib import Path

import allure

from app_center.tasks.models import (
    AppTaskAction,
    AppTaskCreate,
    AppTaskStatus,
    BundleInstallOptions,
    InstallOptions,
    TaskPatch,
    UninstallOptions,
)
from app_center.tasks.repository import TaskRepository

pytestmark = [
    allure.epic("App Tasks"),
    allure.feature("Task Store"),
]


def _create(repository: TaskRepository, target: str = "jellyfin", **kwargs):
    return repository.create(
        AppTaskCreate(
            target=target,
            action=kwargs.pop("action", AppTaskAction.INSTALL),
            actor=kwargs.pop("actor", "alice"),
            options=kwargs.pop("options", InstallOptions()),
            **kwargs,
        ),
    )


def test_create_persists_queued_task_with_seeded_log(task_repository: TaskRepository) -> None:
    task = _create(task_repository)

    assert task.task_id > 0
    assert task.status is AppTaskStatus.QUEUED
    assert task.progress == 0
    assert task.message == "Task created"
    assert task.finished_at is None
    assert task.created_at.tzinfo is not None
    assert task.log_text.endswith("Task created: install jellyfin by alice\n")
    assert task.log_text.startswith("[")


def test_options_survive_storage_per_action(task_repository: TaskRepository) -> None:
    uninstall = _create(
        task_repository,
        action=AppTaskAction.UNINSTALL,
        options=UninstallOptions(remove_data=True),
    )
    bundle = _create(
        task_repository,
        target="media-stack",
        action=AppTaskAction.INSTALL_BUNDLE,
        options=BundleInstallOptions(bundle_id="media-stack"),
    )

    assert task_repository.get(uninstall.task_id).options == UninstallOptions(remove_data=True)
    assert task_repository.get(bundle.task_id).options == BundleInstallOptions(
        bundle_id="media-stack",
    )


def test_claim_moves_queued_task_to_running_once(task_repository: TaskRepository) -> None:
    task = _create(task_repository)

    claimed = task_repository.claim(task.task_id)
    assert claimed is not None
    assert claimed.status is AppTaskStatus.RUNNING

    assert task_repository.claim(task.task_id) is None
    assert task_repository.claim(999) is None


def test_update_clamps_progress_and_respects_expected_status(
    task_repository: TaskRepository,
) -> None:
    task = _create(task_repository)

    over = task_repository.update(task.task_id, TaskPatch(progress=250))
    assert over is not None
    assert over.progress == 100
    under = task_repository.update(task.task_id, TaskPatch(progress=-5))
    assert under is not None
    assert under.progress == 0
    assert under.updated_at >= task.updated_at

    mismatch = task_repository.update(
        task.task_id,
        TaskPatch(status=AppTaskStatus.SUCCESS),
        expected_status=AppTaskStatus.RUNNING,
    )
    assert mismatch is None
    assert task_repository.get(task.task_id).status is AppTaskStatus.QUEUED
    assert task_repository.update(12345, TaskPatch(message="nope")) is None


def test_append_log_caps_text_keeping_most_recent_lines(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "capped.db", log_max_chars=1_000)
    repository.init_schema()
    task = _create(repository)

    for index in range(100):
        assert repository.append_log(task.task_id, f"line {index:03d} " + "x" * 20)

    logs = repository.get_logs(task.task_id)
    assert logs is not None
    assert len(logs) == 1_000
    assert logs.endswith("line 099 " + "x" * 20 + "\n")
    assert "line 000" not in logs
    assert "Task created" not in logs
    assert repository.append_log(999, "orphan") is False
    repository.close()


def test_list_tasks_returns_newest_first_with_limit(task_repository: TaskRepository) -> None:
    ids = [_create(task_repository, target=target).task_id for target in ("a", "b", "c")]

    listed = task_repository.list_tasks(limit=2)

    assert [task.task_id for task in listed] == [ids[2], ids[1]]


def test_retry_lineage_is_stored(task_repository: TaskRepository) -> None:
    source = _create(task_repository)
    retry = _create(
        task_repository,
        message=f"Retry of task #{source.task_id}",
        retried_from=source.task_id,
    )

    stored = task_repository.get(retry.task_id)
    assert stored.retried_from == source.task_id
    assert stored.message == f"Retry of task #{source.task_id}"
    assert task_repository.get_logs(4242) is None
