"""Persistent task store for app operations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import col, select

from app_center.storage.alembic_runner import upgrade_head
from app_center.storage.common import (
    build_sqlite_engine,
    store_session,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from app_center.storage.sqlmodel_models import AppTask
from app_center.tasks.models import (
    AppTaskAction,
    AppTaskCreate,
    AppTaskStatus,
    AppTaskView,
    TaskPatch,
    options_from_payload,
    options_to_payload,
)

DEFAULT_LOG_MAX_CHARS = 60_000


class TaskRepository:
    """Task persistence facade backed by SQLModel + SQLite.

    No business rules live here: callers decide which transitions are legal
    and express them through ``expected_status``.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        log_max_chars: int = DEFAULT_LOG_MAX_CHARS,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.log_max_chars = log_max_chars
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create(self, payload: AppTaskCreate) -> AppTaskView:
        """Insert a queued task with a seeded log line."""

        now = utc_now()
        first_line = (
            f"{payload.message}: {payload.action.value} {payload.target} by {payload.actor}"
        )
        with store_session(self.engine) as session:
            row = AppTask(
                target=payload.target,
                action=payload.action.value,
                status=AppTaskStatus.QUEUED.value,
                progress=0,
                message=payload.message,
                error_detail="",
                actor=payload.actor,
                options_json=json.dumps(
                    options_to_payload(payload.options),
                    ensure_ascii=False,
                    sort_keys=True,
                ),
                log_text=_cap_log(_log_line(first_line), self.log_max_chars),
                retried_from=payload.retried_from,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def claim(self, task_id: int) -> AppTaskView | None:
        """Atomically move a queued task to running.

        Returns ``None`` when the task is missing or somebody else claimed it.
        """

        now = to_db_datetime(utc_now())
        with store_session(self.engine) as session:
            result = session.exec(
                sa_update(AppTask)
                .where(
                    col(AppTask.id) == task_id,
                    col(AppTask.status) == AppTaskStatus.QUEUED.value,
                )
                .values(status=AppTaskStatus.RUNNING.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            row = session.get(AppTask, task_id)
            return _to_task_view(row) if row is not None else None

    def update(
        self,
        task_id: int,
        patch: TaskPatch,
        *,
        expected_status: AppTaskStatus | None = None,
    ) -> AppTaskView | None:
        """Merge ``patch`` into the row.

        Progress is clamped to [0, 100] and ``updated_at`` always refreshed.
        Returns ``None`` if the task is missing or not in ``expected_status``.
        """

        values: dict[str, Any] = {"updated_at": to_db_datetime(utc_now())}
        if patch.status is not None:
            values["status"] = patch.status.value
        if patch.progress is not None:
            values["progress"] = clamp_progress(patch.progress)
        if patch.message is not None:
            values["message"] = patch.message
        if patch.error_detail is not None:
            values["error_detail"] = patch.error_detail
        if patch.finished_at is not None:
            values["finished_at"] = to_db_datetime(patch.finished_at)

        conditions = [col(AppTask.id) == task_id]
        if expected_status is not None:
            conditions.append(col(AppTask.status) == expected_status.value)

        with store_session(self.engine) as session:
            result = session.exec(sa_update(AppTask).where(*conditions).values(**values))
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            row = session.get(AppTask, task_id)
            return _to_task_view(row) if row is not None else None

    def append_log(self, task_id: int, line: str) -> bool:
        """Append one timestamped line, dropping the oldest text beyond the cap."""

        with store_session(self.engine) as session:
            row = session.get(AppTask, task_id)
            if row is None:
                return False
            row.log_text = _cap_log(row.log_text + _log_line(line), self.log_max_chars)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            return True

    def list_tasks(self, *, limit: int = 60) -> list[AppTaskView]:
        """Most recent tasks, newest first."""

        with store_session(self.engine) as session:
            rows = session.exec(
                select(AppTask).order_by(col(AppTask.id).desc()).limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def get(self, task_id: int) -> AppTaskView | None:
        with store_session(self.engine) as session:
            row = session.get(AppTask, task_id)
            return _to_task_view(row) if row is not None else None

    def get_logs(self, task_id: int) -> str | None:
        with store_session(self.engine) as session:
            row = session.get(AppTask, task_id)
            return row.log_text if row is not None else None


def clamp_progress(value: int | float) -> int:
    return max(0, min(100, int(value)))


def _log_line(line: str) -> str:
    stamp = utc_now().isoformat(timespec="seconds")
    return f"[{stamp}] {line.rstrip()}\n"


def _cap_log(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


def _to_task_view(row: AppTask) -> AppTaskView:
    action = AppTaskAction(row.action)
    payload = json.loads(row.options_json) if row.options_json else {}
    return AppTaskView(
        task_id=row.id or 0,
        target=row.target,
        action=action,
        status=AppTaskStatus(row.status),
        progress=row.progress,
        message=row.message,
        error_detail=row.error_detail,
        actor=row.actor,
        options=options_from_payload(action, payload if isinstance(payload, dict) else {}),
        retried_from=row.retried_from,
        log_text=row.log_text,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
    )
