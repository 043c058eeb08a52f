"""Append-only audit log persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlmodel import col, select

from app_center.storage.alembic_runner import upgrade_head
from app_center.storage.common import (
    build_sqlite_engine,
    store_session,
    to_utc_aware_datetime,
    utc_now,
)
from app_center.storage.sqlmodel_models import AuditLog


@dataclass(slots=True, frozen=True)
class AuditRecord:
    """One audit entry as written by the orchestrator."""

    action: str
    actor: str
    target: str
    status: str
    detail: str = ""


@dataclass(slots=True)
class AuditEntryView:
    """Stored audit entry."""

    entry_id: int
    action: str
    actor: str
    target: str
    status: str
    detail: str
    created_at: datetime


class AuditRepository:
    """Audit sink backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def record(self, entry: AuditRecord) -> None:
        with store_session(self.engine) as session:
            session.add(
                AuditLog(
                    action=entry.action,
                    actor=entry.actor,
                    target=entry.target,
                    status=entry.status,
                    detail=entry.detail,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def list_entries(self, *, target: str | None = None, limit: int = 100) -> list[AuditEntryView]:
        """Most recent entries first."""

        with store_session(self.engine) as session:
            statement = select(AuditLog).order_by(col(AuditLog.id).desc()).limit(limit)
            if target is not None:
                statement = statement.where(AuditLog.target == target)
            rows = session.exec(statement).all()
        return [
            AuditEntryView(
                entry_id=row.id or 0,
                action=row.action,
                actor=row.actor,
                target=row.target,
                status=row.status,
                detail=row.detail,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]
