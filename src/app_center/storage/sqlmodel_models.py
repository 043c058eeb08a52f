"""SQLModel ORM tables for task, settings and audit storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text
from sqlmodel import Field, SQLModel


class AppTask(SQLModel, table=True):
    __tablename__ = "app_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_app_tasks_target_status", "target", "status"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, primary_key=True)
    target: str = Field(index=True)
    action: str = Field(index=True)
    status: str = Field(index=True)
    progress: int = Field(default=0)
    message: str = Field(default="")
    error_detail: str = Field(
        default="",
        sa_column=Column(Text, nullable=False, server_default=""),
    )
    actor: str
    options_json: str = Field(
        default="{}",
        sa_column=Column(Text, nullable=False, server_default="{}"),
    )
    log_text: str = Field(
        default="",
        sa_column=Column(Text, nullable=False, server_default=""),
    )
    retried_from: int | None = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("app_tasks.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class IntegrationSetting(SQLModel, table=True):
    __tablename__ = "settings"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_audit_logs_target_time", "target", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(index=True)
    actor: str
    target: str
    status: str = Field(index=True)
    detail: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
