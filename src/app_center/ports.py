"""Collaborator interfaces the orchestrator depends on."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from app_center.audit.repository import AuditRecord
from app_center.settings.models import IntegrationSnapshot


class SettingsStore(Protocol):
    """Source of integration settings and sink for discovered values."""

    def snapshot(self) -> IntegrationSnapshot:
        """Resolve current settings."""

    def save(self, values: Mapping[str, object]) -> None:
        """Persist a subset of settings keys."""


class AuditSink(Protocol):
    """Receiver of audit records; callers do not wait on the outcome."""

    def record(self, entry: AuditRecord) -> None:
        """Store one audit record."""
