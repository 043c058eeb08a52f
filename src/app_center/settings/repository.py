"""Key/value settings store with environment-backed defaults."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from sqlmodel import select

from app_center.config import IntegrationDefaults
from app_center.errors import ValidationError
from app_center.settings.models import INTEGRATION_KEYS, PORT_KEYS, IntegrationSnapshot
from app_center.storage.alembic_runner import upgrade_head
from app_center.storage.common import build_sqlite_engine, store_session, utc_now
from app_center.storage.sqlmodel_models import IntegrationSetting

logger = logging.getLogger(__name__)


class SettingsRepository:
    """Settings persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        defaults: IntegrationDefaults | None = None,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.defaults = defaults or IntegrationDefaults()
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def snapshot(self) -> IntegrationSnapshot:
        """Resolve every integration key, falling back to configured defaults."""

        with store_session(self.engine) as session:
            rows = session.exec(select(IntegrationSetting)).all()
        stored = {row.key: row.value for row in rows}

        values: dict[str, str | int] = {}
        for key in INTEGRATION_KEYS:
            fallback = getattr(self.defaults, key)
            raw = stored.get(key)
            if key in PORT_KEYS:
                values[key] = _positive_int(raw, fallback)
            else:
                values[key] = raw if raw is not None else fallback
        return IntegrationSnapshot(**values)

    def save(self, values: Mapping[str, object]) -> None:
        """Upsert a subset of integration keys."""

        unknown = sorted(set(values) - set(INTEGRATION_KEYS))
        if unknown:
            raise ValidationError(f"Unknown settings keys: {', '.join(unknown)}")

        now = utc_now()
        with store_session(self.engine) as session:
            for key, value in values.items():
                row = session.get(IntegrationSetting, key)
                if row is None:
                    row = IntegrationSetting(key=key, value=str(value), updated_at=now)
                else:
                    row.value = str(value)
                    row.updated_at = now
                session.add(row)
            session.commit()
        logger.info("Saved settings: %s", ", ".join(sorted(values)))


def _positive_int(raw: str | None, fallback: int) -> int:
    if raw is None:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback
