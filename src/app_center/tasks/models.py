"""Domain models for app tasks and their action-specific options."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any

from app_center.errors import ValidationError


class AppTaskStatus(str, Enum):
    """Task lifecycle states: queued -> running -> success | failed."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {AppTaskStatus.SUCCESS, AppTaskStatus.FAILED}


class AppTaskAction(str, Enum):
    INSTALL = "install"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    UNINSTALL = "uninstall"
    INSTALL_BUNDLE = "install_bundle"

    @property
    def is_control(self) -> bool:
        return self in CONTROL_ACTIONS


CONTROL_ACTIONS = frozenset({AppTaskAction.START, AppTaskAction.STOP, AppTaskAction.RESTART})


@dataclass(slots=True, frozen=True)
class InstallOptions:
    skip_if_installed: bool = False
    bundle_id: str | None = None


@dataclass(slots=True, frozen=True)
class ControlOptions:
    pass


@dataclass(slots=True, frozen=True)
class UninstallOptions:
    remove_data: bool = False


@dataclass(slots=True, frozen=True)
class BundleInstallOptions:
    bundle_id: str


TaskOptions = InstallOptions | ControlOptions | UninstallOptions | BundleInstallOptions

# Persisted JSON keys; kept stable for rows written by earlier releases.
_WIRE_KEYS = {
    "skip_if_installed": "skipIfInstalled",
    "bundle_id": "bundleId",
    "remove_data": "removeData",
}
_OPTIONS_BY_ACTION: dict[AppTaskAction, type] = {
    AppTaskAction.INSTALL: InstallOptions,
    AppTaskAction.START: ControlOptions,
    AppTaskAction.STOP: ControlOptions,
    AppTaskAction.RESTART: ControlOptions,
    AppTaskAction.UNINSTALL: UninstallOptions,
    AppTaskAction.INSTALL_BUNDLE: BundleInstallOptions,
}


def parse_action(value: str | AppTaskAction) -> AppTaskAction:
    try:
        return AppTaskAction(value)
    except ValueError as error:
        raise ValidationError(f"Unsupported action: {value!r}") from error


def coerce_options(
    action: AppTaskAction,
    options: TaskOptions | Mapping[str, Any] | None,
) -> TaskOptions:
    """Validate ``options`` against ``action``; mappings use the wire keys."""

    expected = _OPTIONS_BY_ACTION[action]
    if options is None:
        if expected is BundleInstallOptions:
            raise ValidationError("Bundle install requires a bundle id.")
        return expected()
    if isinstance(options, Mapping):
        return options_from_payload(action, options)
    if not isinstance(options, expected):
        raise ValidationError(
            f"Options {type(options).__name__} do not match action {action.value!r}",
        )
    return options


def options_to_payload(options: TaskOptions) -> dict[str, Any]:
    return {
        _WIRE_KEYS[item.name]: getattr(options, item.name)
        for item in fields(options)
        if getattr(options, item.name) is not None
    }


def options_from_payload(action: AppTaskAction, payload: Mapping[str, Any]) -> TaskOptions:
    expected = _OPTIONS_BY_ACTION[action]
    allowed = {_WIRE_KEYS[item.name]: item.name for item in fields(expected)}
    unknown = sorted(set(payload) - set(allowed))
    if unknown:
        raise ValidationError(
            f"Unsupported options for {action.value!r}: {', '.join(unknown)}",
        )
    values = {allowed[key]: value for key, value in payload.items()}
    if expected is InstallOptions:
        return InstallOptions(
            skip_if_installed=bool(values.get("skip_if_installed", False)),
            bundle_id=values.get("bundle_id"),
        )
    if expected is UninstallOptions:
        return UninstallOptions(remove_data=bool(values.get("remove_data", False)))
    if expected is BundleInstallOptions:
        bundle_id = values.get("bundle_id")
        if not bundle_id:
            raise ValidationError("Bundle install requires a bundle id.")
        return BundleInstallOptions(bundle_id=str(bundle_id))
    return ControlOptions()


@dataclass(slots=True)
class AppTaskCreate:
    """Input payload for creating a queued task."""

    target: str
    action: AppTaskAction
    actor: str
    options: TaskOptions
    message: str = "Task created"
    retried_from: int | None = None


@dataclass(slots=True)
class TaskPatch:
    """Partial update; ``None`` fields are left unchanged."""

    status: AppTaskStatus | None = None
    progress: int | None = None
    message: str | None = None
    error_detail: str | None = None
    finished_at: datetime | None = None


@dataclass(slots=True)
class AppTaskView:
    """Readable task view for orchestrator, CLI and tests."""

    task_id: int
    target: str
    action: AppTaskAction
    status: AppTaskStatus
    progress: int
    message: str
    error_detail: str
    actor: str
    options: TaskOptions
    retried_from: int | None
    log_text: str
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None
