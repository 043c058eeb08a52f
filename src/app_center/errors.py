"""Error taxonomy shared by catalog, provisioner, stores and orchestrator."""

from __future__ import annotations


class AppCenterError(Exception):
    """Base class for all domain errors."""


class ValidationError(AppCenterError):
    """Unknown app/bundle id, unsupported action or malformed options."""


class NotFoundError(AppCenterError):
    """Target container or task does not exist."""


class ConflictError(AppCenterError):
    """Target already exists (for example an app that is already installed)."""


class ContainerRuntimeError(AppCenterError):
    """Container runtime call failed."""


class PullError(ContainerRuntimeError):
    """Image pull stream failed."""


class StoreError(AppCenterError):
    """Persistence failure; fatal to the current step."""
