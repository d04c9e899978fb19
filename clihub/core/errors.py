"""Error types shared by the configuration engine.

Every error carries a stable ``error_code`` so hosts can branch on the kind of
failure without matching message text, and an optional ``path`` naming the
file involved.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

PathLike = Union[str, Path]


class ClihubError(Exception):
    """Base class for engine errors with a stable error code."""

    def __init__(self, error_code: str, message: str, *, path: Optional[PathLike] = None) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.path = Path(path) if path is not None else None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.error_code, "message": str(self)}
        if self.path is not None:
            payload["path"] = str(self.path)
        return payload


class ProviderNotFoundError(ClihubError):
    """Unknown provider id for a target application."""

    def __init__(self, app: str, provider_id: str) -> None:
        super().__init__("not_found", f"Provider '{provider_id}' does not exist for {app}.")
        self.app = app
        self.provider_id = provider_id


class ProviderInUseError(ClihubError):
    """Attempt to delete the provider that is currently active."""

    def __init__(self, app: str, provider_id: str) -> None:
        super().__init__(
            "in_use", f"Provider '{provider_id}' is the current {app} provider and cannot be deleted."
        )
        self.app = app
        self.provider_id = provider_id


class SettingsValidationError(ClihubError):
    """Malformed settings payload, snippet or input document."""

    def __init__(self, message: str, *, path: Optional[PathLike] = None) -> None:
        super().__init__("validation_error", message, path=path)


class BundleFormatError(SettingsValidationError):
    """Import bundle does not have the expected shape."""


class CorruptConfigError(ClihubError):
    """The SSOT document failed structural or version checks at load."""

    def __init__(self, message: str, *, path: Optional[PathLike] = None, detail: str = "") -> None:
        super().__init__("corrupt_config", message, path=path)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.detail:
            payload["detail"] = self.detail
        return payload


class StorageIOError(ClihubError):
    """Read, write or rename failure with path and operation context."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[PathLike] = None,
        operation: str = "",
        error_code: str = "io_failure",
    ) -> None:
        super().__init__(error_code, message, path=path)
        self.operation = operation


class RollbackError(StorageIOError):
    """Restoring prior file contents after a failed commit also failed."""

    def __init__(self, message: str, *, path: Optional[PathLike] = None, operation: str = "") -> None:
        super().__init__(message, path=path, operation=operation, error_code="rollback_failed")


class PartialSyncError(ClihubError):
    """The SSOT was committed but one or more live files could not be rendered."""

    def __init__(self, failures: Dict[str, str]) -> None:
        apps = ", ".join(sorted(failures))
        super().__init__("partial_sync", f"Live configuration is out of sync for: {apps}")
        self.failures = dict(failures)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["failures"] = dict(self.failures)
        return payload


__all__ = [
    "BundleFormatError",
    "ClihubError",
    "CorruptConfigError",
    "PartialSyncError",
    "ProviderInUseError",
    "ProviderNotFoundError",
    "RollbackError",
    "SettingsValidationError",
    "StorageIOError",
]
