"""Exception hierarchy shared by the sync components."""

from __future__ import annotations

from enum import Enum
from typing import Any


class SyncErrorType(str, Enum):
    SYNC_FILE_MISSING = "sync_file_missing"
    SYNC_FILE_CORRUPT = "sync_file_corrupt"
    SYNC_FILE_OUTDATED = "sync_file_outdated"
    DEVICE_MISMATCH = "device_mismatch"
    CONFLICT_DETECTED = "conflict_detected"
    DATABASE_UNAVAILABLE = "database_unavailable"
    SYNC_INTERRUPTED = "sync_interrupted"
    UNKNOWN_ERROR = "unknown_error"


# Document errors that the repair chain can fix on its own.
RECOVERABLE_DOCUMENT_ERRORS = frozenset(
    {
        SyncErrorType.SYNC_FILE_MISSING,
        SyncErrorType.SYNC_FILE_CORRUPT,
        SyncErrorType.SYNC_FILE_OUTDATED,
        SyncErrorType.SYNC_INTERRUPTED,
    }
)


class VaultSyncError(Exception):
    """Base class for all vault-sync errors."""


class CoordinationDocumentError(VaultSyncError):
    """Raised when the shared coordination document cannot be used as-is."""

    def __init__(
        self,
        error_type: SyncErrorType,
        message: str,
        details: dict[str, Any] | None = None,
        device_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.details = details or {}
        self.device_id = device_id

    @property
    def recoverable(self) -> bool:
        return self.error_type in RECOVERABLE_DOCUMENT_ERRORS


class RemoteStoreError(VaultSyncError):
    """Base class for remote store failures."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class RemoteConnectivityError(RemoteStoreError):
    """The remote store could not be reached."""


class RemoteWriteError(RemoteStoreError):
    """A write against the remote store failed."""


class VerificationError(RemoteStoreError):
    """Post-write verification found rows that should not exist."""


class LockTimeoutError(RemoteStoreError):
    """The per-path advisory flag could not be acquired in time."""


class LocalIOError(VaultSyncError):
    """A local file could not be read or hashed."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ComponentNotReadyError(VaultSyncError):
    """A component was used before it finished initializing."""


class StartupError(VaultSyncError):
    """Fatal startup failure (remote store required but unavailable)."""


__all__ = [
    "SyncErrorType",
    "RECOVERABLE_DOCUMENT_ERRORS",
    "VaultSyncError",
    "CoordinationDocumentError",
    "RemoteStoreError",
    "RemoteConnectivityError",
    "RemoteWriteError",
    "VerificationError",
    "LockTimeoutError",
    "LocalIOError",
    "ComponentNotReadyError",
    "StartupError",
]
