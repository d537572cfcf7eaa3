"""Pydantic models for the shared cross-device coordination document."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from vault_sync.utils.ids import new_uuid
from vault_sync.utils.time import now_ms

MAX_CONNECTION_EVENTS = 20
MAX_PENDING_OPERATIONS = 100
MAX_CONFLICTS = 50


class SyncState(str, Enum):
    UNKNOWN = "unknown"
    INITIALIZING = "initializing"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    CONFLICT = "conflict"


class DatabaseStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


class ResolutionStrategy(str, Enum):
    NEWEST_WINS = "newest-wins"
    MANUAL = "manual"
    KEEP_BOTH = "keep-both"


class Device(BaseModel):
    device_id: str
    name: str
    platform: str = "unknown"
    last_seen: int = Field(default_factory=now_ms)
    last_sync_time: int = Field(default_factory=now_ms)
    plugin_version: str | None = None


class Header(BaseModel):
    workspace_id: str
    last_global_sync: int
    sync_state: SyncState = SyncState.INITIALIZING
    last_writer: str
    plugin_version: str
    devices: dict[str, Device]


class ConnectionEvent(BaseModel):
    timestamp: int = Field(default_factory=now_ms)
    event_type: Literal["connected", "disconnected"]
    device_id: str
    details: str | None = None


class OperationMetadata(BaseModel):
    old_path: str | None = None
    content_hash: str | None = None
    last_modified: int | None = None


class PendingOperation(BaseModel):
    id: str = Field(default_factory=new_uuid)
    file_id: str
    operation_type: OperationType
    timestamp: int = Field(default_factory=now_ms)
    device_id: str
    metadata: OperationMetadata = Field(default_factory=OperationMetadata)
    status: Literal["pending", "processing", "error"] = "pending"
    error_details: str | None = None

    @model_validator(mode="after")
    def _rename_needs_old_path(self) -> "PendingOperation":
        if self.operation_type is OperationType.RENAME and not self.metadata.old_path:
            raise ValueError("rename operations require metadata.old_path")
        return self


class ConflictCandidate(BaseModel):
    """One device's view of a conflicting file."""

    device_id: str
    content_hash: str | None = None
    last_modified: int = 0


class Conflict(BaseModel):
    id: str = Field(default_factory=new_uuid)
    file_id: str
    detected_at: int = Field(default_factory=now_ms)
    devices: list[str]
    candidates: list[ConflictCandidate] = Field(default_factory=list)
    resolution_status: Literal["pending", "resolved"] = "pending"
    resolution_strategy: ResolutionStrategy | None = None
    resolved_at: int | None = None
    resolved_by: str | None = None
    winner: str | None = None


class CoordinationDocument(BaseModel):
    header: Header
    connection_events: list[ConnectionEvent] = Field(default_factory=list)
    pending_operations: list[PendingOperation] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    last_database_check: int = Field(default_factory=now_ms)
    database_status: DatabaseStatus = DatabaseStatus.UNKNOWN

    def trim(self) -> None:
        """Drop the oldest history entries beyond each list's cap."""
        self.connection_events = self.connection_events[-MAX_CONNECTION_EVENTS:]
        self.pending_operations = self.pending_operations[-MAX_PENDING_OPERATIONS:]
        self.conflicts = self.conflicts[-MAX_CONFLICTS:]

    def open_conflicts(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.resolution_status == "pending"]


def create_empty_document(
    workspace_id: str,
    device_id: str,
    device_name: str,
    platform: str,
    plugin_version: str,
) -> CoordinationDocument:
    now = now_ms()
    device = Device(
        device_id=device_id,
        name=device_name,
        platform=platform,
        last_seen=now,
        last_sync_time=now,
        plugin_version=plugin_version,
    )
    return CoordinationDocument(
        header=Header(
            workspace_id=workspace_id,
            last_global_sync=now,
            sync_state=SyncState.INITIALIZING,
            last_writer=device_id,
            plugin_version=plugin_version,
            devices={device_id: device},
        ),
        last_database_check=now,
    )


__all__ = [
    "MAX_CONNECTION_EVENTS",
    "MAX_PENDING_OPERATIONS",
    "MAX_CONFLICTS",
    "SyncState",
    "DatabaseStatus",
    "OperationType",
    "ResolutionStrategy",
    "Device",
    "Header",
    "ConnectionEvent",
    "OperationMetadata",
    "PendingOperation",
    "ConflictCandidate",
    "Conflict",
    "CoordinationDocument",
    "create_empty_document",
]
