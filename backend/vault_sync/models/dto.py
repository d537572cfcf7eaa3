"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from vault_sync.models.coordination import (
    Conflict,
    ConflictCandidate,
    DatabaseStatus,
    Device,
    PendingOperation,
    ResolutionStrategy,
    SyncState,
)


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    components: dict[str, str]
    version: str


class SyncStateSnapshot(BaseModel):
    workspace_id: str
    sync_state: SyncState
    database_status: DatabaseStatus
    last_database_check: int
    last_global_sync: int
    last_writer: str
    devices: list[Device]
    pending_operations: list[PendingOperation]
    open_conflicts: list[Conflict]


class ProgressResponse(BaseModel):
    running: bool
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    total_batches: int = 0
    completed_batches: int = 0
    current_batch: int = 0
    last_processed_index: int = 0
    percentage: float = 0.0
    step: str = "idle"
    eta_seconds: float | None = None


class InitialSyncRequest(BaseModel):
    force: bool = Field(default=False, description="Run even if the remote store already has records")


class InitialSyncResponse(BaseModel):
    status: Literal["started", "already_running", "skipped"]


class StopResponse(BaseModel):
    status: Literal["stopping", "idle"]


class ConflictResolveRequest(BaseModel):
    strategy: ResolutionStrategy = ResolutionStrategy.NEWEST_WINS


class ConflictResolveResponse(BaseModel):
    conflict: Conflict
    winner: ConflictCandidate | None = None


__all__ = [
    "HealthResponse",
    "SyncStateSnapshot",
    "ProgressResponse",
    "InitialSyncRequest",
    "InitialSyncResponse",
    "StopResponse",
    "ConflictResolveRequest",
    "ConflictResolveResponse",
]
