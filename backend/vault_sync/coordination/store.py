"""Coordination document store.

The document is the one resource literally shared between devices through
the external replication layer. Every mutation is a full read-modify-write
of the file; nothing is cached across suspension points because another
device may have replaced the file in the meantime. Header scalars are
last-writer-wins, history lists are append-and-trim.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from vault_sync.coordination.document import parse_document, render_document
from vault_sync.core.config import Settings
from vault_sync.core.errors import CoordinationDocumentError, SyncErrorType
from vault_sync.core.lifecycle import ComponentState, Lifecycle
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import PENDING_OPERATIONS
from vault_sync.models.coordination import (
    Conflict,
    ConflictCandidate,
    ConnectionEvent,
    CoordinationDocument,
    DatabaseStatus,
    Device,
    OperationMetadata,
    OperationType,
    PendingOperation,
    ResolutionStrategy,
    SyncState,
    create_empty_document,
)
from vault_sync.models.dto import SyncStateSnapshot
from vault_sync.utils.time import now_ms

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    repaired: bool = False
    error: str | None = None
    error_type: SyncErrorType | None = None


@dataclass(slots=True)
class ConflictResolution:
    conflict: Conflict
    winner: ConflictCandidate | None = None


def pick_newest(candidates: Iterable[ConflictCandidate]) -> ConflictCandidate:
    """Most recent ``last_modified`` wins; equal timestamps fall back to the hash order."""
    ordered = sorted(candidates, key=lambda c: (c.last_modified, c.content_hash or "", c.device_id))
    if not ordered:
        raise ValueError("newest-wins needs at least one candidate")
    return ordered[-1]


class CoordinationStore(Lifecycle):
    """Owns the shared coordination document for one workspace."""

    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.path: Path = settings.workspace_path / settings.coordination_path
        self.backup_path: Path = settings.workspace_path / settings.backup_path
        self._clock = clock
        self._monotonic = monotonic
        self._last_backup: float | None = None

    # Lifecycle ----------------------------------------------------------

    async def initialize(self) -> CoordinationDocument:
        """Load, repair or create the document; always ends with a usable one."""
        self._set_state(ComponentState.INITIALIZING)
        try:
            if self.path.exists():
                try:
                    document = self._load()
                except CoordinationDocumentError as exc:
                    if not exc.recoverable:
                        raise
                    logger.warning("Coordination document unusable (%s), repairing", exc)
                    document = self._repair()
            else:
                logger.info("Coordination document missing at %s", self.path)
                document = self._repair()

            self._touch(document)
            if document.header.sync_state is SyncState.UNKNOWN:
                document.header.sync_state = SyncState.INITIALIZING
            self._write(document)
            self.backup(force=True)
        except Exception:
            self._set_state(ComponentState.ERROR)
            raise
        self._set_state(ComponentState.READY)
        return document

    async def validate(self) -> ValidationResult:
        """Check the document and run the repair chain on any structural failure.

        Recreation counts as success, so the result is valid unless the
        document belongs to another workspace.
        """
        try:
            self._load()
            return ValidationResult(is_valid=True)
        except CoordinationDocumentError as exc:
            if not exc.recoverable:
                logger.error("Coordination document validation failed: %s", exc)
                return ValidationResult(is_valid=False, error=str(exc), error_type=exc.error_type)
            logger.warning("Coordination document invalid (%s), repairing", exc)
            document = self._repair()
            self._touch(document)
            self._write(document)
            return ValidationResult(is_valid=True, repaired=True, error=str(exc), error_type=exc.error_type)

    # Reads and writes ---------------------------------------------------

    async def read(self) -> CoordinationDocument:
        return self._load_or_repair()

    async def mutate(self, apply: Callable[[CoordinationDocument], T]) -> T:
        """Read the latest document, apply ``apply``, stamp this device and persist."""
        self.require_ready()
        document = self._load_or_repair()
        result = apply(document)
        self._touch(document)
        document.trim()
        self._write(document)
        self.backup()
        PENDING_OPERATIONS.set(len(document.pending_operations))
        return result

    async def touch(self) -> None:
        await self.mutate(lambda document: None)

    async def mark_synced(self) -> None:
        def apply(document: CoordinationDocument) -> None:
            now = self._clock()
            device = document.header.devices.get(self.settings.device_id)
            if device is not None:
                device.last_sync_time = now
            document.header.last_global_sync = now

        await self.mutate(apply)

    # Connectivity -------------------------------------------------------

    async def set_sync_state(self, state: SyncState) -> None:
        def apply(document: CoordinationDocument) -> None:
            document.header.sync_state = state

        await self.mutate(apply)

    async def record_database_status(self, available: bool, details: str | None = None) -> SyncState:
        """Record a reachability check; entering or leaving OFFLINE is logged as an event."""

        def apply(document: CoordinationDocument) -> SyncState:
            previous = document.database_status
            document.database_status = DatabaseStatus.AVAILABLE if available else DatabaseStatus.UNAVAILABLE
            document.last_database_check = self._clock()
            if not available and previous is not DatabaseStatus.UNAVAILABLE:
                document.connection_events.append(
                    ConnectionEvent(
                        timestamp=self._clock(),
                        event_type="disconnected",
                        device_id=self.settings.device_id,
                        details=details,
                    )
                )
            elif available and previous is DatabaseStatus.UNAVAILABLE:
                document.connection_events.append(
                    ConnectionEvent(
                        timestamp=self._clock(),
                        event_type="connected",
                        device_id=self.settings.device_id,
                        details=details,
                    )
                )
            if document.header.sync_state is not SyncState.CONFLICT:
                document.header.sync_state = SyncState.ONLINE if available else SyncState.OFFLINE
            return document.header.sync_state

        return await self.mutate(apply)

    # Pending operations -------------------------------------------------

    async def add_pending_operation(
        self,
        file_id: str,
        operation_type: OperationType,
        old_path: str | None = None,
        content_hash: str | None = None,
        last_modified: int | None = None,
    ) -> PendingOperation:
        operation = PendingOperation(
            file_id=file_id,
            operation_type=operation_type,
            timestamp=self._clock(),
            device_id=self.settings.device_id,
            metadata=OperationMetadata(
                old_path=old_path,
                content_hash=content_hash,
                last_modified=last_modified,
            ),
        )

        def apply(document: CoordinationDocument) -> None:
            document.pending_operations.append(operation)

        await self.mutate(apply)
        logger.info(
            "Deferred %s of %s to coordination document",
            operation_type.value,
            file_id,
            extra={"ctx_path": file_id, "ctx_operation": operation.id},
        )
        return operation

    async def list_pending_operations(self, device_only: bool = True) -> list[PendingOperation]:
        document = await self.read()
        operations = document.pending_operations
        if device_only:
            operations = [op for op in operations if op.device_id == self.settings.device_id]
        return operations

    async def update_pending_operation(self, operation_id: str, status: str, error: str | None = None) -> None:
        def apply(document: CoordinationDocument) -> None:
            for operation in document.pending_operations:
                if operation.id == operation_id:
                    operation.status = status  # type: ignore[assignment]
                    operation.error_details = error

        await self.mutate(apply)

    async def remove_pending_operations(self, operation_ids: Iterable[str]) -> None:
        doomed = set(operation_ids)
        if not doomed:
            return

        def apply(document: CoordinationDocument) -> None:
            document.pending_operations = [op for op in document.pending_operations if op.id not in doomed]

        await self.mutate(apply)

    # Conflicts ----------------------------------------------------------

    async def add_conflict(self, file_id: str, candidates: list[ConflictCandidate]) -> Conflict:
        conflict = Conflict(
            file_id=file_id,
            detected_at=self._clock(),
            devices=sorted({c.device_id for c in candidates}),
            candidates=candidates,
        )

        def apply(document: CoordinationDocument) -> None:
            document.conflicts.append(conflict)
            document.header.sync_state = SyncState.CONFLICT

        await self.mutate(apply)
        logger.warning("Conflict detected on %s between %s", file_id, conflict.devices, extra={"ctx_path": file_id})
        return conflict

    async def resolve_conflict(self, conflict_id: str, strategy: ResolutionStrategy) -> ConflictResolution:
        """Apply ``strategy``; ``manual`` leaves the conflict pending untouched."""
        document = await self.read()
        conflict = next((c for c in document.conflicts if c.id == conflict_id), None)
        if conflict is None:
            raise KeyError(conflict_id)
        if strategy is ResolutionStrategy.MANUAL or conflict.resolution_status == "resolved":
            return ConflictResolution(conflict=conflict)

        winner = pick_newest(conflict.candidates) if strategy is ResolutionStrategy.NEWEST_WINS else None

        def apply(current: CoordinationDocument) -> Conflict | None:
            target = next((c for c in current.conflicts if c.id == conflict_id), None)
            if target is None:
                return None
            target.resolution_status = "resolved"
            target.resolution_strategy = strategy
            target.resolved_at = self._clock()
            target.resolved_by = self.settings.device_id
            target.winner = winner.device_id if winner else None
            if current.header.sync_state is SyncState.CONFLICT and not current.open_conflicts():
                current.header.sync_state = _state_for(current.database_status)
            return target

        resolved = await self.mutate(apply)
        if resolved is None:
            # Trimmed away by a concurrent writer between read and mutate.
            raise KeyError(conflict_id)
        logger.info("Resolved conflict %s with %s", conflict_id, strategy.value)
        return ConflictResolution(conflict=resolved, winner=winner)

    async def get_state(self) -> SyncStateSnapshot:
        document = await self.read()
        return SyncStateSnapshot(
            workspace_id=document.header.workspace_id,
            sync_state=document.header.sync_state,
            database_status=document.database_status,
            last_database_check=document.last_database_check,
            last_global_sync=document.header.last_global_sync,
            last_writer=document.header.last_writer,
            devices=list(document.header.devices.values()),
            pending_operations=document.pending_operations,
            open_conflicts=document.open_conflicts(),
        )

    # Backup and repair --------------------------------------------------

    def backup(self, force: bool = False) -> bool:
        """Copy the document to ``<path>.backup`` once the backup interval elapsed."""
        now = self._monotonic()
        if not force and self._last_backup is not None and now - self._last_backup < self.settings.backup_interval:
            return False
        try:
            content = self.path.read_text(encoding="utf-8")
            self.backup_path.parent.mkdir(parents=True, exist_ok=True)
            self.backup_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to refresh coordination backup: %s", exc)
            return False
        self._last_backup = now
        return True

    def restore_from_backup(self) -> CoordinationDocument | None:
        if not self.backup_path.exists():
            return None
        try:
            content = self.backup_path.read_text(encoding="utf-8")
            document = parse_document(content, self.settings.workspace_id)
        except (OSError, CoordinationDocumentError) as exc:
            logger.warning("Coordination backup unusable: %s", exc)
            return None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")
        logger.info("Restored coordination document from backup")
        return document

    def recreate(self) -> CoordinationDocument:
        document = create_empty_document(
            workspace_id=self.settings.workspace_id,
            device_id=self.settings.device_id,
            device_name=self.settings.device_name,
            platform=self.settings.device_platform,
            plugin_version=self.settings.plugin_version,
        )
        self._write(document)
        logger.info("Created fresh coordination document at %s", self.path)
        return document

    def _repair(self) -> CoordinationDocument:
        restored = self.restore_from_backup()
        if restored is not None:
            return restored
        return self.recreate()

    # Internal helpers ---------------------------------------------------

    def _load(self) -> CoordinationDocument:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CoordinationDocumentError(SyncErrorType.SYNC_FILE_MISSING, "coordination document missing") from exc
        return parse_document(text, self.settings.workspace_id)

    def _load_or_repair(self) -> CoordinationDocument:
        try:
            return self._load()
        except CoordinationDocumentError as exc:
            if not exc.recoverable:
                raise
            logger.warning("Coordination document unusable (%s), repairing", exc)
            return self._repair()

    def _touch(self, document: CoordinationDocument) -> None:
        now = self._clock()
        device_id = self.settings.device_id
        existing = document.header.devices.get(device_id)
        if existing is None:
            document.header.devices[device_id] = Device(
                device_id=device_id,
                name=self.settings.device_name,
                platform=self.settings.device_platform,
                last_seen=now,
                last_sync_time=now,
                plugin_version=self.settings.plugin_version,
            )
        else:
            existing.name = self.settings.device_name
            existing.platform = self.settings.device_platform
            existing.last_seen = now
            existing.plugin_version = self.settings.plugin_version
        document.header.last_writer = device_id
        document.header.plugin_version = self.settings.plugin_version

    def _write(self, document: CoordinationDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_document(document), encoding="utf-8")


def _state_for(status: DatabaseStatus) -> SyncState:
    if status is DatabaseStatus.AVAILABLE:
        return SyncState.ONLINE
    if status is DatabaseStatus.UNAVAILABLE:
        return SyncState.OFFLINE
    return SyncState.UNKNOWN


__all__ = ["CoordinationStore", "ValidationResult", "ConflictResolution", "pick_newest"]
