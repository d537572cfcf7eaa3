"""Replay of operations deferred while the remote store was unreachable."""

from __future__ import annotations

from pathlib import Path

import openai

from vault_sync.coordination.store import CoordinationStore
from vault_sync.core.errors import RemoteConnectivityError, VaultSyncError
from vault_sync.core.logging import get_logger
from vault_sync.ingest.metadata import extract_metadata
from vault_sync.ingest.tasks import TaskQueue
from vault_sync.models.coordination import OperationType, PendingOperation
from vault_sync.models.entities import FileStatus, StatusRecord
from vault_sync.models.events import ProcessingTask, TaskKind
from vault_sync.remote.consistency import ConsistencyStore
from vault_sync.utils.hashing import sha256_bytes
from vault_sync.utils.time import mtime_ms

logger = get_logger(__name__)


class OfflineReplayer:
    def __init__(
        self,
        workspace_path: Path,
        consistency: ConsistencyStore,
        coordination: CoordinationStore,
        task_queue: TaskQueue | None = None,
    ) -> None:
        self.workspace_path = workspace_path
        self.consistency = consistency
        self.coordination = coordination
        self.task_queue = task_queue

    async def replay(self) -> dict[str, int]:
        """Apply this device's pending operations oldest first.

        Stops early if the remote store drops out again; whatever is left
        stays queued for the next reconnect.
        """
        operations = sorted(await self.coordination.list_pending_operations(), key=lambda op: op.timestamp)
        stats = {"replayed": 0, "failed": 0, "remaining": 0}
        if not operations:
            return stats
        logger.info("Replaying %d deferred operations", len(operations))

        done: list[str] = []
        for position, operation in enumerate(operations):
            try:
                await self._apply(operation)
            except RemoteConnectivityError:
                stats["remaining"] = len(operations) - position
                logger.warning("Remote store lost during replay, %d operations left", stats["remaining"])
                break
            except (VaultSyncError, OSError, ValueError, openai.APIError) as exc:
                stats["failed"] += 1
                logger.error(
                    "Replay of %s %s failed: %s",
                    operation.operation_type.value,
                    operation.file_id,
                    exc,
                    extra={"ctx_path": operation.file_id, "ctx_operation": operation.id},
                )
                await self.coordination.update_pending_operation(operation.id, "error", str(exc))
                continue
            done.append(operation.id)
            stats["replayed"] += 1

        await self.coordination.remove_pending_operations(done)
        return stats

    async def _apply(self, operation: PendingOperation) -> None:
        path = operation.file_id
        if operation.operation_type is OperationType.DELETE:
            await self.consistency.mark_deleted(path)
            return
        if operation.operation_type is OperationType.RENAME:
            await self._apply_rename(operation)
            return
        await self._apply_upsert(path)

    async def _apply_rename(self, operation: PendingOperation) -> None:
        old_path = operation.metadata.old_path
        if old_path is None:
            raise ValueError(f"rename operation {operation.id} has no source path")
        new_path = operation.file_id
        source = await self.consistency.get_status(old_path)
        target = await self.consistency.get_status(new_path)
        target_live = target is not None and target.status is not FileStatus.DELETED
        if source is not None and source.status is not FileStatus.DELETED and not target_live:
            await self.consistency.rename_path(old_path, new_path)
            return
        await self.consistency.mark_deleted(old_path)
        await self._apply_upsert(new_path)

    async def _apply_upsert(self, path: str) -> None:
        file_path = self.workspace_path / path
        if not file_path.exists():
            await self.consistency.mark_deleted(path)
            return
        raw = file_path.read_bytes()
        digest = sha256_bytes(raw)
        modified = mtime_ms(file_path.stat().st_mtime)
        if not await self.consistency.needs_vectorizing(path, modified, digest):
            return
        metadata = extract_metadata(path, raw.decode("utf-8", errors="replace"))
        existing = await self.consistency.get_status(path)
        await self.consistency.upsert_status(
            StatusRecord(
                workspace_id=self.consistency.workspace_id,
                file_path=path,
                last_modified=modified,
                content_hash=digest,
                status=FileStatus.PENDING,
                tags=metadata.tags,
                aliases=metadata.aliases,
                links=metadata.links,
            )
        )
        if self.task_queue is not None:
            await self.task_queue.submit(
                ProcessingTask(
                    id=path,
                    kind=TaskKind.CREATE if existing is None else TaskKind.UPDATE,
                    metadata={"content_hash": digest, "last_modified": modified},
                )
            )


__all__ = ["OfflineReplayer"]
