"""Bulk reconciliation of the whole workspace against the remote store.

Files are prioritized, split into fixed-size batches and driven through the
task interface with bounded batch concurrency. The resume index only moves
past a batch once it and every batch before it completed, so an interrupted
run picks up at the first unfinished batch.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from vault_sync.coordination.store import CoordinationStore
from vault_sync.core.config import PriorityRule, Settings
from vault_sync.core.errors import LocalIOError, RemoteConnectivityError
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import FILES_RECONCILED
from vault_sync.ingest.metadata import extract_metadata
from vault_sync.ingest.tasks import TaskQueue
from vault_sync.models.coordination import OperationType
from vault_sync.models.entities import FileStatus, StatusRecord
from vault_sync.models.events import BatchStatus, ProcessingTask, SyncBatch, TaskKind
from vault_sync.remote.consistency import ConsistencyStore
from vault_sync.sync.progress import LoggingProgressSink, ProgressSink, ProgressUpdate
from vault_sync.tracker.exclusions import ExclusionRules
from vault_sync.utils.hashing import sha256_bytes
from vault_sync.utils.ids import new_id
from vault_sync.utils.time import mtime_ms

logger = get_logger(__name__)


def priority_for(path: str, rules: list[PriorityRule]) -> int:
    for rule in rules:
        if rule.pattern in path:
            return rule.priority
    return 1


def prioritize(paths: list[str], rules: list[PriorityRule]) -> list[str]:
    """Higher priority first; ties keep their incoming order."""
    return sorted(paths, key=lambda path: -priority_for(path, rules))


def partition(paths: list[str], batch_size: int, offset: int = 0) -> list[SyncBatch]:
    return [
        SyncBatch(id=new_id("batch"), index=start, files=paths[start : start + batch_size])
        for start in range(offset, len(paths), batch_size)
    ]


class BulkReconciler:
    def __init__(
        self,
        settings: Settings,
        consistency: ConsistencyStore,
        coordination: CoordinationStore,
        task_queue: TaskQueue,
        exclusions: ExclusionRules | None = None,
        sink: ProgressSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.consistency = consistency
        self.coordination = coordination
        self.task_queue = task_queue
        self.exclusions = exclusions or ExclusionRules.from_settings(settings)
        self.sink = sink or LoggingProgressSink()
        self._clock = clock

        self.last_processed_index = 0
        self.running = False
        self.progress = ProgressUpdate()
        self.batches: list[SyncBatch] = []
        self._stop_requested = False
        self._started_at = 0.0

    def stop(self) -> bool:
        """Ask a running reconciliation to stop before its next batch."""
        if not self.running:
            return False
        self._stop_requested = True
        logger.info("Stop requested for initial sync")
        return True

    def collect_files(self) -> list[str]:
        root = self.settings.workspace_path
        found = []
        for file_path in sorted(root.glob(self.settings.scan_glob)):
            if file_path.is_file():
                found.append(file_path.relative_to(root).as_posix())
        tracked = self.exclusions.filter(found)
        # The coordination document must never be indexed, whatever the rules say.
        return [path for path in tracked if not self.exclusions.is_coordination_file(path)]

    async def start(self, force: bool = False) -> str:
        if self.running:
            return "already_running"
        self.running = True
        self._stop_requested = False
        try:
            if not force and self.last_processed_index == 0 and await self._already_synced():
                logger.info("Remote store already has records for this workspace, skipping initial sync")
                self._publish(step="skipped")
                return "skipped"
            await self._run()
            return "started"
        finally:
            self.running = False

    async def _already_synced(self) -> bool:
        try:
            return await self.consistency.remote.count_statuses() > 0
        except RemoteConnectivityError:
            return False

    async def _run(self) -> None:
        files = prioritize(self.collect_files(), self.settings.priority_rules)
        if self.last_processed_index >= len(files):
            self.last_processed_index = 0
        self.batches = partition(files, self.settings.batch_size, self.last_processed_index)
        self._started_at = self._clock()
        self.progress = ProgressUpdate(
            step="processing",
            total_files=len(files),
            processed_files=self.last_processed_index,
            total_batches=len(self.batches),
            last_processed_index=self.last_processed_index,
        )
        self._publish()
        logger.info(
            "Initial sync of %d files in %d batches from index %d",
            len(files),
            len(self.batches),
            self.last_processed_index,
        )

        semaphore = asyncio.Semaphore(self.settings.max_concurrent_batches)
        await asyncio.gather(*(self._run_batch(batch, semaphore) for batch in self.batches))

        if all(batch.status is BatchStatus.COMPLETED for batch in self.batches):
            self.last_processed_index = 0
            try:
                await self.coordination.mark_synced()
            except Exception:  # noqa: BLE001
                logger.exception("Could not record sync completion in coordination document")
            self._publish(step="completed")
        else:
            self._publish(step="stopped" if self._stop_requested else "incomplete")

    async def _run_batch(self, batch: SyncBatch, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            if self._stop_requested:
                return
            batch.status = BatchStatus.PROCESSING
            batch.started_at = self._clock()
            self.progress.current_batch = self.batches.index(batch) + 1
            try:
                for position, path in enumerate(batch.files, start=1):
                    await self._process_file(path)
                    batch.progress = position / len(batch.files)
            except Exception:  # noqa: BLE001
                batch.status = BatchStatus.FAILED
                logger.exception("Batch starting at %d failed", batch.index)
                return
            finally:
                batch.finished_at = self._clock()
            batch.status = BatchStatus.COMPLETED
            self.progress.completed_batches += 1
            self._advance_resume_index()
            self._publish()

    def _advance_resume_index(self) -> None:
        for batch in self.batches:
            if batch.index < self.last_processed_index:
                continue
            if batch.status is not BatchStatus.COMPLETED:
                break
            self.last_processed_index = batch.index + len(batch.files)
        self.progress.last_processed_index = self.last_processed_index

    async def _process_file(self, path: str) -> None:
        try:
            outcome = await self._reconcile(path)
        except Exception as exc:  # noqa: BLE001
            outcome = "failed"
            self.progress.failed_files += 1
            logger.warning("Initial sync of %s failed: %s", path, exc, extra={"ctx_path": path})
        FILES_RECONCILED.labels(status=outcome).inc()
        self.progress.processed_files += 1
        self._publish()

    async def _reconcile(self, path: str) -> str:
        file_path = self.settings.workspace_path / path
        try:
            raw = file_path.read_bytes()
        except OSError as exc:
            raise LocalIOError(f"Cannot read {path}: {exc}", path=path) from exc
        metadata = extract_metadata(path, raw.decode("utf-8", errors="replace"), file_path)
        digest = sha256_bytes(raw)
        modified = metadata.last_modified or mtime_ms(file_path.stat().st_mtime)

        try:
            if not await self.consistency.needs_vectorizing(path, modified, digest):
                return "unchanged"
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
            await self.task_queue.submit(
                ProcessingTask(
                    id=path,
                    kind=TaskKind.CREATE,
                    priority=priority_for(path, self.settings.priority_rules),
                    metadata={"content_hash": digest, "last_modified": modified, "size": metadata.size},
                )
            )
            await self.consistency.mark_vectorized(path)
        except RemoteConnectivityError:
            await self.coordination.add_pending_operation(
                path,
                OperationType.CREATE,
                content_hash=digest,
                last_modified=modified,
            )
            return "deferred"
        return "ok"

    def _publish(self, step: str | None = None) -> None:
        if step is not None:
            self.progress.step = step
        if self._started_at:
            self.progress.elapsed_seconds = self._clock() - self._started_at
        self.sink.publish(self.progress)


__all__ = ["BulkReconciler", "priority_for", "prioritize", "partition"]
