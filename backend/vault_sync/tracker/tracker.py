"""Local change tracker.

Filesystem events are debounced into batches. Within a batch every rename
is applied first, then the remaining events are grouped per path and only
the last one (by timestamp) is acted on. A per-path hash cache filters out
touches that did not change content.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from vault_sync.coordination.connectivity import QuietPeriod
from vault_sync.coordination.store import CoordinationStore
from vault_sync.core.config import Settings
from vault_sync.core.errors import RemoteConnectivityError
from vault_sync.core.lifecycle import ComponentState, Lifecycle
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import TRACKER_EVENTS
from vault_sync.ingest.metadata import extract_metadata
from vault_sync.ingest.tasks import TaskQueue
from vault_sync.models.coordination import ConflictCandidate, OperationType
from vault_sync.models.entities import FileStatus, StatusRecord
from vault_sync.models.events import FileEvent, FileEventKind, ProcessingTask, TaskKind
from vault_sync.remote.consistency import ConsistencyStore
from vault_sync.tracker.exclusions import ExclusionRules, normalize
from vault_sync.utils.hashing import sha256_bytes
from vault_sync.utils.time import mtime_ms

logger = get_logger(__name__)

RAPID_EDIT_WINDOW = 5.0
RAPID_EDIT_THRESHOLD = 3
RAPID_EDIT_FLOOR = 3.0


@dataclass(slots=True)
class CachedFile:
    hash: str
    last_modified: int
    # False while the remote record is still pending or failed.
    vectorized: bool = True


class ChangeTracker(Lifecycle):
    def __init__(
        self,
        settings: Settings,
        consistency: ConsistencyStore,
        coordination: CoordinationStore,
        task_queue: TaskQueue,
        exclusions: ExclusionRules | None = None,
        quiet_period: QuietPeriod | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.workspace_path = settings.workspace_path
        self.consistency = consistency
        self.coordination = coordination
        self.task_queue = task_queue
        self.exclusions = exclusions or ExclusionRules.from_settings(settings)
        self.quiet_period = quiet_period
        self.debounce = settings.debounce_seconds
        self._clock = clock

        self.cache: dict[str, CachedFile] = {}
        self._queue: list[FileEvent] = []
        self._buffer: list[FileEvent] = []
        self._accepting = False
        self._timer: asyncio.TimerHandle | None = None
        self._processing: asyncio.Task[None] | None = None
        self._retrigger = False
        self._modify_history: dict[str, deque[float]] = {}

    # Startup ------------------------------------------------------------

    async def initialize(self) -> None:
        """Seed the hash cache and buffer events for files changed while we were away."""
        self._set_state(ComponentState.INITIALIZING)
        try:
            await self._seed_cache()
            self._scan_workspace()
        except Exception:
            self._set_state(ComponentState.ERROR)
            raise
        self._set_state(ComponentState.READY)
        logger.info("Change tracker ready with %d cached files", len(self.cache))

    async def _seed_cache(self) -> None:
        try:
            records = await self.consistency.remote.list_statuses()
        except RemoteConnectivityError:
            logger.warning("Remote store unreachable, seeding cache from pending operations")
            for operation in await self.coordination.list_pending_operations():
                meta = operation.metadata
                if operation.operation_type is OperationType.DELETE or not meta.content_hash:
                    continue
                self.cache[operation.file_id] = CachedFile(meta.content_hash, meta.last_modified or 0)
            return
        for record in records:
            if not self.exclusions.is_excluded(record.file_path):
                self.cache[record.file_path] = CachedFile(
                    record.content_hash,
                    record.last_modified,
                    vectorized=record.status is FileStatus.VECTORIZED,
                )

    def _scan_workspace(self) -> None:
        seen: set[str] = set()
        for file_path in sorted(self.workspace_path.glob(self.settings.scan_glob)):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(self.workspace_path).as_posix()
            if self.exclusions.is_excluded(relative):
                continue
            seen.add(relative)
            cached = self.cache.get(relative)
            try:
                digest = sha256_bytes(file_path.read_bytes())
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %s", relative, exc)
                continue
            if cached is None:
                self._buffer.append(self._event(FileEventKind.CREATE, relative))
            elif cached.hash != digest or not cached.vectorized:
                self._buffer.append(self._event(FileEventKind.MODIFY, relative))
        for missing in sorted(set(self.cache) - seen):
            self._buffer.append(self._event(FileEventKind.DELETE, missing))

    def mark_ready(self) -> None:
        """Startup reconciliation finished: replay buffered events in arrival order."""
        self._accepting = True
        buffered, self._buffer = self._buffer, []
        if buffered:
            logger.info("Replaying %d buffered file events", len(buffered))
            self._queue.extend(buffered)
            self._schedule(max(self.debounce_delay(event) for event in buffered))

    # Event intake -------------------------------------------------------

    def handle_create(self, path: str) -> None:
        self._intake(self._event(FileEventKind.CREATE, path))

    def handle_modify(self, path: str) -> None:
        self._intake(self._event(FileEventKind.MODIFY, path))

    def handle_delete(self, path: str) -> None:
        self._intake(self._event(FileEventKind.DELETE, path))

    def handle_rename(self, old_path: str, new_path: str) -> None:
        self._intake(self._event(FileEventKind.RENAME, new_path, old_path=old_path))

    def _event(self, kind: FileEventKind, path: str, old_path: str | None = None) -> FileEvent:
        return FileEvent(
            kind=kind,
            path=normalize(path),
            timestamp=self._clock(),
            old_path=normalize(old_path) if old_path else None,
        )

    def _intake(self, event: FileEvent) -> None:
        TRACKER_EVENTS.labels(kind=event.kind.value).inc()
        if event.kind is not FileEventKind.RENAME and self.exclusions.is_excluded(event.path):
            return
        if self.quiet_period is not None:
            self.quiet_period.note_activity()
        if not self._accepting:
            self._buffer.append(event)
            return
        self._queue.append(event)
        self._schedule(self.debounce_delay(event))

    def debounce_delay(self, event: FileEvent) -> float:
        if event.kind in (FileEventKind.DELETE, FileEventKind.RENAME):
            return self.debounce / 2
        if event.kind is FileEventKind.MODIFY:
            history = self._modify_history.setdefault(event.path, deque())
            history.append(event.timestamp)
            while history and event.timestamp - history[0] > RAPID_EDIT_WINDOW:
                history.popleft()
            if len(history) > RAPID_EDIT_THRESHOLD:
                return max(self.debounce * 2, RAPID_EDIT_FLOOR)
        return self.debounce

    def _schedule(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._trigger)

    def _trigger(self) -> None:
        self._timer = None
        if self._processing is not None and not self._processing.done():
            self._retrigger = True
            return
        self._processing = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            events, self._queue = self._queue, []
            if events:
                await self.process_batch(events)
            if not self._retrigger:
                return
            self._retrigger = False

    async def flush(self) -> None:
        """Skip the debounce wait and process everything queued so far."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._processing is not None and not self._processing.done():
            await self._processing
        events, self._queue = self._queue, []
        if events:
            await self.process_batch(events)

    @property
    def queued(self) -> int:
        return len(self._queue) + len(self._buffer)

    # Batch processing ---------------------------------------------------

    async def process_batch(self, events: list[FileEvent]) -> None:
        renames = sorted((e for e in events if e.kind is FileEventKind.RENAME), key=lambda e: e.timestamp)
        for event in renames:
            await self._isolated(event.path, self._process_rename(event))

        by_path: dict[str, list[FileEvent]] = {}
        for event in events:
            if event.kind is not FileEventKind.RENAME:
                by_path.setdefault(event.path, []).append(event)
        for path, path_events in by_path.items():
            last = sorted(path_events, key=lambda e: e.timestamp)[-1]
            if last.kind is FileEventKind.DELETE:
                await self._isolated(path, self._process_delete(path))
            else:
                await self._isolated(path, self._process_upsert(path))

    async def _isolated(self, path: str, operation) -> None:
        # One path failing must not stop the rest of the batch.
        try:
            await operation
        except Exception:  # noqa: BLE001
            logger.exception("Processing %s failed", path, extra={"ctx_path": path})

    async def reprocess(self, path: str) -> None:
        await self._process_upsert(normalize(path), force=True)

    async def _process_upsert(self, path: str, force: bool = False) -> None:
        file_path = self.workspace_path / path
        try:
            raw = file_path.read_bytes()
            stat = file_path.stat()
        except FileNotFoundError:
            await self._process_delete(path)
            return
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc, extra={"ctx_path": path})
            return

        digest = sha256_bytes(raw)
        modified = mtime_ms(stat.st_mtime)
        cached = self.cache.get(path)
        if not force and cached is not None and cached.vectorized and cached.hash == digest:
            return

        text = raw.decode("utf-8", errors="replace")
        metadata = extract_metadata(path, text)
        try:
            if not force and not await self.consistency.needs_vectorizing(path, modified, digest):
                self.cache[path] = CachedFile(digest, modified)
                return
            existing = await self.consistency.get_status(path)
            if existing is not None and cached is not None:
                await self._detect_concurrent_write(path, existing, cached, digest, modified)
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
        except RemoteConnectivityError:
            await self._defer_upsert(path, cached, digest, modified)
            return

        kind = TaskKind.CREATE if existing is None or existing.status is FileStatus.DELETED else TaskKind.UPDATE
        try:
            await self.task_queue.submit(
                ProcessingTask(
                    id=path,
                    kind=kind,
                    metadata={"content_hash": digest, "last_modified": modified},
                )
            )
        except RemoteConnectivityError:
            await self._defer_upsert(path, cached, digest, modified)
            return
        # Failed tasks leave the cache alone so the next event retries the file.
        self.cache[path] = CachedFile(digest, modified)

    async def _defer_upsert(self, path: str, cached: CachedFile | None, digest: str, modified: int) -> None:
        await self.coordination.add_pending_operation(
            path,
            OperationType.UPDATE if cached else OperationType.CREATE,
            content_hash=digest,
            last_modified=modified,
        )
        # The pending operation carries the change from here on.
        self.cache[path] = CachedFile(digest, modified)

    async def _detect_concurrent_write(
        self,
        path: str,
        record: StatusRecord,
        cached: CachedFile,
        local_hash: str,
        local_modified: int,
    ) -> None:
        """Remote moved on since we last saw it while the local copy also changed."""
        if record.status is FileStatus.DELETED:
            return
        if record.content_hash in (cached.hash, local_hash):
            return
        document = await self.coordination.read()
        other = document.header.last_writer
        if other == self.settings.device_id:
            other = "remote"
        await self.coordination.add_conflict(
            path,
            [
                ConflictCandidate(
                    device_id=self.settings.device_id,
                    content_hash=local_hash,
                    last_modified=local_modified,
                ),
                ConflictCandidate(
                    device_id=other,
                    content_hash=record.content_hash,
                    last_modified=record.last_modified,
                ),
            ],
        )

    async def _process_delete(self, path: str) -> None:
        self.cache.pop(path, None)
        self._modify_history.pop(path, None)
        try:
            await self.consistency.mark_deleted(path)
        except RemoteConnectivityError:
            await self.coordination.add_pending_operation(path, OperationType.DELETE)

    async def _process_rename(self, event: FileEvent) -> None:
        old_path, new_path = event.old_path, event.path
        if old_path is None:
            raise ValueError(f"rename of {new_path} has no source path")
        source_excluded = self.exclusions.is_excluded(old_path)
        target_excluded = self.exclusions.is_excluded(new_path)
        if source_excluded and target_excluded:
            return
        if target_excluded:
            await self._process_delete(old_path)
            return
        if source_excluded:
            await self._process_upsert(new_path)
            return

        cached = self.cache.pop(old_path, None)
        self._modify_history.pop(old_path, None)
        try:
            await self._rename_tracked(old_path, new_path, cached)
        except RemoteConnectivityError:
            digest = cached.hash if cached else None
            await self.coordination.add_pending_operation(
                new_path,
                OperationType.RENAME,
                old_path=old_path,
                content_hash=digest,
                last_modified=cached.last_modified if cached else None,
            )
            if cached is not None:
                self.cache[new_path] = cached

    async def _rename_tracked(self, old_path: str, new_path: str, cached: CachedFile | None) -> None:
        target = await self.consistency.get_status(new_path)
        if (target is not None and target.status is not FileStatus.DELETED) or new_path in self.cache:
            logger.warning(
                "Rename %s -> %s collides with a tracked file, reprocessing",
                old_path,
                new_path,
                extra={"ctx_path": new_path},
            )
            await self.consistency.remove_file(old_path)
            await self.consistency.remove_file(new_path)
            self.cache.pop(new_path, None)
            await self._process_upsert(new_path, force=True)
            return

        file_path = self.workspace_path / new_path
        try:
            raw = file_path.read_bytes()
            stat = file_path.stat()
        except FileNotFoundError:
            await self._process_delete(old_path)
            return
        digest = sha256_bytes(raw)

        source = await self.consistency.get_status(old_path)
        if source is None or source.status is FileStatus.DELETED:
            await self._process_upsert(new_path)
            return

        known_hash = cached.hash if cached else source.content_hash
        if digest == known_hash:
            await self.consistency.rename_path(old_path, new_path)
            self.cache[new_path] = CachedFile(
                digest, mtime_ms(stat.st_mtime), vectorized=source.status is FileStatus.VECTORIZED
            )
            return

        await self.consistency.remove_file(old_path)
        await self._process_upsert(new_path, force=True)


__all__ = ["ChangeTracker", "CachedFile"]
