"""Task interface between change detection and embedding.

Producers hand a ``ProcessingTask`` to ``TaskQueue.submit``; the call
returns once the task completed and raises if it failed. The default
``EmbeddingTaskQueue`` runs in-process: read, chunk, embed, replace.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

import openai

from vault_sync.core.config import Settings
from vault_sync.core.errors import (
    LocalIOError,
    LockTimeoutError,
    RemoteStoreError,
    RemoteWriteError,
    VerificationError,
)
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import TASKS_IN_FLIGHT
from vault_sync.ingest.chunker import build_chunk_drafts, chunk_text
from vault_sync.ingest.embeddings import Embedder
from vault_sync.ingest.metadata import extract_front_matter, extract_metadata
from vault_sync.models.entities import FileStatus, StatusRecord
from vault_sync.models.events import ProcessingTask, TaskKind
from vault_sync.remote.consistency import ConsistencyStore
from vault_sync.utils.hashing import sha256_bytes
from vault_sync.utils.retry import RetryExhausted, RetryPolicy, retry_async
from vault_sync.utils.time import mtime_ms, now_ms

logger = get_logger(__name__)

RETRYABLE_ERRORS = (RemoteWriteError, VerificationError, LockTimeoutError, openai.APIError)


class TaskQueue(Protocol):
    async def submit(self, task: ProcessingTask) -> None: ...


class EmbeddingTaskQueue:
    def __init__(
        self,
        workspace_path: Path,
        consistency: ConsistencyStore,
        embedder: Embedder,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        min_chunk_size: int = 100,
        max_concurrent: int = 3,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.workspace_path = workspace_path
        self.consistency = consistency
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_size = min_chunk_size
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0, backoff="linear")
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.in_flight = 0

    @classmethod
    def from_settings(cls, settings: Settings, consistency: ConsistencyStore, embedder: Embedder) -> "EmbeddingTaskQueue":
        return cls(
            workspace_path=settings.workspace_path,
            consistency=consistency,
            embedder=embedder,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
            max_concurrent=settings.queue_max_concurrent,
            retry_policy=RetryPolicy(
                max_attempts=settings.queue_retry_attempts + 1,
                base_delay=settings.queue_retry_delay,
                backoff="linear",
            ),
        )

    async def submit(self, task: ProcessingTask) -> None:
        async with self._semaphore:
            self.in_flight += 1
            TASKS_IN_FLIGHT.inc()
            try:
                await self._run(task)
            finally:
                self.in_flight -= 1
                TASKS_IN_FLIGHT.dec()

    async def _run(self, task: ProcessingTask) -> None:
        if task.kind is TaskKind.DELETE:
            await self.consistency.mark_deleted(task.id)
            return
        if task.kind is TaskKind.RENAME:
            await self.consistency.rename_path(task.metadata["old_path"], task.id)
            return

        try:
            await retry_async(
                lambda: self._vectorize(task),
                self.retry_policy,
                retry_on=RETRYABLE_ERRORS,
                description=f"vectorize {task.id}",
            )
        except RetryExhausted as exc:
            logger.error("Vectorizing %s failed: %s", task.id, exc.last_error, extra={"ctx_path": task.id})
            try:
                await self.consistency.mark_error(task.id)
            except RemoteStoreError:
                logger.exception("Could not flag %s as failed", task.id)
            raise exc.last_error from exc

    async def _vectorize(self, task: ProcessingTask) -> None:
        file_path = self.workspace_path / task.id
        try:
            raw = file_path.read_bytes()
            stat = file_path.stat()
        except OSError as exc:
            raise LocalIOError(f"Cannot read {task.id}: {exc}", path=task.id) from exc

        text = raw.decode("utf-8", errors="replace")
        metadata = extract_metadata(task.id, text)
        _, body = extract_front_matter(text)
        slices = chunk_text(
            body,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            min_chunk_size=self.min_chunk_size,
        )
        batch = await self.embedder.embed([piece["text"] for piece in slices])
        drafts = build_chunk_drafts(slices, batch.vectors, metadata.as_chunk_metadata())

        record = StatusRecord(
            workspace_id=self.consistency.workspace_id,
            file_path=task.id,
            last_modified=mtime_ms(stat.st_mtime),
            content_hash=sha256_bytes(raw),
            status=FileStatus.VECTORIZED,
            last_vectorized=now_ms(),
            tags=metadata.tags,
            aliases=metadata.aliases,
            links=metadata.links,
        )
        await self.consistency.replace_chunks(record, drafts)
        logger.info(
            "Vectorized %s into %d chunks",
            task.id,
            len(drafts),
            extra={"ctx_path": task.id, "ctx_backend": batch.backend},
        )


__all__ = ["TaskQueue", "EmbeddingTaskQueue", "RETRYABLE_ERRORS"]
