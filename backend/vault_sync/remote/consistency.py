"""Chunk lifecycle protocol on top of a ``RemoteStore``.

A record's chunk set is only ever replaced whole: upsert the status row,
delete every chunk it owns, verify none remain, insert the new set in
batches, verify the count. A per-path advisory flag keeps two operations in
this process from interleaving on the same path; it does nothing across
devices.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable

from vault_sync.core.errors import (
    LockTimeoutError,
    RemoteConnectivityError,
    RemoteStoreError,
    RemoteWriteError,
    VerificationError,
)
from vault_sync.core.lifecycle import ComponentState, Lifecycle
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import CHUNK_REPLACES, VERIFICATION_MISMATCHES
from vault_sync.models.entities import ChunkDraft, FileStatus, StatusRecord
from vault_sync.remote.base import RemoteStore
from vault_sync.utils.retry import RetryExhausted, RetryPolicy, retry_async
from vault_sync.utils.time import now_ms

logger = get_logger(__name__)

LOCK_POLICY = RetryPolicy(max_attempts=5, base_delay=0.5, backoff="exponential")
DELETE_VERIFY_POLICY = RetryPolicy(max_attempts=3, base_delay=0.2, backoff="linear")


class _FlagHeld(Exception):
    pass


class ConsistencyStore(Lifecycle):
    def __init__(
        self,
        remote: RemoteStore,
        insert_batch_size: int = 100,
        lock_policy: RetryPolicy = LOCK_POLICY,
        verify_policy: RetryPolicy = DELETE_VERIFY_POLICY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.remote = remote
        self.insert_batch_size = insert_batch_size
        self.lock_policy = lock_policy
        self.verify_policy = verify_policy
        self._clock = clock
        self._held: set[str] = set()

    @property
    def workspace_id(self) -> str:
        return self.remote.workspace_id

    async def initialize(self) -> None:
        self._set_state(ComponentState.INITIALIZING)
        try:
            await self.remote.initialize()
        except Exception:
            self._set_state(ComponentState.ERROR)
            raise
        self._set_state(ComponentState.READY)

    # Advisory flag ------------------------------------------------------

    def is_locked(self, path: str) -> bool:
        return path in self._held

    async def acquire(self, path: str) -> None:
        async def attempt() -> None:
            if path in self._held:
                raise _FlagHeld(path)
            self._held.add(path)

        try:
            await retry_async(attempt, self.lock_policy, retry_on=(_FlagHeld,), description=f"lock {path}")
        except RetryExhausted as exc:
            raise LockTimeoutError(
                f"Timed out waiting for {path} after {exc.attempts} attempts", path=path
            ) from exc

    def release(self, path: str) -> None:
        self._held.discard(path)

    @asynccontextmanager
    async def locked(self, *paths: str) -> AsyncIterator[None]:
        acquired: list[str] = []
        try:
            for path in sorted(set(paths)):
                await self.acquire(path)
                acquired.append(path)
            yield
        finally:
            for path in acquired:
                self.release(path)

    # Status records -----------------------------------------------------

    async def get_status(self, path: str) -> StatusRecord | None:
        return await self.remote.get_status(path)

    async def upsert_status(self, record: StatusRecord) -> StatusRecord:
        self.require_ready()
        record.workspace_id = self.workspace_id
        return await self.remote.upsert_status(record)

    async def needs_vectorizing(self, path: str, local_mtime: int, local_hash: str) -> bool:
        record = await self.remote.get_status(path)
        if record is None:
            return True
        if record.status is not FileStatus.VECTORIZED:
            return True
        if record.content_hash != local_hash:
            return True
        return local_mtime > record.last_modified

    async def mark_pending(self, path: str) -> None:
        await self.remote.update_status_fields(path, status=FileStatus.PENDING)

    async def mark_vectorized(self, path: str, at: int | None = None) -> None:
        await self.remote.update_status_fields(
            path,
            status=FileStatus.VECTORIZED,
            last_vectorized=at if at is not None else self._clock(),
        )

    async def mark_error(self, path: str) -> None:
        await self.remote.update_status_fields(path, status=FileStatus.ERROR)

    # Chunk lifecycle ----------------------------------------------------

    async def replace_chunks(self, record: StatusRecord, drafts: Iterable[ChunkDraft]) -> StatusRecord:
        """Replace the complete chunk set owned by ``record.file_path``."""
        self.require_ready()
        path = record.file_path
        drafts = list(drafts)
        async with self.locked(path):
            try:
                stored = await self.upsert_status(record)
                status_id = _status_id(stored)
                await self._delete_verified(status_id, path)
                vectorized_at = self._clock()
                chunks = [draft.bind(status_id, vectorized_at) for draft in drafts]
                await self._insert_batches(status_id, path, chunks)
                await self._verify_count(status_id, path, len(chunks))
            except RemoteStoreError:
                CHUNK_REPLACES.labels(outcome="failed").inc()
                raise
        CHUNK_REPLACES.labels(outcome="ok").inc()
        logger.debug("Replaced %d chunks for %s", len(drafts), path, extra={"ctx_path": path})
        return stored

    async def mark_deleted(self, path: str) -> bool:
        """Soft delete: drop the chunks, keep the record flagged ``deleted``."""
        async with self.locked(path):
            record = await self.remote.get_status(path)
            if record is None:
                return False
            await self._delete_verified(_status_id(record), path)
            await self.remote.update_status_fields(path, status=FileStatus.DELETED)
        logger.info("Marked %s deleted", path, extra={"ctx_path": path})
        return True

    async def remove_file(self, path: str) -> bool:
        """Hard removal of a record and its chunks."""
        async with self.locked(path):
            record = await self.remote.get_status(path)
            if record is None:
                return False
            await self._delete_verified(_status_id(record), path)
            await self.remote.delete_status(path)
        logger.info("Removed %s from remote store", path, extra={"ctx_path": path})
        return True

    async def rename_path(self, old_path: str, new_path: str) -> None:
        """Path-only update; chunks stay attached to the same record id."""
        async with self.locked(old_path, new_path):
            existing = await self.remote.get_status(new_path)
            if existing is not None:
                if existing.status is not FileStatus.DELETED:
                    raise RemoteWriteError(f"{new_path} is already tracked", path=new_path)
                await self.remote.delete_status(new_path)
            await self.remote.rename_status(old_path, new_path)
        logger.info("Renamed %s -> %s", old_path, new_path, extra={"ctx_path": new_path})

    async def _delete_verified(self, status_id: int, path: str) -> None:
        async def delete_and_check() -> None:
            await self.remote.delete_chunks(status_id)
            remaining = await self.remote.count_chunks(status_id)
            if remaining:
                VERIFICATION_MISMATCHES.labels(phase="delete").inc()
                raise VerificationError(f"{remaining} chunks survived delete", path=path)

        try:
            await retry_async(
                delete_and_check,
                self.verify_policy,
                retry_on=(VerificationError,),
                description=f"delete chunks for {path}",
            )
        except RetryExhausted as exc:
            raise VerificationError(str(exc.last_error), path=path) from exc

    async def _insert_batches(self, status_id: int, path: str, chunks: list) -> None:
        try:
            for start in range(0, len(chunks), self.insert_batch_size):
                await self.remote.insert_chunks(chunks[start : start + self.insert_batch_size])
        except RemoteStoreError as exc:
            logger.warning("Chunk insert failed for %s, clearing partial set", path, extra={"ctx_path": path})
            try:
                await self.remote.delete_chunks(status_id)
            except RemoteStoreError:
                logger.exception("Cleanup after failed insert also failed for %s", path)
            if isinstance(exc, RemoteConnectivityError):
                raise
            raise RemoteWriteError(f"Chunk insert failed: {exc}", path=path) from exc

    async def _verify_count(self, status_id: int, path: str, expected: int) -> None:
        actual = await self.remote.count_chunks(status_id)
        if actual != expected:
            VERIFICATION_MISMATCHES.labels(phase="insert").inc()
            logger.warning(
                "Chunk count mismatch for %s: expected %d, found %d",
                path,
                expected,
                actual,
                extra={"ctx_path": path},
            )


def _status_id(record: StatusRecord) -> int:
    if record.id is None:
        raise RemoteWriteError("Status record has no id", path=record.file_path)
    return record.id


__all__ = ["ConsistencyStore", "LOCK_POLICY", "DELETE_VERIFY_POLICY"]
