"""Remote store backed by Supabase (Postgres + pgvector).

Tables are created by ``sql/setup.sql``. The supabase-py client is
synchronous; every request runs on a worker thread through ``_execute``.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Callable, Iterator

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from vault_sync.core.errors import RemoteConnectivityError, RemoteWriteError
from vault_sync.core.logging import get_logger
from vault_sync.models.entities import Chunk, FileStatus, StatusRecord
from vault_sync.remote.base import RemoteStore, check_fields
from vault_sync.utils.time import now_ms

logger = get_logger(__name__)

STATUS_TABLE = "file_status"
CHUNK_TABLE = "documents"

QueryBuilder = Callable[[Client], Any]


class SupabaseRemoteStore(RemoteStore):
    def __init__(self, url: str, key: str, workspace_id: str, client: Client | None = None) -> None:
        super().__init__(workspace_id)
        self._url = url
        self._key = key
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            if not self._url or not self._key:
                raise RemoteConnectivityError("Supabase URL and key must be configured")
            self._client = create_client(self._url, self._key)
        return self._client

    async def _execute(self, build: QueryBuilder, path: str | None = None, write: bool = False) -> Any:
        client = self.client
        with _translate_errors(path, write=write):
            return await asyncio.to_thread(lambda: build(client).execute())

    async def initialize(self) -> None:
        # Tables are provisioned out of band; probing both catches a missing setup early.
        await self._execute(lambda c: c.table(STATUS_TABLE).select("id").limit(1))
        await self._execute(lambda c: c.table(CHUNK_TABLE).select("id").limit(1))
        logger.info("Supabase remote store ready")

    async def ping(self) -> bool:
        await self._execute(
            lambda c: c.table(STATUS_TABLE).select("id").eq("workspace_id", self.workspace_id).limit(1)
        )
        return True

    async def get_status(self, path: str) -> StatusRecord | None:
        response = await self._execute(
            lambda c: c.table(STATUS_TABLE)
            .select("*")
            .eq("workspace_id", self.workspace_id)
            .eq("file_path", path)
            .limit(1),
            path,
        )
        return _to_status(response.data[0]) if response.data else None

    async def upsert_status(self, record: StatusRecord) -> StatusRecord:
        payload = {
            "workspace_id": self.workspace_id,
            "file_path": record.file_path,
            "last_modified": record.last_modified,
            "last_vectorized": record.last_vectorized,
            "content_hash": record.content_hash,
            "status": FileStatus(record.status).value,
            "tags": record.tags,
            "aliases": record.aliases,
            "links": record.links,
            "updated_at": now_ms(),
        }
        response = await self._execute(
            lambda c: c.table(STATUS_TABLE).upsert(payload, on_conflict="workspace_id,file_path"),
            record.file_path,
            write=True,
        )
        if response.data:
            return _to_status(response.data[0])
        stored = await self.get_status(record.file_path)
        if stored is None:
            raise RemoteWriteError("Upsert returned no row", path=record.file_path)
        return stored

    async def update_status_fields(self, path: str, **fields: Any) -> None:
        check_fields(fields)
        if not fields:
            return
        if "status" in fields:
            fields["status"] = FileStatus(fields["status"]).value
        fields["updated_at"] = now_ms()
        await self._execute(
            lambda c: c.table(STATUS_TABLE)
            .update(fields)
            .eq("workspace_id", self.workspace_id)
            .eq("file_path", path),
            path,
            write=True,
        )

    async def rename_status(self, old_path: str, new_path: str) -> None:
        await self._execute(
            lambda c: c.table(STATUS_TABLE)
            .update({"file_path": new_path, "updated_at": now_ms()})
            .eq("workspace_id", self.workspace_id)
            .eq("file_path", old_path),
            old_path,
            write=True,
        )

    async def delete_status(self, path: str) -> None:
        record = await self.get_status(path)
        if record is None or record.id is None:
            return
        status_id = record.id
        await self.delete_chunks(status_id)
        await self._execute(lambda c: c.table(STATUS_TABLE).delete().eq("id", status_id), path, write=True)

    async def list_statuses(self, include_deleted: bool = False) -> list[StatusRecord]:
        def build(c: Client) -> Any:
            query = c.table(STATUS_TABLE).select("*").eq("workspace_id", self.workspace_id)
            if not include_deleted:
                query = query.neq("status", FileStatus.DELETED.value)
            return query.order("file_path")

        response = await self._execute(build)
        return [_to_status(row) for row in response.data]

    async def count_statuses(self) -> int:
        response = await self._execute(
            lambda c: c.table(STATUS_TABLE)
            .select("id", count="exact")
            .eq("workspace_id", self.workspace_id)
            .neq("status", FileStatus.DELETED.value)
            .limit(1)
        )
        return int(response.count or 0)

    async def delete_chunks(self, status_id: int) -> None:
        await self._execute(
            lambda c: c.table(CHUNK_TABLE)
            .delete()
            .eq("workspace_id", self.workspace_id)
            .eq("status_id", status_id),
            write=True,
        )

    async def count_chunks(self, status_id: int) -> int:
        response = await self._execute(
            lambda c: c.table(CHUNK_TABLE)
            .select("id", count="exact")
            .eq("workspace_id", self.workspace_id)
            .eq("status_id", status_id)
            .limit(1)
        )
        return int(response.count or 0)

    async def list_chunks(self, status_id: int) -> list[Chunk]:
        response = await self._execute(
            lambda c: c.table(CHUNK_TABLE)
            .select("status_id, chunk_index, content, embedding, metadata, vectorized_at")
            .eq("workspace_id", self.workspace_id)
            .eq("status_id", status_id)
            .order("chunk_index")
        )
        return [
            Chunk(
                status_id=row["status_id"],
                chunk_index=row["chunk_index"],
                content=row["content"],
                embedding=_parse_vector(row.get("embedding")),
                metadata=row.get("metadata") or {},
                vectorized_at=row.get("vectorized_at"),
            )
            for row in response.data
        ]

    async def insert_chunks(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        rows = [
            {
                "workspace_id": self.workspace_id,
                "status_id": chunk.status_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "embedding": chunk.embedding,
                "metadata": chunk.metadata,
                "vectorized_at": chunk.vectorized_at,
            }
            for chunk in chunks
        ]
        await self._execute(lambda c: c.table(CHUNK_TABLE).insert(rows), write=True)


@contextmanager
def _translate_errors(path: str | None = None, write: bool = False) -> Iterator[None]:
    try:
        yield
    except httpx.HTTPError as exc:
        raise RemoteConnectivityError(f"Supabase unreachable: {exc}", path=path) from exc
    except APIError as exc:
        if write:
            raise RemoteWriteError(f"Supabase write failed: {exc.message}", path=path) from exc
        raise RemoteConnectivityError(f"Supabase query failed: {exc.message}", path=path) from exc


def _to_status(row: dict[str, Any]) -> StatusRecord:
    return StatusRecord(
        id=row["id"],
        workspace_id=row["workspace_id"],
        file_path=row["file_path"],
        last_modified=row["last_modified"],
        last_vectorized=row.get("last_vectorized"),
        content_hash=row.get("content_hash") or "",
        status=FileStatus(row.get("status") or FileStatus.PENDING.value),
        tags=row.get("tags") or [],
        aliases=row.get("aliases") or [],
        links=row.get("links") or [],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _parse_vector(value: Any) -> list[float] | None:
    # pgvector columns come back as "[0.1,0.2,...]" strings over PostgREST.
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip("[]")
        return [float(part) for part in stripped.split(",")] if stripped else []
    return [float(part) for part in value]


__all__ = ["SupabaseRemoteStore", "STATUS_TABLE", "CHUNK_TABLE"]
