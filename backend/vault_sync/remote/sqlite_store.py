"""Remote store backed by a SQLite database file."""

from __future__ import annotations

import sqlite3
from array import array
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import orjson

from vault_sync.core.errors import RemoteConnectivityError, RemoteWriteError
from vault_sync.core.logging import get_logger
from vault_sync.db.sqlite import SQLiteDatabase
from vault_sync.models.entities import Chunk, FileStatus, StatusRecord
from vault_sync.remote.base import RemoteStore, check_fields
from vault_sync.utils.time import now_ms

logger = get_logger(__name__)

_JSON_LIST_FIELDS = ("tags", "aliases", "links")


class SQLiteRemoteStore(RemoteStore):
    def __init__(self, db_path: Path | str, workspace_id: str) -> None:
        super().__init__(workspace_id)
        self.db = SQLiteDatabase(db_path)

    async def initialize(self) -> None:
        with _translate_errors():
            self.db.ensure_schema()
        logger.info("SQLite remote store ready at %s", self.db.db_path or ":memory:")

    async def close(self) -> None:
        self.db.close()

    async def ping(self) -> bool:
        with _translate_errors():
            return self.db.scalar("SELECT 1") == 1

    async def get_status(self, path: str) -> StatusRecord | None:
        with _translate_errors(path):
            row = self.db.query_one(
                "SELECT * FROM file_status WHERE workspace_id = ? AND file_path = ?",
                (self.workspace_id, path),
            )
        return _row_to_status(row) if row else None

    async def upsert_status(self, record: StatusRecord) -> StatusRecord:
        now = now_ms()
        with _translate_errors(record.file_path, write=True), self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO file_status (
                    workspace_id, file_path, last_modified, last_vectorized, content_hash,
                    status, tags, aliases, links, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (workspace_id, file_path) DO UPDATE SET
                    last_modified = excluded.last_modified,
                    last_vectorized = excluded.last_vectorized,
                    content_hash = excluded.content_hash,
                    status = excluded.status,
                    tags = excluded.tags,
                    aliases = excluded.aliases,
                    links = excluded.links,
                    updated_at = excluded.updated_at
                """,
                (
                    self.workspace_id,
                    record.file_path,
                    record.last_modified,
                    record.last_vectorized,
                    record.content_hash,
                    FileStatus(record.status).value,
                    _dumps(record.tags),
                    _dumps(record.aliases),
                    _dumps(record.links),
                    now,
                    now,
                ),
            )
        stored = await self.get_status(record.file_path)
        if stored is None:
            raise RemoteWriteError("Upsert left no row", path=record.file_path)
        return stored

    async def update_status_fields(self, path: str, **fields: Any) -> None:
        check_fields(fields)
        if not fields:
            return
        assignments = []
        params: list[Any] = []
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if name in _JSON_LIST_FIELDS:
                value = _dumps(value)
            elif name == "status":
                value = FileStatus(value).value
            params.append(value)
        assignments.append("updated_at = ?")
        params.extend([now_ms(), self.workspace_id, path])
        with _translate_errors(path, write=True), self.db.transaction() as cur:
            cur.execute(
                f"UPDATE file_status SET {', '.join(assignments)} WHERE workspace_id = ? AND file_path = ?",
                params,
            )

    async def rename_status(self, old_path: str, new_path: str) -> None:
        with _translate_errors(old_path, write=True), self.db.transaction() as cur:
            cur.execute(
                "UPDATE file_status SET file_path = ?, updated_at = ? WHERE workspace_id = ? AND file_path = ?",
                (new_path, now_ms(), self.workspace_id, old_path),
            )

    async def delete_status(self, path: str) -> None:
        with _translate_errors(path, write=True), self.db.transaction() as cur:
            cur.execute(
                "DELETE FROM file_status WHERE workspace_id = ? AND file_path = ?",
                (self.workspace_id, path),
            )

    async def list_statuses(self, include_deleted: bool = False) -> list[StatusRecord]:
        sql = "SELECT * FROM file_status WHERE workspace_id = ?"
        if not include_deleted:
            sql += " AND status != 'deleted'"
        with _translate_errors():
            rows = self.db.query(sql + " ORDER BY file_path", (self.workspace_id,))
        return [_row_to_status(row) for row in rows]

    async def count_statuses(self) -> int:
        with _translate_errors():
            return int(
                self.db.scalar(
                    "SELECT COUNT(*) FROM file_status WHERE workspace_id = ? AND status != 'deleted'",
                    (self.workspace_id,),
                )
            )

    async def delete_chunks(self, status_id: int) -> None:
        with _translate_errors(write=True), self.db.transaction() as cur:
            cur.execute("DELETE FROM chunks WHERE status_id = ?", (status_id,))

    async def count_chunks(self, status_id: int) -> int:
        with _translate_errors():
            return int(self.db.scalar("SELECT COUNT(*) FROM chunks WHERE status_id = ?", (status_id,)))

    async def list_chunks(self, status_id: int) -> list[Chunk]:
        with _translate_errors():
            rows = self.db.query(
                "SELECT * FROM chunks WHERE status_id = ? ORDER BY chunk_index",
                (status_id,),
            )
        return [
            Chunk(
                status_id=row["status_id"],
                chunk_index=row["chunk_index"],
                content=row["content"],
                embedding=_unpack_vector(row["embedding"]),
                metadata=orjson.loads(row["metadata"]),
                vectorized_at=row["vectorized_at"],
            )
            for row in rows
        ]

    async def insert_chunks(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        params = [
            (
                chunk.status_id,
                chunk.chunk_index,
                chunk.content,
                _pack_vector(chunk.embedding),
                _dumps(chunk.metadata),
                chunk.vectorized_at,
            )
            for chunk in chunks
        ]
        with _translate_errors(write=True), self.db.transaction() as cur:
            cur.executemany(
                """
                INSERT INTO chunks (status_id, chunk_index, content, embedding, metadata, vectorized_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                params,
            )


@contextmanager
def _translate_errors(path: str | None = None, write: bool = False) -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        raise RemoteConnectivityError(f"SQLite store unavailable: {exc}", path=path) from exc
    except sqlite3.DatabaseError as exc:
        if write:
            raise RemoteWriteError(f"SQLite write failed: {exc}", path=path) from exc
        raise RemoteConnectivityError(f"SQLite read failed: {exc}", path=path) from exc


def _row_to_status(row: sqlite3.Row) -> StatusRecord:
    return StatusRecord(
        id=row["id"],
        workspace_id=row["workspace_id"],
        file_path=row["file_path"],
        last_modified=row["last_modified"],
        last_vectorized=row["last_vectorized"],
        content_hash=row["content_hash"],
        status=FileStatus(row["status"]),
        tags=orjson.loads(row["tags"]),
        aliases=orjson.loads(row["aliases"]),
        links=orjson.loads(row["links"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def _pack_vector(vector: list[float] | None) -> bytes | None:
    if vector is None:
        return None
    return array("f", vector).tobytes()


def _unpack_vector(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    arr = array("f")
    arr.frombytes(blob)
    return arr.tolist()


__all__ = ["SQLiteRemoteStore"]
