"""Abstract interface over the remote status/chunk store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from vault_sync.models.entities import Chunk, StatusRecord

# Columns a caller may change through ``update_status_fields``.
UPDATABLE_STATUS_FIELDS = frozenset(
    {
        "last_modified",
        "last_vectorized",
        "content_hash",
        "status",
        "tags",
        "aliases",
        "links",
    }
)


class RemoteStore(ABC):
    """Status records and chunk rows for one workspace.

    Unreachable backends raise ``RemoteConnectivityError``; failed writes
    raise ``RemoteWriteError``. Implementations never retry on their own.
    """

    def __init__(self, workspace_id: str) -> None:
        self.workspace_id = workspace_id

    @abstractmethod
    async def initialize(self) -> None: ...

    async def close(self) -> None:
        return None

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def get_status(self, path: str) -> StatusRecord | None: ...

    @abstractmethod
    async def upsert_status(self, record: StatusRecord) -> StatusRecord:
        """Insert or update by ``(workspace_id, file_path)``; returns the row with its id."""

    @abstractmethod
    async def update_status_fields(self, path: str, **fields: Any) -> None: ...

    @abstractmethod
    async def rename_status(self, old_path: str, new_path: str) -> None: ...

    @abstractmethod
    async def delete_status(self, path: str) -> None:
        """Hard delete; chunk rows go with it."""

    @abstractmethod
    async def list_statuses(self, include_deleted: bool = False) -> list[StatusRecord]: ...

    @abstractmethod
    async def count_statuses(self) -> int: ...

    @abstractmethod
    async def delete_chunks(self, status_id: int) -> None: ...

    @abstractmethod
    async def count_chunks(self, status_id: int) -> int: ...

    @abstractmethod
    async def list_chunks(self, status_id: int) -> list[Chunk]: ...

    @abstractmethod
    async def insert_chunks(self, chunks: list[Chunk]) -> None: ...


def check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_STATUS_FIELDS
    if unknown:
        raise ValueError(f"Cannot update status fields: {sorted(unknown)}")


__all__ = ["RemoteStore", "UPDATABLE_STATUS_FIELDS", "check_fields"]
