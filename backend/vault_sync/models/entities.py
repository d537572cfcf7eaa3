"""Internal dataclasses representing persisted and transient entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FileStatus(str, Enum):
    PENDING = "pending"
    VECTORIZED = "vectorized"
    DELETED = "deleted"
    ERROR = "error"


@dataclass(slots=True)
class StatusRecord:
    """One row per tracked file path; owns the file's chunk set."""

    workspace_id: str
    file_path: str
    last_modified: int
    content_hash: str
    status: FileStatus = FileStatus.PENDING
    last_vectorized: int | None = None
    tags: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    id: int | None = None
    created_at: int | None = None
    updated_at: int | None = None


@dataclass(slots=True)
class Chunk:
    status_id: int
    chunk_index: int
    content: str
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    vectorized_at: int | None = None


@dataclass(slots=True)
class ChunkDraft:
    """Chunk content prepared before the owning status id is known."""

    chunk_index: int
    content: str
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def bind(self, status_id: int, vectorized_at: int | None = None) -> Chunk:
        return Chunk(
            status_id=status_id,
            chunk_index=self.chunk_index,
            content=self.content,
            embedding=self.embedding,
            metadata=dict(self.metadata),
            vectorized_at=vectorized_at,
        )


__all__ = ["FileStatus", "StatusRecord", "Chunk", "ChunkDraft"]
