"""Transient in-memory structures: file events, batches, processing tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FileEventKind(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True, slots=True)
class FileEvent:
    """A single local change. ``old_path`` is set exactly for renames."""

    kind: FileEventKind
    path: str
    timestamp: float
    old_path: str | None = None
    content_hash: str | None = None

    def __post_init__(self) -> None:
        if self.kind is FileEventKind.RENAME and not self.old_path:
            raise ValueError("rename events require old_path")
        if self.kind is not FileEventKind.RENAME and self.old_path is not None:
            raise ValueError(f"{self.kind.value} events do not carry old_path")


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class SyncBatch:
    id: str
    index: int
    files: list[str]
    status: BatchStatus = BatchStatus.PENDING
    progress: float = 0.0
    started_at: float | None = None
    finished_at: float | None = None


class TaskKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(slots=True)
class ProcessingTask:
    """Payload handed to the embedding task interface; ``id`` is the file path."""

    id: str
    kind: TaskKind
    priority: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "FileEventKind",
    "FileEvent",
    "BatchStatus",
    "SyncBatch",
    "TaskKind",
    "ProcessingTask",
]
