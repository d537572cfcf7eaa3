"""Progress reporting for bulk reconciliation."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol

from vault_sync.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class ProgressUpdate:
    step: str = "idle"
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    total_batches: int = 0
    completed_batches: int = 0
    current_batch: int = 0
    last_processed_index: int = 0
    elapsed_seconds: float = 0.0

    @property
    def percentage(self) -> float:
        if self.total_files == 0:
            return 100.0 if self.step == "completed" else 0.0
        return round(100.0 * self.processed_files / self.total_files, 1)

    @property
    def eta_seconds(self) -> float | None:
        """Remaining files divided by the observed processing rate."""
        if self.processed_files == 0 or self.elapsed_seconds <= 0:
            return None
        rate = self.processed_files / self.elapsed_seconds
        return max(0.0, (self.total_files - self.processed_files) / rate)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["percentage"] = self.percentage
        payload["eta_seconds"] = self.eta_seconds
        return payload


class ProgressSink(Protocol):
    def publish(self, update: ProgressUpdate) -> None: ...


class LoggingProgressSink:
    def __init__(self, every: int = 10) -> None:
        self.every = every

    def publish(self, update: ProgressUpdate) -> None:
        if update.processed_files % self.every and update.step == "processing":
            return
        logger.info(
            "Initial sync %s: %d/%d files (%.1f%%)",
            update.step,
            update.processed_files,
            update.total_files,
            update.percentage,
            extra={"ctx_eta": update.eta_seconds, "ctx_batch": update.current_batch},
        )


class RecordingProgressSink:
    """Keeps the latest update (and a short history) for the HTTP surface."""

    def __init__(self, history: int = 50, forward: ProgressSink | None = None) -> None:
        self.latest = ProgressUpdate()
        self.history: deque[ProgressUpdate] = deque(maxlen=history)
        self.forward = forward

    def publish(self, update: ProgressUpdate) -> None:
        snapshot = replace(update)
        self.latest = snapshot
        self.history.append(snapshot)
        if self.forward is not None:
            self.forward.publish(update)


__all__ = ["ProgressUpdate", "ProgressSink", "LoggingProgressSink", "RecordingProgressSink"]
