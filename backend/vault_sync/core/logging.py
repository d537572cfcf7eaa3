"""Logging utilities for vault-sync."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Mapping

import orjson

_DEFAULT_LEVEL = os.environ.get("VSYNC_LOG_LEVEL", "INFO")

# Per-call context keys used across the sync components.
CONTEXT_FIELDS = ("ctx_path", "ctx_operation", "ctx_backend", "ctx_stats")


class WorkspaceContextFilter(logging.Filter):
    """Stamp every record with the workspace and device it was produced for."""

    def __init__(self, context: Mapping[str, Any]) -> None:
        super().__init__()
        self.context = {f"ctx_{key}": value for key, value in context.items()}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Extra attributes prefixed with ``ctx_`` (``logger.info(..., extra={"ctx_path": p})``)
    are copied into the payload; the well-known ones come first.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            if key in record.__dict__:
                payload[key] = record.__dict__[key]
        for key, value in record.__dict__.items():
            if key.startswith("ctx_") and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(
    level: str | int = _DEFAULT_LEVEL,
    use_json: bool = True,
    context: Mapping[str, Any] | None = None,
) -> None:
    """Route everything through one stdout handler.

    ``context`` (for example ``{"workspace": ..., "device": ...}``) is
    attached to every record as ``ctx_<key>``.
    """
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    if context:
        handler.addFilter(WorkspaceContextFilter(context))
    root.handlers = [handler]
    # watchdog logs every inotify event at DEBUG.
    logging.getLogger("watchdog").setLevel(max(root.level, logging.INFO))


def get_logger(name: str = "vault_sync") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["CONTEXT_FIELDS", "JsonFormatter", "WorkspaceContextFilter", "configure_logging", "get_logger"]
