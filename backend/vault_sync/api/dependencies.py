"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from vault_sync.core.config import Settings, get_settings
from vault_sync.sync.engine import SyncEngine

_ENGINE: SyncEngine | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_engine() -> SyncEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = SyncEngine(get_app_settings())
    return _ENGINE


def reset_engine() -> None:
    global _ENGINE
    _ENGINE = None


__all__ = ["get_app_settings", "get_engine", "reset_engine"]
