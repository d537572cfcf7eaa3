"""Application configuration handling."""

from __future__ import annotations

import os
import platform
import socket
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "VSYNC_"
DEFAULT_CONFIG_PATH = Path("~/.config/vault-sync/config.yaml")
DEFAULT_COORDINATION_FILE = "_vaultsync.md"
PLUGIN_VERSION = "0.1.0"

_LIST_FIELDS = (
    "excluded_folders",
    "excluded_file_types",
    "excluded_file_prefixes",
    "excluded_files",
)

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("workspace", "path"): "workspace_path",
    ("workspace", "id"): "workspace_id",
    ("device", "id"): "device_id",
    ("device", "name"): "device_name",
    ("sync", "coordination_file"): "coordination_path",
    ("sync", "backup_interval"): "backup_interval",
    ("sync", "check_interval"): "check_interval",
    ("sync", "require_sync"): "require_sync",
    ("sync", "quiet_period"): "quiet_period",
    ("remote", "backend"): "remote_backend",
    ("remote", "db_path"): "db_path",
    ("remote", "supabase_url"): "supabase_url",
    ("remote", "supabase_key"): "supabase_key",
    ("remote", "insert_batch_size"): "insert_batch_size",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "api_key"): "openai_api_key",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "chunk_overlap"): "chunk_overlap",
    ("chunking", "min_chunk_size"): "min_chunk_size",
    ("queue", "max_concurrent"): "queue_max_concurrent",
    ("queue", "retry_attempts"): "queue_retry_attempts",
    ("queue", "retry_delay"): "queue_retry_delay",
    ("tracker", "debounce"): "debounce_seconds",
    ("tracker", "watch"): "watch",
    ("initial_sync", "enabled"): "enable_auto_initial_sync",
    ("initial_sync", "batch_size"): "batch_size",
    ("initial_sync", "max_concurrent_batches"): "max_concurrent_batches",
    ("initial_sync", "priority_rules"): "priority_rules",
    ("initial_sync", "scan_glob"): "scan_glob",
    ("exclusions", "folders"): "excluded_folders",
    ("exclusions", "file_types"): "excluded_file_types",
    ("exclusions", "file_prefixes"): "excluded_file_prefixes",
    ("exclusions", "files"): "excluded_files",
}


class PriorityRule(BaseModel):
    pattern: str
    priority: int = 1


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    workspace_path: Path = Field(default=Path.cwd())
    workspace_id: str = "default"
    device_id: str = Field(default_factory=lambda: socket.gethostname() or "device")
    device_name: str = Field(default_factory=lambda: socket.gethostname() or "device")
    device_platform: str = Field(default_factory=platform.system)
    plugin_version: str = PLUGIN_VERSION

    coordination_path: str = DEFAULT_COORDINATION_FILE
    backup_interval: float = 3600.0
    check_interval: float = 60.0
    quiet_period: float = 5.0
    require_sync: bool = False

    remote_backend: Literal["sqlite", "supabase"] = "sqlite"
    db_path: Path = Field(default=Path.home() / ".vault-sync" / "remote.db")
    supabase_url: str = ""
    supabase_key: str = ""
    insert_batch_size: int = 100

    embedding_backend: Literal["hashed", "openai"] = "hashed"
    embedding_model: str = "text-embedding-ada-002"
    openai_api_key: str = ""

    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100

    queue_max_concurrent: int = 3
    queue_retry_attempts: int = 3
    queue_retry_delay: float = 1.0

    debounce_seconds: float = 1.0
    watch: bool = True

    enable_auto_initial_sync: bool = True
    batch_size: int = 50
    max_concurrent_batches: int = 3
    priority_rules: list[PriorityRule] = Field(default_factory=list)
    scan_glob: str = "**/*.md"

    excluded_folders: list[str] = Field(default_factory=lambda: [".git", ".obsidian", "node_modules"])
    excluded_file_types: list[str] = Field(default_factory=lambda: [".mp3", ".jpg", ".png"])
    excluded_file_prefixes: list[str] = Field(default_factory=lambda: ["_", "."])
    excluded_files: list[str] = Field(default_factory=list)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("workspace_path", "db_path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @field_validator(*_LIST_FIELDS, mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        # Environment overrides arrive as comma separated strings
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.chunk_size < self.min_chunk_size:
            raise ValueError("chunk_size must be greater than min_chunk_size")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        if self.queue_max_concurrent < 1 or self.max_concurrent_batches < 1:
            raise ValueError("concurrency limits must be at least 1")
        if self.batch_size < 1 or self.insert_batch_size < 1:
            raise ValueError("batch sizes must be at least 1")
        if self.queue_retry_attempts < 0 or self.queue_retry_delay < 0:
            raise ValueError("retry settings cannot be negative")
        return self

    @property
    def backup_path(self) -> str:
        return f"{self.coordination_path}.backup"

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with VSYNC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["PriorityRule", "Settings", "get_settings", "DEFAULT_COORDINATION_FILE", "PLUGIN_VERSION"]
