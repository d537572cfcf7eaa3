"""Test fixtures for vault-sync."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from vault_sync.coordination.store import CoordinationStore  # noqa: E402
from vault_sync.core.config import Settings  # noqa: E402
from vault_sync.core.errors import RemoteConnectivityError  # noqa: E402
from vault_sync.ingest.embeddings import EmbeddingModel  # noqa: E402
from vault_sync.ingest.tasks import EmbeddingTaskQueue  # noqa: E402
from vault_sync.models.entities import Chunk, StatusRecord  # noqa: E402
from vault_sync.models.events import ProcessingTask  # noqa: E402
from vault_sync.remote.base import RemoteStore  # noqa: E402
from vault_sync.remote.consistency import ConsistencyStore  # noqa: E402
from vault_sync.remote.sqlite_store import SQLiteRemoteStore  # noqa: E402
from vault_sync.utils.retry import RetryPolicy  # noqa: E402

FAST_LOCK = RetryPolicy(max_attempts=5, base_delay=0.001)
FAST_VERIFY = RetryPolicy(max_attempts=3, base_delay=0.001, backoff="linear")


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    workspace = tmp_path / "env-vault"
    workspace.mkdir()
    monkeypatch.setenv("VSYNC_WORKSPACE_PATH", str(workspace))
    monkeypatch.setenv("VSYNC_DB_PATH", str(tmp_path / "env-remote.db"))
    monkeypatch.setenv("VSYNC_WORKSPACE_ID", "env-workspace")
    monkeypatch.setenv("VSYNC_DEVICE_ID", "env-device")
    monkeypatch.setenv("VSYNC_WATCH", "false")
    monkeypatch.setenv("VSYNC_ENABLE_AUTO_INITIAL_SYNC", "false")
    monkeypatch.setenv("VSYNC_QUIET_PERIOD", "0")
    monkeypatch.setenv("VSYNC_CHECK_INTERVAL", "3600")
    monkeypatch.delenv("VSYNC_CONFIG", raising=False)

    from vault_sync.api import dependencies as deps
    from vault_sync.core.config import get_settings

    EmbeddingModel._instances.clear()
    get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    deps.reset_engine()
    yield
    EmbeddingModel._instances.clear()
    get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    deps.reset_engine()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def settings(workspace: Path, tmp_path: Path) -> Settings:
    return Settings(
        workspace_path=workspace,
        workspace_id="ws-test",
        device_id="device-a",
        device_name="Laptop",
        db_path=tmp_path / "remote.db",
        debounce_seconds=0.05,
        quiet_period=0,
        watch=False,
        enable_auto_initial_sync=False,
        chunk_size=200,
        chunk_overlap=20,
        min_chunk_size=20,
        queue_retry_delay=0.0,
    )


class ToggleRemote(RemoteStore):
    """Delegates to a real store; raises connectivity errors while ``offline``."""

    def __init__(self, inner: RemoteStore) -> None:
        super().__init__(inner.workspace_id)
        self.inner = inner
        self.offline = False

    async def _check(self) -> None:
        # Yield like a real network call would.
        await asyncio.sleep(0)
        if self.offline:
            raise RemoteConnectivityError("remote store switched off")

    async def initialize(self) -> None:
        await self._check()
        await self.inner.initialize()

    async def close(self) -> None:
        await self.inner.close()

    async def ping(self) -> bool:
        await self._check()
        return await self.inner.ping()

    async def get_status(self, path: str) -> StatusRecord | None:
        await self._check()
        return await self.inner.get_status(path)

    async def upsert_status(self, record: StatusRecord) -> StatusRecord:
        await self._check()
        return await self.inner.upsert_status(record)

    async def update_status_fields(self, path: str, **fields: Any) -> None:
        await self._check()
        await self.inner.update_status_fields(path, **fields)

    async def rename_status(self, old_path: str, new_path: str) -> None:
        await self._check()
        await self.inner.rename_status(old_path, new_path)

    async def delete_status(self, path: str) -> None:
        await self._check()
        await self.inner.delete_status(path)

    async def list_statuses(self, include_deleted: bool = False) -> list[StatusRecord]:
        await self._check()
        return await self.inner.list_statuses(include_deleted)

    async def count_statuses(self) -> int:
        await self._check()
        return await self.inner.count_statuses()

    async def delete_chunks(self, status_id: int) -> None:
        await self._check()
        await self.inner.delete_chunks(status_id)

    async def count_chunks(self, status_id: int) -> int:
        await self._check()
        return await self.inner.count_chunks(status_id)

    async def list_chunks(self, status_id: int) -> list[Chunk]:
        await self._check()
        return await self.inner.list_chunks(status_id)

    async def insert_chunks(self, chunks: list[Chunk]) -> None:
        await self._check()
        await self.inner.insert_chunks(chunks)


class RecordingQueue:
    """Task queue double that records submissions and optionally forwards them."""

    def __init__(self, inner=None, on_submit=None) -> None:
        self.tasks: list[ProcessingTask] = []
        self.inner = inner
        self.on_submit = on_submit

    async def submit(self, task: ProcessingTask) -> None:
        self.tasks.append(task)
        if self.on_submit is not None:
            self.on_submit(task)
        if self.inner is not None:
            await self.inner.submit(task)


@pytest.fixture
def remote(settings: Settings) -> ToggleRemote:
    return ToggleRemote(SQLiteRemoteStore(settings.db_path, settings.workspace_id))


@pytest_asyncio.fixture
async def consistency(remote: ToggleRemote) -> ConsistencyStore:
    store = ConsistencyStore(remote, insert_batch_size=3, lock_policy=FAST_LOCK, verify_policy=FAST_VERIFY)
    await store.initialize()
    yield store
    await remote.close()


@pytest_asyncio.fixture
async def coordination(settings: Settings) -> CoordinationStore:
    store = CoordinationStore(settings)
    await store.initialize()
    return store


@pytest.fixture
def embedder() -> EmbeddingModel:
    return EmbeddingModel(dim=16)


@pytest.fixture
def embedding_queue(settings: Settings, consistency: ConsistencyStore, embedder: EmbeddingModel) -> EmbeddingTaskQueue:
    return EmbeddingTaskQueue(
        settings.workspace_path,
        consistency,
        embedder,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        min_chunk_size=settings.min_chunk_size,
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0, backoff="linear"),
    )


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
