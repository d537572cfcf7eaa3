"""Tests for engine startup ordering and reconnect handling."""

from __future__ import annotations

import pytest

from conftest import ToggleRemote
from vault_sync.core.config import Settings
from vault_sync.core.errors import StartupError
from vault_sync.core.lifecycle import ComponentState
from vault_sync.ingest.embeddings import EmbeddingModel
from vault_sync.models.coordination import ConflictCandidate, ResolutionStrategy, SyncState
from vault_sync.models.entities import FileStatus
from vault_sync.sync.engine import SyncEngine


def _engine(settings: Settings, remote: ToggleRemote) -> SyncEngine:
    return SyncEngine(settings, remote=remote, embedder=EmbeddingModel(dim=16))


@pytest.mark.asyncio
async def test_start_online(settings: Settings, remote: ToggleRemote) -> None:
    engine = _engine(settings, remote)
    try:
        await engine.start()
        assert engine.is_ready
        assert engine.tracker.is_ready
        assert engine.watcher is None
        state = await engine.coordination.get_state()
        assert state.sync_state is SyncState.ONLINE
    finally:
        await engine.stop()
    assert engine.state is ComponentState.UNINITIALIZED


@pytest.mark.asyncio
async def test_offline_start_then_reconnect_replays(settings: Settings, remote: ToggleRemote) -> None:
    (settings.workspace_path / "draft.md").write_text("written while offline", encoding="utf-8")
    remote.offline = True
    engine = _engine(settings, remote)
    try:
        await engine.start()
        assert engine.is_ready
        assert engine.consistency.state is ComponentState.ERROR

        await engine.tracker.flush()
        assert await engine.monitor.check() is False
        pending = await engine.coordination.list_pending_operations()
        assert [op.file_id for op in pending] == ["draft.md"]

        remote.offline = False
        assert await engine.monitor.check() is True

        assert await engine.coordination.list_pending_operations() == []
        record = await engine.consistency.get_status("draft.md")
        assert record.status is FileStatus.VECTORIZED
        assert (await engine.coordination.get_state()).sync_state is SyncState.ONLINE
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_required_sync_fails_fast(settings: Settings, remote: ToggleRemote) -> None:
    remote.offline = True
    engine = _engine(settings.model_copy(update={"require_sync": True}), remote)

    with pytest.raises(StartupError):
        await engine.start()

    assert engine.state is ComponentState.ERROR
    state = await engine.coordination.get_state()
    assert state.sync_state is SyncState.ERROR


@pytest.mark.asyncio
async def test_winning_conflict_reprocesses_local_copy(settings: Settings, remote: ToggleRemote) -> None:
    engine = _engine(settings, remote)
    try:
        await engine.start()
        (settings.workspace_path / "plan.md").write_text("local version", encoding="utf-8")
        conflict = await engine.coordination.add_conflict(
            "plan.md",
            [
                ConflictCandidate(device_id="device-a", content_hash="aaa", last_modified=500),
                ConflictCandidate(device_id="device-b", content_hash="bbb", last_modified=100),
            ],
        )

        resolution = await engine.resolve_conflict(conflict.id, ResolutionStrategy.NEWEST_WINS)

        assert resolution.winner.device_id == "device-a"
        record = await engine.consistency.get_status("plan.md")
        assert record.status is FileStatus.VECTORIZED
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_outage_between_checks_is_replayed(settings: Settings, remote: ToggleRemote) -> None:
    engine = _engine(settings, remote)
    try:
        await engine.start()
        assert await engine.monitor.check() is True

        remote.offline = True
        (settings.workspace_path / "quick.md").write_text("saved during a blip", encoding="utf-8")
        engine.tracker.handle_create("quick.md")
        await engine.tracker.flush()
        remote.offline = False
        assert [op.file_id for op in await engine.coordination.list_pending_operations()] == ["quick.md"]

        assert await engine.monitor.check() is True

        assert await engine.coordination.list_pending_operations() == []
        assert (await engine.consistency.get_status("quick.md")).status is FileStatus.VECTORIZED
    finally:
        await engine.stop()
