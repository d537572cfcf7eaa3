"""Tests for the coordination document and its store."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from vault_sync.coordination.document import parse_document, render_document
from vault_sync.coordination.store import CoordinationStore, pick_newest
from vault_sync.core.config import Settings
from vault_sync.core.errors import ComponentNotReadyError, CoordinationDocumentError, SyncErrorType
from vault_sync.models.coordination import (
    MAX_CONNECTION_EVENTS,
    MAX_PENDING_OPERATIONS,
    ConflictCandidate,
    DatabaseStatus,
    OperationType,
    PendingOperation,
    ResolutionStrategy,
    SyncState,
    create_empty_document,
)


def _document_text(workspace_id: str = "ws-test") -> str:
    document = create_empty_document(workspace_id, "device-x", "Desktop", "Linux", "0.1.0")
    return render_document(document)


def test_render_and_parse() -> None:
    text = _document_text()
    assert text.startswith("---\n")
    assert "# vault-sync coordination" in text
    document = parse_document(text, "ws-test")
    assert document.header.last_writer == "device-x"
    assert "device-x" in document.header.devices


def test_parse_rejects_missing_header_fields() -> None:
    with pytest.raises(CoordinationDocumentError) as excinfo:
        parse_document("---\nheader:\n  workspace_id: ws-test\n---\n")
    assert excinfo.value.error_type is SyncErrorType.SYNC_FILE_CORRUPT
    assert "devices" in excinfo.value.details["missing"]


def test_parse_detects_legacy_table() -> None:
    legacy = "# Sync\n\n| File Path | Last Modified |\n|---|---|\n| a.md | 1 |\n"
    with pytest.raises(CoordinationDocumentError) as excinfo:
        parse_document(legacy)
    assert excinfo.value.error_type is SyncErrorType.SYNC_FILE_OUTDATED
    assert excinfo.value.recoverable


def test_parse_workspace_mismatch_is_not_recoverable() -> None:
    with pytest.raises(CoordinationDocumentError) as excinfo:
        parse_document(_document_text("other"), "ws-test")
    assert excinfo.value.error_type is SyncErrorType.DEVICE_MISMATCH
    assert not excinfo.value.recoverable


def test_rename_operation_requires_old_path() -> None:
    with pytest.raises(ValidationError):
        PendingOperation(file_id="b.md", operation_type=OperationType.RENAME, device_id="d")


@pytest.mark.asyncio
async def test_initialize_creates_document_and_backup(settings: Settings) -> None:
    store = CoordinationStore(settings)
    document = await store.initialize()
    assert store.is_ready
    assert store.path.exists()
    assert store.backup_path.exists()
    assert document.header.sync_state is SyncState.INITIALIZING
    assert document.header.devices["device-a"].name == "Laptop"


@pytest.mark.asyncio
async def test_mutate_requires_initialize(settings: Settings) -> None:
    store = CoordinationStore(settings)
    with pytest.raises(ComponentNotReadyError):
        await store.touch()


@pytest.mark.asyncio
async def test_truncated_header_is_restored_from_backup(coordination: CoordinationStore) -> None:
    await coordination.record_database_status(True)
    coordination.backup(force=True)
    coordination.path.write_text("---\nheader:\n  workspace_id: ws-test\n---\n", encoding="utf-8")

    result = await coordination.validate()

    assert result.is_valid
    assert result.repaired
    assert result.error_type is SyncErrorType.SYNC_FILE_CORRUPT
    document = await coordination.read()
    assert document.database_status is DatabaseStatus.AVAILABLE
    assert "device-a" in document.header.devices


@pytest.mark.asyncio
async def test_garbage_without_backup_is_recreated(coordination: CoordinationStore) -> None:
    coordination.backup_path.unlink()
    coordination.path.write_text("not a coordination document", encoding="utf-8")

    result = await coordination.validate()

    assert result.is_valid and result.repaired
    document = await coordination.read()
    assert document.header.workspace_id == "ws-test"
    assert document.pending_operations == []


@pytest.mark.asyncio
async def test_foreign_workspace_fails_validation(settings: Settings) -> None:
    store = CoordinationStore(settings)
    store.path.write_text(_document_text("someone-else"), encoding="utf-8")

    result = await store.validate()
    assert not result.is_valid
    assert result.error_type is SyncErrorType.DEVICE_MISMATCH

    with pytest.raises(CoordinationDocumentError):
        await store.initialize()


@pytest.mark.asyncio
async def test_devices_merge_and_last_writer_wins(settings: Settings, coordination: CoordinationStore) -> None:
    other = CoordinationStore(settings.model_copy(update={"device_id": "device-b", "device_name": "Phone"}))
    await other.initialize()
    await other.touch()

    document = await coordination.read()
    assert set(document.header.devices) == {"device-a", "device-b"}
    assert document.header.last_writer == "device-b"


@pytest.mark.asyncio
async def test_connection_events_only_on_transitions(coordination: CoordinationStore) -> None:
    assert await coordination.record_database_status(False, "timeout") is SyncState.OFFLINE
    await coordination.record_database_status(False, "timeout")
    assert await coordination.record_database_status(True) is SyncState.ONLINE

    document = await coordination.read()
    assert [e.event_type for e in document.connection_events] == ["disconnected", "connected"]
    assert document.connection_events[0].details == "timeout"


@pytest.mark.asyncio
async def test_history_lists_are_capped(coordination: CoordinationStore) -> None:
    for _ in range(MAX_CONNECTION_EVENTS):
        await coordination.record_database_status(False)
        await coordination.record_database_status(True)

    def flood(document) -> None:
        for index in range(MAX_PENDING_OPERATIONS + 5):
            document.pending_operations.append(
                PendingOperation(file_id=f"n{index}.md", operation_type=OperationType.CREATE, device_id="device-a")
            )

    await coordination.mutate(flood)

    document = await coordination.read()
    assert len(document.connection_events) == MAX_CONNECTION_EVENTS
    assert len(document.pending_operations) == MAX_PENDING_OPERATIONS
    assert document.pending_operations[0].file_id == "n5.md"


@pytest.mark.asyncio
async def test_pending_operations_round_trip(coordination: CoordinationStore) -> None:
    first = await coordination.add_pending_operation("a.md", OperationType.CREATE, content_hash="h1", last_modified=5)
    second = await coordination.add_pending_operation("b.md", OperationType.RENAME, old_path="old/b.md")

    await coordination.update_pending_operation(second.id, "error", "boom")
    operations = await coordination.list_pending_operations()
    assert [op.file_id for op in operations] == ["a.md", "b.md"]
    assert operations[0].metadata.content_hash == "h1"
    assert operations[1].status == "error"
    assert operations[1].error_details == "boom"

    await coordination.remove_pending_operations([first.id])
    assert [op.id for op in await coordination.list_pending_operations()] == [second.id]


@pytest.mark.asyncio
async def test_newest_wins_clears_conflict_state(coordination: CoordinationStore) -> None:
    await coordination.record_database_status(True)
    conflict = await coordination.add_conflict(
        "plan.md",
        [
            ConflictCandidate(device_id="device-a", content_hash="aaa", last_modified=100),
            ConflictCandidate(device_id="device-b", content_hash="bbb", last_modified=200),
        ],
    )
    # A reachability check must not paper over an open conflict.
    assert await coordination.record_database_status(True) is SyncState.CONFLICT

    resolution = await coordination.resolve_conflict(conflict.id, ResolutionStrategy.NEWEST_WINS)

    assert resolution.winner is not None and resolution.winner.device_id == "device-b"
    assert resolution.conflict.resolution_status == "resolved"
    assert resolution.conflict.winner == "device-b"
    state = await coordination.get_state()
    assert state.sync_state is SyncState.ONLINE
    assert state.open_conflicts == []


@pytest.mark.asyncio
async def test_manual_and_keep_both(coordination: CoordinationStore) -> None:
    candidates = [
        ConflictCandidate(device_id="device-a", last_modified=1),
        ConflictCandidate(device_id="device-b", last_modified=2),
    ]
    manual = await coordination.add_conflict("x.md", candidates)
    keep = await coordination.add_conflict("y.md", candidates)

    untouched = await coordination.resolve_conflict(manual.id, ResolutionStrategy.MANUAL)
    assert untouched.conflict.resolution_status == "pending"
    assert untouched.winner is None

    kept = await coordination.resolve_conflict(keep.id, ResolutionStrategy.KEEP_BOTH)
    assert kept.conflict.resolution_status == "resolved"
    assert kept.winner is None

    state = await coordination.get_state()
    assert state.sync_state is SyncState.CONFLICT
    assert [c.id for c in state.open_conflicts] == [manual.id]


@pytest.mark.asyncio
async def test_unknown_conflict_raises_key_error(coordination: CoordinationStore) -> None:
    with pytest.raises(KeyError):
        await coordination.resolve_conflict("missing", ResolutionStrategy.NEWEST_WINS)


def test_pick_newest_tie_breaks_on_hash() -> None:
    winner = pick_newest(
        [
            ConflictCandidate(device_id="a", content_hash="111", last_modified=10),
            ConflictCandidate(device_id="b", content_hash="222", last_modified=10),
        ]
    )
    assert winner.device_id == "b"
    with pytest.raises(ValueError):
        pick_newest([])


@pytest.mark.asyncio
async def test_backup_respects_interval(settings: Settings) -> None:
    ticks = iter([0.0, 10.0, 4000.0])
    store = CoordinationStore(settings, monotonic=lambda: next(ticks))
    await store.initialize()  # forced backup at t=0
    assert store.backup() is False
    assert store.backup() is True
