"""API integration tests."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vault_sync.api.dependencies import get_app_settings
from vault_sync.app import app
from vault_sync.coordination.store import CoordinationStore
from vault_sync.models.coordination import ConflictCandidate


@pytest.fixture
def env_workspace(tmp_path: Path) -> Path:
    return tmp_path / "env-vault"


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def _wait_for_step(client: TestClient, step: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        payload = client.get("/sync/progress").json()
        if payload["step"] == step or time.monotonic() > deadline:
            return payload
        time.sleep(0.05)


async def _record_conflict() -> str:
    store = CoordinationStore(get_app_settings().model_copy(update={"device_id": "other"}))
    await store.initialize()
    conflict = await store.add_conflict(
        "plan.md",
        [
            ConflictCandidate(device_id="env-device", content_hash="aaa", last_modified=100),
            ConflictCandidate(device_id="other", content_hash="bbb", last_modified=200),
        ],
    )
    return conflict.id


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert payload["components"]["tracker"] == "ready"


def test_sync_state(client: TestClient, env_workspace: Path) -> None:
    resp = client.get("/sync/state")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["workspace_id"] == "env-workspace"
    assert payload["sync_state"] == "online"
    assert payload["database_status"] == "available"
    assert [device["device_id"] for device in payload["devices"]] == ["env-device"]
    assert (env_workspace / "_vaultsync.md").exists()


def test_initial_sync_flow(client: TestClient, env_workspace: Path) -> None:
    (env_workspace / "first.md").write_text("# First\n\nSome words about #testing.", encoding="utf-8")
    (env_workspace / "second.md").write_text("Links to [[first]].", encoding="utf-8")

    idle = client.get("/sync/progress").json()
    assert idle["running"] is False
    assert idle["step"] == "idle"

    resp = client.post("/sync/initial", json={"force": False})
    assert resp.status_code == 200
    assert resp.json()["status"] == "started"

    progress = _wait_for_step(client, "completed")
    assert progress["step"] == "completed"
    assert progress["total_files"] == 2
    assert progress["processed_files"] == 2
    assert progress["percentage"] == 100.0


def test_stop_when_idle(client: TestClient) -> None:
    resp = client.post("/sync/stop")
    assert resp.status_code == 200
    assert resp.json()["status"] == "idle"


def test_resolve_conflict(client: TestClient) -> None:
    conflict_id = asyncio.run(_record_conflict())
    assert client.get("/sync/state").json()["sync_state"] == "conflict"

    resp = client.post(f"/conflicts/{conflict_id}/resolve", json={"strategy": "newest-wins"})
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["winner"]["device_id"] == "other"
    assert payload["conflict"]["resolution_status"] == "resolved"
    assert client.get("/sync/state").json()["open_conflicts"] == []


def test_resolve_unknown_conflict(client: TestClient) -> None:
    resp = client.post("/conflicts/nope/resolve", json={"strategy": "keep-both"})
    assert resp.status_code == 404


def test_resolve_rejects_unknown_strategy(client: TestClient) -> None:
    resp = client.post("/conflicts/nope/resolve", json={"strategy": "coin-flip"})
    assert resp.status_code == 422


def test_metrics(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "vsync_tracker_events_total" in resp.text
