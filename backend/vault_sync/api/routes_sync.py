"""Sync state, bulk reconciliation and conflict routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from vault_sync.api.dependencies import get_engine
from vault_sync.core.errors import CoordinationDocumentError
from vault_sync.models.dto import (
    ConflictResolveRequest,
    ConflictResolveResponse,
    InitialSyncRequest,
    InitialSyncResponse,
    ProgressResponse,
    StopResponse,
    SyncStateSnapshot,
)
from vault_sync.sync.engine import SyncEngine

router = APIRouter()


@router.get("/sync/state", response_model=SyncStateSnapshot, summary="Current coordination state")
async def get_state(engine: SyncEngine = Depends(get_engine)) -> SyncStateSnapshot:
    try:
        return await engine.coordination.get_state()
    except CoordinationDocumentError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/sync/progress", response_model=ProgressResponse, summary="Bulk reconciliation progress")
async def get_progress(engine: SyncEngine = Depends(get_engine)) -> ProgressResponse:
    latest = engine.progress.latest
    return ProgressResponse(running=engine.reconciler.running, **latest.as_dict())


@router.post("/sync/initial", response_model=InitialSyncResponse, summary="Start bulk reconciliation")
async def start_initial_sync(
    request: InitialSyncRequest | None = None,
    engine: SyncEngine = Depends(get_engine),
) -> InitialSyncResponse:
    force = request.force if request else False
    return InitialSyncResponse(status=engine.start_initial_sync(force=force))


@router.post("/sync/stop", response_model=StopResponse, summary="Stop bulk reconciliation between batches")
async def stop_initial_sync(engine: SyncEngine = Depends(get_engine)) -> StopResponse:
    return StopResponse(status="stopping" if engine.reconciler.stop() else "idle")


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response_model=ConflictResolveResponse,
    summary="Resolve a recorded conflict",
)
async def resolve_conflict(
    conflict_id: str,
    request: ConflictResolveRequest,
    engine: SyncEngine = Depends(get_engine),
) -> ConflictResolveResponse:
    try:
        resolution = await engine.resolve_conflict(conflict_id, request.strategy)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Conflict not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ConflictResolveResponse(conflict=resolution.conflict, winner=resolution.winner)


__all__ = ["router"]
