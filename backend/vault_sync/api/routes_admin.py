"""Administrative routes for vault-sync."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from vault_sync.api.dependencies import get_engine
from vault_sync.core.config import PLUGIN_VERSION
from vault_sync.core.lifecycle import ComponentState
from vault_sync.core.metrics import metrics_response
from vault_sync.models.dto import HealthResponse
from vault_sync.sync.engine import SyncEngine

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Component lifecycle states")
async def health(engine: SyncEngine = Depends(get_engine)) -> HealthResponse:
    components = {
        "engine": engine.state,
        "coordination": engine.coordination.state,
        "remote": engine.consistency.state,
        "tracker": engine.tracker.state,
    }
    ready = all(state is ComponentState.READY for state in components.values())
    return HealthResponse(
        status="ok" if ready else "degraded",
        components={name: state.value for name, state in components.items()},
        version=PLUGIN_VERSION,
    )


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
