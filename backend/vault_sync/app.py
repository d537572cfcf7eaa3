"""FastAPI application setup for vault-sync."""

from __future__ import annotations

from fastapi import FastAPI

from vault_sync.api.dependencies import get_app_settings, get_engine
from vault_sync.api.routes_admin import router as admin_router
from vault_sync.api.routes_sync import router as sync_router
from vault_sync.core.config import PLUGIN_VERSION
from vault_sync.core.logging import configure_logging

configure_logging()

app = FastAPI(
    title="vault-sync",
    version=PLUGIN_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(admin_router, prefix="", tags=["admin"])
app.include_router(sync_router, prefix="", tags=["sync"])


@app.on_event("startup")
async def startup() -> None:
    """Bring the sync engine up for the configured workspace."""
    settings = get_app_settings()
    configure_logging(context={"workspace": settings.workspace_id, "device": settings.device_id})
    await get_engine().start()


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_engine().stop()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=5173, log_config=None)
