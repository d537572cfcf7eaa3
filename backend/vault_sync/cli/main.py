"""CLI entrypoint for vault-sync."""

from __future__ import annotations

import json
import os
from typing import Optional

import requests
import typer

app = typer.Typer(name="vsync", help="vault-sync command-line interface")
conflicts_app = typer.Typer(name="conflicts", help="Inspect and resolve sync conflicts")
app.add_typer(conflicts_app, name="conflicts")

DEFAULT_HOST = "http://127.0.0.1:5173"
STRATEGIES = ("newest-wins", "keep-both", "manual")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("VSYNC_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    url = f"{_resolve_host(host)}{path}"
    try:
        resp = requests.request(method, url, timeout=60, **kwargs)
    except requests.ConnectionError as exc:
        typer.echo(f"Cannot reach vault-sync at {url}: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def status(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show sync state, known devices, pending operations and open conflicts."""
    _echo(_request("GET", "/sync/state", host=host).json())


@app.command()
def progress(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show bulk reconciliation progress."""
    _echo(_request("GET", "/sync/progress", host=host).json())


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", help="Run even if the remote store already has records"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Start a bulk reconciliation of the workspace."""
    _echo(_request("POST", "/sync/initial", host=host, json={"force": force}).json())


@app.command()
def stop(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Stop a running reconciliation after its current batches."""
    _echo(_request("POST", "/sync/stop", host=host).json())


@conflicts_app.command("list")
def list_conflicts(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List open conflicts."""
    state = _request("GET", "/sync/state", host=host).json()
    _echo(state.get("open_conflicts", []))


@conflicts_app.command("resolve")
def resolve_conflict(
    conflict_id: str = typer.Argument(..., help="Conflict identifier"),
    strategy: str = typer.Option("newest-wins", "--strategy", help="newest-wins, keep-both or manual"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Resolve a recorded conflict."""
    if strategy not in STRATEGIES:
        raise typer.BadParameter(f"strategy must be one of {', '.join(STRATEGIES)}")
    resp = _request("POST", f"/conflicts/{conflict_id}/resolve", host=host, json={"strategy": strategy})
    _echo(resp.json())


if __name__ == "__main__":
    app()
