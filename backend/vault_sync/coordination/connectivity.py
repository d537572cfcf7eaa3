"""Remote reachability monitoring and the startup quiet period."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from vault_sync.core.errors import RemoteStoreError
from vault_sync.core.logging import get_logger
from vault_sync.core.metrics import REMOTE_ONLINE
from vault_sync.models.coordination import SyncState

if TYPE_CHECKING:
    from vault_sync.coordination.store import CoordinationStore
    from vault_sync.remote.base import RemoteStore

logger = get_logger(__name__)

ReconnectCallback = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """Periodically pings the remote store and records transitions.

    ``on_reconnect`` runs after every OFFLINE -> ONLINE transition, and on
    any online check that finds this device's operations still deferred.
    It is the hook offline replay hangs off.
    """

    def __init__(
        self,
        remote: "RemoteStore",
        coordination: "CoordinationStore",
        check_interval: float = 60.0,
        on_reconnect: ReconnectCallback | None = None,
    ) -> None:
        self.remote = remote
        self.coordination = coordination
        self.check_interval = check_interval
        self.on_reconnect = on_reconnect
        self.online: bool | None = None
        self._task: asyncio.Task[None] | None = None

    async def check(self) -> bool:
        try:
            available = await self.remote.ping()
            details = None
        except RemoteStoreError as exc:
            available = False
            details = str(exc)

        was_online = self.online
        self.online = available
        REMOTE_ONLINE.set(1 if available else 0)
        await self.coordination.record_database_status(available, details)

        if was_online is False and available:
            logger.info("Remote store reachable again")
            if self.on_reconnect is not None:
                await self.on_reconnect()
        elif available and self.on_reconnect is not None and await self._has_deferred_work():
            # Work was deferred by a call that failed between two checks.
            logger.info("Deferred operations waiting while online, replaying")
            await self.on_reconnect()
        elif was_online is not False and not available:
            logger.warning("Remote store unreachable: %s", details or "ping failed")
        return available

    async def _has_deferred_work(self) -> bool:
        operations = await self.coordination.list_pending_operations()
        return any(operation.status == "pending" for operation in operations)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="vault-sync-connectivity")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except Exception:  # noqa: BLE001
                logger.exception("Connectivity check failed")
            await asyncio.sleep(self.check_interval)

    async def current_state(self) -> SyncState:
        document = await self.coordination.read()
        return document.header.sync_state


class QuietPeriod:
    """Tracks local activity; ``wait()`` returns once nothing happened for ``seconds``."""

    def __init__(self, seconds: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._last_activity = clock()

    def note_activity(self) -> None:
        self._last_activity = self._clock()

    def remaining(self) -> float:
        return max(0.0, self.seconds - (self._clock() - self._last_activity))

    async def wait(self) -> None:
        while (remaining := self.remaining()) > 0:
            await asyncio.sleep(remaining)


__all__ = ["ConnectivityMonitor", "QuietPeriod"]
