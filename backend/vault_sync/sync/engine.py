"""Wires the sync components together for one workspace."""

from __future__ import annotations

import asyncio

from vault_sync.coordination.connectivity import ConnectivityMonitor, QuietPeriod
from vault_sync.coordination.store import ConflictResolution, CoordinationStore
from vault_sync.core.config import Settings
from vault_sync.core.errors import RemoteStoreError, StartupError
from vault_sync.core.lifecycle import ComponentState, Lifecycle
from vault_sync.core.logging import get_logger
from vault_sync.ingest.embeddings import Embedder, build_embedder
from vault_sync.ingest.tasks import EmbeddingTaskQueue, TaskQueue
from vault_sync.models.coordination import ResolutionStrategy, SyncState
from vault_sync.remote.base import RemoteStore
from vault_sync.remote.consistency import ConsistencyStore
from vault_sync.sync.initial import BulkReconciler
from vault_sync.sync.offline import OfflineReplayer
from vault_sync.sync.progress import LoggingProgressSink, RecordingProgressSink
from vault_sync.tracker.exclusions import ExclusionRules
from vault_sync.tracker.tracker import ChangeTracker
from vault_sync.tracker.watcher import Watcher

logger = get_logger(__name__)


def build_remote_store(settings: Settings) -> RemoteStore:
    if settings.remote_backend == "supabase":
        from vault_sync.remote.supabase_store import SupabaseRemoteStore

        return SupabaseRemoteStore(settings.supabase_url, settings.supabase_key, settings.workspace_id)
    from vault_sync.remote.sqlite_store import SQLiteRemoteStore

    return SQLiteRemoteStore(settings.db_path, settings.workspace_id)


class SyncEngine(Lifecycle):
    """Startup order: coordination document, remote store, tracker, reconciliation, watcher."""

    def __init__(
        self,
        settings: Settings,
        remote: RemoteStore | None = None,
        embedder: Embedder | None = None,
        task_queue: TaskQueue | None = None,
    ) -> None:
        self.settings = settings
        self.exclusions = ExclusionRules.from_settings(settings)
        self.coordination = CoordinationStore(settings)
        self.consistency = ConsistencyStore(remote or build_remote_store(settings), settings.insert_batch_size)
        self.task_queue = task_queue or EmbeddingTaskQueue.from_settings(
            settings, self.consistency, embedder or build_embedder(settings)
        )
        self.progress = RecordingProgressSink(forward=LoggingProgressSink())
        self.quiet_period = QuietPeriod(settings.quiet_period)
        self.tracker = ChangeTracker(
            settings,
            self.consistency,
            self.coordination,
            self.task_queue,
            exclusions=self.exclusions,
            quiet_period=self.quiet_period,
        )
        self.reconciler = BulkReconciler(
            settings,
            self.consistency,
            self.coordination,
            self.task_queue,
            exclusions=self.exclusions,
            sink=self.progress,
        )
        self.replayer = OfflineReplayer(settings.workspace_path, self.consistency, self.coordination, self.task_queue)
        self.monitor = ConnectivityMonitor(
            self.consistency.remote,
            self.coordination,
            check_interval=settings.check_interval,
            on_reconnect=self.replay_offline,
        )
        self.watcher = Watcher(settings.workspace_path, self.tracker) if settings.watch else None
        self._reconcile_task: asyncio.Task[str] | None = None

    async def start(self) -> None:
        self._set_state(ComponentState.INITIALIZING)
        await self.coordination.initialize()
        remote_ready = await self._initialize_remote()

        await self.tracker.initialize()
        if self.watcher is not None:
            self.watcher.start()

        # An online check replays whatever an earlier session deferred.
        online = await self.monitor.check() if remote_ready else False
        self.monitor.start()
        self._set_state(ComponentState.READY)

        if self.settings.enable_auto_initial_sync and online:
            self._reconcile_task = asyncio.create_task(self._startup_reconcile())
        else:
            self.tracker.mark_ready()

    async def _initialize_remote(self) -> bool:
        try:
            await self.consistency.initialize()
            return True
        except RemoteStoreError as exc:
            if self.settings.require_sync:
                self._set_state(ComponentState.ERROR)
                await self.coordination.set_sync_state(SyncState.ERROR)
                raise StartupError(f"Remote store unavailable and sync is required: {exc}") from exc
            logger.warning("Remote store unavailable, starting offline: %s", exc)
            await self.coordination.record_database_status(False, str(exc))
            return False

    async def _startup_reconcile(self) -> str:
        try:
            # Let the replication layer settle before comparing against it.
            await self.quiet_period.wait()
            return await self.reconciler.start()
        finally:
            self.tracker.mark_ready()

    def start_initial_sync(self, force: bool = False) -> str:
        if self.reconciler.running:
            return "already_running"
        self._reconcile_task = asyncio.create_task(self.reconciler.start(force=force))
        return "started"

    async def replay_offline(self) -> None:
        if not self.consistency.is_ready:
            await self.consistency.initialize()
        stats = await self.replayer.replay()
        if stats["replayed"] or stats["failed"]:
            logger.info("Offline replay finished", extra={"ctx_stats": stats})

    async def resolve_conflict(self, conflict_id: str, strategy: ResolutionStrategy) -> ConflictResolution:
        resolution = await self.coordination.resolve_conflict(conflict_id, strategy)
        winner = resolution.winner
        if winner is not None and winner.device_id == self.settings.device_id:
            # Make sure the remote store carries this device's version.
            await self.tracker.reprocess(resolution.conflict.file_id)
        return resolution

    async def stop(self) -> None:
        self.reconciler.stop()
        if self.watcher is not None:
            self.watcher.stop()
        await self.monitor.stop()
        await self.tracker.flush()
        if self._reconcile_task is not None:
            await asyncio.gather(self._reconcile_task, return_exceptions=True)
        await self.consistency.remote.close()
        self._set_state(ComponentState.UNINITIALIZED)


__all__ = ["SyncEngine", "build_remote_store"]
