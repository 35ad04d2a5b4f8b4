"""
Sync Engine.

Orchestrates one sync attempt (fetch, compare, merge or push), owns the
retry/backoff policy and the auto-sync timer, and publishes lifecycle
events on the bus.

Concurrency model: everything runs on one asyncio event loop. The only
suspension points are the remote fetch/replace calls and timer sleeps. A
single in-progress flag guards the attempt; a request that arrives while
an attempt is running is dropped, not queued. The next periodic tick
catches up.

Decision per attempt, by ``lastModified``:
- local newer: replace the remote document with the local dataset
- remote newer: merge per record, persist locally, emit ``local_data_updated``
- equal: nothing to do

Example:
    >>> engine = SyncEngine(config, repository, GistClient(config), bus)
    >>> engine.start_auto_sync()
    >>> result = await engine.sync()
    >>> await engine.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any

from speakersync.core.config import ConfigManager
from speakersync.core.events import (
    ConflictsDetected,
    ConnectionChanged,
    DataChanged,
    EventBus,
    IntegrityCheckRequested,
    LocalDataUpdated,
    SyncCompleted,
    SyncFailed,
    SyncRequested,
    SyncStarted,
)
from speakersync.core.exceptions import DatasetParseError, RemoteStoreError, SpeakerSyncError
from speakersync.core.records import Dataset, DatasetRepository
from speakersync.core.remote import RemoteStore
from speakersync.core.sync.models import EngineStatus, SyncAction, SyncResult, SyncState
from speakersync.core.sync.resolver import merge_datasets
from speakersync.core.timeutil import utcnow

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Keeps the local dataset and the remote document consistent.

    Attributes:
        state: IDLE or SYNCING
        retry_count: Consecutive failed attempts since the last success or
            terminal failure
        last_sync_time: Completion time of the last successful attempt
        online: Whether the network is considered reachable
        pending_changes: Local changes not yet covered by a successful sync
    """

    STARTUP_DELAY = 1.0
    ONLINE_DELAY = 1.0
    CHANGE_DELAY = 0.1

    def __init__(
        self,
        config: ConfigManager,
        repository: DatasetRepository,
        remote: RemoteStore,
        bus: EventBus,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.repository = repository
        self.remote = remote
        self.bus = bus
        self.clock = clock

        self.state = SyncState.IDLE
        self.retry_count = 0
        self.last_sync_time: datetime | None = None
        self.online = True
        self.pending_changes = 0
        self.last_error: str | None = None

        self._auto_sync_task: asyncio.Task[None] | None = None
        self._scheduled: set[asyncio.Task[Any]] = set()

        bus.sync_requested.subscribe(self._on_sync_requested)

    @property
    def in_progress(self) -> bool:
        return self.state is SyncState.SYNCING

    # -- scheduling ---------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; scheduled sync dropped")
            coro.close()
            return None
        return loop.create_task(coro)

    def schedule_sync(self, delay: float = 0.0) -> asyncio.Task[Any] | None:
        """Run one sync attempt after ``delay`` seconds on the running loop."""
        task = self._spawn(self._delayed_sync(delay))
        if task is not None:
            self._scheduled.add(task)
            task.add_done_callback(self._scheduled.discard)
        return task

    async def _delayed_sync(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await self.sync()

    def start_auto_sync(self) -> None:
        """Start the recurring sync timer (first attempt after a short delay)."""
        self.stop_auto_sync()
        self._auto_sync_task = self._spawn(self._auto_sync_loop())

    def stop_auto_sync(self) -> None:
        if self._auto_sync_task is not None:
            self._auto_sync_task.cancel()
            self._auto_sync_task = None

    async def _auto_sync_loop(self) -> None:
        await asyncio.sleep(self.STARTUP_DELAY)
        while True:
            # separate task, so stopping the timer never cancels an attempt in flight
            self.schedule_sync()
            await asyncio.sleep(self.config.config.auto_sync_interval)

    async def drain(self) -> None:
        """Wait until no scheduled attempt (including retries) is left."""
        while self._scheduled:
            await asyncio.gather(*list(self._scheduled), return_exceptions=True)

    # -- triggers -----------------------------------------------------------

    def set_online(self, online: bool) -> None:
        """
        Record a connectivity transition.

        Going offline only stops new attempts from starting; an attempt
        already in flight completes or fails on its own.
        """
        if online == self.online:
            return
        self.online = online
        logger.info("Connection %s", "restored" if online else "lost")
        self.bus.connection_changed.emit(ConnectionChanged(online=online))
        if online and self.config.is_configured():
            self.schedule_sync(self.ONLINE_DELAY)

    def notify_data_changed(self, reason: str = "update") -> None:
        """
        Called by the record owner after it persisted a mutation.

        Stamps the dataset, publishes ``data_changed`` and schedules a sync.
        """
        try:
            self.repository.mark_changed(reason)
        except SpeakerSyncError as e:
            logger.error("Could not record local change: %s", e)
            return
        self.pending_changes += 1
        self.bus.data_changed.emit(DataChanged(reason=reason))
        if self.online and self.config.is_configured():
            self.schedule_sync(self.CHANGE_DELAY)

    def _on_sync_requested(self, event: SyncRequested) -> None:
        logger.info("Sync requested (%s)", event.reason)
        if self.config.is_configured():
            self.schedule_sync(event.delay)

    # -- sync ---------------------------------------------------------------

    async def sync(self) -> SyncResult | None:
        """
        Run one sync attempt.

        Returns:
            The result on success, or None when the attempt was skipped
            (not configured, offline, already running) or failed. Failures
            are never raised. See ``_handle_sync_error`` for the retry and
            offline rules; unparseable data requests an integrity check.
        """
        if not self.config.is_configured():
            logger.debug("Sync skipped: not configured")
            return None
        if self.in_progress:
            logger.debug("Sync skipped: attempt already in progress")
            return None
        if not self.online:
            logger.debug("Sync skipped: offline")
            return None

        self.state = SyncState.SYNCING
        self.bus.sync_started.emit(SyncStarted())
        started_at = self.clock()
        pending_at_start = self.pending_changes

        source = "local"
        try:
            local = self.repository.load()
            source = "remote"
            remote = await self.remote.fetch()
            result = await self.perform_sync(local, remote)
        except DatasetParseError as e:
            self._handle_corrupt_data(source, e)
            return None
        except Exception as e:
            logger.error("Sync failed: %s", e)
            self._handle_sync_error(e)
            return None
        finally:
            self.state = SyncState.IDLE

        result.started_at = started_at
        result.completed_at = self.clock()
        self.retry_count = 0
        self.last_sync_time = result.completed_at
        self.last_error = None
        self.pending_changes = max(0, self.pending_changes - pending_at_start)

        logger.info("Sync completed: %s", result.summary())
        if result.conflicts:
            self.bus.conflicts_detected.emit(ConflictsDetected(conflicts=result.conflicts))
        self.bus.sync_completed.emit(
            SyncCompleted(conflict_count=len(result.conflicts), action=result.action.value)
        )
        return result

    async def sync_now(self) -> SyncResult | None:
        """Manual sync request; same rules as any other trigger."""
        return await self.sync()

    async def perform_sync(self, local: Dataset, remote: Dataset) -> SyncResult:
        """
        Compare timestamps and push, merge, or do nothing.

        Raises:
            RemoteStoreError: If pushing to the remote document fails.
            StorageError: If persisting the merged dataset fails.
        """
        result = SyncResult(
            action=SyncAction.NONE,
            local_version=local.version,
            remote_version=remote.version,
        )

        if local.last_modified > remote.last_modified:
            logger.debug("Local dataset is newer; pushing v%d", local.version)
            await self.remote.replace(local)
            result.action = SyncAction.PUSH
        elif remote.last_modified > local.last_modified:
            logger.debug("Remote dataset is newer; merging v%d", remote.version)
            strategy = self.config.config.conflict_resolution_strategy
            merge = merge_datasets(local, remote, strategy, self.clock())
            self.repository.save(merge.dataset, reason="merge")
            self.bus.local_data_updated.emit(LocalDataUpdated(dataset=merge.dataset))
            result.action = SyncAction.PULL
            result.conflicts = merge.conflicts
        return result

    def _handle_corrupt_data(self, source: str, error: DatasetParseError) -> None:
        # never retried
        logger.error("Sync aborted: %s dataset is corrupt: %s", source, error)
        self.last_error = str(error)
        self.retry_count = 0
        self.bus.integrity_check_requested.emit(
            IntegrityCheckRequested(source=source, reason=str(error))
        )

    def _handle_sync_error(self, error: Exception) -> None:
        self.last_error = str(error)
        if isinstance(error, RemoteStoreError) and error.status_code is None:
            # no response at all: offline until the connectivity monitor reaches the API
            self.retry_count = 0
            self.set_online(False)
            return
        self.retry_count += 1
        config = self.config.config

        if self.retry_count < config.retry_attempts:
            delay = config.retry_delay * self.retry_count
            logger.info(
                "Retrying sync in %.1fs (attempt %d/%d)",
                delay,
                self.retry_count + 1,
                config.retry_attempts,
            )
            self.schedule_sync(delay)
        else:
            logger.warning("Sync failed after %d attempts: %s", self.retry_count, error)
            self.bus.sync_failed.emit(SyncFailed(error=error, retry_count=self.retry_count))
            self.retry_count = 0

    # -- lifecycle ----------------------------------------------------------

    async def shutdown(self) -> None:
        """
        Stop timers and flush once if a local change is still pending.

        The flush is best effort: a failure is logged like any other and
        the retry it would schedule is cancelled.
        """
        self.stop_auto_sync()

        while self.in_progress:
            await asyncio.sleep(0.05)

        if self.pending_changes and self.config.is_configured() and self.online:
            logger.info("Flushing %d pending change(s) before shutdown", self.pending_changes)
            await self.sync()

        for task in list(self._scheduled):
            task.cancel()
        if self._scheduled:
            await asyncio.gather(*list(self._scheduled), return_exceptions=True)

    def get_status(self) -> EngineStatus:
        return EngineStatus(
            configured=self.config.is_configured(),
            syncing=self.in_progress,
            online=self.online,
            auto_sync=self._auto_sync_task is not None and not self._auto_sync_task.done(),
            last_sync=self.last_sync_time,
            pending_changes=self.pending_changes,
            retry_count=self.retry_count,
            last_error=self.last_error,
        )
