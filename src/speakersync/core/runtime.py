"""
Runtime wiring.

Builds the store, configuration, repository, event bus, remote client,
sync engine and backup manager for one data directory, and starts and
stops them together.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

import httpx

from speakersync.core.backup import BackupManager
from speakersync.core.config import ConfigManager, load_layered_env
from speakersync.core.events import EventBus
from speakersync.core.records import DatasetRepository
from speakersync.core.remote import GistClient
from speakersync.core.storage import FileStore, KeyValueStore
from speakersync.core.sync import SyncEngine
from speakersync.core.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path("~/.local/share/speakersync")


def get_data_dir(data_dir: Path | str | None = None) -> Path:
    """Resolve the data directory: argument, then ``SPEAKERSYNC_HOME``, then the default."""
    if data_dir is None:
        data_dir = os.environ.get("SPEAKERSYNC_HOME") or DEFAULT_DATA_DIR
    return Path(data_dir).expanduser()


@dataclass
class Runtime:
    """Owned components of one running instance."""

    store: KeyValueStore
    config: ConfigManager
    repository: DatasetRepository
    bus: EventBus
    remote: GistClient
    engine: SyncEngine
    backups: BackupManager
    _monitor: asyncio.Task[Any] | None = field(default=None, repr=False)

    # seconds between reachability checks while offline
    CONNECTIVITY_INTERVAL: ClassVar[float] = 15.0

    @classmethod
    def build(
        cls,
        data_dir: Path | str | None = None,
        *,
        store: KeyValueStore | None = None,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
        load_env: bool = True,
    ) -> Runtime:
        """
        Construct every component.

        Args:
            data_dir: Directory for the file store (ignored when ``store`` is given)
            store: Pre-built key-value store, e.g. a ``MemoryStore`` in tests
            http: Pre-built HTTP client for the remote client
            clock: Time source shared by all components
            load_env: Load ``.env`` files before reading configuration
        """
        if load_env:
            load_layered_env()
        if store is None:
            store = FileStore(get_data_dir(data_dir) / "store")

        config = ConfigManager(store)
        repository = DatasetRepository(
            store, journal_limit=config.config.backup.journal_limit, clock=clock
        )
        bus = EventBus()
        remote = GistClient(config, http=http)
        engine = SyncEngine(config, repository, remote, bus, clock=clock)
        backups = BackupManager(config, repository, bus, remote=remote, clock=clock)
        logger.debug("Runtime built (configured=%s)", config.is_configured())
        return cls(
            store=store,
            config=config,
            repository=repository,
            bus=bus,
            remote=remote,
            engine=engine,
            backups=backups,
        )

    def start(self) -> None:
        """Start auto-sync, the backup timers and the connectivity monitor. Needs a running loop."""
        self.backups.start()
        self.engine.start_auto_sync()
        self._monitor = asyncio.get_running_loop().create_task(self._watch_connectivity())

    async def _watch_connectivity(self) -> None:
        while True:
            await asyncio.sleep(self.CONNECTIVITY_INTERVAL)
            if not self.engine.online and await self.remote.ping():
                self.engine.set_online(True)

    async def stop(self) -> None:
        """Flush pending changes, stop every timer and close the HTTP client."""
        if self._monitor is not None:
            self._monitor.cancel()
            await asyncio.gather(self._monitor, return_exceptions=True)
            self._monitor = None
        await self.engine.shutdown()
        await self.backups.stop()
        await self.remote.aclose()
