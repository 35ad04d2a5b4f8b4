"""
Typed event bus.

One :class:`Channel` per event kind, grouped on an :class:`EventBus`. The
sync engine and backup manager publish and subscribe through it, and the
record owner (UI, CLI) listens to it.

Handlers run synchronously, in subscription order, on the caller's thread.
A failing handler is logged and does not stop the remaining handlers.

Example:
    >>> bus = EventBus()
    >>> unsubscribe = bus.sync_completed.subscribe(lambda e: print(e.conflict_count))
    >>> bus.sync_completed.emit(SyncCompleted(conflict_count=0, action="none"))
    0
    >>> unsubscribe()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from speakersync.core.backup.models import Backup, BackupSummary, CorruptionIssue
    from speakersync.core.records.models import Dataset
    from speakersync.core.sync.models import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LocalDataUpdated:
    """Remote data was merged and applied to the local dataset."""

    dataset: Dataset


@dataclass(frozen=True)
class SyncStarted:
    pass


@dataclass(frozen=True)
class SyncCompleted:
    conflict_count: int
    action: str


@dataclass(frozen=True)
class SyncFailed:
    """Terminal failure after the retry budget was used up."""

    error: Exception
    retry_count: int


@dataclass(frozen=True)
class ConnectionChanged:
    online: bool


@dataclass(frozen=True)
class ConflictsDetected:
    conflicts: list[Conflict]


@dataclass(frozen=True)
class DataChanged:
    """The record owner mutated the record set."""

    reason: str = "update"


@dataclass(frozen=True)
class SyncRequested:
    """Out-of-band request for a sync attempt after ``delay`` seconds."""

    reason: str
    delay: float = 1.0


@dataclass(frozen=True)
class IntegrityCheckRequested:
    """
    A stored or fetched dataset could not be parsed.

    ``source`` is ``"local"`` or ``"remote"``.
    """

    source: str
    reason: str


@dataclass(frozen=True)
class BackupCreated:
    summary: BackupSummary


@dataclass(frozen=True)
class RestoreProposed:
    """Corruption was found and ``backup`` passed every check."""

    backup: Backup
    issues: list[CorruptionIssue] = field(default_factory=list)


@dataclass(frozen=True)
class DatasetRestored:
    """The live dataset was replaced wholesale; the record owner should reload."""

    backup_id: str
    dataset: Dataset


class Channel(Generic[T]):
    """A single event kind with its ordered list of handlers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[[T], Any]] = []

    def subscribe(self, handler: Callable[[T], Any]) -> Callable[[], None]:
        """
        Register ``handler``.

        Returns:
            A callable that removes the handler again.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: T) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as exc:
                logger.error("Event handler failed for channel '%s': %s", self.name, exc)

    def __len__(self) -> int:
        return len(self._handlers)


class EventBus:
    """All channels shared by one runtime."""

    def __init__(self) -> None:
        self.local_data_updated: Channel[LocalDataUpdated] = Channel("local_data_updated")
        self.sync_started: Channel[SyncStarted] = Channel("sync_started")
        self.sync_completed: Channel[SyncCompleted] = Channel("sync_completed")
        self.sync_failed: Channel[SyncFailed] = Channel("sync_failed")
        self.connection_changed: Channel[ConnectionChanged] = Channel("connection_changed")
        self.conflicts_detected: Channel[ConflictsDetected] = Channel("conflicts_detected")
        self.data_changed: Channel[DataChanged] = Channel("data_changed")
        self.sync_requested: Channel[SyncRequested] = Channel("sync_requested")
        self.integrity_check_requested: Channel[IntegrityCheckRequested] = Channel(
            "integrity_check_requested"
        )
        self.backup_created: Channel[BackupCreated] = Channel("backup_created")
        self.restore_proposed: Channel[RestoreProposed] = Channel("restore_proposed")
        self.dataset_restored: Channel[DatasetRestored] = Channel("dataset_restored")
