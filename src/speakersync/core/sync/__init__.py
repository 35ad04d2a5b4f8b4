"""
Sync engine and conflict resolver.

Example:
    >>> from speakersync.core.sync import SyncEngine, diff, resolve
    >>> diff({"id": 1, "email": "a@x.com"}, {"id": 1, "email": "b@x.com"})[0].field
    'email'
"""

from speakersync.core.sync.engine import SyncEngine
from speakersync.core.sync.models import (
    Conflict,
    EngineStatus,
    FieldDiff,
    MergeResult,
    SyncAction,
    SyncResult,
    SyncState,
)
from speakersync.core.sync.resolver import diff, merge_datasets, resolve

__all__ = [
    "Conflict",
    "EngineStatus",
    "FieldDiff",
    "MergeResult",
    "SyncAction",
    "SyncEngine",
    "SyncResult",
    "SyncState",
    "diff",
    "merge_datasets",
    "resolve",
]
