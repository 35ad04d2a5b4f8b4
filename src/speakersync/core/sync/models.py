"""
Data models for the sync engine.

Defines Pydantic models for conflicts, sync results and engine status.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from speakersync.core.config.models import ConflictStrategy
from speakersync.core.records.models import Dataset


class SyncState(str, Enum):
    """Engine state. A failed attempt also returns to IDLE."""

    IDLE = "idle"
    SYNCING = "syncing"


class SyncAction(str, Enum):
    """What a successful sync attempt did."""

    PUSH = "push"
    PULL = "pull"
    NONE = "none"


class FieldDiff(BaseModel):
    """One field whose value differs between the local and remote record."""

    field: str
    local: Any = None
    remote: Any = None


class Conflict(BaseModel):
    """
    A record changed on both sides.

    Produced during a merge and only surfaced to the caller, never persisted.
    """

    record_id: Any = Field(description="Identifier of the colliding record")
    record_name: str | None = Field(default=None, description="Display name, local first")
    differences: list[FieldDiff] = Field(default_factory=list)
    resolution: ConflictStrategy = Field(default=ConflictStrategy.MERGE)

    @property
    def fields(self) -> list[str]:
        return [d.field for d in self.differences]


class MergeResult(BaseModel):
    """Merged dataset plus the conflicts found while building it."""

    dataset: Dataset
    conflicts: list[Conflict] = Field(default_factory=list)


class SyncResult(BaseModel):
    """
    Result of one successful sync attempt.
    """

    action: SyncAction
    conflicts: list[Conflict] = Field(default_factory=list)
    local_version: int | None = None
    remote_version: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def summary(self) -> str:
        """Generate a human-readable summary of the result."""
        if self.action is SyncAction.PUSH:
            text = f"pushed local v{self.local_version} to remote"
        elif self.action is SyncAction.PULL:
            text = f"merged remote v{self.remote_version} into local"
        else:
            text = "already up to date"
        if self.conflicts:
            text += f", {len(self.conflicts)} conflicts resolved"
        return text


class EngineStatus(BaseModel):
    """Snapshot of the engine for status displays."""

    configured: bool
    syncing: bool
    online: bool
    auto_sync: bool
    last_sync: datetime | None = None
    pending_changes: int = 0
    retry_count: int = 0
    last_error: str | None = None
