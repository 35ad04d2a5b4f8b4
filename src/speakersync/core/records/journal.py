"""
Append-only change journal.

Every local mutation that should be synced appends one entry. Incremental
backups are built from the entries newer than the newest backup, and a
full backup truncates everything it already covers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from pydantic import BaseModel, Field, ValidationError

from speakersync.core.storage import KeyValueStore, Keys

logger = logging.getLogger(__name__)


class ChangeEntry(BaseModel):
    """One recorded local mutation."""

    timestamp: datetime
    version: int = Field(ge=0)
    record_count: int = Field(ge=0)
    reason: str = "update"


class ChangeJournal:
    """Journal persisted as a JSON list under ``change_journal``."""

    def __init__(self, store: KeyValueStore, limit: int = 500) -> None:
        self.store = store
        self.limit = limit

    def entries(self) -> list[ChangeEntry]:
        raw = self.store.get(Keys.CHANGE_JOURNAL)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [ChangeEntry.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning("Discarding unreadable change journal: %s", e)
            return []

    def _write(self, entries: list[ChangeEntry]) -> None:
        payload = [entry.model_dump(mode="json") for entry in entries[-self.limit :]]
        self.store.set(Keys.CHANGE_JOURNAL, json.dumps(payload))

    def append(self, entry: ChangeEntry) -> None:
        entries = self.entries()
        entries.append(entry)
        self._write(entries)

    def entries_since(self, since: datetime | None) -> list[ChangeEntry]:
        """Entries strictly newer than ``since`` (all entries when None)."""
        entries = self.entries()
        if since is None:
            return entries
        return [entry for entry in entries if entry.timestamp > since]

    def truncate_before(self, cutoff: datetime) -> int:
        """Drop entries at or before ``cutoff``. Returns how many were dropped."""
        entries = self.entries()
        kept = [entry for entry in entries if entry.timestamp > cutoff]
        dropped = len(entries) - len(kept)
        if dropped:
            self._write(kept)
        return dropped
