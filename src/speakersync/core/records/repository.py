"""
Local dataset persistence.

The dataset is spread over three keys, as the record owner writes it:
the record list (``speakers``), the last-modified timestamp and the version
counter.
"""

from __future__ import annotations

import json
import logging
import socket
from collections.abc import Callable
from datetime import datetime
from typing import Any

from speakersync.core.exceptions import DatasetParseError
from speakersync.core.records.journal import ChangeEntry, ChangeJournal
from speakersync.core.records.models import Dataset
from speakersync.core.storage import KeyValueStore, Keys
from speakersync.core.timeutil import EPOCH, format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class DatasetRepository:
    """
    Read and write the local dataset in the key-value store.

    Example:
        >>> repo = DatasetRepository(MemoryStore())
        >>> repo.save_records([{"id": 1, "name": "Ada"}])
        >>> repo.load().version
        1
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        journal_limit: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock
        self.journal = ChangeJournal(store, limit=journal_limit)

    def load_raw(self) -> dict[str, Any]:
        """
        Load the dataset without validating record structure.

        Used by integrity checks, which must see corrupt records as they are.

        Raises:
            DatasetParseError: If a stored value cannot be parsed at all.
        """
        raw_speakers = self.store.get(Keys.SPEAKERS)
        try:
            speakers = json.loads(raw_speakers) if raw_speakers else []
        except json.JSONDecodeError as e:
            raise DatasetParseError(f"Stored record list is not valid JSON: {e}") from e

        raw_version = self.store.get(Keys.VERSION)
        try:
            version = int(raw_version) if raw_version else 1
        except ValueError as e:
            raise DatasetParseError(f"Stored version is not an integer: {raw_version!r}") from e

        raw_modified = self.store.get(Keys.LAST_MODIFIED)
        try:
            last_modified = parse_timestamp(raw_modified) if raw_modified else EPOCH
        except ValueError as e:
            raise DatasetParseError(f"Stored timestamp is invalid: {raw_modified!r}") from e

        return {
            "version": version,
            "lastModified": format_timestamp(last_modified),
            "speakers": speakers,
            "metadata": {"source": "local", "host": socket.gethostname()},
        }

    def load(self) -> Dataset:
        """
        Load the local dataset.

        A dataset that was never modified reports the Unix epoch as its
        last-modified time, so it never wins against a remote copy.

        Raises:
            DatasetParseError: If stored values are unparseable or the record
                collection is not a list of objects.
        """
        return Dataset.from_document(self.load_raw())

    def save(self, dataset: Dataset, *, reason: str | None = None) -> None:
        """
        Persist a whole dataset (records, timestamp and version).

        Args:
            dataset: Dataset to write
            reason: When given, the write is also recorded in the change journal
        """
        self.store.set(Keys.SPEAKERS, json.dumps(dataset.speakers))
        self.store.set(Keys.LAST_MODIFIED, format_timestamp(dataset.last_modified))
        self.store.set(Keys.VERSION, str(dataset.version))
        logger.debug(
            "Saved dataset v%d with %d records", dataset.version, len(dataset.speakers)
        )
        if reason is not None:
            self.journal.append(
                ChangeEntry(
                    timestamp=dataset.last_modified,
                    version=dataset.version,
                    record_count=len(dataset.speakers),
                    reason=reason,
                )
            )

    def save_records(
        self, records: list[dict[str, Any]], *, reason: str = "update"
    ) -> datetime:
        """Replace the record list and mark the dataset changed."""
        self.store.set(Keys.SPEAKERS, json.dumps(records))
        return self.mark_changed(reason, record_count=len(records))

    def mark_changed(self, reason: str = "update", *, record_count: int | None = None) -> datetime:
        """
        Stamp the dataset as modified now and journal the change.

        Returns:
            The new last-modified timestamp.
        """
        now = self.clock()
        self.store.set(Keys.LAST_MODIFIED, format_timestamp(now))

        if record_count is None:
            try:
                record_count = len(self.load_raw()["speakers"])
            except (DatasetParseError, TypeError):
                record_count = 0

        raw_version = self.store.get(Keys.VERSION)
        version = int(raw_version) if raw_version and raw_version.isdigit() else 1
        self.journal.append(
            ChangeEntry(timestamp=now, version=version, record_count=record_count, reason=reason)
        )
        return now
