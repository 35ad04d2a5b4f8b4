"""
Tests for the dataset model, its local persistence and the change journal.
"""

import json

import pytest
from helpers import speaker, ts

from speakersync.core.exceptions import DatasetParseError
from speakersync.core.records import (
    OPTIONAL_FIELDS,
    ChangeEntry,
    ChangeJournal,
    Dataset,
    DatasetRepository,
)
from speakersync.core.storage import Keys, MemoryStore
from speakersync.core.timeutil import EPOCH

# ==============================================================================
# Dataset
# ==============================================================================


class TestDataset:
    """Test parsing and serializing the dataset document."""

    def test_from_document_string(self):
        dataset = Dataset.from_document(
            '{"version": 3, "lastModified": "2024-05-01T10:00:00.000Z",'
            ' "speakers": [{"id": 1, "name": "Ada"}]}'
        )
        assert dataset.version == 3
        assert dataset.last_modified == ts("2024-05-01T10:00:00")
        assert dataset.speakers == [{"id": 1, "name": "Ada"}]
        assert dataset.metadata == {}

    def test_missing_fields_use_defaults(self):
        dataset = Dataset.from_document({})
        assert dataset.version == 1
        assert dataset.last_modified == EPOCH
        assert dataset.speakers == []

    @pytest.mark.parametrize(
        "payload",
        [
            "{not json",
            "[1, 2]",
            {"speakers": {"1": "Ada"}},
            {"speakers": ["Ada"]},
            {"version": -1},
            {"lastModified": "yesterday"},
        ],
    )
    def test_bad_documents_raise(self, payload):
        with pytest.raises(DatasetParseError):
            Dataset.from_document(payload)

    def test_to_document_shape(self):
        dataset = Dataset(
            version=2,
            last_modified=ts("2024-05-01T10:00:00"),
            speakers=[speaker(1, "Ada")],
            metadata={"source": "local"},
        )
        assert dataset.to_document() == {
            "version": 2,
            "lastModified": "2024-05-01T10:00:00.000Z",
            "speakers": [speaker(1, "Ada")],
            "metadata": {"source": "local"},
        }

    def test_content_drops_metadata(self):
        dataset = Dataset(metadata={"host": "laptop"})
        assert "metadata" not in dataset.content()

    def test_document_round_trip(self):
        dataset = Dataset(version=4, last_modified=ts("2024-05-01T10:00:00"), speakers=[speaker(1, "Ada")])
        assert Dataset.from_document(json.dumps(dataset.to_document())) == dataset

    def test_optional_fields_use_wire_names(self):
        assert "jobTitle" in OPTIONAL_FIELDS
        assert "dateContacted" in OPTIONAL_FIELDS
        assert "id" not in OPTIONAL_FIELDS


# ==============================================================================
# DatasetRepository
# ==============================================================================


class TestDatasetRepository:
    """Test local persistence of the dataset."""

    def test_empty_store_is_never_modified(self, repository):
        dataset = repository.load()
        assert dataset.version == 1
        assert dataset.last_modified == EPOCH
        assert dataset.speakers == []

    def test_save_writes_three_keys(self, repository, store):
        repository.save(
            Dataset(version=5, last_modified=ts("2024-05-01T10:00:00"), speakers=[speaker(1, "Ada")])
        )
        assert json.loads(store.get(Keys.SPEAKERS)) == [speaker(1, "Ada")]
        assert store.get(Keys.VERSION) == "5"
        assert store.get(Keys.LAST_MODIFIED) == "2024-05-01T10:00:00.000Z"

    def test_save_without_reason_is_not_journaled(self, repository):
        repository.save(Dataset(version=2, last_modified=ts("2024-05-01T10:00:00")))
        assert repository.journal.entries() == []

    def test_save_with_reason_is_journaled(self, repository):
        repository.save(
            Dataset(version=2, last_modified=ts("2024-05-01T10:00:00"), speakers=[speaker(1, "Ada")]),
            reason="sync",
        )
        [entry] = repository.journal.entries()
        assert entry.reason == "sync"
        assert entry.version == 2
        assert entry.record_count == 1

    def test_save_records_stamps_clock(self, repository, clock):
        stamped = repository.save_records([speaker(1, "Ada"), speaker(2, "Grace")], reason="add")
        assert stamped == clock()

        dataset = repository.load()
        assert dataset.last_modified == clock()
        assert len(dataset.speakers) == 2
        assert repository.journal.entries()[0].record_count == 2

    def test_mark_changed_counts_stored_records(self, repository, store):
        store.set(Keys.SPEAKERS, json.dumps([speaker(1, "Ada")]))
        repository.mark_changed("edit")
        assert repository.journal.entries()[0].record_count == 1

    def test_load_raw_keeps_corrupt_records(self, repository, store):
        store.set(Keys.SPEAKERS, json.dumps([speaker(1, "Ada"), "garbage"]))
        raw = repository.load_raw()
        assert raw["speakers"][1] == "garbage"
        with pytest.raises(DatasetParseError):
            repository.load()

    def test_load_raw_reports_local_metadata(self, repository):
        assert repository.load_raw()["metadata"]["source"] == "local"

    @pytest.mark.parametrize(
        "key,value",
        [
            (Keys.SPEAKERS, "{oops"),
            (Keys.VERSION, "three"),
            (Keys.LAST_MODIFIED, "not a date"),
        ],
    )
    def test_unparseable_values_raise(self, repository, store, key, value):
        store.set(key, value)
        with pytest.raises(DatasetParseError):
            repository.load_raw()


# ==============================================================================
# ChangeJournal
# ==============================================================================


def entry(value, reason="update"):
    return ChangeEntry(timestamp=ts(value), version=1, record_count=0, reason=reason)


class TestChangeJournal:
    """Test the change journal."""

    def test_entries_since(self):
        journal = ChangeJournal(MemoryStore())
        journal.append(entry("2024-05-01T10:00:00", "a"))
        journal.append(entry("2024-05-01T11:00:00", "b"))

        assert [e.reason for e in journal.entries_since(ts("2024-05-01T10:00:00"))] == ["b"]
        assert len(journal.entries_since(None)) == 2

    def test_truncate_before(self):
        journal = ChangeJournal(MemoryStore())
        journal.append(entry("2024-05-01T10:00:00"))
        journal.append(entry("2024-05-01T11:00:00"))
        journal.append(entry("2024-05-01T12:00:00"))

        assert journal.truncate_before(ts("2024-05-01T11:00:00")) == 2
        assert [e.timestamp for e in journal.entries()] == [ts("2024-05-01T12:00:00")]
        assert journal.truncate_before(ts("2024-05-01T11:00:00")) == 0

    def test_limit_keeps_newest(self):
        journal = ChangeJournal(MemoryStore(), limit=2)
        for hour in (9, 10, 11):
            journal.append(entry(f"2024-05-01T{hour:02d}:00:00", str(hour)))
        assert [e.reason for e in journal.entries()] == ["10", "11"]

    def test_unreadable_journal_is_discarded(self):
        store = MemoryStore({Keys.CHANGE_JOURNAL: '[{"timestamp": "nope"}]'})
        journal = ChangeJournal(store)
        assert journal.entries() == []
        journal.append(entry("2024-05-01T10:00:00"))
        assert len(journal.entries()) == 1

    def test_repository_journal_limit(self, clock):
        repository = DatasetRepository(MemoryStore(), journal_limit=1, clock=clock)
        repository.mark_changed("first")
        clock.advance()
        repository.mark_changed("second")
        assert [e.reason for e in repository.journal.entries()] == ["second"]
