"""
Tests for the backup manager.

Tests cover:
- Full and journal-based incremental backups
- Retention and index/payload reconciliation
- Integrity check: repair, restore proposal, unparseable data
- Restore
- Local/remote consistency check
- Emergency export, status and remote copies
"""

import json

import pytest
from helpers import seed, speaker

from speakersync.core.backup import BackupManager, BackupType, CorruptionKind
from speakersync.core.events import DataChanged
from speakersync.core.exceptions import BackupError, DatasetParseError
from speakersync.core.records import Dataset
from speakersync.core.storage import Keys, backup_key

DAY = 24 * 3600


@pytest.fixture
def manager(config, repository, bus, remote, clock):
    return BackupManager(config, repository, bus, remote=remote, clock=clock)


@pytest.fixture
def events(bus):
    recorded = {"backup_created": [], "restore_proposed": [], "dataset_restored": [], "sync_requested": []}
    for name, items in recorded.items():
        getattr(bus, name).subscribe(items.append)
    return recorded


def stored_ids(store):
    prefix = Keys.BACKUP_PREFIX
    return {key[len(prefix) :] for key in store.keys(prefix) if key != Keys.BACKUP_INDEX}


# ==============================================================================
# Creating backups
# ==============================================================================


class TestFullBackup:
    """Test create_full_backup()."""

    def test_creates_and_indexes_backup(self, manager, repository, store, events):
        seed(repository, Dataset(version=3, speakers=[speaker(1, "Ada")]))

        backup = manager.create_full_backup()

        assert backup is not None
        assert backup.id.startswith("backup_")
        assert backup.type is BackupType.FULL
        assert backup.version == 3
        assert backup.data["speakers"] == [speaker(1, "Ada")]
        assert backup.metadata["speakerCount"] == 1
        assert backup.verify_checksum()
        assert [b.id for b in manager.list_backups()] == [backup.id]
        assert store.get(backup_key(backup.id)) is not None
        assert events["backup_created"][0].summary.id == backup.id

    def test_ids_are_unique_within_one_millisecond(self, manager):
        first = manager.create_full_backup()
        second = manager.create_full_backup()
        assert first.id != second.id
        assert len(manager.list_backups()) == 2

    def test_truncates_covered_journal_entries(self, manager, repository, clock):
        repository.mark_changed("edit")
        clock.advance(1)
        manager.create_full_backup()
        assert repository.journal.entries() == []

    def test_backup_payload_excludes_credential(self, manager, store):
        backup = manager.create_full_backup()
        assert "ghp_test" not in store.get(backup_key(backup.id))


class TestIncrementalBackup:
    """Test journal-based incremental backups."""

    def test_nothing_to_record(self, manager):
        assert manager.create_incremental_backup() is None

    def test_records_changes_since_last_backup(self, manager, repository, clock):
        manager.create_full_backup()
        clock.advance(60)
        repository.mark_changed("edit")

        backup = manager.create_incremental_backup()

        assert backup is not None
        assert backup.id.startswith("incremental_")
        assert backup.type is BackupType.INCREMENTAL
        assert [c["reason"] for c in backup.changes] == ["edit"]
        assert backup.data is None
        assert backup.verify_checksum()

    def test_second_incremental_without_change_is_skipped(self, manager, repository, clock):
        clock.advance(60)
        repository.mark_changed("edit")
        assert manager.create_incremental_backup() is not None
        assert manager.create_incremental_backup() is None

    def test_data_changed_event_takes_incremental(self, manager, repository, bus, clock):
        clock.advance(60)
        repository.mark_changed("add")
        bus.data_changed.emit(DataChanged(reason="add"))

        backups = manager.list_backups()
        assert [b.type for b in backups] == [BackupType.INCREMENTAL]


# ==============================================================================
# Retention and index
# ==============================================================================


class TestRetention:
    """Test time-based retention and index reconciliation."""

    def test_old_backups_are_deleted(self, manager, store, clock):
        old = manager.create_full_backup()
        clock.advance(31 * DAY)
        new = manager.create_full_backup()

        assert [b.id for b in manager.list_backups()] == [new.id]
        assert store.get(backup_key(old.id)) is None
        assert stored_ids(store) == {new.id}

    def test_backups_within_window_are_kept(self, manager, clock):
        manager.create_full_backup()
        clock.advance(29 * DAY)
        manager.create_full_backup()
        assert len(manager.list_backups()) == 2

    def test_index_matches_stored_payloads(self, manager, store, clock):
        for _ in range(5):
            manager.create_full_backup()
            clock.advance(10 * DAY)
        assert {b.id for b in manager.list_backups()} == stored_ids(store)

    def test_orphan_payload_is_deleted(self, manager, store):
        backup = manager.create_full_backup()
        store.set(backup_key("backup_1"), store.get(backup_key(backup.id)))

        manager.list_backups()

        assert stored_ids(store) == {backup.id}

    def test_index_entry_without_payload_is_dropped(self, manager, store):
        kept = manager.create_full_backup()
        lost = manager.create_full_backup()
        store.delete(backup_key(lost.id))

        assert [b.id for b in manager.list_backups()] == [kept.id]

    def test_unreadable_index_is_rebuilt(self, manager, store):
        backup = manager.create_full_backup()
        store.set(Keys.BACKUP_INDEX, "not json")

        assert [b.id for b in manager.list_backups()] == [backup.id]

    def test_newest_first(self, manager, clock):
        first = manager.create_full_backup()
        clock.advance(60)
        second = manager.create_full_backup()
        assert [b.id for b in manager.list_backups()] == [second.id, first.id]


# ==============================================================================
# Integrity check
# ==============================================================================


class TestIntegrityCheck:
    """Test perform_integrity_check()."""

    @pytest.mark.asyncio
    async def test_healthy_dataset(self, manager, repository, remote):
        seed(repository, Dataset(speakers=[speaker(1, "Ada")]))
        remote.dataset = repository.load()

        report = await manager.perform_integrity_check()

        assert report.healthy
        assert report.emergency_backup_id is None
        assert manager.list_backups() == []
        assert report.consistent is True

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_repaired(self, manager, repository, events):
        seed(repository, Dataset(speakers=[{"id": 5, "name": "A"}, {"id": 5, "name": "B"}]))

        report = await manager.perform_integrity_check()

        assert [i.kind for i in report.issues] == [CorruptionKind.DUPLICATE_IDS]
        assert report.repaired
        assert report.emergency_backup_id is not None
        assert report.restore_candidate is None

        records = repository.load().speakers
        assert records[0] == {"id": 5, "name": "A"}
        assert records[1]["name"] == "B"
        assert records[1]["id"] > 5

        repair_backup = manager.load_backup(report.repair_backup_id)
        assert repair_backup.type is BackupType.FULL
        assert [r["id"] for r in repair_backup.data["speakers"]] == [5, records[1]["id"]]
        assert events["restore_proposed"] == []

    @pytest.mark.asyncio
    async def test_emergency_backup_holds_corrupt_state(self, manager, repository):
        seed(repository, Dataset(speakers=[{"id": 5, "name": "A"}, {"id": 5, "name": "B"}]))

        report = await manager.perform_integrity_check()

        emergency = manager.load_backup(report.emergency_backup_id)
        assert emergency.metadata["reason"] == "emergency"
        assert [r["id"] for r in emergency.data["speakers"]] == [5, 5]

    @pytest.mark.asyncio
    async def test_unrepairable_proposes_newest_intact_backup(
        self, manager, repository, clock, events
    ):
        seed(repository, Dataset(speakers=[speaker(1, "Ada")]))
        older = manager.create_full_backup()
        clock.advance(60)
        good = manager.create_full_backup()
        clock.advance(60)
        seed(repository, Dataset(speakers=[speaker(1, "Ada", status="Maybe")]))

        report = await manager.perform_integrity_check()

        assert not report.repaired
        assert report.restore_candidate is not None
        assert report.restore_candidate.id == good.id != older.id
        assert len(events["restore_proposed"]) == 1
        assert events["restore_proposed"][0].backup.id == good.id
        # never restored automatically
        assert repository.load().speakers == [speaker(1, "Ada", status="Maybe")]

    @pytest.mark.asyncio
    async def test_unparseable_data_is_corruption(self, manager, store):
        store.set(Keys.SPEAKERS, "{not json")

        report = await manager.perform_integrity_check()

        assert [i.kind for i in report.issues] == [CorruptionKind.SERIALIZATION_ERROR]
        emergency = manager.load_backup(report.emergency_backup_id)
        assert emergency.data["raw"][Keys.SPEAKERS] == "{not json"
        assert report.restore_candidate is None

    @pytest.mark.asyncio
    async def test_invalid_version_with_duplicate_ids_is_reported(
        self, manager, repository, store
    ):
        seed(repository, Dataset(speakers=[{"id": 5, "name": "A"}, {"id": 5, "name": "B"}]))
        store.set(Keys.VERSION, "-1")

        report = await manager.perform_integrity_check()

        assert [(i.kind, i.field) for i in report.issues] == [
            (CorruptionKind.INVALID_DATA_TYPE, "version"),
            (CorruptionKind.DUPLICATE_IDS, None),
        ]
        assert not report.repaired
        assert report.emergency_backup_id is not None
        assert report.consistent is None
        assert store.get(Keys.VERSION) == "-1"

    @pytest.mark.asyncio
    async def test_failed_reload_after_repair_is_reported(
        self, manager, repository, monkeypatch
    ):
        seed(repository, Dataset(speakers=[{"id": 5, "name": "A"}, {"id": 5, "name": "B"}]))
        updates = []
        manager.bus.local_data_updated.subscribe(updates.append)

        def unreadable():
            raise DatasetParseError("Stored version is not an integer: 'x'")

        monkeypatch.setattr(repository, "load", unreadable)

        report = await manager.perform_integrity_check()

        assert report.error.startswith("Repair failed")
        assert not report.repaired
        assert report.repair_backup_id is None
        assert updates == []

    def test_backup_with_bad_checksum_is_skipped(self, manager, repository, store):
        seed(repository, Dataset(speakers=[speaker(1, "Ada")]))
        backup = manager.create_full_backup()

        payload = json.loads(store.get(backup_key(backup.id)))
        payload["data"]["speakers"].append(speaker(2, "Intruder"))
        store.set(backup_key(backup.id), json.dumps(payload))

        assert manager.find_recent_good_backup() is None

    def test_incremental_backups_are_not_candidates(self, manager, repository, clock):
        clock.advance(60)
        repository.mark_changed("edit")
        manager.create_incremental_backup()
        assert manager.find_recent_good_backup() is None


# ==============================================================================
# Restore
# ==============================================================================


class TestRestore:
    """Test restore()."""

    def test_restore_replaces_dataset(self, manager, repository, clock, events):
        seed(repository, Dataset(version=4, speakers=[speaker(1, "Ada")]))
        backup = manager.create_full_backup()
        seed(repository, Dataset(version=6, speakers=[speaker(2, "Grace")]))
        clock.advance(60)

        dataset = manager.restore(backup.id)

        assert dataset.speakers == [speaker(1, "Ada")]
        assert dataset.version == 7
        assert dataset.last_modified == clock()

        local = repository.load()
        assert local.speakers == [speaker(1, "Ada")]
        assert local.version == 7
        assert events["dataset_restored"][0].backup_id == backup.id
        assert repository.journal.entries()[-1].reason == "restore"

    def test_unknown_backup(self, manager):
        with pytest.raises(BackupError, match="not found"):
            manager.restore("backup_0")

    def test_incremental_backup_cannot_be_restored(self, manager, repository, clock):
        clock.advance(60)
        repository.mark_changed("edit")
        backup = manager.create_incremental_backup()
        with pytest.raises(BackupError, match="not a full backup"):
            manager.restore(backup)


# ==============================================================================
# Consistency check
# ==============================================================================


class TestConsistency:
    """Test check_sync_consistency()."""

    @pytest.mark.asyncio
    async def test_match(self, manager, repository, remote, events):
        seed(repository, Dataset(version=2, speakers=[speaker(1, "Ada")]))
        remote.dataset = Dataset(version=2, speakers=[speaker(1, "Ada")], metadata={"other": 1})

        assert await manager.check_sync_consistency() is True
        assert events["sync_requested"] == []

    @pytest.mark.asyncio
    async def test_mismatch_requests_sync(self, manager, repository, remote, events):
        seed(repository, Dataset(version=2, speakers=[speaker(1, "Ada")]))
        remote.dataset = Dataset(version=2, speakers=[speaker(1, "Ada L.")])

        assert await manager.check_sync_consistency() is False
        assert len(events["sync_requested"]) == 1
        assert events["sync_requested"][0].reason == "checksum mismatch"

    @pytest.mark.asyncio
    async def test_remote_failure(self, manager, remote, network_error, events):
        remote.fail_with = network_error
        assert await manager.check_sync_consistency() is None
        assert events["sync_requested"] == []

    @pytest.mark.asyncio
    async def test_not_configured(self, unconfigured, repository, bus, remote):
        manager = BackupManager(unconfigured, repository, bus, remote=remote)
        assert await manager.check_sync_consistency() is None
        assert remote.fetch_calls == 0


# ==============================================================================
# Export, status, remote copies, lifecycle
# ==============================================================================


class TestExportAndStatus:
    """Test export_emergency_backup(), get_status() and remote copies."""

    def test_export(self, manager, repository, tmp_path):
        seed(repository, Dataset(speakers=[speaker(1, "Ada")]))
        manager.create_full_backup()

        path = manager.export_emergency_backup(tmp_path / "out" / "export.json")

        text = path.read_text()
        document = json.loads(text)
        assert document["speakers"] == [speaker(1, "Ada")]
        assert Keys.CONFIG not in document["store"]
        assert len(document["backups"]) == 1
        assert "ghp_test" not in text

    def test_status(self, manager, clock):
        assert manager.get_status().total_backups == 0

        first = manager.create_full_backup()
        clock.advance(60)
        second = manager.create_full_backup()

        status = manager.get_status()
        assert status.total_backups == 2
        assert status.last_backup == second.timestamp
        assert status.oldest_backup == first.timestamp
        assert status.disk_usage > 0

    @pytest.mark.asyncio
    async def test_remote_copy(self, manager, config, remote):
        config.update(remote_backups=True)
        backup = manager.create_full_backup()
        # drop the background copy; upload directly instead
        await manager.stop()

        assert await manager.store_remote_backup(backup) is True
        assert list(remote.files) == ["backup_2024-05-01.json"]
        assert json.loads(remote.files["backup_2024-05-01.json"])["id"] == backup.id

    @pytest.mark.asyncio
    async def test_remote_copy_failure_is_not_raised(self, manager, remote, network_error):
        backup = manager.create_full_backup()
        remote.fail_with = network_error
        assert await manager.store_remote_backup(backup) is False

    @pytest.mark.asyncio
    async def test_start_takes_startup_backup(self, manager):
        manager.start()
        try:
            backups = manager.list_backups()
            assert len(backups) == 1
            assert manager.load_backup(backups[0].id).metadata["reason"] == "startup"
        finally:
            await manager.stop()
        assert not manager._tasks
