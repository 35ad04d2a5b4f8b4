"""
Backup Manager.

Keeps timestamped snapshots of the local dataset in the same key-value
store, checks the live data for corruption, repairs what can be repaired
mechanically, and proposes a restore otherwise.

Storage layout:
    backup_index              JSON list of BackupSummary, newest first
    backup_<backup id>        one Backup per entry

The index is the authority for listing. On every listing, entries whose
payload is gone are dropped and payloads without an entry are deleted.

Example:
    >>> manager = BackupManager(config, repository, bus)
    >>> backup = manager.create_full_backup()
    >>> report = await manager.perform_integrity_check()
    >>> if report.restore_candidate:
    ...     manager.restore(report.restore_candidate.id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from collections.abc import Callable, Coroutine
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from speakersync.core.backup.checksum import calculate_checksum
from speakersync.core.backup.integrity import (
    detect_corruption,
    is_repairable,
    repair_records,
    validate_structure,
)
from speakersync.core.backup.models import (
    Backup,
    BackupStatus,
    BackupSummary,
    BackupType,
    CorruptionIssue,
    CorruptionKind,
    IntegrityReport,
)
from speakersync.core.config import BackupConfig, ConfigManager
from speakersync.core.events import (
    BackupCreated,
    DataChanged,
    DatasetRestored,
    EventBus,
    IntegrityCheckRequested,
    LocalDataUpdated,
    RestoreProposed,
    SyncRequested,
)
from speakersync.core.exceptions import BackupError, DatasetParseError, SpeakerSyncError
from speakersync.core.records import Dataset, DatasetRepository
from speakersync.core.remote import RemoteStore
from speakersync.core.storage import Keys, backup_key
from speakersync.core.timeutil import format_timestamp, to_millis, utcnow

logger = logging.getLogger(__name__)

CONSISTENCY_SYNC_DELAY = 1.0


class BackupManager:
    """
    Snapshots, retention, integrity checks and restore for the local dataset.

    Incremental backups are taken whenever the record owner reports a
    change or a merge is applied; they hold the change journal entries
    newer than the newest backup.
    """

    def __init__(
        self,
        config: ConfigManager,
        repository: DatasetRepository,
        bus: EventBus,
        *,
        remote: RemoteStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the manager.

        Args:
            config: Configuration manager (backup settings, remote credentials)
            repository: Local dataset repository; its store also holds backups
            bus: Event bus to publish on and listen to
            remote: Remote store used for consistency checks and, when it
                supports ``put_file``, remote copies of full backups
            clock: Time source
        """
        self.config = config
        self.repository = repository
        self.store = repository.store
        self.bus = bus
        self.remote = remote
        self.clock = clock

        self._tasks: set[asyncio.Task[Any]] = set()
        self._last_id_millis = 0

        bus.data_changed.subscribe(self._on_data_changed)
        bus.local_data_updated.subscribe(self._on_local_data_updated)
        bus.integrity_check_requested.subscribe(self._on_integrity_check_requested)

    @property
    def settings(self) -> BackupConfig:
        return self.config.config.backup

    # -- index --------------------------------------------------------------

    def _read_index(self) -> list[BackupSummary]:
        raw = self.store.get(Keys.BACKUP_INDEX)
        if not raw:
            return []
        try:
            return [BackupSummary.model_validate(item) for item in json.loads(raw)]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning("Backup index is unreadable, rebuilding: %s", e)
            return self._rebuild_index()

    def _write_index(self, entries: list[BackupSummary]) -> None:
        entries = sorted(entries, key=lambda e: e.timestamp, reverse=True)
        self.store.set(
            Keys.BACKUP_INDEX,
            json.dumps([entry.model_dump(mode="json") for entry in entries]),
        )

    def _payload_ids(self) -> list[str]:
        prefix = Keys.BACKUP_PREFIX
        return [
            key[len(prefix) :]
            for key in self.store.keys(prefix)
            if key != Keys.BACKUP_INDEX
        ]

    def _rebuild_index(self) -> list[BackupSummary]:
        entries = []
        for backup_id in self._payload_ids():
            try:
                entries.append(self.load_backup(backup_id).summary())
            except BackupError as e:
                logger.warning("Dropping unreadable backup %s: %s", backup_id, e)
                self.store.delete(backup_key(backup_id))
        self._write_index(entries)
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def reconcile_index(self) -> list[BackupSummary]:
        """
        Make the index and the stored payloads agree.

        Returns:
            The reconciled index, newest first.
        """
        entries = self._read_index()
        stored = set(self._payload_ids())

        kept = [entry for entry in entries if entry.id in stored]
        indexed = {entry.id for entry in kept}
        orphans = stored - indexed

        for backup_id in orphans:
            logger.info("Deleting orphaned backup payload %s", backup_id)
            self.store.delete(backup_key(backup_id))
        if len(kept) != len(entries):
            logger.info("Dropped %d index entries without payload", len(entries) - len(kept))
        if orphans or len(kept) != len(entries):
            self._write_index(kept)
        return sorted(kept, key=lambda e: e.timestamp, reverse=True)

    def list_backups(self) -> list[BackupSummary]:
        """All backups, newest first."""
        return self.reconcile_index()

    def load_backup(self, backup_id: str) -> Backup:
        """
        Load one stored backup.

        Raises:
            BackupError: If the backup does not exist or cannot be parsed.
        """
        raw = self.store.get(backup_key(backup_id))
        if raw is None:
            raise BackupError(f"Backup {backup_id} not found", backup_id=backup_id)
        try:
            return Backup.model_validate_json(raw)
        except ValidationError as e:
            raise BackupError(f"Backup {backup_id} is unreadable: {e}", backup_id=backup_id) from e

    # -- creating -----------------------------------------------------------

    def _new_id(self, prefix: str, timestamp: datetime) -> str:
        millis = max(to_millis(timestamp), self._last_id_millis + 1)
        # another process sharing the store may have used this millisecond
        while self.store.get(backup_key(f"{prefix}_{millis}")) is not None:
            millis += 1
        self._last_id_millis = millis
        return f"{prefix}_{millis}"

    def _store_backup(self, backup: Backup) -> None:
        self.store.set(backup_key(backup.id), backup.model_dump_json())
        entries = [e for e in self._read_index() if e.id != backup.id]
        entries.append(backup.summary())
        self._write_index(entries)
        self.clean_old_backups()
        self.bus.backup_created.emit(BackupCreated(summary=backup.summary()))

    def gather_backup_data(self) -> dict[str, Any]:
        """
        Snapshot the live dataset as stored, without validating records.

        Raises:
            DatasetParseError: If the stored values cannot be parsed at all.
        """
        return self.repository.load_raw()

    def _gather_tolerant(self) -> dict[str, Any]:
        try:
            return self.gather_backup_data()
        except DatasetParseError as e:
            logger.warning("Backing up unparseable dataset verbatim: %s", e)
            return {
                "version": 0,
                "raw": {
                    key: self.store.get(key)
                    for key in (Keys.SPEAKERS, Keys.VERSION, Keys.LAST_MODIFIED)
                },
            }

    def _full_backup(self, data: dict[str, Any], reason: str) -> Backup:
        timestamp = self.clock()
        speakers = data.get("speakers")
        backup = Backup(
            id=self._new_id("backup", timestamp),
            type=BackupType.FULL,
            timestamp=timestamp,
            version=data.get("version") if isinstance(data.get("version"), int) else 0,
            checksum=calculate_checksum(data),
            data=data,
            metadata={
                "reason": reason,
                "host": socket.gethostname(),
                "speakerCount": len(speakers) if isinstance(speakers, list) else 0,
            },
        )
        self._store_backup(backup)
        logger.info("Created %s backup %s (%s)", backup.type.value, backup.id, reason)
        return backup

    def create_full_backup(self, reason: str = "scheduled") -> Backup | None:
        """
        Snapshot the whole dataset.

        A successful full backup covers every journal entry up to its
        timestamp, so those entries are dropped.

        Returns:
            The new backup, or None if it could not be stored.
        """
        try:
            backup = self._full_backup(self.gather_backup_data(), reason)
            self.repository.journal.truncate_before(backup.timestamp)
        except SpeakerSyncError as e:
            logger.error("Full backup failed: %s", e)
            return None
        self._store_remote_copy(backup)
        return backup

    def create_emergency_backup(self) -> Backup | None:
        """Snapshot the dataset as-is, even when it does not parse."""
        try:
            return self._full_backup(self._gather_tolerant(), "emergency")
        except SpeakerSyncError as e:
            logger.error("Emergency backup failed: %s", e)
            return None

    def create_incremental_backup(self) -> Backup | None:
        """
        Store the change journal entries newer than the newest backup.

        Returns:
            The new backup, or None when there was nothing to record.
        """
        try:
            entries = self._read_index()
            since = entries[0].timestamp if entries else None
            changes = self.repository.journal.entries_since(since)
            if not changes:
                logger.debug("No changes since last backup; incremental skipped")
                return None

            payload = [change.model_dump(mode="json") for change in changes]
            timestamp = self.clock()
            backup = Backup(
                id=self._new_id("incremental", timestamp),
                type=BackupType.INCREMENTAL,
                timestamp=max(timestamp, changes[-1].timestamp),
                version=changes[-1].version,
                checksum=calculate_checksum(payload),
                changes=payload,
                metadata={"changeCount": len(changes), "host": socket.gethostname()},
            )
            self._store_backup(backup)
        except SpeakerSyncError as e:
            logger.error("Incremental backup failed: %s", e)
            return None
        logger.info("Created incremental backup %s (%d changes)", backup.id, len(changes))
        return backup

    def clean_old_backups(self) -> int:
        """
        Delete backups older than the retention window.

        Returns:
            Number of backups deleted.
        """
        cutoff = self.clock() - timedelta(days=self.settings.max_backups)
        entries = self._read_index()
        expired = [entry for entry in entries if entry.timestamp < cutoff]
        if not expired:
            return 0
        for entry in expired:
            self.store.delete(backup_key(entry.id))
        self._write_index([entry for entry in entries if entry.timestamp >= cutoff])
        logger.info("Deleted %d backup(s) older than %d days", len(expired), self.settings.max_backups)
        return len(expired)

    def _on_data_changed(self, event: DataChanged) -> None:
        self.create_incremental_backup()

    def _on_local_data_updated(self, event: LocalDataUpdated) -> None:
        self.create_incremental_backup()

    def _on_integrity_check_requested(self, event: IntegrityCheckRequested) -> None:
        logger.warning("Integrity check requested for %s data: %s", event.source, event.reason)
        self._spawn(self.perform_integrity_check())

    # -- remote copies ------------------------------------------------------

    def _store_remote_copy(self, backup: Backup) -> None:
        if not (self.config.config.remote_backups and self.config.is_configured()):
            return
        if self.remote is None or not hasattr(self.remote, "put_file"):
            return
        self._spawn(self.store_remote_backup(backup))

    async def store_remote_backup(self, backup: Backup) -> bool:
        """
        Write a full backup as its own file in the remote document.

        Failures are logged, never raised.
        """
        file_name = f"backup_{backup.timestamp.strftime('%Y-%m-%d')}.json"
        try:
            await self.remote.put_file(file_name, backup.model_dump_json(indent=2))  # type: ignore[union-attr]
        except SpeakerSyncError as e:
            logger.warning("Remote backup %s failed: %s", file_name, e)
            return False
        logger.info("Stored remote backup %s", file_name)
        return True

    # -- integrity ----------------------------------------------------------

    async def perform_integrity_check(self) -> IntegrityReport:
        """
        Check the live dataset and react to what is found.

        On corruption an emergency backup is taken first. Identifier and
        name defects are repaired in place and followed by a fresh full
        backup; anything else looks for the newest backup that passes every
        check and proposes it via ``restore_proposed``. Restoring is never
        automatic.
        """
        report = IntegrityReport(checked_at=self.clock())
        try:
            payload: dict[str, Any] | None = self.repository.load_raw()
        except DatasetParseError as e:
            payload = None
            report.issues = [
                CorruptionIssue(kind=CorruptionKind.SERIALIZATION_ERROR, message=str(e))
            ]

        if payload is not None:
            report.issues = detect_corruption(payload)
            report.validation = validate_structure(payload)
            for warning in report.validation.warnings:
                logger.debug("Validation: %s", warning)

        if report.issues:
            logger.warning(
                "Data corruption detected: %s", "; ".join(issue.message for issue in report.issues)
            )
            emergency = self.create_emergency_backup()
            report.emergency_backup_id = emergency.id if emergency else None

            if payload is not None and is_repairable(report.issues):
                self._repair(payload, report)
            else:
                candidate = self.find_recent_good_backup()
                if candidate is None:
                    logger.error("No intact backup available to restore from")
                else:
                    report.restore_candidate = candidate.summary()
                    self.bus.restore_proposed.emit(
                        RestoreProposed(backup=candidate, issues=report.issues)
                    )
        else:
            logger.debug("Integrity check passed")

        report.consistent = await self.check_sync_consistency()
        return report

    def _repair(self, payload: dict[str, Any], report: IntegrityReport) -> None:
        repair = repair_records(payload["speakers"])
        try:
            self.repository.save_records(repair.records, reason="repair")
            dataset = self.repository.load()
        except SpeakerSyncError as e:
            report.error = f"Repair failed: {e}"
            logger.error(report.error)
            return
        logger.info(
            "Repaired dataset: %d id(s) reassigned, %d name(s) filled in",
            len(repair.reassigned_ids),
            len(repair.named),
        )
        report.repaired = True
        backup = self.create_full_backup(reason="repair")
        report.repair_backup_id = backup.id if backup else None
        self.bus.local_data_updated.emit(LocalDataUpdated(dataset=dataset))

    def find_recent_good_backup(self) -> Backup | None:
        """Newest full backup whose checksum verifies and whose data is sound."""
        for entry in self.list_backups():
            if entry.type is not BackupType.FULL:
                continue
            try:
                backup = self.load_backup(entry.id)
            except BackupError as e:
                logger.warning("Skipping backup %s: %s", entry.id, e)
                continue
            if backup.data is None or "speakers" not in backup.data:
                continue
            if not backup.verify_checksum():
                logger.warning("Skipping backup %s: checksum mismatch", entry.id)
                continue
            if detect_corruption(backup.data):
                logger.debug("Skipping backup %s: contains corrupt data", entry.id)
                continue
            return backup
        return None

    def restore(self, backup: Backup | str) -> Dataset:
        """
        Replace the live dataset with a full backup.

        The restored dataset gets a version above both the backup's and the
        current one, and a fresh timestamp, so it wins the next sync.

        Raises:
            BackupError: If the backup is missing, incremental, fails its
                checksum or holds no usable record set.
        """
        if isinstance(backup, str):
            backup = self.load_backup(backup)
        if backup.type is not BackupType.FULL or backup.data is None:
            raise BackupError(f"Backup {backup.id} is not a full backup", backup_id=backup.id)
        if not backup.verify_checksum():
            raise BackupError(f"Backup {backup.id} failed its checksum", backup_id=backup.id)
        speakers = backup.data.get("speakers")
        if not isinstance(speakers, list):
            raise BackupError(f"Backup {backup.id} holds no record set", backup_id=backup.id)

        try:
            current_version = self.repository.load_raw()["version"]
        except DatasetParseError:
            current_version = 0

        dataset = Dataset(
            version=max(current_version, backup.version) + 1,
            last_modified=self.clock(),
            speakers=speakers,
            metadata=backup.data.get("metadata") or {},
        )
        self.repository.save(dataset, reason="restore")
        logger.info("Restored dataset from backup %s as v%d", backup.id, dataset.version)
        self.bus.dataset_restored.emit(DatasetRestored(backup_id=backup.id, dataset=dataset))
        return dataset

    async def check_sync_consistency(self) -> bool | None:
        """
        Compare checksums of the local and remote record sets.

        On mismatch a sync is requested on the bus.

        Returns:
            True/False for match/mismatch, None if the check could not run.
        """
        if self.remote is None or not self.config.is_configured():
            return None
        try:
            local = self.repository.load()
            remote = await self.remote.fetch()
        except SpeakerSyncError as e:
            logger.warning("Could not check sync consistency: %s", e)
            return None

        if calculate_checksum(local.content()) == calculate_checksum(remote.content()):
            return True
        logger.warning("Local and remote data differ; requesting sync")
        self.bus.sync_requested.emit(
            SyncRequested(reason="checksum mismatch", delay=CONSISTENCY_SYNC_DELAY)
        )
        return False

    # -- export / status ----------------------------------------------------

    def export_emergency_backup(self, path: Path) -> Path:
        """
        Write every persisted dataset key to ``path`` as one JSON file.

        The configuration is left out since it holds the credential.

        Raises:
            BackupError: If the file cannot be written.
        """
        values = {
            key: self.store.get(key)
            for key in self.store.keys()
            if key != Keys.CONFIG and not key.startswith(Keys.BACKUP_PREFIX)
        }
        try:
            speakers = json.loads(values.get(Keys.SPEAKERS) or "[]")
        except json.JSONDecodeError:
            speakers = None
        document = {
            "timestamp": format_timestamp(self.clock()),
            "host": socket.gethostname(),
            "speakers": speakers,
            "store": values,
            "backups": [entry.model_dump(mode="json") for entry in self._read_index()],
        }

        path = Path(path)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            temp_path.replace(path)
        except OSError as e:
            raise BackupError(f"Could not write emergency export to {path}: {e}") from e
        logger.info("Exported emergency backup to %s", path)
        return path

    def get_status(self) -> BackupStatus:
        entries = self.list_backups()
        disk_usage = 0
        for entry in entries:
            raw = self.store.get(backup_key(entry.id))
            disk_usage += len(raw.encode("utf-8")) if raw else 0
        return BackupStatus(
            total_backups=len(entries),
            last_backup=entries[0].timestamp if entries else None,
            oldest_backup=entries[-1].timestamp if entries else None,
            disk_usage=disk_usage,
        )

    # -- lifecycle ----------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _periodic(self, interval: float, action: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            result = action()
            if asyncio.iscoroutine(result):
                await result

    async def _delayed_integrity_check(self) -> None:
        await asyncio.sleep(self.settings.integrity_check_delay)
        await self.perform_integrity_check()

    def start(self) -> None:
        """Take a startup backup and start the backup, integrity and consistency timers."""
        self.create_full_backup(reason="startup")
        self._spawn(
            self._periodic(self.settings.backup_interval * 3600, self.create_full_backup)
        )
        self._spawn(self._delayed_integrity_check())
        self._spawn(
            self._periodic(self.settings.consistency_check_interval, self.check_sync_consistency)
        )

    async def drain(self) -> None:
        """Wait for spawned work to finish. Only meaningful while the timers are stopped."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
