"""
Data models for backups and integrity checks.

Defines Pydantic models for stored snapshots, the backup index, corruption
findings and the reports produced by an integrity check.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from speakersync.core.backup.checksum import calculate_checksum


class BackupType(str, Enum):
    """Full snapshot of the dataset, or the journal entries since the last backup."""

    FULL = "full"
    INCREMENTAL = "incremental"


class BackupSummary(BaseModel):
    """One entry of the backup index."""

    id: str
    type: BackupType
    timestamp: datetime
    version: int = 0
    checksum: str


class Backup(BaseModel):
    """
    A stored snapshot.

    Full backups carry the whole dataset in ``data``; incremental backups
    carry journal entries in ``changes``. The checksum covers whichever of
    the two is set.
    """

    id: str
    type: BackupType
    timestamp: datetime
    version: int = 0
    checksum: str
    data: dict[str, Any] | None = None
    changes: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def payload(self) -> Any:
        return self.data if self.type is BackupType.FULL else self.changes

    def verify_checksum(self) -> bool:
        return calculate_checksum(self.payload()) == self.checksum

    def summary(self) -> BackupSummary:
        return BackupSummary(
            id=self.id,
            type=self.type,
            timestamp=self.timestamp,
            version=self.version,
            checksum=self.checksum,
        )


class CorruptionKind(str, Enum):
    NOT_AN_ARRAY = "not_an_array"
    NOT_AN_OBJECT = "not_an_object"
    DUPLICATE_IDS = "duplicate_ids"
    MISSING_REQUIRED_FIELDS = "missing_required_fields"
    INVALID_DATA_TYPE = "invalid_data_type"
    SERIALIZATION_ERROR = "serialization_error"


class CorruptionIssue(BaseModel):
    """
    A defect found in the persisted record set.

    Only identifier and name defects can be repaired in place; anything
    else needs a restore from backup.
    """

    kind: CorruptionKind
    message: str
    index: int | None = Field(default=None, description="Position of the offending record")
    field: str | None = None
    ids: list[Any] | None = Field(default=None, description="Duplicated identifiers")
    value: Any = None

    @property
    def repairable(self) -> bool:
        if self.kind in (CorruptionKind.DUPLICATE_IDS, CorruptionKind.MISSING_REQUIRED_FIELDS):
            return True
        return self.kind is CorruptionKind.INVALID_DATA_TYPE and self.field in ("id", "name")


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RepairResult(BaseModel):
    """Records after repair, and what was changed."""

    records: list[Any]
    reassigned_ids: list[int] = Field(default_factory=list)
    named: list[int] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.reassigned_ids or self.named)


class IntegrityReport(BaseModel):
    """Outcome of one integrity check."""

    checked_at: datetime
    issues: list[CorruptionIssue] = Field(default_factory=list)
    validation: ValidationResult = Field(default_factory=ValidationResult)
    emergency_backup_id: str | None = None
    repaired: bool = False
    repair_backup_id: str | None = None
    restore_candidate: BackupSummary | None = None
    consistent: bool | None = Field(
        default=None,
        description="Local/remote checksum match; None when not checked",
    )
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return not self.issues and self.error is None


class BackupStatus(BaseModel):
    total_backups: int = 0
    last_backup: datetime | None = None
    oldest_backup: datetime | None = None
    disk_usage: int = Field(default=0, description="Bytes of stored backup payloads")
