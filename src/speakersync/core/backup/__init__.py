"""Backup Manager: snapshots, retention, integrity checks and restore."""

from speakersync.core.backup.checksum import calculate_checksum
from speakersync.core.backup.integrity import (
    detect_corruption,
    is_repairable,
    repair_records,
    validate_structure,
)
from speakersync.core.backup.manager import BackupManager
from speakersync.core.backup.models import (
    Backup,
    BackupStatus,
    BackupSummary,
    BackupType,
    CorruptionIssue,
    CorruptionKind,
    IntegrityReport,
    RepairResult,
    ValidationResult,
)

__all__ = [
    "BackupManager",
    "Backup",
    "BackupStatus",
    "BackupSummary",
    "BackupType",
    "CorruptionIssue",
    "CorruptionKind",
    "IntegrityReport",
    "RepairResult",
    "ValidationResult",
    "calculate_checksum",
    "detect_corruption",
    "is_repairable",
    "repair_records",
    "validate_structure",
]
