"""
Configuration data models for speakersync.

These models define the structure of the persisted ``config`` blob, with
validation and type safety via Pydantic.
"""

from enum import Enum

from pydantic import BaseModel, Field


class ConflictStrategy(str, Enum):
    """How a record changed on both sides is resolved during a pull."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


class BackupConfig(BaseModel):
    """
    Snapshot, retention and integrity-check settings.

    Retention is time based: a backup older than ``max_backups`` days is
    deleted on the next store.
    """
    backup_interval: float = Field(
        default=24.0,
        gt=0,
        description="Hours between scheduled full backups"
    )
    max_backups: int = Field(
        default=30,
        ge=1,
        description="Days of backups to keep"
    )
    integrity_check_delay: float = Field(
        default=5.0,
        ge=0,
        description="Seconds after startup before the first integrity check"
    )
    consistency_check_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between local/remote checksum comparisons"
    )
    journal_limit: int = Field(
        default=500,
        ge=1,
        description="Maximum number of change journal entries kept"
    )


class SyncConfig(BaseModel):
    """
    Connection identity and sync behavior.

    Sync is only attempted once both ``token`` and ``document_id`` are set.
    """
    token: str = Field(
        default="",
        description="Bearer credential for the remote document API"
    )
    document_id: str = Field(
        default="",
        description="Identifier of the remote document (gist id)"
    )
    data_file_name: str = Field(
        default="rotary-speakers-data.json",
        min_length=1,
        description="Name of the file inside the remote document holding the dataset"
    )
    api_base: str = Field(
        default="https://api.github.com",
        description="Base URL of the remote document API"
    )
    auto_sync_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between automatic sync attempts"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Failed attempts in a row before a terminal sync failure"
    )
    retry_delay: float = Field(
        default=2.0,
        ge=0,
        description="Base retry delay in seconds (multiplied by the retry count)"
    )
    conflict_resolution_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.MERGE,
        description="Conflict strategy: 'merge', 'local' or 'remote'"
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds for remote calls"
    )
    remote_backups: bool = Field(
        default=False,
        description="Also store full backups as files in the remote document"
    )
    backup: BackupConfig = Field(default_factory=BackupConfig)

    def is_configured(self) -> bool:
        """Check whether enough is configured to talk to the remote document."""
        return bool(self.token and self.document_id)

    def redacted(self) -> dict[str, object]:
        """Dump for display, with the credential masked."""
        data = self.model_dump(mode="json")
        if data.get("token"):
            data["token"] = data["token"][:4] + "…"
        return data
