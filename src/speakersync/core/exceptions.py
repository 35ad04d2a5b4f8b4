"""
Exception hierarchy for speakersync.

Exception Hierarchy:
    SpeakerSyncError (base)
    ├── ConfigError (invalid or incomplete configuration)
    ├── StorageError (persisted key-value store failures)
    ├── RemoteStoreError (network/HTTP failures talking to the remote document)
    ├── DatasetParseError (unparseable persisted or remote payload)
    └── BackupError (snapshot storage, lookup and restore failures)

Engine and backup entry points catch these, log them, and downgrade them to
events or report fields. Only the CLI turns them into exit codes.
"""


class SpeakerSyncError(Exception):
    """
    Base exception for all speakersync errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
    """

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class ConfigError(SpeakerSyncError):
    """Raised when configuration is missing or fails validation."""


class StorageError(SpeakerSyncError):
    """Raised when the persisted key-value store cannot be read or written."""


class RemoteStoreError(SpeakerSyncError):
    """
    Raised when fetching or replacing the remote document fails.

    Authentication failures, missing documents and transport errors are
    all reported through this one type. ``status_code`` is None only when
    no response was received at all.
    """

    def __init__(self, message: str, status_code: int | None = None, **context: object) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class DatasetParseError(SpeakerSyncError):
    """Raised when a serialized dataset cannot be parsed or has the wrong shape."""


class BackupError(SpeakerSyncError):
    """Raised when a backup cannot be stored, found or restored."""


__all__ = [
    "SpeakerSyncError",
    "ConfigError",
    "StorageError",
    "RemoteStoreError",
    "DatasetParseError",
    "BackupError",
]
