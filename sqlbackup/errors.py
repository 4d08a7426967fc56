"""Error hierarchy for backup operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class ArchiveWriteError(BackupError):
    """Raised when an archive could not be written; the previous file is restored."""

    def __init__(self, message: str, *, artifact: str = "", database: str = "") -> None:
        super().__init__(message)
        self.artifact = artifact
        self.database = database


class DumpError(BackupError):
    """Raised when the dump producer exits with an error."""


class RetentionError(BackupError):
    """Raised when a backup directory cannot be listed for pruning."""


class RemoteSyncError(BackupError):
    """Raised when listing, uploading or downloading against the remote fails."""


__all__ = [
    "ArchiveWriteError",
    "BackupError",
    "DumpError",
    "RemoteSyncError",
    "RetentionError",
]
