"""MySQL backup archives: grant redistribution, atomic writes, retention, remote mirroring."""
from __future__ import annotations

from .api import BackupService
from .errors import ArchiveWriteError, BackupError, DumpError, RemoteSyncError, RetentionError
from .retention import RetentionClass, RetentionPolicy, classify
from .types import BackupArtifact, CycleSummary, RemoteEntry, RetentionSummary, SyncSummary
from .users import redistribute

__all__ = [
    "ArchiveWriteError",
    "BackupArtifact",
    "BackupError",
    "BackupService",
    "CycleSummary",
    "DumpError",
    "RemoteEntry",
    "RemoteSyncError",
    "RetentionClass",
    "RetentionPolicy",
    "RetentionSummary",
    "RetentionError",
    "SyncSummary",
    "classify",
    "redistribute",
]
