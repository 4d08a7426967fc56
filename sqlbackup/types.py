"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass(slots=True)
class BackupArtifact:
    """One archive file; identity is the file name."""

    path: Path
    name: str
    date: date
    mod_time: Optional[datetime] = None
    size: int = 0


@dataclass(slots=True)
class RemoteEntry:
    name: str
    mod_time: datetime
    size: int


@dataclass(slots=True)
class RedistributionResult:
    fragments: Dict[str, str]
    identities: List[str]


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SyncSummary:
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed_deletes: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CycleSummary:
    created: List[Path] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    recovered: List[str] = field(default_factory=list)
    retention: Optional[RetentionSummary] = None
    remote_retention: Optional[RetentionSummary] = None
    sync: Optional[SyncSummary] = None

    @property
    def ok(self) -> bool:
        return not self.failed


__all__ = [
    "BackupArtifact",
    "CycleSummary",
    "RedistributionResult",
    "RemoteEntry",
    "RetentionSummary",
    "SyncSummary",
]
