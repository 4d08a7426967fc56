"""Archive naming convention and directory listing."""
from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from .types import BackupArtifact

ARCHIVE_PREFIX = "mysql_backup"
ARCHIVE_SUFFIX = ".zip"
SIDECAR_SUFFIX = ".sav"

_ARTIFACT_PATTERN = re.compile(r"^mysql_backup_(\d{8})_.*\.zip$")
_HOST_TOKEN_PATTERN = re.compile(r"[^A-Za-z0-9_.\-]")


def host_token(host: str) -> str:
    """Return the host part of an archive name."""

    host = (host or "").strip() or "localhost"
    return _HOST_TOKEN_PATTERN.sub("_", host)


def artifact_name(backup_date: date, host: str, database: str) -> str:
    return f"{ARCHIVE_PREFIX}_{backup_date:%Y%m%d}_{host_token(host)}_{database}{ARCHIVE_SUFFIX}"


def parse_artifact_date(name: str) -> Optional[date]:
    """Return the backup date encoded in *name*, or None if it is not an artifact."""

    match = _ARTIFACT_PATTERN.match(name)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError:
        return None


def is_artifact_name(name: str) -> bool:
    return parse_artifact_date(name) is not None


def sidecar_path(target: Path) -> Path:
    return target.with_suffix(SIDECAR_SUFFIX)


def target_for_sidecar(sidecar: Path) -> Path:
    return sidecar.with_suffix(ARCHIVE_SUFFIX)


def list_artifacts(directory: Path) -> List[BackupArtifact]:
    """List archives in *directory* sorted by backup date; missing directory is empty."""

    directory = Path(directory)
    items: List[BackupArtifact] = []
    if not directory.is_dir():
        return items
    for child in directory.iterdir():
        backup_date = parse_artifact_date(child.name)
        if backup_date is None:
            continue
        try:
            stat = child.stat()
        except FileNotFoundError:
            continue
        if not child.is_file():
            continue
        items.append(
            BackupArtifact(
                path=child,
                name=child.name,
                date=backup_date,
                mod_time=datetime.fromtimestamp(stat.st_mtime).astimezone(),
                size=stat.st_size,
            )
        )
    items.sort(key=lambda artifact: (artifact.date, artifact.name))
    return items


def latest_backup_set(directory: Path, before: Optional[date] = None) -> List[BackupArtifact]:
    """Return every artifact of the newest backup day, optionally strictly before *before*."""

    artifacts = list_artifacts(directory)
    candidates = [item.date for item in artifacts if before is None or item.date < before]
    if not candidates:
        return []
    target = max(candidates)
    return [item for item in artifacts if item.date == target]


__all__ = [
    "ARCHIVE_PREFIX",
    "ARCHIVE_SUFFIX",
    "SIDECAR_SUFFIX",
    "artifact_name",
    "host_token",
    "is_artifact_name",
    "latest_backup_set",
    "list_artifacts",
    "parse_artifact_date",
    "sidecar_path",
    "target_for_sidecar",
]
