"""Crash-safe creation of archive files with automatic rollback.

An existing archive at the target path is first renamed to a ``.sav``
sidecar. The new archive is streamed into place and the sidecar removed only
after the container has been finalised. Any failure removes the partial file
and renames the sidecar back, so the previous good archive is never lost.
"""
from __future__ import annotations

import enum
import os
import zipfile
from pathlib import Path
from typing import IO, Iterable, List, Optional

from .errors import ArchiveWriteError, BackupError
from .logs import Reporter
from .naming import SIDECAR_SUFFIX, is_artifact_name, sidecar_path, target_for_sidecar

RELOAD_STATEMENT = b"FLUSH PRIVILEGES;\n"


class WriterState(enum.Enum):
    CLEAN = "clean"
    STAGED = "staged"
    WRITING = "writing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class ArchiveWriter:
    """Write a single-entry zip archive to *target* without destroying the previous one."""

    def __init__(self, target: Path, entry_name: str, *, reporter: Optional[Reporter] = None) -> None:
        self.target = Path(target)
        self.entry_name = entry_name
        self.sidecar = sidecar_path(self.target)
        self.state = WriterState.CLEAN
        self._reporter = reporter
        self._sidecar_created = False
        self._owns_target = False
        self._handle: Optional[IO[bytes]] = None
        self._archive: Optional[zipfile.ZipFile] = None
        self._entry: Optional[IO[bytes]] = None

    # ------------------------------------------------------------------
    def open(self) -> "ArchiveWriter":
        if self.state is not WriterState.CLEAN:
            raise BackupError(f"writer for {self.target.name} already used ({self.state.value})")
        if self.sidecar.exists():
            raise BackupError(f"unrecovered sidecar {self.sidecar.name}; run sidecar recovery first")
        try:
            if self.target.exists():
                os.replace(self.target, self.sidecar)
                self._sidecar_created = True
            self.state = WriterState.STAGED
            self._owns_target = True
            self._handle = open(self.target, "wb")
            self._archive = zipfile.ZipFile(self._handle, "w", compression=zipfile.ZIP_DEFLATED)
            self._entry = self._archive.open(self.entry_name, "w", force_zip64=True)
            self.state = WriterState.WRITING
        except BaseException:
            self.rollback()
            raise
        return self

    def write(self, data: bytes) -> None:
        if self.state is not WriterState.WRITING or self._entry is None:
            raise BackupError(f"writer for {self.target.name} is not open")
        self._entry.write(data)

    def commit(self) -> None:
        if self.state is not WriterState.WRITING:
            raise BackupError(f"writer for {self.target.name} is not open")
        try:
            self._entry.close()
            self._entry = None
            self._archive.close()
            self._archive = None
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
            self._handle = None
        except BaseException:
            self.rollback()
            raise
        # the new archive is durable from here on; a stale sidecar is only reported
        self.state = WriterState.COMMITTED
        if self._sidecar_created:
            try:
                self.sidecar.unlink(missing_ok=True)
            except OSError as exc:
                self._report("warning", "sidecar_remove_failed", sidecar=self.sidecar.name, error=str(exc))

    def rollback(self) -> None:
        if self.state in (WriterState.COMMITTED, WriterState.ROLLED_BACK):
            return
        self._close_quietly()
        try:
            if self._owns_target:
                self.target.unlink(missing_ok=True)
            if self._sidecar_created and self.sidecar.exists():
                os.replace(self.sidecar, self.target)
                self._report("warning", "archive_restored", artifact=self.target.name)
        except OSError as exc:
            self._report("error", "archive_restore_failed", artifact=self.target.name, error=str(exc))
            raise
        finally:
            self.state = WriterState.ROLLED_BACK

    # ------------------------------------------------------------------
    def _close_quietly(self) -> None:
        for attr in ("_entry", "_archive", "_handle"):
            resource = getattr(self, attr)
            setattr(self, attr, None)
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as exc:  # partial container is discarded
                self._report("warning", "archive_close_failed", artifact=self.target.name, error=str(exc))

    def _report(self, level: str, event: str, **extra) -> None:
        if self._reporter is not None:
            getattr(self._reporter, level)(event, **extra)

    def __enter__(self) -> "ArchiveWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


def _close_source(chunks: Iterable[bytes]) -> None:
    close = getattr(chunks, "close", None)
    if callable(close):
        close()


def write_archive(
    target: Path,
    database: str,
    dump_chunks: Iterable[bytes],
    grant_fragment: Optional[str] = None,
    *,
    reporter: Optional[Reporter] = None,
) -> Path:
    """Stream one database dump plus its grant fragment into *target*.

    Raises :class:`ArchiveWriteError` after rolling back when anything fails,
    including the dump producer itself.
    """

    target = Path(target)
    writer = ArchiveWriter(target, f"{database}.sql", reporter=reporter)
    try:
        with writer:
            for chunk in dump_chunks:
                if chunk:
                    writer.write(chunk)
            if grant_fragment:
                writer.write(b"\n\n")
                writer.write(grant_fragment.encode("utf-8"))
                writer.write(b"\n\n")
                writer.write(RELOAD_STATEMENT)
    except Exception as exc:
        if reporter is not None:
            reporter.error("archive_failed", artifact=target.name, database=database, error=str(exc))
        raise ArchiveWriteError(
            f"writing {target.name} for database {database} failed: {exc}",
            artifact=target.name,
            database=database,
        ) from exc
    finally:
        _close_source(dump_chunks)
    return target


def recover_sidecars(directory: Path, *, reporter: Optional[Reporter] = None) -> List[str]:
    """Resolve sidecars left by an interrupted cycle; returns the recovered archive names.

    The larger of sidecar and archive is kept (the sidecar on a tie); a lone
    sidecar is renamed back to the archive name.
    """

    directory = Path(directory)
    recovered: List[str] = []
    if not directory.is_dir():
        return recovered
    for sidecar in sorted(directory.glob(f"*{SIDECAR_SUFFIX}")):
        target = target_for_sidecar(sidecar)
        if not sidecar.is_file() or not is_artifact_name(target.name):
            continue
        try:
            sidecar_size = sidecar.stat().st_size
            if not target.exists():
                os.replace(sidecar, target)
                recovered.append(target.name)
                _report(reporter, "info", "sidecar_recovered", artifact=target.name)
                continue
            if sidecar_size >= target.stat().st_size:
                os.replace(sidecar, target)
                recovered.append(target.name)
                _report(reporter, "info", "sidecar_recovered_larger", artifact=target.name)
            else:
                sidecar.unlink()
                _report(reporter, "info", "sidecar_removed", sidecar=sidecar.name)
        except OSError as exc:
            _report(reporter, "warning", "sidecar_recovery_failed", sidecar=sidecar.name, error=str(exc))
    return recovered


def _report(reporter: Optional[Reporter], level: str, event: str, **extra) -> None:
    if reporter is not None:
        getattr(reporter, level)(event, **extra)


def read_archive_sql(path: Path) -> bytes:
    """Return the SQL entry stored in an archive."""

    with zipfile.ZipFile(path, "r") as archive:
        for name in archive.namelist():
            if name.lower().endswith(".sql"):
                return archive.read(name)
    raise BackupError(f"no .sql entry inside {Path(path).name}")


__all__ = [
    "ArchiveWriter",
    "RELOAD_STATEMENT",
    "WriterState",
    "read_archive_sql",
    "recover_sidecars",
    "write_archive",
]
