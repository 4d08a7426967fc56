"""Mirror the local archive set to a remote directory.

Local archives are uploaded when the remote copy is missing, older, or (with
encryption on) does not have the size an encrypted copy would have. Remote
archives that no longer exist locally are deleted. Uploads go to a ``.part``
name first and are renamed into place, so an interrupted upload never looks
like a finished archive.
"""
from __future__ import annotations

import contextlib
import fnmatch
import os
import shutil
import stat
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, List, Optional, Protocol

from .crypto import HEADER_SIZE, decrypt_stream, encrypt_stream, looks_like_archive
from .errors import RemoteSyncError
from .logs import Reporter
from .naming import is_artifact_name, list_artifacts
from .types import BackupArtifact, RemoteEntry, SyncSummary

PART_SUFFIX = ".part"
LOCAL_COPY_SUFFIX = ".local"
_COPY_CHUNK = 1024 * 1024


class RemoteTransport(Protocol):
    """File-transfer capability over one remote directory; names are relative to it."""

    def listdir(self) -> List[RemoteEntry]: ...

    def open_read(self, name: str) -> contextlib.AbstractContextManager[BinaryIO]: ...

    def open_write(self, name: str) -> contextlib.AbstractContextManager[BinaryIO]: ...

    def rename(self, source: str, target: str) -> None: ...

    def remove(self, name: str) -> None: ...

    def makedirs(self) -> None: ...

    def close(self) -> None: ...


class LocalDirectoryTransport:
    """Remote store reachable as a local path, such as a mounted share."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def listdir(self) -> List[RemoteEntry]:
        entries: List[RemoteEntry] = []
        if not self.root.is_dir():
            return entries
        with os.scandir(self.root) as iterator:
            for item in iterator:
                if not item.is_file():
                    continue
                info = item.stat()
                entries.append(
                    RemoteEntry(
                        name=item.name,
                        mod_time=datetime.fromtimestamp(info.st_mtime).astimezone(),
                        size=info.st_size,
                    )
                )
        return entries

    @contextlib.contextmanager
    def open_read(self, name: str) -> Iterator[BinaryIO]:
        with open(self.root / name, "rb") as handle:
            yield handle

    @contextlib.contextmanager
    def open_write(self, name: str) -> Iterator[BinaryIO]:
        with open(self.root / name, "wb") as handle:
            yield handle

    def rename(self, source: str, target: str) -> None:
        os.replace(self.root / source, self.root / target)

    def remove(self, name: str) -> None:
        (self.root / name).unlink()

    def makedirs(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        return None

    def __enter__(self) -> "LocalDirectoryTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class SFTPTransport:
    """Remote directory on an SSH server, accessed through paramiko's SFTP client."""

    def __init__(
        self,
        host: str,
        remote_dir: str,
        *,
        port: int = 22,
        user: str = "",
        password: Optional[str] = None,
        key_file: Optional[str] = None,
        timeout: float = 30.0,
        strict_host_keys: bool = False,
    ) -> None:
        import paramiko

        if not password and not key_file:
            raise RemoteSyncError("no SSH authentication configured (password or key file)")
        self.remote_dir = str(PurePosixPath(remote_dir.replace("\\", "/")))
        self._client = paramiko.SSHClient()
        self._client.load_system_host_keys()
        if strict_host_keys:
            self._client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            self._client.connect(
                hostname=host,
                port=port or 22,
                username=user,
                password=password or None,
                key_filename=key_file or None,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
                look_for_keys=False,
                allow_agent=False,
            )
            self._sftp = self._client.open_sftp()
            self._sftp.get_channel().settimeout(timeout)
        except (paramiko.SSHException, OSError) as exc:
            self._client.close()
            raise RemoteSyncError(f"cannot connect to {user}@{host}:{port}: {exc}") from exc

    def _path(self, name: str) -> str:
        return f"{self.remote_dir}/{name}"

    def listdir(self) -> List[RemoteEntry]:
        try:
            attrs = self._sftp.listdir_attr(self.remote_dir)
        except FileNotFoundError:
            return []
        entries: List[RemoteEntry] = []
        for attr in attrs:
            if attr.st_mode is not None and stat.S_ISDIR(attr.st_mode):
                continue
            entries.append(
                RemoteEntry(
                    name=attr.filename,
                    mod_time=datetime.fromtimestamp(attr.st_mtime or 0, tz=timezone.utc),
                    size=int(attr.st_size or 0),
                )
            )
        return entries

    @contextlib.contextmanager
    def open_read(self, name: str) -> Iterator[BinaryIO]:
        with self._sftp.open(self._path(name), "rb") as handle:
            handle.prefetch()
            yield handle

    @contextlib.contextmanager
    def open_write(self, name: str) -> Iterator[BinaryIO]:
        with self._sftp.open(self._path(name), "wb") as handle:
            handle.set_pipelined(True)
            yield handle

    def rename(self, source: str, target: str) -> None:
        try:
            self._sftp.posix_rename(self._path(source), self._path(target))
        except IOError:
            with contextlib.suppress(FileNotFoundError):
                self._sftp.remove(self._path(target))
            self._sftp.rename(self._path(source), self._path(target))

    def remove(self, name: str) -> None:
        self._sftp.remove(self._path(name))

    def makedirs(self) -> None:
        current = PurePosixPath("/") if self.remote_dir.startswith("/") else PurePosixPath()
        for part in PurePosixPath(self.remote_dir).parts:
            if part == "/":
                continue
            current = current / part
            try:
                self._sftp.stat(str(current))
            except FileNotFoundError:
                self._sftp.mkdir(str(current))

    def close(self) -> None:
        self._sftp.close()
        self._client.close()

    def __enter__(self) -> "SFTPTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


# ----------------------------------------------------------------------
def needs_upload(local: BackupArtifact, remote: Optional[RemoteEntry], *, encrypt: bool) -> bool:
    if remote is None:
        return True
    if local.mod_time is not None and local.mod_time > remote.mod_time:
        return True
    if encrypt and remote.size != local.size + HEADER_SIZE:
        return True
    return False


def _is_part_name(name: str) -> bool:
    return name.endswith(PART_SUFFIX) and is_artifact_name(name[: -len(PART_SUFFIX)])


def _upload(
    transport: RemoteTransport,
    artifact: BackupArtifact,
    *,
    passphrase: Optional[str],
    reporter: Reporter,
) -> None:
    part = artifact.name + PART_SUFFIX
    try:
        with artifact.path.open("rb") as source, transport.open_write(part) as target:
            if passphrase:
                encrypt_stream(source, target, passphrase)
            else:
                shutil.copyfileobj(source, target, _COPY_CHUNK)
        transport.rename(part, artifact.name)
    except Exception:
        try:
            transport.remove(part)
        except OSError as exc:
            reporter.warning("remote_part_cleanup_failed", artifact=part, error=str(exc))
        raise


def sync(
    local_dir: Path,
    transport: RemoteTransport,
    *,
    reporter: Reporter,
    passphrase: Optional[str] = None,
) -> SyncSummary:
    """Converge the remote directory with the archives in *local_dir*."""

    passphrase = (passphrase or "").strip() or None
    encrypt = passphrase is not None
    if not Path(local_dir).is_dir():
        raise RemoteSyncError(f"local backup directory {local_dir} does not exist")
    try:
        local_items = list_artifacts(Path(local_dir))
    except OSError as exc:
        raise RemoteSyncError(f"cannot list local directory {local_dir}: {exc}") from exc
    try:
        transport.makedirs()
    except OSError as exc:
        reporter.warning("remote_mkdir_failed", error=str(exc))
    try:
        listing = transport.listdir()
    except OSError as exc:
        raise RemoteSyncError(f"cannot list remote directory: {exc}") from exc
    remote_items = [entry for entry in listing if is_artifact_name(entry.name)]
    stale_parts = [entry.name for entry in listing if _is_part_name(entry.name)]
    remote_map = {entry.name: entry for entry in remote_items}
    reporter.info("remote_encryption", enabled=encrypt)

    summary = SyncSummary()
    for artifact in local_items:
        if not needs_upload(artifact, remote_map.get(artifact.name), encrypt=encrypt):
            summary.skipped.append(artifact.name)
            continue
        try:
            _upload(transport, artifact, passphrase=passphrase, reporter=reporter)
        except Exception as exc:
            reporter.error("remote_upload_failed", artifact=artifact.name, error=str(exc))
            raise RemoteSyncError(f"upload of {artifact.name} failed: {exc}") from exc
        summary.uploaded.append(artifact.name)
        reporter.info("remote_uploaded", artifact=artifact.name, encrypted=encrypt)

    local_names = {artifact.name for artifact in local_items}
    for entry in remote_items:
        if entry.name in local_names:
            continue
        try:
            transport.remove(entry.name)
        except OSError as exc:
            summary.failed_deletes.append(entry.name)
            reporter.warning("remote_remove_failed", artifact=entry.name, error=str(exc))
            continue
        summary.deleted.append(entry.name)
        reporter.info("remote_removed", artifact=entry.name)

    # leftovers of interrupted uploads; a re-upload in this run already renamed its part away
    uploaded_parts = {name + PART_SUFFIX for name in summary.uploaded}
    for part in stale_parts:
        if part in uploaded_parts:
            continue
        try:
            transport.remove(part)
        except OSError as exc:
            summary.failed_deletes.append(part)
            reporter.warning("remote_remove_failed", artifact=part, error=str(exc))
            continue
        summary.deleted.append(part)
        reporter.info("remote_part_removed", artifact=part)

    reporter.event(
        event="sync_complete",
        phase="remote",
        ok=not summary.failed_deletes,
        uploaded=len(summary.uploaded),
        deleted=len(summary.deleted),
        skipped=len(summary.skipped),
    )
    return summary


# ----------------------------------------------------------------------
def _valid_pattern(pattern: str) -> bool:
    if not pattern or ".." in pattern:
        return False
    return "/" not in pattern and "\\" not in pattern


def _read_header(source: BinaryIO) -> bytes:
    header = b""
    while len(header) < HEADER_SIZE:
        chunk = source.read(HEADER_SIZE - len(header))
        if not chunk:
            break
        header += chunk
    return header


def _free_destination(dest_dir: Path, name: str) -> Path:
    candidate = dest_dir / name
    if not candidate.exists():
        return candidate
    candidate = dest_dir / (name + LOCAL_COPY_SUFFIX)
    counter = 1
    while candidate.exists():
        candidate = dest_dir / f"{name}{LOCAL_COPY_SUFFIX}.{counter}"
        counter += 1
    return candidate


def _download_one(
    transport: RemoteTransport, name: str, destination: Path, *, passphrase: Optional[str], reporter: Reporter
) -> None:
    with transport.open_read(name) as source:
        # exclusive create, so cleanup only ever removes a file made here
        with destination.open("xb") as target:
            try:
                header = _read_header(source)
                if passphrase and len(header) == HEADER_SIZE and not looks_like_archive(header):
                    reporter.info("remote_decrypt", artifact=name)
                    decrypt_stream(source, target, passphrase, header=header)
                else:
                    target.write(header)
                    shutil.copyfileobj(source, target, _COPY_CHUNK)
            except BaseException:
                target.close()
                destination.unlink(missing_ok=True)
                raise


def fetch(
    transport: RemoteTransport,
    pattern: str,
    dest_dir: Path,
    *,
    reporter: Reporter,
    passphrase: Optional[str] = None,
) -> List[Path]:
    """Download archives named by *pattern* (``*`` and ``?`` allowed) into *dest_dir*.

    Encrypted copies are decrypted when a passphrase is given. Existing local
    files are never touched: the download is saved next to them with a
    ``.local`` suffix, numbered (``.local.1``, ``.local.2``) when that name is
    taken as well.
    """

    if not _valid_pattern(pattern):
        raise ValueError(f"pattern must be a bare file name: {pattern!r}")
    passphrase = (passphrase or "").strip() or None
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    if "*" in pattern or "?" in pattern:
        try:
            remote_items = transport.listdir()
        except OSError as exc:
            raise RemoteSyncError(f"cannot list remote directory: {exc}") from exc
        names = sorted(
            entry.name
            for entry in remote_items
            if is_artifact_name(entry.name) and fnmatch.fnmatchcase(entry.name, pattern)
        )
        if not names:
            raise RemoteSyncError(f"no remote archive matches {pattern}")
    else:
        if not is_artifact_name(pattern):
            raise ValueError(f"only backup archives can be fetched: {pattern!r}")
        names = [pattern]

    saved: List[Path] = []
    for name in names:
        destination = _free_destination(dest_dir, name)
        try:
            _download_one(transport, name, destination, passphrase=passphrase, reporter=reporter)
        except (OSError, ValueError) as exc:
            raise RemoteSyncError(f"download of {name} failed: {exc}") from exc
        saved.append(destination)
        reporter.info("remote_fetched", artifact=name, path=str(destination))
    return saved


__all__ = [
    "LocalDirectoryTransport",
    "RemoteTransport",
    "SFTPTransport",
    "fetch",
    "needs_upload",
    "sync",
]
