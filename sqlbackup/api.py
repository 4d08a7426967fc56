"""Public API for backup cycles."""
from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from sqlcore.logging_utils import configure_json_logging, redact_secret
from sqlcore.settings import hostname_for_backup

from .dump import DumpSource
from .errors import ArchiveWriteError, BackupError, RetentionError
from .logs import BackupLogger, Reporter
from .naming import artifact_name
from .remote import LocalDirectoryTransport, RemoteTransport, SFTPTransport, fetch, sync
from .retention import RetentionPolicy, apply_remote_retention, apply_retention
from .types import CycleSummary, RetentionSummary, SyncSummary
from .users import redistribute
from .writer import recover_sidecars, write_archive


def retention_policy_from_settings(settings: Mapping[str, Any]) -> RetentionPolicy:
    raw = settings.get("retention")
    retention = raw if isinstance(raw, Mapping) else {}
    defaults = RetentionPolicy()
    return RetentionPolicy(
        retain_daily=int(retention.get("retain_daily", defaults.retain_daily) or 0),
        retain_weekly=int(retention.get("retain_weekly", defaults.retain_weekly) or 0),
        retain_monthly=int(retention.get("retain_monthly", defaults.retain_monthly) or 0),
        retain_yearly=int(retention.get("retain_yearly", defaults.retain_yearly) or 0),
    )


def transport_from_settings(settings: Mapping[str, Any], *, reporter: Optional[Reporter] = None) -> Optional[RemoteTransport]:
    """Open the configured remote; None when no remote directory is configured."""

    remote = settings.get("remote")
    if not isinstance(remote, Mapping):
        return None
    remote_dir = str(remote.get("dir") or "").strip()
    if not remote_dir:
        return None
    host = str(remote.get("host") or "").strip()
    if not host:
        return LocalDirectoryTransport(Path(remote_dir))
    if reporter is not None:
        reporter.info(
            "remote_connect",
            host=host,
            user=remote.get("user") or "",
            password=redact_secret(remote.get("password") or None),
            key_file=remote.get("key_file") or "",
        )
    return SFTPTransport(
        host,
        remote_dir,
        port=int(remote.get("port") or 22),
        user=str(remote.get("user") or ""),
        password=remote.get("password") or None,
        key_file=remote.get("key_file") or None,
        timeout=float(remote.get("timeout_s") or 30),
        strict_host_keys=bool(remote.get("strict_host_keys")),
    )


class BackupService:
    """Coordinate one backup cycle: write archives, prune, mirror to the remote."""

    def __init__(
        self,
        backup_dir: Path,
        *,
        hostname: str = "localhost",
        policy: Optional[RetentionPolicy] = None,
        reporter: Optional[Reporter] = None,
        transport: Optional[RemoteTransport] = None,
        passphrase: Optional[str] = None,
        stop_on_error: bool = True,
    ) -> None:
        self._backup_dir = Path(backup_dir)
        self._hostname = hostname
        self._policy = policy or RetentionPolicy()
        self._reporter: Reporter = reporter or BackupLogger()
        self._transport = transport
        self._passphrase = (passphrase or "").strip() or None
        self._stop_on_error = stop_on_error

    @classmethod
    def from_settings(
        cls,
        settings: Mapping[str, Any],
        *,
        reporter: Optional[Reporter] = None,
        transport: Optional[RemoteTransport] = None,
    ) -> "BackupService":
        working_dir = settings.get("working_dir")
        if reporter is None:
            if working_dir:
                configure_json_logging(working_dir=Path(working_dir))
            reporter = BackupLogger(Path(working_dir) if working_dir else None)
        if transport is None:
            transport = transport_from_settings(settings, reporter=reporter)
        remote = settings.get("remote") if isinstance(settings.get("remote"), Mapping) else {}
        options = settings.get("backup") if isinstance(settings.get("backup"), Mapping) else {}
        backup_dir = settings.get("backup_dir") or (Path(working_dir) / "backups" if working_dir else None)
        if not backup_dir:
            raise BackupError("backup_dir is not configured")
        return cls(
            Path(backup_dir),
            hostname=hostname_for_backup(dict(settings)),
            policy=retention_policy_from_settings(settings),
            reporter=reporter,
            transport=transport,
            passphrase=remote.get("passphrase") or None,
            stop_on_error=bool(options.get("stop_on_error", True)),
        )

    # ------------------------------------------------------------------
    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def transport(self) -> Optional[RemoteTransport]:
        return self._transport

    # ------------------------------------------------------------------
    def recover(self) -> List[str]:
        return recover_sidecars(self._backup_dir, reporter=self._reporter)

    def write_database(
        self,
        database: str,
        dump_chunks: Iterable[bytes],
        grant_fragment: Optional[str] = None,
        *,
        backup_date: Optional[date] = None,
    ) -> Path:
        target = self._backup_dir / artifact_name(backup_date or date.today(), self._hostname, database)
        return write_archive(target, database, dump_chunks, grant_fragment, reporter=self._reporter)

    def prune(
        self, *, now: Optional[Union[datetime, date]] = None
    ) -> Tuple[RetentionSummary, Optional[RetentionSummary]]:
        local = apply_retention(self._backup_dir, self._policy, reporter=self._reporter, now=now)
        remote = None
        if self._transport is not None:
            remote = apply_remote_retention(self._transport, self._policy, reporter=self._reporter, now=now)
        return local, remote

    def sync_remote(self) -> Optional[SyncSummary]:
        if self._transport is None:
            return None
        return sync(self._backup_dir, self._transport, reporter=self._reporter, passphrase=self._passphrase)

    def fetch(self, pattern: str, dest_dir: Path) -> List[Path]:
        if self._transport is None:
            raise BackupError("no remote is configured")
        return fetch(self._transport, pattern, dest_dir, reporter=self._reporter, passphrase=self._passphrase)

    # ------------------------------------------------------------------
    def run_cycle(
        self,
        databases: Iterable[str],
        dump_source: DumpSource,
        account_export: str = "",
        *,
        today: Optional[date] = None,
        now: Optional[Union[datetime, date]] = None,
    ) -> CycleSummary:
        """Back up every database, then prune and sync.

        A failed archive leaves the previous file in place. With
        ``stop_on_error`` the error is re-raised after being recorded and
        the remaining steps are skipped; already written archives stay.
        """

        try:
            self._backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"cannot create backup directory {self._backup_dir}: {exc}") from exc
        today = today or date.today()
        summary = CycleSummary()
        self._reporter.event(event="cycle_start", phase="create", ok=True, directory=str(self._backup_dir))
        summary.recovered = self.recover()

        users = redistribute(account_export or "", self._reporter)
        if users.identities:
            self._reporter.info("users_found", count=len(users.identities), users=", ".join(users.identities))

        for database in databases:
            try:
                path = self.write_database(
                    database,
                    dump_source(database),
                    users.fragments.get(database),
                    backup_date=today,
                )
            except BackupError as exc:
                summary.failed[database] = str(exc)
                if self._stop_on_error:
                    self._reporter.event(event="cycle_aborted", phase="create", ok=False, database=database)
                    if isinstance(exc, ArchiveWriteError):
                        raise
                    raise ArchiveWriteError(str(exc), database=database) from exc
                continue
            summary.created.append(path)
            self._reporter.info("archive_created", artifact=path.name, database=database)

        try:
            summary.retention, summary.remote_retention = self.prune(now=now or today)
        except RetentionError as exc:
            self._reporter.warning("retention_failed", error=str(exc))
        summary.sync = self.sync_remote()
        self._reporter.event(
            event="cycle_complete",
            phase="cycle",
            ok=summary.ok,
            created=len(summary.created),
            failed=len(summary.failed),
        )
        return summary


__all__ = [
    "BackupService",
    "retention_policy_from_settings",
    "transport_from_settings",
]
