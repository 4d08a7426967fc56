"""Dump producers: any iterable of ``bytes`` chunks feeding the archive writer."""
from __future__ import annotations

import os
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from .errors import DumpError

DumpSource = Callable[[str], Iterable[bytes]]

_CHUNK_SIZE = 1024 * 1024
_STDERR_LIMIT = 4000
_IDLE_TIMEOUT = 600.0


def command_chunks(
    argv: Sequence[str],
    *,
    chunk_size: int = _CHUNK_SIZE,
    timeout: float = 30.0,
    idle_timeout: Optional[float] = _IDLE_TIMEOUT,
    env: Optional[dict] = None,
) -> Iterator[bytes]:
    """Run *argv* and yield its stdout in chunks.

    The pipe is the bounded buffer between the command and the consumer. If
    the consumer stops early the process is killed; a non-zero exit raises
    :class:`DumpError` carrying the tail of stderr. A command that produces
    no output for *idle_timeout* seconds while a read is pending is killed
    as stalled; *timeout* bounds the wait for its exit once stdout closes.
    """

    with tempfile.TemporaryFile() as errlog:
        try:
            process = subprocess.Popen(
                list(argv),
                stdout=subprocess.PIPE,
                stderr=errlog,
                stdin=subprocess.DEVNULL,
                env=env,
                shell=False,
            )
        except OSError as exc:
            raise DumpError(f"cannot start {argv[0]}: {exc}") from exc
        stalled = threading.Event()

        def _kill_stalled() -> None:
            stalled.set()
            process.kill()

        finished = False
        try:
            stdout = process.stdout
            while True:
                watchdog = None
                if idle_timeout:
                    watchdog = threading.Timer(idle_timeout, _kill_stalled)
                    watchdog.daemon = True
                    watchdog.start()
                try:
                    chunk = stdout.read1(chunk_size)
                finally:
                    if watchdog is not None:
                        watchdog.cancel()
                if not chunk:
                    break
                yield chunk
            finished = True
        finally:
            if not finished:
                process.kill()
            try:
                process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
        if stalled.is_set():
            raise DumpError(f"{Path(argv[0]).name} produced no output for {idle_timeout}s and was killed")
        if process.returncode != 0:
            errlog.seek(0)
            message = errlog.read().decode("utf-8", errors="replace").strip()[-_STDERR_LIMIT:]
            raise DumpError(f"{Path(argv[0]).name} exited with {process.returncode}: {message}")


def _binary(name: str, bin_dir: Optional[str]) -> str:
    if os.name == "nt":
        name += ".exe"
    if bin_dir:
        return str(Path(bin_dir) / name)
    return name


def mysqldump_command(
    database: str,
    *,
    host: str = "localhost",
    port: int = 3306,
    user: str = "root",
    bin_dir: Optional[str] = None,
    is_mariadb: bool = False,
) -> List[str]:
    """Build the mysqldump argv for one database; the password travels via MYSQL_PWD."""

    argv = [
        _binary("mysqldump", bin_dir),
        f"--host={host}",
        f"--port={port}",
        f"--user={user}",
        "--single-transaction",
        "--routines",
        "--triggers",
        "--events",
    ]
    if not is_mariadb:
        argv.append("--set-gtid-purged=OFF")
    argv.extend(["--databases", database])
    return argv


def mysqldump_source(
    *,
    host: str = "localhost",
    port: int = 3306,
    user: str = "root",
    password: str = "",
    bin_dir: Optional[str] = None,
    is_mariadb: bool = False,
) -> DumpSource:
    """Return a :data:`DumpSource` running mysqldump for each database."""

    env = dict(os.environ)
    if password:
        env["MYSQL_PWD"] = password

    def _source(database: str) -> Iterable[bytes]:
        argv = mysqldump_command(
            database, host=host, port=port, user=user, bin_dir=bin_dir, is_mariadb=is_mariadb
        )
        return command_chunks(argv, env=env)

    return _source


__all__ = ["DumpSource", "command_chunks", "mysqldump_command", "mysqldump_source"]
