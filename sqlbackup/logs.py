"""Structured logging helpers for backup operations."""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Protocol

from sqlcore.logging_utils import SECRET_FIELDS, redact_secret
from sqlcore.paths import get_logs_dir

LOGGER = logging.getLogger("mysqlbackup.backup")
LOG_FILENAME = "backup.jsonl"


class Reporter(Protocol):
    """Sink for non-fatal conditions raised by the backup subsystems."""

    def info(self, event: str, **extra: Any) -> None: ...

    def warning(self, event: str, **extra: Any) -> None: ...

    def error(self, event: str, **extra: Any) -> None: ...

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None: ...


class BackupLogger:
    """Reporter writing one JSON line per event to ``logs/backup.jsonl``.

    Every entry carries the ``run`` id of this logger so the lines of one
    cycle can be told apart. Without a working directory the entries only go
    to the ``mysqlbackup.backup`` logger.
    """

    def __init__(self, working_dir: Optional[Path] = None, *, run_id: Optional[str] = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._log_path: Optional[Path] = None
        if working_dir is not None:
            self._log_path = get_logs_dir(Path(working_dir)) / LOG_FILENAME
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def log_path(self) -> Optional[Path]:
        return self._log_path

    def _record(self, level: int, event: str, ok: bool, extra: Dict[str, Any]) -> None:
        entry: Dict[str, Any] = {
            key: redact_secret(value) if key in SECRET_FIELDS else value for key, value in extra.items()
        }
        entry.update(event=event, ok=ok, run=self.run_id, ts=datetime.now(timezone.utc).isoformat())
        line = json.dumps(entry, sort_keys=True, default=str, ensure_ascii=False)
        if self._log_path is not None:
            with self._lock, self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        LOGGER.log(level, "%s", line)

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        self._record(logging.INFO if ok else logging.ERROR, event, bool(ok), {"phase": phase, **extra})

    def info(self, event: str, **extra: Any) -> None:
        self._record(logging.INFO, event, True, extra)

    def warning(self, event: str, **extra: Any) -> None:
        self._record(logging.WARNING, event, False, extra)

    def error(self, event: str, **extra: Any) -> None:
        self._record(logging.ERROR, event, False, extra)


__all__ = ["BackupLogger", "LOG_FILENAME", "Reporter"]
