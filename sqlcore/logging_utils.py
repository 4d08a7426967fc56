from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_logs_dir, resolve_working_dir

LOG_FILENAME = "mysqlbackup.log.jsonl"
SECRET_FIELDS = frozenset({"password", "passphrase", "secret", "token"})

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}


def redact_secret(value: Optional[str]) -> str:
    """Mask a credential for log output, keeping a short prefix and suffix of long values."""

    if not value:
        return ""
    text = str(value)
    if len(text) > 6:
        return text[:3] + "***" + text[-2:]
    return "***"


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are copied, secrets masked."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_") or key in payload:
                continue
            if key in SECRET_FIELDS:
                payload[key] = redact_secret(value)
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_json_logging(
    name: str = "mysqlbackup",
    working_dir: Optional[Path] = None,
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach a JSONL file handler under ``<working_dir>/logs`` to logger *name* once."""

    logs_dir = get_logs_dir(working_dir or resolve_working_dir())
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = os.path.abspath(logs_dir / LOG_FILENAME)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    attached = any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path
        for handler in logger.handlers
    )
    if not attached:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["JsonLogFormatter", "LOG_FILENAME", "configure_json_logging", "redact_secret"]
