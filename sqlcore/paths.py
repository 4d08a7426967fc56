from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

__all__ = [
    "ENV_HOME",
    "ensure_working_dir_structure",
    "get_backups_dir",
    "get_logs_dir",
    "get_settings_path",
    "resolve_working_dir",
]

ENV_HOME = "MYSQLBACKUP_HOME"
DEFAULT_DIRNAME = ".mysqlbackup"


def _expand_path(value: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(value))).resolve()


def _is_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=path):
            pass
    except OSError:
        return False
    return True


def _candidates(explicit: Optional[Path]) -> Iterator[Path]:
    if explicit is not None:
        yield Path(explicit)
    env_home = os.environ.get(ENV_HOME, "").strip()
    if env_home:
        yield _expand_path(env_home)
    yield Path.home() / DEFAULT_DIRNAME


def resolve_working_dir(explicit: Optional[Path] = None) -> Path:
    """Return the first writable working directory for settings, logs and local archives.

    The order is *explicit*, then ``$MYSQLBACKUP_HOME``, then ``~/.mysqlbackup``,
    falling back to ``./.mysqlbackup``.
    """

    for candidate in _candidates(explicit):
        if _is_writable_dir(candidate):
            return candidate
    fallback = Path.cwd() / DEFAULT_DIRNAME
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "logs"


def get_backups_dir(working_dir: Path) -> Path:
    return Path(working_dir) / "backups"


def get_settings_path(working_dir: Path) -> Path:
    return Path(working_dir) / "settings.json"


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (Path(working_dir), get_logs_dir(working_dir), get_backups_dir(working_dir)):
        directory.mkdir(parents=True, exist_ok=True)
