from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from .paths import get_backups_dir, get_logs_dir, get_settings_path
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "hostname_for_backup",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

LOGGER = logging.getLogger("mysqlbackup.settings")

SETTINGS_VERSION = 2


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "backup_dir": None,
    "mysql": {
        "host": "localhost",
        "hostname": "",
        "port": 3306,
        "user": "root",
        "password": "",
        "bin_dir": None,
        "is_mariadb": False,
    },
    "retention": {
        "retain_daily": 14,
        "retain_weekly": 3,
        "retain_monthly": 3,
        "retain_yearly": 3,
    },
    "remote": {
        "dir": "",
        "host": "",
        "port": 22,
        "user": "",
        "password": "",
        "key_file": "",
        "passphrase": "",
        "timeout_s": 30,
        "strict_host_keys": False,
    },
    "backup": {
        "stop_on_error": True,
    },
}

# Version 1 files kept every option at the top level.
_FLAT_KEYS: Dict[str, Tuple[str, str]] = {
    "mysql_host": ("mysql", "host"),
    "mysql_hostname": ("mysql", "hostname"),
    "mysql_port": ("mysql", "port"),
    "mysql_user": ("mysql", "user"),
    "mysql_bin": ("mysql", "bin_dir"),
    "root_password": ("mysql", "password"),
    "retain_daily": ("retention", "retain_daily"),
    "retain_weekly": ("retention", "retain_weekly"),
    "retain_monthly": ("retention", "retain_monthly"),
    "retain_yearly": ("retention", "retain_yearly"),
    "remote_backup_dir": ("remote", "dir"),
    "remote_ssh_host": ("remote", "host"),
    "remote_ssh_port": ("remote", "port"),
    "remote_ssh_user": ("remote", "user"),
    "remote_ssh_password": ("remote", "password"),
    "remote_ssh_key_file": ("remote", "key_file"),
    "remote_aes_password": ("remote", "passphrase"),
}


def _overlay(base: Dict[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in payload.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _overlay(current, value)
        else:
            base[key] = value
    return base


def merge_defaults(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay *data* on a copy of the defaults; unknown keys are carried along."""

    return _overlay(copy.deepcopy(DEFAULT_SETTINGS), data or {})


def _version_of(settings: Mapping[str, Any]) -> int:
    try:
        return int(settings.get("version"))
    except (TypeError, ValueError):
        return 1


def _migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    if _version_of(data) < 2:
        for flat, (block, key) in _FLAT_KEYS.items():
            if flat not in data:
                continue
            value = data.pop(flat)
            section = data.get(block)
            if not isinstance(section, dict):
                section = data[block] = {}
            section.setdefault(key, value)
    data["version"] = SETTINGS_VERSION
    return data


def _log_unknown_keys(settings: Mapping[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("ignoring unknown settings keys: %s", ", ".join(unknown))
    report = get_logs_dir(working_dir) / "settings_unknown.json"
    payload = {"ts": datetime.now(timezone.utc).isoformat(), "unknown": unknown}
    try:
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("cannot write %s: %s", report, exc)


def load_settings(working_dir: Path) -> Dict[str, Any]:
    """Read ``settings.json``; a missing or corrupt file yields the defaults."""

    path = get_settings_path(working_dir)
    raw: Dict[str, Any] = {}
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        loaded = {}
    except json.JSONDecodeError as exc:
        LOGGER.warning("settings file %s is not valid JSON, using defaults: %s", path, exc)
        loaded = {}
    if isinstance(loaded, dict):
        raw = loaded
    settings = merge_defaults(_migrate(raw))
    settings.setdefault("working_dir", str(working_dir))
    if not settings.get("backup_dir"):
        settings["backup_dir"] = str(get_backups_dir(working_dir))
    _log_unknown_keys(settings, working_dir)
    return settings


def save_settings(settings: Mapping[str, Any], working_dir: Path) -> None:
    payload = merge_defaults(_migrate(copy.deepcopy(dict(settings))))
    payload.setdefault("working_dir", str(working_dir))
    path = get_settings_path(working_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def update_settings(working_dir: Path, **values: Any) -> None:
    current = load_settings(working_dir)
    _overlay(current, values)
    save_settings(current, working_dir)


def hostname_for_backup(settings: Mapping[str, Any]) -> str:
    """Host name used in archive names; ``mysql.hostname`` overrides a loopback host."""

    mysql = settings.get("mysql") or {}
    host = str(mysql.get("host") or "").strip()
    alias = str(mysql.get("hostname") or "").strip()
    if host in ("localhost", "127.0.0.1") and alias:
        return alias
    return host or "localhost"
