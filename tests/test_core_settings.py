"""Tests for sqlcore.settings helpers."""

from __future__ import annotations

import json
from pathlib import Path

from sqlcore.settings import (
    SETTINGS_VERSION,
    hostname_for_backup,
    load_settings,
    merge_defaults,
    save_settings,
    update_settings,
)


def test_merge_defaults_includes_backup_blocks() -> None:
    merged = merge_defaults({})

    assert merged["retention"] == {
        "retain_daily": 14,
        "retain_weekly": 3,
        "retain_monthly": 3,
        "retain_yearly": 3,
    }
    assert merged["mysql"]["port"] == 3306
    assert merged["remote"]["dir"] == ""
    assert merged["remote"]["timeout_s"] == 30
    assert merged["backup"]["stop_on_error"] is True


def test_save_settings_upgrades_partial_file(tmp_path: Path) -> None:
    working_dir = tmp_path
    path = working_dir / "settings.json"

    legacy = {
        "retention": {"retain_daily": 30},
        "remote": {"dir": "/srv/mirror", "host": "backup.example.net"},
    }

    path.write_text(json.dumps(legacy), encoding="utf-8")

    loaded = load_settings(working_dir)
    assert loaded["retention"]["retain_daily"] == 30
    assert loaded["retention"]["retain_weekly"] == 3
    assert loaded["backup_dir"] == str(working_dir / "backups")
    assert loaded["working_dir"] == str(working_dir)

    save_settings(legacy, working_dir)
    upgraded = json.loads(path.read_text(encoding="utf-8"))

    assert upgraded["version"] == SETTINGS_VERSION
    assert upgraded["remote"]["host"] == "backup.example.net"
    assert upgraded["remote"]["port"] == 22
    assert upgraded["mysql"]["user"] == "root"


def test_unknown_keys_are_reported(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"retention": {"keep_forever": True}, "colour": "blue"}), encoding="utf-8"
    )

    load_settings(tmp_path)

    report = json.loads((tmp_path / "logs" / "settings_unknown.json").read_text(encoding="utf-8"))
    assert report["unknown"] == ["colour", "retention.keep_forever"]


def test_corrupt_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["mysql"]["host"] == "localhost"
    assert not (tmp_path / "logs" / "settings_unknown.json").exists()


def test_hostname_for_backup() -> None:
    assert hostname_for_backup({"mysql": {"host": "localhost", "hostname": "web01"}}) == "web01"
    assert hostname_for_backup({"mysql": {"host": "db.internal", "hostname": "web01"}}) == "db.internal"
    assert hostname_for_backup({"mysql": {"host": ""}}) == "localhost"
    assert hostname_for_backup({}) == "localhost"


def test_flat_version_one_file_is_migrated(tmp_path: Path) -> None:
    flat = {
        "version": 1,
        "mysql_host": "localhost",
        "mysql_hostname": "shop-db",
        "mysql_bin": "D:/xampp/mysql/bin",
        "retain_daily": 10,
        "retain_yearly": 5,
        "backup_dir": str(tmp_path / "archives"),
        "remote_backup_dir": "/srv/mirror",
        "remote_ssh_host": "backup.example.net",
        "remote_aes_password": "secret",
    }
    (tmp_path / "settings.json").write_text(json.dumps(flat), encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["version"] == SETTINGS_VERSION
    assert loaded["mysql"]["bin_dir"] == "D:/xampp/mysql/bin"
    assert loaded["retention"]["retain_daily"] == 10
    assert loaded["retention"]["retain_weekly"] == 3
    assert loaded["retention"]["retain_yearly"] == 5
    assert loaded["remote"]["host"] == "backup.example.net"
    assert loaded["remote"]["passphrase"] == "secret"
    assert loaded["backup_dir"] == str(tmp_path / "archives")
    assert "retain_daily" not in loaded
    assert hostname_for_backup(loaded) == "shop-db"
    assert not (tmp_path / "logs" / "settings_unknown.json").exists()


def test_update_settings_merges_nested_values(tmp_path: Path) -> None:
    update_settings(tmp_path, retention={"retain_weekly": 8})

    stored = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert stored["retention"]["retain_weekly"] == 8
    assert stored["retention"]["retain_daily"] == 14
