from datetime import date

from sqlbackup.naming import (
    artifact_name,
    host_token,
    is_artifact_name,
    latest_backup_set,
    list_artifacts,
    parse_artifact_date,
    sidecar_path,
    target_for_sidecar,
)


def test_artifact_name_layout():
    assert artifact_name(date(2025, 3, 12), "db01", "shop") == "mysql_backup_20250312_db01_shop.zip"
    assert artifact_name(date(2025, 3, 12), "", "shop") == "mysql_backup_20250312_localhost_shop.zip"
    assert host_token("db host:3306") == "db_host_3306"


def test_parse_artifact_date():
    assert parse_artifact_date("mysql_backup_20250312_db01_shop.zip") == date(2025, 3, 12)
    assert parse_artifact_date("mysql_backup_20251341_db01_shop.zip") is None
    assert parse_artifact_date("mysql_backup_20250312_db01_shop.zip.part") is None
    assert parse_artifact_date("backup_20250312.zip") is None
    assert not is_artifact_name("notes.txt")


def test_sidecar_names_round_trip(tmp_path):
    target = tmp_path / "mysql_backup_20250312_db01_my.app.zip"
    sidecar = sidecar_path(target)
    assert sidecar.name == "mysql_backup_20250312_db01_my.app.sav"
    assert target_for_sidecar(sidecar) == target


def test_list_artifacts_sorted_and_filtered(tmp_path):
    for name in (
        "mysql_backup_20250312_db01_shop.zip",
        "mysql_backup_20250301_db01_shop.zip",
        "mysql_backup_20250312_db01_blog.zip",
        "mysql_backup_20250312_db01_shop.sav",
        "readme.txt",
    ):
        (tmp_path / name).write_bytes(b"data")
    (tmp_path / "mysql_backup_20250313_db01_dir.zip").mkdir()

    items = list_artifacts(tmp_path)

    assert [item.name for item in items] == [
        "mysql_backup_20250301_db01_shop.zip",
        "mysql_backup_20250312_db01_blog.zip",
        "mysql_backup_20250312_db01_shop.zip",
    ]
    assert items[0].size == 4
    assert items[0].mod_time is not None and items[0].mod_time.tzinfo is not None
    assert list_artifacts(tmp_path / "missing") == []


def test_latest_backup_set(tmp_path):
    for name in (
        "mysql_backup_20250310_db01_shop.zip",
        "mysql_backup_20250311_db01_shop.zip",
        "mysql_backup_20250311_db01_blog.zip",
        "mysql_backup_20250312_db01_shop.zip",
    ):
        (tmp_path / name).write_bytes(b"data")

    assert [item.name for item in latest_backup_set(tmp_path)] == ["mysql_backup_20250312_db01_shop.zip"]
    before = latest_backup_set(tmp_path, before=date(2025, 3, 12))
    assert [item.name for item in before] == [
        "mysql_backup_20250311_db01_blog.zip",
        "mysql_backup_20250311_db01_shop.zip",
    ]
    assert latest_backup_set(tmp_path, before=date(2025, 3, 1)) == []
