from sqlbackup.users import escape_sql, parse_user_records, redistribute


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - recorder
        self.events.append(("event", event, phase, ok, extra))

    def names(self, level: str):
        return [entry[1] for entry in self.events if entry[0] == level]


EXPORT = """
-- Grants for 'u1'@'%'
GRANT USAGE ON *.* TO 'u1'@'%' IDENTIFIED BY PASSWORD '*AAA';
GRANT SELECT, INSERT ON `db1`.* TO 'u1'@'%';
-- Grants for 'u2'@'localhost'
GRANT USAGE ON *.* TO 'u2'@'localhost' IDENTIFIED BY PASSWORD '*BBB';
GRANT ALL PRIVILEGES ON `db2`.* TO 'u2'@'localhost';
GRANT SELECT ON `db1`.* TO 'u2'@'localhost';
"""


def test_grants_are_split_per_database():
    result = redistribute(EXPORT)

    assert set(result.fragments) == {"db1", "db2"}
    db1 = result.fragments["db1"]
    assert "CREATE USER IF NOT EXISTS 'u1'@'%' IDENTIFIED BY PASSWORD '*AAA';" in db1
    assert "CREATE USER IF NOT EXISTS 'u2'@'localhost' IDENTIFIED BY PASSWORD '*BBB';" in db1
    assert "GRANT SELECT, INSERT ON `db1`.* TO 'u1'@'%';" in db1
    assert "GRANT SELECT ON `db1`.* TO 'u2'@'localhost';" in db1
    assert "`db2`" not in db1
    assert "USAGE" not in db1

    db2 = result.fragments["db2"]
    assert "CREATE USER IF NOT EXISTS 'u2'@'localhost' IDENTIFIED BY PASSWORD '*BBB';" in db2
    assert "GRANT ALL PRIVILEGES ON `db2`.* TO 'u2'@'localhost';" in db2
    assert "u1" not in db2
    assert "`db1`" not in db2

    assert result.identities == ["u1@%", "u2@localhost"]


def test_empty_export_yields_nothing():
    result = redistribute("")
    assert result.fragments == {}
    assert result.identities == []

    assert redistribute("-- no grants here\n\n").fragments == {}


def test_global_only_accounts_are_listed_but_not_emitted():
    export = (
        "GRANT ALL PRIVILEGES ON *.* TO 'root'@'localhost' WITH GRANT OPTION;\n"
        "GRANT SELECT ON `shop`.* TO 'reader'@'%';\n"
    )
    result = redistribute(export)

    assert list(result.fragments) == ["shop"]
    assert "root" not in result.fragments["shop"]
    assert "root@localhost" in result.identities
    assert "reader@%" in result.identities


def test_credentials_are_stripped_from_grant_lines():
    export = "GRANT SELECT ON `crm`.* TO 'app'@'10.%' IDENTIFIED BY PASSWORD '*HASH'\n"
    fragment = redistribute(export).fragments["crm"]
    lines = fragment.splitlines()

    assert lines[0] == "CREATE USER IF NOT EXISTS 'app'@'10.%' IDENTIFIED BY PASSWORD '*HASH';"
    assert lines[1] == "GRANT SELECT ON `crm`.* TO 'app'@'10.%';"


def test_account_without_password_gets_plain_create():
    fragment = redistribute("GRANT SELECT ON `crm`.* TO 'guest'@'%';").fragments["crm"]
    assert fragment.splitlines()[0] == "CREATE USER IF NOT EXISTS 'guest'@'%';"


def test_conflicting_password_for_same_host_keeps_first():
    export = (
        "CREATE USER 'app'@'h1' IDENTIFIED BY PASSWORD '*ONE';\n"
        "GRANT SELECT ON `db`.* TO 'app'@'h1' IDENTIFIED BY PASSWORD '*TWO';\n"
    )
    logger = StubLogger()
    result = redistribute(export, logger)

    assert "user_password_conflict" in logger.names("warning")
    fragment = result.fragments["db"]
    assert "'*ONE'" in fragment
    assert "*TWO" not in fragment


def test_different_passwords_across_hosts_warns():
    export = (
        "GRANT SELECT ON `db`.* TO 'app'@'h1' IDENTIFIED BY PASSWORD '*ONE';\n"
        "GRANT SELECT ON `db`.* TO 'app'@'h2' IDENTIFIED BY PASSWORD '*TWO';\n"
    )
    logger = StubLogger()
    result = redistribute(export, logger)

    assert "user_different_passwords" in logger.names("warning")
    fragment = result.fragments["db"]
    assert "'app'@'h1'" in fragment
    assert "'app'@'h2'" in fragment


def test_mixed_quote_forms_and_non_latin_names():
    export = (
        'GRANT SELECT ON "reports".* TO `svc`@\'10.0.0.%\';\n'
        "GRANT SELECT ON datenbank_ü.* TO benutzer_ß@localhost;\n"
        "GRANT EXECUTE ON PROCEDURE `ops`.`cleanup` TO 'svc'@'10.0.0.%';\n"
    )
    result = redistribute(export)

    assert set(result.fragments) == {"reports", "datenbank_ü", "ops"}
    assert "CREATE USER IF NOT EXISTS 'benutzer_ß'@'localhost';" in result.fragments["datenbank_ü"]
    assert "GRANT EXECUTE ON PROCEDURE `ops`.`cleanup` TO 'svc'@'10.0.0.%';" in result.fragments["ops"]
    assert "reports" not in result.fragments["ops"]


def test_parse_collects_hosts_and_databases():
    users = parse_user_records(EXPORT)

    assert sorted(users) == ["u1", "u2"]
    assert users["u2"].hosts == ["localhost"]
    assert users["u2"].databases == ["db2", "db1"]
    assert users["u1"].password == "*AAA"


def test_escape_sql_doubles_quotes_and_backslashes():
    assert escape_sql("o'brien\\x") == "o''brien\\\\x"
