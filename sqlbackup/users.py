"""Redistribute an exported account/grant dump into per-database SQL fragments."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .logs import Reporter
from .sqltokens import find_account, find_credential, find_grant_database, strip_credential
from .types import RedistributionResult

_CREATE_PREFIX = "CREATE USER "
_GRANT_PREFIX = "GRANT "


@dataclass(slots=True)
class GrantLine:
    raw: str
    database: Optional[str] = None


@dataclass(slots=True)
class UserRecord:
    """All hosts, credentials and grants collected for one account name."""

    name: str
    hosts: List[str] = field(default_factory=list)
    password_by_host: Dict[str, str] = field(default_factory=dict)
    grants: List[GrantLine] = field(default_factory=list)
    databases: List[str] = field(default_factory=list)
    password: Optional[str] = None

    def add_host(self, host: str) -> None:
        if host not in self.hosts:
            self.hosts.append(host)

    def add_database(self, database: str) -> None:
        if database not in self.databases:
            self.databases.append(database)

    def set_password(self, host: str, value: str) -> bool:
        """Record *value* for *host*; returns False on a conflicting earlier hash."""

        if not value:
            return True
        previous = self.password_by_host.get(host)
        if previous is not None and previous != value:
            return False
        self.password_by_host[host] = value
        if self.password is None:
            self.password = value
        return True

    @property
    def has_different_passwords(self) -> bool:
        return len(set(self.password_by_host.values())) > 1

    def identities(self) -> List[str]:
        return [f"{self.name}@{host}" for host in self.hosts]


def escape_sql(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "''")


def _record_credential(record: UserRecord, host: str, line: str, reporter: Optional[Reporter]) -> None:
    credential = find_credential(line)
    if credential is None:
        return
    if not record.set_password(host, credential) and reporter is not None:
        reporter.warning("user_password_conflict", user=record.name, host=host)


def parse_user_records(text: str, reporter: Optional[Reporter] = None) -> Dict[str, UserRecord]:
    """Build one :class:`UserRecord` per account name from the raw export."""

    users: Dict[str, UserRecord] = {}
    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        upper = trimmed.upper()
        is_create = upper.startswith(_CREATE_PREFIX)
        is_grant = upper.startswith(_GRANT_PREFIX)
        if not (is_create or is_grant):
            continue
        account = find_account(trimmed)
        if account is None:
            continue
        name, host = account
        record = users.get(name)
        if record is None:
            record = users[name] = UserRecord(name=name)
        record.add_host(host)
        _record_credential(record, host, trimmed, reporter)
        if is_grant:
            database = find_grant_database(trimmed)
            if database:
                record.add_database(database)
            record.grants.append(GrantLine(raw=line, database=database or None))
    return users


def _create_statement(name: str, host: str, password: Optional[str]) -> str:
    statement = f"CREATE USER IF NOT EXISTS '{escape_sql(name)}'@'{escape_sql(host)}'"
    if password:
        statement += f" IDENTIFIED BY PASSWORD '{escape_sql(password)}'"
    return statement + ";"


def _user_block(record: UserRecord, database: str) -> str:
    lines = [_create_statement(record.name, host, record.password) for host in record.hosts]
    for grant in record.grants:
        if grant.database != database:
            continue
        stripped = strip_credential(grant.raw).strip()
        if not stripped:
            continue
        if not stripped.endswith(";"):
            stripped += ";"
        lines.append(stripped)
    return "\n".join(lines)


def redistribute(text: str, reporter: Optional[Reporter] = None) -> RedistributionResult:
    """Split an account export into one idempotent SQL fragment per database.

    Accounts without any database-scoped grant never appear in a fragment.
    Every account referenced is listed in ``identities`` as ``user@host``.
    """

    if not text:
        return RedistributionResult(fragments={}, identities=[])
    users = parse_user_records(text, reporter)
    identities: List[str] = []
    seen = set()
    for record in users.values():
        for identity in record.identities():
            if identity not in seen:
                seen.add(identity)
                identities.append(identity)

    blocks: Dict[str, List[str]] = {}
    for record in users.values():
        if not record.databases:
            continue
        if record.has_different_passwords and reporter is not None:
            reporter.warning("user_different_passwords", user=record.name)
        for database in record.databases:
            database = database.strip()
            if not database:
                continue
            block = _user_block(record, database)
            if block:
                blocks.setdefault(database, []).append(block)

    fragments = {database: "\n\n".join(parts) for database, parts in blocks.items()}
    return RedistributionResult(fragments=fragments, identities=identities)


__all__ = ["GrantLine", "UserRecord", "escape_sql", "parse_user_records", "redistribute"]
