"""Tokenizer for identifiers in exported account SQL.

Account, host and database names appear in four lexical forms: backtick
quoted, double quoted, single quoted, or bare. A quoted token ends only at
the same delimiter that opened it. Bare tokens accept ASCII letters and
digits, ``$``, ``_`` and every code point from U+0080 upwards, which covers
non-Latin identifiers.
"""
from __future__ import annotations

import re
from typing import Optional, Tuple

QUOTES = frozenset("`\"'")
_OBJECT_TYPES = frozenset({"TABLE", "FUNCTION", "PROCEDURE"})

_CREDENTIAL_RE = re.compile(r"\s*IDENTIFIED\s+BY\s+PASSWORD\s+", re.IGNORECASE)
_SCOPE_RE = re.compile(r"(?<![\w$])ON\s+", re.IGNORECASE)


def is_bare_char(char: str) -> bool:
    if ord(char) >= 0x80:
        return True
    return char.isalnum() or char in "$_"


def read_quoted(text: str, pos: int, *, allow_empty: bool = False) -> Optional[Tuple[str, int]]:
    """Read a quoted token starting at *pos*; returns (value, end) or None."""

    if pos >= len(text) or text[pos] not in QUOTES:
        return None
    delimiter = text[pos]
    close = text.find(delimiter, pos + 1)
    if close == -1:
        return None
    if close == pos + 1 and not allow_empty:
        return None
    return text[pos + 1 : close], close + 1


def read_bare(text: str, pos: int) -> Optional[Tuple[str, int]]:
    end = pos
    while end < len(text) and is_bare_char(text[end]):
        end += 1
    if end == pos:
        return None
    return text[pos:end], end


def read_identifier(text: str, pos: int) -> Optional[Tuple[str, int]]:
    """Read one identifier in any of the four forms; returns (value, end) or None."""

    if pos >= len(text):
        return None
    if text[pos] in QUOTES:
        token = read_quoted(text, pos)
    else:
        token = read_bare(text, pos)
    if token is None:
        return None
    value, end = token
    value = value.strip()
    if not value:
        return None
    return value, end


def skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _account_at(text: str, pos: int) -> Optional[Tuple[str, str]]:
    user = read_identifier(text, pos)
    if user is None:
        return None
    at = skip_spaces(text, user[1])
    if at >= len(text) or text[at] != "@":
        return None
    host = read_identifier(text, skip_spaces(text, at + 1))
    if host is None:
        return None
    return user[0], host[0]


def find_account(text: str) -> Optional[Tuple[str, str]]:
    """Return the first ``user@host`` pair in *text*."""

    for pos in range(len(text)):
        found = _account_at(text, pos)
        if found is not None:
            return found
    return None


def find_credential(text: str) -> Optional[str]:
    """Return the hash following ``IDENTIFIED BY PASSWORD``; only quoted values count."""

    for match in _CREDENTIAL_RE.finditer(text):
        token = read_quoted(text, match.end(), allow_empty=True)
        if token is not None:
            value = token[0].strip()
            return value or None
    return None


def strip_credential(text: str) -> str:
    """Remove every ``IDENTIFIED BY PASSWORD '<hash>'`` clause from *text*."""

    parts = []
    cursor = 0
    for match in _CREDENTIAL_RE.finditer(text):
        if match.start() < cursor:
            continue
        token = read_quoted(text, match.end(), allow_empty=True)
        if token is None:
            continue
        parts.append(text[cursor : match.start()])
        cursor = token[1]
    parts.append(text[cursor:])
    return "".join(parts)


def _scope_database(text: str, pos: int) -> Tuple[bool, Optional[str]]:
    """Parse a grant scope at *pos*; returns (matched, database)."""

    pos = skip_spaces(text, pos)
    if pos < len(text) and text[pos] == "*":
        return True, None
    first = read_identifier(text, pos)
    if first is None:
        return False, None
    value, end = first
    dot = skip_spaces(text, end)
    if (dot >= len(text) or text[dot] != ".") and value.upper() in _OBJECT_TYPES:
        return _scope_database(text, end)
    if dot >= len(text) or text[dot] != ".":
        return False, None
    rest = skip_spaces(text, dot + 1)
    if rest < len(text) and text[rest] == "*":
        return True, value
    if read_identifier(text, rest) is not None:
        return True, value
    return False, None


def find_grant_database(text: str) -> Optional[str]:
    """Return the database a grant targets; None for ``*.*`` or when no scope is found."""

    for match in _SCOPE_RE.finditer(text):
        matched, database = _scope_database(text, match.end())
        if matched:
            return database
    return None


__all__ = [
    "find_account",
    "find_credential",
    "find_grant_database",
    "is_bare_char",
    "read_bare",
    "read_identifier",
    "read_quoted",
    "skip_spaces",
    "strip_credential",
]
