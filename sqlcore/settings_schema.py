from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Iterator, List, Mapping, Optional

# Section name -> allowed option names; None marks a scalar top-level key.
_ALLOWED_STRUCTURE: Mapping[str, Optional[FrozenSet[str]]] = {
    "version": None,
    "working_dir": None,
    "backup_dir": None,
    "mysql": frozenset({"host", "hostname", "port", "user", "password", "bin_dir", "is_mariadb"}),
    "retention": frozenset({"retain_daily", "retain_weekly", "retain_monthly", "retain_yearly"}),
    "remote": frozenset(
        {"dir", "host", "port", "user", "password", "key_file", "passphrase", "timeout_s", "strict_host_keys"}
    ),
    "backup": frozenset({"stop_on_error"}),
}


@dataclass(slots=True)
class SettingsValidator:
    """Report settings keys the backup tool does not understand."""

    schema: Mapping[str, Optional[FrozenSet[str]]]

    def unknown_keys(self, payload: Mapping[str, Any]) -> List[str]:
        return sorted(self._walk(payload))

    def _walk(self, payload: Mapping[str, Any]) -> Iterator[str]:
        for section, value in payload.items():
            if section not in self.schema:
                yield section
                continue
            allowed = self.schema[section]
            if allowed is None or not isinstance(value, Mapping):
                continue
            yield from (f"{section}.{key}" for key in value if key not in allowed)


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]
