"""Retention policy enforcement for backups.

Archives are classified by the calendar date in their name and deleted when
that date lies outside every retention window. A date is kept when it falls
inside the daily window or is one of the retained Sundays, month-ends or
year-ends; the windows are unioned, so overlapping buckets can keep more
archives than the individual counts suggest.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, TypeVar, Union

from .errors import RetentionError
from .logs import Reporter
from .naming import list_artifacts, parse_artifact_date
from .types import RetentionSummary

if TYPE_CHECKING:  # pragma: no cover - typing guard
    from .remote import RemoteTransport

YEAR_FLOOR = 2000

T = TypeVar("T")


class RetentionClass(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(slots=True)
class RetentionPolicy:
    retain_daily: int = 14
    retain_weekly: int = 3
    retain_monthly: int = 3
    retain_yearly: int = 3


def _is_month_end(day: date) -> bool:
    return (day + timedelta(days=1)).month != day.month


def classify(day: date) -> RetentionClass:
    """Return the single retention class of *day*: yearly > monthly > weekly > daily."""

    if day.month == 12 and day.day == 31:
        return RetentionClass.YEARLY
    if _is_month_end(day):
        return RetentionClass.MONTHLY
    if day.weekday() == 6:
        return RetentionClass.WEEKLY
    return RetentionClass.DAILY


def month_end(year: int, month: int) -> date:
    if month == 12:
        first_of_next = date(year + 1, 1, 1)
    else:
        first_of_next = date(year, month + 1, 1)
    return first_of_next - timedelta(days=1)


@dataclass(slots=True)
class KeepSets:
    daily_cutoff: date
    sundays: Set[date] = field(default_factory=set)
    month_ends: Set[date] = field(default_factory=set)
    year_ends: Set[date] = field(default_factory=set)

    def keeps(self, day: date) -> bool:
        return (
            day >= self.daily_cutoff
            or day in self.sundays
            or day in self.month_ends
            or day in self.year_ends
        )


def keep_sets(today: date, policy: RetentionPolicy) -> KeepSets:
    sets = KeepSets(daily_cutoff=today - timedelta(days=max(policy.retain_daily, 0)))

    last_sunday = today - timedelta(days=(today.weekday() + 1) % 7)
    for index in range(max(policy.retain_weekly, 0)):
        sunday = last_sunday - timedelta(weeks=index)
        if sunday.year < YEAR_FLOOR:
            break
        sets.sundays.add(sunday)

    year, month = today.year, today.month
    for _ in range(max(policy.retain_monthly, 0)):
        if year < YEAR_FLOOR:
            break
        sets.month_ends.add(month_end(year, month))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)

    for offset in range(max(policy.retain_yearly, 0)):
        year = today.year - offset
        if year < YEAR_FLOOR:
            break
        sets.year_ends.add(date(year, 12, 31))
    return sets


def _today(now: Optional[Union[datetime, date]]) -> date:
    if now is None:
        return datetime.now().date()
    if isinstance(now, datetime):
        return now.date()
    return now


def should_keep(day: date, today: date, policy: RetentionPolicy) -> bool:
    return keep_sets(today, policy).keeps(day)


def select_for_deletion(
    items: Iterable[T],
    today: date,
    policy: RetentionPolicy,
    *,
    date_of=lambda item: item.date,
) -> List[T]:
    sets = keep_sets(today, policy)
    return [item for item in items if not sets.keeps(date_of(item))]


def apply_retention(
    directory: Path,
    policy: RetentionPolicy,
    *,
    reporter: Reporter,
    now: Optional[Union[datetime, date]] = None,
) -> RetentionSummary:
    """Delete local archives outside the retention windows."""

    try:
        items = list_artifacts(Path(directory))
    except OSError as exc:
        raise RetentionError(f"cannot list {directory}: {exc}") from exc
    summary = RetentionSummary()
    doomed = {item.name for item in select_for_deletion(items, _today(now), policy)}
    for item in items:
        if item.name not in doomed:
            summary.kept.append(item.name)
            continue
        try:
            item.path.unlink()
        except OSError as exc:
            summary.failed.append(item.name)
            reporter.warning("retention_delete_failed", artifact=item.name, error=str(exc))
            continue
        summary.removed.append(item.name)
        reporter.info("backup_removed", artifact=item.name, period=classify(item.date).value, reason="retention")
    reporter.event(
        event="retention_applied",
        phase="retention",
        ok=True,
        directory=str(directory),
        removed=len(summary.removed),
        kept=len(summary.kept),
    )
    return summary


def apply_remote_retention(
    transport: "RemoteTransport",
    policy: RetentionPolicy,
    *,
    reporter: Reporter,
    now: Optional[Union[datetime, date]] = None,
) -> RetentionSummary:
    """Delete remote archives outside the retention windows."""

    try:
        entries = [entry for entry in transport.listdir() if parse_artifact_date(entry.name)]
    except OSError as exc:
        raise RetentionError(f"cannot list remote directory: {exc}") from exc
    summary = RetentionSummary()
    doomed = {
        entry.name
        for entry in select_for_deletion(
            entries, _today(now), policy, date_of=lambda entry: parse_artifact_date(entry.name)
        )
    }
    for entry in entries:
        if entry.name not in doomed:
            summary.kept.append(entry.name)
            continue
        try:
            transport.remove(entry.name)
        except OSError as exc:
            summary.failed.append(entry.name)
            reporter.warning("remote_retention_delete_failed", artifact=entry.name, error=str(exc))
            continue
        summary.removed.append(entry.name)
        reporter.info("remote_backup_removed", artifact=entry.name, reason="retention")
    reporter.event(
        event="retention_applied",
        phase="remote_retention",
        ok=True,
        removed=len(summary.removed),
        kept=len(summary.kept),
    )
    return summary


__all__ = [
    "KeepSets",
    "RetentionClass",
    "RetentionPolicy",
    "apply_remote_retention",
    "apply_retention",
    "classify",
    "keep_sets",
    "month_end",
    "select_for_deletion",
    "should_keep",
]
