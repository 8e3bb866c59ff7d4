"""Turns window presets and filters into a concrete, resolved query.

All calendar arithmetic uses one reference timezone so that "today" and
"this week" mean the same interval for every caller.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from shiftdesk.core.errors import ValidationError
from shiftdesk.core.timeutil import to_utc_aware
from shiftdesk.services.shift_ledger import TimeEntryRecord, TimeWindow


class WindowPreset(str, Enum):
    TODAY = "today"
    THIS_WEEK = "thisWeek"
    LAST_WEEK = "lastWeek"
    THIS_MONTH = "thisMonth"
    LAST_MONTH = "lastMonth"
    LAST_30_DAYS = "last30Days"
    CUSTOM_MONTH = "customMonth"
    LAST_24_HOURS = "last24Hours"
    LAST_7_DAYS = "last7Days"


class StatusFilter(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    FINISHED = "finished"


@dataclass(frozen=True)
class WindowSpec:
    preset: WindowPreset = WindowPreset.THIS_MONTH
    month: Optional[int] = None
    year: Optional[int] = None

    def __post_init__(self):
        try:
            preset = WindowPreset(self.preset)
        except ValueError as exc:
            raise ValidationError(f"Unknown window preset: {self.preset}") from exc
        object.__setattr__(self, "preset", preset)

        if preset is WindowPreset.CUSTOM_MONTH:
            if self.month is None or self.year is None:
                raise ValidationError("customMonth requires month and year")
            if not 1 <= int(self.month) <= 12:
                raise ValidationError("month must be between 1 and 12")
            if not 1970 <= int(self.year) <= 9999:
                raise ValidationError("year must be between 1970 and 9999")

    @classmethod
    def custom_month(cls, month: int, year: int) -> "WindowSpec":
        return cls(preset=WindowPreset.CUSTOM_MONTH, month=int(month), year=int(year))


def _local_midnight(d: date, tz: tzinfo) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=tz)


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_window(year: int, month: int, tz: tzinfo) -> TimeWindow:
    next_year, next_month = _shift_month(year, month, 1)
    return TimeWindow(
        start=_local_midnight(date(year, month, 1), tz).astimezone(timezone.utc),
        end=_local_midnight(date(next_year, next_month, 1), tz).astimezone(timezone.utc),
    )


def _day_window(first: date, last_exclusive: date, tz: tzinfo) -> TimeWindow:
    return TimeWindow(
        start=_local_midnight(first, tz).astimezone(timezone.utc),
        end=_local_midnight(last_exclusive, tz).astimezone(timezone.utc),
    )


def resolve_window(spec: WindowSpec, now: datetime, tz: tzinfo) -> TimeWindow:
    now_utc = to_utc_aware(now)
    today = now_utc.astimezone(tz).date()
    tomorrow = today + timedelta(days=1)
    monday = today - timedelta(days=today.weekday())

    preset = spec.preset
    if preset is WindowPreset.TODAY:
        return _day_window(today, tomorrow, tz)
    if preset is WindowPreset.THIS_WEEK:
        return _day_window(monday, monday + timedelta(days=7), tz)
    if preset is WindowPreset.LAST_WEEK:
        return _day_window(monday - timedelta(days=7), monday, tz)
    if preset is WindowPreset.THIS_MONTH:
        return _month_window(today.year, today.month, tz)
    if preset is WindowPreset.LAST_MONTH:
        year, month = _shift_month(today.year, today.month, -1)
        return _month_window(year, month, tz)
    if preset is WindowPreset.LAST_30_DAYS:
        return _day_window(today - timedelta(days=30), tomorrow, tz)
    if preset is WindowPreset.CUSTOM_MONTH:
        return _month_window(int(spec.year), int(spec.month), tz)

    # rolling windows for the shift log
    lookback = timedelta(hours=24) if preset is WindowPreset.LAST_24_HOURS else timedelta(days=7)
    return TimeWindow(
        start=now_utc - lookback,
        end=_local_midnight(tomorrow, tz).astimezone(timezone.utc),
    )


@dataclass(frozen=True)
class ShiftQuery:
    window: WindowSpec = field(default_factory=WindowSpec)
    employee_ids: FrozenSet[int] = frozenset()
    search: str = ""
    status: StatusFilter = StatusFilter.ALL

    def restricted_to(self, employee_id: int) -> "ShiftQuery":
        return ShiftQuery(
            window=self.window,
            employee_ids=frozenset({int(employee_id)}),
            search=self.search,
            status=self.status,
        )


@dataclass(frozen=True)
class ResolvedQuery:
    window: TimeWindow
    employee_ids: FrozenSet[int]
    search: str
    status: StatusFilter
    timezone: tzinfo

    def matches_employee(self, employee_id: int, display_name: str) -> bool:
        if self.employee_ids and int(employee_id) not in self.employee_ids:
            return False
        if self.search and self.search not in (display_name or "").casefold():
            return False
        return True

    def matches_status(self, entry: TimeEntryRecord) -> bool:
        if self.status is StatusFilter.ACTIVE:
            return entry.is_open
        if self.status is StatusFilter.FINISHED:
            return not entry.is_open
        return True

    def matches(self, entry: TimeEntryRecord, display_name: str) -> bool:
        return (
            self.window.contains(entry.start_time)
            and self.matches_employee(entry.employee_id, display_name)
            and self.matches_status(entry)
        )


def _employee_set(employee_ids: Optional[Iterable[int]]) -> FrozenSet[int]:
    if not employee_ids:
        return frozenset()
    return frozenset(int(i) for i in employee_ids)


def resolve_query(query: ShiftQuery, now: datetime, tz: tzinfo) -> ResolvedQuery:
    return ResolvedQuery(
        window=resolve_window(query.window, now, tz),
        employee_ids=_employee_set(query.employee_ids),
        search=(query.search or "").strip().casefold(),
        status=StatusFilter(query.status),
        timezone=tz,
    )
