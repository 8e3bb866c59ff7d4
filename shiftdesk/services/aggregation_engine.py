"""Folds time entries matching a resolved query into per-employee and global statistics."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set

from shiftdesk.core.timeutil import hours_between, to_utc_aware
from shiftdesk.services.profile_store import ProfileRecord
from shiftdesk.services.query_resolver import ResolvedQuery
from shiftdesk.services.shift_ledger import TimeEntryRecord, TimeWindow

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


class SortKey(str, Enum):
    REVENUE = "revenue"
    HOURS = "hours"
    SHIFTS = "shifts"
    NAME = "name"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


def default_direction(key: SortKey) -> SortDirection:
    # names read A-Z, figures read largest first
    return SortDirection.ASC if SortKey(key) is SortKey.NAME else SortDirection.DESC


@dataclass(frozen=True)
class SortState:
    key: SortKey = SortKey.REVENUE
    direction: SortDirection = SortDirection.DESC

    @classmethod
    def for_key(cls, key, direction=None) -> "SortState":
        key = SortKey(key)
        return cls(key=key, direction=SortDirection(direction) if direction else default_direction(key))

    def toggle(self, key) -> "SortState":
        key = SortKey(key)
        if key is self.key:
            flipped = SortDirection.ASC if self.direction is SortDirection.DESC else SortDirection.DESC
            return SortState(key=key, direction=flipped)
        return SortState(key=key, direction=default_direction(key))


@dataclass
class EmployeeStats:
    employee_id: int
    name: str
    avatar_url: Optional[str] = None
    hours: float = 0.0
    shifts: int = 0
    revenue: Decimal = Decimal("0")
    workdays: int = 0
    last_activity: Optional[datetime] = None
    is_live: bool = False
    is_recently_active: bool = False


@dataclass
class AggregateTotals:
    hours: float = 0.0
    revenue: Decimal = Decimal("0")
    shifts: int = 0
    workdays: int = 0
    live_shifts: int = 0


@dataclass
class AggregateResult:
    window: TimeWindow
    evaluated_at: datetime
    sort: SortState
    per_employee: List[EmployeeStats]
    totals: AggregateTotals


def entry_hours(entry: TimeEntryRecord, now: datetime) -> float:
    """Clamped duration; an open entry runs until ``now``."""
    effective_end = entry.end_time if entry.end_time is not None else now
    return hours_between(entry.start_time, effective_end)


@dataclass
class _Fold:
    hours: float = 0.0
    shifts: int = 0
    revenue: Decimal = Decimal("0")
    days: Set[date] = field(default_factory=set)
    last_activity: Optional[datetime] = None
    live: int = 0

    def add(self, entry: TimeEntryRecord, now: datetime, tz) -> None:
        self.hours += entry_hours(entry, now)
        self.shifts += 1
        self.revenue += entry.revenue
        start = to_utc_aware(entry.start_time)
        self.days.add(start.astimezone(tz).date())
        if self.last_activity is None or start > self.last_activity:
            self.last_activity = start
        if entry.is_open:
            self.live += 1


def _stats_from_fold(
    employee_id: int,
    profile: Optional[ProfileRecord],
    fold: _Fold,
    now: datetime,
    recent_window: timedelta,
) -> EmployeeStats:
    recently_active = fold.last_activity is not None and (now - fold.last_activity) < recent_window
    return EmployeeStats(
        employee_id=employee_id,
        name=profile.display_name if profile is not None else "",
        avatar_url=profile.avatar_url if profile is not None else None,
        hours=fold.hours,
        shifts=fold.shifts,
        revenue=fold.revenue,
        workdays=len(fold.days),
        last_activity=fold.last_activity,
        is_live=fold.live > 0,
        is_recently_active=recently_active,
    )


def sort_stats(stats: Iterable[EmployeeStats], sort: SortState) -> List[EmployeeStats]:
    """Stable sort; ties keep their input order in both directions."""
    if sort.key is SortKey.NAME:
        def key(s):
            return s.name.casefold()
    else:
        attr = sort.key.value

        def key(s):
            return getattr(s, attr)

    return sorted(stats, key=key, reverse=sort.direction is SortDirection.DESC)


def aggregate(
    entries: Iterable[TimeEntryRecord],
    query: ResolvedQuery,
    profiles: Sequence[ProfileRecord],
    *,
    now: datetime,
    sort: Optional[SortState] = None,
    include_idle: bool = False,
    recent_window: timedelta = RECENT_ACTIVITY_WINDOW,
) -> AggregateResult:
    """Fold ``entries`` matching ``query``.

    Input order for ties is the order of ``profiles`` followed by employees
    without a profile in order of first appearance. With ``include_idle``,
    every profile passing the employee filters is listed even without entries.
    """
    now = to_utc_aware(now)
    sort = sort or SortState()
    profile_by_id: Dict[int, ProfileRecord] = {p.id: p for p in profiles}

    folds: Dict[int, _Fold] = {}
    if include_idle:
        for p in profiles:
            if query.matches_employee(p.id, p.display_name):
                folds[p.id] = _Fold()

    total = _Fold()
    for entry in entries:
        profile = profile_by_id.get(entry.employee_id)
        name = profile.display_name if profile is not None else ""
        if not query.matches(entry, name):
            continue
        folds.setdefault(entry.employee_id, _Fold()).add(entry, now, query.timezone)
        total.add(entry, now, query.timezone)

    ordered_ids = [p.id for p in profiles if p.id in folds]
    ordered_ids += [employee_id for employee_id in folds if employee_id not in profile_by_id]

    stats = [
        _stats_from_fold(employee_id, profile_by_id.get(employee_id), folds[employee_id], now, recent_window)
        for employee_id in ordered_ids
    ]

    totals = AggregateTotals(
        hours=total.hours,
        revenue=total.revenue,
        shifts=total.shifts,
        workdays=len(total.days),
        live_shifts=total.live,
    )

    return AggregateResult(
        window=query.window,
        evaluated_at=now,
        sort=sort,
        per_employee=sort_stats(stats, sort),
        totals=totals,
    )
