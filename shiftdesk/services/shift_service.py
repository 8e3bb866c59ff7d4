import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from shiftdesk.core.authorization import Actor
from shiftdesk.core.config import Settings, get_settings
from shiftdesk.core.errors import PermissionDenied
from shiftdesk.core.timeutil import to_utc_aware, utcnow
from shiftdesk.schemas.time_entry import TimeEntryPatch
from shiftdesk.services.aggregation_engine import AggregateResult, SortState, aggregate, entry_hours
from shiftdesk.services.profile_store import ProfileRecord, ProfileStore
from shiftdesk.services.query_resolver import (
    ResolvedQuery,
    ShiftQuery,
    WindowPreset,
    WindowSpec,
    resolve_query,
    resolve_window,
)
from shiftdesk.services.retry import call_with_retries
from shiftdesk.services.shift_ledger import ShiftLedger, TimeEntryRecord
from shiftdesk.services.shift_state_machine import BatchForceEndResult, ShiftStateMachine


@dataclass(frozen=True)
class ShiftLogEntry:
    entry: TimeEntryRecord
    display_name: str
    elapsed_seconds: int


@dataclass(frozen=True)
class ActivitySnapshot:
    live_shifts: int
    month_hours: float
    active_entry_id: Optional[str]


class ShiftService:
    """Owns shift commands and aggregate queries for one ledger.

    Built once per application with its collaborators and handed to request
    handlers; nothing here is module-level state.
    """

    def __init__(
        self,
        ledger: ShiftLedger,
        profiles: ProfileStore,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.profiles = profiles
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self.machine = ShiftStateMachine(ledger, profiles, clock=clock)

    def _retrying(self, fn, operation: str):
        return call_with_retries(
            fn,
            attempts=self.settings.io_retry_attempts,
            base_seconds=self.settings.io_retry_base_seconds,
            operation=operation,
            sleep=self._sleep,
        )

    # commands

    def start_shift(self, actor: Actor, **kwargs) -> TimeEntryRecord:
        # not retried: a create that timed out may have committed
        return self.machine.start(actor, **kwargs)

    def end_shift(self, actor: Actor, **kwargs) -> TimeEntryRecord:
        return self.machine.end(actor, **kwargs)

    def force_end_shift(self, actor: Actor, entry_id: str) -> TimeEntryRecord:
        record, _ = self._retrying(lambda: self.machine.force_end(actor, entry_id), "force_end")
        return record

    def batch_force_end(self, actor: Actor, entry_ids: Iterable[str]) -> BatchForceEndResult:
        return self.machine.batch_force_end(actor, entry_ids, runner=self._retrying)

    def add_entry(self, actor: Actor, **kwargs) -> TimeEntryRecord:
        return self.machine.add_entry(actor, **kwargs)

    def edit_entry(self, actor: Actor, entry_id: str, patch: TimeEntryPatch) -> TimeEntryRecord:
        return self._retrying(lambda: self.machine.edit(actor, entry_id, patch), "edit")

    def delete_entry(self, actor: Actor, entry_id: str) -> None:
        self.machine.delete(actor, entry_id)

    # reads

    def list_profiles(self) -> List[ProfileRecord]:
        return self._retrying(self.profiles.list, "profiles.list")

    def get_profile(self, profile_id: int) -> ProfileRecord:
        return self._retrying(lambda: self.profiles.get(profile_id), "profiles.get")

    def get_entry(self, actor: Actor, entry_id: str) -> TimeEntryRecord:
        record = self._retrying(lambda: self.ledger.get(entry_id), "get")
        if record.employee_id != actor.employee_id and not actor.is_admin:
            raise PermissionDenied("Employees may only view their own entries")
        return record

    def active_shift(self, actor: Actor, employee_id: Optional[int] = None) -> Optional[TimeEntryRecord]:
        target = actor.employee_id if employee_id is None else int(employee_id)
        if target != actor.employee_id and not actor.is_admin:
            raise PermissionDenied("Employees may only view their own shift")
        return self._retrying(lambda: self.ledger.open_entry_for(target), "open_entry_for")

    def scope_query(self, actor: Actor, query: ShiftQuery) -> ShiftQuery:
        """Non-admins only ever see their own entries."""
        if actor.is_admin:
            return query
        return query.restricted_to(actor.employee_id)

    def resolve(self, query: ShiftQuery, now: Optional[datetime] = None) -> ResolvedQuery:
        return resolve_query(query, now or self._clock(), self.settings.timezone)

    def query_aggregates(
        self,
        query: ShiftQuery,
        sort: Optional[SortState] = None,
        *,
        include_idle: bool = False,
        now: Optional[datetime] = None,
    ) -> AggregateResult:
        now = now or self._clock()
        resolved = self.resolve(query, now)

        entries = self._retrying(
            lambda: self.ledger.list(resolved.window, resolved.employee_ids),
            "list",
        )
        profiles = self.list_profiles()

        return aggregate(
            entries,
            resolved,
            profiles,
            now=now,
            sort=sort,
            include_idle=include_idle,
            recent_window=self.settings.recent_activity_window,
        )

    def list_shifts(self, query: ShiftQuery, now: Optional[datetime] = None) -> List[ShiftLogEntry]:
        """Matching entries, newest first, joined with display names."""
        now = to_utc_aware(now or self._clock())
        resolved = self.resolve(query, now)

        entries = self._retrying(
            lambda: self.ledger.list(resolved.window, resolved.employee_ids),
            "list",
        )
        names = {p.id: p.display_name for p in self.list_profiles()}

        rows = []
        for entry in entries:
            name = names.get(entry.employee_id, "")
            if not resolved.matches(entry, name):
                continue
            rows.append(
                ShiftLogEntry(
                    entry=entry,
                    display_name=name,
                    elapsed_seconds=int(entry_hours(entry, now) * 3600),
                )
            )
        rows.sort(key=lambda r: r.entry.start_time, reverse=True)
        return rows

    def activity_snapshot(self, actor: Actor, now: Optional[datetime] = None) -> ActivitySnapshot:
        """Live shift count plus the caller's hours this month."""
        now = to_utc_aware(now or self._clock())
        month = resolve_window(WindowSpec(WindowPreset.THIS_MONTH), now, self.settings.timezone)

        live = self._retrying(self.ledger.count_open, "count_open")
        own = self._retrying(lambda: self.ledger.list(month, [actor.employee_id]), "list")

        active = next((e for e in own if e.is_open), None)
        if active is None:
            active = self._retrying(lambda: self.ledger.open_entry_for(actor.employee_id), "open_entry_for")

        return ActivitySnapshot(
            live_shifts=live,
            month_hours=sum(entry_hours(e, now) for e in own),
            active_entry_id=active.id if active is not None else None,
        )
