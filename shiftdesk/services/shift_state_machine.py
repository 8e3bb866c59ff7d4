import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from shiftdesk.core.authorization import Actor
from shiftdesk.core.errors import Conflict, NotFound, PermissionDenied, ValidationError
from shiftdesk.core.timeutil import utcnow
from shiftdesk.schemas.time_entry import TimeEntryPatch
from shiftdesk.services.profile_store import ProfileStore
from shiftdesk.services.shift_ledger import ShiftLedger, TimeEntryRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchForceEndResult:
    closed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


def _run_once(fn, _operation):
    return fn()


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDenied(f"Only admins may {action}")


class ShiftStateMachine:
    """Open/Closed transitions for a single time entry, with ownership rules.

    Open   = end_time absent
    Closed = end_time present (still editable by admins, no further state)
    """

    def __init__(
        self,
        ledger: ShiftLedger,
        profiles: ProfileStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._ledger = ledger
        self._profiles = profiles
        self._clock = clock

    def start(
        self,
        actor: Actor,
        *,
        employee_id: Optional[int] = None,
        start_time: Optional[datetime] = None,
        revenue=Decimal("0"),
    ) -> TimeEntryRecord:
        target = actor.employee_id if employee_id is None else int(employee_id)
        if target != actor.employee_id and not actor.is_admin:
            raise PermissionDenied("Employees may only start their own shift")

        self._profiles.get(target)

        entry_id = self._ledger.create(
            employee_id=target,
            start_time=start_time or self._clock(),
            revenue=revenue,
        )
        logger.info(
            "Shift started",
            extra={"time_entry_id": entry_id, "employee_id": target, "actor_id": actor.employee_id},
        )
        return self._ledger.get(entry_id)

    def end(
        self,
        actor: Actor,
        *,
        revenue,
        entry_id: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> TimeEntryRecord:
        if entry_id is None:
            entry = self._ledger.open_entry_for(actor.employee_id)
            if entry is None:
                raise NotFound("No open shift found for employee")
        else:
            entry = self._ledger.get(entry_id)

        if entry.employee_id != actor.employee_id and not actor.is_admin:
            raise PermissionDenied("Employees may only end their own shift")
        if not entry.is_open:
            raise Conflict("Shift is already closed")
        if revenue is None:
            raise ValidationError("revenue is required to end a shift")

        patch = TimeEntryPatch(end_time=end_time or self._clock(), revenue=revenue)
        record = self._ledger.update(entry.id, patch, expect_open=True)
        logger.info(
            "Shift ended",
            extra={"time_entry_id": record.id, "employee_id": record.employee_id, "actor_id": actor.employee_id},
        )
        return record

    def force_end(self, actor: Actor, entry_id: str) -> Tuple[TimeEntryRecord, bool]:
        """Close with the current time, revenue untouched. No-op on a closed entry."""
        _require_admin(actor, "force-end shifts")
        return self._force_end(actor, entry_id, self._clock())

    def _force_end(self, actor: Actor, entry_id: str, now: datetime) -> Tuple[TimeEntryRecord, bool]:
        record, changed = self._ledger.close_if_open(entry_id, now)
        if changed:
            logger.info(
                "Shift force-ended",
                extra={"time_entry_id": record.id, "employee_id": record.employee_id, "actor_id": actor.employee_id},
            )
        return record, changed

    def batch_force_end(
        self,
        actor: Actor,
        entry_ids: Iterable[str],
        *,
        runner: Callable[[Callable[[], T], str], T] = _run_once,
    ) -> BatchForceEndResult:
        """Force-end each id on its own; ``runner`` wraps every single close (e.g. with retries).

        An entry whose end_time equals this batch's timestamp counts as closed
        even when a retried close found it already closed.
        """
        _require_admin(actor, "force-end shifts")

        now = self._clock()
        result = BatchForceEndResult()
        for entry_id in dict.fromkeys(str(i) for i in entry_ids):
            try:
                record, changed = runner(lambda: self._force_end(actor, entry_id, now), "force_end")
            except NotFound:
                result.missing.append(entry_id)
                continue
            if changed or record.end_time == now:
                result.closed.append(entry_id)
            else:
                result.unchanged.append(entry_id)
        return result

    def edit(self, actor: Actor, entry_id: str, patch: TimeEntryPatch) -> TimeEntryRecord:
        _require_admin(actor, "edit time entries")

        changes = patch.changes()
        expect_open = None
        if "end_time" in changes:
            current = self._ledger.get(entry_id)
            if (changes["end_time"] is None) != current.is_open:
                raise ValidationError("Editing cannot open or close a shift; end or force-end it instead")
            expect_open = current.is_open
        if changes.get("employee_id") is not None:
            self._profiles.get(int(changes["employee_id"]))

        record = self._ledger.update(entry_id, patch, expect_open=expect_open)
        logger.info(
            "Time entry edited",
            extra={"time_entry_id": record.id, "fields": sorted(changes), "actor_id": actor.employee_id},
        )
        return record

    def add_entry(
        self,
        actor: Actor,
        *,
        employee_id: int,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        revenue=Decimal("0"),
    ) -> TimeEntryRecord:
        _require_admin(actor, "add time entries")
        self._profiles.get(int(employee_id))

        entry_id = self._ledger.create(
            employee_id=int(employee_id),
            start_time=start_time,
            revenue=revenue,
            end_time=end_time,
        )
        logger.info(
            "Time entry added",
            extra={"time_entry_id": entry_id, "employee_id": int(employee_id), "actor_id": actor.employee_id},
        )
        return self._ledger.get(entry_id)

    def delete(self, actor: Actor, entry_id: str) -> None:
        _require_admin(actor, "delete time entries")
        self._ledger.delete(entry_id)
        logger.info(
            "Time entry deleted",
            extra={"time_entry_id": str(entry_id), "actor_id": actor.employee_id},
        )
