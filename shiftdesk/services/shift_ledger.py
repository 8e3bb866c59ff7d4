import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from shiftdesk.core.errors import Conflict, NotFound, ShiftError, TransientIOError, ValidationError
from shiftdesk.core.timeutil import to_utc_aware
from shiftdesk.database import SessionLocal
from shiftdesk.models.time_entry import TimeEntry
from shiftdesk.schemas.time_entry import TimeEntryPatch
from shiftdesk.services.change_channel import TIME_ENTRIES, ChangeEvent, ChangeOp

logger = logging.getLogger(__name__)

OPEN_SHIFT_CONFLICT = "Employee already has an open shift"


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in UTC."""

    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        ts = to_utc_aware(ts)
        return to_utc_aware(self.start) <= ts < to_utc_aware(self.end)


@dataclass(frozen=True)
class TimeEntryRecord:
    id: str
    employee_id: int
    start_time: datetime
    end_time: Optional[datetime]
    revenue: Decimal

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_row(cls, row: TimeEntry) -> "TimeEntryRecord":
        return cls(
            id=str(row.id),
            employee_id=int(row.employee_id),
            start_time=to_utc_aware(row.start_time),
            end_time=to_utc_aware(row.end_time) if row.end_time is not None else None,
            revenue=Decimal(row.revenue if row.revenue is not None else 0),
        )


REVENUE_PLACES = Decimal("0.01")
# Numeric(14, 2)
REVENUE_LIMIT = Decimal(10) ** 12


def _as_revenue(value) -> Decimal:
    """Parse revenue into the stored shape: at most 2 places, below 10**12."""
    try:
        revenue = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("revenue must be a number") from exc
    if not revenue.is_finite():
        raise ValidationError("revenue must be a finite number")
    if abs(revenue) >= REVENUE_LIMIT:
        raise ValidationError("revenue must be below 1000000000000")
    quantized = revenue.quantize(REVENUE_PLACES)
    if quantized != revenue:
        raise ValidationError("revenue must have at most 2 decimal places")
    return quantized


def validate_entry_state(start_time, end_time, revenue) -> None:
    """Single validation point for the persisted shape of a time entry."""
    if start_time is None:
        raise ValidationError("start_time is required")
    if revenue is None:
        raise ValidationError("revenue is required")
    if _as_revenue(revenue) < 0:
        raise ValidationError("revenue must be non-negative")
    if end_time is not None and to_utc_aware(end_time) < to_utc_aware(start_time):
        raise ValidationError("end_time must not precede start_time")


def _integrity_error(exc: IntegrityError, conflict_message: str) -> ShiftError:
    """Pick the domain error for the constraint that failed."""
    detail = str(getattr(exc, "orig", None) or exc)
    lowered = detail.lower()
    if "uq_time_entries_open" in detail or "unique constraint failed: time_entries.employee_id" in lowered:
        return Conflict(conflict_message)
    if "ck_time_entries_revenue_nonnegative" in detail:
        return ValidationError("revenue must be non-negative")
    if "foreign key" in lowered:
        return NotFound("Employee not found")
    return Conflict("Time entry conflicts with stored data")


@contextmanager
def store_errors(operation: str, conflict_message: str = OPEN_SHIFT_CONFLICT):
    """Translate store failures into the domain taxonomy."""
    try:
        yield
    except ShiftError:
        raise
    except IntegrityError as exc:
        raise _integrity_error(exc, conflict_message) from exc
    except DataError as exc:
        # value rejected by the column type
        raise ValidationError("Time entry value out of range") from exc
    except (OperationalError, DBAPIError, PoolTimeoutError) as exc:
        logger.warning(
            "Ledger store unavailable",
            extra={"operation": operation, "error": type(exc).__name__},
        )
        raise TransientIOError(f"Ledger unavailable during {operation}") from exc


class ShiftLedger:
    """Durable store of time entries.

    Every call runs in its own session and returns whole-row snapshots.
    Successful mutations are published to ``publisher`` after commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        publisher: Optional[Callable[[ChangeEvent], None]] = None,
    ):
        self._session_factory = session_factory
        self._publisher = publisher

    def _session(self) -> Session:
        return self._session_factory()

    def _publish(self, op: ChangeOp, record: TimeEntryRecord) -> None:
        if self._publisher is None:
            return
        event = ChangeEvent(table=TIME_ENTRIES, op=op, entry_id=record.id, employee_id=record.employee_id)
        try:
            self._publisher(event)
        except Exception:
            # committed already; the live sync poll picks the change up
            logger.exception(
                "Change event publish failed",
                extra={"op": op.value, "time_entry_id": record.id},
            )

    def create(
        self,
        employee_id: int,
        start_time: datetime,
        revenue=Decimal("0"),
        end_time: Optional[datetime] = None,
    ) -> str:
        revenue = _as_revenue(revenue)
        validate_entry_state(start_time, end_time, revenue)

        row = TimeEntry(
            id=str(uuid4()),
            employee_id=int(employee_id),
            start_time=to_utc_aware(start_time),
            end_time=to_utc_aware(end_time) if end_time is not None else None,
            revenue=revenue,
        )

        db = self._session()
        try:
            with store_errors("create"):
                db.add(row)
                db.commit()
                db.refresh(row)
            record = TimeEntryRecord.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._publish(ChangeOp.INSERT, record)
        return record.id

    def get(self, entry_id: str) -> TimeEntryRecord:
        db = self._session()
        try:
            with store_errors("get"):
                row = db.get(TimeEntry, str(entry_id))
                if row is None:
                    raise NotFound("Time entry not found")
                return TimeEntryRecord.from_row(row)
        finally:
            db.close()

    def update(
        self,
        entry_id: str,
        patch: TimeEntryPatch,
        *,
        expect_open: Optional[bool] = None,
    ) -> TimeEntryRecord:
        """Apply the fields present in ``patch``.

        ``expect_open`` guards against a concurrent state change between the
        caller's read and this write: the row lock is held while it is checked.
        """
        changes = patch.changes()

        db = self._session()
        try:
            with store_errors("update"):
                row = db.get(TimeEntry, str(entry_id), with_for_update=True)
                if row is None:
                    raise NotFound("Time entry not found")

                current = TimeEntryRecord.from_row(row)
                if expect_open is not None and current.is_open != expect_open:
                    raise Conflict("Shift is already closed" if expect_open else "Shift is still open")

                for required in ("employee_id", "start_time", "revenue"):
                    if required in changes and changes[required] is None:
                        raise ValidationError(f"{required} cannot be cleared")

                start_time = changes.get("start_time", current.start_time)
                end_time = changes.get("end_time", current.end_time)
                revenue = _as_revenue(changes.get("revenue", current.revenue))
                validate_entry_state(start_time, end_time, revenue)

                if "employee_id" in changes:
                    row.employee_id = int(changes["employee_id"])
                if "start_time" in changes:
                    row.start_time = to_utc_aware(start_time)
                if "end_time" in changes:
                    row.end_time = to_utc_aware(end_time) if end_time is not None else None
                if "revenue" in changes:
                    row.revenue = revenue

                db.commit()
                db.refresh(row)
            record = TimeEntryRecord.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._publish(ChangeOp.UPDATE, record)
        return record

    def close_if_open(self, entry_id: str, end_time: datetime) -> Tuple[TimeEntryRecord, bool]:
        """Conditional close. Returns the entry and whether this call closed it."""
        db = self._session()
        try:
            with store_errors("close_if_open"):
                changed = (
                    db.query(TimeEntry)
                    .filter(
                        TimeEntry.id == str(entry_id),
                        TimeEntry.end_time.is_(None),
                    )
                    .update({TimeEntry.end_time: to_utc_aware(end_time)}, synchronize_session=False)
                )
                db.commit()

                row = db.get(TimeEntry, str(entry_id))
                if row is None:
                    raise NotFound("Time entry not found")
                record = TimeEntryRecord.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if changed:
            self._publish(ChangeOp.UPDATE, record)
        return record, bool(changed)

    def delete(self, entry_id: str) -> None:
        db = self._session()
        try:
            with store_errors("delete"):
                row = db.get(TimeEntry, str(entry_id))
                if row is None:
                    raise NotFound("Time entry not found")
                record = TimeEntryRecord.from_row(row)

                deleted = (
                    db.query(TimeEntry)
                    .filter(TimeEntry.id == str(entry_id))
                    .delete(synchronize_session=False)
                )
                if not deleted:
                    # lost a race with another delete
                    raise NotFound("Time entry not found")
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._publish(ChangeOp.DELETE, record)

    def list(
        self,
        window: Optional[TimeWindow] = None,
        employee_ids: Optional[Iterable[int]] = None,
    ) -> List[TimeEntryRecord]:
        """Entries whose start_time falls in ``window``. Unordered."""
        db = self._session()
        try:
            with store_errors("list"):
                q = db.query(TimeEntry)
                if window is not None:
                    q = q.filter(
                        TimeEntry.start_time >= to_utc_aware(window.start),
                        TimeEntry.start_time < to_utc_aware(window.end),
                    )
                ids = sorted({int(i) for i in employee_ids}) if employee_ids else []
                if ids:
                    q = q.filter(TimeEntry.employee_id.in_(ids))
                return [TimeEntryRecord.from_row(r) for r in q.all()]
        finally:
            db.close()

    def open_entry_for(self, employee_id: int) -> Optional[TimeEntryRecord]:
        db = self._session()
        try:
            with store_errors("open_entry_for"):
                row = (
                    db.query(TimeEntry)
                    .filter(
                        TimeEntry.employee_id == int(employee_id),
                        TimeEntry.end_time.is_(None),
                    )
                    .first()
                )
                return TimeEntryRecord.from_row(row) if row is not None else None
        finally:
            db.close()

    def count_open(self) -> int:
        db = self._session()
        try:
            with store_errors("count_open"):
                return int(
                    db.query(func.count(TimeEntry.id))
                    .filter(TimeEntry.end_time.is_(None))
                    .scalar()
                    or 0
                )
        finally:
            db.close()
