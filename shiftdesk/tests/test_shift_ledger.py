from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sqlalchemy.exc import DataError, IntegrityError

from shiftdesk.core.errors import Conflict, NotFound, TransientIOError, ValidationError
from shiftdesk.schemas.time_entry import TimeEntryPatch
from shiftdesk.services.change_channel import ChangeOp
from shiftdesk.services.shift_ledger import OPEN_SHIFT_CONFLICT, ShiftLedger, TimeWindow, store_errors


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_create_and_get_round_trip(ledger, profile_factory):
    p = profile_factory("Bob")
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("12.50"))

    record = ledger.get(entry_id)
    assert record.employee_id == p.id
    assert record.start_time == _utc(2026, 3, 2, 8)
    assert record.end_time is None
    assert record.is_open
    assert record.revenue == Decimal("12.50")


def test_naive_timestamps_are_treated_as_utc(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=datetime(2026, 3, 2, 8, 0))

    assert ledger.get(entry_id).start_time == _utc(2026, 3, 2, 8)


def test_second_open_entry_is_conflict(ledger, profile_factory):
    p = profile_factory()
    ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))

    with pytest.raises(Conflict):
        ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 9))

    assert ledger.count_open() == 1


def test_closed_entries_do_not_block_new_open_entry(ledger, profile_factory):
    p = profile_factory()
    ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 1, 8), end_time=_utc(2026, 3, 1, 16))
    ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), end_time=_utc(2026, 3, 2, 16))

    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 3, 8))
    assert ledger.open_entry_for(p.id).id == entry_id


@pytest.mark.parametrize(
    "kwargs",
    [
        {"revenue": Decimal("-1")},
        {"end_time": _utc(2026, 3, 2, 7)},
        {"revenue": "not-a-number"},
        {"revenue": Decimal("1.005")},
        {"revenue": Decimal("1000000000000")},
        {"revenue": Decimal("Infinity")},
    ],
)
def test_create_rejects_invalid_state(ledger, profile_factory, kwargs):
    p = profile_factory()
    with pytest.raises(ValidationError):
        ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), **kwargs)


def test_revenue_with_trailing_zeros_is_accepted(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("1.50000"))

    assert ledger.get(entry_id).revenue == Decimal("1.50")


def test_largest_storable_revenue_reads_back_exactly(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("999999999999.99"))

    assert ledger.get(entry_id).revenue == Decimal("999999999999.99")


def test_update_applies_only_provided_fields(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("5"))

    record = ledger.update(entry_id, TimeEntryPatch(revenue=Decimal("40")))
    assert record.revenue == Decimal("40")
    assert record.start_time == _utc(2026, 3, 2, 8)
    assert record.is_open


def test_update_returns_the_stored_row(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))

    record = ledger.update(entry_id, TimeEntryPatch(revenue=Decimal("19.9")))

    assert record == ledger.get(entry_id)
    assert record.revenue == Decimal("19.90")


def test_update_rejects_revenue_the_column_cannot_hold(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("3"))

    with pytest.raises(ValidationError):
        ledger.update(entry_id, TimeEntryPatch(revenue=Decimal("123456789012345678.99")))

    assert ledger.get(entry_id).revenue == Decimal("3")


def test_update_rejects_end_before_start(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))

    with pytest.raises(ValidationError):
        ledger.update(entry_id, TimeEntryPatch(end_time=_utc(2026, 3, 2, 7)))

    assert ledger.get(entry_id).is_open


def test_update_cannot_clear_required_fields(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))

    with pytest.raises(ValidationError):
        ledger.update(entry_id, TimeEntryPatch(revenue=None))


def test_update_with_expect_open_detects_closed_entry(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), end_time=_utc(2026, 3, 2, 9))

    with pytest.raises(Conflict):
        ledger.update(entry_id, TimeEntryPatch(end_time=_utc(2026, 3, 2, 10)), expect_open=True)


def test_update_missing_entry_is_not_found(ledger):
    with pytest.raises(NotFound):
        ledger.update("missing", TimeEntryPatch(revenue=Decimal("1")))


def test_close_if_open_is_idempotent(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8), revenue=Decimal("7"))

    first, changed = ledger.close_if_open(entry_id, _utc(2026, 3, 2, 12))
    assert changed
    assert first.end_time == _utc(2026, 3, 2, 12)
    assert first.revenue == Decimal("7")

    second, changed_again = ledger.close_if_open(entry_id, _utc(2026, 3, 2, 13))
    assert not changed_again
    assert second.end_time == _utc(2026, 3, 2, 12)


def test_delete_twice_is_not_found(ledger, profile_factory):
    p = profile_factory()
    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))

    ledger.delete(entry_id)
    with pytest.raises(NotFound):
        ledger.get(entry_id)
    with pytest.raises(NotFound):
        ledger.delete(entry_id)


def test_list_uses_half_open_window_on_start_time(ledger, profile_factory):
    p = profile_factory()
    q = profile_factory("Other")
    start = _utc(2026, 3, 1)
    end = _utc(2026, 3, 2)

    at_start = ledger.create(employee_id=p.id, start_time=start, end_time=start + timedelta(hours=1))
    ledger.create(employee_id=p.id, start_time=end, end_time=end + timedelta(hours=1))
    ledger.create(employee_id=p.id, start_time=start - timedelta(minutes=1), end_time=start + timedelta(hours=2))
    other = ledger.create(employee_id=q.id, start_time=start + timedelta(hours=3))

    window = TimeWindow(start=start, end=end)
    assert {r.id for r in ledger.list(window)} == {at_start, other}
    assert {r.id for r in ledger.list(window, employee_ids=[q.id])} == {other}


def test_mutations_are_published_after_commit(profile_factory):
    events = []
    ledger = ShiftLedger(publisher=events.append)
    p = profile_factory()

    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))
    ledger.update(entry_id, TimeEntryPatch(revenue=Decimal("3")))
    ledger.close_if_open(entry_id, _utc(2026, 3, 2, 9))
    ledger.close_if_open(entry_id, _utc(2026, 3, 2, 10))
    ledger.delete(entry_id)

    assert [e.op for e in events] == [ChangeOp.INSERT, ChangeOp.UPDATE, ChangeOp.UPDATE, ChangeOp.DELETE]
    assert all(e.entry_id == entry_id and e.employee_id == p.id for e in events)


def test_failed_publish_does_not_undo_commit(profile_factory):
    def broken(_event):
        raise RuntimeError("channel down")

    ledger = ShiftLedger(publisher=broken)
    p = profile_factory()

    entry_id = ledger.create(employee_id=p.id, start_time=_utc(2026, 3, 2, 8))
    assert ledger.get(entry_id).is_open


def _raise_in_store(exc):
    with store_errors("create"):
        raise exc


def test_open_shift_index_violation_is_conflict():
    exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: time_entries.employee_id"))
    with pytest.raises(Conflict, match=OPEN_SHIFT_CONFLICT):
        _raise_in_store(exc)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("CHECK constraint failed: ck_time_entries_revenue_nonnegative", ValidationError),
        ("FOREIGN KEY constraint failed", NotFound),
        ('insert or update on table "time_entries" violates foreign key constraint', NotFound),
        ("NOT NULL constraint failed: time_entries.start_time", Conflict),
    ],
)
def test_other_constraint_violations_are_not_reported_as_open_shift(message, expected):
    with pytest.raises(expected) as info:
        _raise_in_store(IntegrityError("INSERT", {}, Exception(message)))

    assert str(info.value) != OPEN_SHIFT_CONFLICT


def test_column_type_rejection_is_validation_not_transient():
    exc = DataError("UPDATE", {}, Exception("numeric field overflow"))
    with pytest.raises(ValidationError) as info:
        _raise_in_store(exc)

    assert not isinstance(info.value, TransientIOError)
