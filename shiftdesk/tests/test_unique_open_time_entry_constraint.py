from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from shiftdesk.database import SessionLocal
from shiftdesk.models.time_entry import TimeEntry


def test_unique_open_time_entry_prevents_duplicates(profile_factory):
    employee_id = profile_factory().id

    db1 = SessionLocal()
    db2 = SessionLocal()

    try:
        row1 = TimeEntry(
            id=str(uuid4()),
            employee_id=employee_id,
            start_time=datetime.now(timezone.utc),
            end_time=None,
        )
        row2 = TimeEntry(
            id=str(uuid4()),
            employee_id=employee_id,
            start_time=datetime.now(timezone.utc),
            end_time=None,
        )

        db1.add(row1)
        db2.add(row2)

        db1.commit()

        with pytest.raises(IntegrityError):
            db2.commit()
    finally:
        db1.rollback()
        db2.rollback()
        db1.close()
        db2.close()


def test_negative_revenue_rejected_by_check_constraint(profile_factory):
    employee_id = profile_factory().id

    db = SessionLocal()
    try:
        db.add(
            TimeEntry(
                id=str(uuid4()),
                employee_id=employee_id,
                start_time=datetime.now(timezone.utc),
                end_time=datetime.now(timezone.utc),
                revenue=-5,
            )
        )
        with pytest.raises(IntegrityError):
            db.commit()
    finally:
        db.rollback()
        db.close()
