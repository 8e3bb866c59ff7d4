from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, text

from shiftdesk.database import Base


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(String, primary_key=True, index=True)

    employee_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)

    revenue = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")

    __table_args__ = (
        CheckConstraint("revenue >= 0", name="ck_time_entries_revenue_nonnegative"),
        # single open shift per employee, enforced by the store
        Index(
            "uq_time_entries_open",
            "employee_id",
            unique=True,
            postgresql_where=text("end_time IS NULL"),
            sqlite_where=text("end_time IS NULL"),
        ),
        Index("ix_time_entries_employee_start", "employee_id", "start_time"),
    )
