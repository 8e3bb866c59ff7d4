from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class WindowResponse(BaseModel):
    start: datetime
    end: datetime


class EmployeeStatsResponse(BaseModel):
    employee_id: int
    name: str
    avatar_url: Optional[str]
    hours: float
    shifts: int
    revenue: Decimal
    workdays: int
    last_activity: Optional[datetime]
    is_live: bool
    is_recently_active: bool


class TotalsResponse(BaseModel):
    hours: float
    revenue: Decimal
    shifts: int
    workdays: int
    live_shifts: int


class AggregatesResponse(BaseModel):
    window: WindowResponse
    evaluated_at: datetime
    sort_key: str
    sort_dir: str
    per_employee: List[EmployeeStatsResponse]
    totals: TotalsResponse


class LiveAggregatesMessage(AggregatesResponse):
    sync_failed: bool = False
    error: Optional[str] = None


class ActivitySnapshotResponse(BaseModel):
    live_shifts: int
    month_hours: float
    active_entry_id: Optional[str]
