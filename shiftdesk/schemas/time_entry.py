from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TimeEntryPatch(BaseModel):
    """Partial update of a time entry.

    Only fields explicitly provided are applied (``model_fields_set``);
    ``end_time=None`` given explicitly means "clear the end time".
    """

    model_config = ConfigDict(extra="forbid")

    employee_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    revenue: Optional[Decimal] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class StartShiftRequest(BaseModel):
    employee_id: Optional[int] = Field(
        default=None,
        description="Admins may start a shift on behalf of another employee. Defaults to the caller.",
    )
    start_time: Optional[datetime] = Field(
        default=None,
        description="If omitted, server uses current UTC time.",
    )
    revenue: Decimal = Decimal("0")


class EndShiftRequest(BaseModel):
    entry_id: Optional[str] = Field(
        default=None,
        description="If omitted, the caller's open shift is ended.",
    )
    end_time: Optional[datetime] = Field(
        default=None,
        description="If omitted, server uses current UTC time.",
    )
    revenue: Decimal


class AddEntryRequest(BaseModel):
    employee_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    revenue: Decimal = Decimal("0")


class BatchForceEndRequest(BaseModel):
    ids: List[str] = Field(min_length=1)


class TimeEntryResponse(BaseModel):
    id: str
    employee_id: int
    start_time: datetime
    end_time: Optional[datetime]
    revenue: Decimal
    is_open: bool


class ShiftLogRow(TimeEntryResponse):
    display_name: str
    elapsed_seconds: int


class BatchForceEndResponse(BaseModel):
    closed: List[str]
    unchanged: List[str]
    missing: List[str]
