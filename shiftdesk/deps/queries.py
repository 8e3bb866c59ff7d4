from typing import List, Optional

from fastapi import HTTPException, Query

from shiftdesk.core.errors import ValidationError
from shiftdesk.services.aggregation_engine import SortDirection, SortKey, SortState
from shiftdesk.services.query_resolver import ShiftQuery, StatusFilter, WindowPreset, WindowSpec


def build_shift_query(
    window: WindowPreset = WindowPreset.THIS_MONTH,
    month: Optional[int] = None,
    year: Optional[int] = None,
    employee_id: Optional[List[int]] = None,
    status: StatusFilter = StatusFilter.ALL,
    search: str = "",
) -> ShiftQuery:
    return ShiftQuery(
        window=WindowSpec(preset=window, month=month, year=year),
        employee_ids=frozenset(employee_id or ()),
        search=search or "",
        status=StatusFilter(status),
    )


def shift_query_params(
    window: WindowPreset = Query(default=WindowPreset.THIS_MONTH),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    employee_id: Optional[List[int]] = Query(default=None),
    status: StatusFilter = Query(default=StatusFilter.ALL),
    search: str = Query(default="", max_length=200),
) -> ShiftQuery:
    try:
        return build_shift_query(window, month, year, employee_id, status, search)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc


def sort_params(
    sort: SortKey = Query(default=SortKey.REVENUE),
    direction: Optional[SortDirection] = Query(default=None),
) -> SortState:
    return SortState.for_key(sort, direction)
