from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from shiftdesk.core.authorization import Actor, Role, require_role
from shiftdesk.deps.auth import require_actor
from shiftdesk.deps.queries import shift_query_params
from shiftdesk.deps.services import get_shift_service
from shiftdesk.schemas.time_entry import (
    AddEntryRequest,
    BatchForceEndRequest,
    BatchForceEndResponse,
    EndShiftRequest,
    ShiftLogRow,
    StartShiftRequest,
    TimeEntryPatch,
    TimeEntryResponse,
)
from shiftdesk.services.query_resolver import ShiftQuery
from shiftdesk.services.shift_ledger import TimeEntryRecord
from shiftdesk.services.shift_service import ShiftLogEntry, ShiftService

router = APIRouter(
    prefix="/time_entries",
    tags=["Time Entries"],
)


def _to_response(entry: TimeEntryRecord) -> TimeEntryResponse:
    return TimeEntryResponse(
        id=entry.id,
        employee_id=entry.employee_id,
        start_time=entry.start_time,
        end_time=entry.end_time,
        revenue=entry.revenue,
        is_open=entry.is_open,
    )


def _to_log_row(row: ShiftLogEntry) -> ShiftLogRow:
    return ShiftLogRow(
        **_to_response(row.entry).model_dump(),
        display_name=row.display_name,
        elapsed_seconds=row.elapsed_seconds,
    )


@router.get("", response_model=list[ShiftLogRow])
def list_shifts(
    query: ShiftQuery = Depends(shift_query_params),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    rows = service.list_shifts(service.scope_query(actor, query))
    return [_to_log_row(r) for r in rows[offset:offset + limit]]


@router.get("/active", response_model=Optional[TimeEntryResponse])
def active_shift(
    employee_id: Optional[int] = None,
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    entry = service.active_shift(actor, employee_id)
    return _to_response(entry) if entry is not None else None


@router.post("/start", response_model=TimeEntryResponse, status_code=201)
def start_shift(
    payload: StartShiftRequest,
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    entry = service.start_shift(
        actor,
        employee_id=payload.employee_id,
        start_time=payload.start_time,
        revenue=payload.revenue,
    )
    return _to_response(entry)


@router.post("/end", response_model=TimeEntryResponse)
def end_shift(
    payload: EndShiftRequest,
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    entry = service.end_shift(
        actor,
        revenue=payload.revenue,
        entry_id=payload.entry_id,
        end_time=payload.end_time,
    )
    return _to_response(entry)


@router.post("/force_end", response_model=BatchForceEndResponse)
def batch_force_end(
    payload: BatchForceEndRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: ShiftService = Depends(get_shift_service),
):
    result = service.batch_force_end(actor, payload.ids)
    return BatchForceEndResponse(closed=result.closed, unchanged=result.unchanged, missing=result.missing)


@router.post("", response_model=TimeEntryResponse, status_code=201)
def add_entry(
    payload: AddEntryRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: ShiftService = Depends(get_shift_service),
):
    entry = service.add_entry(
        actor,
        employee_id=payload.employee_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        revenue=payload.revenue,
    )
    return _to_response(entry)


@router.get("/{entry_id}", response_model=TimeEntryResponse)
def get_entry(
    entry_id: str,
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    return _to_response(service.get_entry(actor, entry_id))


@router.post("/{entry_id}/force_end", response_model=TimeEntryResponse)
def force_end_shift(
    entry_id: str,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: ShiftService = Depends(get_shift_service),
):
    return _to_response(service.force_end_shift(actor, entry_id))


@router.patch("/{entry_id}", response_model=TimeEntryResponse)
def edit_entry(
    entry_id: str,
    patch: TimeEntryPatch,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: ShiftService = Depends(get_shift_service),
):
    return _to_response(service.edit_entry(actor, entry_id, patch))


@router.delete("/{entry_id}", status_code=204)
def delete_entry(
    entry_id: str,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: ShiftService = Depends(get_shift_service),
):
    service.delete_entry(actor, entry_id)
    return Response(status_code=204)
