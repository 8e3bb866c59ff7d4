import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from shiftdesk.core.authorization import Actor
from shiftdesk.core.errors import ValidationError
from shiftdesk.deps.auth import actor_from_token, require_actor
from shiftdesk.deps.queries import build_shift_query, shift_query_params, sort_params
from shiftdesk.deps.services import get_live_notifier, get_shift_service
from shiftdesk.schemas.aggregates import (
    ActivitySnapshotResponse,
    AggregatesResponse,
    EmployeeStatsResponse,
    LiveAggregatesMessage,
    TotalsResponse,
    WindowResponse,
)
from shiftdesk.services.aggregation_engine import AggregateResult, SortState
from shiftdesk.services.live_sync import LiveSubscription, LiveSyncNotifier, LiveUpdate
from shiftdesk.services.query_resolver import ShiftQuery
from shiftdesk.services.shift_service import ShiftService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/aggregates",
    tags=["Aggregates"],
)

WS_POLICY_VIOLATION = 1008


def _to_response(result: AggregateResult) -> AggregatesResponse:
    return AggregatesResponse(
        window=WindowResponse(start=result.window.start, end=result.window.end),
        evaluated_at=result.evaluated_at,
        sort_key=result.sort.key.value,
        sort_dir=result.sort.direction.value,
        per_employee=[
            EmployeeStatsResponse(
                employee_id=s.employee_id,
                name=s.name,
                avatar_url=s.avatar_url,
                hours=s.hours,
                shifts=s.shifts,
                revenue=s.revenue,
                workdays=s.workdays,
                last_activity=s.last_activity,
                is_live=s.is_live,
                is_recently_active=s.is_recently_active,
            )
            for s in result.per_employee
        ],
        totals=TotalsResponse(
            hours=result.totals.hours,
            revenue=result.totals.revenue,
            shifts=result.totals.shifts,
            workdays=result.totals.workdays,
            live_shifts=result.totals.live_shifts,
        ),
    )


def _live_message(update: LiveUpdate) -> dict:
    if update.result is None:
        return {"sync_failed": update.sync_failed, "error": update.error}
    body = _to_response(update.result).model_dump()
    message = LiveAggregatesMessage(**body, sync_failed=update.sync_failed, error=update.error)
    return message.model_dump(mode="json")


@router.get("", response_model=AggregatesResponse)
def query_aggregates(
    query: ShiftQuery = Depends(shift_query_params),
    sort: SortState = Depends(sort_params),
    include_idle: bool = Query(default=False),
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    result = service.query_aggregates(service.scope_query(actor, query), sort, include_idle=include_idle)
    return _to_response(result)


@router.get("/activity", response_model=ActivitySnapshotResponse)
def activity_snapshot(
    actor: Actor = Depends(require_actor),
    service: ShiftService = Depends(get_shift_service),
):
    snapshot = service.activity_snapshot(actor)
    return ActivitySnapshotResponse(
        live_shifts=snapshot.live_shifts,
        month_hours=snapshot.month_hours,
        active_entry_id=snapshot.active_entry_id,
    )


async def _pump(websocket: WebSocket, subscription: LiveSubscription) -> None:
    async for update in subscription:
        await websocket.send_json(_live_message(update))


async def _apply_client_message(raw: str, subscription: LiveSubscription, notifier: LiveSyncNotifier) -> None:
    """Clients may toggle sorting with ``{"sort": "<key>"}``."""
    try:
        key = json.loads(raw).get("sort")
    except (ValueError, AttributeError):
        return
    if not key:
        return
    try:
        subscription.sort = subscription.sort.toggle(key)
    except ValueError:
        return
    await notifier.refresh(subscription)


@router.websocket("/live")
async def live_aggregates(
    websocket: WebSocket,
    token: Optional[str] = None,
    include_idle: bool = False,
    service: ShiftService = Depends(get_shift_service),
    notifier: LiveSyncNotifier = Depends(get_live_notifier),
):
    try:
        actor: Actor = actor_from_token(token)
    except ValueError:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    params = websocket.query_params
    try:
        query = build_shift_query(
            window=params.get("window") or "thisMonth",
            month=int(params["month"]) if params.get("month") else None,
            year=int(params["year"]) if params.get("year") else None,
            employee_id=[int(v) for v in params.getlist("employee_id")],
            status=params.get("status") or "all",
            search=params.get("search") or "",
        )
        sort = SortState.for_key(params.get("sort") or "revenue", params.get("direction") or None)
    except (ValidationError, ValueError):
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = await notifier.subscribe(service.scope_query(actor, query), sort, include_idle)
    logger.info(
        "Live aggregates subscribed",
        extra={"actor_id": actor.employee_id, "subscriptions": notifier.subscription_count},
    )

    pump = asyncio.create_task(_pump(websocket, subscription))
    try:
        while True:
            raw = await websocket.receive_text()
            await _apply_client_message(raw, subscription, notifier)
    except WebSocketDisconnect:
        pass
    finally:
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
        notifier.unsubscribe(subscription)
