import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from shiftdesk.core.config import Settings
from shiftdesk.core.errors import TransientIOError
from shiftdesk.services.aggregation_engine import AggregateResult, SortState
from shiftdesk.services.change_channel import TIME_ENTRIES, ChangeEvent, InProcessChangeChannel
from shiftdesk.services.query_resolver import ShiftQuery

logger = logging.getLogger(__name__)

AggregateComputer = Callable[[ShiftQuery, SortState, bool], AggregateResult]


@dataclass(frozen=True)
class RefreshSignal:
    source: str
    event: Optional[ChangeEvent] = None


class RefreshTrigger:
    """Coalescing wake-up shared by every refresh producer."""

    def __init__(self):
        self._event = asyncio.Event()
        self._pending: List[RefreshSignal] = []

    def fire(self, signal: RefreshSignal) -> None:
        self._pending.append(signal)
        self._event.set()

    async def wait(self) -> List[RefreshSignal]:
        await self._event.wait()
        self._event.clear()
        pending, self._pending = self._pending, []
        return pending


async def channel_refresh_producer(
    channel: InProcessChangeChannel,
    trigger: RefreshTrigger,
    table_scope: str = TIME_ENTRIES,
) -> None:
    subscription = channel.subscribe(table_scope)
    try:
        async for event in subscription:
            trigger.fire(RefreshSignal(source="push", event=event))
    finally:
        channel.unsubscribe(subscription)


async def timer_refresh_producer(trigger: RefreshTrigger, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        trigger.fire(RefreshSignal(source="poll"))


@dataclass(frozen=True)
class LiveUpdate:
    result: Optional[AggregateResult]
    sync_failed: bool = False
    error: Optional[str] = None


class LiveSubscription:
    """Mailbox holding only the newest undelivered update."""

    def __init__(self, query: ShiftQuery, sort: SortState, include_idle: bool):
        self.query = query
        self.sort = sort
        self.include_idle = include_idle
        self.last_result: Optional[AggregateResult] = None
        self._mailbox: asyncio.Queue = asyncio.Queue(maxsize=1)

    def deliver(self, update: LiveUpdate) -> None:
        if self._mailbox.full():
            self._mailbox.get_nowait()
        self._mailbox.put_nowait(update)

    async def next_update(self, timeout: Optional[float] = None) -> LiveUpdate:
        if timeout is None:
            return await self._mailbox.get()
        return await asyncio.wait_for(self._mailbox.get(), timeout)

    def __aiter__(self):
        return self

    async def __anext__(self) -> LiveUpdate:
        return await self.next_update()


class LiveSyncNotifier:
    """Keeps subscribers' aggregates fresh.

    Push (ledger change events) and pull (interval timer) both fire the same
    RefreshTrigger; every trigger recomputes every subscription.
    """

    def __init__(
        self,
        compute: AggregateComputer,
        channel: Optional[InProcessChangeChannel] = None,
        *,
        poll_seconds: float = 60.0,
        table_scope: str = TIME_ENTRIES,
    ):
        self._compute = compute
        self._channel = channel
        self._poll_seconds = float(poll_seconds)
        self._table_scope = table_scope
        self._subscriptions: List[LiveSubscription] = []
        self.trigger = RefreshTrigger()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        query: ShiftQuery,
        sort: Optional[SortState] = None,
        include_idle: bool = False,
    ) -> LiveSubscription:
        subscription = LiveSubscription(query, sort or SortState(), include_idle)
        self._subscriptions.append(subscription)
        await self.refresh(subscription)
        return subscription

    def unsubscribe(self, subscription: LiveSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def refresh_all(self) -> None:
        for subscription in list(self._subscriptions):
            await self.refresh(subscription)

    async def refresh(self, subscription: LiveSubscription) -> None:
        try:
            result = await asyncio.to_thread(
                self._compute,
                subscription.query,
                subscription.sort,
                subscription.include_idle,
            )
        except asyncio.CancelledError:
            raise
        except TransientIOError as exc:
            logger.warning(
                "Live aggregate refresh failed; serving last known data",
                extra={"component": "live_sync", "reason": "transient_io"},
            )
            subscription.deliver(LiveUpdate(result=subscription.last_result, sync_failed=True, error=str(exc)))
            return
        except Exception:
            logger.exception(
                "Live aggregate refresh failed",
                extra={"component": "live_sync", "reason": "unexpected"},
            )
            subscription.deliver(
                LiveUpdate(result=subscription.last_result, sync_failed=True, error="Refresh failed")
            )
            return

        subscription.last_result = result
        subscription.deliver(LiveUpdate(result=result))

    async def run(self) -> None:
        producers = [asyncio.create_task(timer_refresh_producer(self.trigger, self._poll_seconds))]
        if self._channel is not None:
            producers.append(
                asyncio.create_task(channel_refresh_producer(self._channel, self.trigger, self._table_scope))
            )

        logger.info(
            "Live sync started",
            extra={"poll_seconds": self._poll_seconds, "push": self._channel is not None},
        )
        try:
            while True:
                signals = await self.trigger.wait()
                logger.debug(
                    "Live sync refresh",
                    extra={"sources": sorted({s.source for s in signals}), "subscriptions": self.subscription_count},
                )
                await self.refresh_all()
        except asyncio.CancelledError:
            logger.info("Live sync cancelled; shutting down")
            raise
        finally:
            for task in producers:
                task.cancel()
            await asyncio.gather(*producers, return_exceptions=True)


def start_live_sync_task(notifier: LiveSyncNotifier, settings: Settings) -> Optional[asyncio.Task]:
    if not settings.live_sync_enabled:
        logger.info("Live sync disabled")
        return None
    return asyncio.create_task(notifier.run())
