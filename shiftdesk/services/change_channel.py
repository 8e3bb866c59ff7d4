import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)

TIME_ENTRIES = "time_entries"


class ChangeOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: ChangeOp
    entry_id: str
    employee_id: Optional[int] = None


_CLOSED = object()


class ChannelSubscription:
    """Async stream of change events for one table scope.

    Bound to the event loop it was created on; events may be offered from any thread.
    """

    def __init__(self, table_scope: str, loop: asyncio.AbstractEventLoop):
        self.table_scope = table_scope
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
        except RuntimeError:
            # loop already gone
            pass

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class InProcessChangeChannel:
    """Fans ledger mutations out to subscribers living in this process.

    Other processes sharing the database are not notified; the live sync poll
    covers them.
    """

    def __init__(self):
        self._subscriptions: List[ChannelSubscription] = []
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, table_scope: str = TIME_ENTRIES) -> ChannelSubscription:
        subscription = ChannelSubscription(table_scope, asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: ChannelSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        subscription.close()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if s.table_scope == event.table]

        for subscription in targets:
            try:
                subscription.offer(event)
            except RuntimeError:
                logger.warning(
                    "Dropping change subscription with closed event loop",
                    extra={"table": event.table, "op": event.op.value},
                )
                self.unsubscribe(subscription)
