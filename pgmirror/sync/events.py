import asyncio
from typing import List, Optional

from ..core.enums import EventType
from ..core.exceptions import TableError
from ..core.models import SyncEvent
from ..utils.error import ErrorTracker
from ..utils.logger import LoggerSetup
from ..utils.time import get_current_timestamp

logger = LoggerSetup.setup(__name__)


class Subscription:
    """
    Bounded queue of events for one consumer.

    Iterate with `async for event in subscription`; iteration ends once the
    subscription is closed and drained.
    """

    def __init__(self, reporter: 'EventReporter', maxsize: int):
        self._reporter = reporter
        self._queue: asyncio.Queue[Optional[SyncEvent]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, event: SyncEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self) -> Optional[SyncEvent]:
        """Next event, or None once closed and drained"""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[SyncEvent]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Detach from the reporter and wake a pending reader"""
        if self.closed:
            return
        self.closed = True
        self._reporter._unsubscribe(self)
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> 'Subscription':
        return self

    async def __anext__(self) -> SyncEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventReporter:
    """
    Fan-out channel for errors and trace lines from every component.

    Reporting never blocks: each subscriber has its own bounded buffer and a
    full buffer drops the event for that subscriber only, so a slow consumer
    cannot stall table workers.
    """

    def __init__(self, buffer_size: int = 1000):
        self._buffer_size = buffer_size
        self._subscribers: List[Subscription] = []
        self.published = 0

    def subscribe(self, buffer_size: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, buffer_size or self._buffer_size)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def dropped(self) -> int:
        return sum(s.dropped for s in self._subscribers)

    def publish(self, event: SyncEvent) -> None:
        self.published += 1
        for subscription in list(self._subscribers):
            subscription._offer(event)

    def error(self, source: str, error: Exception, table: Optional[str] = None) -> SyncEvent:
        """Report a failure; the table defaults to the one carried by the error"""
        if table is None and isinstance(error, TableError):
            table = error.table
        event = SyncEvent(
            source=source,
            type=EventType.ERROR,
            timestamp=get_current_timestamp(),
            message=str(error),
            table=table,
            error_type=error.__class__.__name__
        )
        self.publish(event)
        return event

    def trace(self, source: str, message: str, table: Optional[str] = None) -> SyncEvent:
        event = SyncEvent(
            source=source,
            type=EventType.TRACE,
            timestamp=get_current_timestamp(),
            message=message,
            table=table
        )
        self.publish(event)
        return event

    def close(self) -> None:
        """Close every subscription so consumers finish"""
        for subscription in list(self._subscribers):
            subscription.close()


async def log_events(subscription: Subscription,
                     tracker: Optional[ErrorTracker] = None) -> None:
    """
    Host-side consumer: logs every event and tracks errors per table.

    Runs until the subscription is closed or the task is cancelled.
    """
    async for event in subscription:
        if event.type == EventType.ERROR:
            logger.error(str(event))
            if tracker is not None:
                tracker.record(event.error_type or "Error", event.table)
        else:
            logger.debug(str(event))
