"""Fan-out of setup events to subscribers."""

import asyncio
import logging
from collections import deque
from typing import Optional

from bootstrapper.models.events import LogEvent, PrivilegeRequestEvent, SetupEvent, StageEvent
from bootstrapper.models.session import LogLine, PrivilegeRequest
from bootstrapper.models.status import InstallationStage, to_wire


class Subscription:
    """Bounded, ordered event buffer of one subscriber.

    Overflow policy: when the buffer is full, the oldest buffered log event is
    evicted to make room for the new event (log events never displace stage
    events). If the buffer holds no log events at all, the oldest event is
    evicted. Every eviction increments ``dropped``; a subscriber seeing
    ``dropped == 0`` has observed a gap-free stream.
    """

    def __init__(self, reporter: "EventReporter", max_size: int):
        self._reporter = reporter
        self._max_size = max_size
        self._buffer: deque = deque()
        self._ready = asyncio.Event()
        self.dropped = 0
        self.closed = False

    def __len__(self) -> int:
        return len(self._buffer)

    def offer(self, event: SetupEvent) -> None:
        """Buffer an event without blocking."""
        if self.closed:
            return
        if len(self._buffer) >= self._max_size:
            self._evict()
        self._buffer.append(event)
        self._ready.set()

    def _evict(self) -> None:
        for index, buffered in enumerate(self._buffer):
            if isinstance(buffered, LogEvent):
                del self._buffer[index]
                break
        else:
            self._buffer.popleft()
        self.dropped += 1

    async def get(self) -> SetupEvent:
        """Wait for the next event.

        Raises:
            StopAsyncIteration: If the subscription is closed and drained
        """
        while not self._buffer:
            if self.closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def drain(self) -> list[SetupEvent]:
        """Return and clear everything currently buffered."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._ready.set()
        self._reporter.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SetupEvent:
        return await self.get()


class EventReporter:
    """Publishes stage transitions and log lines to any number of subscribers.

    Publishing is synchronous and never waits on a subscriber.
    """

    DEFAULT_BUFFER_SIZE = 256

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.logger = logging.getLogger("bootstrapper.reporter")
        self.buffer_size = buffer_size
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, buffer_size: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, buffer_size or self.buffer_size)
        self._subscribers.append(subscription)
        self.logger.debug(f"Subscriber added ({len(self._subscribers)} active)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            self.logger.debug(f"Subscriber removed ({len(self._subscribers)} active)")
        if not subscription.closed:
            subscription.close()

    def publish_stage(self, stage: InstallationStage) -> None:
        self.logger.debug(f"Publishing stage {to_wire(stage)}")
        self._publish(StageEvent(stage=stage))

    def publish_log(self, line: LogLine) -> None:
        self._publish(LogEvent(source=line.source, text=line.text, sequence=line.sequence))

    def publish_privilege_request(self, request: PrivilegeRequest) -> None:
        self._publish(PrivilegeRequestEvent(request_id=request.id))

    def close(self) -> None:
        """Close every subscription; iterators end after draining."""
        for subscription in list(self._subscribers):
            subscription.close()

    def _publish(self, event: SetupEvent) -> None:
        for subscription in list(self._subscribers):
            subscription.offer(event)
