"""
Outbound notification queue.

Lifecycle transitions publish events only after their transaction has
committed; a dedicated worker task drains the queue and hands each event
to the dispatcher. Delivery failures are counted and logged, and never
reach the request that caused them.
"""
import asyncio
from typing import Optional

from app.features.notifications.dispatcher import NotificationDispatcher, NotificationEvent
from app.utils import get_logger


log = get_logger(__name__)


class NotificationQueue:

    def __init__(self, dispatcher: NotificationDispatcher, maxsize: int = 0):
        self.dispatcher = dispatcher
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, event: NotificationEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.failed += 1
            log.error("Notification queue full, dropping %s for user %s", event.kind.value, event.recipient_id)

    async def deliver(self, event: NotificationEvent) -> bool:
        """Dispatch one event. Returns False on failure."""
        try:
            await self.dispatcher.send(event)
        except Exception:
            self.failed += 1
            log.exception("Failed to deliver %s to user %s", event.kind.value, event.recipient_id)
            return False
        self.delivered += 1
        return True

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-worker")
            log.info("Notification worker started")

    async def drain(self) -> None:
        """Wait until every published event has been handled."""
        await self._queue.join()

    async def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Stopping notification worker with %d undelivered events", self.pending)
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        log.info("Notification worker stopped")
