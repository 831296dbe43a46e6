"""
Progress Notifier

In-process publish/subscribe channel for per-job progress events.

Publishing never blocks the ingestion path: each subscriber owns a bounded
queue, and when a slow subscriber's queue is full the oldest pending event
is dropped to make room. Events for a job therefore arrive in publish
order, possibly with gaps at the oldest end.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from config.settings import settings
from src.offerlookup.db.models import utcnow
from src.offerlookup.pipelines.stats import BatchStats, JobProgress
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BatchCompleted:
    job_id: str
    batch_number: int
    batch: BatchStats
    totals: JobProgress
    failed: bool = False
    event: str = field(default="batch_completed", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class JobFinished:
    job_id: str
    status: str
    totals: JobProgress
    error_message: Optional[str] = None
    event: str = field(default="job_finished", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ProgressEvent = Union[BatchCompleted, JobFinished]

_CLOSED = object()


class Subscription:
    """
    One listener's view of a job's events.

    Iterate with ``async for``; iteration ends once the job's channel is
    closed or the subscription is cancelled.
    """

    def __init__(self, notifier: "ProgressNotifier", job_id: str, maxsize: int):
        self.notifier = notifier
        self.job_id = job_id
        self.maxsize = maxsize
        self.dropped = 0
        # Bounded by deliver(); the close marker never counts against it
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def unsubscribe(self) -> None:
        self.notifier.unsubscribe(self)

    async def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """
        Wait for the next event.

        Returns:
            The event, or None once the channel is closed
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Leave the marker for any other waiter on this subscription
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ProgressNotifier:
    """Per-job fan-out of progress events to any number of subscribers."""

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.progress_queue_size
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, job_id: str) -> Subscription:
        subscription = Subscription(self, job_id, self.queue_size)
        self._subscribers.setdefault(job_id, []).append(subscription)
        logger.debug("progress_subscribed", job_id=job_id, subscribers=self.subscriber_count(job_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.job_id)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.job_id]
        subscription.close()
        logger.debug("progress_unsubscribed", job_id=subscription.job_id)

    def publish(self, event: ProgressEvent) -> int:
        """
        Deliver an event to every current subscriber of its job.

        Returns:
            Number of subscribers the event was handed to
        """
        subscribers = list(self._subscribers.get(event.job_id, ()))
        for subscription in subscribers:
            subscription.deliver(event)
        return len(subscribers)

    def close(self, job_id: str) -> None:
        """End every subscription for a finished job."""
        for subscription in self._subscribers.pop(job_id, []):
            subscription.close()
            if subscription.dropped:
                logger.warning(
                    "progress_events_dropped",
                    job_id=job_id,
                    dropped=subscription.dropped
                )

    def subscriber_count(self, job_id: Optional[str] = None) -> int:
        if job_id is not None:
            return len(self._subscribers.get(job_id, ()))
        return sum(len(subs) for subs in self._subscribers.values())


def event_payload(event: ProgressEvent) -> Dict[str, Any]:
    """JSON-ready representation of an event."""
    payload = event.to_dict()
    payload["timestamp"] = utcnow().isoformat()
    total = event.totals.total_records
    payload["progress_percentage"] = (
        round(event.totals.processed_records / total * 100, 2) if total else 0.0
    )
    return payload


# Singleton instance
progress_notifier = ProgressNotifier()
