"""
Tests for ProgressNotifier
"""
import asyncio

import pytest

from src.offerlookup.ingestion.progress import (
    BatchCompleted,
    JobFinished,
    ProgressNotifier,
    event_payload,
)
from src.offerlookup.pipelines.stats import BatchStats, JobProgress


def batch_event(job_id, number, total=10):
    return BatchCompleted(
        job_id=job_id,
        batch_number=number,
        batch=BatchStats(total=2, new=2),
        totals=JobProgress(total_records=total, new_records=2 * number),
    )


class TestProgressNotifier:
    """Tests for subscribe/publish/close."""

    @pytest.mark.asyncio
    async def test_events_in_order_until_close(self):
        notifier = ProgressNotifier(queue_size=10)
        subscription = notifier.subscribe("job-1")

        notifier.publish(batch_event("job-1", 1))
        notifier.publish(batch_event("job-1", 2))
        notifier.publish(JobFinished(job_id="job-1", status="completed", totals=JobProgress()))
        notifier.close("job-1")

        events = [event async for event in subscription]

        assert [event.event for event in events] == ["batch_completed", "batch_completed", "job_finished"]
        assert [event.batch_number for event in events[:2]] == [1, 2]
        assert notifier.subscriber_count("job-1") == 0

    @pytest.mark.asyncio
    async def test_fan_out_per_job(self):
        notifier = ProgressNotifier(queue_size=10)
        first = notifier.subscribe("job-1")
        second = notifier.subscribe("job-1")
        other = notifier.subscribe("job-2")

        delivered = notifier.publish(batch_event("job-1", 1))

        assert delivered == 2
        assert first.pending() == 1
        assert second.pending() == 1
        assert other.pending() == 0

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        assert ProgressNotifier().publish(batch_event("job-1", 1)) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        """Test a slow subscriber loses the oldest events, never blocks the publisher."""
        notifier = ProgressNotifier(queue_size=2)
        subscription = notifier.subscribe("job-1")

        for number in (1, 2, 3):
            notifier.publish(batch_event("job-1", number))
        notifier.close("job-1")

        events = [event async for event in subscription]

        assert [event.batch_number for event in events] == [2, 3]
        assert subscription.dropped == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        notifier = ProgressNotifier(queue_size=10)
        subscription = notifier.subscribe("job-1")

        subscription.unsubscribe()
        notifier.publish(batch_event("job-1", 1))

        assert subscription.closed
        assert await subscription.get() is None
        assert notifier.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_get_times_out(self):
        subscription = ProgressNotifier().subscribe("job-1")

        with pytest.raises(asyncio.TimeoutError):
            await subscription.get(timeout=0.01)

    @pytest.mark.asyncio
    async def test_waiting_subscriber_is_woken(self):
        notifier = ProgressNotifier(queue_size=10)
        subscription = notifier.subscribe("job-1")

        waiter = asyncio.create_task(subscription.get())
        await asyncio.sleep(0)
        notifier.publish(batch_event("job-1", 1))

        event = await asyncio.wait_for(waiter, timeout=1)
        assert event.batch_number == 1


def test_event_payload():
    payload = event_payload(batch_event("job-1", 2, total=8))

    assert payload["event"] == "batch_completed"
    assert payload["job_id"] == "job-1"
    assert payload["batch"]["new"] == 2
    assert payload["totals"]["new_records"] == 4
    assert payload["progress_percentage"] == 50.0
    assert "timestamp" in payload
