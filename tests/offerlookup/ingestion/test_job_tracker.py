"""
Tests for JobTracker
"""
import pytest

from src.offerlookup.exceptions import JobNotFoundError
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.pipelines.stats import JobProgress


@pytest.fixture
def tracker(session_factory):
    return JobTracker(session_factory)


class TestJobLifecycle:
    """Tests for status transitions."""

    @pytest.mark.asyncio
    async def test_create_job(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")

        assert len(job.id) == 36
        assert job.status == "pending"
        assert job.user_id == 1
        assert job.filename == "offers.csv"

    @pytest.mark.asyncio
    async def test_happy_path(self, tracker):
        """Test pending -> processing -> completed stamps completed_at."""
        job = await tracker.create_job(1, "offers.csv", "csv")

        job = await tracker.update_status(job.id, "processing")
        assert job.status == "processing"
        assert job.completed_at is None

        job = await tracker.update_status(job.id, "completed")
        assert job.status == "completed"
        assert job.completed_at is not None
        assert job.processing_time is not None

    @pytest.mark.asyncio
    async def test_cannot_complete_pending_job(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")

        job = await tracker.update_status(job.id, "completed")

        assert job.status == "pending"

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")

        job = await tracker.cancel_job(job.id)

        assert job.status == "cancelled"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancel_is_not_overwritten(self, tracker):
        """Test a cancelled job cannot be completed or failed afterwards."""
        job = await tracker.create_job(1, "offers.csv", "csv")
        await tracker.update_status(job.id, "processing")
        await tracker.cancel_job(job.id)

        assert (await tracker.update_status(job.id, "completed")).status == "cancelled"
        assert (await tracker.update_status(job.id, "failed", error_message="late")).status == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_is_noop(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")
        await tracker.update_status(job.id, "processing")
        await tracker.update_status(job.id, "completed")

        job = await tracker.cancel_job(job.id)

        assert job.status == "completed"

    @pytest.mark.asyncio
    async def test_failed_records_message(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")

        job = await tracker.update_status(job.id, "failed", error_message="Worksheet not found")

        assert job.status == "failed"
        assert job.error_message == "Worksheet not found"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")

        with pytest.raises(ValueError):
            await tracker.update_status(job.id, "pending")

    @pytest.mark.asyncio
    async def test_unknown_job(self, tracker):
        with pytest.raises(JobNotFoundError):
            await tracker.update_status("missing", "processing")
        assert await tracker.find_by_id("missing") is None
        assert await tracker.get_status("missing") is None


class TestJobProgress:
    """Tests for progress counters."""

    @pytest.mark.asyncio
    async def test_update_progress(self, tracker):
        job = await tracker.create_job(1, "offers.csv", "csv")
        progress = JobProgress(
            total_records=10, new_records=4, updated_records=2, error_records=1, coerced_records=1
        )

        await tracker.update_progress(job.id, progress)
        job = await tracker.find_by_id(job.id)

        assert job.total_records == 10
        assert job.new_records == 4
        assert job.updated_records == 2
        assert job.error_records == 1
        assert job.coerced_records == 1
        assert job.progress_percentage == 70.0
        assert JobProgress.from_job(job) == progress

    @pytest.mark.asyncio
    async def test_update_progress_unknown_job(self, tracker):
        with pytest.raises(JobNotFoundError):
            await tracker.update_progress("missing", JobProgress())


class TestJobQueries:
    """Tests for listing and statistics."""

    @pytest.mark.asyncio
    async def test_list_for_user(self, tracker):
        for name in ("a.csv", "b.csv", "c.csv"):
            await tracker.create_job(1, name, "csv")
        await tracker.create_job(2, "other.csv", "csv")

        page = await tracker.list_for_user(1, page=1, page_size=2)

        assert page["count"] == 3
        assert page["total_pages"] == 2
        assert len(page["rows"]) == 2
        assert all(job.user_id == 1 for job in page["rows"])

    @pytest.mark.asyncio
    async def test_job_stats(self, tracker):
        done = await tracker.create_job(1, "a.csv", "csv")
        await tracker.update_status(done.id, "processing")
        await tracker.update_progress(done.id, JobProgress(total_records=5, new_records=5))
        await tracker.update_status(done.id, "completed")
        cancelled = await tracker.create_job(1, "b.csv", "csv")
        await tracker.cancel_job(cancelled.id)

        stats = await tracker.job_stats(days=30)

        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["cancelled"] == 1
        assert stats["records_created"] == 5
        assert stats["average_processing_time"] >= 0
