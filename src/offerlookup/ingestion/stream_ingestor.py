"""
Stream Ingestor

Drives one upload job end to end: reads the file batch by batch, applies
each batch through the batch executor, keeps the job's status and counters
current, publishes progress events and writes the audit trail.

Batches run strictly one after another. The reader is only asked for the
next batch once the previous batch has committed, and the job is re-read
between batches so a cancellation request stops the import before the next
batch starts.
"""
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.offerlookup.db.models import (
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
)
from src.offerlookup.db.repository import ActivityLogRepository
from src.offerlookup.db.session import SessionLocal, get_db_session
from src.offerlookup.exceptions import (
    BatchTransactionError,
    IngestionError,
    JobNotFoundError,
)
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.progress import (
    BatchCompleted,
    JobFinished,
    ProgressNotifier,
    progress_notifier,
)
from src.offerlookup.ingestion.readers import RowReader, create_reader
from src.offerlookup.pipelines.batch_executor import BatchExecutor
from src.offerlookup.pipelines.stats import BatchStats, JobProgress
from src.offerlookup.utils.logger import bind_job_context, clear_job_context, get_logger

logger = get_logger(__name__)

AUDIT_ENTITY_TYPE = "uploadjob"


@dataclass
class IngestionState:
    """Mutable bookkeeping for a single ingest() call."""

    job_id: str
    user_id: int
    file_path: Path
    file_type: str
    progress: JobProgress = field(default_factory=JobProgress)
    batches_run: int = 0
    last_batch_failed: bool = False
    last_batch_error: Optional[str] = None
    cancelled: bool = False


@dataclass
class IngestionStats:
    """Final outcome of an ingest() call."""

    job_id: str
    status: str
    progress: JobProgress
    batches: int
    failed_batches: List[int] = field(default_factory=list)

    @property
    def new_or_updated(self) -> int:
        return self.progress.new_records + self.progress.updated_records

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'status': self.status,
            'batches': self.batches,
            'failed_batches': list(self.failed_batches),
            **self.progress.to_columns(),
        }


class StreamIngestor:
    """
    Import a CSV or spreadsheet file into the properties table.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        tracker: Optional[JobTracker] = None,
        executor: Optional[BatchExecutor] = None,
        notifier: Optional[ProgressNotifier] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.tracker = tracker or JobTracker(self.session_factory)
        self.executor = executor or BatchExecutor(self.session_factory)
        self.notifier = notifier or progress_notifier
        self.batch_size = batch_size or settings.ingest_batch_size
        self.audit_repository = ActivityLogRepository()

    async def ingest(self, file_path: Path, job_id: str, user_id: int) -> IngestionStats:
        """
        Run an upload job to a terminal status.

        Args:
            file_path: Uploaded file on local disk
            job_id: Pending job created for this upload
            user_id: Uploading user

        Returns:
            IngestionStats with the final status and counters

        Raises:
            JobNotFoundError: The job does not exist
            IngestionError: The job failed (it is marked failed first)
        """
        job = await self.tracker.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        state = IngestionState(
            job_id=job_id,
            user_id=user_id,
            file_path=Path(file_path),
            file_type=job.file_type,
        )
        bind_job_context(job_id, user_id)
        failed_batches: List[int] = []

        try:
            job = await self.tracker.update_status(job_id, JOB_STATUS_PROCESSING)
            if job.status != JOB_STATUS_PROCESSING:
                # Cancelled (or otherwise finished) before it ever started
                logger.info("ingestion_skipped", status=job.status)
                return IngestionStats(job_id, job.status, JobProgress.from_job(job), 0)

            logger.info(
                "ingestion_started",
                file_path=str(state.file_path),
                file_type=state.file_type,
                batch_size=self.batch_size
            )
            await self._audit(state, "start_processing", {
                'file_path': str(state.file_path),
                'file_type': state.file_type,
            })

            try:
                reader = create_reader(state.file_type, state.file_path, self.batch_size)
                await reader.open()
                await self._consume(state, reader, failed_batches)
            except IngestionError as e:
                await self._fail(state, e)
                raise
            except (OSError, SQLAlchemyError) as e:
                await self._fail(state, e)
                raise IngestionError(str(e)) from e

            if state.cancelled:
                return await self._finish_cancelled(state, failed_batches)

            if state.last_batch_failed:
                error = BatchTransactionError(
                    state.last_batch_error or "Final batch failed",
                    BatchStats(),
                    batch_number=state.batches_run,
                )
                await self._fail(state, error)
                raise error

            return await self._finish_completed(state, failed_batches)
        finally:
            self.notifier.close(job_id)
            clear_job_context()

    async def _consume(self, state: IngestionState, reader: RowReader, failed_batches: List[int]) -> None:
        if reader.total_rows is not None:
            state.progress.total_records = reader.total_rows
            await self.tracker.update_progress(state.job_id, state.progress)

        async with aclosing(reader.batches()) as batches:
            async for rows in batches:
                if reader.total_rows is None:
                    state.progress.total_records += len(rows)

                stats = await self._run_batch(state, rows)
                if state.last_batch_failed:
                    failed_batches.append(state.batches_run)

                logger.info(
                    "batch_processed",
                    batch_number=state.batches_run,
                    failed=state.last_batch_failed,
                    rows=stats.total,
                    processed=state.progress.processed_records,
                    total=state.progress.total_records
                )

                if await self._is_cancelled(state):
                    state.cancelled = True
                    logger.info("ingestion_cancelled", batches_run=state.batches_run)
                    break

    async def _run_batch(self, state: IngestionState, rows: List[Dict[str, Any]]) -> BatchStats:
        state.batches_run += 1
        try:
            stats = await self.executor.run_batch(rows, job_id=state.job_id, batch_number=state.batches_run)
            state.last_batch_failed = False
            state.last_batch_error = None
        except BatchTransactionError as e:
            stats = e.stats
            state.last_batch_failed = True
            state.last_batch_error = str(e)

        state.progress.add_batch(stats)
        await self.tracker.update_progress(state.job_id, state.progress)
        self.notifier.publish(BatchCompleted(
            job_id=state.job_id,
            batch_number=state.batches_run,
            batch=stats,
            totals=replace(state.progress),
            failed=state.last_batch_failed,
        ))
        return stats

    async def _is_cancelled(self, state: IngestionState) -> bool:
        return await self.tracker.get_status(state.job_id) == JOB_STATUS_CANCELLED

    async def _finish_completed(self, state: IngestionState, failed_batches: List[int]) -> IngestionStats:
        await self.tracker.update_progress(state.job_id, state.progress)
        job = await self.tracker.update_status(state.job_id, JOB_STATUS_COMPLETED)

        if job.status == JOB_STATUS_CANCELLED:
            # Cancelled after the last batch; that request wins
            return await self._finish_cancelled(state, failed_batches)

        logger.info("ingestion_completed", batches_run=state.batches_run, **state.progress.to_columns())
        await self._audit(state, "processing_completed", state.progress.to_columns())
        self.notifier.publish(JobFinished(
            job_id=state.job_id,
            status=job.status,
            totals=replace(state.progress),
        ))
        return IngestionStats(state.job_id, job.status, state.progress, state.batches_run, failed_batches)

    async def _finish_cancelled(self, state: IngestionState, failed_batches: List[int]) -> IngestionStats:
        await self._audit(state, "processing_cancelled", state.progress.to_columns())
        self.notifier.publish(JobFinished(
            job_id=state.job_id,
            status=JOB_STATUS_CANCELLED,
            totals=replace(state.progress),
        ))
        return IngestionStats(
            state.job_id, JOB_STATUS_CANCELLED, state.progress, state.batches_run, failed_batches
        )

    async def _fail(self, state: IngestionState, error: Exception) -> None:
        """Record a fatal error. Never raises; the caller re-raises the original error."""
        message = str(error)
        logger.error(
            "ingestion_failed",
            error=message,
            error_type=type(error).__name__,
            batches_run=state.batches_run
        )

        try:
            await self.tracker.update_progress(state.job_id, state.progress)
            await self.tracker.update_status(state.job_id, JOB_STATUS_FAILED, error_message=message)
            await self._audit(state, "processing_failed", {
                'error': message,
                'error_type': type(error).__name__,
                **state.progress.to_columns(),
            })
        except (SQLAlchemyError, JobNotFoundError) as e:
            logger.error("ingestion_failure_not_recorded", error=str(e), error_type=type(e).__name__)

        try:
            state.file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("upload_file_delete_failed", file_path=str(state.file_path), error=str(e))

        self.notifier.publish(JobFinished(
            job_id=state.job_id,
            status=JOB_STATUS_FAILED,
            totals=replace(state.progress),
            error_message=message,
        ))

    async def _audit(self, state: IngestionState, action: str, details: Dict[str, Any]) -> None:
        async with get_db_session(self.session_factory) as session:
            await self.audit_repository.log(
                session,
                action=action,
                entity_type=AUDIT_ENTITY_TYPE,
                user_id=state.user_id,
                entity_id=state.job_id,
                details=details,
            )
