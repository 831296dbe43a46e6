"""
Job Tracker

Durable lifecycle and progress for upload jobs.

Status only moves forward:

    pending -> processing -> completed | failed | cancelled
    pending -> failed | cancelled

Every transition is a conditional UPDATE, so a cancellation recorded by
one caller is never overwritten by another caller's later write.
"""
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.offerlookup.db.models import (
    UploadJob,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
)
from src.offerlookup.db.repository import UploadJobRepository
from src.offerlookup.db.session import SessionLocal, get_db_session
from src.offerlookup.exceptions import JobNotFoundError
from src.offerlookup.pipelines.stats import JobProgress
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

# Target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    JOB_STATUS_PROCESSING: frozenset({JOB_STATUS_PENDING}),
    JOB_STATUS_COMPLETED: frozenset({JOB_STATUS_PROCESSING}),
    JOB_STATUS_FAILED: frozenset({JOB_STATUS_PENDING, JOB_STATUS_PROCESSING}),
    JOB_STATUS_CANCELLED: frozenset({JOB_STATUS_PENDING, JOB_STATUS_PROCESSING}),
}


class JobTracker:
    """Create, advance and query upload jobs."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        repository: Optional[UploadJobRepository] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.repository = repository or UploadJobRepository()

    async def create_job(
        self,
        user_id: int,
        filename: str,
        file_type: str,
        job_id: Optional[str] = None
    ) -> UploadJob:
        """
        Create a pending job with zeroed counters.

        Args:
            user_id: Uploading user
            filename: Original file name
            file_type: csv or xlsx
            job_id: Explicit id (a new UUID4 when omitted)

        Returns:
            The new UploadJob
        """
        async with get_db_session(self.session_factory) as session:
            return await self.repository.create_job(
                session,
                job_id=job_id or str(uuid.uuid4()),
                user_id=user_id,
                filename=filename,
                file_type=file_type,
            )

    async def update_status(
        self,
        job_id: str,
        status: str,
        error_message: Optional[str] = None
    ) -> UploadJob:
        """
        Move a job to a new status.

        A transition the current status does not allow is ignored and
        logged; the job is returned as stored.

        Args:
            job_id: Job ID
            status: Target status
            error_message: Recorded with failed jobs

        Returns:
            The job after the attempted transition

        Raises:
            JobNotFoundError: No such job
            ValueError: Unknown target status
        """
        if status not in ALLOWED_TRANSITIONS:
            raise ValueError(f"Cannot transition a job to status: {status}")

        async with get_db_session(self.session_factory) as session:
            applied = await self.repository.transition_status(
                session,
                job_id,
                status,
                allowed_from=ALLOWED_TRANSITIONS[status],
                error_message=error_message,
            )
            job = await self.repository.get_by_id(session, job_id)

        if job is None:
            raise JobNotFoundError(job_id)

        if applied:
            logger.info("upload_job_status_changed", job_id=job_id, status=status)
        else:
            logger.warning(
                "upload_job_transition_rejected",
                job_id=job_id,
                current_status=job.status,
                requested_status=status
            )
        return job

    async def update_progress(self, job_id: str, progress: JobProgress) -> None:
        """
        Store an absolute progress snapshot.

        Raises:
            JobNotFoundError: No such job
        """
        async with get_db_session(self.session_factory) as session:
            found = await self.repository.update_progress(session, job_id, progress.to_columns())

        if not found:
            raise JobNotFoundError(job_id)

        logger.debug("upload_job_progress", job_id=job_id, **progress.to_columns())

    async def cancel_job(self, job_id: str) -> UploadJob:
        """
        Request cancellation.

        A running ingestion stops before its next batch; jobs that already
        reached a terminal status are left untouched.
        """
        return await self.update_status(job_id, JOB_STATUS_CANCELLED)

    async def find_by_id(self, job_id: str) -> Optional[UploadJob]:
        async with get_db_session(self.session_factory) as session:
            return await self.repository.get_by_id(session, job_id)

    async def get_status(self, job_id: str) -> Optional[str]:
        job = await self.find_by_id(job_id)
        return job.status if job else None

    async def list_for_user(self, user_id: int, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        """Paginated jobs of one user, newest first."""
        async with get_db_session(self.session_factory) as session:
            return await self.repository.find_by_user_id(session, user_id, page, page_size)

    async def job_stats(self, days: int = 30) -> Dict[str, Any]:
        async with get_db_session(self.session_factory) as session:
            return await self.repository.get_job_stats(session, days)
