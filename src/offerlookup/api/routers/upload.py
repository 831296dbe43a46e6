"""
Upload Router

Endpoints for file uploads, upload job status, cancellation and live
progress.
"""
import asyncio
import json
import uuid
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.offerlookup.api.auth import User, get_current_active_user, require_upload_role
from src.offerlookup.api.dependencies import get_job_tracker, get_notifier, get_session_factory
from src.offerlookup.api.schemas import UploadAccepted, UploadJobList, UploadJobStatus
from src.offerlookup.db.models import UploadJob
from src.offerlookup.db.repository import ActivityLogRepository
from src.offerlookup.db.session import get_db_session
from src.offerlookup.exceptions import UnsupportedFileTypeError
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.progress import ProgressNotifier, event_payload
from src.offerlookup.ingestion.readers import file_type_for
from src.offerlookup.ingestion.stream_ingestor import StreamIngestor
from src.offerlookup.ingestion.tasks import process_upload
from src.offerlookup.pipelines.stats import JobProgress
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/upload", tags=["upload"])

CHUNK_SIZE = 1024 * 1024
KEEPALIVE_SECONDS = 15.0

audit_repository = ActivityLogRepository()


async def _save_upload(file: UploadFile, target_dir: Path) -> Path:
    """
    Stream an upload to disk, enforcing the size limit.

    Raises:
        HTTPException: 400 when the file is larger than allowed
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{uuid.uuid4()}{Path(file.filename).suffix.lower()}"
    size = 0

    with target.open("wb") as out:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > settings.upload_max_bytes:
                break
            out.write(chunk)

    if size > settings.upload_max_bytes:
        target.unlink(missing_ok=True)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {settings.upload_max_bytes} bytes",
        )
    return target


async def _audit(
    session_factory: async_sessionmaker[AsyncSession],
    action: str,
    user: User,
    job_id: str,
    details: dict,
    request: Optional[Request] = None,
) -> None:
    async with get_db_session(session_factory) as session:
        await audit_repository.log(
            session,
            action=action,
            entity_type="uploadjob",
            user_id=user.id,
            entity_id=job_id,
            details=details,
            ip_address=request.client.host if request and request.client else None,
        )


async def _get_visible_job(job_id: str, user: User, tracker: JobTracker) -> UploadJob:
    """
    Load a job the user may see (their own, or any job for admins).

    Raises:
        HTTPException: 404 unknown job, 403 someone else's job
    """
    job = await tracker.find_by_id(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Upload job not found: {job_id}")
    if job.user_id != user.id and user.role != "admin":
        raise HTTPException(status_code=403, detail="Not allowed to access this upload job")
    return job


@router.post("", response_model=UploadAccepted, status_code=status.HTTP_202_ACCEPTED)
async def upload_file(
    request: Request,
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    current_user: User = Depends(require_upload_role),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    tracker: JobTracker = Depends(get_job_tracker),
    notifier: ProgressNotifier = Depends(get_notifier),
):
    """
    Upload a CSV or Excel file of property offers.

    The file is saved and processing starts in the background. Poll
    GET /api/v1/upload/{job_id} or stream /events for progress.

    Raises:
        HTTPException: 400 missing, unsupported or oversized file
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        if Path(file.filename).suffix.lower() not in settings.allowed_upload_extensions:
            raise UnsupportedFileTypeError(Path(file.filename).suffix)
        file_type = file_type_for(file.filename)
    except UnsupportedFileTypeError:
        raise HTTPException(
            status_code=400,
            detail="Unsupported file type. Only CSV and Excel files are allowed.",
        )

    file_path = await _save_upload(file, Path(settings.upload_temp_dir))

    try:
        job = await tracker.create_job(current_user.id, file.filename, file_type)
    except Exception:
        file_path.unlink(missing_ok=True)
        raise

    await _audit(session_factory, "upload", current_user, job.id, {
        'filename': file.filename,
        'file_size': file_path.stat().st_size,
        'file_type': file_type,
    }, request)

    background_tasks.add_task(
        process_upload,
        file_path=file_path,
        job_id=job.id,
        user_id=current_user.id,
        ingestor=StreamIngestor(session_factory, notifier=notifier),
    )

    logger.info("upload_accepted", job_id=job.id, filename=file.filename, user_id=current_user.id)
    return UploadAccepted(
        job_id=job.id,
        status=job.status,
        message=f"Processing started for {file.filename}",
    )


@router.get("/jobs", response_model=UploadJobList)
async def list_upload_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Results per page"),
    current_user: User = Depends(get_current_active_user),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """List the current user's upload jobs, newest first."""
    result = await tracker.list_for_user(current_user.id, page, page_size)
    return UploadJobList(
        items=[UploadJobStatus.model_validate(job) for job in result['rows']],
        total=result['count'],
        page=result['current_page'],
        page_size=page_size,
        total_pages=result['total_pages'],
    )


@router.get("/{job_id}", response_model=UploadJobStatus)
async def get_upload_status(
    job_id: str,
    current_user: User = Depends(get_current_active_user),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """Get status, progress and counters of an upload job."""
    return await _get_visible_job(job_id, current_user, tracker)


@router.put("/{job_id}/cancel", response_model=UploadJobStatus)
async def cancel_upload(
    job_id: str,
    request: Request,
    current_user: User = Depends(require_upload_role),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """
    Request cancellation of a pending or running upload.

    Batches already committed stay committed; processing stops before the
    next batch.

    Raises:
        HTTPException: 400 if the job already finished
    """
    job = await _get_visible_job(job_id, current_user, tracker)
    if job.is_terminal:
        raise HTTPException(status_code=400, detail=f"Cannot cancel a job with status {job.status}")

    job = await tracker.cancel_job(job_id)
    await _audit(session_factory, "cancel_upload", current_user, job_id, {
        'filename': job.filename,
        'status': job.status,
    }, request)

    logger.info("upload_cancel_requested", job_id=job_id, status=job.status)
    return job


def _sse(event_name: str, payload: dict) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, default=str)}\n\n"


def _finished_payload(job: UploadJob) -> dict:
    return {
        'event': "job_finished",
        'job_id': job.id,
        'status': job.status,
        'totals': JobProgress.from_job(job).to_columns(),
        'error_message': job.error_message,
        'progress_percentage': round(job.progress_percentage, 2),
    }


@router.get("/{job_id}/events")
async def stream_upload_events(
    job_id: str,
    current_user: User = Depends(get_current_active_user),
    tracker: JobTracker = Depends(get_job_tracker),
    notifier: ProgressNotifier = Depends(get_notifier),
):
    """
    Server-sent events with per-batch progress until the job finishes.

    A job that already finished yields a single job_finished event.
    """
    await _get_visible_job(job_id, current_user, tracker)
    subscription = notifier.subscribe(job_id)

    async def event_stream():
        try:
            job = await tracker.find_by_id(job_id)
            if job is None or job.is_terminal:
                if job is not None:
                    yield _sse("job_finished", _finished_payload(job))
                return

            while True:
                try:
                    event = await subscription.get(timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    job = await tracker.find_by_id(job_id)
                    if job is None or job.is_terminal:
                        if job is not None:
                            yield _sse("job_finished", _finished_payload(job))
                        return
                    yield ": keepalive\n\n"
                    continue

                if event is None:
                    return
                yield _sse(event.event, event_payload(event))
        finally:
            subscription.unsubscribe()

    return StreamingResponse(event_stream(), media_type="text/event-stream")
