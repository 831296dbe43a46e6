"""
Background upload processing.

Runs after the upload request has been answered. Outcomes are recorded on
the upload job; nothing is raised back into the web server.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Optional

from config.settings import settings
from src.offerlookup.api.cache import invalidate_property_cache
from src.offerlookup.db.models import JOB_STATUS_COMPLETED, JOB_STATUS_CANCELLED
from src.offerlookup.ingestion.stream_ingestor import IngestionStats, StreamIngestor
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)


def move_to_processed(file_path: Path, processed_dir: Optional[str] = None) -> Path:
    """
    Move an ingested file out of the temp upload directory.

    Returns:
        New location of the file
    """
    target_dir = Path(processed_dir or settings.upload_processed_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / file_path.name
    shutil.move(str(file_path), str(target))
    return target


async def process_upload(
    file_path: Path,
    job_id: str,
    user_id: int,
    ingestor: Optional[StreamIngestor] = None,
    processed_dir: Optional[str] = None,
) -> Optional[IngestionStats]:
    """
    Ingest an uploaded file and dispose of it.

    Args:
        file_path: Saved upload in the temp directory
        job_id: Pending upload job
        user_id: Uploading user
        ingestor: Ingestor to use (defaults to one bound to the app database)
        processed_dir: Where ingested files are kept

    Returns:
        IngestionStats, or None when the job failed
    """
    ingestor = ingestor or StreamIngestor()
    file_path = Path(file_path)

    try:
        result = await ingestor.ingest(file_path, job_id, user_id)
    except Exception:
        # The ingestor already marked the job failed and removed the file
        logger.exception("upload_processing_failed", job_id=job_id, file_path=str(file_path))
        return None

    if result.status in (JOB_STATUS_COMPLETED, JOB_STATUS_CANCELLED):
        if result.new_or_updated:
            await asyncio.to_thread(invalidate_property_cache)
        try:
            moved = move_to_processed(file_path, processed_dir)
            logger.info("upload_file_archived", job_id=job_id, file_path=str(moved))
        except OSError as e:
            logger.warning("upload_file_archive_failed", job_id=job_id, error=str(e))

    logger.info("upload_processing_finished", **result.to_dict())
    return result
