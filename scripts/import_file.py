"""
Import a CSV or Excel file of property offers from the command line.

Creates an upload job for the given user and runs the same ingestion path
as the upload API, printing the final counters.
"""
import argparse
import asyncio
import shutil
import sys
import tempfile
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from src.offerlookup.db.session import close_connections
from src.offerlookup.exceptions import IngestionError
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.readers import file_type_for
from src.offerlookup.ingestion.stream_ingestor import StreamIngestor
from src.offerlookup.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import property offers from a CSV/XLSX/XLS file.")
    parser.add_argument("path", help="File to import.")
    parser.add_argument("--user-id", type=int, default=1, help="User the upload job is recorded for.")
    parser.add_argument("--batch-size", type=int, default=settings.ingest_batch_size, help="Rows per transaction.")
    parser.add_argument("--keep-file", action="store_true", help="Import a temporary copy so the source file is never deleted.")
    return parser.parse_args()


async def run(path: Path, user_id: int, batch_size: int, keep_file: bool) -> int:
    file_type = file_type_for(path.name)

    source = path
    if keep_file:
        # A failed import deletes the file it read
        source = Path(tempfile.mkdtemp()) / path.name
        shutil.copy2(path, source)

    tracker = JobTracker()
    job = await tracker.create_job(user_id, path.name, file_type)
    ingestor = StreamIngestor(tracker=tracker, batch_size=batch_size)

    try:
        result = await ingestor.ingest(source, job.id, user_id)
    except IngestionError as e:
        print(f"Import failed: {e}")
        return 1
    finally:
        await close_connections()

    print("\n" + "=" * 60)
    print("IMPORT COMPLETE")
    print("=" * 60)
    print(f"  Job:       {result.job_id}")
    print(f"  Status:    {result.status}")
    print(f"  Batches:   {result.batches}")
    print(f"  Total:     {result.progress.total_records}")
    print(f"  New:       {result.progress.new_records}")
    print(f"  Updated:   {result.progress.updated_records}")
    print(f"  Errors:    {result.progress.error_records}")
    print(f"  Coerced:   {result.progress.coerced_records}")
    return 0


def main():
    args = parse_args()
    setup_logging()

    path = Path(args.path)
    if not path.exists():
        print(f"File not found: {path}")
        sys.exit(2)

    logger.info("cli_import_started", path=str(path), user_id=args.user_id)
    sys.exit(asyncio.run(run(path, args.user_id, args.batch_size, args.keep_file)))


if __name__ == "__main__":
    main()
