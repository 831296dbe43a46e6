"""
Ingestion Package

File readers, the stream ingestor, job tracking and progress notification
for bulk property imports.
"""
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.progress import (
    BatchCompleted,
    JobFinished,
    ProgressNotifier,
    Subscription,
    progress_notifier,
)
from src.offerlookup.ingestion.readers import (
    CsvRowReader,
    SpreadsheetRowReader,
    create_reader,
    file_type_for,
)
from src.offerlookup.ingestion.stream_ingestor import (
    IngestionState,
    IngestionStats,
    StreamIngestor,
)

__all__ = [
    "JobTracker",
    "BatchCompleted",
    "JobFinished",
    "ProgressNotifier",
    "Subscription",
    "progress_notifier",
    "CsvRowReader",
    "SpreadsheetRowReader",
    "create_reader",
    "file_type_for",
    "IngestionState",
    "IngestionStats",
    "StreamIngestor",
]
