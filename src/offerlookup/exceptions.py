"""
Exceptions

Failure taxonomy for the bulk import pipeline. Row-level problems are
counted, never raised; everything here is batch-, file- or job-level.
"""
from typing import Optional


class IngestionError(Exception):
    """Base class for errors that end or reject an ingestion job."""


class FileFormatError(IngestionError):
    """The file could not be read (malformed CSV, corrupt or empty workbook)."""


class UnsupportedFileTypeError(IngestionError):
    """The declared file kind has no reader."""

    def __init__(self, file_type: str):
        super().__init__(f"Unsupported file type: {file_type}")
        self.file_type = file_type


class BatchTransactionError(IngestionError):
    """
    A batch transaction failed as a whole and was rolled back.

    Carries the batch stats with every row counted as an error.
    """

    def __init__(self, message: str, stats, batch_number: Optional[int] = None):
        super().__init__(message)
        self.stats = stats
        self.batch_number = batch_number


class JobNotFoundError(IngestionError):
    """No upload job exists with the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Upload job not found: {job_id}")
        self.job_id = job_id
