"""
Ingestion counters shared by the batch executor, the stream ingestor
and the job tracker.
"""
from dataclasses import asdict, dataclass
from typing import Dict


@dataclass
class BatchStats:
    """Outcome of one batch. new + updated + error == total."""

    total: int = 0
    new: int = 0
    updated: int = 0
    error: int = 0
    coerced: int = 0

    @classmethod
    def all_failed(cls, total: int) -> "BatchStats":
        return cls(total=total, error=total)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class JobProgress:
    """Cumulative counters for a whole job, stored on the upload_jobs row."""

    total_records: int = 0
    new_records: int = 0
    updated_records: int = 0
    error_records: int = 0
    coerced_records: int = 0

    @property
    def processed_records(self) -> int:
        return self.new_records + self.updated_records + self.error_records

    def add_batch(self, stats: BatchStats) -> None:
        self.new_records += stats.new
        self.updated_records += stats.updated
        self.error_records += stats.error
        self.coerced_records += stats.coerced

    def to_columns(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_job(cls, job) -> "JobProgress":
        return cls(
            total_records=job.total_records,
            new_records=job.new_records,
            updated_records=job.updated_records,
            error_records=job.error_records,
            coerced_records=job.coerced_records,
        )
