"""
Pipelines Package

Dedup/upsert resolution and transactional batch execution.
"""
from src.offerlookup.pipelines.stats import BatchStats, JobProgress
from src.offerlookup.pipelines.upsert_resolver import UpsertResolver
from src.offerlookup.pipelines.batch_executor import BatchExecutor

__all__ = [
    "BatchStats",
    "JobProgress",
    "UpsertResolver",
    "BatchExecutor",
]
