"""
Batch Executor

Applies one batch of raw rows inside a single database transaction.

Each row runs under its own SAVEPOINT, so a failing row is rolled back
and counted without disturbing the rest of the batch. If the surrounding
transaction itself fails (commit error, lost connection) the whole batch
is rolled back and reported with every row as an error.
"""
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.offerlookup.db.session import SessionLocal
from src.offerlookup.exceptions import BatchTransactionError
from src.offerlookup.pipelines.stats import BatchStats
from src.offerlookup.pipelines.upsert_resolver import UpsertResolver
from src.offerlookup.transformers.record_mapper import PropertyRecord, map_row
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)


def _is_connection_loss(error: Exception) -> bool:
    return isinstance(error, DBAPIError) and error.connection_invalidated


class BatchExecutor:
    """
    Run batches of rows through the record mapper and the upsert resolver.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        resolver: Optional[UpsertResolver] = None,
        mapper: Callable[[Mapping[Any, Any]], PropertyRecord] = map_row,
    ):
        self.session_factory = session_factory or SessionLocal
        self.resolver = resolver or UpsertResolver()
        self.mapper = mapper

    async def run_batch(
        self,
        rows: List[Dict[str, Any]],
        job_id: Optional[str] = None,
        batch_number: Optional[int] = None
    ) -> BatchStats:
        """
        Apply a batch atomically.

        Args:
            rows: Raw rows (header -> cell value)
            job_id: Owning job, for logging
            batch_number: 1-based batch index, for logging

        Returns:
            BatchStats for the committed batch

        Raises:
            BatchTransactionError: The batch transaction was rolled back
        """
        stats = BatchStats(total=len(rows))

        async with self.session_factory() as session:
            try:
                for row_number, row in enumerate(rows, start=1):
                    try:
                        async with session.begin_nested():
                            record = self.mapper(row)
                            _, created = await self.resolver.resolve(session, record)
                    except Exception as e:
                        if _is_connection_loss(e):
                            raise
                        stats.error += 1
                        logger.warning(
                            "record_failed",
                            job_id=job_id,
                            batch_number=batch_number,
                            row_number=row_number,
                            error=str(e),
                            error_type=type(e).__name__
                        )
                        continue

                    if created:
                        stats.new += 1
                    else:
                        stats.updated += 1
                    if record.offer_coerced:
                        stats.coerced += 1

                await session.commit()

            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(
                    "batch_rolled_back",
                    job_id=job_id,
                    batch_number=batch_number,
                    rows=len(rows),
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise BatchTransactionError(
                    f"Batch {batch_number} failed: {e}",
                    BatchStats.all_failed(len(rows)),
                    batch_number=batch_number,
                ) from e

        logger.info(
            "batch_committed",
            job_id=job_id,
            batch_number=batch_number,
            **stats.to_dict()
        )
        return stats
