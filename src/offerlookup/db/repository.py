"""
Repository Pattern for Data Access

Provides CRUD operations and domain-specific queries for all models.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Iterable, Type, TypeVar

from sqlalchemy import select, update, func, and_, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from src.offerlookup.db.models import (
    Property,
    UploadJob,
    ActivityLog,
    TERMINAL_JOB_STATUSES,
    utcnow,
)
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class BaseRepository:
    """
    Base repository with common CRUD operations.

    Generic repository that can be extended for specific models.
    """

    def __init__(self, model: Type[T]):
        """
        Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        logger.debug("repository_initialized", model=model.__name__)

    async def get_by_id(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Get single record by primary key.

        Args:
            session: Database session
            id_value: Primary key value

        Returns:
            Model instance or None
        """
        result = await session.get(self.model, id_value, populate_existing=True)
        logger.debug(
            "repository_get_by_id",
            model=self.model.__name__,
            id=id_value,
            found=result is not None
        )
        return result

    async def create(self, session: AsyncSession, **kwargs) -> T:
        """
        Create new record.

        Args:
            session: Database session
            **kwargs: Model field values

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        session.add(instance)
        await session.flush()
        logger.debug("repository_created", model=self.model.__name__, id=getattr(instance, 'id', None))
        return instance

    async def update(self, session: AsyncSession, id_value: Any, **kwargs) -> Optional[T]:
        """
        Update existing record.

        Args:
            session: Database session
            id_value: Primary key value
            **kwargs: Fields to update

        Returns:
            Updated model instance or None
        """
        instance = await self.get_by_id(session, id_value)
        if not instance:
            logger.warning("repository_update_not_found", model=self.model.__name__, id=id_value)
            return None

        for key, value in kwargs.items():
            setattr(instance, key, value)

        await session.flush()
        logger.info("repository_updated", model=self.model.__name__, id=id_value)
        return instance

    async def delete(self, session: AsyncSession, id_value: Any) -> bool:
        """
        Delete record (hard delete).

        Returns:
            True if deleted, False if not found
        """
        instance = await self.get_by_id(session, id_value)
        if not instance:
            logger.warning("repository_delete_not_found", model=self.model.__name__, id=id_value)
            return False

        await session.delete(instance)
        await session.flush()
        logger.info("repository_deleted", model=self.model.__name__, id=id_value)
        return True

    async def count(self, session: AsyncSession) -> int:
        """
        Count total records.

        Args:
            session: Database session

        Returns:
            Total count
        """
        count = await session.scalar(select(func.count()).select_from(self.model))
        logger.debug("repository_count", model=self.model.__name__, count=count)
        return count

    async def paginate(
        self,
        session: AsyncSession,
        query,
        page: int = 1,
        page_size: int = 20
    ) -> Dict[str, Any]:
        """
        Run a select with offset pagination.

        Returns:
            Dict with rows, count, total_pages and current_page
        """
        page = max(page, 1)
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        count = await session.scalar(count_query)

        rows = (await session.execute(
            query.offset((page - 1) * page_size)
            .limit(page_size)
            .execution_options(populate_existing=True)
        )).scalars().all()

        return {
            'rows': list(rows),
            'count': count,
            'total_pages': (count + page_size - 1) // page_size if page_size else 0,
            'current_page': page,
        }


class PropertyRepository(BaseRepository):
    """Repository for Property model with dedup and search queries."""

    def __init__(self):
        super().__init__(Property)

    async def find_by_address_tuple(
        self,
        session: AsyncSession,
        property_address: str,
        property_city: str,
        property_state: str,
        property_zip: str
    ) -> Optional[Property]:
        """
        Find a property by its exact normalized address tuple.

        Used for deduplication during imports. Comparison is exact
        (case-sensitive) on all four columns.

        Args:
            session: Database session
            property_address: Normalized street address
            property_city: Normalized city
            property_state: Normalized state code
            property_zip: Normalized 5-digit ZIP

        Returns:
            Property instance or None
        """
        query = select(Property).where(
            and_(
                Property.property_address == property_address,
                Property.property_city == property_city,
                Property.property_state == property_state,
                Property.property_zip == property_zip,
            )
        )
        return (await session.execute(query)).scalar_one_or_none()

    async def update_offer(
        self,
        session: AsyncSession,
        property_obj: Property,
        offer: float,
        updated_at: datetime
    ) -> Property:
        """
        Update only the offer (and updated_at) of a stored property.

        Args:
            session: Database session
            property_obj: Stored property
            offer: New offer amount
            updated_at: Timestamp of the change

        Returns:
            Updated property
        """
        property_obj.offer = offer
        property_obj.updated_at = updated_at
        await session.flush()
        logger.debug("property_offer_updated", id=property_obj.id, offer=offer)
        return property_obj

    async def search(
        self,
        session: AsyncSession,
        query: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip_code: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Dict[str, Any]:
        """
        Search properties by free text and optional filters.

        Args:
            session: Database session
            query: Matched against address, city, zip and owner names
            city: Exact city (case-insensitive)
            state: State code
            zip_code: ZIP code
            page: Page number
            page_size: Page size

        Returns:
            Paginated result dict
        """
        stmt = select(Property)

        if query:
            pattern = f"%{query.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Property.property_address).like(pattern),
                    func.lower(Property.property_city).like(pattern),
                    Property.property_zip.like(pattern),
                    func.lower(Property.first_name).like(pattern),
                    func.lower(Property.last_name).like(pattern),
                )
            )
        if city:
            stmt = stmt.where(func.lower(Property.property_city) == city.strip().lower())
        if state:
            stmt = stmt.where(Property.property_state == state.strip().upper())
        if zip_code:
            stmt = stmt.where(Property.property_zip == zip_code.strip())

        stmt = stmt.order_by(
            Property.property_city,
            Property.property_zip,
            Property.property_address,
        )
        return await self.paginate(session, stmt, page, page_size)

    async def get_stats_by_state(self, session: AsyncSession) -> List[Dict[str, Any]]:
        """
        Property count and average offer per state, most properties first.

        Args:
            session: Database session

        Returns:
            List of dicts with state, count and average_offer
        """
        count = func.count(Property.id).label('count')
        query = select(
            Property.property_state,
            count,
            func.avg(Property.offer).label('average_offer'),
        ).group_by(Property.property_state).order_by(desc(count), Property.property_state)

        results = (await session.execute(query)).all()
        return [
            {'state': state, 'count': total, 'average_offer': round(float(average or 0), 2)}
            for state, total, average in results
        ]

    async def get_stats_by_city(self, session: AsyncSession, state: str) -> List[Dict[str, Any]]:
        """
        Property count and average offer per city within one state.

        Args:
            session: Database session
            state: Two-letter state code

        Returns:
            List of dicts with city, count and average_offer
        """
        count = func.count(Property.id).label('count')
        query = select(
            Property.property_city,
            count,
            func.avg(Property.offer).label('average_offer'),
        ).where(
            Property.property_state == state
        ).group_by(Property.property_city).order_by(desc(count), Property.property_city)

        results = (await session.execute(query)).all()
        return [
            {'city': city, 'count': total, 'average_offer': round(float(average or 0), 2)}
            for city, total, average in results
        ]

    async def count_created_since(self, session: AsyncSession, since: datetime) -> int:
        query = select(func.count(Property.id)).where(Property.created_at >= since)
        return await session.scalar(query) or 0

    async def count_updated_since(self, session: AsyncSession, since: datetime) -> int:
        """Properties created before `since` whose offer changed after it."""
        query = select(func.count(Property.id)).where(
            and_(
                Property.updated_at >= since,
                Property.created_at < since,
            )
        )
        return await session.scalar(query) or 0


class UploadJobRepository(BaseRepository):
    """Repository for UploadJob model (file import tracking)."""

    def __init__(self):
        super().__init__(UploadJob)

    async def create_job(
        self,
        session: AsyncSession,
        job_id: str,
        user_id: int,
        filename: str,
        file_type: str,
        status: str = 'pending'
    ) -> UploadJob:
        """
        Create new upload job with zeroed counters.

        Args:
            session: Database session
            job_id: UUID job identifier
            user_id: Uploading user
            filename: Original file name
            file_type: csv or xlsx
            status: Initial status

        Returns:
            UploadJob instance
        """
        now = utcnow()
        job = UploadJob(
            id=job_id,
            user_id=user_id,
            filename=filename,
            file_type=file_type,
            status=status,
            total_records=0,
            new_records=0,
            updated_records=0,
            error_records=0,
            coerced_records=0,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        await session.flush()

        logger.info("upload_job_created", job_id=job_id, user_id=user_id, file_type=file_type)
        return job

    async def transition_status(
        self,
        session: AsyncSession,
        job_id: str,
        status: str,
        allowed_from: Iterable[str],
        error_message: Optional[str] = None
    ) -> bool:
        """
        Move a job to a new status if its current status allows it.

        The check and the write are one UPDATE statement, so a concurrent
        cancellation can never be overwritten.

        Args:
            session: Database session
            job_id: Job ID
            status: Target status
            allowed_from: Statuses the job may currently be in
            error_message: Stored alongside failed jobs

        Returns:
            True if the row was updated
        """
        now = utcnow()
        values: Dict[str, Any] = {'status': status, 'updated_at': now}
        if status in TERMINAL_JOB_STATUSES:
            values['completed_at'] = now
        if error_message is not None:
            values['error_message'] = error_message

        result = await session.execute(
            update(UploadJob)
            .where(UploadJob.id == job_id, UploadJob.status.in_(list(allowed_from)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def update_progress(
        self,
        session: AsyncSession,
        job_id: str,
        counters: Dict[str, int]
    ) -> bool:
        """
        Overwrite the job's progress counters with absolute values.

        Args:
            session: Database session
            job_id: Job ID
            counters: Column name -> absolute value

        Returns:
            True if the job exists
        """
        result = await session.execute(
            update(UploadJob)
            .where(UploadJob.id == job_id)
            .values(updated_at=utcnow(), **counters)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def find_by_user_id(
        self,
        session: AsyncSession,
        user_id: int,
        page: int = 1,
        page_size: int = 20
    ) -> Dict[str, Any]:
        """
        Find jobs uploaded by a user, newest first.

        Args:
            session: Database session
            user_id: User ID
            page: Page number
            page_size: Page size

        Returns:
            Paginated result dict
        """
        query = select(UploadJob).where(
            UploadJob.user_id == user_id
        ).order_by(desc(UploadJob.created_at))

        return await self.paginate(session, query, page, page_size)

    async def get_job_stats(self, session: AsyncSession, days: int = 30) -> Dict[str, Any]:
        """
        Aggregate job statistics over a trailing window.

        Args:
            session: Database session
            days: Number of days to look back

        Returns:
            Counts by status, record totals and average processing time (seconds)
        """
        since = utcnow() - timedelta(days=days)
        query = select(UploadJob).where(
            UploadJob.created_at >= since
        ).execution_options(populate_existing=True)
        jobs = (await session.execute(query)).scalars().all()

        stats: Dict[str, Any] = {
            'total': len(jobs),
            'pending': 0,
            'processing': 0,
            'completed': 0,
            'failed': 0,
            'cancelled': 0,
            'records_processed': 0,
            'records_created': 0,
            'records_updated': 0,
            'records_errored': 0,
            'average_processing_time': 0,
        }

        processing_times = []
        for job in jobs:
            stats[job.status] += 1
            stats['records_processed'] += job.total_records
            stats['records_created'] += job.new_records
            stats['records_updated'] += job.updated_records
            stats['records_errored'] += job.error_records

            if job.is_terminal and job.processing_time is not None:
                processing_times.append(job.processing_time)

        if processing_times:
            stats['average_processing_time'] = int(sum(processing_times) // len(processing_times))

        logger.info("upload_job_stats", days=days, total=stats['total'])
        return stats


class ActivityLogRepository(BaseRepository):
    """Repository for ActivityLog model (audit trail)."""

    def __init__(self):
        super().__init__(ActivityLog)

    async def log(
        self,
        session: AsyncSession,
        action: str,
        entity_type: str,
        user_id: Optional[int] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None
    ) -> ActivityLog:
        """
        Append an audit entry.

        Args:
            session: Database session
            action: What happened (upload, start_processing, ...)
            entity_type: Entity kind (uploadjob, property, ...)
            user_id: Acting user
            entity_id: Entity identifier
            details: Structured details (file name, counts, error)
            ip_address: Client address for HTTP-originated actions

        Returns:
            ActivityLog instance
        """
        entry = ActivityLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=ip_address,
            created_at=utcnow(),
        )
        session.add(entry)
        await session.flush()

        logger.info("activity_logged", action=action, entity_type=entity_type, entity_id=entity_id)
        return entry

    async def get_for_entity(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: str
    ) -> List[ActivityLog]:
        """
        Get audit entries for one entity in insertion order.

        Args:
            session: Database session
            entity_type: Entity kind
            entity_id: Entity identifier

        Returns:
            List of audit entries
        """
        query = select(ActivityLog).where(
            and_(
                ActivityLog.entity_type == entity_type,
                ActivityLog.entity_id == entity_id,
            )
        ).order_by(ActivityLog.id)

        return list((await session.execute(query)).scalars().all())

    async def get_recent(self, session: AsyncSession, limit: int = 10) -> List[ActivityLog]:
        """Latest audit entries across all entities, newest first."""
        query = select(ActivityLog).order_by(
            desc(ActivityLog.created_at), desc(ActivityLog.id)
        ).limit(limit)

        return list((await session.execute(query)).scalars().all())
