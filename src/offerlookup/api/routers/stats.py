"""
Statistics Router

Endpoints for dashboard statistics and aggregations.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.offerlookup.api.auth import User, fake_users_db, get_current_active_user
from src.offerlookup.api.cache import STATS_PREFIX, cache_result
from src.offerlookup.api.dependencies import get_db, get_job_tracker
from src.offerlookup.api.schemas import (
    CityStats,
    PropertyCounts,
    RecentActivity,
    StateStats,
    SystemStats,
    UploadStats,
    UserCounts,
)
from src.offerlookup.db.models import utcnow
from src.offerlookup.db.repository import ActivityLogRepository, PropertyRepository, UploadJobRepository
from src.offerlookup.ingestion.job_tracker import JobTracker

router = APIRouter(prefix="/api/v1/stats", tags=["statistics"])

property_repository = PropertyRepository()
job_repository = UploadJobRepository()
audit_repository = ActivityLogRepository()

RECENT_ACTIVITY_LIMIT = 10
SYSTEM_STATS_DAYS = 30


@router.get("/system", response_model=SystemStats)
@cache_result(f"{STATS_PREFIX}:system", ttl=settings.cache_stats_ttl_seconds)
async def get_system_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Get user and property counts, 30-day upload statistics and the latest
    audit entries.
    """
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    users = UserCounts(
        total=len(fake_users_db),
        active=sum(1 for user in fake_users_db.values() if not user.get("disabled")),
    )
    properties = PropertyCounts(
        total=await property_repository.count(db),
        added_today=await property_repository.count_created_since(db, today),
        updated_today=await property_repository.count_updated_since(db, today),
    )
    uploads = UploadStats(
        days=SYSTEM_STATS_DAYS,
        **await job_repository.get_job_stats(db, SYSTEM_STATS_DAYS),
    )
    recent = await audit_repository.get_recent(db, RECENT_ACTIVITY_LIMIT)

    return SystemStats(
        users=users,
        properties=properties,
        uploads=uploads,
        recent_activities=[RecentActivity.model_validate(entry) for entry in recent],
    ).model_dump(mode="json")


@router.get("/properties/by-state", response_model=List[StateStats])
async def get_property_stats_by_state(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """Property count and average offer per state, most properties first."""
    return await property_repository.get_stats_by_state(db)


@router.get("/properties/by-city/{state}", response_model=List[CityStats])
async def get_property_stats_by_city(
    state: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Property count and average offer per city within a state.

    Raises:
        HTTPException: 400 unless state is two letters
    """
    if len(state) != 2 or not state.isalpha():
        raise HTTPException(status_code=400, detail="State must be a 2-letter code")

    return await property_repository.get_stats_by_city(db, state.upper())


@router.get("/uploads", response_model=UploadStats)
async def get_upload_stats(
    days: int = Query(30, ge=1, le=365, description="Trailing window in days"),
    current_user: User = Depends(get_current_active_user),
    tracker: JobTracker = Depends(get_job_tracker),
):
    """
    Get upload job counts by status, record totals and average processing time.
    """
    stats = await tracker.job_stats(days)
    return UploadStats(days=days, **stats)
