"""
Pydantic Schemas for API Request/Response Models

These schemas define the JSON structure for API endpoints.
"""
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class PropertyBase(BaseModel):
    """Base property schema."""
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    property_address: str
    property_city: str
    property_state: str
    property_zip: str
    offer: float

    class Config:
        from_attributes = True


class PropertyDetail(PropertyBase):
    """Detailed property schema with all fields."""
    created_at: datetime
    updated_at: datetime


class PropertyList(BaseModel):
    """Paginated property search results."""
    items: List[PropertyBase]
    total: int
    page: int
    page_size: int
    total_pages: int


class PropertyCreate(BaseModel):
    """
    New property.

    Fields are normalized the same way as imported rows before they are
    validated and stored.
    """
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    property_address: str
    property_city: str
    property_state: str
    property_zip: str
    offer: float = Field(..., ge=0)


class PropertyUpdate(BaseModel):
    """Partial property update; omitted fields keep their stored value."""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    property_address: Optional[str] = None
    property_city: Optional[str] = None
    property_state: Optional[str] = None
    property_zip: Optional[str] = None
    offer: Optional[float] = Field(None, ge=0)


class UploadAccepted(BaseModel):
    """Returned when an upload has been queued for processing."""
    job_id: str
    status: str = "pending"
    message: str


class UploadJobStatus(BaseModel):
    """Status, counters and timing of an upload job."""
    id: str
    user_id: int
    filename: str
    file_type: str
    status: str
    total_records: int
    new_records: int
    updated_records: int
    error_records: int
    coerced_records: int = Field(..., description="Offers that could not be parsed and were stored as 0")
    processed_records: int
    progress_percentage: float
    success_rate: float
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    processing_time: Optional[float] = Field(None, description="Seconds from creation to completion")

    class Config:
        from_attributes = True


class UploadJobList(BaseModel):
    """Paginated upload jobs."""
    items: List[UploadJobStatus]
    total: int
    page: int
    page_size: int
    total_pages: int


class UploadStats(BaseModel):
    """Aggregated upload job statistics."""
    days: int
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int
    records_processed: int
    records_created: int
    records_updated: int
    records_errored: int
    average_processing_time: int = Field(..., description="Seconds, over finished jobs")


class StateStats(BaseModel):
    state: str
    count: int
    average_offer: float


class CityStats(BaseModel):
    city: str
    count: int
    average_offer: float


class UserCounts(BaseModel):
    total: int
    active: int


class PropertyCounts(BaseModel):
    total: int
    added_today: int
    updated_today: int = Field(..., description="Existing properties whose offer changed today")


class RecentActivity(BaseModel):
    """One audit entry."""
    id: int
    user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SystemStats(BaseModel):
    """Dashboard overview of users, properties, uploads and recent activity."""
    users: UserCounts
    properties: PropertyCounts
    uploads: UploadStats
    recent_activities: List[RecentActivity]


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "0.1.0"
    database: str = "connected"
    cache: str = "unavailable"
    timestamp: datetime
