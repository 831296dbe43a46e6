"""
SQLAlchemy ORM Models

Properties (the offers being imported), upload jobs (one per file import run)
and the audit log written by the ingestion path and the upload endpoints.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Integer, Numeric, DateTime, Text,
    CheckConstraint, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from src.offerlookup.db.base import Base, TimestampMixin


JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"

JOB_STATUSES = (
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_CANCELLED,
)
TERMINAL_JOB_STATUSES = frozenset({JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_STATUS_CANCELLED})

FILE_TYPE_CSV = "csv"
FILE_TYPE_XLSX = "xlsx"
FILE_TYPES = (FILE_TYPE_CSV, FILE_TYPE_XLSX)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Property(Base, TimestampMixin):
    """
    A property with its current direct-mail offer.

    One row per unique (address, city, state, zip) tuple. Ingestion inserts
    new tuples and updates the offer of existing ones; it never deletes.
    """
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owner
    first_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Owner first name"
    )
    last_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Owner last name"
    )

    # Address (normalized, used as the dedup key)
    property_address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Whitespace-normalized street address"
    )
    property_city: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Whitespace-normalized city"
    )
    property_state: Mapped[str] = mapped_column(
        String(2),
        nullable=False,
        comment="Upper-case state code"
    )
    property_zip: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="5-digit ZIP code"
    )

    offer: Mapped[float] = mapped_column(
        Numeric(12, 2, asdecimal=False),
        nullable=False,
        default=0,
        comment="Current offer amount"
    )

    __table_args__ = (
        UniqueConstraint(
            "property_address", "property_city", "property_state", "property_zip",
            name="uq_properties_address_tuple"
        ),
        CheckConstraint("offer >= 0", name="check_offer_non_negative"),
        CheckConstraint("property_address <> ''", name="check_address_not_empty"),
        CheckConstraint("property_city <> ''", name="check_city_not_empty"),
        CheckConstraint("length(property_state) = 2", name="check_state_code_length"),
        CheckConstraint("length(property_zip) = 5", name="check_zip_length"),
        Index("idx_properties_city", "property_city"),
        Index("idx_properties_state", "property_state"),
        Index("idx_properties_zip", "property_zip"),
        Index("idx_properties_owner", "last_name", "first_name"),
    )

    @property
    def address_tuple(self) -> tuple[str, str, str, str]:
        return (self.property_address, self.property_city, self.property_state, self.property_zip)

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, address={self.property_address}, offer={self.offer})>"


class UploadJob(Base):
    """One file-import run with its lifecycle state and progress counters."""
    __tablename__ = "upload_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="UUID4 job identifier")
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, comment="Uploading user")
    filename: Mapped[str] = mapped_column(String(255), nullable=False, comment="Original file name")
    file_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="csv or xlsx")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JOB_STATUS_PENDING,
        comment="pending, processing, completed, failed, cancelled"
    )

    # Progress counters (absolute, non-decreasing while processing)
    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coerced_records: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Records whose offer could not be parsed and was stored as 0"
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="check_upload_job_status"
        ),
        CheckConstraint("file_type IN ('csv', 'xlsx')", name="check_upload_job_file_type"),
        Index("idx_upload_jobs_user_id", "user_id"),
        Index("idx_upload_jobs_status", "status"),
        Index("idx_upload_jobs_created_at", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def processed_records(self) -> int:
        return self.new_records + self.updated_records + self.error_records

    @property
    def progress_percentage(self) -> float:
        if not self.total_records:
            return 0.0
        return self.processed_records / self.total_records * 100

    @property
    def success_rate(self) -> float:
        if not self.total_records:
            return 0.0
        return (self.new_records + self.updated_records) / self.total_records * 100

    @property
    def processing_time(self) -> Optional[float]:
        """Seconds between job creation and completion, None while running."""
        if self.completed_at is None:
            return None
        return (as_utc(self.completed_at) - as_utc(self.created_at)).total_seconds()

    def __repr__(self) -> str:
        return f"<UploadJob(id={self.id}, status={self.status}, total={self.total_records})>"


class ActivityLog(Base):
    """Audit trail entry (uploads, processing outcomes and property edits)."""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("idx_audit_logs_user", "user_id"),
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_action", "action"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(action={self.action}, entity={self.entity_type}:{self.entity_id})>"
