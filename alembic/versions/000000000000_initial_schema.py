"""initial_schema

Revision ID: 000000000000
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create properties table
    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True, comment='Owner first name'),
        sa.Column('last_name', sa.String(length=100), nullable=True, comment='Owner last name'),
        sa.Column('property_address', sa.String(length=255), nullable=False, comment='Whitespace-normalized street address'),
        sa.Column('property_city', sa.String(length=100), nullable=False, comment='Whitespace-normalized city'),
        sa.Column('property_state', sa.String(length=2), nullable=False, comment='Upper-case state code'),
        sa.Column('property_zip', sa.String(length=10), nullable=False, comment='5-digit ZIP code'),
        sa.Column('offer', sa.Numeric(precision=12, scale=2), nullable=False, comment='Current offer amount'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Timestamp when record was created'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Timestamp when record was last updated'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'property_address', 'property_city', 'property_state', 'property_zip',
            name='uq_properties_address_tuple'
        ),
        sa.CheckConstraint('offer >= 0', name='check_offer_non_negative'),
        sa.CheckConstraint("property_address <> ''", name='check_address_not_empty'),
        sa.CheckConstraint("property_city <> ''", name='check_city_not_empty'),
        sa.CheckConstraint('length(property_state) = 2', name='check_state_code_length'),
        sa.CheckConstraint('length(property_zip) = 5', name='check_zip_length')
    )
    op.create_index('idx_properties_city', 'properties', ['property_city'], unique=False)
    op.create_index('idx_properties_state', 'properties', ['property_state'], unique=False)
    op.create_index('idx_properties_zip', 'properties', ['property_zip'], unique=False)
    op.create_index('idx_properties_owner', 'properties', ['last_name', 'first_name'], unique=False)

    # Create upload_jobs table
    op.create_table(
        'upload_jobs',
        sa.Column('id', sa.String(length=36), nullable=False, comment='UUID4 job identifier'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Uploading user'),
        sa.Column('filename', sa.String(length=255), nullable=False, comment='Original file name'),
        sa.Column('file_type', sa.String(length=10), nullable=False, comment='csv or xlsx'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending, processing, completed, failed, cancelled'),
        sa.Column('total_records', sa.Integer(), nullable=False),
        sa.Column('new_records', sa.Integer(), nullable=False),
        sa.Column('updated_records', sa.Integer(), nullable=False),
        sa.Column('error_records', sa.Integer(), nullable=False),
        sa.Column('coerced_records', sa.Integer(), nullable=False, comment='Records whose offer could not be parsed and was stored as 0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name='check_upload_job_status'
        ),
        sa.CheckConstraint("file_type IN ('csv', 'xlsx')", name='check_upload_job_file_type')
    )
    op.create_index('idx_upload_jobs_user_id', 'upload_jobs', ['user_id'], unique=False)
    op.create_index('idx_upload_jobs_status', 'upload_jobs', ['status'], unique=False)
    op.create_index('idx_upload_jobs_created_at', 'upload_jobs', ['created_at'], unique=False)

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=50), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ip_address', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_logs_user', 'audit_logs', ['user_id'], unique=False)
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_logs_action', 'audit_logs', ['action'], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('upload_jobs')
    op.drop_table('properties')
