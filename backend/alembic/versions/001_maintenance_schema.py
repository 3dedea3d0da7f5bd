"""Maintenance request schema

Revision ID: 001_maintenance
Revises:
Create Date: 2026-10-17

Users, maintenance requests with their images and comments, audit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_maintenance'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('ADMIN', 'STAFF', 'MAINTENANCE', 'RENTEE', name='userrole')


def upgrade() -> None:
    # === USERS ===
    op.create_table(
        'app_users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('firebase_uid', sa.String(128), unique=True, nullable=False, index=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', user_role, nullable=False, index=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === MAINTENANCE REQUESTS ===
    op.create_table(
        'maintenance_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('property_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('rentee_id', sa.Uuid(), sa.ForeignKey('app_users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('assigned_to', sa.Uuid(), sa.ForeignKey('app_users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('request_type', sa.String(50), nullable=True),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'EMERGENCY', name='maintenancepriority'), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', name='maintenancestatus'), nullable=False, index=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === IMAGES ===
    op.create_table(
        'maintenance_request_images',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('request_id', sa.Uuid(), sa.ForeignKey('maintenance_requests.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('image_url', sa.String(1000), nullable=False),
        sa.Column('image_type', sa.Enum('INITIAL', 'PROGRESS', 'COMPLETION', 'ADDITIONAL', 'GENERAL', name='imagetype'), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.Uuid(), sa.ForeignKey('app_users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=True),
    )

    # === COMMENTS ===
    op.create_table(
        'maintenance_comments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('request_id', sa.Uuid(), sa.ForeignKey('maintenance_requests.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('author_id', sa.Uuid(), sa.ForeignKey('app_users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('author_name', sa.String(255), nullable=False),
        sa.Column('author_role', postgresql.ENUM(name='userrole', create_type=False), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # === AUDIT LOG ===
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('action', sa.Enum(
            'REQUEST_CREATED', 'REQUEST_ASSIGNED', 'WORK_STARTED', 'REQUEST_COMPLETED',
            'REQUEST_CANCELLED', 'IMAGES_ADDED', 'COMMENT_ADDED', name='auditaction',
        ), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('maintenance_comments')
    op.drop_table('maintenance_request_images')
    op.drop_table('maintenance_requests')
    op.drop_table('app_users')
    for enum_name in ('auditaction', 'imagetype', 'maintenancestatus', 'maintenancepriority', 'userrole'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
