"""initial proxy schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_0001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names: str) -> list:
    return [
        sa.Column(name, sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'))
        for name in names
    ]


def upgrade() -> None:
    op.create_table(
        'consumers',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('lti_consumer_key', sa.String(length=255), nullable=False),
        sa.Column('lti_consumer_secret', sa.String(length=255), nullable=False),
        sa.Column('xapi_lrs_endpoint', sa.String(length=500), nullable=True),
        sa.Column('xapi_lrs_key', sa.String(length=255), nullable=True),
        sa.Column('xapi_lrs_secret', sa.String(length=255), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps('created_at', 'updated_at'),
    )
    op.create_index(
        'ix_consumers_lti_consumer_key', 'consumers', ['lti_consumer_key'],
        unique=True
    )

    op.create_table(
        'courses',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('scorm_version', sa.String(length=20), nullable=False),
        sa.Column('launch_path', sa.String(length=500), nullable=False),
        sa.Column('manifest_data', sa.JSON(), nullable=False),
        sa.Column('content_path', sa.String(length=500), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps('created_at', 'updated_at'),
    )

    op.create_table(
        'launches',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column(
            'consumer_id', sa.String(length=36),
            sa.ForeignKey('consumers.id'), nullable=True
        ),
        sa.Column(
            'course_id', sa.String(length=36),
            sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('context_id', sa.String(length=255), nullable=True),
        sa.Column('resource_link_id', sa.String(length=255), nullable=True),
        sa.Column('lis_outcome_service_url', sa.String(length=500), nullable=True),
        sa.Column('lis_result_sourcedid', sa.String(length=500), nullable=True),
        sa.Column('launch_data', sa.JSON(), nullable=False),
        *_timestamps('created_at'),
    )
    op.create_index(
        'ix_launches_user_course', 'launches', ['user_id', 'course_id']
    )

    op.create_table(
        'attempts',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column(
            'launch_id', sa.String(length=36),
            sa.ForeignKey('launches.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('cmi_data', sa.JSON(), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column(
            'completion_status', sa.String(length=50), nullable=False,
            server_default='not attempted'
        ),
        sa.Column('success_status', sa.String(length=50), nullable=True),
        sa.Column('total_time', sa.String(length=50), nullable=True),
        sa.Column('open_key', sa.String(length=600), nullable=True, unique=True),
        *_timestamps('started_at', 'updated_at'),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_attempts_launch_id', 'attempts', ['launch_id'])

    op.create_table(
        'dispatch_tokens',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column(
            'consumer_id', sa.String(length=36),
            sa.ForeignKey('consumers.id'), nullable=False
        ),
        sa.Column(
            'course_id', sa.String(length=36),
            sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('token', sa.String(length=255), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps('created_at'),
    )
    op.create_index(
        'ix_dispatch_tokens_token', 'dispatch_tokens', ['token'], unique=True
    )

    op.create_table(
        'settings',
        sa.Column('key', sa.String(length=255), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        *_timestamps('updated_at'),
    )


def downgrade() -> None:
    op.drop_table('settings')
    op.drop_index('ix_dispatch_tokens_token', table_name='dispatch_tokens')
    op.drop_table('dispatch_tokens')
    op.drop_index('ix_attempts_launch_id', table_name='attempts')
    op.drop_table('attempts')
    op.drop_index('ix_launches_user_course', table_name='launches')
    op.drop_table('launches')
    op.drop_table('courses')
    op.drop_index('ix_consumers_lti_consumer_key', table_name='consumers')
    op.drop_table('consumers')
