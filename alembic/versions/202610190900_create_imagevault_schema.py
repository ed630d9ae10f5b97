"""
Create images, vector collection, vector point, job and job attempt tables
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
# revision identifiers, used by Alembic.
revision = '202610190900_create_imagevault_schema'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'images',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('storage_path', sa.String(length=512), nullable=False, unique=True),
        sa.Column('preview_path', sa.String(length=512), nullable=True),
        sa.Column('expected_mime_type', sa.String(length=100), nullable=False),
        sa.Column('expected_size_bytes', sa.BigInteger, nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=True),
        sa.Column('size_bytes', sa.BigInteger, nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('rejection_reason', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('validated_at', sa.DateTime, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
        sa.CheckConstraint("status in ('pending','accepted','rejected')", name='ck_images_status'),
        sa.CheckConstraint(
            "status <> 'rejected' or rejection_reason is not null",
            name='ck_images_rejected_has_reason',
        ),
        sa.CheckConstraint(
            "status <> 'accepted' or (preview_path is not null and mime_type is not null and size_bytes is not null)",
            name='ck_images_accepted_complete',
        ),
    )
    op.create_index('idx_images_status_created_id', 'images', ['status', 'created_at', 'id'])

    op.create_table(
        'vector_collections',
        sa.Column('name', sa.String(length=128), primary_key=True),
        sa.Column('dimension', sa.Integer, nullable=False),
        sa.Column('distance', sa.String(length=16), nullable=False, server_default='cosine'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint("distance in ('cosine')", name='ck_vector_collections_distance'),
    )

    op.create_table(
        'vector_points',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'collection_name',
            sa.String(length=128),
            sa.ForeignKey('vector_collections.name', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('point_id', sa.String(length=64), nullable=False),
        sa.Column('vector', postgresql.JSONB, nullable=False),
        sa.Column('payload', postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('collection_name', 'point_id', name='uq_vector_points_collection_point'),
    )
    op.create_index('idx_vector_points_collection', 'vector_points', ['collection_name'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.Text, nullable=False, server_default='queued'),
        sa.Column('payload', postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('dedupe_key', sa.String(length=255), nullable=False),
        sa.Column('scheduled_for', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('queued_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('finished_at', sa.DateTime, nullable=True),
        sa.Column('attempt_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='3'),
        sa.Column('backoff_ms', sa.Integer, nullable=False, server_default='3000'),
        sa.Column('lease_expires_at', sa.DateTime, nullable=True),
        sa.Column('claimed_by_worker', sa.Text, nullable=True),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.UniqueConstraint('dedupe_key', name='uq_jobs_dedupe_key'),
        sa.CheckConstraint(
            "status in ('queued','running','succeeded','dead_letter')",
            name='ck_jobs_status',
        ),
    )
    op.create_index('idx_jobs_status_scheduled', 'jobs', ['status', 'scheduled_for'])

    op.create_table(
        'job_attempts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('job_id', sa.String(length=36), sa.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('attempt_no', sa.Integer, nullable=False),
        sa.Column('worker_id', sa.Text, nullable=False),
        sa.Column('status', sa.Text, nullable=False, server_default='running'),
        sa.Column('started_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('finished_at', sa.DateTime, nullable=True),
        sa.Column('error_text', sa.Text, nullable=True),
        sa.UniqueConstraint('job_id', 'attempt_no', name='uq_job_attempts_job_attempt'),
        sa.CheckConstraint(
            "status in ('running','succeeded','failed')",
            name='ck_job_attempts_status',
        ),
    )

def downgrade():
    op.drop_table('job_attempts')
    op.drop_index('idx_jobs_status_scheduled', table_name='jobs')
    op.drop_table('jobs')
    op.drop_index('idx_vector_points_collection', table_name='vector_points')
    op.drop_table('vector_points')
    op.drop_table('vector_collections')
    op.drop_index('idx_images_status_created_id', table_name='images')
    op.drop_table('images')
