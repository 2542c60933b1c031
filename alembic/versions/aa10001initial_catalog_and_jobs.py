"""initial catalog and jobs schema

Revision ID: aa10001initial
Revises:
Create Date: 2026-10-01 12:00:00.000000

Hey future me - the starting schema:

- artists / artworks / images: catalog mirrored from the directory tree
- tags + artwork_tags: sidecar tags, cascading on both sides
- jobs: the job ledger. uq_jobs_one_active_per_type is a PARTIAL unique index, it is
  the cross-process "one active job per type" lock. Keep its status list in sync with
  ACTIVE_STATUS_SQL in infrastructure/persistence/models.py.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'aa10001initial'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUS_SQL = "status IN ('pending', 'running', 'cancelling', 'paused')"


def upgrade() -> None:
    op.create_table(
        'artists',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_artists_external_id', 'artists', ['external_id'], unique=True)
    op.create_index('ix_artists_name', 'artists', ['name'])

    op.create_table(
        'artworks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column(
            'artist_id',
            sa.String(36),
            sa.ForeignKey('artists.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('image_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('meta_source', sa.String(1024), nullable=True),
        sa.Column('directory_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('missing_since', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_artworks_external_id', 'artworks', ['external_id'], unique=True)
    op.create_index('ix_artworks_artist_id', 'artworks', ['artist_id'])
    op.create_index('ix_artworks_missing_since', 'artworks', ['missing_since'])

    op.create_table(
        'images',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'artwork_id',
            sa.String(36),
            sa.ForeignKey('artworks.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('path', sa.String(1024), nullable=False),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('width', sa.Integer, nullable=True),
        sa.Column('height', sa.Integer, nullable=True),
        sa.Column('size', sa.BigInteger, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_images_artwork_id', 'images', ['artwork_id'])
    op.create_index('ix_images_artwork_sort', 'images', ['artwork_id', 'sort_order'])

    op.create_table(
        'tags',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tags_name', 'tags', ['name'], unique=True)

    op.create_table(
        'artwork_tags',
        sa.Column(
            'artwork_id',
            sa.String(36),
            sa.ForeignKey('artworks.id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column(
            'tag_id',
            sa.String(36),
            sa.ForeignKey('tags.id', ondelete='CASCADE'),
            primary_key=True,
        ),
    )
    op.create_index('ix_artwork_tags_tag_id', 'artwork_tags', ['tag_id'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('result', sa.Text, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_jobs_type', 'jobs', ['type'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_type_created', 'jobs', ['type', 'created_at'])
    op.create_index(
        'uq_jobs_one_active_per_type',
        'jobs',
        ['type'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_STATUS_SQL),
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
    )


def downgrade() -> None:
    op.drop_index('uq_jobs_one_active_per_type', table_name='jobs')
    op.drop_index('ix_jobs_type_created', table_name='jobs')
    op.drop_index('ix_jobs_status', table_name='jobs')
    op.drop_index('ix_jobs_type', table_name='jobs')
    op.drop_table('jobs')

    op.drop_index('ix_artwork_tags_tag_id', table_name='artwork_tags')
    op.drop_table('artwork_tags')

    op.drop_index('ix_tags_name', table_name='tags')
    op.drop_table('tags')

    op.drop_index('ix_images_artwork_sort', table_name='images')
    op.drop_index('ix_images_artwork_id', table_name='images')
    op.drop_table('images')

    op.drop_index('ix_artworks_missing_since', table_name='artworks')
    op.drop_index('ix_artworks_artist_id', table_name='artworks')
    op.drop_index('ix_artworks_external_id', table_name='artworks')
    op.drop_table('artworks')

    op.drop_index('ix_artists_name', table_name='artists')
    op.drop_index('ix_artists_external_id', table_name='artists')
    op.drop_table('artists')
