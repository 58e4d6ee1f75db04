"""Add locations, user_saves and photos tables

Revision ID: 002_add_locations
Revises: 001_create_users
Create Date: 2026-09-02 10:30:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_add_locations'
down_revision = '001_create_users'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Shared locations, one row per external place id
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('place_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.Column('type', sa.String(), nullable=True),
        sa.Column('rating', sa.Float(), nullable=True),
        sa.Column('street', sa.String(), nullable=True),
        sa.Column('number', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('zipcode', sa.String(), nullable=True),
        sa.Column('production_date', sa.DateTime(), nullable=True),
        sa.Column('production_notes', sa.Text(), nullable=True),
        sa.Column('entry_point', sa.String(), nullable=True),
        sa.Column('parking', sa.String(), nullable=True),
        sa.Column('access', sa.String(), nullable=True),
        sa.Column('indoor_outdoor', sa.String(), nullable=True),
        sa.Column('operating_hours', sa.String(), nullable=True),
        sa.Column('restrictions', sa.Text(), nullable=True),
        sa.Column('best_time_of_day', sa.String(), nullable=True),
        sa.Column('permit_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('permit_cost', sa.Float(), nullable=True),
        sa.Column('contact_person', sa.String(), nullable=True),
        sa.Column('contact_phone', sa.String(), nullable=True),
        sa.Column('is_permanent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('last_modified_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('last_modified_at', sa.DateTime(), nullable=True),
        sa.Column('orphaned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_locations_place_id', 'locations', ['place_id'], unique=True)
    op.create_index('ix_locations_created_by', 'locations', ['created_by'])
    op.create_index('ix_locations_orphaned_at', 'locations', ['orphaned_at'])

    # Per-user references to a location
    op.create_table(
        'user_saves',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('is_favorite', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('personal_rating', sa.Integer(), nullable=True),
        sa.Column('visited_at', sa.DateTime(), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('visibility', sa.String(), nullable=False, server_default='private'),
        sa.Column('saved_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'location_id', name='uq_user_saves_user_location'),
    )
    op.create_index('ix_user_saves_user_id', 'user_saves', ['user_id'])
    op.create_index('ix_user_saves_location_id', 'user_saves', ['location_id'])

    # Photo metadata; place_id follows the parent through ON UPDATE CASCADE
    op.create_table(
        'photos',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'place_id',
            sa.String(),
            sa.ForeignKey('locations.place_id', onupdate='CASCADE', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('file_id', sa.String(), nullable=False),
        sa.Column('file_path', sa.String(), nullable=False),
        sa.Column('original_filename', sa.String(), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_photos_location_id', 'photos', ['location_id'])
    op.create_index('ix_photos_user_id', 'photos', ['user_id'])
    op.create_index('ix_photos_file_id', 'photos', ['file_id'])
    op.create_index('ix_photos_place_id_uploaded_at', 'photos', ['place_id', 'uploaded_at'])


def downgrade() -> None:
    op.drop_index('ix_photos_place_id_uploaded_at', table_name='photos')
    op.drop_index('ix_photos_file_id', table_name='photos')
    op.drop_index('ix_photos_user_id', table_name='photos')
    op.drop_index('ix_photos_location_id', table_name='photos')
    op.drop_table('photos')

    op.drop_index('ix_user_saves_location_id', table_name='user_saves')
    op.drop_index('ix_user_saves_user_id', table_name='user_saves')
    op.drop_table('user_saves')

    op.drop_index('ix_locations_orphaned_at', table_name='locations')
    op.drop_index('ix_locations_created_by', table_name='locations')
    op.drop_index('ix_locations_place_id', table_name='locations')
    op.drop_table('locations')
