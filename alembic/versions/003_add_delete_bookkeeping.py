"""Add delete tombstones and pending blob deletions

Revision ID: 003_add_delete_bookkeeping
Revises: 002_add_locations
Create Date: 2026-09-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '003_add_delete_bookkeeping'
down_revision: Union[str, None] = '002_add_locations'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create user_save_tombstones and pending_blob_deletions tables."""
    op.create_table(
        'user_save_tombstones',
        sa.Column('user_save_id', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('cascaded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_user_save_tombstones_user_id', 'user_save_tombstones', ['user_id'])

    op.create_table(
        'pending_blob_deletions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('file_id', sa.String(), nullable=False, unique=True),
        sa.Column('photo_id', sa.Integer(), nullable=True),
        sa.Column('location_id', sa.Integer(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop delete bookkeeping tables."""
    op.drop_table('pending_blob_deletions')
    op.drop_index('ix_user_save_tombstones_user_id', table_name='user_save_tombstones')
    op.drop_table('user_save_tombstones')
