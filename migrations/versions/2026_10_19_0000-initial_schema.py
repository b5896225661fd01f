"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_ROWS = sa.text('deleted_at IS NULL')


def upgrade() -> None:
    """
    Create initial database schema:
    - users table: API-key holders and their tier
    - short_links table: short code mappings with soft delete and expiry
    """
    bind = op.get_bind()
    existing_tables = inspect(bind).get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('api_key', sa.String(length=64), nullable=False),
            sa.Column('tier', sa.String(length=20), nullable=False, server_default='standard'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_api_key', 'users', ['api_key'], unique=True)

    if 'short_links' not in existing_tables:
        op.create_table(
            'short_links',
            sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
            sa.Column('original_url', sa.Text(), nullable=False),
            sa.Column('short_code', sa.String(length=20), nullable=False),
            sa.Column('owner_id', sa.Integer(), nullable=True),
            sa.Column('visit_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('last_accessed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            # Declared inline: SQLite cannot add foreign keys after creation
            sa.ForeignKeyConstraint(['owner_id'], ['users.id'], name='fk_short_links_owner_id')
        )

        op.create_index('ix_short_links_short_code', 'short_links', ['short_code'])
        op.create_index('ix_short_links_owner_id', 'short_links', ['owner_id'])
        op.create_index('ix_short_links_created_at', 'short_links', ['created_at'])

        # Codes are unique among live rows only, so soft-deleted codes can be reissued
        op.create_index(
            'uq_short_links_live_code',
            'short_links',
            ['short_code'],
            unique=True,
            sqlite_where=LIVE_ROWS,
            postgresql_where=LIVE_ROWS
        )


def downgrade() -> None:
    """
    Drop all tables and indexes.
    """
    op.drop_index('uq_short_links_live_code', table_name='short_links')
    op.drop_index('ix_short_links_created_at', table_name='short_links')
    op.drop_index('ix_short_links_owner_id', table_name='short_links')
    op.drop_index('ix_short_links_short_code', table_name='short_links')
    op.drop_table('short_links')

    op.drop_index('ix_users_api_key', table_name='users')
    op.drop_table('users')
