"""Create catalog tables: catalog_entries, contact_records, qualification_marks, sync_runs, offering_relationships

Revision ID: 3f9a1c7d2e60
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2e60'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('catalog_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.Text(), nullable=False),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('domain_rating', sa.Integer(), nullable=True),
        sa.Column('total_traffic', sa.BigInteger(), nullable=True),
        sa.Column('guest_post_cost', sa.Float(), nullable=True),
        sa.Column('categories', sa.JSON(), nullable=False),
        sa.Column('website_type', sa.JSON(), nullable=False),
        sa.Column('niche', sa.JSON(), nullable=False),
        sa.Column('has_guest_post', sa.Boolean(), nullable=False),
        sa.Column('has_link_insert', sa.Boolean(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('overall_quality', sa.Text(), nullable=True),
        sa.Column('published_opportunities', sa.Integer(), nullable=False),
        sa.Column('external_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', name='uq_catalog_entries_external_id'),
    )
    op.create_index('ix_catalog_entries_domain', 'catalog_entries', ['domain'])
    op.create_index('ix_catalog_entries_domain_rating', 'catalog_entries', ['domain_rating'])

    op.create_table('contact_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('website_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.Column('has_paid_guest_post', sa.Boolean(), nullable=False),
        sa.Column('has_swap_option', sa.Boolean(), nullable=False),
        sa.Column('guest_post_cost', sa.Float(), nullable=True),
        sa.Column('link_insert_cost', sa.Float(), nullable=True),
        sa.Column('requirement', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['website_id'], ['catalog_entries.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('website_id', 'email', name='uq_contact_records_website_email'),
    )
    op.create_index('ix_contact_records_website_id', 'contact_records', ['website_id'])

    op.create_table('qualification_marks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('website_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Text(), nullable=False),
        sa.Column('project_id', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('qualified_by', sa.Text(), nullable=False),
        sa.Column('qualified_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['website_id'], ['catalog_entries.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    # NULL project_ids never collide, so client-wide marks get their own partial index
    op.create_index(
        'uq_qualification_marks_project', 'qualification_marks',
        ['website_id', 'client_id', 'project_id'], unique=True,
        postgresql_where=sa.text('project_id IS NOT NULL'),
        sqlite_where=sa.text('project_id IS NOT NULL'),
    )
    op.create_index(
        'uq_qualification_marks_client', 'qualification_marks',
        ['website_id', 'client_id'], unique=True,
        postgresql_where=sa.text('project_id IS NULL'),
        sqlite_where=sa.text('project_id IS NULL'),
    )
    op.create_index('ix_qualification_marks_client', 'qualification_marks', ['client_id'])

    op.create_table('sync_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sync_type', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=True),
        sa.Column('records_created', sa.Integer(), nullable=True),
        sa.Column('records_updated', sa.Integer(), nullable=True),
        sa.Column('records_failed', sa.Integer(), nullable=True),
        sa.Column('pages_fetched', sa.Integer(), nullable=True),
        sa.Column('truncated', sa.Boolean(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('offering_relationships',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('website_id', sa.Integer(), nullable=False),
        sa.Column('publisher_id', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['website_id'], ['catalog_entries.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_offering_relationships_website_id', 'offering_relationships', ['website_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_offering_relationships_website_id', 'offering_relationships')
    op.drop_table('offering_relationships')
    op.drop_table('sync_runs')
    op.drop_index('ix_qualification_marks_client', 'qualification_marks')
    op.drop_index('uq_qualification_marks_client', 'qualification_marks')
    op.drop_index('uq_qualification_marks_project', 'qualification_marks')
    op.drop_table('qualification_marks')
    op.drop_index('ix_contact_records_website_id', 'contact_records')
    op.drop_table('contact_records')
    op.drop_index('ix_catalog_entries_domain_rating', 'catalog_entries')
    op.drop_index('ix_catalog_entries_domain', 'catalog_entries')
    op.drop_table('catalog_entries')
