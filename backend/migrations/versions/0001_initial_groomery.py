"""document store and identity tables

Revision ID: 0001_initial_groomery
Revises: 
Create Date: 2026-10-17
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_groomery'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('documents',
        sa.Column('path', sa.String(length=255), primary_key=True),
        sa.Column('collection', sa.String(length=64), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_documents_collection', 'documents', ['collection'])

    op.create_table('log_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('path', sa.String(length=255), nullable=False),
        sa.Column('entry_id', sa.String(length=64), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('path', 'entry_id', name='uq_log_entry_path_id'),
    )
    op.create_index('ix_log_entries_path', 'log_entries', ['path'])

    op.create_table('identities',
        sa.Column('uid', sa.String(length=64), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('disabled', sa.Boolean(), nullable=True, server_default=sa.text('0')),
        sa.Column('custom_claims', sa.JSON(), nullable=True),
        sa.Column('tokens_valid_after', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sign_in_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_identities_email', 'identities', ['email'], unique=True)


def downgrade():
    op.drop_index('ix_identities_email', table_name='identities')
    op.drop_table('identities')
    op.drop_index('ix_log_entries_path', table_name='log_entries')
    op.drop_table('log_entries')
    op.drop_index('ix_documents_collection', table_name='documents')
    op.drop_table('documents')
