"""Create documents table for the entity index

Revision ID: 001_create_documents
Revises: 
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_create_documents'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Catalog products, entities and entity links share one path-keyed table
    op.create_table(
        'documents',
        sa.Column('path', sa.String(length=512), primary_key=True),
        sa.Column('collection', sa.String(length=384), nullable=False),
        sa.Column('doc_id', sa.String(length=256), nullable=False),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('idx_documents_collection', 'documents', ['collection', 'doc_id'])


def downgrade() -> None:
    op.drop_index('idx_documents_collection', table_name='documents')
    op.drop_table('documents')
