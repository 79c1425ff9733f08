"""add field definitions, address records and extraction audit tables

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'c4d5e6f7a8b9'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=True)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'custom_field_definitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('table_name', sa.String(length=100), nullable=False),
        sa.Column('field_name', sa.String(length=100), nullable=False,
                  comment='Lowercase identifier: ^[a-z][a-z0-9_]*$'),
        sa.Column('display_label', sa.String(length=255), nullable=False),
        sa.Column('field_type', sa.String(length=50), nullable=False, server_default='text'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('extraction_instruction', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'table_name', 'field_name', name='uq_custom_field_identity'),
        comment='Administrator-declared fields extractable from photos'
    )
    op.create_index('idx_custom_fields_org', 'custom_field_definitions', ['organization_id'])
    op.create_index('idx_custom_fields_table', 'custom_field_definitions', ['table_name'])

    op.create_table(
        'address_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('postcode', sa.String(length=20), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('premise', sa.Text(), nullable=True),
        sa.Column('network', sa.String(length=50), nullable=True),
        sa.Column('router_serial', sa.String(length=100), nullable=True),
        sa.Column('router_mac', sa.String(length=50), nullable=True),
        sa.Column('router_model', sa.String(length=100), nullable=True),
        sa.Column('onu_serial', sa.String(length=100), nullable=True),
        sa.Column('onu_mac', sa.String(length=50), nullable=True),
        sa.Column('onu_model', sa.String(length=100), nullable=True),
        sa.Column('extracted_data_extras', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'{}'::jsonb"),
                  comment='Values of declared fields without a physical column'),
        sa.Column('local_status', sa.String(length=50), nullable=True),
        sa.Column('local_notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1',
                  comment='Optimistic concurrency counter'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_address_org', 'address_records', ['organization_id'])
    op.create_index('idx_address_postcode', 'address_records', ['postcode'])

    op.create_table(
        'work_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('workflow_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_work_items_organization_id', 'work_items', ['organization_id'])

    op.create_table(
        'work_item_sources',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('work_item_id', sa.Integer(), nullable=False),
        sa.Column('source_table', sa.String(length=100), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['work_item_id'], ['work_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_work_item_sources_work_item', 'work_item_sources', ['work_item_id'])
    op.create_index('idx_work_item_sources_source', 'work_item_sources', ['source_table', 'source_id'])

    op.create_table(
        'work_item_workflow_execution_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('work_item_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('evidence', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['work_item_id'], ['work_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_work_item_workflow_execution_steps_organization_id',
        'work_item_workflow_execution_steps',
        ['organization_id'],
    )

    op.create_table(
        'workflow_step_extractions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('work_item_id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=False),
        sa.Column('source_table', sa.String(length=100), nullable=True),
        sa.Column('source_id', sa.Integer(), nullable=True),
        sa.Column('extracted_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('average_confidence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='completed',
                  comment='completed, completed_with_errors or failed'),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('tokens_used', sa.Integer(), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        comment='Append-only audit of photo extraction batches'
    )
    op.create_index('idx_step_extractions_org', 'workflow_step_extractions', ['organization_id'])
    op.create_index('idx_step_extractions_work_item', 'workflow_step_extractions', ['work_item_id'])
    op.create_index('idx_step_extractions_step', 'workflow_step_extractions', ['step_id'])
    op.create_index('idx_step_extractions_status', 'workflow_step_extractions', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('workflow_step_extractions')
    op.drop_table('work_item_workflow_execution_steps')
    op.drop_table('work_item_sources')
    op.drop_table('work_items')
    op.drop_table('address_records')
    op.drop_table('custom_field_definitions')
