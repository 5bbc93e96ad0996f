"""create_pipeline_tables

Revision ID: 4f1c2a7e9b30
Revises:
Create Date: 2026-10-17 09:12:44.381205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a7e9b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create pipeline_tasks and pipeline_task_stages"""
    op.create_table(
        'pipeline_tasks',
        sa.Column('id', sa.String(length=26), nullable=False),
        sa.Column('intent', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('risk_level', sa.String(length=10), nullable=True),
        sa.Column('plan', sa.JSON(), nullable=True),
        sa.Column('branch_name', sa.String(length=255), nullable=True),
        sa.Column('pr_number', sa.Integer(), nullable=True),
        sa.Column('pr_url', sa.String(length=512), nullable=True),
        sa.Column('commit_sha', sa.String(length=40), nullable=True),
        sa.Column('dev_iterations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ci_retries', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('channel', sa.String(length=100), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('deployed_at', sa.DateTime(), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pipeline_tasks_status', 'pipeline_tasks', ['status'])
    op.create_index(
        'ix_pipeline_tasks_requested_by_created_at', 'pipeline_tasks', ['requested_by', 'created_at']
    )

    op.create_table(
        'pipeline_task_stages',
        sa.Column('id', sa.String(length=26), nullable=False),
        sa.Column('task_id', sa.String(length=26), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('stage', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['task_id'], ['pipeline_tasks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_pipeline_task_stages_task_id_stage', 'pipeline_task_stages', ['task_id', 'stage']
    )


def downgrade() -> None:
    """Drop pipeline tables"""
    op.drop_index('ix_pipeline_task_stages_task_id_stage', table_name='pipeline_task_stages')
    op.drop_table('pipeline_task_stages')
    op.drop_index('ix_pipeline_tasks_requested_by_created_at', table_name='pipeline_tasks')
    op.drop_index('ix_pipeline_tasks_status', table_name='pipeline_tasks')
    op.drop_table('pipeline_tasks')
