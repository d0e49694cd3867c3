"""create_habit_goal_engine_tables

Revision ID: 9c2f4b7e1a3d
Revises:
Create Date: 2025-09-14 10:12:41.204118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '9c2f4b7e1a3d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'app_user',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_app_user_email', 'app_user', ['email'], unique=True)

    op.create_table(
        'goal_definitions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('unit', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_goal_definitions_user_id', 'goal_definitions', ['user_id'])

    op.create_table(
        'goal_instances',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('goal_definition_id', sa.String(), sa.ForeignKey('goal_definitions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_value', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('manual_progress_offset', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('start_date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('target_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_goal_instances_user_id', 'goal_instances', ['user_id'])

    op.create_table(
        'habit_definitions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('global_completions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('longest_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_habit_definitions_user_id', 'habit_definitions', ['user_id'])

    op.create_table(
        'habit_instances',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('habit_definition_id', sa.String(), sa.ForeignKey('habit_definitions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('goal_instance_id', sa.String(), sa.ForeignKey('goal_instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_value', sa.Integer(), nullable=False),
        sa.Column('current_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('goal_specific_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('frequency_settings', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('habit_definition_id', 'goal_instance_id', name='uq_habit_instance_goal'),
    )
    op.create_index('ix_habit_instances_habit_definition_id', 'habit_instances', ['habit_definition_id'])
    op.create_index('ix_habit_instances_goal_instance_id', 'habit_instances', ['goal_instance_id'])

    op.create_table(
        'habit_completions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('habit_definition_id', sa.String(), sa.ForeignKey('habit_definitions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_slot', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            'habit_definition_id', 'user_id', 'period_start', 'period_slot',
            name='uq_habit_completion_period_slot'
        ),
    )
    op.create_index('ix_habit_completions_user_id', 'habit_completions', ['user_id'])
    op.create_index(
        'ix_habit_completions_habit_user_completed_at',
        'habit_completions',
        ['habit_definition_id', 'user_id', 'completed_at']
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_habit_completions_habit_user_completed_at', table_name='habit_completions')
    op.drop_index('ix_habit_completions_user_id', table_name='habit_completions')
    op.drop_table('habit_completions')
    op.drop_index('ix_habit_instances_goal_instance_id', table_name='habit_instances')
    op.drop_index('ix_habit_instances_habit_definition_id', table_name='habit_instances')
    op.drop_table('habit_instances')
    op.drop_index('ix_habit_definitions_user_id', table_name='habit_definitions')
    op.drop_table('habit_definitions')
    op.drop_index('ix_goal_instances_user_id', table_name='goal_instances')
    op.drop_table('goal_instances')
    op.drop_index('ix_goal_definitions_user_id', table_name='goal_definitions')
    op.drop_table('goal_definitions')
    op.drop_index('ix_app_user_email', table_name='app_user')
    op.drop_table('app_user')
