"""plans, plan slots and planning constraints

Revision ID: b7d2e5f1c8a3
Revises: a1f0c3d9e2b4
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d2e5f1c8a3'
down_revision: Union[str, Sequence[str], None] = 'a1f0c3d9e2b4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('orgs.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_plans_org_id', 'plans', ['org_id'])

    op.create_table(
        'plan_slots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workplace_id', sa.Integer(), sa.ForeignKey('workplaces.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('date_start', sa.DateTime(), nullable=False),
        sa.Column('date_end', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PLANNED'),
        sa.Column('color_code', sa.String(length=16), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_plan_slots_plan_id', 'plan_slots', ['plan_id'])
    op.create_index('ix_plan_slot_start_user', 'plan_slots', ['date_start', 'user_id'])
    op.create_index('ix_plan_slot_start_workplace', 'plan_slots', ['date_start', 'workplace_id'])

    op.create_table(
        'planning_constraints',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('orgs.id', ondelete='CASCADE'), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('workplace_id', sa.Integer(), sa.ForeignKey('workplaces.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_planning_constraints_org_id', 'planning_constraints', ['org_id'])


def downgrade() -> None:
    op.drop_index('ix_planning_constraints_org_id', table_name='planning_constraints')
    op.drop_table('planning_constraints')
    op.drop_index('ix_plan_slot_start_workplace', table_name='plan_slots')
    op.drop_index('ix_plan_slot_start_user', table_name='plan_slots')
    op.drop_index('ix_plan_slots_plan_id', table_name='plan_slots')
    op.drop_table('plan_slots')
    op.drop_index('ix_plans_org_id', table_name='plans')
    op.drop_table('plans')
