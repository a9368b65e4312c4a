"""Add forecast_calculation_runs table.

Stores one immutable row per forecast calculation, giving each forecast
its calculation history.

Revision ID: f0c1a2b3c4d5
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = 'f0c1a2b3c4d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'forecast_calculation_runs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('forecast_id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        # Results
        sa.Column('metrics', JSONB, nullable=False),
        sa.Column('all_nodes', JSONB, nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_index('ix_forecast_calculation_runs_forecast_id', 'forecast_calculation_runs', ['forecast_id'])
    op.create_index('ix_forecast_calculation_runs_organization_id', 'forecast_calculation_runs', ['organization_id'])
    op.create_index(
        'ix_forecast_calculation_runs_forecast_time',
        'forecast_calculation_runs',
        ['forecast_id', 'calculated_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_forecast_calculation_runs_forecast_time', table_name='forecast_calculation_runs')
    op.drop_index('ix_forecast_calculation_runs_organization_id', table_name='forecast_calculation_runs')
    op.drop_index('ix_forecast_calculation_runs_forecast_id', table_name='forecast_calculation_runs')
    op.drop_table('forecast_calculation_runs')
