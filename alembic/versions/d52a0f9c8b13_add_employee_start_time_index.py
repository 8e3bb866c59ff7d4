"""add employee start_time index for window queries

Revision ID: d52a0f9c8b13
Revises: 8f14d6a2c5e7
Create Date: 2026-10-08 09:03:17.550921

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd52a0f9c8b13'
down_revision: Union[str, Sequence[str], None] = '8f14d6a2c5e7'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_index(
        "ix_time_entries_employee_start",
        "time_entries",
        ["employee_id", "start_time"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_time_entries_employee_start", table_name="time_entries")
