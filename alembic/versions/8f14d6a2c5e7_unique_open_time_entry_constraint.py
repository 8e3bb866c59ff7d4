"""unique_open_time_entry_constraint

Revision ID: 8f14d6a2c5e7
Revises: 3b7e2c91d0a4
Create Date: 2026-10-06 11:40:02.771390

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f14d6a2c5e7'
down_revision: Union[str, Sequence[str], None] = '3b7e2c91d0a4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_time_entries_open
        ON time_entries(employee_id)
        WHERE end_time IS NULL;
        """
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP INDEX IF EXISTS uq_time_entries_open;")
