"""Initial schema with jobs table, guard and notify triggers

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op

from jobqueue.config import get_settings
from jobqueue.db.schema import drop_statements, schema_statements

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Same idempotent statements as `jobqueue-migrate`
    for statement in schema_statements(get_settings().notify_channel):
        op.execute(statement)


def downgrade() -> None:
    for statement in drop_statements():
        op.execute(statement)
