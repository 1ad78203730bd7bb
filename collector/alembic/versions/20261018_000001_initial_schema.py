"""Initial schema: checkpoints, rankings, reports, builds and statistics."""

from __future__ import annotations

from alembic import op

from builds_collector.db import Base

# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the schema from SQLAlchemy metadata."""
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    """Drop all tables from SQLAlchemy metadata."""
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
