"""add scoring_overrides table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

Per-organization factor weights, tier thresholds and trend threshold.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "scoring_overrides",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("weights", JSON, nullable=True),
        sa.Column("tiers", JSON, nullable=True),
        sa.Column("trend_threshold_pct", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", name="uq_scoring_overrides_organization_id"),
    )


def downgrade() -> None:
    op.drop_table("scoring_overrides")
