"""add daily visual maps

Revision ID: 20261017_0002
Revises: 20261017_0001
Create Date: 2026-10-17 11:05:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "travelers",
        sa.Column("can_regenerate_maps", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "daily_visual_maps",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("day_id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("prompt_used", sa.Text(), nullable=False),
        sa.Column("is_fallback", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generated_by_traveler_id", sa.String(), nullable=True),
        sa.Column("generated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["day_id"], ["days.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("day_id"),
    )
    op.create_index(op.f("ix_daily_visual_maps_trip_id"), "daily_visual_maps", ["trip_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_daily_visual_maps_trip_id"), table_name="daily_visual_maps")
    op.drop_table("daily_visual_maps")
    op.drop_column("travelers", "can_regenerate_maps")
