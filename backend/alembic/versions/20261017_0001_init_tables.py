"""init tables

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 10:15:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def _place_columns():
    return [
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("booking_url", sa.String(), nullable=True),
        sa.Column("price_range", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    ]


def _restaurant_columns():
    return [
        sa.Column("avg_entree_price", sa.Float(), nullable=True),
        sa.Column("popular_items", sa.JSON(), nullable=True),
        sa.Column("cuisine", sa.String(), nullable=True),
        sa.Column("reservation_required", sa.Boolean(), nullable=True),
        sa.Column("availability_status", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "trips",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "travelers",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=False),
        sa.Column("avatar", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_travelers_trip_id"), "travelers", ["trip_id"], unique=False)

    op.create_table(
        "days",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("day_number", sa.Integer(), nullable=True),
        sa.Column("destination", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("day_of_week", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("trip_id", "date", name="uq_days_trip_date"),
    )
    op.create_index(op.f("ix_days_trip_id"), "days", ["trip_id"], unique=False)

    op.create_table(
        "activities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("day_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("time", sa.String(), nullable=True),
        sa.Column("duration", sa.String(), nullable=True),
        *_place_columns(),
        sa.Column("is_booked", sa.Boolean(), nullable=True),
        sa.Column("is_must_do", sa.Boolean(), nullable=True),
        *_restaurant_columns(),
        sa.Column("confirmation_number", sa.String(), nullable=True),
        sa.Column("attendees", sa.JSON(), nullable=True),
        sa.Column("screenshot_url", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["day_id"], ["days.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_activities_day_id"), "activities", ["day_id"], unique=False)

    op.create_table(
        "flights",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("departure_time", sa.String(), nullable=False),
        sa.Column("arrival_time", sa.String(), nullable=False),
        sa.Column("from_city", sa.String(), nullable=False),
        sa.Column("from_code", sa.String(), nullable=False),
        sa.Column("to_city", sa.String(), nullable=False),
        sa.Column("to_code", sa.String(), nullable=False),
        sa.Column("airline", sa.String(), nullable=True),
        sa.Column("flight_number", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmation_number", sa.String(), nullable=True),
        sa.Column("travelers", sa.JSON(), nullable=True),
        sa.Column("screenshot_url", sa.Text(), nullable=True),
        sa.Column("is_personal", sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_flights_trip_id"), "flights", ["trip_id"], unique=False)

    op.create_table(
        "hotels",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("destination", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=False),
        sa.Column("amenities", sa.JSON(), nullable=True),
        sa.Column("booking_url", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("trip_id", "destination", name="uq_hotels_trip_destination"),
    )
    op.create_index(op.f("ix_hotels_trip_id"), "hotels", ["trip_id"], unique=False)

    op.create_table(
        "must_dos",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("traveler_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("destination", sa.String(), nullable=False),
        *_place_columns(),
        sa.Column("votes", sa.JSON(), nullable=True),
        sa.Column("added_to_itinerary", sa.Boolean(), nullable=True),
        sa.Column("added_to_day", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_must_dos_trip_id"), "must_dos", ["trip_id"], unique=False)

    op.create_table(
        "must_do_comments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("must_do_id", sa.String(), nullable=False),
        sa.Column("traveler_id", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["must_do_id"], ["must_dos.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_must_do_comments_must_do_id"), "must_do_comments", ["must_do_id"], unique=False)

    op.create_table(
        "saved_places",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("destination", sa.String(), nullable=False),
        *_place_columns(),
        sa.Column("category", sa.String(), nullable=False),
        *_restaurant_columns(),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_saved_places_trip_id"), "saved_places", ["trip_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_saved_places_trip_id"), table_name="saved_places")
    op.drop_table("saved_places")
    op.drop_index(op.f("ix_must_do_comments_must_do_id"), table_name="must_do_comments")
    op.drop_table("must_do_comments")
    op.drop_index(op.f("ix_must_dos_trip_id"), table_name="must_dos")
    op.drop_table("must_dos")
    op.drop_index(op.f("ix_hotels_trip_id"), table_name="hotels")
    op.drop_table("hotels")
    op.drop_index(op.f("ix_flights_trip_id"), table_name="flights")
    op.drop_table("flights")
    op.drop_index(op.f("ix_activities_day_id"), table_name="activities")
    op.drop_table("activities")
    op.drop_index(op.f("ix_days_trip_id"), table_name="days")
    op.drop_table("days")
    op.drop_index(op.f("ix_travelers_trip_id"), table_name="travelers")
    op.drop_table("travelers")
    op.drop_table("trips")
