from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .db import Base


def _new_id() -> str:
    return str(uuid4())


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)


class TravelerModel(Base):
    __tablename__ = "travelers"

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False)
    avatar = Column(Text, nullable=True)
    can_regenerate_maps = Column(Boolean, nullable=False, default=False)


class DayModel(Base):
    __tablename__ = "days"
    __table_args__ = (UniqueConstraint("trip_id", "date", name="uq_days_trip_date"),)

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    day_number = Column(Integer, nullable=True)
    destination = Column(String, nullable=False)
    title = Column(String, nullable=False)
    day_of_week = Column(String, nullable=True)

    activities = relationship("ActivityModel", back_populates="day", cascade="all, delete-orphan")


class ActivityModel(Base):
    __tablename__ = "activities"

    id = Column(String, primary_key=True, default=_new_id)
    day_id = Column(String, ForeignKey("days.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    time = Column(String, nullable=True)
    duration = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    address = Column(String, nullable=True)
    booking_url = Column(String, nullable=True)
    price_range = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_booked = Column(Boolean, nullable=True)
    is_must_do = Column(Boolean, nullable=True)
    avg_entree_price = Column(Float, nullable=True)
    popular_items = Column(JSON, nullable=True)
    cuisine = Column(String, nullable=True)
    reservation_required = Column(Boolean, nullable=True)
    availability_status = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    confirmation_number = Column(String, nullable=True)
    attendees = Column(JSON, nullable=True)
    screenshot_url = Column(Text, nullable=True)

    day = relationship("DayModel", back_populates="activities")


class FlightModel(Base):
    __tablename__ = "flights"

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    departure_time = Column(String, nullable=False)
    arrival_time = Column(String, nullable=False)
    from_city = Column(String, nullable=False)
    from_code = Column(String, nullable=False)
    to_city = Column(String, nullable=False)
    to_code = Column(String, nullable=False)
    airline = Column(String, nullable=True)
    flight_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    confirmation_number = Column(String, nullable=True)
    travelers = Column(JSON, nullable=True)
    screenshot_url = Column(Text, nullable=True)
    is_personal = Column(Boolean, nullable=True)


class HotelModel(Base):
    __tablename__ = "hotels"
    __table_args__ = (UniqueConstraint("trip_id", "destination", name="uq_hotels_trip_destination"),)

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    destination = Column(String, nullable=False)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    amenities = Column(JSON, nullable=True)
    booking_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)


class MustDoModel(Base):
    __tablename__ = "must_dos"

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    traveler_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String, nullable=True)
    booking_url = Column(String, nullable=True)
    price_range = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    votes = Column(JSON, nullable=True)
    added_to_itinerary = Column(Boolean, nullable=True)
    added_to_day = Column(Date, nullable=True)

    comments = relationship("MustDoCommentModel", back_populates="must_do", passive_deletes=True)


class MustDoCommentModel(Base):
    __tablename__ = "must_do_comments"

    id = Column(String, primary_key=True, default=_new_id)
    must_do_id = Column(String, ForeignKey("must_dos.id", ondelete="CASCADE"), nullable=False, index=True)
    traveler_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    must_do = relationship("MustDoModel", back_populates="comments")


class SavedPlaceModel(Base):
    __tablename__ = "saved_places"

    id = Column(String, primary_key=True, default=_new_id)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String, nullable=True)
    booking_url = Column(String, nullable=True)
    price_range = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    category = Column(String, nullable=False)
    avg_entree_price = Column(Float, nullable=True)
    popular_items = Column(JSON, nullable=True)
    cuisine = Column(String, nullable=True)
    reservation_required = Column(Boolean, nullable=True)
    availability_status = Column(String, nullable=True)
    image_url = Column(String, nullable=True)


class DailyVisualMapModel(Base):
    __tablename__ = "daily_visual_maps"

    id = Column(String, primary_key=True, default=_new_id)
    day_id = Column(String, ForeignKey("days.id", ondelete="CASCADE"), nullable=False, unique=True)
    trip_id = Column(String, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    prompt_used = Column(Text, nullable=False)
    is_fallback = Column(Boolean, nullable=False, default=False)
    generated_by_traveler_id = Column(String, nullable=True)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
