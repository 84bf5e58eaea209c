from __future__ import annotations

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from tripsync.identity import Persisted, Provisional
from tripsync.schemas import Activity, Comment, Flight, Hotel, MustDoItem, SavedPlace
from tripsync.transform import (
    activity_from_row,
    activity_to_row,
    daily_map_from_row,
    daily_map_to_row,
    day_from_row,
    flight_from_row,
    flight_to_row,
    hotel_from_row,
    hotel_to_row,
    must_do_from_row,
    must_do_to_row,
    saved_place_from_row,
    saved_place_to_row,
)


def test_activity_round_trip_keeps_absent_fields_absent():
    activity = Activity(
        id=Persisted(value="a-1"),
        name="Tivoli Gardens",
        category="attraction",
        time="5:00 PM",
        price_tier="$$",
        is_booked=True,
    )

    restored = activity_from_row(activity_to_row(activity))

    assert restored == activity
    assert restored.address is None
    assert restored.avg_entree_price is None
    assert restored.reservation_required is None


def test_activity_to_row_omits_id_until_persisted():
    draft = Activity(name="Torvehallerne", category="food")
    provisional = draft.model_copy(update={"id": Provisional(key="activity-1")})
    persisted = draft.model_copy(update={"id": Persisted(value="row-9")})

    assert "id" not in activity_to_row(draft)
    assert "id" not in activity_to_row(provisional)
    assert activity_to_row(persisted)["id"] == "row-9"


def test_activity_to_row_is_deterministic():
    activity = Activity(name="Harbour bath", category="relaxation", popular_items=["sauna"])
    assert activity_to_row(activity) == activity_to_row(activity)


def test_null_columns_map_to_defaults_only_where_defined():
    activity = activity_from_row(
        {
            "id": "a-2",
            "name": "Hot dog stand",
            "type": "food",
            "time": None,
            "description": None,
            "is_booked": None,
            "is_must_do": None,
            "popular_items": None,
            "attendees": None,
            "cuisine": None,
        }
    )

    assert activity.id == Persisted(value="a-2")
    assert activity.description == ""
    assert activity.is_booked is False
    assert activity.is_must_do is False
    assert activity.popular_items == []
    assert activity.attendees == []
    assert activity.time is None
    assert activity.cuisine is None


def test_day_weekday_derived_from_date_and_activities_sorted():
    day = day_from_row(
        {
            "id": "d-1",
            "date": "2026-12-18",
            "day_number": 0,
            "destination": "copenhagen",
            "title": "Travel day",
            "day_of_week": None,
            "activities": [
                {"id": "a-late", "name": "Late dinner", "type": "food", "time": "21:00"},
                {"id": "a-none", "name": "Wander", "type": "nature"},
                {"id": "a-early", "name": "Land at CPH", "type": "transport", "time": "9:00 AM"},
            ],
        }
    )

    assert day.date == date(2026, 12, 18)
    assert day.weekday == "Friday"
    assert day.number == 0
    assert [activity.name for activity in day.activities] == ["Land at CPH", "Late dinner", "Wander"]


def test_malformed_rows_raise_instead_of_coercing():
    with pytest.raises(ValueError):
        day_from_row({"id": "d-1", "date": "18/12/2026", "destination": "copenhagen", "title": "Bad date"})
    with pytest.raises(ValidationError):
        activity_from_row({"id": "a-1", "name": "Mystery", "type": "spaceflight"})


def test_flight_attendees_use_travelers_column():
    flight = Flight(
        id=Persisted(value="f-1"),
        date=date(2026, 12, 18),
        departure_time="TBD",
        arrival_time="TBD",
        from_city="New York",
        from_code="JFK",
        to_city="Copenhagen",
        to_code="CPH",
        attendees=["t-1", "t-2"],
    )

    row = flight_to_row(flight)

    assert row["travelers"] == ["t-1", "t-2"]
    assert row["date"] == "2026-12-18"
    assert "attendees" not in row
    assert flight_from_row(row) == flight


def test_hotel_round_trip():
    hotel = Hotel(
        id=Persisted(value="h-1"),
        destination="reykjavik",
        name="Hotel Borg",
        address="Posthusstraeti 11",
        check_in=date(2026, 12, 21),
        check_out=date(2026, 12, 28),
        amenities=["spa"],
    )

    assert hotel_from_row(hotel_to_row(hotel)) == hotel


def test_must_do_round_trip_with_embedded_comments():
    row = {
        "id": "m-1",
        "traveler_id": "t-1",
        "name": "Blue Lagoon",
        "type": "relaxation",
        "destination": "reykjavik",
        "votes": ["t-1", "t-2"],
        "added_to_itinerary": True,
        "added_to_day": "2026-12-23",
        "comments": [
            {"id": "c-1", "must_do_id": "m-1", "traveler_id": "t-2", "text": "Book early", "created_at": "2026-10-01T10:00:00"},
        ],
    }

    item = must_do_from_row(row)

    assert item.proposed_by == "t-1"
    assert item.voters == ["t-1", "t-2"]
    assert item.added_to_day == date(2026, 12, 23)
    assert item.comments == [
        Comment(id=Persisted(value="c-1"), author_id="t-2", body="Book early", created_at=datetime(2026, 10, 1, 10, 0))
    ]

    written = must_do_to_row(item)
    assert written["votes"] == ["t-1", "t-2"]
    assert written["added_to_day"] == "2026-12-23"
    assert "comments" not in written
    assert must_do_from_row(written) == item.model_copy(update={"comments": []})


def test_daily_map_row_leaves_timestamp_to_the_database():
    row = {
        "id": "map-1",
        "day_id": "d-1",
        "trip_id": "trip-1",
        "image_url": "data:image/svg+xml;base64,PHN2Zy8+",
        "prompt_used": "Copenhagen poster",
        "is_fallback": True,
        "generated_by_traveler_id": None,
        "generated_at": "2026-10-17T09:30:00",
    }

    daily_map = daily_map_from_row(row)
    written = daily_map_to_row(daily_map)

    assert daily_map.generated_at == datetime(2026, 10, 17, 9, 30)
    assert "generated_at" not in written
    assert written == {key: value for key, value in row.items() if key != "generated_at"}


def test_must_do_defaults_when_not_scheduled():
    item = must_do_from_row(
        {"id": "m-2", "traveler_id": "t-1", "name": "Round Tower", "type": "attraction", "destination": "copenhagen"}
    )
    assert item.voters == []
    assert item.comments == []
    assert item.added_to_itinerary is False
    assert item.added_to_day is None
    assert isinstance(item, MustDoItem)


def test_saved_place_classification_and_category_columns():
    place = SavedPlace(
        id=Persisted(value="s-1"),
        name="Mikkeller Bar",
        category="nightlife",
        destination="copenhagen",
        classification="bar",
        popular_items=["sour ale"],
    )

    row = saved_place_to_row(place)

    assert row["type"] == "nightlife"
    assert row["category"] == "bar"
    assert saved_place_from_row(row) == place
