"""Conversion between store rows and application entities.

Rows are the dicts ``RemoteStore`` hands back: snake_case column names, NULL
for anything unset, ISO strings for dates. Entities leave unset fields unset
instead of inventing empty values; only booleans, list columns and a few
display fields have defaults. Nothing here reads the clock or generates ids,
and malformed input raises instead of being coerced.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from .identity import Persisted
from .schemas import Activity, Comment, DailyMap, Day, Flight, Hotel, MustDoItem, SavedPlace, Traveler
from .timeline import sort_activities

Row = Dict[str, Any]
EntityT = TypeVar("EntityT", bound=BaseModel)


def _present(model: Type[EntityT], **values: Any) -> EntityT:
    return model(**{key: value for key, value in values.items() if value is not None})


def _id(row: Mapping[str, Any]) -> Optional[Persisted]:
    value = row.get("id")
    return Persisted(value=value) if value else None


def _date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return date.fromisoformat(value)


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _enum(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _with_id(row: Row, entity: Any) -> Row:
    if isinstance(entity.id, Persisted):
        return {"id": entity.id.value, **row}
    return row


def activity_from_row(row: Mapping[str, Any]) -> Activity:
    return _present(
        Activity,
        id=_id(row),
        name=row["name"],
        category=row["type"],
        time=row.get("time"),
        duration=row.get("duration"),
        description=row.get("description") or "",
        address=row.get("address"),
        booking_link=row.get("booking_url"),
        price_tier=row.get("price_range"),
        notes=row.get("notes"),
        is_must_do=bool(row.get("is_must_do")),
        is_booked=bool(row.get("is_booked")),
        avg_entree_price=row.get("avg_entree_price"),
        popular_items=list(row.get("popular_items") or []),
        cuisine=row.get("cuisine"),
        reservation_required=row.get("reservation_required"),
        availability_status=row.get("availability_status"),
        image_url=row.get("image_url"),
        confirmation_number=row.get("confirmation_number"),
        attendees=list(row.get("attendees") or []),
        screenshot_ref=row.get("screenshot_url"),
    )


def activity_to_row(activity: Activity) -> Row:
    return _with_id(
        {
            "name": activity.name,
            "type": activity.category.value,
            "time": activity.time,
            "duration": activity.duration,
            "description": activity.description,
            "address": activity.address,
            "booking_url": activity.booking_link,
            "price_range": _enum(activity.price_tier),
            "notes": activity.notes,
            "is_must_do": activity.is_must_do,
            "is_booked": activity.is_booked,
            "avg_entree_price": activity.avg_entree_price,
            "popular_items": list(activity.popular_items),
            "cuisine": activity.cuisine,
            "reservation_required": activity.reservation_required,
            "availability_status": _enum(activity.availability_status),
            "image_url": activity.image_url,
            "confirmation_number": activity.confirmation_number,
            "attendees": list(activity.attendees),
            "screenshot_url": activity.screenshot_ref,
        },
        activity,
    )


def day_from_row(row: Mapping[str, Any]) -> Day:
    day_date = _date(row["date"])
    return _present(
        Day,
        id=_id(row),
        date=day_date,
        number=row.get("day_number"),
        destination=row["destination"],
        title=row["title"],
        weekday=row.get("day_of_week") or day_date.strftime("%A"),
        activities=sort_activities(activity_from_row(item) for item in row.get("activities") or []),
    )


def day_to_row(day: Day) -> Row:
    return _with_id(
        {
            "date": day.date.isoformat(),
            "day_number": day.number,
            "destination": day.destination.value,
            "title": day.title,
            "day_of_week": day.weekday,
        },
        day,
    )


def flight_from_row(row: Mapping[str, Any]) -> Flight:
    return _present(
        Flight,
        id=_id(row),
        date=_date(row["date"]),
        departure_time=row["departure_time"],
        arrival_time=row["arrival_time"],
        from_city=row["from_city"],
        from_code=row["from_code"],
        to_city=row["to_city"],
        to_code=row["to_code"],
        airline=row.get("airline"),
        flight_number=row.get("flight_number"),
        confirmation_number=row.get("confirmation_number"),
        notes=row.get("notes"),
        attendees=list(row.get("travelers") or []),
        screenshot_ref=row.get("screenshot_url"),
        is_personal=bool(row.get("is_personal")),
    )


def flight_to_row(flight: Flight) -> Row:
    return _with_id(
        {
            "date": flight.date.isoformat(),
            "departure_time": flight.departure_time,
            "arrival_time": flight.arrival_time,
            "from_city": flight.from_city,
            "from_code": flight.from_code,
            "to_city": flight.to_city,
            "to_code": flight.to_code,
            "airline": flight.airline,
            "flight_number": flight.flight_number,
            "confirmation_number": flight.confirmation_number,
            "notes": flight.notes,
            "travelers": list(flight.attendees),
            "screenshot_url": flight.screenshot_ref,
            "is_personal": flight.is_personal,
        },
        flight,
    )


def hotel_from_row(row: Mapping[str, Any]) -> Hotel:
    return _present(
        Hotel,
        id=_id(row),
        destination=row["destination"],
        name=row["name"],
        address=row["address"],
        check_in=_date(row["check_in"]),
        check_out=_date(row["check_out"]),
        phone=row.get("phone"),
        amenities=list(row.get("amenities") or []),
        booking_link=row.get("booking_url"),
        notes=row.get("notes"),
    )


def hotel_to_row(hotel: Hotel) -> Row:
    return _with_id(
        {
            "destination": hotel.destination.value,
            "name": hotel.name,
            "address": hotel.address,
            "check_in": hotel.check_in.isoformat(),
            "check_out": hotel.check_out.isoformat(),
            "phone": hotel.phone,
            "amenities": list(hotel.amenities),
            "booking_url": hotel.booking_link,
            "notes": hotel.notes,
        },
        hotel,
    )


def traveler_from_row(row: Mapping[str, Any]) -> Traveler:
    return _present(
        Traveler,
        id=_id(row),
        name=row["name"],
        color=row["color"],
        avatar=row.get("avatar"),
        can_regenerate_maps=bool(row.get("can_regenerate_maps")),
    )


def traveler_to_row(traveler: Traveler) -> Row:
    return _with_id(
        {
            "name": traveler.name,
            "color": traveler.color,
            "avatar": traveler.avatar,
            "can_regenerate_maps": traveler.can_regenerate_maps,
        },
        traveler,
    )


def comment_from_row(row: Mapping[str, Any]) -> Comment:
    return _present(
        Comment,
        id=_id(row),
        author_id=row["traveler_id"],
        body=row["text"],
        created_at=_timestamp(row.get("created_at")),
    )


def comment_to_row(comment: Comment, must_do_id: str) -> Row:
    row: Row = {"must_do_id": must_do_id, "traveler_id": comment.author_id, "text": comment.body}
    if comment.created_at is not None:
        row["created_at"] = comment.created_at.isoformat()
    return _with_id(row, comment)


def must_do_from_row(row: Mapping[str, Any]) -> MustDoItem:
    return _present(
        MustDoItem,
        id=_id(row),
        proposed_by=row["traveler_id"],
        name=row["name"],
        category=row["type"],
        destination=row["destination"],
        description=row.get("description"),
        address=row.get("address"),
        booking_link=row.get("booking_url"),
        price_tier=row.get("price_range"),
        notes=row.get("notes"),
        voters=list(row.get("votes") or []),
        comments=[comment_from_row(item) for item in row.get("comments") or []],
        added_to_itinerary=bool(row.get("added_to_itinerary")),
        added_to_day=_date(row.get("added_to_day")),
    )


def must_do_to_row(item: MustDoItem) -> Row:
    # comments are child rows, written one at a time through comment_to_row
    return _with_id(
        {
            "traveler_id": item.proposed_by,
            "name": item.name,
            "type": item.category.value,
            "destination": item.destination.value,
            "description": item.description,
            "address": item.address,
            "booking_url": item.booking_link,
            "price_range": _enum(item.price_tier),
            "notes": item.notes,
            "votes": list(item.voters),
            "added_to_itinerary": item.added_to_itinerary,
            "added_to_day": _iso(item.added_to_day),
        },
        item,
    )


def saved_place_from_row(row: Mapping[str, Any]) -> SavedPlace:
    return _present(
        SavedPlace,
        id=_id(row),
        name=row["name"],
        category=row["type"],
        destination=row["destination"],
        classification=row["category"],
        description=row.get("description"),
        address=row.get("address"),
        booking_link=row.get("booking_url"),
        price_tier=row.get("price_range"),
        notes=row.get("notes"),
        avg_entree_price=row.get("avg_entree_price"),
        popular_items=list(row.get("popular_items") or []),
        cuisine=row.get("cuisine"),
        reservation_required=row.get("reservation_required"),
        availability_status=row.get("availability_status"),
        image_url=row.get("image_url"),
    )


def saved_place_to_row(place: SavedPlace) -> Row:
    return _with_id(
        {
            "name": place.name,
            "type": place.category.value,
            "destination": place.destination.value,
            "category": place.classification.value,
            "description": place.description,
            "address": place.address,
            "booking_url": place.booking_link,
            "price_range": _enum(place.price_tier),
            "notes": place.notes,
            "avg_entree_price": place.avg_entree_price,
            "popular_items": list(place.popular_items),
            "cuisine": place.cuisine,
            "reservation_required": place.reservation_required,
            "availability_status": _enum(place.availability_status),
            "image_url": place.image_url,
        },
        place,
    )


def daily_map_from_row(row: Mapping[str, Any]) -> DailyMap:
    return _present(
        DailyMap,
        id=_id(row),
        day_id=row["day_id"],
        trip_id=row["trip_id"],
        image_url=row["image_url"],
        prompt_used=row["prompt_used"],
        is_fallback=bool(row.get("is_fallback")),
        generated_by=row.get("generated_by_traveler_id"),
        generated_at=_timestamp(row.get("generated_at")),
    )


def daily_map_to_row(daily_map: DailyMap) -> Row:
    # generated_at is stamped by the database on insert and update
    return _with_id(
        {
            "day_id": daily_map.day_id,
            "trip_id": daily_map.trip_id,
            "image_url": daily_map.image_url,
            "prompt_used": daily_map.prompt_used,
            "is_fallback": daily_map.is_fallback,
            "generated_by_traveler_id": daily_map.generated_by,
        },
        daily_map,
    )
