from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .identity import EntityId


class Destination(str, Enum):
    copenhagen = "copenhagen"
    reykjavik = "reykjavik"


class ActivityCategory(str, Enum):
    food = "food"
    attraction = "attraction"
    tour = "tour"
    transport = "transport"
    accommodation = "accommodation"
    nightlife = "nightlife"
    shopping = "shopping"
    relaxation = "relaxation"
    nature = "nature"


class PriceTier(str, Enum):
    budget = "$"
    moderate = "$$"
    upscale = "$$$"
    luxury = "$$$$"


class AvailabilityStatus(str, Enum):
    available = "available"
    limited = "limited"
    full = "full"
    unknown = "unknown"


class PlaceClassification(str, Enum):
    restaurant = "restaurant"
    bar = "bar"
    cafe = "cafe"
    attraction = "attraction"
    tour = "tour"
    other = "other"


class EntityModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Activity(EntityModel):
    id: Optional[EntityId] = None
    name: str = Field(min_length=1)
    category: ActivityCategory
    time: Optional[str] = None
    duration: Optional[str] = None
    description: str = ""
    address: Optional[str] = None
    booking_link: Optional[str] = None
    price_tier: Optional[PriceTier] = None
    notes: Optional[str] = None
    is_must_do: bool = False
    is_booked: bool = False
    avg_entree_price: Optional[float] = None
    popular_items: List[str] = Field(default_factory=list)
    cuisine: Optional[str] = None
    reservation_required: Optional[bool] = None
    availability_status: Optional[AvailabilityStatus] = None
    image_url: Optional[str] = None
    confirmation_number: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    screenshot_ref: Optional[str] = None


class Day(EntityModel):
    id: Optional[EntityId] = None
    date: dt.date
    number: Optional[int] = None
    destination: Destination
    title: str
    weekday: str
    activities: List[Activity] = Field(default_factory=list)


class Flight(EntityModel):
    id: Optional[EntityId] = None
    date: dt.date
    departure_time: str
    arrival_time: str
    from_city: str
    from_code: str
    to_city: str
    to_code: str
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    confirmation_number: Optional[str] = None
    notes: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    screenshot_ref: Optional[str] = None
    is_personal: bool = False


class Hotel(EntityModel):
    id: Optional[EntityId] = None
    destination: Destination
    name: str
    address: str
    check_in: dt.date
    check_out: dt.date
    phone: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
    booking_link: Optional[str] = None
    notes: Optional[str] = None


class Traveler(EntityModel):
    id: Optional[EntityId] = None
    name: str
    color: str
    avatar: Optional[str] = None
    can_regenerate_maps: bool = False


class Comment(EntityModel):
    id: Optional[EntityId] = None
    author_id: str
    body: str = Field(min_length=1)
    created_at: Optional[dt.datetime] = None


class MustDoItem(EntityModel):
    id: Optional[EntityId] = None
    proposed_by: str
    name: str = Field(min_length=1)
    category: ActivityCategory
    destination: Destination
    description: Optional[str] = None
    address: Optional[str] = None
    booking_link: Optional[str] = None
    price_tier: Optional[PriceTier] = None
    notes: Optional[str] = None
    voters: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    added_to_itinerary: bool = False
    added_to_day: Optional[dt.date] = None


class SavedPlace(EntityModel):
    id: Optional[EntityId] = None
    name: str = Field(min_length=1)
    category: ActivityCategory
    destination: Destination
    classification: PlaceClassification
    description: Optional[str] = None
    address: Optional[str] = None
    booking_link: Optional[str] = None
    price_tier: Optional[PriceTier] = None
    notes: Optional[str] = None
    avg_entree_price: Optional[float] = None
    popular_items: List[str] = Field(default_factory=list)
    cuisine: Optional[str] = None
    reservation_required: Optional[bool] = None
    availability_status: Optional[AvailabilityStatus] = None
    image_url: Optional[str] = None


class DailyMap(EntityModel):
    id: Optional[EntityId] = None
    day_id: str
    trip_id: str
    image_url: str
    prompt_used: str
    is_fallback: bool = False
    generated_by: Optional[str] = None
    generated_at: Optional[dt.datetime] = None


class TripLoad(EntityModel):
    days: List[Day] = Field(default_factory=list)
    flights: List[Flight] = Field(default_factory=list)
    hotels: List[Hotel] = Field(default_factory=list)
    travelers: List[Traveler] = Field(default_factory=list)
    must_dos: List[MustDoItem] = Field(default_factory=list)
    saved_places: List[SavedPlace] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures


class FlightBooking(EntityModel):
    type: Literal["flight"] = "flight"
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    from_city: Optional[str] = None
    from_code: Optional[str] = None
    to_city: Optional[str] = None
    to_code: Optional[str] = None
    date: Optional[dt.date] = None
    departure_time: Optional[str] = None
    arrival_time: Optional[str] = None
    confirmation_number: Optional[str] = None
    notes: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class RestaurantBooking(EntityModel):
    type: Literal["restaurant"] = "restaurant"
    name: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    address: Optional[str] = None
    confirmation_number: Optional[str] = None
    party_size: Optional[int] = None
    notes: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class TourBooking(EntityModel):
    type: Literal["tour"] = "tour"
    name: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    address: Optional[str] = None
    meeting_point: Optional[str] = None
    confirmation_number: Optional[str] = None
    duration: Optional[str] = None
    notes: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class HotelBooking(EntityModel):
    type: Literal["hotel"] = "hotel"
    destination: Destination
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    check_in: Optional[dt.date] = None
    check_out: Optional[dt.date] = None
    amenities: List[str] = Field(default_factory=list)
    booking_link: Optional[str] = None
    notes: Optional[str] = None


ExtractedBooking = Annotated[Union[FlightBooking, RestaurantBooking, TourBooking], Field(discriminator="type")]
Booking = Annotated[Union[FlightBooking, RestaurantBooking, TourBooking, HotelBooking], Field(discriminator="type")]


class SaveActivitiesRequest(EntityModel):
    activities: List[Activity]


class MoveActivityRequest(EntityModel):
    target_day_id: str
    activity: Activity


class MoveActivityResponse(EntityModel):
    source: List[Activity]
    target: List[Activity]


class VoteRequest(EntityModel):
    traveler_id: str


class CommentRequest(EntityModel):
    traveler_id: str
    body: str = Field(min_length=1)


class ScheduleMustDoRequest(EntityModel):
    day_date: dt.date


class ScheduleMustDoResponse(EntityModel):
    must_do: MustDoItem
    activities: List[Activity]


class AvatarRequest(EntityModel):
    avatar: str = Field(min_length=1)


class ExtractBookingRequest(EntityModel):
    image_url: str


class MapRequest(EntityModel):
    force_regenerate: bool = False


class MapResponse(EntityModel):
    map: DailyMap
    cached: bool
    is_fallback: bool
