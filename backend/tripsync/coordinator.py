from __future__ import annotations

import asyncio
import copy
import datetime as dt
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .errors import (
    AlreadyScheduledError,
    DayNotFoundError,
    EntityNotFoundError,
    IncompleteBookingError,
    PermissionDeniedError,
    TripError,
)
from .identity import Persisted, persisted_id, provisional, require_persisted, same_id
from .schemas import (
    Activity,
    ActivityCategory,
    Comment,
    Day,
    Destination,
    Flight,
    FlightBooking,
    Hotel,
    HotelBooking,
    MustDoItem,
    RestaurantBooking,
    SavedPlace,
    TourBooking,
    Traveler,
    TripLoad,
)
from .service import TripDataService, activity_from_must_do, activity_from_saved_place, toggle_voter
from .store import StoreError
from .timeline import sort_activities

logger = logging.getLogger(__name__)


class MutationStatus(str, Enum):
    idle = "idle"
    optimistic_applied = "optimistic_applied"
    committed = "committed"
    rolled_back = "rolled_back"


@dataclass
class Notice:
    label: str
    message: str
    level: str = "error"


@dataclass
class MutationResult:
    label: str
    status: MutationStatus = MutationStatus.idle
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def committed(self) -> bool:
        return self.status == MutationStatus.committed


@dataclass
class TripState:
    days: List[Day] = field(default_factory=list)
    flights: List[Flight] = field(default_factory=list)
    hotels: List[Hotel] = field(default_factory=list)
    travelers: List[Traveler] = field(default_factory=list)
    must_dos: List[MustDoItem] = field(default_factory=list)
    saved_places: List[SavedPlace] = field(default_factory=list)


SLICES = tuple(item.name for item in fields(TripState))


def _index_of(items: Sequence[Any], item_id: Any) -> int:
    for index, item in enumerate(items):
        if same_id(item.id, item_id):
            return index
    return -1


def _replace(items: Iterable[Any], item_id: Any, replacement: Any) -> List[Any]:
    return [replacement if same_id(item.id, item_id) else item for item in items]


def _without(items: Iterable[Any], item_id: Any) -> List[Any]:
    return [item for item in items if not same_id(item.id, item_id)]


class TripCoordinator:
    """Local trip state kept in step with the store through optimistic mutations.

    Every mutation goes through ``_mutate``: the touched slices are locked,
    snapshotted and changed locally, then the service call runs in a worker
    thread. Success swaps in the canonical entities the store returned; a
    store or domain failure restores the snapshot and emits a ``Notice``;
    any other error restores it too and propagates.
    Mutations touching the same slice run one after another in the order
    they acquired the lock.
    """

    def __init__(
        self,
        service: TripDataService,
        on_change: Optional[Callable[[TripState], None]] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ) -> None:
        self.service = service
        self.state = TripState()
        self.notices: List[Notice] = []
        self.on_change = on_change
        self.on_notice = on_notice
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in SLICES}

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.state)

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self.on_notice is not None:
            self.on_notice(notice)

    async def _mutate(
        self,
        label: str,
        touches: Sequence[str],
        apply: Callable[[TripState], None],
        remote: Callable[[], Any],
        reconcile: Optional[Callable[[TripState, Any], None]] = None,
    ) -> MutationResult:
        result = MutationResult(label=label)
        slices = sorted(set(touches))
        async with AsyncExitStack() as stack:
            for name in slices:
                await stack.enter_async_context(self._locks[name])

            snapshot = {name: copy.deepcopy(getattr(self.state, name)) for name in slices}

            def restore() -> None:
                for name, saved in snapshot.items():
                    setattr(self.state, name, saved)

            try:
                apply(self.state)
            except Exception:
                restore()
                raise
            result.status = MutationStatus.optimistic_applied
            self._changed()

            try:
                value = await asyncio.to_thread(remote)
            except (TripError, StoreError) as exc:
                restore()
                result.status = MutationStatus.rolled_back
                result.error = exc
                logger.warning("%s failed, local changes rolled back: %s", label, exc)
                self._changed()
                self._notify(Notice(label=label, message=f"Failed to {label}: {exc}"))
                return result
            except Exception:
                restore()
                result.status = MutationStatus.rolled_back
                logger.exception("%s failed unexpectedly, local changes rolled back", label)
                self._changed()
                raise
            except asyncio.CancelledError:
                restore()
                result.status = MutationStatus.rolled_back
                self._changed()
                raise

            if reconcile is not None:
                reconcile(self.state, value)
            result.status = MutationStatus.committed
            result.value = value
            self._changed()
        return result

    # lookups used for preconditions; they raise before anything changes

    def _day(self, day_id: str) -> Day:
        for day in self.state.days:
            if persisted_id(day) == day_id:
                return day
        raise DayNotFoundError(f"Day {day_id} is not loaded")

    def _day_for_date(self, day_date: dt.date) -> Day:
        for day in self.state.days:
            if day.date == day_date:
                return day
        raise DayNotFoundError(f"No day found for {day_date.isoformat()}")

    def _must_do(self, must_do_id: str) -> MustDoItem:
        for item in self.state.must_dos:
            if persisted_id(item) == must_do_id:
                return item
        raise EntityNotFoundError(f"Must-do {must_do_id} is not loaded")

    def _saved_place(self, place_id: str) -> SavedPlace:
        for place in self.state.saved_places:
            if persisted_id(place) == place_id:
                return place
        raise EntityNotFoundError(f"Saved place {place_id} is not loaded")

    def _set_day_activities(self, state: TripState, day_id: str, activities: List[Activity]) -> None:
        for index, day in enumerate(state.days):
            if persisted_id(day) == day_id:
                state.days[index] = day.model_copy(update={"activities": activities})
                return
        raise DayNotFoundError(f"Day {day_id} is not loaded")

    async def load(self) -> TripLoad:
        async with AsyncExitStack() as stack:
            for name in sorted(SLICES):
                await stack.enter_async_context(self._locks[name])
            try:
                loaded = await asyncio.to_thread(self.service.load_trip)
            except (TripError, StoreError) as exc:
                logger.error("Loading the trip failed: %s", exc)
                self._notify(Notice(label="load trip", message=f"Failed to load trip: {exc}"))
                raise
            for name in SLICES:
                if name not in loaded.failures:
                    setattr(self.state, name, list(getattr(loaded, name)))
            for name, message in loaded.failures.items():
                self._notify(Notice(label="load trip", message=f"Could not load {name.replace('_', ' ')}: {message}"))
            self._changed()
        return loaded

    async def _save_day(
        self,
        label: str,
        day_id: str,
        edit: Callable[[List[Activity]], List[Activity]],
    ) -> MutationResult:
        self._day(day_id)
        desired: List[Activity] = []

        def apply(state: TripState) -> None:
            current = next(day for day in state.days if persisted_id(day) == day_id)
            desired[:] = edit(list(current.activities))
            self._set_day_activities(state, day_id, sort_activities(desired))

        def reconcile(state: TripState, saved: List[Activity]) -> None:
            self._set_day_activities(state, day_id, saved)

        return await self._mutate(
            label,
            ("days",),
            apply,
            lambda: self.service.save_day_activities(day_id, desired),
            reconcile,
        )

    async def add_activity(self, day_id: str, activity: Activity) -> MutationResult:
        entry = activity.model_copy(update={"id": provisional("activity")})
        return await self._save_day("add activity", day_id, lambda activities: [*activities, entry])

    async def remove_activity(self, day_id: str, activity_id: str) -> MutationResult:
        target = Persisted(value=activity_id)
        if _index_of(self._day(day_id).activities, target) < 0:
            raise EntityNotFoundError(f"Activity {activity_id} is not on day {day_id}")
        return await self._save_day("remove activity", day_id, lambda activities: _without(activities, target))

    async def swap_activity(self, day_id: str, activity_id: str, replacement: Activity) -> MutationResult:
        target = Persisted(value=activity_id)
        if _index_of(self._day(day_id).activities, target) < 0:
            raise EntityNotFoundError(f"Activity {activity_id} is not on day {day_id}")
        entry = replacement.model_copy(update={"id": target})
        return await self._save_day("swap activity", day_id, lambda activities: _replace(activities, target, entry))

    async def edit_activity(
        self,
        day_id: str,
        activity: Activity,
        target_day_id: Optional[str] = None,
    ) -> MutationResult:
        activity_id = require_persisted(activity, "edit activity")
        if _index_of(self._day(day_id).activities, activity.id) < 0:
            raise EntityNotFoundError(f"Activity {activity_id} is not on day {day_id}")
        if target_day_id is None or target_day_id == day_id:
            return await self._save_day("edit activity", day_id, lambda activities: _replace(activities, activity.id, activity))

        self._day(target_day_id)

        def apply(state: TripState) -> None:
            source = next(day for day in state.days if persisted_id(day) == day_id)
            target = next(day for day in state.days if persisted_id(day) == target_day_id)
            self._set_day_activities(state, day_id, _without(source.activities, activity.id))
            self._set_day_activities(state, target_day_id, sort_activities([*target.activities, activity]))

        def reconcile(state: TripState, saved: Any) -> None:
            source_after, target_after = saved
            self._set_day_activities(state, day_id, source_after)
            self._set_day_activities(state, target_day_id, target_after)

        return await self._mutate(
            "move activity",
            ("days",),
            apply,
            lambda: self.service.move_activity(activity, day_id, target_day_id),
            reconcile,
        )

    async def delete_activity(self, activity_id: str) -> MutationResult:
        target = Persisted(value=activity_id)
        for day in self.state.days:
            if _index_of(day.activities, target) >= 0:
                day_id = require_persisted(day, "delete activity")
                return await self._save_day("delete activity", day_id, lambda activities: _without(activities, target))
        raise EntityNotFoundError(f"Activity {activity_id} is not on any loaded day")

    async def add_flight(self, flight: Flight) -> MutationResult:
        entry = flight.model_copy(update={"id": provisional("flight")})

        def apply(state: TripState) -> None:
            state.flights = [*state.flights, entry]

        def reconcile(state: TripState, saved: Flight) -> None:
            state.flights = _replace(state.flights, entry.id, saved)

        return await self._mutate("add flight", ("flights",), apply, lambda: self.service.add_flight(entry), reconcile)

    async def update_flight(self, flight: Flight) -> MutationResult:
        flight_id = require_persisted(flight, "update flight")
        if _index_of(self.state.flights, flight.id) < 0:
            raise EntityNotFoundError(f"Flight {flight_id} is not loaded")

        def apply(state: TripState) -> None:
            state.flights = _replace(state.flights, flight.id, flight)

        def reconcile(state: TripState, saved: Flight) -> None:
            state.flights = _replace(state.flights, flight.id, saved)

        return await self._mutate("update flight", ("flights",), apply, lambda: self.service.update_flight(flight), reconcile)

    async def delete_flight(self, flight_id: str) -> MutationResult:
        target = Persisted(value=flight_id)
        if _index_of(self.state.flights, target) < 0:
            raise EntityNotFoundError(f"Flight {flight_id} is not loaded")

        def apply(state: TripState) -> None:
            state.flights = _without(state.flights, target)

        return await self._mutate("delete flight", ("flights",), apply, lambda: self.service.delete_flight(flight_id))

    async def edit_hotel(self, destination: Destination, hotel: Hotel) -> MutationResult:
        destination = Destination(destination)
        entry = hotel.model_copy(update={"destination": destination})

        def apply(state: TripState) -> None:
            others = [item for item in state.hotels if item.destination != destination]
            state.hotels = [*others, entry]

        def reconcile(state: TripState, saved: Hotel) -> None:
            state.hotels = [saved if item.destination == destination else item for item in state.hotels]

        return await self._mutate(
            "save hotel",
            ("hotels",),
            apply,
            lambda: self.service.update_hotel(destination, entry),
            reconcile,
        )

    async def add_must_do(self, item: MustDoItem) -> MutationResult:
        entry = item.model_copy(
            update={
                "id": provisional("mustdo"),
                "voters": [],
                "comments": [],
                "added_to_itinerary": False,
                "added_to_day": None,
            }
        )

        def apply(state: TripState) -> None:
            state.must_dos = [*state.must_dos, entry]

        def reconcile(state: TripState, saved: MustDoItem) -> None:
            state.must_dos = _replace(state.must_dos, entry.id, saved)

        return await self._mutate("add must-do", ("must_dos",), apply, lambda: self.service.add_must_do(entry), reconcile)

    async def delete_must_do(self, must_do_id: str, requested_by: str) -> MutationResult:
        item = self._must_do(must_do_id)
        if item.proposed_by != requested_by:
            raise PermissionDeniedError(f"Only the traveler who proposed '{item.name}' can delete it")

        def apply(state: TripState) -> None:
            state.must_dos = _without(state.must_dos, item.id)

        return await self._mutate("delete must-do", ("must_dos",), apply, lambda: self.service.delete_must_do(must_do_id))

    async def vote(self, must_do_id: str, traveler_id: str) -> MutationResult:
        item = self._must_do(must_do_id)

        def apply(state: TripState) -> None:
            current = state.must_dos[_index_of(state.must_dos, item.id)]
            toggled = current.model_copy(update={"voters": toggle_voter(current.voters, traveler_id)})
            state.must_dos = _replace(state.must_dos, item.id, toggled)

        def reconcile(state: TripState, saved: MustDoItem) -> None:
            state.must_dos = _replace(state.must_dos, item.id, saved)

        return await self._mutate(
            "vote",
            ("must_dos",),
            apply,
            lambda: self.service.toggle_vote(must_do_id, traveler_id),
            reconcile,
        )

    async def comment(self, must_do_id: str, traveler_id: str, body: str) -> MutationResult:
        item = self._must_do(must_do_id)
        entry = Comment(id=provisional("comment"), author_id=traveler_id, body=body)

        def apply(state: TripState) -> None:
            current = state.must_dos[_index_of(state.must_dos, item.id)]
            updated = current.model_copy(update={"comments": [*current.comments, entry]})
            state.must_dos = _replace(state.must_dos, item.id, updated)

        def reconcile(state: TripState, saved: Comment) -> None:
            current = state.must_dos[_index_of(state.must_dos, item.id)]
            updated = current.model_copy(update={"comments": _replace(current.comments, entry.id, saved)})
            state.must_dos = _replace(state.must_dos, item.id, updated)

        return await self._mutate(
            "add comment",
            ("must_dos",),
            apply,
            lambda: self.service.add_comment(must_do_id, traveler_id, body),
            reconcile,
        )

    async def add_must_do_to_itinerary(self, must_do_id: str, day_date: dt.date) -> MutationResult:
        item = self._must_do(must_do_id)
        if item.added_to_itinerary:
            raise AlreadyScheduledError(f"'{item.name}' is already on the itinerary for {item.added_to_day}")
        day_id = require_persisted(self._day_for_date(day_date), "add to itinerary")
        entry = activity_from_must_do(item).model_copy(update={"id": provisional("activity")})

        def apply(state: TripState) -> None:
            day = next(day for day in state.days if persisted_id(day) == day_id)
            self._set_day_activities(state, day_id, sort_activities([*day.activities, entry]))
            current = state.must_dos[_index_of(state.must_dos, item.id)]
            scheduled = current.model_copy(update={"added_to_itinerary": True, "added_to_day": day_date})
            state.must_dos = _replace(state.must_dos, item.id, scheduled)

        def reconcile(state: TripState, saved: Any) -> None:
            must_do, activities = saved
            self._set_day_activities(state, day_id, activities)
            state.must_dos = _replace(state.must_dos, item.id, must_do)

        return await self._mutate(
            "add to itinerary",
            ("days", "must_dos"),
            apply,
            lambda: self.service.add_must_do_to_itinerary(must_do_id, day_date),
            reconcile,
        )

    async def add_saved_place(self, place: SavedPlace) -> MutationResult:
        entry = place.model_copy(update={"id": provisional("saved")})

        def apply(state: TripState) -> None:
            state.saved_places = [*state.saved_places, entry]

        def reconcile(state: TripState, saved: SavedPlace) -> None:
            state.saved_places = _replace(state.saved_places, entry.id, saved)

        return await self._mutate(
            "save place",
            ("saved_places",),
            apply,
            lambda: self.service.add_saved_place(entry),
            reconcile,
        )

    async def remove_saved_place(self, place_id: str) -> MutationResult:
        place = self._saved_place(place_id)

        def apply(state: TripState) -> None:
            state.saved_places = _without(state.saved_places, place.id)

        return await self._mutate(
            "remove saved place",
            ("saved_places",),
            apply,
            lambda: self.service.delete_saved_place(place_id),
        )

    async def use_saved_place(self, place_id: str, day_id: str) -> MutationResult:
        place = self._saved_place(place_id)
        return await self.add_activity(day_id, activity_from_saved_place(place))

    async def update_avatar(self, traveler_id: str, avatar: str) -> MutationResult:
        target = Persisted(value=traveler_id)
        if _index_of(self.state.travelers, target) < 0:
            raise EntityNotFoundError(f"Traveler {traveler_id} is not loaded")

        def apply(state: TripState) -> None:
            current = state.travelers[_index_of(state.travelers, target)]
            state.travelers = _replace(state.travelers, target, current.model_copy(update={"avatar": avatar}))

        def reconcile(state: TripState, saved: Traveler) -> None:
            state.travelers = _replace(state.travelers, target, saved)

        return await self._mutate(
            "update profile photo",
            ("travelers",),
            apply,
            lambda: self.service.update_traveler_avatar(traveler_id, avatar),
            reconcile,
        )

    async def upload_booking(
        self,
        booking: Any,
        screenshot_ref: Optional[str] = None,
        replace_existing: bool = True,
    ) -> Optional[MutationResult]:
        """Apply a confirmed booking to the itinerary.

        Flights replace a loaded flight with the same number, date and airports,
        otherwise they are added. Hotels replace the hotel for their
        destination. Restaurants and tours become a booked activity on the day
        with the booking's date; when no such day is loaded a notice is emitted
        and ``None`` returned.
        """
        if isinstance(booking, FlightBooking):
            return await self._upload_flight(booking, screenshot_ref, replace_existing)
        if isinstance(booking, HotelBooking):
            return await self.edit_hotel(booking.destination, _hotel_from_booking(booking))
        if isinstance(booking, (RestaurantBooking, TourBooking)):
            if booking.date is None:
                raise IncompleteBookingError(booking.type, ["date"])
            try:
                day = self._day_for_date(booking.date)
            except DayNotFoundError:
                self._notify(
                    Notice(
                        label="upload booking",
                        message=f"No day found for {booking.date.isoformat()}. Make sure the date is within the trip.",
                        level="warning",
                    )
                )
                return None
            day_id = require_persisted(day, "add booking")
            return await self.add_activity(day_id, _activity_from_booking(booking, screenshot_ref))
        raise TypeError(f"Unsupported booking type: {type(booking).__name__}")

    async def _upload_flight(
        self,
        booking: FlightBooking,
        screenshot_ref: Optional[str],
        replace_existing: bool,
    ) -> Optional[MutationResult]:
        missing = [name for name in ("date", "from_city", "from_code", "to_city", "to_code") if not getattr(booking, name)]
        if missing:
            raise IncompleteBookingError("flight", missing)

        flight = Flight(
            date=booking.date,
            departure_time=booking.departure_time or "TBD",
            arrival_time=booking.arrival_time or "TBD",
            from_city=booking.from_city,
            from_code=booking.from_code,
            to_city=booking.to_city,
            to_code=booking.to_code,
            airline=booking.airline,
            flight_number=booking.flight_number,
            confirmation_number=booking.confirmation_number,
            notes=booking.notes,
            attendees=list(booking.attendees),
            screenshot_ref=screenshot_ref,
            is_personal=True,
        )
        for existing in self.state.flights:
            if (
                existing.flight_number == booking.flight_number
                and existing.date == booking.date
                and existing.from_code == booking.from_code
                and existing.to_code == booking.to_code
                and isinstance(existing.id, Persisted)
            ):
                if not replace_existing:
                    self._notify(
                        Notice(label="upload booking", message="A matching flight already exists.", level="info")
                    )
                    return None
                return await self.update_flight(flight.model_copy(update={"id": existing.id}))
        return await self.add_flight(flight)


def _hotel_from_booking(booking: HotelBooking) -> Hotel:
    missing = [name for name in ("name", "check_in", "check_out") if not getattr(booking, name)]
    if missing:
        raise IncompleteBookingError("hotel", missing)
    return Hotel(
        destination=booking.destination,
        name=booking.name,
        address=booking.address or "",
        phone=booking.phone,
        check_in=booking.check_in,
        check_out=booking.check_out,
        amenities=list(booking.amenities),
        booking_link=booking.booking_link,
        notes=booking.notes,
    )


def _activity_from_booking(booking: RestaurantBooking | TourBooking, screenshot_ref: Optional[str]) -> Activity:
    if isinstance(booking, TourBooking):
        description = booking.notes or (f"Meeting point: {booking.meeting_point}" if booking.meeting_point else "")
        return Activity(
            name=booking.name or "New Booking",
            category=ActivityCategory.tour,
            time=booking.time,
            duration=booking.duration,
            description=description,
            address=booking.address or booking.meeting_point,
            confirmation_number=booking.confirmation_number,
            attendees=list(booking.attendees),
            screenshot_ref=screenshot_ref,
            is_booked=True,
        )
    details = [booking.notes] if booking.notes else []
    if booking.party_size:
        details.append(f"Party of {booking.party_size}")
    return Activity(
        name=booking.name or "New Booking",
        category=ActivityCategory.food,
        time=booking.time,
        description=". ".join(details),
        address=booking.address,
        confirmation_number=booking.confirmation_number,
        attendees=list(booking.attendees),
        screenshot_ref=screenshot_ref,
        is_booked=True,
    )
