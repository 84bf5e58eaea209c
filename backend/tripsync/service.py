from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import AlreadyScheduledError, DayNotFoundError, EntityNotFoundError, PartialMoveError, TripNotFoundError
from .identity import persisted_id, require_persisted
from .schemas import (
    Activity,
    Comment,
    DailyMap,
    Day,
    Destination,
    Flight,
    Hotel,
    MustDoItem,
    SavedPlace,
    Traveler,
    TripLoad,
)
from .store import RemoteStore, StoreError
from .timeline import sort_activities
from .transform import (
    activity_from_row,
    activity_to_row,
    comment_from_row,
    comment_to_row,
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
    traveler_from_row,
)

logger = logging.getLogger(__name__)


def toggle_voter(voters: Sequence[str], traveler_id: str) -> List[str]:
    if traveler_id in voters:
        return [voter for voter in voters if voter != traveler_id]
    return [*voters, traveler_id]


def activity_from_saved_place(place: SavedPlace) -> Activity:
    return Activity(
        name=place.name,
        category=place.category,
        description=place.description or "",
        address=place.address,
        booking_link=place.booking_link,
        price_tier=place.price_tier,
        notes=place.notes,
        avg_entree_price=place.avg_entree_price,
        popular_items=list(place.popular_items),
        cuisine=place.cuisine,
        reservation_required=place.reservation_required,
        availability_status=place.availability_status,
        image_url=place.image_url,
    )


def activity_from_must_do(item: MustDoItem) -> Activity:
    return Activity(
        name=item.name,
        category=item.category,
        description=item.description or "",
        address=item.address,
        booking_link=item.booking_link,
        price_tier=item.price_tier,
        notes=item.notes,
        is_must_do=True,
    )


def _differs(payload: Mapping[str, Any], row: Mapping[str, Any]) -> bool:
    # NULL columns read back as defaults, so compare against the normalized row
    stored = activity_to_row(activity_from_row(row))
    stored.pop("id", None)
    return any(stored.get(key) != value for key, value in payload.items())


class TripDataService:
    """The only caller of ``RemoteStore``; one method per user-facing query or mutation.

    The trip this service works on is resolved once and kept on the instance.
    ``clear()`` forgets it, e.g. when the session switches trips.
    """

    def __init__(self, store: RemoteStore, trip_id: Optional[str] = None, load_workers: int = 6) -> None:
        self.store = store
        self._trip_id = trip_id
        self.load_workers = max(1, load_workers)

    def trip_id(self) -> str:
        if self._trip_id:
            return self._trip_id
        rows = self.store.select("trips", limit=1)
        if not rows:
            raise TripNotFoundError("No trip found")
        self._trip_id = rows[0]["id"]
        return self._trip_id

    def clear(self) -> None:
        self._trip_id = None

    def load_trip(self) -> TripLoad:
        try:
            trip_id = self.trip_id()
        except TripNotFoundError:
            logger.info("No trip in the store; returning an empty itinerary")
            return TripLoad()

        scoped = {"trip_id": trip_id}
        loaders: Dict[str, Callable[[], List[Any]]] = {
            "days": lambda: [
                day_from_row(row)
                for row in self.store.select("days", scoped, order_by=("date",), expand=("activities",))
            ],
            "flights": lambda: [flight_from_row(row) for row in self.store.select("flights", scoped, order_by=("date",))],
            "hotels": lambda: [hotel_from_row(row) for row in self.store.select("hotels", scoped, order_by=("check_in",))],
            "travelers": lambda: [traveler_from_row(row) for row in self.store.select("travelers", scoped)],
            "must_dos": lambda: [
                must_do_from_row(row) for row in self.store.select("must_dos", scoped, expand=("comments",))
            ],
            "saved_places": lambda: [saved_place_from_row(row) for row in self.store.select("saved_places", scoped)],
        }

        results: Dict[str, List[Any]] = {}
        failures: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=self.load_workers) as pool:
            futures = {name: pool.submit(loader) for name, loader in loaders.items()}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except StoreError as exc:
                    logger.warning("Loading %s for trip %s failed: %s", name, trip_id, exc)
                    failures[name] = str(exc)

        logger.info(
            "Loaded trip %s: %s",
            trip_id,
            ", ".join(f"{name}={len(items)}" for name, items in results.items()),
        )
        return TripLoad(**results, failures=failures)

    def load_day(self, day_id: str) -> Day:
        rows = self.store.select("days", {"id": day_id}, expand=("activities",), limit=1)
        if not rows:
            raise DayNotFoundError(f"Day {day_id} not found")
        return day_from_row(rows[0])

    def find_day_by_date(self, day_date: dt.date) -> Day:
        rows = self.store.select(
            "days",
            {"trip_id": self.trip_id(), "date": day_date.isoformat()},
            expand=("activities",),
            limit=1,
        )
        if not rows:
            raise DayNotFoundError(f"No day found for {day_date.isoformat()}")
        return day_from_row(rows[0])

    def save_day_activities(self, day_id: str, activities: Sequence[Activity]) -> List[Activity]:
        """Make the stored activities of a day match ``activities`` and return them canonically.

        Stored rows missing from the list are deleted, changed rows are updated
        and new entries inserted. A new entry identical to a stored row nobody
        else claims reuses that row, so replaying the same list is a no-op.
        """
        rows = self.store.select("days", {"id": day_id}, expand=("activities",), limit=1)
        if not rows:
            raise DayNotFoundError(f"Day {day_id} not found")
        existing = {row["id"]: row for row in rows[0]["activities"]}

        claimed: set[str] = set()
        for activity in activities:
            activity_id = persisted_id(activity)
            if activity_id is None:
                continue
            if activity_id in claimed:
                raise ValueError(f"Activity {activity_id} appears twice in the list for day {day_id}")
            claimed.add(activity_id)
        unclaimed = [row_id for row_id in existing if row_id not in claimed]

        canonical: List[Optional[Activity]] = [None] * len(activities)
        updates: List[Tuple[int, str, Dict[str, Any]]] = []
        inserts: List[Tuple[int, Dict[str, Any]]] = []
        for index, activity in enumerate(activities):
            payload = activity_to_row(activity)
            payload.pop("id", None)
            activity_id = persisted_id(activity)

            if activity_id in existing:
                if _differs(payload, existing[activity_id]):
                    updates.append((index, activity_id, payload))
                else:
                    canonical[index] = activity_from_row(existing[activity_id])
                continue

            if activity_id is None:
                match = next((row_id for row_id in unclaimed if not _differs(payload, existing[row_id])), None)
                if match is not None:
                    unclaimed.remove(match)
                    canonical[index] = activity_from_row(existing[match])
                    continue

            row = {"day_id": day_id, **payload}
            if activity_id is not None:
                # Moved in from another day: keep the id the store gave it.
                row["id"] = activity_id
            inserts.append((index, row))

        if unclaimed:
            self.store.delete("activities", {"id": unclaimed})
        for index, activity_id, payload in updates:
            updated = self.store.update("activities", payload, {"id": activity_id})
            canonical[index] = activity_from_row(updated[0])
        if inserts:
            inserted = self.store.insert("activities", [row for _, row in inserts])
            for (index, _), row in zip(inserts, inserted):
                canonical[index] = activity_from_row(row)

        logger.debug(
            "Saved day %s: %d deleted, %d updated, %d inserted",
            day_id,
            len(unclaimed),
            len(updates),
            len(inserts),
        )
        return sort_activities(activity for activity in canonical if activity is not None)

    def move_activity(
        self,
        activity: Activity,
        source_day_id: str,
        target_day_id: str,
    ) -> Tuple[List[Activity], List[Activity]]:
        activity_id = require_persisted(activity, "move activity")
        source_before = self.load_day(source_day_id).activities
        if not any(persisted_id(item) == activity_id for item in source_before):
            raise EntityNotFoundError(f"Activity {activity_id} is not on day {source_day_id}")

        if source_day_id == target_day_id:
            replaced = [activity if persisted_id(item) == activity_id else item for item in source_before]
            saved = self.save_day_activities(source_day_id, replaced)
            return saved, saved

        target_before = self.load_day(target_day_id).activities
        source_after = self.save_day_activities(
            source_day_id,
            [item for item in source_before if persisted_id(item) != activity_id],
        )
        try:
            target_after = self.save_day_activities(target_day_id, [*target_before, activity])
        except StoreError as exc:
            logger.warning("Moving activity %s to day %s failed, restoring day %s: %s", activity_id, target_day_id, source_day_id, exc)
            try:
                self.save_day_activities(source_day_id, source_before)
            except StoreError as compensation_exc:
                raise PartialMoveError(
                    f"Activity {activity_id} was removed from day {source_day_id} but could not be added to day {target_day_id}",
                    source_day_id=source_day_id,
                    target_day_id=target_day_id,
                ) from compensation_exc
            raise
        return source_after, target_after

    def add_flight(self, flight: Flight) -> Flight:
        row = flight_to_row(flight)
        row.pop("id", None)
        inserted = self.store.insert("flights", [{"trip_id": self.trip_id(), **row}])
        return flight_from_row(inserted[0])

    def update_flight(self, flight: Flight) -> Flight:
        flight_id = require_persisted(flight, "update flight")
        updated = self.store.update("flights", flight_to_row(flight), {"id": flight_id})
        return flight_from_row(updated[0])

    def delete_flight(self, flight_id: str) -> None:
        self.store.delete("flights", {"id": flight_id})

    def update_hotel(self, destination: Destination, hotel: Hotel) -> Hotel:
        row = hotel_to_row(hotel)
        row["destination"] = Destination(destination).value
        hotel_id = persisted_id(hotel)
        if hotel_id:
            updated = self.store.update("hotels", row, {"id": hotel_id})
            return hotel_from_row(updated[0])

        row.pop("id", None)
        saved = self.store.upsert("hotels", {"trip_id": self.trip_id(), **row}, on_conflict=("trip_id", "destination"))
        return hotel_from_row(saved)

    def get_must_do(self, must_do_id: str) -> MustDoItem:
        rows = self.store.select("must_dos", {"id": must_do_id}, expand=("comments",), limit=1)
        if not rows:
            raise EntityNotFoundError(f"Must-do {must_do_id} not found")
        return must_do_from_row(rows[0])

    def add_must_do(self, item: MustDoItem) -> MustDoItem:
        fresh = item.model_copy(
            update={"id": None, "voters": [], "comments": [], "added_to_itinerary": False, "added_to_day": None}
        )
        inserted = self.store.insert("must_dos", [{"trip_id": self.trip_id(), **must_do_to_row(fresh)}])
        return must_do_from_row(inserted[0])

    def update_must_do(self, item: MustDoItem) -> MustDoItem:
        must_do_id = require_persisted(item, "update must-do")
        self.store.update("must_dos", must_do_to_row(item), {"id": must_do_id})
        return self.get_must_do(must_do_id)

    def delete_must_do(self, must_do_id: str) -> None:
        self.store.delete("must_do_comments", {"must_do_id": must_do_id})
        self.store.delete("must_dos", {"id": must_do_id})

    def set_votes(self, must_do_id: str, voters: Sequence[str]) -> MustDoItem:
        unique = list(dict.fromkeys(voters))
        self.store.update("must_dos", {"votes": unique}, {"id": must_do_id})
        return self.get_must_do(must_do_id)

    def toggle_vote(self, must_do_id: str, traveler_id: str) -> MustDoItem:
        current = self.get_must_do(must_do_id)
        return self.set_votes(must_do_id, toggle_voter(current.voters, traveler_id))

    def add_comment(self, must_do_id: str, author_id: str, body: str) -> Comment:
        if not self.store.select("must_dos", {"id": must_do_id}, limit=1):
            raise EntityNotFoundError(f"Must-do {must_do_id} not found")
        comment = Comment(author_id=author_id, body=body)
        inserted = self.store.insert("must_do_comments", [comment_to_row(comment, must_do_id)])
        return comment_from_row(inserted[0])

    def add_must_do_to_itinerary(self, must_do_id: str, day_date: dt.date) -> Tuple[MustDoItem, List[Activity]]:
        item = self.get_must_do(must_do_id)
        if item.added_to_itinerary:
            raise AlreadyScheduledError(f"'{item.name}' is already on the itinerary for {item.added_to_day}")
        day = self.find_day_by_date(day_date)
        day_id = require_persisted(day, "add to itinerary")

        activities = self.save_day_activities(day_id, [*day.activities, activity_from_must_do(item)])
        try:
            updated = self.store.update(
                "must_dos",
                {"added_to_itinerary": True, "added_to_day": day_date.isoformat()},
                {"id": must_do_id},
            )
        except StoreError:
            logger.warning("Marking must-do %s as scheduled failed, restoring day %s", must_do_id, day_id)
            try:
                self.save_day_activities(day_id, day.activities)
            except StoreError:
                logger.exception("Could not restore day %s after failed scheduling", day_id)
            raise
        scheduled = must_do_from_row(updated[0]).model_copy(update={"comments": item.comments})
        return scheduled, activities

    def add_saved_place(self, place: SavedPlace) -> SavedPlace:
        row = saved_place_to_row(place)
        row.pop("id", None)
        inserted = self.store.insert("saved_places", [{"trip_id": self.trip_id(), **row}])
        return saved_place_from_row(inserted[0])

    def delete_saved_place(self, place_id: str) -> None:
        self.store.delete("saved_places", {"id": place_id})

    def get_traveler(self, traveler_id: str) -> Traveler:
        rows = self.store.select("travelers", {"id": traveler_id}, limit=1)
        if not rows:
            raise EntityNotFoundError(f"Traveler {traveler_id} not found")
        return traveler_from_row(rows[0])

    def update_traveler_avatar(self, traveler_id: str, avatar: str) -> Traveler:
        logger.info("Updating avatar for traveler %s (%d chars)", traveler_id, len(avatar))
        updated = self.store.update("travelers", {"avatar": avatar}, {"id": traveler_id})
        return traveler_from_row(updated[0])

    def get_daily_map(self, day_id: str) -> Optional[DailyMap]:
        rows = self.store.select("daily_visual_maps", {"day_id": day_id}, limit=1)
        return daily_map_from_row(rows[0]) if rows else None

    def save_daily_map(self, daily_map: DailyMap) -> DailyMap:
        row = daily_map_to_row(daily_map)
        row.pop("id", None)
        return daily_map_from_row(self.store.upsert("daily_visual_maps", row, on_conflict=("day_id",)))
