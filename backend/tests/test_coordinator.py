from __future__ import annotations

import asyncio
import copy
from datetime import date

import pytest

from tripsync.coordinator import MutationStatus, TripCoordinator
from tripsync.errors import IncompleteBookingError, PermissionDeniedError, UnpersistedEntityError
from tripsync.identity import Persisted, Provisional, persisted_id
from tripsync.schemas import (
    Activity,
    Day,
    Flight,
    FlightBooking,
    HotelBooking,
    MustDoItem,
    RestaurantBooking,
    SavedPlace,
    TourBooking,
)
from tripsync.service import TripDataService
from tripsync.store import RemoteStore, StoreUnavailableError


class OfflineService(TripDataService):
    """Loads normally but every write fails."""

    def _offline(self, *args, **kwargs):
        raise StoreUnavailableError("network unreachable")

    save_day_activities = _offline
    move_activity = _offline
    add_flight = _offline
    toggle_vote = _offline
    add_must_do_to_itinerary = _offline
    update_traveler_avatar = _offline


class TargetDayDownStore(RemoteStore):
    def __init__(self, day_id):
        super().__init__()
        self.day_id = day_id

    def insert(self, table, rows):
        if table == "activities" and any(row.get("day_id") == self.day_id for row in rows):
            raise StoreUnavailableError("connection reset", table=table)
        return super().insert(table, rows)


def _activity(name: str, time: str | None = None, **extra) -> Activity:
    return Activity(name=name, category=extra.pop("category", "attraction"), time=time, **extra)


def _day(coordinator: TripCoordinator, day_id: str) -> Day:
    return next(day for day in coordinator.state.days if persisted_id(day) == day_id)


def test_add_activity_applies_locally_then_commits_canonical(store, seeded):
    seen = []
    coordinator = TripCoordinator(
        TripDataService(store),
        on_change=lambda state: seen.append(copy.deepcopy(state.days)),
    )

    async def scenario():
        await coordinator.load()
        return await coordinator.add_activity(seeded.market_day, _activity("Nyhavn", "10:00"))

    result = asyncio.run(scenario())

    assert result.status == MutationStatus.committed
    optimistic = next(day for day in seen[1] if persisted_id(day) == seeded.market_day)
    assert isinstance(optimistic.activities[0].id, Provisional)
    activities = _day(coordinator, seeded.market_day).activities
    assert isinstance(activities[0].id, Persisted)
    assert activities == TripDataService(store).load_day(seeded.market_day).activities


def test_failed_mutation_restores_previous_state_and_notifies(store, seeded):
    notices = []
    coordinator = TripCoordinator(OfflineService(store), on_notice=notices.append)

    async def scenario():
        await coordinator.load()
        before = copy.deepcopy(coordinator.state)
        result = await coordinator.add_activity(seeded.market_day, _activity("Tivoli", "17:00"))
        return before, result

    before, result = asyncio.run(scenario())

    assert result.status == MutationStatus.rolled_back
    assert isinstance(result.error, StoreUnavailableError)
    assert coordinator.state == before
    assert [notice.label for notice in notices] == ["add activity"]
    assert coordinator.notices == notices


def test_unexpected_remote_error_restores_state_and_propagates(store, seeded):
    class BrokenService(TripDataService):
        def save_day_activities(self, day_id, activities):
            raise ValueError("unexpected driver payload")

    seen = []
    coordinator = TripCoordinator(BrokenService(store), on_change=lambda state: seen.append(copy.deepcopy(state.days)))

    async def scenario():
        await coordinator.load()
        before = copy.deepcopy(coordinator.state)
        with pytest.raises(ValueError):
            await coordinator.add_activity(seeded.market_day, _activity("Tivoli", "17:00"))
        return before

    before = asyncio.run(scenario())

    assert coordinator.state == before
    assert _day(coordinator, seeded.market_day).activities == []
    assert seen[-1] == before.days


def test_every_rolled_back_action_leaves_state_untouched(store, seeded):
    service = TripDataService(store)
    must_do = service.add_must_do(
        MustDoItem(proposed_by=seeded.ava, name="Geysir", category="nature", destination="reykjavik")
    )
    kept = service.save_day_activities(seeded.market_day, [_activity("Round Tower", "11:00")])[0]
    coordinator = TripCoordinator(OfflineService(store))

    async def scenario():
        await coordinator.load()
        before = copy.deepcopy(coordinator.state)
        results = [
            await coordinator.vote(persisted_id(must_do), seeded.ben),
            await coordinator.add_must_do_to_itinerary(persisted_id(must_do), date(2026, 12, 22)),
            await coordinator.edit_activity(seeded.market_day, kept, target_day_id=seeded.golden_circle),
            await coordinator.update_avatar(seeded.ava, "data:image/png;base64,AAAA"),
        ]
        return before, results

    before, results = asyncio.run(scenario())

    assert [result.status for result in results] == [MutationStatus.rolled_back] * 4
    assert coordinator.state == before
    assert len(coordinator.notices) == 4


def test_preconditions_fail_before_local_changes(store, seeded):
    changes = []
    coordinator = TripCoordinator(TripDataService(store), on_change=changes.append)
    draft = _activity("Draft").model_copy(update={"id": Provisional(key="activity-1")})

    async def scenario():
        await coordinator.load()
        changes.clear()
        with pytest.raises(UnpersistedEntityError):
            await coordinator.edit_activity(seeded.market_day, draft)

    asyncio.run(scenario())

    assert changes == []


def test_concurrent_edits_to_one_day_are_serialized(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        return await asyncio.gather(
            coordinator.add_activity(seeded.market_day, _activity("Coffee", "08:00")),
            coordinator.add_activity(seeded.market_day, _activity("Dinner", "19:00")),
        )

    results = asyncio.run(scenario())

    assert all(result.committed for result in results)
    assert [activity.name for activity in _day(coordinator, seeded.market_day).activities] == ["Coffee", "Dinner"]
    assert len(store.select("activities", {"day_id": seeded.market_day})) == 2


def test_edit_with_move_updates_both_days(store, seeded):
    activity = TripDataService(store).save_day_activities(seeded.market_day, [_activity("Skating", "15:00")])[0]
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        return await coordinator.edit_activity(
            seeded.market_day,
            activity.model_copy(update={"time": "16:00"}),
            target_day_id=seeded.golden_circle,
        )

    result = asyncio.run(scenario())

    assert result.committed
    assert _day(coordinator, seeded.market_day).activities == []
    moved = _day(coordinator, seeded.golden_circle).activities
    assert [(item.id, item.time) for item in moved] == [(activity.id, "16:00")]


def test_failed_move_rolls_back_locally_and_restores_source(seeded):
    store = TargetDayDownStore(seeded.golden_circle)
    activity = TripDataService(store).save_day_activities(seeded.market_day, [_activity("Skating", "15:00")])[0]
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        before = copy.deepcopy(coordinator.state)
        result = await coordinator.edit_activity(seeded.market_day, activity, target_day_id=seeded.golden_circle)
        return before, result

    before, result = asyncio.run(scenario())

    assert result.status == MutationStatus.rolled_back
    assert coordinator.state == before
    assert [item.id for item in TripDataService(store).load_day(seeded.market_day).activities] == [activity.id]


def test_remove_and_delete_activity(store, seeded):
    first, second = TripDataService(store).save_day_activities(
        seeded.market_day, [_activity("Nyhavn", "10:00"), _activity("Tivoli", "17:00")]
    )
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        await coordinator.remove_activity(seeded.market_day, persisted_id(first))
        await coordinator.delete_activity(persisted_id(second))

    asyncio.run(scenario())

    assert _day(coordinator, seeded.market_day).activities == []
    assert store.select("activities", {"day_id": seeded.market_day}) == []


def test_swap_activity_keeps_identifier(store, seeded):
    original = TripDataService(store).save_day_activities(seeded.market_day, [_activity("Nyhavn", "10:00")])[0]
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        return await coordinator.swap_activity(
            seeded.market_day, persisted_id(original), _activity("Rosenborg Castle", "10:00")
        )

    asyncio.run(scenario())

    swapped = _day(coordinator, seeded.market_day).activities
    assert [(item.id, item.name) for item in swapped] == [(original.id, "Rosenborg Castle")]


def test_vote_comment_and_schedule_must_do(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        added = await coordinator.add_must_do(
            MustDoItem(proposed_by=seeded.ava, name="Blue Lagoon", category="relaxation", destination="reykjavik")
        )
        must_do_id = persisted_id(added.value)
        await coordinator.vote(must_do_id, seeded.ben)
        await coordinator.comment(must_do_id, seeded.ben, "Bring flip-flops")
        scheduled = await coordinator.add_must_do_to_itinerary(must_do_id, date(2026, 12, 22))
        return must_do_id, scheduled

    must_do_id, scheduled = asyncio.run(scenario())

    assert scheduled.committed
    item = coordinator.state.must_dos[0]
    assert persisted_id(item) == must_do_id
    assert item.voters == [seeded.ben]
    assert isinstance(item.comments[0].id, Persisted)
    assert item.comments[0].created_at is not None
    assert item.added_to_itinerary is True
    assert [(activity.name, activity.is_must_do) for activity in _day(coordinator, seeded.golden_circle).activities] == [
        ("Blue Lagoon", True)
    ]


def test_only_proposer_can_delete_must_do(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        added = await coordinator.add_must_do(
            MustDoItem(proposed_by=seeded.ava, name="Round Tower", category="attraction", destination="copenhagen")
        )
        must_do_id = persisted_id(added.value)
        with pytest.raises(PermissionDeniedError):
            await coordinator.delete_must_do(must_do_id, requested_by=seeded.ben)
        return await coordinator.delete_must_do(must_do_id, requested_by=seeded.ava)

    result = asyncio.run(scenario())

    assert result.committed
    assert coordinator.state.must_dos == []


def test_saved_place_used_as_activity(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        saved = await coordinator.add_saved_place(
            SavedPlace(name="Reffen", category="food", destination="copenhagen", classification="restaurant")
        )
        place_id = persisted_id(saved.value)
        await coordinator.use_saved_place(place_id, seeded.market_day)
        await coordinator.remove_saved_place(place_id)

    asyncio.run(scenario())

    assert coordinator.state.saved_places == []
    assert [activity.name for activity in _day(coordinator, seeded.market_day).activities] == ["Reffen"]


def test_update_avatar(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        return await coordinator.update_avatar(seeded.ben, "data:image/png;base64,AAAA")

    result = asyncio.run(scenario())

    assert result.value.avatar == "data:image/png;base64,AAAA"
    ben = next(traveler for traveler in coordinator.state.travelers if persisted_id(traveler) == seeded.ben)
    assert ben.avatar == "data:image/png;base64,AAAA"


def _flight_booking(**overrides) -> FlightBooking:
    values = dict(
        airline="SAS",
        flight_number="SK 910",
        from_city="New York",
        from_code="JFK",
        to_city="Copenhagen",
        to_code="CPH",
        date=date(2026, 12, 18),
        departure_time="18:05",
        arrival_time="07:40",
    )
    values.update(overrides)
    return FlightBooking(**values)


def test_uploaded_flight_is_added_then_replaced(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        added = await coordinator.upload_booking(_flight_booking(), screenshot_ref="data:image/png;base64,AAAA")
        replaced = await coordinator.upload_booking(_flight_booking(confirmation_number="ABC123"))
        return added, replaced

    added, replaced = asyncio.run(scenario())

    assert added.label == "add flight"
    assert replaced.label == "update flight"
    assert len(coordinator.state.flights) == 1
    flight = coordinator.state.flights[0]
    assert flight.confirmation_number == "ABC123"
    assert flight.is_personal is True
    assert len(store.select("flights")) == 1


def test_incomplete_flight_booking_is_rejected(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        await coordinator.upload_booking(_flight_booking(to_code=None))

    with pytest.raises(IncompleteBookingError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.missing == ["to_code"]


def test_restaurant_and_tour_bookings_land_on_matching_day(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        await coordinator.upload_booking(
            RestaurantBooking(name="Geranium", date=date(2026, 12, 19), time="7:00 PM", confirmation_number="G-1", party_size=4)
        )
        await coordinator.upload_booking(
            TourBooking(name="Golden Circle tour", date=date(2026, 12, 22), time="08:30", meeting_point="Harpa")
        )
        return await coordinator.upload_booking(RestaurantBooking(name="Too late", date=date(2027, 3, 1)))

    missing = asyncio.run(scenario())

    assert missing is None
    assert coordinator.notices[-1].level == "warning"
    dinner = _day(coordinator, seeded.market_day).activities[0]
    assert (dinner.name, dinner.category.value, dinner.is_booked) == ("Geranium", "food", True)
    assert dinner.description == "Party of 4"
    tour = _day(coordinator, seeded.golden_circle).activities[0]
    assert tour.description == "Meeting point: Harpa"
    assert tour.address == "Harpa"


def test_hotel_booking_replaces_destination_hotel(store, seeded):
    coordinator = TripCoordinator(TripDataService(store))

    async def scenario():
        await coordinator.load()
        return await coordinator.upload_booking(
            HotelBooking(
                destination="reykjavik",
                name="Hotel Borg",
                check_in=date(2026, 12, 21),
                check_out=date(2026, 12, 28),
            )
        )

    result = asyncio.run(scenario())

    assert result.committed
    assert [(hotel.name, hotel.address) for hotel in coordinator.state.hotels] == [("Hotel Borg", "")]
    assert isinstance(coordinator.state.hotels[0].id, Persisted)


def test_partial_load_keeps_loaded_collections_and_notifies(seeded):
    class NoFlightsStore(RemoteStore):
        def select(self, table, filters=None, **kwargs):
            if table == "flights":
                raise StoreUnavailableError("timeout", table=table)
            return super().select(table, filters, **kwargs)

    coordinator = TripCoordinator(TripDataService(NoFlightsStore()))
    coordinator.state.flights = [
        Flight(
            id=Persisted(value="cached"),
            date=date(2026, 12, 18),
            departure_time="TBD",
            arrival_time="TBD",
            from_city="New York",
            from_code="JFK",
            to_city="Copenhagen",
            to_code="CPH",
        )
    ]

    loaded = asyncio.run(coordinator.load())

    assert loaded.failures.keys() == {"flights"}
    assert len(coordinator.state.days) == 3
    assert [persisted_id(flight) for flight in coordinator.state.flights] == ["cached"]
    assert "flights" in coordinator.notices[0].message
