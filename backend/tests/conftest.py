from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace

import pytest


DB_PATH = Path(__file__).resolve().parent / "test_itinerary.db"
os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ.pop("OPENAI_API_KEY", None)

from tripsync.db import Base, engine
from tripsync.store import RemoteStore


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def store() -> RemoteStore:
    return RemoteStore()


@pytest.fixture
def seeded(store: RemoteStore) -> SimpleNamespace:
    trip = store.insert("trips", [{"name": "Nordic Winter", "start_date": "2026-12-18", "end_date": "2026-12-28"}])[0]
    travelers = store.insert(
        "travelers",
        [
            {"trip_id": trip["id"], "name": "Ava", "color": "#E94E77", "can_regenerate_maps": True},
            {"trip_id": trip["id"], "name": "Ben", "color": "#4A9B9F"},
        ],
    )
    days = store.insert(
        "days",
        [
            {"trip_id": trip["id"], "date": "2026-12-18", "day_number": 0, "destination": "copenhagen", "title": "Travel day"},
            {
                "trip_id": trip["id"],
                "date": "2026-12-19",
                "day_number": 1,
                "destination": "copenhagen",
                "title": "Nyhavn and markets",
                "day_of_week": "Saturday",
            },
            {"trip_id": trip["id"], "date": "2026-12-22", "day_number": 4, "destination": "reykjavik", "title": "Golden Circle"},
        ],
    )
    return SimpleNamespace(
        trip_id=trip["id"],
        ava=travelers[0]["id"],
        ben=travelers[1]["id"],
        travel_day=days[0]["id"],
        market_day=days[1]["id"],
        golden_circle=days[2]["id"],
    )
