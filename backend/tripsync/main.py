from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import List

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

load_dotenv()

from . import models  # noqa: F401
from .db import Base, engine as db_engine
from .errors import (
    AlreadyScheduledError,
    DayNotFoundError,
    EntityNotFoundError,
    ExtractionFailedError,
    ExtractionUnavailableError,
    IncompleteBookingError,
    InvalidImageError,
    PartialMoveError,
    PermissionDeniedError,
    TripError,
    TripNotFoundError,
    UnpersistedEntityError,
)
from .extraction import BookingExtractor
from .identity import Persisted, persisted_id
from .maps import DailyMapService, MapGenerator
from .schemas import (
    Activity,
    AvatarRequest,
    Comment,
    CommentRequest,
    Day,
    Destination,
    ExtractBookingRequest,
    Flight,
    FlightBooking,
    Hotel,
    MapRequest,
    MapResponse,
    MoveActivityRequest,
    MoveActivityResponse,
    MustDoItem,
    RestaurantBooking,
    SaveActivitiesRequest,
    SavedPlace,
    ScheduleMustDoRequest,
    ScheduleMustDoResponse,
    TourBooking,
    Traveler,
    TripLoad,
    VoteRequest,
)
from .service import TripDataService
from .store import (
    ConstraintViolationError,
    InvalidRequestError,
    RemoteStore,
    RowNotFoundError,
    StoreError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
DEFAULT_CORS_ORIGIN_REGEX = r"^https://[a-zA-Z0-9-]+\.vercel\.app$"

# first match wins, so subclasses come before their bases
ERROR_STATUS = [
    (RowNotFoundError, 404),
    (ConstraintViolationError, 409),
    (StoreUnavailableError, 503),
    (InvalidRequestError, 422),
    (StoreError, 502),
    (TripNotFoundError, 404),
    (DayNotFoundError, 404),
    (EntityNotFoundError, 404),
    (UnpersistedEntityError, 422),
    (PermissionDeniedError, 403),
    (AlreadyScheduledError, 409),
    (PartialMoveError, 502),
    (ExtractionUnavailableError, 503),
    (ExtractionFailedError, 422),
    (InvalidImageError, 400),
    (IncompleteBookingError, 422),
    (TripError, 400),
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "startup_cors_config %s",
        {
            "allow_origins": CORS_ORIGINS,
            "allow_origin_regex": CORS_ORIGIN_REGEX,
        },
    )
    Base.metadata.create_all(bind=db_engine)
    yield


def _load_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw:
        origins = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return DEFAULT_CORS_ORIGINS.copy()


def _load_cors_origin_regex() -> str | None:
    raw = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip()
    if raw:
        return raw
    return DEFAULT_CORS_ORIGIN_REGEX


def _load_workers() -> int:
    try:
        return max(1, int(os.getenv("LOAD_WORKERS", "6")))
    except ValueError:
        return 6


CORS_ORIGINS = _load_cors_origins()
CORS_ORIGIN_REGEX = _load_cors_origin_regex()

app = FastAPI(title="Shared Trip Itinerary API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = RemoteStore()
trip_service = TripDataService(store, load_workers=_load_workers())
booking_extractor = BookingExtractor()
map_service = DailyMapService(trip_service, MapGenerator())


def _status_for(exc: Exception) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _handle_domain_error(_: Request, exc: Exception) -> JSONResponse:
    status_code = _status_for(exc)
    if isinstance(exc, ExtractionUnavailableError) and exc.rate_limited:
        status_code = 429
    if status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc)
    else:
        logger.info("%s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


app.add_exception_handler(TripError, _handle_domain_error)
app.add_exception_handler(StoreError, _handle_domain_error)


@app.get("/trip", response_model=TripLoad)
def get_trip():
    return trip_service.load_trip()


@app.get("/days/{day_id}", response_model=Day)
def get_day(day_id: str):
    return trip_service.load_day(day_id)


@app.put("/days/{day_id}/activities", response_model=List[Activity])
def save_day_activities(day_id: str, payload: SaveActivitiesRequest):
    return trip_service.save_day_activities(day_id, payload.activities)


@app.post("/days/{day_id}/activities/{activity_id}/move", response_model=MoveActivityResponse)
def move_activity(day_id: str, activity_id: str, payload: MoveActivityRequest):
    activity = payload.activity
    if activity.id is None:
        activity = activity.model_copy(update={"id": Persisted(value=activity_id)})
    elif persisted_id(activity) != activity_id:
        raise HTTPException(status_code=422, detail="Activity id does not match the path")
    source, target = trip_service.move_activity(activity, day_id, payload.target_day_id)
    return MoveActivityResponse(source=source, target=target)


@app.post("/flights", response_model=Flight)
def add_flight(payload: Flight):
    return trip_service.add_flight(payload)


@app.put("/flights/{flight_id}", response_model=Flight)
def update_flight(flight_id: str, payload: Flight):
    return trip_service.update_flight(payload.model_copy(update={"id": Persisted(value=flight_id)}))


@app.delete("/flights/{flight_id}")
def delete_flight(flight_id: str):
    trip_service.delete_flight(flight_id)
    return {"deleted": flight_id}


@app.put("/hotels/{destination}", response_model=Hotel)
def update_hotel(destination: Destination, payload: Hotel):
    return trip_service.update_hotel(destination, payload)


@app.get("/must-dos/{must_do_id}", response_model=MustDoItem)
def get_must_do(must_do_id: str):
    return trip_service.get_must_do(must_do_id)


@app.post("/must-dos", response_model=MustDoItem)
def add_must_do(payload: MustDoItem):
    return trip_service.add_must_do(payload)


@app.put("/must-dos/{must_do_id}", response_model=MustDoItem)
def update_must_do(must_do_id: str, payload: MustDoItem):
    return trip_service.update_must_do(payload.model_copy(update={"id": Persisted(value=must_do_id)}))


@app.delete("/must-dos/{must_do_id}")
def delete_must_do(must_do_id: str, traveler_id: str | None = Header(default=None, alias="X-Traveler-Id")):
    item = trip_service.get_must_do(must_do_id)
    if not traveler_id:
        raise HTTPException(status_code=401, detail="Missing X-Traveler-Id header")
    if item.proposed_by != traveler_id:
        raise PermissionDeniedError(f"Only the traveler who proposed '{item.name}' can delete it")
    trip_service.delete_must_do(must_do_id)
    return {"deleted": must_do_id}


@app.post("/must-dos/{must_do_id}/vote", response_model=MustDoItem)
def vote_must_do(must_do_id: str, payload: VoteRequest):
    return trip_service.toggle_vote(must_do_id, payload.traveler_id)


@app.post("/must-dos/{must_do_id}/comments", response_model=Comment)
def add_comment(must_do_id: str, payload: CommentRequest):
    return trip_service.add_comment(must_do_id, payload.traveler_id, payload.body)


@app.post("/must-dos/{must_do_id}/schedule", response_model=ScheduleMustDoResponse)
def schedule_must_do(must_do_id: str, payload: ScheduleMustDoRequest):
    must_do, activities = trip_service.add_must_do_to_itinerary(must_do_id, payload.day_date)
    return ScheduleMustDoResponse(must_do=must_do, activities=activities)


@app.post("/saved-places", response_model=SavedPlace)
def add_saved_place(payload: SavedPlace):
    return trip_service.add_saved_place(payload)


@app.delete("/saved-places/{place_id}")
def delete_saved_place(place_id: str):
    trip_service.delete_saved_place(place_id)
    return {"deleted": place_id}


@app.put("/travelers/{traveler_id}/avatar", response_model=Traveler)
def update_traveler_avatar(traveler_id: str, payload: AvatarRequest):
    return trip_service.update_traveler_avatar(traveler_id, payload.avatar)


@app.post("/extract-booking", response_model=FlightBooking | RestaurantBooking | TourBooking)
async def extract_booking(payload: ExtractBookingRequest):
    return await booking_extractor.extract(payload.image_url)


@app.post("/days/{day_id}/map", response_model=MapResponse)
def generate_day_map(
    day_id: str,
    payload: MapRequest,
    traveler_id: str | None = Header(default=None, alias="X-Traveler-Id"),
):
    result = map_service.get_or_generate(day_id, force=payload.force_regenerate, requested_by=traveler_id)
    return MapResponse(map=result.map, cached=result.cached, is_fallback=result.is_fallback)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "extraction_configured": booking_extractor.configured,
        "cors_allow_origins": CORS_ORIGINS,
        "cors_allow_origin_regex": CORS_ORIGIN_REGEX,
    }
