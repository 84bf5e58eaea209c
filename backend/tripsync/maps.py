from __future__ import annotations

import base64
import html
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from openai import OpenAI, OpenAIError, RateLimitError

from .errors import PermissionDeniedError
from .schemas import ActivityCategory, DailyMap, Day, Destination
from .service import TripDataService

logger = logging.getLogger(__name__)

LANDMARKS = {
    Destination.copenhagen: "colorful Nyhavn houses, the Round Tower, copper spires, bicycles, canal boats",
    Destination.reykjavik: "Hallgrimskirkja church silhouette, volcanic mountains, geothermal steam vents, Icelandic horses",
}

ATMOSPHERE = {
    Destination.copenhagen: "cozy hygge winter evening, warm lantern light, snow dusted cobblestones",
    Destination.reykjavik: "mystical winter landscape, aurora glow in the sky, snow-covered volcanic hills",
}

PLACE_NAMES = {
    Destination.copenhagen: "Copenhagen, Denmark",
    Destination.reykjavik: "Reykjavik, Iceland",
}

POSTER_COLORS = {
    Destination.copenhagen: "#E94E77",
    Destination.reykjavik: "#4A9B9F",
}

# (keywords, illustrated element); matched against lowercase descriptions
FOOD_KEYWORDS = [
    (("pastry", "sourdough"), "fresh pastries"),
    (("smorrebrod", "smørrebrød"), "open-faced sandwiches"),
    (("hot dog",), "hot dogs"),
    (("beer", "craft"), "beer steins"),
    (("wine",), "wine glasses"),
    (("coffee",), "coffee cups"),
    (("market",), "market stalls"),
]

EVENT_KEYWORDS = [
    (("light festival", "light trail"), "glowing light installations"),
    (("jazz",), "jazz instruments"),
    (("northern lights", "aurora"), "aurora borealis"),
    (("geysir", "geyser"), "erupting geyser"),
    (("waterfall",), "dramatic waterfall"),
    (("glacier",), "blue glacier"),
    (("hot spring", "lagoon"), "steaming hot springs"),
]

MAX_PLACES = 5
MAX_MOOD_ITEMS = 6


def _notable_places(day: Day) -> List[str]:
    names = []
    for activity in day.activities:
        lowered = activity.name.lower()
        if "arrive" in lowered or "check-in" in lowered:
            continue
        names.append(activity.name)
    return names[:MAX_PLACES]


def _mood_items(day: Day) -> List[str]:
    found: List[str] = []
    for activity in day.activities:
        text = f"{activity.name} {activity.description}".lower()
        for keywords, item in FOOD_KEYWORDS + EVENT_KEYWORDS:
            if item not in found and any(keyword in text for keyword in keywords):
                found.append(item)
    return found[:MAX_MOOD_ITEMS]


def _time_vibe(day: Day) -> str:
    if any(activity.category == ActivityCategory.nightlife for activity in day.activities):
        return "twilight adventure turning into a magical night scene"
    for activity in day.activities:
        time = (activity.time or "").upper()
        if "AM" in time or time.startswith(("9:", "09:", "10:", "11:")):
            return "bright morning light with the promise of adventure"
    return "golden afternoon exploration"


def build_map_prompt(day: Day) -> str:
    lines = [
        f"Vintage treasure map illustration of a day exploring {PLACE_NAMES[day.destination]}.",
        "STYLE: hand-drawn antique map on sepia parchment with colorful illustrated icons, "
        "a dotted path connecting each stop and a decorative compass rose.",
        f"ELEMENTS: {LANDMARKS[day.destination]}",
    ]
    places = _notable_places(day)
    if places:
        lines.append(f"STOPS: {', '.join(places)}")
    mood = _mood_items(day)
    if mood:
        lines.append(f"DETAILS: {', '.join(mood)}")
    lines.append(f"ATMOSPHERE: {ATMOSPHERE[day.destination]}, {_time_vibe(day)}")
    lines.append("NO TEXT, NO WORDS, NO LABELS.")
    return "\n".join(lines)


def fallback_poster(day: Day) -> str:
    destination = PLACE_NAMES[day.destination].split(",")[0]
    svg = (
        '<svg width="800" height="600" xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="800" height="600" fill="{POSTER_COLORS[day.destination]}"/>'
        '<text x="400" y="250" font-family="Arial, sans-serif" font-size="48" fill="white" '
        f'text-anchor="middle" font-weight="bold">{html.escape(destination)}</text>'
        '<text x="400" y="320" font-family="Arial, sans-serif" font-size="32" fill="white" '
        f'text-anchor="middle" opacity="0.9">{html.escape(day.title)}</text>'
        '<text x="400" y="380" font-family="Arial, sans-serif" font-size="24" fill="white" '
        f'text-anchor="middle" opacity="0.8">{day.date.isoformat()}</text>'
        '<circle cx="400" cy="450" r="60" fill="white" opacity="0.2"/>'
        '<circle cx="300" cy="500" r="40" fill="white" opacity="0.15"/>'
        '<circle cx="500" cy="480" r="50" fill="white" opacity="0.18"/>'
        "</svg>"
    )
    return "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")


class MapGenerator:
    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None) -> None:
        if client is None and os.getenv("OPENAI_API_KEY"):
            client = OpenAI(
                api_key=os.getenv("OPENAI_API_KEY"),
                timeout=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60")),
            )
        self.client = client
        self.model = model or os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")

    def generate(self, day: Day, prompt: str) -> tuple[str, bool]:
        """Return ``(image_url, is_fallback)`` for the day."""
        if self.client is None:
            logger.info("Image generation not configured, using fallback poster")
            return fallback_poster(day), True
        try:
            response = self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size="1024x1024",
                n=1,
                response_format="b64_json",
            )
        except RateLimitError:
            logger.warning("Image generation rate limited, using fallback poster")
            return fallback_poster(day), True
        except OpenAIError as exc:
            logger.error("Image generation failed, using fallback poster: %s", exc)
            return fallback_poster(day), True

        encoded = response.data[0].b64_json if response.data else None
        if not encoded:
            logger.error("Image generation returned no data, using fallback poster")
            return fallback_poster(day), True
        return f"data:image/png;base64,{encoded}", False


@dataclass
class MapResult:
    map: DailyMap
    cached: bool

    @property
    def is_fallback(self) -> bool:
        return self.map.is_fallback


class DailyMapService:
    def __init__(self, trips: TripDataService, generator: MapGenerator) -> None:
        self.trips = trips
        self.generator = generator

    def get_or_generate(self, day_id: str, force: bool = False, requested_by: Optional[str] = None) -> MapResult:
        if force:
            if not requested_by:
                raise PermissionDeniedError("Regenerating a map requires a traveler")
            traveler = self.trips.get_traveler(requested_by)
            if not traveler.can_regenerate_maps:
                raise PermissionDeniedError(f"{traveler.name} cannot regenerate maps")
        else:
            existing = self.trips.get_daily_map(day_id)
            if existing is not None:
                return MapResult(map=existing, cached=True)

        day = self.trips.load_day(day_id)
        prompt = build_map_prompt(day)
        logger.debug("Map prompt for day %s: %s", day_id, prompt)
        image_url, is_fallback = self.generator.generate(day, prompt)
        saved = self.trips.save_daily_map(
            DailyMap(
                day_id=day_id,
                trip_id=self.trips.trip_id(),
                image_url=image_url,
                prompt_used=prompt,
                is_fallback=is_fallback,
                generated_by=requested_by if force else None,
            )
        )
        return MapResult(map=saved, cached=False)
