from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from openai import AsyncOpenAI, OpenAIError, RateLimitError
from pydantic import TypeAdapter, ValidationError

from .errors import ExtractionError, ExtractionFailedError, ExtractionUnavailableError, InvalidImageError
from .schemas import ExtractedBooking, FlightBooking, RestaurantBooking, TourBooking

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You extract booking details from screenshots.

Return ONLY one JSON object, with no markdown, in one of these shapes:

Flight: {"type": "flight", "airline": "...", "flightNumber": "...", "fromCity": "...", "fromCode": "IATA",
 "toCity": "...", "toCode": "IATA", "date": "YYYY-MM-DD", "departureTime": "HH:MM", "arrivalTime": "HH:MM",
 "confirmationNumber": "..."}
Restaurant: {"type": "restaurant", "name": "...", "date": "YYYY-MM-DD", "time": "HH:MM", "address": "...",
 "confirmationNumber": "...", "partySize": 2}
Tour: {"type": "tour", "name": "...", "date": "YYYY-MM-DD", "time": "HH:MM", "address": "...",
 "meetingPoint": "...", "confirmationNumber": "...", "duration": "..."}

Omit any field that is not visible in the image."""

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)
_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_booking_adapter = TypeAdapter(ExtractedBooking)

BookingForm = Union[FlightBooking, RestaurantBooking, TourBooking]
BLANK_FORMS = {"flight": FlightBooking, "restaurant": RestaurantBooking, "tour": TourBooking}


def parse_data_url(value: str) -> tuple[str, str]:
    match = _DATA_URL.match((value or "").strip())
    if not match:
        raise InvalidImageError("Image must be a base64 data URL")
    mime_type, payload = match.group(1), match.group(2)
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image data is not valid base64") from exc
    return mime_type, payload


def _closing_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """First balanced ``{...}`` in a model reply that parses as a JSON object.

    Code fences and surrounding prose are ignored; braces inside string
    literals do not count towards the balance.
    """
    cleaned = _FENCE.sub("", text or "")
    start = cleaned.find("{")
    while start != -1:
        end = _closing_brace(cleaned, start)
        if end is None:
            break
        try:
            value = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = cleaned.find("{", start + 1)
    raise ExtractionFailedError("No JSON object found in the extraction response")


def parse_booking(text: str) -> BookingForm:
    data = extract_json_object(text)
    if "date" not in data and "departureDate" in data:
        data["date"] = data.pop("departureDate")
    try:
        return _booking_adapter.validate_python(data)
    except ValidationError as exc:
        raise ExtractionFailedError(f"Extracted data is not a flight, restaurant or tour booking: {exc.error_count()} errors") from exc


def blank_form(booking_type: str = "flight") -> BookingForm:
    return BLANK_FORMS[booking_type]()


class BookingExtractor:
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None) -> None:
        if client is None and os.getenv("OPENAI_API_KEY"):
            client = AsyncOpenAI(
                api_key=os.getenv("OPENAI_API_KEY"),
                timeout=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60")),
            )
        self.client = client
        self.model = model or os.getenv("OPENAI_VISION_MODEL", "gpt-4o-mini")

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def extract(self, image_url: str) -> BookingForm:
        if self.client is None:
            raise ExtractionUnavailableError("AI extraction not configured. Please enter booking details manually.")
        mime_type, payload = parse_data_url(image_url)
        logger.info("Extracting booking from %s image (%d base64 chars)", mime_type, len(payload))

        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {"type": "image_url", "image_url": {"url": image_url}},
                        ],
                    }
                ],
                temperature=0.2,
                max_tokens=1024,
            )
        except RateLimitError as exc:
            logger.warning("Booking extraction rate limited: %s", exc)
            raise ExtractionUnavailableError(
                "AI service is temporarily busy. Try again in a minute or enter details manually.",
                rate_limited=True,
            ) from exc
        except OpenAIError as exc:
            logger.error("Booking extraction failed: %s", exc)
            raise ExtractionUnavailableError("Failed to reach the extraction service") from exc

        content = (completion.choices[0].message.content or "").strip()
        if not content:
            raise ExtractionFailedError("Empty response from the extraction service")
        booking = parse_booking(content)
        logger.info("Extracted %s booking", booking.type)
        return booking


class UploadOutcome(str, Enum):
    extracted = "extracted"
    manual_entry = "manual_entry"
    superseded = "superseded"


@dataclass
class UploadResult:
    outcome: UploadOutcome
    booking: Optional[BookingForm] = None
    message: Optional[str] = None


class UploadSession:
    """One upload dialog: at most one extraction in flight.

    Submitting a new image cancels the extraction still running for the
    previous one, which then resolves as ``superseded``. Closing the session
    cancels whatever is pending.
    """

    def __init__(self, extractor: BookingExtractor, default_type: str = "flight") -> None:
        self.extractor = extractor
        self.default_type = default_type
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def submit(self, image_url: str) -> UploadResult:
        if self.pending:
            logger.debug("Cancelling superseded booking extraction")
            self._task.cancel()

        task = asyncio.create_task(self.extractor.extract(image_url))
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._task is task and task.done():
                self._task = None

        if task.cancelled():
            return UploadResult(outcome=UploadOutcome.superseded)
        error = task.exception()
        if isinstance(error, ExtractionError):
            return UploadResult(
                outcome=UploadOutcome.manual_entry,
                booking=blank_form(self.default_type),
                message=str(error),
            )
        if error is not None:
            raise error
        return UploadResult(outcome=UploadOutcome.extracted, booking=task.result())

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
