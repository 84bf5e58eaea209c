from __future__ import annotations

import asyncio
from datetime import date
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, RateLimitError

from tripsync.errors import ExtractionFailedError, ExtractionUnavailableError, InvalidImageError
from tripsync.extraction import (
    BookingExtractor,
    UploadOutcome,
    UploadSession,
    extract_json_object,
    parse_booking,
    parse_data_url,
)
from tripsync.schemas import FlightBooking, RestaurantBooking, TourBooking

IMAGE = "data:image/png;base64,iVBORw0KGgo="
OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class FakeCompletions:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


def _extractor(reply=None, error=None) -> BookingExtractor:
    completions = FakeCompletions(reply=reply, error=error)
    return BookingExtractor(client=SimpleNamespace(chat=SimpleNamespace(completions=completions)), model="test-vision")


def test_parse_data_url_accepts_base64_images_only():
    assert parse_data_url(IMAGE) == ("image/png", "iVBORw0KGgo=")
    with pytest.raises(InvalidImageError):
        parse_data_url("https://example.com/booking.png")
    with pytest.raises(InvalidImageError):
        parse_data_url("data:image/png;base64,not base64!")


def test_extract_json_object_ignores_fences_and_prose():
    reply = 'Here is the booking:\n```json\n{"type": "tour", "name": "Golden Circle"}\n```\nLet me know!'
    assert extract_json_object(reply) == {"type": "tour", "name": "Golden Circle"}


def test_extract_json_object_matches_braces_outside_strings():
    reply = 'Result {"type": "restaurant", "name": "Cafe {Brace}", "notes": "say \\"}\\" twice"} trailing {"x": 1}'
    assert extract_json_object(reply) == {
        "type": "restaurant",
        "name": "Cafe {Brace}",
        "notes": 'say "}" twice',
    }


def test_extract_json_object_skips_unparseable_spans():
    assert extract_json_object("{not json} then {\"type\": \"flight\"}") == {"type": "flight"}


def test_extract_json_object_without_object_fails():
    with pytest.raises(ExtractionFailedError):
        extract_json_object("I could not read this screenshot.")
    with pytest.raises(ExtractionFailedError):
        extract_json_object('{"type": "flight"')


def test_parse_booking_validates_shape():
    booking = parse_booking(
        '{"type": "flight", "flightNumber": "FI 205", "fromCode": "CPH", "toCode": "KEF", "departureDate": "2026-12-21"}'
    )
    assert isinstance(booking, FlightBooking)
    assert booking.flight_number == "FI 205"
    assert booking.date == date(2026, 12, 21)

    with pytest.raises(ExtractionFailedError):
        parse_booking('{"type": "cruise", "name": "Fjord"}')
    with pytest.raises(ExtractionFailedError):
        parse_booking('{"type": "restaurant", "date": "tomorrow"}')


def test_extractor_sends_image_and_parses_reply():
    extractor = _extractor(reply='```json\n{"type": "restaurant", "name": "Dill", "partySize": 4}\n```')

    booking = asyncio.run(extractor.extract(IMAGE))

    assert isinstance(booking, RestaurantBooking)
    assert booking.party_size == 4
    call = extractor.client.chat.completions.calls[0]
    assert call["model"] == "test-vision"
    assert call["messages"][0]["content"][1]["image_url"]["url"] == IMAGE


def test_unconfigured_extractor_is_unavailable(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    extractor = BookingExtractor()

    assert not extractor.configured
    with pytest.raises(ExtractionUnavailableError):
        asyncio.run(extractor.extract(IMAGE))


def test_provider_errors_are_unavailable_and_rate_limits_flagged():
    rate_limited = RateLimitError("slow down", response=httpx.Response(429, request=OPENAI_REQUEST), body=None)
    with pytest.raises(ExtractionUnavailableError) as excinfo:
        asyncio.run(_extractor(error=rate_limited).extract(IMAGE))
    assert excinfo.value.rate_limited is True

    with pytest.raises(ExtractionUnavailableError) as excinfo:
        asyncio.run(_extractor(error=APIConnectionError(request=OPENAI_REQUEST)).extract(IMAGE))
    assert excinfo.value.rate_limited is False


def test_empty_reply_is_extraction_failure():
    with pytest.raises(ExtractionFailedError):
        asyncio.run(_extractor(reply="   ").extract(IMAGE))


class ScriptedExtractor:
    def __init__(self):
        self.started = []

    async def extract(self, image_url):
        self.started.append(image_url)
        if image_url == "slow":
            await asyncio.sleep(30)
        if image_url == "garbled":
            raise ExtractionFailedError("No JSON object found")
        return TourBooking(name=image_url)


def test_new_upload_supersedes_pending_extraction():
    extractor = ScriptedExtractor()
    session = UploadSession(extractor)

    async def scenario():
        first = asyncio.create_task(session.submit("slow"))
        await asyncio.sleep(0.01)
        second = await session.submit("fast")
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.outcome == UploadOutcome.superseded
    assert second.outcome == UploadOutcome.extracted
    assert second.booking.name == "fast"
    assert not session.pending


def test_failed_extraction_falls_back_to_blank_manual_form():
    session = UploadSession(ScriptedExtractor(), default_type="restaurant")

    result = asyncio.run(session.submit("garbled"))

    assert result.outcome == UploadOutcome.manual_entry
    assert result.booking == RestaurantBooking()
    assert "No JSON" in result.message


def test_close_cancels_pending_extraction():
    session = UploadSession(ScriptedExtractor())

    async def scenario():
        pending = asyncio.create_task(session.submit("slow"))
        await asyncio.sleep(0.01)
        await session.close()
        return await pending

    result = asyncio.run(scenario())

    assert result.outcome == UploadOutcome.superseded
    assert not session.pending
