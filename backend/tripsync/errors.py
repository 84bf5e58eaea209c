from __future__ import annotations


class TripError(Exception):
    """Base class for itinerary domain failures."""


class TripNotFoundError(TripError):
    pass


class DayNotFoundError(TripError):
    pass


class EntityNotFoundError(TripError):
    pass


class UnpersistedEntityError(TripError):
    """Raised when an operation needs a server-assigned id the entity does not have yet."""


class AlreadyScheduledError(TripError):
    pass


class PermissionDeniedError(TripError):
    pass


class PartialMoveError(TripError):
    """The target day failed to save and the source day could not be restored."""

    def __init__(self, message: str, source_day_id: str, target_day_id: str) -> None:
        super().__init__(message)
        self.source_day_id = source_day_id
        self.target_day_id = target_day_id


class ExtractionError(TripError):
    pass


class ExtractionUnavailableError(ExtractionError):
    def __init__(self, message: str, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited


class ExtractionFailedError(ExtractionError):
    pass


class InvalidImageError(ExtractionError):
    pass


class IncompleteBookingError(TripError):
    def __init__(self, booking_type: str, missing: list[str]) -> None:
        super().__init__(f"{booking_type} booking is missing {', '.join(missing)}")
        self.missing = missing
