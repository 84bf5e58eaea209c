from __future__ import annotations

import re
from typing import Iterable, List, Optional

from .schemas import Activity

UNSCHEDULED = 24 * 60 * 7

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)


def parse_time_to_minutes(value: Optional[str]) -> int:
    """Minutes since midnight for ``HH:MM`` or ``H:MM AM/PM``.

    Anything else, including a missing time, maps to ``UNSCHEDULED`` so it
    sorts after every real time.
    """
    if not value:
        return UNSCHEDULED
    text = value.strip()

    match = _TIME_24H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours < 24 and minutes < 60:
            return hours * 60 + minutes
        return UNSCHEDULED

    match = _TIME_12H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if not 1 <= hours <= 12 or minutes >= 60:
            return UNSCHEDULED
        period = match.group(3).upper()
        if period == "PM" and hours != 12:
            hours += 12
        if period == "AM" and hours == 12:
            hours = 0
        return hours * 60 + minutes

    return UNSCHEDULED


def sort_activities(activities: Iterable[Activity]) -> List[Activity]:
    return sorted(activities, key=lambda activity: parse_time_to_minutes(activity.time))
