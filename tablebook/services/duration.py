from __future__ import annotations

from typing import Any, Iterable

DEFAULT_DURATION_MINUTES = 120


def _first_int(rule: dict, *keys: str) -> int | None:
    for key in keys:
        value = rule.get(key)
        if value is None or value == "":
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return None


def resolve_duration(rules: Iterable[Any] | None, party_size: int, default: int = DEFAULT_DURATION_MINUTES) -> int:
    """Seating duration for a party: the first rule whose inclusive guest range contains it.

    Rules look like {"minGuests": 1, "maxGuests": 4, "durationMinutes": 90}; the older
    "duration" key and snake_case spellings are accepted. Malformed rules are skipped.
    """
    for rule in rules or []:
        if not isinstance(rule, dict):
            continue
        lo = _first_int(rule, "minGuests", "min_guests")
        hi = _first_int(rule, "maxGuests", "max_guests")
        minutes = _first_int(rule, "durationMinutes", "duration_minutes", "duration")
        if lo is None or hi is None or minutes is None or minutes <= 0:
            continue
        if lo <= party_size <= hi:
            return minutes
    return default
