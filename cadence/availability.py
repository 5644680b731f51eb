from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Sequence

from .conflicts import ConflictDetector, Party
from .errors import NoAvailableSlot
from .intervals import TimeInterval
from .patterns import Weekday, parse_time_of_day

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_HORIZON_DAYS = 180


@dataclass(frozen=True, order=True)
class AvailabilityWindow:
    """A weekly window during which a party accepts sessions."""

    weekday: int
    start_time: time
    end_time: time

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"Weekday out of range: {self.weekday}")
        if self.end_time <= self.start_time:
            raise ValueError("Availability window must end after it starts")

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "AvailabilityWindow":
        """Build a window from ``{"day"|"weekday", "start", "end"}`` style data."""

        day = payload.get("weekday", payload.get("day"))
        start = payload.get("start_time", payload.get("start"))
        end = payload.get("end_time", payload.get("end"))
        return cls(int(Weekday.parse(day)), parse_time_of_day(start), parse_time_of_day(end))

    @classmethod
    def from_rows(cls, rows: Iterable[object]) -> List["AvailabilityWindow"]:
        return sorted(cls(row.weekday, row.start_time, row.end_time) for row in rows)

    def slot_on(self, day: date, duration_minutes: int) -> TimeInterval | None:
        """Return the slot starting at the window start, or ``None`` if it does not fit."""

        candidate = TimeInterval(datetime.combine(day, self.start_time), duration_minutes)
        if candidate.end > datetime.combine(day, self.end_time):
            return None
        return candidate


def suggest_slots(
    detector: ConflictDetector,
    parties: Party | Sequence[Party],
    preferred_start: datetime,
    duration_minutes: int,
    max_count: int,
    availability: Iterable[AvailabilityWindow],
    *,
    buffer_before: int = 0,
    buffer_after: int = 0,
    horizon_days: int = DEFAULT_SEARCH_HORIZON_DAYS,
) -> List[TimeInterval]:
    """Search forward for up to ``max_count`` conflict-free slots.

    Days are walked one at a time starting on ``preferred_start``'s date. Every
    availability window of the day proposes a slot at its start time; slots
    that begin before ``preferred_start``, overflow their window, or clash with
    any of ``parties`` are skipped. The walk stops after ``horizon_days`` days.

    Raises :class:`NoAvailableSlot` when the horizon is exhausted without a
    single slot. Fewer than ``max_count`` slots are returned as-is.
    """

    if max_count <= 0:
        return []
    if horizon_days <= 0:
        raise ValueError("Search horizon must be at least one day")
    if isinstance(parties, Party):
        parties = [parties]

    windows_by_day: dict[int, list[AvailabilityWindow]] = {}
    for window in sorted(set(availability)):
        windows_by_day.setdefault(window.weekday, []).append(window)
    if not windows_by_day:
        raise NoAvailableSlot("No availability windows declared")

    suggestions: List[TimeInterval] = []
    first_day = preferred_start.date()
    for offset in range(horizon_days):
        day = first_day + timedelta(days=offset)
        for window in windows_by_day.get(day.weekday(), []):
            candidate = window.slot_on(day, duration_minutes)
            if candidate is None or candidate.start < preferred_start:
                continue
            # Windows sharing a start time propose the same slot.
            if candidate in suggestions:
                continue
            conflicts = detector.find_conflicts_for_parties(
                parties,
                candidate,
                buffer_before=buffer_before,
                buffer_after=buffer_after,
            )
            if conflicts:
                continue
            suggestions.append(candidate)
            if len(suggestions) >= max_count:
                return suggestions

    if not suggestions:
        logger.info(
            "No free slot for %s within %s day(s) of %s",
            ", ".join(str(party) for party in parties),
            horizon_days,
            preferred_start.isoformat(),
        )
        raise NoAvailableSlot(
            f"No available slot within {horizon_days} day(s) of {preferred_start:%Y-%m-%d %H:%M}"
        )
    return suggestions
