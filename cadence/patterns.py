from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import IntEnum
from typing import Iterable, Iterator, Mapping

from .errors import InvalidPattern
from .intervals import TimeInterval


class Weekday(IntEnum):
    """Day of week, numbered like :meth:`datetime.date.weekday`."""

    MON = 0
    TUE = 1
    WED = 2
    THU = 3
    FRI = 4
    SAT = 5
    SUN = 6

    @classmethod
    def parse(cls, raw: object) -> "Weekday":
        if isinstance(raw, Weekday):
            return raw
        if isinstance(raw, int) and not isinstance(raw, bool):
            try:
                return cls(raw)
            except ValueError:
                raise InvalidPattern(f"Unknown weekday: {raw!r}") from None
        token = str(raw or "").strip().upper()[:3]
        try:
            return cls[token]
        except KeyError:
            raise InvalidPattern(f"Unknown weekday: {raw!r}") from None


def parse_time_of_day(raw: object) -> time:
    if isinstance(raw, time):
        return raw.replace(microsecond=0)
    text = str(raw or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise InvalidPattern(f"Invalid time of day: {raw!r}")


@dataclass(frozen=True)
class WeeklyPattern:
    """Recurring (weekday, time-of-day) slots of a class.

    ``active_days`` is stored next to the slots in the class payload; the two
    must reference exactly the same weekdays.
    """

    slots: frozenset[tuple[Weekday, time]] = field(default_factory=frozenset)
    active_days: frozenset[Weekday] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        referenced = {day for day, _ in self.slots}
        if referenced != set(self.active_days):
            missing_times = sorted(set(self.active_days) - referenced)
            undeclared = sorted(referenced - set(self.active_days))
            details: list[str] = []
            if missing_times:
                details.append("no time for " + ", ".join(day.name for day in missing_times))
            if undeclared:
                details.append("times for inactive " + ", ".join(day.name for day in undeclared))
            raise InvalidPattern("Pattern days and times disagree: " + "; ".join(details))

    @classmethod
    def from_slots(cls, slots: Iterable[tuple[object, object]]) -> "WeeklyPattern":
        parsed = frozenset(
            (Weekday.parse(day), parse_time_of_day(moment)) for day, moment in slots
        )
        return cls(parsed, frozenset(day for day, _ in parsed))

    @classmethod
    def from_payload(cls, payload: Mapping[str, object] | str | None) -> "WeeklyPattern":
        """Parse the stored ``{"days": [...], "times": [{"day", "time"}]}`` shape."""

        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                raise InvalidPattern("Schedule is not valid JSON") from None
        if not isinstance(payload, Mapping):
            raise InvalidPattern("Schedule must be an object with days and times")
        raw_days = payload.get("days") or []
        raw_times = payload.get("times") or []
        if isinstance(raw_days, str):
            raw_days = [raw_days]
        if not isinstance(raw_days, list) or not isinstance(raw_times, list):
            raise InvalidPattern("Schedule days and times must be lists")
        if not raw_days or not raw_times:
            raise InvalidPattern("Select at least one day and one time slot")

        slots: set[tuple[Weekday, time]] = set()
        for entry in raw_times:
            if not isinstance(entry, Mapping):
                raise InvalidPattern(f"Invalid time slot: {entry!r}")
            slots.add((Weekday.parse(entry.get("day")), parse_time_of_day(entry.get("time"))))
        return cls(frozenset(slots), frozenset(Weekday.parse(day) for day in raw_days))

    def to_payload(self) -> dict[str, object]:
        return {
            "days": [day.name for day in sorted(self.active_days)],
            "times": [
                {"day": day.name, "time": moment.strftime("%H:%M")}
                for day, moment in sorted(self.slots)
            ],
        }

    def times_for(self, weekday: int) -> list[time]:
        return sorted(moment for day, moment in self.slots if day == weekday)

    def __bool__(self) -> bool:
        return bool(self.slots)


def daterange(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def expand_pattern(
    start_date: date,
    end_date: date,
    pattern: WeeklyPattern,
    duration_minutes: int,
    *,
    now: datetime | None = None,
    include_past: bool = False,
) -> Iterator[TimeInterval]:
    """Yield the concrete session intervals of ``pattern`` between two dates.

    The range is inclusive and the output is chronological. Candidates starting
    before ``now`` are dropped unless ``include_past`` is set.
    """

    if not pattern or start_date > end_date:
        return
    times_by_day = {day: pattern.times_for(day) for day in Weekday}
    for day in daterange(start_date, end_date):
        for moment in times_by_day[day.weekday()]:
            start = datetime.combine(day, moment)
            if not include_past and now is not None and start < now:
                continue
            yield TimeInterval(start, duration_minutes)
