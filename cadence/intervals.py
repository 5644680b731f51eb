from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True, order=True)
class TimeInterval:
    """A half-open span ``[start, end)`` described by its start and length."""

    start: datetime
    duration_minutes: int

    def __post_init__(self) -> None:
        if int(self.duration_minutes) <= 0:
            raise ValueError("Interval duration must be a positive number of minutes")

    @classmethod
    def between(cls, start: datetime, end: datetime) -> "TimeInterval":
        minutes = int((end - start).total_seconds() // 60)
        return cls(start, minutes)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def as_dict(self) -> dict[str, object]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration": self.duration_minutes,
        }

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M} → {self.end:%H:%M}"


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end


def buffered(interval: TimeInterval, before: int = 0, after: int = 0) -> TimeInterval:
    """Return ``interval`` widened by ``before``/``after`` minutes on each side."""

    if before < 0 or after < 0:
        raise ValueError("Buffer minutes cannot be negative")
    if not before and not after:
        return interval
    return TimeInterval(
        interval.start - timedelta(minutes=before),
        interval.duration_minutes + before + after,
    )
