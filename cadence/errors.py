"""Error conditions raised by the scheduling engine.

Finding a conflict is never an error on its own: the detector returns conflicts
as data. These exceptions cover structural input problems, storage failures and
the cases where a caller explicitly asked for conflicts to be fatal.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .conflicts import ScheduleConflict


class SchedulingError(Exception):
    status_code = 400

    def to_payload(self) -> dict[str, object]:
        return {"error": str(self)}


class InvalidPattern(SchedulingError):
    """The weekly pattern is empty or its weekday/time data is malformed."""


class ClassNotFound(SchedulingError):
    status_code = 404

    def __init__(self, class_id: int) -> None:
        super().__init__(f"Class {class_id} not found")
        self.class_id = class_id


class SchedulingConflict(SchedulingError):
    status_code = 409

    def __init__(self, conflicts: Iterable["ScheduleConflict"], message: str | None = None) -> None:
        self.conflicts = list(conflicts)
        if message is None:
            if self.conflicts:
                message = f"Scheduling conflict: {self.conflicts[0].reason}"
                if len(self.conflicts) > 1:
                    message += f" (+{len(self.conflicts) - 1} more)"
            else:
                message = "Scheduling conflict"
        super().__init__(message)

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["conflicts"] = [conflict.as_dict() for conflict in self.conflicts]
        return payload


class NoAvailableSlot(SchedulingError):
    status_code = 404


class PersistenceFailure(SchedulingError):
    status_code = 500

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original
