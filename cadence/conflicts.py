from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from .intervals import TimeInterval, buffered
from .models import Session, TutoringClass
from .repository import SessionRepository


class PartyKind(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"

    @classmethod
    def parse(cls, raw: object) -> "PartyKind":
        if isinstance(raw, PartyKind):
            return raw
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown party kind: {raw!r}") from None


@dataclass(frozen=True)
class Party:
    kind: PartyKind
    id: int

    @classmethod
    def teacher(cls, teacher_id: int) -> "Party":
        return cls(PartyKind.TEACHER, teacher_id)

    @classmethod
    def student(cls, student_id: int) -> "Party":
        return cls(PartyKind.STUDENT, student_id)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.id}"


@dataclass(frozen=True)
class ScheduleConflict:
    party: Party
    reason: str
    conflicting_session_id: int | None
    conflicting_interval: TimeInterval

    def as_dict(self) -> dict[str, object]:
        return {
            "party": self.party.kind.value,
            "party_id": self.party.id,
            "reason": self.reason,
            "conflicting_session_id": self.conflicting_session_id,
            "conflicting_interval": self.conflicting_interval.as_dict(),
        }


def _describe(party: Party, session: Session) -> str:
    owner = "Teacher" if party.kind is PartyKind.TEACHER else "Student"
    return (
        f"{owner} {party.id} has another session scheduled "
        f"({session.start_time:%Y-%m-%d %H:%M} → {session.end_time:%H:%M}, class {session.class_id})"
    )


class ConflictDetector:
    """Find committed or tentatively reserved sessions clashing with a slot.

    Both sides are compared with their buffers applied: the proposed slot with
    the buffers passed by the caller, existing sessions with the buffers they
    were created with. Cancelled sessions never block.
    """

    def __init__(self, sessions: SessionRepository | None = None) -> None:
        self.sessions = sessions or SessionRepository()

    def find_conflicts(
        self,
        party: Party,
        proposed: TimeInterval,
        *,
        buffer_before: int = 0,
        buffer_after: int = 0,
        exclude_session_id: int | None = None,
    ) -> List[ScheduleConflict]:
        blocked = buffered(proposed, buffer_before, buffer_after)
        if party.kind is PartyKind.TEACHER:
            candidates = self.sessions.blocking_for_teacher(
                party.id, blocked.start, blocked.end, exclude_session_id=exclude_session_id
            )
        else:
            candidates = self.sessions.blocking_for_student(
                party.id, blocked.start, blocked.end, exclude_session_id=exclude_session_id
            )
        return [
            ScheduleConflict(
                party=party,
                reason=_describe(party, session),
                conflicting_session_id=session.id,
                conflicting_interval=session.interval,
            )
            for session in candidates
        ]

    def find_conflicts_for_parties(
        self,
        parties: Iterable[Party],
        proposed: TimeInterval,
        *,
        buffer_before: int = 0,
        buffer_after: int = 0,
        exclude_session_id: int | None = None,
    ) -> List[ScheduleConflict]:
        conflicts: List[ScheduleConflict] = []
        for party in parties:
            conflicts.extend(
                self.find_conflicts(
                    party,
                    proposed,
                    buffer_before=buffer_before,
                    buffer_after=buffer_after,
                    exclude_session_id=exclude_session_id,
                )
            )
        return conflicts

    def check_class(
        self,
        tutoring_class: TutoringClass,
        proposed: TimeInterval,
        *,
        buffer_before: int = 0,
        buffer_after: int = 0,
        exclude_session_id: int | None = None,
    ) -> List[ScheduleConflict]:
        """Check the teacher and every actively enrolled student of a class."""

        return self.find_conflicts_for_parties(
            class_parties(tutoring_class),
            proposed,
            buffer_before=buffer_before,
            buffer_after=buffer_after,
            exclude_session_id=exclude_session_id,
        )


def class_parties(tutoring_class: TutoringClass) -> List[Party]:
    parties = [Party.teacher(tutoring_class.teacher_id)]
    parties.extend(Party.student(student_id) for student_id in tutoring_class.active_student_ids)
    return parties
