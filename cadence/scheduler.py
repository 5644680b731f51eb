from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable, List, Sequence

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from . import db
from .availability import (
    DEFAULT_SEARCH_HORIZON_DAYS,
    AvailabilityWindow,
    suggest_slots,
)
from .conflicts import ConflictDetector, Party, PartyKind, ScheduleConflict, class_parties
from .errors import PersistenceFailure, SchedulingConflict
from .intervals import TimeInterval
from .models import GenerationLog, Session, TutoringClass
from .patterns import WeeklyPattern, expand_pattern
from .repository import AvailabilityRepository, ClassRepository, SessionRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Buffer = int | tuple[int, int] | None


class MaterializePolicy(str, Enum):
    STRICT = "strict"
    BEST_EFFORT = "best-effort"

    @classmethod
    def parse(cls, raw: object) -> "MaterializePolicy":
        if isinstance(raw, MaterializePolicy):
            return raw
        token = str(raw or "").strip().lower().replace("_", "-")
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown scheduling policy: {raw!r}") from None


@dataclass
class SkippedCandidate:
    candidate: TimeInterval
    conflicts: List[ScheduleConflict]

    def as_dict(self) -> dict[str, object]:
        return {
            "candidate": self.candidate.as_dict(),
            "conflicts": [conflict.as_dict() for conflict in self.conflicts],
        }


@dataclass
class MaterializeResult:
    created: List[Session] = field(default_factory=list)
    skipped: List[SkippedCandidate] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "created": [session.as_dict() for session in self.created],
            "skipped": [entry.as_dict() for entry in self.skipped],
        }


def resolve_buffer(
    explicit: Buffer,
    class_default: int | None,
    global_default: int | None,
) -> tuple[int, int]:
    """Pick the (before, after) buffer: explicit > class (or teacher) > global > zero."""

    if explicit is not None:
        if isinstance(explicit, tuple):
            before, after = explicit
        else:
            before = after = explicit
    elif class_default is not None:
        before = after = class_default
    elif global_default is not None:
        before = after = global_default
    else:
        before = after = 0
    before, after = int(before), int(after)
    if before < 0 or after < 0:
        raise ValueError("Buffer minutes cannot be negative")
    return before, after


def class_buffer(tutoring_class: TutoringClass) -> int | None:
    """The class's own buffer, falling back to its teacher's preference."""

    if tutoring_class.buffer_time is not None:
        return tutoring_class.buffer_time
    return tutoring_class.teacher.buffer_time_preference


class GenerationReporter:
    """Collect messages of one generation run and persist them as a log row."""

    MAX_DETAILED_ENTRIES = 50
    MAX_TOTAL_ENTRIES = 120
    LEVELS = {
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(
        self,
        tutoring_class: TutoringClass,
        policy: MaterializePolicy,
        *,
        window_start: date | None = None,
        window_end: date | None = None,
    ) -> None:
        self.class_id = tutoring_class.id
        self.class_name = tutoring_class.name
        self.policy = policy
        self.window_start = window_start
        self.window_end = window_end
        self.entries: list[dict[str, object]] = []
        self._created_entries: list[dict[str, object]] = []
        self.status = "success"
        self.summary: str | None = None

    def info(self, message: str) -> None:
        self._add_entry("info", message)

    def warning(self, message: str) -> None:
        self._add_entry("warning", message)
        if self.status != "error":
            self.status = "warning"

    def error(self, message: str) -> None:
        self._add_entry("error", message)
        self.status = "error"

    def session_created(self, session: Session) -> None:
        self.info(
            f"Session #{session.session_number} scheduled "
            f"{session.start_time:%Y-%m-%d %H:%M} → {session.end_time:%H:%M}"
        )
        self._created_entries.append(self.entries[-1])

    def discard_created(self) -> None:
        """Forget the sessions reported so far; the batch they belonged to was rolled back."""

        if not self._created_entries:
            return
        discarded = len(self._created_entries)
        self.entries = [
            entry for entry in self.entries
            if not any(entry is created for created in self._created_entries)
        ]
        self._created_entries = []
        self.info(f"{discarded} tentatively scheduled session(s) rolled back")

    def candidate_skipped(self, candidate: TimeInterval, conflicts: Sequence[ScheduleConflict]) -> None:
        reasons = "; ".join(conflict.reason for conflict in conflicts)
        self.warning(f"Skipped {candidate}: {reasons}")

    def finalise(self, created_count: int, skipped_count: int = 0) -> GenerationLog:
        if self.summary is None:
            if created_count and not skipped_count:
                self.summary = f"{created_count} session(s) generated"
            elif created_count:
                self.summary = f"{created_count} session(s) generated, {skipped_count} skipped"
            elif skipped_count:
                self.summary = f"No session generated, {skipped_count} skipped"
            else:
                self.summary = "No session generated"
        log = GenerationLog(
            class_id=self.class_id,
            policy=self.policy.value,
            status=self.status,
            summary=self.summary,
            messages=json.dumps(self._serialise_entries(), ensure_ascii=False),
            window_start=self.window_start,
            window_end=self.window_end,
        )
        db.session.add(log)
        return log

    def _add_entry(self, level: str, message: str) -> None:
        text = message.strip()
        if not text:
            return
        self.entries.append({"level": level, "message": text})
        target = current_app.logger if has_app_context() else logger
        target.log(self.LEVELS.get(level, logging.INFO), "[%s] %s", self.class_name, text)

    def _serialise_entries(self) -> list[dict[str, object]]:
        if len(self.entries) <= self.MAX_DETAILED_ENTRIES:
            return [dict(entry) for entry in self.entries]
        detailed = [dict(entry) for entry in self.entries[: self.MAX_DETAILED_ENTRIES]]
        remaining = self.entries[self.MAX_DETAILED_ENTRIES :]
        counts: dict[str, int] = {}
        for entry in remaining:
            counts[str(entry["level"])] = counts.get(str(entry["level"]), 0) + 1
        for level, count in counts.items():
            detailed.append({"level": level, "message": f"{count} more {level} message(s) omitted"})
        return detailed[: self.MAX_TOTAL_ENTRIES]


class SessionMaterializer:
    """Commit the sessions of a class, one candidate at a time.

    Accepted candidates are flushed as soon as they pass the conflict check so
    later candidates of the same batch see them. Nothing is committed until the
    whole batch went through; any failure rolls the batch back.
    """

    def __init__(
        self,
        detector: ConflictDetector,
        sessions: SessionRepository,
        classes: ClassRepository,
        *,
        clock: Clock = datetime.now,
        default_buffer: int | None = None,
    ) -> None:
        self.detector = detector
        self.sessions = sessions
        self.classes = classes
        self.clock = clock
        self.default_buffer = default_buffer

    def materialize(
        self,
        tutoring_class: TutoringClass,
        *,
        policy: MaterializePolicy | str = MaterializePolicy.BEST_EFFORT,
        start_date: date | None = None,
        end_date: date | None = None,
        pattern: WeeklyPattern | None = None,
        duration: int | None = None,
        buffer: Buffer = None,
        include_past: bool = False,
    ) -> MaterializeResult:
        policy = MaterializePolicy.parse(policy)
        start_date = start_date or tutoring_class.start_date
        end_date = end_date or tutoring_class.end_date
        if end_date is None:
            raise ValueError(f"Class {tutoring_class.id} has no end date to generate sessions up to")
        pattern = pattern if pattern is not None else tutoring_class.weekly_pattern
        duration = int(duration or tutoring_class.default_duration)
        if duration <= 0:
            raise ValueError("Session duration must be a positive number of minutes")
        candidates = expand_pattern(
            start_date,
            end_date,
            pattern,
            duration,
            now=self.clock(),
            include_past=include_past,
        )
        reporter = GenerationReporter(
            tutoring_class, policy, window_start=start_date, window_end=end_date
        )
        reporter.info(f"Generation window: {start_date} → {end_date} ({policy.value})")
        return self.commit(tutoring_class, candidates, policy=policy, buffer=buffer, reporter=reporter)

    def commit(
        self,
        tutoring_class: TutoringClass,
        candidates: Iterable[TimeInterval],
        *,
        policy: MaterializePolicy,
        buffer: Buffer = None,
        reporter: GenerationReporter | None = None,
    ) -> MaterializeResult:
        reporter = reporter or GenerationReporter(tutoring_class, policy)
        before, after = resolve_buffer(buffer, class_buffer(tutoring_class), self.default_buffer)
        parties = class_parties(tutoring_class)
        result = MaterializeResult()
        try:
            self.classes.lock_parties(tutoring_class.teacher_id, tutoring_class.active_student_ids)
            next_number = self.sessions.next_session_number(tutoring_class.id)
            for candidate in candidates:
                conflicts = self.detector.find_conflicts_for_parties(
                    parties, candidate, buffer_before=before, buffer_after=after
                )
                if conflicts:
                    if policy is MaterializePolicy.STRICT:
                        raise SchedulingConflict(conflicts)
                    result.skipped.append(SkippedCandidate(candidate, conflicts))
                    reporter.candidate_skipped(candidate, conflicts)
                    continue
                session = Session.plan(
                    tutoring_class,
                    candidate,
                    session_number=next_number,
                    buffer_before=before,
                    buffer_after=after,
                )
                self.sessions.add_all([session])
                result.created.append(session)
                reporter.session_created(session)
                next_number += 1
            reporter.finalise(len(result.created), len(result.skipped))
            db.session.commit()
        except SchedulingConflict as exc:
            db.session.rollback()
            reporter.discard_created()
            reporter.error(str(exc))
            reporter.summary = str(exc)
            self._record_failure(reporter)
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceFailure("Unable to store the generated sessions", exc) from exc
        except Exception:
            db.session.rollback()
            raise
        return result

    def _record_failure(self, reporter: GenerationReporter) -> None:
        try:
            reporter.finalise(0)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Unable to record failed generation for class %s: %s", reporter.class_id, exc)


class SchedulingService:
    """Entry points used by the API layer."""

    def __init__(
        self,
        *,
        sessions: SessionRepository | None = None,
        classes: ClassRepository | None = None,
        availability: AvailabilityRepository | None = None,
        clock: Clock = datetime.now,
        default_buffer: int | None = None,
        horizon_days: int = DEFAULT_SEARCH_HORIZON_DAYS,
        max_suggestions: int = 5,
    ) -> None:
        self.sessions = sessions or SessionRepository()
        self.classes = classes or ClassRepository()
        self.availability = availability or AvailabilityRepository()
        self.clock = clock
        self.default_buffer = default_buffer
        self.horizon_days = horizon_days
        self.max_suggestions = max_suggestions
        self.detector = ConflictDetector(self.sessions)
        self.materializer = SessionMaterializer(
            self.detector,
            self.sessions,
            self.classes,
            clock=clock,
            default_buffer=default_buffer,
        )

    @classmethod
    def from_config(cls, config, **overrides) -> "SchedulingService":
        options = {
            "default_buffer": config.get("SCHEDULING_DEFAULT_BUFFER_MINUTES"),
            "horizon_days": config.get("SCHEDULING_SEARCH_HORIZON_DAYS", DEFAULT_SEARCH_HORIZON_DAYS),
            "max_suggestions": config.get("SCHEDULING_MAX_SUGGESTIONS", 5),
        }
        options.update(overrides)
        return cls(**options)

    def generate_sessions(
        self,
        class_id: int,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        pattern: WeeklyPattern | None = None,
        duration: int | None = None,
        buffer: Buffer = None,
        policy: MaterializePolicy | str = MaterializePolicy.BEST_EFFORT,
        include_past: bool = False,
    ) -> MaterializeResult:
        tutoring_class = self.classes.get(class_id)
        return self.materializer.materialize(
            tutoring_class,
            policy=policy,
            start_date=start_date,
            end_date=end_date,
            pattern=pattern,
            duration=duration,
            buffer=buffer,
            include_past=include_past,
        )

    def schedule_session(
        self,
        class_id: int,
        start: datetime,
        *,
        duration: int | None = None,
        buffer: Buffer = None,
    ) -> Session:
        """Book one ad-hoc session; any conflict raises :class:`SchedulingConflict`."""

        tutoring_class = self.classes.get(class_id)
        candidate = TimeInterval(start, int(duration or tutoring_class.default_duration))
        result = self.materializer.commit(
            tutoring_class,
            [candidate],
            policy=MaterializePolicy.STRICT,
            buffer=buffer,
        )
        return result.created[0]

    def check_conflicts(
        self,
        party_id: int,
        party_kind: PartyKind | str,
        interval: TimeInterval,
        *,
        exclude_session_id: int | None = None,
        buffer: Buffer = None,
    ) -> List[ScheduleConflict]:
        # The proposed slot is compared as-is unless the caller asks for padding.
        before, after = resolve_buffer(buffer, None, None)
        party = Party(PartyKind.parse(party_kind), party_id)
        return self.detector.find_conflicts(
            party,
            interval,
            buffer_before=before,
            buffer_after=after,
            exclude_session_id=exclude_session_id,
        )

    def suggest_alternatives(
        self,
        party_id: int,
        party_kind: PartyKind | str,
        preferred_start: datetime,
        duration: int,
        max_count: int | None = None,
        *,
        availability: Iterable[AvailabilityWindow] | None = None,
        buffer: Buffer = None,
    ) -> List[TimeInterval]:
        party = Party(PartyKind.parse(party_kind), party_id)
        if availability is None:
            availability = self.availability_for(party)
        before, after = resolve_buffer(buffer, None, None)
        return suggest_slots(
            self.detector,
            party,
            preferred_start,
            duration,
            self.max_suggestions if max_count is None else max_count,
            availability,
            buffer_before=before,
            buffer_after=after,
            horizon_days=self.horizon_days,
        )

    def suggest_for_class(
        self,
        class_id: int,
        preferred_start: datetime,
        *,
        duration: int | None = None,
        max_count: int | None = None,
        buffer: Buffer = None,
    ) -> List[TimeInterval]:
        """Suggest slots inside the teacher's availability that suit the whole class."""

        tutoring_class = self.classes.get(class_id)
        before, after = resolve_buffer(buffer, class_buffer(tutoring_class), self.default_buffer)
        return suggest_slots(
            self.detector,
            class_parties(tutoring_class),
            preferred_start,
            int(duration or tutoring_class.default_duration),
            self.max_suggestions if max_count is None else max_count,
            self.availability_for(Party.teacher(tutoring_class.teacher_id)),
            buffer_before=before,
            buffer_after=after,
            horizon_days=self.horizon_days,
        )

    def availability_for(self, party: Party) -> List[AvailabilityWindow]:
        if party.kind is PartyKind.TEACHER:
            rows = self.availability.for_teacher(party.id)
        else:
            rows = self.availability.for_student(party.id)
        return AvailabilityWindow.from_rows(rows)

    def sessions_for_class(self, class_id: int) -> List[Session]:
        self.classes.get(class_id)
        return self.sessions.for_class(class_id)
