"""Data access used by the scheduling engine.

The engine never queries models directly; it goes through these small
repositories so the conflict detector and the materializer can be exercised
against a single database session and transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from . import db
from .errors import ClassNotFound
from .models import (
    ClassEnrollment,
    Session,
    Student,
    StudentAvailability,
    Teacher,
    TeacherAvailability,
    TutoringClass,
)


class SessionRepository:
    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def db_session(self):
        return self._session if self._session is not None else db.session

    def for_class(self, class_id: int) -> List[Session]:
        stmt = (
            select(Session)
            .where(Session.class_id == class_id)
            .order_by(Session.start_time, Session.id)
        )
        return list(self.db_session.scalars(stmt))

    def _blocking_statement(
        self,
        blocked_start: datetime,
        blocked_end: datetime,
        exclude_session_id: int | None,
    ):
        stmt = select(Session).where(
            Session.status != "cancelled",
            Session.blocked_start < blocked_end,
            Session.blocked_end > blocked_start,
        )
        if exclude_session_id is not None:
            stmt = stmt.where(Session.id != exclude_session_id)
        return stmt.order_by(Session.start_time, Session.id)

    def blocking_for_teacher(
        self,
        teacher_id: int,
        blocked_start: datetime,
        blocked_end: datetime,
        *,
        exclude_session_id: int | None = None,
    ) -> List[Session]:
        stmt = (
            self._blocking_statement(blocked_start, blocked_end, exclude_session_id)
            .join(TutoringClass, TutoringClass.id == Session.class_id)
            .where(TutoringClass.teacher_id == teacher_id)
        )
        return list(self.db_session.scalars(stmt))

    def blocking_for_student(
        self,
        student_id: int,
        blocked_start: datetime,
        blocked_end: datetime,
        *,
        exclude_session_id: int | None = None,
    ) -> List[Session]:
        stmt = (
            self._blocking_statement(blocked_start, blocked_end, exclude_session_id)
            .join(ClassEnrollment, ClassEnrollment.class_id == Session.class_id)
            .where(
                ClassEnrollment.student_id == student_id,
                ClassEnrollment.left_at.is_(None),
            )
        )
        return list(self.db_session.scalars(stmt))

    def next_session_number(self, class_id: int) -> int:
        current = self.db_session.scalar(
            select(func.max(Session.session_number)).where(Session.class_id == class_id)
        )
        return (current or 0) + 1

    def add_all(self, sessions: Iterable[Session]) -> None:
        self.db_session.add_all(list(sessions))
        self.db_session.flush()


class ClassRepository:
    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def db_session(self):
        return self._session if self._session is not None else db.session

    def get(self, class_id: int) -> TutoringClass:
        stmt = (
            select(TutoringClass)
            .options(selectinload(TutoringClass.enrollments))
            .where(TutoringClass.id == class_id)
        )
        tutoring_class = self.db_session.scalar(stmt)
        if tutoring_class is None:
            raise ClassNotFound(class_id)
        return tutoring_class

    def lock_parties(self, teacher_id: int | None, student_ids: Sequence[int]) -> None:
        """Take row locks on every party before conflicts are checked.

        Locks are acquired teacher first, then students by ascending id, so two
        batches touching the same parties always queue in the same order.
        Dialects without ``FOR UPDATE`` (SQLite) serialise writers on their own.
        """

        if teacher_id is not None:
            self.db_session.execute(
                select(Teacher.id).where(Teacher.id == teacher_id).with_for_update()
            ).all()
        if student_ids:
            self.db_session.execute(
                select(Student.id)
                .where(Student.id.in_(sorted(set(student_ids))))
                .order_by(Student.id)
                .with_for_update()
            ).all()


class AvailabilityRepository:
    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def db_session(self):
        return self._session if self._session is not None else db.session

    def for_teacher(self, teacher_id: int) -> List[TeacherAvailability]:
        stmt = (
            select(TeacherAvailability)
            .where(TeacherAvailability.teacher_id == teacher_id)
            .order_by(TeacherAvailability.weekday, TeacherAvailability.start_time)
        )
        return list(self.db_session.scalars(stmt))

    def for_student(self, student_id: int) -> List[StudentAvailability]:
        stmt = (
            select(StudentAvailability)
            .where(StudentAvailability.student_id == student_id)
            .order_by(StudentAvailability.weekday, StudentAvailability.start_time)
        )
        return list(self.db_session.scalars(stmt))
