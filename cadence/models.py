from __future__ import annotations

import json
from datetime import date, datetime, time, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import db
from .intervals import TimeInterval, buffered
from .patterns import WeeklyPattern


SESSION_STATUSES = ("scheduled", "in_progress", "completed", "cancelled", "rescheduled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimeStampedModel:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Teacher(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    buffer_time_preference: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    classes: Mapped[List["TutoringClass"]] = relationship(back_populates="teacher")
    availabilities: Mapped[List["TeacherAvailability"]] = relationship(
        back_populates="teacher",
        cascade="all, delete-orphan",
        order_by="TeacherAvailability.weekday",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Teacher<{self.id} {self.full_name}>"


class Student(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    enrollments: Mapped[List["ClassEnrollment"]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )
    availabilities: Mapped[List["StudentAvailability"]] = relationship(
        back_populates="student",
        cascade="all, delete-orphan",
        order_by="StudentAvailability.weekday",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Student<{self.id} {self.full_name}>"


class WeeklyWindowMixin:
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)


class TeacherAvailability(db.Model, WeeklyWindowMixin, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("teacher.id"), nullable=False, index=True)

    teacher: Mapped[Teacher] = relationship(back_populates="availabilities")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_teacher_availability_time_order"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_teacher_availability_weekday"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"TeacherAvailability<Teacher {self.teacher_id} day {self.weekday} "
            f"{self.start_time}-{self.end_time}>"
        )


class StudentAvailability(db.Model, WeeklyWindowMixin, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("student.id"), nullable=False, index=True)

    student: Mapped[Student] = relationship(back_populates="availabilities")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_student_availability_time_order"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="chk_student_availability_weekday"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"StudentAvailability<Student {self.student_id} day {self.weekday} "
            f"{self.start_time}-{self.end_time}>"
        )


class TutoringClass(db.Model, TimeStampedModel):
    __tablename__ = "tutoring_class"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("teacher.id"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    default_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    schedule: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    buffer_time: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="active")

    teacher: Mapped[Teacher] = relationship(back_populates="classes")
    enrollments: Mapped[List["ClassEnrollment"]] = relationship(
        back_populates="tutoring_class", cascade="all, delete-orphan"
    )
    sessions: Mapped[List["Session"]] = relationship(
        back_populates="tutoring_class",
        cascade="all, delete-orphan",
        order_by="Session.start_time",
    )

    __table_args__ = (
        CheckConstraint("default_duration > 0", name="chk_class_duration_positive"),
        CheckConstraint("buffer_time IS NULL OR buffer_time >= 0", name="chk_class_buffer"),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date", name="chk_class_date_range"
        ),
    )

    @property
    def weekly_pattern(self) -> WeeklyPattern:
        return WeeklyPattern.from_payload(self.schedule)

    @weekly_pattern.setter
    def weekly_pattern(self, pattern: WeeklyPattern) -> None:
        self.schedule = json.dumps(pattern.to_payload())

    @property
    def active_enrollments(self) -> List["ClassEnrollment"]:
        return [enrollment for enrollment in self.enrollments if enrollment.is_active]

    @property
    def active_student_ids(self) -> List[int]:
        return sorted(enrollment.student_id for enrollment in self.active_enrollments)

    def enroll(self, student: Student) -> "ClassEnrollment":
        enrollment = ClassEnrollment(student=student)
        self.enrollments.append(enrollment)
        return enrollment

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"TutoringClass<{self.id} {self.name}>"


class ClassEnrollment(db.Model):
    __tablename__ = "class_enrollment"

    class_id: Mapped[int] = mapped_column(ForeignKey("tutoring_class.id"), primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("student.id"), primary_key=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    tutoring_class: Mapped[TutoringClass] = relationship(back_populates="enrollments")
    student: Mapped[Student] = relationship(back_populates="enrollments")

    @property
    def is_active(self) -> bool:
        return self.left_at is None

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"ClassEnrollment<Class {self.class_id} / Student {self.student_id}>"


class Session(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("tutoring_class.id"), nullable=False, index=True)
    session_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    planned_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_duration: Mapped[Optional[int]] = mapped_column(Integer)
    buffer_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    buffer_after: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Buffered span, kept in sync with start/duration/buffers for overlap queries.
    blocked_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    blocked_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    rescheduled_from_id: Mapped[Optional[int]] = mapped_column(ForeignKey("session.id"))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    is_makeup_session: Mapped[bool] = mapped_column(Boolean, default=False)

    tutoring_class: Mapped[TutoringClass] = relationship(back_populates="sessions")
    rescheduled_from: Mapped[Optional["Session"]] = relationship(remote_side="Session.id")

    __table_args__ = (
        CheckConstraint("planned_duration > 0", name="chk_session_duration_positive"),
        CheckConstraint("end_time > start_time", name="chk_session_time_order"),
        CheckConstraint(
            "buffer_before >= 0 AND buffer_after >= 0", name="chk_session_buffers"
        ),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{status}'" for status in SESSION_STATUSES) + ")",
            name="chk_session_status",
        ),
        Index("ix_session_blocked_span", "blocked_start", "blocked_end"),
    )

    @classmethod
    def plan(
        cls,
        tutoring_class: TutoringClass,
        interval: TimeInterval,
        *,
        session_number: int,
        buffer_before: int = 0,
        buffer_after: int = 0,
    ) -> "Session":
        blocked = buffered(interval, buffer_before, buffer_after)
        return cls(
            tutoring_class=tutoring_class,
            session_number=session_number,
            start_time=interval.start,
            end_time=interval.end,
            planned_duration=interval.duration_minutes,
            buffer_before=buffer_before,
            buffer_after=buffer_after,
            blocked_start=blocked.start,
            blocked_end=blocked.end,
            status="scheduled",
        )

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.start_time, self.planned_duration)

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "class_id": self.class_id,
            "session_number": self.session_number,
            "start": self.start_time.isoformat(),
            "end": self.end_time.isoformat(),
            "planned_duration": self.planned_duration,
            "buffer_before": self.buffer_before,
            "buffer_after": self.buffer_after,
            "status": self.status,
            "rescheduled_from_id": self.rescheduled_from_id,
            "is_makeup_session": bool(self.is_makeup_session),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Session {self.class_id}#{self.session_number} {self.start_time:%Y-%m-%d %H:%M}>"


class GenerationLog(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("tutoring_class.id"), nullable=False, index=True)
    policy: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="success")
    summary: Mapped[Optional[str]] = mapped_column(Text)
    messages: Mapped[Optional[str]] = mapped_column(Text)
    window_start: Mapped[Optional[date]] = mapped_column(Date)
    window_end: Mapped[Optional[date]] = mapped_column(Date)

    tutoring_class: Mapped[TutoringClass] = relationship()

    STATUS_LABELS = {
        "success": "Success",
        "warning": "Warnings",
        "error": "Failed",
    }

    def parsed_messages(self) -> list[dict[str, object]]:
        if not self.messages:
            return []
        try:
            payload = json.loads(self.messages)
        except (TypeError, ValueError):
            return []
        if isinstance(payload, list):
            return [entry for entry in payload if isinstance(entry, dict)]
        return []

    @property
    def status_label(self) -> str:
        return self.STATUS_LABELS.get(self.status, self.status)
