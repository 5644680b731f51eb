from __future__ import annotations

from datetime import date, time, timedelta

from . import db
from .models import Student, Teacher, TeacherAvailability, TutoringClass
from .patterns import WeeklyPattern


def seed_data() -> None:
    if Teacher.query.first():
        return

    teachers = [
        Teacher(full_name="Alice Martin", email="alice.martin@example.com", buffer_time_preference=10),
        Teacher(full_name="Bruno Costa", email="bruno.costa@example.com"),
    ]
    db.session.add_all(teachers)
    db.session.flush()

    db.session.add_all(
        [
            TeacherAvailability(teacher_id=teachers[0].id, weekday=0, start_time=time(9, 0), end_time=time(17, 0)),
            TeacherAvailability(teacher_id=teachers[0].id, weekday=2, start_time=time(9, 0), end_time=time(17, 0)),
            TeacherAvailability(teacher_id=teachers[1].id, weekday=1, start_time=time(14, 0), end_time=time(20, 0)),
            TeacherAvailability(teacher_id=teachers[1].id, weekday=3, start_time=time(14, 0), end_time=time(20, 0)),
        ]
    )

    students = [
        Student(full_name="Chloé Durand", email="chloe.durand@example.com"),
        Student(full_name="David Okafor", email="david.okafor@example.com"),
        Student(full_name="Emma Rossi", email="emma.rossi@example.com"),
    ]
    db.session.add_all(students)

    today = date.today()
    algebra = TutoringClass(
        name="Algebra I",
        teacher=teachers[0],
        start_date=today,
        end_date=today + timedelta(weeks=8),
        default_duration=60,
        buffer_time=10,
    )
    algebra.weekly_pattern = WeeklyPattern.from_slots([("MON", "09:00"), ("WED", "10:30")])
    algebra.enroll(students[0])
    algebra.enroll(students[1])

    french = TutoringClass(
        name="French conversation",
        teacher=teachers[1],
        start_date=today,
        end_date=today + timedelta(weeks=8),
        default_duration=45,
    )
    french.weekly_pattern = WeeklyPattern.from_slots([("TUE", "17:00"), ("THU", "17:00")])
    french.enroll(students[1])
    french.enroll(students[2])

    db.session.add_all([algebra, french])
    db.session.commit()
