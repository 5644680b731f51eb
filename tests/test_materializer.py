import json
import unittest
from datetime import date, datetime
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from cadence import create_app, db
from cadence.config import TestConfig
from cadence.errors import ClassNotFound, PersistenceFailure, SchedulingConflict
from cadence.intervals import TimeInterval
from cadence.models import GenerationLog, Session, Student, Teacher, TutoringClass
from cadence.patterns import WeeklyPattern
from cadence.repository import SessionRepository
from cadence.scheduler import MaterializePolicy, SchedulingService, resolve_buffer


def fixed_clock() -> datetime:
    return datetime(2023, 12, 31, 8, 0)


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(TestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

    def tearDown(self) -> None:
        db.session.remove()
        db.drop_all()
        self.app_context.pop()


class MaterializerTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.teacher = Teacher(full_name="Ada Lovelace", email="ada@example.com")
        db.session.add(self.teacher)
        db.session.commit()
        self.service = SchedulingService.from_config(self.app.config, clock=fixed_clock)

    def _build_class(
        self,
        name: str,
        slots,
        *,
        teacher: Teacher | None = None,
        students=(),
        end_date: date | None = date(2024, 3, 4),
        buffer_time: int | None = None,
    ) -> TutoringClass:
        tutoring_class = TutoringClass(
            name=name,
            teacher=teacher or self.teacher,
            start_date=date(2024, 1, 1),
            end_date=end_date,
            default_duration=60,
            buffer_time=buffer_time,
        )
        tutoring_class.weekly_pattern = WeeklyPattern.from_slots(slots)
        for student in students:
            tutoring_class.enroll(student)
        db.session.add(tutoring_class)
        db.session.commit()
        return tutoring_class

    def _book(self, tutoring_class: TutoringClass, start: datetime, duration: int = 60) -> Session:
        session = Session.plan(tutoring_class, TimeInterval(start, duration), session_number=1)
        db.session.add(session)
        db.session.commit()
        return session

    def _session_count(self) -> int:
        return Session.query.count()

    def test_ten_mondays_are_generated(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])

        result = self.service.generate_sessions(algebra.id)

        self.assertEqual(len(result.created), 10)
        self.assertEqual(result.skipped, [])
        self.assertEqual(
            [session.session_number for session in result.created], list(range(1, 11))
        )
        self.assertEqual(result.created[-1].start_time, datetime(2024, 3, 4, 10, 0))
        log = GenerationLog.query.one()
        self.assertEqual(log.status, "success")
        self.assertEqual(log.summary, "10 session(s) generated")

    def test_best_effort_skips_teacher_collision(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        geometry = self._build_class("Geometry", [("TUE", "10:00")])
        blocker = self._book(geometry, datetime(2024, 1, 15, 10, 30))

        result = self.service.generate_sessions(algebra.id, policy="best-effort")

        self.assertEqual(len(result.created), 9)
        self.assertEqual(len(result.skipped), 1)
        skipped = result.skipped[0]
        self.assertEqual(skipped.candidate.start, datetime(2024, 1, 15, 10, 0))
        self.assertEqual(
            [conflict.conflicting_session_id for conflict in skipped.conflicts], [blocker.id]
        )
        self.assertEqual(
            [session.session_number for session in result.created], list(range(1, 10))
        )
        log = GenerationLog.query.filter_by(class_id=algebra.id).one()
        self.assertEqual(log.status, "warning")
        self.assertEqual(log.summary, "9 session(s) generated, 1 skipped")
        self.assertTrue(any(entry["level"] == "warning" for entry in log.parsed_messages()))

    def test_strict_rejects_batch_when_a_student_is_busy(self) -> None:
        first = Student(full_name="Grace Hopper", email="grace@example.com")
        second = Student(full_name="Katherine Johnson", email="katherine@example.com")
        other_teacher = Teacher(full_name="Alan Turing", email="alan@example.com")
        db.session.add_all([first, second, other_teacher])
        db.session.commit()
        algebra = self._build_class("Algebra", [("MON", "10:00")], students=[first, second])
        physics = self._build_class(
            "Physics", [("MON", "10:00")], teacher=other_teacher, students=[second]
        )
        blocker = self._book(physics, datetime(2024, 1, 8, 10, 0))

        with self.assertRaises(SchedulingConflict) as ctx:
            self.service.generate_sessions(algebra.id, policy=MaterializePolicy.STRICT)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.conflicts[0].conflicting_session_id, blocker.id)
        self.assertEqual(ctx.exception.conflicts[0].party.id, second.id)
        self.assertEqual(Session.query.filter_by(class_id=algebra.id).count(), 0)
        log = GenerationLog.query.filter_by(class_id=algebra.id).one()
        self.assertEqual(log.status, "error")
        self.assertEqual(log.status_label, "Failed")

    def test_strict_rolls_back_earlier_candidates(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        geometry = self._build_class("Geometry", [("TUE", "10:00")])
        self._book(geometry, datetime(2024, 3, 4, 9, 0), 90)

        with self.assertRaises(SchedulingConflict):
            self.service.generate_sessions(algebra.id, policy="strict")

        self.assertEqual(Session.query.filter_by(class_id=algebra.id).count(), 0)
        self.assertEqual(self._session_count(), 1)

    def test_failed_strict_log_lists_no_rolled_back_session(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        geometry = self._build_class("Geometry", [("TUE", "10:00")])
        self._book(geometry, datetime(2024, 1, 22, 10, 30))

        with self.assertRaises(SchedulingConflict):
            self.service.generate_sessions(algebra.id, policy="strict")

        log = GenerationLog.query.filter_by(class_id=algebra.id).one()
        messages = [entry["message"] for entry in log.parsed_messages()]
        self.assertFalse(any("scheduled 2024" in message for message in messages), messages)
        self.assertIn("3 tentatively scheduled session(s) rolled back", messages)
        self.assertTrue(messages[-1].startswith("Scheduling conflict"))
        self.assertEqual(Session.query.filter_by(class_id=algebra.id).count(), 0)

    def test_rerun_does_not_duplicate_sessions(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        self.service.generate_sessions(algebra.id)

        result = self.service.generate_sessions(algebra.id)

        self.assertEqual(result.created, [])
        self.assertEqual(len(result.skipped), 10)
        self.assertEqual(Session.query.filter_by(class_id=algebra.id).count(), 10)

    def test_numbering_continues_after_existing_sessions(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        self.service.generate_sessions(algebra.id, end_date=date(2024, 1, 31))

        result = self.service.generate_sessions(algebra.id, start_date=date(2024, 2, 1))

        self.assertEqual([session.session_number for session in result.created], [6, 7, 8, 9, 10])

    def test_candidates_of_one_batch_see_each_other(self) -> None:
        algebra = self._build_class(
            "Algebra", [("MON", "09:00"), ("MON", "09:30")], end_date=date(2024, 1, 7)
        )

        result = self.service.generate_sessions(algebra.id)

        self.assertEqual(len(result.created), 1)
        self.assertEqual(result.created[0].start_time, datetime(2024, 1, 1, 9, 0))
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(
            result.skipped[0].conflicts[0].conflicting_session_id, result.created[0].id
        )

    def test_past_candidates_are_dropped_unless_requested(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        service = SchedulingService.from_config(
            self.app.config, clock=lambda: datetime(2024, 1, 20, 12, 0)
        )

        upcoming = service.generate_sessions(algebra.id, end_date=date(2024, 3, 4))

        self.assertEqual(len(upcoming.created), 7)
        self.assertEqual(upcoming.created[0].start_time, datetime(2024, 1, 22, 10, 0))

        backfill = service.generate_sessions(algebra.id, include_past=True)

        self.assertEqual(len(backfill.created), 3)
        self.assertEqual(len(backfill.skipped), 7)

    def test_buffer_precedence(self) -> None:
        padded = self._build_class("Padded", [("MON", "10:00")], buffer_time=10)
        plain = self._build_class("Plain", [("TUE", "10:00")])
        explicit = self._build_class("Explicit", [("WED", "10:00")], buffer_time=10)

        padded_session = self.service.generate_sessions(padded.id).created[0]
        plain_session = self.service.generate_sessions(plain.id).created[0]
        explicit_session = self.service.generate_sessions(explicit.id, buffer=0).created[0]

        self.assertEqual((padded_session.buffer_before, padded_session.buffer_after), (10, 10))
        self.assertEqual(padded_session.blocked_start, datetime(2024, 1, 1, 9, 50))
        self.assertEqual((plain_session.buffer_before, plain_session.buffer_after), (5, 5))
        self.assertEqual((explicit_session.buffer_before, explicit_session.buffer_after), (0, 0))
        self.assertEqual(explicit_session.blocked_end, explicit_session.end_time)

    def test_teacher_preference_sits_between_class_and_global_buffer(self) -> None:
        self.teacher.buffer_time_preference = 15
        db.session.commit()
        plain = self._build_class("Plain", [("MON", "10:00")])
        padded = self._build_class("Padded", [("TUE", "10:00")], buffer_time=0)

        plain_session = self.service.generate_sessions(plain.id).created[0]
        padded_session = self.service.generate_sessions(padded.id).created[0]

        self.assertEqual((plain_session.buffer_before, plain_session.buffer_after), (15, 15))
        self.assertEqual(plain_session.blocked_start, datetime(2024, 1, 1, 9, 45))
        self.assertEqual((padded_session.buffer_before, padded_session.buffer_after), (0, 0))

    def test_resolve_buffer(self) -> None:
        self.assertEqual(resolve_buffer(None, None, None), (0, 0))
        self.assertEqual(resolve_buffer(None, None, 5), (5, 5))
        self.assertEqual(resolve_buffer(None, 15, 5), (15, 15))
        self.assertEqual(resolve_buffer((0, 20), 15, 5), (0, 20))
        with self.assertRaises(ValueError):
            resolve_buffer(-1, None, None)

    def test_storage_failure_rolls_back(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        failure = OperationalError("INSERT INTO session", {}, Exception("disk I/O error"))

        with patch.object(SessionRepository, "add_all", side_effect=failure):
            with self.assertRaises(PersistenceFailure) as ctx:
                self.service.generate_sessions(algebra.id)

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIs(ctx.exception.original, failure)
        self.assertEqual(self._session_count(), 0)
        self.assertEqual(GenerationLog.query.count(), 0)

    def test_empty_pattern_override_creates_nothing(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])

        result = self.service.generate_sessions(algebra.id, pattern=WeeklyPattern())

        self.assertEqual(result.created, [])
        log = GenerationLog.query.one()
        self.assertEqual(log.summary, "No session generated")

    def test_class_without_end_date_needs_explicit_window(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")], end_date=None)

        with self.assertRaises(ValueError):
            self.service.generate_sessions(algebra.id)

        result = self.service.generate_sessions(algebra.id, end_date=date(2024, 1, 14))
        self.assertEqual(len(result.created), 2)

    def test_unknown_class(self) -> None:
        with self.assertRaises(ClassNotFound):
            self.service.generate_sessions(999)

    def test_ad_hoc_session_is_strict(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")])
        session = self.service.schedule_session(algebra.id, datetime(2024, 1, 3, 16, 0), duration=45)

        self.assertEqual(session.session_number, 1)
        self.assertEqual(session.end_time, datetime(2024, 1, 3, 16, 45))

        with self.assertRaises(SchedulingConflict):
            self.service.schedule_session(algebra.id, datetime(2024, 1, 3, 16, 30))
        self.assertEqual(self._session_count(), 1)

    def test_result_payload(self) -> None:
        algebra = self._build_class("Algebra", [("MON", "10:00")], end_date=date(2024, 1, 7))

        payload = self.service.generate_sessions(algebra.id).as_dict()

        self.assertEqual(payload["skipped"], [])
        self.assertEqual(payload["created"][0]["start"], "2024-01-01T10:00:00")
        self.assertEqual(json.loads(GenerationLog.query.one().messages)[0]["level"], "info")


if __name__ == "__main__":
    unittest.main()
