import os
import unittest
from datetime import date, datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from portal.models.service_request import ServiceRequest
from portal.services.field_gating import CREATE_CAPABILITIES, can_edit, split_permitted_fields
from portal.services.identifiers import SERVICE_QUEUE_ID_RE, generate_service_queue_id, generate_task_id
from portal.services.request_status import (
    NO_TIME_SPENT,
    apply_status_transition,
    due_deadline,
    effective_status,
    format_elapsed,
    format_minutes,
    is_due_soon,
    is_overdue,
    time_spent_display,
)


def _request(**fields) -> ServiceRequest:
    fields.setdefault("task_status", "open")
    return ServiceRequest(**fields)


class StatusDerivationTests(unittest.TestCase):
    def test_closed_at_overrides_stored_status(self):
        row = _request(task_status="open", closed_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(effective_status(row), "closed")
        self.assertEqual(effective_status(_request(task_status="in_progress")), "in_progress")

    def test_overdue_uses_viewer_timezone_and_end_of_day(self):
        row = _request(due_date=date(2026, 3, 10))
        # 2026-03-11 03:00 UTC is still 2026-03-10 in New York.
        self.assertFalse(is_overdue(row, "America/New_York", datetime(2026, 3, 11, 3, 0, tzinfo=timezone.utc)))
        self.assertTrue(is_overdue(row, "UTC", datetime(2026, 3, 11, 3, 0, tzinfo=timezone.utc)))

    def test_overdue_honours_due_time(self):
        row = _request(due_date=date(2026, 3, 10), due_time="09:30")
        self.assertFalse(is_overdue(row, "UTC", datetime(2026, 3, 10, 9, 29, tzinfo=timezone.utc)))
        self.assertTrue(is_overdue(row, "UTC", datetime(2026, 3, 10, 9, 31, tzinfo=timezone.utc)))

    def test_closed_or_undated_requests_are_never_overdue(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        closed = _request(due_date=date(2020, 1, 1), closed_at=datetime(2020, 1, 2, tzinfo=timezone.utc))
        self.assertFalse(is_overdue(closed, "UTC", now))
        self.assertFalse(is_overdue(_request(), "UTC", now))

    def test_invalid_due_time_falls_back_to_end_of_day(self):
        deadline = due_deadline(date(2026, 3, 10), "25:99", "UTC")
        self.assertEqual(deadline, datetime(2026, 3, 11, tzinfo=timezone.utc))

    def test_due_soon_window(self):
        row = _request(due_date=date(2026, 3, 10), due_time="12:00")
        self.assertTrue(is_due_soon(row, 24, "UTC", datetime(2026, 3, 9, 13, 0, tzinfo=timezone.utc)))
        self.assertFalse(is_due_soon(row, 24, "UTC", datetime(2026, 3, 8, 11, 0, tzinfo=timezone.utc)))
        self.assertFalse(is_due_soon(row, 24, "UTC", datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)))


class TimeSpentTests(unittest.TestCase):
    def test_manual_minutes_formatting(self):
        self.assertEqual(format_minutes(45), "45 min")
        self.assertEqual(format_minutes(120), "2h")
        self.assertEqual(format_minutes(135), "2h 15m")

    def test_elapsed_formatting(self):
        start = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        self.assertEqual(format_elapsed(start, start + timedelta(minutes=42)), "42m")
        self.assertEqual(format_elapsed(start, start + timedelta(hours=3, minutes=5)), "3h 5m")
        self.assertEqual(format_elapsed(start, start + timedelta(days=2, hours=1, minutes=7)), "2d 1h 7m")
        self.assertEqual(format_elapsed(start, None), NO_TIME_SPENT)

    def test_manual_value_wins_over_elapsed_span(self):
        start = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
        row = _request(in_progress_at=start, closed_at=start + timedelta(hours=5), time_spent=30)
        self.assertEqual(time_spent_display(row), "30 min")
        row.time_spent = None
        self.assertEqual(time_spent_display(row), "5h 0m")
        self.assertEqual(time_spent_display(_request()), NO_TIME_SPENT)
        self.assertEqual(NO_TIME_SPENT, "\u2014")


class StatusTransitionTests(unittest.TestCase):
    def test_transition_stamps_and_clears_timestamps(self):
        now = datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)
        row = _request(task_status="in_progress")
        touched = apply_status_transition(row, from_status="open", to_status="in_progress", now=now)
        self.assertEqual(row.in_progress_at, now)
        self.assertIn("in_progress_at", touched)

        later = now + timedelta(hours=1)
        apply_status_transition(row, from_status="in_progress", to_status="closed", now=later)
        self.assertEqual(row.closed_at, later)
        self.assertEqual(row.in_progress_at, now)

        apply_status_transition(row, from_status="closed", to_status="open", now=later)
        self.assertIsNone(row.closed_at)


class FieldGatingTests(unittest.TestCase):
    def test_agent_cannot_touch_due_date(self):
        permitted, ignored = split_permitted_fields(
            "agent", {"due_date": date(2030, 1, 1), "assigned_to_id": "x", "insured": "Acme"}
        )
        self.assertEqual(set(permitted), {"assigned_to_id", "insured"})
        self.assertEqual(ignored, ["due_date"])

    def test_capabilities_per_role(self):
        self.assertTrue(can_edit("customer", "due_date"))
        self.assertFalse(can_edit("customer", "assigned_to_id"))
        self.assertFalse(can_edit("customer", "time_spent"))
        self.assertTrue(can_edit("agent", "time_spent"))
        self.assertFalse(can_edit("agent", "closed_at"))
        self.assertTrue(can_edit("agent_manager", "closed_at"))
        self.assertTrue(can_edit("super_admin", "due_time"))
        self.assertFalse(can_edit("nobody", "insured"))

    def test_create_table_keeps_customers_unassigned(self):
        _, ignored = split_permitted_fields("customer", {"assigned_to_id": "x", "due_date": None}, CREATE_CAPABILITIES)
        self.assertEqual(ignored, ["assigned_to_id"])


class IdentifierTests(unittest.TestCase):
    def test_generated_identifiers_match_their_formats(self):
        self.assertRegex(generate_service_queue_id(), SERVICE_QUEUE_ID_RE)
        self.assertRegex(generate_task_id(), r"^TASK-\d+[0-9A-F]{4}$")
