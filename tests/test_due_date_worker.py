import os
import unittest
from datetime import date, datetime, timezone

from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from portal.models.notification import Notification
from portal.models.service_request import ServiceRequest
from portal.models.user import User
from portal.workers.tasks import due_dates as due_dates_task


class DueDateReminderTaskTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        User.__table__.create(bind=cls.engine)
        ServiceRequest.__table__.create(bind=cls.engine)
        Notification.__table__.create(bind=cls.engine)

        cls._old_session_local = due_dates_task.SessionLocal
        due_dates_task.SessionLocal = cls.SessionLocal

    @classmethod
    def tearDownClass(cls):
        due_dates_task.SessionLocal = cls._old_session_local
        Notification.__table__.drop(bind=cls.engine)
        ServiceRequest.__table__.drop(bind=cls.engine)
        User.__table__.drop(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self):
        with self.SessionLocal() as db:
            db.execute(delete(Notification))
            db.execute(delete(ServiceRequest))
            db.execute(delete(User))
            db.commit()
            agent = User(
                first_name="Ada",
                last_name="Agent",
                email="ada@portal.test",
                role="agent",
                timezone="UTC",
                is_active=True,
                responsible="seed",
            )
            customer = User(
                first_name="Carl",
                last_name="Customer",
                email="carl@acme.test",
                role="customer",
                timezone="UTC",
                is_active=True,
                responsible="seed",
            )
            db.add_all([agent, customer])
            db.commit()
            self.agent_id = agent.id
            self.customer_id = customer.id

    def _request(self, db, queue_id: str, **fields) -> ServiceRequest:
        row = ServiceRequest(
            service_queue_id=queue_id,
            insured="Acme Corp",
            service_request_narrative="Renewal follow-up",
            service_queue_category="policy_inquiry",
            company_id=self.customer_id,
            task_status=fields.pop("task_status", "open"),
            assigned_to_id=fields.pop("assigned_to_id", self.agent_id),
            assigned_by_id=self.customer_id,
            responsible="seed",
            **fields,
        )
        db.add(row)
        db.commit()
        return row

    def _notifications(self, db, event_type: str) -> list[Notification]:
        return db.query(Notification).filter(Notification.type == event_type).all()

    def test_overdue_request_notifies_assignee_and_creator_once(self):
        now = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)
        with self.SessionLocal() as db:
            self._request(db, "SQ000001AAAA", due_date=date(2026, 5, 18))
            first = due_dates_task.emit_due_date_reminders(db, now=now)
            second = due_dates_task.emit_due_date_reminders(db, now=now)

            self.assertEqual(first["overdue_notified"], 2)
            self.assertEqual(second["overdue_notified"], 0)
            recipients = {row.user_id for row in self._notifications(db, "request_overdue")}
            self.assertEqual(recipients, {self.agent_id, self.customer_id})

    def test_due_soon_request_notifies_assignee_only(self):
        now = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)
        with self.SessionLocal() as db:
            self._request(db, "SQ000002BBBB", due_date=date(2026, 5, 21), due_time="09:00")
            result = due_dates_task.emit_due_date_reminders(db, now=now)

            self.assertEqual(result, {"overdue_notified": 0, "due_soon_notified": 1})
            rows = self._notifications(db, "due_date_reminder")
            self.assertEqual([row.user_id for row in rows], [self.agent_id])

    def test_closed_unassigned_and_distant_requests_are_skipped(self):
        now = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)
        with self.SessionLocal() as db:
            self._request(db, "SQ000003CCCC", due_date=date(2026, 5, 1), task_status="closed", closed_at=now)
            self._request(db, "SQ000004DDDD", due_date=date(2026, 5, 1), assigned_to_id=None)
            self._request(db, "SQ000005EEEE", due_date=date(2026, 6, 30))
            result = due_dates_task.emit_due_date_reminders(db, now=now)

        self.assertEqual(result, {"overdue_notified": 0, "due_soon_notified": 0})

    def test_celery_task_uses_its_own_session(self):
        with self.SessionLocal() as db:
            self._request(db, "SQ000006FFFF", due_date=date(2000, 1, 1))

        result = due_dates_task.due_date_reminders()

        self.assertEqual(result["overdue_notified"], 2)
