from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tests.api.base import *  # noqa: F401,F403


def _reject_audit_and_notification_rows(session, flush_context, instances):
    for obj in session.new:
        if isinstance(obj, (ActivityLog, Notification)):
            raise SQLAlchemyError("audit store unavailable")


class SideEffectFailureTests(PortalApiBase):
    def setUp(self):
        super().setUp()
        event.listen(Session, "before_flush", _reject_audit_and_notification_rows)
        self.addCleanup(event.remove, Session, "before_flush", _reject_audit_and_notification_rows)

    def test_update_survives_failed_activity_and_notification_writes(self):
        request_id = self._create_request(task_status="open", assigned_to_id=self.agent_id)
        resp = self.client.put(
            f"/api/requests/{request_id}",
            headers=self._headers(self.manager_id),
            data={"task_status": "in_progress", "insured": "Acme Holdings"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["task_status"], "in_progress")
        self.assertEqual(body["insured"], "Acme Holdings")

        with self.SessionLocal() as db:
            row = db.get(ServiceRequest, request_id)
            self.assertEqual(row.task_status, "in_progress")
            self.assertEqual(row.insured, "Acme Holdings")
            self.assertIsNotNone(row.in_progress_at)
            self.assertEqual(db.query(ActivityLog).count(), 0)
            self.assertEqual(db.query(Notification).count(), 0)

    def test_note_is_kept_when_side_effects_fail(self):
        request_id = self._create_request(assigned_to_id=self.agent_id)
        resp = self.client.post(
            f"/api/requests/{request_id}/notes",
            headers=self._headers(self.customer_id),
            json={"note_content": "Please call back"},
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        with self.SessionLocal() as db:
            self.assertEqual(db.query(RequestNote).filter(RequestNote.request_id == request_id).count(), 1)
