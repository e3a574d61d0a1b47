from unittest.mock import patch

from tests.api.base import *  # noqa: F401,F403


class NotesAndActivityTests(PortalApiBase):
    def test_note_is_logged_and_notifies_assignee(self):
        request_id = self._create_request(assigned_to_id=self.agent_id)
        resp = self.client.post(
            f"/api/requests/{request_id}/notes",
            headers=self._headers(self.customer_id),
            json={"note_content": "Please call me back"},
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        self.assertEqual(resp.json()["note_content"], "Please call me back")
        self.assertEqual(self._activity_types(request_id), ["note_added"])

        with self.SessionLocal() as db:
            log = db.query(ActivityLog).filter(ActivityLog.request_id == request_id).one()
            self.assertEqual(log.details["preview"], "Please call me back")
            self.assertEqual(log.user_id, self.customer_id)
            notices = db.query(Notification).filter(Notification.user_id == self.agent_id).all()
            self.assertEqual([row.type for row in notices], ["note_added"])
            own = db.query(Notification).filter(Notification.user_id == self.customer_id).count()
            self.assertEqual(own, 0)

        listed = self.client.get(f"/api/requests/{request_id}/notes", headers=self._headers(self.agent_id))
        self.assertEqual(listed.json()["total"], 1)

    def test_note_validation(self):
        request_id = self._create_request()
        headers = self._headers(self.customer_id)
        empty = self.client.post(f"/api/requests/{request_id}/notes", headers=headers, json={"note_content": "  "})
        self.assertEqual(empty.status_code, 400)
        bad_email = self.client.post(
            f"/api/requests/{request_id}/notes",
            headers=headers,
            json={"note_content": "hi", "recipient_email": "nobody"},
        )
        self.assertEqual(bad_email.status_code, 400)

    def test_recipient_email_is_dispatched(self):
        request_id = self._create_request()
        with patch("portal.api.requests_modules.notes.dispatch_email", return_value=True) as dispatch:
            resp = self.client.post(
                f"/api/requests/{request_id}/notes",
                headers=self._headers(self.agent_id),
                json={"note_content": "Docs received", "recipient_email": "broker@example.com"},
            )
        self.assertEqual(resp.status_code, 201, resp.text)
        dispatch.assert_called_once()
        self.assertEqual(dispatch.call_args.kwargs["email"], "broker@example.com")

    def test_every_mutation_leaves_one_matching_log(self):
        created = self.client.post(
            "/api/requests",
            headers=self._headers(self.manager_id),
            data={
                "insured": "Acme",
                "service_request_narrative": "Audit trail",
                "assigned_by_id": str(self.customer_id),
                "assigned_to_id": str(self.agent_id),
            },
        ).json()
        request_id = UUID(created["id"])
        headers = self._headers(self.agent_id)
        self.client.put(f"/api/requests/{request_id}", headers=headers, data={"task_status": "open"})
        self.client.post(f"/api/requests/{request_id}/notes", headers=headers, json={"note_content": "Called"})

        resp = self.client.get(f"/api/requests/{request_id}/activity", headers=headers)
        self.assertEqual(resp.status_code, 200)
        types = sorted(row["type"] for row in resp.json()["rows"])
        self.assertEqual(types, ["note_added", "request_created", "request_updated", "status_changed"])
        for row in resp.json()["rows"]:
            self.assertEqual(row["request_id"], str(request_id))
        status_row = next(row for row in resp.json()["rows"] if row["type"] == "status_changed")
        self.assertEqual(status_row["metadata"], {"fromStatus": "new", "toStatus": "open"})

    def test_company_activity_scope(self):
        request_id = self._create_request()
        self._add_note(request_id, self.customer_id)
        self.client.post(
            f"/api/requests/{request_id}/notes",
            headers=self._headers(self.customer_id),
            json={"note_content": "Any update?"},
        )

        plain_customer = self.client.get("/api/activity", headers=self._headers(self.customer_id))
        self.assertEqual(plain_customer.status_code, 403)

        own = self.client.get("/api/activity", headers=self._headers(self.customer_admin_id))
        self.assertEqual(own.status_code, 200)
        self.assertEqual([row["type"] for row in own.json()["rows"]], ["note_added"])

        foreign = self.client.get(
            "/api/activity",
            headers=self._headers(self.customer_admin_id),
            params={"company_id": str(self.other_company_id)},
        )
        self.assertEqual(foreign.status_code, 404)

        admin_missing = self.client.get("/api/activity", headers=self._headers(self.admin_id))
        self.assertEqual(admin_missing.status_code, 400)

        admin = self.client.get(
            "/api/activity",
            headers=self._headers(self.admin_id),
            params={"company_id": str(self.company_id)},
        )
        self.assertEqual(admin.json()["total"], 1)
