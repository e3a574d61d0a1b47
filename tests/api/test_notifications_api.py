from tests.api.base import *  # noqa: F401,F403


class NotificationApiTests(PortalApiBase):
    def _seed_notifications(self, user_id, count=2):
        ids = []
        with self.SessionLocal() as db:
            for index in range(count):
                row = Notification(
                    user_id=user_id,
                    type="note_added",
                    title=f"Note {index}",
                    message="body",
                    payload={},
                    responsible="seed",
                )
                db.add(row)
                db.flush()
                ids.append(row.id)
            db.commit()
        return ids

    def test_list_and_mark_read(self):
        first, _ = self._seed_notifications(self.agent_id)
        self._seed_notifications(self.agent2_id, count=1)
        headers = self._headers(self.agent_id)

        listed = self.client.get("/api/notifications", headers=headers)
        self.assertEqual(listed.status_code, 200)
        self.assertEqual(listed.json()["total"], 2)
        self.assertEqual(listed.json()["unread_total"], 2)

        read = self.client.post(f"/api/notifications/{first}/read", headers=headers)
        self.assertEqual(read.status_code, 200, read.text)
        self.assertEqual(read.json()["changed"], 1)
        self.assertTrue(read.json()["notification"]["is_read"])

        unread = self.client.get("/api/notifications", headers=headers, params={"unread_only": "true"})
        self.assertEqual(unread.json()["total"], 1)

        everything = self.client.post("/api/notifications/read-all", headers=headers)
        self.assertEqual(everything.json()["changed"], 1)

        with self.SessionLocal() as db:
            untouched = db.query(Notification).filter(Notification.user_id == self.agent2_id).one()
            self.assertFalse(untouched.is_read)

    def test_cannot_read_someone_elses_notification(self):
        (foreign,) = self._seed_notifications(self.agent2_id, count=1)
        resp = self.client.post(f"/api/notifications/{foreign}/read", headers=self._headers(self.agent_id))
        self.assertEqual(resp.status_code, 404)
