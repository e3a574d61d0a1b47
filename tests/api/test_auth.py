from unittest.mock import patch

from portal.core.security import decode_jwt

from tests.api.base import *  # noqa: F401,F403


class AuthTests(PortalApiBase):
    def test_login_with_code_returns_claims(self):
        user_id = self._create_user("customer", "code@acme.test", company_id=self.company_id, login_code="ABC1234")
        resp = self.client.post("/api/auth/login", json={"login_code": "abc1234"})
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["token_type"], "Bearer")
        claims = decode_jwt(body["access_token"], settings.JWT_SECRET)
        self.assertEqual(claims["sub"], str(user_id))
        self.assertEqual(claims["role"], "customer")
        self.assertEqual(claims["company_id"], str(self.company_id))
        self.assertEqual(body["user"]["email"], "code@acme.test")

    def test_agent_login_requires_agent_record(self):
        self._create_user("agent", "coded@portal.test", login_code="AGT0001", agent_companies=[self.company_id])
        self._create_user("customer", "notagent@acme.test", company_id=self.company_id, login_code="CUS0001")

        ok = self.client.post("/api/auth/login", json={"login_code": "AGT0001", "is_agent": True})
        self.assertEqual(ok.status_code, 200, ok.text)
        self.assertEqual(ok.json()["user"]["assigned_company_ids"], [str(self.company_id)])

        denied = self.client.post("/api/auth/login", json={"login_code": "CUS0001", "is_agent": True})
        self.assertEqual(denied.status_code, 401)

    def test_email_password_login(self):
        ok = self.client.post("/api/auth/login", json={"email": "ADMIN@portal.test", "password": "admin123"})
        self.assertEqual(ok.status_code, 200, ok.text)
        bad = self.client.post("/api/auth/login", json={"email": "admin@portal.test", "password": "wrong"})
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json()["error"], "Invalid credentials")

    def test_email_and_code_login_and_inactive_users(self):
        self._create_user("customer", "pair@acme.test", company_id=self.company_id, login_code="PAIR001")
        self._create_user("customer", "gone@acme.test", company_id=self.company_id, login_code="GONE001", is_active=False)
        ok = self.client.post("/api/auth/login", json={"email": "pair@acme.test", "login_code": "PAIR001"})
        self.assertEqual(ok.status_code, 200)
        mismatch = self.client.post("/api/auth/login", json={"email": "cust@acme.test", "login_code": "PAIR001"})
        self.assertEqual(mismatch.status_code, 401)
        inactive = self.client.post("/api/auth/login", json={"login_code": "GONE001"})
        self.assertEqual(inactive.status_code, 401)
        empty = self.client.post("/api/auth/login", json={})
        self.assertEqual(empty.status_code, 401)

    def test_bootstrap_admin_only_when_no_super_admin_exists(self):
        with patch.object(settings, "BOOTSTRAP_ADMIN_EMAIL", "root@portal.test"), patch.object(
            settings, "BOOTSTRAP_ADMIN_PASSWORD", "bootstrap-pass"
        ):
            blocked = self.client.post("/api/auth/login", json={"email": "root@portal.test", "password": "bootstrap-pass"})
            self.assertEqual(blocked.status_code, 401)

            with self.SessionLocal() as db:
                db.query(User).filter(User.role == "super_admin").delete()
                db.commit()

            created = self.client.post("/api/auth/login", json={"email": "root@portal.test", "password": "bootstrap-pass"})
        self.assertEqual(created.status_code, 200, created.text)
        self.assertEqual(created.json()["user"]["role"], "super_admin")

    def test_me_and_timezone(self):
        headers = self._headers(self.customer_id)
        me = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["id"], str(self.customer_id))

        changed = self.client.put("/api/auth/timezone", headers=headers, json={"timezone": "Europe/Berlin"})
        self.assertEqual(changed.status_code, 200, changed.text)
        self.assertEqual(changed.json()["timezone"], "Europe/Berlin")

        invalid = self.client.put("/api/auth/timezone", headers=headers, json={"timezone": "Mars/Olympus"})
        self.assertEqual(invalid.status_code, 400)

    def test_tampered_token_is_rejected(self):
        headers = self._headers(self.customer_id)
        headers["Authorization"] += "x"
        resp = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(resp.status_code, 401)
