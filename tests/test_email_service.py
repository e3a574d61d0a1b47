import os
import unittest
from unittest.mock import Mock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from portal.core.config import settings
from portal.services.email_service import EmailDeliveryError, send_email_message
from portal.services.notifications import dispatch_email


class EmailServiceTests(unittest.TestCase):
    def setUp(self):
        self._backup = {
            "EMAIL_PROVIDER": settings.EMAIL_PROVIDER,
            "EMAIL_SERVICE_URL": settings.EMAIL_SERVICE_URL,
            "INTERNAL_SERVICE_TOKEN": settings.INTERNAL_SERVICE_TOKEN,
            "NOTIFICATION_DELIVERY": settings.NOTIFICATION_DELIVERY,
            "SMTP_HOST": settings.SMTP_HOST,
        }

    def tearDown(self):
        for key, value in self._backup.items():
            setattr(settings, key, value)

    def test_dummy_provider_only_logs(self):
        settings.EMAIL_PROVIDER = "dummy"
        payload = send_email_message(email="User@Example.com", subject="Hi", body="Body")
        self.assertEqual(payload.get("provider"), "mock_email")
        self.assertFalse(payload.get("sent"))

    def test_service_provider_calls_internal_email_service(self):
        settings.EMAIL_PROVIDER = "service"
        settings.EMAIL_SERVICE_URL = "http://email-service:8010"
        settings.INTERNAL_SERVICE_TOKEN = "token"

        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.content = b'{"status":"sent"}'
        mock_response.json.return_value = {"status": "sent"}

        mock_client = Mock()
        mock_client.__enter__ = Mock(return_value=mock_client)
        mock_client.__exit__ = Mock(return_value=False)
        mock_client.post.return_value = mock_response

        with patch("portal.services.email_service.httpx.Client", return_value=mock_client):
            payload = send_email_message(email="user@example.com", subject="Status", body="Closed")
        self.assertEqual(payload.get("provider"), "email-service")
        self.assertTrue(bool(payload.get("sent")))
        _, kwargs = mock_client.post.call_args
        self.assertEqual(kwargs["json"]["subject"], "Status")

    def test_unknown_provider_raises(self):
        settings.EMAIL_PROVIDER = "unknown"
        with self.assertRaises(EmailDeliveryError):
            send_email_message(email="user@example.com", subject="x", body="y")

    def test_smtp_without_host_raises(self):
        settings.EMAIL_PROVIDER = "smtp"
        settings.SMTP_HOST = ""
        with self.assertRaises(EmailDeliveryError):
            send_email_message(email="user@example.com", subject="x", body="y")

    def test_dispatch_swallows_delivery_errors(self):
        settings.NOTIFICATION_DELIVERY = "inline"
        settings.EMAIL_PROVIDER = "unknown"
        self.assertFalse(dispatch_email(email="user@example.com", subject="x", body="y"))
        self.assertFalse(dispatch_email(email="", subject="x", body="y"))

    def test_dispatch_queues_celery_task(self):
        settings.NOTIFICATION_DELIVERY = "celery"
        with patch("portal.workers.tasks.notifications.send_email_task.delay") as delay:
            self.assertTrue(dispatch_email(email="user@example.com", subject="Subj", body="Body"))
        delay.assert_called_once_with(email="user@example.com", subject="Subj", body="Body")

    def test_auto_delivery_queues_real_transports(self):
        settings.NOTIFICATION_DELIVERY = "auto"
        settings.EMAIL_PROVIDER = "smtp"
        with patch("portal.workers.tasks.notifications.send_email_task.delay") as delay, patch(
            "portal.services.notifications.send_email_message"
        ) as inline_send:
            self.assertTrue(dispatch_email(email="user@example.com", subject="Subj", body="Body"))
        delay.assert_called_once_with(email="user@example.com", subject="Subj", body="Body")
        inline_send.assert_not_called()

    def test_auto_delivery_logs_mock_provider_inline(self):
        settings.NOTIFICATION_DELIVERY = "auto"
        settings.EMAIL_PROVIDER = "dummy"
        with patch("portal.workers.tasks.notifications.send_email_task.delay") as delay:
            self.assertTrue(dispatch_email(email="user@example.com", subject="Subj", body="Body"))
        delay.assert_not_called()
