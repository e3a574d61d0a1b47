from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Callable

import httpx

from portal.core.config import settings

logger = logging.getLogger(__name__)

MOCK_PROVIDERS = {"", "dummy", "mock", "console"}
SERVICE_PROVIDERS = {"service", "email_service"}


class EmailDeliveryError(Exception):
    pass


def _clean(value: Any) -> str:
    return str(value or "").strip()


def _with_footer(body: str) -> str:
    return f"{body}\n\n-- \n{settings.APP_NAME}"


def _log_only(*, email: str, subject: str, body: str) -> dict[str, Any]:
    logger.info("[EMAIL MOCK] to=%s subject=%s chars=%d", email, subject, len(body or ""))
    return {"provider": "mock_email", "status": "accepted", "sent": False, "mocked": True}


def _smtp_connection() -> smtplib.SMTP:
    host = _clean(settings.SMTP_HOST)
    port = int(settings.SMTP_PORT or 0)
    if settings.SMTP_USE_TLS and settings.SMTP_USE_SSL:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL cannot both be enabled")
    if not host or not port or not _clean(settings.SMTP_FROM):
        raise EmailDeliveryError("SMTP_HOST/SMTP_PORT/SMTP_FROM are not configured")
    factory = smtplib.SMTP_SSL if settings.SMTP_USE_SSL else smtplib.SMTP
    return factory(host=host, port=port, timeout=15)


def _deliver_smtp(*, email: str, subject: str, body: str) -> dict[str, Any]:
    message = EmailMessage()
    message["From"] = _clean(settings.SMTP_FROM)
    message["To"] = email
    message["Subject"] = subject
    message.set_content(_with_footer(body))

    try:
        with _smtp_connection() as client:
            client.ehlo()
            if settings.SMTP_USE_TLS:
                client.starttls()
                client.ehlo()
            if _clean(settings.SMTP_USER):
                client.login(_clean(settings.SMTP_USER), _clean(settings.SMTP_PASSWORD))
            client.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc
    return {"provider": "smtp", "status": "accepted", "sent": True}


def _deliver_via_service(*, email: str, subject: str, body: str) -> dict[str, Any]:
    base_url = _clean(settings.EMAIL_SERVICE_URL).rstrip("/")
    token = _clean(settings.INTERNAL_SERVICE_TOKEN)
    if not base_url:
        raise EmailDeliveryError("EMAIL_SERVICE_URL is not configured")
    if not token:
        raise EmailDeliveryError("INTERNAL_SERVICE_TOKEN is not configured")
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.post(
                f"{base_url}/internal/send-email",
                headers={"X-Internal-Token": token},
                json={"email": email, "subject": subject, "body": _with_footer(body)},
            )
    except httpx.HTTPError as exc:
        raise EmailDeliveryError(f"email-service request failed: {exc}") from exc
    try:
        reply = response.json() if response.content else {}
    except ValueError:
        reply = {}
    if response.status_code >= 400:
        detail = reply.get("detail") or reply.get("error") or response.text or response.status_code
        raise EmailDeliveryError(f"email-service error: {detail}")
    return {"provider": "email-service", "status": "accepted", "sent": True, "response": reply}


def _transport_for(provider: str) -> Callable[..., dict[str, Any]]:
    if provider in MOCK_PROVIDERS:
        return _log_only
    if provider in SERVICE_PROVIDERS:
        return _deliver_via_service
    if provider == "smtp":
        return _deliver_smtp
    raise EmailDeliveryError(f"Unknown EMAIL_PROVIDER: {provider}")


def send_email_message(*, email: str, subject: str, body: str) -> dict[str, Any]:
    """Deliver one notification email through ``EMAIL_PROVIDER``; raises :class:`EmailDeliveryError`."""
    recipient = _clean(email).lower()
    if "@" not in recipient:
        raise EmailDeliveryError("Invalid email address")
    transport = _transport_for(_clean(settings.EMAIL_PROVIDER or "dummy").lower())
    return transport(email=recipient, subject=_clean(subject) or settings.APP_NAME, body=str(body or ""))
