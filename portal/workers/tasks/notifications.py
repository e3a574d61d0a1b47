from __future__ import annotations

from portal.services.email_service import EmailDeliveryError, send_email_message
from portal.workers.celery_app import celery_app


@celery_app.task(
    name="portal.workers.tasks.notifications.send_email_task",
    autoretry_for=(EmailDeliveryError,),
    retry_backoff=True,
    max_retries=3,
)
def send_email_task(email: str, subject: str, body: str):
    return send_email_message(email=email, subject=subject, body=body)
