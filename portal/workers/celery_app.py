from celery import Celery
from portal.core.config import settings

celery_app = Celery("service_request_portal", broker=settings.REDIS_URL, backend=settings.REDIS_URL)
celery_app.conf.include = [
    "portal.workers.tasks.due_dates",
    "portal.workers.tasks.notifications",
]

celery_app.conf.beat_schedule = {
    "due_date_reminders": {"task": "portal.workers.tasks.due_dates.due_date_reminders", "schedule": 3600.0},
}
celery_app.conf.timezone = settings.DEFAULT_TIMEZONE
