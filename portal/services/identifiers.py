from __future__ import annotations

import re
import secrets
import time

from portal.core.security import generate_login_code

SERVICE_QUEUE_ID_RE = re.compile(r"^SQ\d{6}[0-9A-F]{4}$")


def _millis() -> int:
    return int(time.time() * 1000)


def generate_service_queue_id() -> str:
    return f"SQ{str(_millis())[-6:]}{secrets.token_hex(2).upper()}"


def generate_task_id() -> str:
    return f"TASK-{_millis()}{secrets.token_hex(2).upper()}"


def generate_company_code() -> str:
    return generate_login_code()
