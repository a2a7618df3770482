from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from functools import lru_cache
from typing import Any

from fieldops.services.timeutils import attendance_timezone, normalize_ts
from fieldops.settings import get_operator_alert_emails, get_settings

logger = logging.getLogger("fieldops.notifications")


@dataclass(frozen=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str


class EmailChannel:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = bool(settings.notification_email_enabled)
        self.smtp_host = settings.smtp_host.strip()
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user.strip()
        self.smtp_pass = settings.smtp_pass
        self.smtp_from = settings.smtp_from.strip()
        self.smtp_use_tls = settings.smtp_use_tls
        self.configured = bool(self.smtp_host and self.smtp_from)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        recipients = [item.strip() for item in message.recipients if item and item.strip()]
        if not self.enabled:
            logger.info("email_channel_disabled", extra={"subject": message.subject})
            return {"mode": "disabled", "sent": 0}
        if not recipients:
            logger.info("email_channel_skip_no_recipients", extra={"subject": message.subject})
            return {"mode": "skipped_no_recipients", "sent": 0}
        if not self.configured:
            logger.info(
                "email_channel_placeholder_send",
                extra={"subject": message.subject, "recipients": recipients},
            )
            return {"mode": "not_configured", "sent": 0}

        email_message = EmailMessage()
        email_message["From"] = self.smtp_from
        email_message["To"] = ", ".join(recipients)
        email_message["Subject"] = message.subject
        email_message.set_content(message.body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as smtp_client:
            if self.smtp_use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_pass)
            smtp_client.send_message(email_message)
        return {"mode": "sent", "sent": len(recipients)}


class NotificationDispatcher:
    """Submit-and-forget execution of side effects on a small worker pool.

    Failures are logged and swallowed; callers never observe them.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            logger.exception("notification_dispatch_failed", extra={"task": task_name})
            return
        future.add_done_callback(lambda done: _log_outcome(task_name, done))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_outcome(task_name: str, future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error(
            "notification_task_failed",
            extra={"task": task_name, "error": repr(exc)},
        )
        return
    logger.info("notification_task_done", extra={"task": task_name, "result": future.result()})


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(max_workers=max(1, get_settings().notification_workers))


def send_clock_receipt(
    *,
    guard_email: str,
    guard_name: str,
    national_id: str,
    installation_name: str,
    event_type: str,
    timestamp: datetime,
    geofence_validated: bool,
    distance_m: int | None,
    integrity_hash: str,
) -> dict[str, Any]:
    local_ts = normalize_ts(timestamp).astimezone(attendance_timezone())
    label = "Entry" if event_type == "entry" else "Exit"
    location_line = (
        f"Location validated ({distance_m} m from site)"
        if geofence_validated
        else "Location recorded (site has no geofence)"
    )
    body = "\n".join(
        [
            f"{label} receipt for {guard_name} ({national_id})",
            f"Installation: {installation_name}",
            f"Server time: {local_ts.strftime('%Y-%m-%d %H:%M:%S %Z')}",
            location_line,
            f"Integrity hash: {integrity_hash}",
        ]
    )
    message = NotificationMessage(
        recipients=[guard_email],
        subject=f"{label} recorded at {installation_name}",
        body=body,
    )
    return EmailChannel().send(message)


def send_panic_alert(
    *,
    alert_id: int,
    execution_id: int,
    installation_name: str,
    guard_name: str | None,
    lat: float | None,
    lng: float | None,
) -> dict[str, Any]:
    position = f"{lat:.6f}, {lng:.6f}" if lat is not None and lng is not None else "unknown"
    message = NotificationMessage(
        recipients=get_operator_alert_emails(),
        subject=f"PANIC alert at {installation_name}",
        body="\n".join(
            [
                f"Alert #{alert_id} raised during patrol execution #{execution_id}.",
                f"Guard: {guard_name or 'unassigned'}",
                f"Position: {position}",
            ]
        ),
    )
    return EmailChannel().send(message)
