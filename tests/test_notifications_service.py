from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from fieldops.services.notifications import (
    EmailChannel,
    NotificationDispatcher,
    NotificationMessage,
    send_clock_receipt,
    send_panic_alert,
)
from fieldops.settings import Settings


def _settings(**overrides) -> Settings:  # type: ignore[no-untyped-def]
    values = {
        "notification_email_enabled": True,
        "smtp_host": "smtp.example.com",
        "smtp_from": "noreply@example.com",
        "smtp_use_tls": False,
        "operator_alert_emails": "ops@example.com, night@example.com",
    }
    values.update(overrides)
    return Settings(**values)


class EmailChannelTests(unittest.TestCase):
    def test_disabled_channel_sends_nothing(self) -> None:
        with patch("fieldops.services.notifications.get_settings", return_value=_settings(notification_email_enabled=False)):
            result = EmailChannel().send(NotificationMessage(recipients=["a@example.com"], subject="s", body="b"))
        self.assertEqual(result, {"mode": "disabled", "sent": 0})

    def test_missing_recipients_are_skipped(self) -> None:
        with patch("fieldops.services.notifications.get_settings", return_value=_settings()):
            result = EmailChannel().send(NotificationMessage(recipients=[" "], subject="s", body="b"))
        self.assertEqual(result["mode"], "skipped_no_recipients")

    def test_unconfigured_smtp_is_placeholder(self) -> None:
        with patch("fieldops.services.notifications.get_settings", return_value=_settings(smtp_host="")):
            result = EmailChannel().send(NotificationMessage(recipients=["a@example.com"], subject="s", body="b"))
        self.assertEqual(result["mode"], "not_configured")

    def test_clock_receipt_is_sent_over_smtp(self) -> None:
        smtp_client = MagicMock()
        with (
            patch("fieldops.services.notifications.get_settings", return_value=_settings()),
            patch("fieldops.services.notifications.smtplib.SMTP") as smtp_cls,
        ):
            smtp_cls.return_value.__enter__.return_value = smtp_client
            result = send_clock_receipt(
                guard_email="guard@example.com",
                guard_name="Ana Rojas",
                national_id="12345678-5",
                installation_name="North Warehouse",
                event_type="entry",
                timestamp=datetime(2026, 6, 15, 12, 5, tzinfo=timezone.utc),
                geofence_validated=True,
                distance_m=12,
                integrity_hash="f" * 64,
            )

        self.assertEqual(result, {"mode": "sent", "sent": 1})
        message = smtp_client.send_message.call_args.args[0]
        self.assertEqual(message["To"], "guard@example.com")
        self.assertIn("Entry recorded at North Warehouse", message["Subject"])
        body = message.get_content()
        self.assertIn("2026-06-15 08:05:00", body)
        self.assertIn("12 m from site", body)

    def test_panic_alert_goes_to_operators(self) -> None:
        captured: list[NotificationMessage] = []

        def _capture(_channel, message):  # type: ignore[no-untyped-def]
            captured.append(message)
            return {"mode": "sent", "sent": len(message.recipients)}

        with (
            patch("fieldops.services.notifications.get_operator_alert_emails", return_value=["ops@example.com"]),
            patch.object(EmailChannel, "send", _capture),
        ):
            send_panic_alert(
                alert_id=5,
                execution_id=9,
                installation_name="North Warehouse",
                guard_name=None,
                lat=-33.45,
                lng=-70.66,
            )

        self.assertEqual(captured[0].recipients, ["ops@example.com"])
        self.assertIn("PANIC", captured[0].subject)
        self.assertIn("-33.450000, -70.660000", captured[0].body)
        self.assertIn("unassigned", captured[0].body)


class NotificationDispatcherTests(unittest.TestCase):
    def test_task_runs_and_failures_are_swallowed(self) -> None:
        dispatcher = NotificationDispatcher(max_workers=1)
        calls: list[int] = []

        def _boom() -> None:
            raise RuntimeError("smtp down")

        dispatcher.submit("failing", _boom)
        dispatcher.submit("ok", calls.append, 1)
        dispatcher.shutdown(wait=True)

        self.assertEqual(calls, [1])

    def test_submit_after_shutdown_does_not_raise(self) -> None:
        dispatcher = NotificationDispatcher(max_workers=1)
        dispatcher.shutdown(wait=True)
        dispatcher.submit("late", lambda: None)


if __name__ == "__main__":
    unittest.main()
