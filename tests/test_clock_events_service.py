from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import Mock, patch

from sqlalchemy import select

from fieldops.errors import AuthError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from fieldops.models import ClockEvent, ClockEventType, DailyAttendance, DailyAttendanceStatus, GuardLifecycleStatus
from fieldops.services.clock_events import (
    compute_lateness_minutes,
    register_clock_event,
    validate_credentials,
)
from fieldops.services.integrity import verify_clock_event
from fieldops.services.tenant_config import get_clock_config_cache

from factories import CENTER_LAT, CENTER_LNG, PIN, SITE_CODE, VALID_RUT, make_session, santiago_to_utc, seed_site

METRES_PER_DEGREE = 111_194.93
ENTRY_TIME = santiago_to_utc(2026, 6, 15, 8, 5)


class ComputeLatenessTests(unittest.TestCase):
    def test_minutes_after_shift_start(self) -> None:
        self.assertEqual(compute_lateness_minutes(ENTRY_TIME, "08:00"), 5)

    def test_partial_minutes_are_floored(self) -> None:
        self.assertEqual(compute_lateness_minutes(santiago_to_utc(2026, 6, 15, 8, 5, 59), "08:00"), 5)

    def test_on_time_is_not_late(self) -> None:
        self.assertIsNone(compute_lateness_minutes(santiago_to_utc(2026, 6, 15, 7, 55), "08:00"))
        self.assertIsNone(compute_lateness_minutes(santiago_to_utc(2026, 6, 15, 8, 0), "08:00"))

    def test_missing_shift_start(self) -> None:
        self.assertIsNone(compute_lateness_minutes(ENTRY_TIME, None))


class RegisterClockEventTests(unittest.TestCase):
    def setUp(self) -> None:
        get_clock_config_cache().clear()
        self.db = make_session()
        self.dispatcher = Mock()

    def tearDown(self) -> None:
        self.db.close()
        get_clock_config_cache().clear()

    def _register(self, event_type: ClockEventType, *, at=ENTRY_TIME, lat=CENTER_LAT, lng=CENTER_LNG, **kwargs):  # type: ignore[no-untyped-def]
        with patch("fieldops.services.clock_events.utcnow", return_value=at):
            return register_clock_event(
                self.db,
                site_code=kwargs.pop("site_code", SITE_CODE),
                national_id=kwargs.pop("national_id", VALID_RUT),
                pin=kwargs.pop("pin", PIN),
                event_type=event_type,
                lat=lat,
                lng=lng,
                dispatcher=self.dispatcher,
                **kwargs,
            )

    def test_entry_records_lateness_and_hash(self) -> None:
        seed_site(self.db)
        receipt = self._register(ClockEventType.ENTRY)
        event = receipt.event

        self.assertEqual(event.lateness_minutes, 5)
        self.assertEqual(event.sequence_no, 1)
        self.assertTrue(event.geofence_validated)
        self.assertEqual(event.distance_m, 0)
        self.assertEqual(event.local_day, date(2026, 6, 15))
        self.assertEqual(receipt.guard_name, "Ana Rojas")
        verify_clock_event(event)

    def test_entry_then_exit_alternates(self) -> None:
        seed_site(self.db)
        self._register(ClockEventType.ENTRY)
        receipt = self._register(ClockEventType.EXIT, at=santiago_to_utc(2026, 6, 15, 20, 0))

        self.assertEqual(receipt.event.sequence_no, 2)
        self.assertIsNone(receipt.event.lateness_minutes)

    def test_exit_without_entry_is_rejected(self) -> None:
        seed_site(self.db)
        with self.assertRaises(ConflictError) as exc:
            self._register(ClockEventType.EXIT)
        self.assertEqual(exc.exception.code, "ENTRY_REQUIRED")
        self.assertEqual(self.db.scalars(select(ClockEvent)).all(), [])

    def test_repeated_entry_is_rejected(self) -> None:
        seed_site(self.db)
        self._register(ClockEventType.ENTRY)
        with self.assertRaises(ConflictError) as exc:
            self._register(ClockEventType.ENTRY, at=santiago_to_utc(2026, 6, 15, 9, 0))
        self.assertEqual(exc.exception.code, "ALTERNATION_VIOLATION")

    def test_second_shift_same_day_continues_alternation(self) -> None:
        seed_site(self.db)
        self._register(ClockEventType.ENTRY)
        self._register(ClockEventType.EXIT, at=santiago_to_utc(2026, 6, 15, 12, 0))
        receipt = self._register(ClockEventType.ENTRY, at=santiago_to_utc(2026, 6, 15, 14, 0))
        self.assertEqual(receipt.event.sequence_no, 3)

    def test_outside_geofence_reports_distance(self) -> None:
        seed_site(self.db, radius_m=100)
        with self.assertRaises(AuthorizationError) as exc:
            self._register(ClockEventType.ENTRY, lat=CENTER_LAT + 150 / METRES_PER_DEGREE)

        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "OUTSIDE_GEOFENCE")
        self.assertEqual(exc.exception.details, {"distance_m": 150, "radius_m": 100})
        self.assertIn("150 m", exc.exception.message)
        self.assertEqual(self.db.scalars(select(ClockEvent)).all(), [])

    def test_installation_without_center_accepts_unvalidated(self) -> None:
        seed_site(self.db, with_geofence=False)
        receipt = self._register(ClockEventType.ENTRY, lat=10.0, lng=10.0)
        self.assertFalse(receipt.event.geofence_validated)
        self.assertIsNone(receipt.event.distance_m)

    def test_wrong_pin_is_rejected(self) -> None:
        seed_site(self.db)
        with self.assertRaises(AuthError):
            self._register(ClockEventType.ENTRY, pin="9999")

    def test_invalid_national_id_is_rejected(self) -> None:
        seed_site(self.db)
        with self.assertRaises(ValidationError) as exc:
            self._register(ClockEventType.ENTRY, national_id="12345678-9")
        self.assertEqual(exc.exception.code, "INVALID_NATIONAL_ID")

    def test_unknown_site_code(self) -> None:
        seed_site(self.db)
        with self.assertRaises(NotFoundError):
            self._register(ClockEventType.ENTRY, site_code="NOPE")

    def test_inactive_guard_is_rejected(self) -> None:
        seed_site(self.db, lifecycle_status=GuardLifecycleStatus.TERMINATED)
        with self.assertRaises(AuthorizationError) as exc:
            self._register(ClockEventType.ENTRY)
        self.assertEqual(exc.exception.code, "GUARD_INACTIVE")

    def test_receipt_is_dispatched(self) -> None:
        seed_site(self.db)
        self._register(ClockEventType.ENTRY)
        self.dispatcher.submit.assert_called_once()
        self.assertEqual(self.dispatcher.submit.call_args.args[0], "clock_receipt")
        self.assertEqual(self.dispatcher.submit.call_args.kwargs["guard_email"], "guard@example.com")

    def test_receipt_skipped_when_tenant_disables_it(self) -> None:
        tenant, _, _ = seed_site(self.db)
        tenant.clock_config = {"receipt_email_enabled": False}
        self.db.commit()
        self._register(ClockEventType.ENTRY)
        self.dispatcher.submit.assert_not_called()

    def test_dispatch_failure_does_not_fail_event(self) -> None:
        seed_site(self.db)
        self.dispatcher.submit.side_effect = RuntimeError("pool closed")
        receipt = self._register(ClockEventType.ENTRY)
        self.assertIsNotNone(receipt.event.id)

    def test_entry_marks_daily_attendance_present(self) -> None:
        tenant, installation, guard = seed_site(self.db)
        self.db.add(
            DailyAttendance(
                tenant_id=tenant.id,
                installation_id=installation.id,
                slot_number=1,
                date=date(2026, 6, 15),
                planned_guard_id=guard.id,
                status=DailyAttendanceStatus.PENDING,
            )
        )
        self.db.commit()

        receipt = self._register(ClockEventType.ENTRY)

        attendance = self.db.scalar(select(DailyAttendance))
        self.assertEqual(attendance.status, DailyAttendanceStatus.PRESENT)
        self.assertEqual(attendance.actual_guard_id, guard.id)
        self.assertEqual(attendance.check_in_event_id, receipt.event.id)


class ValidateCredentialsTests(unittest.TestCase):
    def setUp(self) -> None:
        get_clock_config_cache().clear()
        self.db = make_session()
        seed_site(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_suggests_entry_then_exit(self) -> None:
        with patch("fieldops.services.clock_events.utcnow", return_value=ENTRY_TIME):
            check = validate_credentials(self.db, site_code=SITE_CODE, national_id=VALID_RUT, pin=PIN)
        self.assertIsNone(check.last_event_type)
        self.assertEqual(check.next_event_type, ClockEventType.ENTRY)

        with patch("fieldops.services.clock_events.utcnow", return_value=ENTRY_TIME):
            register_clock_event(
                self.db,
                site_code=SITE_CODE,
                national_id=VALID_RUT,
                pin=PIN,
                event_type=ClockEventType.ENTRY,
                lat=CENTER_LAT,
                lng=CENTER_LNG,
                dispatcher=Mock(),
            )
            check = validate_credentials(self.db, site_code=SITE_CODE, national_id=VALID_RUT, pin=PIN)
        self.assertEqual(check.next_event_type, ClockEventType.EXIT)


if __name__ == "__main__":
    unittest.main()
