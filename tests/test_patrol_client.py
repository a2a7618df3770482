from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from fieldops.client.device import LocationFix, MotionSampler
from fieldops.client.errors import LocationUnavailableError, decode_json, error_from_response
from fieldops.client.patrol_client import ClientState, PatrolClient
from fieldops.client.queue import DurableMarkQueue
from fieldops.errors import AuthError, ConflictError, NotFoundError, TransientError

BASE_URL = "http://patrol.test"


class _FakeResponse:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json body")
        return self._body


def _error(status_code: int, code: str) -> _FakeResponse:
    return _FakeResponse(status_code, {"error": {"code": code, "message": code.lower(), "request_id": "r"}})


class _ScriptedSession:
    """Answers POSTs from per-path handlers and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.marks: list[str] = []
        self.mark_failure: Any = None
        self.panic_failure: Any = None
        self.handlers = {
            "/patrols/authenticate": lambda payload: _FakeResponse(
                200, {"guardName": "Ana Rojas", "installationName": "North Warehouse"}
            ),
            "/patrols/list-pending": lambda payload: _FakeResponse(
                200, {"guardName": "Ana Rojas", "installationName": "North Warehouse", "executions": [{"id": 42}]}
            ),
            "/patrols/start": lambda payload: _FakeResponse(
                200, {"executionId": 42, "status": "in_progress", "checkpointsTotal": 3}
            ),
            "/patrols/mark-checkpoint": self._mark,
            "/patrols/complete": lambda payload: _FakeResponse(
                200, {"executionId": 42, "status": "completed", "trustScore": 92.5, "marksRecorded": len(self.marks)}
            ),
            "/patrols/panic": self._panic,
        }

    def _mark(self, payload: dict[str, Any]) -> _FakeResponse:
        failure = self.mark_failure(payload) if callable(self.mark_failure) else self.mark_failure
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return failure
        self.marks.append(payload["checkpointCode"])
        return _FakeResponse(200, {"duplicate": False, "marksRecorded": len(self.marks), "checkpointsTotal": 3})

    def _panic(self, payload: dict[str, Any]) -> _FakeResponse:
        if isinstance(self.panic_failure, Exception):
            raise self.panic_failure
        return _FakeResponse(201, {"alertId": 1, "severity": "critical"})

    def post(self, url: str, json: dict[str, Any], headers: dict[str, str], timeout: float) -> _FakeResponse:
        path = url[len(BASE_URL):]
        self.calls.append((path, json))
        return self.handlers[path](json)


class _FixedLocation:
    def __init__(self) -> None:
        self.fail = False
        self.stale = False

    def acquire(self, timeout_s: float) -> LocationFix:
        if self.fail:
            raise TimeoutError("no satellites")
        acquired_at = datetime.now(timezone.utc)
        if self.stale:
            acquired_at -= timedelta(minutes=5)
        return LocationFix(lat=-33.45, lng=-70.66, acquired_at=acquired_at)


class _Battery:
    def level(self) -> float:
        return 77.0


class PatrolClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.queue = DurableMarkQueue(self._tmp.name)
        self.session = _ScriptedSession()
        self.location = _FixedLocation()
        self.client = PatrolClient(
            BASE_URL,
            "SITE-001",
            self.queue,
            self.location,
            battery_provider=_Battery(),
            motion_sampler=MotionSampler(initial=2.0),
            session=self.session,  # type: ignore[arg-type]
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _in_execution(self) -> None:
        self.client.login("12345678-5", "1234")
        self.client.select_execution(42)

    def _mark_paths(self) -> list[str]:
        return [payload["checkpointCode"] for path, payload in self.session.calls if path == "/patrols/mark-checkpoint"]

    def test_login_and_start(self) -> None:
        pending = self.client.login("12345678-5", "1234")
        self.assertEqual(pending, [{"id": 42}])
        self.assertEqual(self.client.state, ClientState.PENDING_LIST)
        self.assertEqual(self.client.guard_name, "Ana Rojas")

        self.client.select_execution(42)
        self.assertEqual(self.client.state, ClientState.IN_EXECUTION)
        self.assertEqual(self.client.checkpoints_total, 3)
        start_payload = self.session.calls[-1][1]
        self.assertEqual(start_payload["deviceInfo"]["batteryLevel"], 77.0)
        self.assertEqual(start_payload["siteCode"], "SITE-001")

    def test_login_failure_keeps_login_state(self) -> None:
        self.session.handlers["/patrols/authenticate"] = lambda payload: _error(401, "INVALID_CREDENTIALS")
        with self.assertRaises(AuthError):
            self.client.login("12345678-5", "0000")
        self.assertEqual(self.client.state, ClientState.LOGIN)
        self.assertEqual(self.client.last_error.code, "INVALID_CREDENTIALS")

    def test_scan_before_start_is_rejected(self) -> None:
        with self.assertRaises(ConflictError):
            self.client.scan_checkpoint("CP-1")

    def test_online_scan_submits_directly(self) -> None:
        self._in_execution()
        outcome = self.client.scan_checkpoint("CP-1")

        self.assertFalse(outcome.queued)
        self.assertEqual(outcome.marks_recorded, 1)
        payload = self.session.calls[-1][1]
        self.assertEqual(payload["motionScore"], 2.0)
        self.assertEqual(payload["batteryLevel"], 77.0)
        self.assertEqual(payload["clientMarkId"], outcome.client_mark_id)
        self.assertEqual(len(self.queue), 0)

    def test_offline_scans_are_queued_and_flushed_in_order(self) -> None:
        self._in_execution()
        self.client.on_connectivity_change(False)

        first = self.client.scan_checkpoint("CP-1")
        self.client.scan_checkpoint("CP-2")

        self.assertTrue(first.queued)
        self.assertEqual(self._mark_paths(), [])
        self.assertEqual(len(DurableMarkQueue(self._tmp.name)), 2)

        flushed = self.client.on_connectivity_change(True)

        self.assertEqual(flushed.submitted, 2)
        self.assertEqual(flushed.remaining, 0)
        self.assertEqual(self._mark_paths(), ["CP-1", "CP-2"])
        self.assertEqual(self.client.marks_recorded, 2)

    def test_transient_failure_defers_mark(self) -> None:
        self._in_execution()
        self.session.mark_failure = _error(503, "SERVICE_UNAVAILABLE")

        outcome = self.client.scan_checkpoint("CP-1")
        self.assertTrue(outcome.queued)
        self.assertEqual(len(self.queue), 1)

        result = self.client.flush_queue()
        self.assertEqual(result.submitted, 0)
        self.assertEqual(result.remaining, 1)

        self.session.mark_failure = None
        result = self.client.flush_queue()
        self.assertEqual(result.submitted, 1)
        self.assertEqual(len(self.queue), 0)

    def test_network_error_defers_mark(self) -> None:
        self._in_execution()
        self.session.mark_failure = requests.ConnectionError("connection refused")

        outcome = self.client.scan_checkpoint("CP-1")

        self.assertTrue(outcome.queued)
        self.assertEqual(self.queue.peek().item_id, outcome.client_mark_id)

    def test_unreadable_success_body_defers_mark(self) -> None:
        self._in_execution()
        self.session.mark_failure = _FakeResponse(200, None)

        outcome = self.client.scan_checkpoint("CP-1")
        self.assertTrue(outcome.queued)
        self.assertEqual(self.queue.peek().item_id, outcome.client_mark_id)

        result = self.client.flush_queue()
        self.assertEqual(result.submitted, 0)
        self.assertEqual(result.remaining, 1)
        self.assertEqual(result.rejected, [])

        self.session.mark_failure = None
        result = self.client.flush_queue()
        self.assertEqual(result.submitted, 1)
        self.assertEqual(self._mark_paths(), ["CP-1", "CP-1", "CP-1"])

    def test_unreadable_body_maps_to_transient_error(self) -> None:
        with self.assertRaises(TransientError) as ctx:
            decode_json(_FakeResponse(200, None))
        self.assertEqual(ctx.exception.code, "INVALID_RESPONSE")

        with self.assertRaises(TransientError):
            decode_json(_FakeResponse(200, ["not", "an", "object"]))

    def test_new_scan_waits_behind_queued_marks(self) -> None:
        self._in_execution()
        self.client.on_connectivity_change(False)
        self.client.scan_checkpoint("CP-1")
        self.client.online = True

        outcome = self.client.scan_checkpoint("CP-2")

        self.assertFalse(outcome.queued)
        self.assertEqual(self._mark_paths(), ["CP-1", "CP-2"])

    def test_permanent_rejection_is_dead_lettered(self) -> None:
        self._in_execution()
        self.client.on_connectivity_change(False)
        self.client.scan_checkpoint("CP-1")
        self.client.scan_checkpoint("CP-2")
        self.session.mark_failure = lambda payload: (
            _error(409, "CHECKPOINT_ALREADY_MARKED") if payload["checkpointCode"] == "CP-1" else None
        )

        result = self.client.on_connectivity_change(True)

        self.assertEqual(result.submitted, 1)
        self.assertEqual([item.code for item in result.rejected], ["CHECKPOINT_ALREADY_MARKED"])
        self.assertEqual(self.client.rejected[0].payload["checkpointCode"], "CP-1")
        self.assertEqual(len(self.queue), 0)

    def test_location_failure_fails_closed(self) -> None:
        self._in_execution()
        self.location.fail = True
        with self.assertRaises(LocationUnavailableError):
            self.client.scan_checkpoint("CP-1")
        self.assertEqual(self._mark_paths(), [])
        self.assertEqual(len(self.queue), 0)

    def test_stale_fix_is_refused(self) -> None:
        self._in_execution()
        self.location.stale = True
        with self.assertRaises(LocationUnavailableError):
            self.client.scan_checkpoint("CP-1")
        self.assertEqual(len(self.queue), 0)

    def test_complete_requires_drained_queue(self) -> None:
        self._in_execution()
        self.client.on_connectivity_change(False)
        self.client.scan_checkpoint("CP-1")

        with self.assertRaises(TransientError) as exc:
            self.client.complete()
        self.assertEqual(exc.exception.code, "QUEUE_NOT_DRAINED")
        self.assertEqual(self.client.state, ClientState.IN_EXECUTION)

    def test_complete_flushes_then_finishes(self) -> None:
        self._in_execution()
        self.client.on_connectivity_change(False)
        self.client.scan_checkpoint("CP-1")
        self.client.online = True

        result = self.client.complete()

        self.assertEqual(result["status"], "completed")
        self.assertEqual(self.client.state, ClientState.COMPLETED)
        self.assertEqual(self.client.trust_score, 92.5)
        self.assertEqual(self._mark_paths(), ["CP-1"])

    def test_panic_is_best_effort(self) -> None:
        self._in_execution()
        self.assertTrue(self.client.panic())

        self.session.panic_failure = requests.ConnectionError("offline")
        self.assertFalse(self.client.panic())

        self.session.panic_failure = None
        self.location.fail = True
        self.assertFalse(self.client.panic())
        self.assertEqual(self.client.state, ClientState.IN_EXECUTION)


class ErrorMappingTests(unittest.TestCase):
    def test_server_errors_are_transient(self) -> None:
        for status in (500, 502, 503, 408, 429):
            self.assertIsInstance(error_from_response(_FakeResponse(status)), TransientError)

    def test_client_errors_keep_server_code(self) -> None:
        error = error_from_response(_error(404, "CHECKPOINT_NOT_FOUND"))
        self.assertIsInstance(error, NotFoundError)
        self.assertEqual(error.code, "CHECKPOINT_NOT_FOUND")
        self.assertEqual(error.message, "checkpoint_not_found")

    def test_details_are_preserved(self) -> None:
        response = _FakeResponse(
            403,
            {"error": {"code": "OUTSIDE_GEOFENCE", "message": "out", "details": {"distance_m": 150}}},
        )
        self.assertEqual(error_from_response(response).details, {"distance_m": 150})


class MotionSamplerTests(unittest.TestCase):
    def test_decaying_average(self) -> None:
        sampler = MotionSampler()
        self.assertEqual(sampler.add_sample(3.0, 4.0), 1.0)
        self.assertEqual(sampler.add_sample(0.0), 0.8)

    def test_clamped(self) -> None:
        sampler = MotionSampler(initial=10.0)
        self.assertEqual(sampler.add_sample(500.0), 10.0)


if __name__ == "__main__":
    unittest.main()
