from __future__ import annotations

import json
import logging
import sys
import unittest

from fieldops.logging_utils import (
    JsonFormatter,
    bind_request_id,
    current_request_id,
    reset_request_id,
    resolve_level,
)


def _record(msg: str = "patrol_mark_anomalies", *, extra: dict | None = None, exc_info=None) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    record = logging.LogRecord("fieldops.patrols", logging.WARNING, __file__, 10, msg, None, exc_info)
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


class JsonFormatterTests(unittest.TestCase):
    def test_payload_carries_service_and_extras(self) -> None:
        line = JsonFormatter().format(_record(extra={"execution_id": 7, "anomalies": ["no_movement"]}))
        payload = json.loads(line)

        self.assertEqual(payload["service"], "fieldops")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "fieldops.patrols")
        self.assertEqual(payload["message"], "patrol_mark_anomalies")
        self.assertEqual(payload["execution_id"], 7)
        self.assertEqual(payload["anomalies"], ["no_movement"])
        self.assertNotIn("request_id", payload)
        self.assertNotIn("msg", payload)

    def test_bound_request_id_is_attached(self) -> None:
        token = bind_request_id("req-123")
        try:
            payload = json.loads(JsonFormatter(service="fieldops-client").format(_record()))
            explicit = json.loads(JsonFormatter().format(_record(extra={"request_id": "req-override"})))
        finally:
            reset_request_id(token)

        self.assertEqual(payload["request_id"], "req-123")
        self.assertEqual(payload["service"], "fieldops-client")
        self.assertEqual(explicit["request_id"], "req-override")
        self.assertIsNone(current_request_id())

    def test_exception_is_rendered(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())

        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("RuntimeError: boom", payload["exception"])

    def test_unserializable_extras_fall_back_to_str(self) -> None:
        payload = json.loads(JsonFormatter().format(_record(extra={"when": object})))
        self.assertIn("object", payload["when"])


class ResolveLevelTests(unittest.TestCase):
    def test_names_and_numbers(self) -> None:
        self.assertEqual(resolve_level("debug"), logging.DEBUG)
        self.assertEqual(resolve_level(" WARNING "), logging.WARNING)
        self.assertEqual(resolve_level(logging.ERROR), logging.ERROR)
        self.assertEqual(resolve_level("chatty"), logging.INFO)


if __name__ == "__main__":
    unittest.main()
