from __future__ import annotations

import json
import logging
import sys
import unittest
from datetime import date, datetime, timedelta, timezone

from timeledger.logging_utils import JsonFormatter
from timeledger.models import EventKind


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("timeledger.corrections", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_are_emitted(self) -> None:
        formatter = JsonFormatter(service="TimeLedger")

        payload = json.loads(formatter.format(_record("correction_applied", event_id=7, fields=["kind"])))

        self.assertEqual(payload["message"], "correction_applied")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["logger"], "timeledger.corrections")
        self.assertEqual(payload["service"], "TimeLedger")
        self.assertEqual(payload["event_id"], 7)
        self.assertEqual(payload["fields"], ["kind"])
        self.assertNotIn("args", payload)

    def test_domain_values_are_serialized(self) -> None:
        formatter = JsonFormatter()

        payload = json.loads(
            formatter.format(
                _record(
                    "clock_out_without_open_session",
                    ts_utc=datetime(2026, 1, 12, 18, tzinfo=timezone.utc),
                    day=date(2026, 1, 12),
                    worked=timedelta(hours=1, minutes=30),
                    kind=EventKind.CLOCK_OUT,
                )
            )
        )

        self.assertEqual(payload["ts_utc"], "2026-01-12T18:00:00+00:00")
        self.assertEqual(payload["day"], "2026-01-12")
        self.assertEqual(payload["worked"], 5400)
        self.assertEqual(payload["kind"], "CLOCK_OUT")
        self.assertNotIn("service", payload)

    def test_exception_text_is_included(self) -> None:
        formatter = JsonFormatter()
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "timeledger.request",
                logging.ERROR,
                __file__,
                10,
                "unhandled_error",
                None,
                exc_info=sys.exc_info(),
            )

        payload = json.loads(formatter.format(record))

        self.assertIn("RuntimeError: boom", payload["exception"])


if __name__ == "__main__":
    unittest.main()
