from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path

from reel_gateway.event_log import (
    EventLogger,
    current_request_id,
    redact_url,
    request_scope,
    truncate,
)


class TestEventLogger(unittest.TestCase):
    def test_writes_one_json_object_per_line(self) -> None:
        buf = io.StringIO()
        log = EventLogger(buf, session_id="s1")

        log.info("provider_succeeded", provider="instagram120", failed_before=1)
        log.warning("relay_rejected", url="https://example.com/x.mp4", status_code=403)

        lines = buf.getvalue().splitlines()
        self.assertEqual(len(lines), 2)

        first = json.loads(lines[0])
        self.assertEqual(first["event"], "provider_succeeded")
        self.assertEqual(first["level"], "INFO")
        self.assertEqual(first["session_id"], "s1")
        self.assertEqual(first["data"], {"provider": "instagram120", "failed_before": 1})
        self.assertNotIn("url", first)

        second = json.loads(lines[1])
        self.assertEqual(second["level"], "WARN")
        self.assertEqual(second["url"], "https://example.com/x.mp4")

    def test_exception_records_type_and_traceback(self) -> None:
        buf = io.StringIO()
        log = EventLogger(buf)
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            log.exception("command_failed", exc=e)

        rec = json.loads(buf.getvalue())
        self.assertEqual(rec["level"], "ERROR")
        self.assertEqual(rec["data"]["error"]["type"], "RuntimeError")
        self.assertIn("boom", rec["data"]["error"]["traceback"])

    def test_file_logger_appends_after_first_open(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "gateway.jsonl"
            path.parent.mkdir()
            path.write_text("old\n", encoding="utf-8")

            with EventLogger.open(path, overwrite=True) as log:
                log.info("server_starting", port=8000)
            with EventLogger.open(path) as log:
                log.info("server_starting", port=8001)

            lines = path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            self.assertEqual(json.loads(lines[1])["data"]["port"], 8001)

    def test_min_level_drops_lower_events(self) -> None:
        buf = io.StringIO()
        log = EventLogger(buf, min_level="WARN")

        log.debug("noise")
        log.info("request_completed")
        log.warning("provider_attempt_failed")

        events = [json.loads(line)["event"] for line in buf.getvalue().splitlines()]
        self.assertEqual(events, ["provider_attempt_failed"])

    def test_request_scope_tags_events(self) -> None:
        buf = io.StringIO()
        log = EventLogger(buf)

        with request_scope("req-1") as rid:
            self.assertEqual(rid, "req-1")
            self.assertEqual(current_request_id(), "req-1")
            log.info("inside")
        log.info("outside")

        first, second = [json.loads(line) for line in buf.getvalue().splitlines()]
        self.assertEqual(first["request_id"], "req-1")
        self.assertNotIn("request_id", second)
        self.assertIsNone(current_request_id())

    def test_url_query_is_stripped(self) -> None:
        buf = io.StringIO()
        EventLogger(buf).info("relay_started", url="https://scontent.cdninstagram.com/v/a.mp4?oh=secret&oe=1")

        rec = json.loads(buf.getvalue())
        self.assertEqual(rec["url"], "https://scontent.cdninstagram.com/v/a.mp4")


class TestRedactUrl(unittest.TestCase):
    def test_redact_url(self) -> None:
        self.assertEqual(redact_url("https://a.test/x?y=1#z"), "https://a.test/x")
        self.assertEqual(redact_url(None), "")


class TestTruncate(unittest.TestCase):
    def test_truncate(self) -> None:
        self.assertEqual(truncate("abc", limit=5), "abc")
        self.assertEqual(truncate("abcdef", limit=4), "abc…")
        self.assertEqual(truncate("abc", limit=0), "")


if __name__ == "__main__":
    unittest.main()
