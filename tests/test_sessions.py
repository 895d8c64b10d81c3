"""Tests for Codex session log scanning.

Covers newest-first file ordering, reverse line scanning, both rate-limit
payload shapes, malformed lines, hidden files and the max-age short-circuit.

Run: python3 -m pytest tests/test_sessions.py -v
"""

import json
import os
import tempfile
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from codex_tracker.errors import ScanError
from codex_tracker.sessions import LogScanner, parse_usage_line

NOW = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


def usage_line(primary_pct, secondary_pct=10.0, nested=False, resets_at=1759323600):
    limits = {
        "primary": {"used_percent": primary_pct, "window_minutes": 300, "resets_at": resets_at},
        "secondary": {"used_percent": secondary_pct, "window_minutes": 10080, "resets_at": resets_at + 86400},
    }
    payload = {"type": "token_count"}
    if nested:
        payload["info"] = {"total_token_usage": {"input_tokens": 12}, "rate_limits": limits}
    else:
        payload["info"] = {"total_token_usage": {"input_tokens": 12}}
        payload["rate_limits"] = limits
    return json.dumps({"timestamp": "2025-10-01T11:59:00Z", "type": "event_msg", "payload": payload})


def other_line(kind="agent_message"):
    return json.dumps({"type": "event_msg", "payload": {"type": kind, "message": "hello"}})


MALFORMED = '{"type": "event_msg", "payload": {"type": "token_count", "rate_limits": {"primary": '


class SessionTreeMixin:
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "sessions"
        self.root.mkdir()

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, relpath, lines, age_seconds=0):
        path = self.root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        mtime = time.time() - age_seconds
        os.utime(path, (mtime, mtime))
        return path


class TestParseUsageLine(unittest.TestCase):

    def test_direct_rate_limits(self):
        snap = parse_usage_line(usage_line(42), NOW)
        self.assertEqual(snap.primary_used_percent, 42.0)
        self.assertEqual(snap.primary_window_minutes, 300)
        self.assertEqual(snap.secondary_window_minutes, 10080)
        self.assertEqual(snap.primary_reset_at, datetime.fromtimestamp(1759323600, tz=timezone.utc))
        self.assertEqual(snap.fetched_at, NOW)

    def test_nested_info_rate_limits(self):
        snap = parse_usage_line(usage_line(55.5, nested=True), NOW)
        self.assertEqual(snap.primary_used_percent, 55.5)
        self.assertEqual(snap.secondary_used_percent, 10.0)

    def test_float_epoch(self):
        snap = parse_usage_line(usage_line(1, resets_at=1759323600.5), NOW)
        self.assertEqual(snap.primary_reset_at.timestamp(), 1759323600.5)

    def test_remote_fields_left_empty(self):
        snap = parse_usage_line(usage_line(1), NOW)
        self.assertIsNone(snap.requests_limit)
        self.assertIsNone(snap.tokens_limit)
        self.assertIsNone(snap.request_tokens_cost)

    def test_malformed_json_is_skipped(self):
        self.assertIsNone(parse_usage_line(MALFORMED, NOW))

    def test_wrong_payload_type(self):
        line = json.dumps({"payload": {"type": "turn_context", "note": "token_count", "rate_limits": {}}})
        self.assertIsNone(parse_usage_line(line, NOW))

    def test_line_without_markers(self):
        self.assertIsNone(parse_usage_line(other_line(), NOW))

    def test_missing_windows(self):
        line = json.dumps({"payload": {"type": "token_count", "rate_limits": {"primary": None}}})
        snap = parse_usage_line(line, NOW)
        self.assertIsNotNone(snap)
        self.assertIsNone(snap.primary_used_percent)
        self.assertIsNone(snap.secondary_reset_at)


class TestLogScanner(SessionTreeMixin, unittest.TestCase):

    def test_missing_root_raises(self):
        with self.assertRaises(ScanError):
            LogScanner(self.root / "nope").scan()

    def test_root_is_a_file_raises(self):
        path = self.write("file.jsonl", [usage_line(1)])
        with self.assertRaises(ScanError):
            LogScanner(path).scan()

    def test_empty_root_is_not_found(self):
        self.assertIsNone(LogScanner(self.root).scan())

    def test_picks_latest_line_of_newest_matching_file(self):
        self.write("2025/09/29/rollout-a.jsonl", [usage_line(5)], age_seconds=3000)
        self.write(
            "2025/09/30/rollout-b.jsonl",
            [usage_line(20), other_line(), usage_line(33), MALFORMED, other_line()],
            age_seconds=2000,
        )
        self.write("2025/10/01/rollout-c.jsonl", [other_line(), MALFORMED, other_line("token_count")], age_seconds=10)

        snap = LogScanner(self.root).scan()
        self.assertEqual(snap.primary_used_percent, 33.0)

    def test_skips_hidden_files_and_directories(self):
        self.write("rollout.jsonl", [usage_line(7)], age_seconds=500)
        self.write(".hidden.jsonl", [usage_line(99)])
        self.write(".cache/rollout.jsonl", [usage_line(98)])
        self.assertEqual(LogScanner(self.root).scan().primary_used_percent, 7.0)

    def test_ignores_other_extensions(self):
        self.write("rollout.jsonl", [usage_line(7)], age_seconds=500)
        self.write("notes.json", [usage_line(99)])
        self.assertEqual(LogScanner(self.root).scan().primary_used_percent, 7.0)

    def test_max_age_short_circuits_without_reading(self):
        self.write("old-a.jsonl", [usage_line(1)], age_seconds=3 * 86400)
        self.write("old-b.jsonl", [usage_line(2)], age_seconds=2 * 86400)
        scanner = LogScanner(self.root)
        with patch.object(LogScanner, "_parse_latest") as parse:
            self.assertIsNone(scanner.scan(timedelta(hours=12)))
        parse.assert_not_called()

    def test_max_age_allows_recent_files(self):
        self.write("recent.jsonl", [usage_line(61)], age_seconds=60)
        self.assertEqual(LogScanner(self.root).scan(timedelta(hours=12)).primary_used_percent, 61.0)

    def test_stops_at_first_too_old_file(self):
        self.write("recent.jsonl", [other_line()], age_seconds=60)
        self.write("old.jsonl", [usage_line(12)], age_seconds=2 * 86400)
        self.assertIsNone(LogScanner(self.root).scan(timedelta(hours=12)))
        self.assertEqual(LogScanner(self.root).scan().primary_used_percent, 12.0)

    def test_unreadable_file_raises(self):
        self.write("rollout.jsonl", [usage_line(1)])
        with patch.object(Path, "read_text", side_effect=PermissionError("denied")):
            with self.assertRaises(ScanError):
                LogScanner(self.root).scan()

    def test_unreadable_root_raises(self):
        self.write("rollout.jsonl", [usage_line(1)])
        real_scandir = os.scandir

        def scandir(path):
            if Path(path) == self.root:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        with patch("os.scandir", side_effect=scandir):
            with self.assertRaises(ScanError):
                LogScanner(self.root).scan()

    def test_unreadable_subdirectory_is_skipped(self):
        self.write("rollout.jsonl", [usage_line(8)])
        self.write("locked/rollout.jsonl", [usage_line(99)])
        real_scandir = os.scandir

        def scandir(path):
            if Path(path) == self.root / "locked":
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        with patch("os.scandir", side_effect=scandir):
            self.assertEqual(LogScanner(self.root).scan().primary_used_percent, 8.0)

    def test_invalid_utf8_raises(self):
        path = self.root / "rollout.jsonl"
        path.write_bytes(usage_line(3).encode("utf-8") + b"\n\xff\xfe broken\n")
        with self.assertRaises(ScanError):
            LogScanner(self.root).scan()

    def test_has_recent_session(self):
        scanner = LogScanner(self.root)
        self.assertFalse(scanner.has_recent_session(timedelta(hours=12)))
        self.write("old.jsonl", [other_line()], age_seconds=2 * 86400)
        self.assertFalse(scanner.has_recent_session(timedelta(hours=12)))
        self.write("new.jsonl", [other_line()], age_seconds=60)
        self.assertTrue(scanner.has_recent_session(timedelta(hours=12)))

    def test_has_recent_session_without_root(self):
        self.assertFalse(LogScanner(self.root / "missing").has_recent_session(timedelta(hours=1)))


if __name__ == "__main__":
    unittest.main()
