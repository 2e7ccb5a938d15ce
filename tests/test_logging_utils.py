"""Tests for logging setup, audit logs and timestamp helpers."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from wa_notifier.utils.logging_utils import log_action, read_recent_logs, setup_logging
from wa_notifier.utils.timestamps import epoch_ms, format_display_timestamp, now_iso, today_iso
from wa_notifier.utils.uuid_utils import correlation_id


def _entry(n: int) -> dict:
    return {
        "timestamp": f"2026-02-04T14:30:{n:02d}Z",
        "correlation_id": f"cid-{n}",
        "actor": "test",
        "action_type": "top3_notification",
        "target": "t***@example.com",
        "result": "success",
    }


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# ── log_action() ────────────────────────────────────────────────────


class TestLogAction:
    def test_creates_daily_file(self, tmp_path: Path) -> None:
        log_action(tmp_path / "actions", _entry(1))

        log_file = tmp_path / "actions" / f"{today_iso()}.json"
        data = json.loads(log_file.read_text(encoding="utf-8"))
        assert data["date"] == today_iso()
        assert data["entries"] == [_entry(1)]

    def test_appends(self, tmp_path: Path) -> None:
        log_action(tmp_path, _entry(1))
        log_action(tmp_path, _entry(2))

        data = json.loads((tmp_path / f"{today_iso()}.json").read_text(encoding="utf-8"))
        assert [e["correlation_id"] for e in data["entries"]] == ["cid-1", "cid-2"]

    def test_corrupted_file_starts_fresh(self, tmp_path: Path) -> None:
        (tmp_path / f"{today_iso()}.json").write_text("{broken", encoding="utf-8")
        log_action(tmp_path, _entry(3))

        data = json.loads((tmp_path / f"{today_iso()}.json").read_text(encoding="utf-8"))
        assert data["entries"] == [_entry(3)]


class TestReadRecentLogs:
    def test_newest_first_across_days(self, tmp_path: Path) -> None:
        with patch("wa_notifier.utils.logging_utils.today_iso", return_value="2026-02-03"):
            log_action(tmp_path, _entry(1))
            log_action(tmp_path, _entry(2))
        with patch("wa_notifier.utils.logging_utils.today_iso", return_value="2026-02-04"):
            log_action(tmp_path, _entry(3))

        entries = read_recent_logs(tmp_path, count=2)
        assert [e["correlation_id"] for e in entries] == ["cid-3", "cid-2"]

    def test_missing_dir(self, tmp_path: Path) -> None:
        assert read_recent_logs(tmp_path / "missing") == []

    def test_skips_unreadable_files(self, tmp_path: Path) -> None:
        (tmp_path / "2026-02-05.json").write_text("nope", encoding="utf-8")
        with patch("wa_notifier.utils.logging_utils.today_iso", return_value="2026-02-04"):
            log_action(tmp_path, _entry(1))
        assert len(read_recent_logs(tmp_path)) == 1


# ── setup_logging() ─────────────────────────────────────────────────


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    def test_writes_to_log_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "whatsapp-notifier.log"
        setup_logging("INFO", log_file)

        logging.getLogger("wa_notifier.test").info("Top 3 changed!")
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert re.search(r"\[wa_notifier\.test\] INFO: Top 3 changed!", content)

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.INFO

    def test_debug_level(self) -> None:
        setup_logging("debug")
        assert logging.getLogger().level == logging.DEBUG


# ── Timestamps / IDs ────────────────────────────────────────────────


class TestTimestamps:
    def test_now_iso_format(self) -> None:
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", now_iso())

    def test_display_timestamp_format(self) -> None:
        text = format_display_timestamp(datetime(2026, 2, 4, 14, 30, tzinfo=UTC))
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", text)

    def test_naive_treated_as_utc(self) -> None:
        aware = datetime(2026, 2, 4, 14, 30, tzinfo=UTC)
        assert format_display_timestamp(aware.replace(tzinfo=None)) == format_display_timestamp(aware)

    def test_epoch_ms_increases(self) -> None:
        assert epoch_ms() > 1_700_000_000_000

    def test_correlation_ids_unique(self) -> None:
        assert correlation_id() != correlation_id()
