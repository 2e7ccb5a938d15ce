"""Logging setup and JSON audit logs for the notifier.

Audit logs live under ``<data_dir>/Logs/<kind>/YYYY-MM-DD.json``; each file is
a JSON object with a ``date`` field and an ``entries`` array.
"""

import json
import logging
import sys
from pathlib import Path
from typing import IO, Any

from wa_notifier.utils.timestamps import today_iso

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure root logging to a stream and, optionally, a log file.

    Args:
        level: Level name such as ``"DEBUG"``; unknown names fall back to INFO.
        log_file: Append log lines to this file as well. ``None`` disables it.
        stream: Console stream. Defaults to stderr.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an entry to today's audit log file.

    Args:
        log_dir: Path to the log directory (e.g., data/Logs/actions).
        entry: Dictionary containing the log entry fields.
            Required: timestamp, correlation_id, actor, action_type, target, result
            Optional: parameters, duration_ms, error

    Examples:
        >>> log_action("data/Logs/actions", {
        ...     "timestamp": "2026-02-04T14:30:22Z",
        ...     "correlation_id": "abc-123",
        ...     "actor": "email_notifier",
        ...     "action_type": "top3_notification",
        ...     "target": "j***@example.com",
        ...     "result": "success"
        ... })
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    date = today_iso()
    log_file = log_path / f"{date}.json"

    if log_file.exists():
        try:
            data = json.loads(log_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            data = {"date": date, "entries": []}
    else:
        data = {"date": date, "entries": []}

    data["entries"].append(entry)

    log_file.write_text(
        json.dumps(data, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )


def read_recent_logs(log_dir: str | Path, count: int = 10) -> list[dict[str, Any]]:
    """Read the most recent audit entries, newest first.

    Reads across multiple days if needed to reach the requested count.
    Unreadable files are skipped.
    """
    log_path = Path(log_dir)
    if not log_path.exists():
        return []

    log_files = sorted(log_path.glob("*.json"), reverse=True)

    entries: list[dict[str, Any]] = []

    for log_file in log_files:
        if len(entries) >= count:
            break

        try:
            data = json.loads(log_file.read_text(encoding="utf-8"))
            file_entries = data.get("entries", [])
            file_entries.reverse()
            entries.extend(file_entries)
        except (json.JSONDecodeError, KeyError):
            continue

    return entries[:count]
