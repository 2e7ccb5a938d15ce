"""Shared utilities for the WhatsApp notifier."""

from wa_notifier.utils.config import ConfigError, NotifierConfig, load_config
from wa_notifier.utils.logging_utils import log_action, read_recent_logs, setup_logging
from wa_notifier.utils.timestamps import now_iso
from wa_notifier.utils.uuid_utils import correlation_id

__all__ = [
    "ConfigError",
    "NotifierConfig",
    "load_config",
    "log_action",
    "read_recent_logs",
    "setup_logging",
    "now_iso",
    "correlation_id",
]
