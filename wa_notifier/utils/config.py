"""Configuration for the notifier.

Values come from the environment (``config/.env`` and ``.env`` are loaded
first), then from the YAML settings file that the control server writes when
the user overrides the target address or phone number.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Keys the user may override through the control server
SETTINGS_KEYS = ("email_to", "whatsapp_phone")


class ConfigError(ValueError):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class NotifierConfig:
    """Runtime configuration for the watcher, notifier and control server."""

    email_user: str = ""
    email_pass: str = ""
    email_to: str = ""
    whatsapp_phone: str = ""
    headless: bool = False
    check_interval: float = 5.0
    data_dir: str = "./data"
    session_path: str = "config/whatsapp_session"
    settings_path: str = "config/settings.yaml"
    log_level: str = "INFO"
    log_file: str = "whatsapp-notifier.log"
    dry_run: bool = False

    def validate(self) -> None:
        """Raise ConfigError if any mandatory email setting is absent."""
        missing = [
            name
            for name, value in (
                ("EMAIL_USER", self.email_user),
                ("EMAIL_PASS", self.email_pass),
                ("EMAIL_TO", self.email_to),
            )
            if not value
        ]
        if missing:
            msg = (
                f"Missing required email configuration: {', '.join(missing)}. "
                "Please check your .env file."
            )
            raise ConfigError(msg)
        check_email_address(self.email_to)

    def with_overrides(self, **overrides: str | None) -> NotifierConfig:
        """Return a copy with non-empty override values applied."""
        changes = {key: value for key, value in overrides.items() if value}
        return replace(self, **changes) if changes else self


def check_email_address(address: str) -> None:
    """Reject strings that are obviously not email addresses."""
    if "@" not in address:
        msg = f"Invalid email address format: {address}"
        raise ConfigError(msg)


def _env_bool(env: Mapping[str, str], key: str, default: str) -> bool:
    return env.get(key, default).lower() == "true"


def load_env_files() -> None:
    """Load ``config/.env`` (project convention) and then a local ``.env``."""
    load_dotenv(PROJECT_ROOT / "config" / ".env")
    load_dotenv()


def load_config(env: Mapping[str, str] | None = None) -> NotifierConfig:
    """Build a NotifierConfig from environment variables and saved settings.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Raises:
        ConfigError: If CHECK_INTERVAL is not a positive number.
    """
    env = os.environ if env is None else env

    try:
        check_interval = float(env.get("CHECK_INTERVAL", "5"))
    except ValueError as exc:
        msg = f"CHECK_INTERVAL must be a number, got {env.get('CHECK_INTERVAL')!r}"
        raise ConfigError(msg) from exc
    if check_interval <= 0:
        msg = f"CHECK_INTERVAL must be positive, got {check_interval}"
        raise ConfigError(msg)

    config = NotifierConfig(
        email_user=env.get("EMAIL_USER", ""),
        email_pass=env.get("EMAIL_PASS", ""),
        email_to=env.get("EMAIL_TO", ""),
        whatsapp_phone=env.get("WHATSAPP_PHONE", ""),
        headless=_env_bool(env, "HEADLESS", "false"),
        check_interval=check_interval,
        data_dir=env.get("DATA_DIR", "./data"),
        session_path=env.get("WHATSAPP_SESSION_PATH", "config/whatsapp_session"),
        settings_path=env.get("SETTINGS_PATH", "config/settings.yaml"),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        log_file=env.get("LOG_FILE", "whatsapp-notifier.log"),
        dry_run=_env_bool(env, "DRY_RUN", "false"),
    )

    settings = load_settings(config.settings_path)
    return config.with_overrides(**settings)


# ── Settings overrides ──────────────────────────────────────────────


def load_settings(path: str | Path) -> dict[str, str]:
    """Load saved overrides from the YAML settings file.

    Missing or unreadable files yield an empty dict; unknown keys are dropped.
    """
    settings_path = Path(path)
    if not settings_path.exists():
        return {}

    try:
        data: Any = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError:
        logger.warning("Corrupted settings file %s, ignoring it", settings_path)
        return {}

    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a mapping, ignoring it", settings_path)
        return {}

    return {key: str(data[key]) for key in SETTINGS_KEYS if data.get(key)}


def save_settings(path: str | Path, **updates: str | None) -> dict[str, str]:
    """Merge non-empty updates into the YAML settings file and return the result.

    Raises:
        ConfigError: If ``email_to`` is given but is not an email address.
    """
    unknown = set(updates) - set(SETTINGS_KEYS)
    if unknown:
        msg = f"Unknown settings: {', '.join(sorted(unknown))}"
        raise ConfigError(msg)

    if updates.get("email_to"):
        check_email_address(updates["email_to"])

    settings = load_settings(path)
    settings.update({key: value for key, value in updates.items() if value})

    settings_path = Path(path)
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(
        yaml.safe_dump(settings, default_flow_style=False, allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Saved settings to %s", settings_path)
    return settings
