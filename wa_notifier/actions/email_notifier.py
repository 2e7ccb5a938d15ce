"""Email notifier - sends one HTML email per detected top-3 change.

This is an ACTION layer component. It receives NotificationEvents from the
watcher and hands a rendered message to the SMTP client for a single attempt.
Delivery failures are logged and never retried; the next change gets its own
independent attempt.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import smtplib
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from wa_notifier.actions.smtp_client import SmtpClient
from wa_notifier.utils.logging_utils import log_action
from wa_notifier.utils.timestamps import format_display_timestamp, now_iso
from wa_notifier.utils.uuid_utils import correlation_id
from wa_notifier.watchers.snapshot import NotificationEvent

logger = logging.getLogger(__name__)

SUBJECT = "🔔 WhatsApp Top 3 Update"
TEST_SUBJECT = "WhatsApp Notifier Test Email"
UNKNOWN_NAME = "Unknown"

ACCENT_COLOR = "#25D366"


def redact_email(address: str) -> str:
    """Redact an email address for logging: ``john@example.com`` → ``j***@example.com``."""
    match = re.match(r"^([^@])", address)
    if match and "@" in address:
        local, domain = address.split("@", 1)
        return f"{local[0]}***@{domain}"
    return "***"


def _display_names(event: NotificationEvent) -> list[str]:
    return [name or UNKNOWN_NAME for name in event.current]


def render_subject(event: NotificationEvent) -> str:
    """Subject line for a change notification. Always the same text."""
    return SUBJECT


def render_html(event: NotificationEvent, whatsapp_phone: str = "") -> str:
    """Render the HTML body: the ranked names and the detection time."""
    items = "\n".join(
        f"                <li><strong>{html.escape(name)}</strong></li>"
        for name in _display_names(event)
    )
    when = html.escape(format_display_timestamp(event.timestamp))
    monitored = (
        f'<p style="margin: 5px 0 0 0;">Monitoring: {html.escape(whatsapp_phone)}</p>'
        if whatsapp_phone
        else ""
    )

    return f"""
<div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif; max-width: 600px; margin: 0 auto; background: #f0f0f0; padding: 20px;">
  <div style="background: {ACCENT_COLOR}; color: white; padding: 20px; border-radius: 10px 10px 0 0; text-align: center;">
    <h2 style="margin: 0; font-size: 24px;">📱 WhatsApp Top 3 Update</h2>
  </div>
  <div style="background: white; padding: 30px; border-radius: 0 0 10px 10px;">
    <h3 style="margin: 0 0 20px 0; color: #333; font-size: 22px; text-align: center;">Top 3 Contacts Changed</h3>
    <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; border-left: 4px solid {ACCENT_COLOR};">
      <h4 style="margin: 0 0 15px 0; color: #333;">📊 Current Top 3:</h4>
      <ol style="margin: 0; padding-left: 20px; color: #555; font-size: 16px; line-height: 1.8;">
{items}
      </ol>
    </div>
    <div style="margin-top: 25px; padding-top: 20px; border-top: 1px solid #eee; text-align: center; color: #888; font-size: 14px;">
      <p style="margin: 0;">🕐 {when}</p>
      <p style="margin: 5px 0 0 0;">Automated WhatsApp Monitor</p>
      {monitored}
    </div>
  </div>
</div>
"""


def render_text(event: NotificationEvent, whatsapp_phone: str = "") -> str:
    """Plain-text alternative of the HTML body."""
    lines = ["WhatsApp Top 3 Update", "", "Current Top 3:"]
    lines.extend(f"{rank}. {name}" for rank, name in enumerate(_display_names(event), start=1))
    lines.extend(["", format_display_timestamp(event.timestamp), "Automated WhatsApp Monitor"])
    if whatsapp_phone:
        lines.append(f"Monitoring: {whatsapp_phone}")
    return "\n".join(lines)


def render_test_email() -> tuple[str, str]:
    """HTML and text bodies of the configuration test email."""
    when = format_display_timestamp(datetime.now(UTC))
    body_html = f"""
<h2>✅ WhatsApp Email Notifier Test</h2>
<p>This is a test email from your WhatsApp Email Notifier.</p>
<p><strong>If you receive this, the email configuration is working!</strong></p>
<p>Time: {html.escape(when)}</p>
"""
    body_text = (
        "This is a test email from your WhatsApp Email Notifier. "
        "If you receive this, the email configuration is working!\n"
        f"Time: {when}"
    )
    return body_html, body_text


class EmailNotifier:
    """Formats NotificationEvents and sends them through an SmtpClient."""

    def __init__(
        self,
        client: SmtpClient,
        to_address: str,
        logs_path: str | Path,
        whatsapp_phone: str = "",
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.to_address = to_address
        self.logs_path = Path(logs_path)
        self.whatsapp_phone = whatsapp_phone
        self.dry_run = dry_run

    def _log(
        self,
        kind: str,
        action_type: str,
        result: str,
        cid: str,
        duration_ms: int = 0,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        """Write an audit entry to ``Logs/<kind>/``."""
        try:
            log_action(
                self.logs_path / kind,
                {
                    "timestamp": now_iso(),
                    "correlation_id": cid,
                    "actor": "email_notifier",
                    "action_type": action_type,
                    "target": redact_email(self.to_address),
                    "result": result,
                    "duration_ms": duration_ms,
                    "parameters": parameters or {},
                },
            )
        except OSError:
            logger.exception("Failed to write audit log")

    async def verify_connection(self) -> bool:
        """Pick a working SMTP variant. Never raises."""
        try:
            return await asyncio.to_thread(self.client.verify)
        except Exception:
            logger.exception("Email connection check crashed")
            return False

    async def notify(self, event: NotificationEvent) -> bool:
        """Send one notification email for ``event``.

        Returns:
            True if the message was handed to the server (or logged in dry-run
            mode), False if delivery failed.
        """
        cid = correlation_id()
        parameters = {"previous": list(event.previous), "current": list(event.current)}

        if self.dry_run:
            logger.info(
                "[DRY RUN] Would email %s: %s",
                redact_email(self.to_address),
                ", ".join(event.current),
            )
            self._log("actions", "top3_notification", "dry_run", cid, parameters=parameters)
            return True

        subject = render_subject(event)
        body_html = render_html(event, self.whatsapp_phone)
        body_text = render_text(event, self.whatsapp_phone)

        logger.info("Sending top 3 notification to %s", redact_email(self.to_address))
        start = time.time()
        try:
            message_id = await asyncio.to_thread(
                self.client.send_html, self.to_address, subject, body_html, body_text
            )
        except (smtplib.SMTPException, OSError) as exc:
            duration_ms = int((time.time() - start) * 1000)
            logger.error("Error sending top 3 notification: %s", exc)
            self._log(
                "errors",
                "top3_notification",
                "failure",
                cid,
                duration_ms,
                {**parameters, "error": str(exc), "variant": self.client.active_variant.name},
            )
            return False

        duration_ms = int((time.time() - start) * 1000)
        logger.info("Top 3 notification sent successfully")
        self._log(
            "actions",
            "top3_notification",
            "success",
            cid,
            duration_ms,
            {**parameters, "message_id": message_id, "variant": self.client.active_variant.name},
        )
        return True

    async def send_test_email(self) -> str | None:
        """Send a test message, trying each SMTP variant until one works.

        Returns:
            The name of the working variant, or None.
        """
        body_html, body_text = render_test_email()
        variant = await asyncio.to_thread(
            self.client.send_with_fallback, self.to_address, TEST_SUBJECT, body_html, body_text
        )
        self._log(
            "actions" if variant else "errors",
            "test_email",
            "success" if variant else "failure",
            correlation_id(),
            parameters={"variant": variant},
        )
        return variant
