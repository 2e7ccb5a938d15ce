"""Control MCP Server - starts and stops top 3 monitoring via Model Context Protocol.

Registers six tools (start_monitoring, stop_monitoring, get_status,
update_settings, save_state, get_contact_details). The monitor lifecycle is
owned by a MonitorController created in the server lifespan, so there is no
module-level "current watcher".

Usage:
    wa-notifier-control            # stdio transport
    wa-notifier-control --http     # streamable HTTP on CONTROL_HOST:CONTROL_PORT
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP
from playwright.async_api import Error as PlaywrightError

from wa_notifier.actions.email_notifier import redact_email
from wa_notifier.utils.config import (
    ConfigError,
    NotifierConfig,
    load_config,
    load_env_files,
    save_settings,
)
from wa_notifier.utils.logging_utils import log_action, read_recent_logs, setup_logging
from wa_notifier.utils.timestamps import now_iso
from wa_notifier.utils.uuid_utils import correlation_id
from wa_notifier.watchers.base_watcher import WatcherState
from wa_notifier.watchers.whatsapp_watcher import TopChatsWatcher, build_watcher

# ── Configuration ───────────────────────────────────────────────────

load_env_files()

DATA_DIR = os.getenv("DATA_DIR", "./data")
CONTROL_HOST = os.getenv("CONTROL_HOST", "127.0.0.1")
CONTROL_PORT = int(os.getenv("CONTROL_PORT", "8000"))

logger = logging.getLogger(__name__)


def _log_tool_action(
    action_type: str,
    target: str,
    result: str,
    cid: str,
    duration_ms: int = 0,
    parameters: dict[str, Any] | None = None,
) -> None:
    """Write an audit log entry to data/Logs/actions/."""
    log_dir = Path(DATA_DIR) / "Logs" / "actions"
    try:
        log_action(
            log_dir,
            {
                "timestamp": now_iso(),
                "correlation_id": cid,
                "actor": "control_mcp",
                "action_type": action_type,
                "target": target,
                "result": result,
                "duration_ms": duration_ms,
                "parameters": parameters or {},
            },
        )
    except OSError:
        logger.exception("Failed to write audit log")


# ── Monitor Lifecycle ───────────────────────────────────────────────


class MonitorController:
    """Owns at most one running watcher and its polling task."""

    def __init__(
        self,
        config_loader: Callable[[], NotifierConfig] = load_config,
        watcher_factory: Callable[[NotifierConfig], TopChatsWatcher] = build_watcher,
    ) -> None:
        self._config_loader = config_loader
        self._watcher_factory = watcher_factory
        self.watcher: TopChatsWatcher | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def baseline(self) -> list[str]:
        return list(self.watcher.baseline) if self.watcher else []

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Monitoring stopped with an error: %s", exc, exc_info=exc)

    async def start(self, email_to: str = "", whatsapp_phone: str = "") -> TopChatsWatcher:
        """Build a watcher and run it in the background.

        Non-empty arguments override the configured values. The browser launch,
        login wait and baseline snapshot happen in the background task.

        Raises:
            RuntimeError: If monitoring is already running.
            ConfigError: If required email settings are missing or invalid.
        """
        if self.is_running:
            msg = "WhatsApp monitoring is already running!"
            raise RuntimeError(msg)

        config = self._config_loader().with_overrides(
            email_to=email_to, whatsapp_phone=whatsapp_phone
        )
        config.validate()

        self.watcher = self._watcher_factory(config)
        self._task = asyncio.create_task(self.watcher.run())
        self._task.add_done_callback(self._on_task_done)
        logger.info("Monitoring task started (email_to=%s)", redact_email(config.email_to))
        return self.watcher

    async def stop(self) -> None:
        """Stop the watcher and wait for its polling task to exit.

        Raises:
            RuntimeError: If nothing is running.
        """
        if not self.is_running or self.watcher is None or self._task is None:
            msg = "No monitoring process is currently running."
            raise RuntimeError(msg)

        await self.watcher.stop()
        try:
            await self._task
        except Exception:
            logger.debug("Monitoring task ended with an error", exc_info=True)
        self._task = None

    def status(self) -> dict[str, Any]:
        if not self.is_running:
            message = "WhatsApp monitoring is inactive"
        elif self.watcher is not None and self.watcher.state is WatcherState.RUNNING:
            message = "WhatsApp monitoring is active"
        else:
            message = "WhatsApp monitoring is starting (scan the QR code if the browser shows one)"
        return {"running": self.is_running, "message": message, "top3": self.baseline}


# ── Lifespan ────────────────────────────────────────────────────────


@dataclass
class AppContext:
    """Shared state injected into MCP tool handlers."""

    controller: MonitorController


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Create the monitor controller; stop any running watcher on shutdown."""
    app = AppContext(controller=MonitorController())
    logger.info("Control MCP server started (data_dir=%s)", DATA_DIR)
    try:
        yield app
    finally:
        if app.controller.is_running:
            logger.info("Stopping monitoring before shutdown...")
            await app.controller.stop()
        logger.info("Control MCP server shutting down")


# ── Server ──────────────────────────────────────────────────────────

mcp = FastMCP(
    "wa-notifier-control",
    instructions=(
        "Controls the WhatsApp top 3 email notifier. start_monitoring opens "
        "WhatsApp Web and emails a notification whenever the three most recent "
        "chats change. get_status reports whether monitoring is running."
    ),
    lifespan=app_lifespan,
    host=CONTROL_HOST,
    port=CONTROL_PORT,
)


def _controller() -> MonitorController:
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    return app.controller


# ── Tool: start_monitoring ──────────────────────────────────────────


@mcp.tool()
async def start_monitoring(email_to: str = "", whatsapp_phone: str = "") -> str:
    """Start monitoring the top 3 WhatsApp chats.

    A browser window opens WhatsApp Web; scan the QR code if asked.

    Args:
        email_to: Notification address. Defaults to EMAIL_TO.
        whatsapp_phone: Phone number shown in notifications. Defaults to WHATSAPP_PHONE.
    """
    controller = _controller()
    cid = correlation_id()

    try:
        await controller.start(email_to=email_to, whatsapp_phone=whatsapp_phone)
    except RuntimeError as exc:
        return str(exc)
    except ConfigError as exc:
        _log_tool_action("start_monitoring", "whatsapp_web", "error", cid, parameters={"error": str(exc)})
        return f"Failed to start monitoring: {exc}"

    _log_tool_action(
        "start_monitoring",
        "whatsapp_web",
        "success",
        cid,
        parameters={"email_to": redact_email(email_to) if email_to else "", "whatsapp_phone": whatsapp_phone},
    )
    return (
        "WhatsApp monitoring started successfully! "
        "Please scan the QR code in the browser window that opened."
    )


# ── Tool: stop_monitoring ───────────────────────────────────────────


@mcp.tool()
async def stop_monitoring() -> str:
    """Stop monitoring, save state and close the browser."""
    controller = _controller()
    cid = correlation_id()
    start = time.time()

    try:
        await controller.stop()
    except RuntimeError as exc:
        return str(exc)

    duration_ms = int((time.time() - start) * 1000)
    _log_tool_action("stop_monitoring", "whatsapp_web", "success", cid, duration_ms)
    return "WhatsApp monitoring stopped successfully!"


# ── Tool: get_status ────────────────────────────────────────────────


@mcp.tool()
async def get_status() -> str:
    """Report whether monitoring is running, the last known top 3 and recent activity."""
    status = _controller().status()
    status["recent_actions"] = [
        f"{entry.get('timestamp', '?')} {entry.get('action_type', '?')}: {entry.get('result', '?')}"
        for entry in read_recent_logs(Path(DATA_DIR) / "Logs" / "actions", count=5)
    ]
    return json.dumps(status, ensure_ascii=False)


# ── Tool: update_settings ───────────────────────────────────────────


@mcp.tool()
async def update_settings(email_to: str = "", whatsapp_phone: str = "") -> str:
    """Save the notification address and/or monitored phone number.

    Saved values override the environment on the next start_monitoring.

    Args:
        email_to: New notification address.
        whatsapp_phone: New phone number shown in notifications.
    """
    cid = correlation_id()

    if not email_to and not whatsapp_phone:
        return "Nothing to update: provide email_to and/or whatsapp_phone."

    try:
        config = load_config()
        settings = save_settings(
            config.settings_path, email_to=email_to, whatsapp_phone=whatsapp_phone
        )
    except ConfigError as exc:
        _log_tool_action("update_settings", "settings", "error", cid, parameters={"error": str(exc)})
        return f"Error: {exc}"
    except OSError as exc:
        _log_tool_action("update_settings", "settings", "error", cid, parameters={"error": str(exc)})
        return f"Error saving settings: {exc}"

    _log_tool_action("update_settings", "settings", "success", cid, parameters={"keys": sorted(settings)})

    lines = ["Settings saved successfully."]
    if settings.get("email_to"):
        lines.append(f"Email to: {settings['email_to']}")
    if settings.get("whatsapp_phone"):
        lines.append(f"WhatsApp phone: {settings['whatsapp_phone']}")
    if _controller().is_running:
        lines.append("Restart monitoring to apply the new settings.")
    return "\n".join(lines)


# ── Tool: save_state ────────────────────────────────────────────────


@mcp.tool()
async def save_state() -> str:
    """Write the monitor's state file now."""
    controller = _controller()
    if controller.watcher is None:
        return "No monitoring process has been started."

    try:
        path = controller.watcher.save_state()
    except OSError as exc:
        return f"Error saving state: {exc}"
    return f"State saved to {path}"


# ── Tool: get_contact_details ───────────────────────────────────────


@mcp.tool()
async def get_contact_details() -> str:
    """Name and phone number of the chat currently open in WhatsApp Web.

    Phone numbers are found heuristically and may be missing.
    """
    controller = _controller()
    if not controller.is_running or controller.watcher is None:
        return "No monitoring process is currently running."

    try:
        details = await controller.watcher.get_contact_details()
    except RuntimeError as exc:
        return f"Error: {exc}"
    except PlaywrightError as exc:
        logger.warning("Reading contact details failed: %s", exc)
        return f"Error reading contact details: {exc}"

    return (
        f"Name: {details['name'] or 'Unknown'}\n"
        f"Phone: {details['phone'] or 'Not found'}"
    )


# ── Entry Point ─────────────────────────────────────────────────────


def main() -> None:
    """CLI entry point for the control MCP server."""
    # stdout is reserved for MCP JSON-RPC on stdio
    setup_logging(os.getenv("LOG_LEVEL", "INFO").upper(), stream=sys.stderr)

    if "--http" in sys.argv:
        logger.info("Serving on http://%s:%d", CONTROL_HOST, CONTROL_PORT)
        mcp.run(transport="streamable-http")
        return

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
