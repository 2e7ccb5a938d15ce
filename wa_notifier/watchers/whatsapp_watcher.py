"""WhatsApp watcher - emails a notification when the top 3 chats change.

This is a PERCEPTION layer component. It drives a logged-in WhatsApp Web
session through Playwright, reads the names of the three most recent
conversations every few seconds and hands each change to the EmailNotifier.
It never opens, sends, or modifies messages on its own.

Usage:
    # First-time setup (headed browser for QR code scan)
    wa-notifier --setup

    # Continuous monitoring
    wa-notifier

    # Print the current top 3 once and exit
    wa-notifier --once

    # Check or exercise the email configuration
    wa-notifier --verify-email
    wa-notifier --test-email
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import re
import signal
import sys
from pathlib import Path
from typing import Any

from wa_notifier.actions.email_notifier import EmailNotifier
from wa_notifier.actions.smtp_client import SmtpClient
from wa_notifier.utils.config import ConfigError, NotifierConfig, load_config, load_env_files
from wa_notifier.utils.logging_utils import log_action, setup_logging
from wa_notifier.utils.timestamps import now_iso
from wa_notifier.utils.uuid_utils import correlation_id
from wa_notifier.watchers.base_watcher import BaseWatcher, WatcherState
from wa_notifier.watchers.selectors import (
    AUTH_ELEMENT_CHAIN,
    CHAT_INTERFACE_CHAIN,
    CONTACT_DRAWER_CHAIN,
    CONTACT_INFO_TRIGGER_CHAIN,
    CONTACT_NAME_CHAIN,
    LOADING_CHAIN,
    PHONE_DISCONNECTED_CHAIN,
    PHONE_NUMBER_CHAIN,
    QR_CODE_CHAIN,
    WEB_LOGIN_CHAIN,
    WaitQuery,
    first_match,
    resolve,
)
from wa_notifier.watchers.snapshot import (
    ERROR_SENTINEL,
    NotificationEvent,
    empty_snapshot,
    extract_snapshot,
    pad_snapshot,
    snapshots_equal,
)

logger = logging.getLogger(__name__)

WHATSAPP_URL = "https://web.whatsapp.com/?lang=en"
WHATSAPP_SEND_URL = "https://web.whatsapp.com/send"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)
BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
    "--no-sandbox",
]
VIEWPORT = {"width": 1280, "height": 800}
NAVIGATION_TIMEOUT_MS = 60000

# QR login polling: 36 attempts x 5s = 3 minutes
AUTH_POLL_ATTEMPTS = 36
AUTH_POLL_INTERVAL = 5.0
SETUP_TIMEOUT_MS = 300000

# Waits for the page to react after navigation / clicks, and before a snapshot
PAGE_LOAD_DELAY = 3.0
SETTLE_DELAY = 1.0

# Lowercased body text that marks the "download the desktop app" page
PROMO_MARKERS = ("indirin", "download", "windows")
# Lowercased body text that only the logged-in interface shows
INTERFACE_MARKERS = ("search", "chats", "status", "calls", "sohbet")

STATE_FILENAME = "processed-messages.json"
DEBUG_SCREENSHOT = "whatsapp-debug.png"
MAX_PROCESSED_HISTORY = 100

PHONE_PATTERNS = [
    re.compile(r"\+90\s?\d{3}\s?\d{3}\s?\d{2}\s?\d{2}"),
    re.compile(r"\+90\d{10}"),
    re.compile(r"\+\d{10,15}"),
    re.compile(r"\b\d{11,15}\b"),
]
MIN_PHONE_LENGTH = 10
MAX_PHONE_LENGTH = 15


def find_phone_number(text: str | None) -> str | None:
    """Return the first phone-number-looking substring of ``text``.

    Patterns are tried from most to least specific. Whitespace is ignored
    when checking the length, and the match is returned as written.

    Examples:
        >>> find_phone_number("Phone +90 555 123 45 67")
        '+90 555 123 45 67'
        >>> find_phone_number("last seen 12:30") is None
        True
    """
    if not text:
        return None
    for pattern in PHONE_PATTERNS:
        for match in pattern.finditer(text):
            candidate = match.group().strip()
            compact = re.sub(r"\s", "", candidate)
            if MIN_PHONE_LENGTH <= len(compact) <= MAX_PHONE_LENGTH:
                return candidate
    return None


class TopChatsWatcher(BaseWatcher):
    """Watches the WhatsApp Web chat list and reports top-3 changes."""

    def __init__(
        self,
        data_dir: str,
        notifier: EmailNotifier | None = None,
        session_path: str = "config/whatsapp_session",
        check_interval: float = 5.0,
        headless: bool = False,
        page_load_delay: float = PAGE_LOAD_DELAY,
        settle_delay: float = SETTLE_DELAY,
        auth_attempts: int = AUTH_POLL_ATTEMPTS,
        auth_poll_interval: float = AUTH_POLL_INTERVAL,
    ):
        super().__init__(data_dir, check_interval)
        self.notifier = notifier
        self.session_path = Path(session_path)
        self.headless = headless
        self.page_load_delay = page_load_delay
        self.settle_delay = settle_delay
        self.auth_attempts = auth_attempts
        self.auth_poll_interval = auth_poll_interval
        self.state_path = self.data_dir / STATE_FILENAME
        self.baseline: list[str] = empty_snapshot()
        self.processed_messages: list[str] = []
        self.last_message_states: dict[int, str] = {}
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None
        self._verify_task: asyncio.Task | None = None
        self.load_state()

    # ── Session / Browser Management ────────────────────────────────

    async def _launch_browser(self) -> None:
        """Launch Playwright browser with persistent context for session."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self.session_path.mkdir(parents=True, exist_ok=True)

        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.session_path),
            headless=self.headless,
            user_agent=USER_AGENT,
            viewport=VIEWPORT,
            args=BROWSER_ARGS,
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        self.logger.info("Browser launched successfully")

    async def _close_browser(self) -> None:
        """Close browser and cleanup."""
        if self._context:
            await self._context.close()
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _ensure_browser(self) -> None:
        if self._page is None or self._context is None:
            await self._launch_browser()

    async def _navigate_to_whatsapp(self) -> None:
        """Open WhatsApp Web and give it time to render."""
        assert self._page is not None
        self.logger.debug("Navigating to %s...", WHATSAPP_URL)
        await self._page.goto(WHATSAPP_URL, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        self.logger.info("Navigated to WhatsApp Web (title: %s)", await self._page.title())
        await asyncio.sleep(self.page_load_delay)

    async def _page_text(self) -> str:
        """Lowercased visible text of the page body."""
        assert self._page is not None
        return (await self._page.inner_text("body")).lower()

    async def check_session_state(self) -> str:
        """Check current WhatsApp Web session state.

        Returns:
            One of: "ready", "qr_code", "phone_disconnected", "loading", "unknown"
        """
        assert self._page is not None

        if await resolve(CHAT_INTERFACE_CHAIN, self._page):
            if await resolve(PHONE_DISCONNECTED_CHAIN, self._page):
                return "phone_disconnected"
            return "ready"
        if await resolve(QR_CODE_CHAIN, self._page):
            return "qr_code"
        if await resolve(LOADING_CHAIN, self._page):
            return "loading"
        return "unknown"

    async def _leave_promo_page(self) -> None:
        """Get past the desktop-app promotion page if WhatsApp served it."""
        assert self._page is not None
        if await self.check_session_state() in ("ready", "qr_code"):
            return

        text = await self._page_text()
        if not any(marker in text for marker in PROMO_MARKERS):
            return

        self.logger.info("Detected desktop app promotion page, looking for web login options...")
        link = await first_match(WEB_LOGIN_CHAIN, self._page)
        if link is not None:
            await link.click()
        else:
            self.logger.info("No web login link found, trying direct navigation...")
            await self._page.goto(
                WHATSAPP_SEND_URL, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS
            )
        await asyncio.sleep(self.page_load_delay)

    async def _poll_for_login(self) -> bool:
        """Wait for the user to scan the QR code."""
        assert self._page is not None
        for attempt in range(1, self.auth_attempts + 1):
            await asyncio.sleep(self.auth_poll_interval)
            if self.state is WatcherState.STOPPED:
                self.logger.info("Stop requested, no longer waiting for login")
                return False

            if await resolve(CHAT_INTERFACE_CHAIN, self._page):
                self.logger.info("Chat interface detected!")
                return True
            text = await self._page_text()
            if any(marker in text for marker in INTERFACE_MARKERS):
                self.logger.info("WhatsApp interface content detected!")
                return True

            self.logger.info("Authentication attempt %d/%d...", attempt, self.auth_attempts)
        return False

    async def _save_debug_screenshot(self) -> None:
        assert self._page is not None
        path = self.data_dir / DEBUG_SCREENSHOT
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(path), full_page=True)
            self.logger.info("Debug screenshot saved as %s", path)
        except Exception as exc:
            self.logger.error("Could not take screenshot: %s", exc)

    async def wait_for_authentication(self) -> bool:
        """Wait until WhatsApp Web shows the chat list. Best effort.

        Returns:
            True if the logged-in interface was detected. False on timeout,
            undetectable state, or error; monitoring proceeds regardless.
        """
        assert self._page is not None
        self.logger.info("Waiting for QR code scan or existing session...")
        try:
            await self._leave_promo_page()

            element = await first_match(AUTH_ELEMENT_CHAIN, self._page)
            if element is None:
                self.logger.info("No specific auth elements found, waiting for page to load completely...")
                await asyncio.sleep(self.page_load_delay)

            state = await self.check_session_state()
            self.logger.debug("Session state: %s", state)

            if state == "ready":
                self.logger.info("Already authenticated - chat interface detected")
                return True

            if state == "phone_disconnected":
                self.logger.warning("Phone not connected. Continuing anyway...")
                return True

            if state == "qr_code":
                self.logger.info(
                    "QR code displayed. Scan with your phone:\n"
                    "  1. Open WhatsApp on your phone\n"
                    "  2. Go to Settings > Linked Devices > Link a Device\n"
                    "  3. Scan the QR code in the browser window"
                )
                if await self._poll_for_login():
                    self.logger.info("QR code scanned successfully!")
                    return True
                self.logger.warning("QR code authentication timeout, but attempting to continue...")
                self._log_error("whatsapp_web", "auth_timeout")
                await self._save_debug_screenshot()
                return False

            self.logger.warning("Could not detect QR code or chat interface (state: %s), continuing anyway...", state)
            await self._save_debug_screenshot()
            return False

        except Exception:
            self.logger.exception("Authentication failed")
            self._log_error("whatsapp_web", "auth_failed")
            await self._save_debug_screenshot()
            self.logger.info("Current URL: %s", self._page.url)
            return False

    async def setup_session(self) -> bool:
        """Interactive setup: open headed browser for QR code scanning.

        Returns:
            True if session was established successfully.
        """
        self.logger.info("Starting WhatsApp Web session setup (headed mode)...")

        original_headless = self.headless
        self.headless = False

        try:
            await self._launch_browser()
            await self._navigate_to_whatsapp()
            await self._leave_promo_page()

            state = await self.check_session_state()
            if state == "ready":
                self.logger.info("Already logged in! Session is valid.")
                return True

            if state == "qr_code":
                self.logger.info(
                    "QR code displayed. Scan with your phone:\n"
                    "  1. Open WhatsApp on your phone\n"
                    "  2. Go to Settings > Linked Devices > Link a Device\n"
                    "  3. Scan the QR code in the browser window\n"
                    "  Waiting up to 5 minutes..."
                )
                any_chat_interface = WaitQuery(
                    ", ".join(str(query) for query in CHAT_INTERFACE_CHAIN),
                    timeout_ms=SETUP_TIMEOUT_MS,
                )
                if await resolve((any_chat_interface,), self._page):
                    self.logger.info("Login detected! Session saved to %s", self.session_path)
                    return True
                self.logger.error("QR code scan timed out after 5 minutes.")
                return False

            self.logger.warning("Unexpected state during setup: %s", state)
            return False

        finally:
            self.headless = original_headless
            await self._close_browser()

    # ── Persisted State ─────────────────────────────────────────────

    def load_state(self) -> None:
        """Load the state document written by a previous run."""
        if not self.state_path.exists():
            return

        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
            self.processed_messages = list(data.get("processedMessages", []))
            self.last_message_states = {
                int(rank): name for rank, name in data.get("lastMessageStates", [])
            }
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError):
            self.logger.warning("Corrupted %s, starting fresh", STATE_FILENAME)
            self.processed_messages = []
            self.last_message_states = {}
            return

        self.logger.info(
            "Loaded %d processed messages and %d chat states from history",
            len(self.processed_messages),
            len(self.last_message_states),
        )

    def save_state(self) -> Path:
        """Write the state document and return its path."""
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "processedMessages": self.processed_messages[-MAX_PROCESSED_HISTORY:],
            "lastMessageStates": [[rank, name] for rank, name in sorted(self.last_message_states.items())],
            "lastSaved": now_iso(),
        }
        self.state_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        self.logger.info("Saved %d processed messages to history", len(data["processedMessages"]))
        return self.state_path

    def _set_baseline(self, snapshot: list[str]) -> None:
        self.baseline = list(snapshot)
        self.last_message_states = {rank: name for rank, name in enumerate(snapshot, start=1)}

    # ── Core Watcher Logic ──────────────────────────────────────────

    async def take_snapshot(self) -> list[str]:
        """Let the page settle, then read the current top 3."""
        assert self._page is not None
        await asyncio.sleep(self.settle_delay)
        snapshot = await extract_snapshot(self._page)
        if snapshot == pad_snapshot([ERROR_SENTINEL]):
            self._log_error("whatsapp_web", "snapshot_failed")
        return snapshot

    async def _verify_email_connection(self) -> None:
        assert self.notifier is not None
        if not await self.notifier.verify_connection():
            self.logger.warning(
                "Email connection failed, but continuing with WhatsApp monitoring."
            )

    async def on_start(self) -> None:
        """Open WhatsApp Web, authenticate and record the initial top 3."""
        self.logger.info("Starting WhatsApp top 3 monitoring...")
        try:
            await self._ensure_browser()
            await self._navigate_to_whatsapp()

            # Email check runs alongside startup and never blocks monitoring
            if self.notifier is not None:
                self._verify_task = asyncio.create_task(self._verify_email_connection())

            await self.wait_for_authentication()
            self._set_baseline(await self.take_snapshot())
        except Exception:
            await self._cancel_verify_task()
            await self._close_browser()
            raise

        self.logger.info("Initial top 3: %s", ", ".join(self.baseline))
        self._log_event("monitoring_started", "success", {"baseline": self.baseline})

    async def check_for_updates(self) -> list[NotificationEvent]:
        """Compare the current top 3 with the baseline.

        Returns:
            A single NotificationEvent if the list changed, else an empty list.
        """
        current = await self.take_snapshot()

        if snapshots_equal(current, self.baseline):
            self.logger.debug("Top 3 unchanged: %s", ", ".join(current))
            return []

        event = NotificationEvent(previous=tuple(self.baseline), current=tuple(current))
        self.logger.info("Top 3 changed!")
        self.logger.info("Old: %s", ", ".join(event.previous))
        self.logger.info("New: %s", ", ".join(event.current))
        self._set_baseline(current)
        return [event]

    async def dispatch(self, event: NotificationEvent) -> None:
        """Email the change. Delivery problems never reach the poll loop."""
        self.processed_messages.append(f"{now_iso()}|{'|'.join(event.current)}")
        del self.processed_messages[:-MAX_PROCESSED_HISTORY]

        if self.notifier is None:
            self.logger.warning("No notifier configured, change not emailed")
            return
        try:
            await self.notifier.notify(event)
        except Exception:
            self.logger.exception("Unexpected error while sending top 3 notification")

    async def _cancel_verify_task(self) -> None:
        if self._verify_task is not None and not self._verify_task.done():
            self._verify_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._verify_task
        self._verify_task = None

    async def on_stop(self) -> None:
        """Persist the state document and close the browser."""
        await self._cancel_verify_task()
        try:
            self.save_state()
        except OSError:
            self.logger.exception("Failed to save %s", STATE_FILENAME)
        try:
            await self._close_browser()
        except Exception:
            self.logger.exception("Error closing browser")
        self._log_event("monitoring_stopped", "success", {"baseline": self.baseline})

    async def run_once(self) -> list[str]:
        """Open WhatsApp Web, read the top 3 once and close the browser."""
        try:
            await self._ensure_browser()
            await self._navigate_to_whatsapp()
            await self.wait_for_authentication()
            snapshot = await self.take_snapshot()
            self.logger.info("Current top 3: %s", ", ".join(snapshot))
            return snapshot
        finally:
            await self._close_browser()

    # ── Contact Details ─────────────────────────────────────────────

    async def _scan_phone_number(self) -> str | None:
        assert self._page is not None
        for query in PHONE_NUMBER_CHAIN:
            for element in await resolve((query,), self._page) or []:
                text = await element.text_content() or await element.get_attribute("title")
                phone = find_phone_number(text)
                if phone:
                    self.logger.debug("Phone number found via '%s'", query)
                    return phone

        self.logger.debug("No phone number in drawer, scanning full page text")
        return find_phone_number(await self._page.inner_text("body"))

    async def get_contact_details(self) -> dict[str, str]:
        """Name and phone number of the chat currently open in the browser.

        Phone lookup opens the contact info drawer and scans it with regular
        expressions, so results are best effort.

        Raises:
            RuntimeError: If the browser is not running.
        """
        async with self._tick_lock:
            if self._page is None:
                msg = "Browser is not running"
                raise RuntimeError(msg)

            name = ""
            name_el = await first_match(CONTACT_NAME_CHAIN, self._page)
            if name_el is not None:
                name = (await name_el.text_content() or await name_el.get_attribute("title") or "").strip()

            phone = ""
            trigger = await first_match(CONTACT_INFO_TRIGGER_CHAIN, self._page)
            if trigger is None:
                self.logger.info("No open conversation header found")
            else:
                try:
                    await trigger.click()
                    await asyncio.sleep(self.page_load_delay)
                    if await resolve(CONTACT_DRAWER_CHAIN, self._page) is None:
                        self.logger.info("Contact info panel not found, continuing anyway")
                    phone = await self._scan_phone_number() or ""
                finally:
                    await self._page.keyboard.press("Escape")

            self.logger.info("Contact details: name=%s, phone=%s", name or "?", phone or "?")
            return {"name": name, "phone": phone}

    # ── Audit Logging ───────────────────────────────────────────────

    def _log_event(self, action_type: str, result: str, parameters: dict[str, Any]) -> None:
        try:
            log_action(
                self.logs_path / "actions",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": "whatsapp_watcher",
                    "action_type": action_type,
                    "target": "whatsapp_web",
                    "result": result,
                    "parameters": parameters,
                },
            )
        except OSError:
            self.logger.exception("Failed to write audit log")

    def _log_error(self, target: str, error_msg: str) -> None:
        """Log an error to the data dir error logs."""
        try:
            log_action(
                self.logs_path / "errors",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": "whatsapp_watcher",
                    "action_type": "error",
                    "target": target,
                    "error": error_msg,
                    "result": "failure",
                },
            )
        except OSError:
            self.logger.exception("Failed to write error log")


def build_watcher(config: NotifierConfig) -> TopChatsWatcher:
    """Wire a watcher and its email notifier from configuration."""
    notifier = EmailNotifier(
        SmtpClient(config.email_user, config.email_pass),
        to_address=config.email_to,
        logs_path=Path(config.data_dir) / "Logs",
        whatsapp_phone=config.whatsapp_phone,
        dry_run=config.dry_run,
    )
    return TopChatsWatcher(
        data_dir=config.data_dir,
        notifier=notifier,
        session_path=config.session_path,
        check_interval=config.check_interval,
        headless=config.headless,
    )


async def run_until_signalled(watcher: TopChatsWatcher) -> None:
    """Run the watcher until SIGINT/SIGTERM, then stop it gracefully."""
    loop = asyncio.get_running_loop()
    stop_tasks: list[asyncio.Task] = []

    def request_stop(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down gracefully...", sig.name)
        stop_tasks.append(asyncio.create_task(watcher.stop()))

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop, sig)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")

    try:
        await watcher.run()
    finally:
        if stop_tasks:
            await asyncio.gather(*stop_tasks)
        else:
            await watcher.stop()


# ── CLI Entry Point ─────────────────────────────────────────────────


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="WhatsApp Top 3 Notifier - emails you when your most recent chats change"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Print the current top 3 chats and exit",
    )
    mode.add_argument(
        "--setup",
        action="store_true",
        help="First-time setup: open headed browser for QR code scan",
    )
    mode.add_argument(
        "--test-email",
        action="store_true",
        help="Send a test email, trying every SMTP configuration",
    )
    mode.add_argument(
        "--verify-email",
        action="store_true",
        help="Check that an SMTP configuration connects and authenticates",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the WhatsApp top 3 notifier."""
    load_env_files()
    args = _parse_args(argv)

    try:
        config = load_config()
    except ConfigError as exc:
        setup_logging()
        logger.error("%s", exc)
        sys.exit(1)

    setup_logging(config.log_level, config.log_file)

    if args.setup:
        watcher = TopChatsWatcher(
            data_dir=config.data_dir,
            session_path=config.session_path,
        )
        logger.info("Starting WhatsApp Web setup...")
        if asyncio.run(watcher.setup_session()):
            logger.info("Setup complete! You can now run the notifier normally.")
            return
        logger.error("Setup failed. Please try again.")
        sys.exit(1)

    try:
        config.validate()
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    watcher = build_watcher(config)
    assert watcher.notifier is not None

    if args.test_email:
        variant = asyncio.run(watcher.notifier.send_test_email())
        if variant is None:
            sys.exit(1)
        logger.info("Email configuration working: %s", variant)
        return

    if args.verify_email:
        if not asyncio.run(watcher.notifier.verify_connection()):
            sys.exit(1)
        return

    if args.once:
        logger.info("Running single top 3 check...")
        asyncio.run(watcher.run_once())
        return

    logger.info(
        "Starting WhatsApp notifier (interval: %ss, headless: %s, dry_run: %s)",
        config.check_interval,
        config.headless,
        config.dry_run,
    )
    asyncio.run(run_until_signalled(watcher))


if __name__ == "__main__":
    main()
