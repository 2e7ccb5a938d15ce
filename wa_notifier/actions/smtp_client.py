"""SMTP client for notification emails.

Synchronous wrapper around :mod:`smtplib`. All methods are designed to be
called via ``asyncio.to_thread()`` from the async watcher.

Gmail is reachable in several ways and networks block them differently, so the
client carries a fixed list of connection variants. ``verify()`` picks the first
one that connects and authenticates; sends use that variant.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from collections.abc import Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


@dataclass(frozen=True)
class SmtpVariant:
    """One way of reaching the mail server."""

    name: str
    host: str
    port: int
    implicit_tls: bool
    verify_certificates: bool = True


SMTP_VARIANTS: tuple[SmtpVariant, ...] = (
    SmtpVariant("Gmail SMTP (TLS)", "smtp.gmail.com", 587, implicit_tls=False, verify_certificates=False),
    SmtpVariant("Gmail SMTP (SSL)", "smtp.gmail.com", 465, implicit_tls=True, verify_certificates=False),
    SmtpVariant("Gmail Service", "smtp.gmail.com", 465, implicit_tls=True),
)

TROUBLESHOOTING_HINTS = (
    "Your firewall, antivirus, or ISP may be blocking SMTP connections.",
    "1. Check firewall and antivirus settings",
    "2. Try connecting from a different network",
    "3. Contact your ISP about SMTP port blocking",
    "4. Make sure 2-Factor Authentication is enabled on the Gmail account",
    "5. Generate an App Password: https://myaccount.google.com/apppasswords",
    "6. Use the App Password (not your regular Gmail password) in EMAIL_PASS",
)


def _ssl_context(verify: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def build_message(sender: str, to: str, subject: str, html: str, text: str) -> EmailMessage:
    """Build a multipart/alternative message with a plain-text and an HTML part."""
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message["Message-ID"] = make_msgid()
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


class SmtpClient:
    """Synchronous SMTP client with variant fallback on verification."""

    def __init__(
        self,
        username: str,
        password: str,
        variants: Sequence[SmtpVariant] = SMTP_VARIANTS,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not variants:
            msg = "At least one SMTP variant is required"
            raise ValueError(msg)
        self.username = username
        self.password = password
        self.variants = tuple(variants)
        self.timeout = timeout
        self.active_index = 0
        self.verified = False

    @property
    def active_variant(self) -> SmtpVariant:
        return self.variants[self.active_index]

    def _connect(self, variant: SmtpVariant) -> smtplib.SMTP:
        """Open an authenticated connection using ``variant``."""
        context = _ssl_context(variant.verify_certificates)
        server: smtplib.SMTP
        if variant.implicit_tls:
            server = smtplib.SMTP_SSL(
                variant.host, variant.port, timeout=self.timeout, context=context
            )
        else:
            server = smtplib.SMTP(variant.host, variant.port, timeout=self.timeout)
        try:
            if not variant.implicit_tls:
                server.starttls(context=context)
            server.login(self.username, self.password)
        except Exception:
            server.close()
            raise
        return server

    def verify(self) -> bool:
        """Try each variant in order and keep the first that authenticates.

        Returns:
            True if some variant works. On False, troubleshooting hints are logged
            and the client keeps its current variant.
        """
        for index, variant in enumerate(self.variants):
            logger.info("Testing %s...", variant.name)
            try:
                with self._connect(variant) as server:
                    server.noop()
            except (smtplib.SMTPException, OSError) as exc:
                logger.error("%s failed: %s", variant.name, exc)
                continue

            logger.info("%s connection verified successfully", variant.name)
            self.active_index = index
            self.verified = True
            return True

        logger.error("All email configurations failed!")
        for hint in TROUBLESHOOTING_HINTS:
            logger.error(hint)
        return False

    def send_html(self, to: str, subject: str, html: str, text: str) -> str:
        """Send one message on the active variant. No retry.

        Returns:
            The Message-ID header of the sent message.

        Raises:
            smtplib.SMTPException: On any SMTP-level failure.
            OSError: On connection failures and timeouts.
        """
        message = build_message(self.username, to, subject, html, text)
        with self._connect(self.active_variant) as server:
            server.send_message(message)
        return message["Message-ID"]

    def send_with_fallback(self, to: str, subject: str, html: str, text: str) -> str | None:
        """Send one message, trying every variant until one delivers it.

        The working variant becomes active.

        Returns:
            The name of the variant that delivered the message, or None.
        """
        for index, variant in enumerate(self.variants):
            logger.info("Trying %s...", variant.name)
            message = build_message(self.username, to, subject, html, text)
            try:
                with self._connect(variant) as server:
                    server.send_message(message)
            except (smtplib.SMTPException, OSError) as exc:
                logger.error("%s failed: %s", variant.name, exc)
                continue

            logger.info("%s test email sent (Message-ID: %s)", variant.name, message["Message-ID"])
            self.active_index = index
            self.verified = True
            return variant.name

        logger.error("All email configurations failed!")
        for hint in TROUBLESHOOTING_HINTS:
            logger.error(hint)
        return None
