"""Selector chains for WhatsApp Web.

WhatsApp Web markup is unversioned and changes without notice, so every lookup
is a prioritized chain of queries. ``resolve`` tries them in order and the
first query that yields at least one element wins, even if a later query would
be more specific.

A query is any async callable ``scope -> list[element]``, where ``scope`` is a
Playwright ``Page`` or ``ElementHandle``. Plain CSS strings are wrapped in
:class:`CssQuery`; :class:`WaitQuery` waits for a selector instead.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Query = Callable[[Any], Awaitable[list[Any]]]
SelectorChain = tuple[Query, ...]


@dataclass(frozen=True)
class CssQuery:
    """All elements under ``scope`` matching a CSS selector."""

    selector: str

    async def __call__(self, scope: Any) -> list[Any]:
        return await scope.query_selector_all(self.selector)

    def __str__(self) -> str:
        return self.selector


@dataclass(frozen=True)
class WaitQuery:
    """The first element matching ``selector`` once it appears, within a timeout.

    A timeout surfaces as an exception, which ``resolve`` treats as no match.
    """

    selector: str
    timeout_ms: int = 10000

    async def __call__(self, scope: Any) -> list[Any]:
        element = await scope.wait_for_selector(self.selector, timeout=self.timeout_ms)
        return [element] if element else []

    def __str__(self) -> str:
        return self.selector


def chain(*queries: str | Query) -> SelectorChain:
    """Build a SelectorChain, wrapping bare CSS strings in CssQuery."""
    return tuple(CssQuery(q) if isinstance(q, str) else q for q in queries)


async def resolve(selector_chain: Sequence[Query], scope: Any) -> list[Any] | None:
    """Return the matches of the first query in the chain that finds anything.

    A query that raises (malformed selector, detached element, timeout) counts
    as a non-match.

    Returns:
        The non-empty match list, or None when no query matched.
    """
    for query in selector_chain:
        try:
            matches = await query(scope)
        except Exception:
            logger.debug("Query '%s' failed, trying next", query, exc_info=True)
            continue
        if matches:
            logger.debug("Query '%s' matched %d element(s)", query, len(matches))
            return list(matches)
        logger.debug("Query '%s' matched nothing", query)
    return None


async def first_match(selector_chain: Sequence[Query], scope: Any) -> Any | None:
    """Return the first element of ``resolve``'s result, or None."""
    matches = await resolve(selector_chain, scope)
    return matches[0] if matches else None


# ── Conversation list ───────────────────────────────────────────────

CHAT_LIST_CHAIN = chain(
    '[data-testid="chat-list"] div[role="listitem"]',
    '#pane-side div[role="listitem"]',
    '[data-testid="side"] div[role="listitem"]',
    'div[role="listitem"]',
    '#pane-side div[role="row"]',
)

# Label inside one chat row: title attributes first, then visible span text
NAME_TITLE_CHAIN = chain(
    "span[title]",
    "[title]",
)
NAME_TEXT_CHAIN = chain(
    "span",
)

# ── Authentication ──────────────────────────────────────────────────

# Anything that shows the app has rendered: chat list or a QR code
AUTH_ELEMENT_CHAIN = chain(
    WaitQuery('[data-testid="chat-list"]'),
    WaitQuery("#pane-side"),
    WaitQuery('canvas[aria-label*="Scan this QR code"]'),
    WaitQuery("canvas"),
    WaitQuery('[data-ref="app-wrapper-web"]'),
    WaitQuery('[data-testid="qr-canvas"]'),
    WaitQuery('div[data-testid="qrcode"]'),
    WaitQuery('img[alt*="QR"]'),
)

QR_CODE_CHAIN = chain(
    'canvas[aria-label*="Scan this QR code"]',
    'div[data-testid="qrcode"]',
    '[data-testid="qr-canvas"]',
    '[data-testid="qr-code"]',
    'img[alt*="QR"]',
    'div[role="img"][aria-label*="QR"]',
    "canvas",
)

CHAT_INTERFACE_CHAIN = chain(
    '[data-testid="chat-list"]',
    'div[aria-label="Chat list"]',
    "#pane-side",
    "#side",
)

PHONE_DISCONNECTED_CHAIN = chain(
    'div[data-testid="alert-phone"]',
    'div[data-testid="alert-banner"]',
)

LOADING_CHAIN = chain(
    'div[data-testid="startup"]',
    "progress",
)

# Links off the "download the desktop app" promotion page back to the web client
WEB_LOGIN_CHAIN = chain(
    'a[href*="web"]',
    'button:has-text("Web")',
    'a:has-text("web")',
    '[data-testid*="web"]',
    'a[href*="continue"]',
)

# ── Open conversation / contact info ────────────────────────────────

CONTACT_NAME_CHAIN = chain(
    '[data-testid="conversation-header"] [data-testid="conversation-info-header-chat-title"]',
    '[data-testid="conversation-header"] span[title]',
    'header span[dir="auto"]',
    "header [title]",
)

CONTACT_INFO_TRIGGER_CHAIN = chain(
    '[data-testid="conversation-info-header"]',
    '[data-testid="conversation-header"] [data-testid="conversation-info-header-chat-title"]',
    '[data-testid="conversation-header"] span[title]',
    'header span[title]',
    '[data-testid="conversation-header"]',
)

CONTACT_DRAWER_CHAIN = chain(
    WaitQuery('[data-testid="drawer-right"]', timeout_ms=5000),
)

PHONE_NUMBER_CHAIN = chain(
    '[data-testid="drawer-right"] span[dir="ltr"]',
    'span[title*="+"]',
    'div[title*="+"]',
    '[data-testid*="phone"]',
    'span[dir="ltr"]',
    "div.copyable-text span",
)
