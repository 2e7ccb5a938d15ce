"""Top-N conversation snapshots and change detection.

A snapshot is the list of display names of the first ``TOP_N`` chat rows, in
the order WhatsApp Web renders them. It always has exactly ``TOP_N`` entries:
missing rows are padded with empty strings so positional comparison stays
well defined.
"""

from __future__ import annotations

import itertools
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from wa_notifier.utils.timestamps import epoch_ms
from wa_notifier.watchers.selectors import (
    CHAT_LIST_CHAIN,
    NAME_TEXT_CHAIN,
    NAME_TITLE_CHAIN,
    SelectorChain,
    resolve,
)

logger = logging.getLogger(__name__)

TOP_N = 3

# Label length bounds, both exclusive
MIN_LABEL_LENGTH = 1
MAX_LABEL_LENGTH = 50

ERROR_SENTINEL = "Error"

TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}$")
URL_MARKERS = ("http", "www.")

_placeholder_seq = itertools.count(1)


@dataclass(frozen=True)
class NotificationEvent:
    """A detected change of the top-N list, consumed once by the notifier."""

    previous: tuple[str, ...]
    current: tuple[str, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def empty_snapshot(size: int = TOP_N) -> list[str]:
    return [""] * size


def pad_snapshot(names: Sequence[str], size: int = TOP_N) -> list[str]:
    """Pad with empty strings (or truncate) to exactly ``size`` entries."""
    return (list(names) + [""] * size)[:size]


def snapshots_equal(a: Sequence[str], b: Sequence[str]) -> bool:
    """Position-sensitive, case-sensitive equality of two snapshots."""
    if len(a) != len(b):
        return False
    return all(x == y for x, y in zip(a, b))


def _has_label_length(value: str) -> bool:
    return MIN_LABEL_LENGTH < len(value) < MAX_LABEL_LENGTH


def _is_title_label(value: str | None) -> bool:
    return bool(value) and _has_label_length(value.strip())


def _is_text_label(value: str | None) -> bool:
    if not value:
        return False
    text = value.strip()
    if not _has_label_length(text):
        return False
    if TIME_PATTERN.match(text):
        return False
    return not any(marker in text for marker in URL_MARKERS)


def pick_label(titles: Iterable[str | None], texts: Iterable[str | None]) -> str | None:
    """Choose a chat row's display name.

    Title attribute values win over span text. Span text that looks like a
    ``HH:MM`` timestamp or contains a URL is skipped.

    Args:
        titles: ``title`` attribute values of descendants, in document order.
        texts: Text content of descendant spans, in document order.

    Returns:
        The trimmed label, or None if no candidate qualifies.

    Examples:
        >>> pick_label([None, "Alice"], ["12:30", "Alice"])
        'Alice'
        >>> pick_label([], ["09:15", "Bob"])
        'Bob'
    """
    for title in titles:
        if _is_title_label(title):
            return title.strip()
    for text in texts:
        if _is_text_label(text):
            return text.strip()
    return None


def placeholder_label(rank: int) -> str:
    """Synthesize a label for a row with no readable name.

    The value is unique per call so it never equals an earlier placeholder.
    """
    return f"Contact_{rank}_{epoch_ms()}_{next(_placeholder_seq)}"


async def _label_candidates(row: Any) -> tuple[list[str | None], list[str | None]]:
    titles = [
        await el.get_attribute("title")
        for el in await resolve(NAME_TITLE_CHAIN, row) or []
    ]
    texts = [
        await el.text_content()
        for el in await resolve(NAME_TEXT_CHAIN, row) or []
    ]
    return titles, texts


async def extract_snapshot(
    page: Any,
    chat_list_chain: SelectorChain = CHAT_LIST_CHAIN,
    size: int = TOP_N,
) -> list[str]:
    """Read the names of the first ``size`` chats currently rendered.

    Never raises: no chat list yields all-empty entries, and any error during
    scraping yields an ``"Error"`` sentinel in the first slot.
    """
    try:
        rows = await resolve(chat_list_chain, page)
        if rows is None:
            logger.warning("No chats found")
            return empty_snapshot(size)

        names: list[str] = []
        for rank, row in enumerate(rows[:size], start=1):
            titles, texts = await _label_candidates(row)
            label = pick_label(titles, texts)
            if label is None:
                label = placeholder_label(rank)
                logger.debug("Chat %d has no readable name, using '%s'", rank, label)
            names.append(label)

        return pad_snapshot(names, size)
    except Exception:
        logger.exception("Error getting top %d chats", size)
        return pad_snapshot([ERROR_SENTINEL], size)
