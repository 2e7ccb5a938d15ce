"""Shared fixtures: an in-memory stand-in for Playwright pages and elements."""

from __future__ import annotations

from collections.abc import Iterable
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

CHAT_ROW_SELECTOR = '[data-testid="chat-list"] div[role="listitem"]'
CHAT_LIST_SELECTOR = '[data-testid="chat-list"]'


class FakeElement:
    """Element whose descendants are looked up by exact selector string."""

    def __init__(
        self,
        text: str | None = None,
        title: str | None = None,
        children: dict[str, list[Any]] | None = None,
    ) -> None:
        self.text = text
        self._title = title
        self.children = children or {}
        self.clicks = 0

    async def query_selector_all(self, selector: str) -> list[Any]:
        return list(self.children.get(selector, []))

    async def get_attribute(self, name: str) -> str | None:
        return self._title if name == "title" else None

    async def text_content(self) -> str | None:
        return self.text

    async def click(self) -> None:
        self.clicks += 1

    def set(self, selector: str, elements: list[Any]) -> None:
        self.children[selector] = elements


class FakePage(FakeElement):
    """Page with a body text, a URL and mocked navigation."""

    def __init__(
        self,
        children: dict[str, list[Any]] | None = None,
        body_text: str = "",
        url: str = "https://web.whatsapp.com/",
    ) -> None:
        super().__init__(children=children)
        self.body_text = body_text
        self.url = url
        self.goto = AsyncMock()
        self.screenshot = AsyncMock()
        self.keyboard = SimpleNamespace(press=AsyncMock())

    async def wait_for_selector(self, selector: str, timeout: int | None = None) -> Any:
        matches = self.children.get(selector)
        if not matches:
            msg = f"Timeout {timeout}ms exceeded waiting for {selector}"
            raise TimeoutError(msg)
        return matches[0]

    async def inner_text(self, selector: str) -> str:
        return self.body_text

    async def title(self) -> str:
        return "WhatsApp"


def chat_row(name: str) -> FakeElement:
    """A chat row the way WhatsApp renders it: title span, name text and a time."""
    return FakeElement(
        children={
            "span[title]": [FakeElement(text=name, title=name)],
            "span": [FakeElement(text=name), FakeElement(text="12:30")],
        }
    )


def set_chats(page: FakePage, names: Iterable[str]) -> None:
    page.set(CHAT_ROW_SELECTOR, [chat_row(name) for name in names])


def logged_in_page(names: Iterable[str] = ()) -> FakePage:
    """Page showing the chat list with the given conversations."""
    page = FakePage(children={CHAT_LIST_SELECTOR: [FakeElement()]})
    set_chats(page, names)
    return page


@pytest.fixture
def dom() -> SimpleNamespace:
    """Factories for building fake pages in tests."""
    return SimpleNamespace(
        Element=FakeElement,
        Page=FakePage,
        chat_row=chat_row,
        set_chats=set_chats,
        logged_in_page=logged_in_page,
        CHAT_ROW_SELECTOR=CHAT_ROW_SELECTOR,
    )

