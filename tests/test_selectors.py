"""Tests for selector chains (wa_notifier.watchers.selectors)."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

from wa_notifier.watchers.selectors import (
    CHAT_LIST_CHAIN,
    CssQuery,
    WaitQuery,
    chain,
    first_match,
    resolve,
)


async def _raising_query(scope: Any) -> list[Any]:
    msg = "unsupported pseudo-class"
    raise ValueError(msg)


# ── chain() ─────────────────────────────────────────────────────────


class TestChain:
    def test_wraps_strings_in_css_query(self) -> None:
        result = chain("span[title]", "span")
        assert result == (CssQuery("span[title]"), CssQuery("span"))

    def test_keeps_callables(self) -> None:
        wait = WaitQuery("#pane-side")
        result = chain("a", wait)
        assert result[1] is wait

    def test_str_is_selector(self) -> None:
        assert str(CssQuery("#side")) == "#side"
        assert str(WaitQuery("#side", timeout_ms=5)) == "#side"

    def test_chat_list_chain_order(self) -> None:
        assert [str(q) for q in CHAT_LIST_CHAIN[:4]] == [
            '[data-testid="chat-list"] div[role="listitem"]',
            '#pane-side div[role="listitem"]',
            '[data-testid="side"] div[role="listitem"]',
            'div[role="listitem"]',
        ]


# ── resolve() ───────────────────────────────────────────────────────


class TestResolve:
    async def test_first_non_empty_query_wins(self, dom: SimpleNamespace) -> None:
        """s1 finds nothing, s2 finds two, s3 finds one: s2's matches are returned."""
        e1, e2, e3 = dom.Element(text="1"), dom.Element(text="2"), dom.Element(text="3")
        page = dom.Page(children={"s2": [e1, e2], "s3": [e3]})

        result = await resolve(chain("s1", "s2", "s3"), page)

        assert result == [e1, e2]

    async def test_later_query_not_consulted_after_match(self, dom: SimpleNamespace) -> None:
        page = dom.Page(children={"s1": [dom.Element()]})
        calls: list[str] = []

        async def spy(scope: Any) -> list[Any]:
            calls.append("spy")
            return [dom.Element()]

        await resolve(chain("s1", spy), page)
        assert calls == []

    async def test_raising_query_is_skipped(self, dom: SimpleNamespace) -> None:
        element = dom.Element()
        page = dom.Page(children={"ok": [element]})

        result = await resolve(chain(_raising_query, "ok"), page)

        assert result == [element]

    async def test_all_empty_returns_none(self, dom: SimpleNamespace) -> None:
        page = dom.Page()
        assert await resolve(chain("a", "b", _raising_query), page) is None

    async def test_empty_chain_returns_none(self, dom: SimpleNamespace) -> None:
        assert await resolve((), dom.Page()) is None

    async def test_wait_query_timeout_is_non_match(self, dom: SimpleNamespace) -> None:
        element = dom.Element()
        page = dom.Page(children={"#pane-side": [element]})

        result = await resolve(chain(WaitQuery("canvas", timeout_ms=1), WaitQuery("#pane-side")), page)

        assert result == [element]

    async def test_resolves_against_element_scope(self, dom: SimpleNamespace) -> None:
        inner = dom.Element(title="Alice")
        row = dom.Element(children={"span[title]": [inner]})
        assert await resolve(chain("span[title]"), row) == [inner]


class TestFirstMatch:
    async def test_returns_first_element(self, dom: SimpleNamespace) -> None:
        e1, e2 = dom.Element(), dom.Element()
        page = dom.Page(children={"x": [e1, e2]})
        assert await first_match(chain("x"), page) is e1

    async def test_returns_none_when_nothing_matches(self, dom: SimpleNamespace) -> None:
        assert await first_match(chain("x"), dom.Page()) is None
