"""Tests for snapshot extraction and change detection (wa_notifier.watchers.snapshot)."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from wa_notifier.watchers.snapshot import (
    ERROR_SENTINEL,
    TOP_N,
    NotificationEvent,
    empty_snapshot,
    extract_snapshot,
    pad_snapshot,
    pick_label,
    placeholder_label,
    snapshots_equal,
)

# ── Unit Tests: pick_label ──────────────────────────────────────────


class TestPickLabel:
    def test_title_wins_over_text(self) -> None:
        assert pick_label(["Alice"], ["Bob"]) == "Alice"

    def test_skips_empty_titles(self) -> None:
        assert pick_label([None, "", "Alice"], []) == "Alice"

    def test_single_character_title_rejected(self) -> None:
        assert pick_label(["A"], ["Bob"]) == "Bob"

    def test_two_character_title_accepted(self) -> None:
        assert pick_label(["Al"], []) == "Al"

    def test_title_of_fifty_characters_rejected(self) -> None:
        assert pick_label(["x" * 50], ["Bob"]) == "Bob"

    def test_title_of_forty_nine_characters_accepted(self) -> None:
        assert pick_label(["x" * 49], []) == "x" * 49

    def test_title_is_trimmed(self) -> None:
        assert pick_label(["  Alice  "], []) == "Alice"

    @pytest.mark.parametrize("time_text", ["9:05", "12:30", "00:00"])
    def test_time_text_skipped(self, time_text: str) -> None:
        assert pick_label([], [time_text, "Bob"]) == "Bob"

    def test_text_with_url_skipped(self) -> None:
        assert pick_label([], ["see http://example.com", "Bob"]) == "Bob"

    def test_text_with_www_skipped(self) -> None:
        assert pick_label([], ["www.example.com", "Bob"]) == "Bob"

    def test_nothing_qualifies(self) -> None:
        assert pick_label([None, "A"], ["", "12:30", "x"]) is None


# ── Unit Tests: equality ────────────────────────────────────────────


SNAPSHOTS = [
    ["Alice", "Bob", "Carol"],
    ["", "", ""],
    ["Error", "", ""],
    ["Alice", "", ""],
]


class TestSnapshotsEqual:
    @pytest.mark.parametrize("snapshot", SNAPSHOTS)
    def test_reflexive(self, snapshot: list[str]) -> None:
        assert snapshots_equal(snapshot, list(snapshot))

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            (["Alice", "Bob", "Carol"], ["Bob", "Alice", "Carol"]),
            (["Alice", "Bob", "Carol"], ["Alice", "Bob", "Dave"]),
            (["Alice", "", ""], ["", "Alice", ""]),
        ],
    )
    def test_position_sensitive_and_symmetric(self, a: list[str], b: list[str]) -> None:
        assert not snapshots_equal(a, b)
        assert not snapshots_equal(b, a)

    def test_case_sensitive(self) -> None:
        assert not snapshots_equal(["alice", "", ""], ["Alice", "", ""])

    def test_no_whitespace_normalization(self) -> None:
        assert not snapshots_equal(["Alice ", "", ""], ["Alice", "", ""])

    def test_length_mismatch(self) -> None:
        assert not snapshots_equal(["Alice", "Bob"], ["Alice", "Bob", ""])


class TestPadding:
    def test_pads_short_list(self) -> None:
        assert pad_snapshot(["Alice"]) == ["Alice", "", ""]

    def test_truncates_long_list(self) -> None:
        assert pad_snapshot(["a", "b", "c", "d"]) == ["a", "b", "c"]

    def test_empty_snapshot(self) -> None:
        assert empty_snapshot() == ["", "", ""]


class TestPlaceholder:
    def test_format(self) -> None:
        label = placeholder_label(2)
        assert label.startswith("Contact_2_")

    def test_unique_per_call(self) -> None:
        assert placeholder_label(1) != placeholder_label(1)


class TestNotificationEvent:
    def test_is_frozen(self) -> None:
        event = NotificationEvent(previous=("a", "b", "c"), current=("b", "a", "c"))
        with pytest.raises(AttributeError):
            event.current = ("x", "y", "z")  # type: ignore[misc]

    def test_timestamp_is_aware(self) -> None:
        event = NotificationEvent(previous=(), current=())
        assert event.timestamp.tzinfo is not None


# ── Integration: extract_snapshot ───────────────────────────────────


class TestExtractSnapshot:
    @pytest.mark.parametrize("row_count", [0, 1, 2, 3, 4, 5])
    async def test_always_top_n_entries(self, dom: SimpleNamespace, row_count: int) -> None:
        names = [f"Chat {i}" for i in range(row_count)]
        page = dom.logged_in_page(names)

        snapshot = await extract_snapshot(page)

        assert len(snapshot) == TOP_N
        assert snapshot[: min(row_count, TOP_N)] == names[:TOP_N]
        assert all(entry == "" for entry in snapshot[row_count:])

    async def test_no_chat_list_returns_empty_entries(self, dom: SimpleNamespace) -> None:
        assert await extract_snapshot(dom.Page()) == ["", "", ""]

    async def test_falls_back_to_later_chat_selector(self, dom: SimpleNamespace) -> None:
        page = dom.Page(children={'#pane-side div[role="listitem"]': [dom.chat_row("Alice")]})
        assert await extract_snapshot(page) == ["Alice", "", ""]

    async def test_uses_span_text_when_no_title(self, dom: SimpleNamespace) -> None:
        row = dom.Element(children={"span": [dom.Element(text="09:15"), dom.Element(text="Bob")]})
        page = dom.Page(children={dom.CHAT_ROW_SELECTOR: [row]})

        assert await extract_snapshot(page) == ["Bob", "", ""]

    async def test_unreadable_row_gets_placeholder(self, dom: SimpleNamespace) -> None:
        page = dom.Page(children={dom.CHAT_ROW_SELECTOR: [dom.chat_row("Alice"), dom.Element()]})

        snapshot = await extract_snapshot(page)

        assert snapshot[0] == "Alice"
        assert snapshot[1].startswith("Contact_2_")
        assert snapshot[2] == ""

    async def test_placeholders_differ_between_extractions(self, dom: SimpleNamespace) -> None:
        page = dom.Page(children={dom.CHAT_ROW_SELECTOR: [dom.Element()]})

        first = await extract_snapshot(page)
        second = await extract_snapshot(page)

        assert not snapshots_equal(first, second)

    async def test_error_returns_sentinel(self, dom: SimpleNamespace) -> None:
        class DetachedElement(dom.Element):
            async def get_attribute(self, name: str) -> str | None:
                msg = "Element is not attached to the DOM"
                raise RuntimeError(msg)

        row = dom.Element(children={"span[title]": [DetachedElement()]})
        page = dom.Page(children={dom.CHAT_ROW_SELECTOR: [row]})

        assert await extract_snapshot(page) == [ERROR_SENTINEL, "", ""]
