from __future__ import annotations

import itertools

from gridchat.shared.pagination import SearchPageCollector, collect_page


def test_first_page_stops_at_sentinel() -> None:
    seen: list[int] = []

    def source():
        for i in range(25):
            seen.append(i)
            yield i

    matches, page = collect_page(source(), offset=0, limit=10)

    assert matches == list(range(10))
    assert page.returned == 10
    assert page.offset == 0
    assert page.has_more is True
    assert page.next_offset == 10
    # Scan stopped right after the sentinel.
    assert seen == list(range(11))
    assert page.total_found == 11


def test_last_page_exhausts_source() -> None:
    matches, page = collect_page(range(25), offset=20, limit=10)

    assert matches == [20, 21, 22, 23, 24]
    assert page.total_found == 25
    assert page.returned == 5
    assert page.has_more is False
    assert page.next_offset is None


def test_offset_past_end_returns_empty_page() -> None:
    matches, page = collect_page(range(5), offset=10, limit=3)

    assert matches == []
    assert page.total_found == 5
    assert page.has_more is False


def test_unbounded_source_terminates() -> None:
    matches, page = collect_page(itertools.count(), offset=3, limit=2)

    assert matches == [3, 4]
    assert page.has_more is True
    assert page.next_offset == 5


def test_invalid_offset_and_limit_are_normalized() -> None:
    collector = SearchPageCollector(float("nan"), -4)
    assert collector.page_offset == 0
    assert collector.page_size == 1

    collector = SearchPageCollector(-7, 0)
    assert collector.page_offset == 0
    assert collector.page_size == 1

    collector = SearchPageCollector(2.9, 3.7)
    assert collector.page_offset == 2
    assert collector.page_size == 3

    collector = SearchPageCollector(None, None)
    assert collector.page_offset == 0
    assert collector.page_size == 1


def test_add_keeps_returning_true_after_sentinel() -> None:
    collector: SearchPageCollector[str] = SearchPageCollector(0, 1)
    assert collector.add("a") is False
    assert collector.add("b") is True
    assert collector.add("c") is True
    assert collector.matches == ["a"]
    assert collector.to_page().total_found == 2


def test_page_dict_uses_camel_case() -> None:
    _, page = collect_page(range(3), offset=0, limit=2)
    assert page.to_dict() == {
        "totalFound": 3,
        "returned": 2,
        "offset": 0,
        "hasMore": True,
        "nextOffset": 2,
    }
