"""Offset/limit windowing over a scan that may be unbounded.

Search-style tools walk their source in a fixed order and feed every
match to a SearchPageCollector. The collector keeps only the requested
window and tells the caller to stop as soon as it has seen one match past
the window, which is enough to report ``has_more`` without scanning the
rest of the source.

``total_found`` is the number of matches observed before the scan
stopped. It equals the grand total only when the source was exhausted
(``has_more`` is False); callers that need an exact count must keep
scanning on their own.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class SearchPage:
    total_found: int
    returned: int
    offset: int
    has_more: bool
    next_offset: int | None = None

    def to_dict(self) -> dict:
        return {
            "totalFound": self.total_found,
            "returned": self.returned,
            "offset": self.offset,
            "hasMore": self.has_more,
            "nextOffset": self.next_offset,
        }


def _coerce_int(value: float | int | None, minimum: int) -> int:
    if value is None:
        return minimum
    try:
        number = float(value)
    except (TypeError, ValueError):
        return minimum
    if math.isnan(number):
        return minimum
    if math.isinf(number):
        return minimum if number < 0 else 2**63 - 1
    return max(minimum, math.floor(number))


class SearchPageCollector(Generic[T]):
    """Stateful accumulator for one page of matches."""

    def __init__(self, offset: float | int | None, max_results: float | int | None) -> None:
        self.page_offset = _coerce_int(offset, 0)
        self.page_size = _coerce_int(max_results, 1)
        self.matches: list[T] = []
        self._total_matched = 0
        self._has_more = False

    def add(self, match: T) -> bool:
        """Record the next match in scan order.

        Returns True once the caller can stop scanning: the window is
        full and a sentinel match beyond it has been seen.
        """
        if self._has_more:
            return True

        match_index = self._total_matched
        self._total_matched += 1

        if match_index < self.page_offset:
            return False

        if len(self.matches) < self.page_size:
            self.matches.append(match)
            return False

        self._has_more = True
        return True

    def to_page(self) -> SearchPage:
        return SearchPage(
            total_found=self._total_matched,
            returned=len(self.matches),
            offset=self.page_offset,
            has_more=self._has_more,
            next_offset=self.page_offset + len(self.matches) if self._has_more else None,
        )


def collect_page(
    source: Iterable[T],
    offset: float | int | None,
    limit: float | int | None,
) -> tuple[list[T], SearchPage]:
    """Run a collector over *source*, stopping at the sentinel match."""
    collector: SearchPageCollector[T] = SearchPageCollector(offset, limit)
    for match in source:
        if collector.add(match):
            break
    return collector.matches, collector.to_page()
