"""Dirty-range side channel: which spreadsheet regions a tool call touched.

Write tools embed the regions they mutated in their JSON result under
``_dirtyRanges``::

    {"success": true, "_dirtyRanges": [{"sheetId": 3, "range": "A1:B10"}]}

The list drives follow-mode navigation and the compact "modified cells"
summary next to each tool call. It is never shown as result text.

Tool output is untrusted: everything parsed here is validated, and
anything that does not look like a sheet id plus an A1 reference is
dropped.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SIDE_CHANNEL_KEY = "_dirtyRanges"
WILDCARD = "*"
UNKNOWN_REGION_GROUP = -1

MAX_ROWS = 1_048_576
MAX_COLUMNS = 16_384

_CELL_RE = re.compile(r"^\$?([A-Z]{1,3})\$?([0-9]{1,7})$")
_COLUMN_RE = re.compile(r"^\$?([A-Z]{1,3})$")
_ROW_RE = re.compile(r"^\$?([0-9]{1,7})$")


@dataclass(frozen=True)
class DirtyRange:
    """A region a tool call mutated.

    ``region_group_id`` is the host's sheet id; negative means the tool
    could not tell which sheet. ``reference`` is an A1 reference or
    ``"*"`` for the whole sheet.
    """
    region_group_id: int
    reference: str

    @property
    def is_unknown(self) -> bool:
        return self.region_group_id < 0

    @property
    def is_wildcard(self) -> bool:
        return self.reference == WILDCARD

    def to_wire(self) -> dict[str, Any]:
        return {"sheetId": self.region_group_id, "range": self.reference}


# (first_row, first_col, last_row, last_col), 1-based and inclusive
Rect = tuple[int, int, int, int]


# ── A1 references ────────────────────────────────────────────────


def column_to_index(letters: str) -> int:
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index


def index_to_column(index: int) -> str:
    letters = []
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def _parse_cell(token: str) -> tuple[int, int] | None:
    m = _CELL_RE.match(token)
    if not m:
        return None
    col = column_to_index(m.group(1))
    row = int(m.group(2))
    if not (1 <= row <= MAX_ROWS and 1 <= col <= MAX_COLUMNS):
        return None
    return row, col


def parse_reference(reference: str) -> Rect | None:
    """Parse an A1 reference (``B5``, ``A1:C3``, ``A:C``, ``2:4``) to a Rect.

    Returns None for wildcards, sheet-qualified references and anything
    outside sheet limits.
    """
    if not isinstance(reference, str):
        return None
    text = reference.strip().upper()
    if not text or text == WILDCARD:
        return None
    parts = text.split(":")
    if len(parts) == 1:
        cell = _parse_cell(parts[0])
        if cell is None:
            return None
        return (cell[0], cell[1], cell[0], cell[1])
    if len(parts) != 2:
        return None

    start, end = parts
    a, b = _parse_cell(start), _parse_cell(end)
    if a is not None and b is not None:
        return (min(a[0], b[0]), min(a[1], b[1]), max(a[0], b[0]), max(a[1], b[1]))

    ca, cb = _COLUMN_RE.match(start), _COLUMN_RE.match(end)
    if ca and cb:
        c1, c2 = column_to_index(ca.group(1)), column_to_index(cb.group(1))
        if max(c1, c2) > MAX_COLUMNS:
            return None
        return (1, min(c1, c2), MAX_ROWS, max(c1, c2))

    ra, rb = _ROW_RE.match(start), _ROW_RE.match(end)
    if ra and rb:
        r1, r2 = int(ra.group(1)), int(rb.group(1))
        if min(r1, r2) < 1 or max(r1, r2) > MAX_ROWS:
            return None
        return (min(r1, r2), 1, max(r1, r2), MAX_COLUMNS)

    return None


def format_reference(rect: Rect) -> str:
    r1, c1, r2, c2 = rect
    if r1 == 1 and r2 == MAX_ROWS:
        return f"{index_to_column(c1)}:{index_to_column(c2)}"
    if c1 == 1 and c2 == MAX_COLUMNS:
        return f"{r1}:{r2}"
    first = f"{index_to_column(c1)}{r1}"
    if (r1, c1) == (r2, c2):
        return first
    return f"{first}:{index_to_column(c2)}{r2}"


# ── Side channel parsing ─────────────────────────────────────────


def _load_object(result_text: str | None) -> dict | None:
    if not result_text or not isinstance(result_text, str):
        return None
    try:
        parsed = json.loads(result_text)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _entry_to_range(entry: Any) -> DirtyRange | None:
    if not isinstance(entry, dict):
        return None
    group_id = entry.get("sheetId")
    reference = entry.get("range")
    # bool is an int subclass; a forged True must not become sheet 1
    if isinstance(group_id, bool) or not isinstance(group_id, int):
        return None
    if not isinstance(reference, str):
        return None
    reference = reference.strip()
    if reference != WILDCARD:
        rect = parse_reference(reference)
        if rect is None:
            return None
        reference = format_reference(rect)
    return DirtyRange(group_id, reference)


def parse_dirty_ranges(result_text: str | None) -> list[DirtyRange] | None:
    """Extract validated dirty ranges from a tool's JSON result text.

    Returns None when the result is not a JSON object, carries no side
    channel, or nothing in it survives validation.
    """
    parsed = _load_object(result_text)
    if parsed is None:
        return None
    raw = parsed.get(SIDE_CHANNEL_KEY)
    if not isinstance(raw, list):
        return None
    ranges: list[DirtyRange] = []
    for entry in raw:
        dirty = _entry_to_range(entry)
        if dirty is None:
            logger.debug("Dropping malformed dirty range entry: %r", entry)
            continue
        ranges.append(dirty)
    return ranges or None


def strip_side_channel(result_text: str) -> str:
    """Return *result_text* without the dirty-range key, for display."""
    parsed = _load_object(result_text)
    if parsed is None or SIDE_CHANNEL_KEY not in parsed:
        return result_text
    parsed.pop(SIDE_CHANNEL_KEY)
    return json.dumps(parsed)


# ── Merging ──────────────────────────────────────────────────────


def _intervals_overlap(a1: int, a2: int, b1: int, b2: int) -> bool:
    return a1 <= b2 and b1 <= a2


def _intervals_touch(a1: int, a2: int, b1: int, b2: int) -> bool:
    return a1 <= b2 + 1 and b1 <= a2 + 1


def _mergeable(a: Rect, b: Rect) -> bool:
    rows_overlap = _intervals_overlap(a[0], a[2], b[0], b[2])
    cols_overlap = _intervals_overlap(a[1], a[3], b[1], b[3])
    rows_touch = _intervals_touch(a[0], a[2], b[0], b[2])
    cols_touch = _intervals_touch(a[1], a[3], b[1], b[3])
    # Corner-only contact (B2 next to C3) does not merge.
    return (rows_overlap and cols_touch) or (cols_overlap and rows_touch)


def _bounding(a: Rect, b: Rect) -> Rect:
    return (min(a[0], b[0]), min(a[1], b[1]), max(a[2], b[2]), max(a[3], b[3]))


def _merge_rects(rects: Iterable[Rect]) -> list[Rect]:
    pending = sorted(set(rects))
    changed = True
    while changed:
        changed = False
        for i in range(len(pending)):
            for j in range(i + 1, len(pending)):
                if _mergeable(pending[i], pending[j]):
                    merged = _bounding(pending[i], pending[j])
                    del pending[j]
                    pending[i] = merged
                    changed = True
                    break
            if changed:
                break
    return sorted(set(pending))


def merge_ranges(ranges: Iterable[DirtyRange]) -> list[DirtyRange]:
    """Collapse ranges into a minimal, sorted display set.

    Per sheet: a wildcard swallows the sheet; overlapping or edge-adjacent
    rectangles become their bounding rectangle. Unknown-sheet ranges are
    kept apart, deduplicated by literal reference. The result does not
    depend on input order, and merging it again returns it unchanged.
    """
    groups: dict[int, list[DirtyRange]] = {}
    unknown: set[str] = set()
    for r in ranges:
        if r.is_unknown:
            unknown.add(r.reference)
        else:
            groups.setdefault(r.region_group_id, []).append(r)

    result: list[DirtyRange] = []
    for group_id in sorted(groups):
        members = groups[group_id]
        if any(m.is_wildcard for m in members):
            result.append(DirtyRange(group_id, WILDCARD))
            continue
        rects: list[Rect] = []
        literals: set[str] = set()
        for m in members:
            rect = parse_reference(m.reference)
            if rect is None:
                literals.add(m.reference)
            else:
                rects.append(rect)
        result.extend(DirtyRange(group_id, format_reference(rect)) for rect in _merge_rects(rects))
        result.extend(DirtyRange(group_id, literal) for literal in sorted(literals))

    result.extend(DirtyRange(UNKNOWN_REGION_GROUP, ref) for ref in sorted(unknown))
    return result


def range_covers(outer: DirtyRange, inner: DirtyRange) -> bool:
    """True if *outer* (a merged range) contains *inner*."""
    if inner.is_unknown or outer.is_unknown:
        return outer.is_unknown and inner.is_unknown and outer.reference == inner.reference
    if outer.region_group_id != inner.region_group_id:
        return False
    if outer.is_wildcard:
        return True
    o, i = parse_reference(outer.reference), parse_reference(inner.reference)
    if o is None or i is None:
        return outer.reference == inner.reference
    return o[0] <= i[0] and o[1] <= i[1] and o[2] >= i[2] and o[3] >= i[3]


# ── Display ──────────────────────────────────────────────────────

SheetNameLookup = Callable[[int], "str | None"]


def format_range_label(dirty: DirtyRange, sheet_name: str | None) -> str | None:
    """Full label for a link to a modified region, or None if unresolvable."""
    if dirty.is_unknown:
        return "Unknown sheet" if dirty.is_wildcard else f"Unknown!{dirty.reference}"
    if not sheet_name:
        return None
    if dirty.is_wildcard:
        return f"{sheet_name} (all)"
    return f"{sheet_name}!{dirty.reference}"


def summarize_ranges(ranges: Iterable[DirtyRange], sheet_name_lookup: SheetNameLookup) -> str | None:
    """One-line summary of modified regions for a collapsed tool call."""
    merged = merge_ranges(ranges)
    if not merged:
        return None

    def brief(dirty: DirtyRange) -> str | None:
        if dirty.is_unknown:
            return "unknown" if dirty.is_wildcard else dirty.reference
        sheet_name = sheet_name_lookup(dirty.region_group_id)
        if not sheet_name:
            return None
        return sheet_name if dirty.is_wildcard else dirty.reference

    if len(merged) == 1:
        text = brief(merged[0])
        return f"→ {text}" if text else None

    valid = [r for r in merged if r.is_unknown or sheet_name_lookup(r.region_group_id)]
    if not valid:
        return None
    return f"→ {len(valid)} ranges"
