"""Tool call lifecycle tracking.

Applies tool execution events to the ToolCallPart they refer to: status
transitions (pending -> running -> complete|error), partial and final
result text, returned images, and the dirty-range side channel that
drives follow-mode navigation in the host.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable, Sequence
from typing import Any

from gridchat.adapters.dirty_ranges import (
    DirtyRange,
    merge_ranges,
    parse_dirty_ranges,
    range_covers,
    strip_side_channel,
)
from gridchat.engine.lifecycle import TERMINAL_STATES, validate_transition
from gridchat.engine.models import ToolCallStatus
from gridchat.shared.models.message import ImageAttachment, ToolCallPart, Turn

logger = logging.getLogger(__name__)

# navigate(region_group_id, reference or None for the whole region);
# may be a plain function or a coroutine function.
NavigateCallback = Callable[[int, "str | None"], Any]
RegionResolver = Callable[[int], bool]


def coerce_payload(payload: Any) -> tuple[str, list[ImageAttachment]]:
    """Turn a tool payload into display text plus captured images.

    Strings pass through. Structured content (``{"content": [...]}``)
    contributes its text segments joined by newlines and its image
    segments as attachments. Anything else is pretty-printed JSON.
    """
    if isinstance(payload, str):
        return payload, []
    if isinstance(payload, dict) and isinstance(payload.get("content"), list):
        texts: list[str] = []
        images: list[ImageAttachment] = []
        for segment in payload["content"]:
            if not isinstance(segment, dict):
                continue
            if segment.get("type") == "text":
                texts.append(str(segment.get("text", "")))
            elif segment.get("type") == "image" and segment.get("data"):
                images.append(ImageAttachment(
                    data=segment["data"],
                    mime_type=segment.get("mimeType") or "image/png",
                ))
        return "\n".join(texts), images
    try:
        return json.dumps(payload, indent=2), []
    except (TypeError, ValueError):
        return str(payload), []


def find_tool_call(turns: Sequence[Turn], call_id: str) -> ToolCallPart | None:
    """Find a tool call part by id, searching the most recent turn first."""
    for turn in reversed(turns):
        part = turn.tool_call(call_id)
        if part is not None:
            return part
    return None


class ToolLifecycleTracker:
    """Moves tool call parts through their lifecycle.

    Args:
        navigate: Host callback used by follow mode.
        resolve_region: Returns False for region ids the host no longer
            knows (e.g. a deleted sheet); such regions are not navigated to.
        follow_mode: Navigate to modified regions after successful calls.
    """

    def __init__(
        self,
        navigate: NavigateCallback | None = None,
        resolve_region: RegionResolver | None = None,
        follow_mode: bool = True,
    ) -> None:
        self.navigate = navigate
        self.resolve_region = resolve_region
        self.follow_mode = follow_mode
        self._nav_tasks: set[asyncio.Task] = set()

    # ── Events ──

    def start(self, turns: Sequence[Turn], call_id: str) -> ToolCallPart | None:
        part = find_tool_call(turns, call_id)
        if part is None:
            logger.debug("tool start for unknown call %s", call_id)
            return None
        self._advance(part, ToolCallStatus.RUNNING)
        return part

    def update(self, turns: Sequence[Turn], call_id: str, partial_result: Any) -> ToolCallPart | None:
        part = find_tool_call(turns, call_id)
        if part is None:
            logger.debug("tool update for unknown call %s", call_id)
            return None
        if part.status in TERMINAL_STATES:
            logger.debug("Ignoring late update for finished tool call %s", call_id)
            return part
        text, _ = coerce_payload(partial_result)
        part.result = strip_side_channel(text)
        return part

    def end(
        self,
        turns: Sequence[Turn],
        call_id: str,
        result: Any,
        is_error: bool,
    ) -> ToolCallPart | None:
        part = find_tool_call(turns, call_id)
        if part is None:
            logger.debug("tool end for unknown call %s", call_id)
            return None
        if part.status in TERMINAL_STATES:
            logger.warning(
                "Ignoring duplicate end for tool call %s (already %s)",
                call_id, part.status.value,
            )
            return part

        text, images = coerce_payload(result)
        ranges = parse_dirty_ranges(text)
        part.result = strip_side_channel(text)
        part.images = images
        part.dirty_ranges = ranges

        if ranges and not is_error and self.follow_mode:
            self._follow(ranges)

        if part.status is ToolCallStatus.PENDING:
            self._advance(part, ToolCallStatus.RUNNING)
        self._advance(part, ToolCallStatus.ERROR if is_error else ToolCallStatus.COMPLETE)
        return part

    # ── helpers ──

    @staticmethod
    def _advance(part: ToolCallPart, target: ToolCallStatus) -> bool:
        if part.status is target:
            return False
        try:
            validate_transition(part.status, target)
        except ValueError as exc:
            logger.warning("Ignoring status change for tool call %s: %s", part.id, exc)
            return False
        part.status = target
        return True

    def navigation_target(self, ranges: Sequence[DirtyRange]) -> DirtyRange | None:
        """The merged region covering the most recently listed range.

        Returns None when that region is unknown or the host rejects it.
        """
        if not ranges:
            return None
        latest = ranges[-1]
        target = next((m for m in merge_ranges(ranges) if range_covers(m, latest)), latest)
        if target.is_unknown:
            return None
        if self.resolve_region is not None and not self.resolve_region(target.region_group_id):
            logger.debug("Region %d no longer exists; not following", target.region_group_id)
            return None
        return target

    def _follow(self, ranges: Sequence[DirtyRange]) -> None:
        if self.navigate is None:
            return
        try:
            target = self.navigation_target(ranges)
            if target is None:
                return
            reference = None if target.is_wildcard else target.reference
            outcome = self.navigate(target.region_group_id, reference)
        except Exception:
            logger.exception("Follow navigation failed")
            return
        if inspect.isawaitable(outcome):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop; dropping async navigation")
                if inspect.iscoroutine(outcome):
                    outcome.close()
                return
            task = loop.create_task(outcome) if inspect.iscoroutine(outcome) else asyncio.ensure_future(outcome)
            self._nav_tasks.add(task)
            task.add_done_callback(self._on_nav_done)

    def _on_nav_done(self, task: asyncio.Task) -> None:
        self._nav_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Follow navigation failed: %s", exc, exc_info=exc)
