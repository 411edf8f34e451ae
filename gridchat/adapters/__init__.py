"""Adapters package - boundary between the chat engine and the agent runtime.

Typed agent events, the abstract agent/model interfaces, the event bus
and the dirty-range side channel parser. Tool lifecycle tracking lives in
adapters.tool_tracker and is imported from there directly.
"""
from __future__ import annotations

__all__ = [
    "AgentFactory",
    "AgentRuntime",
    "AgentSpec",
    "DirtyRange",
    "EventBus",
    "ModelInfo",
    "ModelResolver",
    "dict_to_event",
    "event_to_dict",
    "merge_ranges",
    "parse_dirty_ranges",
]

from gridchat.adapters.dirty_ranges import DirtyRange, merge_ranges, parse_dirty_ranges
from gridchat.adapters.events import dict_to_event, event_to_dict
from gridchat.adapters.agent import AgentFactory, AgentRuntime, AgentSpec, ModelInfo, ModelResolver
from gridchat.adapters.event_bus import EventBus
