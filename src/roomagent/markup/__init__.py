"""Structured markup: the interchange format between the agent and the model."""

from roomagent.markup.node import (
    FLAG,
    AttributeMap,
    Content,
    MarkupNode,
    RoomEventNode,
    Text,
    TimestampedNode,
    escape,
    format_display_time,
    format_timestamp,
)
from roomagent.markup.parser import parse, parse_fragment

__all__ = [
    "FLAG",
    "AttributeMap",
    "Content",
    "MarkupNode",
    "RoomEventNode",
    "Text",
    "TimestampedNode",
    "escape",
    "format_display_time",
    "format_timestamp",
    "parse",
    "parse_fragment",
]
