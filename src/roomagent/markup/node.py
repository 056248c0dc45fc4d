"""Markup tree data model and serializer.

A document is a tree of MarkupNode elements. Each node has a tag, an
insertion-ordered attribute map and one of three content kinds:

- None: empty element, serialized self-closing (<tag/>)
- Text: a string payload, entity-escaped unless marked raw
- list[MarkupNode]: child elements, one per line, indented by nesting level

Boolean attributes are stored as the value True and serialize as a bare
attribute name (<window pinned/>), never as pinned="true".
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from roomagent.errors import ProtectedAttributeError

# Marker for bare (boolean) attributes. Legal string values can never be True.
FLAG = True

_INVALID_TAG_CHARS = frozenset(' \t\r\n<>/="')

_ESCAPES = (("&", "&amp;"), ("<", "&lt;"), (">", "&gt;"), ('"', "&quot;"))


def escape(value: str) -> str:
    """Entity-escape &, <, > and double quotes."""
    for char, entity in _ESCAPES:
        value = value.replace(char, entity)
    return value


def format_timestamp(moment: datetime | None = None) -> str:
    """Local ISO-8601 timestamp with offset, second precision."""
    moment = moment or datetime.now()
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.isoformat(timespec="seconds")


def format_display_time(moment: datetime | None = None) -> str:
    """Human-facing local time: YYYY-MM-DD HH:MM:SS +HH:MM."""
    stamp = format_timestamp(moment)
    return f"{stamp[:10]} {stamp[11:19]} {stamp[19:]}"


@dataclass(frozen=True, slots=True)
class Text:
    """Text payload. raw=True skips escaping; it does not take part in equality."""

    value: str
    raw: bool = field(default=False, compare=False)


Content = Union[None, Text, list["MarkupNode"]]


class AttributeMap(dict):
    """Insertion-ordered attribute dict that refuses to change protected keys.

    Protected keys may be written once (when the owning node is built) and
    are immutable afterwards. Writing the same value again is allowed.
    """

    def __init__(self, tag: str, protected: Iterable[str] = ()) -> None:
        super().__init__()
        self._tag = tag
        self._protected = frozenset(protected)

    @property
    def protected(self) -> frozenset[str]:
        return self._protected

    def _check(self, key: str, value: Any = None, removing: bool = False) -> None:
        if key not in self._protected or key not in self:
            return
        if removing or dict.__getitem__(self, key) != value:
            raise ProtectedAttributeError(self._tag, key)

    def __setitem__(self, key: str, value: str | bool) -> None:
        self._check(key, value)
        super().__setitem__(key, value)

    def __delitem__(self, key: str) -> None:
        self._check(key, removing=True)
        super().__delitem__(key)

    def update(self, *args: Any, **kwargs: Any) -> None:  # type: ignore[override]
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    def setdefault(self, key: str, default: Any = None) -> Any:  # type: ignore[override]
        if key not in self:
            self[key] = default
        return self[key]

    def pop(self, key: str, *default: Any) -> Any:  # type: ignore[override]
        if key in self:
            self._check(key, removing=True)
        return super().pop(key, *default)

    def popitem(self) -> tuple[str, Any]:
        key = next(reversed(self))
        return key, self.pop(key)

    def clear(self) -> None:
        for key in list(self):
            if key not in self._protected:
                super().__delitem__(key)

    def _initialize(self, key: str, value: str | bool) -> None:
        super().__setitem__(key, value)


def _coerce_content(content: Any) -> Content:
    if content is None or isinstance(content, Text):
        return content
    if isinstance(content, str):
        return Text(content)
    if isinstance(content, MarkupNode):
        return [content]
    return list(content)


class MarkupNode:
    """One element of a markup document."""

    protected_keys: tuple[str, ...] = ()

    def __init__(
        self,
        tag: str,
        attributes: Mapping[str, str | bool] | None = None,
        content: Content | str | Iterable[MarkupNode] = None,
    ) -> None:
        if not tag or _INVALID_TAG_CHARS.intersection(tag):
            raise ValueError(f"invalid tag name: {tag!r}")
        self.tag = tag
        self._attributes = AttributeMap(tag, self.protected_keys)
        if attributes:
            self._attributes.update(attributes)
        self.content = content

    # -------------------------------------------------------------------------
    # Attributes
    # -------------------------------------------------------------------------

    @property
    def attributes(self) -> AttributeMap:
        return self._attributes

    @attributes.setter
    def attributes(self, mapping: Mapping[str, str | bool]) -> None:
        self.replace_attributes(mapping)

    def replace_attributes(self, mapping: Mapping[str, str | bool]) -> None:
        """Swap in a new attribute map.

        Plain nodes replace everything. Protected subtypes reject a mapping
        that would change a protected key and merge everything else onto the
        existing attributes, so the protected keys survive.
        """
        if not self.protected_keys:
            self._attributes = AttributeMap(self.tag)
            self._attributes.update(mapping)
            return
        for key in self.protected_keys:
            if key in mapping and mapping[key] != self._attributes.get(key):
                raise ProtectedAttributeError(self.tag, key)
        self._attributes.update(mapping)

    def get(self, key: str, default: str | bool | None = None) -> str | bool | None:
        return self._attributes.get(key, default)

    def has_flag(self, key: str) -> bool:
        return self._attributes.get(key) is FLAG

    # -------------------------------------------------------------------------
    # Content helpers
    # -------------------------------------------------------------------------

    @property
    def content(self) -> Content:
        return self._content

    @content.setter
    def content(self, content: Content | str | Iterable[MarkupNode]) -> None:
        self._content = _coerce_content(content)

    @property
    def text(self) -> str | None:
        """The text payload, or None when the node holds children or nothing."""
        return self.content.value if isinstance(self.content, Text) else None

    @property
    def children(self) -> list[MarkupNode]:
        """Child elements (an empty list for text or empty nodes)."""
        return self.content if isinstance(self.content, list) else []

    def append(self, child: MarkupNode) -> MarkupNode:
        """Add a child element, converting empty content to a child list."""
        if self.content is None:
            self.content = []
        if not isinstance(self.content, list):
            raise TypeError(f"<{self.tag}> holds text and cannot take children")
        self.content.append(child)
        return child

    def find(self, tag: str) -> MarkupNode | None:
        return next(self.find_all(tag), None)

    def find_all(self, tag: str) -> Iterator[MarkupNode]:
        return (child for child in self.children if child.tag == tag)

    def text_payload(self) -> str:
        """Text used for semantic indexing: the text body, else the serialized children."""
        if isinstance(self.content, Text):
            return self.content.value
        if isinstance(self.content, list) and self.content:
            return "\n".join(child.serialize() for child in self.content)
        return self.serialize()

    def is_empty(self) -> bool:
        if self.content is None:
            return True
        if isinstance(self.content, Text):
            return self.content.value == ""
        return not self.content

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def serialize(self, nesting_level: int = 0) -> str:
        """Render this node as markup text.

        Children go one per line, indented one space per nesting level, and
        the closing tag is dedented back to this node's level.
        """
        attrs = "".join(
            f" {key}" if value is FLAG else f' {key}="{escape(str(value))}"'
            for key, value in self._attributes.items()
        )
        if self.is_empty():
            return f"<{self.tag}{attrs}/>"
        if isinstance(self.content, Text):
            body = self.content.value if self.content.raw else escape(self.content.value)
            return f"<{self.tag}{attrs}>{body}</{self.tag}>"

        indent = " " * (nesting_level + 1)
        inner = f"\n{indent}".join(child.serialize(nesting_level + 1) for child in self.children)
        return f"<{self.tag}{attrs}>\n{indent}{inner}\n{' ' * nesting_level}</{self.tag}>"

    def __str__(self) -> str:
        return self.serialize()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.tag!r}, {dict(self._attributes)!r}, {self.content!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarkupNode):
            return NotImplemented
        return (
            self.tag == other.tag
            and dict(self._attributes) == dict(other._attributes)
            and self._comparable_content() == other._comparable_content()
        )

    __hash__ = None  # type: ignore[assignment]

    def _comparable_content(self) -> Content:
        # Empty text and an empty child list both serialize as <tag/>.
        return None if self.is_empty() else self.content


class TimestampedNode(MarkupNode):
    """Event node with an immutable `timestamp` attribute."""

    protected_keys: tuple[str, ...] = ("timestamp",)

    def __init__(
        self,
        tag: str,
        attributes: Mapping[str, str | bool] | None = None,
        content: Content | str | Iterable[MarkupNode] = None,
        *,
        timestamp: datetime | str | None = None,
    ) -> None:
        super().__init__(tag, None, content)
        self._init_protected(timestamp=_timestamp_text(timestamp))
        if attributes:
            self.replace_attributes(attributes)

    def _init_protected(self, **values: str) -> None:
        for key, value in values.items():
            self._attributes._initialize(key, value)

    @property
    def timestamp(self) -> datetime:
        return datetime.fromisoformat(str(self._attributes["timestamp"]))


class RoomEventNode(TimestampedNode):
    """Timestamped event tied to a room: systemId, roomId and timestamp are protected."""

    protected_keys: tuple[str, ...] = ("systemId", "roomId", "timestamp")

    def __init__(
        self,
        tag: str,
        *,
        system_id: str,
        room_id: str,
        attributes: Mapping[str, str | bool] | None = None,
        content: Content | str | Iterable[MarkupNode] = None,
        timestamp: datetime | str | None = None,
    ) -> None:
        MarkupNode.__init__(self, tag, None, content)
        self._init_protected(
            systemId=system_id,
            roomId=room_id,
            timestamp=_timestamp_text(timestamp),
        )
        if attributes:
            self.replace_attributes(attributes)

    @property
    def room_id(self) -> str:
        return str(self._attributes["roomId"])

    @property
    def system_id(self) -> str:
        return str(self._attributes["systemId"])


def _timestamp_text(timestamp: datetime | str | None) -> str:
    if isinstance(timestamp, str):
        return timestamp
    return format_timestamp(timestamp)
