"""Scrollable content windows.

A window exposes some external or historical text to the model through a
line-based viewport. Line numbers are 1-based and inclusive. Windows that
are neither pinned nor system close themselves after a number of turns
without interaction.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from roomagent.logging import get_logger
from roomagent.markup import FLAG, MarkupNode, Text

log = get_logger("window")

TRUNCATION_WARNING = "\n\nWARNING: CONTENT TRUNCATED TO FIT CONTEXT WINDOW, SCROLL REQUIRED"

RefreshCallback = Callable[["ContentWindow"], Awaitable[None]]
CloseEventFactory = Callable[[], MarkupNode]
CloseEventSink = Callable[[MarkupNode], Awaitable[None]]


class DisplayMode(Enum):
    """How much of the window's content is rendered."""

    NORMAL = "normal"  # Viewport between top_line and bottom_line
    MAXIMIZED = "maximized"  # Entire content
    MINIMIZED = "minimized"  # Attributes only


@dataclass(eq=False)
class ContentWindow:
    """Stateful viewport over a block of text.

    Every interaction that shows the model the window is being used
    (scrolling, resizing, queries, ...) resets the auto-close counter.
    """

    id: int
    content: str = ""
    content_source: str = ""
    content_source_type: str = ""
    content_type: str = "text/plain"
    title: str | None = None
    display_mode: DisplayMode = DisplayMode.NORMAL
    top_line: int = 1
    bottom_line: int = 20
    max_lines: int = 20
    scroll_size: int = 20
    pinned: bool = False
    system: bool = False
    initial_auto_close_in_turns: int = 2
    auto_close_in_turns: int = 2
    refresh: RefreshCallback | None = None
    auto_refresh: bool = False
    refresh_timeout: float | None = None
    close_event: CloseEventFactory | None = None
    query: str | None = None
    query_result: str | None = None
    custom_attributes: dict[str, str] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    @property
    def total_lines(self) -> int:
        return self.content.count("\n") + 1

    @property
    def total_chars(self) -> int:
        return len(self.content)

    @property
    def is_maximized(self) -> bool:
        return self.display_mode is DisplayMode.MAXIMIZED

    @property
    def is_minimized(self) -> bool:
        return self.display_mode is DisplayMode.MINIMIZED

    def visible_content(self) -> str:
        lines = self.content.split("\n")
        return "\n".join(lines[self.top_line - 1 : self.bottom_line])

    # -------------------------------------------------------------------------
    # Viewport operations
    # -------------------------------------------------------------------------

    def clamp(self) -> None:
        """Force 1 <= top_line <= bottom_line <= max(1, total_lines)."""
        upper = max(1, self.total_lines)
        self.top_line = max(1, min(self.top_line, upper))
        self.bottom_line = max(1, min(self.bottom_line, upper))
        if self.bottom_line < self.top_line:
            self.bottom_line = self.top_line

    def reset_auto_close(self) -> None:
        self.auto_close_in_turns = self.initial_auto_close_in_turns

    def _interact(self) -> None:
        """Viewport interactions bring a minimized window back."""
        if self.display_mode is DisplayMode.MINIMIZED:
            self.display_mode = DisplayMode.NORMAL
        self.reset_auto_close()

    def scroll_up(self) -> None:
        self._interact()
        self.top_line -= self.scroll_size
        if self.bottom_line - self.top_line > self.max_lines:
            self.bottom_line = self.top_line + self.max_lines
        underflow = 1 - self.top_line
        if underflow > 0:
            # Keep the span when running into the first line.
            self.top_line = 1
            self.bottom_line = min(self.total_lines, self.bottom_line + underflow)
        self.clamp()

    def scroll_down(self) -> None:
        self._interact()
        self.bottom_line += self.scroll_size
        if self.bottom_line - self.top_line > self.max_lines:
            self.top_line = self.bottom_line - self.max_lines
        overflow = self.bottom_line - self.total_lines
        if overflow > 0:
            # Keep the span when running into the last line.
            self.bottom_line = self.total_lines
            self.top_line = max(1, self.top_line - overflow)
        self.clamp()

    def scroll_to_line(self, line: int) -> None:
        self._interact()
        line = max(1, line)
        if line + self.scroll_size > self.total_lines:
            line = self.total_lines - self.scroll_size
        self.top_line = line
        self.bottom_line = line + self.scroll_size
        self.clamp()

    def resize(self, lines: int) -> None:
        self._interact()
        lines = max(1, min(lines, self.max_lines, self.total_lines))
        self.bottom_line = self.top_line + lines
        if self.bottom_line > self.total_lines:
            # Keep the span by moving the top up from the last line.
            self.bottom_line = self.total_lines
            self.top_line = max(1, self.total_lines - lines)
        self.clamp()

    def maximize(self) -> bool:
        """Show the whole content.

        Content longer than max_lines stays in the normal mode with the
        viewport stretched to max_lines; returns False in that case so the
        caller can warn that the size limit was hit.
        """
        self._interact()
        if self.total_lines > self.max_lines:
            self.resize(self.max_lines)
            return False
        self.display_mode = DisplayMode.MAXIMIZED
        self.clamp()
        return True

    def minimize(self) -> None:
        self.reset_auto_close()
        self.display_mode = DisplayMode.MINIMIZED

    def restore(self) -> None:
        self.reset_auto_close()
        self.display_mode = DisplayMode.NORMAL

    def pin(self) -> None:
        self.pinned = True

    def unpin(self) -> None:
        self.pinned = False
        self.reset_auto_close()

    def show_query(self, query: str, result: str) -> None:
        self.reset_auto_close()
        self.query = query
        self.query_result = result

    def clear_query(self) -> None:
        self.reset_auto_close()
        self.query = None
        self.query_result = None

    def set_attribute(self, key: str, value: str) -> None:
        self.custom_attributes[key] = value

    def remove_attribute(self, key: str) -> None:
        self.custom_attributes.pop(key, None)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closes_automatically(self) -> bool:
        return not (self.pinned or self.system)

    def tick(self) -> bool:
        """Count down one turn. Returns True when the window has expired."""
        if not self.closes_automatically:
            return False
        self.auto_close_in_turns -= 1
        return self.auto_close_in_turns <= 0

    async def refresh_now(self) -> None:
        """Run the refresh callback and re-clamp.

        Failures and timeouts replace the content with an ERR line instead of
        propagating; cancellation propagates.
        """
        if self.refresh is None:
            return
        try:
            if self.refresh_timeout:
                await asyncio.wait_for(self.refresh(self), self.refresh_timeout)
            else:
                await self.refresh(self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            log.warning("Refresh failed for window %s (%s): %s", self.id, self.content_source, message)
            self.content = f"ERR: {message}"
            self.query = None
            self.query_result = None
        self.clamp()

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    async def render(self, char_budget: int | None = None) -> MarkupNode:
        """Render as a <window> element, refreshing first when auto-refreshing."""
        if self.refresh is not None and self.auto_refresh:
            await self.refresh_now()

        children: list[MarkupNode] = []
        if self.query is not None:
            children.append(MarkupNode("queryResult", {"query": self.query}, self.query_result or ""))

        text = self.content if self.is_maximized else self.visible_content()
        if char_budget is not None and len(text) > char_budget:
            text = text[: max(0, char_budget - len(TRUNCATION_WARNING))] + TRUNCATION_WARNING
        children.append(MarkupNode("content", content=Text(text, raw=True)))

        node = MarkupNode(
            "window",
            {
                "windowId": str(self.id),
                "srcType": self.content_source_type,
                "src": self.content_source,
                "contentType": self.content_type,
                "lines": str(self.total_lines),
                "chars": str(self.total_chars),
            },
        )
        attrs = node.attributes
        if self.is_maximized:
            attrs["maximized"] = FLAG
        elif self.is_minimized:
            attrs["minimized"] = FLAG
        else:
            attrs["topLineNumber"] = str(self.top_line)
            attrs["bottomLineNumber"] = str(self.bottom_line)
        if self.system:
            attrs["system"] = FLAG
        if self.title is not None:
            attrs["title"] = self.title
        if self.refresh is not None:
            attrs["autorefresh" if self.auto_refresh else "refreshable"] = FLAG
        if self.pinned:
            attrs["pinned"] = FLAG
        elif self.auto_close_in_turns > 1:
            attrs["autoCloseInTurns"] = str(self.auto_close_in_turns)
        else:
            attrs["willAutoCloseAfterTurn"] = FLAG
        for key, value in self.custom_attributes.items():
            attrs.setdefault(key, value)

        if not self.is_minimized:
            node.content = children[0].content if len(children) == 1 else children
        return node


class WindowSet:
    """The agent's open ad-hoc windows plus the window id allocator.

    Ids come from a per-agent counter so they stay unique for the
    agent's lifetime; rooms draw their window ids from the same counter.
    """

    def __init__(
        self,
        first_id: int = 1,
        on_close_event: CloseEventSink | None = None,
    ) -> None:
        self._ids = itertools.count(first_id)
        self._windows: list[ContentWindow] = []
        self._on_close_event = on_close_event

    def next_id(self) -> int:
        return next(self._ids)

    def create(self, **kwargs: object) -> ContentWindow:
        """Build a window with a fresh id. It is not opened."""
        return ContentWindow(id=self.next_id(), **kwargs)  # type: ignore[arg-type]

    def open(self, window: ContentWindow) -> ContentWindow:
        if window not in self._windows:
            self._windows.append(window)
        return window

    async def close(self, window: ContentWindow) -> str:
        """Close a window, emitting its close event. Returns a result line for the model."""
        if window not in self._windows:
            return "Window not open"
        self._windows.remove(window)
        if window.close_event is None:
            return "Window closed"
        event = window.close_event()
        if self._on_close_event is not None:
            await self._on_close_event(event)
        return event.serialize()

    def get(self, window_id: int) -> ContentWindow | None:
        return next((w for w in self._windows if w.id == window_id), None)

    def find(self, predicate: Callable[[ContentWindow], bool]) -> ContentWindow | None:
        return next((w for w in self._windows if predicate(w)), None)

    def __iter__(self) -> Iterator[ContentWindow]:
        return iter(list(self._windows))

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, window: object) -> bool:
        return window in self._windows

    async def decrement_turns_and_unmaximize(self) -> list[ContentWindow]:
        """End-of-cycle pass: expire idle windows, then relax the rest.

        Returns the windows that were closed.
        """
        expired = [w for w in self._windows if w.tick()]
        for window in expired:
            log.debug("Window %s auto-closed (%s)", window.id, window.content_source)
            await self.close(window)
        for window in self._windows:
            if window.closes_automatically and window.is_maximized:
                window.display_mode = DisplayMode.NORMAL
        return expired

    async def render_all(self, char_budget: int | None = None) -> list[MarkupNode]:
        return [await window.render(char_budget) for window in list(self._windows)]
