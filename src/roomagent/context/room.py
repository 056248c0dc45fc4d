"""Per-room conversation state and rendering.

A RoomContext queues incoming events, folds them into an append-only
history at render time, and renders the room (members, a pinned history
window, the events that are new this turn and semantically related older
events) as one <room> element.

The distinguished memory room (MEMORY_ROOM_ID) holds the agent's own
thoughts, tool results and wake markers. Its events are persisted to the
durable journal; events in other rooms go to the relevance index instead.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from roomagent.context.window import ContentWindow
from roomagent.errors import BackgroundQueueFull
from roomagent.logging import get_logger
from roomagent.markup import FLAG, MarkupNode, RoomEventNode, Text, TimestampedNode

if TYPE_CHECKING:
    from roomagent.core.background import BackgroundQueue
    from roomagent.memory.journal import JournalStore
    from roomagent.memory.relevance import RelevanceIndex

log = get_logger("room")

MEMORY_ROOM_ID = "ephemeris"

HISTORY_WINDOW_LINES = 50
RELEVANCE_QUERY_ITEMS = 10
RELEVANCE_RESULTS = 3
RECENT_ACTIVITY = timedelta(minutes=5)

# Called with (text, is_function_result) for every thought and tool result
ActivityCallback = Callable[[str, bool], Awaitable[None]]


async def _noop_refresh(window: ContentWindow) -> None:
    return None


class RoomContext:
    """Event queue, history and renderer for one room.

    Created lazily the first time a room is seen and kept for the life of
    the agent.
    """

    def __init__(
        self,
        room_id: str,
        *,
        system_id: str,
        agent_user_id: str,
        admin_user_id: str = "",
        room_name: str | None = None,
        window: ContentWindow | None = None,
        background: BackgroundQueue | None = None,
        journal: JournalStore | None = None,
        relevance: RelevanceIndex[MarkupNode] | None = None,
        char_budget: int | None = None,
        on_activity: ActivityCallback | None = None,
    ) -> None:
        """Initialize a room context.

        Args:
            room_id: Opaque room identifier
            system_id: Chat system the room lives on
            agent_user_id: The agent's own user id (tagged `you` in member lists)
            admin_user_id: System administrator (tagged `admin`)
            room_name: Human-readable room name, if the room has one
            window: Window that shows the history; a private one is made if omitted
            background: Queue for journal writes and indexing; without one they run inline
            journal: Durable store for persisted events
            relevance: Index for non-persisted events and relevance lookups
            char_budget: Character limit for the history window's rendered text
            on_activity: Observer for thoughts and tool results
        """
        self.room_id = room_id
        self.system_id = system_id
        self.room_name = room_name
        self.window = window or ContentWindow(id=0, pinned=True, system=True)
        self._agent_user_id = agent_user_id
        self._admin_user_id = admin_user_id
        self._background = background
        self._journal = journal
        self._relevance = relevance
        self._char_budget = char_budget
        self._on_activity = on_activity

        self._pending: deque[MarkupNode] = deque()
        self._pending_lock = asyncio.Lock()
        self._history: list[MarkupNode] = []

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def is_memory_room(self) -> bool:
        return self.room_id == MEMORY_ROOM_ID

    @property
    def history(self) -> list[MarkupNode]:
        """A copy of the history."""
        return list(self._history)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def peek_pending_events(self) -> list[MarkupNode]:
        return list(self._pending)

    @property
    def title(self) -> str | None:
        return self.window.title

    @title.setter
    def title(self, value: str | None) -> None:
        self.window.title = value

    def recently_active_room_ids(self, within: timedelta = RECENT_ACTIVITY) -> list[str]:
        """Room ids of pending events and of history events newer than `within`."""
        cutoff = datetime.now().astimezone() - within
        room_ids: list[str] = []
        for event in self._pending:
            room_id = event.get("roomId")
            if isinstance(room_id, str) and room_id not in room_ids:
                room_ids.append(room_id)
        for event in self._history:
            room_id = event.get("roomId")
            stamp = event.get("timestamp")
            if not isinstance(room_id, str) or not isinstance(stamp, str) or room_id in room_ids:
                continue
            try:
                moment = datetime.fromisoformat(stamp)
            except ValueError:
                continue
            if moment.tzinfo is None:
                moment = moment.astimezone()
            if moment > cutoff:
                room_ids.append(room_id)
        return room_ids

    # -------------------------------------------------------------------------
    # Adding events
    # -------------------------------------------------------------------------

    async def add_event(self, event: MarkupNode, persist: bool = False) -> None:
        """Queue an event for the next render.

        Persisted events are appended to the journal; the rest are indexed for
        relevance lookups. Both happen in the background and failures there are
        logged, never raised here.
        """
        async with self._pending_lock:
            self._pending.append(event)

        if persist:
            if self._journal is not None:
                journal = self._journal
                entry = event.serialize()
                agent_id = self._agent_user_id

                async def write() -> None:
                    await asyncio.to_thread(journal.append, agent_id, entry)

                await self._dispatch(write, "journal append")
        elif self._relevance is not None and event.content is not None:
            relevance = self._relevance
            text = event.text_payload()

            async def index() -> None:
                await relevance.add(event, text)

            await self._dispatch(index, "relevance index")

    async def _dispatch(self, job: Callable[[], Awaitable[None]], name: str) -> None:
        if self._background is not None:
            try:
                self._background.submit(job, name=f"{name} ({self.room_id})")
            except BackgroundQueueFull as e:
                log.warning("Dropped %s for room %s: %s", name, self.room_id, e)
            return
        try:
            await job()
        except Exception as e:
            log.error("Failed %s for room %s: %s", name, self.room_id, e)

    async def add_thought(self, thought: str) -> None:
        event = TimestampedNode("thought", content=thought)
        await self.add_event(event, persist=True)
        await self._notify(thought, False)

    async def add_function_result(
        self,
        function: str,
        call_id: str,
        arguments: str,
        result: str,
    ) -> TimestampedNode:
        """Record a tool call with its result.

        send_message calls are not recorded since the sent message already
        shows up as a chat event.
        """
        event = TimestampedNode(
            "functionResult",
            {"function": function, "id": call_id},
            [MarkupNode("args", content=arguments), MarkupNode("result", content=result)],
        )
        if function != "send_message":
            await self.add_event(event, persist=True)
        log.info("%s", event)
        await self._notify(event.serialize(), True)
        return event

    async def _notify(self, text: str, is_function_result: bool) -> None:
        if self._on_activity is None:
            return
        try:
            await self._on_activity(text, is_function_result)
        except Exception as e:
            log.error("Activity callback failed: %s", e)

    async def add_message(
        self,
        sender: str,
        content: str,
        thread_id: str | None = None,
        timestamp: datetime | str | None = None,
        message_type: str = "m.text",
        reply_to: str | None = None,
    ) -> RoomEventNode:
        message = RoomEventNode(
            "message",
            system_id=self.system_id,
            room_id=self.room_id,
            attributes={"sender": sender, "messageType": message_type or "m.text"},
            content=content,
            timestamp=timestamp,
        )
        if thread_id is not None:
            message.attributes["threadId"] = thread_id
        if reply_to is not None:
            message.attributes["replyTo"] = reply_to
        await self.add_event(message)
        return message

    async def add_room_event(
        self,
        event_type: str,
        sender: str | None = None,
        timestamp: datetime | str | None = None,
    ) -> RoomEventNode:
        """Record a membership or room-state change (join, leave, invite, ...)."""
        event = RoomEventNode(
            "roomEvent",
            system_id=self.system_id,
            room_id=self.room_id,
            attributes={"eventType": event_type},
            timestamp=timestamp,
        )
        if self.room_name is not None:
            event.attributes["roomName"] = self.room_name
        if sender is not None:
            event.attributes["sender"] = sender
        await self.add_event(event)
        return event

    async def add_system_event(self, description: str) -> TimestampedNode:
        event = TimestampedNode("systemEvent", content=description)
        await self.add_event(event)
        return event

    async def ingest(self) -> None:
        """Move pending events straight into history without rendering."""
        async with self._pending_lock:
            self._history.extend(self._pending)
            self._pending.clear()

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    async def render(
        self,
        members: Sequence[str],
        turn_id: int,
        wake_reason: str,
        continuation: bool,
        preview: bool = False,
    ) -> MarkupNode:
        """Render the room as a <room> element.

        Non-preview renders drain the pending queue into history. Preview
        renders work on copies and leave pending events and history alone.
        """
        async with self._pending_lock:
            events = list(self._pending)
            if not preview:
                self._pending.clear()
        history = list(self._history) if preview else self._history

        if not continuation and not preview and self.is_memory_room:
            events.append(
                TimestampedNode("wakeup", {"wakeReason": wake_reason, "turnId": str(turn_id)})
            )

        history.extend(events)
        new_events = "\n".join(event.serialize(4) for event in events)
        self._update_window(history, new_events)

        query_items = history[-RELEVANCE_QUERY_ITEMS:]
        footer = MarkupNode("roomFooter", {"systemId": self.system_id, "roomId": self.room_id})
        if self.room_name is not None:
            footer.attributes["roomName"] = self.room_name
        if not self.is_memory_room:
            footer.content = [MarkupNode("ragResults", content=await self._related(query_items))]

        room = MarkupNode(
            "room",
            {
                "systemId": self.system_id,
                "roomId": self.room_id,
                "roomName": self.room_name or "",
                "loggedInAs": self._agent_user_id,
            },
        )
        for member in members:
            node = room.append(MarkupNode("roomMember", {"userId": member}))
            if member == self._agent_user_id:
                node.attributes["you"] = FLAG
            if member == self._admin_user_id:
                node.attributes["admin"] = FLAG
        room.append(await self.window.render(self._char_budget))
        room.append(MarkupNode("newEvents", content=Text(new_events, raw=True)))
        room.append(footer)
        if len(members) <= 2 and self.room_name is None:
            room.attributes["directMessage"] = FLAG
        return room

    def _update_window(self, history: list[MarkupNode], new_events: str) -> None:
        window = self.window
        window.content = "\n".join(event.serialize(4) for event in history)
        window.content_source = self.room_id
        window.content_source_type = "chatHistory"
        window.title = f"Room `{self.room_name or self.room_id}` Chat History"
        window.content_type = "text/lmml"
        window.pinned = True
        window.system = True
        window.max_lines = HISTORY_WINDOW_LINES
        window.scroll_size = HISTORY_WINDOW_LINES
        window.refresh = _noop_refresh
        window.auto_refresh = True
        if new_events:
            # Trailing span: everything new this turn plus one scroll window of context.
            total = window.total_lines
            window.top_line = max(1, total - new_events.count("\n") - window.scroll_size)
            window.bottom_line = min(total, window.top_line + window.scroll_size)
        else:
            window.clamp()
        window.set_attribute("sort", "oldest-first")

    async def _related(self, query_items: list[MarkupNode]) -> list[MarkupNode]:
        if self._relevance is None or not query_items:
            return []
        query = "\n".join(item.serialize() for item in query_items)
        try:
            matches = await self._relevance.search(
                query,
                k=RELEVANCE_RESULTS,
                filter=lambda item: all(item is not q for q in query_items),
            )
        except Exception as e:
            log.warning("Relevance search failed for room %s: %s", self.room_id, e)
            return []
        return [
            MarkupNode("ragResult", {"score": f"{round(m.score, 5)}"}, [m.item])
            for m in matches
        ]
