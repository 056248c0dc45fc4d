"""The agent's wake loop and bounded tool-call protocol.

One AgentLoop drives one agent identity:

    Idle --wake(reason)--> Processing --cycle done--> Idle

Cycles are serialized by a single asyncio.Lock. Wake reasons that arrive
while a cycle runs are coalesced into the reason for the next cycle.

Cancellation: a cycle is an asyncio task. Cancelling it (stop(), or
cancelling the task awaiting run_cycle()) propagates CancelledError
through the completion call, refresh callbacks and tool handlers. The
typing indicators are still cleared, the tool call in flight is not
recorded and undrained pending events stay queued.
"""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from roomagent.agent.builtin_tools import BuiltinTools
from roomagent.agent.tools import ToolRegistry
from roomagent.config.schema import WindowConfig
from roomagent.context.room import MEMORY_ROOM_ID, RoomContext
from roomagent.context.window import ContentWindow, DisplayMode, WindowSet
from roomagent.core.llm.provider import Message, Role, ToolCall
from roomagent.core.tokens import count_message_tokens
from roomagent.errors import ConcurrencyViolation, IterationLimitExceeded, ParseError
from roomagent.logging import VERBOSE, get_logger
from roomagent.markup import MarkupNode, format_display_time, parse

if TYPE_CHECKING:
    from roomagent.agent.parameters import AgentParameters
    from roomagent.chat.protocols import ChatClient, ChatMessage, RoomInfo
    from roomagent.core.background import BackgroundQueue
    from roomagent.core.llm.provider import LLMProvider
    from roomagent.memory.journal import JournalStore
    from roomagent.memory.relevance import RelevanceIndex
    from roomagent.storage.files import LocalContentStore
    from roomagent.web.fetcher import HttpxWebFetcher
    from roomagent.web.search import SearchBackend

log = get_logger("agent")

WAKE_UNSCHEDULED = "unscheduled wakeup"
WAKE_SERVER_RESTART = "server restart"
WAKE_TIMER = "wakeUpTimer elapsed"
WAKE_NEW_EVENT = "new event"

TYPING_TIMEOUT = 300.0
JOURNAL_RELOAD_LIMIT = 1000
PERSONA_MAX_LINES = 2**31 - 1

SYSTEM_REMINDER = (
    "You must use functions to interact with humans or other agents. Responses outside of "
    "function calls are only visible to you. Use this space for thinking through your actions."
)
THOUGHTS_REQUIRED = (
    "ERROR: You must think step-by-step before each function call. Ensure the function call "
    "is necessary and has not already been performed."
)
RESTART_MEMORY_RESTORED = (
    "Server restarted, ephemeris restored. Windows open before the restart are _not_ reopened."
)
RESTART_CONTEXT_RESTORED = """Server restarted, agent context restored.
Note to agents: thoughts and function call history are *not* restored, and previously opened files are not automatically reopened.
Any windows open before the server restart have been closed and don't reopen automatically.
You must use function calls to interact with the chat; responses outside of function calls are just talking to yourself."""

ActivitySink = Callable[[str, bool], Awaitable[None]]


class AgentLoop:
    """Owns an agent's rooms and windows and runs its wake cycles.

    Every collaborator is passed in; nothing is looked up globally. The
    tool table is built here, once, from the collaborators that are
    present.

    Example:
        ```python
        agent = AgentLoop(params, chat, provider, store=store, journal=journal)
        stop = asyncio.Event()
        await asyncio.gather(agent.run(stop), chat.run(agent))
        ```
    """

    def __init__(
        self,
        params: AgentParameters,
        chat: ChatClient,
        provider: LLMProvider,
        *,
        store: LocalContentStore | None = None,
        fetcher: HttpxWebFetcher | None = None,
        search: SearchBackend | None = None,
        journal: JournalStore | None = None,
        relevance: RelevanceIndex[MarkupNode] | None = None,
        background: BackgroundQueue | None = None,
        window_config: WindowConfig | None = None,
        query_provider: LLMProvider | None = None,
        on_activity: ActivitySink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            params: Identity, prompts and limits
            chat: Chat platform client
            provider: Completion service for wake cycles
            store: File store; file tools are only offered when present
            fetcher: Web fetcher; browse_web is only offered when present
            search: Web search backend; web_search is only offered when present
            journal: Durable store for memory room events
            relevance: Index shared by all rooms; semantic_search needs it
            background: Queue for journal writes and indexing
            window_config: Defaults for windows opened by tools
            query_provider: Completion service for window queries (defaults to provider)
            on_activity: Observer for thoughts and tool results; defaults to
                posting them in params.thoughts_room_id when that is set
            rng: Source for the first window id
        """
        self.params = params
        self.chat = chat
        self.provider = provider
        self.query_provider = query_provider or provider
        self.store = store
        self.fetcher = fetcher
        self.search = search
        self.journal = journal
        self.relevance = relevance
        self.background = background
        self.window_config = window_config or WindowConfig()
        self._on_activity = on_activity

        rng = rng or random.Random()
        self.windows = WindowSet(first_id=rng.randrange(1000000), on_close_event=self._record_close_event)
        self._rooms: dict[str, RoomContext] = {}
        self.memory = self.get_or_create_room(MEMORY_ROOM_ID)
        self.persona_window = self._build_persona_window()
        self.scratch_window: ContentWindow | None = None

        self.tools = ToolRegistry()
        self._builtins = BuiltinTools(self)
        self._builtins.register(self.tools)

        self.turn = 0
        self._next_wake_reason: str | None = None
        self._lock = asyncio.Lock()
        self._wake_event = asyncio.Event()
        self._processing = False
        self._stopping = False
        self._cycle_task: asyncio.Task[bool] | None = None

    # -------------------------------------------------------------------------
    # Construction helpers
    # -------------------------------------------------------------------------

    @property
    def system_id(self) -> str:
        return self.params.system_id or self.chat.system_id

    def _build_persona_window(self) -> ContentWindow:
        window = ContentWindow(
            id=self.windows.next_id(),
            content=self.params.persona,
            content_source=f"system:/users/{self.params.user_id}/personas/main.md",
            content_source_type="persona",
            content_type="text/markdown",
            title=f"{self.params.user_id}'s Persona",
            pinned=True,
            system=True,
            max_lines=PERSONA_MAX_LINES,
        )
        window.maximize()
        return window

    def create_window(self, **kwargs: object) -> ContentWindow:
        """Make a window with the configured defaults. It is not opened."""
        config = self.window_config
        options: dict[str, object] = {
            "max_lines": config.max_lines,
            "scroll_size": config.scroll_size,
            "bottom_line": config.scroll_size,
            "initial_auto_close_in_turns": config.auto_close_turns,
            "auto_close_in_turns": config.auto_close_turns,
            "refresh_timeout": config.refresh_timeout,
        }
        options.update(kwargs)
        return self.windows.create(**options)

    async def _record_close_event(self, event: MarkupNode) -> None:
        await self.memory.add_event(event)

    async def _activity(self, text: str, is_function_result: bool) -> None:
        if not text.strip():
            return
        if self._on_activity is not None:
            await self._on_activity(text, is_function_result)
        elif self.params.thoughts_room_id:
            await self.chat.send_message(self.params.thoughts_room_id, text)

    # -------------------------------------------------------------------------
    # Rooms and windows
    # -------------------------------------------------------------------------

    @property
    def rooms(self) -> dict[str, RoomContext]:
        return dict(self._rooms)

    def get_or_create_room(self, room_id: str) -> RoomContext:
        """Return the context for a room, creating it on first sight.

        Raises:
            ValueError: room_id is the thoughts room, which is never a context
        """
        if room_id and room_id == self.params.thoughts_room_id:
            raise ValueError("Thoughts room cannot be used as a context")
        room = self._rooms.get(room_id)
        if room is None:
            room = RoomContext(
                room_id,
                system_id=self.system_id,
                agent_user_id=self.params.user_id,
                admin_user_id=self.params.admin_user_id,
                window=ContentWindow(id=self.windows.next_id(), pinned=True, system=True),
                background=self.background,
                journal=self.journal,
                relevance=self.relevance,
                char_budget=self.params.approx_context_chars_max,
                on_activity=self._activity,
            )
            self._rooms[room_id] = room
            log.debug("Created context for room %s", room_id)
        return room

    def find_window(self, window_id: int) -> ContentWindow | None:
        """Look up an open window, the scratch window or a room's history window."""
        window = self.windows.get(window_id)
        if window is not None:
            return window
        if self.scratch_window is not None and self.scratch_window.id == window_id:
            return self.scratch_window
        for room in self._rooms.values():
            if room.window.id == window_id:
                return room.window
        return None

    async def set_typing(self, room_id: str | None, typing: bool) -> None:
        if not room_id:
            return
        log.debug("%s typing indicator for %s", "begin" if typing else "end", room_id)
        try:
            await self.chat.set_typing(room_id, typing, TYPING_TIMEOUT)
        except Exception as e:
            log.warning("Failed to send typing indicator to %s: %s", room_id, e)

    def _recently_active_room_ids(self) -> list[str]:
        room_ids: list[str] = []
        for room in self._rooms.values():
            for room_id in room.recently_active_room_ids():
                if room_id != MEMORY_ROOM_ID and room_id not in room_ids:
                    room_ids.append(room_id)
        return room_ids

    async def _joined_rooms(self) -> list[str]:
        try:
            joined = await self.chat.joined_rooms()
        except Exception as e:
            log.error("Failed to get joined rooms: %s", e)
            joined = []
        room_ids = set(joined) | {r for r in self._rooms if r != MEMORY_ROOM_ID}
        room_ids.discard(self.params.thoughts_room_id or "")
        return sorted(room_ids)

    async def _room_info(self, room_id: str) -> RoomInfo | None:
        try:
            return await self.chat.room_info(room_id)
        except Exception as e:
            log.error("Failed to get room info for %s: %s", room_id, e)
            return None

    # -------------------------------------------------------------------------
    # Context assembly
    # -------------------------------------------------------------------------

    async def build_system_prompt(self) -> str:
        """System prompt, persona window and agent guide, one per line."""
        parts = [self.params.system_prompt]
        persona = await self.persona_window.render(self.params.approx_context_chars_max)
        parts.append(persona.serialize())
        guide = await self._read_guide()
        if guide is not None:
            parts.append(MarkupNode("agentGuide", {"title": f"{self.params.name} Agent Guide"}, guide).serialize())
        return "\n".join(parts)

    async def _read_guide(self) -> str | None:
        locator = self.params.guide_file
        if not locator:
            return None
        if self.store is None:
            log.warning("Guide file %s configured but no content store available", locator)
            return None
        stored = await self.store.read(locator)
        if stored is None:
            log.warning("Guide file not found: %s", locator)
            return None
        return stored.open_content

    async def render_context(self, continuation: bool, wake_reason: str, preview: bool = False) -> str:
        """Render the whole snapshot as a <chatInterface> element.

        Non-continuation renders start a new turn. Preview renders leave
        room state alone.
        """
        if not continuation:
            self.turn += 1
        budget = self.params.approx_context_chars_max

        chat_system = MarkupNode(
            "chatSystem",
            {"systemId": self.system_id, "loggedInAs": self.params.user_id},
        )
        chat_system.append(MarkupNode("systemAdmin", content=self.params.admin_user_id))
        for room_id in await self._joined_rooms():
            room = self.get_or_create_room(room_id)
            info = await self._room_info(room_id)
            members: list[str] = []
            if info is not None:
                room.room_name = info.name
                members = list(info.members)
            chat_system.append(await room.render(members, self.turn, wake_reason, continuation, preview))
        chat_system.append(
            await self.memory.render([self.params.user_id], self.turn, wake_reason, continuation, preview)
        )
        if self.scratch_window is not None:
            chat_system.append(await self.scratch_window.render(budget))

        interface = MarkupNode(
            "chatInterface",
            {
                "currentDatetime": format_display_time(),
                "agentUnderlyingModel": self.params.model,
                "agentRunningOnSystem": self.params.running_on,
            },
        )
        interface.append(
            MarkupNode("agentParameters", {"wakeUpTimerSeconds": str(self.params.wake_up_timer_seconds)})
        )
        interface.append(chat_system)
        interface.append(MarkupNode("systemReminder", content=SYSTEM_REMINDER))
        for window in await self.windows.render_all(budget):
            interface.append(window)
        return interface.serialize()

    # -------------------------------------------------------------------------
    # Wake cycle
    # -------------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def next_wake_reason(self) -> str | None:
        return self._next_wake_reason

    def wake(self, reason: str) -> None:
        """Request a cycle. The first pending reason wins; later ones are coalesced."""
        if self._next_wake_reason is None:
            self._next_wake_reason = reason
            log.info("Wake requested: %s", reason)
        else:
            log.debug("Wake reason %r coalesced into pending %r", reason, self._next_wake_reason)
        self._wake_event.set()

    async def run_cycle(self) -> bool:
        """Run one wake cycle.

        Returns False when the cycle failed; the failure is logged and the
        next wake retries.
        """
        async with self._lock:
            self._processing = True
            wake_reason = self._next_wake_reason or WAKE_UNSCHEDULED
            self._next_wake_reason = None
            room_ids: list[str] = []
            try:
                await self.set_typing(self.params.thoughts_room_id, True)
                room_ids = self._recently_active_room_ids()
                for room_id in room_ids:
                    await self.set_typing(room_id, True)
                log.info("Processing wake cycle (%s)", wake_reason)
                await self._process(wake_reason)
                return True
            except asyncio.CancelledError:
                log.info("Wake cycle cancelled")
                raise
            except Exception:
                log.exception("Error processing wake cycle")
                return False
            finally:
                for room_id in room_ids:
                    await self.set_typing(room_id, False)
                await self.set_typing(self.params.thoughts_room_id, False)
                await self.windows.decrement_turns_and_unmaximize()
                self._processing = False

    async def _process(self, wake_reason: str) -> None:
        params = self.params
        system_prompt = Message(Role.SYSTEM, await self.build_system_prompt())
        context = Message(Role.USER, await self.render_context(False, wake_reason))
        messages = [system_prompt, context]
        if params.post_prompt:
            messages.append(Message(Role.SYSTEM, params.post_prompt))

        if log.isEnabledFor(VERBOSE):
            log.log(VERBOSE, "Context size: ~%d tokens", count_message_tokens(messages))

        limit = params.max_function_call_iterations
        iterations = 0
        has_more_work = True
        while has_more_work and iterations < limit:
            iterations += 1
            log.info("Processing iteration %d.%d", self.turn, iterations)
            result = await self.provider.complete(
                messages,
                tools=self.tools.schemas(),
                temperature=params.temperature,
            )
            if result.content and result.content.strip():
                await self.memory.add_thought(result.content)
            messages.append(result.to_message())

            for index, call in enumerate(result.tool_calls):
                if params.prevent_parallel_function_calls and index > 0:
                    output = str(ConcurrencyViolation())
                elif params.prevent_function_calls_without_thoughts and not (result.content or "").strip():
                    output = THOUGHTS_REQUIRED
                else:
                    output = await self._execute(call)
                await self.memory.add_function_result(call.name, call.id, call.arguments, output)
                messages.append(
                    Message(Role.TOOL, json.dumps({"result": output}), tool_call_id=call.id, name=call.name)
                )
                messages[1] = Message(Role.USER, await self.render_context(True, wake_reason))

            has_more_work = bool(result.tool_calls)

        if has_more_work:
            notice = IterationLimitExceeded(limit)
            log.warning("%s", notice)
            await self.memory.add_system_event(str(notice))

    async def _execute(self, call: ToolCall) -> str:
        log.debug("Tool call %s(%s)", call.name, call.arguments)
        try:
            return await self.tools.call(call.name, call.args)
        except Exception as e:
            log.error("Tool %s failed: %s", call.name, e, exc_info=True)
            return f"EXCEPTION: {e}"

    # -------------------------------------------------------------------------
    # Startup and scheduling
    # -------------------------------------------------------------------------

    async def startup(self) -> None:
        """Restore state before the first cycle."""
        for room_id in await self._joined_rooms():
            room = self.get_or_create_room(room_id)
            info = await self._room_info(room_id)
            if info is not None:
                room.room_name = info.name

        restored = 0
        if self.params.reload_memory and self.journal is not None:
            entries = await asyncio.to_thread(self.journal.recent, self.params.user_id, JOURNAL_RELOAD_LIMIT)
            for entry in entries:
                try:
                    node = parse(entry)
                except ParseError as e:
                    log.error("Error parsing journal entry: %s", e)
                    continue
                await self.memory.add_event(node)
                restored += 1
            log.info("Restored %d journal entries", restored)

        for room in self._rooms.values():
            await room.ingest()
        await self.memory.add_system_event(
            RESTART_MEMORY_RESTORED if self.params.reload_memory else RESTART_CONTEXT_RESTORED
        )
        await self._open_scratch_pad()

    async def _open_scratch_pad(self) -> None:
        path = self.params.scratch_pad_file
        if not path or self.store is None:
            return
        try:
            window = await self._builtins.file_window(path)
        except Exception as e:
            log.error("Error opening scratch pad file %s: %s", path, e)
            return
        window.pinned = True
        window.system = True
        window.display_mode = DisplayMode.MAXIMIZED
        window.title = f"{self.params.name}'s Scratchpad"
        self.scratch_window = window
        log.info("Opened scratchpad window %s", path)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Restore state, then run cycles until stopped.

        After each cycle the loop sleeps until either a wake() arrives or
        the wake-up timer elapses.
        """
        watcher = asyncio.create_task(self._watch_stop(stop_event)) if stop_event is not None else None
        try:
            await self.startup()
            self.wake(WAKE_SERVER_RESTART)
            while not self._stopping:
                if self._next_wake_reason is None:
                    self._next_wake_reason = WAKE_TIMER
                self._cycle_task = asyncio.create_task(self.run_cycle())
                try:
                    await self._cycle_task
                except asyncio.CancelledError:
                    if not self._stopping:
                        raise
                finally:
                    self._cycle_task = None
                await self._wait_for_wake()
        finally:
            if watcher is not None:
                watcher.cancel()
            log.info("Agent %s stopped", self.params.name)

    async def _wait_for_wake(self) -> None:
        if self._stopping or self._next_wake_reason is not None:
            return
        self._wake_event.clear()
        try:
            await asyncio.wait_for(self._wake_event.wait(), self.params.wake_up_timer_seconds)
        except asyncio.TimeoutError:
            log.info(WAKE_TIMER)

    async def _watch_stop(self, stop_event: asyncio.Event) -> None:
        await stop_event.wait()
        self.stop()

    def stop(self) -> None:
        """Stop the loop, cancelling the cycle in flight."""
        self._stopping = True
        self._wake_event.set()
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()

    # -------------------------------------------------------------------------
    # Chat events
    # -------------------------------------------------------------------------

    async def on_message(self, message: ChatMessage) -> None:
        """Queue a message from another user and wake the agent."""
        if message.sender == self.params.user_id:
            return
        if message.room_id == self.params.thoughts_room_id:
            return
        if message.message_type != "m.text":
            return
        log.info("Received message in %s from %s: %s", message.room_id, message.sender, message.content)
        try:
            room = self.get_or_create_room(message.room_id)
            await room.add_message(
                message.sender,
                message.content,
                thread_id=message.thread_id,
                timestamp=message.timestamp,
                message_type=message.message_type,
                reply_to=message.reply_to,
            )
        except Exception as e:
            log.error("Error processing message in room %s: %s", message.room_id, e)
            return
        self.wake(WAKE_NEW_EVENT)

    async def on_room_event(self, room_id: str, event_type: str, sender: str | None = None) -> None:
        if room_id == self.params.thoughts_room_id:
            return
        room = self.get_or_create_room(room_id)
        await room.add_room_event(event_type, sender)
        log.info("Room event %s in %s from %s", event_type, room_id, sender)
