"""Built-in tools every agent exposes.

Result strings are written for the model: short status lines ("OK",
"ERROR: ...") or a serialized markup element. Handlers that talk to a
collaborator turn its failures into an "ERR: ..." line; anything that
escapes a handler is reported by the agent loop as "EXCEPTION: ...".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from roomagent.agent.tools import ToolRegistry, integer_param, string_param
from roomagent.context.window import ContentWindow
from roomagent.core.llm.provider import Message, Role
from roomagent.errors import ToolExecutionError
from roomagent.logging import get_logger
from roomagent.markup import FLAG, MarkupNode, TimestampedNode
from roomagent.storage.files import SearchMode as FileSearchMode, WriteMode
from roomagent.web.fetcher import BrowserMode
from roomagent.web.search import SearchMode, render_results

if TYPE_CHECKING:
    from roomagent.agent.loop import AgentLoop

log = get_logger("agent.tools")

T = TypeVar("T")

QUERY_TRUNCATE_AT = 900000
QUERY_TRUNCATION_WARNING = (
    f"\n\nWARNING: TEXT TRUNCATED AT {QUERY_TRUNCATE_AT} CHARACTERS, "
    "BE SURE TO ADVISE OF THIS IN YOUR RESPONSE"
)
SEMANTIC_SEARCH_RESULTS = 100
SEMANTIC_SEARCH_SOURCE = "messages (all rooms)"

# Actions still allowed on system windows
SYSTEM_WINDOW_ACTIONS = frozenset({"query", "closeQuery"})

_WRITE_MODES = {
    "write": WriteMode.WRITE,
    "appendLine": WriteMode.APPEND_LINE,
    "appendTimestampLine": WriteMode.APPEND_TIMESTAMP_LINE,
}

WINDOW_ACTION_HELP = """action to take:
- `close`: remove window
- `minimize`: hide window contents
- `restore`: show window contents
- `maximize`: expand window to view entire contents
- `scrollUp`: show more lines above current top line
- `scrollDown`: show more lines below current bottom line
- `scrollToLine`: scroll to a specific line (specify line number in parameter)
- `resize`: resize window to number of lines (specify line count in parameter)
- `pin`: keep window open until closed or unpinned
- `unpin`: allow a pinned window to close automatically
- `refresh`: refresh window contents (if available)
- `query`: ask a subagent a question about the contents (specify query in parameter) (allowed on system windows)
- `closeQuery`: close query view (allowed on system windows)"""

WRITE_MODE_HELP = """file write mode:
- `write`: overwrite entire contents
- `appendLine`: adds a new record to the end of the file
- `appendTimestampLine`: adds a new record to the end of the file, prefixed with a timestamp
Append modes are useful for adding to log files without viewing the entire contents"""

LOCATOR_HELP = "including share name: `share:/path/to/file`"


def number_lines(text: str) -> str:
    return "\n".join(f"[Line {i}] {line}" for i, line in enumerate(text.split("\n"), start=1))


def _require(collaborator: T | None, feature: str) -> T:
    if collaborator is None:
        raise ToolExecutionError(f"{feature} not available for this agent")
    return collaborator


class BuiltinTools:
    """Tool handlers bound to one agent."""

    def __init__(self, agent: AgentLoop) -> None:
        self._agent = agent

    def register(self, registry: ToolRegistry) -> None:
        """Add the built-in tools to a registry.

        File tools need a content store, browse_web a web fetcher,
        web_search a search backend and semantic_search a relevance index;
        each is skipped when the agent has none.
        """
        agent = self._agent
        registry.add(
            "send_message",
            "Send a message in a specific room, optionally as part of a thread",
            self.send_message,
            {
                "room_id": string_param("Room ID to send the message to"),
                "content": string_param("Message content to send"),
                "thread_id": string_param("Optional thread ID to reply in"),
            },
            ("room_id", "content"),
        )
        if agent.store is not None:
            registry.add(
                "open_file",
                "Open a file in a window",
                self.open_file,
                {
                    "path": string_param(f"Path of file to open, {LOCATOR_HELP}"),
                    "line": integer_param("line number to start at (defaults to 1)"),
                },
                ("path",),
            )
            registry.add(
                "write_file",
                "Write a file to a share. Opens file for review unless appending.",
                self.write_file,
                {
                    "path": string_param(f"Path of file to write, {LOCATOR_HELP}"),
                    "content": string_param("File content"),
                    "content_type": string_param(
                        "HTTP Content-Type of content, i.e. text/plain, application/json"
                    ),
                    "mode": string_param(WRITE_MODE_HELP, enum=list(_WRITE_MODES)),
                },
                ("path", "content", "mode"),
            )
            registry.add(
                "search_files",
                "Search for files in a share. Results open in a new window with line context.",
                self.search_files,
                {
                    "path": string_param("Path including share name to search, i.e share:/"),
                    "query": string_param("search query"),
                    "search_mode": string_param(
                        "search mode\n"
                        "- filename: glob search against filenames, allowed wildcards are * and ?\n"
                        "- content: plain search on file content",
                        enum=[mode.value for mode in FileSearchMode],
                    ),
                },
                ("path", "query"),
            )
            registry.add(
                "delete_file",
                "Delete a file from a share",
                self.delete_file,
                {"path": string_param(f"Path of file to delete, {LOCATOR_HELP}")},
                ("path",),
            )
            registry.add(
                "file_tree",
                "Get a hierarchical view of files in a share, optionally under a specific path",
                self.file_tree,
                {"path": string_param("Path to start from, i.e. share:/ or share:/dir")},
                ("path",),
            )
            registry.add(
                "file_stat",
                "Get detailed information about a file including size, dates, and metadata",
                self.file_stat,
                {"path": string_param(f"Path of file to get info about, {LOCATOR_HELP}")},
                ("path",),
            )
        if agent.relevance is not None:
            registry.add(
                "semantic_search",
                "query messages from all rooms with semantic search (results open in new window)",
                self.semantic_search,
                {"query": string_param("query for semantic search")},
                ("query",),
            )
        registry.add(
            "window_action",
            "manipulate an open window",
            self.window_action,
            {
                "window_id": integer_param("id of window to act upon"),
                "action": string_param(WINDOW_ACTION_HELP),
                "parameter": string_param("argument for action parameter (if needed)"),
            },
            ("window_id", "action"),
        )
        registry.add(
            "set_agent_parameters",
            "Set agent parameters:\n"
            "- parameter `wakeUpTimerSeconds`: number of seconds between wakeups, "
            "`parameter_value`: number of seconds; min 60, max 10800\n"
            "No other parameters are currently supported.",
            self.set_agent_parameters,
            {
                "parameter_name": string_param("parameter to change"),
                "parameter_value": string_param("new value"),
            },
            ("parameter_name", "parameter_value"),
        )
        if agent.fetcher is not None:
            registry.add(
                "browse_web",
                "Open a window to view a web page. Markdown is preferred unless you *need* to view HTML.",
                self.browse_web,
                {
                    "url": string_param("URL to open in browser"),
                    "browser_mode": string_param(
                        "`markdown` or `html` (default: `markdown`)",
                        enum=[mode.value for mode in BrowserMode],
                    ),
                },
                ("url",),
            )
        if agent.search is not None:
            modes = agent.search.modes
            registry.add(
                "web_search",
                "Search the web. Results open in a new window",
                self.web_search,
                {
                    "query": string_param("search query"),
                    "search_mode": string_param(
                        "search mode:\n"
                        "`google`: google web search\n"
                        "`youtube`: channel name matches followed by video matches",
                        enum=[mode.value for mode in modes],
                    ),
                },
                ("query", "search_mode"),
            )

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    async def send_message(self, room_id: str, content: str, thread_id: str | None = None) -> str:
        agent = self._agent
        try:
            await agent.chat.send_message(room_id, content, thread_id)
            room = agent.get_or_create_room(room_id)
            message = await room.add_message(agent.params.user_id, content, thread_id)
            message.attributes["sent"] = FLAG
        except Exception as e:
            log.error("Failed to send message to %s: %s", room_id, e)
            return MarkupNode(
                "sendMessageResult",
                {"status": "error", "roomId": room_id, "error": str(e)},
            ).serialize()
        await agent.set_typing(room_id, False)
        return message.serialize()

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def file_window(self, path: str) -> ContentWindow:
        """Build (but do not open) an auto-refreshing window over a stored file."""
        store = _require(self._agent.store, "file tools")
        stored = await store.read(path)
        if stored is None:
            raise FileNotFoundError(f"File not found: {path}")

        async def refresh(window: ContentWindow) -> None:
            current = await store.read(path)
            if current is None:
                window.content = "DELETED"
            else:
                window.content = current.open_content
                window.content_type = current.content_type

        return self._agent.create_window(
            content=stored.open_content,
            content_type=stored.content_type,
            content_source=path,
            content_source_type="file",
            refresh=refresh,
            auto_refresh=True,
            close_event=lambda: TimestampedNode("closeFile", {"path": path}),
        )

    async def _open_file(self, path: str, line: int = 1, after_write: bool = False) -> str:
        agent = self._agent
        try:
            existing = agent.windows.find(lambda w: w.content_source == path)
            scratch = agent.scratch_window
            if existing is None and scratch is not None and scratch.content_source == path:
                existing = scratch
            if existing is not None:
                if after_write and existing.refresh is not None:
                    await existing.refresh_now()
                    existing.maximize()
                    return f"OK: {path} written and open for review in window {existing.id}"
                return f"ERROR: File already open in window {existing.id}"

            window = await self.file_window(path)
            window.scroll_to_line(line)
            if after_write:
                window.maximize()
            agent.windows.open(window)
            await agent.memory.add_event(
                TimestampedNode("openFile", {"path": path, "windowId": str(window.id)})
            )
        except Exception as e:
            log.error("Error opening file %s: %s", path, e)
            return f"ERR: {e}"
        if after_write:
            return (
                f"OK: {path} written and open for review in window {window.id}; "
                "remember to close it when you are finished reviewing."
            )
        return f"OK: file opened in window {window.id}"

    async def open_file(self, path: str, line: int = 1) -> str:
        return await self._open_file(path, int(line))

    async def write_file(
        self,
        path: str,
        content: str,
        mode: str = "write",
        content_type: str = "text/plain",
    ) -> str:
        store = _require(self._agent.store, "file tools")
        try:
            write_mode = _WRITE_MODES.get(mode)
            if write_mode is None:
                raise ValueError("Invalid file write mode")
            await store.write(
                path,
                content,
                owner=self._agent.params.user_id,
                content_type=content_type or "text/plain",
                mode=write_mode,
            )
        except Exception as e:
            log.error("Error writing file %s: %s", path, e)
            return f"ERR: {e}"
        if write_mode is not WriteMode.WRITE:
            return "OK"
        return await self._open_file(path, after_write=True)

    async def search_files(self, path: str, query: str, search_mode: str = "content") -> str:
        agent = self._agent
        store = _require(agent.store, "file tools")
        existing = agent.windows.find(
            lambda w: w.content_source == "search"
            and w.content_source_type == "files"
            and w.title is not None
            and f"`{query}`" in w.title
            and f"`{path}`" in w.title
        )
        if existing is not None:
            return f"ERROR: Search already open in window {existing.id}"

        mode = FileSearchMode.FILENAME if search_mode == "filename" else FileSearchMode.CONTENT

        async def refresh(window: ContentWindow) -> None:
            matches = await store.search(path, query, mode)
            window.content = MarkupNode(
                "searchResults",
                {"path": path, "query": query, "searchMode": mode.value, "matches": str(len(matches))},
                [match.to_markup() for match in matches],
            ).serialize()

        try:
            window = agent.create_window(
                content="Loading...",
                content_type="text/lmml",
                content_source="search",
                content_source_type="files",
                title=f"Searching `{path}` for `{query}`",
                refresh=refresh,
                close_event=lambda: TimestampedNode("closeSearch", {"query": query}),
            )
            await refresh(window)
            window.clamp()
        except Exception as e:
            log.error("Error searching %s: %s", path, e)
            return f"ERR: {e}"
        agent.windows.open(window)
        await agent.memory.add_event(TimestampedNode("openSearch", {"query": query}))
        return f"OK: opened in window id {window.id}"

    async def delete_file(self, path: str) -> str:
        store = _require(self._agent.store, "file tools")
        await store.delete(path)
        return "OK"

    async def file_tree(self, path: str) -> str:
        store = _require(self._agent.store, "file tools")
        return await store.tree(path)

    async def file_stat(self, path: str) -> str:
        store = _require(self._agent.store, "file tools")
        stat = await store.stat(path)
        if stat is None:
            return MarkupNode("fileNotFound", {"path": path}).serialize()
        return stat.to_markup().serialize()

    # -------------------------------------------------------------------------
    # Semantic search
    # -------------------------------------------------------------------------

    async def semantic_search(self, query: str) -> str:
        agent = self._agent
        relevance = _require(agent.relevance, "semantic_search")
        existing = agent.windows.find(
            lambda w: w.content_source_type == "search"
            and w.content_source == SEMANTIC_SEARCH_SOURCE
            and w.title is not None
            and w.title.endswith(query)
        )
        if existing is not None:
            return f"ERROR: query already open in window {existing.id}"

        async def refresh(window: ContentWindow) -> None:
            results = await relevance.search(query, k=SEMANTIC_SEARCH_RESULTS)
            window.content = "\n".join(
                MarkupNode("ragResult", {"score": f"{round(r.score, 5)}"}, [r.item]).serialize(4)
                for r in results
            )

        try:
            window = agent.create_window(
                content="Loading...",
                content_type="text/lmml",
                content_source=SEMANTIC_SEARCH_SOURCE,
                content_source_type="search",
                title=f"Semantic Search: {query}",
                refresh=refresh,
                auto_refresh=True,
            )
            await window.refresh_now()
            agent.windows.open(window)
            await agent.memory.add_event(
                TimestampedNode("openSemanticSearch", {"query": query, "windowId": str(window.id)})
            )
        except Exception as e:
            log.error("Error opening semantic search window: %s", e)
            return f"ERROR: semantic search failed: {e}"
        return f"Window {window.id} opened"

    # -------------------------------------------------------------------------
    # Windows
    # -------------------------------------------------------------------------

    async def window_action(self, window_id: int, action: str, parameter: str = "") -> str:
        agent = self._agent
        try:
            window = agent.find_window(int(window_id))
        except (TypeError, ValueError):
            window = None
        if window is None:
            return "ERROR: Window not found"
        if window.system and action not in SYSTEM_WINDOW_ACTIONS:
            return f"ERROR: Cannot {action} system windows"

        parameter = "" if parameter is None else str(parameter)
        if action == "pin":
            window.pin()
        elif action == "unpin":
            window.unpin()
        elif action == "close":
            return await agent.windows.close(window)
        elif action == "minimize":
            window.minimize()
        elif action == "restore":
            window.restore()
        elif action == "maximize":
            if not window.maximize():
                return (
                    "WARNING: Window expanded as far as possible, but limited by window "
                    f"size limit of {window.max_lines} lines."
                )
        elif action == "scrollUp":
            window.scroll_up()
        elif action == "scrollDown":
            window.scroll_down()
        elif action == "resize":
            try:
                lines = int(parameter)
            except ValueError:
                return "ERROR: Unable to parse line count"
            window.resize(lines)
        elif action == "scrollToLine":
            try:
                line = int(parameter)
            except ValueError:
                return "ERROR: Unable to parse line number"
            window.scroll_to_line(line)
        elif action == "refresh":
            if window.refresh is None:
                return "ERROR: Window does not support refreshing"
            if window.auto_refresh:
                return "ERROR: Window is already auto-refreshing"
            await window.refresh_now()
        elif action == "query":
            prompt = f"Query from {agent.params.user_id}:\n{parameter}"
            result = await self.query_with_lines(window.content, prompt)
            log.debug("Query %s\nresult: %s", parameter, result)
            window.show_query(parameter, result)
        elif action == "closeQuery":
            window.clear_query()
        else:
            return "ERROR: Unknown action"
        return "OK"

    async def query_with_lines(self, text: str, query: str) -> str:
        """Ask the query model about `text`, with numbered lines.

        The query is sent as the system prompt. Failures come back as an
        "(ERROR: ...)" string.
        """
        truncated = text[:QUERY_TRUNCATE_AT]
        prompt = number_lines(truncated)
        if len(truncated) < len(text):
            prompt += QUERY_TRUNCATION_WARNING
        try:
            result = await self._agent.query_provider.complete(
                [Message(Role.SYSTEM, query), Message(Role.USER, prompt)],
                temperature=1.0,
            )
        except Exception as e:
            log.error("Error getting completion: %s", e)
            return f"(ERROR: Error running prompt: {e})"
        return result.content or ""

    # -------------------------------------------------------------------------
    # Agent parameters
    # -------------------------------------------------------------------------

    async def set_agent_parameters(self, parameter_name: str, parameter_value: str) -> str:
        if parameter_name == "wakeUpTimerSeconds":
            try:
                seconds = int(parameter_value)
            except (TypeError, ValueError):
                return "ERROR: Unknown parameter"
            seconds = self._agent.params.set_wake_up_timer(seconds)
            return f"wakeUpTimerSeconds set to {seconds}"
        return "ERROR: Unknown parameter"

    # -------------------------------------------------------------------------
    # Web
    # -------------------------------------------------------------------------

    async def browse_web(self, url: str, browser_mode: str = "markdown") -> str:
        agent = self._agent
        fetcher = _require(agent.fetcher, "browse_web")
        try:
            mode = BrowserMode(browser_mode)
        except ValueError:
            return "ERROR: Invalid browser mode"
        existing = agent.windows.find(
            lambda w: w.content_source == url and w.content_source_type == "www browser"
        )
        if existing is not None:
            return f"ERROR: URL already open in window {existing.id}"

        async def refresh(window: ContentWindow) -> None:
            page = await fetcher.fetch(url, mode)
            window.content = page.content
            window.title = page.title

        try:
            window = agent.create_window(
                content="Loading...",
                content_type="text/html" if mode is BrowserMode.HTML else "text/markdown",
                content_source=url,
                content_source_type="www browser",
                refresh=refresh,
                auto_refresh=False,
                close_event=lambda: TimestampedNode("closeWeb", {"url": url}),
            )
            await window.refresh_now()
            agent.windows.open(window)
            await agent.memory.add_event(
                TimestampedNode("openWeb", {"url": url, "windowId": str(window.id)})
            )
        except Exception as e:
            log.error("Error opening window for %s: %s", url, e)
            return f"ERR: {e}"
        return f"Window {window.id} opened"

    async def web_search(self, query: str, search_mode: str) -> str:
        agent = self._agent
        backend = _require(agent.search, "web_search")
        try:
            mode = SearchMode(search_mode)
        except ValueError:
            return "ERROR: Invalid search mode"
        if mode not in backend.modes:
            return "ERROR: Invalid search mode"
        existing = agent.windows.find(
            lambda w: w.content_source == "search"
            and w.content_source_type == mode.value
            and w.title == query
        )
        if existing is not None:
            return f"ERROR: search already open in window {existing.id}"

        async def refresh(window: ContentWindow) -> None:
            hits = await backend.search(query, mode)
            window.content = render_results(mode, hits).serialize()

        try:
            window = agent.create_window(
                content="Loading...",
                content_type="text/lmml",
                content_source="search",
                content_source_type=mode.value,
                title=query,
                refresh=refresh,
                auto_refresh=False,
                close_event=lambda: TimestampedNode(f"close{mode.label}Search", {"query": query}),
            )
            await window.refresh_now()
            agent.windows.open(window)
            await agent.memory.add_event(
                TimestampedNode(f"open{mode.label}Search", {"query": query, "windowId": str(window.id)})
            )
        except Exception as e:
            log.error("Error opening search window for %r: %s", query, e)
            return f"ERR: {e}"
        return f"OK: opened in window id {window.id}"
