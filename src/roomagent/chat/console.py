"""Terminal chat client: one room, the local user and the agent."""

from __future__ import annotations

from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape as rich_escape

from roomagent.chat.protocols import ChatEventHandler, ChatMessage, RoomInfo
from roomagent.logging import get_logger

log = get_logger("chat.console")

CONSOLE_ROOM_ID = "console"
CONSOLE_SYSTEM_ID = "console"


class ConsoleChatClient:
    """Chat client over stdin/stdout.

    Lines typed at the prompt are delivered to the handler as messages in
    the `console` room; messages the agent sends are printed.
    """

    def __init__(
        self,
        agent_user_id: str,
        user_id: str = "@user:console",
        history_file: Path | None = None,
        console: Console | None = None,
        show_activity: bool = True,
    ) -> None:
        self._agent_user_id = agent_user_id
        self._local_user_id = user_id
        self._console = console or Console()
        self._show_activity = show_activity
        self._typing = False

        history = FileHistory(str(history_file)) if history_file else None
        self.session: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
        )

    @property
    def system_id(self) -> str:
        return CONSOLE_SYSTEM_ID

    @property
    def user_id(self) -> str:
        return self._agent_user_id

    async def joined_rooms(self) -> list[str]:
        return [CONSOLE_ROOM_ID]

    async def room_info(self, room_id: str) -> RoomInfo:
        if room_id != CONSOLE_ROOM_ID:
            return RoomInfo(room_id)
        return RoomInfo(room_id, None, [self._local_user_id, self._agent_user_id])

    async def send_message(self, room_id: str, text: str, thread_id: str | None = None) -> None:
        if room_id != CONSOLE_ROOM_ID:
            raise ValueError(f"Unknown room: {room_id}")
        self._console.print(f"[bold cyan]{rich_escape(self._agent_user_id)}[/bold cyan]: {rich_escape(text)}")

    async def set_typing(self, room_id: str, typing: bool, timeout: float = 30.0) -> None:
        if typing and not self._typing:
            self._console.print("[dim]...[/dim]")
        self._typing = typing

    async def show_activity(self, text: str, is_function_result: bool) -> None:
        """Print the agent's thoughts and tool results, dimmed."""
        if not self._show_activity:
            return
        label = "action" if is_function_result else "thought"
        self._console.print(f"[dim]{label}: {rich_escape(text)}[/dim]")

    async def run(self, handler: ChatEventHandler) -> None:
        """Read lines until EOF and hand them to the handler."""
        self._console.print("[bold]roomagent[/bold] console. Ctrl-D to quit.\n")
        await handler.on_room_event(CONSOLE_ROOM_ID, "join", self._local_user_id)
        while True:
            try:
                with patch_stdout():
                    line = await self.session.prompt_async("> ")
            except KeyboardInterrupt:
                continue
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            await handler.on_message(ChatMessage(CONSOLE_ROOM_ID, self._local_user_id, line))
        log.debug("Console input closed")
