"""Chat platform protocol and the console client."""

from roomagent.chat.console import CONSOLE_ROOM_ID, ConsoleChatClient
from roomagent.chat.protocols import ChatClient, ChatEventHandler, ChatMessage, RoomInfo

__all__ = [
    "CONSOLE_ROOM_ID",
    "ChatClient",
    "ChatEventHandler",
    "ChatMessage",
    "ConsoleChatClient",
    "RoomInfo",
]
