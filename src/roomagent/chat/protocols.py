"""Chat platform contract.

The agent only ever talks to a chat system through these protocols: it
receives messages and room events through a ChatEventHandler and acts
through a ChatClient.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass
class ChatMessage:
    """A text message delivered by the chat system."""

    room_id: str
    sender: str
    content: str
    thread_id: str | None = None
    reply_to: str | None = None
    message_type: str = "m.text"
    timestamp: datetime | None = None


@dataclass
class RoomInfo:
    room_id: str
    name: str | None = None
    members: list[str] = field(default_factory=list)


@runtime_checkable
class ChatEventHandler(Protocol):
    """Receiver for events coming from the chat system."""

    async def on_message(self, message: ChatMessage) -> None: ...

    async def on_room_event(self, room_id: str, event_type: str, sender: str | None = None) -> None: ...


@runtime_checkable
class ChatClient(Protocol):
    """Operations the agent performs against the chat system."""

    @property
    def system_id(self) -> str: ...

    @property
    def user_id(self) -> str: ...

    async def joined_rooms(self) -> list[str]: ...

    async def room_info(self, room_id: str) -> RoomInfo: ...

    async def send_message(self, room_id: str, text: str, thread_id: str | None = None) -> None: ...

    async def set_typing(self, room_id: str, typing: bool, timeout: float = 30.0) -> None: ...
