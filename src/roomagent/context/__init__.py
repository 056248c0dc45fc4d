"""Windows and per-room contexts rendered into the model's snapshot."""

from roomagent.context.room import MEMORY_ROOM_ID, RoomContext
from roomagent.context.window import (
    TRUNCATION_WARNING,
    ContentWindow,
    DisplayMode,
    WindowSet,
)

__all__ = [
    "MEMORY_ROOM_ID",
    "RoomContext",
    "TRUNCATION_WARNING",
    "ContentWindow",
    "DisplayMode",
    "WindowSet",
]
