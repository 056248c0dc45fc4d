"""Exception taxonomy for roomagent.

Which layer catches what:
- ParseError: fatal to a single parse call only
- ToolExecutionError: caught by the agent loop, surfaced to the model as text
- IOFailure: logged by the caller, which degrades to partial data
- IterationLimitExceeded: recorded in the memory room, throttles the cycle
- ConcurrencyViolation: rendered as a structured rejection for the model
"""

from __future__ import annotations


class RoomAgentError(Exception):
    """Base class for all roomagent errors."""


class ParseError(RoomAgentError):
    """Malformed markup text."""

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)


class ProtectedAttributeError(RoomAgentError, ValueError):
    """Attempt to overwrite or remove a protected attribute."""

    def __init__(self, tag: str, key: str) -> None:
        self.tag = tag
        self.key = key
        super().__init__(f"<{tag}> attribute '{key}' is protected and cannot be replaced")


class ToolExecutionError(RoomAgentError):
    """A tool handler failed in a way the model should be told about."""


class UnknownToolError(ToolExecutionError):
    """The model called a tool that is not in the agent's tool table."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown function: {name}")


class IOFailure(RoomAgentError):
    """A collaborator (chat client, store, fetcher, embedder) failed."""


class IterationLimitExceeded(RoomAgentError):
    """The tool-call protocol hit its iteration cap."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Hit maximum tool iterations ({limit}) - throttling agent")


class ConcurrencyViolation(RoomAgentError):
    """A second tool call arrived in a batch while calls are serialized."""

    def __init__(self) -> None:
        super().__init__(
            "ERROR: Parallel function calls are not allowed. Please wait for the "
            "first function call to finish before calling another function."
        )


class BackgroundQueueFull(RoomAgentError):
    """The background task queue rejected a submission."""
