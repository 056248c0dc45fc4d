"""Background "default mode" monitor.

While the agent is idle, a cheaper model periodically looks at a preview
of the agent's context and decides whether something needs the agent's
attention. Preview renders never drain queues or add wake markers.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

from roomagent.core.llm.provider import Message, Role
from roomagent.logging import get_logger

if TYPE_CHECKING:
    from roomagent.agent.loop import AgentLoop
    from roomagent.core.llm.provider import LLMProvider

log = get_logger("agent.wake_checker")

CHECK_INTERVAL = 10.0
ERROR_BACKOFF = 30.0
PREVIEW_WAKE_REASON = "default mode check"

WAKE_LINE = re.compile(r"^WAKE - REASON: (.*)$", re.IGNORECASE | re.MULTILINE)

DEFAULT_MODE_PROMPT = """You are a specialized background processor for an AI agent. Your task is to continuously monitor the chat interface and context, identifying situations that require the agent's full attention.

Your specific responsibilities:
1. Monitor new events and context changes
2. Evaluate importance and urgency based on:
   - Direct mentions/requests
   - Changes in conversation state
   - Task-related updates
   - System state changes
3. Think step-by-step and show your thinking.
4. When attention is needed, output a line (after your thinking) in format:
   WAKE - REASON: <brief reason>
5. When no wake is needed, output:
   SLEEP - No wake triggers detected

Format requirements:
- Keep reason brief and parseable
- Think step-by-step before the required format
- Then output the required format
- Additional details can follow the required format

The agent's context follows. Analyze this context and make a decision whether or not to wake the agent."""


def parse_wake_reason(output: str) -> str | None:
    """Return the reason from the first `WAKE - REASON:` line, if any."""
    match = WAKE_LINE.search(output)
    if match is None:
        return None
    return match.group(1).strip()


class WakeChecker:
    """Periodically asks `provider` whether `agent` should wake up."""

    def __init__(
        self,
        agent: AgentLoop,
        provider: LLMProvider,
        interval: float = CHECK_INTERVAL,
        error_backoff: float = ERROR_BACKOFF,
    ) -> None:
        self._agent = agent
        self._provider = provider
        self._interval = interval
        self._error_backoff = error_backoff

    def _reminder(self) -> str:
        name = self._agent.params.name
        user_id = self._agent.params.user_id
        return (
            f"\n\nRemember: you are the DEFAULT MODE NETWORK for {name}. You MUST first think "
            f"step-by-step through {name}'s context, THEN decide if {name} needs to be woken up. "
            f"Valid wakeup reasons:\n- new messages *from other users, not sent by {user_id}* in "
            "<newEvents>. It is a good idea to list out the rooms and any senders in the new events "
            "tags before making a decision.\n\n"
            f"To wake {name} respond with a line with the required format "
            "`WAKE - REASON: <brief reason>` after thinking. "
            "If no wake is required, output `SLEEP - No wake triggers detected`."
        )

    async def check_once(self) -> str | None:
        """Run one check. Returns the wake reason set on the agent, if any.

        Skipped (returns None) while the agent is processing a cycle.
        """
        agent = self._agent
        if agent.is_processing:
            return None
        system_prompt = await agent.build_system_prompt()
        context = await agent.render_context(True, PREVIEW_WAKE_REASON, preview=True)
        messages = [
            Message(Role.SYSTEM, DEFAULT_MODE_PROMPT),
            Message(Role.USER, f"<agentContext>{system_prompt}\n{context}</agentContext>{self._reminder()}"),
        ]
        log.info("Sending default mode prompt")
        result = await self._provider.complete(messages, temperature=1.0)
        log.debug("Default mode response received: %s", result.content)

        reason = parse_wake_reason(result.content or "")
        if reason is None:
            return None
        log.info("Default mode network triggered wake: %s", reason)
        wake_reason = f"Default mode network trigger: {reason}"
        agent.wake(wake_reason)
        return wake_reason

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Check until stopped. Errors are logged and followed by a longer pause."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            delay = self._interval
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Error in default mode network")
                delay = self._error_backoff
            try:
                await asyncio.wait_for(stop_event.wait(), delay)
            except asyncio.TimeoutError:
                pass
