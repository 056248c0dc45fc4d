"""Root pytest configuration for all tests."""

from __future__ import annotations

import random

import pytest

from roomagent.agent import AgentLoop
from roomagent.config import reset_config
from roomagent.config.schema import WindowConfig
from roomagent.storage import LocalContentStore
from tests.utils import FakeChatClient, ScriptedProvider, make_params

# Redundant with pyproject.toml but ensures the plugin is loaded
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _fresh_config():
    """Drop any cached global config between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def chat() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def store(tmp_path) -> LocalContentStore:
    notes = tmp_path / "notes"
    notes.mkdir()
    return LocalContentStore({"notes": notes}, default_owner="@agent:test")


@pytest.fixture
def agent(chat: FakeChatClient, provider: ScriptedProvider, store: LocalContentStore) -> AgentLoop:
    """An agent with a file store and deterministic window ids (starting at 100)."""
    return AgentLoop(
        make_params(),
        chat,
        provider,
        store=store,
        window_config=WindowConfig(max_lines=20, scroll_size=20),
        rng=_FixedRandom(100),
    )


class _FixedRandom(random.Random):
    def __init__(self, value: int) -> None:
        super().__init__(0)
        self._value = value

    def randrange(self, *args, **kwargs) -> int:  # type: ignore[override]
        return self._value
