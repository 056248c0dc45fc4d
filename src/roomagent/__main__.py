"""Entry point for running a roomagent agent in the terminal.

Usage:
    roomagent --config agents.yaml --share notes=~/notes -v
    python -m roomagent --agent Ava

The agent joins a single `console` room: lines typed at the prompt are
delivered as messages, and whatever the agent sends with send_message is
printed. Exit with Ctrl-D or Ctrl-C.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from roomagent.agent import AgentLoop, AgentParameters, WakeChecker
from roomagent.chat import ConsoleChatClient
from roomagent.config import Config, get_default_data_dir, load_config
from roomagent.core import BackgroundQueue
from roomagent.core.llm import LiteLLMProvider, resolve_api_key
from roomagent.logging import get_logger, setup_logging
from roomagent.memory import JournalStore, LiteLLMEmbedder, RelevanceIndex
from roomagent.storage import LocalContentStore, parse_shares
from roomagent.web import HttpxWebFetcher, create_search_backend

log = get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roomagent",
        description="Run a chat-room agent against the local console.",
    )
    parser.add_argument("--config", type=Path, help="Extra config file layered over the defaults")
    parser.add_argument("--agent", help="Name of the agent to run (default: the first configured)")
    parser.add_argument(
        "--share",
        action="append",
        default=[],
        metavar="NAME=DIR",
        help="Expose a directory to the agent's file tools (repeatable)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv verbose, -vvv trace)",
    )
    return parser


def _provider(model: str, config: Config) -> LiteLLMProvider:
    return LiteLLMProvider(
        model,
        api_key=resolve_api_key(model),
        api_base=config.llm.api_base,
        max_tokens=config.llm.max_tokens,
    )


def build_agent(
    config: Config,
    params: AgentParameters,
    chat: ConsoleChatClient,
    background: BackgroundQueue,
    extra_shares: dict[str, str] | None = None,
) -> AgentLoop:
    """Wire an AgentLoop from config."""
    shares = {**config.storage.shares, **(extra_shares or {})}
    store = LocalContentStore(shares, default_owner=params.user_id) if shares else None
    data_dir = Path(config.storage.data_dir).expanduser() if config.storage.data_dir else get_default_data_dir()

    relevance = None
    if config.llm.embedding_model:
        embedder = LiteLLMEmbedder(
            config.llm.embedding_model,
            api_key=resolve_api_key(config.llm.embedding_model),
            api_base=config.llm.api_base,
        )
        relevance = RelevanceIndex(embedder)

    return AgentLoop(
        params,
        chat,
        _provider(params.model, config),
        store=store,
        fetcher=HttpxWebFetcher(timeout=config.web.timeout, user_agent=config.web.user_agent),
        search=create_search_backend(config.web),
        journal=JournalStore(data_dir),
        relevance=relevance,
        background=background,
        window_config=config.windows,
        on_activity=chat.show_activity,
    )


async def _run(config: Config, params: AgentParameters, shares: dict[str, str]) -> None:
    history_dir = get_default_data_dir()
    history_dir.mkdir(parents=True, exist_ok=True)
    chat = ConsoleChatClient(params.user_id, history_file=history_dir / "console_history")
    stop = asyncio.Event()
    async with BackgroundQueue(config.background.max_pending, config.background.workers) as background:
        agent = build_agent(config, params, chat, background, shares)
        tasks = [asyncio.create_task(agent.run(stop), name="agent")]
        if config.llm.wake_check_model:
            checker = WakeChecker(agent, _provider(config.llm.wake_check_model, config))
            tasks.append(asyncio.create_task(checker.run(stop), name="wake-checker"))
        try:
            await chat.run(agent)
        finally:
            stop.set()
            agent.stop()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log.error("Background task failed: %s", result)


def main(argv: list[str] | None = None) -> None:
    """Run one agent against the console."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config before logging so we can use config.logging settings
    config = load_config(config_file=args.config)
    if args.verbose:
        config.logging.verbose = min(args.verbose + 1, 4)
    setup_logging(config.logging)

    agent_config = config.find_agent(args.agent)
    if agent_config is None:
        parser.error(f"agent {args.agent!r} not configured" if args.agent else "no agents configured")
    try:
        params = AgentParameters.from_config(agent_config, config.llm)
        shares = parse_shares(args.share)
    except ValueError as e:
        parser.error(str(e))

    log.info("Starting agent %s (%s) with model %s", params.name, params.user_id, params.model)
    try:
        asyncio.run(_run(config, params, shares))
    except KeyboardInterrupt:
        pass
    finally:
        log.info("Exiting...")


if __name__ == "__main__":
    main()
