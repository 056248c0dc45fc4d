"""Web search backends for the web_search tool.

`GoogleSearchBackend` covers two modes over Google's JSON APIs: `google`
uses the Custom Search API (needs an API key and a search engine id) and
`youtube` uses the YouTube Data API search endpoint (channel matches
followed by video matches).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from roomagent.config.schema import WebConfig
from roomagent.config.secrets import fetch_secret
from roomagent.errors import IOFailure
from roomagent.logging import get_logger
from roomagent.markup import MarkupNode

log = get_logger("web.search")

CUSTOM_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"

TOP_LINKS = 10  # Custom Search returns at most 10 per request
TOP_CHANNELS = 3
TOP_VIDEOS = 10


class SearchMode(Enum):
    GOOGLE = "google"
    YOUTUBE = "youtube"

    @property
    def label(self) -> str:
        """Name used in the open/close events, e.g. openYouTubeSearch."""
        return "YouTube" if self is SearchMode.YOUTUBE else "Google"


@dataclass
class SearchHit:
    """One search result. kind is `link`, `channel` or `video`."""

    kind: str
    title: str
    url: str
    snippet: str = ""
    channel: str | None = None
    published: str | None = None

    def to_markup(self) -> MarkupNode:
        node = MarkupNode(self.kind, {"title": self.title, "url": self.url})
        if self.channel is not None and self.kind == "video":
            node.attributes["channel"] = self.channel
        if self.published:
            node.attributes["published"] = self.published
        if self.snippet:
            node.content = self.snippet
        return node


class SearchBackend(Protocol):
    """Search service used by the web_search tool."""

    @property
    def modes(self) -> list[SearchMode]: ...

    async def search(self, query: str, mode: SearchMode) -> list[SearchHit]: ...


def render_results(mode: SearchMode, hits: list[SearchHit]) -> MarkupNode:
    """Group hits into a <searchResults> element for a search window."""
    results = MarkupNode("searchResults", {"engine": mode.value})
    if mode is SearchMode.YOUTUBE:
        channels = [hit.to_markup() for hit in hits if hit.kind == "channel"]
        videos = [hit.to_markup() for hit in hits if hit.kind == "video"]
        results.append(MarkupNode("channelNameMatches", {"top": str(TOP_CHANNELS)}, channels))
        results.append(MarkupNode("videoMatches", {"top": str(TOP_VIDEOS)}, videos))
    else:
        for hit in hits:
            results.append(hit.to_markup())
    return results


class GoogleSearchBackend:
    """Google Custom Search and YouTube Data API client over httpx.

    A client can be injected (tests use httpx.MockTransport); otherwise one
    is created per request.
    """

    def __init__(
        self,
        api_key: str,
        engine_id: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._engine_id = engine_id
        self._timeout = timeout
        self._client = client

    @property
    def modes(self) -> list[SearchMode]:
        if self._engine_id:
            return [SearchMode.GOOGLE, SearchMode.YOUTUBE]
        return [SearchMode.YOUTUBE]

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        params = {**params, "key": self._api_key}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            # Never echo the request URL; it carries the API key.
            status = getattr(getattr(e, "response", None), "status_code", None)
            detail = f"HTTP {status}" if status else type(e).__name__
            raise IOFailure(f"search request failed: {detail}") from e
        except ValueError as e:
            raise IOFailure(f"search response was not JSON: {e}") from e

    async def search(self, query: str, mode: SearchMode) -> list[SearchHit]:
        if mode not in self.modes:
            raise IOFailure(f"search mode {mode.value} is not configured")
        log.info("Searching %s for %r", mode.value, query)
        if mode is SearchMode.GOOGLE:
            return await self._search_google(query)
        return await self._search_youtube(query)

    async def _search_google(self, query: str) -> list[SearchHit]:
        data = await self._get_json(
            CUSTOM_SEARCH_URL, {"q": query, "cx": self._engine_id, "num": TOP_LINKS}
        )
        return [
            SearchHit("link", item.get("title", ""), item.get("link", ""), item.get("snippet", ""))
            for item in data.get("items", [])
        ]

    async def _search_youtube(self, query: str) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for kind, limit in (("channel", TOP_CHANNELS), ("video", TOP_VIDEOS)):
            data = await self._get_json(
                YOUTUBE_SEARCH_URL,
                {"part": "snippet", "q": query, "type": kind, "maxResults": limit},
            )
            for item in data.get("items", []):
                ids = item.get("id", {})
                snippet = item.get("snippet", {})
                if kind == "channel":
                    url = f"https://www.youtube.com/channel/{ids.get('channelId', '')}"
                else:
                    url = f"https://www.youtube.com/watch?v={ids.get('videoId', '')}"
                hits.append(
                    SearchHit(
                        kind,
                        snippet.get("title", ""),
                        url,
                        snippet.get("description", ""),
                        channel=snippet.get("channelTitle"),
                        published=snippet.get("publishedAt"),
                    )
                )
        return hits


def create_search_backend(config: WebConfig) -> GoogleSearchBackend | None:
    """Backend from config and the GOOGLE_API_KEY secret; None without a key."""
    api_key = fetch_secret("GOOGLE_API_KEY")
    if not api_key:
        return None
    return GoogleSearchBackend(api_key, config.search_engine_id, timeout=config.timeout)
