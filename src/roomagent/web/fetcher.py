"""Text web browser for the browse_web tool.

Pages are fetched with httpx and returned either as raw HTML or as the
main text extracted by trafilatura in markdown form (boilerplate, scripts
and styles dropped).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import httpx
import trafilatura

from roomagent.errors import IOFailure
from roomagent.logging import get_logger

log = get_logger("web")


class BrowserMode(Enum):
    MARKDOWN = "markdown"
    HTML = "html"


@dataclass
class WebPage:
    url: str
    title: str | None
    content: str
    status_code: int


def html_to_markdown(html: str, url: str | None = None) -> str:
    """Main text of a page as markdown; empty when nothing can be extracted."""
    text = trafilatura.extract(
        html,
        url=url,
        output_format="markdown",
        include_links=True,
        include_formatting=True,
        include_comments=False,
    )
    return text.strip() if text else ""


def extract_title(html: str) -> str | None:
    metadata = trafilatura.extract_metadata(html)
    if metadata is None or not metadata.title:
        return None
    return metadata.title


class HttpxWebFetcher:
    """Fetches pages with an httpx.AsyncClient.

    A client can be injected (tests use httpx.MockTransport); otherwise one
    is created per request.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "roomagent/0.1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._client = client

    async def _get(self, url: str) -> httpx.Response:
        headers = {"User-Agent": self._user_agent}
        if self._client is not None:
            return await self._client.get(url, headers=headers, follow_redirects=True)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(url, headers=headers, follow_redirects=True)

    async def fetch(self, url: str, mode: BrowserMode = BrowserMode.MARKDOWN) -> WebPage:
        log.info("Fetching %s (%s)", url, mode.value)
        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IOFailure(f"fetch failed for {url}: {e}") from e

        raw = response.text
        final_url = str(response.url)
        # Extraction parses the whole document; keep it off the event loop.
        title = await asyncio.to_thread(extract_title, raw)
        if mode is BrowserMode.HTML:
            content = raw
        else:
            content = await asyncio.to_thread(html_to_markdown, raw, final_url)
            if not content:
                log.warning("No extractable text at %s", final_url)
        return WebPage(url=final_url, title=title, content=content, status_code=response.status_code)
