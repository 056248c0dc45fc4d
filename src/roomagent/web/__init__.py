"""Web access for the agent."""

from roomagent.web.fetcher import (
    BrowserMode,
    HttpxWebFetcher,
    WebPage,
    extract_title,
    html_to_markdown,
)
from roomagent.web.search import (
    GoogleSearchBackend,
    SearchBackend,
    SearchHit,
    SearchMode,
    create_search_backend,
    render_results,
)

__all__ = [
    "BrowserMode",
    "GoogleSearchBackend",
    "HttpxWebFetcher",
    "SearchBackend",
    "SearchHit",
    "SearchMode",
    "WebPage",
    "create_search_backend",
    "extract_title",
    "html_to_markdown",
    "render_results",
]
