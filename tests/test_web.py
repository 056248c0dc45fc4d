"""Tests for the web fetcher."""

from __future__ import annotations

import httpx
import pytest

from roomagent.config import WebConfig, clear_secret_cache
from roomagent.errors import IOFailure
from roomagent.web import (
    BrowserMode,
    GoogleSearchBackend,
    HttpxWebFetcher,
    SearchMode,
    create_search_backend,
    extract_title,
    html_to_markdown,
)

PAGE = """<html>
<head><title>Example Page</title><style>body { color: red; }</style></head>
<body>
<article>
<h2>Welcome to the project</h2>
<p>Read the <a href="https://example.com/docs">documentation</a> first, then install the
package and run the quick start to check that everything works on your machine.</p>
<script>alert("hi")</script>
<p>The second paragraph explains configuration files, environment variables and the
command line options that the tool understands.</p>
</article>
</body>
</html>"""


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHtmlToMarkdown:
    """Tests for text extraction."""

    def test_main_text_is_kept(self) -> None:
        text = html_to_markdown(PAGE)
        assert "documentation" in text
        assert "configuration files" in text

    def test_scripts_styles_and_head_dropped(self) -> None:
        text = html_to_markdown(PAGE)
        assert "alert" not in text
        assert "color: red" not in text
        assert "Example Page" not in text

    def test_extract_title(self) -> None:
        assert extract_title(PAGE) == "Example Page"


class TestHttpxWebFetcher:
    """Tests for HttpxWebFetcher."""

    @pytest.mark.asyncio
    async def test_fetch_markdown(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})

        async with mock_client(handler) as client:
            fetcher = HttpxWebFetcher(user_agent="roomagent-test", client=client)
            page = await fetcher.fetch("https://example.com/")

        assert page.title == "Example Page"
        assert page.status_code == 200
        assert "quick start" in page.content
        assert "<p>" not in page.content
        assert seen[0].headers["user-agent"] == "roomagent-test"

    @pytest.mark.asyncio
    async def test_fetch_html(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=PAGE)

        async with mock_client(handler) as client:
            page = await HttpxWebFetcher(client=client).fetch("https://example.com/", BrowserMode.HTML)
        assert page.content == PAGE

    @pytest.mark.asyncio
    async def test_http_error_is_io_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="missing")

        async with mock_client(handler) as client:
            with pytest.raises(IOFailure, match="404"):
                await HttpxWebFetcher(client=client).fetch("https://example.com/gone")

    @pytest.mark.asyncio
    async def test_transport_error_is_io_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(IOFailure, match="connection refused"):
                await HttpxWebFetcher(client=client).fetch("https://example.com/")


class TestGoogleSearchBackend:
    """Tests for GoogleSearchBackend."""

    @pytest.mark.asyncio
    async def test_custom_search_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [{"title": "T", "link": "https://t.example", "snippet": "s"}]})

        async with mock_client(handler) as client:
            hits = await GoogleSearchBackend("secret", "engine", client=client).search("q", SearchMode.GOOGLE)

        assert [(h.kind, h.title, h.url, h.snippet) for h in hits] == [("link", "T", "https://t.example", "s")]
        params = seen[0].url.params
        assert (params["q"], params["cx"], params["key"]) == ("q", "engine", "secret")

    @pytest.mark.asyncio
    async def test_no_items(self) -> None:
        async with mock_client(lambda request: httpx.Response(200, json={})) as client:
            assert await GoogleSearchBackend("secret", "engine", client=client).search("q", SearchMode.GOOGLE) == []

    @pytest.mark.asyncio
    async def test_transport_error_hides_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(IOFailure) as info:
                await GoogleSearchBackend("secret", "engine", client=client).search("q", SearchMode.YOUTUBE)
        assert "secret" not in str(info.value)

    def test_modes(self) -> None:
        assert GoogleSearchBackend("k", "engine").modes == [SearchMode.GOOGLE, SearchMode.YOUTUBE]
        assert GoogleSearchBackend("k").modes == [SearchMode.YOUTUBE]

    def test_create_needs_api_key(self, monkeypatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        clear_secret_cache()
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        assert create_search_backend(WebConfig()) is None

        monkeypatch.setenv("GOOGLE_API_KEY", "k")
        backend = create_search_backend(WebConfig(search_engine_id="engine"))
        assert backend is not None
        assert backend.modes == [SearchMode.GOOGLE, SearchMode.YOUTUBE]
