"""
Tests for the web content fetcher. HTTP tests run against a local aiohttp
server; nothing leaves the machine.
"""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp import test_utils

from agents.base import ContentFetchError
from tools.web_content import WebContentFetcher, extract_text

PAGE = """<html><head>
<title> Vector DB Guide </title>
<meta name="Description" content=" Comparing vector stores ">
<style>body { color: red; }</style>
<script>var tracking = true;</script>
</head><body>
<h1>Pinecone</h1>
<p>Managed   service
with low latency.</p>
<noscript>Enable JS</noscript>
</body></html>"""


class TestExtractText:
    def test_strips_non_content(self):
        text, title, description = extract_text(PAGE)
        assert title == "Vector DB Guide"
        assert description == "Comparing vector stores"
        assert "Pinecone Managed service with low latency." in text
        assert "tracking" not in text
        assert "color" not in text
        assert "Enable JS" not in text

    def test_truncates(self):
        text, _, _ = extract_text("<p>" + "word " * 500 + "</p>", max_chars=50)
        assert len(text) == 50

    def test_missing_metadata(self):
        text, title, description = extract_text("<p>plain</p>")
        assert (text, title, description) == ("plain", None, None)


@pytest.fixture
async def server():
    async def page(request):
        return web.Response(text=PAGE, content_type="text/html")

    async def plain(request):
        return web.Response(text="line one\n\n   line two", content_type="text/plain")

    async def missing(request):
        return web.Response(status=404, text="gone")

    async def big(request):
        return web.Response(body=b"<p>" + b"a" * 50_000 + b"TAIL</p>", content_type="text/html")

    async def latin1(request):
        return web.Response(body="<p>café</p>".encode("latin-1"), content_type="text/html", charset="latin-1")

    app = web.Application()
    app.router.add_get("/page", page)
    app.router.add_get("/plain", plain)
    app.router.add_get("/missing", missing)
    app.router.add_get("/big", big)
    app.router.add_get("/latin1", latin1)

    srv = test_utils.TestServer(app)
    await srv.start_server()
    yield srv
    await srv.close()


class TestWebContentFetcher:
    async def test_fetch_html(self, server):
        content = await WebContentFetcher().fetch(str(server.make_url("/page")))
        assert content.title == "Vector DB Guide"
        assert content.description == "Comparing vector stores"
        assert "low latency" in content.content

    async def test_fetch_plain_text(self, server):
        content = await WebContentFetcher(max_chars=12).fetch(str(server.make_url("/plain")))
        assert content.content == "line one lin"
        assert content.title is None

    async def test_non_200_raises(self, server):
        url = str(server.make_url("/missing"))
        with pytest.raises(ContentFetchError, match="HTTP 404"):
            await WebContentFetcher().fetch(url)

    async def test_connection_error_raises(self):
        with pytest.raises(ContentFetchError):
            await WebContentFetcher(timeout_seconds=2).fetch("http://127.0.0.1:9/unreachable")

    async def test_body_read_capped(self, server):
        fetcher = WebContentFetcher(max_chars=100_000, max_bytes=2048)
        content = await fetcher.fetch(str(server.make_url("/big")))
        assert len(content.content) <= 2048
        assert "TAIL" not in content.content

    async def test_declared_charset_used(self, server):
        content = await WebContentFetcher().fetch(str(server.make_url("/latin1")))
        assert content.content == "café"
