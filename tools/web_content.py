"""
Web content fetcher.

Fetches a URL with aiohttp and reduces the HTML to plain text with
BeautifulSoup: script/style/noscript/template blocks removed, whitespace
collapsed, truncated to a fixed maximum. Only the first max_bytes of the
body are read, so an oversized page is never buffered whole. Title and meta description are
extracted when present.

Failures raise ContentFetchError. Callers fetching several URLs at once
are expected to tolerate individual failures.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

import aiohttp
from bs4 import BeautifulSoup
from pydantic import BaseModel

from agents.base import ContentFetchError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

DEFAULT_HEADERS = {
    "User-Agent": "TradeStudyResearch/1.0",
    "Accept": "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.5",
}


class FetchedContent(BaseModel):
    url: str
    content: str
    title: Optional[str] = None
    description: Optional[str] = None


def extract_text(html: str, max_chars: int = 5000) -> tuple[str, Optional[str], Optional[str]]:
    """Return (text, title, description) for an HTML document."""
    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text(strip=True) if soup.title else None

    description = None
    meta = soup.find("meta", attrs={"name": re.compile("^description$", re.I)})
    if meta is not None and meta.get("content"):
        description = meta["content"].strip()

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    text = _WHITESPACE.sub(" ", soup.get_text(separator=" ")).strip()
    return text[:max_chars], title or None, description


def _decode(raw: bytes, charset: Optional[str]) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        # unknown charset label in the Content-Type header
        return raw.decode("utf-8", errors="replace")


class WebContentFetcher:
    """Fetch and reduce web pages to plain text."""

    def __init__(
        self,
        timeout_seconds: float = 15.0,
        max_chars: int = 5000,
        max_bytes: int = 2_000_000,
        session: aiohttp.ClientSession | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_chars = max_chars
        self.max_bytes = max_bytes
        self._session = session

    async def _get(self, session: aiohttp.ClientSession, url: str) -> tuple[str, str]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with session.get(url, headers=DEFAULT_HEADERS, timeout=timeout, allow_redirects=True) as r:
            if r.status != 200:
                raise ContentFetchError(url, f"HTTP {r.status}")
            ctype = (r.headers.get("Content-Type") or "").lower()
            chunks: list[bytes] = []
            remaining = self.max_bytes
            while remaining > 0:
                chunk = await r.content.read(remaining)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
            if remaining <= 0 and not r.content.at_eof():
                logger.debug(f"Truncated {url} body at {self.max_bytes} bytes")
            return _decode(b"".join(chunks), r.charset), ctype

    async def fetch(self, url: str) -> FetchedContent:
        logger.info(f"Fetching content from: {url}")
        try:
            if self._session is not None:
                body, ctype = await self._get(self._session, url)
            else:
                async with aiohttp.ClientSession() as session:
                    body, ctype = await self._get(session, url)
        except ContentFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            raise ContentFetchError(url, str(e) or type(e).__name__) from e

        if "text/plain" in ctype:
            text = _WHITESPACE.sub(" ", body).strip()[:self.max_chars]
            return FetchedContent(url=url, content=text)

        text, title, description = extract_text(body, self.max_chars)
        return FetchedContent(url=url, content=text, title=title, description=description)
