"""
Web search via Tavily.

Depth tiers map to result counts and Tavily search depth:
    quick    → 3 results, basic
    standard → 5 results, basic
    deep     → 10 results, advanced

Without an API key the tool returns one placeholder result instead of
failing, so research degrades to low confidence rather than erroring.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel
from tavily import TavilyClient

from agents.base import ResearchDepth, SearchError

logger = logging.getLogger(__name__)

DEPTH_RESULT_COUNTS = {
    ResearchDepth.QUICK: 3,
    ResearchDepth.STANDARD: 5,
    ResearchDepth.DEEP: 10,
}


def search_depth_for(depth: ResearchDepth) -> str:
    return "advanced" if depth == ResearchDepth.DEEP else "basic"


class SearchResult(BaseModel):
    title: str
    url: str
    snippet: str = ""
    content: Optional[str] = None
    placeholder: bool = False


def placeholder_result() -> SearchResult:
    return SearchResult(
        title="Research result (API key required)",
        url="https://tavily.com",
        snippet="Set TAVILY_API_KEY to enable real search. Get your key at https://tavily.com/",
        placeholder=True,
    )


class WebSearchTool:
    """Async wrapper over the (blocking) Tavily client."""

    def __init__(self, api_key: str | None = None, client: Any = None):
        self.api_key = api_key
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = TavilyClient(api_key=self.api_key)
        return self._client

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        depth: ResearchDepth | str = ResearchDepth.STANDARD,
    ) -> list[SearchResult]:
        depth = ResearchDepth(depth)
        limit = max_results or DEPTH_RESULT_COUNTS[depth]

        if not self.available:
            logger.warning("TAVILY_API_KEY not set, returning placeholder search result")
            return [placeholder_result()]

        logger.info(f"Searching: {query} (depth={depth.value}, max_results={limit})")
        try:
            response = await asyncio.to_thread(
                self._get_client().search,
                query=query,
                search_depth=search_depth_for(depth),
                max_results=limit,
                include_answer=True,
                include_raw_content=False,
            )
        except Exception as e:
            logger.error(f"Search failed for '{query}': {e}")
            raise SearchError(f"Search failed: {e}") from e

        results = []
        for item in (response or {}).get("results", [])[:limit]:
            if not item.get("url"):
                continue
            results.append(SearchResult(
                title=item.get("title") or item["url"],
                url=item["url"],
                snippet=item.get("content") or "",
                content=item.get("content"),
            ))
        return results
