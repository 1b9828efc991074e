"""
Research Pipeline — search + fetch + synthesize in one call.

Flow for research(topic, depth, sources):
    1. Web search at the requested depth (a failed search counts as zero results)
    2. Candidate list = explicitly requested URLs first, then search results
    3. Fetch the top 3 candidates concurrently; individual failures are dropped
    4. Synthesize a ResearchFinding (LLM when available, deterministic otherwise)

Aggregation always follows candidate order, never completion order.
Confidence reflects how many sources were actually retrieved.
"""

from __future__ import annotations

import asyncio
import logging
import re

from pydantic import BaseModel, Field

from agents.base import (
    LanguageModel,
    ResearchDepth,
    ResearchFinding,
    ResearchSource,
    SearchError,
    confidence_for,
    retry_structured_output,
)
from tools.web_content import FetchedContent, WebContentFetcher
from tools.web_search import SearchResult, WebSearchTool

logger = logging.getLogger(__name__)

FETCH_LIMIT = 3
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class ResearchSynthesis(BaseModel):
    """Shape the model must return when synthesizing fetched sources."""

    summary: str = Field(min_length=1)
    key_findings: list[str] = Field(min_length=1, max_length=10)


class FetchedSource(BaseModel):
    source: ResearchSource
    excerpt: str


def first_sentence(text: str, limit: int = 300) -> str:
    text = text.strip()
    if not text:
        return ""
    return _SENTENCE_END.split(text, maxsplit=1)[0][:limit].strip()


def deterministic_summary(topic: str, depth: ResearchDepth, source_count: int) -> str:
    return f'Research on "{topic}" (depth: {depth.value}). Found {source_count} relevant sources.'


class ResearchPipeline:
    """Composes WebSearchTool + WebContentFetcher + optional LLM synthesis."""

    def __init__(
        self,
        search: WebSearchTool,
        fetcher: WebContentFetcher,
        model: LanguageModel | None = None,
        excerpt_chars: int = 1000,
        fetch_limit: int = FETCH_LIMIT,
    ):
        self.search = search
        self.fetcher = fetcher
        self.model = model
        self.excerpt_chars = excerpt_chars
        self.fetch_limit = fetch_limit

    def _candidates(self, results: list[SearchResult], sources: list[str] | None) -> list[SearchResult]:
        candidates = [SearchResult(title=url, url=url, snippet="Requested source") for url in sources or []]
        candidates.extend(r for r in results if not r.placeholder)

        seen: set[str] = set()
        unique = []
        for c in candidates:
            if c.url in seen:
                continue
            seen.add(c.url)
            unique.append(c)
        return unique[:self.fetch_limit]

    async def _fetch_all(self, candidates: list[SearchResult]) -> list[FetchedSource]:
        outcomes = await asyncio.gather(
            *(self.fetcher.fetch(c.url) for c in candidates),
            return_exceptions=True,
        )

        fetched = []
        for candidate, outcome in zip(candidates, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Dropping source {candidate.url}: {outcome}")
                continue
            content: FetchedContent = outcome
            title = candidate.title
            if title == candidate.url and content.title:
                title = content.title
            relevance = candidate.snippet
            if relevance == "Requested source" and content.description:
                relevance = content.description
            fetched.append(FetchedSource(
                source=ResearchSource(title=title, url=candidate.url, relevance=relevance),
                excerpt=content.content[:self.excerpt_chars],
            ))
        return fetched

    async def _synthesize(
        self,
        topic: str,
        depth: ResearchDepth,
        fetched: list[FetchedSource],
    ) -> tuple[str, list[str]]:
        fallback_summary = deterministic_summary(topic, depth, len(fetched))
        fallback_findings = [s for s in (first_sentence(f.excerpt) for f in fetched) if s]

        if self.model is None or not fetched:
            return fallback_summary, fallback_findings

        excerpts = "\n\n".join(
            f"[{i}] {f.source.title} ({f.source.url})\n{f.excerpt}" for i, f in enumerate(fetched, start=1)
        )
        system_prompt = (
            "You are a research analyst. Synthesize the provided source excerpts into a concise "
            "summary and a list of concrete, source-grounded key findings. "
            'Respond ONLY with JSON: {"summary": "string", "key_findings": ["string", ...]}'
        )
        user_prompt = f"""Topic: {topic}
Research depth: {depth.value}

Sources:
{excerpts}

Summarize what these sources say about the topic and list 3-7 key findings."""

        result = await retry_structured_output(
            self.model, system_prompt, user_prompt, ResearchSynthesis, label="research synthesis",
        )
        if result.value is None:
            logger.warning(f"Research synthesis fallback for '{topic}'")
            return fallback_summary, fallback_findings
        return result.value.summary, result.value.key_findings

    async def research(
        self,
        topic: str,
        depth: ResearchDepth | str = ResearchDepth.STANDARD,
        sources: list[str] | None = None,
    ) -> ResearchFinding:
        depth = ResearchDepth(depth)
        logger.info(f"Researching topic: {topic} (depth: {depth.value})")

        try:
            results = await self.search.search(topic, depth=depth)
        except SearchError as e:
            logger.warning(f"Search failed for '{topic}', continuing with no results: {e}")
            results = []

        fetched = await self._fetch_all(self._candidates(results, sources))
        summary, key_findings = await self._synthesize(topic, depth, fetched)

        return ResearchFinding(
            topic=topic,
            summary=summary,
            key_findings=key_findings,
            sources=[f.source for f in fetched],
            confidence=confidence_for(len(fetched)),
        )
