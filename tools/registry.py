"""
Tool Registry — central registration and execution engine for agent tools.

Each tool declares a pydantic input model. The registry validates the
payload against it before execution, so a tool function only ever sees
well-formed input. Invalid input raises ToolInputError carrying the
(field_path, reason) violations; unknown names raise UnknownToolError.

Usage:
    registry = build_default_registry(store=store, analyst=analyst,
                                      exporter=exporter, research=pipeline)
    catalog = registry.get_catalog()
    study = await registry.execute("load_trade_study", {"trade_study_id": "vector-db"})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, ValidationError, field_validator

from agents.analyst import TradeStudyAnalyst
from agents.base import (
    ResearchDepth,
    ResearchFinding,
    ToolInputError,
    UnknownToolError,
    violations_from_error,
)
from orchestrator.export import ExportCoordinator
from studies.base import TradeStudyStore
from tools.research import ResearchPipeline
from tools.trade_study_tools import (
    AnalyzeWithLLMInput,
    LoadTradeStudyInput,
    PublishToGoogleInput,
    TradeStudyTools,
    UpdateTradeStudyInput,
)
from tools.web_content import FetchedContent, WebContentFetcher
from tools.web_search import SearchResult, WebSearchTool

logger = logging.getLogger(__name__)


@dataclass
class ToolSpec:
    """Specification for a registered tool."""

    name: str
    description: str
    input_model: type[BaseModel]
    func: Callable[[Any], Awaitable[Any]]

    @property
    def parameters(self) -> dict[str, str]:
        """Field name → description, for catalogs."""
        return {
            name: field.description or ""
            for name, field in self.input_model.model_fields.items()
        }


class ToolRegistry:
    """Central tool registry with pre-execution input validation."""

    def __init__(self):
        self._tools: dict[str, ToolSpec] = {}
        self._call_counts: dict[str, int] = {}

    def register(self, spec: ToolSpec) -> None:
        """Register a tool. Overwrites if name already exists."""
        self._tools[spec.name] = spec

    def list_tools(self) -> list[str]:
        """Return registered tool names."""
        return list(self._tools.keys())

    def get_spec(self, name: str) -> ToolSpec | None:
        """Look up a tool spec by name."""
        return self._tools.get(name)

    def get_catalog(self) -> str:
        """Format all registered tools as a readable text catalog."""
        lines = []
        for spec in self._tools.values():
            params_str = ", ".join(spec.parameters)
            lines.append(f"  - {spec.name}({params_str})")
            lines.append(f"    {spec.description}")
        return "\n".join(lines)

    def validate_input(self, name: str, payload: dict[str, Any] | BaseModel | None) -> BaseModel:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        if isinstance(payload, spec.input_model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        try:
            return spec.input_model.model_validate(payload or {})
        except ValidationError as e:
            raise ToolInputError(name, violations_from_error(e)) from e

    async def execute(self, name: str, payload: dict[str, Any] | BaseModel | None = None) -> Any:
        """
        Validate `payload` against the tool's input model and run it.

        Raises:
            UnknownToolError: no tool registered under `name`
            ToolInputError: payload failed validation (tool not executed)
            Exception: whatever the tool itself raises
        """
        params = self.validate_input(name, payload)
        self._call_counts[name] = self._call_counts.get(name, 0) + 1
        logger.info(f"Executing tool {name}")
        return await self._tools[name].func(params)

    def get_usage(self) -> dict[str, int]:
        """Calls per tool since construction."""
        return dict(self._call_counts)


# ---------------------------------------------------------------------------
# Research tool inputs
# ---------------------------------------------------------------------------

class WebSearchInput(BaseModel):
    query: str = Field(min_length=1, description="The search query")
    max_results: int | None = Field(default=None, ge=1, le=20, description="Maximum number of results")
    depth: ResearchDepth = Field(default=ResearchDepth.STANDARD, description="quick | standard | deep")


class FetchWebContentInput(BaseModel):
    url: str = Field(pattern=r"^https?://", description="The URL to fetch content from")


class ResearchContextInput(BaseModel):
    topic: str = Field(min_length=1, description="The topic to research")
    sources: list[str] | None = Field(default=None, description="Specific http(s) URLs to include")
    depth: ResearchDepth = Field(default=ResearchDepth.STANDARD, description="quick | standard | deep")

    @field_validator("sources")
    @classmethod
    def _http_urls(cls, value: list[str] | None) -> list[str] | None:
        for url in value or []:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"must be an http(s) URL: {url}")
        return value


def build_default_registry(
    store: TradeStudyStore,
    analyst: TradeStudyAnalyst,
    exporter: ExportCoordinator,
    research: ResearchPipeline,
) -> ToolRegistry:
    """
    Create a ToolRegistry pre-loaded with the seven trade study tools.

    Store/analyst/publish tools wrap TradeStudyTools; the research tools
    wrap the pipeline's search and fetch collaborators directly.
    """
    registry = ToolRegistry()
    study_tools = TradeStudyTools(store, analyst, exporter)
    search: WebSearchTool = research.search
    fetcher: WebContentFetcher = research.fetcher

    async def web_search(params: WebSearchInput) -> list[SearchResult]:
        return await search.search(params.query, params.max_results, params.depth)

    async def fetch_web_content(params: FetchWebContentInput) -> FetchedContent:
        return await fetcher.fetch(params.url)

    async def research_context(params: ResearchContextInput) -> ResearchFinding:
        return await research.research(params.topic, params.depth, params.sources)

    registry.register(ToolSpec(
        name="load_trade_study",
        description="Load a trade study by ID to view its current state",
        input_model=LoadTradeStudyInput,
        func=study_tools.load_trade_study,
    ))

    registry.register(ToolSpec(
        name="update_trade_study",
        description="Update a trade study's title, summary, status, or data",
        input_model=UpdateTradeStudyInput,
        func=study_tools.update_trade_study,
    ))

    registry.register(ToolSpec(
        name="analyze_with_llm",
        description="Use AI to analyze a trade study: summarize, score options, draft proposal, or identify gaps",
        input_model=AnalyzeWithLLMInput,
        func=study_tools.analyze_with_llm,
    ))

    registry.register(ToolSpec(
        name="publish_to_google",
        description="Publish trade study artifacts to Google Docs, Sheets, Slides, or Drive",
        input_model=PublishToGoogleInput,
        func=study_tools.publish_to_google,
    ))

    registry.register(ToolSpec(
        name="web_search",
        description="Search the web for information relevant to a trade study",
        input_model=WebSearchInput,
        func=web_search,
    ))

    registry.register(ToolSpec(
        name="fetch_web_content",
        description="Fetch a web page and reduce it to plain text with title and description",
        input_model=FetchWebContentInput,
        func=fetch_web_content,
    ))

    registry.register(ToolSpec(
        name="research_context",
        description="Research a topic: search, fetch the top sources, and synthesize findings",
        input_model=ResearchContextInput,
        func=research_context,
    ))

    return registry
