"""
Service wiring for the API and scripts.

Builds one object graph from Settings:

    LanguageModelService (or None → deterministic fallbacks)
    → TradeStudyStore → ResearchPipeline(WebSearchTool, WebContentFetcher)
    → GoogleWorkspacePublisher → ExportCoordinator → TradeStudyAnalyst
    → ToolRegistry → TradeStudyAgent / ResearchTradeStudyAgent / TradeStudyGenerator
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from agents.analyst import TradeStudyAnalyst
from agents.base import LanguageModel
from app_lib.model_factory import create_language_model_service
from config.settings import Settings, settings
from orchestrator.agent import ResearchTradeStudyAgent, TradeStudyAgent
from orchestrator.export import ExportCoordinator
from orchestrator.generator import TradeStudyGenerator
from publishing.base import Publisher
from publishing.google_workspace import GoogleWorkspacePublisher
from studies import create_store
from studies.base import TradeStudyStore
from tools.registry import ToolRegistry, build_default_registry
from tools.research import ResearchPipeline
from tools.web_content import WebContentFetcher
from tools.web_search import WebSearchTool

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    model: Optional[LanguageModel]
    store: TradeStudyStore
    publisher: Publisher
    research: ResearchPipeline
    exporter: ExportCoordinator
    analyst: TradeStudyAnalyst
    registry: ToolRegistry
    agent: TradeStudyAgent
    research_agent: ResearchTradeStudyAgent
    generator: TradeStudyGenerator


def build_services(
    cfg: Settings = settings,
    *,
    model: Optional[LanguageModel] = None,
    store: Optional[TradeStudyStore] = None,
    publisher: Optional[Publisher] = None,
    search: Optional[WebSearchTool] = None,
    fetcher: Optional[WebContentFetcher] = None,
    use_model: bool = True,
) -> Services:
    """
    Wire every collaborator from settings.

    Any collaborator may be passed in explicitly (tests inject fakes);
    use_model=False forces the deterministic fallbacks even when a
    provider is configured.
    """
    if model is None and use_model:
        model = create_language_model_service(cfg)
    if model is None:
        logger.warning("No language model available; analysis and generation use deterministic fallbacks")

    store = store if store is not None else create_store(cfg)
    publisher = publisher if publisher is not None else GoogleWorkspacePublisher.from_settings(cfg)
    research = ResearchPipeline(
        search if search is not None else WebSearchTool(api_key=cfg.tavily_api_key),
        fetcher if fetcher is not None else WebContentFetcher(
            timeout_seconds=cfg.research_fetch_timeout_seconds,
            max_chars=cfg.research_max_content_chars,
            max_bytes=cfg.research_max_fetch_bytes,
        ),
        model=model,
        excerpt_chars=cfg.research_source_excerpt_chars,
    )
    exporter = ExportCoordinator(publisher, store)
    analyst = TradeStudyAnalyst(model, temperature=cfg.temperature)
    registry = build_default_registry(store=store, analyst=analyst, exporter=exporter, research=research)

    return Services(
        settings=cfg,
        model=model,
        store=store,
        publisher=publisher,
        research=research,
        exporter=exporter,
        analyst=analyst,
        registry=registry,
        agent=TradeStudyAgent(registry),
        research_agent=ResearchTradeStudyAgent(registry),
        generator=TradeStudyGenerator(
            model, store, research, analyst, exporter,
            temperature=cfg.temperature,
            scoring_temperature=cfg.scoring_temperature,
        ),
    )
