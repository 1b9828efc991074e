"""
FastAPI application for trade studies.

Endpoints:
    GET  /health                              — Health check with stats
    GET  /trade-studies                       — List studies (optionally by owner)
    POST /trade-studies                       — Create a study by hand
    GET  /trade-studies/{id}                  — Get a specific study
    PUT  /trade-studies/{id}                  — Update title, summary, status or data
    POST /trade-studies/{id}/attachments      — Record an attachment on a study
    POST /trade-studies/generate              — Generate a scored study from a topic
    POST /trade-studies/{id}/agent            — Run a goal with the base orchestrator
    POST /trade-studies/{id}/research-agent   — Run a goal with the research orchestrator
    GET  /tools                               — Registered tool catalog

Usage:
    uvicorn api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from agents.base import Attachment, TradeStudy, TradeStudyNotFoundError
from api.models import (
    AgentRunRequest,
    AttachmentRequest,
    CreateTradeStudyRequest,
    GenerateRequest,
    HealthResponse,
    ResearchAgentRunRequest,
    ToolInfo,
    UpdateTradeStudyRequest,
)
from app_lib.container import Services, build_services
from orchestrator.agent import AgentRequest, AgentResult
from orchestrator.generator import GenerationInput, GenerationResult

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

app = FastAPI(
    title="Trade Study API",
    description="Generate, analyze, research and publish engineering trade studies.",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared services, built on first use
_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


@app.get("/health", response_model=HealthResponse)
async def health(services: Services = Depends(get_services)):
    """Health check with study stats."""
    studies = await services.store.list_studies()
    return HealthResponse(
        status="ok",
        version=API_VERSION,
        provider=services.settings.resolve_provider().value,
        model_available=services.model is not None,
        search_available=services.research.search.available,
        num_studies=len(studies),
        num_tools=len(services.registry.list_tools()),
    )


@app.get("/trade-studies", response_model=list[TradeStudy])
async def list_trade_studies(
    owner_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """List stored trade studies, optionally filtered by owner."""
    return await services.store.list_studies(owner_id=owner_id)


@app.get("/trade-studies/{trade_study_id}", response_model=TradeStudy)
async def get_trade_study(trade_study_id: str, services: Services = Depends(get_services)):
    """Get a specific trade study by ID."""
    study = await services.store.load_by_id(trade_study_id)
    if study is None:
        raise HTTPException(404, f"Trade study {trade_study_id} not found")
    return study


@app.post("/trade-studies", response_model=TradeStudy)
async def create_trade_study(req: CreateTradeStudyRequest, services: Services = Depends(get_services)):
    """Create a study from a caller-supplied title, status and data payload."""
    study = await services.store.create(
        owner_id=req.owner_id or services.settings.default_owner_id,
        title=req.title,
        summary=req.summary,
        status=req.status,
        data=req.data,
    )
    logger.info(f"Created trade study {study.id} ('{study.title}')")
    return study


@app.put("/trade-studies/{trade_study_id}", response_model=TradeStudy)
async def update_trade_study(
    trade_study_id: str,
    req: UpdateTradeStudyRequest,
    services: Services = Depends(get_services),
):
    """Update the fields present in the body; everything else is left as is."""
    updated = await services.store.update(trade_study_id, **req.model_dump(exclude_unset=True))
    if updated is None:
        raise HTTPException(404, f"Trade study {trade_study_id} not found")
    return updated


@app.post("/trade-studies/{trade_study_id}/attachments", response_model=Attachment)
async def add_attachment(
    trade_study_id: str,
    req: AttachmentRequest,
    services: Services = Depends(get_services),
):
    """Record an existing Drive file (doc, sheet, slide or drive upload) against a study."""
    if not req.file_id or req.type is None:
        raise HTTPException(400, "fileId and type are required")
    try:
        return await services.store.create_attachment(
            trade_study_id, file_id=req.file_id, type=req.type, title=req.title,
        )
    except TradeStudyNotFoundError as e:
        raise HTTPException(404, str(e)) from e


@app.post("/trade-studies/generate", response_model=GenerationResult)
async def generate_trade_study(req: GenerateRequest, services: Services = Depends(get_services)):
    """
    Generate a complete trade study from a topic.

    Research, criteria, alternatives and scoring always complete (falling
    back to deterministic content); export failures are reported per
    artifact in export_statuses.
    """
    params = GenerationInput(
        topic=req.topic,
        owner_id=req.owner_id or services.settings.default_owner_id,
        folder_id=req.folder_id,
        depth=req.depth,
        generate_artifacts=req.generate_artifacts,
    )
    t0 = time.time()
    try:
        result = await services.generator.generate(params)
    except Exception as e:
        logger.exception(f"Generation failed for '{req.topic}'")
        raise HTTPException(500, f"Generation failed: {e}") from e
    logger.info(f"Generated trade study {result.study_id} in {time.time() - t0:.1f}s")
    return result


@app.post("/trade-studies/{trade_study_id}/agent", response_model=AgentResult)
async def run_agent(
    trade_study_id: str,
    req: AgentRunRequest,
    services: Services = Depends(get_services),
):
    """Run a goal on an existing study with the base orchestrator."""
    request = AgentRequest(trade_study_id=trade_study_id, **req.model_dump(exclude_none=True))
    return await services.agent.run(request)


@app.post("/trade-studies/{trade_study_id}/research-agent", response_model=AgentResult)
async def run_research_agent(
    trade_study_id: str,
    req: ResearchAgentRunRequest,
    services: Services = Depends(get_services),
):
    """Run a goal on an existing study with the research-augmented orchestrator."""
    request = AgentRequest(trade_study_id=trade_study_id, **req.model_dump(exclude_none=True))
    return await services.research_agent.run(request)


@app.get("/tools", response_model=list[ToolInfo])
def list_tools(services: Services = Depends(get_services)):
    """List registered tools with their parameters."""
    tools = []
    for name in services.registry.list_tools():
        spec = services.registry.get_spec(name)
        tools.append(ToolInfo(name=spec.name, description=spec.description, parameters=spec.parameters))
    return tools
