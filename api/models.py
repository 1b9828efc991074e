"""
API request/response models for the FastAPI endpoint.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field

from agents.base import AttachmentType, PublishTargets, ResearchDepth, TradeStudyStatus
from orchestrator.agent import AgentGoal, ResearchParams


class GenerateRequest(BaseModel):
    """Request body for generating a trade study from a topic."""

    topic: str = Field(..., min_length=5, description="Decision the trade study should make")
    owner_id: Optional[str] = Field(default=None, description="Owner id (defaults to the configured owner)")
    folder_id: Optional[str] = Field(default=None, description="Destination Drive folder for artifacts")
    depth: ResearchDepth = Field(default=ResearchDepth.STANDARD, description="quick | standard | deep")
    generate_artifacts: bool = Field(default=True, description="Export doc / sheet / slides")


class CreateTradeStudyRequest(BaseModel):
    """Request body for creating a study by hand."""

    title: str = Field(default="Untitled trade study", min_length=1)
    summary: Optional[str] = None
    status: TradeStudyStatus = TradeStudyStatus.DRAFT
    data: dict[str, Any] = Field(default_factory=dict, description="Opaque payload, e.g. criteria or assumptions")
    owner_id: Optional[str] = Field(default=None, description="Owner id (defaults to the configured owner)")


class UpdateTradeStudyRequest(BaseModel):
    """Partial update; only the fields sent are changed."""

    title: Optional[str] = Field(default=None, min_length=1)
    summary: Optional[str] = None
    status: Optional[TradeStudyStatus] = None
    data: Optional[dict[str, Any]] = None


class AttachmentRequest(BaseModel):
    """Record an already-created Drive file against a study."""

    file_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("file_id", "fileId"))
    type: Optional[AttachmentType] = None
    title: Optional[str] = None


class AgentRunRequest(BaseModel):
    """Request body for running a goal on an existing study."""

    goal: AgentGoal
    extra_context: Optional[str] = None
    publish_targets: Optional[PublishTargets] = None
    folder_id: Optional[str] = None


class ResearchAgentRunRequest(AgentRunRequest):
    """Agent request with research parameters."""

    research_params: Optional[ResearchParams] = None


class ToolInfo(BaseModel):
    name: str
    description: str
    parameters: dict[str, str] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = ""
    provider: str = ""
    model_available: bool = False
    search_available: bool = False
    num_studies: int = 0
    num_tools: int = 0
