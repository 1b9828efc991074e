"""
Trade study tools — the store / analyst / publisher capabilities exposed
through the tool registry.

Each tool takes a validated pydantic input model. Tools raise only when a
required entity is missing (analyze_with_llm on an unknown id); every
model or publishing irregularity comes back as data.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from agents.analyst import TradeStudyAnalyst
from agents.base import (
    AnalysisGoal,
    PublishResult,
    PublishTargets,
    StepStatus,
    TradeStudy,
    TradeStudyAnalysis,
    TradeStudyNotFoundError,
    TradeStudyStatus,
)
from orchestrator.export import ExportCoordinator
from studies.base import TradeStudyStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class LoadTradeStudyInput(BaseModel):
    trade_study_id: str = Field(min_length=1, description="The ID of the trade study to load")


class UpdateTradeStudyInput(BaseModel):
    trade_study_id: str = Field(min_length=1, description="The ID of the trade study to update")
    title: Optional[str] = Field(default=None, min_length=1, description="New title for the study")
    summary: Optional[str] = Field(default=None, description="New summary for the study")
    status: Optional[TradeStudyStatus] = Field(default=None, description="New status")
    data: Optional[dict[str, Any]] = Field(default=None, description="Replacement data object")


class AnalyzeWithLLMInput(BaseModel):
    trade_study_id: str = Field(min_length=1, description="The ID of the trade study to analyze")
    goal: AnalysisGoal = Field(description="summarize | score | draft_proposal | identify_gaps")
    extra_context: Optional[str] = Field(default=None, description="Additional context for the analysis")


class PublishToGoogleInput(BaseModel):
    trade_study_id: str = Field(min_length=1, description="The ID of the trade study to publish")
    targets: PublishTargets = Field(description="Which Google services to publish to")
    folder_id: Optional[str] = Field(default=None, description="Destination Drive folder")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class TradeStudyTools:
    """Store-, analyst- and exporter-backed tools."""

    def __init__(
        self,
        store: TradeStudyStore,
        analyst: TradeStudyAnalyst,
        exporter: ExportCoordinator,
    ):
        self.store = store
        self.analyst = analyst
        self.exporter = exporter

    async def load_trade_study(self, params: LoadTradeStudyInput) -> Optional[TradeStudy]:
        return await self.store.load_by_id(params.trade_study_id)

    async def update_trade_study(self, params: UpdateTradeStudyInput) -> Optional[TradeStudy]:
        changes = params.model_dump(exclude_unset=True, exclude={"trade_study_id"})
        updated = await self.store.update(params.trade_study_id, **changes)
        if updated is None:
            return None
        return await self.store.load_by_id(params.trade_study_id)

    async def analyze_with_llm(self, params: AnalyzeWithLLMInput) -> TradeStudyAnalysis:
        study = await self.store.load_by_id(params.trade_study_id)
        if study is None:
            raise TradeStudyNotFoundError(params.trade_study_id)
        return await self.analyst.analyze(study, params.goal, params.extra_context)

    async def publish_to_google(self, params: PublishToGoogleInput) -> list[PublishResult]:
        study = await self.store.load_by_id(params.trade_study_id)
        if study is None:
            return [PublishResult(target="all", status=StepStatus.ERROR, message="Trade study not found")]
        return await self.exporter.publish(study, params.targets, params.folder_id)
