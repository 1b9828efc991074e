"""
Goal orchestrators for existing trade studies.

A run always starts by loading the study. An unknown id terminates
immediately in the failed state with a single load_trade_study error
step. Otherwise the goal is dispatched through one handler table:

    TradeStudyAgent                 analyze | score | summarize | publish | full_workflow
    ResearchTradeStudyAgent         + research_topic | enrich_with_research | validate_assumptions
                                    (full_workflow researches before drafting)

Handlers only talk to the tool registry. Persisting model-suggested data
is best-effort and logged as its own step; it never fails the run. Any
other exception is caught at the run boundary and turned into the failed
terminal state, with the message appended as a final `orchestrator` step.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from agents.base import (
    LAST_RESEARCH_DATE_KEY,
    RESEARCH_SOURCES_KEY,
    AgentStep,
    AnalysisGoal,
    PublishResult,
    PublishTargets,
    ResearchDepth,
    ResearchFinding,
    ResearchSource,
    StepStatus,
    TradeStudy,
    TradeStudyAnalysis,
    TradeStudyError,
    TradeStudyStatus,
    confidence_for,
)

if TYPE_CHECKING:
    from tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Trade study not found"
MAX_ASSUMPTIONS = 3
SOURCES_PER_ASSUMPTION = 2


class AgentGoal(str, Enum):
    ANALYZE = "analyze"
    SCORE = "score"
    SUMMARIZE = "summarize"
    PUBLISH = "publish"
    FULL_WORKFLOW = "full_workflow"
    RESEARCH_TOPIC = "research_topic"
    ENRICH_WITH_RESEARCH = "enrich_with_research"
    VALIDATE_ASSUMPTIONS = "validate_assumptions"


ANALYSIS_TAGS = {
    AgentGoal.ANALYZE: AnalysisGoal.IDENTIFY_GAPS,
    AgentGoal.SUMMARIZE: AnalysisGoal.SUMMARIZE,
    AgentGoal.SCORE: AnalysisGoal.SCORE,
}


class ResearchParams(BaseModel):
    topic: Optional[str] = None
    depth: Optional[ResearchDepth] = None
    sources: Optional[list[str]] = None


class AgentRequest(BaseModel):
    trade_study_id: str
    goal: AgentGoal
    extra_context: Optional[str] = None
    research_params: Optional[ResearchParams] = None
    publish_targets: Optional[PublishTargets] = None
    folder_id: Optional[str] = None


class AgentResult(BaseModel):
    success: bool
    study: Optional[TradeStudy] = None
    analysis: Optional[TradeStudyAnalysis] = None
    research_findings: Optional[ResearchFinding] = None
    publish_results: Optional[list[PublishResult]] = None
    steps: list[AgentStep] = Field(default_factory=list)
    error: Optional[str] = None


@dataclass
class RunContext:
    """Mutable state for one orchestrator run."""

    request: AgentRequest
    study: TradeStudy
    steps: list[AgentStep] = field(default_factory=list)
    analysis: Optional[TradeStudyAnalysis] = None
    research_findings: Optional[ResearchFinding] = None
    publish_results: Optional[list[PublishResult]] = None

    @property
    def study_id(self) -> str:
        return self.request.trade_study_id

    def record(self, tool: str, status: StepStatus, message: str) -> None:
        self.steps.append(AgentStep(tool=tool, status=status, message=message))
        logger.info(f"[{self.request.goal.value}] {tool}: {status.value} - {message}")


def build_research_context(extra_context: str | None, finding: ResearchFinding) -> str:
    """Analysis context with research findings appended."""
    key_findings = "\n".join(f"{i}. {f}" for i, f in enumerate(finding.key_findings, start=1))
    sources = "\n".join(f"- {s.title}: {s.url}" for s in finding.sources)
    return f"""{extra_context or ""}

RESEARCH FINDINGS:
{finding.summary}

KEY FINDINGS:
{key_findings}

SOURCES:
{sources}""".strip()


# ---------------------------------------------------------------------------
# Base orchestrator
# ---------------------------------------------------------------------------

class TradeStudyAgent:
    """Routes goals on an existing study to registry tools."""

    def __init__(self, registry: "ToolRegistry"):
        self.registry = registry
        self._handlers: dict[AgentGoal, Callable[[RunContext], Awaitable[None]]] = {
            AgentGoal.ANALYZE: self._analyze,
            AgentGoal.SCORE: self._analyze,
            AgentGoal.SUMMARIZE: self._analyze,
            AgentGoal.PUBLISH: self._publish,
            AgentGoal.FULL_WORKFLOW: self._full_workflow,
        }

    @property
    def supported_goals(self) -> list[AgentGoal]:
        return list(self._handlers)

    async def run(self, request: AgentRequest) -> AgentResult:
        steps: list[AgentStep] = []
        try:
            study = await self.registry.execute("load_trade_study", {"trade_study_id": request.trade_study_id})
            if study is None:
                logger.warning(f"Trade study {request.trade_study_id} not found")
                return AgentResult(
                    success=False,
                    study=None,
                    steps=[AgentStep(tool="load_trade_study", status=StepStatus.ERROR, message=NOT_FOUND_MESSAGE)],
                    error=NOT_FOUND_MESSAGE,
                )

            ctx = RunContext(request=request, study=study, steps=steps)
            ctx.record("load_trade_study", StepStatus.OK, f'Loaded "{study.title}"')

            handler = self._handlers.get(request.goal)
            if handler is None:
                raise TradeStudyError(f"Goal '{request.goal.value}' is not supported by {type(self).__name__}")
            await handler(ctx)

            final = await self.registry.execute("load_trade_study", {"trade_study_id": request.trade_study_id})
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Agent run failed for {request.trade_study_id} ({request.goal.value}): {message}")
            steps.append(AgentStep(tool="orchestrator", status=StepStatus.ERROR, message=message))
            return AgentResult(success=False, study=None, steps=steps, error=message)

        return AgentResult(
            success=True,
            study=final,
            analysis=ctx.analysis,
            research_findings=ctx.research_findings,
            publish_results=ctx.publish_results,
            steps=ctx.steps,
        )

    # ── Shared building blocks ───────────────────────────────────

    async def _run_analysis(
        self,
        ctx: RunContext,
        tag: AnalysisGoal,
        extra_context: str | None,
    ) -> TradeStudyAnalysis:
        analysis = await self.registry.execute("analyze_with_llm", {
            "trade_study_id": ctx.study_id,
            "goal": tag.value,
            "extra_context": extra_context,
        })
        ctx.analysis = analysis
        return analysis

    async def _persist(self, ctx: RunContext, success_message: str, **fields: Any) -> None:
        """Best-effort update; failure is logged as an error step, never raised."""
        try:
            updated = await self.registry.execute(
                "update_trade_study", {"trade_study_id": ctx.study_id, **fields},
            )
        except Exception as e:
            logger.warning(f"Update of {ctx.study_id} failed: {e}")
            ctx.record("update_trade_study", StepStatus.ERROR, f"Update failed: {e}")
            return
        if updated is None:
            ctx.record("update_trade_study", StepStatus.ERROR, f"Update failed: {NOT_FOUND_MESSAGE}")
            return
        ctx.record("update_trade_study", StepStatus.OK, success_message)

    async def _publish_to(self, ctx: RunContext, targets: PublishTargets) -> None:
        results = await self.registry.execute("publish_to_google", {
            "trade_study_id": ctx.study_id,
            "targets": targets.model_dump(),
            "folder_id": ctx.request.folder_id,
        })
        ctx.publish_results = results
        ctx.record("publish_to_google", StepStatus.OK, f"Published to {len(results)} target(s)")

    def _requested_targets(self, ctx: RunContext) -> Optional[PublishTargets]:
        targets = ctx.request.publish_targets
        if targets is None or not targets.selected():
            return None
        return targets

    async def _draft_proposal(
        self,
        ctx: RunContext,
        extra_context: str | None,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        analysis = await self._run_analysis(ctx, AnalysisGoal.DRAFT_PROPOSAL, extra_context)
        ctx.record("analyze_with_llm", StepStatus.OK, "Drafted proposal")
        if analysis.updated_data:
            await self._persist(
                ctx,
                "Updated study status to in_review",
                data={**analysis.updated_data, **(extra_data or {})},
                status=TradeStudyStatus.IN_REVIEW.value,
            )

    # ── Goal handlers ────────────────────────────────────────────

    async def _analyze(self, ctx: RunContext) -> None:
        goal = ctx.request.goal
        analysis = await self._run_analysis(ctx, ANALYSIS_TAGS[goal], ctx.request.extra_context)
        ctx.record("analyze_with_llm", StepStatus.OK, f"Completed {goal.value} analysis")
        if analysis.updated_data:
            await self._persist(ctx, "Updated study data with analysis results", data=analysis.updated_data)

    async def _publish(self, ctx: RunContext) -> None:
        targets = self._requested_targets(ctx)
        if targets is None:
            ctx.record("publish_to_google", StepStatus.SKIPPED, "No publish targets specified")
            return
        await self._publish_to(ctx, targets)

    async def _full_workflow(self, ctx: RunContext) -> None:
        await self._draft_proposal(ctx, ctx.request.extra_context)
        targets = self._requested_targets(ctx)
        if targets is not None:
            await self._publish_to(ctx, targets)


# ---------------------------------------------------------------------------
# Research-augmented orchestrator
# ---------------------------------------------------------------------------

class ResearchTradeStudyAgent(TradeStudyAgent):
    """Base goals plus research goals; full_workflow researches before drafting."""

    def __init__(self, registry: "ToolRegistry"):
        super().__init__(registry)
        self._handlers.update({
            AgentGoal.RESEARCH_TOPIC: self._research_topic,
            AgentGoal.ENRICH_WITH_RESEARCH: self._enrich_with_research,
            AgentGoal.VALIDATE_ASSUMPTIONS: self._validate_assumptions,
            AgentGoal.FULL_WORKFLOW: self._research_full_workflow,
        })

    def _research_topic_for(self, ctx: RunContext) -> str:
        params = ctx.request.research_params
        return (params.topic if params and params.topic else None) or ctx.study.title

    async def _research(self, ctx: RunContext) -> ResearchFinding:
        params = ctx.request.research_params or ResearchParams()
        finding = await self.registry.execute("research_context", {
            "topic": self._research_topic_for(ctx),
            "depth": (params.depth or ResearchDepth.STANDARD).value,
            "sources": params.sources,
        })
        ctx.research_findings = finding
        return finding

    @staticmethod
    def _research_stamp(finding: ResearchFinding) -> dict[str, Any]:
        return {
            RESEARCH_SOURCES_KEY: [s.model_dump(mode="json") for s in finding.sources],
            LAST_RESEARCH_DATE_KEY: datetime.now(timezone.utc).isoformat(),
        }

    async def _research_topic(self, ctx: RunContext) -> None:
        finding = await self._research(ctx)
        ctx.record(
            "research_context", StepStatus.OK,
            f'Researched "{finding.topic}" with {len(finding.sources)} sources',
        )

    async def _enrich_with_research(self, ctx: RunContext) -> None:
        finding = await self._research(ctx)
        ctx.record("research_context", StepStatus.OK, f'Researched "{finding.topic}"')

        analysis = await self._run_analysis(
            ctx, AnalysisGoal.IDENTIFY_GAPS, build_research_context(ctx.request.extra_context, finding),
        )
        ctx.record("analyze_with_llm", StepStatus.OK, "Analyzed study with research findings")

        base = analysis.updated_data if analysis.updated_data else ctx.study.data
        await self._persist(
            ctx, "Updated study with research findings",
            data={**base, **self._research_stamp(finding)},
        )

    async def _validate_one(self, assumption: str) -> tuple[str, ResearchFinding]:
        finding = await self.registry.execute("research_context", {
            "topic": f"Validate: {assumption}",
            "depth": ResearchDepth.QUICK.value,
        })
        return assumption, finding

    async def _validate_assumptions(self, ctx: RunContext) -> None:
        raw = (ctx.study.data or {}).get("assumptions")
        assumptions = [a.strip() for a in raw if isinstance(a, str) and a.strip()] if isinstance(raw, list) else []
        if not assumptions:
            ctx.record("validate_assumptions", StepStatus.SKIPPED, "No assumptions found to validate")
            return

        selected = assumptions[:MAX_ASSUMPTIONS]
        outcomes = await asyncio.gather(
            *(self._validate_one(a) for a in selected),
            return_exceptions=True,
        )

        validated: list[tuple[str, ResearchFinding]] = []
        for assumption, outcome in zip(selected, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Validation research failed for '{assumption}': {outcome}")
                continue
            validated.append(outcome)

        sources: list[ResearchSource] = [
            s for _, finding in validated for s in finding.sources[:SOURCES_PER_ASSUMPTION]
        ]
        ctx.research_findings = ResearchFinding(
            topic="Assumption Validation",
            summary=f"Validated {len(validated)} assumptions",
            key_findings=[f"{assumption}: {finding.summary}" for assumption, finding in validated],
            sources=sources,
            confidence=confidence_for(len(sources)),
        )

        if validated:
            ctx.record("research_context", StepStatus.OK, f"Validated {len(validated)} assumptions")
        else:
            ctx.record("research_context", StepStatus.ERROR, "Research failed for every assumption")

    async def _research_full_workflow(self, ctx: RunContext) -> None:
        finding = await self._research(ctx)
        ctx.record("research_context", StepStatus.OK, f'Researched "{finding.topic}"')

        await self._draft_proposal(
            ctx,
            build_research_context(ctx.request.extra_context, finding),
            extra_data={RESEARCH_SOURCES_KEY: [s.model_dump(mode="json") for s in finding.sources]},
        )

        targets = self._requested_targets(ctx)
        if targets is not None:
            await self._publish_to(ctx, targets)
