"""
Trade Study Generator — turns a bare topic into a persisted, scored study.

Architecture:
    Research → Criteria → Alternatives → Scoring → Persist → Gap analysis → Export

Each stage depends on the previous one and is recorded as an AgentStep.
Model output is schema-validated with one corrective retry; when it is
still unusable the stage substitutes a deterministic fallback, so a
generation always completes end-to-end.

Numeric post-processing is always local:
    - criterion weights are renormalized to sum to 1 (4 decimal places)
    - weighted totals are recomputed from scores × weights (3 decimal places);
      any total the model supplies is ignored
    - the winner is the first maximum in alternatives order
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any, Callable, Optional

from pydantic import BaseModel, Field

from agents.analyst import TradeStudyAnalyst
from agents.base import (
    GENERATION_DEPTH_KEY,
    RESEARCH_SOURCES_KEY,
    AgentStep,
    Alternative,
    AnalysisGoal,
    Criterion,
    ExportStatus,
    LanguageModel,
    ResearchDepth,
    ResearchFinding,
    ResearchSource,
    ScoredAlternative,
    StepStatus,
    Violation,
    retry_structured_output,
)
from orchestrator.export import ExportCoordinator
from studies.base import TradeStudyStore

if TYPE_CHECKING:
    from tools.research import ResearchPipeline

logger = logging.getLogger(__name__)

WEIGHT_PRECISION = 4
TOTAL_PRECISION = 3
FALLBACK_SCORE = 5.0


# ---------------------------------------------------------------------------
# Input / output
# ---------------------------------------------------------------------------

class GenerationInput(BaseModel):
    topic: str = Field(min_length=5, description="What the trade study should decide")
    owner_id: str = "demo-user"
    folder_id: Optional[str] = None
    depth: ResearchDepth = ResearchDepth.STANDARD
    generate_artifacts: bool = True


class GenerationResult(BaseModel):
    study_id: str
    criteria: list[Criterion]
    alternatives: list[Alternative]
    scored: list[ScoredAlternative]
    winner: Optional[ScoredAlternative] = None
    doc_file_id: Optional[str] = None
    sheet_file_id: Optional[str] = None
    slide_file_id: Optional[str] = None
    research_summary: Optional[str] = None
    sources: list[ResearchSource] = Field(default_factory=list)
    export_statuses: list[ExportStatus] = Field(default_factory=list)
    steps: list[AgentStep] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Model output shapes
# ---------------------------------------------------------------------------

class CriteriaResponse(BaseModel):
    criteria: list[Criterion] = Field(min_length=4, max_length=10)


class AlternativeDraft(BaseModel):
    name: str = Field(min_length=1)
    rationale: str = Field(min_length=5)


class AlternativesResponse(BaseModel):
    alternatives: list[AlternativeDraft] = Field(min_length=3, max_length=8)


class ScoreEntry(BaseModel):
    name: str
    scores: dict[str, Annotated[float, Field(ge=0.0, le=10.0)]]
    rationale: str = ""


class ScoringResponse(BaseModel):
    scored: list[ScoreEntry]


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------

def fallback_criteria() -> list[Criterion]:
    return [
        Criterion(name="Cost", description="Overall economic impact and pricing model", weight=0.25),
        Criterion(name="Performance", description="Latency, throughput, and efficiency", weight=0.25),
        Criterion(name="Scalability", description="Ability to grow with demand", weight=0.25),
        Criterion(name="Maintainability", description="Ease of operations & upgrades", weight=0.25),
    ]


def fallback_alternatives() -> list[Alternative]:
    return [
        Alternative(name="Option A", rationale="Baseline well-known approach."),
        Alternative(name="Option B", rationale="Innovative but less proven approach."),
        Alternative(name="Option C", rationale="Hybrid or combined strategy."),
    ]


# ---------------------------------------------------------------------------
# Numeric post-processing
# ---------------------------------------------------------------------------

def normalize_weights(criteria: list[Criterion]) -> list[Criterion]:
    """Divide each weight by the raw sum. A zero sum yields equal weights."""
    if not criteria:
        return []
    total = sum(c.weight for c in criteria)
    if total <= 0:
        equal = round(1 / len(criteria), WEIGHT_PRECISION)
        return [c.model_copy(update={"weight": equal}) for c in criteria]
    return [c.model_copy(update={"weight": round(c.weight / total, WEIGHT_PRECISION)}) for c in criteria]


def compute_weighted_total(scores: dict[str, float], criteria: list[Criterion]) -> float:
    """Σ score × weight over the criteria; a missing score counts as 0."""
    return round(sum(scores.get(c.name, 0) * c.weight for c in criteria), TOTAL_PRECISION)


def select_winner(scored: list[ScoredAlternative]) -> Optional[ScoredAlternative]:
    """Highest weighted total; ties go to the earliest entry."""
    if not scored:
        return None
    return max(scored, key=lambda s: s.weighted_total)


def _key(name: str) -> str:
    return name.strip().casefold()


def _unique_names(items: list[Any], path: str) -> list[Violation]:
    seen: set[str] = set()
    violations = []
    for i, item in enumerate(items):
        key = _key(item.name)
        if key in seen:
            violations.append(Violation(path=f"{path}[{i}].name", reason=f"duplicate name '{item.name}'"))
        seen.add(key)
    return violations


def scoring_coverage(
    criteria: list[Criterion],
    alternatives: list[Alternative],
) -> Callable[[ScoringResponse], list[Violation]]:
    """Semantic check: every alternative scored on every criterion."""

    def check(response: ScoringResponse) -> list[Violation]:
        by_name = {_key(entry.name): entry for entry in response.scored}
        violations = []
        for alt in alternatives:
            entry = by_name.get(_key(alt.name))
            if entry is None:
                violations.append(Violation(path=f"scored[{alt.name}]", reason="alternative not scored"))
                continue
            for c in criteria:
                if c.name not in entry.scores:
                    violations.append(Violation(
                        path=f"scored[{alt.name}].scores.{c.name}", reason="missing score",
                    ))
        return violations

    return check


def _overall_status(statuses: list[ExportStatus]) -> StepStatus:
    """ok if every target succeeded, error if any failed, otherwise skipped."""
    if all(s.status == StepStatus.OK for s in statuses):
        return StepStatus.OK
    if any(s.status == StepStatus.ERROR for s in statuses):
        return StepStatus.ERROR
    return StepStatus.SKIPPED


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class TradeStudyGenerator:
    """Runs the full topic → scored study pipeline."""

    def __init__(
        self,
        model: LanguageModel | None,
        store: TradeStudyStore,
        research: "ResearchPipeline",
        analyst: TradeStudyAnalyst,
        exporter: ExportCoordinator,
        temperature: float | None = None,
        scoring_temperature: float | None = 0.3,
    ):
        self.model = model
        self.store = store
        self.research = research
        self.analyst = analyst
        self.exporter = exporter
        self.temperature = temperature
        self.scoring_temperature = scoring_temperature

    async def _ask(
        self,
        schema: type[BaseModel],
        system_prompt: str,
        user_prompt: str,
        *,
        label: str,
        check=None,
        temperature: float | None = None,
    ) -> Any:
        if self.model is None:
            logger.warning(f"[{label}] no language model configured; using fallback")
            return None
        result = await retry_structured_output(
            self.model, system_prompt, user_prompt, schema,
            check=check, temperature=temperature, label=label,
        )
        if result.value is None:
            logger.warning(
                f"[{label}] falling back after {result.attempts} attempt(s): "
                f"{'; '.join(str(v) for v in result.violations[:3])}"
            )
        return result.value

    # ── Stages ───────────────────────────────────────────────────

    async def generate_criteria(self, topic: str, research_context: str | None = None) -> list[Criterion]:
        system_prompt = (
            "You are designing a trade study. Respond ONLY with JSON of the form "
            '{"criteria": [{"name": "...", "description": "...", "weight": 0.25}]}'
        )
        context = f"\nResearch Context:\n{research_context}\n" if research_context else ""
        user_prompt = f"""Topic: {topic}
{context}
List 4-10 evaluation criteria with short descriptions and weights between 0 and 1 summing to ~1.
Weights should reflect importance. Criterion names must be unique."""

        response = await self._ask(
            CriteriaResponse, system_prompt, user_prompt,
            label="criteria",
            check=lambda r: _unique_names(r.criteria, "criteria"),
            temperature=self.temperature,
        )
        criteria = response.criteria if response else fallback_criteria()
        return normalize_weights(criteria)

    async def generate_alternatives(self, topic: str, research_context: str | None = None) -> list[Alternative]:
        system_prompt = (
            "You are designing a trade study. Respond ONLY with JSON of the form "
            '{"alternatives": [{"name": "...", "rationale": "..."}]}'
        )
        context = f"\nResearch Context:\n{research_context}\n" if research_context else ""
        user_prompt = f"""Provide 3-8 distinct solution alternatives for: {topic}
{context}
Each alternative needs a unique name and a concise rationale."""

        response = await self._ask(
            AlternativesResponse, system_prompt, user_prompt,
            label="alternatives",
            check=lambda r: _unique_names(r.alternatives, "alternatives"),
            temperature=self.temperature,
        )
        if response is None:
            return fallback_alternatives()
        return [Alternative(name=a.name, rationale=a.rationale) for a in response.alternatives]

    async def score_alternatives(
        self,
        topic: str,
        criteria: list[Criterion],
        alternatives: list[Alternative],
        research_context: str | None = None,
    ) -> list[ScoredAlternative]:
        criteria_lines = "\n".join(f"- {c.name} ({c.weight}): {c.description}" for c in criteria)
        alternative_lines = "\n".join(f"- {a.name}: {a.rationale}" for a in alternatives)
        context = f"Research Context:\n{research_context}\n" if research_context else ""

        system_prompt = (
            "You are scoring a trade study. Respond ONLY with JSON of the form "
            '{"scored": [{"name": "...", "rationale": "...", "scores": {"Criterion": 7}}]}. '
            "Scores are numbers from 0 to 10."
        )
        user_prompt = f"""Score the following alternatives for a trade study on: {topic}

Criteria (with weight):
{criteria_lines}

Alternatives:
{alternative_lines}

{context}
Score every alternative on every criterion, using the exact names above."""

        response = await self._ask(
            ScoringResponse, system_prompt, user_prompt,
            label="scoring",
            check=scoring_coverage(criteria, alternatives),
            temperature=self.scoring_temperature,
        )

        entries = {_key(e.name): e for e in response.scored} if response else {}
        scored = []
        for alt in alternatives:
            entry = entries.get(_key(alt.name))
            if entry is not None:
                scores = {c.name: entry.scores.get(c.name, 0.0) for c in criteria}
                score_rationale = entry.rationale
            else:
                scores = {c.name: FALLBACK_SCORE for c in criteria}
                score_rationale = alt.rationale
            scored.append(ScoredAlternative(
                name=alt.name,
                rationale=alt.rationale,
                scores=scores,
                score_rationale=score_rationale,
                weighted_total=compute_weighted_total(scores, criteria),
            ))
        return scored

    async def _run_research(self, topic: str, depth: ResearchDepth) -> ResearchFinding:
        try:
            return await self.research.research(topic, depth)
        except Exception as e:
            logger.warning(f"Research failed for '{topic}', continuing without sources: {e}")
            return ResearchFinding(
                topic=topic,
                summary=f'Research on "{topic}" (depth: {depth.value}). Found 0 relevant sources.',
            )

    # ── Pipeline ─────────────────────────────────────────────────

    async def generate(self, params: GenerationInput) -> GenerationResult:
        topic = params.topic
        steps: list[AgentStep] = []

        def record(tool: str, status: StepStatus, message: str) -> None:
            steps.append(AgentStep(tool=tool, status=status, message=message))
            logger.info(f"[generate] {tool}: {status.value} - {message}")

        # 1. Research
        research = await self._run_research(topic, params.depth)
        research_context = research.summary + "\nSources:\n" + "\n".join(
            f"{s.title} - {s.url}" for s in research.sources
        )
        record(
            "research_context", StepStatus.OK,
            f"Found {len(research.sources)} sources ({research.confidence.value} confidence)",
        )

        # 2-4. Criteria, alternatives, scoring
        criteria = await self.generate_criteria(topic, research_context)
        record("generate_criteria", StepStatus.OK, f"Generated {len(criteria)} criteria")

        alternatives = await self.generate_alternatives(topic, research_context)
        record("generate_alternatives", StepStatus.OK, f"Generated {len(alternatives)} alternatives")

        scored = await self.score_alternatives(topic, criteria, alternatives, research_context)
        winner = select_winner(scored)
        record(
            "score_alternatives", StepStatus.OK,
            f"Scored {len(scored)} alternatives; winner: {winner.name if winner else 'none'}",
        )

        # 5. Persist
        study = await self.store.create(
            owner_id=params.owner_id,
            title=topic,
            summary=research.summary,
            data={
                "criteria": [c.model_dump(mode="json") for c in criteria],
                "alternatives": [a.model_dump(mode="json") for a in alternatives],
                "scored": [s.model_dump(mode="json") for s in scored],
                "winner": winner.name if winner else None,
                RESEARCH_SOURCES_KEY: [s.model_dump(mode="json") for s in research.sources],
                GENERATION_DEPTH_KEY: params.depth.value,
            },
        )
        record("create_trade_study", StepStatus.OK, f"Created trade study {study.id}")

        # 6. Gap analysis (best-effort)
        try:
            analysis = await self.analyst.analyze(study, AnalysisGoal.IDENTIFY_GAPS)
            if analysis.updated_data:
                merged = {**study.data, **analysis.updated_data}
                await self.store.update(study.id, data=merged)
                record("analyze_with_llm", StepStatus.OK, "Merged gap analysis into study data")
            else:
                record("analyze_with_llm", StepStatus.OK, "Gap analysis suggested no data changes")
        except Exception as e:
            logger.warning(f"Gap analysis failed for {study.id}: {e}")
            record("analyze_with_llm", StepStatus.ERROR, f"Gap analysis failed: {e}")

        # 7. Export
        export_statuses: list[ExportStatus] = []
        file_ids: dict[str, Optional[str]] = {"doc": None, "sheet": None, "slide": None}
        if params.generate_artifacts:
            export_statuses = await self.exporter.export_generation(
                study.id, topic, criteria, alternatives, scored, winner,
                folder_id=params.folder_id, research_summary=research.summary,
            )
            for status in export_statuses:
                if status.status == StepStatus.OK and status.file_id:
                    file_ids[status.artifact] = status.file_id
            ok_count = sum(1 for s in export_statuses if s.status == StepStatus.OK)
            record(
                "export_artifacts",
                _overall_status(export_statuses),
                f"Exported {ok_count}/{len(export_statuses)} artifacts",
            )
        else:
            record("export_artifacts", StepStatus.SKIPPED, "Artifact generation not requested")

        return GenerationResult(
            study_id=study.id,
            criteria=criteria,
            alternatives=alternatives,
            scored=scored,
            winner=winner,
            doc_file_id=file_ids["doc"],
            sheet_file_id=file_ids["sheet"],
            slide_file_id=file_ids["slide"],
            research_summary=research.summary,
            sources=research.sources,
            export_statuses=export_statuses,
            steps=steps,
        )
