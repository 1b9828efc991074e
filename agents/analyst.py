"""
Trade Study Analyst — goal-driven structured analysis of a study.

Given a persisted trade study and an instruction tag
(summarize | score | draft_proposal | identify_gaps), asks the language
model for a {summary, recommendations, next_steps, updated_data?} JSON
object. Output is schema-validated with one corrective retry; when the
model is missing or its output is still unusable, a deterministic
fallback analysis is returned instead of raising.
"""

from __future__ import annotations

import json
import logging

from agents.base import (
    AnalysisGoal,
    LanguageModel,
    TradeStudy,
    TradeStudyAnalysis,
    retry_structured_output,
)

logger = logging.getLogger(__name__)


GOAL_DESCRIPTIONS: dict[AnalysisGoal, str] = {
    AnalysisGoal.SUMMARIZE: (
        "provide a clear summary of the trade study, highlighting key requirements, "
        "options being considered, and any preliminary findings"
    ),
    AnalysisGoal.SCORE: (
        "evaluate and score each option against the defined criteria, providing "
        "quantitative ratings and justifications"
    ),
    AnalysisGoal.DRAFT_PROPOSAL: (
        "draft a decision proposal recommending the best option(s) with supporting rationale"
    ),
    AnalysisGoal.IDENTIFY_GAPS: (
        "identify gaps in the analysis, missing requirements, unclear criteria, "
        "or options that should be considered"
    ),
}

ANALYSIS_SCHEMA_HINT = """{
  "summary": "string: high-level summary of the analysis",
  "recommendations": ["string: key recommendation for decision-makers"],
  "next_steps": ["string: suggested next action"],
  "updated_data": {"optional": "full replacement for the study's data object, only if you changed it"}
}"""


class TradeStudyAnalyst:
    """Runs one structured analysis pass over a trade study."""

    def __init__(self, model: LanguageModel | None, temperature: float | None = None):
        self.model = model
        self.temperature = temperature

    def build_prompts(
        self,
        study: TradeStudy,
        goal: AnalysisGoal,
        extra_context: str | None = None,
    ) -> tuple[str, str]:
        description = GOAL_DESCRIPTIONS[goal]

        system_prompt = f"""You are an expert technical consultant helping evaluate and document trade studies.
A trade study compares multiple options (technologies, vendors, architectures) against defined requirements and criteria.

Your job is to analyze the provided trade study data and {description}.

Respond ONLY with JSON matching this schema:
{ANALYSIS_SCHEMA_HINT}"""

        summary_line = f"Summary: {study.summary}\n" if study.summary else ""
        context_block = f"Additional Context:\n{extra_context}\n" if extra_context else ""

        user_prompt = f"""Trade Study: {study.title}
{summary_line}
Current Data:
{json.dumps(study.data, indent=2, default=str)}

{context_block}
Please {description}."""

        return system_prompt, user_prompt

    async def analyze(
        self,
        study: TradeStudy,
        goal: AnalysisGoal | str,
        extra_context: str | None = None,
    ) -> TradeStudyAnalysis:
        goal = AnalysisGoal(goal)

        if self.model is None:
            logger.warning(f"No language model configured; fallback analysis for {study.id} ({goal.value})")
            return fallback_analysis(study, goal, "no language model is configured")

        system_prompt, user_prompt = self.build_prompts(study, goal, extra_context)
        result = await retry_structured_output(
            self.model,
            system_prompt,
            user_prompt,
            TradeStudyAnalysis,
            temperature=self.temperature,
            label=f"analysis:{goal.value}",
        )

        if result.value is None:
            reason = "; ".join(str(v) for v in result.violations[:3]) or "invalid output"
            logger.warning(f"Analysis fallback for {study.id} ({goal.value}): {reason}")
            return fallback_analysis(study, goal, "the language model response was unusable")

        return result.value


def fallback_analysis(study: TradeStudy, goal: AnalysisGoal, reason: str) -> TradeStudyAnalysis:
    """Deterministic analysis used when the model cannot produce one. Never carries updated_data."""
    return TradeStudyAnalysis(
        summary=(
            f"Automated {goal.value.replace('_', ' ')} analysis of \"{study.title}\" "
            f"is unavailable because {reason}."
        ),
        recommendations=[
            "Review the criteria weights with stakeholders",
            "Confirm the alternatives cover the realistic option space",
        ],
        next_steps=[
            "Check the language model configuration",
            "Re-run the analysis once the model is available",
        ],
        updated_data=None,
    )
