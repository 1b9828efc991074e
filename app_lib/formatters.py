"""Formatting functions for trade study artifacts (documents, sheets, slides, markdown)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from agents.base import RESEARCH_SOURCES_KEY, Criterion, ScoredAlternative, TradeStudy


@dataclass
class DocumentSection:
    heading: str
    body: str


@dataclass
class SlideContent:
    title: str
    bullets: list[str] = field(default_factory=list)


def _fmt_weight(weight: float) -> str:
    return f"{weight * 100:.1f}%"


def parse_entries(raw: Any, model: type[BaseModel]) -> list:
    """Parse list entries stored in opaque study data, skipping malformed ones."""
    parsed = []
    for item in raw if isinstance(raw, list) else []:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError:
            continue
    return parsed


def _ranked(scored: list[ScoredAlternative]) -> list[ScoredAlternative]:
    # sorted() is stable, so ties keep input order
    return sorted(scored, key=lambda s: s.weighted_total, reverse=True)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

def build_document_sections(
    topic: str,
    criteria: list[Criterion],
    scored: list[ScoredAlternative],
    winner: str | None,
    research_summary: str | None = None,
) -> list[DocumentSection]:
    """Sections for the summary document, in reading order."""
    sections = [
        DocumentSection(
            heading="Decision",
            body=(
                f"Recommended option for \"{topic}\": {winner}."
                if winner else f"No recommendation could be made for \"{topic}\"."
            ),
        ),
    ]

    if research_summary:
        sections.append(DocumentSection(heading="Research Context", body=research_summary))

    sections.append(DocumentSection(
        heading="Evaluation Criteria",
        body="\n".join(
            f"- {c.name} ({_fmt_weight(c.weight)}): {c.description}" for c in criteria
        ),
    ))

    ranking_lines = []
    for rank, alt in enumerate(_ranked(scored), start=1):
        line = f"{rank}. {alt.name} (weighted total {alt.weighted_total:.3f})"
        if alt.rationale:
            line += f"\n   {alt.rationale}"
        ranking_lines.append(line)
    sections.append(DocumentSection(heading="Ranking", body="\n".join(ranking_lines)))

    return sections


# ---------------------------------------------------------------------------
# Spreadsheet
# ---------------------------------------------------------------------------

def build_scoring_matrix(criteria: list[Criterion], scored: list[ScoredAlternative]) -> list[list[Any]]:
    """
    Alternative x criterion score matrix.

    Row 0 is the header, row 1 the weights, then one row per alternative
    in input order with its weighted total in the last column.
    """
    header: list[Any] = ["Alternative"] + [c.name for c in criteria] + ["Weighted Total"]
    weights: list[Any] = ["Weight"] + [c.weight for c in criteria] + [""]
    rows = [header, weights]
    for alt in scored:
        rows.append(
            [alt.name]
            + [alt.scores.get(c.name, 0) for c in criteria]
            + [alt.weighted_total]
        )
    return rows


# ---------------------------------------------------------------------------
# Slides
# ---------------------------------------------------------------------------

def build_slides(
    topic: str,
    criteria: list[Criterion],
    scored: list[ScoredAlternative],
    winner: str | None,
) -> list[SlideContent]:
    slides = [
        SlideContent(title=topic, bullets=[f"Recommendation: {winner}" if winner else "No recommendation"]),
        SlideContent(
            title="Criteria",
            bullets=[f"{c.name}: {_fmt_weight(c.weight)}" for c in criteria],
        ),
        SlideContent(
            title="Ranking",
            bullets=[f"{alt.name}: {alt.weighted_total:.3f}" for alt in _ranked(scored)],
        ),
    ]
    return slides


# ---------------------------------------------------------------------------
# Markdown (Drive upload / CLI)
# ---------------------------------------------------------------------------

def study_to_markdown(study: TradeStudy) -> str:
    """Render a persisted study as a standalone markdown report."""
    data = study.data or {}
    lines = [
        f"# {study.title}",
        "",
        f"**Status:** {study.status.value}",
    ]
    if study.summary:
        lines.extend(["", study.summary])

    criteria = parse_entries(data.get("criteria"), Criterion)
    scored = parse_entries(data.get("scored"), ScoredAlternative)

    if criteria:
        lines.extend(["", "## Criteria", ""])
        for c in criteria:
            lines.append(f"- **{c.name}** ({_fmt_weight(c.weight)}): {c.description}")

    if scored and criteria:
        lines.extend(["", "## Scores", ""])
        lines.append("| Alternative | " + " | ".join(c.name for c in criteria) + " | Total |")
        lines.append("|---" * (len(criteria) + 2) + "|")
        for alt in scored:
            cells = " | ".join(f"{alt.scores.get(c.name, 0):g}" for c in criteria)
            lines.append(f"| {alt.name} | {cells} | {alt.weighted_total:.3f} |")

    if data.get("winner"):
        lines.extend(["", f"**Recommended:** {data['winner']}"])

    sources = data.get(RESEARCH_SOURCES_KEY) or []
    if sources:
        lines.extend(["", "## Sources", ""])
        for src in sources:
            if isinstance(src, dict):
                lines.append(f"- [{src.get('title', src.get('url', ''))}]({src.get('url', '')})")

    return "\n".join(lines) + "\n"
