"""
Shared types for the trade study agent.

Everything the pipeline passes between components lives here:
    - domain entities (TradeStudy, Criterion, ScoredAlternative, ...)
    - the language-model protocol every agent talks to
    - robust JSON extraction + schema validation for untrusted model output
    - the bounded corrective-retry policy (original prompt + one correction)

Model output is never trusted. It is always routed through
validate_output(), which reports (field_path, reason) violations
instead of raising, so callers can decide between a corrective retry
and a deterministic fallback.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TradeStudyStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class AttachmentType(str, Enum):
    DOC = "doc"
    SHEET = "sheet"
    SLIDE = "slide"
    DRIVE = "drive"


class StepStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    SKIPPED = "skipped"


class ResearchDepth(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnalysisGoal(str, Enum):
    """Instruction tags understood by the analyst."""

    SUMMARIZE = "summarize"
    SCORE = "score"
    DRAFT_PROPOSAL = "draft_proposal"
    IDENTIFY_GAPS = "identify_gaps"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class TradeStudyError(Exception):
    """Base class for trade study agent errors."""


class TradeStudyNotFoundError(TradeStudyError):
    """A trade study id did not resolve."""

    def __init__(self, trade_study_id: str):
        super().__init__(f"Trade study {trade_study_id} not found")
        self.trade_study_id = trade_study_id


class ToolInputError(TradeStudyError):
    """Tool input failed pre-execution validation."""

    def __init__(self, tool_name: str, violations: list["Violation"]):
        fields = ", ".join(v.path for v in violations) or "$"
        super().__init__(f"Invalid input for {tool_name}: {fields}")
        self.tool_name = tool_name
        self.violations = violations


class UnknownToolError(TradeStudyError):
    """A tool name is not registered."""


class SearchError(TradeStudyError):
    """The web search provider was reachable but the search failed."""


class ContentFetchError(TradeStudyError):
    """A URL could not be fetched or parsed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


# ---------------------------------------------------------------------------
# Domain entities
# ---------------------------------------------------------------------------

# Keys written into the opaque TradeStudy.data payload alongside criteria,
# alternatives, scored and winner. Shared with studies created elsewhere.
RESEARCH_SOURCES_KEY = "researchSources"
GENERATION_DEPTH_KEY = "generationDepth"
LAST_RESEARCH_DATE_KEY = "lastResearchDate"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Criterion(BaseModel):
    """A weighted evaluation criterion. Weights across a study sum to 1."""

    name: str
    description: str = ""
    weight: float = Field(ge=0.0, le=1.0)


class Alternative(BaseModel):
    """A candidate solution being compared."""

    name: str
    rationale: str = ""


class ScoredAlternative(Alternative):
    """An alternative with per-criterion scores and a locally computed total."""

    scores: dict[str, float] = Field(default_factory=dict, description="criterion name -> 0-10 score")
    score_rationale: str = Field(
        default="", validation_alias=AliasChoices("score_rationale", "scoreRationale"),
    )
    weighted_total: float = Field(
        default=0.0, validation_alias=AliasChoices("weighted_total", "weightedTotal"),
    )


class ResearchSource(BaseModel):
    title: str
    url: str
    relevance: str = ""


class ResearchFinding(BaseModel):
    """Output of the research pipeline. Ephemeral unless a caller persists it."""

    topic: str
    summary: str
    key_findings: list[str] = Field(default_factory=list)
    sources: list[ResearchSource] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW


def confidence_for(source_count: int) -> Confidence:
    """Confidence tier from the number of sources actually retrieved."""
    if source_count >= 3:
        return Confidence.HIGH
    if source_count == 2:
        return Confidence.MEDIUM
    return Confidence.LOW


class Attachment(BaseModel):
    id: str
    trade_study_id: str
    file_id: str
    type: AttachmentType
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class TradeStudy(BaseModel):
    """A persisted trade study. `data` is opaque apart from keys the core writes."""

    id: str
    owner_id: str = ""
    title: str
    summary: Optional[str] = None
    status: TradeStudyStatus = TradeStudyStatus.DRAFT
    data: dict[str, Any] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AgentStep(BaseModel):
    """One append-only entry in a run's progress log."""

    tool: str
    status: StepStatus
    message: str


class TradeStudyAnalysis(BaseModel):
    """Structured analysis returned by the analyst (and validated shape of model output)."""

    summary: str
    recommendations: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("next_steps", "nextSteps"),
    )
    updated_data: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("updated_data", "updatedData"),
    )


class PublishTargets(BaseModel):
    """Which publishing destinations to export to."""

    doc: bool = False
    sheet: bool = False
    slides: bool = False
    drive: bool = False

    def selected(self) -> list[str]:
        return [name for name in ("doc", "sheet", "slides", "drive") if getattr(self, name)]


class PublishResult(BaseModel):
    target: str
    status: StepStatus
    message: str
    file_id: Optional[str] = None


class ExportStatus(BaseModel):
    artifact: str
    status: StepStatus
    message: str
    file_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Language model protocol
# ---------------------------------------------------------------------------

class LanguageModel(Protocol):
    """Anything that can complete a (system, user) prompt pair asynchronously."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> str:
        ...


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

_CODE_BLOCK_PATTERN = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")
_CLOSERS = {"{": "}", "[": "]"}

# Deeply nested or runaway brackets make the decoders recurse past the limit
_PARSE_ERRORS = (ValueError, RecursionError, MemoryError)


def _scan_balanced(text: str, start: int) -> tuple[str, bool]:
    """
    Return the bracketed region starting at text[start] and whether it closed.

    String-aware: brackets inside quoted strings are ignored. When the
    input ends before the region closes, the open brackets are closed
    so the caller can still attempt a parse.
    """
    stack: list[str] = []
    quote: str | None = None
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack[-1] != ch:
                break
            stack.pop()
            if not stack:
                return text[start:i + 1], True

    region = text[start:].rstrip()
    if quote:
        region += quote
    return region + "".join(reversed(stack)), False


def _first_bracket(text: str) -> int:
    positions = [p for p in (text.find("{"), text.find("[")) if p >= 0]
    return min(positions) if positions else -1


def _try_parse(candidate: str) -> Any:
    """Parse with progressively looser repairs. Raises ValueError if nothing works."""
    candidate = candidate.strip()
    attempts = [candidate, _TRAILING_COMMA_PATTERN.sub(r"\1", candidate)]
    for attempt in attempts:
        try:
            return json.loads(attempt)
        except _PARSE_ERRORS:
            continue

    # Python-literal style output (single quotes, True/None)
    try:
        value = ast.literal_eval(attempts[-1])
        if isinstance(value, (dict, list)):
            return value
    except _PARSE_ERRORS + (SyntaxError, TypeError):
        pass

    if '"' not in candidate and "'" in candidate:
        try:
            return json.loads(_TRAILING_COMMA_PATTERN.sub(r"\1", candidate.replace("'", '"')))
        except _PARSE_ERRORS:
            pass

    raise ValueError("unparseable candidate")


def extract_json(text: str) -> tuple[Any, bool]:
    """
    Extract a JSON object or array from raw model output.

    Strategies, in order:
        1. Direct parse of the whole text
        2. Fenced code block (```json ... ``` or any language tag)
        3. First balanced {...} / [...] region in the text
        4. Repairs: trailing commas, single quotes, unbalanced closers

    Returns:
        (parsed_value, repaired) — repaired is False only when the text
        parsed directly.

    Raises:
        ValueError: when every strategy fails.
    """
    if text is None or not str(text).strip():
        raise ValueError("All JSON extraction strategies failed: empty input")
    text = str(text).strip()

    try:
        return json.loads(text), False
    except _PARSE_ERRORS:
        pass

    for match in _CODE_BLOCK_PATTERN.finditer(text):
        block = match.group(1).strip()
        start = _first_bracket(block)
        if start < 0:
            continue
        region, _ = _scan_balanced(block, start)
        try:
            return _try_parse(region), True
        except ValueError:
            continue

    start = _first_bracket(text)
    if start >= 0:
        region, _ = _scan_balanced(text, start)
        try:
            return _try_parse(region), True
        except ValueError:
            pass

    raise ValueError("All JSON extraction strategies failed")


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass
class Violation:
    """A single schema violation: where it happened and why."""

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


@dataclass
class ValidationReport:
    value: Any = None
    violations: list[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.violations


def format_loc(loc: tuple[Any, ...]) -> str:
    """Render a pydantic error location as a field path, e.g. criteria[2].weight."""
    path = "$"
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path == "$":
            path = str(part)
        else:
            path += f".{part}"
    return path


def violations_from_error(error: ValidationError) -> list[Violation]:
    return [Violation(path=format_loc(tuple(err["loc"])), reason=err["msg"]) for err in error.errors()]


def validate_output(text: str, schema: type[SchemaT]) -> ValidationReport:
    """
    Extract and validate model output against `schema`.

    Never raises. Parse failures are reported as a single violation at
    path "$"; shape failures as one violation per failing field.
    """
    try:
        raw, repaired = extract_json(text)
    except ValueError as e:
        return ValidationReport(violations=[Violation(path="$", reason=str(e))])

    if repaired:
        logger.debug(f"{schema.__name__}: JSON required repair before parsing")

    try:
        value = schema.model_validate(raw)
    except ValidationError as e:
        return ValidationReport(violations=violations_from_error(e))
    return ValidationReport(value=value)


# ---------------------------------------------------------------------------
# Bounded corrective retry
# ---------------------------------------------------------------------------

MAX_ATTEMPTS = 2  # original prompt + one corrective follow-up


@dataclass
class StructuredResult:
    """Outcome of retry_structured_output(). value is None when both attempts failed."""

    value: Any = None
    violations: list[Violation] = field(default_factory=list)
    attempts: int = 0

    @property
    def retried(self) -> bool:
        return self.attempts > 1


def build_corrective_prompt(user_prompt: str, previous: str, violations: list[Violation]) -> str:
    """Follow-up prompt naming the fields that failed validation."""
    fields = ", ".join(sorted({v.path for v in violations}))
    problems = "\n".join(f"- {v}" for v in violations[:20])
    return f"""{user_prompt}

Your previous response failed validation for fields: {fields}
Problems:
{problems}

Previous response:
{previous[:2000]}

Return ONLY corrected JSON that matches the requested schema exactly."""


async def retry_structured_output(
    model: LanguageModel,
    system_prompt: str,
    user_prompt: str,
    schema: type[SchemaT],
    *,
    check: Callable[[Any], list[Violation]] | None = None,
    temperature: float | None = None,
    label: str = "structured output",
) -> StructuredResult:
    """
    Ask the model for JSON matching `schema`, with one corrective retry.

    Args:
        model: LanguageModel to call
        system_prompt / user_prompt: the original request
        schema: pydantic model the output must validate against
        check: optional semantic check on the validated value; any
            violations it returns are treated like shape violations
        temperature: sampling temperature override
        label: name used in log messages

    Returns:
        StructuredResult — value is the validated model instance, or None
        when both attempts failed or the model call itself raised.
    """
    prompt = user_prompt
    violations: list[Violation] = []

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            text = await model.complete(system_prompt, prompt, json_mode=True, temperature=temperature)
        except Exception as e:
            logger.warning(f"[{label}] model call failed on attempt {attempt}: {e}")
            return StructuredResult(
                violations=[Violation(path="$", reason=f"model call failed: {e}")],
                attempts=attempt,
            )

        report = validate_output(text, schema)
        violations = report.violations
        if report.ok and check is not None:
            violations = check(report.value)

        if not violations:
            if attempt > 1:
                logger.info(f"[{label}] recovered via corrective retry")
            return StructuredResult(value=report.value, attempts=attempt)

        logger.info(
            f"[{label}] attempt {attempt} failed validation: "
            f"{', '.join(str(v) for v in violations[:5])}"
        )
        prompt = build_corrective_prompt(user_prompt, str(text), violations)

    logger.warning(f"[{label}] output still invalid after {MAX_ATTEMPTS} attempts")
    return StructuredResult(violations=violations, attempts=MAX_ATTEMPTS)
