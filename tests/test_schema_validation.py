"""
Tests for schema validation of model output and the bounded corrective retry.
"""

from __future__ import annotations

import pytest
from pydantic import BaseModel, Field

from agents.base import (
    MAX_ATTEMPTS,
    Criterion,
    TradeStudyAnalysis,
    Violation,
    build_corrective_prompt,
    format_loc,
    retry_structured_output,
    validate_output,
)
from tests.fakes import MockLanguageModel


class CriteriaList(BaseModel):
    criteria: list[Criterion] = Field(min_length=2)


# ---------------------------------------------------------------------------
# validate_output()
# ---------------------------------------------------------------------------

class TestValidateOutput:
    def test_valid_output(self):
        report = validate_output(
            '{"criteria": [{"name": "Cost", "weight": 0.5}, {"name": "Latency", "weight": 0.5}]}',
            CriteriaList,
        )
        assert report.ok
        assert report.value.criteria[1].name == "Latency"
        assert report.violations == []

    def test_unparseable_reports_root_path(self):
        report = validate_output("I cannot answer that.", CriteriaList)
        assert not report.ok
        assert report.value is None
        assert len(report.violations) == 1
        assert report.violations[0].path == "$"

    def test_field_path_for_nested_violation(self):
        text = (
            '{"criteria": [{"name": "Cost", "weight": 0.5}, {"name": "Latency", "weight": 0.5},'
            ' {"name": "Ops", "weight": 3}]}'
        )
        report = validate_output(text, CriteriaList)
        assert not report.ok
        assert [v.path for v in report.violations] == ["criteria[2].weight"]

    def test_missing_field_reported(self):
        report = validate_output('{"criteria": [{"weight": 0.5}, {"name": "Cost"}]}', CriteriaList)
        paths = {v.path for v in report.violations}
        assert "criteria[0].name" in paths

    def test_too_short_list(self):
        report = validate_output('{"criteria": [{"name": "Cost", "weight": 0.5}]}', CriteriaList)
        assert [v.path for v in report.violations] == ["criteria"]

    def test_fenced_output_validates(self):
        text = '```json\n{"summary": "ok", "nextSteps": ["a"]}\n```'
        report = validate_output(text, TradeStudyAnalysis)
        assert report.ok
        assert report.value.next_steps == ["a"]

    def test_never_raises_on_non_object(self):
        report = validate_output("[1, 2, 3]", CriteriaList)
        assert not report.ok
        assert report.violations

    @pytest.mark.parametrize("text", [
        "[" * 5000 + "]" * 5000,
        '{"criteria": ' + "[" * 3000,
        "```json\n" + "{\"a\": " * 3000 + "\n```",
    ])
    def test_runaway_nesting_reported_at_root(self, text):
        report = validate_output(text, CriteriaList)
        assert report.value is None
        assert [v.path for v in report.violations] == ["$"]


class TestFormatLoc:
    @pytest.mark.parametrize("loc, expected", [
        ((), "$"),
        (("summary",), "summary"),
        (("criteria", 2, "weight"), "criteria[2].weight"),
        ((0, "name"), "$[0].name"),
        (("scores", "Cost"), "scores.Cost"),
    ])
    def test_paths(self, loc, expected):
        assert format_loc(loc) == expected

    def test_violation_str(self):
        assert str(Violation("criteria[0].name", "Field required")) == "criteria[0].name: Field required"


# ---------------------------------------------------------------------------
# retry_structured_output()
# ---------------------------------------------------------------------------

GOOD = '{"criteria": [{"name": "Cost", "weight": 0.5}, {"name": "Latency", "weight": 0.5}]}'
BAD = '{"criteria": [{"name": "Cost", "weight": 7}]}'


class TestRetryStructuredOutput:
    async def test_first_attempt_succeeds(self):
        model = MockLanguageModel([GOOD])
        result = await retry_structured_output(model, "sys", "user", CriteriaList)
        assert result.value is not None
        assert result.attempts == 1
        assert not result.retried
        assert len(model.calls) == 1
        assert model.calls[0]["json_mode"] is True

    async def test_corrective_retry_recovers(self):
        model = MockLanguageModel([BAD, GOOD])
        result = await retry_structured_output(model, "sys", "user", CriteriaList)
        assert result.value is not None
        assert result.retried
        followup = model.calls[1]["user"]
        assert followup.startswith("user")
        assert "failed validation for fields:" in followup
        assert "criteria[0].weight" in followup

    async def test_at_most_two_attempts(self):
        model = MockLanguageModel([BAD, BAD, GOOD])
        result = await retry_structured_output(model, "sys", "user", CriteriaList)
        assert result.value is None
        assert result.attempts == MAX_ATTEMPTS == 2
        assert len(model.calls) == 2
        assert result.violations

    async def test_model_exception_returns_without_retry(self):
        model = MockLanguageModel([RuntimeError("provider down"), GOOD])
        result = await retry_structured_output(model, "sys", "user", CriteriaList)
        assert result.value is None
        assert len(model.calls) == 1
        assert "provider down" in result.violations[0].reason

    async def test_semantic_check_triggers_retry(self):
        def no_cost(value: CriteriaList) -> list[Violation]:
            return [Violation(f"criteria[{i}].name", "Cost not allowed")
                    for i, c in enumerate(value.criteria) if c.name == "Cost"]

        other = '{"criteria": [{"name": "Ops", "weight": 0.5}, {"name": "Latency", "weight": 0.5}]}'
        model = MockLanguageModel([GOOD, other])
        result = await retry_structured_output(model, "sys", "user", CriteriaList, check=no_cost)
        assert result.value.criteria[0].name == "Ops"
        assert "criteria[0].name" in model.calls[1]["user"]

    async def test_temperature_forwarded(self):
        model = MockLanguageModel([GOOD])
        await retry_structured_output(model, "sys", "user", CriteriaList, temperature=0.3)
        assert model.calls[0]["temperature"] == 0.3


class TestCorrectivePrompt:
    def test_lists_each_field_once(self):
        violations = [Violation("a", "x"), Violation("a", "y"), Violation("b.c", "z")]
        prompt = build_corrective_prompt("original", "prev", violations)
        assert "failed validation for fields: a, b.c" in prompt
        assert "- b.c: z" in prompt
        assert "prev" in prompt
