"""
Tests for the goal orchestrators.

Runs the base and research-augmented agents end-to-end against the
in-memory store, a fake publisher and scripted models.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from agents.base import (
    PublishTargets,
    ResearchDepth,
    ResearchFinding,
    ResearchSource,
    StepStatus,
    TradeStudyStatus,
)
from orchestrator.agent import (
    AgentGoal,
    AgentRequest,
    ResearchParams,
    build_research_context,
)
from tests.fakes import FakeFetcher, FakePublisher, FakeSearch, MockLanguageModel, search_results


def _analysis(updated_data=None, summary="Looks reasonable") -> str:
    payload = {"summary": summary, "recommendations": ["Decide"], "next_steps": ["Review"]}
    if updated_data is not None:
        payload["updated_data"] = updated_data
    return json.dumps(payload)


def _request(goal: AgentGoal, study_id: str = "vector-db", **kwargs) -> AgentRequest:
    return AgentRequest(trade_study_id=study_id, goal=goal, **kwargs)


# ---------------------------------------------------------------------------
# Base orchestrator
# ---------------------------------------------------------------------------

class TestNotFound:
    async def test_analyze_unknown_study(self, make_services):
        services = make_services()
        result = await services.agent.run(_request(AgentGoal.ANALYZE, "nonexistent"))

        assert result.success is False
        assert result.study is None
        assert result.error == "Trade study not found"
        assert len(result.steps) == 1
        step = result.steps[0]
        assert (step.tool, step.status, step.message) == (
            "load_trade_study", StepStatus.ERROR, "Trade study not found",
        )

    async def test_research_agent_unknown_study(self, make_services):
        services = make_services()
        result = await services.research_agent.run(_request(AgentGoal.RESEARCH_TOPIC, "nonexistent"))
        assert result.success is False
        assert [s.tool for s in result.steps] == ["load_trade_study"]


class TestAnalyzeGoals:
    async def test_analyze_replaces_data(self, make_services, store):
        new_data = {"criteria": ["Latency", "Cost"], "gaps": ["No benchmark plan"]}
        services = make_services(model=MockLanguageModel([_analysis(new_data)]))
        result = await services.agent.run(_request(AgentGoal.ANALYZE))

        assert result.success is True
        assert [(s.tool, s.status) for s in result.steps] == [
            ("load_trade_study", StepStatus.OK),
            ("analyze_with_llm", StepStatus.OK),
            ("update_trade_study", StepStatus.OK),
        ]
        assert result.steps[0].message == 'Loaded "Vector database for AI agent"'
        assert result.steps[1].message == "Completed analyze analysis"
        assert result.study.data == new_data
        assert (await store.load_by_id("vector-db")).data == new_data

    @pytest.mark.parametrize("goal, tag", [
        (AgentGoal.ANALYZE, "identify gaps in the analysis"),
        (AgentGoal.SUMMARIZE, "provide a clear summary"),
        (AgentGoal.SCORE, "evaluate and score each option"),
    ])
    async def test_goal_maps_to_analysis_instruction(self, make_services, goal, tag):
        model = MockLanguageModel([_analysis()])
        services = make_services(model=model)
        result = await services.agent.run(_request(goal, extra_context="Budget is tight"))

        assert result.success
        assert tag in model.calls[0]["system"]
        assert "Budget is tight" in model.calls[0]["user"]
        assert result.analysis.summary == "Looks reasonable"
        assert len(result.steps) == 2

    async def test_no_model_uses_fallback(self, make_services, store):
        services = make_services(model=None)
        before = await store.load_by_id("vector-db")
        result = await services.agent.run(_request(AgentGoal.SUMMARIZE))

        assert result.success
        assert "unavailable" in result.analysis.summary
        assert result.analysis.updated_data is None
        assert result.study.data == before.data

    async def test_runaway_model_output_falls_back(self, make_services):
        services = make_services(model=MockLanguageModel(lambda system, user: "{" * 5000))
        result = await services.agent.run(_request(AgentGoal.ANALYZE))

        assert result.success
        assert "unavailable" in result.analysis.summary
        assert result.analysis.updated_data is None

    async def test_update_failure_does_not_fail_run(self, make_services, store, monkeypatch):
        services = make_services(model=MockLanguageModel([_analysis({"x": 1})]))

        async def broken_update(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "update", broken_update)
        result = await services.agent.run(_request(AgentGoal.ANALYZE))

        assert result.success is True
        last = result.steps[-1]
        assert last.tool == "update_trade_study"
        assert last.status == StepStatus.ERROR
        assert "disk full" in last.message

    async def test_tool_exception_is_failed_state(self, make_services, monkeypatch):
        services = make_services(model=None)

        async def boom(*args, **kwargs):
            raise RuntimeError("analyst crashed")

        monkeypatch.setattr(services.analyst, "analyze", boom)
        result = await services.agent.run(_request(AgentGoal.ANALYZE))

        assert result.success is False
        assert result.study is None
        assert result.error == "analyst crashed"
        assert result.steps[0].tool == "load_trade_study"
        assert (result.steps[-1].tool, result.steps[-1].status) == ("orchestrator", StepStatus.ERROR)

    async def test_research_goal_unsupported_by_base_agent(self, make_services):
        services = make_services()
        result = await services.agent.run(_request(AgentGoal.RESEARCH_TOPIC))
        assert result.success is False
        assert result.steps[-1].tool == "orchestrator"
        assert "research_topic" in result.error
        assert AgentGoal.RESEARCH_TOPIC not in services.agent.supported_goals


class TestPublishGoal:
    async def test_no_targets_is_single_skipped_step(self, make_services, publisher):
        services = make_services()
        result = await services.agent.run(_request(AgentGoal.PUBLISH))

        assert result.success is True
        assert [(s.tool, s.status) for s in result.steps[1:]] == [("publish_to_google", StepStatus.SKIPPED)]
        assert result.steps[1].message == "No publish targets specified"
        assert result.publish_results is None
        assert publisher.calls == []

    async def test_all_flags_false_is_skipped(self, make_services, publisher):
        services = make_services()
        result = await services.agent.run(_request(AgentGoal.PUBLISH, publish_targets=PublishTargets()))
        assert result.steps[-1].status == StepStatus.SKIPPED
        assert publisher.calls == []

    async def test_publish_selected_targets(self, make_services, publisher):
        services = make_services()
        result = await services.agent.run(_request(
            AgentGoal.PUBLISH, "airflow-vs-dbt",
            publish_targets=PublishTargets(doc=True, drive=True),
            folder_id="folder-1",
        ))

        assert result.success
        assert [r.target for r in result.publish_results] == ["Google Docs", "Google Drive"]
        assert all(r.status == StepStatus.OK for r in result.publish_results)
        assert result.steps[-1].message == "Published to 2 target(s)"
        assert [m for m, _ in publisher.calls] == ["create_document", "upload_file"]
        # one demo attachment plus the two new ones
        assert len(result.study.attachments) == 3

    async def test_failed_target_reported_not_raised(self, make_services):
        publisher = FakePublisher(failures={"create_spreadsheet": "raise"})
        services = make_services(publisher=publisher)
        result = await services.agent.run(_request(
            AgentGoal.PUBLISH, publish_targets=PublishTargets(sheet=True, slides=True),
        ))
        assert result.success
        assert [r.status for r in result.publish_results] == [StepStatus.ERROR, StepStatus.OK]


class TestFullWorkflow:
    async def test_draft_sets_in_review(self, make_services, store):
        services = make_services(model=MockLanguageModel([_analysis({"decision": "Use dbt"})]))
        result = await services.agent.run(_request(AgentGoal.FULL_WORKFLOW, "airflow-vs-dbt"))

        assert result.success
        assert "draft a decision proposal" in services.analyst.model.calls[0]["system"]
        assert [s.message for s in result.steps[1:]] == [
            "Drafted proposal",
            "Updated study status to in_review",
        ]
        assert result.study.status == TradeStudyStatus.IN_REVIEW
        assert result.study.data == {"decision": "Use dbt"}

    async def test_without_updated_data_status_unchanged(self, make_services):
        services = make_services(model=MockLanguageModel([_analysis()]))
        result = await services.agent.run(_request(AgentGoal.FULL_WORKFLOW, "airflow-vs-dbt"))
        assert result.study.status == TradeStudyStatus.DRAFT
        assert [s.tool for s in result.steps] == ["load_trade_study", "analyze_with_llm"]

    async def test_publishes_when_targets_given(self, make_services):
        services = make_services(model=MockLanguageModel([_analysis({"decision": "Use dbt"})]))
        result = await services.agent.run(_request(
            AgentGoal.FULL_WORKFLOW, "airflow-vs-dbt", publish_targets=PublishTargets(slides=True),
        ))
        assert [s.tool for s in result.steps][-1] == "publish_to_google"
        assert [r.target for r in result.publish_results] == ["Google Slides"]


# ---------------------------------------------------------------------------
# Research orchestrator
# ---------------------------------------------------------------------------

URLS = ["https://docs.example/pinecone", "https://docs.example/weaviate"]


@pytest.fixture
def research_collaborators():
    search = FakeSearch(results=search_results(*URLS))
    fetcher = FakeFetcher({u: f"Benchmarks for {u}. Latency is low." for u in URLS})
    return search, fetcher


class TestResearchTopic:
    async def test_defaults_to_study_title(self, make_services, research_collaborators):
        search, fetcher = research_collaborators
        services = make_services(search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(AgentGoal.RESEARCH_TOPIC))

        assert result.success
        assert search.queries == [("Vector database for AI agent", ResearchDepth.STANDARD)]
        assert result.steps[-1].message == 'Researched "Vector database for AI agent" with 2 sources'
        assert [s.url for s in result.research_findings.sources] == URLS

    async def test_explicit_params(self, make_services, research_collaborators):
        search, fetcher = research_collaborators
        services = make_services(search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(
            AgentGoal.RESEARCH_TOPIC,
            research_params=ResearchParams(topic="pgvector at scale", depth=ResearchDepth.DEEP),
        ))
        assert search.queries == [("pgvector at scale", ResearchDepth.DEEP)]
        assert result.research_findings.topic == "pgvector at scale"

    async def test_base_goals_still_supported(self, make_services):
        services = make_services()
        result = await services.research_agent.run(_request(AgentGoal.PUBLISH))
        assert result.success
        assert result.steps[-1].status == StepStatus.SKIPPED


class TestEnrichWithResearch:
    async def test_stamps_research_onto_existing_data(self, make_services, research_collaborators):
        search, fetcher = research_collaborators
        model = MockLanguageModel(lambda system, user: _analysis())
        services = make_services(model=model, search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(AgentGoal.ENRICH_WITH_RESEARCH))

        assert result.success
        assert [s.message for s in result.steps[1:]] == [
            'Researched "Vector database for AI agent"',
            "Analyzed study with research findings",
            "Updated study with research findings",
        ]
        data = result.study.data
        assert data["notes"] == "Awaiting benchmarks"
        assert [s["url"] for s in data["researchSources"]] == URLS
        assert data["lastResearchDate"]

        analysis_prompt = next(c["user"] for c in model.calls if "technical consultant" in c["system"])
        assert "RESEARCH FINDINGS:" in analysis_prompt
        assert "https://docs.example/pinecone" in analysis_prompt

    async def test_updated_data_replaces_then_stamps(self, make_services, research_collaborators):
        search, fetcher = research_collaborators

        def respond(system, user):
            if "research analyst" in system:
                return json.dumps({"summary": "Both are fast.", "key_findings": ["Low latency"]})
            return _analysis({"criteria": ["Latency"]})

        services = make_services(model=MockLanguageModel(respond), search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(AgentGoal.ENRICH_WITH_RESEARCH))

        assert set(result.study.data) == {"criteria", "researchSources", "lastResearchDate"}
        assert result.research_findings.summary == "Both are fast."


class TestValidateAssumptions:
    async def test_no_assumptions_skipped(self, make_services):
        services = make_services()
        result = await services.research_agent.run(_request(AgentGoal.VALIDATE_ASSUMPTIONS))
        assert result.success
        step = result.steps[-1]
        assert (step.tool, step.status, step.message) == (
            "validate_assumptions", StepStatus.SKIPPED, "No assumptions found to validate",
        )

    async def test_first_three_validated_in_order(self, make_services, store, research_collaborators):
        search, fetcher = research_collaborators
        await store.update("vector-db", data={"assumptions": ["A1", "A2", "A3", "A4"]})
        services = make_services(search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(AgentGoal.VALIDATE_ASSUMPTIONS))

        assert sorted(q for q, _ in search.queries) == ["Validate: A1", "Validate: A2", "Validate: A3"]
        assert {d for _, d in search.queries} == {ResearchDepth.QUICK}
        findings = result.research_findings
        assert findings.topic == "Assumption Validation"
        assert findings.summary == "Validated 3 assumptions"
        assert [f.split(":")[0] for f in findings.key_findings] == ["A1", "A2", "A3"]
        # two sources kept per assumption
        assert len(findings.sources) == 6
        assert result.steps[-1].message == "Validated 3 assumptions"

    async def test_failed_assumption_dropped(self, make_services, store, monkeypatch):
        await store.update("vector-db", data={"assumptions": ["A1", "A2"]})
        services = make_services()

        async def research(topic, depth=ResearchDepth.STANDARD, sources=None):
            if topic.endswith("A1"):
                raise RuntimeError("timeout")
            return ResearchFinding(
                topic=topic, summary="Holds up",
                sources=[ResearchSource(title="s", url="https://s.example")],
            )

        monkeypatch.setattr(services.research, "research", research)
        result = await services.research_agent.run(_request(AgentGoal.VALIDATE_ASSUMPTIONS))

        assert result.success
        assert result.research_findings.summary == "Validated 1 assumptions"
        assert result.research_findings.key_findings == ["A2: Holds up"]

    async def test_aggregated_in_input_order_not_completion_order(self, make_services, store, monkeypatch):
        await store.update("vector-db", data={"assumptions": ["A1", "A2", "A3"]})
        services = make_services()
        delays = {"A1": 0.05, "A2": 0.02, "A3": 0.0}
        completed = []

        async def research(topic, depth=ResearchDepth.STANDARD, sources=None):
            name = topic.removeprefix("Validate: ")
            await asyncio.sleep(delays[name])
            completed.append(name)
            return ResearchFinding(
                topic=topic, summary=f"{name} holds",
                sources=[ResearchSource(title=f"{name} source", url=f"https://{name.lower()}.example")],
            )

        monkeypatch.setattr(services.research, "research", research)
        result = await services.research_agent.run(_request(AgentGoal.VALIDATE_ASSUMPTIONS))

        assert completed == ["A3", "A2", "A1"]
        findings = result.research_findings
        assert findings.key_findings == ["A1: A1 holds", "A2: A2 holds", "A3: A3 holds"]
        assert [s.title for s in findings.sources] == ["A1 source", "A2 source", "A3 source"]


class TestResearchFullWorkflow:
    async def test_research_before_draft(self, make_services, research_collaborators):
        search, fetcher = research_collaborators
        model = MockLanguageModel(lambda system, user: _analysis({"decision": "pgvector"}))
        services = make_services(model=model, search=search, fetcher=fetcher)
        result = await services.research_agent.run(_request(
            AgentGoal.FULL_WORKFLOW, publish_targets=PublishTargets(doc=True),
        ))

        assert [s.tool for s in result.steps] == [
            "load_trade_study",
            "research_context",
            "analyze_with_llm",
            "update_trade_study",
            "publish_to_google",
        ]
        assert result.study.status == TradeStudyStatus.IN_REVIEW
        assert result.study.data["decision"] == "pgvector"
        assert [s["url"] for s in result.study.data["researchSources"]] == URLS
        draft_prompt = next(c for c in model.calls if "draft a decision proposal" in c["system"])
        assert "KEY FINDINGS:" in draft_prompt["user"]


class TestBuildResearchContext:
    def test_layout(self):
        finding = ResearchFinding(
            topic="t", summary="Summary here", key_findings=["one", "two"],
            sources=[ResearchSource(title="Doc", url="https://d.example")],
        )
        text = build_research_context("Prior notes", finding)
        assert text.startswith("Prior notes\n\nRESEARCH FINDINGS:\nSummary here")
        assert "KEY FINDINGS:\n1. one\n2. two" in text
        assert text.endswith("SOURCES:\n- Doc: https://d.example")

    def test_without_extra_context(self):
        finding = ResearchFinding(topic="t", summary="S")
        assert build_research_context(None, finding).startswith("RESEARCH FINDINGS:")
