"""
Tests for LLM provider resolution, the model wrappers, and the async
LanguageModelService adapter.

Verifies that resolve_provider() correctly selects the active provider
based on configured API keys, falling back to Ollama when no keys are set.
"""

from __future__ import annotations

import time

import pytest

from app_lib.model_factory import (
    LanguageModelService,
    ModelTimeout,
    RateLimitedModel,
    create_language_model_service,
    with_timeout,
)
from config.settings import LLMProvider, Settings


def _make_settings(**overrides) -> Settings:
    """Create a Settings instance with explicit values, bypassing .env."""
    defaults = {
        "llm_provider": LLMProvider.ANTHROPIC,
        "anthropic_api_key": None,
        "google_api_key": None,
        "openai_api_key": None,
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class TestResolveProvider:
    """Test Settings.resolve_provider() fallback logic."""

    def test_no_keys_defaults_to_ollama(self):
        """No API keys set at all → falls back to Ollama."""
        s = _make_settings()
        assert s.resolve_provider() == LLMProvider.OLLAMA
        assert s.has_llm_credentials() is False

    def test_anthropic_key_returns_anthropic(self):
        s = _make_settings(anthropic_api_key="sk-ant-test")
        assert s.resolve_provider() == LLMProvider.ANTHROPIC
        assert s.has_llm_credentials() is True

    def test_google_key_returns_google(self):
        s = _make_settings(llm_provider=LLMProvider.GOOGLE, google_api_key="test-google-key")
        assert s.resolve_provider() == LLMProvider.GOOGLE

    def test_openai_key_returns_openai(self):
        s = _make_settings(llm_provider=LLMProvider.OPENAI, openai_api_key="sk-test")
        assert s.resolve_provider() == LLMProvider.OPENAI

    def test_ollama_selected_with_other_keys_still_ollama(self):
        """Ollama explicitly selected → returns Ollama even if other keys exist."""
        s = _make_settings(
            llm_provider=LLMProvider.OLLAMA,
            anthropic_api_key="sk-ant-test",
            google_api_key="test-google-key",
        )
        assert s.resolve_provider() == LLMProvider.OLLAMA

    def test_selected_provider_no_key_falls_to_other(self):
        """Anthropic selected but no Anthropic key, Google key exists → returns Google."""
        s = _make_settings(llm_provider=LLMProvider.ANTHROPIC, google_api_key="test-google-key")
        assert s.resolve_provider() == LLMProvider.GOOGLE


class TestGetActiveModel:
    def test_openai_model(self):
        s = _make_settings(llm_provider=LLMProvider.OPENAI, openai_api_key="sk-test")
        assert s.get_active_model() == s.openai_model

    def test_falls_back_to_ollama_model(self):
        s = _make_settings(llm_provider=LLMProvider.OPENAI)
        assert s.get_active_model() == s.ollama_model

    def test_research_defaults(self):
        s = _make_settings()
        assert s.research_max_content_chars == 5000
        assert s.research_source_excerpt_chars == 1000
        assert s.default_owner_id == "demo-user"


class TestLLMProviderEnum:
    def test_all_providers_present(self):
        providers = {p.value for p in LLMProvider}
        assert providers == {"anthropic", "google", "openai", "ollama"}

    def test_string_enum(self):
        assert LLMProvider.OLLAMA == "ollama"


class TestWrappers:
    def test_timeout_disabled_returns_same_callable(self):
        def fn(prompt, **kwargs):
            return "ok"

        assert with_timeout(fn, 0) is fn

    def test_timeout_raises(self):
        def slow(prompt, **kwargs):
            time.sleep(0.5)
            return "late"

        wrapped = with_timeout(slow, 0.05)
        with pytest.raises(ModelTimeout):
            wrapped("hello")

    def test_rate_limited_model_passes_kwargs(self):
        seen = {}

        def fn(prompt, **kwargs):
            seen.update(kwargs)
            return "four word reply here"

        model = RateLimitedModel(fn, max_rpm=10, max_input_tpm=10_000, max_output_tpm=10_000)
        assert model("hi there", system="sys", json_mode=True) == "four word reply here"
        assert seen == {"system": "sys", "json_mode": True}
        assert len(model._call_log) == 1


class TestLanguageModelService:
    async def test_complete_forwards_prompts(self):
        calls = []

        def fn(prompt, *, system=None, temperature=None, json_mode=False):
            calls.append((prompt, system, temperature, json_mode))
            return '{"ok": true}'

        service = LanguageModelService(fn, name="mock")
        text = await service.complete("system text", "user text", json_mode=True, temperature=0.3)

        assert text == '{"ok": true}'
        assert calls == [("user text", "system text", 0.3, True)]

    async def test_non_string_response_is_stringified(self):
        service = LanguageModelService(lambda prompt, **kw: 42)
        assert await service.complete("s", "u") == "42"

    def test_unavailable_provider_returns_none(self, monkeypatch):
        from app_lib import model_factory

        def broken(model_name=None, cfg=None):
            raise RuntimeError("ollama not running")

        monkeypatch.setitem(model_factory.PROVIDER_FACTORIES, LLMProvider.OLLAMA, broken)
        assert create_language_model_service(_make_settings()) is None
