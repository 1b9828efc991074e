"""
Model factory functions and rate limiting for LLM providers.

Contains all provider-specific model factories, the unified create_model()
entry point, rate limiting, timeout logic, and the async
LanguageModelService adapter used by the trade study pipeline.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import threading
import time
from typing import Callable

from config.settings import LLMProvider, Settings, settings

logger = logging.getLogger(__name__)

ModelCallable = Callable[..., str]


# ---------------------------------------------------------------------------
# Provider-specific model factories
# ---------------------------------------------------------------------------

def _create_anthropic_model(model_name: str | None = None, cfg: Settings = settings) -> ModelCallable:
    """Create a Claude (Anthropic) callable."""
    from anthropic import Anthropic

    client = Anthropic(api_key=cfg.anthropic_api_key or os.environ.get("ANTHROPIC_API_KEY"))
    model = model_name or cfg.anthropic_model

    def call(
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        kwargs = {
            "model": model,
            "max_tokens": cfg.max_tokens,
            "temperature": temperature if temperature is not None else cfg.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        response = client.messages.create(**kwargs)
        return response.content[0].text

    return call


def _create_google_model(model_name: str | None = None, cfg: Settings = settings) -> ModelCallable:
    """Create a Gemini (Google) callable."""
    from google import genai

    client = genai.Client(api_key=cfg.google_api_key or os.environ.get("GOOGLE_API_KEY"))
    model = model_name or cfg.google_model

    def call(
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        config = {
            "temperature": temperature if temperature is not None else cfg.temperature,
            "max_output_tokens": cfg.max_tokens,
        }
        if system:
            config["system_instruction"] = system
        if json_mode:
            config["response_mime_type"] = "application/json"
        response = client.models.generate_content(model=model, contents=prompt, config=config)
        return response.text

    return call


def _create_openai_model(model_name: str | None = None, cfg: Settings = settings) -> ModelCallable:
    """Create an OpenAI callable."""
    from openai import OpenAI

    client = OpenAI(api_key=cfg.openai_api_key or os.environ.get("OPENAI_API_KEY"))
    model = model_name or cfg.openai_model

    def call(
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature if temperature is not None else cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    return call


def _create_ollama_model(model_name: str | None = None, cfg: Settings = settings) -> ModelCallable:
    """Create an Ollama (local) callable for open-source models."""
    import ollama as ollama_lib

    model = model_name or cfg.ollama_model
    client = ollama_lib.Client(host=cfg.ollama_base_url)

    # Verify the model is available before returning the callable
    try:
        client.show(model)
    except Exception as exc:
        raise RuntimeError(
            f"Ollama model '{model}' not found. Pull it first:\n\n"
            f"    ollama pull {model}\n\n"
            f"Make sure Ollama is running (ollama serve) and the model name is correct."
        ) from exc

    def call(
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs = {
            "model": model,
            "messages": messages,
            "options": {
                "temperature": temperature if temperature is not None else cfg.temperature,
                "num_predict": cfg.max_tokens,
            },
        }
        # JSON mode: instruct Ollama to constrain output to valid JSON
        if json_mode or _prompt_requests_json(prompt):
            kwargs["format"] = "json"
        response = client.chat(**kwargs)
        return response["message"]["content"]

    return call


def _prompt_requests_json(prompt: str) -> bool:
    """Heuristic: detect if a prompt is asking for JSON output."""
    indicators = [
        "Respond ONLY with JSON",
        "Respond in valid JSON",
        "respond with a JSON",
        "JSON object",
        "JSON matching this",
    ]
    return any(ind.lower() in prompt.lower() for ind in indicators)


# ---------------------------------------------------------------------------
# Unified model factory
# ---------------------------------------------------------------------------

PROVIDER_FACTORIES = {
    LLMProvider.ANTHROPIC: _create_anthropic_model,
    LLMProvider.GOOGLE: _create_google_model,
    LLMProvider.OPENAI: _create_openai_model,
    LLMProvider.OLLAMA: _create_ollama_model,
}


# ---------------------------------------------------------------------------
# Timeout wrapper — prevents indefinite hangs on LLM calls
# ---------------------------------------------------------------------------

class ModelTimeout(Exception):
    """Raised when an LLM call exceeds the configured timeout."""


def with_timeout(model_fn: ModelCallable, timeout_seconds: float) -> ModelCallable:
    """Wrap a model callable with a timeout guard.

    If the call exceeds *timeout_seconds*, raises ModelTimeout.
    If timeout_seconds <= 0, returns the model unchanged (no timeout).
    """
    if timeout_seconds <= 0:
        return model_fn

    def timed_call(prompt: str, **kwargs) -> str:
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = pool.submit(model_fn, prompt, **kwargs)
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            raise ModelTimeout(f"LLM call timed out after {timeout_seconds:.0f}s")
        finally:
            pool.shutdown(wait=False)

    timed_call._original_model = model_fn
    timed_call._timeout_seconds = timeout_seconds
    return timed_call


# ---------------------------------------------------------------------------
# Rate limiter — wraps model callable to respect per-minute token budgets
# ---------------------------------------------------------------------------

def provider_rate_limits(cfg: Settings = settings) -> dict[LLMProvider, dict[str, int]]:
    """Provider-specific rate limits. Ollama runs unrestricted."""
    return {
        LLMProvider.ANTHROPIC: {
            "max_rpm": cfg.rate_limit_rpm,
            "max_input_tpm": cfg.rate_limit_input_tpm,
            "max_output_tpm": cfg.rate_limit_output_tpm,
        },
        LLMProvider.OPENAI: {
            "max_rpm": 400,
            "max_input_tpm": 80_000,
            "max_output_tpm": 25_000,
        },
        LLMProvider.GOOGLE: {
            "max_rpm": 300,
            "max_input_tpm": 80_000,
            "max_output_tpm": 25_000,
        },
    }


class RateLimitedModel:
    """
    Wraps a model callable with per-minute token budget enforcement.

    Uses a 60-second sliding window to track requests and token usage.
    Thread-safe: concurrent research synthesis and assumption validation
    run model calls on worker threads that coordinate through a shared lock.

    Token estimation: ~1.33 tokens per whitespace-separated word.
    A limit of 0 disables that dimension.
    """

    def __init__(
        self,
        model_fn: ModelCallable,
        max_rpm: int = 50,
        max_input_tpm: int = 30_000,
        max_output_tpm: int = 8_000,
    ):
        self._model = model_fn
        self._max_rpm = max_rpm
        self._max_input_tpm = max_input_tpm
        self._max_output_tpm = max_output_tpm
        self._call_log: list[tuple[float, int, int]] = []  # (timestamp, in_tokens, out_tokens)
        self._lock = threading.Lock()

    @staticmethod
    def _estimate_tokens(text: str) -> int:
        """Word-based token estimate: ~1.33 tokens per whitespace-separated word."""
        return int(len(text.split()) * 4 / 3)

    def _prune_old(self) -> None:
        """Remove entries older than 60 seconds from the sliding window."""
        cutoff = time.time() - 60
        self._call_log = [(t, i, o) for t, i, o in self._call_log if t > cutoff]

    def _has_budget(self, input_tokens: int) -> bool:
        used_rpm = len(self._call_log)
        used_input = sum(i for _, i, _ in self._call_log)
        used_output = sum(o for _, _, o in self._call_log)
        if self._max_rpm and used_rpm >= self._max_rpm:
            return False
        if self._max_input_tpm and used_input + input_tokens > self._max_input_tpm:
            return False
        if self._max_output_tpm and used_output >= self._max_output_tpm:
            return False
        return True

    def _wait_for_budget(self, input_tokens: int) -> None:
        """Block until the sliding window has enough budget for this call."""
        while True:
            with self._lock:
                self._prune_old()
                if not self._call_log or self._has_budget(input_tokens):
                    return

                oldest = self._call_log[0][0]
                wait_secs = max(0, 60 - (time.time() - oldest)) + 0.5

            logger.debug(f"Rate limiter: waiting {wait_secs:.1f}s for budget ({input_tokens} input tokens)")
            time.sleep(min(wait_secs, 5.0))  # cap individual sleep at 5s for responsiveness

    def __call__(self, prompt: str, **kwargs) -> str:
        input_tokens = self._estimate_tokens(prompt) + self._estimate_tokens(kwargs.get("system") or "")
        self._wait_for_budget(input_tokens)

        result = self._model(prompt, **kwargs)
        output_tokens = self._estimate_tokens(result or "")

        with self._lock:
            self._call_log.append((time.time(), input_tokens, output_tokens))

        return result


def create_model(
    provider: LLMProvider | None = None,
    model_name: str | None = None,
    cfg: Settings = settings,
) -> ModelCallable:
    """
    Create the LLM callable for the given provider.

    Every provider returns the same callable shape:
        call(prompt, *, system=None, temperature=None, json_mode=False) -> str
    so the pipeline never knows which LLM it is talking to.

    Hosted providers are wrapped with a RateLimitedModel, and every
    provider gets a timeout guard.

    Args:
        provider: Which LLM backend to use (defaults to cfg.resolve_provider())
        model_name: Specific model to use (overrides settings default)
        cfg: Settings instance
    """
    provider = provider or cfg.resolve_provider()
    factory = PROVIDER_FACTORIES.get(provider)
    if not factory:
        raise ValueError(f"Unknown provider: {provider}")

    model_fn = factory(model_name=model_name, cfg=cfg)

    limits = provider_rate_limits(cfg).get(provider)
    if limits:
        logger.info(
            f"Rate limiter active for {provider.value}: "
            f"{limits['max_rpm']} RPM, {limits['max_input_tpm']} input TPM"
        )
        model_fn = RateLimitedModel(model_fn, **limits)

    if cfg.model_timeout_seconds > 0:
        model_fn = with_timeout(model_fn, cfg.model_timeout_seconds)

    return model_fn


# ---------------------------------------------------------------------------
# Async adapter
# ---------------------------------------------------------------------------

class LanguageModelService:
    """
    Async language model service over a synchronous provider callable.

    Calls run on a worker thread so the event loop keeps serving
    concurrent fetches while a completion is in flight.
    """

    def __init__(self, model_fn: ModelCallable, name: str = ""):
        self._model = model_fn
        self.name = name

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> str:
        response = await asyncio.to_thread(
            self._model,
            user_prompt,
            system=system_prompt,
            temperature=temperature,
            json_mode=json_mode,
        )
        return response if isinstance(response, str) else str(response)


def create_language_model_service(cfg: Settings = settings) -> LanguageModelService | None:
    """
    Build the LanguageModelService for the configured provider.

    Returns None when the provider cannot be initialized (e.g. no API keys
    and no local Ollama), in which case every model-backed step uses its
    deterministic fallback.
    """
    provider = cfg.resolve_provider()
    try:
        model_fn = create_model(provider=provider, cfg=cfg)
    except Exception as e:
        logger.warning(f"Language model unavailable ({provider.value}): {e}; using fallbacks")
        return None
    return LanguageModelService(model_fn, name=f"{provider.value}:{cfg.get_active_model()}")
