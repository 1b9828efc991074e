"""
Application settings with Pydantic validation.
Supports .env file and environment variable overrides.

Supported LLM providers:
    - anthropic  (Claude)
    - openai     (GPT)
    - google     (Gemini)
    - ollama     (local open-source models)

External services (all optional — missing credentials degrade to
placeholder / skipped behavior instead of failing):
    - Tavily web search
    - Google Workspace publishing (service account)
    - SQLite persistence (in-memory store when unset)
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OLLAMA = "ollama"


class Settings(BaseSettings):
    """Global application settings loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- LLM Provider ---
    llm_provider: LLMProvider = Field(
        default=LLMProvider.OPENAI,
        description="Which LLM backend to use: anthropic, openai, google, ollama",
    )

    # --- Anthropic (Claude) ---
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Anthropic model name",
    )

    # --- OpenAI ---
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o", description="OpenAI model name")

    # --- Google (Gemini) ---
    google_api_key: str | None = Field(default=None, description="Google AI API key")
    google_model: str = Field(
        default="gemini-2.0-flash",
        description="Google Gemini model name",
    )

    # --- Ollama (local open-source) ---
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model name (must be pulled first)",
    )

    # --- Generation Parameters ---
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="LLM temperature (global default)")
    scoring_temperature: float = Field(
        default=0.3, ge=0.0, le=2.0,
        description="Lower temperature used for criterion-by-alternative scoring",
    )
    max_tokens: int = Field(default=4096, ge=256, description="Max output tokens per LLM call")

    # --- LLM Call Timeout ---
    model_timeout_seconds: float = Field(
        default=120.0, ge=0.0,
        description="Timeout in seconds for individual LLM calls (0 = no timeout)",
    )

    # --- Rate Limiting ---
    # Set any value to 0 to disable that limit.
    rate_limit_rpm: int = Field(default=45, ge=0, description="Requests per minute for hosted providers")
    rate_limit_input_tpm: int = Field(default=25000, ge=0, description="Input tokens per minute")
    rate_limit_output_tpm: int = Field(default=7000, ge=0, description="Output tokens per minute")

    # --- Research ---
    tavily_api_key: str | None = Field(default=None, description="Tavily search API key")
    research_fetch_timeout_seconds: float = Field(
        default=15.0, gt=0.0,
        description="Timeout for fetching a single web page",
    )
    research_max_content_chars: int = Field(
        default=5000, ge=100,
        description="Fetched page text is truncated to this many characters",
    )
    research_max_fetch_bytes: int = Field(
        default=2_000_000, ge=1024,
        description="At most this many bytes of a page body are read before parsing",
    )
    research_source_excerpt_chars: int = Field(
        default=1000, ge=100,
        description="Per-source excerpt length passed into research synthesis",
    )

    # --- Publishing (Google Workspace) ---
    google_service_account_file: str | None = Field(
        default=None,
        description="Path to a Google service account JSON key (Docs/Sheets/Slides/Drive)",
    )
    google_drive_folder_id: str | None = Field(
        default=None,
        description="Default Drive folder for exported artifacts",
    )

    # --- Persistence ---
    database_path: str | None = Field(
        default=None,
        description="SQLite file for trade studies (unset = in-memory store)",
    )

    # --- Application ---
    log_level: str = Field(default="INFO", description="Logging level")
    default_owner_id: str = Field(default="demo-user", description="Owner id used by the CLI / API")

    def get_active_model(self) -> str:
        """Return the model identifier for the active provider."""
        model_map = {
            LLMProvider.ANTHROPIC: self.anthropic_model,
            LLMProvider.OPENAI: self.openai_model,
            LLMProvider.GOOGLE: self.google_model,
            LLMProvider.OLLAMA: self.ollama_model,
        }
        return model_map[self.resolve_provider()]

    def _key_map(self) -> dict[LLMProvider, str | None]:
        return {
            LLMProvider.ANTHROPIC: self.anthropic_api_key,
            LLMProvider.OPENAI: self.openai_api_key,
            LLMProvider.GOOGLE: self.google_api_key,
        }

    def has_llm_credentials(self) -> bool:
        """True when at least one hosted provider has an API key."""
        return any(self._key_map().values())

    def resolve_provider(self) -> LLMProvider:
        """Return the effective provider, falling back to Ollama if no API keys configured.

        Logic:
            1. If the selected provider has a valid API key → use it.
            2. If the selected provider is Ollama → use it (no key needed).
            3. If the selected provider has no key → scan for any provider with a key.
            4. If no API keys at all → fall back to Ollama (local).
        """
        key_map = self._key_map()

        if self.llm_provider in key_map and key_map[self.llm_provider]:
            return self.llm_provider

        if self.llm_provider == LLMProvider.OLLAMA:
            return LLMProvider.OLLAMA

        for provider, key in key_map.items():
            if key:
                return provider

        return LLMProvider.OLLAMA


# Singleton instance
settings = Settings()
