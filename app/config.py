# =============================================================================
# Application Configuration: Pydantic Settings
# =============================================================================
#
# Resolution order, first match wins:
#   1. Environment variables (e.g., `RATE_LIMIT_RPM=30`)
#   2. A `.env` file in the working directory
#   3. The defaults on the fields below
#
# USAGE:
#   from app.config import settings
#   print(settings.llm_model)
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for the analysis service.

    Defaults target local development against the Groq free tier with an
    in-memory result store. Override via environment variables or `.env`.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Property Document Analysis Agent"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # LLM Configuration: Multi-Provider
    # -------------------------------------------------------------------------
    # Two provider types are supported:
    #   - "openai_compatible": any OpenAI-compatible API with tool calling
    #     (Groq, OpenAI, DeepSeek, ...)
    #   - "anthropic": Claude via the native Anthropic SDK
    #
    # Typical setups:
    #   Groq:    provider=openai_compatible, base_url=https://api.groq.com/openai/v1, model=llama-3.1-8b-instant
    #   OpenAI:  provider=openai_compatible, base_url=None, model=gpt-4.1-mini
    #   Claude:  provider=anthropic, model=claude-sonnet-4-6
    #
    # Both providers are driven in function-calling mode only: every request
    # carries exactly one tool definition and pins tool_choice to it.
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"  # "openai_compatible" or "anthropic"
    llm_base_url: str | None = "https://api.groq.com/openai/v1"
    llm_api_key: str | None = None  # Overrides provider-specific key if set
    groq_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llm_model: str = "llama-3.1-8b-instant"
    llm_temperature: float = 0.0
    llm_max_tokens: int = 2000

    # Question generation runs as a second, cheaper function call
    question_temperature: float = 0.2
    question_max_tokens: int = 1000

    # -------------------------------------------------------------------------
    # Rate Limits: shared provider budget
    # -------------------------------------------------------------------------
    # Conservative numbers under the Groq free tier (4 rpm, 18k tpm,
    # 14.4k rpd official). The per-user daily allowance defaults to a tenth
    # of the global daily budget.
    # -------------------------------------------------------------------------
    rate_limit_rpm: int = 3
    rate_limit_tpm: int = 15000
    rate_limit_rpd: int = 12000
    rate_limit_per_user_daily: int | None = None
    rate_limit_max_concurrent: int = 2
    rate_limit_max_queue_size: int = 50
    rate_limit_starvation_bound: int = 5
    rate_limit_max_retries: int = 3
    rate_limit_backoff_base_seconds: float = 1.0
    rate_limit_backoff_cap_seconds: float = 30.0
    rate_limit_overload_multiplier: float = 4.0
    rate_limit_default_max_wait_seconds: float = 300.0
    question_max_wait_seconds: float = 180.0

    # -------------------------------------------------------------------------
    # Chunking & Prompting
    # -------------------------------------------------------------------------
    # Character-based chunks: the chunk index exists for citation lookup,
    # not for embedding, so token alignment is not required.
    # -------------------------------------------------------------------------
    chunk_size: int = 500
    chunk_overlap: int = 50
    prompt_char_limit: int = 4000
    citation_context_chars: int = 200

    # -------------------------------------------------------------------------
    # Progressive Analysis
    # -------------------------------------------------------------------------
    quick_scan_document_count: int = 2
    quick_scan_findings_per_document: int = 2
    detailed_findings_per_document: int = 3

    # -------------------------------------------------------------------------
    # Result Storage: key-value backend
    # -------------------------------------------------------------------------
    #   - "memory": process-local dict (tests, single-process dev)
    #   - "redis": durable store, keys expire after storage_ttl_seconds
    # -------------------------------------------------------------------------
    storage_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/2"
    storage_ttl_seconds: int = 30 * 24 * 60 * 60

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Shared instance for module-level imports
# ---------------------------------------------------------------------------
settings = Settings()
