from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(slots=True)
class ProviderSettings:
    """Credentials and model names for the external scoring and embedding services."""

    cohere_api_key: str | None = None
    cross_encoder_model: str | None = None
    embedding_model: str = "text-embedding-3-small"
    default_rerank_model: str = "rerank-english-v3.0"


@dataclass(slots=True)
class ResilienceSettings:
    """Circuit breaker, cache, and retry tuning shared by every request."""

    breaker_failure_threshold: int = 5
    breaker_cooldown_seconds: float = 60.0
    breaker_success_threshold: int = 3
    cache_max_size: int = 1000
    cache_ttl_seconds: float = 3600.0
    retry_max_retries: int = 3
    retry_base_delay_ms: float = 1000.0
    retry_max_delay_ms: float = 10000.0
    retry_jitter: bool = True


@dataclass(slots=True)
class Settings:
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Settings grouping provider configuration and resilience tuning.
    """
    load_dotenv()
    return Settings(
        providers=ProviderSettings(
            cohere_api_key=os.getenv("COHERE_API_KEY") or None,
            cross_encoder_model=os.getenv("CROSS_ENCODER_MODEL") or None,
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            default_rerank_model=os.getenv("RERANK_DEFAULT_MODEL", "rerank-english-v3.0"),
        ),
        resilience=ResilienceSettings(
            breaker_failure_threshold=int(os.getenv("RERANK_BREAKER_THRESHOLD", "5")),
            breaker_cooldown_seconds=float(os.getenv("RERANK_BREAKER_COOLDOWN_SECONDS", "60")),
            breaker_success_threshold=int(os.getenv("RERANK_BREAKER_SUCCESS_THRESHOLD", "3")),
            cache_max_size=int(os.getenv("RERANK_CACHE_MAX_SIZE", "1000")),
            cache_ttl_seconds=float(os.getenv("RERANK_CACHE_TTL_SECONDS", "3600")),
            retry_max_retries=int(os.getenv("RERANK_RETRY_MAX_RETRIES", "3")),
            retry_base_delay_ms=float(os.getenv("RERANK_RETRY_BASE_DELAY_MS", "1000")),
            retry_max_delay_ms=float(os.getenv("RERANK_RETRY_MAX_DELAY_MS", "10000")),
            retry_jitter=_env_bool("RERANK_RETRY_JITTER", True),
        ),
    )
