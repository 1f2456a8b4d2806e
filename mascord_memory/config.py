from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


PROVIDER_BACKENDS = {"openai", "ollama"}
RECENCY_MODES = {"linear", "log", "step"}


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"﻿{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


@dataclass(slots=True)
class Settings:
    database_path: Path
    log_level: str

    llm_backend: str
    llm_base_url: str
    llm_model: str
    llm_api_key: str
    llm_timeout_seconds: int
    llm_temperature: float

    embedding_backend: str
    embedding_base_url: str
    embedding_model: str
    embedding_api_key: str
    embedding_timeout_seconds: int
    embedding_dimensions: int
    provider_retries: int

    recency_cache_capacity: int
    context_message_limit: int
    context_retention_hours: int
    long_term_retention_days: int
    maintenance_interval_seconds: int
    shutdown_grace_seconds: float

    embedding_indexer_enabled: bool
    embedding_indexer_batch_size: int
    embedding_indexer_interval_seconds: int
    embedding_min_content_chars: int

    retrieval_default_results: int
    retrieval_max_results: int
    retrieval_candidate_limit: int
    retrieval_keyword_weight: float
    retrieval_recency_mode: str
    retrieval_recency_window_days: float
    retrieval_recency_max_boost: float

    summarization_enabled: bool
    summarization_interval_seconds: int
    summarization_active_channels_lookback_days: int
    summarization_initial_min_messages: int
    summarization_trigger_new_messages: int
    summarization_trigger_age_hours: int
    summarization_trigger_min_new_messages: int
    summarization_max_tokens: int
    summarization_refresh_weeks: int
    summarization_refresh_days_lookback: int
    summarization_fetch_limit: int
    summarization_milestone_limit: int

    user_memory_max_chars: int

    @classmethod
    def from_env(cls) -> "Settings":
        llm_base_url = _env_str("LLM_BASE_URL", "http://localhost:8080/v1", aliases=("LLAMA_URL",))
        return cls(
            database_path=Path(
                _env_str("DATABASE_PATH", "./data/mascord.db", aliases=("DATABASE_URL", "SQLITE_PATH"))
            ).expanduser(),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            llm_backend=_env_str("LLM_BACKEND", "openai").lower(),
            llm_base_url=llm_base_url,
            llm_model=_env_str("LLM_MODEL", "local-model", aliases=("LLAMA_MODEL",)),
            llm_api_key=_env_str("LLM_API_KEY", "", aliases=("LLAMA_API_KEY",)),
            llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 120, aliases=("LLM_TIMEOUT_SECS",)),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.2),
            embedding_backend=_env_str("EMBEDDING_BACKEND", "openai").lower(),
            embedding_base_url=_env_str("EMBEDDING_BASE_URL", llm_base_url, aliases=("EMBEDDING_URL",)),
            embedding_model=_env_str("EMBEDDING_MODEL", "nomic-embed-text"),
            embedding_api_key=_env_str("EMBEDDING_API_KEY", ""),
            embedding_timeout_seconds=_env_int(
                "EMBEDDING_TIMEOUT_SECONDS", 30, aliases=("EMBEDDING_TIMEOUT_SECS",)
            ),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", 0),
            provider_retries=_env_int("PROVIDER_RETRIES", 2),
            recency_cache_capacity=_env_int("RECENCY_CACHE_CAPACITY", 50),
            context_message_limit=_env_int("CONTEXT_MESSAGE_LIMIT", 50),
            context_retention_hours=_env_int("CONTEXT_RETENTION_HOURS", 24),
            long_term_retention_days=_env_int("LONG_TERM_RETENTION_DAYS", 365),
            maintenance_interval_seconds=_env_int("MAINTENANCE_INTERVAL_SECONDS", 3600),
            shutdown_grace_seconds=_env_float("SHUTDOWN_GRACE_SECONDS", 10.0),
            embedding_indexer_enabled=_env_bool("EMBEDDING_INDEXER_ENABLED", True),
            embedding_indexer_batch_size=_env_int("EMBEDDING_INDEXER_BATCH_SIZE", 25),
            embedding_indexer_interval_seconds=_env_int(
                "EMBEDDING_INDEXER_INTERVAL_SECONDS", 30, aliases=("EMBEDDING_INDEXER_INTERVAL_SECS",)
            ),
            embedding_min_content_chars=_env_int("EMBEDDING_MIN_CONTENT_CHARS", 3),
            retrieval_default_results=_env_int("RETRIEVAL_DEFAULT_RESULTS", 5),
            retrieval_max_results=_env_int("RETRIEVAL_MAX_RESULTS", 100),
            retrieval_candidate_limit=_env_int("RETRIEVAL_CANDIDATE_LIMIT", 1000),
            retrieval_keyword_weight=_env_float("RETRIEVAL_KEYWORD_WEIGHT", 0.35),
            retrieval_recency_mode=_env_str("RETRIEVAL_RECENCY_MODE", "linear").lower(),
            retrieval_recency_window_days=_env_float("RETRIEVAL_RECENCY_WINDOW_DAYS", 30.0),
            retrieval_recency_max_boost=_env_float("RETRIEVAL_RECENCY_MAX_BOOST", 0.05),
            summarization_enabled=_env_bool("SUMMARIZATION_ENABLED", True),
            summarization_interval_seconds=_env_int(
                "SUMMARIZATION_INTERVAL_SECONDS", 3600, aliases=("SUMMARIZATION_INTERVAL_SECS",)
            ),
            summarization_active_channels_lookback_days=_env_int(
                "SUMMARIZATION_ACTIVE_CHANNELS_LOOKBACK_DAYS", 7
            ),
            summarization_initial_min_messages=_env_int("SUMMARIZATION_INITIAL_MIN_MESSAGES", 50),
            summarization_trigger_new_messages=_env_int("SUMMARIZATION_TRIGGER_NEW_MESSAGES", 150),
            summarization_trigger_age_hours=_env_int("SUMMARIZATION_TRIGGER_AGE_HOURS", 6),
            summarization_trigger_min_new_messages=_env_int("SUMMARIZATION_TRIGGER_MIN_NEW_MESSAGES", 20),
            summarization_max_tokens=_env_int("SUMMARIZATION_MAX_TOKENS", 1200),
            summarization_refresh_weeks=_env_int("SUMMARIZATION_REFRESH_WEEKS", 6),
            summarization_refresh_days_lookback=_env_int("SUMMARIZATION_REFRESH_DAYS_LOOKBACK", 14),
            summarization_fetch_limit=_env_int("SUMMARIZATION_FETCH_LIMIT", 200),
            summarization_milestone_limit=_env_int("SUMMARIZATION_MILESTONE_LIMIT", 20),
            user_memory_max_chars=_env_int("USER_MEMORY_MAX_CHARS", 1200),
        )

    def validate(self) -> None:
        if self.llm_backend not in PROVIDER_BACKENDS:
            raise ValueError("LLM_BACKEND must be 'openai' or 'ollama'")
        if self.embedding_backend not in PROVIDER_BACKENDS:
            raise ValueError("EMBEDDING_BACKEND must be 'openai' or 'ollama'")
        if not self.llm_model:
            raise ValueError("LLM_MODEL cannot be empty")
        if not self.embedding_model:
            raise ValueError("EMBEDDING_MODEL cannot be empty")
        if self.llm_timeout_seconds < 1:
            raise ValueError("LLM_TIMEOUT_SECONDS must be >= 1")
        if self.embedding_timeout_seconds < 1:
            raise ValueError("EMBEDDING_TIMEOUT_SECONDS must be >= 1")
        if self.embedding_dimensions < 0:
            raise ValueError("EMBEDDING_DIMENSIONS must be >= 0 (0 accepts the provider's size)")
        if self.provider_retries < 1:
            raise ValueError("PROVIDER_RETRIES must be >= 1")

        if self.recency_cache_capacity < 1:
            raise ValueError("RECENCY_CACHE_CAPACITY must be >= 1")
        if self.context_message_limit < 1:
            raise ValueError("CONTEXT_MESSAGE_LIMIT must be >= 1")
        if self.context_retention_hours < 0:
            raise ValueError("CONTEXT_RETENTION_HOURS must be >= 0 (0 disables age filtering)")
        if self.long_term_retention_days < 0:
            raise ValueError("LONG_TERM_RETENTION_DAYS must be >= 0 (0 disables cleanup)")
        if self.maintenance_interval_seconds < 1:
            raise ValueError("MAINTENANCE_INTERVAL_SECONDS must be >= 1")
        if self.shutdown_grace_seconds < 0:
            raise ValueError("SHUTDOWN_GRACE_SECONDS must be >= 0")

        if self.embedding_indexer_batch_size < 1:
            raise ValueError("EMBEDDING_INDEXER_BATCH_SIZE must be >= 1")
        if self.embedding_indexer_interval_seconds < 1:
            raise ValueError("EMBEDDING_INDEXER_INTERVAL_SECONDS must be >= 1")
        if self.embedding_min_content_chars < 0:
            raise ValueError("EMBEDDING_MIN_CONTENT_CHARS must be >= 0")

        if self.retrieval_max_results < 1:
            raise ValueError("RETRIEVAL_MAX_RESULTS must be >= 1")
        if not 1 <= self.retrieval_default_results <= self.retrieval_max_results:
            raise ValueError("RETRIEVAL_DEFAULT_RESULTS must be in [1, RETRIEVAL_MAX_RESULTS]")
        if self.retrieval_candidate_limit < 1:
            raise ValueError("RETRIEVAL_CANDIDATE_LIMIT must be >= 1")
        if self.retrieval_keyword_weight < 0.0 or self.retrieval_keyword_weight > 1.0:
            raise ValueError("RETRIEVAL_KEYWORD_WEIGHT must be in [0, 1]")
        if self.retrieval_recency_mode not in RECENCY_MODES:
            raise ValueError("RETRIEVAL_RECENCY_MODE must be one of: linear, log, step")
        if self.retrieval_recency_window_days <= 0:
            raise ValueError("RETRIEVAL_RECENCY_WINDOW_DAYS must be > 0")
        if self.retrieval_recency_max_boost < 0.0 or self.retrieval_recency_max_boost > 1.0:
            raise ValueError("RETRIEVAL_RECENCY_MAX_BOOST must be in [0, 1]")

        if self.summarization_interval_seconds < 1:
            raise ValueError("SUMMARIZATION_INTERVAL_SECONDS must be >= 1")
        if self.summarization_active_channels_lookback_days < 1:
            raise ValueError("SUMMARIZATION_ACTIVE_CHANNELS_LOOKBACK_DAYS must be >= 1")
        if self.summarization_initial_min_messages < 1:
            raise ValueError("SUMMARIZATION_INITIAL_MIN_MESSAGES must be >= 1")
        if self.summarization_trigger_new_messages < 1:
            raise ValueError("SUMMARIZATION_TRIGGER_NEW_MESSAGES must be >= 1")
        if self.summarization_trigger_age_hours < 0:
            raise ValueError("SUMMARIZATION_TRIGGER_AGE_HOURS must be >= 0")
        if not 1 <= self.summarization_trigger_min_new_messages <= self.summarization_trigger_new_messages:
            raise ValueError(
                "SUMMARIZATION_TRIGGER_MIN_NEW_MESSAGES must be in [1, SUMMARIZATION_TRIGGER_NEW_MESSAGES]"
            )
        if self.summarization_max_tokens < 50:
            raise ValueError("SUMMARIZATION_MAX_TOKENS must be >= 50")
        if self.summarization_refresh_weeks < 1:
            raise ValueError("SUMMARIZATION_REFRESH_WEEKS must be >= 1")
        if self.summarization_refresh_days_lookback < 1:
            raise ValueError("SUMMARIZATION_REFRESH_DAYS_LOOKBACK must be >= 1")
        if self.summarization_fetch_limit < 1:
            raise ValueError("SUMMARIZATION_FETCH_LIMIT must be >= 1")
        if self.summarization_milestone_limit < 1:
            raise ValueError("SUMMARIZATION_MILESTONE_LIMIT must be >= 1")

        if self.user_memory_max_chars < 100:
            raise ValueError("USER_MEMORY_MAX_CHARS must be >= 100")
