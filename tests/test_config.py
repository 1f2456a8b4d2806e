from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.config import Settings  # noqa: E402


def _settings(monkeypatch: pytest.MonkeyPatch, **env: str) -> Settings:
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings.from_env()


def test_env_overrides_and_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LLM_BASE_URL", raising=False)
    monkeypatch.delenv("EMBEDDING_BASE_URL", raising=False)
    monkeypatch.delenv("EMBEDDING_URL", raising=False)
    settings = _settings(
        monkeypatch,
        LLAMA_URL="http://llm.local:9000/v1",
        LLM_BACKEND="OLLAMA",
        RETRIEVAL_RECENCY_MODE="Step",
        SUMMARIZATION_ENABLED="off",
    )

    assert settings.llm_base_url == "http://llm.local:9000/v1"
    assert settings.embedding_base_url == "http://llm.local:9000/v1"
    assert settings.llm_backend == "ollama"
    assert settings.retrieval_recency_mode == "step"
    assert settings.summarization_enabled is False


def test_bom_prefixed_key_is_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RECENCY_CACHE_CAPACITY", raising=False)
    settings = _settings(monkeypatch, **{"\ufeffRECENCY_CACHE_CAPACITY": "75"})
    assert settings.recency_cache_capacity == 75


def test_malformed_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _settings(
        monkeypatch,
        RETRIEVAL_DEFAULT_RESULTS="five",
        RETRIEVAL_KEYWORD_WEIGHT="heavy",
    )
    assert settings.retrieval_default_results == 5
    assert settings.retrieval_keyword_weight == pytest.approx(0.35)


def test_validate_accepts_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("LLM_BACKEND", "EMBEDDING_BACKEND", "RETRIEVAL_RECENCY_MODE", "RETRIEVAL_DEFAULT_RESULTS"):
        monkeypatch.delenv(key, raising=False)
    Settings.from_env().validate()


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("LLM_BACKEND", "gemini", "LLM_BACKEND"),
        ("RETRIEVAL_RECENCY_MODE", "exponential", "RETRIEVAL_RECENCY_MODE"),
        ("RETRIEVAL_KEYWORD_WEIGHT", "1.5", "RETRIEVAL_KEYWORD_WEIGHT"),
        ("EMBEDDING_DIMENSIONS", "-1", "EMBEDDING_DIMENSIONS"),
        ("SUMMARIZATION_TRIGGER_MIN_NEW_MESSAGES", "500", "SUMMARIZATION_TRIGGER_MIN_NEW_MESSAGES"),
    ],
)
def test_validate_rejects_bad_values(monkeypatch: pytest.MonkeyPatch, key: str, value: str, message: str) -> None:
    settings = _settings(monkeypatch, **{key: value})
    with pytest.raises(ValueError, match=message):
        settings.validate()
