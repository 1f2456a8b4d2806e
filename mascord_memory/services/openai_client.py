from __future__ import annotations

from typing import Any, Dict, List

from .base import JsonHttpClient, ProviderError, strip_reasoning


class OpenAICompatClient(JsonHttpClient):
    """Client for OpenAI-style `/chat/completions` and `/embeddings` (llama.cpp server, vLLM, OpenAI)."""

    provider_name = "openai"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: int = 120,
        temperature: float = 0.2,
        retries: int = 2,
    ) -> None:
        super().__init__(base_url=base_url, api_key=api_key, timeout_seconds=timeout_seconds, retries=retries)
        self.model = (model or "").strip()
        if not self.model:
            raise ValueError("OpenAI-compatible model cannot be empty")
        self.temperature = float(temperature)

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        messages: List[Dict[str, str]] = []
        if system and system.strip():
            messages.append({"role": "system", "content": system.strip()})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": False,
        }
        if max_output_tokens is not None and int(max_output_tokens) > 0:
            payload["max_tokens"] = int(max_output_tokens)

        data = await self._request("chat/completions", payload)
        return self._extract_text(data)

    async def embed(self, text: str) -> List[float]:
        data = await self._request("embeddings", {"model": self.model, "input": text})
        return self._extract_embedding(data)

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("openai returned no choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise ProviderError("openai returned empty message content")
        cleaned = strip_reasoning(content)
        if not cleaned:
            finish_reason = choices[0].get("finish_reason")
            raise ProviderError(f"openai empty response (finish_reason={finish_reason})")
        return cleaned

    @staticmethod
    def _extract_embedding(data: Dict[str, Any]) -> List[float]:
        items = data.get("data") or []
        if not items:
            raise ProviderError("openai returned no embedding data")
        vector = items[0].get("embedding")
        if not isinstance(vector, list) or not vector:
            raise ProviderError("openai returned an empty embedding")
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"openai returned a non-numeric embedding: {exc}") from exc
