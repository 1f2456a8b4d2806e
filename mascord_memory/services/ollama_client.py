from __future__ import annotations

from typing import Any, Dict, List

from .base import JsonHttpClient, ProviderError, strip_reasoning


class OllamaClient(JsonHttpClient):
    provider_name = "ollama"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: int = 120,
        temperature: float = 0.2,
        retries: int = 2,
    ) -> None:
        super().__init__(
            base_url=base_url or "http://127.0.0.1:11434",
            timeout_seconds=timeout_seconds,
            retries=retries,
        )
        self.model = (model or "").strip()
        if not self.model:
            raise ValueError("Ollama model cannot be empty")
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

        options: Dict[str, Any] = {"temperature": self.temperature}
        if max_output_tokens is not None and int(max_output_tokens) > 0:
            options["num_predict"] = int(max_output_tokens)

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "think": False,
            "options": options,
        }
        data = await self._request("api/chat", payload)
        return self._extract_message_text(data)

    async def embed(self, text: str) -> List[float]:
        data = await self._request("api/embed", {"model": self.model, "input": text})
        return self._extract_embedding(data)

    @staticmethod
    def _extract_message_text(data: Dict[str, Any]) -> str:
        message = data.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content.strip():
                cleaned = strip_reasoning(content)
                if cleaned:
                    return cleaned
        response_text = data.get("response")
        if isinstance(response_text, str) and response_text.strip():
            return strip_reasoning(response_text)
        raise ProviderError("ollama returned empty message content")

    @staticmethod
    def _extract_embedding(data: Dict[str, Any]) -> List[float]:
        embeddings = data.get("embeddings")
        if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list):
            vector = embeddings[0]
        else:
            # Older servers answer /api/embeddings with a single `embedding`.
            vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise ProviderError("ollama returned an empty embedding")
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"ollama returned a non-numeric embedding: {exc}") from exc
