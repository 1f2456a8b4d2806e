from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Protocol, runtime_checkable

import aiohttp

logger = logging.getLogger("mascord_memory.services")

RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class ProviderError(RuntimeError):
    """An LLM or embedding backend failed (transport, HTTP status or malformed payload)."""


class ProviderTimeout(ProviderError):
    pass


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]: ...


@runtime_checkable
class CompletionProvider(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_output_tokens: int | None = None,
    ) -> str: ...


def strip_reasoning(text: str) -> str:
    return re.sub(r"<think>.*?</think>\s*", "", text or "", flags=re.IGNORECASE | re.DOTALL).strip()


class JsonHttpClient:
    """aiohttp session holder with bounded retries on transient HTTP statuses."""

    provider_name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_seconds: int = 30,
        retries: int = 2,
    ) -> None:
        self.base_url = (base_url or "").strip().rstrip("/")
        if not self.base_url:
            raise ValueError(f"{self.provider_name} base URL cannot be empty")
        self.api_key = (api_key or "").strip()
        self.timeout = aiohttp.ClientTimeout(total=max(1, int(timeout_seconds)))
        self.retries = max(1, int(retries))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: Exception | None = None
        timed_out = False

        for attempt in range(1, self.retries + 1):
            try:
                async with self._session.post(url, json=payload, headers=self._headers()) as response:
                    text = await response.text()
                    if response.status == 200:
                        parsed = json.loads(text)
                        if isinstance(parsed, dict):
                            return parsed
                        raise ProviderError(f"{self.provider_name} returned non-object JSON response")

                    if response.status not in RETRIABLE_STATUSES:
                        raise ProviderError(f"{self.provider_name} error {response.status}: {text[:300]}")
                    last_error = ProviderError(
                        f"{self.provider_name} retriable error {response.status}: {text[:300]}"
                    )
                    timed_out = False
            except asyncio.CancelledError:
                raise
            except ProviderError:
                raise
            except asyncio.TimeoutError as exc:
                last_error = exc
                timed_out = True
            except (aiohttp.ClientError, json.JSONDecodeError) as exc:
                last_error = exc
                timed_out = False

            if attempt < self.retries:
                logger.debug(
                    "[provider] %s attempt=%s/%s failed: %s",
                    self.provider_name,
                    attempt,
                    self.retries,
                    last_error,
                )
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if timed_out:
            raise ProviderTimeout(f"{self.provider_name} request timed out after {self.retries} attempts")
        if last_error is not None:
            raise ProviderError(f"{self.provider_name} request failed after retries: {last_error}")
        raise ProviderError(f"{self.provider_name} request failed without explicit error")
