from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from ..common import utc_now
from ..prompts.memory import build_user_memory_snippet, build_user_memory_update_prompt
from ..services.base import CompletionProvider
from .models import UserMemoryProfile

logger = logging.getLogger("mascord_memory.user_memory")

MIN_AUTO_UPDATE_CHARS = 12
MAX_PROFILE_LINES = 6

_SKIP_MEMORY_PHRASES = (
    "no memory",
    "no-memory",
    "no mem",
    "temporary",
    "temp mode",
    "incognito",
    "do not remember",
    "don't remember",
    "dont remember",
    "do not save",
    "don't save",
    "dont save",
    "do not store",
    "don't store",
    "dont store",
    "forget this",
    "no profile",
)

_ANSWER_PREFIXES = ("UPDATED MEMORY:", "MEMORY:", "UPDATED SUMMARY:", "SUMMARY:")


def should_skip_memory(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in _SKIP_MEMORY_PHRASES)


def _truncate_chars(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def normalize_memory(raw: str, max_chars: int = 1200) -> str:
    """Clean an LLM profile reply; empty string means "nothing to store"."""
    text = (raw or "").replace("\r", "").strip()
    if not text:
        return ""
    upper = text.upper()
    if "NO_UPDATE" in upper:
        return ""
    for prefix in _ANSWER_PREFIXES:
        if upper.startswith(prefix):
            text = text[len(prefix) :].strip()
            break

    lines = [line.strip() for line in text.splitlines() if line.strip()][:MAX_PROFILE_LINES]
    return _truncate_chars("\n".join(lines), max_chars)


def format_snippet(summary: str, max_chars: int = 1200) -> str:
    trimmed = (summary or "").strip()
    if not trimmed:
        return ""
    return build_user_memory_snippet(_truncate_chars(trimmed, max_chars))


class UserMemoryService:
    """Global cross-channel user profile: opt-out aware, expiring, LLM-maintained."""

    def __init__(
        self,
        store,
        llm: CompletionProvider | None = None,
        *,
        max_chars: int = 1200,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.store = store
        self.llm = llm
        self.max_chars = int(max_chars)
        self.timeout_seconds = float(timeout_seconds)

    async def get_profile(self, user_id: str) -> UserMemoryProfile | None:
        profile = await self.store.get_user_memory(user_id)
        if profile is None:
            return None
        if profile.expires_at is not None and utc_now() >= profile.expires_at:
            await self.store.delete_user_memory(user_id)
            logger.info("[memory.user] user=%s profile expired and was removed", user_id)
            return None
        return profile

    async def get_active_profile(self, user_id: str) -> UserMemoryProfile | None:
        profile = await self.get_profile(user_id)
        if profile is None or not profile.enabled or not profile.summary_text.strip():
            return None
        return profile

    async def remember(self, user_id: str, text: str, ttl_days: int | None = None) -> None:
        expires_at = utc_now() + timedelta(days=int(ttl_days)) if ttl_days and ttl_days > 0 else None
        await self.store.upsert_user_memory(
            user_id,
            _truncate_chars(text.strip(), self.max_chars),
            expires_at=expires_at,
        )

    async def set_enabled(self, user_id: str, enabled: bool) -> None:
        await self.store.set_user_memory_enabled(user_id, enabled)

    async def forget(self, user_id: str) -> int:
        return await self.store.delete_user_memory(user_id)

    async def cleanup_expired(self) -> int:
        return await self.store.delete_expired_user_memory()

    async def snippet_for(self, user_id: str, current_text: str = "") -> str:
        if should_skip_memory(current_text):
            return ""
        profile = await self.get_active_profile(user_id)
        if profile is None:
            return ""
        return format_snippet(profile.summary_text, self.max_chars)

    async def auto_update(self, user_id: str, user_message: str, assistant_response: str) -> str | None:
        """Ask the LLM to fold one exchange into the profile; returns the new text or None."""
        if self.llm is None:
            return None
        trimmed = (user_message or "").strip()
        if len(trimmed) < MIN_AUTO_UPDATE_CHARS or should_skip_memory(trimmed):
            return None

        profile = await self.get_profile(user_id)
        if profile is None or not profile.enabled:
            return None

        prompt = build_user_memory_update_prompt(
            profile.summary_text,
            trimmed,
            assistant_response or "",
            self.max_chars,
        )
        raw = await asyncio.wait_for(self.llm.complete(prompt), timeout=self.timeout_seconds)
        normalized = normalize_memory(raw, self.max_chars)
        if not normalized:
            return None

        await self.store.upsert_user_memory(user_id, normalized, expires_at=profile.expires_at)
        logger.debug("[memory.user] user=%s profile updated chars=%s", user_id, len(normalized))
        return normalized
