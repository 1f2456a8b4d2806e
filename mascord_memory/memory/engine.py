from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

import aiosqlite

from ..common import utc_now
from ..prompts.memory import build_working_memory_block
from .cache import RecencyCache
from .models import ContextWindow, Message, PurgeResult, PurgeScope, SearchFilter, SearchResponse
from .retrieval import HybridRetriever
from .user_profiles import UserMemoryService

logger = logging.getLogger("mascord_memory.engine")

UNAVAILABLE_NOTICE = "Memory is temporarily unavailable; answering without stored history."
SEARCH_UNAVAILABLE_NOTICE = "Memory search is temporarily unavailable. Please try again later."


@dataclass(slots=True)
class MaintenanceStats:
    cache_deleted: int = 0
    messages_deleted: int = 0
    user_memory_deleted: int = 0


class ContextEngine:
    """Facade over the three memory tiers: recency cache, working memory and hybrid retrieval."""

    def __init__(
        self,
        store,
        cache: RecencyCache,
        retriever: HybridRetriever,
        user_memory: UserMemoryService,
        *,
        context_message_limit: int = 50,
        context_retention_hours: int = 24,
        long_term_retention_days: int = 365,
    ) -> None:
        self.store = store
        self.cache = cache
        self.retriever = retriever
        self.user_memory = user_memory
        self.context_message_limit = int(context_message_limit)
        self.context_retention_hours = int(context_retention_hours)
        self.long_term_retention_days = int(long_term_retention_days)
        self._warmed: set[str] = set()

    async def ingest(
        self,
        external_id: object,
        guild_id: object,
        channel_id: object,
        author_id: object,
        content: str,
        timestamp: datetime | int | float | str,
    ) -> bool:
        """Record a message; returns True when it was newly persisted.

        Untracked channels are dropped before either tier sees the message, and a
        redelivered external id is ignored by both.
        """
        message = Message.from_event(external_id, guild_id, channel_id, author_id, content, timestamp)
        if not await self.store.is_channel_tracked(message.channel_id):
            return False
        saved = await self.store.save(message)
        if saved:
            self.cache.record(message)
        return saved

    async def set_channel_tracking(self, channel_id: str, guild_id: str, enabled: bool) -> None:
        await self.store.set_channel_tracking(channel_id, guild_id, enabled)
        self._reset_channel_cache(channel_id)

    async def set_memory_start_date(self, channel_id: str, guild_id: str, start_date: datetime | None) -> None:
        await self.store.set_memory_start_date(channel_id, guild_id, start_date)
        self._reset_channel_cache(channel_id)

    def _reset_channel_cache(self, channel_id: str) -> None:
        # The next read reloads the channel from the store with the new scope applied.
        dropped = self.cache.purge_channel(channel_id)
        self._warmed.discard(channel_id)
        logger.debug("[memory.cache] channel=%s scope changed dropped=%s", channel_id, dropped)

    async def _context_window_limits(self, guild_id: str | None, limit: int | None) -> tuple[int, int]:
        effective_limit = self.context_message_limit
        retention_hours = self.context_retention_hours
        if guild_id:
            overrides = await self.store.get_guild_settings(guild_id)
            if overrides is not None:
                if overrides.context_limit is not None and overrides.context_limit > 0:
                    effective_limit = overrides.context_limit
                if overrides.context_retention_hours is not None and overrides.context_retention_hours >= 0:
                    retention_hours = overrides.context_retention_hours
        if limit is not None:
            effective_limit = int(limit)
        return max(0, effective_limit), max(0, retention_hours)

    async def recent_context(
        self,
        channel_id: str,
        guild_id: str | None = None,
        limit: int | None = None,
    ) -> List[Message]:
        effective_limit, retention_hours = await self._context_window_limits(guild_id, limit)
        if effective_limit <= 0:
            return []

        channel = await self.store.get_channel_settings(channel_id)
        if channel is not None and not channel.tracking_enabled:
            self.cache.purge_channel(channel_id)
            return []

        if channel_id not in self._warmed:
            since = utc_now() - timedelta(hours=retention_hours) if retention_hours > 0 else None
            rows = await self.store.fetch_recent(channel_id, since=since, limit=self.cache.capacity)
            self._warmed.add(channel_id)
            if rows:
                warmed = self.cache.warm(channel_id, rows)
                logger.debug("[memory.cache] channel=%s cold start warmed=%s", channel_id, warmed)

        not_before = channel.memory_start_date if channel is not None else None
        return list(self.cache.recent(channel_id, effective_limit, retention_hours, not_before))

    async def working_memory(self, channel_id: str) -> str | None:
        summary = await self.store.get_channel_summary(channel_id)
        if summary is None or not summary.summary_text.strip():
            return None
        return summary.summary_text

    async def search(self, query: str, search_filter: SearchFilter | None = None) -> SearchResponse:
        try:
            return await self.retriever.search(query, search_filter)
        except aiosqlite.Error:
            logger.exception("[memory.search] storage failure; returning unavailable response")
            return SearchResponse(available=False, notice=SEARCH_UNAVAILABLE_NOTICE)

    async def purge_data(self, scope: PurgeScope) -> PurgeResult:
        scope.validate()
        result = await self.store.purge(scope)
        result.cache_deleted = self.cache.purge(scope)
        return result

    async def build_context(
        self,
        channel_id: str,
        guild_id: str | None = None,
        user_id: str | None = None,
        current_text: str = "",
    ) -> ContextWindow:
        window = ContextWindow(channel_id=channel_id)
        try:
            window.messages = await self.recent_context(channel_id, guild_id)
            summary = await self.working_memory(channel_id)
            if summary:
                window.working_memory = build_working_memory_block(summary)
            if user_id:
                window.user_memory = await self.user_memory.snippet_for(user_id, current_text)
        except aiosqlite.Error:
            logger.exception("[memory.context] channel=%s storage failure", channel_id)
            window.messages = list(self.cache.recent(channel_id, self.context_message_limit))
            window.available = False
            window.notice = UNAVAILABLE_NOTICE
        return window

    async def run_maintenance(self) -> MaintenanceStats:
        stats = MaintenanceStats()
        stats.cache_deleted = self.cache.cleanup_old_messages(self.context_retention_hours)
        if self.long_term_retention_days > 0:
            purge = await self.store.cleanup_old_messages(self.long_term_retention_days)
            stats.messages_deleted = purge.messages_deleted
        stats.user_memory_deleted = await self.user_memory.cleanup_expired()
        if stats.cache_deleted or stats.messages_deleted or stats.user_memory_deleted:
            logger.info(
                "[memory.maintenance] cache=%s messages=%s user_memory=%s",
                stats.cache_deleted,
                stats.messages_deleted,
                stats.user_memory_deleted,
            )
        return stats
