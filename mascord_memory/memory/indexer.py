from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..services.base import EmbeddingProvider, ProviderError

logger = logging.getLogger("mascord_memory.indexer")


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    skipped: int = 0
    failed: int = 0


class EmbeddingIndexer:
    """Attaches embeddings to persisted messages in small batches, one provider call per message."""

    def __init__(
        self,
        store,
        embedder: EmbeddingProvider,
        *,
        batch_size: int = 25,
        min_content_chars: int = 3,
        dimensions: int = 0,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.batch_size = max(1, int(batch_size))
        self.min_content_chars = max(0, int(min_content_chars))
        # 0 locks onto the first dimension the provider returns.
        self.dimensions = max(0, int(dimensions))
        self.timeout_seconds = float(timeout_seconds)

    async def run_once(self) -> IndexStats:
        stats = IndexStats()
        batch = await self.store.fetch_unindexed(self.batch_size)
        if not batch:
            return stats

        too_short = [m.message_id for m in batch if len(m.content.strip()) < self.min_content_chars]
        if too_short:
            stats.skipped += await self.store.mark_indexed(too_short)

        for message in batch:
            if len(message.content.strip()) < self.min_content_chars:
                continue
            try:
                vector = await asyncio.wait_for(self.embedder.embed(message.content), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                stats.failed += 1
                logger.warning("[memory.index] embed timed out message_id=%s; retry next tick", message.message_id)
                continue
            except ProviderError as exc:
                stats.failed += 1
                logger.warning(
                    "[memory.index] embed failed message_id=%s (%s); retry next tick", message.message_id, exc
                )
                continue

            if not vector:
                stats.skipped += await self.store.mark_indexed([message.message_id])
                continue
            if self.dimensions == 0:
                self.dimensions = len(vector)
                logger.info("[memory.index] embedding dimension locked at %s", self.dimensions)
            if len(vector) != self.dimensions:
                logger.warning(
                    "[memory.index] dimension mismatch message_id=%s got=%s expected=%s; skipped",
                    message.message_id,
                    len(vector),
                    self.dimensions,
                )
                stats.skipped += await self.store.mark_indexed([message.message_id])
                continue

            if await self.store.attach_embedding(message.message_id, vector):
                stats.indexed += 1

        if stats.indexed or stats.failed:
            logger.info(
                "[memory.index] batch=%s indexed=%s skipped=%s failed=%s",
                len(batch),
                stats.indexed,
                stats.skipped,
                stats.failed,
            )
        return stats
