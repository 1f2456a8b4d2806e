from __future__ import annotations

import asyncio
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.common import utc_now  # noqa: E402
from mascord_memory.memory.indexer import EmbeddingIndexer  # noqa: E402
from mascord_memory.memory.models import Message  # noqa: E402
from mascord_memory.memory.store import MemoryStore  # noqa: E402
from mascord_memory.services.base import ProviderError  # noqa: E402


class _FakeEmbedder:
    def __init__(self) -> None:
        self.fail_on: set[str] = set()
        self.hang_on: set[str] = set()
        self.wrong_dim_on: set[str] = set()
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise ProviderError("boom")
        if text in self.hang_on:
            await asyncio.sleep(5)
        if text in self.wrong_dim_on:
            return [1.0, 2.0]
        return [float(len(text)), 1.0, 0.5]


def _msg(external_id: str, content: str) -> Message:
    return Message.from_event(external_id, "g1", "c1", "u1", content, utc_now())


def test_indexer_embeds_batch_and_skips_short_messages(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "long enough content"))
        await store.save(_msg("m2", "ok"))
        await store.save(_msg("m3", "another real message"))
        embedder = _FakeEmbedder()

        indexer = EmbeddingIndexer(store, embedder, batch_size=10, min_content_chars=3)
        stats = await indexer.run_once()

        assert stats.indexed == 2
        assert stats.skipped == 1
        assert "ok" not in embedder.calls
        assert await store.fetch_unindexed(10) == []
        m2 = await store.get_message("m2")
        assert m2 is not None and m2.embedding is None
        m1 = await store.get_message("m1")
        assert m1 is not None and m1.embedding is not None

    asyncio.run(scenario())


def test_provider_failure_leaves_message_for_next_tick(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "this one fails"))
        await store.save(_msg("m2", "this one hangs"))
        await store.save(_msg("m3", "this one works"))
        embedder = _FakeEmbedder()
        embedder.fail_on.add("this one fails")
        embedder.hang_on.add("this one hangs")

        indexer = EmbeddingIndexer(store, embedder, batch_size=10, timeout_seconds=0.05)
        stats = await indexer.run_once()

        assert stats.indexed == 1
        assert stats.failed == 2
        assert [m.external_id for m in await store.fetch_unindexed(10)] == ["m1", "m2"]

        embedder.fail_on.clear()
        embedder.hang_on.clear()
        retry = await indexer.run_once()
        assert retry.indexed == 2
        assert await store.fetch_unindexed(10) == []

    asyncio.run(scenario())


def test_dimension_mismatch_is_marked_and_skipped(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "right size"))
        await store.save(_msg("m2", "wrong size"))
        embedder = _FakeEmbedder()
        embedder.wrong_dim_on.add("wrong size")

        indexer = EmbeddingIndexer(store, embedder, batch_size=10, dimensions=3)
        stats = await indexer.run_once()

        assert stats.indexed == 1
        assert stats.skipped == 1
        assert await store.fetch_unindexed(10) == []
        m2 = await store.get_message("m2")
        assert m2 is not None and m2.embedding is None

    asyncio.run(scenario())


def test_dimension_locks_to_first_vector_when_unset(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "first message"))
        indexer = EmbeddingIndexer(store, _FakeEmbedder(), dimensions=0)
        await indexer.run_once()
        assert indexer.dimensions == 3

    asyncio.run(scenario())


def test_batch_size_bounds_work_per_tick(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        for idx in range(5):
            await store.save(_msg(f"m{idx}", f"message number {idx}"))
        embedder = _FakeEmbedder()

        indexer = EmbeddingIndexer(store, embedder, batch_size=2)
        await indexer.run_once()

        assert len(embedder.calls) == 2
        assert len(await store.fetch_unindexed(10)) == 3

    asyncio.run(scenario())
