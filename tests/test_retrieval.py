from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mascord_memory.common import utc_now  # noqa: E402
from mascord_memory.memory.models import Message, SearchFilter  # noqa: E402
from mascord_memory.memory.retrieval import (  # noqa: E402
    HybridRetriever,
    cosine_similarity,
    recency_boost,
    recency_weight,
    score_candidates,
)
from mascord_memory.memory.store import MemoryStore  # noqa: E402
from mascord_memory.services.base import ProviderError  # noqa: E402


class _FakeEmbedder:
    def __init__(self, vectors: dict[str, list[float]] | None = None, *, fail: bool = False) -> None:
        self.vectors = vectors or {}
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ProviderError("embedding backend down")
        return self.vectors.get(text, [0.0, 0.0, 1.0])


def _msg(external_id: str, content: str, *, channel: str = "c1", days_ago: float = 0.0) -> Message:
    return Message.from_event(external_id, "g1", channel, "u1", content, utc_now() - timedelta(days=days_ago))


def test_cosine_similarity_edge_cases() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


def test_recency_weight_is_monotonic_and_bounded() -> None:
    for mode in ("linear", "log", "step"):
        weights = [recency_weight(age, mode=mode, window_days=30) for age in (0, 1, 5, 10, 20, 29, 30, 90)]
        assert all(0.0 <= w <= 1.0 for w in weights)
        assert weights == sorted(weights, reverse=True)
        assert weights[-1] == 0.0
        assert weights[-2] == 0.0

    assert recency_boost(0, max_boost=0.05) == pytest.approx(1.05)
    assert recency_boost(15, max_boost=0.05, window_days=30) == pytest.approx(1.025)
    assert recency_boost(45, max_boost=0.05, window_days=30) == pytest.approx(1.0)


def test_score_candidates_clamps_negative_and_skips_mismatched_dimensions() -> None:
    now = utc_now()
    same = _msg("same", "x").with_embedding((1.0, 0.0))
    opposite = _msg("opposite", "x").with_embedding((-1.0, 0.0))
    short = _msg("short", "x").with_embedding((1.0,))
    bare = _msg("bare", "x")

    scored = {s.message.external_id: s for s in score_candidates([1.0, 0.0], [same, opposite, short, bare], now=now)}

    assert scored["same"].similarity == pytest.approx(1.0)
    assert scored["same"].score == pytest.approx(1.05)
    assert scored["opposite"].similarity == pytest.approx(-1.0)
    assert scored["opposite"].score == 0.0
    assert scored["short"].score == 0.0
    assert scored["bare"].score == 0.0


def test_attached_embedding_round_trips_to_full_similarity(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("target", "the launch checklist"))
        await store.save(_msg("other", "lunch menu"))
        rows = {m.external_id: m for m in await store.fetch_unindexed(10)}
        vector = [0.12, -0.5, 0.33, 0.9]
        await store.attach_embedding(rows["target"].message_id, vector)
        await store.attach_embedding(rows["other"].message_id, [0.9, 0.1, -0.2, 0.0])

        retriever = HybridRetriever(store, _FakeEmbedder({"query": vector}))
        response = await retriever.search("query", SearchFilter(limit=5))

        assert response.available is True
        assert response.degraded is False
        top = response.results[0]
        assert top.message.external_id == "target"
        assert top.similarity == pytest.approx(1.0, abs=1e-6)
        assert top.matched_by == "vector"

    asyncio.run(scenario())


def test_keyword_matches_returned_when_nothing_is_embedded(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "postgres migration tonight", days_ago=1))
        await store.save(_msg("m2", "unrelated chatter"))

        retriever = HybridRetriever(store, _FakeEmbedder())
        response = await retriever.search("postgres", SearchFilter())

        assert [r.message.external_id for r in response.results] == ["m1"]
        assert response.results[0].score == pytest.approx(0.35)
        assert response.results[0].matched_by == "keyword"
        assert response.degraded is False

    asyncio.run(scenario())


def test_embedding_failure_degrades_to_keyword_search(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("m1", "deploy window is friday"))

        retriever = HybridRetriever(store, _FakeEmbedder(fail=True))
        response = await retriever.search("friday", SearchFilter())

        assert response.degraded is True
        assert response.notice
        assert [r.message.external_id for r in response.results] == ["m1"]

    asyncio.run(scenario())


def test_merge_ranks_by_score_then_recency_and_dedupes(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("vec-old", "alpha release", days_ago=20))
        await store.save(_msg("vec-new", "alpha release", days_ago=1))
        await store.save(_msg("kw-only", "alpha only keyword", days_ago=2))
        rows = {m.external_id: m for m in await store.fetch_unindexed(10)}
        await store.attach_embedding(rows["vec-old"].message_id, [1.0, 0.0])
        await store.attach_embedding(rows["vec-new"].message_id, [1.0, 0.0])

        retriever = HybridRetriever(store, _FakeEmbedder({"alpha": [1.0, 0.0]}))
        response = await retriever.search("alpha", SearchFilter())
        ids = [r.message.external_id for r in response.results]

        assert ids == ["vec-new", "vec-old", "kw-only"]
        assert len(set(ids)) == len(ids)
        assert response.results[0].matched_by == "both"
        assert response.results[0].score > response.results[1].score

    asyncio.run(scenario())


def test_limit_defaults_and_caps(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        for idx in range(12):
            await store.save(_msg(f"m{idx}", f"common word {idx}", days_ago=idx / 10))

        retriever = HybridRetriever(store, None, default_results=5, max_results=8)
        assert retriever.clamp_limit(0) == 5
        assert retriever.clamp_limit(500) == 8
        assert len((await retriever.search("common", SearchFilter())).results) == 5
        assert len((await retriever.search("common", SearchFilter(limit=100))).results) == 8
        assert (await retriever.search("   ", SearchFilter())).results == []

    asyncio.run(scenario())


def test_disabled_channels_never_surface_in_search(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.save(_msg("open", "quarterly review", channel="open"))
        await store.save(_msg("closed", "quarterly review", channel="closed"))
        for row in await store.fetch_unindexed(10):
            await store.attach_embedding(row.message_id, [1.0, 0.0])
        await store.set_channel_tracking("closed", "g1", False)

        retriever = HybridRetriever(store, _FakeEmbedder({"quarterly": [1.0, 0.0]}))
        response = await retriever.search("quarterly", SearchFilter())

        assert [r.channel_id for r in response.results] == ["open"]

    asyncio.run(scenario())
