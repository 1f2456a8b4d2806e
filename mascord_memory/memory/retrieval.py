from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence

import numpy as np

from ..common import ensure_utc, utc_now
from ..services.base import EmbeddingProvider, ProviderError
from .models import Message, SearchFilter, SearchResponse, SearchResult

logger = logging.getLogger("mascord_memory.retrieval")

RECENCY_MODES = ("linear", "log", "step")


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of two vectors; 0.0 when either is empty, zero-norm or the lengths differ."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or vb.ndim != 1 or va.size == 0 or va.size != vb.size:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not math.isfinite(norm):
        return 0.0
    value = float(np.dot(va, vb) / norm)
    return max(-1.0, min(1.0, value))


def recency_weight(age_days: float, *, mode: str = "linear", window_days: float = 30.0) -> float:
    """Weight in [0, 1], non-increasing with age and 0 outside the window."""
    age = max(0.0, float(age_days))
    window = max(1e-9, float(window_days))
    if age >= window:
        return 0.0
    if mode == "log":
        return max(0.0, 1.0 - math.log1p(age) / math.log1p(window))
    if mode == "step":
        if age <= window / 4:
            return 1.0
        if age <= window / 2:
            return 0.5
        return 0.25
    return 1.0 - age / window


def recency_boost(
    age_days: float,
    *,
    mode: str = "linear",
    window_days: float = 30.0,
    max_boost: float = 0.05,
) -> float:
    return 1.0 + max(0.0, float(max_boost)) * recency_weight(age_days, mode=mode, window_days=window_days)


@dataclass(slots=True)
class _Scored:
    message: Message
    similarity: float
    score: float


def score_candidates(
    query_vector: Sequence[float],
    candidates: Sequence[Message],
    *,
    now: datetime,
    mode: str = "linear",
    window_days: float = 30.0,
    max_boost: float = 0.05,
) -> List[_Scored]:
    """Cosine-score candidates against the query in one matrix product (CPU bound, run off-loop)."""
    query = np.asarray(query_vector, dtype=np.float32)
    query_norm = float(np.linalg.norm(query))
    comparable = [m for m in candidates if m.embedding and len(m.embedding) == query.size]
    if not comparable or query.size == 0 or query_norm == 0.0:
        return [_Scored(m, 0.0, 0.0) for m in candidates]

    matrix = np.asarray([m.embedding for m in comparable], dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, (matrix @ query) / norms, 0.0)
    sims = np.clip(np.nan_to_num(sims, nan=0.0), -1.0, 1.0)

    by_id: Dict[str, float] = {m.external_id: float(s) for m, s in zip(comparable, sims)}
    scored: List[_Scored] = []
    for message in candidates:
        similarity = by_id.get(message.external_id, 0.0)
        score = max(0.0, similarity)
        if score > 0.0:
            age_days = (now - ensure_utc(message.timestamp)).total_seconds() / 86400.0
            score *= recency_boost(age_days, mode=mode, window_days=window_days, max_boost=max_boost)
        scored.append(_Scored(message, similarity, score))
    return scored


class HybridRetriever:
    """Keyword + vector search over the persisted log, merged and boosted by recency."""

    def __init__(
        self,
        store,
        embedder: EmbeddingProvider | None,
        *,
        default_results: int = 5,
        max_results: int = 100,
        candidate_limit: int = 1000,
        keyword_weight: float = 0.35,
        recency_mode: str = "linear",
        recency_window_days: float = 30.0,
        recency_max_boost: float = 0.05,
        embed_timeout_seconds: float = 30.0,
    ) -> None:
        if recency_mode not in RECENCY_MODES:
            raise ValueError(f"Unknown recency mode: {recency_mode}")
        self.store = store
        self.embedder = embedder
        self.default_results = int(default_results)
        self.max_results = int(max_results)
        self.candidate_limit = int(candidate_limit)
        self.keyword_weight = float(keyword_weight)
        self.recency_mode = recency_mode
        self.recency_window_days = float(recency_window_days)
        self.recency_max_boost = float(recency_max_boost)
        self.embed_timeout_seconds = float(embed_timeout_seconds)

    def clamp_limit(self, limit: int) -> int:
        if limit <= 0:
            return self.default_results
        return min(int(limit), self.max_results)

    async def _embed_query(self, query: str) -> List[float] | None:
        if self.embedder is None:
            return None
        try:
            return await asyncio.wait_for(self.embedder.embed(query), timeout=self.embed_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("[memory.search] query embedding timed out; keyword-only search")
        except ProviderError as exc:
            logger.warning("[memory.search] query embedding failed (%s); keyword-only search", exc)
        return None

    async def search(self, query: str, search_filter: SearchFilter | None = None) -> SearchResponse:
        search_filter = search_filter or SearchFilter()
        limit = self.clamp_limit(search_filter.limit)
        text = (query or "").strip()
        if not text:
            return SearchResponse()

        query_vector = await self._embed_query(text)
        degraded = self.embedder is not None and query_vector is None

        merged: Dict[str, SearchResult] = {}
        if query_vector:
            candidates = await self.store.fetch_embedded_candidates(search_filter, limit=self.candidate_limit)
            scored = await asyncio.to_thread(
                score_candidates,
                query_vector,
                candidates,
                now=utc_now(),
                mode=self.recency_mode,
                window_days=self.recency_window_days,
                max_boost=self.recency_max_boost,
            )
            for item in scored:
                if item.score <= 0.0:
                    continue
                merged[item.message.external_id] = SearchResult(
                    message=item.message,
                    similarity=item.similarity,
                    score=item.score,
                    matched_by="vector",
                )

        keyword_hits = await self.store.search_keyword(text, search_filter, limit=self.candidate_limit)
        for message in keyword_hits:
            existing = merged.get(message.external_id)
            if existing is not None:
                merged[message.external_id] = SearchResult(
                    message=existing.message,
                    similarity=existing.similarity,
                    score=existing.score,
                    matched_by="both",
                )
                continue
            merged[message.external_id] = SearchResult(
                message=message,
                similarity=0.0,
                score=self.keyword_weight,
                matched_by="keyword",
            )

        ranked = sorted(
            merged.values(),
            key=lambda r: (r.score, r.message.timestamp, r.message.message_id),
            reverse=True,
        )[:limit]
        logger.debug(
            "[memory.search] chars=%s vector=%s keyword=%s returned=%s degraded=%s",
            len(text),
            bool(query_vector),
            len(keyword_hits),
            len(ranked),
            degraded,
        )
        notice = "Semantic search is unavailable right now; showing keyword matches only." if degraded else ""
        return SearchResponse(results=ranked, available=True, degraded=degraded, notice=notice)
