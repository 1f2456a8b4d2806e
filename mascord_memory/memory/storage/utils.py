from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Sequence

import aiosqlite
import numpy as np

from ...common import parse_db_timestamp, utc_now
from ..models import Message

logger = logging.getLogger("mascord_memory.store")

# Embeddings are persisted as little-endian float32 blobs.
VECTOR_DTYPE = np.dtype("<f4")


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("MEMORY_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_memory_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA foreign_keys=ON")
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


def encode_vector(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def decode_vector(blob: bytes | None) -> tuple[float, ...] | None:
    if not blob:
        return None
    if len(blob) % VECTOR_DTYPE.itemsize:
        logger.warning("[memory.store] dropping malformed embedding blob bytes=%s", len(blob))
        return None
    return tuple(float(x) for x in np.frombuffer(blob, dtype=VECTOR_DTYPE))


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_message(row: aiosqlite.Row, *, with_embedding: bool = False) -> Message:
    embedding = decode_vector(row["embedding"]) if with_embedding else None
    return Message(
        external_id=str(row["external_id"]),
        guild_id=str(row["guild_id"] or ""),
        channel_id=str(row["channel_id"]),
        author_id=str(row["author_id"]),
        content=str(row["content"] or ""),
        timestamp=parse_db_timestamp(row["timestamp"]) or utc_now(),
        embedding=embedding,
        message_id=int(row["id"]),
    )


def _scope_filter_sql(alias: str = "m", settings_alias: str = "cs") -> str:
    """WHERE fragment hiding disabled channels and messages older than the channel's memory scope."""
    return (
        f"COALESCE({settings_alias}.enabled, 1) = 1 "
        f"AND ({settings_alias}.memory_start_date IS NULL OR {alias}.timestamp >= {settings_alias}.memory_start_date)"
    )
