from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Sequence

import aiosqlite

from ...common import to_db_timestamp, utc_now
from ..models import Message, SearchFilter
from .utils import (
    _row_to_message,
    _scope_filter_sql,
    _sqlite_memory_connection,
    encode_vector,
    escape_like,
)

logger = logging.getLogger("mascord_memory.store")

_MESSAGE_COLUMNS = "m.id, m.external_id, m.guild_id, m.channel_id, m.author_id, m.content, m.timestamp"


def _search_filter_sql(search_filter: SearchFilter | None) -> tuple[list[str], list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    if search_filter is None:
        return clauses, params
    channel_ids = [str(c) for c in search_filter.channel_ids if str(c).strip()]
    if channel_ids:
        placeholders = ", ".join("?" for _ in channel_ids)
        clauses.append(f"m.channel_id IN ({placeholders})")
        params.extend(channel_ids)
    if search_filter.from_date is not None:
        clauses.append("m.timestamp >= ?")
        params.append(to_db_timestamp(search_filter.from_date))
    if search_filter.to_date is not None:
        clauses.append("m.timestamp <= ?")
        params.append(to_db_timestamp(search_filter.to_date))
    return clauses, params


def _since_sql(since: datetime, after_id: int = 0) -> tuple[str, list[object]]:
    """Strictly newer than `since`; rows stamped in that same second count when their id is past `after_id`."""
    stamp = to_db_timestamp(since)
    if after_id > 0:
        return "(m.timestamp > ? OR (m.timestamp = ? AND m.id > ?))", [stamp, stamp, int(after_id)]
    return "m.timestamp > ?", [stamp]


class MemoryMessagesMixin:
    async def save(self, message: Message) -> bool:
        """Persist a message once; redelivery of the same external id is a no-op."""
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO messages (
                        external_id, guild_id, channel_id, author_id, content, timestamp, embedding, is_indexed
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.external_id,
                        message.guild_id,
                        message.channel_id,
                        message.author_id,
                        message.content,
                        to_db_timestamp(message.timestamp),
                        encode_vector(message.embedding) if message.embedding else None,
                        1 if message.embedding else 0,
                    ),
                )
                await db.commit()
                return cursor.rowcount > 0

    async def get_message(self, external_id: str) -> Message | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}, m.embedding
                FROM messages m
                WHERE m.external_id = ?
                """,
                (str(external_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_message(row, with_embedding=True)

    async def fetch_recent(
        self,
        channel_id: str,
        since: datetime | None = None,
        limit: int = 50,
        after_id: int = 0,
    ) -> List[Message]:
        clauses = ["m.channel_id = ?", _scope_filter_sql()]
        params: list[object] = [str(channel_id)]
        if since is not None:
            since_clause, since_params = _since_sql(since, after_id)
            clauses.append(since_clause)
            params.extend(since_params)
        params.append(max(1, int(limit)))

        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE {" AND ".join(clauses)}
                ORDER BY m.timestamp DESC, m.id DESC
                LIMIT ?
                """,
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def fetch_unindexed(self, batch_size: int) -> List[Message]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE m.embedding IS NULL
                  AND m.is_indexed = 0
                  AND TRIM(m.content) <> ''
                  AND COALESCE(cs.enabled, 1) = 1
                ORDER BY m.id ASC
                LIMIT ?
                """,
                (max(1, int(batch_size)),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def attach_embedding(self, message_id: int, vector: Sequence[float]) -> bool:
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    """
                    UPDATE messages
                    SET embedding = ?, is_indexed = 1
                    WHERE id = ? AND embedding IS NULL
                    """,
                    (encode_vector(vector), int(message_id)),
                )
                await db.commit()
                updated = cursor.rowcount > 0
        if not updated:
            logger.warning("[memory.index] message_id=%s vanished or already embedded; skipped", message_id)
        return updated

    async def mark_indexed(self, message_ids: Sequence[int]) -> int:
        ids = [int(x) for x in message_ids]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    f"UPDATE messages SET is_indexed = 1 WHERE id IN ({placeholders})",
                    ids,
                )
                await db.commit()
                return max(0, int(cursor.rowcount))

    async def search_keyword(
        self,
        term: str,
        search_filter: SearchFilter | None = None,
        limit: int = 100,
    ) -> List[Message]:
        tokens = [tok for tok in str(term or "").split() if tok]
        if not tokens:
            return []

        clauses = [_scope_filter_sql()]
        params: list[object] = []
        for token in tokens:
            clauses.append("m.content LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like(token)}%")
        filter_clauses, filter_params = _search_filter_sql(search_filter)
        clauses.extend(filter_clauses)
        params.extend(filter_params)
        params.append(max(1, int(limit)))

        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE {" AND ".join(clauses)}
                ORDER BY m.timestamp DESC, m.id DESC
                LIMIT ?
                """,
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def fetch_embedded_candidates(
        self,
        search_filter: SearchFilter | None = None,
        limit: int = 1000,
    ) -> List[Message]:
        clauses = ["m.embedding IS NOT NULL", _scope_filter_sql()]
        filter_clauses, params = _search_filter_sql(search_filter)
        clauses.extend(filter_clauses)
        params.append(max(1, int(limit)))

        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}, m.embedding
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE {" AND ".join(clauses)}
                ORDER BY m.timestamp DESC, m.id DESC
                LIMIT ?
                """,
                params,
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_message(row, with_embedding=True) for row in rows]

    async def count_channel_messages_since(
        self,
        channel_id: str,
        since: datetime | None,
        after_id: int = 0,
    ) -> int:
        clauses = ["m.channel_id = ?", _scope_filter_sql()]
        params: list[object] = [str(channel_id)]
        if since is not None:
            since_clause, since_params = _since_sql(since, after_id)
            clauses.append(since_clause)
            params.extend(since_params)
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                f"""
                SELECT COUNT(*)
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE {" AND ".join(clauses)}
                """,
                params,
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def list_active_channels(self, lookback_days: int) -> List[str]:
        cutoff = utc_now() - timedelta(days=max(1, int(lookback_days)))
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                f"""
                SELECT DISTINCT m.channel_id
                FROM messages m
                LEFT JOIN channel_settings cs ON cs.channel_id = m.channel_id
                WHERE m.timestamp >= ?
                  AND {_scope_filter_sql()}
                ORDER BY m.channel_id
                """,
                (to_db_timestamp(cutoff),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]
