from __future__ import annotations

from datetime import datetime
from typing import List, Sequence

import aiosqlite

from ...common import collapse_spaces, estimate_tokens, parse_db_timestamp, to_db_timestamp, utc_now
from ..models import ChannelSummary, Milestone
from .utils import _sqlite_memory_connection


class MemorySummariesMixin:
    async def get_channel_summary(self, channel_id: str) -> ChannelSummary | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT channel_id, summary, updated_at, refreshed_at, last_message_id
                FROM channel_summaries
                WHERE channel_id = ?
                """,
                (str(channel_id),),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        text = str(row["summary"] or "")
        return ChannelSummary(
            channel_id=str(row["channel_id"]),
            summary_text=text,
            updated_at=parse_db_timestamp(row["updated_at"]),
            refreshed_at=parse_db_timestamp(row["refreshed_at"]),
            char_count=len(text),
            token_estimate=estimate_tokens(text),
            last_message_id=int(row["last_message_id"] or 0),
        )

    async def upsert_channel_summary(
        self,
        channel_id: str,
        summary_text: str,
        *,
        updated_at: datetime | None = None,
        refreshed: bool = False,
        last_message_id: int = 0,
    ) -> None:
        """`last_message_id` is a watermark: it only moves forward."""
        stamp = to_db_timestamp(updated_at or utc_now())
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO channel_summaries (channel_id, summary, updated_at, refreshed_at, last_message_id)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(channel_id) DO UPDATE SET
                        summary = excluded.summary,
                        updated_at = excluded.updated_at,
                        refreshed_at = COALESCE(excluded.refreshed_at, channel_summaries.refreshed_at),
                        last_message_id = MAX(excluded.last_message_id, channel_summaries.last_message_id)
                    """,
                    (str(channel_id), summary_text, stamp, stamp if refreshed else None, max(0, int(last_message_id))),
                )
                await db.commit()

    async def get_milestones(self, channel_id: str, limit: int = 20) -> List[Milestone]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT id, channel_id, milestone, created_at
                FROM channel_milestones
                WHERE channel_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (str(channel_id), max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        ordered = list(reversed(rows))
        return [
            Milestone(
                milestone_id=int(row["id"]),
                channel_id=str(row["channel_id"]),
                fact_text=str(row["milestone"]),
                created_at=parse_db_timestamp(row["created_at"]),
            )
            for row in ordered
        ]

    async def append_milestones(self, channel_id: str, facts: Sequence[str], cap: int = 20) -> int:
        """Append new milestones, skipping case-insensitive duplicates, then keep only the newest `cap`."""
        cleaned: list[str] = []
        for fact in facts:
            text = collapse_spaces(str(fact or ""))
            if text:
                cleaned.append(text)
        if not cleaned:
            return 0

        added = 0
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                async with db.execute(
                    "SELECT milestone FROM channel_milestones WHERE channel_id = ?",
                    (str(channel_id),),
                ) as cursor:
                    rows = await cursor.fetchall()
                seen = {str(row[0]).casefold() for row in rows}

                for text in cleaned:
                    key = text.casefold()
                    if key in seen:
                        continue
                    seen.add(key)
                    await db.execute(
                        "INSERT INTO channel_milestones (channel_id, milestone) VALUES (?, ?)",
                        (str(channel_id), text),
                    )
                    added += 1

                await db.execute(
                    """
                    DELETE FROM channel_milestones
                    WHERE channel_id = ?
                      AND id NOT IN (
                        SELECT id FROM channel_milestones
                        WHERE channel_id = ?
                        ORDER BY id DESC
                        LIMIT ?
                      )
                    """,
                    (str(channel_id), str(channel_id), max(1, int(cap))),
                )
                await db.commit()
        return added
