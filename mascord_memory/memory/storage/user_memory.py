from __future__ import annotations

from datetime import datetime

import aiosqlite

from ...common import parse_db_timestamp, to_db_timestamp, utc_now
from ..models import UserMemoryProfile
from .utils import _sqlite_memory_connection


class MemoryUserMemoryMixin:
    async def get_user_memory(self, user_id: str) -> UserMemoryProfile | None:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, summary, enabled, expires_at, updated_at
                FROM user_memory
                WHERE user_id = ?
                """,
                (str(user_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return UserMemoryProfile(
            user_id=str(row["user_id"]),
            summary_text=str(row["summary"] or ""),
            enabled=bool(row["enabled"]),
            expires_at=parse_db_timestamp(row["expires_at"]),
            updated_at=parse_db_timestamp(row["updated_at"]),
        )

    async def upsert_user_memory(
        self,
        user_id: str,
        summary_text: str,
        *,
        expires_at: datetime | None = None,
    ) -> None:
        expires_raw = to_db_timestamp(expires_at) if expires_at is not None else None
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO user_memory (user_id, summary, enabled, expires_at, updated_at)
                    VALUES (?, ?, 1, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(user_id) DO UPDATE SET
                        summary = excluded.summary,
                        expires_at = excluded.expires_at,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (str(user_id), summary_text, expires_raw),
                )
                await db.commit()

    async def set_user_memory_enabled(self, user_id: str, enabled: bool) -> None:
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO user_memory (user_id, summary, enabled, updated_at)
                    VALUES (?, '', ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(user_id) DO UPDATE SET
                        enabled = excluded.enabled,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (str(user_id), 1 if enabled else 0),
                )
                await db.commit()

    async def delete_user_memory(self, user_id: str) -> int:
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute("DELETE FROM user_memory WHERE user_id = ?", (str(user_id),))
                await db.commit()
                return max(0, int(cursor.rowcount))

    async def delete_expired_user_memory(self, now: datetime | None = None) -> int:
        cutoff = to_db_timestamp(now or utc_now())
        async with self._write_lock:
            async with _sqlite_memory_connection(self.db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM user_memory WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    (cutoff,),
                )
                await db.commit()
                return max(0, int(cursor.rowcount))
